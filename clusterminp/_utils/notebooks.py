# Author: clusterminp developers
"Progress bars that render in notebooks when matplotlib uses an inline backend"
import matplotlib

from tqdm import tqdm


def use_inline_backend():
    "Check whether matplotlib is using an inline backend, e.g. for notebooks"
    # matplotlib.get_backend() also initializes backend
    backend = dict.__getitem__(matplotlib.rcParams, 'backend')
    return isinstance(backend, str) and (backend.endswith('inline') or backend == 'nbAgg')


if use_inline_backend():
    try:
        import ipywidgets as _
    except ImportError:
        pass
    else:
        from tqdm.auto import tqdm


def permutation_progress(n, results, disable=False):
    """Progress bar for ``n`` randomizations

    Parameters
    ----------
    n : int
        Number of randomizations.
    results : iterator
        Results of the randomizations, in order.
    disable : bool
        Disable the progress bar.
    """
    return tqdm(results, desc="Permutation test", total=n, unit=' permutations', disable=disable)
