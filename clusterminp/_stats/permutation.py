# Author: clusterminp developers
"""Randomized statistic maps by sign flipping

The cluster tests take the randomized maps as input; these functions generate
them for one-sample designs.
"""
import numpy as np

from .._exceptions import ConfigurationError


# sign flips are enumerated as bits of an int64 code
MAX_ENUMERATED_CASES = 62


def sign_flips(n_cases, samples=10000, seed=0):
    """Sign matrix for sign-flip randomization

    Parameters
    ----------
    n_cases : int
        Number of cases.
    samples : int
        Number of sign flips. If < 0, or if ``samples`` is not smaller than the
        number of possible sign flips (``2 ** n_cases - 1``), all of them are
        returned.
    seed : int
        Seed for :func:`numpy.random.default_rng`.

    Returns
    -------
    signs : array of int8  (n_samples, n_cases)
        One sign flip per row (``1`` or ``-1`` for each case). Without
        replacement for up to 62 cases; the original sign of all cases is
        never part of an enumeration or a sample drawn without replacement.
    """
    n_cases = int(n_cases)
    if n_cases < 1:
        raise ConfigurationError(f"{n_cases=}: need at least one case")
    rng = np.random.default_rng(seed)
    if n_cases > MAX_ENUMERATED_CASES:
        if samples < 0:
            raise ConfigurationError(f"{samples=}: can not enumerate all sign flips for {n_cases} cases")
        return rng.choice(np.array([1, -1], np.int8), (samples, n_cases))

    n_possible = 2 ** n_cases - 1
    if samples < 0 or samples >= n_possible:
        codes = np.arange(1, n_possible + 1, dtype=np.int64)
    else:
        # code 0 is the observed data
        codes = rng.choice(n_possible, samples, replace=False) + 1
    bits = (codes[:, None] >> np.arange(n_cases)) & 1
    return (1 - 2 * bits).astype(np.int8)


def t_1samp(y, out=None):
    "T-value for 1-sample t-test (0 where the data have no variance)"
    n_cases = len(y)
    if out is None:
        out = np.empty(y.shape[1:])
    mean = y.mean(0)
    std = y.std(0, ddof=1)
    denom = std / np.sqrt(n_cases)
    nonzero = denom > 0
    out.fill(0)
    np.divide(mean, denom, out, where=nonzero)
    return out


def sign_flip_t_maps(y, samples=1000, seed=0):
    """One-sample t maps for observed and sign-flipped data

    Parameters
    ----------
    y : array  (n_cases, n_units)
        Data, one row per case (e.g., subject contrast maps).
    samples : int
        Number of random sign flips. If < 0, or if ``samples`` exceeds the
        number of possible sign flips, all of them are used.
    seed : int
        Seed for the random number generator.

    Returns
    -------
    statobs : array  (n_units,)
        T map of the observed data.
    statrnd : array  (n_units, n_randomizations)
        T maps of the sign-flipped data (one randomization per column, in the
        order of :func:`sign_flips`).
    """
    y = np.asarray(y, np.float64)
    if y.ndim != 2:
        raise ConfigurationError(f"y with shape {y.shape}: needs to be 2-dimensional (cases x units)")
    n_cases, n_units = y.shape
    if n_cases < 2:
        raise ConfigurationError(f"y with {n_cases} cases: need at least 2 cases for a t-test")
    signs = sign_flips(n_cases, samples, seed)
    statobs = t_1samp(y)
    statrnd = np.empty((n_units, len(signs)))
    y_perm = np.empty_like(y)
    for i, sign in enumerate(signs):
        np.multiply(y, sign[:, None], y_perm)
        t_1samp(y_perm, statrnd[:, i])
    return statobs, statrnd
