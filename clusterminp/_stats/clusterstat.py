# Author: clusterminp developers
"""Cluster-based permutation test for one threshold and connectivity

Supports 2-D and 3-D grid data and data with an explicit adjacency structure.

Use of :func:`clusterstat` proceeds in 3 steps:

- derive the cluster-defining critical values from the randomized maps
  (:func:`critical_values`)
- label clusters in the observed map; if there are none, the result is final
  (every unit has ``p = 1``)
- label clusters in each randomized map and keep the most extreme cluster
  statistic(s) per randomization; compare the observed clusters against this
  distribution
"""
from __future__ import annotations

from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from functools import reduce
from multiprocessing.sharedctypes import RawArray
import logging
import operator
import os
from typing import Any, List, Optional, Sequence, Union
import warnings

import numpy as np

from .._config import CONFIG, mpc
from .._exceptions import ConfigurationError, DimensionMismatchError
from .._text import n_of
from .._utils import PickleableDataClass, intervals, restore_main_spec
from .._utils.notebooks import permutation_progress
from .connectivity import Connectivity, check_dim, grid_structure
from .statistic import ClusterStatistic, cluster_statistics
from .threshold import ClusterThreshold, critical_values


TAILS = (-1, 0, 1)


def check_tail(tail, name='tail'):
    if tail not in TAILS:
        raise ConfigurationError(f"{name}={tail!r}: needs to be 1 (positive), -1 (negative) or 0 (both tails)")
    return int(tail)


@dataclass(eq=False)
class ClusterStatConfig(PickleableDataClass):
    """Configuration of a single cluster-based permutation test

    Attributes
    ----------
    dim : sequence of int
        Number of voxels along each grid axis (2 or 3 axes for grid
        clustering).
    inside : array of bool
        Valid positions; either one entry per unit, or one entry per grid
        position with as many True entries as there are units.
    tail : 1 | 0 | -1
        1: positive; -1: negative; 0: both tails.
    clustertail : 1 | 0 | -1
        Tail for cluster formation; must be identical to ``tail`` (default).
    clusterthreshold : str
        ``'parametric'``, ``'nonparametric_individual'``,
        ``'nonparametric_common'`` (default) or ``'none'``.
    clusteralpha : scalar
        Alpha level of the cluster-defining threshold (nonparametric rules).
    clustercritval : scalar | array
        Critical value(s) for parametric thresholding.
    clusterconn : int
        Grid connectivity criterion; 2D: 4 (edge), 8 (corner); 3D: 6
        (surface), 18 (edge) or 26 (corner).
    connectivity : sparse matrix of bool  (n_units, n_units)
        Explicit adjacency (e.g., for cortical surface meshes); if provided,
        clusters are formed on this graph instead of the grid.
    clusterstatistic : str
        ``'max'``, ``'maxsize'``, ``'maxsum'`` (default) or ``'wcm'``.
    wcm_weight : scalar
        Exponent for the weighted cluster mass.
    multivariate : bool
        Compare all observed clusters against the joint distribution of the
        most extreme clusters (one p-value for all clusters).
    orderedstats : bool
        Compare the n-th observed cluster against the distribution of the
        n-th most extreme cluster.
    numrandomization : int | 'all'
        ``'all'`` if the randomizations are the complete set of permutations
        (p-values without the +1 correction).
    order : 'C' | 'F'
        Order in which the flat grid positions are folded into ``dim``.
    """
    dim: Sequence[int] = None
    inside: Any = None
    tail: int = 0
    clustertail: int = None
    clusterthreshold: Union[str, ClusterThreshold] = 'nonparametric_common'
    clusteralpha: float = None
    clustercritval: Any = None
    clusterconn: int = None
    connectivity: Any = None
    clusterstatistic: Union[str, ClusterStatistic] = 'maxsum'
    wcm_weight: float = 1
    multivariate: bool = False
    orderedstats: bool = False
    numrandomization: Union[int, str] = None
    order: str = 'C'

    def __post_init__(self):
        self.dim = check_dim(self.dim)
        self.tail = check_tail(self.tail)
        if self.clustertail is None:
            self.clustertail = self.tail
        elif check_tail(self.clustertail, 'clustertail') != self.tail:
            raise ConfigurationError(f"tail={self.tail} and clustertail={self.clustertail} should be identical")
        self.clusterthreshold = ClusterThreshold.coerce(self.clusterthreshold)
        self.clusterstatistic = ClusterStatistic.coerce(self.clusterstatistic)
        if self.clusterthreshold is ClusterThreshold.PARAMETRIC:
            if self.clustercritval is None:
                raise ConfigurationError("with parametric cluster thresholding clustercritval needs to be defined")
        elif self.clusterthreshold is not ClusterThreshold.NONE:
            if self.clusteralpha is None:
                raise ConfigurationError(f"with {self.clusterthreshold.value} cluster thresholding clusteralpha needs to be defined")
            elif not 0 < self.clusteralpha < 1:
                raise ConfigurationError(f"clusteralpha={self.clusteralpha}: needs to be between 0 and 1")
        if self.connectivity is None:
            grid_structure(len(self.dim), self.clusterconn)
        if self.order not in ('C', 'F'):
            raise ConfigurationError(f"order={self.order!r}: needs to be 'C' or 'F'")
        if self.numrandomization is not None and self.numrandomization != 'all':
            self.numrandomization = int(self.numrandomization)


@dataclass
class Cluster:
    "Summary of an observed cluster"
    prob: float
    clusterstat: float


@dataclass(eq=False)
class ClusterStatResult(PickleableDataClass):
    """Result of :func:`clusterstat`

    Attributes
    ----------
    prob : array  (n_units,)
        Cluster p-value of each unit (1 outside clusters); for two-sided tests
        the smaller of the two tails.
    prob_pos, prob_neg : array  (n_units,)
        Per-tail cluster p-values (all 1 for a tail that is not tested).
    stat : array  (n_units,)
        The observed statistic map.
    critval : None | array  (n, 2)
        Negative and positive tail critical values (``n`` is 1 for a common
        threshold).
    posclusters, negclusters : None | list of Cluster
        Observed clusters, most extreme first (cluster ``i + 1`` in the label
        map is at index ``i``).
    posclusterslabelmat, negclusterslabelmat : None | array of uint32
        Observed cluster label maps.
    posdistribution, negdistribution : None | array
        Most extreme cluster statistic in each randomization (``(n_clusters,
        n_randomizations)`` for multivariate and ordered statistics);
        ``None`` when no clusters were found in the observed data.
    """
    prob: np.ndarray
    prob_pos: np.ndarray
    prob_neg: np.ndarray
    stat: np.ndarray
    critval: Optional[np.ndarray] = None
    posclusters: Optional[List[Cluster]] = None
    posclusterslabelmat: Optional[np.ndarray] = None
    posdistribution: Optional[np.ndarray] = None
    negclusters: Optional[List[Cluster]] = None
    negclusterslabelmat: Optional[np.ndarray] = None
    negdistribution: Optional[np.ndarray] = None
    tail: int = 0
    n_randomizations: int = 0

    def __repr__(self):
        items = [f"tail={self.tail}", f"{self.n_randomizations} randomizations"]
        if self.posclusters is not None:
            items.append(f"{n_of(len(self.posclusters), 'positive cluster')}")
        if self.negclusters is not None:
            items.append(f"{n_of(len(self.negclusters), 'negative cluster')}")
        if self.n_clusters:
            items.append(f"p = {self.prob.min():.3f}")
        return f"<ClusterStatResult: {', '.join(items)}>"

    @property
    def n_clusters(self):
        return sum(len(c) for c in (self.posclusters, self.negclusters) if c is not None)

    @property
    def is_vacuous(self):
        "No clusters in the observed data"
        return self.posdistribution is None and self.negdistribution is None


class ClusterProcessor:
    """Label clusters in a statistic map and reduce them to cluster statistics

    Parameters
    ----------
    connectivity : Connectivity
        Neighborhood structure of the units.
    statistic : ClusterStatistic
        Cluster statistic.
    negtailcritval, postailcritval : None | array
        Critical values (``None`` for a tail that is not tested).
    wcm_weight : scalar
        Exponent for the weighted cluster mass.
    n_keep_pos, n_keep_neg : None | int
        Number of most extreme clusters to keep per randomization (``None`` to
        keep only the single most extreme value as scalar).
    """

    def __init__(self, connectivity, statistic, negtailcritval, postailcritval, wcm_weight=1, n_keep_pos=None, n_keep_neg=None):
        self.connectivity = connectivity
        self.statistic = statistic
        self.negtailcritval = negtailcritval
        self.postailcritval = postailcritval
        self.wcm_weight = wcm_weight
        self.n_keep_pos = n_keep_pos
        self.n_keep_neg = n_keep_neg

    def label(self, stat_map, tail):
        "Cluster label map and number of clusters for one tail"
        if tail > 0:
            bin_map = np.greater_equal(stat_map, self.postailcritval)
        else:
            bin_map = np.less_equal(stat_map, self.negtailcritval)
        return self.connectivity.label(bin_map)

    def cluster_stats(self, stat_map, cmap, n, tail):
        threshold = self.postailcritval if tail > 0 else self.negtailcritval
        return cluster_statistics(stat_map, cmap, n, self.statistic, tail, threshold, self.wcm_weight)

    def _extreme(self, stat_map, tail, n_keep):
        cmap, n = self.label(stat_map, tail)
        v = self.cluster_stats(stat_map, cmap, n, tail)
        if n_keep is None:
            if n == 0:
                return 0.
            return v.max() if tail > 0 else v.min()
        # sort from most to least extreme
        v = np.sort(v)
        if tail > 0:
            v = v[::-1]
        out = np.zeros(n_keep)
        k = min(n, n_keep)
        out[:k] = v[:k]
        return out

    def max_stat(self, stat_map, need_pos, need_neg):
        """Most extreme cluster statistic(s) in each tail (``None`` if not needed)"""
        pos = self._extreme(stat_map, 1, self.n_keep_pos) if need_pos else None
        neg = self._extreme(stat_map, -1, self.n_keep_neg) if need_neg else None
        return pos, neg


# state of permutation worker processes
_worker_rnd = None


def permutation_worker_init(rnd_array, rnd_shape):
    "Initialize a worker process with a view on the shared randomized maps"
    global _worker_rnd
    if CONFIG['nice']:
        os.nice(CONFIG['nice'])
    n = reduce(operator.mul, rnd_shape)
    _worker_rnd = np.frombuffer(rnd_array, np.float64, n).reshape(rnd_shape)


def permutation_worker(task):
    "Process randomizations ``start`` to ``stop`` for one configuration"
    processor, need_pos, need_neg, start, stop = task
    return [processor.max_stat(_worker_rnd[i], need_pos, need_neg) for i in range(start, stop)]


class PermutationPool:
    """Worker processes with shared access to the randomized maps

    The maps are copied to shared memory once; each configuration sends only
    its :class:`ClusterProcessor` to the workers.

    Parameters
    ----------
    statrnd : array  (n_units, n_randomizations)
        Randomized statistic maps.
    n_workers : int
        Number of worker processes.
    """

    def __init__(self, statrnd, n_workers):
        n_units, n_rand = statrnd.shape
        logger = logging.getLogger(__name__)
        logger.debug("Setting up %i worker processes...", n_workers)
        # one randomization per row for contiguous access
        rnd_shape = (n_rand, n_units)
        rnd_array = RawArray('d', n_rand * n_units)
        np.frombuffer(rnd_array, np.float64).reshape(rnd_shape)[:] = statrnd.T
        restore_main_spec()
        self.n_randomizations = n_rand
        self.n_workers = n_workers
        self._pool = mpc.Pool(n_workers, permutation_worker_init, (rnd_array, rnd_shape))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self._pool.terminate()
        self._pool.join()
        logging.getLogger(__name__).debug("workers joined")

    def max_stats(self, processor, need_pos, need_neg):
        "Iterate over :meth:`ClusterProcessor.max_stat` for all randomizations, in order"
        n_chunks = min(self.n_randomizations, 4 * self.n_workers)
        bounds = np.linspace(0, self.n_randomizations, n_chunks + 1).astype(int)
        tasks = [(processor, need_pos, need_neg, start, stop) for start, stop in intervals(bounds)]
        for chunk in self._pool.imap(permutation_worker, tasks):
            yield from chunk


@contextmanager
def permutation_pool(statrnd):
    """Worker pool for ``statrnd``, or ``None`` to process in the main process

    Workers are used when ``configure(n_workers)`` is non-zero and there is
    more than one randomization.
    """
    n_units, n_rand = statrnd.shape
    if not CONFIG['n_workers'] or n_rand <= 1 or n_units == 0:
        yield None
        return
    with PermutationPool(statrnd, min(CONFIG['n_workers'], n_rand)) as pool:
        yield pool


def run_permutation(processor, statrnd, posdistribution, negdistribution, pool=None):
    """Fill the randomization distributions

    Parameters
    ----------
    processor : ClusterProcessor
        Processor for the current configuration.
    statrnd : array  (n_units, n_randomizations)
        Randomized statistic maps.
    posdistribution, negdistribution : None | array
        Containers for the distributions (randomizations on the last axis);
        ``None`` for a tail that is not tested.
    pool : PermutationPool
        Worker pool sharing ``statrnd`` (default: start a pool for this call
        if workers are enabled).
    """
    n_rand = statrnd.shape[1]
    need_pos = posdistribution is not None
    need_neg = negdistribution is not None
    context = permutation_pool(statrnd) if pool is None else nullcontext(pool)
    with context as pool:
        if pool is None:
            results = (processor.max_stat(statrnd[:, i], need_pos, need_neg) for i in range(n_rand))
        else:
            results = pool.max_stats(processor, need_pos, need_neg)
        for i, (pos, neg) in enumerate(permutation_progress(n_rand, results, CONFIG['tqdm'])):
            if need_pos:
                posdistribution[..., i] = pos
            if need_neg:
                negdistribution[..., i] = neg


def _cluster_probabilities(cfg, processor, statobs, clusobs, n_obs, distribution, tail, n_rand):
    """Compare observed clusters with the randomization distribution

    Returns
    -------
    labelmat : array of uint32
        Observed clusters, relabeled from most to least extreme.
    clusters : list of Cluster
        Cluster summaries.
    prb : array
        Probability of each unit.
    """
    v = processor.cluster_stats(statobs, clusobs, n_obs, tail)
    # sort clusters from most to least extreme
    order = np.argsort(-v if tail > 0 else v, kind='stable')
    v = v[order]
    relabel = np.zeros(n_obs + 1, np.uint32)
    relabel[order + 1] = np.arange(1, n_obs + 1)
    labelmat = relabel[clusobs]

    more_extreme = np.greater if tail > 0 else np.less
    if cfg.multivariate:
        # one p-value for all clusters: compare all clusters simultaneously
        count = np.count_nonzero(more_extreme(distribution, v[:, None]).any(0))
        count = np.full(n_obs, count)
    elif cfg.orderedstats:
        # n-th observed cluster against distribution of n-th cluster
        count = np.count_nonzero(more_extreme(distribution, v[:, None]), 1)
    else:
        count = np.count_nonzero(more_extreme(distribution[None, :], v[:, None]), 1)

    if cfg.numrandomization == 'all':
        p = count / n_rand
    else:
        # the minimum possible p-value should not be 0, but 1/N
        p = (count + 1) / (n_rand + 1)
    prb = np.concatenate(([1.], p))[labelmat]
    clusters = [Cluster(float(p_), float(v_)) for p_, v_ in zip(p, v)]
    return labelmat, clusters, prb


def combine_tails(tail, prb_neg, prb_pos):
    if tail == 0:
        # probability for the most unlikely tail
        return np.minimum(prb_neg, prb_pos)
    elif tail > 0:
        return prb_pos
    else:
        return prb_neg


def clusterstat(cfg: ClusterStatConfig, statobs, statrnd, pool=None) -> ClusterStatResult:
    """Cluster-based permutation test for a single configuration

    Parameters
    ----------
    cfg : ClusterStatConfig
        Test configuration.
    statobs : array  (n_units,)
        Observed statistic map.
    statrnd : array  (n_units, n_randomizations)
        Statistic maps of the randomized data (one randomization per column).
    pool : PermutationPool
        Worker pool that already holds ``statrnd``, to share it between
        several tests on the same data (see :func:`permutation_pool`).

    Returns
    -------
    result : ClusterStatResult
        Cluster p-values and distributions.
    """
    statobs = np.asarray(statobs, np.float64).ravel()
    statrnd = np.asarray(statrnd, np.float64)
    if statrnd.ndim != 2:
        raise DimensionMismatchError(f"statrnd with shape {statrnd.shape}: needs to be 2-dimensional (units x randomizations)")
    n_units, n_rand = statrnd.shape
    if len(statobs) != n_units:
        raise DimensionMismatchError(f"statobs with {len(statobs)} units, statrnd with {n_units} units")
    elif n_rand == 0:
        raise ConfigurationError("statrnd without randomizations")
    connectivity = Connectivity(cfg.dim, n_units, cfg.inside, cfg.clusterconn, cfg.connectivity, cfg.order)
    need_pos = cfg.tail >= 0
    need_neg = cfg.tail <= 0
    logger = logging.getLogger(__name__)

    mask = connectivity.mask
    prb_pos = np.ones(n_units)
    prb_neg = np.ones(n_units)
    result_args = dict(stat=statobs, tail=cfg.tail, n_randomizations=n_rand)
    if n_units == 0 or (mask is not None and not mask.any()):
        warnings.warn("Empty statistic map: no units to test", RuntimeWarning)
        return ClusterStatResult(np.ones(n_units), prb_pos, prb_neg, **result_args)

    negtailcritval, postailcritval = critical_values(cfg.clusterthreshold, cfg.tail, statrnd, cfg.clusteralpha, cfg.clustercritval, mask)
    if postailcritval is None:
        # threshold-free: no supra-threshold units
        critval = None
        negtailcritval, postailcritval = np.full(1, -np.inf), np.full(1, np.inf)
    else:
        critval = np.column_stack(np.broadcast_arrays(negtailcritval, postailcritval))

    processor = ClusterProcessor(connectivity, cfg.clusterstatistic, negtailcritval, postailcritval, cfg.wcm_weight)

    # clustering of the observed data
    n_obs_pos = n_obs_neg = 0
    if need_pos:
        posclusobs, n_obs_pos = processor.label(statobs, 1)
        logger.debug("found %i positive clusters in observed data", n_obs_pos)
    if need_neg:
        negclusobs, n_obs_neg = processor.label(statobs, -1)
        logger.debug("found %i negative clusters in observed data", n_obs_neg)

    if n_obs_pos + n_obs_neg == 0:
        logger.info("No clusters were found in the observed data")
        return ClusterStatResult(
            np.ones(n_units), prb_pos, prb_neg, critval=critval,
            posclusters=[] if need_pos else None, posclusterslabelmat=posclusobs if need_pos else None,
            negclusters=[] if need_neg else None, negclusterslabelmat=negclusobs if need_neg else None,
            **result_args)

    # distributions of the cluster statistic
    if cfg.multivariate or cfg.orderedstats:
        logger.debug("allocating space for a %i-multivariate distribution of the positive clusters", n_obs_pos)
        logger.debug("allocating space for a %i-multivariate distribution of the negative clusters", n_obs_neg)
        processor.n_keep_pos = n_obs_pos
        processor.n_keep_neg = n_obs_neg
        posdistribution = np.zeros((n_obs_pos, n_rand)) if need_pos else None
        negdistribution = np.zeros((n_obs_neg, n_rand)) if need_neg else None
    else:
        posdistribution = np.zeros(n_rand) if need_pos else None
        negdistribution = np.zeros(n_rand) if need_neg else None

    logger.debug("computing clusters for the thresholded test statistic computed from the randomized design")
    run_permutation(processor, statrnd, posdistribution, negdistribution, pool)

    # compare the observed clusters with the randomization distribution
    posclusters = negclusters = None
    if need_pos:
        posclusobs, posclusters, prb_pos = _cluster_probabilities(cfg, processor, statobs, posclusobs, n_obs_pos, posdistribution, 1, n_rand)
    else:
        posclusobs = None
    if need_neg:
        negclusobs, negclusters, prb_neg = _cluster_probabilities(cfg, processor, statobs, negclusobs, n_obs_neg, negdistribution, -1, n_rand)
    else:
        negclusobs = None

    return ClusterStatResult(
        combine_tails(cfg.tail, prb_neg, prb_pos), prb_pos, prb_neg, critval=critval,
        posclusters=posclusters, posclusterslabelmat=posclusobs, posdistribution=posdistribution,
        negclusters=negclusters, negclusterslabelmat=negclusobs, negdistribution=negdistribution,
        **result_args)
