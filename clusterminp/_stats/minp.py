# Author: clusterminp developers
"""Cluster-based permutation tests with min(p)

Implements the "min(p)" method combining multiple cluster-defining thresholds
(CDTs; controlling height) and types of connectivity (controlling cluster
size) [1]_. Each configuration is tested with :func:`clusterstat`; its null
distribution is converted to p-values by rank, and the observed and null
p-values are reduced to their minimum across configurations. The minimum
observed p-value of each unit is then compared against the distribution of
the minimum null p-values.

References
----------
.. [1] Geerligs, L., & Maris, E. (2021). Improving the sensitivity of
   cluster-based statistics for functional magnetic resonance imaging data.
   Human Brain Mapping, 42(9), 2746-2765. https://doi.org/10.1002/hbm.25399
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
import logging
from typing import Any, Iterator, Sequence, Tuple, Union

import numpy as np
from scipy.stats import rankdata

from .._exceptions import ConfigurationError, DimensionMismatchError
from .._text import n_of
from .._utils import PickleableDataClass, as_sequence
from .clusterstat import ClusterStatConfig, ClusterStatResult, check_tail, clusterstat, combine_tails, permutation_pool
from .connectivity import check_dim
from .statistic import ClusterStatistic


@dataclass(eq=False)
class MinPJob(PickleableDataClass):
    """Description of a min(p) cluster test

    Attributes
    ----------
    dim : sequence of int
        Number of voxels along x, y(, z).
    inside : array of bool
        Valid positions (see :class:`ClusterStatConfig`).
    tail : 1 | 0 | -1
        1: positive; -1: negative; 0: both tails.
    clusteralphas : sequence of scalar
        Cluster-defining alpha levels to combine.
    clusterconns : sequence of int
        Connectivity criteria to combine; 2D: 4 (edge), 8 (corner); 3D: 6
        (surface), 18 (edge) or 26 (corner). Can be omitted with an explicit
        ``connectivity``.
    connectivity : sparse matrix of bool  (n_units, n_units)
        Explicit adjacency for data that can not be reshaped into a grid.
    clusterstatistic : str
        ``'max'``, ``'maxsize'``, ``'maxsum'`` (default) or ``'wcm'``.
    wcm_weight : scalar
        Exponent for the weighted cluster mass.
    order : 'C' | 'F'
        Order in which the flat grid positions are folded into ``dim``.
    """
    dim: Sequence[int] = None
    inside: Any = None
    tail: int = 0
    clusteralphas: Sequence[float] = None
    clusterconns: Sequence[int] = None
    connectivity: Any = None
    clusterstatistic: Union[str, ClusterStatistic] = 'maxsum'
    wcm_weight: float = 1
    order: str = 'C'

    def __post_init__(self):
        self.dim = check_dim(self.dim)
        self.tail = check_tail(self.tail)
        self.clusterstatistic = ClusterStatistic.coerce(self.clusterstatistic)
        if self.clusteralphas is None:
            raise ConfigurationError("clusteralphas needs to be defined")
        self.clusteralphas = as_sequence(self.clusteralphas)
        if self.clusterconns is None and self.connectivity is not None:
            self.clusterconns = (None,)
        elif self.clusterconns is None:
            raise ConfigurationError("clusterconns needs to be defined for grid data")
        else:
            self.clusterconns = as_sequence(self.clusterconns)
        if not self.clusteralphas or not self.clusterconns:
            raise ConfigurationError(f"clusteralphas={self.clusteralphas}, clusterconns={self.clusterconns}: need at least one configuration")
        # validate all configurations before running any
        for _ in self.configs():
            pass

    def configs(self) -> Iterator[ClusterStatConfig]:
        "Configuration for each (CDT, connectivity) pair"
        for clusteralpha in self.clusteralphas:
            for clusterconn in self.clusterconns:
                yield ClusterStatConfig(
                    dim=self.dim, inside=self.inside, tail=self.tail,
                    clustertail=self.tail, clusterthreshold='nonparametric_common',
                    clusteralpha=clusteralpha, clusterconn=clusterconn,
                    connectivity=self.connectivity,
                    clusterstatistic=self.clusterstatistic,
                    wcm_weight=self.wcm_weight, order=self.order)


@dataclass(eq=False)
class MinPResult(PickleableDataClass):
    """Result of :func:`clusterstatminp`

    Attributes
    ----------
    prob : array  (n_units,)
        Corrected p-value of each unit (for two-sided tests the smaller of the
        two tails).
    prob_pos, prob_neg : array  (n_units,)
        Corrected p-values for each tail.
    posdistributionminp, negdistributionminp : array  (n_randomizations,)
        Minimum rank-based p-value of each randomization across
        configurations.
    posobsminp, negobsminp : array  (n_units,)
        Minimum observed cluster p-value of each unit across configurations.
    clusteralphas, clusterconns : tuple
        The combined configurations.
    tail : int
        Tail of the test.
    """
    prob: np.ndarray
    prob_pos: np.ndarray
    prob_neg: np.ndarray
    posdistributionminp: np.ndarray
    negdistributionminp: np.ndarray
    posobsminp: np.ndarray
    negobsminp: np.ndarray
    clusteralphas: Tuple[float, ...] = ()
    clusterconns: Tuple[int, ...] = ()
    tail: int = 0

    def __repr__(self):
        n_configs = n_of(len(self.clusteralphas) * len(self.clusterconns), 'configuration')
        desc = f"p = {self.prob.min():.3f}" if len(self.prob) else "no units"
        return f"<MinPResult: tail={self.tail}, {n_configs}, {len(self.posdistributionminp)} randomizations, {desc}>"


@dataclass(eq=False)
class MinPAccumulator:
    "Minimum p-values across configurations"
    posdistributionminp: np.ndarray
    negdistributionminp: np.ndarray
    posobsminp: np.ndarray
    negobsminp: np.ndarray

    @classmethod
    def empty(cls, n_units, n_rand):
        return cls(np.ones(n_rand), np.ones(n_rand), np.ones(n_units), np.ones(n_units))

    @classmethod
    def from_result(cls, res: ClusterStatResult):
        "Partial result of a single configuration"
        n_units = len(res.stat)
        n_rand = res.n_randomizations
        if res.posdistribution is None:
            pos, posobs = np.ones(n_rand), np.ones(n_units)
        else:
            pos, posobs = null_pvalues(res.posdistribution), res.prob_pos
        if res.negdistribution is None:
            neg, negobs = np.ones(n_rand), np.ones(n_units)
        else:
            neg, negobs = null_pvalues(res.negdistribution), res.prob_neg
        return cls(pos, neg, posobs, negobs)

    def merge(self, other: MinPAccumulator) -> MinPAccumulator:
        return MinPAccumulator(
            np.minimum(self.posdistributionminp, other.posdistributionminp),
            np.minimum(self.negdistributionminp, other.negdistributionminp),
            np.minimum(self.posobsminp, other.posobsminp),
            np.minimum(self.negobsminp, other.negobsminp),
        )


def null_pvalues(distribution):
    """Convert a randomization distribution to p-values by rank

    Parameters
    ----------
    distribution : array  (n_randomizations,)
        Most extreme cluster statistic of each randomization.

    Returns
    -------
    p : array  (n_randomizations,)
        ``rank / n`` of each entry in ascending order (ties are ranked in
        order of occurrence).

    Notes
    -----
    Ordinal ranks make the null p-values a permutation of ``1/n, ..., 1``
    for any distribution, ties included. Which of several tied
    randomizations receives which rank depends on their order, but the
    final min(p) probabilities of a single configuration do not: they equal
    the probabilities of :func:`clusterstat`. Averaged ranks (or ``'min'``
    and ``'max'``) assign tied randomizations a common p-value and break
    that equality when many randomizations share a statistic of 0.
    """
    return rankdata(distribution, method='ordinal') / len(distribution)


def minp_pvalues(distributionminp, obsminp):
    """Compare observed minimum p-values against the null minimum p-values

    Parameters
    ----------
    distributionminp : array  (n_randomizations,)
        Minimum null p-value of each randomization.
    obsminp : array  (n_units,)
        Minimum observed p-value of each unit.

    Returns
    -------
    p : array  (n_units,)
        Proportion of null minimum p-values at or below the observed value
        (with +1 correction).
    """
    n = len(distributionminp)
    n_le = np.searchsorted(np.sort(distributionminp), obsminp, 'right')
    return (n_le + 1) / (n + 1)


def clusterstatminp(job: MinPJob, statobs, statrnd) -> MinPResult:
    """Cluster-based permutation test with min(p) across CDTs and connectivity

    Parameters
    ----------
    job : MinPJob
        Test description.
    statobs : array  (n_units,)
        Observed statistic map.
    statrnd : array  (n_units, n_randomizations)
        Statistic maps of the randomized data (one randomization per column).

    Returns
    -------
    result : MinPResult
        Corrected p-values and min(p) distributions.
    """
    statobs = np.asarray(statobs, np.float64).ravel()
    statrnd = np.asarray(statrnd, np.float64)
    if statrnd.ndim != 2:
        raise DimensionMismatchError(f"statrnd with shape {statrnd.shape}: needs to be 2-dimensional (units x randomizations)")
    n_units, n_rand = statrnd.shape
    logger = logging.getLogger(__name__)

    def partial_results(pool):
        for cfg in job.configs():
            logger.debug("Cluster test with clusteralpha=%s, clusterconn=%s", cfg.clusteralpha, cfg.clusterconn)
            yield MinPAccumulator.from_result(clusterstat(cfg, statobs, statrnd, pool))

    # workers receive statrnd once for all configurations
    with permutation_pool(statrnd) as pool:
        acc = reduce(MinPAccumulator.merge, partial_results(pool), MinPAccumulator.empty(n_units, n_rand))
    prob_pos = minp_pvalues(acc.posdistributionminp, acc.posobsminp)
    prob_neg = minp_pvalues(acc.negdistributionminp, acc.negobsminp)
    return MinPResult(
        combine_tails(job.tail, prob_neg, prob_pos), prob_pos, prob_neg,
        acc.posdistributionminp, acc.negdistributionminp, acc.posobsminp, acc.negobsminp,
        tuple(job.clusteralphas), tuple(job.clusterconns), job.tail)


def run_minp(job: MinPJob, statobs, statrnd) -> MinPResult:
    "Alias for :func:`clusterstatminp`"
    return clusterstatminp(job, statobs, statrnd)
