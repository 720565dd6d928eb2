# Author: clusterminp developers
"""Cluster-defining thresholds"""
from enum import Enum
import logging

import numpy as np

from .._exceptions import ConfigurationError, UnknownOption


class ClusterThreshold(Enum):
    "Rule for deriving the cluster-defining critical values"
    PARAMETRIC = 'parametric'  # supplied critical values
    NONPARAMETRIC_INDIVIDUAL = 'nonparametric_individual'  # per-unit quantile of the randomizations
    NONPARAMETRIC_COMMON = 'nonparametric_common'  # quantile of all randomized values
    NONE = 'none'  # threshold-free statistics

    @classmethod
    def coerce(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownOption('clusterthreshold', value, [m.value for m in cls]) from None


def _quantile_index(q, n):
    "0-based index of the empirical ``q`` quantile in ``n`` sorted values"
    k = int(np.floor(q * n + 0.5))
    return min(max(k, 1), n) - 1


def _parametric(tail, clustercritval, n_units):
    if clustercritval is None:
        raise ConfigurationError("with parametric cluster thresholding clustercritval needs to be defined")
    critval = np.asarray(clustercritval, np.float64)
    shape = critval.shape
    if critval.size == 1:
        critval = critval.reshape(1)
    elif (shape == (n_units,) or shape == (n_units, 1)) and n_units > 1:
        critval = critval.reshape(n_units)
    elif shape == (n_units, 2) and tail == 0:
        # different critical value for the left and the right tail of each unit
        return critval[:, 0].copy(), critval[:, 1].copy()
    elif critval.size == 2 and tail == 0:
        # same left and right critical value for all units
        critval = critval.ravel()
        return critval[:1], critval[1:]
    else:
        raise ConfigurationError(f"clustercritval with shape {shape}: can not make sense of the parametric critical values for {n_units} units and tail={tail}")

    if tail == 0:
        # assume left and right tail are symmetric around zero
        return -critval, critval
    elif tail < 0:
        return critval, np.full(critval.shape, np.inf)
    else:
        return np.full(critval.shape, -np.inf), critval


def _nonparametric(tail, clusteralpha, srt, n):
    "``srt``: null values sorted along the last axis"
    if tail == 0:
        # both tails are needed
        neg = srt[..., _quantile_index(clusteralpha / 2, n)]
        pos = srt[..., _quantile_index(1 - clusteralpha / 2, n)]
    elif tail > 0:
        pos = srt[..., _quantile_index(1 - clusteralpha, n)]
        neg = np.full(pos.shape, -np.inf)
    else:
        neg = srt[..., _quantile_index(clusteralpha, n)]
        pos = np.full(neg.shape, np.inf)
    neg = np.atleast_1d(np.array(neg, np.float64))
    pos = np.atleast_1d(np.array(pos, np.float64))

    # zero-range null: widen to the adjacent float so that the null value
    # itself does not exceed the threshold
    degenerate = np.atleast_1d(srt[..., 0] == srt[..., -1])
    if np.any(degenerate):
        logger = logging.getLogger(__name__)
        logger.warning("Randomized statistics with zero range for %i of %i thresholds; widening critical values", np.count_nonzero(degenerate), len(degenerate))
        pos[degenerate] = np.nextafter(pos[degenerate], np.inf)
        neg[degenerate] = np.nextafter(neg[degenerate], -np.inf)
    return neg, pos


def critical_values(clusterthreshold, tail, statrnd, clusteralpha=None, clustercritval=None, mask=None):
    """Determine the negative and positive tail critical values

    Parameters
    ----------
    clusterthreshold : str | ClusterThreshold
        Threshold rule.
    tail : -1 | 0 | 1
        Tail(s) for which clusters are formed.
    statrnd : array  (n_units, n_randomizations)
        Randomized statistic maps.
    clusteralpha : scalar
        Alpha level for nonparametric thresholds (split between tails for
        two-sided tests).
    clustercritval : scalar | array
        Critical value(s) for parametric thresholds.
    mask : array of bool  (n_units,)
        Units that contribute to nonparametric thresholds (default all).

    Returns
    -------
    negtailcritval, postailcritval : None | array
        Critical values, either of length 1 (common for all units) or with one
        entry per unit. A tail that is not tested gets infinite critical values.
        ``None`` for ``clusterthreshold='none'``.
    """
    clusterthreshold = ClusterThreshold.coerce(clusterthreshold)
    n_units, n_rand = statrnd.shape
    if clusterthreshold is ClusterThreshold.NONE:
        return None, None
    elif clusterthreshold is ClusterThreshold.PARAMETRIC:
        return _parametric(tail, clustercritval, n_units)

    if clusteralpha is None:
        raise ConfigurationError(f"with {clusterthreshold.value} cluster thresholding clusteralpha needs to be defined")
    if mask is not None:
        statrnd = statrnd[mask]
    if clusterthreshold is ClusterThreshold.NONPARAMETRIC_COMMON:
        # all units share a common threshold
        return _nonparametric(tail, clusteralpha, np.sort(statrnd, None), statrnd.size)
    # each unit gets an individual threshold
    neg, pos = _nonparametric(tail, clusteralpha, np.sort(statrnd, 1), n_rand)
    if mask is not None:
        neg_, pos_ = neg, pos
        neg = np.full(n_units, -np.inf)
        pos = np.full(n_units, np.inf)
        neg[mask] = neg_
        pos[mask] = pos_
    return neg, pos
