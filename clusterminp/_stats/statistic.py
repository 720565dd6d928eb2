# Author: clusterminp developers
"""Summary statistics for labeled clusters"""
from enum import Enum

import numpy as np
from scipy import ndimage

from .._exceptions import ConfigurationError, UnknownOption


class ClusterStatistic(Enum):
    """Scalar summary of a cluster

    Negative-tail clusters are encoded such that more extreme is always more
    negative.
    """
    MAX = 'max'  # most extreme value
    MAXSIZE = 'maxsize'  # number of units
    MAXSUM = 'maxsum'  # sum of values
    WCM = 'wcm'  # weighted cluster mass

    @classmethod
    def coerce(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownOption('clusterstatistic', value, [m.value for m in cls]) from None


def _cluster_max(stat_map, cmap, cids, tail, threshold, weight):
    if tail > 0:
        return ndimage.maximum(stat_map, cmap, cids)
    else:
        return ndimage.minimum(stat_map, cmap, cids)


def _cluster_size(stat_map, cmap, cids, tail, threshold, weight):
    size = np.bincount(cmap, minlength=len(cids) + 1)[1:].astype(np.float64)
    if tail < 0:
        # encode the size of a negative cluster as a negative value
        np.negative(size, size)
    return size


def _cluster_sum(stat_map, cmap, cids, tail, threshold, weight):
    return ndimage.sum_labels(stat_map, cmap, cids)


def _cluster_wcm(stat_map, cmap, cids, tail, threshold, weight):
    if threshold is None:
        raise ConfigurationError("clusterstatistic='wcm' requires a critical value for the cluster-defining threshold")
    members = cmap > 0
    threshold = np.broadcast_to(threshold, stat_map.shape)
    excess = np.zeros(stat_map.shape)
    excess[members] = np.abs(stat_map[members] - threshold[members]) ** weight
    mass = ndimage.sum_labels(excess, cmap, cids)
    if tail < 0:
        np.negative(mass, mass)
    return mass


HANDLERS = {
    ClusterStatistic.MAX: _cluster_max,
    ClusterStatistic.MAXSIZE: _cluster_size,
    ClusterStatistic.MAXSUM: _cluster_sum,
    ClusterStatistic.WCM: _cluster_wcm,
}


def cluster_statistics(stat_map, cmap, n, kind, tail, threshold=None, wcm_weight=1):
    """Compute one summary value per cluster

    Parameters
    ----------
    stat_map : array  (n_units,)
        Statistic values.
    cmap : array of int  (n_units,)
        Cluster label map (clusters 1 ... n, 0 outside clusters).
    n : int
        Number of clusters in ``cmap``.
    kind : str | ClusterStatistic
        Cluster statistic: ``'max'``, ``'maxsize'``, ``'maxsum'`` or ``'wcm'``.
    tail : 1 | -1
        Tail that defined the clusters.
    threshold : scalar | array  (n_units,)
        Critical value that defined the tail (required for ``'wcm'``).
    wcm_weight : scalar
        Exponent for the weighted cluster mass.

    Returns
    -------
    values : array  (n,)
        Statistic for cluster ``i + 1`` at index ``i``.
    """
    handler = HANDLERS[ClusterStatistic.coerce(kind)]
    if n == 0:
        return np.empty(0)
    cids = np.arange(1, n + 1)
    return np.asarray(handler(stat_map, cmap, cids, tail, threshold, wcm_weight), np.float64)
