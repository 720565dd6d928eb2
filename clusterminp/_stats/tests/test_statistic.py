# Author: clusterminp developers
import numpy as np
from numpy.testing import assert_allclose, assert_array_equal
import pytest

from clusterminp import ClusterStatistic, cluster_statistics
from clusterminp._exceptions import ConfigurationError, UnknownOption


STAT = np.array([0, 3, 4, 3, 0, 0, 5, 6, 0, 0], np.float64)
CMAP = np.array([0, 1, 1, 1, 0, 0, 2, 2, 0, 0], np.uint32)


def test_cluster_statistic_coerce():
    assert ClusterStatistic.coerce('maxsum') is ClusterStatistic.MAXSUM
    assert ClusterStatistic.coerce(ClusterStatistic.WCM) is ClusterStatistic.WCM
    with pytest.raises(UnknownOption) as error:
        ClusterStatistic.coerce('mean')
    assert str(error.value) == "clusterstatistic='mean': needs to be 'max', 'maxsize', 'maxsum' or 'wcm'"


def test_cluster_statistics():
    "Test cluster_statistics() for both tails"
    assert_array_equal(cluster_statistics(STAT, CMAP, 2, 'max', 1), [4, 6])
    assert_array_equal(cluster_statistics(STAT, CMAP, 2, 'maxsize', 1), [3, 2])
    assert_array_equal(cluster_statistics(STAT, CMAP, 2, 'maxsum', 1), [10, 11])
    assert_array_equal(cluster_statistics(STAT, CMAP, 2, 'wcm', 1, 2), [4, 7])
    assert_array_equal(cluster_statistics(STAT, CMAP, 2, 'wcm', 1, 2, 2), [6, 25])

    # negative tail: more extreme is more negative
    assert_array_equal(cluster_statistics(-STAT, CMAP, 2, 'max', -1), [-4, -6])
    assert_array_equal(cluster_statistics(-STAT, CMAP, 2, 'maxsize', -1), [-3, -2])
    assert_array_equal(cluster_statistics(-STAT, CMAP, 2, 'maxsum', -1), [-10, -11])
    assert_array_equal(cluster_statistics(-STAT, CMAP, 2, 'wcm', -1, -2), [-4, -7])

    # no clusters
    assert cluster_statistics(STAT, np.zeros(10, np.uint32), 0, 'maxsum', 1).shape == (0,)


def test_weighted_cluster_mass():
    "With weight 1, WCM is the cluster sum minus the threshold for each unit"
    rng = np.random.RandomState(0)
    stat_map = rng.normal(0, 1, 50)
    threshold = 0.5
    cmap = np.zeros(50, np.uint32)
    cmap[stat_map >= threshold] = rng.randint(1, 6, np.count_nonzero(stat_map >= threshold))
    n = cmap.max()
    wcm = cluster_statistics(stat_map, cmap, n, 'wcm', 1, threshold)
    maxsum = cluster_statistics(stat_map, cmap, n, 'maxsum', 1)
    size = cluster_statistics(stat_map, cmap, n, 'maxsize', 1)
    assert_allclose(wcm, maxsum - threshold * size)

    # per-unit threshold
    thresholds = np.full(50, threshold)
    assert_allclose(cluster_statistics(stat_map, cmap, n, 'wcm', 1, thresholds), wcm)

    # negative tail
    wcm = cluster_statistics(-stat_map, cmap, n, 'wcm', -1, -threshold)
    maxsum = cluster_statistics(-stat_map, cmap, n, 'maxsum', -1)
    size = cluster_statistics(-stat_map, cmap, n, 'maxsize', -1)
    assert_allclose(wcm, maxsum - threshold * size)

    with pytest.raises(ConfigurationError):
        cluster_statistics(STAT, CMAP, 2, 'wcm', 1)
