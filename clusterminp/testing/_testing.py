# Author: clusterminp developers
"Utilities for testing"
import numpy as np
from numpy.testing import assert_array_equal


def assert_prob_valid(prob, n_rand=None):
    """Assert that ``prob`` is an array of p-values in (0, 1]

    Parameters
    ----------
    prob : array
        P-values.
    n_rand : int
        Number of randomizations; if provided, also assert that every p-value
        is at least ``1 / (n_rand + 1)``.
    """
    prob = np.asarray(prob)
    assert np.all(prob > 0), f"p-values <= 0: {prob[prob <= 0]}"
    assert np.all(prob <= 1), f"p-values > 1: {prob[prob > 1]}"
    if n_rand is not None:
        assert prob.min() >= 1 / (n_rand + 1) - 1e-12


def assert_label_map_valid(cmap, n):
    "Assert that cluster labels are consecutive integers 1 ... n"
    labels = np.unique(cmap)
    assert_array_equal(labels[labels > 0], np.arange(1, n + 1))


def planted_clusters(dim, clusters, background=0.):
    """Statistic map with constant background and planted clusters

    Parameters
    ----------
    dim : sequence of int
        Grid shape.
    clusters : dict
        ``{index: value}`` for the flat C-order index of each planted unit.
    background : scalar
        Value outside the planted units.

    Returns
    -------
    statobs : array  (prod(dim),)
        Flat statistic map.
    """
    statobs = np.full(int(np.prod(dim)), background, np.float64)
    for index, value in clusters.items():
        statobs[index] = value
    return statobs


def random_null(n_units, n_rand, scale=1., bound=None, seed=0):
    """Randomized statistic maps from a normal distribution

    Parameters
    ----------
    n_units, n_rand : int
        Shape of the result.
    scale : scalar
        Standard deviation.
    bound : scalar
        Clip values to ``[-bound, bound]``.
    seed : int
        Seed for the random state.

    Returns
    -------
    statrnd : array  (n_units, n_rand)
        Randomized maps, one per column.
    """
    rng = np.random.RandomState(seed)
    statrnd = rng.normal(0, scale, (n_units, n_rand))
    if bound is not None:
        np.clip(statrnd, -bound, bound, statrnd)
    return statrnd
