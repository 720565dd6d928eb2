# Author: clusterminp developers
import pickle

import numpy as np
from numpy.testing import assert_array_equal
import pytest
from scipy import sparse

from clusterminp import Connectivity, label_clusters, label_graph, label_grid
from clusterminp._exceptions import ConfigurationError, DimensionMismatchError, UnknownOption
from clusterminp._stats.connectivity import check_dim, grid_structure
from clusterminp.testing import assert_label_map_valid


def chain_adjacency(n):
    "Adjacency of ``n`` nodes connected in a line"
    edges = np.ones(n - 1)
    return sparse.diags([edges, edges], [-1, 1], format='csr').astype(bool)


def test_check_dim():
    assert check_dim([1, 10]) == (1, 10)
    assert check_dim(np.array([2, 3, 4])) == (2, 3, 4)
    with pytest.raises(ConfigurationError):
        check_dim(None)
    with pytest.raises(ConfigurationError):
        check_dim([])
    with pytest.raises(ConfigurationError):
        check_dim([3, 0])


def test_grid_structure():
    for ndim, clusterconn in ((2, 4), (2, 8), (3, 6), (3, 18), (3, 26)):
        struct = grid_structure(ndim, clusterconn)
        assert struct.ndim == ndim
        # number of neighbors plus the center element
        assert np.count_nonzero(struct) == clusterconn + 1
    with pytest.raises(UnknownOption):
        grid_structure(2, 6)
    with pytest.raises(UnknownOption):
        grid_structure(3, 8)
    with pytest.raises(ConfigurationError):
        grid_structure(1, 2)


def test_label_clusters():
    "Test label_clusters() on 2-d and 3-d grids"
    # diagonal neighbors
    onoff = np.array([[1, 0], [0, 1]], bool).ravel()
    cmap, n = label_clusters(onoff, (2, 2), 4)
    assert n == 2
    assert_label_map_valid(cmap, n)
    cmap, n = label_clusters(onoff, (2, 2), 8)
    assert n == 1
    assert_array_equal(cmap, [[1, 0], [0, 1]])

    # 3d: edge and corner neighbors
    onoff = np.zeros((2, 2, 2), bool)
    onoff[0, 0, 0] = onoff[1, 1, 0] = True
    assert [label_clusters(onoff, (2, 2, 2), c)[1] for c in (6, 18, 26)] == [2, 1, 1]
    onoff[1, 1, 0] = False
    onoff[1, 1, 1] = True
    assert [label_clusters(onoff, (2, 2, 2), c)[1] for c in (6, 18, 26)] == [2, 2, 1]

    # empty
    cmap, n = label_clusters(np.zeros(6, bool), (2, 3), 4)
    assert n == 0
    assert not cmap.any()

    # labels are consecutive
    rng = np.random.RandomState(0)
    onoff = rng.uniform(size=(10, 10, 10)) > 0.7
    for clusterconn in (6, 18, 26):
        cmap, n = label_clusters(onoff.ravel(), (10, 10, 10), clusterconn)
        assert n > 0
        assert_label_map_valid(cmap, n)
        assert_array_equal(cmap > 0, onoff)

    # folding order
    onoff = rng.uniform(size=(3, 4)) > 0.5
    cmap_c, n_c = label_clusters(onoff.ravel(order='F'), (3, 4), 4, 'F')
    cmap, n = label_clusters(onoff.ravel(), (3, 4), 4)
    assert n_c == n
    assert_array_equal(cmap_c, cmap)

    with pytest.raises(DimensionMismatchError):
        label_clusters(np.ones(5, bool), (2, 3), 4)


def test_label_grid():
    struct = grid_structure(2, 4)
    bin_map = np.array([[1, 1, 0, 1], [0, 0, 0, 1]], bool)
    out = np.empty(bin_map.shape, np.uint32)
    cmap, n = label_grid(bin_map, struct, out)
    assert cmap is out
    assert n == 2
    assert_array_equal(cmap, [[1, 1, 0, 2], [0, 0, 0, 2]])
    # single cluster and no cluster
    bin_map = np.array([[1, 1, 0, 0], [0, 1, 0, 0]], bool)
    cmap, n = label_grid(bin_map, struct, out)
    assert n == 1
    assert_array_equal(cmap, bin_map)
    cmap, n = label_grid(np.zeros((2, 4), bool), struct, out)
    assert n == 0
    assert not cmap.any()


def test_label_graph():
    adjacency = chain_adjacency(6)
    cmap, n = label_graph(np.array([1, 1, 0, 1, 1, 1], bool), adjacency)
    assert n == 2
    assert_array_equal(cmap, [1, 1, 0, 2, 2, 2])
    cmap, n = label_graph(np.array([1, 0, 1, 0, 1, 0], bool), adjacency)
    assert n == 3
    assert_label_map_valid(cmap, n)
    # edges through inactive nodes do not connect
    cmap, n = label_graph(np.zeros(6, bool), adjacency)
    assert n == 0
    assert not cmap.any()
    # directed edges are treated as undirected
    adjacency = sparse.csr_matrix(([True, True], ([0, 2], [1, 1])), shape=(3, 3))
    cmap, n = label_graph(np.ones(3, bool), adjacency)
    assert n == 1
    assert_array_equal(cmap, [1, 1, 1])


def test_connectivity():
    "Test Connectivity"
    # plain grid
    connectivity = Connectivity((1, 10), 10, clusterconn=8)
    assert connectivity.is_grid
    assert repr(connectivity) == "<Connectivity: 10 units, grid 1x10, 8-connectivity>"
    bin_map = np.array([0, 0, 1, 1, 1, 0, 0, 1, 1, 0], bool)
    cmap, n = connectivity.label(bin_map)
    assert n == 2
    assert_array_equal(cmap, [0, 0, 1, 1, 1, 0, 0, 2, 2, 0])

    # pickling
    connectivity_ = pickle.loads(pickle.dumps(connectivity))
    assert_array_equal(connectivity_.label(bin_map)[0], cmap)

    # per-unit mask excludes units from clusters
    inside = np.array([1, 1, 0, 1, 1], bool)
    connectivity = Connectivity((1, 5), 5, inside, 8)
    cmap, n = connectivity.label(np.ones(5, bool))
    assert n == 2
    assert_array_equal(cmap, [1, 1, 0, 2, 2])

    # grid mask places units on the grid
    connectivity = Connectivity((1, 5), 4, inside, 8)
    cmap, n = connectivity.label(np.ones(4, bool))
    assert n == 2
    assert_array_equal(cmap, [1, 1, 2, 2])

    # grid mask in Fortran order
    inside = np.zeros((2, 3), bool)
    inside[0, 0] = inside[1, 0] = inside[1, 2] = True
    connectivity = Connectivity((2, 3), 3, inside.ravel(order='F'), 4, order='F')
    cmap, n = connectivity.label(np.ones(3, bool))
    assert n == 2
    assert_array_equal(cmap, [1, 1, 2])

    # graph
    connectivity = Connectivity((1, 6), 6, adjacency=chain_adjacency(6))
    assert not connectivity.is_grid
    assert repr(connectivity) == "<Connectivity: 6 units, graph with 10 edges>"
    cmap, n = connectivity.label(np.array([1, 1, 0, 1, 1, 1], bool))
    assert n == 2
    assert_array_equal(cmap, [1, 1, 0, 2, 2, 2])

    # graph and grid agree
    grid = Connectivity((1, 10), 10, clusterconn=8)
    graph = Connectivity((1, 10), 10, adjacency=chain_adjacency(10))
    rng = np.random.RandomState(0)
    for _ in range(10):
        bin_map = rng.uniform(size=10) > 0.5
        assert_array_equal(graph.label(bin_map)[0], grid.label(bin_map)[0])

    # errors
    with pytest.raises(DimensionMismatchError):
        Connectivity((1, 10), 9, clusterconn=8)
    with pytest.raises(DimensionMismatchError):
        Connectivity((1, 10), 10, np.ones(7, bool), 8)
    with pytest.raises(DimensionMismatchError):
        Connectivity((1, 6), 5, adjacency=chain_adjacency(6))
    with pytest.raises(UnknownOption):
        Connectivity((1, 10), 10, clusterconn=6)
