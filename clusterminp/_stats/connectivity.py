# Author: clusterminp developers
"""Connected-component labeling on grids and graphs"""
from functools import reduce
import operator

import numpy as np
from scipy import ndimage, sparse
from scipy.ndimage import generate_binary_structure
from scipy.sparse.csgraph import connected_components

from .._exceptions import ConfigurationError, DimensionMismatchError, UnknownOption


# connectivity criterion -> connectivity rank for generate_binary_structure
GRID_CONNECTIVITY = {
    2: {4: 1, 8: 2},
    3: {6: 1, 18: 2, 26: 3},
}


def check_dim(dim):
    "Normalize and validate the grid shape"
    if dim is None:
        raise ConfigurationError("dim needs to be defined and not empty")
    dim = tuple(int(d) for d in np.atleast_1d(dim))
    if not dim:
        raise ConfigurationError("dim needs to be defined and not empty")
    elif any(d < 1 for d in dim):
        raise ConfigurationError(f"dim={dim}: all axes need at least one element")
    return dim


def grid_structure(ndim, clusterconn):
    """Structuring element for a grid connectivity criterion

    Parameters
    ----------
    ndim : 2 | 3
        Number of grid dimensions.
    clusterconn : int
        Connectivity criterion; 2D: 4 (edge) or 8 (corner); 3D: 6 (surface),
        18 (edge) or 26 (corner).

    Returns
    -------
    struct : array of bool
        Structuring element for :func:`scipy.ndimage.label`.
    """
    if ndim not in GRID_CONNECTIVITY:
        raise ConfigurationError(f"dim with {ndim} axes: grid clustering is only supported for 2- and 3-dimensional data")
    options = GRID_CONNECTIVITY[ndim]
    if clusterconn not in options:
        raise UnknownOption('clusterconn', clusterconn, options)
    return generate_binary_structure(ndim, options[clusterconn])


def label_grid(bin_map, struct, out=None):
    """Label connected regions in a boolean grid

    Parameters
    ----------
    bin_map : array of bool
        Grid-shaped indicator.
    struct : array of bool
        Structuring element (see :func:`grid_structure`).
    out : array of uint32
        Buffer for the label map (same shape as ``bin_map``).

    Returns
    -------
    cmap : array of uint32
        Clusters labeled consecutively starting at 1; 0 where ``bin_map`` is
        False.
    n : int
        Number of clusters.
    """
    if out is None:
        out = np.empty(bin_map.shape, np.uint32)
    n = ndimage.label(bin_map, struct, out)
    return out, int(n)


def label_graph(bin_map, adjacency, out=None):
    """Label connected sets of active nodes in a graph

    Parameters
    ----------
    bin_map : array of bool  (n_nodes,)
        Active nodes.
    adjacency : scipy.sparse.csr_matrix  (n_nodes, n_nodes)
        Boolean adjacency; only edges between two active nodes connect them.
    out : array of uint32  (n_nodes,)
        Buffer for the label map.

    Returns
    -------
    cmap : array of uint32
        Clusters labeled consecutively starting at 1; 0 for inactive nodes.
    n : int
        Number of clusters.
    """
    if out is None:
        out = np.zeros(len(bin_map), np.uint32)
    else:
        out.fill(0)
    idx = np.flatnonzero(bin_map)
    if len(idx) == 0:
        return out, 0
    sub_graph = adjacency[idx][:, idx]
    n, components = connected_components(sub_graph, directed=False)
    out[idx] = components + 1
    return out, int(n)


def label_clusters(onoff, dim, clusterconn, order='C'):
    """Label clusters in a flat or grid-shaped indicator

    Parameters
    ----------
    onoff : array of bool
        Indicator with ``prod(dim)`` elements.
    dim : sequence of int
        Grid shape (2 or 3 axes).
    clusterconn : int
        Connectivity criterion (see :func:`grid_structure`).
    order : 'C' | 'F'
        Order in which a flat ``onoff`` is folded into ``dim``.

    Returns
    -------
    cmap : array of uint32, shape ``dim``
        Labeled clusters.
    n : int
        Number of clusters.
    """
    dim = check_dim(dim)
    struct = grid_structure(len(dim), clusterconn)
    bin_map = np.asarray(onoff, bool)
    if bin_map.size != reduce(operator.mul, dim):
        raise DimensionMismatchError(f"onoff with {bin_map.size} elements for dim={dim}")
    return label_grid(bin_map.reshape(dim, order=order), struct)


class Connectivity:
    """Neighborhood relation between the units of a statistic map

    Parameters
    ----------
    dim : sequence of int
        Grid shape.
    n_units : int
        Number of units (voxels, vertices) in the statistic maps.
    inside : array of bool
        Mask of valid positions, either with one entry per unit (units outside
        are excluded from clustering) or with one entry per grid position and
        ``n_units`` True entries (the units are the inside grid positions).
    clusterconn : int
        Grid connectivity criterion (ignored when ``adjacency`` is provided).
    adjacency : sparse matrix of bool  (n_units, n_units)
        Explicit adjacency for topologies that can not be reshaped into a grid
        (e.g., cortical surface meshes).
    order : 'C' | 'F'
        Order in which the flat grid positions are folded into ``dim``.

    Notes
    -----
    Grid positions that are not units are present as background while
    labeling, so that geometric adjacency is preserved.
    """
    __slots__ = ('dim', 'n_units', 'struct', 'adjacency', 'grid_index', 'mask')

    def __init__(self, dim, n_units, inside=None, clusterconn=None, adjacency=None, order='C'):
        dim = check_dim(dim)
        n_grid = reduce(operator.mul, dim)
        if inside is None:
            mask = None
            grid_index = None
        else:
            inside = np.asarray(inside, bool).ravel()
            if len(inside) == n_units:
                mask = None if inside.all() else inside
                grid_index = None
            elif len(inside) == n_grid and np.count_nonzero(inside) == n_units:
                mask = None
                grid_index = np.flatnonzero(inside)
            else:
                raise DimensionMismatchError(f"inside with {len(inside)} entries ({np.count_nonzero(inside)} True) for {n_units} units and dim={dim}")

        if adjacency is None:
            struct = grid_structure(len(dim), clusterconn)
            if grid_index is None:
                if n_units != n_grid:
                    raise DimensionMismatchError(f"{n_units} units for dim={dim}; provide inside to place units on the grid")
                grid_index = np.arange(n_grid)
            if order != 'C':
                # work on C-contiguous grids internally
                grid_index = np.ravel_multi_index(np.unravel_index(grid_index, dim, order=order), dim)
        else:
            struct = None
            grid_index = None
            adjacency = sparse.csr_matrix(adjacency, dtype=bool)
            if adjacency.shape != (n_units, n_units):
                raise DimensionMismatchError(f"connectivity with shape {adjacency.shape} for {n_units} units")

        self.dim = dim
        self.n_units = n_units
        self.struct = struct
        self.adjacency = adjacency
        self.grid_index = grid_index
        self.mask = mask

    def __getstate__(self):
        return {k: getattr(self, k) for k in self.__slots__}

    def __setstate__(self, state):
        for k, v in state.items():
            setattr(self, k, v)

    def __repr__(self):
        if self.adjacency is None:
            desc = f"grid {'x'.join(map(str, self.dim))}, {np.count_nonzero(self.struct) - 1}-connectivity"
        else:
            desc = f"graph with {self.adjacency.nnz} edges"
        return f"<Connectivity: {self.n_units} units, {desc}>"

    @property
    def is_grid(self):
        return self.adjacency is None

    def label(self, bin_map):
        """Label clusters of active units

        Parameters
        ----------
        bin_map : array of bool  (n_units,)
            Active units.

        Returns
        -------
        cmap : array of uint32  (n_units,)
            Clusters labeled 1 ... n, 0 for units not in any cluster.
        n : int
            Number of clusters.
        """
        if self.mask is not None:
            bin_map = np.logical_and(bin_map, self.mask)
        if self.adjacency is not None:
            return label_graph(bin_map, self.adjacency)
        grid = np.zeros(reduce(operator.mul, self.dim), bool)
        grid[self.grid_index] = bin_map
        cmap, n = label_grid(grid.reshape(self.dim), self.struct)
        return cmap.ravel()[self.grid_index], n
