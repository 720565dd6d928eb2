# Author: clusterminp developers
"""Cluster-based permutation tests for statistic maps on grids and surfaces.

Tests combine multiple cluster-defining thresholds and connectivity criteria
with the min(p) method (Geerligs & Maris, 2021).
"""
from ._config import configure
from ._exceptions import ConfigurationError, DimensionMismatchError
from ._stats.clusterstat import Cluster, ClusterStatConfig, ClusterStatResult, clusterstat
from ._stats.connectivity import Connectivity, label_clusters, label_graph, label_grid
from ._stats.minp import MinPJob, MinPResult, clusterstatminp, run_minp
from ._stats.permutation import sign_flip_t_maps, sign_flips
from ._stats.statistic import ClusterStatistic, cluster_statistics
from ._stats.threshold import ClusterThreshold, critical_values
from ._utils import set_log_level


__version__ = '0.1.0'
