# Author: clusterminp developers
import pytest

pytest.register_assert_rewrite('clusterminp.testing._testing')

from ._testing import (
    assert_label_map_valid, assert_prob_valid,
    planted_clusters, random_null,
)
