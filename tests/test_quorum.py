"""
Synchronous quorum tests
"""

import pytest

from tarantest.cluster import calculate_quorum


def test_quorum_rounds_half_up():
    """n / 2 rounded half up."""
    expected = {1: 1, 2: 1, 3: 2, 4: 2, 5: 3, 6: 3, 7: 4}
    for nodes, quorum in expected.items():
        assert calculate_quorum(nodes) == quorum, f"quorum({nodes}) should be {quorum}"

    print("[OK] Quorum rounding test passed")


def test_quorum_needs_a_node():
    """An empty cluster has no quorum."""
    with pytest.raises(ValueError):
        calculate_quorum(0)
