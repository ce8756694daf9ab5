"""
Synchronous replication quorum.
"""

import math


def calculate_quorum(node_count: int) -> int:
    """
    Quorum for replication_synchro_quorum: node_count / 2 rounded half up.

    1 -> 1, 2 -> 1, 3 -> 2, 4 -> 2, 5 -> 3. Computed once when the topology
    is fixed and never recomputed when nodes fail.
    """
    if node_count < 1:
        raise ValueError("node_count must be >= 1")
    return int(math.floor(node_count / 2 + 0.5))
