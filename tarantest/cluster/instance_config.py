"""
Rendering of the per-node Tarantool instance file.
"""

from ..config import ClusterConfig
from ..templating import render
from .quorum import calculate_quorum

TEMPLATE_NAME = "instance.lua.j2"
INSTANCE_PATH = "/etc/tarantool/instances.enabled/jepsen.lua"


def render_instance_config(config: ClusterConfig, node: str) -> str:
    """
    Render the instance file a node boots from.

    A single node gets a standalone box.cfg and promotes itself; a cluster
    gets full-mesh replication, candidate election mode and a synchronous
    quorum derived from the node count.
    """
    if node not in config.nodes:
        raise ValueError(f"{node} is not a member of {config.nodes}")

    return render(
        TEMPLATE_NAME,
        node=node,
        single_mode=config.is_single_mode,
        port=config.port,
        user=config.user,
        password=config.password,
        data_dir=config.data_dir,
        mvcc=config.mvcc,
        quorum=calculate_quorum(len(config.nodes)),
        replication=config.replica_set(),
    )
