"""
Leader discovery for clusters running Raft-based election.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed, Future, TimeoutError
from typing import Any, Callable, Dict, List, Optional, Set

from ..config import ClusterConfig
from ..errors import ClusterUnavailableError
from ..network.client import StoreClient

# Stored routine every instance exposes; returns the leader's host or nil.
LEADER_ROUTINE = "_LEADER"


class PrimaryLocator:
    """
    Finds the node(s) currently acting as leader.

    A single-node deployment has no election, so its only node is returned
    without touching the network. Otherwise every node is asked in parallel
    who it believes the leader is; answers are collected into a set, so
    duplicate or stale answers collapse and disagreement during a partition
    shows up as more than one primary. An empty set means no node currently
    knows a leader.

    Nothing is cached: each call reflects the topology at that moment.
    """

    def __init__(self, config: ClusterConfig,
                 query_leader: Optional[Callable[[str], Optional[str]]] = None,
                 connection_factory: Optional[Callable[..., Any]] = None):
        self.config = config
        self._query_leader = query_leader or self._ask_node
        self._connection_factory = connection_factory

    def locate(self) -> Set[str]:
        """Return the set of nodes reported as leader right now."""
        nodes = list(self.config.nodes)
        if len(nodes) == 1:
            return set(nodes)
        if not nodes:
            return set()

        leaders: Set[str] = set()
        executor = ThreadPoolExecutor(max_workers=len(nodes))
        futures: Dict[Future, str] = {
            executor.submit(self._query_leader, node): node for node in nodes
        }

        try:
            for future in as_completed(futures.keys(), timeout=self.config.leader_timeout):
                node = futures[future]
                try:
                    leader = future.result()
                except Exception as e:
                    print(f"[{node}] Leader lookup failed: {e}")
                    continue
                if leader:
                    leaders.add(leader)
        except TimeoutError:
            pending = [futures[f] for f in futures if not f.done()]
            print(f"Leader lookup timed out waiting for {pending}")
        finally:
            executor.shutdown(wait=False)

        return leaders

    def primary(self) -> Optional[str]:
        """One deterministic primary, or None if none is reachable."""
        leaders = self.locate()
        if not leaders:
            return None
        return sorted(leaders)[0]

    def primaries(self) -> List[str]:
        """Current primaries in a stable order."""
        return sorted(self.locate())

    def wait_for_primary(self, timeout: Optional[float] = None,
                         interval: Optional[float] = None) -> str:
        """
        Poll until some node reports a leader.

        Raises:
            ClusterUnavailableError: If no primary shows up within timeout
        """
        timeout = self.config.primary_wait_timeout if timeout is None else timeout
        interval = self.config.primary_poll_interval if interval is None else interval
        deadline = time.monotonic() + timeout

        while True:
            leader = self.primary()
            if leader is not None:
                return leader
            if time.monotonic() >= deadline:
                raise ClusterUnavailableError(
                    f"No reachable primary among {self.config.nodes} after {timeout}s"
                )
            time.sleep(interval)

    def _ask_node(self, node: str) -> Optional[str]:
        """Ask a single node which host it believes is the leader."""
        client = StoreClient(
            node,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            connect_timeout=self.config.connect_timeout,
            request_timeout=self.config.leader_timeout,
            connection_factory=self._connection_factory
        )
        client.connect()
        try:
            leader = client.call(LEADER_ROUTINE)
        finally:
            try:
                client.disconnect()
            except Exception as e:
                print(f"[{node}] Error closing leader lookup connection: {e}")
        return leader or None
