"""
Store client and connection manager for talking to cluster nodes.
"""

import socket
import threading
from typing import Any, Callable, List, Optional, TypeVar

import tarantool
from tarantool.error import DatabaseError, NetworkError
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import ClusterConfig, RetryConfig
from ..errors import AmbiguousReplicationError, NodeConnectionError

T = TypeVar("T")

# Synchronous replication gave up on a request that may still commit.
AMBIGUOUS_REPLICATION_MESSAGES = (
    "Quorum collection for a synchronous transaction is timed out",
    "A rollback for a synchronous transaction is received",
)


def _rows(response: Any) -> List:
    """Unwrap a driver response into a plain list."""
    data = getattr(response, "data", response)
    if data is None:
        return []
    return list(data)


class StoreClient:
    """
    Connection to a single node.

    Bound to exactly one node and not meant to be shared between threads.
    Every request is bounded by request_timeout.
    """

    def __init__(self, node: str, port: int = 3301,
                 user: Optional[str] = None, password: Optional[str] = None,
                 connect_timeout: float = 5.0, request_timeout: float = 10.0,
                 connection_factory: Optional[Callable[..., Any]] = None):
        self.node = node
        self.port = port
        self.user = user
        self.password = password
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self._connection_factory = connection_factory or tarantool.Connection

        self._conn: Any = None
        self._connected = False
        self._lock = threading.Lock()

    def connect(self):
        """Connect to the node, dropping any previous connection first."""
        if self._conn is not None:
            try:
                self.disconnect()
            except Exception as e:
                print(f"[{self.node}] Error dropping stale connection: {e}")

        try:
            self._conn = self._connection_factory(
                self.node, self.port,
                user=self.user,
                password=self.password,
                socket_timeout=self.request_timeout,
                connection_timeout=self.connect_timeout,
                reconnect_max_attempts=0,
                connect_now=True
            )
            self._connected = True
        except (NetworkError, OSError) as e:
            self._conn = None
            self._connected = False
            raise NodeConnectionError(
                self.node, f"Couldn't initiate connection to {self.node}:{self.port}: {e}"
            ) from e

    def disconnect(self):
        """Close the underlying connection."""
        with self._lock:
            conn, self._conn = self._conn, None
            self._connected = False
        if conn is not None:
            conn.close()

    def is_connected(self) -> bool:
        """Check if connected."""
        return self._connected

    def execute(self, sql: str, params: Optional[List[Any]] = None) -> List:
        """Run an SQL statement and return its rows."""
        if params:
            return _rows(self._request("execute", sql, list(params)))
        return _rows(self._request("execute", sql))

    def call(self, routine: str, *args) -> Any:
        """Call a stored routine and return its first result."""
        rows = _rows(self._request("call", routine, *args))
        return rows[0] if rows else None

    def call_all(self, routine: str, *args) -> List:
        """Call a stored routine and return every result."""
        return _rows(self._request("call", routine, *args))

    def eval(self, lua: str, *args) -> List:
        """Evaluate a Lua chunk and return its results."""
        return _rows(self._request("eval", lua, *args))

    def _request(self, method: str, *args) -> Any:
        if not self._connected:
            self.connect()

        with self._lock:
            try:
                return getattr(self._conn, method)(*args)
            except (NetworkError, socket.timeout, OSError) as e:
                self._connected = False
                raise NodeConnectionError(
                    self.node, f"Connection lost to {self.node}: {e}",
                    request_sent=True
                ) from e
            except DatabaseError as e:
                message = getattr(e, "message", None) or str(e)
                if any(m in message for m in AMBIGUOUS_REPLICATION_MESSAGES):
                    raise AmbiguousReplicationError(message) from e
                raise

    def __repr__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"StoreClient({self.node}:{self.port}, {state})"


class ConnectionManager:
    """
    Opens, retries and releases node connections for one client.

    Features:
    - One StoreClient per open() call, tracked until released
    - Bounded retry with exponential backoff for transient failures
    - Release exactly once; release failures are logged, never raised
    """

    def __init__(self, config: ClusterConfig,
                 connection_factory: Optional[Callable[..., Any]] = None):
        self.config = config
        self.retry_config: RetryConfig = config.retry
        self._connection_factory = connection_factory
        self._opened: List[StoreClient] = []
        self._lock = threading.Lock()

    def open(self, node: str) -> StoreClient:
        """
        Open a connection to a node.

        Raises:
            NodeConnectionError: If the node is unreachable or rejects auth
        """
        client = StoreClient(
            node,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            connect_timeout=self.config.connect_timeout,
            request_timeout=self.config.request_timeout,
            connection_factory=self._connection_factory
        )
        client.connect()

        with self._lock:
            self._opened.append(client)
        return client

    def with_failure_retry(self, conn: StoreClient,
                           body: Callable[[StoreClient], T]) -> T:
        """
        Run body(conn), retrying on transient connection failures.

        Only pass idempotent bodies here. Anything that could double-apply
        a delta or a conditional write must run once and surface INFO.

        Raises:
            NodeConnectionError: When retries are exhausted
        """
        retry_config = self.retry_config

        def before_sleep(retry_state):
            error = retry_state.outcome.exception()
            print(f"[{conn.node}] Attempt {retry_state.attempt_number}/"
                  f"{retry_config.max_attempts} failed, retrying: {error}")

        for attempt in Retrying(
            stop=stop_after_attempt(retry_config.max_attempts),
            wait=wait_exponential(
                multiplier=retry_config.base_delay,
                max=retry_config.max_delay,
                exp_base=retry_config.exponential_base
            ),
            retry=retry_if_exception_type(NodeConnectionError),
            before_sleep=before_sleep,
            reraise=True
        ):
            with attempt:
                if not conn.is_connected():
                    conn.connect()
                return body(conn)

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover

    def release(self, conn: Optional[StoreClient]):
        """Close a connection opened by this manager. Safe to call twice."""
        if conn is None:
            return

        with self._lock:
            if conn not in self._opened:
                return
            self._opened.remove(conn)

        try:
            conn.disconnect()
        except Exception as e:
            print(f"[{conn.node}] Error closing connection: {e}")

    def release_all(self):
        """Close every connection still open."""
        with self._lock:
            opened = list(self._opened)
        for conn in opened:
            self.release(conn)

    def open_count(self) -> int:
        """Number of connections not yet released."""
        with self._lock:
            return len(self._opened)
