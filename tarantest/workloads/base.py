"""
Operation client contract shared by every workload.
"""

import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple

from ..cluster.primary import PrimaryLocator
from ..config import ClusterConfig
from ..errors import (
    ApplicationRejection, ClusterUnavailableError, SetupError, TeardownError
)
from ..network.client import ConnectionManager, StoreClient
from ..operation import Operation, OpType
from ..outcome import complete_with_error


class ClientState(Enum):
    """Lifecycle of an operation client."""
    CREATED = "CREATED"
    OPENED = "OPENED"
    SET_UP = "SET_UP"
    TORN_DOWN = "TORN_DOWN"
    CLOSED = "CLOSED"


class SchemaFlag:
    """
    Atomic boolean shared by every client of one workload.

    Starts False when the workload is built, is flipped exactly once through
    compare_and_set, and is read by every worker.
    """

    def __init__(self, value: bool = False):
        self._value = value
        self._lock = threading.Lock()

    def compare_and_set(self, expected: bool, new: bool) -> bool:
        """Set to new iff currently expected. Returns True if it was set."""
        with self._lock:
            if self._value != expected:
                return False
            self._value = new
            return True

    def get(self) -> bool:
        with self._lock:
            return self._value

    def reset(self):
        with self._lock:
            self._value = False


# (schema, teardown) flag pair per workload name, shared by every client
# built in this process.
_workload_flags: Dict[str, Tuple[SchemaFlag, SchemaFlag]] = {}
_workload_flags_lock = threading.Lock()


def workload_flags(name: str) -> Tuple[SchemaFlag, SchemaFlag]:
    """Get the schema and teardown flags for a workload, creating them once."""
    with _workload_flags_lock:
        flags = _workload_flags.get(name)
        if flags is None:
            flags = (SchemaFlag(), SchemaFlag())
            _workload_flags[name] = flags
        return flags


def reset_workload_flags():
    """Forget every workload's flags, as if the process had just started."""
    with _workload_flags_lock:
        _workload_flags.clear()


class OperationClient(ABC):
    """
    A worker's handle on the store.

    Lifecycle: open -> setup -> invoke* -> teardown -> close. setup creates
    the schema once per workload no matter how many clients call it;
    teardown drops it once. Clients built without explicit flags share the
    pair workload_flags(name) returns. teardown and close never raise.

    Subclasses implement create_schema, drop_schema and apply. apply may
    raise; invoke turns the error into FAIL or INFO.
    """

    # Functions that can't mutate the store.
    READ_ONLY: FrozenSet[str] = frozenset({"read"})

    name = "client"

    def __init__(self, config: ClusterConfig,
                 schema_flag: Optional[SchemaFlag] = None,
                 teardown_flag: Optional[SchemaFlag] = None,
                 locator: Optional[PrimaryLocator] = None,
                 connection_factory: Optional[Callable[..., Any]] = None):
        self.config = config
        shared_schema, shared_teardown = workload_flags(self.name)
        self.schema_flag = schema_flag if schema_flag is not None else shared_schema
        self.teardown_flag = teardown_flag if teardown_flag is not None else shared_teardown
        self.locator = locator or PrimaryLocator(config, connection_factory=connection_factory)
        self.connections = ConnectionManager(config, connection_factory)

        self.node: Optional[str] = None
        self.conn: Optional[StoreClient] = None
        self.state = ClientState.CREATED
        self._node_conns: Dict[str, StoreClient] = {}
        self._lock = threading.Lock()

    # ============ Lifecycle ============

    def open(self, node: str) -> 'OperationClient':
        """Connect to the worker's node."""
        self.conn = self.connections.open(node)
        self.node = node
        self._node_conns[node] = self.conn
        self.state = ClientState.OPENED
        return self

    def setup(self):
        """
        Wait for the cluster to elect a leader, then create the schema if no
        other client has.

        Raises:
            ClusterUnavailableError: If no primary becomes reachable
        """
        self._require(ClientState.OPENED)
        print(f"[{self.node}] Setting up {self.name} client")

        if self.config.settle_delay > 0:
            time.sleep(self.config.settle_delay)
        primary = self.locator.wait_for_primary()

        if self.schema_flag.compare_and_set(False, True):
            try:
                self._create_schema(primary)
            except SetupError as e:
                print(f"[{self.node}] {e}")

        self.state = ClientState.SET_UP

    def invoke(self, op: Operation) -> Operation:
        """Execute one operation and classify its outcome."""
        if self.state not in (ClientState.OPENED, ClientState.SET_UP):
            raise RuntimeError(f"cannot invoke in state {self.state.value}")
        if op.type != OpType.INVOKE:
            raise ValueError(f"expected an invocation, got {op.type.value}")

        try:
            return self.apply(op)
        except Exception as e:
            completed = complete_with_error(op, e, read_only=op.f in self.READ_ONLY)
            print(f"[{self.node}] {op.f} {completed.type.value}: {completed.error}")
            return completed

    def teardown(self):
        """Drop the schema once per workload. Never raises."""
        if self.state in (ClientState.TORN_DOWN, ClientState.CLOSED):
            return
        print(f"[{self.node}] Tearing down {self.name} client")

        if self.conn is not None and not self.config.leave_db_running:
            if self.teardown_flag.compare_and_set(False, True):
                try:
                    self._drop_schema()
                except TeardownError as e:
                    print(f"[{self.node}] {e}")

        self.state = ClientState.TORN_DOWN

    def close(self):
        """Release every connection this client opened. Never raises."""
        if self.state == ClientState.CLOSED:
            return
        print(f"[{self.node}] Closing {self.name} client")

        try:
            self.connections.release_all()
        except Exception as e:
            print(f"[{self.node}] Error releasing connections: {e}")

        self._node_conns.clear()
        self.conn = None
        self.state = ClientState.CLOSED

    def _create_schema(self, primary: str):
        print(f"[{self.node}] Creating {self.name} schema on {primary}")
        try:
            conn = self.node_conn(primary)
            self.connections.with_failure_retry(conn, self.create_schema)
        except Exception as e:
            raise SetupError(f"Error creating {self.name} schema: {e}") from e

    def _drop_schema(self):
        try:
            conn = self.primary_conn()
            print(f"[{self.node}] Dropping {self.name} schema on {conn.node}")
            self.connections.with_failure_retry(conn, self.drop_schema)
        except Exception as e:
            raise TeardownError(f"Error dropping {self.name} schema: {e}") from e

    # ============ Workload hooks ============

    @abstractmethod
    def create_schema(self, conn: StoreClient):
        """Create tables/spaces and seed rows."""
        pass

    @abstractmethod
    def drop_schema(self, conn: StoreClient):
        """Drop everything create_schema made."""
        pass

    @abstractmethod
    def apply(self, op: Operation) -> Operation:
        """Run op against the store and return the completed record."""
        pass

    # ============ Helpers ============

    def node_conn(self, node: str) -> StoreClient:
        """Connection to a given node, opened on first use."""
        with self._lock:
            conn = self._node_conns.get(node)
        if conn is not None:
            return conn

        conn = self.connections.open(node)
        with self._lock:
            self._node_conns[node] = conn
        return conn

    def primary_conn(self) -> StoreClient:
        """
        Connection to the current primary.

        Raises:
            ClusterUnavailableError: If no node currently knows a leader
        """
        primary = self.locator.primary()
        if primary is None:
            raise ClusterUnavailableError("no reachable primary")
        return self.node_conn(primary)

    def read_with_retry(self, body: Callable[[StoreClient], Any]) -> Any:
        """Run an idempotent body on the worker's own node."""
        return self.connections.with_failure_retry(self.conn, body)

    def unknown_function(self, op: Operation) -> ApplicationRejection:
        """Error for an f this client doesn't implement. Nothing was sent."""
        return ApplicationRejection(f"unknown {self.name} function {op.f!r}")

    def _require(self, state: ClientState):
        if self.state != state:
            raise RuntimeError(
                f"{self.name} client is {self.state.value}, expected {state.value}"
            )

    def mark_sync(self, conn: StoreClient, space: str):
        """Route writes to a space through synchronous replication."""
        conn.eval(
            "local s = box.space[...]; "
            "if s ~= nil then s:alter{is_sync = true}; return true end; "
            "return false",
            space.upper()
        )
