"""
Shared fixtures: an in-memory stand-in for a Tarantool cluster.

FakeStore is passed as the connection factory, so every StoreClient the
code under test opens talks to the same in-memory tables. Requests are
serialized, which is enough to model the store's own transaction isolation.
"""

import re
import sys
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from tarantool.error import DatabaseError

from tarantest.config import ClusterConfig, RetryConfig
from tarantest.workloads import reset_workload_flags


@dataclass
class FakeResponse:
    data: List[Any]


class FakeTable:
    def __init__(self, name: str, columns: List[str]):
        self.name = name
        self.columns = columns
        self.rows: Dict[Any, List[Any]] = {}

    def column(self, name: str) -> int:
        return self.columns.index(name.lower())


class FakeConnection:
    """Same surface as tarantool.Connection for the calls the harness makes."""

    def __init__(self, store: 'FakeStore', host: str, options: Dict[str, Any]):
        self.store = store
        self.host = host
        self.options = options
        self.closed = False

    def execute(self, sql, params=None):
        return self.store.request(self.host, "execute", (sql, params))

    def call(self, name, *args):
        return self.store.request(self.host, "call", (name,) + args)

    def eval(self, lua, *args):
        return self.store.request(self.host, "eval", (lua,) + args)

    def close(self):
        self.closed = True
        self.store.closed += 1
        if self.store.close_error is not None:
            raise self.store.close_error


class FakeStore:
    """In-memory cluster shared by every connection the factory hands out."""

    def __init__(self):
        self.tables: Dict[str, FakeTable] = {}
        self.sync_spaces = set()
        self.leaders: Dict[str, Optional[str]] = {}
        self.down = set()
        self.close_error: Optional[Exception] = None
        self.opened = 0
        self.closed = 0
        self.requests: List[Tuple[str, str, Any]] = []

        self._faults: Dict[str, List[Tuple[Optional[str], Exception, bool]]] = {}
        self._eval_handlers: List[Tuple[str, Callable]] = []
        self._lock = threading.RLock()

    # ============ Test controls ============

    def __call__(self, host, port, **options):
        if host in self.down:
            raise ConnectionRefusedError(111, "Connection refused")
        with self._lock:
            self.opened += 1
        return FakeConnection(self, host, options)

    def inject(self, host: str, exc: Exception, target: Optional[str] = None,
               after: bool = False, times: int = 1):
        """
        Fail the next matching request on host.

        target matches the SQL text, routine name or Lua chunk by substring.
        With after=True the request is applied first and the error is raised
        in place of the reply.
        """
        with self._lock:
            self._faults.setdefault(host, []).extend([(target, exc, after)] * times)

    def on_eval(self, fragment: str, handler: Callable):
        """Answer Lua chunks containing fragment with handler(*args)."""
        self._eval_handlers.append((fragment, handler))

    def count(self, fragment: str, host: Optional[str] = None) -> int:
        return len([r for r in self.requests
                    if isinstance(r[2], str) and fragment in r[2]
                    and (host is None or r[0] == host)])

    def rows(self, table: str) -> Dict[Any, List[Any]]:
        return self.tables[table.upper()].rows

    def balances(self, table: str = "ACCOUNTS") -> Dict[int, int]:
        t = self.tables[table.upper()]
        return {k: row[t.column("balance")] for k, row in t.rows.items()}

    # ============ Dispatch ============

    def request(self, host: str, method: str, args: Tuple):
        with self._lock:
            self.requests.append((host, method, args[0] if args else None))
            fault = self._take_fault(host, args[0] if args else None)
            if fault is not None and not fault[2]:
                raise fault[1]
            data = getattr(self, "_" + method)(host, *args)
            if fault is not None:
                raise fault[1]
            return FakeResponse(data)

    def _take_fault(self, host: str, subject: Any):
        faults = self._faults.get(host, [])
        for i, (target, exc, after) in enumerate(faults):
            if target is None or (isinstance(subject, str) and target in subject):
                return faults.pop(i)
        return None

    def _table(self, name: str) -> FakeTable:
        table = self.tables.get(name.upper())
        if table is None:
            raise DatabaseError(36, f"Space '{name.upper()}' does not exist")
        return table

    # ============ SQL ============

    def _execute(self, host, sql, params=None):
        params = list(params or [])

        m = re.match(r"CREATE TABLE IF NOT EXISTS (\w+) \((.*)\) WITH ENGINE", sql)
        if m:
            columns = [c.strip().split()[0].lower() for c in m.group(2).split(",")]
            self.tables.setdefault(m.group(1).upper(), FakeTable(m.group(1).upper(), columns))
            return []

        m = re.match(r"DROP TABLE IF EXISTS (\w+)", sql)
        if m:
            self.tables.pop(m.group(1).upper(), None)
            return []

        m = re.match(r"INSERT OR IGNORE INTO (\w+) VALUES", sql)
        if m:
            self._table(m.group(1)).rows.setdefault(params[0], list(params))
            return []

        m = re.match(r"UPDATE (\w+) SET (\w+) = \w+ \+ \? WHERE id = \?", sql)
        if m:
            table = self._table(m.group(1))
            row = table.rows.get(params[1])
            if row is not None:
                row[table.column(m.group(2))] += params[0]
            return []

        if sql.startswith("SELECT"):
            result = []
            for part in sql.split(" UNION "):
                result.extend(self._select(part, params))
            return result

        raise DatabaseError(1, f"Unsupported statement: {sql}")

    def _select(self, sql, params):
        m = re.match(r"SELECT (.+?) FROM (\w+)( WHERE id = \?)?$", sql)
        table = self._table(m.group(2))
        names = [c.strip() for c in m.group(1).split(",")]
        indexes = (list(range(len(table.columns))) if names == ["*"]
                   else [table.column(n) for n in names])
        rows = [table.rows[k] for k in sorted(table.rows)]
        if m.group(3):
            rows = [r for r in rows if r[0] == params[0]]
        return [[row[i] for i in indexes] for row in rows]

    # ============ Stored routines ============

    def _call(self, host, name, *args):
        if name == "_LEADER":
            return [self.leaders.get(host)]

        if name == "_UPSERT":
            id_, value, space = args
            self._table(space).rows[id_] = [id_, value]
            return [True]

        if name == "_CAS":
            id_, old, new, space = args
            row = self._table(space).rows.get(id_)
            if row is None or row[1] != old:
                return [False]
            row[1] = new
            return [True]

        if name == "_WITHDRAW":
            space, from_, to, amount = args
            table = self._table(space)
            col = table.column("balance")
            return [self._move(table.rows[from_], table.rows[to], col, col, amount)]

        if name == "_WITHDRAW_MULTITABLE":
            space_from, space_to, amount = args
            t1, t2 = self._table(space_from), self._table(space_to)
            return [self._move(t1.rows[0], t2.rows[0],
                               t1.column("balance"), t2.column("balance"), amount)]

        raise DatabaseError(33, f"Procedure '{name}' is not defined")

    def _move(self, from_row, to_row, from_col, to_col, amount):
        if from_row[from_col] - amount < 0 or to_row[to_col] + amount < 0:
            return False
        from_row[from_col] -= amount
        to_row[to_col] += amount
        return True

    # ============ Lua ============

    def _eval(self, host, lua, *args):
        for fragment, handler in self._eval_handlers:
            if fragment in lua:
                return handler(*args)
        if "is_sync = true" in lua:
            self.sync_spaces.add(args[0])
            return [args[0] in self.tables]
        if "s:drop()" in lua:
            self.tables.pop(args[0].upper(), None)
            return []
        return []


@pytest.fixture(autouse=True)
def fresh_workload_flags():
    """Each test runs as a fresh process: no workload has created its schema."""
    reset_workload_flags()
    yield
    reset_workload_flags()


@pytest.fixture
def store():
    return FakeStore()


def make_config(nodes=None, **overrides) -> ClusterConfig:
    """Config with every delay turned off so tests never sleep."""
    settings = dict(
        nodes=nodes or ["n1"],
        settle_delay=0,
        primary_wait_timeout=0.2,
        primary_poll_interval=0.01,
        leader_timeout=2.0,
        retry=RetryConfig(max_attempts=3, base_delay=0, max_delay=0),
    )
    settings.update(overrides)
    return ClusterConfig(**settings)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def cluster_config(store):
    """Three nodes, all agreeing n2 is the leader."""
    store.leaders.update({"n1": "n2", "n2": "n2", "n3": "n2"})
    return make_config(["n1", "n2", "n3"])


def start_client(cls, config, store, node="n1", **kwargs):
    """Open and set up a client against the fake store."""
    client = cls(config, connection_factory=store, **kwargs)
    client.open(node)
    client.setup()
    return client
