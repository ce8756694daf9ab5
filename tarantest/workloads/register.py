"""
Linearizable register workload: read, write and compare-and-set per key.
"""

from typing import Any, Tuple

from ..errors import ApplicationRejection
from ..network.client import StoreClient
from ..operation import Operation
from ..outcome import complete_with_result
from .base import OperationClient

TABLE = "register"
SPACE = TABLE.upper()


def split_key(op: Operation) -> Tuple[Any, Any, bool]:
    """
    Pull (key, value) out of an operation.

    The key comes from op.key, or from a [key, value] pair in op.value when
    the generator runs independent keys that way. The flag says which form
    was used so the result keeps the same shape.
    """
    if op.key is not None:
        return op.key, op.value, False
    if isinstance(op.value, (list, tuple)) and len(op.value) == 2:
        return op.value[0], op.value[1], True
    raise ApplicationRejection(f"{op.f} needs a key: {op.to_dict()}")


def join_key(key: Any, value: Any, paired: bool) -> Any:
    return [key, value] if paired else value


def parse_cas(value: Any) -> Tuple[Any, Any]:
    """Read (old, new) out of a cas value."""
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return value[0], value[1]
    raise ApplicationRejection(f"malformed cas {value!r}")


class RegisterClient(OperationClient):
    """
    One row per independent key.

    - read: current value, or None if the key was never written
    - write: unconditional upsert; idempotent, so retried on transient errors
    - cas [old, new]: set to new iff the row holds old; never retried
    """

    name = "register"

    def create_schema(self, conn: StoreClient):
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {TABLE} (id INT PRIMARY KEY, value INT) "
            f"WITH ENGINE = '{self.config.engine.value}'"
        )
        self.mark_sync(conn, SPACE)

    def drop_schema(self, conn: StoreClient):
        conn.execute(f"DROP TABLE IF EXISTS {TABLE}")

    def apply(self, op: Operation) -> Operation:
        key, value, paired = split_key(op)

        if op.f == "read":
            rows = self.read_with_retry(
                lambda conn: conn.execute(f"SELECT value FROM {TABLE} WHERE id = ?", [key])
            )
            current = rows[0][0] if rows else None
            return op.complete_ok(join_key(key, current, paired))

        if op.f == "write":
            conn = self.primary_conn()
            self.connections.with_failure_retry(
                conn, lambda c: c.call("_UPSERT", key, value, SPACE)
            )
            return op.complete_ok(join_key(key, value, paired))

        if op.f == "cas":
            old, new = parse_cas(value)
            conn = self.primary_conn()
            result = conn.call("_CAS", key, old, new, SPACE)
            print(f"[{self.node}] CAS {key} {old}->{new}: {result}")
            return complete_with_result(op, result, join_key(key, [old, new], paired))

        raise self.unknown_function(op)
