"""
Counter workload: increments and reads of a single row.
"""

from ..network.client import StoreClient
from ..operation import Operation
from .base import OperationClient

TABLE = "counter"
SPACE = TABLE.upper()
ROW_ID = 0


class CounterClient(OperationClient):
    """
    add adds op.value to the counter. It isn't idempotent, so a lost add is
    reported as INFO and never retried. read returns the current value.
    """

    name = "counter"

    def create_schema(self, conn: StoreClient):
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {TABLE} (id INT PRIMARY KEY, cnt INT) "
            f"WITH ENGINE = '{self.config.engine.value}'"
        )
        self.mark_sync(conn, SPACE)
        conn.execute(f"INSERT OR IGNORE INTO {TABLE} VALUES (?, ?)", [ROW_ID, 0])

    def drop_schema(self, conn: StoreClient):
        conn.execute(f"DROP TABLE IF EXISTS {TABLE}")

    def apply(self, op: Operation) -> Operation:
        if op.f == "add":
            conn = self.primary_conn()
            conn.execute(f"UPDATE {TABLE} SET cnt = cnt + ? WHERE id = ?", [op.value, ROW_ID])
            return op.complete_ok()

        if op.f == "read":
            rows = self.read_with_retry(
                lambda conn: conn.execute(f"SELECT cnt FROM {TABLE} WHERE id = ?", [ROW_ID])
            )
            return op.complete_ok(rows[0][0] if rows else None)

        raise self.unknown_function(op)
