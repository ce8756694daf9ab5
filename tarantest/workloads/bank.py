"""
Bank workloads: transfers between accounts that must conserve the total.

BankClient keeps every account in one table. MultiTableBankClient gives each
account its own table with a single row, so a transfer spans two spaces.
"""

from typing import Any, Dict, List, Optional, Tuple

from ..config import BankConfig
from ..errors import ApplicationRejection
from ..network.client import StoreClient
from ..operation import Operation
from ..outcome import complete_with_result
from .base import OperationClient

TABLE = "accounts"
SPACE = TABLE.upper()


def parse_transfer(value: Any) -> Tuple[int, int, int]:
    """Read (from, to, amount) out of a transfer's value."""
    try:
        return value["from"], value["to"], value["amount"]
    except (KeyError, TypeError):
        raise ApplicationRejection(f"malformed transfer {value!r}")


class BankClient(OperationClient):
    """
    Single-table bank.

    read returns {account: balance}. transfer reads both balances first and
    rejects locally if either would go negative; otherwise the store applies
    both updates in one server-side transaction through _WITHDRAW.
    """

    name = "bank"

    def __init__(self, config, bank: Optional[BankConfig] = None, **kwargs):
        super().__init__(config, **kwargs)
        self.bank = bank or BankConfig()

    # ============ Schema ============

    def create_schema(self, conn: StoreClient):
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {TABLE} (id INT PRIMARY KEY, balance INT) "
            f"WITH ENGINE = '{self.config.engine.value}'"
        )
        self.mark_sync(conn, SPACE)
        for account in self.bank.accounts:
            print(f"[{self.node}] Populating account {account}")
            conn.execute(
                f"INSERT OR IGNORE INTO {TABLE} VALUES (?, ?)",
                [account, self.bank.initial_balance]
            )

    def drop_schema(self, conn: StoreClient):
        conn.execute(f"DROP TABLE IF EXISTS {TABLE}")

    # ============ Store access ============

    def read_all(self, conn: StoreClient) -> Dict[int, int]:
        rows = conn.execute(f"SELECT id, balance FROM {TABLE}")
        return {row[0]: row[1] for row in rows}

    def read_balance(self, conn: StoreClient, account: int) -> Optional[int]:
        rows = conn.execute(f"SELECT balance FROM {TABLE} WHERE id = ?", [account])
        return rows[0][0] if rows else None

    def withdraw(self, conn: StoreClient, from_acct: int, to_acct: int, amount: int) -> Any:
        return conn.call("_WITHDRAW", SPACE, from_acct, to_acct, amount)

    # ============ Operations ============

    def apply(self, op: Operation) -> Operation:
        if op.f == "read":
            balances = self.read_with_retry(self.read_all)
            return op.complete_ok(balances)

        if op.f == "transfer":
            return self.transfer(op)

        raise self.unknown_function(op)

    def transfer(self, op: Operation) -> Operation:
        from_acct, to_acct, amount = parse_transfer(op.value)
        conn = self.primary_conn()

        # Nothing has been written yet, so any failure here is a definite FAIL.
        try:
            b1, b2 = self.connections.with_failure_retry(
                conn,
                lambda c: (self.read_balance(c, from_acct), self.read_balance(c, to_acct))
            )
        except Exception as e:
            print(f"[{self.node}] Transfer {from_acct}->{to_acct} aborted before write: {e}")
            return op.complete_fail(str(e) or type(e).__name__)

        if b1 is None or b2 is None:
            return op.complete_fail("unknown account", op.value)
        if b1 - amount < 0 or b2 + amount < 0:
            print(f"[{self.node}] Rejecting transfer {from_acct}->{to_acct} of {amount}: "
                  f"balances {b1}, {b2}")
            return op.complete_fail("negative balance", op.value)

        result = self.withdraw(conn, from_acct, to_acct, amount)
        return complete_with_result(op, result, op.value, error="negative balance")


def account_table(account: int) -> str:
    return f"{TABLE}{account}"


class MultiTableBankClient(BankClient):
    """
    One table per account, each holding a single row with id 0.
    """

    name = "multitable-bank"

    ROW_ID = 0

    def create_schema(self, conn: StoreClient):
        for account in self.bank.accounts:
            table = account_table(account)
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table} "
                f"(id INT PRIMARY KEY, account_id INT, balance INT) "
                f"WITH ENGINE = '{self.config.engine.value}'"
            )
            self.mark_sync(conn, table)
            print(f"[{self.node}] Populating account {account}")
            conn.execute(
                f"INSERT OR IGNORE INTO {table} VALUES (?, ?, ?)",
                [self.ROW_ID, account, self.bank.initial_balance]
            )

    def drop_schema(self, conn: StoreClient):
        for account in self.bank.accounts:
            conn.execute(f"DROP TABLE IF EXISTS {account_table(account)}")

    def read_all(self, conn: StoreClient) -> Dict[int, int]:
        selects: List[str] = [
            f"SELECT account_id, balance FROM {account_table(account)}"
            for account in self.bank.accounts
        ]
        rows = conn.execute(" UNION ".join(selects))
        return {row[0]: row[1] for row in rows}

    def read_balance(self, conn: StoreClient, account: int) -> Optional[int]:
        rows = conn.execute(
            f"SELECT balance FROM {account_table(account)} WHERE id = ?", [self.ROW_ID]
        )
        return rows[0][0] if rows else None

    def withdraw(self, conn: StoreClient, from_acct: int, to_acct: int, amount: int) -> Any:
        return conn.call(
            "_WITHDRAW_MULTITABLE",
            account_table(from_acct).upper(), account_table(to_acct).upper(), amount
        )
