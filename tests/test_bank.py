"""
Bank workload tests
"""

import random
import threading

import pytest

from conftest import start_client
from tarantest.config import BankConfig
from tarantest.operation import Operation, OpType
from tarantest.workloads import BankClient, MultiTableBankClient, SchemaFlag


def transfer(from_acct, to_acct, amount):
    return Operation.invoke("transfer", {"from": from_acct, "to": to_acct, "amount": amount})


def test_accounts_seeded_evenly(store, config):
    client = start_client(BankClient, config, store,
                          bank=BankConfig(accounts=[0, 1, 2, 3], total_amount=100))

    read = client.invoke(Operation.invoke("read"))
    assert read.type == OpType.OK
    assert read.value == {0: 25, 1: 25, 2: 25, 3: 25}
    assert "ACCOUNTS" in store.sync_spaces


def test_rejected_transfer_changes_nothing(store, config):
    """{1: 500, 2: 500}: moving 600 fails, moving 200 succeeds."""
    client = start_client(BankClient, config, store,
                          bank=BankConfig(accounts=[1, 2], total_amount=1000))

    rejected = client.invoke(transfer(1, 2, 600))
    assert rejected.type == OpType.FAIL
    assert rejected.value == {"from": 1, "to": 2, "amount": 600}
    assert store.balances() == {1: 500, 2: 500}
    assert store.count("_WITHDRAW") == 0

    accepted = client.invoke(transfer(1, 2, 200))
    assert accepted.type == OpType.OK
    assert store.balances() == {1: 300, 2: 700}

    print("[OK] Bank end-to-end test passed")


def test_store_side_guard_is_fail(store, config):
    """_WITHDRAW returning false means the store refused the transfer."""
    client = start_client(BankClient, config, store,
                          bank=BankConfig(accounts=[1, 2], total_amount=1000))
    client.withdraw = lambda conn, a, b, amount: False

    op = client.invoke(transfer(1, 2, 100))

    assert op.type == OpType.FAIL
    assert store.balances() == {1: 500, 2: 500}


def test_read_before_write_failure_is_fail(store, config):
    """Nothing was written when the balance check can't complete."""
    client = start_client(BankClient, config, store,
                          bank=BankConfig(accounts=[1, 2], total_amount=1000))
    store.inject("n1", ConnectionResetError(104, "reset"), target="SELECT balance", times=10)

    op = client.invoke(transfer(1, 2, 100))

    assert op.type == OpType.FAIL
    assert store.count("_WITHDRAW") == 0


def test_lost_withdraw_reply_is_info(store, config):
    client = start_client(BankClient, config, store,
                          bank=BankConfig(accounts=[1, 2], total_amount=1000))
    store.inject("n1", ConnectionResetError(104, "reset"), target="_WITHDRAW", after=True)

    op = client.invoke(transfer(1, 2, 100))

    assert op.type == OpType.INFO
    assert store.count("_WITHDRAW") == 1


def test_quorum_timeout_is_info(store, config):
    from tarantool.error import DatabaseError

    client = start_client(BankClient, config, store,
                          bank=BankConfig(accounts=[1, 2], total_amount=1000))
    store.inject("n1", DatabaseError(
        3, "Quorum collection for a synchronous transaction is timed out"
    ), target="_WITHDRAW", after=True)

    op = client.invoke(transfer(1, 2, 100))

    assert op.type == OpType.INFO


def test_malformed_transfer_is_fail(store, config):
    client = start_client(BankClient, config, store)

    op = client.invoke(Operation.invoke("transfer", {"from": 0}))

    assert op.type == OpType.FAIL


def run_concurrent_transfers(cls, store, config, bank):
    flag = SchemaFlag()
    clients = [start_client(cls, config, store, schema_flag=flag, bank=bank)
               for _ in range(4)]

    def worker(client):
        for _ in range(25):
            a, b = random.sample(bank.accounts, 2)
            client.invoke(transfer(a, b, random.randint(1, 20)))

    threads = [threading.Thread(target=worker, args=(c,)) for c in clients]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return clients[0].invoke(Operation.invoke("read")).value


def test_total_is_conserved(store, config):
    """Every balance stays non-negative and the total never changes."""
    bank = BankConfig(accounts=[0, 1, 2, 3], total_amount=40)
    balances = run_concurrent_transfers(BankClient, store, config, bank)

    assert sum(balances.values()) == 40
    assert all(b >= 0 for b in balances.values())


def test_multitable_layout(store, config):
    """Each account lives in its own table, keyed by row id 0."""
    client = start_client(MultiTableBankClient, config, store,
                          bank=BankConfig(accounts=[1, 2], total_amount=1000))

    assert store.rows("accounts1") == {0: [0, 1, 500]}
    assert store.rows("accounts2") == {0: [0, 2, 500]}
    assert {"ACCOUNTS1", "ACCOUNTS2"} <= store.sync_spaces
    assert client.invoke(Operation.invoke("read")).value == {1: 500, 2: 500}


def test_multitable_transfer(store, config):
    client = start_client(MultiTableBankClient, config, store,
                          bank=BankConfig(accounts=[1, 2], total_amount=1000))

    assert client.invoke(transfer(1, 2, 600)).type == OpType.FAIL
    assert client.invoke(transfer(1, 2, 200)).type == OpType.OK
    assert client.invoke(Operation.invoke("read")).value == {1: 300, 2: 700}
    assert store.count("_WITHDRAW_MULTITABLE") == 1


def test_multitable_total_is_conserved(store, config):
    bank = BankConfig(accounts=[0, 1, 2, 3], total_amount=40)
    balances = run_concurrent_transfers(MultiTableBankClient, store, config, bank)

    assert sum(balances.values()) == 40
    assert all(b >= 0 for b in balances.values())


def test_transfers_go_to_the_primary(store, cluster_config):
    client = start_client(BankClient, cluster_config, store, node="n3",
                          bank=BankConfig(accounts=[1, 2], total_amount=1000))

    assert client.invoke(transfer(1, 2, 100)).type == OpType.OK
    assert store.count("_WITHDRAW", host="n2") == 1


def test_multitable_teardown_drops_every_table(store, config):
    client = start_client(MultiTableBankClient, config, store,
                          bank=BankConfig(accounts=[1, 2, 3], total_amount=300))

    client.teardown()
    client.close()

    assert not any(name.startswith("ACCOUNTS") for name in store.tables)


def test_uneven_bank_rejected():
    with pytest.raises(ValueError):
        BankConfig(accounts=[1, 2, 3], total_amount=10)


def test_unknown_function_is_fail(store, config):
    client = start_client(BankClient, config, store)

    op = client.invoke(Operation.invoke("deposit", {"to": 0, "amount": 5}))

    assert op.type == OpType.FAIL
    assert "unknown bank function 'deposit'" in op.error
    assert store.count("_WITHDRAW") == 0
