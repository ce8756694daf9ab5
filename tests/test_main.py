"""
Command line tests
"""

import pytest

from tarantest.main import build_config, main, parse_args, probe_ops


def test_quorum_command(capsys):
    assert main(["--nodes", "n1,n2,n3,n4,n5", "quorum"]) == 0
    assert capsys.readouterr().out.strip() == "3"


def test_primaries_single_node(capsys):
    """One node is its own leader, no connection needed."""
    assert main(["--nodes", "solo", "primaries"]) == 0
    assert capsys.readouterr().out.strip() == "solo"


def test_render_config(capsys):
    assert main(["--nodes", "n1,n2", "--mvcc", "render-config", "n1"]) == 0
    out = capsys.readouterr().out
    assert "memtx_use_mvcc_engine       = true;" in out


def test_build_config():
    args = parse_args(["--nodes", "a, b", "--engine", "vinyl", "--retries", "5",
                       "--settle-delay", "0", "quorum"])
    config = build_config(args)

    assert config.nodes == ["a", "b"]
    assert config.engine.value == "vinyl"
    assert config.retry.max_attempts == 5
    assert config.settle_delay == 0


def test_probe_ops():
    args = parse_args(["probe", "garbage-growth", "--batch", "3"])
    ops = probe_ops(args.name, args)

    assert [op.f for op in ops] == ["insert", "select-full", "get-stats"]
    assert ops[0].value == [1, 2, 3]

    args = parse_args(["probe", "iterator-consistency"])
    assert [op.value for op in probe_ops(args.name, args)] == ["memtx", "vinyl", None]


def test_unknown_probe_rejected():
    with pytest.raises(SystemExit):
        parse_args(["probe", "nope"])
