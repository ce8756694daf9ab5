"""
Command line entry point.
"""

import argparse
import json
import sys
from typing import List

from .cluster import PrimaryLocator, calculate_quorum, render_instance_config
from .config import ClusterConfig, RetryConfig
from .operation import Operation
from .probes import PROBES, GarbageGrowthClient


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="tarantest - consistency test client for Tarantool clusters"
    )

    parser.add_argument(
        "--nodes",
        type=str,
        default="localhost",
        help="Comma-separated list of node hosts (default: localhost)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=3301,
        help="Tarantool listen port (default: 3301)"
    )

    parser.add_argument(
        "--user",
        type=str,
        default="jepsen",
        help="User to authenticate as (default: jepsen)"
    )

    parser.add_argument(
        "--password",
        type=str,
        default="jepsen",
        help="Password (default: jepsen)"
    )

    parser.add_argument(
        "--engine",
        type=str,
        default="memtx",
        choices=["memtx", "vinyl"],
        help="Storage engine for test tables (default: memtx)"
    )

    parser.add_argument(
        "--mvcc",
        action="store_true",
        help="Enable the memtx MVCC transaction manager"
    )

    parser.add_argument(
        "--settle-delay",
        type=float,
        default=10.0,
        help="Seconds to let the topology converge before setup (default: 10)"
    )

    parser.add_argument(
        "--retries",
        type=int,
        default=3,
        help="Attempts for idempotent requests (default: 3)"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("primaries", help="Print the nodes currently acting as leader")
    sub.add_parser("quorum", help="Print the synchronous replication quorum")

    render = sub.add_parser("render-config", help="Print a node's instance file")
    render.add_argument("node", help="Node to render the instance file for")

    probe = sub.add_parser("probe", help="Run a diagnostic probe")
    probe.add_argument("name", choices=sorted(PROBES))
    probe.add_argument(
        "--report-dir",
        type=str,
        default="./store",
        help="Directory for the HTML report (default: ./store)"
    )
    probe.add_argument(
        "--batch",
        type=int,
        default=1000,
        help="Rows written by the garbage-growth burst (default: 1000)"
    )
    probe.add_argument(
        "--sample-interval",
        type=float,
        default=5.0,
        help="Seconds between MVCC stats samples (default: 5)"
    )
    probe.add_argument(
        "--sample-duration",
        type=float,
        default=120.0,
        help="Seconds to keep sampling MVCC stats (default: 120)"
    )

    return parser.parse_args(argv)


def build_config(args) -> ClusterConfig:
    return ClusterConfig(
        nodes=[n.strip() for n in args.nodes.split(",") if n.strip()],
        port=args.port,
        user=args.user,
        password=args.password,
        engine=args.engine,
        mvcc=args.mvcc,
        settle_delay=args.settle_delay,
        retry=RetryConfig(max_attempts=args.retries)
    )


def probe_ops(name: str, args) -> List[Operation]:
    """The fixed operation sequence each probe runs."""
    if name == "iterator-consistency":
        return [
            Operation.invoke("test-pairs", "memtx"),
            Operation.invoke("test-pairs", "vinyl"),
            Operation.invoke("compare-results"),
        ]
    if name == "garbage-growth":
        return [
            Operation.invoke("insert", list(range(1, args.batch + 1))),
            Operation.invoke("select-full"),
            Operation.invoke("get-stats"),
        ]
    return [Operation.invoke("test-hash-index")]


def run_probe(config: ClusterConfig, args) -> int:
    """Run one probe end to end. Returns the process exit code."""
    kwargs = {}
    if args.name == "garbage-growth":
        kwargs = {"sample_interval": args.sample_interval,
                  "sample_duration": args.sample_duration}
    client = PROBES[args.name](config, **kwargs)

    node = PrimaryLocator(config).wait_for_primary()
    client.open(node)
    try:
        client.setup()
        for op in probe_ops(args.name, args):
            completed = client.invoke(op)
            print(f"[{node}] {completed.f}: {completed.type.value}")
        if isinstance(client, GarbageGrowthClient):
            client.wait_for_samples()
        verdict = client.check(args.report_dir)
    finally:
        client.teardown()
        client.close()

    print(json.dumps(verdict.to_dict(), indent=2, default=str))
    return 0 if verdict.valid else 1


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = build_config(args)

    if args.command == "primaries":
        for node in PrimaryLocator(config).primaries():
            print(node)
        return 0

    if args.command == "quorum":
        print(calculate_quorum(len(config.nodes)))
        return 0

    if args.command == "render-config":
        print(render_instance_config(config, args.node), end="")
        return 0

    return run_probe(config, args)


if __name__ == "__main__":
    sys.exit(main())
