"""
Configuration management for the test harness.
"""

from dataclasses import dataclass, field
from typing import List
from enum import Enum


class Engine(Enum):
    """Storage engines a space can be created with."""
    MEMTX = "memtx"
    VINYL = "vinyl"


@dataclass
class RetryConfig:
    """
    Bounded retry for transient connection failures.

    max_attempts is the total number of tries, so 3 means try, retry, retry.
    """
    max_attempts: int = 3
    base_delay: float = 0.5      # seconds
    max_delay: float = 5.0       # seconds
    exponential_base: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> 'RetryConfig':
        """Single attempt, no backoff."""
        return cls(max_attempts=1)


@dataclass
class ClusterConfig:
    """Configuration for the cluster under test."""
    nodes: List[str] = field(default_factory=list)
    port: int = 3301
    user: str = "jepsen"
    password: str = "jepsen"

    # Instance settings
    engine: Engine = Engine.MEMTX
    mvcc: bool = False
    data_dir: str = "/var/lib/tarantool/jepsen"
    log_file: str = "/var/log/tarantool/jepsen.log"

    # Timeouts
    connect_timeout: float = 5.0   # seconds to establish a connection
    request_timeout: float = 10.0  # seconds any single store call may take
    leader_timeout: float = 5.0    # seconds to wait for all _LEADER answers

    # Setup settings
    settle_delay: float = 10.0        # seconds to let the topology converge
    primary_wait_timeout: float = 60.0
    primary_poll_interval: float = 1.0
    leave_db_running: bool = False

    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self):
        if isinstance(self.engine, str):
            self.engine = Engine(self.engine)

    @property
    def is_single_mode(self) -> bool:
        """A single instance has no election and is always the leader."""
        return len(self.nodes) == 1

    def peer_uri(self, node: str) -> str:
        """URI other peers use to replicate from a node."""
        return f"{self.user}:{self.password}@{node}:{self.port}"

    def replica_set(self) -> List[str]:
        """Replication URIs for every node in the cluster."""
        return [self.peer_uri(node) for node in self.nodes]


@dataclass
class BankConfig:
    """Account layout for the bank workloads."""
    accounts: List[int] = field(default_factory=lambda: list(range(8)))
    total_amount: int = 80

    def __post_init__(self):
        if not self.accounts:
            raise ValueError("at least one account is required")
        if self.total_amount % len(self.accounts) != 0:
            raise ValueError(
                "Unable to distribute initial balances uniformly "
                "for given total-amount and accounts"
            )

    @property
    def initial_balance(self) -> int:
        return self.total_amount // len(self.accounts)
