"""
tarantest
Client layer of a black-box consistency test harness for Tarantool clusters.
"""

__version__ = "1.0.0"
__author__ = "The tarantest Contributors"

from .config import ClusterConfig, RetryConfig, BankConfig, Engine
from .operation import Operation, OpType
from .outcome import Outcome, classify_error, classify_result
from .cluster import PrimaryLocator, calculate_quorum
from .network import StoreClient, ConnectionManager
from .workloads import (
    OperationClient, SchemaFlag, RegisterClient, CounterClient,
    BankClient, MultiTableBankClient
)

__all__ = [
    # Config
    'ClusterConfig',
    'RetryConfig',
    'BankConfig',
    'Engine',
    # Operations
    'Operation',
    'OpType',
    'Outcome',
    'classify_error',
    'classify_result',
    # Cluster
    'PrimaryLocator',
    'calculate_quorum',
    'StoreClient',
    'ConnectionManager',
    # Workloads
    'OperationClient',
    'SchemaFlag',
    'RegisterClient',
    'CounterClient',
    'BankClient',
    'MultiTableBankClient',
]
