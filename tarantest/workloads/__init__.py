"""Workload clients driven by the operation generator."""

from .base import (
    ClientState, SchemaFlag, OperationClient, workload_flags, reset_workload_flags
)
from .register import RegisterClient
from .counter import CounterClient
from .bank import BankClient, MultiTableBankClient

__all__ = [
    'ClientState',
    'SchemaFlag',
    'OperationClient',
    'workload_flags',
    'reset_workload_flags',
    'RegisterClient',
    'CounterClient',
    'BankClient',
    'MultiTableBankClient',
]
