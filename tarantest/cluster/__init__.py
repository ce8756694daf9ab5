"""Cluster topology components."""

from .quorum import calculate_quorum
from .primary import PrimaryLocator
from .instance_config import render_instance_config
from .db import DatabaseLifecycle, TarantoolDB

__all__ = [
    'calculate_quorum',
    'PrimaryLocator',
    'render_instance_config',
    'DatabaseLifecycle',
    'TarantoolDB',
]
