"""Network layer components."""

from .client import StoreClient, ConnectionManager

__all__ = ['StoreClient', 'ConnectionManager']
