"""
Adapter implementations for external collaborators.

This module provides abstract base classes and concrete implementations
for credit ledgers (Postgres, in-memory) and remote media sources (S3).
"""

from .base import CreditLedgerAdapter, MediaSourceAdapter
from .memory_adapter import InMemoryCreditLedger
from .postgres_adapter import PostgresCreditLedger
from .s3_adapter import S3MediaSource

__all__ = [
    'CreditLedgerAdapter',
    'MediaSourceAdapter',
    'InMemoryCreditLedger',
    'PostgresCreditLedger',
    'S3MediaSource'
]
