"""
Storage Services Package

Provides the abstract ledger storage interface and its SQLAlchemy
implementation.
"""

from chatledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from chatledger.services.storage.database import build_engine
from chatledger.services.storage.sql_storage import SqlLedgerStorage

__all__ = [
    # Interfaces
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # SQLAlchemy implementation
    "SqlLedgerStorage",
    "build_engine",
]
