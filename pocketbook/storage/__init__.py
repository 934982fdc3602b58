"""
Storage Package

Provides the abstract Ledger Store interface and two implementations:
an in-memory store (tests, demos) and a SQLAlchemy store (durable).
Both run the same core logic without behavioural divergence.
"""

from typing import Optional

from pocketbook.config import Settings, get_settings
from pocketbook.storage.interface import (
    AuditStorageInterface,
    DuplicateCategoryError,
    LedgerStore,
    LedgerUnitOfWork,
    NotFoundError,
    StorageError,
    StoreUnavailable,
)
from pocketbook.storage.memory import InMemoryLedgerStore
from pocketbook.storage.sql import SqlLedgerStore, create_ledger_engine


def create_store(settings: Optional[Settings] = None) -> LedgerStore:
    """Build the Ledger Store selected by LEDGER_STORE_BACKEND."""
    store_settings = (settings or get_settings()).store
    if store_settings.backend == "sql":
        return SqlLedgerStore(
            database_url=store_settings.database_url,
            timeout_seconds=store_settings.timeout_seconds,
            read_retry_attempts=store_settings.read_retry_attempts,
        )
    return InMemoryLedgerStore(timeout_seconds=store_settings.timeout_seconds)


__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStore",
    "LedgerUnitOfWork",
    # Exceptions
    "DuplicateCategoryError",
    "NotFoundError",
    "StorageError",
    "StoreUnavailable",
    # Implementations
    "InMemoryLedgerStore",
    "SqlLedgerStore",
    "create_ledger_engine",
    "create_store",
]
