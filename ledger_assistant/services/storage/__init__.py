"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Two backends: in-memory (development, tests) and Google Sheets.
"""

from ledger_assistant.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    ContextStoreInterface,
    DuplicateError,
    LedgerStoreInterface,
    MessageStoreInterface,
    NotFoundError,
    StorageError,
)
from ledger_assistant.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryContextStore,
    InMemoryLedgerStore,
    InMemoryMessageStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ContextStoreInterface",
    "LedgerStoreInterface",
    "MessageStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryContextStore",
    "InMemoryLedgerStore",
    "InMemoryMessageStore",
]
