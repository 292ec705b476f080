"""Services package."""

from ledger_assistant.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    ContextStoreInterface,
    DuplicateError,
    LedgerStoreInterface,
    MessageStoreInterface,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "ContextStoreInterface",
    "DuplicateError",
    "LedgerStoreInterface",
    "MessageStoreInterface",
    "NotFoundError",
    "StorageError",
]
