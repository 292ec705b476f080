"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the engine decoupled from storage implementation

Four stores, one per concern:
- ContextStoreInterface: the per-conversation pending action
- MessageStoreInterface: the chat history the prompt builder reads
- LedgerStoreInterface: reference data, business records, the journal
- AuditStorageInterface: the append-only audit trail

CRITICAL: LedgerStoreInterface.commit() is the ONLY way money-moving
records reach storage. It applies a LedgerCommit all-or-nothing.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from ledger_assistant.models.audit import AuditEvent
from ledger_assistant.models.conversation import ConversationContext, Message
from ledger_assistant.models.ledger import (
    Bill,
    BillStatus,
    Invoice,
    InvoiceStatus,
    JournalEntry,
    LedgerCommit,
    Payment,
    ReferenceSnapshot,
)


class ContextStoreInterface(ABC):
    """
    Per-conversation store of the action in progress.

    Not-found is always None, never an error: no record means Idle.
    """

    @abstractmethod
    async def load(self, conversation_id: str) -> Optional[ConversationContext]:
        """Return the context for a conversation, or None."""
        pass

    @abstractmethod
    async def save(self, context: ConversationContext) -> None:
        """Insert or replace the context of `context.conversation_id`."""
        pass

    @abstractmethod
    async def clear(self, conversation_id: str) -> None:
        """Delete the context. Clearing a missing context is a no-op."""
        pass

    @abstractmethod
    async def take(self, conversation_id: str) -> Optional[ConversationContext]:
        """
        Atomically read and delete the context.

        Of two concurrent callers exactly one receives the context;
        the other receives None. Used by the confirm transition.
        """
        pass


class MessageStoreInterface(ABC):
    """Append-only chat history."""

    @abstractmethod
    async def append(self, message: Message) -> None:
        pass

    @abstractmethod
    async def recent(self, conversation_id: str, limit: int) -> list[Message]:
        """
        The last `limit` messages of a conversation, oldest first.
        """
        pass


class LedgerStoreInterface(ABC):
    """
    Ledger storage: reference data, invoices, bills, payments and the journal.

    Every lookup is scoped by user_id. A record belonging to another
    user is indistinguishable from a missing one.
    """

    @abstractmethod
    async def get_snapshot(self, user_id: str) -> ReferenceSnapshot:
        """The user's accounts, customers, vendors and products."""
        pass

    @abstractmethod
    async def get_invoice_by_number(
        self,
        user_id: str,
        invoice_number: str,
    ) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def get_bill_by_number(
        self,
        user_id: str,
        bill_number: str,
    ) -> Optional[Bill]:
        pass

    @abstractmethod
    async def list_invoices(
        self,
        user_id: str,
        status: Optional[InvoiceStatus] = None,
        customer_ids: Optional[list[UUID]] = None,
        limit: int = 20,
    ) -> list[Invoice]:
        """
        List invoices, newest first.

        Args:
            user_id: Owner of the invoices
            status: Filter by status
            customer_ids: Keep only invoices for these customers
            limit: Maximum number of results
        """
        pass

    @abstractmethod
    async def list_bills(
        self,
        user_id: str,
        status: Optional[BillStatus] = None,
        vendor_ids: Optional[list[UUID]] = None,
        limit: int = 20,
    ) -> list[Bill]:
        """List bills, newest first."""
        pass

    @abstractmethod
    async def list_payments(self, user_id: str, source_id: UUID) -> list[Payment]:
        """Payments recorded against one invoice or bill, oldest first."""
        pass

    @abstractmethod
    async def list_journal_entries(
        self,
        user_id: str,
        source_id: Optional[UUID] = None,
    ) -> list[JournalEntry]:
        """Journal entries in posting order, optionally for one source record."""
        pass

    @abstractmethod
    async def next_invoice_number(self, user_id: str) -> str:
        """Next number in the user's INV-0001 sequence."""
        pass

    @abstractmethod
    async def next_bill_number(self, user_id: str) -> str:
        """Next number in the user's BILL-0001 sequence."""
        pass

    @abstractmethod
    async def next_entry_number(self, user_id: str) -> str:
        """Next number in the user's JE-00001 sequence."""
        pass

    @abstractmethod
    async def has_idempotency_key(self, user_id: str, key: UUID) -> bool:
        """Has a commit carrying this key already been applied?"""
        pass

    @abstractmethod
    async def commit(self, unit: LedgerCommit) -> None:
        """
        Apply a unit of work atomically.

        Raises:
            DuplicateError: The idempotency key was already committed, or
                a new document number is already taken.
            NotFoundError: A journal entry to void does not exist.
            StorageError: The backend failed; nothing was applied.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one request, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent audit events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
