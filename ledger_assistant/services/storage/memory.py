"""
In-Memory Storage Implementation

Process-local stores used for development and tests. They implement
the same interfaces as the Google Sheets backend, so the engine cannot
tell them apart.

The ledger store validates a whole LedgerCommit under one lock before
touching any state, then applies it with plain dict assignments that
cannot fail half-way. That is what makes commit() atomic here.
"""

import asyncio
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from ledger_assistant.models.audit import AuditEvent
from ledger_assistant.models.conversation import ConversationContext, Message
from ledger_assistant.models.ledger import (
    Account,
    Bill,
    BillStatus,
    Customer,
    Invoice,
    InvoiceStatus,
    JournalEntry,
    JournalEntryStatus,
    LedgerCommit,
    Payment,
    Product,
    ReferenceSnapshot,
    Vendor,
)
from ledger_assistant.services.storage.interface import (
    AuditStorageInterface,
    ContextStoreInterface,
    DuplicateError,
    LedgerStoreInterface,
    MessageStoreInterface,
    NotFoundError,
)


def next_sequence_number(prefix: str, existing: list[str], width: int) -> str:
    """
    Next number in a PREFIX-0001 style sequence.

    Numbers that do not follow the pattern are ignored.
    """
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    highest = 0
    for number in existing:
        match = pattern.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{highest + 1:0{width}d}"


class InMemoryContextStore(ContextStoreInterface):
    """Conversation contexts in a dict, one asyncio.Lock per conversation."""

    def __init__(self):
        self._contexts: dict[str, ConversationContext] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def load(self, conversation_id: str) -> Optional[ConversationContext]:
        async with self._locks[conversation_id]:
            context = self._contexts.get(conversation_id)
            return context.model_copy(deep=True) if context else None

    async def save(self, context: ConversationContext) -> None:
        async with self._locks[context.conversation_id]:
            self._contexts[context.conversation_id] = context.model_copy(deep=True)

    async def clear(self, conversation_id: str) -> None:
        async with self._locks[conversation_id]:
            self._contexts.pop(conversation_id, None)

    async def take(self, conversation_id: str) -> Optional[ConversationContext]:
        async with self._locks[conversation_id]:
            return self._contexts.pop(conversation_id, None)


class InMemoryMessageStore(MessageStoreInterface):

    def __init__(self):
        self._messages: dict[str, list[Message]] = defaultdict(list)

    async def append(self, message: Message) -> None:
        self._messages[message.conversation_id].append(message)

    async def recent(self, conversation_id: str, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        return list(self._messages.get(conversation_id, [])[-limit:])


@dataclass
class _UserLedger:
    accounts: dict[UUID, Account] = field(default_factory=dict)
    customers: dict[UUID, Customer] = field(default_factory=dict)
    vendors: dict[UUID, Vendor] = field(default_factory=dict)
    products: dict[UUID, Product] = field(default_factory=dict)
    invoices: dict[UUID, Invoice] = field(default_factory=dict)
    bills: dict[UUID, Bill] = field(default_factory=dict)
    payments: dict[UUID, Payment] = field(default_factory=dict)
    journal: dict[UUID, JournalEntry] = field(default_factory=dict)
    idempotency_keys: set[UUID] = field(default_factory=set)


class InMemoryLedgerStore(LedgerStoreInterface):
    """
    Ledger held in per-user dicts.

    Reference data is seeded with the add_* helpers; everything else
    arrives through commit().
    """

    def __init__(self):
        self._users: dict[str, _UserLedger] = defaultdict(_UserLedger)
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_account(self, account: Account) -> Account:
        self._users[account.user_id].accounts[account.id] = account
        return account

    def add_customer(self, customer: Customer) -> Customer:
        self._users[customer.user_id].customers[customer.id] = customer
        return customer

    def add_vendor(self, vendor: Vendor) -> Vendor:
        self._users[vendor.user_id].vendors[vendor.id] = vendor
        return vendor

    def add_product(self, product: Product) -> Product:
        self._users[product.user_id].products[product.id] = product
        return product

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_snapshot(self, user_id: str) -> ReferenceSnapshot:
        ledger = self._users[user_id]
        return ReferenceSnapshot(
            user_id=user_id,
            accounts=sorted(ledger.accounts.values(), key=lambda a: a.code),
            customers=[c for c in ledger.customers.values() if c.is_active],
            vendors=[v for v in ledger.vendors.values() if v.is_active],
            products=[p for p in ledger.products.values() if p.is_active],
        ).model_copy(deep=True)

    async def get_invoice_by_number(
        self,
        user_id: str,
        invoice_number: str,
    ) -> Optional[Invoice]:
        for invoice in self._users[user_id].invoices.values():
            if invoice.invoice_number.upper() == invoice_number.upper():
                return invoice.model_copy(deep=True)
        return None

    async def get_bill_by_number(
        self,
        user_id: str,
        bill_number: str,
    ) -> Optional[Bill]:
        for bill in self._users[user_id].bills.values():
            if bill.bill_number.upper() == bill_number.upper():
                return bill.model_copy(deep=True)
        return None

    async def list_invoices(
        self,
        user_id: str,
        status: Optional[InvoiceStatus] = None,
        customer_ids: Optional[list[UUID]] = None,
        limit: int = 20,
    ) -> list[Invoice]:
        invoices = [
            invoice for invoice in self._users[user_id].invoices.values()
            if (status is None or invoice.status == status)
            and (customer_ids is None or invoice.customer_id in customer_ids)
        ]
        invoices.sort(key=lambda i: (i.invoice_date, i.invoice_number), reverse=True)
        return [invoice.model_copy(deep=True) for invoice in invoices[:limit]]

    async def list_bills(
        self,
        user_id: str,
        status: Optional[BillStatus] = None,
        vendor_ids: Optional[list[UUID]] = None,
        limit: int = 20,
    ) -> list[Bill]:
        bills = [
            bill for bill in self._users[user_id].bills.values()
            if (status is None or bill.status == status)
            and (vendor_ids is None or bill.vendor_id in vendor_ids)
        ]
        bills.sort(key=lambda b: (b.bill_date, b.bill_number), reverse=True)
        return [bill.model_copy(deep=True) for bill in bills[:limit]]

    async def list_payments(self, user_id: str, source_id: UUID) -> list[Payment]:
        payments = [
            p for p in self._users[user_id].payments.values() if p.source_id == source_id
        ]
        payments.sort(key=lambda p: p.created_at)
        return [payment.model_copy(deep=True) for payment in payments]

    async def list_journal_entries(
        self,
        user_id: str,
        source_id: Optional[UUID] = None,
    ) -> list[JournalEntry]:
        return [
            entry.model_copy(deep=True)
            for entry in self._users[user_id].journal.values()
            if source_id is None or entry.source_id == source_id
        ]

    async def next_invoice_number(self, user_id: str) -> str:
        numbers = [i.invoice_number for i in self._users[user_id].invoices.values()]
        return next_sequence_number("INV", numbers, 4)

    async def next_bill_number(self, user_id: str) -> str:
        numbers = [b.bill_number for b in self._users[user_id].bills.values()]
        return next_sequence_number("BILL", numbers, 4)

    async def next_entry_number(self, user_id: str) -> str:
        numbers = [e.entry_number for e in self._users[user_id].journal.values()]
        return next_sequence_number("JE", numbers, 5)

    async def has_idempotency_key(self, user_id: str, key: UUID) -> bool:
        return key in self._users[user_id].idempotency_keys

    # -------------------------------------------------------------------------
    # Atomic write
    # -------------------------------------------------------------------------

    async def commit(self, unit: LedgerCommit) -> None:
        async with self._lock:
            ledger = self._users[unit.user_id]
            self._check(ledger, unit)

            for customer in unit.customers:
                ledger.customers[customer.id] = customer.model_copy(deep=True)
            for vendor in unit.vendors:
                ledger.vendors[vendor.id] = vendor.model_copy(deep=True)
            for invoice in unit.invoices:
                ledger.invoices[invoice.id] = invoice.model_copy(deep=True)
            for bill in unit.bills:
                ledger.bills[bill.id] = bill.model_copy(deep=True)
            for payment in unit.payments:
                ledger.payments[payment.id] = payment.model_copy(deep=True)
            for entry_id in unit.void_journal_ids:
                ledger.journal[entry_id] = ledger.journal[entry_id].model_copy(
                    update={"status": JournalEntryStatus.VOID}
                )
            for entry in unit.journal_entries:
                ledger.journal[entry.id] = entry.model_copy(deep=True)
            if unit.idempotency_key:
                ledger.idempotency_keys.add(unit.idempotency_key)

    def _check(self, ledger: _UserLedger, unit: LedgerCommit) -> None:
        """Reject the unit before anything is written."""
        if unit.idempotency_key and unit.idempotency_key in ledger.idempotency_keys:
            raise DuplicateError(f"Idempotency key already committed: {unit.idempotency_key}")

        for invoice in unit.invoices:
            if any(
                other.invoice_number == invoice.invoice_number and other.id != invoice.id
                for other in ledger.invoices.values()
            ):
                raise DuplicateError(f"Invoice number taken: {invoice.invoice_number}")

        for bill in unit.bills:
            if any(
                other.bill_number == bill.bill_number and other.id != bill.id
                for other in ledger.bills.values()
            ):
                raise DuplicateError(f"Bill number taken: {bill.bill_number}")

        for entry in unit.journal_entries:
            if any(
                other.entry_number == entry.entry_number and other.id != entry.id
                for other in ledger.journal.values()
            ):
                raise DuplicateError(f"Journal entry number taken: {entry.entry_number}")

        for entry_id in unit.void_journal_ids:
            if entry_id not in ledger.journal:
                raise NotFoundError(f"Journal entry not found: {entry_id}")


class InMemoryAuditStorage(AuditStorageInterface):
    """Audit events kept in a list. Append-only."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
