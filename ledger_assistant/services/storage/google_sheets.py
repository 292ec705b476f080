"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the persistent storage backend because:
1. Non-technical users can view their books directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for a small business)
- No transactions: commit() validates the whole unit first, then writes,
  and undoes what it already wrote if a later write fails
- take() is atomic per process only (an asyncio.Lock), not across processes
- Limited query capabilities (we filter in Python)

Each worksheet holds one record type, one record per row. Nested fields
(lines, collected data) are JSON-serialized into a single cell.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Callable, Generic, Optional, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from ledger_assistant.config import get_settings
from ledger_assistant.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    ConnectionError,
    ContextStoreInterface,
    DuplicateError,
    LedgerStoreInterface,
    MessageStoreInterface,
    NotFoundError,
    StorageError,
)
from ledger_assistant.services.storage.memory import next_sequence_number

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


# Column mappings, one list per worksheet
ACCOUNT_COLUMNS = ["id", "user_id", "code", "name", "account_type"]
CUSTOMER_COLUMNS = ["id", "user_id", "name", "email", "phone", "company_name", "is_active"]
VENDOR_COLUMNS = ["id", "user_id", "name", "email", "phone", "company_name", "is_active"]
PRODUCT_COLUMNS = ["id", "user_id", "name", "unit_price", "product_type", "is_active"]

INVOICE_COLUMNS = [
    "id",
    "user_id",
    "invoice_number",
    "customer_id",
    "invoice_date",
    "due_date",
    "status",
    "subtotal",
    "tax_amount",
    "discount_amount",
    "total_amount",
    "amount_paid",
    "balance_due",
    "notes",
    "journal_entry_id",
    "idempotency_key",
    "created_at",
    "updated_at",
    "sent_at",
    "lines",
]

BILL_COLUMNS = [
    "id",
    "user_id",
    "bill_number",
    "vendor_id",
    "bill_date",
    "due_date",
    "status",
    "subtotal",
    "tax_amount",
    "total_amount",
    "amount_paid",
    "balance_due",
    "notes",
    "journal_entry_id",
    "idempotency_key",
    "created_at",
    "updated_at",
    "lines",
]

PAYMENT_COLUMNS = [
    "id",
    "user_id",
    "payment_type",
    "source_id",
    "amount",
    "payment_date",
    "payment_method",
    "bank_account_id",
    "journal_entry_id",
    "idempotency_key",
    "created_at",
]

JOURNAL_COLUMNS = [
    "id",
    "user_id",
    "entry_number",
    "entry_date",
    "reference",
    "description",
    "source_type",
    "source_id",
    "status",
    "idempotency_key",
    "created_at",
    "lines",
]

CONTEXT_COLUMNS = [
    "conversation_id",
    "user_id",
    "phase",
    "pending_action",
    "collected_data",
    "missing_fields",
    "idempotency_key",
    "updated_at",
]

MESSAGE_COLUMNS = [
    "id",
    "conversation_id",
    "user_id",
    "role",
    "content",
    "type",
    "metadata",
    "created_at",
]

# Same order as AuditEvent.to_sheets_row()
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "conversation_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Cells holding JSON rather than a scalar
JSON_COLUMNS = {"lines", "collected_data", "missing_fields", "metadata", "is_active"}


_sheet_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @property
    def settings(self):
        return self._settings

    @_sheet_retry
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        if title not in self._worksheets:
            spreadsheet = self.get_spreadsheet()
            try:
                sheet = spreadsheet.worksheet(title)
            except gspread.WorksheetNotFound:
                sheet = spreadsheet.add_worksheet(
                    title=title,
                    rows=rows,
                    cols=len(columns),
                )
                sheet.append_row(columns)
            self._worksheets[title] = sheet
        return self._worksheets[title]


class SheetTable(Generic[M]):
    """
    One worksheet mapped to one pydantic model.

    Rows are converted through model_dump(mode="json") so Decimals,
    dates and UUIDs are stored as their canonical strings.
    """

    def __init__(
        self,
        client: GoogleSheetsClient,
        title: str,
        columns: list[str],
        model: type[M],
        rows: int = 1000,
    ):
        self._client = client
        self.title = title
        self.columns = columns
        self.model = model
        self._rows = rows

    def sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self.title, self.columns, self._rows)

    def to_row(self, record: M) -> list:
        data = record.model_dump(mode="json")
        row = []
        for column in self.columns:
            value = data.get(column)
            if column in JSON_COLUMNS:
                row.append(json.dumps(value))
            elif value is None:
                row.append("")
            else:
                row.append(str(value))
        return row

    def from_row(self, row: list) -> M:
        data: dict[str, Any] = {}
        for index, column in enumerate(self.columns):
            value = row[index] if index < len(row) else ""
            if value == "":
                continue
            data[column] = json.loads(value) if column in JSON_COLUMNS else value
        return self.model.model_validate(data)

    def rows(self) -> list[tuple[int, list]]:
        """(sheet row number, values) for every non-empty data row."""
        all_rows = self.sheet().get_all_values()
        return [
            (idx, row)
            for idx, row in enumerate(all_rows[1:], start=2)  # Row 1 is the header
            if row and row[0]
        ]

    def records(self, **filters: str) -> list[tuple[int, M]]:
        """
        Parse every row whose columns equal the given string filters.

        Malformed rows are skipped and logged.
        """
        positions = {name: self.columns.index(name) for name in filters}
        result = []
        for idx, row in self.rows():
            if any(
                (row[pos] if pos < len(row) else "") != filters[name]
                for name, pos in positions.items()
            ):
                continue
            try:
                result.append((idx, self.from_row(row)))
            except Exception as e:
                logger.warning("sheet_row_skipped", sheet=self.title, row=idx, error=str(e))
        return result

    @_sheet_retry
    def append(self, records: list[M]) -> None:
        if records:
            self.sheet().append_rows(
                [self.to_row(r) for r in records],
                value_input_option="RAW",
            )

    @_sheet_retry
    def write_row(self, idx: int, values: list) -> None:
        self.sheet().update(
            range_name=f"A{idx}",
            values=[values],
            value_input_option="RAW",
        )

    @_sheet_retry
    def delete_row(self, idx: int) -> None:
        self.sheet().delete_rows(idx)

    def find_row(self, column: str, value: str) -> Optional[tuple[int, list]]:
        pos = self.columns.index(column)
        for idx, row in self.rows():
            if pos < len(row) and row[pos] == value:
                return idx, row
        return None


# =============================================================================
# CONTEXTS AND MESSAGES
# =============================================================================

class GoogleSheetsContextStore(ContextStoreInterface):
    """
    One row per conversation.

    take() is serialized by a process-wide lock; running several
    processes against one spreadsheet leaves the idempotency key as
    the only protection against a double confirm.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        self._table = SheetTable(
            client, client.settings.contexts_sheet_name, CONTEXT_COLUMNS, ConversationContext
        )
        self._lock = asyncio.Lock()

    async def load(self, conversation_id: str) -> Optional[ConversationContext]:
        try:
            found = self._table.find_row("conversation_id", conversation_id)
            return self._table.from_row(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to load context: {e}")

    async def save(self, context: ConversationContext) -> None:
        async with self._lock:
            try:
                found = self._table.find_row("conversation_id", context.conversation_id)
                if found:
                    self._table.write_row(found[0], self._table.to_row(context))
                else:
                    self._table.append([context])
            except Exception as e:
                raise StorageError(f"Failed to save context: {e}")

    async def clear(self, conversation_id: str) -> None:
        async with self._lock:
            await self._delete(conversation_id)

    async def take(self, conversation_id: str) -> Optional[ConversationContext]:
        async with self._lock:
            return await self._delete(conversation_id)

    async def _delete(self, conversation_id: str) -> Optional[ConversationContext]:
        try:
            found = self._table.find_row("conversation_id", conversation_id)
            if not found:
                return None
            self._table.delete_row(found[0])
            return self._table.from_row(found[1])
        except Exception as e:
            raise StorageError(f"Failed to clear context: {e}")


class GoogleSheetsMessageStore(MessageStoreInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        self._table = SheetTable(
            client, client.settings.messages_sheet_name, MESSAGE_COLUMNS, Message, rows=5000
        )

    async def append(self, message: Message) -> None:
        try:
            self._table.append([message])
        except Exception as e:
            raise StorageError(f"Failed to save message: {e}")

    async def recent(self, conversation_id: str, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        try:
            messages = [m for _, m in self._table.records(conversation_id=conversation_id)]
        except Exception as e:
            raise StorageError(f"Failed to read messages: {e}")
        messages.sort(key=lambda m: m.created_at)
        return messages[-limit:]


# =============================================================================
# LEDGER
# =============================================================================

class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger.

    Reference data (accounts, customers, vendors, products) is maintained
    by the user directly in the spreadsheet; the engine only appends
    the customers and vendors it was asked to create.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        s = client.settings
        self._accounts = SheetTable(client, s.accounts_sheet_name, ACCOUNT_COLUMNS, Account)
        self._customers = SheetTable(client, s.customers_sheet_name, CUSTOMER_COLUMNS, Customer)
        self._vendors = SheetTable(client, s.vendors_sheet_name, VENDOR_COLUMNS, Vendor)
        self._products = SheetTable(client, s.products_sheet_name, PRODUCT_COLUMNS, Product)
        self._invoices = SheetTable(client, s.invoices_sheet_name, INVOICE_COLUMNS, Invoice)
        self._bills = SheetTable(client, s.bills_sheet_name, BILL_COLUMNS, Bill)
        self._payments = SheetTable(client, s.payments_sheet_name, PAYMENT_COLUMNS, Payment)
        self._journal = SheetTable(
            client, s.journal_sheet_name, JOURNAL_COLUMNS, JournalEntry, rows=5000
        )
        self._lock = asyncio.Lock()

    def _read(self, table: SheetTable, user_id: str) -> list:
        try:
            return [record for _, record in table.records(user_id=user_id)]
        except Exception as e:
            raise StorageError(f"Failed to read {table.title}: {e}")

    async def get_snapshot(self, user_id: str) -> ReferenceSnapshot:
        return ReferenceSnapshot(
            user_id=user_id,
            accounts=sorted(self._read(self._accounts, user_id), key=lambda a: a.code),
            customers=[c for c in self._read(self._customers, user_id) if c.is_active],
            vendors=[v for v in self._read(self._vendors, user_id) if v.is_active],
            products=[p for p in self._read(self._products, user_id) if p.is_active],
        )

    async def get_invoice_by_number(
        self,
        user_id: str,
        invoice_number: str,
    ) -> Optional[Invoice]:
        wanted = invoice_number.upper()
        return next(
            (i for i in self._read(self._invoices, user_id) if i.invoice_number.upper() == wanted),
            None,
        )

    async def get_bill_by_number(
        self,
        user_id: str,
        bill_number: str,
    ) -> Optional[Bill]:
        wanted = bill_number.upper()
        return next(
            (b for b in self._read(self._bills, user_id) if b.bill_number.upper() == wanted),
            None,
        )

    async def list_invoices(
        self,
        user_id: str,
        status: Optional[InvoiceStatus] = None,
        customer_ids: Optional[list[UUID]] = None,
        limit: int = 20,
    ) -> list[Invoice]:
        invoices = [
            i for i in self._read(self._invoices, user_id)
            if (status is None or i.status == status)
            and (customer_ids is None or i.customer_id in customer_ids)
        ]
        invoices.sort(key=lambda i: (i.invoice_date, i.invoice_number), reverse=True)
        return invoices[:limit]

    async def list_bills(
        self,
        user_id: str,
        status: Optional[BillStatus] = None,
        vendor_ids: Optional[list[UUID]] = None,
        limit: int = 20,
    ) -> list[Bill]:
        bills = [
            b for b in self._read(self._bills, user_id)
            if (status is None or b.status == status)
            and (vendor_ids is None or b.vendor_id in vendor_ids)
        ]
        bills.sort(key=lambda b: (b.bill_date, b.bill_number), reverse=True)
        return bills[:limit]

    async def list_payments(self, user_id: str, source_id: UUID) -> list[Payment]:
        payments = [p for p in self._read(self._payments, user_id) if p.source_id == source_id]
        payments.sort(key=lambda p: p.created_at)
        return payments

    async def list_journal_entries(
        self,
        user_id: str,
        source_id: Optional[UUID] = None,
    ) -> list[JournalEntry]:
        entries = [
            e for e in self._read(self._journal, user_id)
            if source_id is None or e.source_id == source_id
        ]
        entries.sort(key=lambda e: e.entry_number)
        return entries

    async def next_invoice_number(self, user_id: str) -> str:
        numbers = [i.invoice_number for i in self._read(self._invoices, user_id)]
        return next_sequence_number("INV", numbers, 4)

    async def next_bill_number(self, user_id: str) -> str:
        numbers = [b.bill_number for b in self._read(self._bills, user_id)]
        return next_sequence_number("BILL", numbers, 4)

    async def next_entry_number(self, user_id: str) -> str:
        numbers = [e.entry_number for e in self._read(self._journal, user_id)]
        return next_sequence_number("JE", numbers, 5)

    async def has_idempotency_key(self, user_id: str, key: UUID) -> bool:
        records = [
            *self._read(self._journal, user_id),
            *self._read(self._invoices, user_id),
            *self._read(self._bills, user_id),
            *self._read(self._payments, user_id),
        ]
        return any(record.idempotency_key == key for record in records)

    async def commit(self, unit: LedgerCommit) -> None:
        """
        Validate the unit against current sheet contents, then write it.

        Writes go in dependency order: new rows first, updates second,
        voids last. If any write fails, the completed ones are undone in
        reverse before StorageError is raised.
        """
        async with self._lock:
            await self._check(unit)

            undo: list[Callable[[], None]] = []
            try:
                self._upsert(self._customers, unit.customers, undo)
                self._upsert(self._vendors, unit.vendors, undo)
                self._upsert(self._journal, unit.journal_entries, undo)
                self._upsert(self._invoices, unit.invoices, undo)
                self._upsert(self._bills, unit.bills, undo)
                self._upsert(self._payments, unit.payments, undo)
                self._void_entries(unit.void_journal_ids, undo)
            except Exception as e:
                logger.error(
                    "ledger_commit_failed",
                    user_id=unit.user_id,
                    error=str(e),
                    undo_steps=len(undo),
                )
                for step in reversed(undo):
                    try:
                        step()
                    except Exception as undo_error:
                        logger.critical(
                            "ledger_commit_undo_failed",
                            user_id=unit.user_id,
                            error=str(undo_error),
                        )
                raise StorageError(f"Failed to commit ledger changes: {e}")

    async def _check(self, unit: LedgerCommit) -> None:
        if unit.idempotency_key and await self.has_idempotency_key(
            unit.user_id, unit.idempotency_key
        ):
            raise DuplicateError(f"Idempotency key already committed: {unit.idempotency_key}")

        existing_invoices = self._read(self._invoices, unit.user_id)
        for invoice in unit.invoices:
            if any(
                o.invoice_number == invoice.invoice_number and o.id != invoice.id
                for o in existing_invoices
            ):
                raise DuplicateError(f"Invoice number taken: {invoice.invoice_number}")

        existing_bills = self._read(self._bills, unit.user_id)
        for bill in unit.bills:
            if any(o.bill_number == bill.bill_number and o.id != bill.id for o in existing_bills):
                raise DuplicateError(f"Bill number taken: {bill.bill_number}")

        existing_entries = self._read(self._journal, unit.user_id)
        entry_ids = {e.id for e in existing_entries}
        for entry in unit.journal_entries:
            if any(
                o.entry_number == entry.entry_number and o.id != entry.id
                for o in existing_entries
            ):
                raise DuplicateError(f"Journal entry number taken: {entry.entry_number}")
        for entry_id in unit.void_journal_ids:
            if entry_id not in entry_ids:
                raise NotFoundError(f"Journal entry not found: {entry_id}")

    def _upsert(self, table: SheetTable, records: list, undo: list) -> None:
        new_records = []
        for record in records:
            found = table.find_row("id", str(record.id))
            if found:
                idx, previous = found
                table.write_row(idx, table.to_row(record))
                undo.append(lambda t=table, i=idx, p=previous: t.write_row(i, p))
            else:
                new_records.append(record)
        if new_records:
            table.append(new_records)
            for record in new_records:
                undo.append(lambda t=table, rid=str(record.id): self._delete_by_id(t, rid))

    def _void_entries(self, entry_ids: list[UUID], undo: list) -> None:
        status_col = JOURNAL_COLUMNS.index("status")
        for entry_id in entry_ids:
            idx, row = self._journal.find_row("id", str(entry_id))
            updated = list(row) + [""] * (len(JOURNAL_COLUMNS) - len(row))
            updated[status_col] = JournalEntryStatus.VOID.value
            self._journal.write_row(idx, updated)
            undo.append(lambda i=idx, p=row: self._journal.write_row(i, p))

    @staticmethod
    def _delete_by_id(table: SheetTable, record_id: str) -> None:
        found = table.find_row("id", record_id)
        if found:
            table.delete_row(found[0])


# =============================================================================
# AUDIT
# =============================================================================

class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            user_id=safe_get(4) or None,
            conversation_id=safe_get(5) or None,
            entity_type=safe_get(6) or None,
            entity_id=safe_get(7) or None,
            correlation_id=UUID(safe_get(8)) if safe_get(8) else None,
            description=safe_get(9),
            details=json.loads(safe_get(10)) if safe_get(10) else {},
            error_message=safe_get(11) or None,
            is_user_action=safe_get(12).lower() == "true",
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._append_row(event.to_sheets_row())
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_write_failed", event_type=event.event_type.value, error=str(e))
            return False

    @_sheet_retry
    def _append_row(self, row: list) -> None:
        self._sheet().append_row(row, value_input_option="RAW")

    def _events(self) -> list[AuditEvent]:
        events = []
        for row in self._sheet().get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
