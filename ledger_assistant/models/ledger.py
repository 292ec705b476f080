"""
Ledger Data Models for Ledger Assistant

These models define the strict schemas for the records the engine reads
and writes: the user's reference data (accounts, customers, vendors,
products), business documents (invoices, bills, payments) and the
double-entry journal.

DESIGN DECISION: Money is always Decimal, quantized to cents.
Floats never reach the ledger, so the balance check is exact.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Quantize any numeric value to cents."""
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Top-level account classification."""
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class InvoiceStatus(str, Enum):
    """
    Invoice lifecycle.

    DRAFT invoices are not posted to the ledger. Every other
    status except VOID has a live journal entry.
    """
    DRAFT = "draft"
    OPEN = "open"        # Posted, not yet sent to the customer
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    VOID = "void"


class BillStatus(str, Enum):
    """Vendor bill lifecycle."""
    OPEN = "open"
    PARTIAL = "partial"
    PAID = "paid"
    VOID = "void"


class JournalEntryStatus(str, Enum):
    POSTED = "posted"
    VOID = "void"


class PaymentType(str, Enum):
    INVOICE_PAYMENT = "invoice_payment"
    BILL_PAYMENT = "bill_payment"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"


# =============================================================================
# REFERENCE DATA - read-only from the engine's point of view
# =============================================================================

class Account(BaseModel):
    """An account in the user's chart of accounts."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    account_type: AccountType


class Customer(BaseModel):
    """Someone the user invoices."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=50)
    company_name: Optional[str] = Field(default=None, max_length=200)
    is_active: bool = True


class Vendor(BaseModel):
    """Someone who bills the user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=50)
    company_name: Optional[str] = Field(default=None, max_length=200)
    is_active: bool = True


class Product(BaseModel):
    """A product or service in the user's catalog."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    name: str = Field(..., min_length=1, max_length=200)
    unit_price: Decimal = Field(default=ZERO, ge=0)
    product_type: str = Field(default="service")
    is_active: bool = True


class ReferenceSnapshot(BaseModel):
    """
    Everything the engine may reference for one user.

    The prompt builder shows a bounded sample of this to the model;
    the validator checks every identifier the model returns against it.
    """

    user_id: str
    accounts: list[Account] = Field(default_factory=list)
    customers: list[Customer] = Field(default_factory=list)
    vendors: list[Vendor] = Field(default_factory=list)
    products: list[Product] = Field(default_factory=list)

    def account_by_code(self, code: str) -> Optional[Account]:
        return next((a for a in self.accounts if a.code == code), None)

    def account_by_id(self, account_id: UUID) -> Optional[Account]:
        return next((a for a in self.accounts if a.id == account_id), None)

    def customer_by_id(self, customer_id: UUID) -> Optional[Customer]:
        return next((c for c in self.customers if c.id == customer_id), None)

    def vendor_by_id(self, vendor_id: UUID) -> Optional[Vendor]:
        return next((v for v in self.vendors if v.id == vendor_id), None)

    def product_by_id(self, product_id: UUID) -> Optional[Product]:
        return next((p for p in self.products if p.id == product_id), None)


# =============================================================================
# BUSINESS DOCUMENTS
# =============================================================================

class LineItem(BaseModel):
    """
    A line on an invoice or bill.

    amount = quantity × unit_price, tax = amount × tax_rate / 100,
    each rounded to cents on its own so that the document totals are
    exact sums of the line values.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal = Field(..., ge=0)
    tax_rate: Decimal = Field(
        default=ZERO,
        ge=0,
        le=100,
        description="Tax rate in percent"
    )
    account_id: Optional[UUID] = Field(
        default=None,
        description="Revenue/expense account; defaults to the standard one"
    )
    product_id: Optional[UUID] = None

    @property
    def amount(self) -> Decimal:
        return to_money(self.quantity * self.unit_price)

    @property
    def tax(self) -> Decimal:
        return to_money(self.amount * self.tax_rate / Decimal("100"))


class DocumentTotals(BaseModel):
    """Computed totals of a set of lines."""

    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal

    @classmethod
    def from_lines(
        cls,
        lines: list[LineItem],
        discount_amount: Decimal = ZERO,
    ) -> "DocumentTotals":
        subtotal = sum((line.amount for line in lines), ZERO)
        tax = sum((line.tax for line in lines), ZERO)
        discount = to_money(discount_amount)
        return cls(
            subtotal=subtotal,
            tax_amount=tax,
            discount_amount=discount,
            total_amount=subtotal + tax - discount,
        )


class Invoice(BaseModel):
    """A sales invoice (the customer owes the user)."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    invoice_number: str
    customer_id: UUID
    invoice_date: date
    due_date: date
    lines: list[LineItem] = Field(..., min_length=1)

    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = Field(default=ZERO, ge=0)
    total_amount: Decimal = ZERO
    amount_paid: Decimal = Field(default=ZERO, ge=0)
    balance_due: Decimal = ZERO

    status: InvoiceStatus = InvoiceStatus.OPEN
    notes: Optional[str] = Field(default=None, max_length=1000)
    journal_entry_id: Optional[UUID] = None
    idempotency_key: Optional[UUID] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    sent_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_dates(self) -> 'Invoice':
        if self.due_date < self.invoice_date:
            raise ValueError("Due date cannot be before invoice date")
        return self

    def apply_totals(self) -> 'Invoice':
        """Recompute totals and balance from the lines."""
        totals = DocumentTotals.from_lines(self.lines, self.discount_amount)
        self.subtotal = totals.subtotal
        self.tax_amount = totals.tax_amount
        self.discount_amount = totals.discount_amount
        self.total_amount = totals.total_amount
        self.balance_due = self.total_amount - self.amount_paid
        return self

    @property
    def is_posted(self) -> bool:
        return self.journal_entry_id is not None and self.status not in (
            InvoiceStatus.DRAFT, InvoiceStatus.VOID,
        )


class Bill(BaseModel):
    """A vendor bill (the user owes the vendor)."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    bill_number: str
    vendor_id: UUID
    bill_date: date
    due_date: date
    lines: list[LineItem] = Field(..., min_length=1)

    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    amount_paid: Decimal = Field(default=ZERO, ge=0)
    balance_due: Decimal = ZERO

    status: BillStatus = BillStatus.OPEN
    notes: Optional[str] = Field(default=None, max_length=1000)
    journal_entry_id: Optional[UUID] = None
    idempotency_key: Optional[UUID] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_dates(self) -> 'Bill':
        if self.due_date < self.bill_date:
            raise ValueError("Due date cannot be before bill date")
        return self

    def apply_totals(self) -> 'Bill':
        totals = DocumentTotals.from_lines(self.lines)
        self.subtotal = totals.subtotal
        self.tax_amount = totals.tax_amount
        self.total_amount = totals.total_amount
        self.balance_due = self.total_amount - self.amount_paid
        return self


class Payment(BaseModel):
    """Money received for an invoice or paid against a bill."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    payment_type: PaymentType
    source_id: UUID = Field(..., description="Invoice or bill the payment settles")
    amount: Decimal = Field(..., gt=0)
    payment_date: date
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    bank_account_id: UUID
    journal_entry_id: Optional[UUID] = None
    idempotency_key: Optional[UUID] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# JOURNAL
# =============================================================================

class JournalLine(BaseModel):
    """
    One side of a journal entry.

    Exactly one of debit/credit is non-zero.
    """

    account_id: UUID
    debit: Decimal = Field(default=ZERO, ge=0)
    credit: Decimal = Field(default=ZERO, ge=0)
    description: str = ""

    @model_validator(mode='after')
    def validate_one_side(self) -> 'JournalLine':
        if (self.debit > 0) == (self.credit > 0):
            raise ValueError("A journal line must have exactly one of debit or credit")
        return self


class JournalEntry(BaseModel):
    """
    A balanced set of debit/credit lines recording one financial event.

    Construction does not enforce the balance; the posting engine checks
    it before the entry is handed to storage.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    entry_number: str = ""
    entry_date: date
    reference: str = ""
    description: str = ""
    source_type: str
    source_id: UUID
    status: JournalEntryStatus = JournalEntryStatus.POSTED
    lines: list[JournalLine] = Field(default_factory=list)
    idempotency_key: Optional[UUID] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits and self.total_debits > 0


# =============================================================================
# ATOMIC COMMIT UNIT
# =============================================================================

class LedgerCommit(BaseModel):
    """
    Everything one action writes, applied by storage all-or-nothing.

    Records are upserts keyed by id. `void_journal_ids` marks existing
    entries void in the same unit (re-posting, voiding an invoice).
    """

    user_id: str
    idempotency_key: Optional[UUID] = None
    invoices: list[Invoice] = Field(default_factory=list)
    bills: list[Bill] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)
    customers: list[Customer] = Field(default_factory=list)
    vendors: list[Vendor] = Field(default_factory=list)
    journal_entries: list[JournalEntry] = Field(default_factory=list)
    void_journal_ids: list[UUID] = Field(default_factory=list)
