"""
Action Schema

The closed set of actions the assistant can perform. Each variant has a
payload model that IS its field schema: required fields are the payload
fields without a default, in declaration order. "Missing fields" are
therefore computed structurally, never from a list the model made up.

Pure data and pure functions; nothing here touches storage or the model.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ledger_assistant.models.ledger import (
    DocumentTotals,
    InvoiceStatus,
    BillStatus,
    LineItem,
    PaymentMethod,
    ReferenceSnapshot,
    ZERO,
    to_money,
)


class ActionKind(str, Enum):
    """Every action the engine knows how to execute."""
    CREATE_INVOICE = "create_invoice"
    EDIT_INVOICE = "edit_invoice"
    SEND_INVOICE = "send_invoice"
    LIST_INVOICES = "list_invoices"
    GET_INVOICE = "get_invoice"
    VOID_INVOICE = "void_invoice"
    RECORD_INVOICE_PAYMENT = "record_invoice_payment"
    CREATE_BILL = "create_bill"
    LIST_BILLS = "list_bills"
    RECORD_BILL_PAYMENT = "record_bill_payment"
    CREATE_CUSTOMER = "create_customer"
    CREATE_VENDOR = "create_vendor"
    CREATE_TRANSACTION = "create_transaction"


class ActionEffect(str, Enum):
    CREATE = "create"
    MUTATE = "mutate"
    QUERY = "query"


# =============================================================================
# PAYLOADS - one per action
# =============================================================================

class LineInput(BaseModel):
    """
    A line as the user (or model) describes it.

    `amount` is accepted as a shorthand for a line total when no unit
    price is given. A line with only a `product_id` takes the product's
    price from the catalog at execution time.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    amount: Optional[Decimal] = Field(default=None, ge=0)
    tax_rate: Decimal = Field(default=ZERO, ge=0, le=100)
    account_id: Optional[UUID] = None
    product_id: Optional[UUID] = None

    @model_validator(mode="after")
    def derive_unit_price(self) -> "LineInput":
        if self.unit_price is None and self.amount is not None:
            self.unit_price = self.amount / self.quantity
        return self

    def to_line_item(self, snapshot: Optional[ReferenceSnapshot] = None) -> LineItem:
        unit_price = self.unit_price
        if unit_price is None and self.product_id and snapshot:
            product = snapshot.product_by_id(self.product_id)
            if product:
                unit_price = product.unit_price
        if unit_price is None:
            raise ValueError(f"Line '{self.description}' has no price")
        return LineItem(
            description=self.description,
            quantity=self.quantity,
            unit_price=unit_price,
            tax_rate=self.tax_rate,
            account_id=self.account_id,
            product_id=self.product_id,
        )


class TransactionLineInput(BaseModel):
    """One leg of a manual journal entry."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    account_id: UUID
    debit: Decimal = Field(default=ZERO, ge=0)
    credit: Decimal = Field(default=ZERO, ge=0)
    description: str = Field(default="", max_length=500)

    @model_validator(mode="after")
    def one_side(self) -> "TransactionLineInput":
        if (self.debit > 0) == (self.credit > 0):
            raise ValueError("each line needs either a debit or a credit, not both")
        return self


class _Payload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


def _normalize_ref(value: str) -> str:
    return value.strip().lstrip("#").upper()


class _InvoiceRef(_Payload):
    invoice_ref: str = Field(..., min_length=1, max_length=30)

    @field_validator("invoice_ref")
    @classmethod
    def normalize_ref(cls, v: str) -> str:
        return _normalize_ref(v)


class CreateInvoiceData(_Payload):
    customer_id: UUID
    lines: list[LineInput] = Field(..., min_length=1)
    invoice_date: date
    due_date: date
    notes: Optional[str] = Field(default=None, max_length=1000)
    discount_amount: Decimal = Field(default=ZERO, ge=0)
    draft: bool = False


class EditInvoiceData(_InvoiceRef):
    customer_id: Optional[UUID] = None
    lines: Optional[list[LineInput]] = Field(default=None, min_length=1)
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    draft: Optional[bool] = None


class SendInvoiceData(_InvoiceRef):
    pass


class GetInvoiceData(_InvoiceRef):
    pass


class VoidInvoiceData(_InvoiceRef):
    reason: Optional[str] = Field(default=None, max_length=500)


class ListInvoicesData(_Payload):
    status: Optional[InvoiceStatus] = None
    customer_name: Optional[str] = Field(default=None, max_length=200)
    limit: int = Field(default=20, ge=1, le=100)


class RecordInvoicePaymentData(_InvoiceRef):
    amount: Decimal = Field(..., gt=0)
    payment_date: date
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    bank_account_id: Optional[UUID] = None


class CreateBillData(_Payload):
    vendor_id: UUID
    lines: list[LineInput] = Field(..., min_length=1)
    bill_date: date
    due_date: date
    notes: Optional[str] = Field(default=None, max_length=1000)


class ListBillsData(_Payload):
    status: Optional[BillStatus] = None
    vendor_name: Optional[str] = Field(default=None, max_length=200)
    limit: int = Field(default=20, ge=1, le=100)


class RecordBillPaymentData(_Payload):
    bill_ref: str = Field(..., min_length=1, max_length=30)
    amount: Decimal = Field(..., gt=0)
    payment_date: date
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    bank_account_id: Optional[UUID] = None

    @field_validator("bill_ref")
    @classmethod
    def normalize_ref(cls, v: str) -> str:
        return _normalize_ref(v)


class CreateCustomerData(_Payload):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=50)
    company_name: Optional[str] = Field(default=None, max_length=200)


class CreateVendorData(_Payload):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=50)
    company_name: Optional[str] = Field(default=None, max_length=200)


class CreateTransactionData(_Payload):
    description: str = Field(..., min_length=1, max_length=500)
    lines: list[TransactionLineInput] = Field(..., min_length=2)
    transaction_date: date
    reference: Optional[str] = Field(default=None, max_length=100)


# =============================================================================
# SCHEMA REGISTRY
# =============================================================================

@dataclass(frozen=True)
class ActionSpec:
    """Static description of one action variant."""

    kind: ActionKind
    payload: type[BaseModel]
    effect: ActionEffect
    posts_to_ledger: bool
    requires_confirmation: bool
    summary: str

    @property
    def required_fields(self) -> list[str]:
        return [
            name for name, info in self.payload.model_fields.items()
            if info.is_required()
        ]

    @property
    def optional_fields(self) -> list[str]:
        return [
            name for name, info in self.payload.model_fields.items()
            if not info.is_required()
        ]

    @property
    def all_fields(self) -> list[str]:
        return list(self.payload.model_fields)


ACTION_SCHEMA: dict[ActionKind, ActionSpec] = {
    spec.kind: spec for spec in [
        ActionSpec(
            ActionKind.CREATE_INVOICE, CreateInvoiceData, ActionEffect.CREATE,
            posts_to_ledger=True, requires_confirmation=True,
            summary="Create an invoice for a customer and post it (Dr AR / Cr Revenue).",
        ),
        ActionSpec(
            ActionKind.EDIT_INVOICE, EditInvoiceData, ActionEffect.MUTATE,
            posts_to_ledger=True, requires_confirmation=True,
            summary="Change an unpaid invoice; re-posts it when amounts change.",
        ),
        ActionSpec(
            ActionKind.SEND_INVOICE, SendInvoiceData, ActionEffect.MUTATE,
            posts_to_ledger=False, requires_confirmation=False,
            summary="Mark an invoice as sent to the customer.",
        ),
        ActionSpec(
            ActionKind.LIST_INVOICES, ListInvoicesData, ActionEffect.QUERY,
            posts_to_ledger=False, requires_confirmation=False,
            summary="List invoices, optionally by status or customer name.",
        ),
        ActionSpec(
            ActionKind.GET_INVOICE, GetInvoiceData, ActionEffect.QUERY,
            posts_to_ledger=False, requires_confirmation=False,
            summary="Show one invoice by number.",
        ),
        ActionSpec(
            ActionKind.VOID_INVOICE, VoidInvoiceData, ActionEffect.MUTATE,
            posts_to_ledger=True, requires_confirmation=True,
            summary="Void an unpaid invoice and its journal entry.",
        ),
        ActionSpec(
            ActionKind.RECORD_INVOICE_PAYMENT, RecordInvoicePaymentData, ActionEffect.CREATE,
            posts_to_ledger=True, requires_confirmation=True,
            summary="Record money received for an invoice (Dr Bank / Cr AR).",
        ),
        ActionSpec(
            ActionKind.CREATE_BILL, CreateBillData, ActionEffect.CREATE,
            posts_to_ledger=True, requires_confirmation=True,
            summary="Enter a vendor bill (Dr Expenses / Cr AP).",
        ),
        ActionSpec(
            ActionKind.LIST_BILLS, ListBillsData, ActionEffect.QUERY,
            posts_to_ledger=False, requires_confirmation=False,
            summary="List bills, optionally by status or vendor name.",
        ),
        ActionSpec(
            ActionKind.RECORD_BILL_PAYMENT, RecordBillPaymentData, ActionEffect.CREATE,
            posts_to_ledger=True, requires_confirmation=True,
            summary="Record a payment made against a bill (Dr AP / Cr Bank).",
        ),
        ActionSpec(
            ActionKind.CREATE_CUSTOMER, CreateCustomerData, ActionEffect.CREATE,
            posts_to_ledger=False, requires_confirmation=True,
            summary="Add a customer.",
        ),
        ActionSpec(
            ActionKind.CREATE_VENDOR, CreateVendorData, ActionEffect.CREATE,
            posts_to_ledger=False, requires_confirmation=True,
            summary="Add a vendor.",
        ),
        ActionSpec(
            ActionKind.CREATE_TRANSACTION, CreateTransactionData, ActionEffect.CREATE,
            posts_to_ledger=True, requires_confirmation=True,
            summary="Post a manual journal entry; debits must equal credits.",
        ),
    ]
}


def get_spec(kind: ActionKind) -> ActionSpec:
    return ACTION_SCHEMA[kind]


def parse_action_kind(value: Any) -> Optional[ActionKind]:
    """
    Resolve an action name from untrusted text.

    Accepts "CREATE_INVOICE", "create-invoice", "CreateInvoice".
    Returns None for anything not in the closed set.
    """
    if isinstance(value, ActionKind):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    # CamelCase → snake_case
    snake = "".join(
        f"_{ch.lower()}" if ch.isupper() and i > 0 and not text[i - 1].isupper() and text[i - 1] != "_" else ch.lower()
        for i, ch in enumerate(text)
    )
    snake = snake.replace("-", "_").replace(" ", "_")
    try:
        return ActionKind(snake)
    except ValueError:
        return None


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, dict)) and not value:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def missing_fields(kind: ActionKind, data: dict[str, Any]) -> list[str]:
    """Required fields of `kind` not present in `data`, in schema order."""
    return [f for f in get_spec(kind).required_fields if not _is_present(data.get(f))]


def merge_collected(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """
    Merge newly collected fields into what was gathered so far.

    A field already collected is only replaced when the new turn
    supplies a present value for it; empty values never erase data.
    """
    merged = dict(existing)
    for key, value in incoming.items():
        if _is_present(value) or isinstance(value, bool):
            merged[key] = value
    return merged


def restrict_to_schema(kind: ActionKind, data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys the action does not define."""
    allowed = set(get_spec(kind).all_fields)
    return {k: v for k, v in data.items() if k in allowed}


def normalize_preview(
    kind: ActionKind,
    data: dict[str, Any],
    snapshot: Optional[ReferenceSnapshot] = None,
) -> dict[str, Any]:
    """
    Prepare action data for display.

    Unknown keys are dropped and, for actions with lines, totals are
    computed here from the lines - a total supplied by the model is
    discarded. Lines that do not parse leave totals out; the validator
    will reject them at execution.
    """
    preview = restrict_to_schema(kind, data)
    lines = preview.get("lines")
    if not isinstance(lines, list) or not lines:
        return preview
    if kind == ActionKind.CREATE_TRANSACTION:
        return _transaction_preview(preview, lines)

    try:
        items = [LineInput.model_validate(line).to_line_item(snapshot) for line in lines]
        discount = to_money(preview.get("discount_amount") or 0)
    except (ValidationError, ValueError, TypeError, ArithmeticError):
        return preview

    totals = DocumentTotals.from_lines(items, discount)
    preview["lines"] = [
        {**line, "amount": float(item.amount)}
        for line, item in zip(lines, items)
    ]
    preview["subtotal"] = float(totals.subtotal)
    preview["tax_amount"] = float(totals.tax_amount)
    preview["total_amount"] = float(totals.total_amount)
    return preview


def _transaction_preview(preview: dict[str, Any], lines: list[Any]) -> dict[str, Any]:
    try:
        legs = [TransactionLineInput.model_validate(line) for line in lines]
    except (ValidationError, TypeError):
        return preview
    preview["total_debits"] = float(sum((to_money(leg.debit) for leg in legs), ZERO))
    preview["total_credits"] = float(sum((to_money(leg.credit) for leg in legs), ZERO))
    return preview
