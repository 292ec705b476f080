"""
Action Executor

DESIGN DECISION: Execution is DETERMINISTIC.
The model proposes an action and its data; this executor validates the
data again from scratch, resolves every reference against the user's own
records and only then writes.

GUARANTEES:
- Every money-moving action writes ONE LedgerCommit, applied atomically
- Every journal entry in a commit has passed the balance check
- A commit carrying an idempotency key that was already committed is
  rejected with ReplayedActionError, so a replayed confirm never posts twice
- Query actions never write

Errors raised: ValidationError, NotFoundError, ConflictError,
ReplayedActionError (see ledger_assistant.errors). Storage failures
propagate as StorageError.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog

from ledger_assistant.errors import (
    ConflictError,
    NotFoundError,
    ReplayedActionError,
    ValidationError,
)
from ledger_assistant.ledger.posting import PostingEngine
from ledger_assistant.models.actions import (
    ActionKind,
    CreateBillData,
    CreateCustomerData,
    CreateInvoiceData,
    CreateTransactionData,
    CreateVendorData,
    EditInvoiceData,
    GetInvoiceData,
    ListBillsData,
    ListInvoicesData,
    RecordBillPaymentData,
    RecordInvoicePaymentData,
    SendInvoiceData,
    VoidInvoiceData,
)
from ledger_assistant.models.ledger import (
    Bill,
    BillStatus,
    Customer,
    Invoice,
    InvoiceStatus,
    JournalEntry,
    LedgerCommit,
    Payment,
    PaymentType,
    ReferenceSnapshot,
    Vendor,
    ZERO,
    to_money,
)
from ledger_assistant.services.storage import DuplicateError, LedgerStoreInterface
from ledger_assistant.services.storage import NotFoundError as StorageNotFoundError
from ledger_assistant.validation import ActionValidator

logger = structlog.get_logger(__name__)

_PREFIXED_REF = re.compile(r"^([A-Z]{2,5})-?(\d+)$")


@dataclass
class ExecutionResult:
    """What an executed action reports back to the conversation."""

    response: str
    data: Any = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    journal_entries: list[JournalEntry] = field(default_factory=list)
    voided_entry_ids: list[UUID] = field(default_factory=list)


def money(value: Decimal) -> str:
    return f"{value:,.2f}"


def reference_candidates(ref: str, default_prefix: str, width: int = 4) -> list[str]:
    """
    Document numbers a user-typed reference may stand for.

    "INV-0001", "inv1" and "1" all resolve to "INV-0001".
    """
    ref = ref.strip().lstrip("#").upper()
    candidates = [ref]
    if ref.isdigit():
        candidates.append(f"{default_prefix}-{int(ref):0{width}d}")
    else:
        match = _PREFIXED_REF.match(ref)
        if match:
            prefix, digits = match.groups()
            candidates.append(f"{prefix}-{digits}")
            candidates.append(f"{prefix}-{int(digits):0{width}d}")
    return list(dict.fromkeys(candidates))


class ActionExecutor:
    """
    Runs validated actions against the ledger.

    Args:
        ledger: Ledger storage
        posting: Journal construction and balance check
        validator: Two-stage action validator
    """

    def __init__(
        self,
        ledger: LedgerStoreInterface,
        posting: PostingEngine,
        validator: Optional[ActionValidator] = None,
    ):
        self._ledger = ledger
        self._posting = posting
        self._validator = validator or ActionValidator()
        self._handlers = {
            ActionKind.CREATE_INVOICE: self._create_invoice,
            ActionKind.EDIT_INVOICE: self._edit_invoice,
            ActionKind.SEND_INVOICE: self._send_invoice,
            ActionKind.LIST_INVOICES: self._list_invoices,
            ActionKind.GET_INVOICE: self._get_invoice,
            ActionKind.VOID_INVOICE: self._void_invoice,
            ActionKind.RECORD_INVOICE_PAYMENT: self._record_invoice_payment,
            ActionKind.CREATE_BILL: self._create_bill,
            ActionKind.LIST_BILLS: self._list_bills,
            ActionKind.RECORD_BILL_PAYMENT: self._record_bill_payment,
            ActionKind.CREATE_CUSTOMER: self._create_customer,
            ActionKind.CREATE_VENDOR: self._create_vendor,
            ActionKind.CREATE_TRANSACTION: self._create_transaction,
        }

    async def execute(
        self,
        kind: ActionKind,
        data: dict[str, Any],
        user_id: str,
        idempotency_key: Optional[UUID] = None,
    ) -> ExecutionResult:
        """
        Validate and run one action.

        Raises:
            ValidationError: Missing/invalid fields, foreign ids, bad state
            NotFoundError: Referenced invoice or bill does not exist
            ConflictError: Unbalanced entry or a number taken concurrently
            ReplayedActionError: The idempotency key was already committed
        """
        payload = self._validator.parse(kind, data)
        snapshot = await self._ledger.get_snapshot(user_id)
        self._validator.check_references(payload, snapshot)

        if idempotency_key and await self._ledger.has_idempotency_key(user_id, idempotency_key):
            logger.warning(
                "idempotency_key_replayed",
                user_id=user_id,
                action=kind.value,
                idempotency_key=str(idempotency_key),
            )
            raise ReplayedActionError(f"Idempotency key {idempotency_key} already committed")

        result = await self._handlers[kind](payload, snapshot, user_id, idempotency_key)
        logger.info(
            "action_executed",
            user_id=user_id,
            action=kind.value,
            entity_id=result.entity_id,
            journal_entries=len(result.journal_entries),
        )
        return result

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _commit(self, unit: LedgerCommit) -> None:
        try:
            await self._ledger.commit(unit)
        except DuplicateError as e:
            if unit.idempotency_key and await self._ledger.has_idempotency_key(
                unit.user_id, unit.idempotency_key
            ):
                raise ReplayedActionError(str(e)) from e
            raise ConflictError(str(e)) from e
        except StorageNotFoundError as e:
            raise ConflictError(str(e)) from e

        logger.info(
            "ledger_commit",
            user_id=unit.user_id,
            journal_entries=len(unit.journal_entries),
            voided=len(unit.void_journal_ids),
        )

    async def _find_invoice(self, user_id: str, ref: str) -> Invoice:
        for number in reference_candidates(ref, "INV"):
            invoice = await self._ledger.get_invoice_by_number(user_id, number)
            if invoice:
                return invoice
        raise NotFoundError(f"Invoice {ref} not found", user_message=f"I couldn't find invoice {ref}.")

    async def _find_bill(self, user_id: str, ref: str) -> Bill:
        for number in reference_candidates(ref, "BILL"):
            bill = await self._ledger.get_bill_by_number(user_id, number)
            if bill:
                return bill
        raise NotFoundError(f"Bill {ref} not found", user_message=f"I couldn't find bill {ref}.")

    @staticmethod
    def _require_positive_total(total: Decimal, document: str) -> None:
        if total <= 0:
            raise ValidationError(
                f"{document} total {total} is not positive",
                fields=["lines"],
                user_message=f"The {document.lower()} total must be greater than zero.",
            )

    @staticmethod
    def _require_positive_payment(amount: Decimal) -> None:
        # Sub-cent amounts round to zero
        if amount <= 0:
            raise ValidationError(
                f"Payment amount {amount} is not positive",
                fields=["amount"],
                user_message="The payment amount must be at least 0.01.",
            )

    @staticmethod
    def _party_name(snapshot: ReferenceSnapshot, invoice: Invoice) -> str:
        customer = snapshot.customer_by_id(invoice.customer_id)
        return customer.name if customer else "unknown customer"

    @staticmethod
    def invoice_summary(invoice: Invoice, snapshot: ReferenceSnapshot) -> dict[str, Any]:
        customer = snapshot.customer_by_id(invoice.customer_id)
        return {
            "invoice_number": invoice.invoice_number,
            "customer": customer.name if customer else None,
            "invoice_date": invoice.invoice_date.isoformat(),
            "due_date": invoice.due_date.isoformat(),
            "total_amount": float(invoice.total_amount),
            "amount_paid": float(invoice.amount_paid),
            "balance_due": float(invoice.balance_due),
            "status": invoice.status.value,
        }

    @staticmethod
    def bill_summary(bill: Bill, snapshot: ReferenceSnapshot) -> dict[str, Any]:
        vendor = snapshot.vendor_by_id(bill.vendor_id)
        return {
            "bill_number": bill.bill_number,
            "vendor": vendor.name if vendor else None,
            "bill_date": bill.bill_date.isoformat(),
            "due_date": bill.due_date.isoformat(),
            "total_amount": float(bill.total_amount),
            "amount_paid": float(bill.amount_paid),
            "balance_due": float(bill.balance_due),
            "status": bill.status.value,
        }

    async def load_invoice_for_edit(self, user_id: str, ref: str) -> dict[str, Any]:
        """
        The current values of an invoice as edit_invoice data.

        Raises:
            NotFoundError: No such invoice
            ValidationError: The invoice can no longer be edited
        """
        invoice = await self._find_invoice(user_id, ref)
        self._check_editable(invoice)
        return {
            "invoice_ref": invoice.invoice_number,
            "customer_id": str(invoice.customer_id),
            "invoice_date": invoice.invoice_date.isoformat(),
            "due_date": invoice.due_date.isoformat(),
            "lines": [
                {
                    "description": item.description,
                    "quantity": float(item.quantity),
                    "unit_price": float(item.unit_price),
                    "tax_rate": float(item.tax_rate),
                    **({"account_id": str(item.account_id)} if item.account_id else {}),
                    **({"product_id": str(item.product_id)} if item.product_id else {}),
                }
                for item in invoice.lines
            ],
            "discount_amount": float(invoice.discount_amount),
            "notes": invoice.notes,
        }

    @staticmethod
    def _check_editable(invoice: Invoice) -> None:
        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.VOID):
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value}",
                user_message=(
                    f"Invoice {invoice.invoice_number} is {invoice.status.value} "
                    "and can't be edited."
                ),
            )
        if invoice.amount_paid > 0:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} has payments",
                user_message=(
                    f"Invoice {invoice.invoice_number} already has payments recorded "
                    "and can't be edited."
                ),
            )

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def _create_invoice(
        self,
        payload: CreateInvoiceData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        lines = self._validator.line_items(payload.lines, snapshot)
        invoice = Invoice(
            user_id=user_id,
            invoice_number=await self._ledger.next_invoice_number(user_id),
            customer_id=payload.customer_id,
            invoice_date=payload.invoice_date,
            due_date=payload.due_date,
            lines=lines,
            discount_amount=to_money(payload.discount_amount),
            notes=payload.notes,
            status=InvoiceStatus.DRAFT if payload.draft else InvoiceStatus.OPEN,
            idempotency_key=key,
        ).apply_totals()
        self._require_positive_total(invoice.total_amount, "Invoice")

        unit = LedgerCommit(user_id=user_id, idempotency_key=key, invoices=[invoice])
        if not payload.draft:
            entry = self._posting.invoice_entry(
                invoice, snapshot, await self._ledger.next_entry_number(user_id), key
            )
            invoice.journal_entry_id = entry.id
            unit.journal_entries.append(entry)

        await self._commit(unit)

        customer = self._party_name(snapshot, invoice)
        if payload.draft:
            response = (
                f"Draft invoice {invoice.invoice_number} saved for {customer}: "
                f"total {money(invoice.total_amount)}. It is not posted yet."
            )
        else:
            response = (
                f"Invoice {invoice.invoice_number} created for {customer}: "
                f"total {money(invoice.total_amount)}, due {invoice.due_date.isoformat()}."
            )
        return ExecutionResult(
            response=response,
            data=self.invoice_summary(invoice, snapshot),
            entity_type="invoice",
            entity_id=invoice.invoice_number,
            journal_entries=unit.journal_entries,
            voided_entry_ids=unit.void_journal_ids,
        )

    async def _edit_invoice(
        self,
        payload: EditInvoiceData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        invoice = await self._find_invoice(user_id, payload.invoice_ref)
        self._check_editable(invoice)

        if payload.draft is True and invoice.status != InvoiceStatus.DRAFT:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is posted",
                user_message=(
                    f"Invoice {invoice.invoice_number} is already posted and can't go back "
                    "to draft. Void it instead."
                ),
            )

        updated = invoice.model_copy(deep=True)
        if payload.customer_id is not None:
            updated.customer_id = payload.customer_id
        if payload.lines is not None:
            updated.lines = self._validator.line_items(payload.lines, snapshot)
        if payload.invoice_date is not None:
            updated.invoice_date = payload.invoice_date
        if payload.due_date is not None:
            updated.due_date = payload.due_date
        if payload.discount_amount is not None:
            updated.discount_amount = to_money(payload.discount_amount)
        if payload.notes is not None:
            updated.notes = payload.notes

        if updated.due_date < updated.invoice_date:
            raise ValidationError(
                "Due date is before invoice date",
                fields=["due_date"],
                user_message="The due date can't be before the invoice date.",
            )
        updated.apply_totals()
        self._require_positive_total(updated.total_amount, "Invoice")
        updated.updated_at = datetime.utcnow()

        unit = LedgerCommit(user_id=user_id, idempotency_key=key, invoices=[updated])
        finalizing = invoice.status == InvoiceStatus.DRAFT and payload.draft is False
        reposting = invoice.is_posted and self._posting_changed(invoice, updated)

        if finalizing or reposting:
            entry = self._posting.invoice_entry(
                updated, snapshot, await self._ledger.next_entry_number(user_id), key
            )
            if reposting and invoice.journal_entry_id:
                unit.void_journal_ids.append(invoice.journal_entry_id)
            updated.journal_entry_id = entry.id
            unit.journal_entries.append(entry)
            if finalizing:
                updated.status = InvoiceStatus.OPEN

        await self._commit(unit)

        if finalizing:
            response = (
                f"Invoice {updated.invoice_number} finalized and posted: "
                f"total {money(updated.total_amount)}."
            )
        elif reposting:
            response = (
                f"Invoice {updated.invoice_number} updated and re-posted: "
                f"total {money(updated.total_amount)}."
            )
        else:
            response = f"Invoice {updated.invoice_number} updated."
        return ExecutionResult(
            response=response,
            data=self.invoice_summary(updated, snapshot),
            entity_type="invoice",
            entity_id=updated.invoice_number,
            journal_entries=unit.journal_entries,
            voided_entry_ids=unit.void_journal_ids,
        )

    @staticmethod
    def _posting_changed(before: Invoice, after: Invoice) -> bool:
        """Does the change alter what the journal entry records?"""
        def shape(invoice: Invoice) -> tuple:
            return (
                invoice.invoice_date,
                invoice.total_amount,
                invoice.tax_amount,
                invoice.discount_amount,
                tuple((item.account_id, item.amount) for item in invoice.lines),
            )
        return shape(before) != shape(after)

    async def _send_invoice(
        self,
        payload: SendInvoiceData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        invoice = await self._find_invoice(user_id, payload.invoice_ref)
        if invoice.status == InvoiceStatus.DRAFT:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is a draft",
                user_message=(
                    f"Invoice {invoice.invoice_number} is still a draft. "
                    "Finalize it before sending."
                ),
            )
        if invoice.status == InvoiceStatus.VOID:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is void",
                user_message=f"Invoice {invoice.invoice_number} is void and can't be sent.",
            )

        now = datetime.utcnow()
        invoice.sent_at = now
        invoice.updated_at = now
        if invoice.status == InvoiceStatus.OPEN:
            invoice.status = InvoiceStatus.SENT
        await self._commit(LedgerCommit(user_id=user_id, idempotency_key=key, invoices=[invoice]))

        return ExecutionResult(
            response=(
                f"Invoice {invoice.invoice_number} marked as sent to "
                f"{self._party_name(snapshot, invoice)}."
            ),
            data=self.invoice_summary(invoice, snapshot),
            entity_type="invoice",
            entity_id=invoice.invoice_number,
        )

    async def _list_invoices(
        self,
        payload: ListInvoicesData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        customer_ids = None
        if payload.customer_name:
            wanted = payload.customer_name.lower()
            customer_ids = [
                c.id for c in snapshot.customers
                if wanted in c.name.lower() or wanted in (c.company_name or "").lower()
            ]
            if not customer_ids:
                return ExecutionResult(
                    response=f"No customer matches '{payload.customer_name}'.",
                    data=[],
                )

        invoices = await self._ledger.list_invoices(
            user_id,
            status=payload.status,
            customer_ids=customer_ids,
            limit=payload.limit,
        )
        if not invoices:
            return ExecutionResult(response="No invoices found.", data=[])

        rows = [self.invoice_summary(i, snapshot) for i in invoices]
        outstanding = sum(
            (i.balance_due for i in invoices if i.status != InvoiceStatus.VOID), ZERO
        )
        return ExecutionResult(
            response=(
                f"Found {len(rows)} invoice{'s' if len(rows) != 1 else ''}. "
                f"Outstanding balance: {money(outstanding)}."
            ),
            data=rows,
        )

    async def _get_invoice(
        self,
        payload: GetInvoiceData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        invoice = await self._find_invoice(user_id, payload.invoice_ref)
        summary = self.invoice_summary(invoice, snapshot)
        summary["lines"] = [
            {
                "description": item.description,
                "quantity": float(item.quantity),
                "unit_price": float(item.unit_price),
                "tax_rate": float(item.tax_rate),
                "amount": float(item.amount),
            }
            for item in invoice.lines
        ]
        summary["subtotal"] = float(invoice.subtotal)
        summary["tax_amount"] = float(invoice.tax_amount)
        summary["discount_amount"] = float(invoice.discount_amount)
        summary["notes"] = invoice.notes
        summary["payments"] = [
            {
                "payment_date": payment.payment_date.isoformat(),
                "amount": float(payment.amount),
                "payment_method": payment.payment_method.value,
            }
            for payment in await self._ledger.list_payments(user_id, invoice.id)
        ]
        return ExecutionResult(
            response=(
                f"Invoice {invoice.invoice_number} for {summary['customer']}: "
                f"total {money(invoice.total_amount)}, balance {money(invoice.balance_due)}, "
                f"status {invoice.status.value}."
            ),
            data=summary,
            entity_type="invoice",
            entity_id=invoice.invoice_number,
        )

    async def _void_invoice(
        self,
        payload: VoidInvoiceData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        invoice = await self._find_invoice(user_id, payload.invoice_ref)
        if invoice.status == InvoiceStatus.VOID:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} already void",
                user_message=f"Invoice {invoice.invoice_number} is already void.",
            )
        if invoice.amount_paid > 0:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} has payments",
                user_message=(
                    f"Invoice {invoice.invoice_number} has payments recorded "
                    "and can't be voided."
                ),
            )

        unit = LedgerCommit(user_id=user_id, idempotency_key=key)
        if invoice.is_posted and invoice.journal_entry_id:
            unit.void_journal_ids.append(invoice.journal_entry_id)
        invoice.status = InvoiceStatus.VOID
        invoice.balance_due = ZERO
        invoice.updated_at = datetime.utcnow()
        if payload.reason:
            invoice.notes = f"{invoice.notes}\nVoided: {payload.reason}" if invoice.notes else f"Voided: {payload.reason}"
        unit.invoices.append(invoice)

        await self._commit(unit)
        return ExecutionResult(
            response=f"Invoice {invoice.invoice_number} has been voided.",
            data=self.invoice_summary(invoice, snapshot),
            entity_type="invoice",
            entity_id=invoice.invoice_number,
            voided_entry_ids=unit.void_journal_ids,
        )

    async def _record_invoice_payment(
        self,
        payload: RecordInvoicePaymentData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        invoice = await self._find_invoice(user_id, payload.invoice_ref)
        if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.VOID, InvoiceStatus.PAID):
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value}",
                user_message=(
                    f"Invoice {invoice.invoice_number} is {invoice.status.value} "
                    "and can't take a payment."
                ),
            )
        amount = to_money(payload.amount)
        self._require_positive_payment(amount)
        if amount > invoice.balance_due:
            raise ValidationError(
                f"Payment {amount} exceeds balance {invoice.balance_due}",
                fields=["amount"],
                user_message=(
                    f"That's more than the balance due on {invoice.invoice_number} "
                    f"({money(invoice.balance_due)})."
                ),
            )

        payment = Payment(
            user_id=user_id,
            payment_type=PaymentType.INVOICE_PAYMENT,
            source_id=invoice.id,
            amount=amount,
            payment_date=payload.payment_date,
            payment_method=payload.payment_method,
            bank_account_id=payload.bank_account_id or self._posting.standard_account(snapshot, "cash").id,
            idempotency_key=key,
        )
        entry = self._posting.invoice_payment_entry(
            payment, invoice, snapshot, await self._ledger.next_entry_number(user_id), key
        )
        payment.journal_entry_id = entry.id

        invoice.amount_paid += amount
        invoice.balance_due = invoice.total_amount - invoice.amount_paid
        invoice.status = InvoiceStatus.PAID if invoice.balance_due == 0 else InvoiceStatus.PARTIAL
        invoice.updated_at = datetime.utcnow()

        await self._commit(LedgerCommit(
            user_id=user_id,
            idempotency_key=key,
            invoices=[invoice],
            payments=[payment],
            journal_entries=[entry],
        ))
        return ExecutionResult(
            response=(
                f"Recorded {money(amount)} received for invoice {invoice.invoice_number}. "
                f"Balance due: {money(invoice.balance_due)}."
            ),
            data=self.invoice_summary(invoice, snapshot),
            entity_type="payment",
            entity_id=str(payment.id),
            journal_entries=[entry],
        )

    # -------------------------------------------------------------------------
    # Bills
    # -------------------------------------------------------------------------

    async def _create_bill(
        self,
        payload: CreateBillData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        bill = Bill(
            user_id=user_id,
            bill_number=await self._ledger.next_bill_number(user_id),
            vendor_id=payload.vendor_id,
            bill_date=payload.bill_date,
            due_date=payload.due_date,
            lines=self._validator.line_items(payload.lines, snapshot),
            notes=payload.notes,
            idempotency_key=key,
        ).apply_totals()
        self._require_positive_total(bill.total_amount, "Bill")

        entry = self._posting.bill_entry(
            bill, snapshot, await self._ledger.next_entry_number(user_id), key
        )
        bill.journal_entry_id = entry.id
        await self._commit(LedgerCommit(
            user_id=user_id,
            idempotency_key=key,
            bills=[bill],
            journal_entries=[entry],
        ))

        vendor = snapshot.vendor_by_id(bill.vendor_id)
        return ExecutionResult(
            response=(
                f"Bill {bill.bill_number} from {vendor.name if vendor else 'vendor'} entered: "
                f"total {money(bill.total_amount)}, due {bill.due_date.isoformat()}."
            ),
            data=self.bill_summary(bill, snapshot),
            entity_type="bill",
            entity_id=bill.bill_number,
            journal_entries=[entry],
        )

    async def _list_bills(
        self,
        payload: ListBillsData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        vendor_ids = None
        if payload.vendor_name:
            wanted = payload.vendor_name.lower()
            vendor_ids = [
                v.id for v in snapshot.vendors
                if wanted in v.name.lower() or wanted in (v.company_name or "").lower()
            ]
            if not vendor_ids:
                return ExecutionResult(
                    response=f"No vendor matches '{payload.vendor_name}'.",
                    data=[],
                )

        bills = await self._ledger.list_bills(
            user_id,
            status=payload.status,
            vendor_ids=vendor_ids,
            limit=payload.limit,
        )
        if not bills:
            return ExecutionResult(response="No bills found.", data=[])

        rows = [self.bill_summary(b, snapshot) for b in bills]
        outstanding = sum((b.balance_due for b in bills if b.status != BillStatus.VOID), ZERO)
        return ExecutionResult(
            response=(
                f"Found {len(rows)} bill{'s' if len(rows) != 1 else ''}. "
                f"Outstanding balance: {money(outstanding)}."
            ),
            data=rows,
        )

    async def _record_bill_payment(
        self,
        payload: RecordBillPaymentData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        bill = await self._find_bill(user_id, payload.bill_ref)
        if bill.status in (BillStatus.VOID, BillStatus.PAID):
            raise ValidationError(
                f"Bill {bill.bill_number} is {bill.status.value}",
                user_message=f"Bill {bill.bill_number} is {bill.status.value} and can't take a payment.",
            )
        amount = to_money(payload.amount)
        self._require_positive_payment(amount)
        if amount > bill.balance_due:
            raise ValidationError(
                f"Payment {amount} exceeds balance {bill.balance_due}",
                fields=["amount"],
                user_message=(
                    f"That's more than the balance due on {bill.bill_number} "
                    f"({money(bill.balance_due)})."
                ),
            )

        payment = Payment(
            user_id=user_id,
            payment_type=PaymentType.BILL_PAYMENT,
            source_id=bill.id,
            amount=amount,
            payment_date=payload.payment_date,
            payment_method=payload.payment_method,
            bank_account_id=payload.bank_account_id or self._posting.standard_account(snapshot, "cash").id,
            idempotency_key=key,
        )
        entry = self._posting.bill_payment_entry(
            payment, bill, snapshot, await self._ledger.next_entry_number(user_id), key
        )
        payment.journal_entry_id = entry.id

        bill.amount_paid += amount
        bill.balance_due = bill.total_amount - bill.amount_paid
        bill.status = BillStatus.PAID if bill.balance_due == 0 else BillStatus.PARTIAL
        bill.updated_at = datetime.utcnow()

        await self._commit(LedgerCommit(
            user_id=user_id,
            idempotency_key=key,
            bills=[bill],
            payments=[payment],
            journal_entries=[entry],
        ))
        return ExecutionResult(
            response=(
                f"Recorded {money(amount)} paid on bill {bill.bill_number}. "
                f"Balance due: {money(bill.balance_due)}."
            ),
            data=self.bill_summary(bill, snapshot),
            entity_type="payment",
            entity_id=str(payment.id),
            journal_entries=[entry],
        )

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    async def _create_customer(
        self,
        payload: CreateCustomerData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        if any(c.name.lower() == payload.name.lower() for c in snapshot.customers):
            raise ValidationError(
                f"Customer {payload.name} exists",
                fields=["name"],
                user_message=f"You already have a customer named {payload.name}.",
            )
        customer = Customer(
            user_id=user_id,
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
            company_name=payload.company_name,
        )
        await self._commit(LedgerCommit(user_id=user_id, idempotency_key=key, customers=[customer]))
        return ExecutionResult(
            response=f"Customer {customer.name} added.",
            data={"id": str(customer.id), "name": customer.name},
            entity_type="customer",
            entity_id=str(customer.id),
        )

    async def _create_vendor(
        self,
        payload: CreateVendorData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        if any(v.name.lower() == payload.name.lower() for v in snapshot.vendors):
            raise ValidationError(
                f"Vendor {payload.name} exists",
                fields=["name"],
                user_message=f"You already have a vendor named {payload.name}.",
            )
        vendor = Vendor(
            user_id=user_id,
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
            company_name=payload.company_name,
        )
        await self._commit(LedgerCommit(user_id=user_id, idempotency_key=key, vendors=[vendor]))
        return ExecutionResult(
            response=f"Vendor {vendor.name} added.",
            data={"id": str(vendor.id), "name": vendor.name},
            entity_type="vendor",
            entity_id=str(vendor.id),
        )

    async def _create_transaction(
        self,
        payload: CreateTransactionData,
        snapshot: ReferenceSnapshot,
        user_id: str,
        key: Optional[UUID],
    ) -> ExecutionResult:
        entry = self._posting.manual_entry(
            payload, user_id, await self._ledger.next_entry_number(user_id), key
        )
        await self._commit(LedgerCommit(user_id=user_id, idempotency_key=key, journal_entries=[entry]))
        return ExecutionResult(
            response=(
                f"Journal entry {entry.entry_number} posted: "
                f"{money(entry.total_debits)} on {entry.entry_date.isoformat()}."
            ),
            data={
                "entry_number": entry.entry_number,
                "entry_date": entry.entry_date.isoformat(),
                "description": entry.description,
                "lines": [
                    {
                        "account": self._account_label(snapshot, line.account_id),
                        "debit": float(line.debit),
                        "credit": float(line.credit),
                    }
                    for line in entry.lines
                ],
            },
            entity_type="journal_entry",
            entity_id=entry.entry_number,
            journal_entries=[entry],
        )

    @staticmethod
    def _account_label(snapshot: ReferenceSnapshot, account_id: UUID) -> str:
        account = snapshot.account_by_id(account_id)
        return f"{account.code} {account.name}" if account else str(account_id)
