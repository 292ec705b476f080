"""
Ledger Posting Engine

Builds the journal entry for every money-moving document:

    invoice          Dr Accounts Receivable   total
                     Dr Sales Discounts       discount
                     Cr Revenue (per line)    line amount
                     Cr Sales Tax Payable     tax
    bill             Dr Expense (per line)    line amount
                     Dr Expenses              tax
                     Cr Accounts Payable      total
    invoice payment  Dr Bank / Cr Accounts Receivable
    bill payment     Dr Accounts Payable / Cr Bank
    manual entry     the user's own legs, source_id is the entry itself

CRITICAL: Every entry is checked before it leaves this module:
sum(debits) == sum(credits) > 0. An unbalanced entry raises ConflictError
and is never handed to storage.

Standard accounts are looked up in the user's chart of accounts by the
codes in AccountCodeSettings. A missing one is a ValidationError.
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_assistant.config import AccountCodeSettings
from ledger_assistant.errors import ConflictError, ValidationError
from ledger_assistant.models.actions import CreateTransactionData
from ledger_assistant.models.ledger import (
    Account,
    Bill,
    Invoice,
    JournalEntry,
    JournalLine,
    Payment,
    ReferenceSnapshot,
    ZERO,
    to_money,
)

logger = structlog.get_logger(__name__)


ACCOUNT_LABELS = {
    "cash": "Cash / Bank",
    "accounts_receivable": "Accounts Receivable",
    "accounts_payable": "Accounts Payable",
    "sales_tax_payable": "Sales Tax Payable",
    "revenue": "Revenue",
    "sales_discounts": "Sales Discounts",
    "expenses": "Expenses",
}


class PostingEngine:
    """Journal construction and the balance invariant."""

    def __init__(self, codes: AccountCodeSettings):
        self._codes = codes

    def standard_account(self, snapshot: ReferenceSnapshot, role: str) -> Account:
        """
        Look up a standard account by role ("accounts_receivable", ...).

        Raises:
            ValidationError: The user's chart of accounts lacks it
        """
        code = getattr(self._codes, role)
        account = snapshot.account_by_code(code)
        if account is None:
            label = ACCOUNT_LABELS.get(role, role)
            raise ValidationError(
                f"Standard account {role} ({code}) missing for user {snapshot.user_id}",
                user_message=(
                    f"Your chart of accounts has no {label} account (code {code}). "
                    "Please add it and try again."
                ),
            )
        return account

    def _bank_account(self, snapshot: ReferenceSnapshot, bank_account_id: Optional[UUID]) -> Account:
        if bank_account_id:
            account = snapshot.account_by_id(bank_account_id)
            if account is None:
                raise ValidationError(
                    f"Bank account {bank_account_id} not found",
                    fields=["bank_account_id"],
                    user_message="That bank account isn't in your chart of accounts.",
                )
            return account
        return self.standard_account(snapshot, "cash")

    @staticmethod
    def _add(lines: list[JournalLine], account_id: UUID, debit: Decimal = ZERO,
             credit: Decimal = ZERO, description: str = "") -> None:
        # Zero-amount legs are left out; a JournalLine must have one non-zero side
        if debit > 0 or credit > 0:
            lines.append(JournalLine(
                account_id=account_id,
                debit=debit,
                credit=credit,
                description=description,
            ))

    def check_balanced(self, entry: JournalEntry) -> JournalEntry:
        """
        Enforce sum(debits) == sum(credits) > 0.

        Raises:
            ConflictError: The entry does not balance
        """
        if not entry.is_balanced:
            logger.error(
                "journal_unbalanced",
                source_type=entry.source_type,
                source_id=str(entry.source_id),
                debits=str(entry.total_debits),
                credits=str(entry.total_credits),
            )
            raise ConflictError(
                f"Journal entry for {entry.source_type} {entry.source_id} is not balanced: "
                f"debits {entry.total_debits} != credits {entry.total_credits}"
            )
        return entry

    def invoice_entry(
        self,
        invoice: Invoice,
        snapshot: ReferenceSnapshot,
        entry_number: str,
        idempotency_key: Optional[UUID] = None,
    ) -> JournalEntry:
        ar = self.standard_account(snapshot, "accounts_receivable")
        lines: list[JournalLine] = []

        self._add(lines, ar.id, debit=invoice.total_amount,
                  description=f"Invoice {invoice.invoice_number}")
        if invoice.discount_amount > 0:
            discounts = self.standard_account(snapshot, "sales_discounts")
            self._add(lines, discounts.id, debit=invoice.discount_amount, description="Discount")

        # One credit per revenue account, in first-use order
        revenue_by_account: "OrderedDict[UUID, Decimal]" = OrderedDict()
        default_revenue: Optional[Account] = None
        for item in invoice.lines:
            if item.account_id:
                account_id = item.account_id
            else:
                default_revenue = default_revenue or self.standard_account(snapshot, "revenue")
                account_id = default_revenue.id
            revenue_by_account[account_id] = revenue_by_account.get(account_id, ZERO) + item.amount
        for account_id, amount in revenue_by_account.items():
            self._add(lines, account_id, credit=amount, description="Revenue")

        if invoice.tax_amount > 0:
            tax = self.standard_account(snapshot, "sales_tax_payable")
            self._add(lines, tax.id, credit=invoice.tax_amount, description="Sales tax")

        return self.check_balanced(JournalEntry(
            user_id=invoice.user_id,
            entry_number=entry_number,
            entry_date=invoice.invoice_date,
            reference=invoice.invoice_number,
            description=f"Invoice {invoice.invoice_number}",
            source_type="invoice",
            source_id=invoice.id,
            lines=lines,
            idempotency_key=idempotency_key,
        ))

    def bill_entry(
        self,
        bill: Bill,
        snapshot: ReferenceSnapshot,
        entry_number: str,
        idempotency_key: Optional[UUID] = None,
    ) -> JournalEntry:
        ap = self.standard_account(snapshot, "accounts_payable")
        lines: list[JournalLine] = []

        expense_by_account: "OrderedDict[UUID, Decimal]" = OrderedDict()
        default_expense: Optional[Account] = None
        for item in bill.lines:
            if item.account_id:
                account_id = item.account_id
            else:
                default_expense = default_expense or self.standard_account(snapshot, "expenses")
                account_id = default_expense.id
            expense_by_account[account_id] = expense_by_account.get(account_id, ZERO) + item.amount
        for account_id, amount in expense_by_account.items():
            self._add(lines, account_id, debit=amount, description="Expense")

        if bill.tax_amount > 0:
            expenses = self.standard_account(snapshot, "expenses")
            self._add(lines, expenses.id, debit=bill.tax_amount, description="Tax")

        self._add(lines, ap.id, credit=bill.total_amount, description=f"Bill {bill.bill_number}")

        return self.check_balanced(JournalEntry(
            user_id=bill.user_id,
            entry_number=entry_number,
            entry_date=bill.bill_date,
            reference=bill.bill_number,
            description=f"Bill {bill.bill_number}",
            source_type="bill",
            source_id=bill.id,
            lines=lines,
            idempotency_key=idempotency_key,
        ))

    def invoice_payment_entry(
        self,
        payment: Payment,
        invoice: Invoice,
        snapshot: ReferenceSnapshot,
        entry_number: str,
        idempotency_key: Optional[UUID] = None,
    ) -> JournalEntry:
        bank = self._bank_account(snapshot, payment.bank_account_id)
        ar = self.standard_account(snapshot, "accounts_receivable")
        lines: list[JournalLine] = []
        self._add(lines, bank.id, debit=payment.amount, description="Payment received")
        self._add(lines, ar.id, credit=payment.amount, description=f"Invoice {invoice.invoice_number}")
        return self.check_balanced(JournalEntry(
            user_id=payment.user_id,
            entry_number=entry_number,
            entry_date=payment.payment_date,
            reference=invoice.invoice_number,
            description=f"Payment for invoice {invoice.invoice_number}",
            source_type="invoice_payment",
            source_id=payment.id,
            lines=lines,
            idempotency_key=idempotency_key,
        ))

    def bill_payment_entry(
        self,
        payment: Payment,
        bill: Bill,
        snapshot: ReferenceSnapshot,
        entry_number: str,
        idempotency_key: Optional[UUID] = None,
    ) -> JournalEntry:
        bank = self._bank_account(snapshot, payment.bank_account_id)
        ap = self.standard_account(snapshot, "accounts_payable")
        lines: list[JournalLine] = []
        self._add(lines, ap.id, debit=payment.amount, description=f"Bill {bill.bill_number}")
        self._add(lines, bank.id, credit=payment.amount, description="Payment made")
        return self.check_balanced(JournalEntry(
            user_id=payment.user_id,
            entry_number=entry_number,
            entry_date=payment.payment_date,
            reference=bill.bill_number,
            description=f"Payment for bill {bill.bill_number}",
            source_type="bill_payment",
            source_id=payment.id,
            lines=lines,
            idempotency_key=idempotency_key,
        ))

    def manual_entry(
        self,
        payload: CreateTransactionData,
        user_id: str,
        entry_number: str,
        idempotency_key: Optional[UUID] = None,
    ) -> JournalEntry:
        lines: list[JournalLine] = []
        for leg in payload.lines:
            self._add(
                lines,
                leg.account_id,
                debit=to_money(leg.debit),
                credit=to_money(leg.credit),
                description=leg.description or payload.description,
            )
        entry_id = uuid4()
        return self.check_balanced(JournalEntry(
            id=entry_id,
            user_id=user_id,
            entry_number=entry_number,
            entry_date=payload.transaction_date,
            reference=payload.reference or entry_number,
            description=payload.description,
            source_type="manual",
            source_id=entry_id,
            lines=lines,
            idempotency_key=idempotency_key,
        ))
