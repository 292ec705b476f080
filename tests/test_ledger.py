"""
Tests for journal posting and action execution.

Every money-moving action must leave exactly one balanced, non-zero
journal entry per financial event.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import USER_ID, run, seed_ledger
from ledger_assistant.config import AccountCodeSettings
from ledger_assistant.errors import (
    ConflictError,
    NotFoundError,
    ReplayedActionError,
    ValidationError,
)
from ledger_assistant.ledger import ActionExecutor, PostingEngine, reference_candidates
from ledger_assistant.models.actions import ActionKind
from ledger_assistant.models.ledger import (
    BillStatus,
    Invoice,
    InvoiceStatus,
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
    LineItem,
)


def invoice_data(customer, *lines, **extra) -> dict:
    data = {
        "customer_id": str(customer.id),
        "lines": list(lines) or [{"description": "Consulting", "quantity": 1, "unit_price": 500}],
        "invoice_date": "2025-01-15",
        "due_date": "2025-02-14",
    }
    data.update(extra)
    return data


def bill_data(vendor, **extra) -> dict:
    data = {
        "vendor_id": str(vendor.id),
        "lines": [{"description": "Paper", "quantity": 10, "unit_price": 12.5}],
        "bill_date": "2025-01-10",
        "due_date": "2025-02-09",
    }
    data.update(extra)
    return data


def legs(entry) -> dict:
    totals = {}
    for line in entry.lines:
        debit, credit = totals.get(line.account_id, (Decimal("0"), Decimal("0")))
        totals[line.account_id] = (debit + line.debit, credit + line.credit)
    return totals


async def posted_entries(store) -> list:
    entries = await store.list_journal_entries(USER_ID)
    return [e for e in entries if e.status == JournalEntryStatus.POSTED]


class TestPostingEngine:
    """Journal construction rules."""

    def test_invoice_with_tax_and_discount(self, seeded):
        """Dr AR total + Dr Discounts = Cr Revenue + Cr Sales Tax."""
        invoice = Invoice(
            user_id=USER_ID,
            invoice_number="INV-0001",
            customer_id=seeded.john.id,
            invoice_date=date(2025, 1, 15),
            due_date=date(2025, 2, 14),
            lines=[LineItem(description="Work", quantity=2, unit_price=100, tax_rate=10)],
            discount_amount=Decimal("20"),
        ).apply_totals()
        snapshot = run(seeded.store.get_snapshot(USER_ID))

        entry = PostingEngine(AccountCodeSettings()).invoice_entry(invoice, snapshot, "JE-00001")

        accounts = seeded.accounts
        assert entry.is_balanced
        assert legs(entry) == {
            accounts["1200"].id: (Decimal("200.00"), Decimal("0")),
            accounts["4100"].id: (Decimal("20.00"), Decimal("0")),
            accounts["4000"].id: (Decimal("0"), Decimal("200.00")),
            accounts["2100"].id: (Decimal("0"), Decimal("20.00")),
        }

    def test_revenue_split_by_line_account(self, seeded):
        other = seeded.accounts["4100"]
        invoice = Invoice(
            user_id=USER_ID,
            invoice_number="INV-0001",
            customer_id=seeded.john.id,
            invoice_date=date(2025, 1, 15),
            due_date=date(2025, 1, 15),
            lines=[
                LineItem(description="A", unit_price=100),
                LineItem(description="B", unit_price=50, account_id=other.id),
                LineItem(description="C", unit_price=25),
            ],
        ).apply_totals()
        snapshot = run(seeded.store.get_snapshot(USER_ID))

        entry = PostingEngine(AccountCodeSettings()).invoice_entry(invoice, snapshot, "JE-00001")

        credits = [(line.account_id, line.credit) for line in entry.lines if line.credit > 0]
        assert credits == [
            (seeded.accounts["4000"].id, Decimal("125.00")),
            (other.id, Decimal("50.00")),
        ]

    def test_unbalanced_entry_rejected(self, seeded):
        entry = JournalEntry(
            user_id=USER_ID,
            entry_date=date(2025, 1, 1),
            source_type="invoice",
            source_id=uuid4(),
            lines=[
                JournalLine(account_id=uuid4(), debit=Decimal("10")),
                JournalLine(account_id=uuid4(), credit=Decimal("9")),
            ],
        )
        with pytest.raises(ConflictError):
            PostingEngine(AccountCodeSettings()).check_balanced(entry)

    def test_empty_entry_rejected(self):
        entry = JournalEntry(
            user_id=USER_ID,
            entry_date=date(2025, 1, 1),
            source_type="invoice",
            source_id=uuid4(),
        )
        with pytest.raises(ConflictError):
            PostingEngine(AccountCodeSettings()).check_balanced(entry)

    def test_missing_standard_account(self):
        """A chart of accounts without AR cannot post invoices."""
        seeded = seed_ledger(skip_codes=("1200",))
        executor = ActionExecutor(seeded.store, PostingEngine(AccountCodeSettings()))

        with pytest.raises(ValidationError) as exc:
            run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))

        assert exc.value.fields == []
        assert "1200" in exc.value.user_message
        assert run(seeded.store.list_invoices(USER_ID)) == []


class TestReferenceCandidates:

    @pytest.mark.parametrize("ref, expected", [
        ("INV-0001", "INV-0001"),
        ("inv1", "INV-0001"),
        ("1", "INV-0001"),
        ("#7", "INV-0007"),
    ])
    def test_normalization(self, ref, expected):
        assert expected in reference_candidates(ref, "INV")


class TestInvoices:
    """create / edit / send / get / list / void / payments."""

    def test_create_posts_balanced_entry(self, executor, seeded):
        result = run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))

        assert result.entity_id == "INV-0001"
        assert result.data["total_amount"] == 500.0
        entries = run(posted_entries(seeded.store))
        assert len(entries) == 1
        assert entries[0].is_balanced
        assert entries[0].entry_number == "JE-00001"
        assert result.journal_entries[0].id == entries[0].id

    def test_numbers_are_sequential(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        second = run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        assert second.entity_id == "INV-0002"

    def test_product_price_used_when_no_price(self, executor, seeded):
        line = {"description": "Advice", "quantity": 2, "product_id": str(seeded.product.id)}
        result = run(executor.execute(
            ActionKind.CREATE_INVOICE, invoice_data(seeded.john, line), USER_ID
        ))
        assert result.data["total_amount"] == 300.0

    def test_line_without_price_is_collected(self, executor, seeded):
        line = {"description": "Advice", "quantity": 2}
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john, line), USER_ID))
        assert exc.value.fields == ["lines"]

    def test_due_date_before_invoice_date(self, executor, seeded):
        data = invoice_data(seeded.john, due_date="2025-01-01")
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(ActionKind.CREATE_INVOICE, data, USER_ID))
        assert exc.value.fields == ["due_date"]

    def test_missing_fields_named(self, executor, seeded):
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(
                ActionKind.CREATE_INVOICE, {"customer_id": str(seeded.john.id)}, USER_ID
            ))
        assert exc.value.fields == ["lines", "invoice_date", "due_date"]

    def test_other_users_customer_rejected(self, executor):
        stranger = seed_ledger(user_id="user-2").john
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(stranger), USER_ID))
        assert exc.value.fields == ["customer_id"]

    def test_zero_total_rejected(self, executor, seeded):
        line = {"description": "Free", "quantity": 1, "unit_price": 0}
        with pytest.raises(ValidationError):
            run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john, line), USER_ID))

    def test_draft_not_posted_until_finalized(self, executor, seeded):
        run(executor.execute(
            ActionKind.CREATE_INVOICE, invoice_data(seeded.john, draft=True), USER_ID
        ))
        assert run(posted_entries(seeded.store)) == []

        result = run(executor.execute(
            ActionKind.EDIT_INVOICE, {"invoice_ref": "INV-0001", "draft": False}, USER_ID
        ))

        assert result.data["status"] == InvoiceStatus.OPEN.value
        assert len(run(posted_entries(seeded.store))) == 1

    def test_posted_invoice_cannot_return_to_draft(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        with pytest.raises(ValidationError):
            run(executor.execute(
                ActionKind.EDIT_INVOICE, {"invoice_ref": "INV-0001", "draft": True}, USER_ID
            ))

    def test_edit_notes_does_not_repost(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        result = run(executor.execute(
            ActionKind.EDIT_INVOICE, {"invoice_ref": "INV-0001", "notes": "Thanks!"}, USER_ID
        ))
        assert result.journal_entries == []
        assert len(run(seeded.store.list_journal_entries(USER_ID))) == 1

    def test_send_then_get(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        run(executor.execute(ActionKind.SEND_INVOICE, {"invoice_ref": "inv-0001"}, USER_ID))

        result = run(executor.execute(ActionKind.GET_INVOICE, {"invoice_ref": "1"}, USER_ID))

        assert result.data["status"] == InvoiceStatus.SENT.value
        assert result.data["customer"] == "John"
        assert result.data["lines"][0]["amount"] == 500.0

    def test_get_lists_payments(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        run(executor.execute(
            ActionKind.RECORD_INVOICE_PAYMENT,
            {"invoice_ref": "INV-0001", "amount": 200, "payment_date": "2025-01-20"},
            USER_ID,
        ))

        result = run(executor.execute(ActionKind.GET_INVOICE, {"invoice_ref": "INV-0001"}, USER_ID))

        assert [(p["payment_date"], p["amount"]) for p in result.data["payments"]] == [
            ("2025-01-20", 200.0),
        ]

    def test_get_unknown_invoice(self, executor):
        with pytest.raises(NotFoundError):
            run(executor.execute(ActionKind.GET_INVOICE, {"invoice_ref": "INV-0042"}, USER_ID))

    def test_list_by_customer_and_status(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        run(executor.execute(
            ActionKind.CREATE_INVOICE, invoice_data(seeded.john, draft=True), USER_ID
        ))

        everything = run(executor.execute(
            ActionKind.LIST_INVOICES, {"customer_name": "john"}, USER_ID
        ))
        drafts = run(executor.execute(ActionKind.LIST_INVOICES, {"status": "draft"}, USER_ID))
        nobody = run(executor.execute(ActionKind.LIST_INVOICES, {"customer_name": "Zed"}, USER_ID))

        assert len(everything.data) == 2
        assert [row["status"] for row in drafts.data] == ["draft"]
        assert nobody.data == []
        assert "Zed" in nobody.response

    def test_void_marks_entry_void(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))

        result = run(executor.execute(
            ActionKind.VOID_INVOICE, {"invoice_ref": "INV-0001", "reason": "duplicate"}, USER_ID
        ))

        assert result.data["status"] == InvoiceStatus.VOID.value
        assert result.data["balance_due"] == 0.0
        assert len(result.voided_entry_ids) == 1
        assert run(posted_entries(seeded.store)) == []
        invoice = run(seeded.store.get_invoice_by_number(USER_ID, "INV-0001"))
        assert "duplicate" in invoice.notes

    def test_partial_then_full_payment(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        payment = {"invoice_ref": "INV-0001", "amount": 200, "payment_date": "2025-01-20"}

        partial = run(executor.execute(ActionKind.RECORD_INVOICE_PAYMENT, payment, USER_ID))
        assert partial.data["status"] == InvoiceStatus.PARTIAL.value
        assert partial.data["balance_due"] == 300.0

        paid = run(executor.execute(
            ActionKind.RECORD_INVOICE_PAYMENT, dict(payment, amount=300), USER_ID
        ))
        assert paid.data["status"] == InvoiceStatus.PAID.value

        entry = paid.journal_entries[0]
        assert legs(entry) == {
            seeded.accounts["1000"].id: (Decimal("300.00"), Decimal("0")),
            seeded.accounts["1200"].id: (Decimal("0"), Decimal("300.00")),
        }

    def test_overpayment_rejected(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(
                ActionKind.RECORD_INVOICE_PAYMENT,
                {"invoice_ref": "INV-0001", "amount": 501, "payment_date": "2025-01-20"},
                USER_ID,
            ))
        assert exc.value.fields == ["amount"]

    def test_sub_cent_payment_rejected(self, executor, seeded):
        """An amount that rounds to 0.00 is asked for again."""
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(
                ActionKind.RECORD_INVOICE_PAYMENT,
                {"invoice_ref": "INV-0001", "amount": 0.004, "payment_date": "2025-01-20"},
                USER_ID,
            ))
        assert exc.value.fields == ["amount"]
        assert run(seeded.store.get_invoice_by_number(USER_ID, "INV-0001")).amount_paid == 0

    def test_paid_invoice_cannot_be_edited(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))
        run(executor.execute(
            ActionKind.RECORD_INVOICE_PAYMENT,
            {"invoice_ref": "INV-0001", "amount": 100, "payment_date": "2025-01-20"},
            USER_ID,
        ))
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(
                ActionKind.EDIT_INVOICE, {"invoice_ref": "INV-0001", "notes": "x"}, USER_ID
            ))
        assert exc.value.fields == []

    def test_idempotency_key_replay(self, executor, seeded):
        key = uuid4()
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID, key))
        with pytest.raises(ReplayedActionError):
            run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID, key))
        assert len(run(seeded.store.list_invoices(USER_ID))) == 1

    def test_number_taken_is_not_a_replay(self, executor, seeded, monkeypatch):
        run(executor.execute(ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID))

        async def stale_number(user_id):
            return "INV-0001"

        monkeypatch.setattr(seeded.store, "next_invoice_number", stale_number)
        with pytest.raises(ConflictError) as exc:
            run(executor.execute(
                ActionKind.CREATE_INVOICE, invoice_data(seeded.john), USER_ID, uuid4()
            ))
        assert not isinstance(exc.value, ReplayedActionError)
        assert len(run(seeded.store.list_invoices(USER_ID))) == 1


class TestBills:

    def test_create_bill_posts_to_ap(self, executor, seeded):
        result = run(executor.execute(ActionKind.CREATE_BILL, bill_data(seeded.vendor), USER_ID))

        assert result.entity_id == "BILL-0001"
        assert legs(result.journal_entries[0]) == {
            seeded.accounts["5000"].id: (Decimal("125.00"), Decimal("0")),
            seeded.accounts["2000"].id: (Decimal("0"), Decimal("125.00")),
        }

    def test_bill_payment(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_BILL, bill_data(seeded.vendor), USER_ID))

        result = run(executor.execute(
            ActionKind.RECORD_BILL_PAYMENT,
            {"bill_ref": "bill-1", "amount": "125", "payment_date": "2025-01-30"},
            USER_ID,
        ))

        assert result.data["status"] == BillStatus.PAID.value
        assert legs(result.journal_entries[0]) == {
            seeded.accounts["2000"].id: (Decimal("125.00"), Decimal("0")),
            seeded.accounts["1000"].id: (Decimal("0"), Decimal("125.00")),
        }

    def test_sub_cent_bill_payment_rejected(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_BILL, bill_data(seeded.vendor), USER_ID))
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(
                ActionKind.RECORD_BILL_PAYMENT,
                {"bill_ref": "BILL-0001", "amount": "0.001", "payment_date": "2025-01-30"},
                USER_ID,
            ))
        assert exc.value.fields == ["amount"]

    def test_list_bills_by_vendor(self, executor, seeded):
        run(executor.execute(ActionKind.CREATE_BILL, bill_data(seeded.vendor), USER_ID))
        result = run(executor.execute(ActionKind.LIST_BILLS, {"vendor_name": "acme"}, USER_ID))
        assert [row["bill_number"] for row in result.data] == ["BILL-0001"]
        assert "125.00" in result.response


class TestCustomers:

    def test_create_customer(self, executor, seeded):
        result = run(executor.execute(ActionKind.CREATE_CUSTOMER, {"name": "Mary"}, USER_ID))
        snapshot = run(seeded.store.get_snapshot(USER_ID))
        assert result.data["name"] == "Mary"
        assert any(c.name == "Mary" for c in snapshot.customers)
        assert result.journal_entries == []

    def test_duplicate_customer_rejected(self, executor):
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(ActionKind.CREATE_CUSTOMER, {"name": "john"}, USER_ID))
        assert exc.value.fields == ["name"]


class TestVendors:

    def test_create_vendor(self, executor, seeded):
        result = run(executor.execute(
            ActionKind.CREATE_VENDOR, {"name": "Paper Co", "phone": "555-0100"}, USER_ID
        ))
        snapshot = run(seeded.store.get_snapshot(USER_ID))
        [vendor] = [v for v in snapshot.vendors if v.name == "Paper Co"]
        assert vendor.phone == "555-0100"
        assert result.entity_type == "vendor"
        assert result.journal_entries == []

    def test_new_vendor_can_be_billed(self, executor, seeded):
        created = run(executor.execute(ActionKind.CREATE_VENDOR, {"name": "Paper Co"}, USER_ID))
        data = bill_data(seeded.vendor, vendor_id=created.data["id"])
        result = run(executor.execute(ActionKind.CREATE_BILL, data, USER_ID))
        assert result.data["vendor"] == "Paper Co"

    def test_duplicate_vendor_rejected(self, executor):
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(ActionKind.CREATE_VENDOR, {"name": "ACME SUPPLIES"}, USER_ID))
        assert exc.value.fields == ["name"]


class TestManualTransactions:
    """create_transaction posts the user's own balanced legs."""

    def transaction(self, seeded, debit="80", credit="80", **extra) -> dict:
        data = {
            "description": "Office coffee paid in cash",
            "transaction_date": "2025-01-12",
            "lines": [
                {"account_id": str(seeded.accounts["5000"].id), "debit": debit},
                {"account_id": str(seeded.accounts["1000"].id), "credit": credit},
            ],
        }
        data.update(extra)
        return data

    def test_balanced_entry_posted(self, executor, seeded):
        result = run(executor.execute(ActionKind.CREATE_TRANSACTION, self.transaction(seeded), USER_ID))

        [entry] = result.journal_entries
        assert entry.source_type == "manual"
        assert entry.source_id == entry.id
        assert entry.entry_date == date(2025, 1, 12)
        assert legs(entry) == {
            seeded.accounts["5000"].id: (Decimal("80.00"), Decimal("0")),
            seeded.accounts["1000"].id: (Decimal("0"), Decimal("80.00")),
        }
        assert run(seeded.store.list_journal_entries(USER_ID)) == [entry]
        assert result.data["lines"][0]["account"] == "5000 Expenses"

    def test_unbalanced_entry_collected_again(self, executor, seeded):
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(
                ActionKind.CREATE_TRANSACTION, self.transaction(seeded, credit="75"), USER_ID
            ))
        assert exc.value.fields == ["lines"]
        assert "80.00" in exc.value.user_message
        assert run(seeded.store.list_journal_entries(USER_ID)) == []

    @pytest.mark.parametrize("lines", [
        [{"debit": "10"}],
        [{"debit": "10", "credit": "10"}, {"credit": "10"}],
        [{"debit": "0.001"}, {"credit": "0.001"}],
    ])
    def test_bad_lines(self, executor, seeded, lines):
        account_id = str(seeded.accounts["5000"].id)
        data = self.transaction(seeded, lines=[dict(line, account_id=account_id) for line in lines])
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(ActionKind.CREATE_TRANSACTION, data, USER_ID))
        assert exc.value.fields == ["lines"]

    def test_foreign_account_rejected(self, executor, seeded):
        data = self.transaction(seeded)
        data["lines"][1]["account_id"] = str(uuid4())
        with pytest.raises(ValidationError) as exc:
            run(executor.execute(ActionKind.CREATE_TRANSACTION, data, USER_ID))
        assert exc.value.fields == ["lines"]

    def test_replay_rejected(self, executor, seeded):
        key = uuid4()
        run(executor.execute(ActionKind.CREATE_TRANSACTION, self.transaction(seeded), USER_ID, key))
        with pytest.raises(ReplayedActionError):
            run(executor.execute(ActionKind.CREATE_TRANSACTION, self.transaction(seeded), USER_ID, key))
        assert len(run(seeded.store.list_journal_entries(USER_ID))) == 1

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
