"""
Two-Stage Action Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (derived from the action's payload model)
- Type checking and format validation
- This catches incomplete or malformed data from the model or the user

STAGE 2 - REFERENTIAL VALIDATION:
- Every customer, vendor, account and product id must exist in the
  requesting user's reference data
- Cross-field rules (due date not before document date, manual
  entries balance)
- This catches ids the model made up or took from another user

IMPORTANT: Validation NEVER silently fixes issues.
It raises ValidationError naming the offending fields, and the phase
router sends the conversation back to collecting them.
"""

from typing import Any, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ledger_assistant.errors import ValidationError
from ledger_assistant.models.actions import (
    ActionKind,
    CreateBillData,
    CreateInvoiceData,
    CreateTransactionData,
    EditInvoiceData,
    LineInput,
    RecordBillPaymentData,
    RecordInvoicePaymentData,
    get_spec,
    missing_fields,
)
from ledger_assistant.models.ledger import LineItem, ReferenceSnapshot, ZERO, to_money


def _describe(field: str) -> str:
    return field.replace("_", " ")


def from_pydantic_error(error: PydanticValidationError) -> ValidationError:
    """
    Convert a pydantic error into an engine ValidationError.

    Field names are the top-level payload fields, in first-seen order.
    """
    fields: list[str] = []
    details = []
    for item in error.errors():
        loc = item.get("loc") or ("data",)
        name = str(loc[0])
        if name not in fields:
            fields.append(name)
        details.append(f"{'.'.join(str(p) for p in loc)}: {item.get('msg')}")
    return ValidationError(
        f"Invalid values: {'; '.join(details)}",
        fields=fields,
        user_message=(
            "Some details don't look right: "
            f"{', '.join(_describe(f) for f in fields)}. Could you check them?"
        ),
    )


class ActionValidator:
    """
    Validates action data before the executor touches the ledger.

    Stage 1 (`parse`) needs nothing but the data.
    Stage 2 (`check_references`) needs the user's reference snapshot.
    """

    def parse(self, kind: ActionKind, data: dict[str, Any]) -> BaseModel:
        """
        Stage 1: required fields and types.

        Returns the validated payload model.

        Raises:
            ValidationError: With `fields` naming what is missing or invalid
        """
        missing = missing_fields(kind, data)
        if missing:
            raise ValidationError(
                f"Missing required fields for {kind.value}: {missing}",
                fields=missing,
                user_message=(
                    "I still need the following: "
                    f"{', '.join(_describe(f) for f in missing)}."
                ),
            )

        try:
            payload = get_spec(kind).payload.model_validate(data)
        except PydanticValidationError as e:
            raise from_pydantic_error(e) from e

        self._check_dates(payload)
        self._check_balance(payload)
        return payload

    def _check_dates(self, payload: BaseModel) -> None:
        if isinstance(payload, (CreateInvoiceData, EditInvoiceData)):
            start, due = payload.invoice_date, payload.due_date
        elif isinstance(payload, CreateBillData):
            start, due = payload.bill_date, payload.due_date
        else:
            return
        if start and due and due < start:
            raise ValidationError(
                "Due date is before document date",
                fields=["due_date"],
                user_message="The due date can't be before the document date.",
            )

    def _check_balance(self, payload: BaseModel) -> None:
        if not isinstance(payload, CreateTransactionData):
            return
        debits = sum((to_money(line.debit) for line in payload.lines), ZERO)
        credits = sum((to_money(line.credit) for line in payload.lines), ZERO)
        if debits != credits:
            raise ValidationError(
                f"Manual entry does not balance: debits {debits} != credits {credits}",
                fields=["lines"],
                user_message=(
                    f"Debits ({debits:,.2f}) and credits ({credits:,.2f}) must be equal."
                ),
            )
        if debits <= 0:
            raise ValidationError(
                "Manual entry has no amount",
                fields=["lines"],
                user_message="The entry amounts must be at least 0.01.",
            )

    def check_references(self, payload: BaseModel, snapshot: ReferenceSnapshot) -> None:
        """
        Stage 2: every referenced id must belong to the user.

        Raises:
            ValidationError: With the fields that reference unknown ids
        """
        bad_fields: list[str] = []
        reasons: list[str] = []

        customer_id = getattr(payload, "customer_id", None)
        if customer_id is not None and snapshot.customer_by_id(customer_id) is None:
            bad_fields.append("customer_id")
            reasons.append("that customer isn't in your customer list")

        vendor_id = getattr(payload, "vendor_id", None)
        if vendor_id is not None and snapshot.vendor_by_id(vendor_id) is None:
            bad_fields.append("vendor_id")
            reasons.append("that vendor isn't in your vendor list")

        if isinstance(payload, (RecordInvoicePaymentData, RecordBillPaymentData)):
            if payload.bank_account_id and snapshot.account_by_id(payload.bank_account_id) is None:
                bad_fields.append("bank_account_id")
                reasons.append("that bank account isn't in your chart of accounts")

        for line in getattr(payload, "lines", None) or []:
            label = line.description or str(line.account_id)
            if line.account_id and snapshot.account_by_id(line.account_id) is None:
                reasons.append(f"the account on '{label}' isn't in your chart of accounts")
                if "lines" not in bad_fields:
                    bad_fields.append("lines")
            product_id = getattr(line, "product_id", None)
            if product_id and snapshot.product_by_id(product_id) is None:
                reasons.append(f"the product on '{label}' isn't in your catalog")
                if "lines" not in bad_fields:
                    bad_fields.append("lines")

        if bad_fields:
            raise ValidationError(
                f"Unknown references: {bad_fields}",
                fields=bad_fields,
                user_message="I can't use that: " + "; ".join(reasons) + ".",
            )

    def line_items(
        self,
        lines: list[LineInput],
        snapshot: Optional[ReferenceSnapshot] = None,
    ) -> list[LineItem]:
        """Resolve input lines to priced line items."""
        try:
            return [line.to_line_item(snapshot) for line in lines]
        except ValueError as e:
            raise ValidationError(
                str(e),
                fields=["lines"],
                user_message=f"{e}. What is the price?",
            ) from e
