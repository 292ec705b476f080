"""
Direct Command Matcher

A small fixed grammar of commands that never need the language model:

    send invoice <ref>
    list|show [all] [<status>] invoices [for <customer>]
    show|get|view invoice <ref>
    edit invoice <ref>
    list|show [all] [<status>] bills [from <vendor>]

<ref> is a document number ("INV-0001", "inv1", "#42") or a bare number.
Anything that is not reference-shaped ("send invoice to John") is not a
match and goes to the model instead.

Matching is pure: no I/O, no clock, same text in, same reply out.
"""

import re
from typing import Optional

from ledger_assistant.models.actions import ActionKind
from ledger_assistant.models.conversation import (
    ExecuteReply,
    ParsedReply,
    PreviewReply,
    ReplySource,
)
from ledger_assistant.models.ledger import BillStatus, InvoiceStatus

_REF = r"#?(?P<ref>[a-z]{2,5}-?\d+|\d+)"

_INVOICE_STATUSES = "|".join(s.value for s in InvoiceStatus)
_BILL_STATUSES = "|".join(s.value for s in BillStatus)

_SEND_INVOICE = re.compile(rf"^send\s+invoice\s+{_REF}$", re.IGNORECASE)
_GET_INVOICE = re.compile(rf"^(?:show|get|view)\s+invoice\s+{_REF}$", re.IGNORECASE)
_EDIT_INVOICE = re.compile(rf"^edit\s+invoice\s+{_REF}$", re.IGNORECASE)
_LIST_INVOICES = re.compile(
    rf"^(?:list|show)(?:\s+all)?(?:\s+(?P<status>{_INVOICE_STATUSES}))?\s+invoices"
    r"(?:\s+for\s+(?P<name>.+))?$",
    re.IGNORECASE,
)
_LIST_BILLS = re.compile(
    rf"^(?:list|show)(?:\s+all)?(?:\s+(?P<status>{_BILL_STATUSES}))?\s+bills"
    r"(?:\s+from\s+(?P<name>.+))?$",
    re.IGNORECASE,
)

_TRAILING_PUNCTUATION = re.compile(r"[\s.!?,;:]+$")


def normalize_command_text(text: str) -> str:
    """Collapse whitespace and drop trailing punctuation."""
    text = " ".join(text.split())
    return _TRAILING_PUNCTUATION.sub("", text)


def _normalize_ref(ref: str) -> str:
    return ref.upper()


class DirectCommandMatcher:
    """Fast path for the fixed command grammar."""

    def match(self, text: str) -> Optional[ParsedReply]:
        if not text:
            return None
        command = normalize_command_text(text)
        if not command:
            return None

        m = _SEND_INVOICE.match(command)
        if m:
            return ExecuteReply(
                action=ActionKind.SEND_INVOICE,
                data={"invoice_ref": _normalize_ref(m.group("ref"))},
                source=ReplySource.DIRECT,
            )

        m = _GET_INVOICE.match(command)
        if m:
            return ExecuteReply(
                action=ActionKind.GET_INVOICE,
                data={"invoice_ref": _normalize_ref(m.group("ref"))},
                source=ReplySource.DIRECT,
            )

        m = _EDIT_INVOICE.match(command)
        if m:
            return PreviewReply(
                action=ActionKind.EDIT_INVOICE,
                preview_data={"invoice_ref": _normalize_ref(m.group("ref"))},
                source=ReplySource.DIRECT,
            )

        m = _LIST_INVOICES.match(command)
        if m:
            data = {}
            if m.group("status"):
                data["status"] = m.group("status").lower()
            if m.group("name"):
                data["customer_name"] = m.group("name").strip()
            return ExecuteReply(action=ActionKind.LIST_INVOICES, data=data, source=ReplySource.DIRECT)

        m = _LIST_BILLS.match(command)
        if m:
            data = {}
            if m.group("status"):
                data["status"] = m.group("status").lower()
            if m.group("name"):
                data["vendor_name"] = m.group("name").strip()
            return ExecuteReply(action=ActionKind.LIST_BILLS, data=data, source=ReplySource.DIRECT)

        return None
