"""
Data Models Package

This package contains all Pydantic models used in Ledger Assistant.
All data flowing through the system must conform to these schemas.
"""

from ledger_assistant.models.actions import (
    ACTION_SCHEMA,
    ActionEffect,
    ActionKind,
    ActionSpec,
    get_spec,
    merge_collected,
    missing_fields,
    normalize_preview,
    parse_action_kind,
)
from ledger_assistant.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from ledger_assistant.models.conversation import (
    CollectingReply,
    ConversationContext,
    ConversationReply,
    EngineRequest,
    EngineResponse,
    ExecuteReply,
    Message,
    MessageRole,
    ParsedReply,
    Phase,
    PreviewReply,
    ReplySource,
    ResponseType,
)
from ledger_assistant.models.ledger import (
    Account,
    AccountType,
    Bill,
    BillStatus,
    Customer,
    Invoice,
    InvoiceStatus,
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
    LedgerCommit,
    LineItem,
    Payment,
    PaymentMethod,
    PaymentType,
    Product,
    ReferenceSnapshot,
    Vendor,
)

__all__ = [
    # Action schema
    "ACTION_SCHEMA",
    "ActionEffect",
    "ActionKind",
    "ActionSpec",
    "get_spec",
    "merge_collected",
    "missing_fields",
    "normalize_preview",
    "parse_action_kind",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Conversation models
    "CollectingReply",
    "ConversationContext",
    "ConversationReply",
    "EngineRequest",
    "EngineResponse",
    "ExecuteReply",
    "Message",
    "MessageRole",
    "ParsedReply",
    "Phase",
    "PreviewReply",
    "ReplySource",
    "ResponseType",
    # Ledger models
    "Account",
    "AccountType",
    "Bill",
    "BillStatus",
    "Customer",
    "Invoice",
    "InvoiceStatus",
    "JournalEntry",
    "JournalEntryStatus",
    "JournalLine",
    "LedgerCommit",
    "LineItem",
    "Payment",
    "PaymentMethod",
    "PaymentType",
    "Product",
    "ReferenceSnapshot",
    "Vendor",
]
