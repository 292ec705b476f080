"""
Audit Models for Ledger Assistant

Every significant step of a conversation is logged for audit purposes:
what the user asked, what the model proposed, what was confirmed,
and what reached the ledger.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the conversational protocol has its own event type.
    """
    # Inbound
    MESSAGE_RECEIVED = "message_received"
    REQUEST_REJECTED = "request_rejected"
    DIRECT_COMMAND_MATCHED = "direct_command_matched"

    # Model
    MODEL_REPLY_INTERPRETED = "model_reply_interpreted"
    MODEL_REPLY_DOWNGRADED = "model_reply_downgraded"

    # Context lifecycle
    CONTEXT_SAVED = "context_saved"
    CONTEXT_CLEARED = "context_cleared"
    CONTEXT_EXPIRED = "context_expired"

    # Human confirmation
    PREVIEW_PRESENTED = "preview_presented"
    USER_CONFIRMED = "user_confirmed"
    USER_CANCELLED = "user_cancelled"
    USER_EDITED = "user_edited"

    # Execution
    ACTION_EXECUTED = "action_executed"
    ACTION_FAILED = "action_failed"
    JOURNAL_POSTED = "journal_posted"
    JOURNAL_VOIDED = "journal_voided"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Who and where
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'invoice', 'journal_entry', 'context')"
    )
    entity_id: Optional[str] = None

    # Correlation - ties together all events of one request
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "conversation_id": self.conversation_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, conversation_id,
         entity_type, entity_id, correlation_id, description, details_json,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.conversation_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.message_received(user_id, conversation_id, ...)
        event = AuditEventBuilder.user_confirmed(user_id, conversation_id, ...)
    """

    @staticmethod
    def message_received(
        user_id: str,
        conversation_id: str,
        length: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MESSAGE_RECEIVED,
            user_id=user_id,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description="User message received",
            details={"length": length},
            is_user_action=True,
        )

    @staticmethod
    def request_rejected(
        conversation_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REQUEST_REJECTED,
            severity=AuditSeverity.WARNING,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description=f"Request rejected: {reason}",
        )

    @staticmethod
    def direct_command_matched(
        user_id: str,
        conversation_id: str,
        action: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DIRECT_COMMAND_MATCHED,
            user_id=user_id,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description=f"Direct command matched: {action}",
            details={"action": action},
        )

    @staticmethod
    def model_reply_interpreted(
        user_id: str,
        conversation_id: str,
        mode: str,
        action: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MODEL_REPLY_INTERPRETED,
            user_id=user_id,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description=f"Model replied in {mode} mode",
            details={"mode": mode, "action": action},
        )

    @staticmethod
    def model_reply_downgraded(
        user_id: str,
        conversation_id: str,
        from_mode: str,
        to_mode: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MODEL_REPLY_DOWNGRADED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description=f"Model reply changed from {from_mode} to {to_mode}",
            details={"from": from_mode, "to": to_mode, "reason": reason},
        )

    @staticmethod
    def context_saved(
        user_id: str,
        conversation_id: str,
        phase: str,
        action: str,
        missing: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTEXT_SAVED,
            user_id=user_id,
            conversation_id=conversation_id,
            entity_type="context",
            entity_id=conversation_id,
            correlation_id=correlation_id,
            description=f"Context saved in {phase} phase for {action}",
            details={"phase": phase, "action": action, "missing": missing},
        )

    @staticmethod
    def context_cleared(
        user_id: str,
        conversation_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTEXT_CLEARED,
            user_id=user_id,
            conversation_id=conversation_id,
            entity_type="context",
            entity_id=conversation_id,
            correlation_id=correlation_id,
            description=f"Context cleared: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def context_expired(
        user_id: str,
        conversation_id: str,
        action: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTEXT_EXPIRED,
            user_id=user_id,
            conversation_id=conversation_id,
            entity_type="context",
            entity_id=conversation_id,
            correlation_id=correlation_id,
            description=f"Stale context discarded for {action}",
            details={"action": action},
        )

    @staticmethod
    def preview_presented(
        user_id: str,
        conversation_id: str,
        action: str,
        idempotency_key: Optional[UUID],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PREVIEW_PRESENTED,
            user_id=user_id,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description=f"Preview presented for {action}",
            details={
                "action": action,
                "idempotency_key": str(idempotency_key) if idempotency_key else None,
            },
        )

    @staticmethod
    def user_confirmed(
        user_id: str,
        conversation_id: str,
        action: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_CONFIRMED,
            user_id=user_id,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description=f"User confirmed {action}",
            details={"action": action},
            is_user_action=True,
        )

    @staticmethod
    def user_cancelled(
        user_id: str,
        conversation_id: str,
        action: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_CANCELLED,
            user_id=user_id,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description=f"User cancelled {action}",
            details={"action": action},
            is_user_action=True,
        )

    @staticmethod
    def user_edited(
        user_id: str,
        conversation_id: str,
        action: str,
        fields: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_EDITED,
            user_id=user_id,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description=f"User edited preview of {action}",
            details={"action": action, "fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def action_executed(
        user_id: str,
        conversation_id: str,
        action: str,
        entity_type: Optional[str],
        entity_id: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACTION_EXECUTED,
            user_id=user_id,
            conversation_id=conversation_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Action executed: {action}",
            details={"action": action},
        )

    @staticmethod
    def action_failed(
        user_id: str,
        conversation_id: str,
        action: str,
        error_type: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACTION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            conversation_id=conversation_id,
            correlation_id=correlation_id,
            description=f"Action failed: {action} ({error_type})",
            details={"action": action, "error_type": error_type},
            error_message=error_message,
        )

    @staticmethod
    def journal_posted(
        user_id: str,
        entry_id: UUID,
        entry_number: str,
        source_type: str,
        amount: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.JOURNAL_POSTED,
            user_id=user_id,
            entity_type="journal_entry",
            entity_id=str(entry_id),
            correlation_id=correlation_id,
            description=f"Journal entry {entry_number} posted for {source_type}: {amount}",
            details={
                "entry_number": entry_number,
                "source_type": source_type,
                "amount": amount,
            },
        )

    @staticmethod
    def journal_voided(
        user_id: str,
        entry_id: UUID,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.JOURNAL_VOIDED,
            user_id=user_id,
            entity_type="journal_entry",
            entity_id=str(entry_id),
            correlation_id=correlation_id,
            description="Journal entry voided",
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
