"""
Audit Logger

Each step of a request, from the inbound message to the journal entry it
posted, becomes an AuditEvent tagged with the request's correlation id.
Events go to the structlog JSON log and, when a store is configured, to
the audit store. A failing audit store is logged and otherwise ignored.
Message content is never recorded, only its length.
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_assistant.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from ledger_assistant.models.ledger import JournalEntry
from ledger_assistant.services.storage import AuditStorageInterface


# JSON lines with ISO timestamps, level and logger name
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Writes audit events to the structured log and the audit store.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log one event; the log level follows the event severity.

        Returns False only when the store rejected or failed the write.
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_message_received(
        self,
        user_id: str,
        conversation_id: str,
        length: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.message_received(
            user_id=user_id,
            conversation_id=conversation_id,
            length=length,
            correlation_id=correlation_id,
        ))

    async def log_request_rejected(
        self,
        conversation_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.request_rejected(
            conversation_id=conversation_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_direct_command(
        self,
        user_id: str,
        conversation_id: str,
        action: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.direct_command_matched(
            user_id=user_id,
            conversation_id=conversation_id,
            action=action,
            correlation_id=correlation_id,
        ))

    async def log_model_reply(
        self,
        user_id: str,
        conversation_id: str,
        mode: str,
        action: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.model_reply_interpreted(
            user_id=user_id,
            conversation_id=conversation_id,
            mode=mode,
            action=action,
            correlation_id=correlation_id,
        ))

    async def log_model_reply_downgraded(
        self,
        user_id: str,
        conversation_id: str,
        from_mode: str,
        to_mode: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        """Log a model reply the router did not take at face value."""
        await self.log(AuditEventBuilder.model_reply_downgraded(
            user_id=user_id,
            conversation_id=conversation_id,
            from_mode=from_mode,
            to_mode=to_mode,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_context_saved(
        self,
        user_id: str,
        conversation_id: str,
        phase: str,
        action: str,
        missing: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.context_saved(
            user_id=user_id,
            conversation_id=conversation_id,
            phase=phase,
            action=action,
            missing=missing,
            correlation_id=correlation_id,
        ))

    async def log_context_cleared(
        self,
        user_id: str,
        conversation_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.context_cleared(
            user_id=user_id,
            conversation_id=conversation_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_context_expired(
        self,
        user_id: str,
        conversation_id: str,
        action: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.context_expired(
            user_id=user_id,
            conversation_id=conversation_id,
            action=action,
            correlation_id=correlation_id,
        ))

    async def log_preview_presented(
        self,
        user_id: str,
        conversation_id: str,
        action: str,
        idempotency_key: Optional[UUID],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.preview_presented(
            user_id=user_id,
            conversation_id=conversation_id,
            action=action,
            idempotency_key=idempotency_key,
            correlation_id=correlation_id,
        ))

    async def log_user_confirmed(
        self,
        user_id: str,
        conversation_id: str,
        action: str,
        correlation_id: UUID,
    ) -> None:
        """Log user confirmation."""
        await self.log(AuditEventBuilder.user_confirmed(
            user_id=user_id,
            conversation_id=conversation_id,
            action=action,
            correlation_id=correlation_id,
        ))

    async def log_user_cancelled(
        self,
        user_id: str,
        conversation_id: str,
        action: str,
        correlation_id: UUID,
    ) -> None:
        """Log user cancellation."""
        await self.log(AuditEventBuilder.user_cancelled(
            user_id=user_id,
            conversation_id=conversation_id,
            action=action,
            correlation_id=correlation_id,
        ))

    async def log_user_edited(
        self,
        user_id: str,
        conversation_id: str,
        action: str,
        fields: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.user_edited(
            user_id=user_id,
            conversation_id=conversation_id,
            action=action,
            fields=fields,
            correlation_id=correlation_id,
        ))

    async def log_action_executed(
        self,
        user_id: str,
        conversation_id: str,
        action: str,
        entity_type: Optional[str],
        entity_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.action_executed(
            user_id=user_id,
            conversation_id=conversation_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_action_failed(
        self,
        user_id: str,
        conversation_id: str,
        action: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.action_failed(
            user_id=user_id,
            conversation_id=conversation_id,
            action=action,
            error_type=type(error).__name__,
            error_message=str(error),
            correlation_id=correlation_id,
        ))

    async def log_journal_posted(
        self,
        entry: JournalEntry,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a journal entry reaching the ledger."""
        await self.log(AuditEventBuilder.journal_posted(
            user_id=entry.user_id,
            entry_id=entry.id,
            entry_number=entry.entry_number,
            source_type=entry.source_type,
            amount=str(entry.total_debits),
            correlation_id=correlation_id,
        ))

    async def log_journal_voided(
        self,
        user_id: str,
        entry_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.journal_voided(
            user_id=user_id,
            entry_id=entry_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    One per inbound request; every event the request causes carries it.
    """
    return uuid4()
