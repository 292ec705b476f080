"""
Phase Router

Decides what a parsed reply is allowed to do given the current phase.

States: Idle (no context record), Collecting, Preview. Execute is an
effect, never a stored phase.

CRITICAL INVARIANTS:
- An action that requires confirmation is never executed from a model
  reply. An `execute` for such an action is downgraded to a preview.
- Missing fields are derived from the action schema, not from the
  model's `missing` list.
- Preview totals are recomputed from the lines before persisting.
- Confirm reads-and-clears the context atomically, so two concurrent
  confirms execute at most once. The preview's idempotency key travels
  into the ledger commit as the second line of defence.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from ledger_assistant.audit import AuditLogger
from ledger_assistant.commands.matcher import normalize_command_text
from ledger_assistant.errors import (
    ConflictError,
    NotFoundError,
    ReplayedActionError,
    ValidationError,
)
from ledger_assistant.ledger import ActionExecutor, ExecutionResult
from ledger_assistant.models.actions import (
    ActionKind,
    get_spec,
    merge_collected,
    missing_fields,
    normalize_preview,
    restrict_to_schema,
)
from ledger_assistant.models.conversation import (
    CollectingReply,
    ConversationContext,
    ConversationReply,
    EngineResponse,
    ExecuteReply,
    ParsedReply,
    Phase,
    PreviewReply,
    ReplySource,
    ResponseType,
)
from ledger_assistant.services.storage import (
    ContextStoreInterface,
    LedgerStoreInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


CONFIRM_TOKENS = frozenset({"confirm", "yes", "ok", "proceed", "approve"})
CANCEL_TOKENS = frozenset({"cancel", "no", "stop", "abort"})

NOTHING_TO_CONFIRM = "Nothing to confirm right now."

FIELD_LABELS = {
    "customer_id": "the customer",
    "vendor_id": "the vendor",
    "lines": "the line items",
    "invoice_date": "the invoice date",
    "bill_date": "the bill date",
    "due_date": "the due date",
    "payment_date": "the payment date",
    "invoice_ref": "the invoice number",
    "bill_ref": "the bill number",
    "amount": "the amount",
    "bank_account_id": "the bank account",
    "name": "the name",
    "description": "the description",
    "transaction_date": "the transaction date",
}


def control_token(text: str) -> Optional[str]:
    """'confirm' or 'cancel' when the whole message is one of the tokens."""
    token = normalize_command_text(text).lower()
    if token in CONFIRM_TOKENS:
        return "confirm"
    if token in CANCEL_TOKENS:
        return "cancel"
    return None


def parse_edit(text: str) -> Optional[dict[str, Any]]:
    """A message that is a JSON object is an edit of the previewed data."""
    stripped = text.strip()
    if not stripped.startswith("{"):
        return None
    try:
        value = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def describe_fields(fields: list[str]) -> str:
    labels = [FIELD_LABELS.get(f, f.replace("_", " ")) for f in fields]
    if len(labels) == 1:
        return labels[0]
    return ", ".join(labels[:-1]) + " and " + labels[-1]


@dataclass(frozen=True)
class RequestScope:
    """Identity of one request as it flows through the router."""

    user_id: str
    conversation_id: str
    correlation_id: UUID


class PhaseRouter:
    """
    Applies the phase transition table.

    Args:
        contexts: Conversation context store
        ledger: Ledger store (reference data for preview totals)
        executor: Action executor
        audit_logger: Audit trail
    """

    def __init__(
        self,
        contexts: ContextStoreInterface,
        ledger: LedgerStoreInterface,
        executor: ActionExecutor,
        audit_logger: AuditLogger,
    ):
        self._contexts = contexts
        self._ledger = ledger
        self._executor = executor
        self._audit = audit_logger

    # -------------------------------------------------------------------------
    # Parsed replies
    # -------------------------------------------------------------------------

    async def route(
        self,
        scope: RequestScope,
        context: Optional[ConversationContext],
        reply: ParsedReply,
    ) -> EngineResponse:
        if isinstance(reply, ConversationReply):
            return EngineResponse.message(reply.response)
        if isinstance(reply, ExecuteReply):
            return await self._route_execute(scope, context, reply)
        if isinstance(reply, CollectingReply):
            return await self._route_collecting(scope, context, reply)
        if isinstance(reply, PreviewReply):
            return await self._route_preview(scope, context, reply)
        raise TypeError(f"Unhandled reply type {type(reply).__name__}")

    @staticmethod
    def _carried(context: Optional[ConversationContext], action: ActionKind) -> dict[str, Any]:
        # Fields gathered so far only carry over for the same action
        if context is not None and context.pending_action == action:
            return dict(context.collected_data)
        return {}

    async def _route_execute(
        self,
        scope: RequestScope,
        context: Optional[ConversationContext],
        reply: ExecuteReply,
    ) -> EngineResponse:
        spec = get_spec(reply.action)
        data = restrict_to_schema(reply.action, reply.data)

        if spec.requires_confirmation:
            await self._audit.log_model_reply_downgraded(
                user_id=scope.user_id,
                conversation_id=scope.conversation_id,
                from_mode="execute",
                to_mode="preview",
                reason="confirmation required",
                correlation_id=scope.correlation_id,
            )
            merged = merge_collected(self._carried(context, reply.action), data)
            return await self._preview_or_collect(scope, context, reply.action, merged, reply.response)

        from_context = context is not None and context.pending_action == reply.action
        return await self._execute(
            scope,
            reply.action,
            data,
            idempotency_key=None,
            from_context=from_context,
        )

    async def _route_collecting(
        self,
        scope: RequestScope,
        context: Optional[ConversationContext],
        reply: CollectingReply,
    ) -> EngineResponse:
        merged = merge_collected(
            self._carried(context, reply.action),
            restrict_to_schema(reply.action, reply.collected),
        )
        if missing_fields(reply.action, merged):
            return await self._collect(scope, reply.action, merged, reply.response)

        await self._audit.log_model_reply_downgraded(
            user_id=scope.user_id,
            conversation_id=scope.conversation_id,
            from_mode="collecting",
            to_mode="preview",
            reason="nothing missing",
            correlation_id=scope.correlation_id,
        )
        if not get_spec(reply.action).requires_confirmation:
            from_context = context is not None and context.pending_action == reply.action
            return await self._execute(
                scope,
                reply.action,
                merged,
                idempotency_key=None,
                from_context=from_context,
            )
        return await self._enter_preview(scope, context, reply.action, merged, "")

    async def _route_preview(
        self,
        scope: RequestScope,
        context: Optional[ConversationContext],
        reply: PreviewReply,
    ) -> EngineResponse:
        if reply.source == ReplySource.DIRECT and reply.action == ActionKind.EDIT_INVOICE:
            return await self._open_edit(scope, context, reply)

        merged = merge_collected(
            self._carried(context, reply.action),
            restrict_to_schema(reply.action, reply.preview_data),
        )
        return await self._preview_or_collect(scope, context, reply.action, merged, reply.response)

    async def _preview_or_collect(
        self,
        scope: RequestScope,
        context: Optional[ConversationContext],
        action: ActionKind,
        data: dict[str, Any],
        response: str,
    ) -> EngineResponse:
        missing = missing_fields(action, data)
        if missing:
            await self._audit.log_model_reply_downgraded(
                user_id=scope.user_id,
                conversation_id=scope.conversation_id,
                from_mode="preview",
                to_mode="collecting",
                reason="missing " + ",".join(missing),
                correlation_id=scope.correlation_id,
            )
            return await self._collect(scope, action, data, "")
        return await self._enter_preview(scope, context, action, data, response)

    async def _open_edit(
        self,
        scope: RequestScope,
        context: Optional[ConversationContext],
        reply: PreviewReply,
    ) -> EngineResponse:
        ref = reply.preview_data.get("invoice_ref", "")
        try:
            data = await self._executor.load_invoice_for_edit(scope.user_id, ref)
        except (NotFoundError, ValidationError) as e:
            return EngineResponse.message(e.user_message)
        text = (
            f"Here is invoice {data['invoice_ref']}. Change any field and submit, "
            "then confirm to save."
        )
        if context is not None and not self._same_edit(context, data["invoice_ref"]):
            label = context.pending_action.value.replace("_", " ")
            text = f"I set aside the unfinished {label}; it was not saved. " + text
            await self._audit.log_context_cleared(
                user_id=scope.user_id,
                conversation_id=scope.conversation_id,
                reason="replaced by edit_invoice",
                correlation_id=scope.correlation_id,
            )
        return await self._enter_preview(scope, None, ActionKind.EDIT_INVOICE, data, text)

    @staticmethod
    def _same_edit(context: ConversationContext, invoice_ref: str) -> bool:
        return (
            context.pending_action == ActionKind.EDIT_INVOICE
            and context.collected_data.get("invoice_ref") == invoice_ref
        )

    # -------------------------------------------------------------------------
    # Context transitions
    # -------------------------------------------------------------------------

    async def _collect(
        self,
        scope: RequestScope,
        action: ActionKind,
        data: dict[str, Any],
        response: str,
        missing: Optional[list[str]] = None,
    ) -> EngineResponse:
        missing = missing if missing is not None else missing_fields(action, data)
        context = ConversationContext(
            conversation_id=scope.conversation_id,
            user_id=scope.user_id,
            phase=Phase.COLLECTING,
            pending_action=action,
            collected_data=data,
            missing_fields=missing,
        )
        await self._contexts.save(context)
        await self._audit.log_context_saved(
            user_id=scope.user_id,
            conversation_id=scope.conversation_id,
            phase=Phase.COLLECTING.value,
            action=action.value,
            missing=missing,
            correlation_id=scope.correlation_id,
        )
        text = response or f"I still need {describe_fields(missing)}."
        return EngineResponse(type=ResponseType.MESSAGE, response=text, action=action)

    async def _enter_preview(
        self,
        scope: RequestScope,
        context: Optional[ConversationContext],
        action: ActionKind,
        data: dict[str, Any],
        response: str,
    ) -> EngineResponse:
        snapshot = await self._ledger.get_snapshot(scope.user_id)
        preview = normalize_preview(action, data, snapshot)

        key = None
        if (
            context is not None
            and context.phase == Phase.PREVIEW
            and context.pending_action == action
        ):
            key = context.idempotency_key
        key = key or uuid4()

        await self._contexts.save(ConversationContext(
            conversation_id=scope.conversation_id,
            user_id=scope.user_id,
            phase=Phase.PREVIEW,
            pending_action=action,
            collected_data=preview,
            missing_fields=[],
            idempotency_key=key,
        ))
        await self._audit.log_preview_presented(
            user_id=scope.user_id,
            conversation_id=scope.conversation_id,
            action=action.value,
            idempotency_key=key,
            correlation_id=scope.correlation_id,
        )
        text = response or "Please review the details below, then confirm or cancel."
        return EngineResponse(type=ResponseType.PREVIEW, response=text, action=action, data=preview)

    async def apply_edit(
        self,
        scope: RequestScope,
        context: ConversationContext,
        edits: dict[str, Any],
    ) -> EngineResponse:
        """Overwrite previewed fields with user edits; stays in Preview."""
        changes = restrict_to_schema(context.pending_action, edits)
        await self._audit.log_user_edited(
            user_id=scope.user_id,
            conversation_id=scope.conversation_id,
            action=context.pending_action.value,
            fields=sorted(changes),
            correlation_id=scope.correlation_id,
        )
        merged = merge_collected(context.collected_data, changes)
        return await self._preview_or_collect(
            scope,
            context,
            context.pending_action,
            merged,
            "Updated. Please review the changes, then confirm or cancel.",
        )

    async def confirm(self, scope: RequestScope) -> EngineResponse:
        context = await self._contexts.take(scope.conversation_id)
        if context is None:
            return EngineResponse.message(NOTHING_TO_CONFIRM)
        if context.phase != Phase.PREVIEW:
            await self._contexts.save(context)
            return EngineResponse.message(NOTHING_TO_CONFIRM)

        await self._audit.log_user_confirmed(
            user_id=scope.user_id,
            conversation_id=scope.conversation_id,
            action=context.pending_action.value,
            correlation_id=scope.correlation_id,
        )
        return await self._execute(
            scope,
            context.pending_action,
            context.collected_data,
            idempotency_key=context.idempotency_key,
            from_context=True,
            taken=context,
        )

    async def cancel(self, scope: RequestScope) -> EngineResponse:
        context = await self._contexts.take(scope.conversation_id)
        if context is None:
            return EngineResponse.message(NOTHING_TO_CONFIRM)

        await self._audit.log_user_cancelled(
            user_id=scope.user_id,
            conversation_id=scope.conversation_id,
            action=context.pending_action.value,
            correlation_id=scope.correlation_id,
        )
        await self._audit.log_context_cleared(
            user_id=scope.user_id,
            conversation_id=scope.conversation_id,
            reason="cancelled",
            correlation_id=scope.correlation_id,
        )
        label = context.pending_action.value.replace("_", " ")
        return EngineResponse.message(f"Cancelled. Nothing was saved for {label}.")

    # -------------------------------------------------------------------------
    # Execution and error mapping
    # -------------------------------------------------------------------------

    async def _clear(self, scope: RequestScope, reason: str) -> None:
        await self._contexts.clear(scope.conversation_id)
        await self._audit.log_context_cleared(
            user_id=scope.user_id,
            conversation_id=scope.conversation_id,
            reason=reason,
            correlation_id=scope.correlation_id,
        )

    async def _restore(
        self,
        scope: RequestScope,
        action: ActionKind,
        taken: ConversationContext,
    ) -> None:
        await self._contexts.save(taken)
        logger.warning(
            "context_restored",
            conversation_id=scope.conversation_id,
            action=action.value,
        )

    async def _execute(
        self,
        scope: RequestScope,
        action: ActionKind,
        data: dict[str, Any],
        idempotency_key: Optional[UUID],
        from_context: bool,
        taken: Optional[ConversationContext] = None,
    ) -> EngineResponse:
        """
        Run an action and map its outcome onto the context.

        `from_context` means the action is the pending one, so success or
        an unrecoverable error ends it. `taken` is the context a confirm
        already removed; it is put back whenever the ledger was left
        untouched and confirming again could succeed.
        """
        try:
            result = await self._executor.execute(action, data, scope.user_id, idempotency_key)
        except ValidationError as e:
            await self._audit.log_action_failed(
                scope.user_id, scope.conversation_id, action.value, e, scope.correlation_id,
            )
            if e.fields:
                kept = {k: v for k, v in data.items() if k not in e.fields}
                kept = restrict_to_schema(action, kept)
                missing = list(dict.fromkeys(missing_fields(action, kept) + e.fields))
                return await self._collect(scope, action, kept, e.user_message, missing=missing)
            if taken is not None:
                await self._restore(scope, action, taken)
            elif from_context:
                await self._clear(scope, "action rejected")
            return EngineResponse.message(e.user_message)
        except NotFoundError as e:
            await self._audit.log_action_failed(
                scope.user_id, scope.conversation_id, action.value, e, scope.correlation_id,
            )
            if from_context and taken is None:
                await self._clear(scope, "record not found")
            return EngineResponse.message(e.user_message)
        except ReplayedActionError as e:
            await self._audit.log_action_failed(
                scope.user_id, scope.conversation_id, action.value, e, scope.correlation_id,
            )
            return EngineResponse.message(e.user_message)
        except ConflictError as e:
            await self._audit.log_action_failed(
                scope.user_id, scope.conversation_id, action.value, e, scope.correlation_id,
            )
            if taken is not None:
                await self._restore(scope, action, taken)
            return EngineResponse.message(e.user_message)
        except StorageError as e:
            await self._audit.log_action_failed(
                scope.user_id, scope.conversation_id, action.value, e, scope.correlation_id,
            )
            if taken is not None:
                await self._restore(scope, action, taken)
            return EngineResponse.error(
                "Your records could not be saved right now. Please try again."
            )
        except Exception:
            if taken is not None:
                await self._restore(scope, action, taken)
            raise

        if from_context and taken is None:
            await self._clear(scope, "executed")
        await self._record_success(scope, action, result)
        return EngineResponse(
            type=ResponseType.SUCCESS,
            response=result.response,
            action=action,
            data=result.data,
        )

    async def _record_success(
        self,
        scope: RequestScope,
        action: ActionKind,
        result: ExecutionResult,
    ) -> None:
        await self._audit.log_action_executed(
            user_id=scope.user_id,
            conversation_id=scope.conversation_id,
            action=action.value,
            entity_type=result.entity_type,
            entity_id=result.entity_id,
            correlation_id=scope.correlation_id,
        )
        for entry in result.journal_entries:
            await self._audit.log_journal_posted(entry, scope.correlation_id)
        for entry_id in result.voided_entry_ids:
            await self._audit.log_journal_voided(scope.user_id, entry_id, scope.correlation_id)
