"""
Main Orchestrator for Ledger Assistant

This module ties together all the components and defines the
end-to-end flow of one chat message:

    identity check → record message → load context (expire if stale)
    → confirm / cancel / edit, or classify (direct command or model)
    → phase router → record reply

DESIGN DECISION: The orchestrator enforces the boundaries:
- No request touches a store without a user identity
- No money moves without a preview the user confirmed
- Every step is audited under one correlation id

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

import structlog

from ledger_assistant.agents import GeminiModelClient, ModelClient, PromptBuilder, ResponseInterpreter
from ledger_assistant.audit import AuditLogger, create_correlation_id
from ledger_assistant.commands import DirectCommandMatcher
from ledger_assistant.config import Settings, get_settings
from ledger_assistant.engine import IntentClassifier, PhaseRouter, RequestScope, control_token, parse_edit
from ledger_assistant.errors import AuthError, ExternalServiceError
from ledger_assistant.ledger import ActionExecutor, PostingEngine
from ledger_assistant.models.conversation import (
    ConversationContext,
    EngineRequest,
    EngineResponse,
    ExecuteReply,
    Message,
    MessageRole,
    Phase,
    ReplySource,
)
from ledger_assistant.services.storage import (
    AuditStorageInterface,
    ContextStoreInterface,
    InMemoryAuditStorage,
    InMemoryContextStore,
    InMemoryLedgerStore,
    InMemoryMessageStore,
    LedgerStoreInterface,
    MessageStoreInterface,
    StorageError,
)
from ledger_assistant.validation import ActionValidator

logger = structlog.get_logger(__name__)


class ConversationEngine:
    """
    Handles one chat message end to end.

    Every failure is turned into an EngineResponse here; `handle`
    never raises.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        router: PhaseRouter,
        contexts: ContextStoreInterface,
        messages: MessageStoreInterface,
        audit_logger: AuditLogger,
        context_ttl_minutes: int = 60,
    ):
        self._classifier = classifier
        self._router = router
        self._contexts = contexts
        self._messages = messages
        self._audit = audit_logger
        self._context_ttl_minutes = context_ttl_minutes

    async def handle(self, request: EngineRequest, today: Optional[date] = None) -> EngineResponse:
        correlation_id = create_correlation_id()

        if not request.user_id.strip():
            await self._audit.log_request_rejected(
                conversation_id=request.conversation_id,
                reason="missing user id",
                correlation_id=correlation_id,
            )
            return EngineResponse.error(AuthError.user_message)

        scope = RequestScope(
            user_id=request.user_id,
            conversation_id=request.conversation_id,
            correlation_id=correlation_id,
        )
        log = logger.bind(
            conversation_id=scope.conversation_id,
            correlation_id=str(correlation_id),
        )

        try:
            await self._messages.append(Message(
                conversation_id=scope.conversation_id,
                user_id=scope.user_id,
                role=MessageRole.USER,
                content=request.message,
            ))
            await self._audit.log_message_received(
                user_id=scope.user_id,
                conversation_id=scope.conversation_id,
                length=len(request.message),
                correlation_id=correlation_id,
            )
            response = await self._dispatch(scope, request, today)
        except ExternalServiceError as e:
            log.warning("external_service_failed", service=e.service, error=str(e))
            await self._audit.log_external_service_error(
                service=e.service,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            response = EngineResponse.error(e.user_message)
        except StorageError as e:
            log.error("storage_failed", error=str(e))
            await self._audit.log_error("StorageError", str(e), correlation_id=correlation_id)
            response = EngineResponse.error(
                "Your records are not reachable right now. Please try again shortly."
            )
        except Exception as e:
            log.exception("unexpected_error", error_type=type(e).__name__)
            await self._audit.log_error(type(e).__name__, str(e), correlation_id=correlation_id)
            response = EngineResponse.error("Something went wrong. Please try again.")

        try:
            await self._messages.append(Message(
                conversation_id=scope.conversation_id,
                user_id=scope.user_id,
                role=MessageRole.ASSISTANT,
                content=response.response,
                type=response.type,
                metadata={"action": response.action.value} if response.action else {},
            ))
        except StorageError as e:
            log.error("reply_not_recorded", error=str(e))

        return response

    async def _load_context(self, scope: RequestScope) -> Optional[ConversationContext]:
        context = await self._contexts.load(scope.conversation_id)
        if context is not None and context.is_stale(self._context_ttl_minutes):
            await self._contexts.clear(scope.conversation_id)
            await self._audit.log_context_expired(
                user_id=scope.user_id,
                conversation_id=scope.conversation_id,
                action=context.pending_action.value,
                correlation_id=scope.correlation_id,
            )
            return None
        return context

    async def _dispatch(
        self,
        scope: RequestScope,
        request: EngineRequest,
        today: Optional[date],
    ) -> EngineResponse:
        context = await self._load_context(scope)

        token = control_token(request.message)
        if token and (context is None or context.phase == Phase.PREVIEW):
            if token == "confirm":
                return await self._router.confirm(scope)
            return await self._router.cancel(scope)

        if context is not None and context.phase == Phase.PREVIEW:
            edits = parse_edit(request.message)
            if edits is not None:
                return await self._router.apply_edit(scope, context, edits)

        reply = await self._classifier.classify(
            request.message,
            scope.user_id,
            scope.conversation_id,
            context=context,
            model=request.model,
            today=today,
        )

        action = getattr(reply, "action", None)
        if reply.source == ReplySource.DIRECT:
            await self._audit.log_direct_command(
                user_id=scope.user_id,
                conversation_id=scope.conversation_id,
                action=action.value,
                correlation_id=scope.correlation_id,
            )
        else:
            await self._audit.log_model_reply(
                user_id=scope.user_id,
                conversation_id=scope.conversation_id,
                mode=reply.mode,
                action=action.value if action else None,
                correlation_id=scope.correlation_id,
            )

        # Direct queries run outside the conversation; a pending action stays
        if reply.source == ReplySource.DIRECT and isinstance(reply, ExecuteReply):
            return await self._router.route(scope, None, reply)
        return await self._router.route(scope, context, reply)


@dataclass
class AppComponents:
    """Everything the chat front-end needs, wired together."""

    engine: ConversationEngine
    contexts: ContextStoreInterface
    messages: MessageStoreInterface
    ledger: LedgerStoreInterface
    audit_storage: Optional[AuditStorageInterface]


def create_app_components(
    settings: Optional[Settings] = None,
    model_client: Optional[ModelClient] = None,
    ledger: Optional[LedgerStoreInterface] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Application settings (defaults to get_settings())
        model_client: Model client override (tests pass a scripted fake)
        ledger: Ledger store override (tests pass a seeded in-memory store)

    The storage backend comes from ENGINE_STORAGE_BACKEND.
    """
    settings = settings or get_settings()
    engine_settings = settings.engine

    if engine_settings.storage_backend == "sheets":
        from ledger_assistant.services.storage.google_sheets import (
            GoogleSheetsAuditStorage,
            GoogleSheetsClient,
            GoogleSheetsContextStore,
            GoogleSheetsLedgerStore,
            GoogleSheetsMessageStore,
        )

        client = GoogleSheetsClient()
        contexts = GoogleSheetsContextStore(client)
        messages = GoogleSheetsMessageStore(client)
        ledger = ledger or GoogleSheetsLedgerStore(client)
        audit_storage = GoogleSheetsAuditStorage(client)
    else:
        contexts = InMemoryContextStore()
        messages = InMemoryMessageStore()
        ledger = ledger or InMemoryLedgerStore()
        audit_storage = InMemoryAuditStorage()

    logger.info("storage_backend_selected", backend=engine_settings.storage_backend)

    audit_logger = AuditLogger(audit_storage)
    executor = ActionExecutor(ledger, PostingEngine(settings.accounts), ActionValidator())
    classifier = IntentClassifier(
        matcher=DirectCommandMatcher(),
        prompt_builder=PromptBuilder(
            history_window=engine_settings.history_window,
            sample_limit=engine_settings.reference_sample_limit,
        ),
        model_client=model_client or GeminiModelClient(settings.gemini),
        interpreter=ResponseInterpreter(engine_settings.max_response_chars),
        ledger=ledger,
        messages=messages,
        history_window=engine_settings.history_window,
    )
    router = PhaseRouter(contexts, ledger, executor, audit_logger)
    engine = ConversationEngine(
        classifier=classifier,
        router=router,
        contexts=contexts,
        messages=messages,
        audit_logger=audit_logger,
        context_ttl_minutes=engine_settings.context_ttl_minutes,
    )
    return AppComponents(
        engine=engine,
        contexts=contexts,
        messages=messages,
        ledger=ledger,
        audit_storage=audit_storage,
    )
