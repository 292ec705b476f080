"""
Intent Classifier

One entry point for both ways a message can be understood:

1. The direct command matcher (fixed grammar, no model call)
2. The language model, prompted with the user's reference data, the
   active context and the recent history

Both produce the same ParsedReply union, so the phase router never
needs to know which path a reply came from except for its `source`.
"""

from datetime import date
from typing import Optional

from ledger_assistant.agents.interpreter import ResponseInterpreter
from ledger_assistant.agents.model_client import ModelClient
from ledger_assistant.agents.prompts import PromptBuilder
from ledger_assistant.commands.matcher import DirectCommandMatcher
from ledger_assistant.models.conversation import ConversationContext, ParsedReply
from ledger_assistant.services.storage import LedgerStoreInterface, MessageStoreInterface


class IntentClassifier:
    """Turns a raw message into a ParsedReply."""

    def __init__(
        self,
        matcher: DirectCommandMatcher,
        prompt_builder: PromptBuilder,
        model_client: ModelClient,
        interpreter: ResponseInterpreter,
        ledger: LedgerStoreInterface,
        messages: MessageStoreInterface,
        history_window: int = 10,
    ):
        self._matcher = matcher
        self._prompts = prompt_builder
        self._model = model_client
        self._interpreter = interpreter
        self._ledger = ledger
        self._messages = messages
        self._history_window = history_window

    async def classify(
        self,
        text: str,
        user_id: str,
        conversation_id: str,
        context: Optional[ConversationContext] = None,
        model: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ParsedReply:
        """
        Direct command if the grammar matches, otherwise ask the model.

        Raises:
            ExternalServiceError: The model call failed
        """
        direct = self._matcher.match(text)
        if direct is not None:
            return direct

        snapshot = await self._ledger.get_snapshot(user_id)
        history = await self._messages.recent(conversation_id, self._history_window)
        instruction = self._prompts.build(
            snapshot,
            context,
            history,
            today or date.today(),
            message=text,
        )
        raw = await self._model.complete(instruction, model)
        return self._interpreter.interpret(raw)
