"""
Model Response Interpreter

Turns raw model text into a ParsedReply. The model is asked for a single
JSON object but may wrap it in code fences, surround it with prose, use
an unknown action or the wrong types. None of that is trusted:

- anything that does not validate as a structured reply becomes a
  plain `conversation` reply carrying the model's text
- only the SHAPE is checked here; whether ids exist and belong to the
  user is the executor's job

Replies in the older `{"action", "data", "response"}` shape (no `mode`)
are read as `execute`; the phase router still downgrades them to a
preview when the action needs confirmation.
"""

import json
import re
from typing import Any, Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from ledger_assistant.models.actions import parse_action_kind
from ledger_assistant.models.conversation import ConversationReply, ParsedReply

logger = structlog.get_logger(__name__)

_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)

_PARSED_REPLY = TypeAdapter(ParsedReply)

EMPTY_REPLY = "Sorry, I didn't get that. Could you rephrase?"


def strip_code_fences(text: str) -> str:
    """Return the inside of the first fenced block, or the text unchanged."""
    match = _FENCE.search(text)
    return match.group(1) if match else text


def _load_object(text: str) -> Optional[dict]:
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        # Fall back to the outermost {...} span
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            return None
        try:
            value = json.loads(text[start:end])
        except json.JSONDecodeError:
            return None
    return value if isinstance(value, dict) else None


class ResponseInterpreter:
    """
    Parses model output into the tagged reply union.

    Args:
        max_response_chars: Cap on free text shown to the user
    """

    def __init__(self, max_response_chars: int = 2000):
        self._max_chars = max_response_chars

    def _cap(self, text: str) -> str:
        text = text.strip()
        if len(text) > self._max_chars:
            return text[: self._max_chars - 3].rstrip() + "..."
        return text

    def interpret(self, raw_text: str) -> ParsedReply:
        text = strip_code_fences((raw_text or "").strip()).strip()
        if not text:
            return ConversationReply(response=EMPTY_REPLY)

        data = _load_object(text)
        if data is None:
            return ConversationReply(response=self._cap(text))

        fallback_text = data.get("response") if isinstance(data.get("response"), str) else text

        action = parse_action_kind(data.get("action"))
        if action is None:
            if data.get("action") is not None:
                logger.info("model_reply_unknown_action", action=str(data.get("action"))[:50])
            return ConversationReply(response=self._cap(fallback_text) or EMPTY_REPLY)

        candidate = self._candidate(data, action.value)
        if candidate is None:
            return ConversationReply(response=self._cap(fallback_text) or EMPTY_REPLY)

        try:
            reply = _PARSED_REPLY.validate_python(candidate)
        except ValidationError as e:
            logger.info(
                "model_reply_invalid",
                mode=candidate.get("mode"),
                errors=e.error_count(),
            )
            return ConversationReply(response=self._cap(fallback_text) or EMPTY_REPLY)

        reply.response = self._cap(reply.response)
        return reply

    def _candidate(self, data: dict, action: str) -> Optional[dict[str, Any]]:
        mode = data.get("mode")
        if mode is None and "data" in data:
            mode = "execute"
        if not isinstance(mode, str):
            return None
        mode = mode.strip().lower()
        response = data.get("response") if isinstance(data.get("response"), str) else ""

        if mode == "collecting":
            return {
                "mode": mode,
                "action": action,
                "collected": data.get("collected") or {},
                "missing": data.get("missing") or [],
                "response": response,
            }
        if mode == "preview":
            return {
                "mode": mode,
                "action": action,
                "preview_data": data.get("preview_data") or data.get("data") or {},
                "response": response,
            }
        if mode == "execute":
            return {
                "mode": mode,
                "action": action,
                "data": data.get("data") or {},
                "response": response,
            }
        return None
