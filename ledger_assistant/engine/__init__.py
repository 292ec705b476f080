"""Conversation engine package: intent classification and the phase router."""

from ledger_assistant.engine.classifier import IntentClassifier
from ledger_assistant.engine.router import (
    CANCEL_TOKENS,
    CONFIRM_TOKENS,
    NOTHING_TO_CONFIRM,
    PhaseRouter,
    RequestScope,
    control_token,
    parse_edit,
)

__all__ = [
    "CANCEL_TOKENS",
    "CONFIRM_TOKENS",
    "IntentClassifier",
    "NOTHING_TO_CONFIRM",
    "PhaseRouter",
    "RequestScope",
    "control_token",
    "parse_edit",
]
