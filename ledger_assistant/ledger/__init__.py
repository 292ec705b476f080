"""Ledger posting and action execution package."""

from ledger_assistant.ledger.executor import ActionExecutor, ExecutionResult, reference_candidates
from ledger_assistant.ledger.posting import PostingEngine

__all__ = ["ActionExecutor", "ExecutionResult", "PostingEngine", "reference_candidates"]
