"""AI Agents package."""

from ledger_assistant.agents.interpreter import ResponseInterpreter, strip_code_fences
from ledger_assistant.agents.model_client import GeminiModelClient, ModelClient
from ledger_assistant.agents.prompts import Instruction, PromptBuilder, Turn

__all__ = [
    "GeminiModelClient",
    "Instruction",
    "ModelClient",
    "PromptBuilder",
    "ResponseInterpreter",
    "Turn",
    "strip_code_fences",
]
