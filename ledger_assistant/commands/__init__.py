"""Direct command matching package."""

from ledger_assistant.commands.matcher import DirectCommandMatcher, normalize_command_text

__all__ = ["DirectCommandMatcher", "normalize_command_text"]
