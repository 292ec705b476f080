"""Action validation package."""

from ledger_assistant.validation.validator import ActionValidator, from_pydantic_error

__all__ = ["ActionValidator", "from_pydantic_error"]
