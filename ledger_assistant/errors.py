"""
Engine Error Taxonomy

Every failure the conversational engine can surface belongs to one of
these classes. The phase router maps each class to a user-visible reply
and to what happens to the conversation context:

- ValidationError     → back to collecting, offending fields named
- NotFoundError       → plain message, context cleared
- ConflictError       → generic retry message, nothing applied, a
                        confirmed preview stays open for another try
- ReplayedActionError → the preview already executed, context ends
- ExternalServiceError → "try another model" message, no state change
- AuthError           → request rejected before any store is touched

The `user_message` of an error is safe to show. The underlying cause
(provider error bodies, stack traces) goes to the log only.
"""

from typing import Optional


class EngineError(Exception):
    """Base class for engine failures."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class ValidationError(EngineError):
    """
    A required field is missing or invalid, or a referenced identifier
    does not belong to the requesting user.
    """

    def __init__(
        self,
        message: str,
        fields: Optional[list[str]] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message, user_message or message)
        self.fields = list(fields or [])


class NotFoundError(EngineError):
    """A referenced business record (invoice, bill) does not exist."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message, user_message or message)


class ConflictError(EngineError):
    """Unbalanced journal entry, or a document number taken concurrently."""

    user_message = (
        "That change could not be applied because the records changed "
        "in the meantime. Nothing was saved - please try again."
    )


class ReplayedActionError(ConflictError):
    """The idempotency key of a preview was already spent by an earlier confirm."""

    user_message = "That was already saved. Nothing was done twice."


class ExternalServiceError(EngineError):
    """The language model is unavailable, rate-limited or out of credits."""

    user_message = (
        "The AI model is not responding right now. "
        "Please try again in a moment or switch to a different model."
    )

    def __init__(
        self,
        message: str,
        service: str = "gemini",
        user_message: Optional[str] = None,
    ):
        super().__init__(message, user_message)
        self.service = service


class AuthError(EngineError):
    """Missing or invalid user identity."""

    user_message = "Please sign in again to continue."
