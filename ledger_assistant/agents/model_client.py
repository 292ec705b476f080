"""
Language Model Client

The model is an external oracle: it receives an Instruction and returns
text. Everything it returns is untrusted and goes through the
ResponseInterpreter before the engine acts on it.

Provider failures never leak out of this module as provider exceptions.
Timeouts, rate limits, exhausted quota and outages all become
ExternalServiceError, which the engine turns into a conversational
"try again / switch model" reply with no state change.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledger_assistant.agents.prompts import Instruction
from ledger_assistant.config import GeminiSettings, get_settings
from ledger_assistant.errors import ExternalServiceError
from ledger_assistant.models.conversation import MessageRole

logger = structlog.get_logger(__name__)


class ModelClient(ABC):
    """Anything that turns an Instruction into reply text."""

    @abstractmethod
    async def complete(self, instruction: Instruction, model: Optional[str] = None) -> str:
        """
        Ask the model.

        Args:
            instruction: System text and conversation turns
            model: Requested model name; None means the default

        Raises:
            ExternalServiceError: The provider failed or timed out
        """
        pass


class GeminiModelClient(ModelClient):
    """
    Google Gemini via google-generativeai.

    Transient outages (ServiceUnavailable) are retried with exponential
    backoff; every other provider error fails fast.
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        genai.configure(api_key=self._settings.api_key)

    def resolve_model(self, requested: Optional[str]) -> str:
        """Requested model if allowed, else the configured default."""
        if requested and requested in self._settings.allowed_models_list:
            return requested
        if requested:
            logger.warning(
                "model_not_allowed",
                requested=requested,
                fallback=self._settings.model_name,
            )
        return self._settings.model_name

    def _contents(self, instruction: Instruction) -> list[dict]:
        return [
            {
                "role": "user" if turn.role == MessageRole.USER else "model",
                "parts": [turn.content],
            }
            for turn in instruction.turns
        ]

    async def complete(self, instruction: Instruction, model: Optional[str] = None) -> str:
        model_name = self.resolve_model(model)
        generative_model = genai.GenerativeModel(
            model_name=model_name,
            system_instruction=instruction.system,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            },
        )
        contents = self._contents(instruction)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=8),
                retry=retry_if_exception_type(google_exceptions.ServiceUnavailable),
                reraise=True,
            ):
                with attempt:
                    response = await asyncio.wait_for(
                        generative_model.generate_content_async(contents),
                        timeout=self._settings.timeout_seconds,
                    )
        except (asyncio.TimeoutError, google_exceptions.DeadlineExceeded) as e:
            logger.warning("model_call_timeout", model=model_name, error=str(e))
            raise ExternalServiceError(f"Model {model_name} timed out") from e
        except google_exceptions.ResourceExhausted as e:
            logger.warning("model_call_rate_limited", model=model_name, error=str(e))
            raise ExternalServiceError(
                f"Model {model_name} quota exhausted: {e}",
                user_message=(
                    "The AI model has hit its usage limit. "
                    "Please switch to a different model or try again later."
                ),
            ) from e
        except google_exceptions.ServiceUnavailable as e:
            logger.warning("model_call_unavailable", model=model_name, error=str(e))
            raise ExternalServiceError(f"Model {model_name} unavailable: {e}") from e
        except google_exceptions.GoogleAPIError as e:
            logger.error("model_call_failed", model=model_name, error=str(e))
            raise ExternalServiceError(f"Model {model_name} failed: {e}") from e

        try:
            return response.text
        except ValueError as e:
            # Blocked or empty candidates
            logger.warning("model_reply_empty", model=model_name, error=str(e))
            raise ExternalServiceError(f"Model {model_name} returned no text") from e
