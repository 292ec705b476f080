"""
Tests for configuration and the Gemini client's failure mapping.

The Gemini SDK is replaced by a fake GenerativeModel; no API calls.
"""

import pytest
from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError as PydanticValidationError

from conftest import run
from ledger_assistant.agents import GeminiModelClient, Instruction
from ledger_assistant.agents import model_client as model_client_module
from ledger_assistant.config import (
    AccountCodeSettings,
    EngineSettings,
    GeminiSettings,
    get_settings,
    validate_all_settings,
)
from ledger_assistant.errors import ExternalServiceError


class FakeResponse:

    def __init__(self, text=None):
        self._text = text

    @property
    def text(self):
        if self._text is None:
            raise ValueError("No candidates")
        return self._text


def fake_generative_model(outcome, created: list):
    """GenerativeModel stand-in that returns or raises `outcome`."""

    class FakeGenerativeModel:

        def __init__(self, model_name, system_instruction=None, generation_config=None):
            self.model_name = model_name
            created.append(self)

        async def generate_content_async(self, contents):
            self.contents = contents
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

    return FakeGenerativeModel


class TestSettings:

    def test_engine_defaults(self, monkeypatch):
        monkeypatch.delenv("ENGINE_STORAGE_BACKEND", raising=False)
        settings = EngineSettings()
        assert settings.storage_backend == "memory"
        assert settings.history_window == 10
        assert settings.context_ttl_minutes == 60

    def test_engine_from_environment(self, monkeypatch):
        monkeypatch.setenv("ENGINE_HISTORY_WINDOW", "4")
        monkeypatch.setenv("ENGINE_CONTEXT_TTL_MINUTES", "15")
        settings = EngineSettings()
        assert settings.history_window == 4
        assert settings.context_ttl_minutes == 15

    def test_unknown_backend_rejected(self, monkeypatch):
        monkeypatch.setenv("ENGINE_STORAGE_BACKEND", "postgres")
        with pytest.raises(PydanticValidationError):
            EngineSettings()

    def test_account_codes(self, monkeypatch):
        monkeypatch.setenv("LEDGER_ACCOUNT_REVENUE", "4010")
        codes = AccountCodeSettings()
        assert codes.revenue == "4010"
        assert codes.accounts_receivable == "1200"

    def test_allowed_models_list(self):
        settings = GeminiSettings(api_key="k", allowed_models=" a, b ,,c ")
        assert settings.allowed_models_list == ["a", "b", "c"]

    def test_validate_all_settings_reports_missing_sheets(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        get_settings.cache_clear()
        results = validate_all_settings()
        assert results["gemini"] is True
        assert results["engine"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results


class TestGeminiModelClient:
    """Provider failures become ExternalServiceError."""

    def client(self, **overrides) -> GeminiModelClient:
        values = {"api_key": "k", "max_retries": 1}
        values.update(overrides)
        return GeminiModelClient(GeminiSettings(**values))

    def test_resolve_model(self):
        client = self.client(model_name="gemini-1.5-flash", allowed_models="gemini-1.5-flash,gemini-1.5-pro")
        assert client.resolve_model("gemini-1.5-pro") == "gemini-1.5-pro"
        assert client.resolve_model("gpt-4") == "gemini-1.5-flash"
        assert client.resolve_model(None) == "gemini-1.5-flash"

    def test_complete_returns_text(self, monkeypatch):
        created = []
        monkeypatch.setattr(
            model_client_module.genai, "GenerativeModel",
            fake_generative_model(FakeResponse('{"mode": "conversation"}'), created),
        )
        instruction = Instruction(system="sys", turns=[])

        text = run(self.client().complete(instruction, "gemini-1.5-pro"))

        assert text == '{"mode": "conversation"}'
        assert created[0].model_name == "gemini-1.5-pro"

    @pytest.mark.parametrize("error", [
        google_exceptions.ResourceExhausted("quota"),
        google_exceptions.ServiceUnavailable("down"),
        google_exceptions.DeadlineExceeded("slow"),
        google_exceptions.InternalServerError("boom"),
    ])
    def test_provider_errors(self, monkeypatch, error):
        monkeypatch.setattr(
            model_client_module.genai, "GenerativeModel", fake_generative_model(error, []),
        )
        with pytest.raises(ExternalServiceError) as exc_info:
            run(self.client().complete(Instruction(system="sys", turns=[])))
        assert exc_info.value.user_message

    def test_quota_message_suggests_switching(self, monkeypatch):
        monkeypatch.setattr(
            model_client_module.genai, "GenerativeModel",
            fake_generative_model(google_exceptions.ResourceExhausted("quota"), []),
        )
        with pytest.raises(ExternalServiceError) as exc_info:
            run(self.client().complete(Instruction(system="sys", turns=[])))
        assert "switch" in exc_info.value.user_message

    def test_blocked_reply(self, monkeypatch):
        monkeypatch.setattr(
            model_client_module.genai, "GenerativeModel", fake_generative_model(FakeResponse(None), []),
        )
        with pytest.raises(ExternalServiceError):
            run(self.client().complete(Instruction(system="sys", turns=[])))
