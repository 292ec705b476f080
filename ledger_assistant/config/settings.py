"""
Configuration Management for Ledger Assistant

Every tunable lives here, read from environment variables (and .env)
through pydantic-settings. One class per concern, one env prefix per class:

    GEMINI_          model provider
    GOOGLE_SHEETS_   spreadsheet backend
    LEDGER_ACCOUNT_  standard account codes used by the posting engine
    ENGINE_          conversation engine behaviour
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Model provider: key, default model and the models a user may pick."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Default Gemini model"
    )
    allowed_models: str = Field(
        default="gemini-1.5-flash,gemini-1.5-pro,gemini-2.0-flash",
        description="Comma-separated list of models a request may select"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Per-call timeout for the model"
    )
    max_retries: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Attempts for transient model outages"
    )

    @property
    def allowed_models_list(self) -> list[str]:
        """Get allowed models as a list."""
        return [m.strip() for m in self.allowed_models.split(",") if m.strip()]


class GoogleSheetsSettings(BaseSettings):
    """Spreadsheet backend: credentials and one worksheet name per record type."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Worksheet titles
    contexts_sheet_name: str = Field(default="Contexts")
    messages_sheet_name: str = Field(default="Messages")
    accounts_sheet_name: str = Field(default="Accounts")
    customers_sheet_name: str = Field(default="Customers")
    vendors_sheet_name: str = Field(default="Vendors")
    products_sheet_name: str = Field(default="Products")
    invoices_sheet_name: str = Field(default="Invoices")
    bills_sheet_name: str = Field(default="Bills")
    payments_sheet_name: str = Field(default="Payments")
    journal_sheet_name: str = Field(default="JournalEntries")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Worksheet holding the audit trail"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """The file may be mounted after startup, so a missing one only warns."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"No service account file at {v}; "
                "the sheets backend will fail to connect until it exists."
            )
        return v


class AccountCodeSettings(BaseSettings):
    """
    Codes of the standard accounts the posting engine looks up
    in each user's chart of accounts.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_ACCOUNT_",
        extra="ignore"
    )

    cash: str = Field(default="1000", description="Cash / Bank")
    accounts_receivable: str = Field(default="1200")
    accounts_payable: str = Field(default="2000")
    sales_tax_payable: str = Field(default="2100")
    revenue: str = Field(default="4000")
    sales_discounts: str = Field(default="4100")
    expenses: str = Field(default="5000")


class EngineSettings(BaseSettings):
    """
    Conversation engine behaviour: storage backend, prompt sizes,
    context lifetime.
    """

    model_config = SettingsConfigDict(
        env_prefix="ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    storage_backend: Literal["memory", "sheets"] = Field(
        default="memory",
        description="Where contexts, messages and the ledger live"
    )
    history_window: int = Field(
        default=10,
        ge=0,
        le=50,
        description="Number of recent messages sent to the model"
    )
    reference_sample_limit: int = Field(
        default=25,
        ge=1,
        le=200,
        description="Max accounts/customers/vendors/products embedded in a prompt"
    )
    context_ttl_minutes: int = Field(
        default=60,
        ge=1,
        description="A context untouched for longer than this is discarded"
    )
    max_response_chars: int = Field(
        default=2000,
        ge=100,
        description="Cap on model free text shown to the user"
    )


class Settings(BaseSettings):
    """
    All settings sections behind one object.

    Sections are built on access, so a missing Google Sheets config does
    not stop the in-memory backend from starting.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def accounts(self) -> AccountCodeSettings:
        return AccountCodeSettings()

    @property
    def engine(self) -> EngineSettings:
        return EngineSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Process-wide settings. Tests call get_settings.cache_clear() after
    changing the environment.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to load every section.

    Returns {section: loaded_ok}, plus "{section}_error" with the reason
    for each section that failed. Backs the Settings page.
    """
    results = {}
    settings = get_settings()

    sections = {
        "gemini": lambda: settings.gemini,
        "google_sheets": lambda: settings.google_sheets,
        "accounts": lambda: settings.accounts,
        "engine": lambda: settings.engine,
    }
    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
