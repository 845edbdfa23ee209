"""
Configuration Management for Vault Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here, so every external collaborator the
ledger can talk to (Gemini, Google Drive) is visible in one place.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration (category suggestions, text parsing)."""

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
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=1024,
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


class GoogleDriveSettings(BaseSettings):
    """Google Drive cloud backup configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_DRIVE_",
        extra="ignore"
    )

    vault_file_name: str = Field(
        default="jk_vault_snapshot.json",
        description="Fixed, well-known name of the backup file in Drive"
    )
    api_base_url: str = Field(
        default="https://www.googleapis.com/drive/v3",
        description="Drive metadata API root"
    )
    upload_base_url: str = Field(
        default="https://www.googleapis.com/upload/drive/v3",
        description="Drive media upload API root"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Per-request HTTP timeout"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Local persistence
    data_dir: Path = Field(
        default=Path(".vault"),
        description="Directory holding the local snapshot and exports"
    )
    snapshot_file_name: str = Field(
        default="vault_snapshot.json",
        description="File name of the local durable snapshot"
    )
    export_file_prefix: str = Field(
        default="vault_snapshot",
        description="Prefix for date-stamped export files"
    )
    audit_file_name: str = Field(
        default="audit_log.jsonl",
        description="Append-only audit trail, one JSON event per line"
    )

    # Budget defaults
    default_currency: str = Field(
        default="INR",
        description="Currency code used for fresh ledgers"
    )
    default_monthly_income: int = Field(
        default=0,
        ge=0,
        description="Income baseline used when neither the month nor the user settings have one"
    )
    default_needs_percent: int = Field(default=50, ge=0, le=100)
    default_wants_percent: int = Field(default=30, ge=0, le=100)
    default_savings_percent: int = Field(default=20, ge=0, le=100)

    # Collaborators
    collaborator_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Upper bound on any cloud or AI call"
    )

    # Store limits
    notification_limit: int = Field(
        default=50,
        ge=1,
        description="Maximum notifications kept (newest first)"
    )
    max_catch_up_occurrences: int = Field(
        default=12,
        ge=1,
        description="Most bills a single recurring item may materialize in one roll-forward"
    )

    # Validation thresholds
    max_entry_amount: int = Field(
        default=10_000_000,
        description="Amount above which an entry is flagged as suspicious"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        description="How many days in the future an entry date can be"
    )

    @model_validator(mode="after")
    def validate_split(self) -> "AppSettings":
        """Default split must account for exactly 100% of income."""
        total = (
            self.default_needs_percent
            + self.default_wants_percent
            + self.default_savings_percent
        )
        if total != 100:
            raise ValueError(f"Default budget split must sum to 100, got {total}")
        return self

    @property
    def default_split(self) -> dict[str, int]:
        """Default split keyed by category name."""
        return {
            "Needs": self.default_needs_percent,
            "Wants": self.default_wants_percent,
            "Savings": self.default_savings_percent,
        }

    @property
    def snapshot_path(self) -> Path:
        """Full path of the local snapshot file."""
        return self.data_dir / self.snapshot_file_name

    @property
    def audit_path(self) -> Path:
        return self.data_dir / self.audit_file_name


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings load lazily so a missing Gemini key doesn't stop the ledger

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def google_drive(self) -> GoogleDriveSettings:
        return GoogleDriveSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("gemini", "google_drive", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
