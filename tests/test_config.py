"""Tests for settings loading."""

import pytest

from vaultledger.config import AppSettings, GoogleDriveSettings, get_settings, validate_all_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestAppSettings:
    def test_split_must_total_100(self):
        """Test an inconsistent default split is refused at startup."""
        with pytest.raises(ValueError, match="sum to 100"):
            AppSettings(default_needs_percent=60)

    def test_env_override(self, monkeypatch, tmp_path):
        """Test environment variables override defaults."""
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("DEFAULT_MONTHLY_INCOME", "85000")
        settings = AppSettings()
        assert settings.snapshot_path == tmp_path / "vault_snapshot.json"
        assert settings.default_monthly_income == 85000


class TestValidateAllSettings:
    def test_missing_gemini_key_reported(self, monkeypatch):
        """Test a missing Gemini key is reported, not raised."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        status = validate_all_settings()
        assert status["app"] is True
        assert status["gemini"] is False
        assert "gemini_error" in status

    def test_gemini_configured(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "test-key")
        assert validate_all_settings()["gemini"] is True


class TestGoogleDriveSettings:
    def test_default_file_name(self):
        """Test the Drive backup file keeps its established name so existing backups are found."""
        assert GoogleDriveSettings().vault_file_name == "jk_vault_snapshot.json"
