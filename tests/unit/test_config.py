"""Unit tests for settings loading."""

from freework.config import Settings, get_settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("FREEWORK_MAX_RECONNECT_ATTEMPTS", raising=False)
        settings = Settings(_env_file=None)
        assert settings.refresh_lead_seconds == 60
        assert settings.reconnect_interval_seconds == 3.0
        assert settings.storage_key_prefix == "freework"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("FREEWORK_MAX_RECONNECT_ATTEMPTS", "7")
        monkeypatch.setenv("FREEWORK_USE_MOCK_BACKEND", "false")
        settings = Settings(_env_file=None)
        assert settings.max_reconnect_attempts == 7
        assert settings.use_mock_backend is False

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
