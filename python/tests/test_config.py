"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from hearth.config import DEV_SESSION_SIGNING_KEY, Environment, Settings


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "HEARTH_ENV": "test",
        "HEARTH_DATA_DIR": "/tmp/hearth-data",
        "SITE_ROOT": "https://family.example",
    }
    defaults.update(overrides)
    return Settings(**defaults)


class TestDefaults:
    """Tests for default values and derived settings."""

    def test_database_path_defaults_under_data_dir(self):
        s = _make_settings()
        assert s.effective_database_path == "/tmp/hearth-data/hearth.db"

    def test_explicit_database_path(self):
        s = _make_settings(DATABASE_PATH="/srv/hearth.db")
        assert s.effective_database_path == "/srv/hearth.db"

    def test_dev_signing_key_fallback(self):
        s = _make_settings()
        assert s.effective_session_signing_key == DEV_SESSION_SIGNING_KEY

    def test_queue_defaults(self):
        s = _make_settings()
        assert s.media_queue_capacity == 100
        assert s.push_queue_capacity == 100
        assert s.sweep_pending_on_boot is True
        assert s.push_allow_token_transfer is True


class TestEnvironmentValidation:
    """Tests for per-environment requirements."""

    @pytest.mark.parametrize("env", ["staging", "prod"])
    def test_signing_key_required_outside_dev(self, env: str):
        with pytest.raises(ValidationError, match="SESSION_SIGNING_KEY"):
            _make_settings(HEARTH_ENV=env)

    def test_prod_with_key(self):
        s = _make_settings(HEARTH_ENV="prod", SESSION_SIGNING_KEY="s3cret")
        assert s.hearth_env == Environment.PROD
        assert s.effective_session_signing_key == "s3cret"

    @pytest.mark.parametrize("name", ["MEDIA_QUEUE_CAPACITY", "PUSH_QUEUE_CAPACITY"])
    def test_zero_capacity_rejected(self, name: str):
        with pytest.raises(ValidationError, match=name):
            _make_settings(**{name: 0})


class TestApnsSettings:
    """Tests for APNs configuration detection."""

    def test_unconfigured_by_default(self):
        assert not _make_settings().apns_configured

    def test_partial_config_is_unconfigured(self):
        s = _make_settings(APNS_TEAM_ID="TEAM", APNS_KEY_ID="KEY")
        assert not s.apns_configured

    def test_full_config(self):
        s = _make_settings(
            APNS_TEAM_ID="TEAM",
            APNS_KEY_ID="KEY",
            APNS_BUNDLE_ID="com.example.family",
            APNS_KEY_PATH="/keys/AuthKey.p8",
        )
        assert s.apns_configured


class TestWebSocketOrigins:
    """Tests for the derived origin allow-list."""

    def test_site_root_only(self):
        assert _make_settings().allowed_ws_origins == ["https://family.example"]

    def test_trailing_slash_stripped(self):
        s = _make_settings(SITE_ROOT="https://family.example/")
        assert s.allowed_ws_origins == ["https://family.example"]

    def test_localhost_allows_dev_ports(self):
        s = _make_settings(SITE_ROOT="http://localhost:3000")
        assert s.allowed_ws_origins[0] == "http://localhost:3000"
        assert "http://localhost:*" in s.allowed_ws_origins
        assert "http://127.0.0.1:*" in s.allowed_ws_origins
