import json
import logging

import pytest

from config.validation import validate_environment
from feedback_app.utils.hris import get_hris_client_kind, is_hris_enabled
from feedback_app.utils.logging_config import JSONFormatter

PRODUCTION_BASE = {
    "SECRET_KEY": "a-real-production-secret",
    "DATABASE_URL": "postgresql://feedback@db/feedback",
}


@pytest.fixture
def production_env(monkeypatch):
    for name in ("HRIS_SYNC_ENABLED", "HRIS_CLIENT", "HRIS_API_URL", "HRIS_API_KEY", "HRIS_SYNC_SECRET"):
        monkeypatch.delenv(name, raising=False)
    for name, value in PRODUCTION_BASE.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


class TestEnvironmentValidation:
    """Startup validation of environment variables"""

    def test_non_production_is_not_validated(self, monkeypatch):
        monkeypatch.delenv("SECRET_KEY", raising=False)
        assert validate_environment("development") == (True, [])

    def test_production_without_hris(self, production_env):
        assert validate_environment("production") == (True, [])

    def test_default_secret_key_is_rejected(self, production_env):
        production_env.setenv("SECRET_KEY", "your-secret-key")
        is_valid, errors = validate_environment("production")
        assert not is_valid
        assert errors[0].startswith("SECRET_KEY is required")

    def test_http_client_requires_credentials_and_secret(self, production_env):
        production_env.setenv("HRIS_SYNC_ENABLED", "true")

        is_valid, errors = validate_environment("production")

        assert not is_valid
        assert errors == [
            "HRIS_API_URL is required when HRIS_SYNC_ENABLED=true",
            "HRIS_API_KEY is required when HRIS_SYNC_ENABLED=true",
            "HRIS_SYNC_SECRET is required when HRIS_SYNC_ENABLED=true",
        ]

    def test_mock_client_only_needs_secret(self, production_env):
        production_env.setenv("HRIS_SYNC_ENABLED", "1")
        production_env.setenv("HRIS_CLIENT", "mock")
        production_env.setenv("HRIS_SYNC_SECRET", "shh")
        assert validate_environment("production") == (True, [])

    def test_unknown_client_is_reported(self, production_env):
        production_env.setenv("HRIS_SYNC_ENABLED", "yes")
        production_env.setenv("HRIS_CLIENT", "ldap")
        production_env.setenv("HRIS_SYNC_SECRET", "shh")
        _, errors = validate_environment("production")
        assert errors == ["HRIS_CLIENT must be one of http, mock (got 'ldap')"]


class TestHRISFlags:
    def test_flag_and_client_kind_follow_config(self, app):
        app.config.update(HRIS_SYNC_ENABLED=False, HRIS_CLIENT=" MOCK ")
        assert is_hris_enabled(app) is False
        assert get_hris_client_kind(app) == "mock"

        app.config["HRIS_SYNC_ENABLED"] = True
        assert is_hris_enabled() is True


class TestJSONFormatter:
    def test_structured_extras_become_fields(self):
        record = logging.LogRecord("feedback_app.hris", logging.INFO, __file__, 1, "Run %s done", (7,), None)
        record.hris_run_id = 7
        record.hris_mode = "full"

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "Run 7 done"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "feedback_app.hris"
        assert payload["hris_run_id"] == 7
        assert payload["hris_mode"] == "full"
        assert "exception" not in payload
