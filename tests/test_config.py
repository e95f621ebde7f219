"""Tests for environment-driven settings."""

import os
from unittest.mock import patch

import pytest

from termrelay.config import DEFAULT_MODEL, Settings

ENV_VARS = [
    "HOST",
    "PORT",
    "DATABASE_URL",
    "JWT_SECRET",
    "ANTHROPIC_API_KEY",
    "CLI_COMMAND",
    "CLI_ARGS",
    "DEFAULT_MODEL",
    "MAX_SESSIONS_PER_USER",
    "SESSION_TIMEOUT_MS",
    "KILL_GRACE_SECONDS",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return tmp_path / ".env"


class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings.from_env(clean_env)
        assert settings.port == 9622
        assert settings.database_url == "sqlite:///termrelay.db"
        assert settings.jwt_secret is None
        assert settings.anthropic_api_key is None
        assert settings.cli_args == ["--dangerously-skip-permissions"]
        assert settings.default_model == DEFAULT_MODEL
        assert settings.max_sessions_per_user == 3
        assert settings.session_timeout_seconds == 3600.0

    def test_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("JWT_SECRET", "s3cret")
        monkeypatch.setenv("CLI_ARGS", "--verbose --output 'plain text'")
        monkeypatch.setenv("MAX_SESSIONS_PER_USER", "5")
        monkeypatch.setenv("SESSION_TIMEOUT_MS", "1500")
        monkeypatch.setenv("KILL_GRACE_SECONDS", "0.5")

        settings = Settings.from_env(clean_env)
        assert settings.port == 8080
        assert settings.jwt_secret == "s3cret"
        assert settings.cli_args == ["--verbose", "--output", "plain text"]
        assert settings.max_sessions_per_user == 5
        assert settings.session_timeout_seconds == 1.5
        assert settings.kill_grace_seconds == 0.5

    def test_empty_cli_args(self, clean_env, monkeypatch):
        monkeypatch.setenv("CLI_ARGS", "")
        assert Settings.from_env(clean_env).cli_args == []

    def test_dotenv_file(self, clean_env):
        clean_env.write_text("JWT_SECRET=from-file\nPORT=7000\n")
        # load_dotenv writes into os.environ; restore it afterwards
        with patch.dict(os.environ):
            settings = Settings.from_env(clean_env)
        assert settings.jwt_secret == "from-file"
        assert settings.port == 7000

    def test_bad_integer(self, clean_env, monkeypatch):
        monkeypatch.setenv("PORT", "eighty")
        with pytest.raises(ValueError, match="PORT must be an integer"):
            Settings.from_env(clean_env)

    def test_frozen(self):
        settings = Settings()
        with pytest.raises(Exception):
            settings.port = 1
