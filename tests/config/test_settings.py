"""Tests for settings and logging configuration."""

import json
import logging

import pytest
from pydantic import ValidationError
from pythonjsonlogger.json import JsonFormatter

from src.config.logging_config import build_logging_config
from src.config.settings import Settings


def _settings(**overrides) -> Settings:
    values = {"secret_key": "k" * 64, "refresh_secret_key": None, "_env_file": None}
    values.update(overrides)
    return Settings(**values)


class TestSettings:
    def test_refresh_key_falls_back_to_secret_key(self):
        assert _settings().refresh_signing_key == "k" * 64
        assert _settings(refresh_secret_key="r" * 64).refresh_signing_key == "r" * 64

    def test_cookies_secure_only_in_production_by_default(self):
        assert _settings(environment="production").secure_cookies is True
        assert _settings(environment="development").secure_cookies is False
        assert _settings(environment="development", cookie_secure=True).secure_cookies is True

    def test_cors_origins_are_normalized(self):
        settings = _settings(cors_allow_origins=" https://a.example.com/ ,,https://b.example.com")
        assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]

    def test_environment_is_validated(self):
        assert _settings(environment="PRODUCTION").environment == "production"
        with pytest.raises(ValidationError):
            _settings(environment="moon")

    def test_lockout_threshold_must_be_positive(self):
        with pytest.raises(ValidationError):
            _settings(lockout_threshold=0)

    def test_lockout_defaults(self):
        settings = _settings()
        assert settings.lockout_threshold == 5
        assert settings.lockout_base_minutes == 30
        assert settings.lockout_max_minutes == 1440


class TestLoggingConfig:
    def test_text_format(self):
        config = build_logging_config("debug", "text")
        assert config["root"]["level"] == "DEBUG"
        assert "()" not in config["formatters"]["default"]

    def test_json_format_uses_python_json_logger(self):
        config = build_logging_config("INFO", "json")
        assert config["formatters"]["default"]["()"] == "pythonjsonlogger.json.JsonFormatter"

    def test_json_lines_are_parseable(self):
        formatter_config = build_logging_config("INFO", "json")["formatters"]["default"]
        formatter = JsonFormatter(formatter_config["fmt"], rename_fields=formatter_config["rename_fields"])
        record = logging.LogRecord("src.features.auth", logging.INFO, __file__, 1, "Account logged in: 7", None, None)

        line = json.loads(formatter.format(record))
        assert line["message"] == "Account logged in: 7"
        assert line["level"] == "INFO"
        assert line["logger"] == "src.features.auth"
