"""
Tests for environment-driven settings and logging setup.
"""
from __future__ import annotations

import logging

import pytest

from paddle_rating.config import DEFAULT_CORS_ORIGINS, Settings
from paddle_rating.exceptions import ValidationError
from paddle_rating.logging_config import level_from_name, setup_logging
from paddle_rating.services import MatchLedger, SessionCoordinator


def test_defaults_from_empty_env():
    settings = Settings.from_env({})
    assert settings == Settings()
    assert settings.k_factor == 32.0
    assert settings.swap_radius == 150.0
    assert settings.cors_origins == DEFAULT_CORS_ORIGINS
    assert not settings.strict


def test_values_from_env():
    settings = Settings.from_env({
        "PADDLE_K_FACTOR": "24",
        "PADDLE_MATCH_TTL_HOURS": "48",
        "PADDLE_STRICT": "yes",
        "PADDLE_CORS_ORIGINS": "https://a.example, https://b.example ,",
        "LOG_LEVEL": "debug",
    })
    assert settings.k_factor == 24.0
    assert settings.match_ttl_hours == 48.0
    assert settings.strict
    assert settings.cors_origins == ("https://a.example", "https://b.example")
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "env",
    [
        {"PADDLE_MIN_SKILL": "ten"},
        {"PADDLE_K_FACTOR": "fast"},
        {"PADDLE_STRICT": "maybe"},
        {"PADDLE_K_FACTOR": "0"},
        {"PADDLE_MIN_SKILL": "3000"},
        {"PADDLE_MAX_DISPLAY": "1.5"},
        {"PADDLE_SWEEP_INTERVAL_SECONDS": "-5"},
    ],
)
def test_bad_env_values(env):
    with pytest.raises(ValidationError):
        Settings.from_env(env)


def test_stores_from_settings():
    settings = Settings(strict=True, match_ttl_hours=6)
    ledger = MatchLedger.from_settings(settings)
    assert ledger.strict
    assert ledger.ttl.total_seconds() == 6 * 3600
    assert SessionCoordinator.from_settings(settings).strict


def test_level_from_name(monkeypatch):
    assert level_from_name("debug") == logging.DEBUG
    assert level_from_name("nonsense") == logging.INFO
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    assert level_from_name() == logging.WARNING


def test_setup_logging_replaces_handlers():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging("DEBUG")
        setup_logging("DEBUG")
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        assert "%(funcName)s" in root.handlers[0].formatter._fmt
        setup_logging("WARNING")
        assert root.level == logging.WARNING
        assert root.handlers[0].formatter._fmt.startswith("%(levelname).1s")
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
