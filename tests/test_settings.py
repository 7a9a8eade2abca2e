import json
import logging

import pytest

from veil_stage.core.logging import JsonFormatter
from veil_stage.core.settings import Settings


def test_defaults():
    config = Settings()
    assert config.storage_backend == "memory"
    assert config.session_ttl_ms == 600_000
    assert config.max_timer_lifetime_ms == 2 * 60 * 60 * 1000
    assert config.max_timers_per_scope == 5
    assert config.rate_limit_max_actions == 5
    assert config.api_base_url == "https://discord.com/api/v10"


def test_environment_aliases(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "Shared")
    monkeypatch.setenv("SESSION_TTL_SECONDS", "30")
    monkeypatch.setenv("INTERACTIONS_PUBLIC_KEY", "ab" * 32)

    config = Settings()

    assert config.storage_backend == "shared"
    assert config.session_ttl_ms == 30_000
    assert config.public_key == "ab" * 32


@pytest.mark.parametrize(("raw", "expected"), [
    ("1", 1),
    ("24", 24),
    ("0", 2),
    ("25", 2),
    ("many", 2),
])
def test_max_timer_hours_falls_back_when_invalid(monkeypatch, raw, expected):
    monkeypatch.setenv("MAX_TIMER_HOURS", raw)
    assert Settings().max_timer_hours == expected


def test_json_formatter_merges_structured_fields():
    record = logging.LogRecord("veil_stage.test", logging.INFO, __file__, 1, "hello %s", ("you",), None)
    record.event = "reveal"
    record.session_id = "abc"

    line = json.loads(JsonFormatter().format(record))

    assert line["msg"] == "hello you"
    assert line["level"] == "INFO"
    assert line["event"] == "reveal"
    assert line["session_id"] == "abc"
    assert "payload" not in line
