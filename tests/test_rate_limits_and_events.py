"""
Tests for canonical event serialization and rate-limit header parsing.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from athenaflow.core.ai.events import (
    DoneEvent,
    ErrorEvent,
    RateLimitEvent,
    RateLimitWindow,
    TextEvent,
    is_terminal,
    to_json_line,
)
from athenaflow.core.ai.rate_limits import extract_windows, parse_duration_seconds, parse_reset_at

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

TEMPLATES = {
    "requests": {
        "limit": "x-ratelimit-limit-requests",
        "remaining": "x-ratelimit-remaining-requests",
        "reset": "x-ratelimit-reset-requests",
    },
    "tokens": {
        "limit": "x-ratelimit-limit-tokens",
        "remaining": "x-ratelimit-remaining-tokens",
        "reset": "x-ratelimit-reset-tokens",
    },
}


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1m30s", 90),
        ("90", 90),
        ("2h", 7200),
        ("6s", 6),
        ("1d", 86400),
        ("", None),
        ("   ", None),
        (None, None),
        ("soon", None),
    ],
)
def test_parse_duration_seconds(raw, expected):
    assert parse_duration_seconds(raw) == expected


def test_parse_reset_at_relative_and_absolute():
    assert parse_reset_at("1m30s", now=NOW) == NOW + timedelta(seconds=90)
    assert parse_reset_at("2024-01-01T12:05:00Z", now=NOW) == datetime(2024, 1, 1, 12, 5, tzinfo=timezone.utc)
    assert parse_reset_at("", now=NOW) is None
    assert parse_reset_at("not a time", now=NOW) is None


def test_extract_windows_reads_case_insensitive_headers():
    headers = {
        "X-RateLimit-Limit-Requests": "100",
        "X-RateLimit-Remaining-Requests": "99",
        "X-RateLimit-Reset-Requests": "1m30s",
    }

    windows = extract_windows(headers, TEMPLATES, now=NOW)

    assert list(windows) == ["requests"]
    assert windows["requests"] == RateLimitWindow(limit=100, remaining=99, reset_at=NOW + timedelta(seconds=90))


def test_extract_windows_drops_unparsable_values():
    headers = {"x-ratelimit-limit-tokens": "lots", "x-ratelimit-reset-tokens": "whenever"}

    assert extract_windows(headers, TEMPLATES, now=NOW) == {}


def test_event_json_lines_are_tagged():
    window = RateLimitWindow(limit=10, remaining=9, reset_at=NOW)

    lines = [
        to_json_line(TextEvent("hi")),
        to_json_line(RateLimitEvent("openai", {"requests": window})),
        to_json_line(ErrorEvent("boom")),
        to_json_line(DoneEvent()),
    ]

    assert all(line.endswith("\n") and line.count("\n") == 1 for line in lines)
    decoded = [json.loads(line) for line in lines]
    assert decoded[0] == {"type": "text", "content": "hi"}
    assert decoded[1] == {
        "type": "rate_limit",
        "provider": "openai",
        "rateLimit": {"requests": {"limit": 10, "remaining": 9, "resetAt": NOW.isoformat()}},
    }
    assert decoded[2] == {"type": "error", "error": "boom"}
    assert decoded[3] == {"type": "done"}


def test_is_terminal():
    assert is_terminal(DoneEvent())
    assert is_terminal(ErrorEvent("x"))
    assert not is_terminal(TextEvent("x"))


def test_parse_duration_milliseconds():
    assert parse_duration_seconds("250ms") == pytest.approx(0.25)
    assert parse_duration_seconds("1s500ms") == pytest.approx(1.5)


def test_extract_windows_ignores_out_of_range_values():
    headers = {
        "x-ratelimit-limit-requests": "inf",
        "x-ratelimit-remaining-requests": "5",
        "x-ratelimit-reset-tokens": "99999999999d",
    }

    windows = extract_windows(headers, TEMPLATES, now=NOW)

    assert list(windows) == ["requests"]
    assert windows["requests"].limit is None
    assert windows["requests"].remaining == 5
    assert parse_reset_at("99999999999d", now=NOW) is None
