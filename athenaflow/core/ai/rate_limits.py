"""
Rate-limit header parsing.

Best effort only: anything that does not parse is dropped and the
text path is never affected.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Mapping, Optional

from athenaflow.core.ai.events import RateLimitWindow

_DURATION_TOKEN = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_PLAIN_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_duration_seconds(raw: Optional[str]) -> Optional[float]:
    """
    Parse "1m30s" / "6s" / "2h3m" / "250ms" / "90" into seconds.

    Returns None for empty, unparsable or zero durations.
    """
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    if _PLAIN_NUMBER.match(text):
        return float(text)

    total = 0.0
    for amount, unit in _DURATION_TOKEN.findall(text):
        total += float(amount) * _UNIT_SECONDS[unit]
    return total if total > 0 else None


def parse_int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    raw = _get_header(headers, name)
    if raw is None:
        return None
    try:
        return int(float(raw.strip()))
    except (ValueError, OverflowError):
        return None


def parse_reset_at(raw: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Resolve a reset header into an absolute UTC time.

    Accepts relative durations ("1m30s", "12") and RFC 3339 timestamps.
    """
    if raw is None or not raw.strip():
        return None
    now = now or datetime.now(timezone.utc)
    seconds = parse_duration_seconds(raw)
    if seconds is not None:
        try:
            return now + timedelta(seconds=seconds)
        except OverflowError:
            return None
    try:
        stamp = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def extract_windows(
    headers: Mapping[str, str],
    templates: Mapping[str, Dict[str, str]],
    now: Optional[datetime] = None,
) -> Dict[str, RateLimitWindow]:
    """
    Build one RateLimitWindow per resource class.

    `templates` maps a resource class ("requests", "tokens") to the
    header names for its "limit", "remaining" and "reset" values.
    Classes with no usable header are left out.
    """
    windows: Dict[str, RateLimitWindow] = {}
    for resource, names in templates.items():
        window = RateLimitWindow(
            limit=parse_int_header(headers, names["limit"]),
            remaining=parse_int_header(headers, names["remaining"]),
            reset_at=parse_reset_at(_get_header(headers, names["reset"]), now=now),
        )
        if not window.is_empty():
            windows[resource] = window
    return windows


def _get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name.lower():
                return candidate
    return value
