"""Small text and time helpers shared by the report builders."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

_RFC3339_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)

_MICRO = timedelta(microseconds=1)
_US_PER_SECOND = 1_000_000
_US_PER_MINUTE = 60 * _US_PER_SECOND
_US_PER_HOUR = 60 * _US_PER_MINUTE
_US_PER_DAY = 24 * _US_PER_HOUR


def parse_rfc3339(text: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime; raise ValueError if malformed."""
    match = _RFC3339_RE.match(text)
    if match is None:
        raise ValueError(f"not an RFC 3339 timestamp: {text!r}")
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    fraction, zone = match.group(7), match.group(8)
    micro = int(fraction[1:7].ljust(6, "0")) if fraction else 0
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        if offset >= timedelta(hours=24):
            raise ValueError(f"time zone offset out of range: {text!r}")
        tz = timezone(sign * offset)
    return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)


def humanize_duration_in_state(start: datetime, end: datetime) -> str:
    """Describe how long passed from start to end, e.g. '3m 12s' or '2d 4h'."""
    if not end > start:
        return "0s"
    total_us = (end - start) // _MICRO
    if total_us < _US_PER_MINUTE:
        seconds = (total_us + _US_PER_SECOND // 2) // _US_PER_SECOND
        return f"{seconds}s"
    if total_us < _US_PER_HOUR:
        minutes = total_us // _US_PER_MINUTE
        seconds = (total_us // _US_PER_SECOND) % 60
        return f"{minutes}m {seconds}s"
    if total_us < _US_PER_DAY:
        hours = total_us // _US_PER_HOUR
        minutes = (total_us // _US_PER_MINUTE) % 60
        return f"{hours}h {minutes}m"
    days = total_us // _US_PER_DAY
    hours = (total_us // _US_PER_HOUR) % 24
    return f"{days}d {hours}h"


def _dash_non_alnum(text: str) -> str:
    return "".join(ch if ch.isalpha() or ch.isdecimal() else "-" for ch in text)


def _tidy_dashes(text: str) -> str:
    return re.sub(r"-{2,}", "-", text.strip("-"))


def sanitize_modal_fragment(text: str) -> str:
    """Reduce text to letters, digits and single dashes; 'x' when nothing is left."""
    return _tidy_dashes(_dash_non_alnum(text)) or "x"


def safe_store_id(prefix: str, namespace: str, name: str) -> str:
    """Build an HTML id from a prefix and a namespace/name pair."""
    return _tidy_dashes(prefix + _dash_non_alnum(f"{namespace}-{name}"))