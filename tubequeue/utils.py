"""Utility helpers for walking platform JSON and parsing display text."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping


DURATION_RE = re.compile(r"^\d+:\d+")
PERCENT_RE = re.compile(r"(\d+)%")
VIDEO_COUNT_RE = re.compile(r"(\d+)\s*video", re.IGNORECASE)
FIRST_NUMBER_RE = re.compile(r"(\d+)")
RELATIVE_TIME_RE = re.compile(
    r"(?:(?:streamed|uploaded)\s*)?(\d+)\s*(second|minute|hour|day|week|month|year)s?\s*ago"
)

SECONDS_PER_UNIT: dict[str, int] = {
    "second": 1,
    "minute": 60,
    "hour": 60 * 60,
    "day": 24 * 60 * 60,
    "week": 7 * 24 * 60 * 60,
    "month": 30 * 24 * 60 * 60,
    "year": 365 * 24 * 60 * 60,
}


def dig(value: Any, *path: str | int) -> Any:
    """Follow ``path`` through nested dicts/lists, returning ``None`` on any miss."""

    current = value
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def as_text(value: Any) -> str:
    """Return ``value`` when it is a non-empty string, else an empty string."""

    return value if isinstance(value, str) else ""


def run_text(value: Any) -> str:
    """Read a ``{simpleText}`` / ``{runs: [{text}]}`` text node (first run only)."""

    if not isinstance(value, Mapping):
        return ""
    simple = value.get("simpleText")
    if isinstance(simple, str) and simple:
        return simple
    first = dig(value, "runs", 0, "text")
    return first if isinstance(first, str) else ""


def runs_joined(value: Any) -> str:
    """Concatenate every run of a text node, falling back to ``simpleText``."""

    if not isinstance(value, Mapping):
        return ""
    runs = as_list(value.get("runs"))
    if runs:
        return "".join(as_text(run.get("text")) for run in runs if isinstance(run, Mapping))
    return as_text(value.get("simpleText"))


def first_thumbnail(value: Any) -> str:
    url = dig(value, "thumbnails", 0, "url")
    return url if isinstance(url, str) else ""


def parse_int(value: Any, default: int = 0) -> int:
    """Parse the leading integer of ``value`` (``"1,234 videos"`` -> 1234)."""

    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return default
    match = FIRST_NUMBER_RE.search(value.replace(",", ""))
    if not match:
        return default
    return int(match.group(1))


def match_video_count(text: Any) -> int | None:
    """Return ``N`` from ``"N videos"``-style text or ``None``."""

    if not isinstance(text, str):
        return None
    match = VIDEO_COUNT_RE.search(text.replace(",", ""))
    if not match:
        return None
    return int(match.group(1))


def looks_like_duration(text: Any) -> bool:
    return isinstance(text, str) and bool(DURATION_RE.match(text))


def parse_relative_time(text: str | None, *, now: datetime | None = None) -> datetime | None:
    """Convert ``"3 days ago"`` / ``"Streamed 1 hour ago"`` to an absolute time.

    Months count as 30 days and years as 365 days. Text without a recognised
    ``N unit ago`` phrase yields ``None``.
    """

    if not text:
        return None
    match = RELATIVE_TIME_RE.search(text.lower())
    if not match:
        return None
    reference = now or datetime.now(timezone.utc)
    amount = int(match.group(1))
    return reference - timedelta(seconds=amount * SECONDS_PER_UNIT[match.group(2)])


def contains_ago(text: Any) -> bool:
    return isinstance(text, str) and "ago" in text.lower()
