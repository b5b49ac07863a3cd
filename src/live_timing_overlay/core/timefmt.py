"""Text helpers for scraped timing fields: names, lap times, integers."""

from __future__ import annotations

import math
import re
from typing import Any, Optional

_CLOCK_RE = re.compile(r"^(\d+):([0-5]?\d(?:\.\d+)?)")
_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def safe(v: Any) -> str:
    return "" if v is None else str(v)


def surname(name: Any) -> str:
    """Stable surname for "Last, First", "First Last" and single-token names."""
    s = safe(name).strip()
    if not s:
        return ""
    if "," in s:
        return s.split(",")[0].strip()
    parts = s.split()
    if len(parts) == 1:
        return s
    if len(parts) == 2:
        return parts[1]
    return " ".join(parts[:-1])


def identity_key(number: Any, name: Any) -> str:
    return f"{safe(number)}|{surname(name)}"


def to_int(v: Any) -> Optional[int]:
    """Leading-integer parse: 12, "12", " 12 laps", 12.7 -> 12; junk -> None."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v) if math.isfinite(v) else None
    m = _LEADING_INT_RE.match(str(v))
    return int(m.group(1)) if m else None


def parse_time(t: Any) -> Optional[float]:
    """Parse a lap time to seconds.

    Accepts ``M:SS[.fff]`` or bare seconds (stray characters are stripped).
    Empty strings, ``-`` and anything mentioning "lap" are not times.
    """
    s = safe(t).strip()
    if not s or s == "-" or "lap" in s.lower():
        return None
    m = _CLOCK_RE.match(s)
    if m:
        return int(m.group(1)) * 60 + float(m.group(2))
    digits = re.sub(r"[^\d.]", "", s)
    if not digits:
        return None
    n = _NUMBER_RE.match(digits)
    if not n:
        return None
    value = float(n.group(0))
    return value if math.isfinite(value) else None


def format_timer(ms: float) -> str:
    """1:05.3 above a minute, 59.123 below it."""
    ms = max(0, int(math.floor(ms)))
    minutes = ms // 60000
    seconds = (ms % 60000) // 1000
    tenths = (ms % 1000) // 100
    if minutes > 0:
        return f"{minutes}:{seconds:02d}.{tenths}"
    return f"{seconds}.{ms % 1000:03d}"


def format_delta(delta_ms: float) -> str:
    sign = "+" if delta_ms > 0 else ""
    return f"{sign}{delta_ms / 1000:.2f}"


__all__ = [
    "safe",
    "surname",
    "identity_key",
    "to_int",
    "parse_time",
    "format_timer",
    "format_delta",
]
