from __future__ import annotations

import re
import time
from collections import deque
from typing import Any, Deque, Iterable, Optional, Union

from .models import Announcement, PositionDown, PositionUp
from .timefmt import safe, to_int

_PATTERNS = (
    ("pos_up", re.compile(r"Number\s+(\d+)\s+is up\s+(\d+)\s+places?\s+to\s+(\d+)", re.I)),
    ("pos_down", re.compile(r"Number\s+(\d+)\s+has just dropped to\s+(\d+)", re.I)),
    (
        "gap_reduce",
        re.compile(
            r"Number\s+(\d+)\s+has reduced the gap to Number\s+(\d+)\s+to\s+([0-9:.]+)", re.I
        ),
    ),
    ("chase", re.compile(r"Here comes Number\s+(\d+).*Number\s+(\d+)", re.I)),
)


def parse_announcement(text: str, time_str: str = "") -> Announcement:
    """Classify a race-control style message; unknown messages stay plain text."""
    for kind, rx in _PATTERNS:
        m = rx.search(text)
        if not m:
            continue
        g = m.groups()
        if kind == "pos_up":
            return Announcement(
                kind, text, time_str, number=int(g[0]), delta=int(g[1]), to_pos=int(g[2])
            )
        if kind == "pos_down":
            return Announcement(kind, text, time_str, number=int(g[0]), to_pos=int(g[1]))
        if kind == "gap_reduce":
            return Announcement(kind, text, time_str, number=int(g[0]), target=int(g[1]), gap=g[2])
        return Announcement(kind, text, time_str, number=int(g[0]), target=int(g[1]))
    return Announcement("text", text, time_str)


def coerce_announcements(raw: Any, limit: int = 6) -> tuple[Announcement, ...]:
    """Accept scraper dicts or bare strings; drop anything without text."""
    if not isinstance(raw, list):
        return ()
    out: list[Announcement] = []
    for item in raw:
        if isinstance(item, str):
            text, time_str = item.strip(), ""
        elif isinstance(item, dict):
            text, time_str = safe(item.get("text")).strip(), safe(item.get("time")).strip()
        else:
            continue
        if not text:
            continue
        parsed = parse_announcement(text, time_str)
        # Scraper may already have classified the message; trust its numbers
        if isinstance(item, dict) and item.get("kind") and item.get("kind") != parsed.kind:
            parsed = Announcement(
                kind=str(item["kind"]),
                text=text,
                time=time_str,
                number=to_int(item.get("number")),
                delta=to_int(item.get("delta")),
                to_pos=to_int(item.get("toPos")),
                target=to_int(item.get("target")),
                gap=safe(item.get("gap")) or None,
            )
        out.append(parsed)
        if len(out) >= limit:
            break
    return tuple(out)


class AnnouncementFeed:
    """Newest-first feed of derived position announcements."""

    def __init__(self, size: int = 6):
        self._items: Deque[Announcement] = deque(maxlen=max(1, size))

    def push(self, event: Union[PositionUp, PositionDown], time_str: Optional[str] = None):
        kind = "pos_up" if isinstance(event, PositionUp) else "pos_down"
        self._items.appendleft(
            Announcement(
                kind=kind,
                text=event.text,
                time=time_str if time_str is not None else time.strftime("%H:%M:%S"),
                number=to_int(event.number),
                delta=event.delta if isinstance(event, PositionUp) else None,
                to_pos=event.to_pos,
            )
        )

    def extend(self, events: Iterable[Union[PositionUp, PositionDown]]):
        for e in events:
            self.push(e)

    def clear(self):
        self._items.clear()

    def items(self) -> list[Announcement]:
        return list(self._items)
