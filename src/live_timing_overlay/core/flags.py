from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from live_timing_overlay.logging import get_logger
from .clock import Clock
from .timefmt import safe

_LOGGER = get_logger(__name__)

FLAG_TEXT = {
    "GREEN": "GREEN FLAG",
    "YELLOW": "YELLOW FLAG",
    "RED": "RED FLAG",
    "SC": "SAFETY CAR",
    "VSC": "VIRTUAL SAFETY CAR",
    "SLOW": "SLOW",
    "BLUE": "BLUE FLAG",
    "WHITE": "WHITE FLAG",
    "FINISH": "RACE FINISHED",
}

# Flags that carry a car number (and for penalties a time) after a colon
SPECIAL_FLAGS = ("BLACK", "MEATBALL", "PENALTY")


@dataclass(frozen=True)
class BannerDescriptor:
    flag: str
    text: str
    number: Optional[str] = None
    penalty_time: Optional[str] = None
    transient: bool = False


def is_special(flag: Optional[str]) -> bool:
    return safe(flag).strip().upper().startswith(SPECIAL_FLAGS)


def describe_flag(raw: Optional[str]) -> Optional[BannerDescriptor]:
    """Banner for a race flag, or None for unknown flags.

    Parameterized flags are read positionally (``PENALTY:<num>:<time>``);
    a missing payload falls back to the bare flag text.
    """
    flag = safe(raw).strip()
    if not flag:
        return None
    parts = [p.strip() for p in flag.split(":")]
    kind = parts[0].upper()
    num = parts[1] if len(parts) > 1 and parts[1] else None
    if kind == "BLACK":
        return BannerDescriptor("BLACK", f"BLACK FLAG #{num}" if num else "BLACK FLAG", number=num)
    if kind == "MEATBALL":
        return BannerDescriptor("MEATBALL", f"REPAIR #{num}" if num else "REPAIR", number=num)
    if kind == "PENALTY":
        penalty = parts[2] if len(parts) > 2 and parts[2] else None
        if not num:
            return BannerDescriptor("PENALTY", "PENALTY")
        text = f"PENALTY #{num} ({penalty})" if penalty else f"PENALTY #{num}"
        return BannerDescriptor("PENALTY", text, number=num, penalty_time=penalty)
    text = FLAG_TEXT.get(kind)
    if text is None:
        return None
    return BannerDescriptor(kind, text, transient=kind == "GREEN")


class FlagBannerState:
    """Tracks the race flag and decides which banner is visible.

    GREEN only flashes for ``green_seconds`` after a change into GREEN, and
    not at all when returning from a car-specific flag (black, meatball,
    penalty) since the race itself never left green.
    """

    def __init__(self, clock: Clock, green_seconds: float = 5.0):
        self.clock = clock
        self.green_seconds = green_seconds
        self._flag: Optional[str] = None
        self._green_until: Optional[float] = None

    @property
    def flag(self) -> Optional[str]:
        return self._flag

    def update(self, raw_flag: Optional[str]) -> Optional[BannerDescriptor]:
        flag = safe(raw_flag).strip() or "GREEN"
        if flag != self._flag:
            prev = self._flag
            self._flag = flag
            if flag.upper() == "GREEN" and not is_special(prev):
                self._green_until = self.clock.now() + self.green_seconds
            else:
                self._green_until = None
            _LOGGER.debug("race flag %s -> %s", prev, flag)
        return self.banner()

    def banner(self) -> Optional[BannerDescriptor]:
        desc = describe_flag(self._flag)
        if desc is None:
            return None
        if desc.transient:
            if self._green_until is None or self.clock.now() >= self._green_until:
                return None
        return desc

    def reset(self):
        self._flag = None
        self._green_until = None
