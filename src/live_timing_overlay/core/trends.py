from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from .clock import Clock
from .models import StandingsRow


@dataclass(frozen=True)
class Overtake:
    number: str
    name: str
    gain: int


class PositionTrends:
    """Per-competitor position arrows that outlive the tick they happened in."""

    def __init__(self, clock: Clock, memory_seconds: float = 8.0):
        self.clock = clock
        self.memory_seconds = memory_seconds
        self._last: Dict[str, int] = {}
        self._recent: Dict[str, tuple[int, float]] = {}
        self._best: Optional[Overtake] = None

    def update(self, rows: Sequence[StandingsRow]):
        now = self.clock.now()
        best: Optional[Overtake] = None
        for r in rows:
            if r.position is None:
                continue
            prev = self._last.get(r.key)
            if prev is not None and prev != r.position:
                diff = prev - r.position
                self._recent[r.key] = (diff, now)
                if diff > 0 and (best is None or diff > best.gain):
                    best = Overtake(r.number, r.surname, diff)
            self._last[r.key] = r.position
        if best is not None:
            self._best = best
        for k in [k for k, (_, t) in self._recent.items() if now - t > self.memory_seconds]:
            del self._recent[k]

    def change_for(self, key: str) -> int:
        """Places gained (+) or lost (-) recently, 0 when nothing to show."""
        hit = self._recent.get(key)
        if hit is None or self.clock.now() - hit[1] > self.memory_seconds:
            return 0
        return hit[0]

    def changes(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for k in list(self._recent):
            diff = self.change_for(k)
            if diff:
                out[k] = diff
        return out

    @property
    def best_overtake(self) -> Optional[Overtake]:
        return self._best

    def reset(self):
        self._last.clear()
        self._recent.clear()
        self._best = None
