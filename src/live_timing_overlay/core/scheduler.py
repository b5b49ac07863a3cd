from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Optional, Union

from live_timing_overlay.logging import get_logger
from .clock import Clock
from .models import CardKind, CardStage, FastestLap, LapFinish, ScheduledCard
from .timefmt import format_delta, format_timer

_LOGGER = get_logger(__name__)

NO_DELTA_TEXT = "no delta"


@dataclass(frozen=True)
class CardTiming:
    fastest_seconds: float = 10.0
    countdown_ms: int = 5000
    result_seconds: float = 7.0
    max_delta_ms: int = 10000


class CardScheduler:
    """Single active card slot fed from a priority queue.

    FASTEST cards show for a fixed time. FINISH cards run a dramatized
    countdown ending on the lap time, then hold the result. A queued FASTEST
    preempts an active FINISH, which is dropped for good.
    All transitions are driven by absolute deadlines on the injected clock,
    so a late poll never stretches a card.
    """

    def __init__(self, clock: Clock, timing: Optional[CardTiming] = None, max_queue: int = 16):
        self.clock = clock
        self.timing = timing or CardTiming()
        self.max_queue = max(1, max_queue)
        self._queue: list[ScheduledCard] = []
        self._active: Optional[ScheduledCard] = None
        self._ids = itertools.count(1)
        self._enabled = {CardKind.FASTEST: True, CardKind.FINISH: True}
        self._overlay_enabled = True

    # ---- state ----
    @property
    def active(self) -> Optional[ScheduledCard]:
        return self._active

    def queued(self) -> list[ScheduledCard]:
        return list(self._queue)

    def is_enabled(self, kind: CardKind) -> bool:
        return self._overlay_enabled and self._enabled[kind]

    # ---- input ----
    def enqueue(self, event: Union[FastestLap, LapFinish]) -> Optional[ScheduledCard]:
        kind = CardKind.FASTEST if isinstance(event, FastestLap) else CardKind.FINISH
        if not self.is_enabled(kind):
            return None
        card = ScheduledCard(id=next(self._ids), kind=kind, event=event)
        if len(self._queue) >= self.max_queue:
            victim = next((c for c in self._queue if c.kind is CardKind.FINISH), self._queue[0])
            self._queue.remove(victim)
            _LOGGER.info("card queue full; dropped %s #%s", victim.kind.value, victim.id)
        self._queue.append(card)
        return card

    def set_enabled(self, kind: CardKind, enabled: bool):
        self._enabled[kind] = enabled
        if not enabled:
            self.purge(kind)

    def set_overlay_enabled(self, enabled: bool):
        self._overlay_enabled = enabled
        if not enabled:
            self.clear()

    def purge(self, kind: CardKind):
        self._queue = [c for c in self._queue if c.kind is not kind]
        if self._active is not None and self._active.kind is kind:
            _LOGGER.debug("purged active %s card #%s", kind.value, self._active.id)
            self._active = None

    def clear(self):
        self._queue.clear()
        self._active = None

    # ---- poll ----
    def poll(self) -> Optional[ScheduledCard]:
        """Advance deadlines, apply preemption, start the next card."""
        now = self.clock.now()
        self._advance(now)

        fastest_idx = next(
            (i for i, c in enumerate(self._queue) if c.kind is CardKind.FASTEST), None
        )
        active = self._active
        if active is not None and active.kind is CardKind.FINISH and fastest_idx is not None:
            _LOGGER.debug("FASTEST preempts FINISH #%s", active.id)
            self._active = None
            self._start(self._queue.pop(fastest_idx), now)
            return self._active

        while self._active is None and self._queue:
            idx = next(
                (i for i, c in enumerate(self._queue) if c.kind is CardKind.FASTEST), 0
            )
            self._start(self._queue.pop(idx), now)
        return self._active

    def _start(self, card: ScheduledCard, now: float):
        card.started_at = now
        if card.kind is CardKind.FASTEST:
            card.stage = CardStage.SHOWING
            card.expires_at = now + self.timing.fastest_seconds
            self._active = card
            return
        event = card.event
        if not isinstance(event, LapFinish) or not event.final_ms:
            return  # nothing to count towards
        card.stage = CardStage.TIMER
        card.timer_ends_at = now + self.timing.countdown_ms / 1000.0
        card.expires_at = card.timer_ends_at + self.timing.result_seconds
        self._active = card

    def _advance(self, now: float):
        card = self._active
        if card is None:
            return
        timer_done = card.timer_ends_at is not None and now >= card.timer_ends_at
        if card.stage is CardStage.TIMER and timer_done:
            card.stage = CardStage.RESULT
        if card.expires_at is not None and now >= card.expires_at:
            self._active = None

    # ---- presentation ----
    def display_ms(self, card: Optional[ScheduledCard] = None) -> Optional[int]:
        """Countdown clock for a FINISH card, in milliseconds."""
        card = card or self._active
        if card is None or not isinstance(card.event, LapFinish) or card.started_at is None:
            return None
        final_ms = card.event.final_ms
        countdown = self.timing.countdown_ms
        elapsed = (self.clock.now() - card.started_at) * 1000.0
        if card.stage is CardStage.RESULT or elapsed >= countdown:
            return final_ms
        start_ms = max(0, final_ms - countdown)
        return min(final_ms, round(start_ms + max(0.0, elapsed)))

    def display_time(self, card: Optional[ScheduledCard] = None) -> str:
        card = card or self._active
        if card is None:
            return ""
        if isinstance(card.event, FastestLap):
            return card.event.time_str
        ms = self.display_ms(card)
        return format_timer(ms) if ms is not None else ""

    def delta_text(self, card: Optional[ScheduledCard] = None) -> Optional[str]:
        """Signed delta for a FINISH result; ``NO_DELTA_TEXT`` when unusable."""
        card = card or self._active
        if card is None or not isinstance(card.event, LapFinish):
            return None
        if card.stage is not CardStage.RESULT:
            return None
        delta = card.event.delta_ms
        if delta is None or abs(delta) >= self.timing.max_delta_ms:
            return NO_DELTA_TEXT
        return format_delta(delta)
