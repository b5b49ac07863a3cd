from __future__ import annotations

import itertools
from dataclasses import asdict, dataclass
from typing import Any, Optional, Union

from live_timing_overlay.logging import get_logger
from ..config.settings import FeatureToggles, Settings
from .announcements import AnnouncementFeed
from .clock import Clock, MonotonicClock
from .deriver import DeriverState, derive_events, fastest_index
from .flags import BannerDescriptor, FlagBannerState
from .ingest import snapshot_from_payload
from .models import (
    Announcement,
    CardKind,
    DerivedEvent,
    FastestLap,
    LapFinish,
    PositionDown,
    PositionUp,
    ScheduledCard,
    Snapshot,
)
from .reconciler import (
    CanonicalSnapshot,
    Reconciler,
    ReconcileStatus,
    normalize_session_name,
    same_session,
)
from .scheduler import CardScheduler, CardTiming
from .snapshot_cache import SnapshotCache
from .trends import Overtake, PositionTrends

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class RowView:
    key: str
    position: Optional[int]
    number: str
    name: str
    surname: str
    laps: Optional[int]
    last_lap: str
    best_lap: str
    gap: str
    diff: str
    total_time: str
    has_finish_flag: bool
    change: int
    is_fastest: bool


@dataclass(frozen=True)
class CardView:
    id: int
    kind: str
    stage: str
    number: str
    name: str
    display_time: str
    delta_text: Optional[str]
    delta_ms: Optional[int]
    expires_in: Optional[float]


@dataclass(frozen=True)
class OverlayView:
    visible: bool
    title: str
    status: Optional[str]
    rows: tuple[RowView, ...]
    laps_label: str
    laps_pulse: bool
    finish_flag: bool
    banner: Optional[BannerDescriptor]
    active_card: Optional[CardView]
    announcements: tuple[Announcement, ...]
    upstream_announcements: tuple[Announcement, ...]
    best_overtake: Optional[Overtake]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class OverlaySession:
    """One overlay instance: reconcile → derive → schedule, plus the view.

    Snapshot fetches are tagged with :meth:`next_sequence`; a response whose
    tag is not newer than the last applied one is dropped so an out-of-order
    reply can never overwrite fresher standings.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        cache: Optional[SnapshotCache] = None,
    ):
        self.settings = settings or Settings()
        self.clock = clock or MonotonicClock()
        timing = self.settings.timing
        self.reconciler = Reconciler(
            cache,
            margin=self.settings.lap_hysteresis_margin,
            reset_value=self.settings.lap_reset_value,
            laps_label_prefix=self.settings.laps_label_prefix,
            default_title=self.settings.default_title,
        )
        self.deriver_state = DeriverState(
            announce_initial_fastest=self.settings.announce_initial_fastest
        )
        self.scheduler = CardScheduler(
            self.clock,
            CardTiming(
                fastest_seconds=timing.fastest_card_seconds,
                countdown_ms=timing.finish_countdown_ms,
                result_seconds=timing.finish_result_seconds,
                max_delta_ms=timing.max_delta_ms,
            ),
            max_queue=self.settings.max_queue_size,
        )
        self.flags = FlagBannerState(self.clock, timing.green_banner_seconds)
        self.trends = PositionTrends(self.clock, timing.position_change_memory_seconds)
        self.feed = AnnouncementFeed(self.settings.announcement_history)
        self.toggles = FeatureToggles()
        self._seq = itertools.count(1)
        self._applied_seq = 0
        self._canonical: Optional[CanonicalSnapshot] = None
        self._session_name = ""
        self._laps_pulse_until: Optional[float] = None
        self.set_toggles(self.settings.toggles)

    # ---- toggles ----
    def set_toggles(self, toggles: FeatureToggles):
        if toggles == self.toggles:
            return
        _LOGGER.info("feature toggles %s", toggles.model_dump())
        self.toggles = toggles
        self.scheduler.set_overlay_enabled(toggles.overlay)
        self.scheduler.set_enabled(CardKind.FASTEST, toggles.fastest_lap)
        self.scheduler.set_enabled(CardKind.FINISH, toggles.lap_finish)
        if not toggles.overlay:
            self.feed.clear()

    # ---- ingestion ----
    def next_sequence(self) -> int:
        return next(self._seq)

    @property
    def applied_sequence(self) -> int:
        return self._applied_seq

    def apply(self, payload: Union[Snapshot, Any], seq: Optional[int] = None) -> list[DerivedEvent]:
        """Feed one polled payload; returns the events derived from it."""
        if seq is not None:
            if seq <= self._applied_seq:
                _LOGGER.debug("dropping stale response seq=%s (applied=%s)", seq, self._applied_seq)
                return []
            self._applied_seq = seq
        if not self.toggles.overlay:
            return []
        snap = payload if isinstance(payload, Snapshot) else snapshot_from_payload(payload)
        return self._apply_snapshot(snap)

    def _apply_snapshot(self, snap: Snapshot) -> list[DerivedEvent]:
        prev_rows = self.reconciler.rows
        if normalize_session_name(snap.session_name):
            changed = self._session_changed(snap)
            if changed:
                _LOGGER.info("session changed %r -> %r", self._session_name, snap.session_name)
                self._new_session()
                prev_rows = ()
            if changed or snap.rows or not self._session_name:
                self._session_name = snap.session_name

        canonical = self.reconciler.reconcile(snap)
        self._canonical = canonical
        self.flags.update(canonical.race_flag)
        if canonical.laps_increased:
            self._laps_pulse_until = self.clock.now() + self.settings.timing.laps_pulse_seconds
        if canonical.status is ReconcileStatus.RESET:
            self.scheduler.clear()
            self.deriver_state.reset()
            self.trends.reset()

        if canonical.flag_finish:
            derive_events(prev_rows, canonical.rows, self.deriver_state, finished=True)
            if self.scheduler.active is not None or self.scheduler.queued():
                _LOGGER.info("finish flag: cancelling pending cards")
            self.scheduler.clear()
            self.trends.update(canonical.rows)
            return []

        events = derive_events(prev_rows, canonical.rows, self.deriver_state)
        self.trends.update(canonical.rows)
        self.feed.extend(e for e in events if isinstance(e, (PositionUp, PositionDown)))
        for e in events:
            if isinstance(e, (FastestLap, LapFinish)):
                self.scheduler.enqueue(e)
        if events:
            _LOGGER.debug("derived %s", [type(e).__name__ for e in events])
        return events

    def _session_changed(self, snap: Snapshot) -> bool:
        """Rows under a different normalized name start a new session.

        An empty snapshot only does so when its name is unrelated, since the
        scraper decorates the title while a page loads.
        """
        if not self._session_name:
            return False
        if snap.rows:
            return normalize_session_name(snap.session_name) != normalize_session_name(
                self._session_name
            )
        return not same_session(snap.session_name, self._session_name)

    def _new_session(self):
        self.deriver_state.reset()
        self.trends.reset()
        self.scheduler.clear()
        self.reconciler.laps.reset()
        self._laps_pulse_until = None

    # ---- scheduling ----
    def tick(self) -> Optional[ScheduledCard]:
        return self.scheduler.poll()

    # ---- view ----
    @property
    def canonical(self) -> Optional[CanonicalSnapshot]:
        return self._canonical

    def _card_view(self) -> Optional[CardView]:
        card = self.scheduler.active
        if card is None:
            return None
        event = card.event
        expires_in = None
        if card.expires_at is not None:
            expires_in = max(0.0, card.expires_at - self.clock.now())
        return CardView(
            id=card.id,
            kind=card.kind.value,
            stage=card.stage.value,
            number=event.number,
            name=event.name,
            display_time=self.scheduler.display_time(card),
            delta_text=self.scheduler.delta_text(card),
            delta_ms=event.delta_ms if isinstance(event, LapFinish) else None,
            expires_in=expires_in,
        )

    def view(self) -> OverlayView:
        canonical = self._canonical
        toggles = self.toggles
        rows = canonical.rows if canonical else ()
        fi = fastest_index(rows)
        fastest_key = rows[fi].key if fi >= 0 else None
        changes = self.trends.changes()
        row_views = tuple(
            RowView(
                key=r.key,
                position=r.position,
                number=r.number,
                name=r.name,
                surname=r.surname,
                laps=r.laps,
                last_lap=r.last_lap,
                best_lap=r.best_lap,
                gap=r.gap,
                diff=r.diff,
                total_time=r.total_time,
                has_finish_flag=r.has_finish_flag,
                change=changes.get(r.key, 0),
                is_fastest=r.key == fastest_key,
            )
            for r in rows
        )
        pulse = self._laps_pulse_until is not None and self.clock.now() < self._laps_pulse_until
        return OverlayView(
            visible=toggles.overlay,
            title=canonical.title if canonical else self.settings.default_title,
            status=canonical.status.value if canonical else None,
            rows=row_views,
            laps_label=canonical.laps_label if canonical and toggles.current_lap else "",
            laps_pulse=pulse and toggles.current_lap,
            finish_flag=canonical.flag_finish if canonical else False,
            banner=self.flags.banner(),
            active_card=self._card_view() if toggles.overlay else None,
            announcements=tuple(self.feed.items()) if toggles.comments else (),
            upstream_announcements=(
                canonical.announcements if canonical and toggles.comments else ()
            ),
            best_overtake=self.trends.best_overtake if toggles.overtakes else None,
        )
