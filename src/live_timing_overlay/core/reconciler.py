from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterable, Optional

from live_timing_overlay.logging import get_logger
from .models import Announcement, Snapshot, StandingsRow
from .snapshot_cache import SnapshotCache
from .timefmt import safe, to_int

_LOGGER = get_logger(__name__)

# Words the scraper injects into the session title while a page is loading or
# that name the timing platform rather than the session.
_NOISE_RE = re.compile(
    r"\b(loading|cargando|speedhive|mylaps|live\s+timing|tiempos\s+en\s+vivo)\b", re.I
)
_LAP_COUNTER_RE = re.compile(
    r"\b(\d+\s*(laps?|vueltas?)|(laps?|vueltas?)\s*\d+(\s*(/|of|de)\s*\d+)?)\b", re.I
)
_NON_WORD_RE = re.compile(r"[\W_]+", re.UNICODE)


def normalize_session_name(name: str) -> str:
    s = _NOISE_RE.sub(" ", safe(name))
    s = _LAP_COUNTER_RE.sub(" ", s)
    s = _NON_WORD_RE.sub(" ", s.lower())
    return " ".join(s.split())


def same_session(a: str, b: str) -> bool:
    na, nb = normalize_session_name(a), normalize_session_name(b)
    if not na or not nb:
        return False
    return na == nb or na in nb or nb in na


def compute_laps(rows: Iterable[StandingsRow]) -> Optional[int]:
    """Leader's lap count, else the highest lap count seen, else None."""
    rows = list(rows)
    if not rows:
        return None
    leader = min(rows, key=lambda r: r.position if r.position is not None else 9999)
    if leader.laps is not None:
        return leader.laps
    best = max((r.laps for r in rows if r.laps is not None), default=-1)
    return best if best >= 0 else None


class LapCounter:
    """Hysteresis over the displayed lap count.

    The scraper occasionally reports a lap count a few laps behind the real
    one. Small backward steps (``<= margin``) are masked by the highest
    accepted value unless a row reports ``reset_value`` laps, which only
    happens after a genuine restart. Larger drops are a new session.
    """

    def __init__(self, margin: int = 5, reset_value: int = 0):
        self.margin = margin
        self.reset_value = reset_value
        self.tracked: Optional[int] = None

    def reset(self):
        self.tracked = None

    def update(
        self, value: Optional[int], rows: Iterable[StandingsRow]
    ) -> tuple[Optional[int], bool]:
        """Return (displayed laps, whether the count moved forward)."""
        if value is None:
            return self.tracked, False
        prev = self.tracked
        increased = prev is not None and value > prev
        if prev is None or value > prev or prev - value > self.margin:
            self.tracked = value
            return value, increased
        if value < prev:
            if any(r.laps == self.reset_value for r in rows):
                _LOGGER.info(
                    "lap count reset %s -> %s (row at lap %s)", prev, value, self.reset_value
                )
                self.tracked = value
                return value, False
            return prev, False
        return value, False


class ReconcileStatus(str, Enum):
    ACCEPT = "accept"
    HOLD = "hold"
    RESET = "reset"


@dataclass(frozen=True)
class CanonicalSnapshot:
    rows: tuple[StandingsRow, ...]
    title: str
    session_name: str
    laps: Optional[int]
    laps_label: str
    laps_increased: bool
    flag_finish: bool
    race_flag: str
    announcements: tuple[Announcement, ...]
    status: ReconcileStatus


class Reconciler:
    """Owns the canonical standings; never raises."""

    def __init__(
        self,
        cache: Optional[SnapshotCache] = None,
        *,
        margin: int = 5,
        reset_value: int = 0,
        laps_label_prefix: str = "Laps: ",
        default_title: str = "Live Timing",
    ):
        self.cache = cache
        self.laps = LapCounter(margin, reset_value)
        self.laps_label_prefix = laps_label_prefix
        self.default_title = default_title
        self._rows: tuple[StandingsRow, ...] = ()
        self._session_name = ""
        self._title = default_title
        # the cache is consulted once, before the first snapshot is settled
        self._bootstrapped = cache is None

    @property
    def rows(self) -> tuple[StandingsRow, ...]:
        return self._rows

    def reset(self):
        self._rows = ()
        self.laps.reset()

    def reconcile(self, snap: Snapshot) -> CanonicalSnapshot:
        status = ReconcileStatus.ACCEPT
        cold_start = not self._bootstrapped
        self._bootstrapped = True
        if snap.rows:
            self._rows = snap.rows
            self._title = snap.session_name or self.default_title
            if snap.session_name:
                self._session_name = snap.session_name
            self._write_cache(snap)
        elif cold_start and self._bootstrap_from_cache(snap):
            status = ReconcileStatus.HOLD
        elif self._rows and same_session(snap.session_name, self._session_name):
            _LOGGER.debug(
                "empty snapshot for %r; holding %d rows", snap.session_name, len(self._rows)
            )
            status = ReconcileStatus.HOLD
        else:
            if self._rows:
                _LOGGER.info(
                    "session reset: empty snapshot %r vs %r", snap.session_name, self._session_name
                )
            self.reset()
            status = ReconcileStatus.RESET
            self._session_name = snap.session_name
            self._title = snap.session_name or self.default_title

        raw_laps = snap.session_laps
        if raw_laps in (None, "", 0):
            raw_laps = compute_laps(self._rows)
        laps, increased = self.laps.update(to_int(raw_laps), self._rows)
        if laps is not None:
            label = f"{self.laps_label_prefix}{laps}"
        elif raw_laps not in (None, ""):
            label = f"{self.laps_label_prefix}{safe(raw_laps).strip()}"
        else:
            label = ""

        return CanonicalSnapshot(
            rows=self._rows,
            title=self._title,
            session_name=self._session_name,
            laps=laps,
            laps_label=label,
            laps_increased=increased,
            flag_finish=snap.flag_finish,
            race_flag=snap.race_flag,
            announcements=snap.announcements,
            status=status,
        )

    # ---- cache ----
    def _write_cache(self, snap: Snapshot):
        if self.cache is None:
            return
        self.cache.save(
            {
                "rows": [r.to_raw() for r in snap.rows],
                "title": snap.session_name,
                "finishFlag": snap.flag_finish,
                "sessionLaps": snap.session_laps,
                "announcements": [asdict(a) for a in snap.announcements],
            }
        )

    def _bootstrap_from_cache(self, snap: Snapshot) -> bool:
        if self.cache is None:
            return False
        blob = self.cache.load()
        if not blob:
            return False
        title = safe(blob.get("title"))
        if snap.session_name and not same_session(snap.session_name, title):
            return False
        raw_rows = blob.get("rows")
        rows = tuple(
            StandingsRow.from_raw(r) for r in (raw_rows if isinstance(raw_rows, list) else [])
            if isinstance(r, dict)
        )
        if not rows:
            return False
        _LOGGER.info("cold start: restored %d rows for %r from cache", len(rows), title)
        self._rows = rows
        self._session_name = title
        self._title = title or self.default_title
        return True
