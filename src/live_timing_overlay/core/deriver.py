"""Turn consecutive canonical standings into discrete overlay events.

All trackers live in :class:`DeriverState`, created once per overlay session
and passed in explicitly, so a derivation is reproducible from its inputs.
Per tick at most one event of each family is produced, in the order
position, fastest lap, lap finish.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

from live_timing_overlay.logging import get_logger
from .models import DerivedEvent, FastestLap, LapFinish, PositionDown, PositionUp, StandingsRow
from .timefmt import format_timer, parse_time

_LOGGER = get_logger(__name__)


@dataclass
class DeriverState:
    last_position_key: Optional[str] = None
    fastest_key: Optional[str] = None
    fastest_time: Optional[float] = None
    last_finish_key: Optional[str] = None
    announce_initial_fastest: bool = False

    def reset(self):
        self.last_position_key = None
        self.fastest_key = None
        self.fastest_time = None
        self.last_finish_key = None


def lap_time_of(row: StandingsRow) -> Optional[float]:
    return parse_time(row.best_lap if row.best_lap else row.last_lap)


def fastest_index(rows: Sequence[StandingsRow]) -> int:
    idx, best = -1, float("inf")
    for i, r in enumerate(rows):
        v = lap_time_of(r)
        if v is not None and v < best:
            best, idx = v, i
    return idx


def _index_by_key(rows: Sequence[StandingsRow]) -> dict[str, StandingsRow]:
    out: dict[str, StandingsRow] = {}
    for r in rows:
        out.setdefault(r.key, r)
    return out


def derive_position_event(
    prev_rows: Sequence[StandingsRow], rows: Sequence[StandingsRow], state: DeriverState
) -> Optional[Union[PositionUp, PositionDown]]:
    prev_pos: dict[str, int] = {}
    for r in prev_rows:
        if r.position is not None:
            prev_pos[r.key] = r.position
    gain: Optional[tuple[int, StandingsRow]] = None
    drop: Optional[tuple[int, StandingsRow]] = None
    for r in rows:
        before = prev_pos.get(r.key)
        if before is None or r.position is None:
            continue
        d = before - r.position
        if d > 0 and (gain is None or d > gain[0]):
            gain = (d, r)
        if d < 0 and (drop is None or d < drop[0]):
            drop = (d, r)

    event: Optional[Union[PositionUp, PositionDown]] = None
    if gain is not None:
        d, r = gain
        event = PositionUp(number=r.number, name=r.surname, key=r.key, delta=d, to_pos=r.position)
    elif drop is not None:
        d, r = drop
        event = PositionDown(
            number=r.number, name=r.surname, key=r.key, delta=abs(d), to_pos=r.position
        )
    if event is None or event.dedup_key == state.last_position_key:
        return None
    state.last_position_key = event.dedup_key
    return event


def derive_fastest_event(rows: Sequence[StandingsRow], state: DeriverState) -> Optional[FastestLap]:
    idx = fastest_index(rows)
    if idx < 0:
        return None
    row = rows[idx]
    t = lap_time_of(row)
    if t is None:
        return None
    first = state.fastest_key is None
    changed = row.key != state.fastest_key
    improved = not changed and state.fastest_time is not None and t < state.fastest_time
    state.fastest_key = row.key
    state.fastest_time = t
    if not (changed or improved):
        return None
    if first and not state.announce_initial_fastest:
        _LOGGER.debug("fastest lap baseline %s %.3f", row.key, t)
        return None
    return FastestLap(
        number=row.number,
        name=row.surname,
        key=row.key,
        time_s=t,
        time_str=format_timer(t * 1000),
    )


def derive_finish_event(
    prev_rows: Sequence[StandingsRow], rows: Sequence[StandingsRow], state: DeriverState
) -> Optional[LapFinish]:
    prev_by_key = _index_by_key(prev_rows)
    finishers: list[LapFinish] = []
    for r in rows:
        before = prev_by_key.get(r.key)
        if before is None or r.laps is None or before.laps is None or r.laps <= before.laps:
            continue
        this_lap = parse_time(r.last_lap)
        if not this_lap:
            continue  # empty, PIT or unparsable
        prev_lap = parse_time(before.last_lap)
        delta = round((this_lap - prev_lap) * 1000) if prev_lap else None
        finishers.append(
            LapFinish(
                number=r.number,
                name=r.surname,
                key=r.key,
                laps=r.laps,
                final_time_str=r.last_lap,
                final_ms=round(this_lap * 1000),
                delta_ms=delta,
            )
        )
    if not finishers:
        return None
    # numeric deltas first, most improved first; None keeps arrival order
    finishers.sort(key=lambda f: (f.delta_ms is None, f.delta_ms if f.delta_ms is not None else 0))
    pick = finishers[0]
    if pick.dedup_key == state.last_finish_key:
        return None
    state.last_finish_key = pick.dedup_key
    return pick


def derive_events(
    prev_rows: Sequence[StandingsRow],
    rows: Sequence[StandingsRow],
    state: DeriverState,
    *,
    finished: bool = False,
) -> list[DerivedEvent]:
    """Diff two canonical row sets.

    With the finish flag up nothing is emitted, but the fastest-lap tracker
    keeps following the standings so a post-flag record is not replayed.
    """
    if finished:
        derive_fastest_event(rows, state)
        return []
    events: list[DerivedEvent] = []
    pos = derive_position_event(prev_rows, rows, state)
    if pos is not None:
        events.append(pos)
    fastest = derive_fastest_event(rows, state)
    if fastest is not None:
        events.append(fastest)
    finish = derive_finish_event(prev_rows, rows, state)
    if finish is not None:
        events.append(finish)
    return events
