from __future__ import annotations

import time
from typing import Any

from live_timing_overlay.logging import get_logger
from ..schemas import validation
from .announcements import coerce_announcements
from .models import Snapshot, StandingsRow
from .timefmt import safe

_LOGGER = get_logger(__name__)


def _coerce_bool(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in {"1", "true", "yes"}
    return bool(v)


def snapshot_from_payload(payload: Any) -> Snapshot:
    """Normalize one polled standings payload into a fully defaulted Snapshot.

    Malformed payloads never raise: a non-object becomes an empty snapshot,
    rows that are not objects are dropped.
    """
    if not validation.is_valid("standings", payload):
        _LOGGER.debug("standings payload failed schema check; treating as empty")
        if not isinstance(payload, dict):
            return Snapshot()
    rows_raw = payload.get("standings")
    rows = tuple(
        StandingsRow.from_raw(r) for r in (rows_raw if isinstance(rows_raw, list) else [])
        if isinstance(r, dict)
    )
    laps = payload.get("sessionLaps")
    if isinstance(laps, bool) or not isinstance(laps, (int, float, str)):
        laps = None
    race_flag = safe(payload.get("raceFlag")).strip() or "GREEN"
    updated = payload.get("updatedAt")
    ts = time.time()
    if isinstance(updated, (int, float)) and not isinstance(updated, bool) and updated > 0:
        ts = float(updated) / 1000.0
    return Snapshot(
        rows=rows,
        session_name=safe(payload.get("sessionName")).strip(),
        session_laps=laps,
        flag_finish=_coerce_bool(payload.get("flagFinish")),
        race_flag=race_flag,
        announcements=coerce_announcements(payload.get("announcements")),
        timestamp=ts,
    )
