from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .timefmt import identity_key, safe, surname, to_int


@dataclass(frozen=True)
class StandingsRow:
    number: str = ""
    name: str = ""
    position: Optional[int] = None
    laps: Optional[int] = None
    last_lap: str = ""
    best_lap: str = ""
    gap: str = ""
    diff: str = ""
    total_time: str = ""
    has_finish_flag: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> "StandingsRow":
        if not isinstance(raw, dict):
            return cls()
        return cls(
            number=safe(raw.get("number")).strip(),
            name=safe(raw.get("name")).strip(),
            position=to_int(raw.get("position", raw.get("pos"))),
            laps=to_int(raw.get("laps")),
            last_lap=safe(raw.get("lastLap", raw.get("last_lap"))).strip(),
            best_lap=safe(raw.get("bestLap", raw.get("best_lap"))).strip(),
            gap=safe(raw.get("gap")).strip(),
            diff=safe(raw.get("diff")).strip(),
            total_time=safe(raw.get("totalTime", raw.get("total_time"))).strip(),
            has_finish_flag=bool(raw.get("hasFinishFlag", raw.get("has_finish_flag", False))),
        )

    @property
    def key(self) -> str:
        return identity_key(self.number, self.name)

    @property
    def surname(self) -> str:
        return surname(self.name)

    def to_raw(self) -> dict:
        """Scraper-shaped dict, used for the snapshot cache blob."""
        return {
            "number": self.number,
            "name": self.name,
            "position": self.position,
            "laps": self.laps,
            "lastLap": self.last_lap,
            "bestLap": self.best_lap,
            "gap": self.gap,
            "diff": self.diff,
            "totalTime": self.total_time,
            "hasFinishFlag": self.has_finish_flag,
        }


@dataclass(frozen=True)
class Announcement:
    kind: str
    text: str
    time: str = ""
    number: Optional[int] = None
    delta: Optional[int] = None
    to_pos: Optional[int] = None
    target: Optional[int] = None
    gap: Optional[str] = None


@dataclass(frozen=True)
class Snapshot:
    rows: tuple[StandingsRow, ...] = ()
    session_name: str = ""
    session_laps: Union[int, str, None] = None
    flag_finish: bool = False
    race_flag: str = "GREEN"
    announcements: tuple[Announcement, ...] = ()
    timestamp: float = field(default_factory=time.time)


# ---- Derived events ----


@dataclass(frozen=True)
class PositionUp:
    number: str
    name: str
    key: str
    delta: int
    to_pos: int

    @property
    def dedup_key(self) -> str:
        return f"up:{self.number}:{self.delta}:{self.to_pos}"

    @property
    def text(self) -> str:
        places = "place" if self.delta == 1 else "places"
        return f"Number {self.number} is up {self.delta} {places} to {self.to_pos}."


@dataclass(frozen=True)
class PositionDown:
    number: str
    name: str
    key: str
    delta: int  # places lost, always positive
    to_pos: int

    @property
    def dedup_key(self) -> str:
        return f"down:{self.number}:{self.delta}:{self.to_pos}"

    @property
    def text(self) -> str:
        return f"Number {self.number} has just dropped to {self.to_pos}."


@dataclass(frozen=True)
class FastestLap:
    number: str
    name: str
    key: str
    time_s: float
    time_str: str

    @property
    def dedup_key(self) -> str:
        return f"fastest:{self.key}:{self.time_s}"


@dataclass(frozen=True)
class LapFinish:
    number: str
    name: str
    key: str
    laps: int
    final_time_str: str
    final_ms: int
    delta_ms: Optional[int]

    @property
    def dedup_key(self) -> str:
        return f"finish:{self.key}:{self.laps}"


DerivedEvent = Union[PositionUp, PositionDown, FastestLap, LapFinish]


# ---- Scheduled cards ----


class CardKind(str, Enum):
    FASTEST = "FASTEST"
    FINISH = "FINISH"


class CardStage(str, Enum):
    QUEUED = "queued"
    SHOWING = "showing"
    TIMER = "timer"
    RESULT = "result"


@dataclass
class ScheduledCard:
    id: int
    kind: CardKind
    event: Union[FastestLap, LapFinish]
    stage: CardStage = CardStage.QUEUED
    started_at: Optional[float] = None
    timer_ends_at: Optional[float] = None
    expires_at: Optional[float] = None
