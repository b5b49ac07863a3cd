from __future__ import annotations

import os
import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class SourceSettings(BaseModel):
    standings_url: str = Field(default="http://localhost:3000/api/standings")
    # Remote feature toggles (dashboard config endpoint); None keeps local toggles
    toggles_url: str | None = Field(default=None)
    poll_interval: float = Field(default=1.0)
    config_poll_interval: float = Field(default=3.0)
    request_timeout: float = Field(default=5.0)
    max_inflight: int = Field(default=3)


class TimingSettings(BaseModel):
    scheduler_poll_interval: float = Field(default=0.25)
    fastest_card_seconds: float = Field(default=10.0)
    finish_countdown_ms: int = Field(default=5000)
    finish_result_seconds: float = Field(default=7.0)
    # Deltas at or beyond this are shown as "no delta" (outlaps, pit stops)
    max_delta_ms: int = Field(default=10000)
    green_banner_seconds: float = Field(default=5.0)
    position_change_memory_seconds: float = Field(default=8.0)
    laps_pulse_seconds: float = Field(default=2.0)


class FeatureToggles(BaseModel):
    overlay: bool = Field(default=True)
    fastest_lap: bool = Field(default=True)
    lap_finish: bool = Field(default=True)
    comments: bool = Field(default=True)
    overtakes: bool = Field(default=True)
    current_lap: bool = Field(default=True)

    @classmethod
    def from_remote(cls, payload: Any) -> "FeatureToggles":
        """Build toggles from the dashboard config payload.

        Only a literal ``false`` disables a feature; missing keys stay enabled.
        """
        data = payload if isinstance(payload, dict) else {}
        return cls(
            overlay=data.get("overlayEnabled") is not False,
            fastest_lap=data.get("fastestLapEnabled") is not False,
            lap_finish=data.get("lapFinishEnabled") is not False,
            comments=data.get("commentsEnabled") is not False,
            overtakes=data.get("overtakesEnabled") is not False,
            current_lap=data.get("currentLapEnabled") is not False,
        )


class Settings(BaseModel):
    source: SourceSettings = Field(default_factory=SourceSettings)
    timing: TimingSettings = Field(default_factory=TimingSettings)
    toggles: FeatureToggles = Field(default_factory=FeatureToggles)
    log_level: str = Field(default="INFO")
    snapshot_cache_path: str | None = Field(default="data/overlay_cache.db")
    snapshot_cache_key: str = Field(default="livetiming:last")
    lap_hysteresis_margin: int = Field(default=5)
    lap_reset_value: int = Field(default=0)
    laps_label_prefix: str = Field(default="Laps: ")
    default_title: str = Field(default="Live Timing")
    max_queue_size: int = Field(default=16)
    announcement_history: int = Field(default=6)
    # The first record seen after a (re)start only primes the tracker
    announce_initial_fastest: bool = Field(default=False)


def _flag(value: Any, default: bool) -> str:
    """Config-file boolean in the "1"/"0" form the ENABLE_* variables use."""
    if value is None:
        value = default
    elif isinstance(value, str):
        value = value.strip().lower() in ("1", "true", "yes", "on")
    return "1" if value else "0"


def get_settings() -> Settings:
    config_path = os.environ.get("CONFIG_PATH", "config.json")
    data: dict = {}
    p = Path(config_path)
    if p.exists():
        try:
            data = json.loads(p.read_text())
        except Exception:
            pass  # ignore malformed file, fallback to env defaults
    if not isinstance(data, dict):
        data = {}

    source_block = data.get("source", {}) if isinstance(data.get("source"), dict) else {}
    if os.environ.get("STANDINGS_URL"):
        source_block["standings_url"] = os.environ["STANDINGS_URL"]
    if os.environ.get("TOGGLES_URL"):
        source_block["toggles_url"] = os.environ["TOGGLES_URL"]
    if os.environ.get("POLL_INTERVAL"):
        source_block["poll_interval"] = float(os.environ["POLL_INTERVAL"])
    if os.environ.get("CONFIG_POLL_INTERVAL"):
        source_block["config_poll_interval"] = float(os.environ["CONFIG_POLL_INTERVAL"])
    if os.environ.get("REQUEST_TIMEOUT"):
        source_block["request_timeout"] = float(os.environ["REQUEST_TIMEOUT"])

    timing_block = data.get("timing", {}) if isinstance(data.get("timing"), dict) else {}
    if os.environ.get("SCHEDULER_POLL_INTERVAL"):
        timing_block["scheduler_poll_interval"] = float(os.environ["SCHEDULER_POLL_INTERVAL"])
    if os.environ.get("FASTEST_CARD_SECONDS"):
        timing_block["fastest_card_seconds"] = float(os.environ["FASTEST_CARD_SECONDS"])
    if os.environ.get("FINISH_RESULT_SECONDS"):
        timing_block["finish_result_seconds"] = float(os.environ["FINISH_RESULT_SECONDS"])

    toggles_block = data.get("toggles", {}) if isinstance(data.get("toggles"), dict) else {}
    toggles = FeatureToggles(
        overlay=os.environ.get(
            "ENABLE_OVERLAY", _flag(toggles_block.get("overlay"), True)
        )
        == "1",
        fastest_lap=os.environ.get(
            "ENABLE_FASTEST_LAP", _flag(toggles_block.get("fastest_lap"), True)
        )
        == "1",
        lap_finish=os.environ.get(
            "ENABLE_LAP_FINISH", _flag(toggles_block.get("lap_finish"), True)
        )
        == "1",
        comments=os.environ.get(
            "ENABLE_COMMENTS", _flag(toggles_block.get("comments"), True)
        )
        == "1",
        overtakes=os.environ.get(
            "ENABLE_OVERTAKES", _flag(toggles_block.get("overtakes"), True)
        )
        == "1",
        current_lap=os.environ.get(
            "ENABLE_CURRENT_LAP", _flag(toggles_block.get("current_lap"), True)
        )
        == "1",
    )

    return Settings(
        source=SourceSettings(**source_block),
        timing=TimingSettings(**timing_block),
        toggles=toggles,
        log_level=os.environ.get("LOG_LEVEL", data.get("log_level", "INFO")),
        snapshot_cache_path=os.environ.get(
            "SNAPSHOT_CACHE_PATH", data.get("snapshot_cache_path", "data/overlay_cache.db")
        )
        or None,
        snapshot_cache_key=os.environ.get(
            "SNAPSHOT_CACHE_KEY", data.get("snapshot_cache_key", "livetiming:last")
        ),
        lap_hysteresis_margin=int(
            os.environ.get("LAP_HYSTERESIS_MARGIN", data.get("lap_hysteresis_margin", 5))
        ),
        lap_reset_value=int(os.environ.get("LAP_RESET_VALUE", data.get("lap_reset_value", 0))),
        laps_label_prefix=os.environ.get(
            "LAPS_LABEL_PREFIX", data.get("laps_label_prefix", "Laps: ")
        ),
        default_title=os.environ.get("DEFAULT_TITLE", data.get("default_title", "Live Timing")),
        max_queue_size=int(os.environ.get("MAX_QUEUE_SIZE", data.get("max_queue_size", 16))),
        announcement_history=int(
            os.environ.get("ANNOUNCEMENT_HISTORY", data.get("announcement_history", 6))
        ),
        announce_initial_fastest=os.environ.get(
            "ANNOUNCE_INITIAL_FASTEST", _flag(data.get("announce_initial_fastest"), False)
        )
        == "1",
    )
