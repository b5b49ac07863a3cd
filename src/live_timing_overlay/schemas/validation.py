"""JSON Schema checks for payloads crossing the adapter boundary.

Only the top-level shape is validated; row-level fields are coerced
leniently by ``StandingsRow.from_raw`` since the scraper output is noisy.
"""

from __future__ import annotations
import json
from pathlib import Path
from functools import lru_cache
from typing import Any, Dict

import jsonschema

SCHEMA_DIR = Path(__file__).parent


@lru_cache(maxsize=8)
def _load_schema(name: str) -> Dict[str, Any]:
    path = SCHEMA_DIR / name
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


SCHEMA_MAP = {
    "standings": "standings.schema.json",
    "toggles": "toggles.schema.json",
}


def validate(kind: str, payload: Any) -> None:
    """Validate payload against the schema registered for ``kind``.

    Raises jsonschema.ValidationError on failure.
    """
    schema_file = SCHEMA_MAP.get(kind)
    if not schema_file:
        raise ValueError(f"No schema registered for {kind}")
    schema = _load_schema(schema_file)
    jsonschema.validate(instance=payload, schema=schema)


def is_valid(kind: str, payload: Any) -> bool:
    try:
        validate(kind, payload)
        return True
    except jsonschema.ValidationError:
        return False


EXAMPLES: Dict[str, Dict[str, Any]] = {
    "standings": {
        "updatedAt": 1735123456123,
        "sessionName": "Race 1 - 20 laps",
        "sessionLaps": "12",
        "flagFinish": False,
        "raceFlag": "GREEN",
        "standings": [
            {
                "position": 1,
                "number": "7",
                "name": "Smith, John",
                "laps": 12,
                "lastLap": "1:32.456",
                "bestLap": "1:31.987",
                "gap": "-",
                "diff": "-",
                "totalTime": "18:40.112",
                "hasFinishFlag": False,
            },
            {
                "position": 2,
                "number": "23",
                "name": "Maria Lopez",
                "laps": 12,
                "lastLap": "PIT",
                "bestLap": "1:32.100",
                "gap": "+1.523",
                "diff": "+1.523",
                "totalTime": "18:41.635",
                "hasFinishFlag": False,
            },
        ],
        "announcements": [
            {"time": "14:02:11", "text": "Number 23 has reduced the gap to Number 7 to 1.523"}
        ],
    },
    "toggles": {
        "overlayEnabled": True,
        "fastestLapEnabled": True,
        "lapFinishEnabled": False,
    },
}


def example(kind: str) -> Dict[str, Any]:
    return EXAMPLES[kind]
