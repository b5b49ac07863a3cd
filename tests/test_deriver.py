from live_timing_overlay.core.deriver import (
    DeriverState,
    derive_events,
    derive_fastest_event,
    derive_finish_event,
    derive_position_event,
    fastest_index,
)
from live_timing_overlay.core.models import (
    FastestLap,
    LapFinish,
    PositionDown,
    PositionUp,
    StandingsRow,
)


def row(number, name, position, laps=None, last="", best=""):
    return StandingsRow(
        number=number, name=name, position=position, laps=laps, last_lap=last, best_lap=best
    )


def test_position_gain_end_to_end():
    prev = [row("9", "Jones, Ann", 1), row("3", "Lee, Kim", 2), row("7", "Smith, John", 3)]
    cur = [row("7", "Smith, John", 1), row("9", "Jones, Ann", 2), row("3", "Lee, Kim", 3)]
    events = derive_events(prev, cur, DeriverState())
    ups = [e for e in events if isinstance(e, PositionUp)]
    assert len(ups) == 1
    assert ups[0].number == "7"
    assert ups[0].delta == 2
    assert ups[0].to_pos == 1
    assert ups[0].key == "7|Smith"
    assert ups[0].name == "Smith"
    assert ups[0].text == "Number 7 is up 2 places to 1."


def test_identity_survives_name_format_change():
    prev = [row("9", "Jones, Ann", 1), row("7", "Smith, John", 2)]
    cur = [row("7", "John Smith", 1), row("9", "Ann Jones", 2)]
    ev = derive_position_event(prev, cur, DeriverState())
    assert isinstance(ev, PositionUp)
    assert ev.key == "7|Smith"


def test_gain_preferred_over_drop():
    prev = [row("1", "A", 1), row("2", "B", 2), row("3", "C", 3), row("4", "D", 4)]
    # A drops three places; B, C and D gain one each and the first gain wins
    cur = [row("2", "B", 1), row("3", "C", 2), row("4", "D", 3), row("1", "A", 4)]
    ev = derive_position_event(prev, cur, DeriverState())
    assert isinstance(ev, PositionUp)
    assert ev.number == "2"


def test_drop_only_emits_position_down():
    prev = [row("1", "A", 1)]
    cur = [row("5", "E", 1), row("6", "F", 2), row("1", "A", 3)]
    ev = derive_position_event(prev, cur, DeriverState())
    assert isinstance(ev, PositionDown)
    assert ev.delta == 2
    assert ev.to_pos == 3
    assert ev.text == "Number 1 has just dropped to 3."


def test_identical_gain_emitted_once():
    prev = [row("1", "A", 1), row("2", "B", 2)]
    cur = [row("2", "B", 1), row("1", "A", 2)]
    state = DeriverState()
    assert derive_position_event(prev, cur, state) is not None
    assert derive_position_event(prev, cur, state) is None


def test_new_rows_without_history_are_ignored():
    prev = [row("1", "A", 1)]
    cur = [row("2", "B", 1), row("1", "A", 2)]
    ev = derive_position_event(prev, cur, DeriverState())
    assert isinstance(ev, PositionDown)
    assert ev.number == "1"


def test_fastest_index_falls_back_to_last_lap():
    rows = [
        row("1", "A", 1, best="1:31.000"),
        row("2", "B", 2, last="1:30.500"),
        row("3", "C", 3, best="-", last="PIT"),
    ]
    assert fastest_index(rows) == 1
    assert fastest_index([row("3", "C", 1)]) == -1


def test_fastest_first_sighting_primes_tracker():
    state = DeriverState()
    rows = [row("1", "A", 1, best="1:30.000"), row("2", "B", 2, best="1:31.000")]
    assert derive_fastest_event(rows, state) is None
    assert state.fastest_key == "1|A"
    assert derive_fastest_event(rows, state) is None


def test_fastest_announced_on_new_holder_and_improvement():
    state = DeriverState()
    derive_fastest_event([row("1", "A", 1, best="1:30.000")], state)
    rows = [row("1", "A", 1, best="1:30.000"), row("2", "B", 2, best="1:29.500")]
    ev = derive_fastest_event(rows, state)
    assert isinstance(ev, FastestLap)
    assert ev.number == "2"
    assert ev.time_str == "1:29.5"

    rows = [row("1", "A", 1, best="1:30.000"), row("2", "B", 2, best="1:29.000")]
    ev = derive_fastest_event(rows, state)
    assert isinstance(ev, FastestLap)
    assert ev.time_s == 89.0
    assert derive_fastest_event(rows, state) is None


def test_fastest_initial_announcement_when_enabled():
    state = DeriverState(announce_initial_fastest=True)
    ev = derive_fastest_event([row("1", "A", 1, best="58.250")], state)
    assert isinstance(ev, FastestLap)
    assert ev.time_str == "58.250"


def test_lap_finish_delta():
    prev = [row("7", "Smith", 1, laps=5, last="1:31.000")]
    cur = [row("7", "Smith", 1, laps=6, last="1:30.500")]
    ev = derive_finish_event(prev, cur, DeriverState())
    assert isinstance(ev, LapFinish)
    assert ev.laps == 6
    assert ev.final_ms == 90500
    assert ev.delta_ms == -500
    assert ev.final_time_str == "1:30.500"


def test_lap_finish_picks_most_improved():
    prev = [
        row("1", "A", 1, laps=5, last="1:30.000"),
        row("2", "B", 2, laps=5, last="1:32.000"),
        row("3", "C", 3, laps=5, last=""),
        row("4", "D", 4, laps=5, last="1:30.000"),
    ]
    cur = [
        row("1", "A", 1, laps=6, last="1:30.200"),
        row("2", "B", 2, laps=6, last="1:31.700"),
        row("3", "C", 3, laps=6, last="1:29.000"),
        row("4", "D", 4, laps=6, last="PIT"),
    ]
    ev = derive_finish_event(prev, cur, DeriverState())
    assert ev.number == "2"
    assert ev.delta_ms == -300


def test_lap_finish_without_numeric_delta_keeps_arrival_order():
    prev = [row("3", "C", 1, laps=1, last=""), row("4", "D", 2, laps=1, last="")]
    cur = [row("3", "C", 1, laps=2, last="1:40.000"), row("4", "D", 2, laps=2, last="1:35.000")]
    ev = derive_finish_event(prev, cur, DeriverState())
    assert ev.number == "3"
    assert ev.delta_ms is None


def test_lap_finish_deduplicated_by_lap():
    prev = [row("7", "Smith", 1, laps=5, last="1:31.000")]
    cur = [row("7", "Smith", 1, laps=6, last="1:30.500")]
    state = DeriverState()
    assert derive_finish_event(prev, cur, state) is not None
    assert derive_finish_event(prev, cur, state) is None


def test_no_events_between_identical_snapshots():
    rows = [row("1", "A", 1, laps=3, last="1:30.000"), row("2", "B", 2, laps=3, last="1:31.000")]
    state = DeriverState()
    derive_events([], rows, state)
    assert derive_events(rows, rows, state) == []


def test_finished_suppresses_events_but_tracks_fastest():
    state = DeriverState()
    prev = [row("1", "A", 1, laps=5, last="1:30.000")]
    derive_events([], prev, state)
    cur = [row("1", "A", 1, laps=6, last="1:29.000")]
    assert derive_events(prev, cur, state, finished=True) == []
    assert state.fastest_time == 89.0
    # after the flag the same record is not replayed
    assert derive_fastest_event(cur, state) is None


def test_state_reset_clears_trackers():
    state = DeriverState(last_position_key="x", fastest_key="k", fastest_time=1.0)
    state.reset()
    assert state.last_position_key is None
    assert state.fastest_key is None
    assert state.fastest_time is None
