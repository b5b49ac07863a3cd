from live_timing_overlay.core.clock import ManualClock
from live_timing_overlay.core.models import StandingsRow
from live_timing_overlay.core.trends import PositionTrends


def grid(*order):
    return [StandingsRow(number=n, name=n, position=i + 1) for i, n in enumerate(order)]


def test_changes_remembered_then_forgotten():
    clock = ManualClock()
    trends = PositionTrends(clock, memory_seconds=8.0)
    trends.update(grid("1", "2", "3"))
    assert trends.changes() == {}
    trends.update(grid("3", "1", "2"))
    assert trends.change_for("3|3") == 2
    assert trends.change_for("1|1") == -1
    assert trends.best_overtake.number == "3"
    clock.advance(8.25)
    trends.update(grid("3", "1", "2"))
    assert trends.changes() == {}
    # the headline overtake outlives the arrows
    assert trends.best_overtake.gain == 2


def test_reset_forgets_history():
    clock = ManualClock()
    trends = PositionTrends(clock)
    trends.update(grid("1", "2"))
    trends.update(grid("2", "1"))
    trends.reset()
    assert trends.best_overtake is None
    trends.update(grid("1", "2"))
    assert trends.changes() == {}
