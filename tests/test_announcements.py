from live_timing_overlay.core.announcements import (
    AnnouncementFeed,
    coerce_announcements,
    parse_announcement,
)
from live_timing_overlay.core.models import PositionDown, PositionUp


def test_parse_known_messages():
    up = parse_announcement("Number 7 is up 2 places to 1.", "12:00:01")
    assert up.kind == "pos_up"
    assert (up.number, up.delta, up.to_pos) == (7, 2, 1)
    assert up.time == "12:00:01"

    down = parse_announcement("Number 3 has just dropped to 5.")
    assert down.kind == "pos_down"
    assert (down.number, down.to_pos) == (3, 5)

    gap = parse_announcement("Number 4 has reduced the gap to Number 9 to 0.8")
    assert gap.kind == "gap_reduce"
    assert (gap.number, gap.target, gap.gap) == (4, 9, "0.8")

    chase = parse_announcement("Here comes Number 11, chasing down Number 2!")
    assert chase.kind == "chase"
    assert (chase.number, chase.target) == (11, 2)


def test_unknown_message_is_plain_text():
    a = parse_announcement("Track limits under investigation")
    assert a.kind == "text"
    assert a.number is None


def test_coerce_mixed_items_and_limit():
    raw = [
        "Number 7 is up 1 place to 3.",
        {"text": "Number 3 has just dropped to 5.", "time": "12:01:00"},
        {"text": "   "},
        42,
        {"text": "Safety car in this lap"},
    ]
    out = coerce_announcements(raw, limit=2)
    assert [a.kind for a in out] == ["pos_up", "pos_down"]
    assert out[1].time == "12:01:00"
    assert coerce_announcements("not a list") == ()


def test_coerce_trusts_scraper_classification():
    raw = [{"text": "Blue flag for 12", "kind": "blue", "number": "12"}]
    (a,) = coerce_announcements(raw)
    assert a.kind == "blue"
    assert a.number == 12


def test_feed_newest_first_and_bounded():
    feed = AnnouncementFeed(size=2)
    feed.push(PositionUp("7", "Smith", "7|Smith", 2, 1), "10:00:00")
    feed.push(PositionDown("3", "Lee", "3|Lee", 1, 4), "10:00:05")
    feed.push(PositionUp("9", "Jones", "9|Jones", 1, 2), "10:00:09")
    items = feed.items()
    assert len(items) == 2
    assert items[0].number == 9
    assert items[0].text == "Number 9 is up 1 place to 2."
    assert items[1].kind == "pos_down"
    assert items[1].delta is None
    feed.clear()
    assert feed.items() == []


def test_feed_stamps_local_time():
    feed = AnnouncementFeed()
    feed.extend([PositionUp("7", "Smith", "7|Smith", 2, 1)])
    (a,) = feed.items()
    assert len(a.time) == 8
    assert a.time.count(":") == 2
