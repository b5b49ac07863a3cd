import asyncio

import httpx
import pytest

from live_timing_overlay.adapters.standings_poller import StandingsPoller
from live_timing_overlay.config.settings import Settings, SourceSettings, TimingSettings
from live_timing_overlay.core.clock import ManualClock
from live_timing_overlay.core.overlay import OverlaySession

STANDINGS_URL = "http://timing.test/api/standings"
TOGGLES_URL = "http://timing.test/api/config"


def standings(order):
    return {
        "sessionName": "Race 1",
        "standings": [
            {"number": n, "name": name, "position": i + 1, "laps": 4}
            for i, (n, name) in enumerate(order)
        ],
    }


GRID = standings([("9", "Jones"), ("3", "Lee"), ("7", "Smith")])
SWAPPED = standings([("7", "Smith"), ("9", "Jones"), ("3", "Lee")])


def make_settings(**source):
    source.setdefault("standings_url", STANDINGS_URL)
    source.setdefault("poll_interval", 0.01)
    source.setdefault("config_poll_interval", 0.01)
    return Settings(
        source=SourceSettings(**source),
        timing=TimingSettings(scheduler_poll_interval=0.01),
        snapshot_cache_path=None,
    )


def make_poller(handler, on_view=None, **source):
    settings = make_settings(**source)
    session = OverlaySession(settings, clock=ManualClock())
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return StandingsPoller(session, settings, client=client, on_view=on_view), client


@pytest.mark.asyncio
async def test_fetch_once_applies_snapshot():
    def handler(request):
        assert str(request.url) == STANDINGS_URL
        return httpx.Response(200, json=GRID)

    poller, client = make_poller(handler)
    assert await poller.fetch_once() is True
    assert len(poller.session.view().rows) == 3
    m = poller.metrics()
    assert m["fetched"] == 1
    assert m["applied"] == 1
    assert m["errors"] == 0
    assert m["last_ok_ts"] is not None
    await client.aclose()


@pytest.mark.asyncio
async def test_fetch_errors_keep_previous_standings():
    responses = [
        httpx.Response(200, json=GRID),
        httpx.Response(500),
        httpx.Response(200, content=b"<html>maintenance</html>"),
    ]

    def handler(request):
        return responses.pop(0)

    poller, client = make_poller(handler)
    assert await poller.fetch_once() is True
    assert await poller.fetch_once() is False
    assert await poller.fetch_once() is False
    assert poller.metrics()["errors"] == 2
    assert len(poller.session.view().rows) == 3
    await client.aclose()


@pytest.mark.asyncio
async def test_late_response_is_discarded():
    reached = asyncio.Event()
    release = asyncio.Event()
    calls = {"n": 0}

    async def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            reached.set()
            await release.wait()
            return httpx.Response(200, json=GRID)
        return httpx.Response(200, json=SWAPPED)

    poller, client = make_poller(handler)
    slow = asyncio.create_task(poller.fetch_once())
    await asyncio.wait_for(reached.wait(), timeout=1)
    assert await poller.fetch_once() is True
    release.set()
    assert await slow is False
    assert poller.metrics()["stale"] == 1
    assert poller.session.view().rows[0].number == "7"
    await client.aclose()


@pytest.mark.asyncio
async def test_remote_toggles_applied():
    def handler(request):
        if str(request.url) == TOGGLES_URL:
            return httpx.Response(200, json={"lapFinishEnabled": False, "commentsEnabled": True})
        return httpx.Response(200, json=GRID)

    poller, client = make_poller(handler, toggles_url=TOGGLES_URL)
    toggles = await poller.fetch_toggles_once()
    assert toggles.lap_finish is False
    assert poller.session.toggles.lap_finish is False
    assert poller.session.toggles.fastest_lap is True
    await client.aclose()


@pytest.mark.asyncio
async def test_malformed_toggles_ignored():
    def handler(request):
        return httpx.Response(200, json={"overlayEnabled": "nope"})

    poller, client = make_poller(handler, toggles_url=TOGGLES_URL)
    assert await poller.fetch_toggles_once() is None
    assert poller.session.toggles.overlay is True
    await client.aclose()


@pytest.mark.asyncio
async def test_no_toggles_url_is_noop():
    def handler(request):
        raise AssertionError("no request expected")

    poller, client = make_poller(handler)
    assert await poller.fetch_toggles_once() is None
    await client.aclose()


@pytest.mark.asyncio
async def test_tick_reports_only_changes():
    seen = []

    def handler(request):
        return httpx.Response(200, json=GRID)

    poller, client = make_poller(handler, on_view=seen.append)
    assert poller.tick() is not None
    assert poller.tick() is None
    await poller.fetch_once()
    view = poller.tick()
    assert view is not None
    assert len(view.rows) == 3
    assert len(seen) == 2
    await client.aclose()


@pytest.mark.asyncio
async def test_inflight_limit():
    release = asyncio.Event()

    async def handler(request):
        await release.wait()
        return httpx.Response(200, json=GRID)

    poller, client = make_poller(handler, max_inflight=1)
    poller._spawn_fetch()
    poller._spawn_fetch()
    assert poller.metrics()["inflight"] == 1
    release.set()
    await asyncio.gather(*list(poller._inflight))
    assert poller.metrics()["applied"] == 1
    await poller.close()
    await client.aclose()


@pytest.mark.asyncio
async def test_run_loops_until_stopped():
    views = []

    def handler(request):
        if str(request.url) == TOGGLES_URL:
            return httpx.Response(200, json={"overlayEnabled": True})
        return httpx.Response(200, json=GRID)

    poller, client = make_poller(handler, on_view=views.append, toggles_url=TOGGLES_URL)
    task = asyncio.create_task(poller.run())
    for _ in range(200):
        if any(len(v.rows) == 3 for v in views):
            break
        await asyncio.sleep(0.01)
    poller.stop()
    await asyncio.wait_for(task, timeout=2)
    assert any(len(v.rows) == 3 for v in views)
    assert poller.metrics()["applied"] >= 1
    assert poller.metrics()["inflight"] == 0
    await client.aclose()
