from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

import httpx

from live_timing_overlay.logging import get_logger
from ..config.settings import FeatureToggles, Settings
from ..core.overlay import OverlaySession, OverlayView
from ..schemas import validation

_LOGGER = get_logger(__name__)

ViewCallback = Callable[[OverlayView], None]


def _view_signature(view: OverlayView) -> dict[str, Any]:
    data = view.to_dict()
    if data.get("active_card"):
        data["active_card"].pop("expires_in", None)
    return data


class StandingsPoller:
    """Drives an OverlaySession from the standings HTTP endpoint.

    Three cooperative loops share one event loop: snapshot ingestion, the
    card scheduler poll, and (optionally) remote feature toggles. Each
    snapshot fetch runs in its own task tagged with a sequence number, so a
    slow reply never delays the next poll and a late one is discarded.
    """

    def __init__(
        self,
        session: OverlaySession,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        on_view: Optional[ViewCallback] = None,
    ):
        self.session = session
        self.settings = settings
        self.on_view = on_view
        self._client = client
        self._owns_client = client is None
        self._stop = asyncio.Event()
        self._inflight: set[asyncio.Task] = set()
        self._last_signature: Optional[dict] = None
        # Metrics
        self._fetched = 0
        self._applied = 0
        self._stale = 0
        self._errors = 0
        self._last_ok_ts: Optional[float] = None

    # ---------------- Client -----------------
    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.source.request_timeout)
        return self._client

    async def close(self):
        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        self._inflight.clear()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def stop(self):
        self._stop.set()

    # ---------------- Single steps -----------------
    async def fetch_once(self) -> bool:
        """Fetch one snapshot and apply it; False on failure or stale reply."""
        seq = self.session.next_sequence()
        url = self.settings.source.standings_url
        try:
            r = await self.client.get(url)
            r.raise_for_status()
            payload = r.json()
        except (httpx.HTTPError, ValueError) as e:
            self._errors += 1
            _LOGGER.debug("[poller] fetch seq=%s failed: %s", seq, e)
            return False
        self._fetched += 1
        before = self.session.applied_sequence
        events = self.session.apply(payload, seq)
        if self.session.applied_sequence == before:
            self._stale += 1
            return False
        self._applied += 1
        self._last_ok_ts = time.time()
        for e in events:
            _LOGGER.info("[poller] %s %s", type(e).__name__, e)
        return True

    async def fetch_toggles_once(self) -> Optional[FeatureToggles]:
        url = self.settings.source.toggles_url
        if not url:
            return None
        try:
            r = await self.client.get(url)
            r.raise_for_status()
            payload = r.json()
        except (httpx.HTTPError, ValueError) as e:
            _LOGGER.debug("[poller] toggles fetch failed: %s", e)
            return None
        if not validation.is_valid("toggles", payload):
            _LOGGER.warning("[poller] ignoring malformed toggles payload")
            return None
        toggles = FeatureToggles.from_remote(payload)
        self.session.set_toggles(toggles)
        return toggles

    def tick(self) -> Optional[OverlayView]:
        """Poll the scheduler; returns the view when it changed."""
        self.session.tick()
        view = self.session.view()
        sig = _view_signature(view)
        if sig == self._last_signature:
            return None
        self._last_signature = sig
        if self.on_view is not None:
            self.on_view(view)
        return view

    # ---------------- Loops -----------------
    async def _sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=max(0.01, seconds))
        except asyncio.TimeoutError:
            pass

    def _spawn_fetch(self):
        if len(self._inflight) >= max(1, self.settings.source.max_inflight):
            _LOGGER.debug("[poller] %d fetches in flight; skipping poll", len(self._inflight))
            return
        task = asyncio.create_task(self.fetch_once(), name="standings_fetch")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _ingest_loop(self):
        interval = self.settings.source.poll_interval
        while not self._stop.is_set():
            if self.session.toggles.overlay:
                self._spawn_fetch()
            await self._sleep(interval)

    async def _scheduler_loop(self):
        interval = self.settings.timing.scheduler_poll_interval
        while not self._stop.is_set():
            self.tick()
            await self._sleep(interval)

    async def _toggles_loop(self):
        interval = self.settings.source.config_poll_interval
        while not self._stop.is_set():
            await self.fetch_toggles_once()
            await self._sleep(interval)

    async def run(self):
        loops = [
            asyncio.create_task(self._ingest_loop(), name="ingest_loop"),
            asyncio.create_task(self._scheduler_loop(), name="scheduler_loop"),
        ]
        if self.settings.source.toggles_url:
            loops.append(asyncio.create_task(self._toggles_loop(), name="toggles_loop"))
        _LOGGER.info(
            "[poller] polling %s every %.2fs (scheduler %.2fs)",
            self.settings.source.standings_url,
            self.settings.source.poll_interval,
            self.settings.timing.scheduler_poll_interval,
        )
        try:
            await self._stop.wait()
        finally:
            for t in loops:
                t.cancel()
            await asyncio.gather(*loops, return_exceptions=True)
            await self.close()

    def metrics(self) -> dict:
        return {
            "fetched": self._fetched,
            "applied": self._applied,
            "stale": self._stale,
            "errors": self._errors,
            "inflight": len(self._inflight),
            "applied_seq": self.session.applied_sequence,
            "last_ok_ts": self._last_ok_ts,
        }


async def run_overlay_poller(
    session: OverlaySession,
    settings: Settings,
    stop_event: asyncio.Event,
    on_view: Optional[ViewCallback] = None,
):  # pragma: no cover
    poller = StandingsPoller(session, settings, on_view=on_view)
    task = asyncio.create_task(poller.run())
    try:
        await stop_event.wait()
    finally:
        poller.stop()
        await asyncio.sleep(0)
        try:
            await asyncio.wait_for(task, timeout=5)
        except asyncio.TimeoutError:
            pass
