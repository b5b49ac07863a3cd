from __future__ import annotations

import asyncio
import json
import signal
from dataclasses import asdict
from typing import Optional

import click

from ..config.settings import get_settings
from ..core.clock import ManualClock
from ..core.overlay import OverlaySession, OverlayView
from ..core.snapshot_cache import SqliteSnapshotCache
from ..logging import configure_logging, get_logger

LOG = get_logger("overlay_cli")


def _echo_json(data: dict):
    click.echo(json.dumps(data, default=str, ensure_ascii=False))


@click.group()
def cli():
    """Live timing overlay core"""


@cli.command("print-config")
def print_config():
    """Print resolved settings and exit."""
    click.echo(get_settings().model_dump_json(indent=2))


@cli.command()
@click.option("--url", default=None, help="Standings endpoint (overrides STANDINGS_URL)")
@click.option("--toggles-url", default=None, help="Feature toggle endpoint")
@click.option("--no-cache", is_flag=True, help="Do not read or write the snapshot cache")
def run(url: Optional[str], toggles_url: Optional[str], no_cache: bool):
    """Poll the standings endpoint and print view changes as JSON lines."""
    from ..adapters.standings_poller import run_overlay_poller

    settings = get_settings()
    configure_logging(settings.log_level)
    if url:
        settings.source.standings_url = url
    if toggles_url:
        settings.source.toggles_url = toggles_url
    cache = None
    if settings.snapshot_cache_path and not no_cache:
        cache = SqliteSnapshotCache(settings.snapshot_cache_path, settings.snapshot_cache_key)
    session = OverlaySession(settings, cache=cache)

    def _print_view(view: OverlayView):
        _echo_json(view.to_dict())

    async def _run():  # pragma: no cover
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for s in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(s, stop_event.set)
            except NotImplementedError:
                signal.signal(s, lambda *_: stop_event.set())
        LOG.info(
            "overlay started url=%s toggles=%s",
            settings.source.standings_url,
            settings.source.toggles_url,
        )
        await run_overlay_poller(session, settings, stop_event, on_view=_print_view)

    try:
        asyncio.run(_run())
    finally:
        if cache is not None:
            cache.close()


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--step",
    type=click.FloatRange(min=0.0),
    default=1.0,
    show_default=True,
    help="Seconds between snapshots",
)
@click.option(
    "--tick",
    type=click.FloatRange(min=0.01),
    default=0.25,
    show_default=True,
    help="Scheduler poll interval",
)
@click.option(
    "--drain",
    type=click.FloatRange(min=0.0),
    default=0.0,
    help="Extra seconds to run after the last snapshot",
)
def replay(path: str, step: float, tick: float, drain: float):
    """Replay JSON-lines snapshots on a virtual clock and print events and card changes."""
    settings = get_settings()
    configure_logging(settings.log_level)
    clock = ManualClock()
    session = OverlaySession(settings, clock=clock)
    last_card: Optional[tuple] = None

    def _advance(seconds: float):
        nonlocal last_card
        elapsed = 0.0
        while elapsed < seconds:
            dt = min(tick, seconds - elapsed)
            clock.advance(dt)
            elapsed += dt
            card = session.tick()
            state = (card.id, card.stage.value) if card else None
            if state != last_card:
                view = session.view()
                _echo_json(
                    {
                        "t": round(clock.now(), 3),
                        "card": asdict(view.active_card) if view.active_card else None,
                    }
                )
                last_card = state

    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except ValueError:
                LOG.warning("line %d: not JSON, skipped", lineno)
                _advance(step)
                continue
            for event in session.apply(payload, session.next_sequence()):
                _echo_json(
                    {"t": round(clock.now(), 3), "event": type(event).__name__, **asdict(event)}
                )
            _advance(step)
    if drain > 0:
        _advance(drain)


if __name__ == "__main__":
    cli()
