import logging
import sys

import pytest

from live_timing_overlay import logging as overlay_logging


@pytest.fixture
def fresh_root(monkeypatch):
    monkeypatch.setattr(overlay_logging, "_CONFIGURED", False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_stderr_handler_and_http_client_level(monkeypatch, fresh_root):
    monkeypatch.setenv("HTTPX_LOG_LEVEL", "error")
    overlay_logging.configure_logging("debug")
    assert fresh_root.level == logging.DEBUG
    assert [h.stream for h in fresh_root.handlers] == [sys.stderr]
    assert logging.getLogger("httpx").level == logging.ERROR
    assert logging.getLogger("httpcore").level == logging.ERROR


def test_reconfigure_only_changes_level(fresh_root):
    overlay_logging.configure_logging("info")
    handlers = list(fresh_root.handlers)
    overlay_logging.configure_logging("warning")
    assert fresh_root.handlers == handlers
    assert fresh_root.level == logging.WARNING
    overlay_logging.configure_logging("loud")
    assert fresh_root.level == logging.INFO
