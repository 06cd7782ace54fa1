"""
Pytest configuration and fixtures for unisrv tests.
"""

import asyncio
import os
from types import SimpleNamespace
from typing import Any, Iterable, List
from uuid import UUID, uuid4

import pytest

from unisrv.models import BootEvent, BootEventKind, BootState

UNISRV_ENV = (
    "UNISRV_API_URL",
    "API_HOST",
    "UNISRV_TOKEN",
    "UNISRV_HEALTH_WINDOW",
    "UNISRV_STOP_TIMEOUT_MS",
    "UNISRV_SESSION_FILE",
    "UNISRV_LOG_LEVEL",
)


def pytest_configure(config):
    """
    Clear unisrv environment variables before any test modules are imported.
    A developer's own shell settings must not leak into the tests.
    """
    for name in UNISRV_ENV:
        os.environ.pop(name, None)


HANG = object()


def state(value: BootState) -> BootEvent:
    return BootEvent(log_type=BootEventKind.STATE, timestamp_ms=1_700_000_000_000, state=value)


def log(message: str, kind: BootEventKind = BootEventKind.STDOUT) -> BootEvent:
    return BootEvent(log_type=kind, timestamp_ms=1_700_000_000_000, message=message)


class ScriptedEventSource:
    """
    Fake boot event source driven by a script.

    Script items: BootEvent (yielded), float (sleep that many seconds),
    Exception (raised), HANG (block until cancelled). The stream ends after
    the last item.
    """

    def __init__(self, script: Iterable[Any]):
        self.script: List[Any] = list(script)
        self.opened: List[UUID] = []
        self.closed = False

    def stream_boot_events(self, instance_id: UUID):
        self.opened.append(instance_id)
        return self._events()

    async def _events(self):
        try:
            for item in self.script:
                if item is HANG:
                    await asyncio.Event().wait()
                elif isinstance(item, (int, float)):
                    await asyncio.sleep(item)
                elif isinstance(item, BaseException):
                    raise item
                else:
                    yield item
        finally:
            self.closed = True


@pytest.fixture
def instance_id() -> UUID:
    return uuid4()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every unisrv environment variable for the test."""
    for name in UNISRV_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def scripted_source():
    """Factory for scripted boot event sources."""
    return ScriptedEventSource


@pytest.fixture
def boot_events():
    """Builders for boot events plus the HANG script marker."""
    return SimpleNamespace(state=state, log=log, HANG=HANG)
