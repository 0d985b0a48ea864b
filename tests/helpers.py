"""Test doubles and helpers shared across the test suite."""

import asyncio
from collections.abc import AsyncIterator

import pytest

from configmap_sync.domain import ConfigSnapshot, TriggerKind
from configmap_sync.errors import ReloadTriggerError
from configmap_sync.reload import ReloadTrigger
from configmap_sync.source import ConfigSource


class FakeConfigSource(ConfigSource):
    """In-memory source; tests push snapshots (or exceptions) onto ``updates``."""

    def __init__(self, initial: ConfigSnapshot | None = None):
        self.initial = initial if initial is not None else ConfigSnapshot()
        self.updates: asyncio.Queue = asyncio.Queue()
        self.get_error: Exception | None = None
        self.closed = False

    @property
    def description(self) -> str:
        return "configmap test/fake"

    async def get(self) -> ConfigSnapshot:
        if self.get_error is not None:
            raise self.get_error
        return self.initial

    async def subscribe(self) -> AsyncIterator[ConfigSnapshot]:
        while True:
            item = await self.updates.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True

    def push(self, item) -> None:
        self.updates.put_nowait(item)


class RecordingTrigger(ReloadTrigger):
    """Trigger that records calls and can be told to fail or stall."""

    def __init__(self, delay: float = 0.0):
        self.calls = 0
        self.fail_with: str | None = None
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.called = asyncio.Event()

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.HTTP

    async def reload(self) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.calls += 1
            self.called.set()
            if self.fail_with:
                raise ReloadTriggerError(self.fail_with)
        finally:
            self.active -= 1


class FakeClock:
    """Monotonic clock advanced by a fake sleep."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


def snapshot(**entries: str) -> ConfigSnapshot:
    """Build a snapshot from keyword text entries (``a_conf`` -> ``a.conf``)."""
    return ConfigSnapshot.from_text({k.replace("_", "."): v for k, v in entries.items()})


async def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Timed out waiting for condition")
        await asyncio.sleep(interval)


