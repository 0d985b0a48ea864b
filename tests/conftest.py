"""Pytest configuration and fixtures."""

import pytest
from helpers import FakeClock, FakeConfigSource, RecordingTrigger, snapshot


@pytest.fixture
def fake_source() -> FakeConfigSource:
    return FakeConfigSource(snapshot(a_conf="x=1"))


@pytest.fixture
def recording_trigger() -> RecordingTrigger:
    return RecordingTrigger()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
