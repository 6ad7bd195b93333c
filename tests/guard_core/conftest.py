from __future__ import annotations

import pytest

from tests.guard_core.support.fakes import FakeLogger, ManualClock, ManualScheduler


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock() -> ManualClock:
    """Provide a manually advanced clock per test."""
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    """Provide a scheduler driven by the manual clock."""
    return ManualScheduler(clock)
