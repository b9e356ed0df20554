"""Shared fixtures for accesscore tests."""

from __future__ import annotations

import pytest

from accesscore import AccessEngine


class FakeClock:
    """Manually advanced wall clock (unix seconds)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(clock: FakeClock) -> AccessEngine:
    return AccessEngine(clock=clock)
