"""
Shared pytest fixtures for faultline tests.

This module provides:
- A manually advanced monotonic clock for circuit breaker windows
- A recording sleep so retry schedules run without waiting
- Operation factories that fail a scripted number of times
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure faultline package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class FakeClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


class RecordedSleep:
    """Awaitable sleep that records requested delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def delays_ms(self) -> list[float]:
        return [round(d * 1000, 6) for d in self.delays]


class FlakyOperation:
    """Async operation raising the scripted errors before returning ``result``."""

    def __init__(self, errors: list[BaseException], result: Any = "ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0
        self.__name__ = "flaky_operation"

    async def __call__(self) -> Any:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorded_sleep() -> RecordedSleep:
    return RecordedSleep()


@pytest.fixture
def flaky():
    """Factory fixture: flaky([err, err], result="ok")."""

    def factory(errors: list[BaseException], result: Any = "ok") -> FlakyOperation:
        return FlakyOperation(errors, result)

    return factory
