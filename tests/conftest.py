"""
Shared fixtures for workspace store tests.
"""

import pytest


class FakeClock:
    """Deterministic event clock, one second per tick."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1000) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def clock():
    """Create a deterministic clock."""
    return FakeClock()
