"""
Shared pytest fixtures and configuration for fluxatom tests.
"""

import pytest

from fluxatom import MemoryStorage, reset_default_storage


@pytest.fixture(autouse=True)
def reset_storage():
    """Reset the shared default storage before each test to prevent state leakage."""
    reset_default_storage()


@pytest.fixture
def storage():
    """Provide a fresh MemoryStorage instance for tests that need it."""
    return MemoryStorage()


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Provide a manually advanced clock for window tests."""
    return ManualClock()
