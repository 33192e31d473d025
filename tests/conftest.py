"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import date, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.review.models import Check, Screen  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep loguru quiet during tests."""
    from loguru import logger

    logger.remove()
    logger.add(sys.stderr, level="WARNING")
    yield
    logger.remove()


@pytest.fixture
def now():
    """A fixed reference time."""
    return datetime(2024, 5, 1, 9, 0, 0)


class FakeMarker:
    """In-memory last-played date."""

    def __init__(self, last: date | None = None):
        self.last = last

    def last_played_date(self):
        return self.last

    def mark_played(self, day):
        self.last = day


class ManualDefer:
    """Collects deferred continuations so tests decide when they fire."""

    def __init__(self):
        self.pending = []

    def __call__(self, delay, callback):
        self.pending.append((delay, callback))

    def flush(self):
        while self.pending:
            _, callback = self.pending.pop(0)
            callback()


@pytest.fixture
def marker():
    return FakeMarker()


@pytest.fixture
def manual_defer():
    return ManualDefer()


def expected_validator(check, answer):
    """Correct when the answer equals the check's expected value."""
    return answer == check.expected


@pytest.fixture
def validator():
    return expected_validator


def make_screens(count=3, item="two-sum"):
    """Interactive quiz screens whose expected answer is 'ok'."""
    return [
        Screen(
            id=f"{item}-s{i}",
            header=f"{item} question {i}",
            check=Check(id=f"{item}-c{i}", kind="quiz", expected="ok"),
        )
        for i in range(count)
    ]


@pytest.fixture
def screens():
    return make_screens()
