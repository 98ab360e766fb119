"""Shared test fixtures for chat-relay."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from chat_relay.config import CompletionSettings, Settings
from chat_relay.logs import LogManager
from chat_relay.store import DocumentStore


class FakeClock:
    """Callable clock that returns a controlled instant, advancing by *step* per call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def set(self, moment: datetime) -> None:
        self.now = moment

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Drop handlers that create_app/setup_logging attach so they don't leak between tests."""
    pkg_logger = logging.getLogger("chat_relay")
    before = list(pkg_logger.handlers)
    level = pkg_logger.level
    yield
    pkg_logger.handlers = before
    pkg_logger.setLevel(level)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def log_clock():
    """A clock that only moves when a test moves it."""
    return FakeClock(datetime(2025, 1, 15, 23, 59, 0, tzinfo=timezone.utc), step=timedelta(0))


@pytest.fixture
def store(tmp_path, clock):
    return DocumentStore(tmp_path / "data", clock=clock)


@pytest.fixture
def log_manager(tmp_path, log_clock):
    return LogManager(tmp_path / "logs", clock=log_clock, echo=False)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        admin_password="s3cret",
        completion=CompletionSettings(api_key="test-key", model="test-model", history_limit=4),
    )
