"""
pytest configuration and fixtures.

Loads environment variables from .env file for all tests and provides the
shared store, clock, scheduler and delivery fixtures.
"""

import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from dotenv import load_dotenv

from returnsync.db import DatabaseConnection
from returnsync.errors import SchedulingDenied
from returnsync.models.notification import Notification
from returnsync.worker.notifications import NotificationDelivery
from returnsync.worker.scheduler import JobScheduler


def pytest_configure(config):
    """Load .env file before running tests"""
    # Find the project root (where .env is located)
    project_root = Path(__file__).parent.parent
    env_file = project_root / ".env"

    if env_file.exists():
        load_dotenv(env_file)


class FakeClock:
    """Settable clock, callable like ``datetime.now``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingDelivery(NotificationDelivery):
    def __init__(self):
        self.sent: list[Notification] = []
        self.delay = 0.0

    def deliver(self, notification: Notification) -> None:
        if self.delay:
            time.sleep(self.delay)
        self.sent.append(notification)


class FakeScheduler(JobScheduler):
    """Records schedule requests, keeping only the latest per job id."""

    def __init__(self):
        super().__init__()
        self.pending: dict[str, datetime] = {}
        self.requests: list[tuple[str, datetime]] = []
        self.deny = False
        self.delay = 0.0

    def schedule_next(self, job_id: str, not_before: datetime) -> str:
        if self.delay:
            time.sleep(self.delay)
        self.requests.append((job_id, not_before))
        if self.deny:
            raise SchedulingDenied("host refused")
        self.pending[job_id] = not_before
        return f"fake/{job_id}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 26, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def database(tmp_path: Path):
    """Initialized SQLite store in a temporary directory"""
    db = DatabaseConnection(f"sqlite:///{tmp_path / 'returnsync.db'}")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def fake_scheduler() -> FakeScheduler:
    return FakeScheduler()
