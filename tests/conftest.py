"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides an in-memory platform scheduler plus a temp-file store.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("AUDIT_ON_STARTUP", "false")

import pytest

from src.data.models import PermissionState, ScheduledNotification
from src.ports.notification_port import SchedulerError


class FakePlatformScheduler:
    """In-memory PlatformScheduler.

    fail_schedule_after: refuse every trigger after the first N succeed.
    fail_cancel: handles whose cancellation raises.
    """

    def __init__(self, permission=PermissionState.GRANTED):
        self.permission = permission
        self.queue: dict[str, ScheduledNotification] = {}
        self.fail_schedule_after: int | None = None
        self.fail_cancel: set[str] = set()
        self.scheduled_calls = 0
        self.calls: list[tuple[str, str]] = []
        self._counter = 0

    async def schedule_trigger(self, content, trigger):
        if self.fail_schedule_after is not None and self.scheduled_calls >= self.fail_schedule_after:
            raise SchedulerError("platform refused trigger")
        self.scheduled_calls += 1
        self._counter += 1
        handle = f"h{self._counter}"
        self.queue[handle] = ScheduledNotification(handle, content, trigger)
        self.calls.append(("schedule", handle))
        return handle

    async def cancel(self, handle_id):
        if handle_id in self.fail_cancel:
            raise SchedulerError(f"cannot cancel {handle_id}")
        self.calls.append(("cancel", handle_id))
        self.queue.pop(handle_id, None)

    async def cancel_all(self):
        self.queue.clear()

    async def list_scheduled(self):
        return list(self.queue.values())

    async def get_permission_state(self):
        return self.permission

    async def request_permission(self):
        self.permission = PermissionState.GRANTED
        return self.permission

    # test helpers

    def inject(self, handle_id, content, trigger):
        """Put a trigger straight into the queue, bypassing our code."""
        self.queue[handle_id] = ScheduledNotification(handle_id, content, trigger)

    def drop(self, handle_id):
        """Simulate the platform silently losing a trigger."""
        self.queue.pop(handle_id, None)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_takeamin.db")


@pytest.fixture
def kv_store(tmp_db_path):
    from src.data.db import SqliteKeyValueStore
    return SqliteKeyValueStore(db_path=tmp_db_path)


@pytest.fixture
def repository(kv_store):
    from src.data.repository import PlanRepository
    return PlanRepository(kv_store)


@pytest.fixture
def platform():
    return FakePlatformScheduler()


@pytest.fixture
def scheduler(platform):
    from src.core.notification_scheduler import NotificationScheduler
    return NotificationScheduler(platform, every_other_day_occurrences=7)


@pytest.fixture
def reminders(repository, scheduler):
    from src.core.reminders import ReminderService
    from src.core.smart_timing import LearningThresholds
    return ReminderService(
        repository, scheduler, thresholds=LearningThresholds(), miss_threshold=3,
    )


@pytest.fixture
def auditor(repository, reminders):
    from src.core.reconciliation import ReconciliationAuditor
    return ReconciliationAuditor(repository, reminders)
