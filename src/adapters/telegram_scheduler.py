"""Telegram job-queue adapter — implements PlatformScheduler.

Each trigger becomes one python-telegram-bot job whose name is the handle.
Repeating calendar triggers map to run_daily (every day, or one weekday);
absolute-date triggers map to run_once. Times are wall-clock in the
configured zone. Only jobs carrying our marker count as reminder triggers,
so unrelated jobs (snooze follow-ups) are never listed or wiped.

"Permission" is the user's opt-in, persisted through the repository.
"""

from __future__ import annotations

import logging
import uuid
from datetime import time as dt_time
from typing import TYPE_CHECKING, Awaitable, Callable
from zoneinfo import ZoneInfo

from src.data.models import (
    CalendarTrigger,
    DateTrigger,
    PermissionState,
    ReminderContent,
    ScheduledNotification,
)
from src.ports.notification_port import SchedulerError

if TYPE_CHECKING:
    from telegram.ext import ContextTypes, Job, JobQueue

    from src.data.models import Trigger
    from src.data.repository import PlanRepository

logger = logging.getLogger(__name__)

_MARKER = "takeamin_reminder"
_EVERY_DAY = (0, 1, 2, 3, 4, 5, 6)


def _job_days(trigger: CalendarTrigger) -> tuple[int, ...]:
    """Job-queue day numbers: 0 = Sunday … 6 = Saturday."""
    if trigger.weekday is None:
        return _EVERY_DAY
    return ((trigger.weekday.ordinal + 1) % 7,)


class TelegramJobScheduler:
    """PlatformScheduler backed by the bot's JobQueue."""

    def __init__(
        self,
        job_queue: JobQueue,
        repository: PlanRepository,
        on_fire: Callable[[ReminderContent], Awaitable[None]],
        timezone: str | None = None,
    ) -> None:
        if timezone is None:
            from src.config import settings
            timezone = settings.TIMEZONE

        self._job_queue = job_queue
        self._repo = repository
        self._on_fire = on_fire
        self._tz = ZoneInfo(timezone)

    async def _fire(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        content: ReminderContent = context.job.data["content"]
        logger.info("Reminder %s fired for '%s'", context.job.name, content.vitamin)
        await self._on_fire(content)

    def _reminder_jobs(self) -> list[Job]:
        return [
            job for job in self._job_queue.jobs()
            if isinstance(job.data, dict) and job.data.get(_MARKER) and not job.removed
        ]

    # -- PlatformScheduler ------------------------------------------------------

    async def schedule_trigger(self, content: ReminderContent, trigger: Trigger) -> str:
        handle = uuid.uuid4().hex
        data = {_MARKER: True, "content": content, "trigger": trigger}
        try:
            if isinstance(trigger, CalendarTrigger):
                self._job_queue.run_daily(
                    self._fire,
                    time=dt_time(trigger.hour, trigger.minute, tzinfo=self._tz),
                    days=_job_days(trigger),
                    name=handle,
                    data=data,
                )
            elif isinstance(trigger, DateTrigger):
                self._job_queue.run_once(
                    self._fire,
                    when=trigger.at.replace(tzinfo=self._tz),
                    name=handle,
                    data=data,
                )
            else:
                raise SchedulerError(f"Unsupported trigger: {trigger!r}")
        except SchedulerError:
            raise
        except Exception as exc:
            raise SchedulerError(f"Job queue rejected trigger {trigger!r}: {exc}") from exc
        return handle

    async def cancel(self, handle_id: str) -> None:
        for job in self._job_queue.get_jobs_by_name(handle_id):
            job.schedule_removal()

    async def cancel_all(self) -> None:
        jobs = self._reminder_jobs()
        for job in jobs:
            job.schedule_removal()
        logger.info("Removed %d reminder job(s)", len(jobs))

    async def list_scheduled(self) -> list[ScheduledNotification]:
        return [
            ScheduledNotification(
                handle_id=job.name,
                content=job.data["content"],
                trigger=job.data["trigger"],
            )
            for job in self._reminder_jobs()
        ]

    async def get_permission_state(self) -> PermissionState:
        return await self._repo.load_permission()

    async def request_permission(self) -> PermissionState:
        await self._repo.save_permission(PermissionState.GRANTED)
        logger.info("Notification permission granted")
        return PermissionState.GRANTED

    async def revoke_permission(self) -> PermissionState:
        await self._repo.save_permission(PermissionState.DENIED)
        logger.info("Notification permission revoked")
        return PermissionState.DENIED
