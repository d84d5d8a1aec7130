"""
Takeamin Assistant — Notification Scheduler.

Translates a plan's frequency rule into concrete platform triggers and
cancels triggers by handle. Depends only on the PlatformScheduler port.

Known limitation: end_date is honoured for every-other-day batches only.
Repeating triggers (daily, weekly, custom) keep firing past the end date
until something cancels them.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from src.data.models import (
    CalendarTrigger,
    CancelResult,
    DateTrigger,
    Frequency,
    PermissionState,
    ReminderContent,
    Weekday,
)

if TYPE_CHECKING:
    from src.data.models import Plan, Trigger
    from src.ports.notification_port import PlatformScheduler

logger = logging.getLogger(__name__)

DEFAULT_EVERY_OTHER_DAY_OCCURRENCES = 7


def build_triggers(
    plan: Plan,
    effective_time: time,
    now: datetime,
    occurrences: int = DEFAULT_EVERY_OTHER_DAY_OCCURRENCES,
) -> list[Trigger]:
    """Return the triggers a plan's frequency rule produces, without I/O.

    Wall-clock only: hour/minute are used as-is, no timezone conversion.
    """
    today = now.date()
    if plan.end_date < today:
        return []

    hour, minute = effective_time.hour, effective_time.minute

    if plan.frequency is Frequency.DAILY:
        return [CalendarTrigger(hour, minute)]

    if plan.frequency is Frequency.WEEKLY:
        return [CalendarTrigger(hour, minute, Weekday.from_ordinal(today.weekday()))]

    if plan.frequency is Frequency.CUSTOM:
        days = dict.fromkeys(plan.custom_days or [])
        return [CalendarTrigger(hour, minute, day) for day in days]

    # Every other day: no native "every N days" repeat, so a bounded batch
    first = datetime.combine(today, effective_time)
    if first <= now:
        first += timedelta(days=1)
    triggers: list[Trigger] = []
    for i in range(occurrences):
        at = first + timedelta(days=2 * i)
        if at.date() > plan.end_date:
            break
        triggers.append(DateTrigger(at))
    return triggers


def default_content(plan: Plan) -> ReminderContent:
    """Plain reminder text, used when no smart content is supplied."""
    body = f"Your {plan.vitamin} is ready"
    if plan.dosage:
        body += f" ({plan.dosage.display_text})"
    return ReminderContent(
        title="Time to Takeamin!",
        body=body,
        plan_id=plan.id,
        vitamin=plan.vitamin,
    )


class NotificationScheduler:
    """Schedules and cancels a plan's reminders on the platform scheduler."""

    def __init__(
        self,
        platform: PlatformScheduler,
        every_other_day_occurrences: int | None = None,
        timezone: str | None = None,
    ) -> None:
        if every_other_day_occurrences is None or timezone is None:
            from src.config import settings
            if every_other_day_occurrences is None:
                every_other_day_occurrences = settings.EVERY_OTHER_DAY_OCCURRENCES
            timezone = timezone or settings.TIMEZONE

        self._platform = platform
        self._occurrences = every_other_day_occurrences
        self._tz = ZoneInfo(timezone)

    @property
    def platform(self) -> PlatformScheduler:
        return self._platform

    def now(self) -> datetime:
        """Current wall-clock time in the configured zone, as a naive datetime."""
        return datetime.now(self._tz).replace(tzinfo=None)

    def expected_handle_count(
        self,
        plan: Plan,
        effective_time: time | None = None,
        now: datetime | None = None,
    ) -> int:
        """How many handles scheduling the plan right now would produce."""
        return len(build_triggers(
            plan, effective_time or plan.reminder_time, now or self.now(),
            self._occurrences,
        ))

    def max_handle_count(self, plan: Plan) -> int:
        """Upper bound on handles a plan can legitimately own."""
        if plan.frequency is Frequency.CUSTOM:
            return len(set(plan.custom_days or []))
        if plan.frequency is Frequency.EVERY_OTHER_DAY:
            return self._occurrences
        return 1

    async def schedule(
        self,
        plan: Plan,
        effective_time: time | None = None,
        content: ReminderContent | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        """Register the plan's triggers and return the handles that succeeded.

        Returns an empty list (never raises) when permission is not granted.
        A partial failure returns the successful subset.
        """
        state = await self._platform.get_permission_state()
        if state is not PermissionState.GRANTED:
            logger.warning(
                "Notification permission is %s; not scheduling '%s'",
                state.value, plan.vitamin,
            )
            return []

        effective_time = effective_time or plan.reminder_time
        content = content or default_content(plan)
        triggers = build_triggers(
            plan, effective_time, now or self.now(), self._occurrences,
        )
        if not triggers:
            logger.info("Plan %s ('%s') produces no triggers", plan.id, plan.vitamin)
            return []

        handles: list[str] = []
        for trigger in triggers:
            try:
                handle = await self._platform.schedule_trigger(content, trigger)
            except Exception as exc:
                logger.error(
                    "Failed to register trigger %s for plan %s: %s",
                    trigger, plan.id, exc,
                )
                continue
            handles.append(handle)

        if len(handles) < len(triggers):
            logger.warning(
                "Partial scheduling for '%s': %d of %d triggers registered",
                plan.vitamin, len(handles), len(triggers),
            )
        else:
            logger.info(
                "Scheduled %d reminder(s) for '%s' at %02d:%02d (%s)",
                len(handles), plan.vitamin, effective_time.hour,
                effective_time.minute, plan.frequency.value,
            )
        return handles

    async def cancel(self, handles: list[str]) -> CancelResult:
        """Cancel each handle independently; one failure never aborts the batch."""
        result = CancelResult()
        if not handles:
            return result

        for handle in handles:
            try:
                await self._platform.cancel(handle)
            except Exception as exc:
                logger.error("Error cancelling notification %s: %s", handle, exc)
                result.failed += 1
                continue
            result.cancelled += 1

        logger.info(
            "Cancellation complete: %d cancelled, %d failed",
            result.cancelled, result.failed,
        )
        return result

    async def cancel_all(self) -> None:
        """Wipe every live trigger, whoever owns it. Reset only."""
        await self._platform.cancel_all()
        logger.warning("All scheduled notifications cancelled")
