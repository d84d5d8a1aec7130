"""
Takeamin Assistant — Reminder Service.

Owns the plan lifecycle: create, edit (full cancel-and-reschedule) and
delete, plus the smart schedule of a single plan. All calls for one plan run
sequentially: cancellation is awaited before anything new is scheduled, and
the plan record is written last.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import TYPE_CHECKING

from src.core.behavior import record_response
from src.core.smart_timing import (
    LearningThresholds,
    TimingDecision,
    build_reminder_content,
    calculate_optimal_time,
)
from src.data.models import (
    Dosage,
    Frequency,
    Plan,
    ResponseType,
    Weekday,
)

if TYPE_CHECKING:
    from src.core.notification_scheduler import NotificationScheduler
    from src.data.repository import PlanRepository

logger = logging.getLogger(__name__)


class PlanNotFoundError(LookupError):
    """Raised when an operation names a plan id that is not stored."""


@dataclass
class ScheduleOutcome:
    handles: list[str]
    decision: TimingDecision
    cancelled: int = 0
    cancel_failed: int = 0

    @property
    def scheduling_available(self) -> bool:
        """Zero handles means scheduling is unavailable, not an error."""
        return bool(self.handles)


class ReminderService:
    """Plan lifecycle on top of the repository and the scheduler."""

    def __init__(
        self,
        repository: PlanRepository,
        scheduler: NotificationScheduler,
        thresholds: LearningThresholds | None = None,
        miss_threshold: int | None = None,
    ) -> None:
        if thresholds is None or miss_threshold is None:
            from src.config import settings
            thresholds = thresholds or LearningThresholds.from_settings()
            if miss_threshold is None:
                miss_threshold = settings.CONSECUTIVE_MISS_THRESHOLD

        self._repo = repository
        self._scheduler = scheduler
        self._thresholds = thresholds
        self._miss_threshold = miss_threshold

    @property
    def scheduler(self) -> NotificationScheduler:
        return self._scheduler

    async def schedule_plan(self, plan: Plan, now: datetime | None = None) -> ScheduleOutcome:
        """Compute the effective time and register the plan's triggers.

        Does not persist; the caller writes the returned handles. "now" is
        wall-clock time in the configured zone.
        """
        now = now or self._scheduler.now()
        smart = await self._repo.load_smart_settings()
        behavior = await self._repo.load_behavior_profile()
        timing = await self._repo.load_timing_profile()
        decision = calculate_optimal_time(
            plan.reminder_time,
            plan.vitamin,
            smart,
            behavior=behavior,
            timing=timing,
            thresholds=self._thresholds,
        )
        content = build_reminder_content(
            plan, smart, behavior, miss_threshold=self._miss_threshold,
        )
        handles = await self._scheduler.schedule(
            plan, decision.time, content=content, now=now,
        )
        return ScheduleOutcome(handles=handles, decision=decision)

    # -- lifecycle -------------------------------------------------------------

    async def create_plan(
        self,
        vitamin: str,
        frequency: Frequency,
        reminder_time: time,
        end_date: date,
        custom_days: list[Weekday] | None = None,
        dosage: Dosage | None = None,
    ) -> tuple[Plan, ScheduleOutcome]:
        """Create a plan, schedule it, then persist it with its handles."""
        plan = Plan(
            vitamin=vitamin,
            frequency=frequency,
            reminder_time=reminder_time,
            end_date=end_date,
            custom_days=custom_days,
            dosage=dosage,
        )
        outcome = await self.schedule_plan(plan)
        plan.notification_handles = outcome.handles
        await self._repo.upsert_plan(plan)

        logger.info(
            "Plan %s created for '%s' (%s) with %d handle(s)",
            plan.id, vitamin, frequency.value, len(outcome.handles),
        )
        return plan, outcome

    async def edit_plan(
        self,
        plan_id: str,
        *,
        reminder_time: time | None = None,
        frequency: Frequency | None = None,
        custom_days: list[Weekday] | None = None,
        end_date: date | None = None,
    ) -> tuple[Plan, ScheduleOutcome]:
        """Full replace: cancel old handles, schedule new ones, then persist.

        Raises PlanNotFoundError for an unknown id.
        """
        plan = await self._repo.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)

        new_frequency = frequency or plan.frequency
        if new_frequency is Frequency.CUSTOM:
            new_days = custom_days if custom_days is not None else plan.custom_days
        else:
            new_days = None

        updated = Plan(
            id=plan.id,
            vitamin=plan.vitamin,
            frequency=new_frequency,
            custom_days=new_days,
            reminder_time=reminder_time or plan.reminder_time,
            end_date=end_date or plan.end_date,
            created_date=plan.created_date,
            dosage=plan.dosage,
        )

        cancel_result = await self._scheduler.cancel(plan.notification_handles)
        outcome = await self.schedule_plan(updated)
        outcome.cancelled = cancel_result.cancelled
        outcome.cancel_failed = cancel_result.failed
        updated.notification_handles = outcome.handles
        await self._repo.upsert_plan(updated)

        logger.info(
            "Plan %s edited: %d old handle(s) cancelled, %d new",
            plan.id, cancel_result.cancelled, len(outcome.handles),
        )
        return updated, outcome

    async def delete_plan(self, plan_id: str) -> Plan:
        """Cancel every handle of a plan, then remove the record.

        If cancellation partly fails the leftovers surface as orphans in the
        next audit.
        """
        plan = await self._repo.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)

        result = await self._scheduler.cancel(plan.notification_handles)
        if result.failed:
            logger.warning(
                "Plan %s deleted with %d handle(s) left behind", plan_id, result.failed,
            )
        await self._repo.remove_plan(plan_id)
        return plan

    async def list_plans(self) -> list[Plan]:
        return await self._repo.load_plans()

    # -- learning --------------------------------------------------------------

    async def record_response(
        self, response: ResponseType, at: datetime | None = None,
    ) -> bool:
        """Feed a reminder response into the behavior profile.

        Returns False (and records nothing) when learning is off.
        """
        smart = await self._repo.load_smart_settings()
        if not smart.behavior_learning:
            return False

        profile = await self._repo.load_behavior_profile()
        profile = record_response(profile, response, at or self._scheduler.now())
        await self._repo.save_behavior_profile(profile)
        return True
