"""
Takeamin Assistant — Reconciliation Auditor.

Detects drift between the handles persisted on plans and the handles the
platform scheduler actually holds, and repairs it on explicit request:

    orphaned   — live triggers no plan claims        → cleanup_orphaned()
    missing    — plan handles no longer live          → repair_missing()
    duplicated — repeated ids / more than frequency allows (report only)

reset_system() is the escape hatch: wipe everything, rebuild from plans.
Repairs never run on their own; every per-item failure is logged, skipped,
and counted.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.core.reminders import ReminderService
    from src.data.models import Plan, ScheduledNotification
    from src.data.repository import PlanRepository

logger = logging.getLogger(__name__)


@dataclass
class DuplicateEntry:
    """A plan whose handle list is larger or more repetitive than it should be."""

    plan_id: str
    handles: list[str]
    repeated: list[str] = field(default_factory=list)
    excess: int = 0


@dataclass
class AuditReport:
    total_scheduled: int
    total_plans: int
    orphaned: list[ScheduledNotification] = field(default_factory=list)
    tracked: list[str] = field(default_factory=list)
    missing: dict[str, list[str]] = field(default_factory=dict)
    duplicated: list[DuplicateEntry] = field(default_factory=list)
    summary: str = ""

    @property
    def missing_count(self) -> int:
        return sum(len(ids) for ids in self.missing.values())

    @property
    def has_issues(self) -> bool:
        return bool(self.orphaned or self.missing)


@dataclass
class RepairResult:
    plans_repaired: int = 0
    plans_failed: int = 0
    handles_cancelled: int = 0
    handles_scheduled: int = 0
    cancel_failed: int = 0


def _summarize(report: AuditReport) -> str:
    issues = []
    if report.orphaned:
        issues.append(f"{len(report.orphaned)} orphaned")
    if report.missing:
        issues.append(f"{report.missing_count} missing")
    if report.duplicated:
        issues.append(f"{len(report.duplicated)} duplicated")
    if issues:
        return "Issues found: " + ", ".join(issues)
    return "All notifications are properly synchronized!"


class ReconciliationAuditor:
    """Three-way diff of persisted plans against the live scheduler queue."""

    def __init__(self, repository: PlanRepository, reminders: ReminderService) -> None:
        self._repo = repository
        self._reminders = reminders
        self._scheduler = reminders.scheduler

    def _find_duplicates(
        self, plans: list[Plan], live_ids: set[str],
    ) -> list[DuplicateEntry]:
        """Repeated ids, or more live handles than the frequency allows.

        Handles that are already missing do not count toward the excess.
        """
        claims = Counter(h for plan in plans for h in plan.notification_handles)
        entries: list[DuplicateEntry] = []
        for plan in plans:
            handles = plan.notification_handles
            repeated = sorted(
                h for h in set(handles)
                if handles.count(h) > 1 or claims[h] > 1
            )
            live = {h for h in handles if h in live_ids}
            excess = max(0, len(live) - self._scheduler.max_handle_count(plan))
            if repeated or excess:
                entries.append(DuplicateEntry(
                    plan_id=plan.id, handles=list(handles),
                    repeated=repeated, excess=excess,
                ))
        return entries

    async def audit(self) -> AuditReport:
        """Read plans and the live queue and classify every handle. Read-only."""
        live = await self._scheduler.platform.list_scheduled()
        plans = await self._repo.load_plans()

        claimed = {h for plan in plans for h in plan.notification_handles}
        live_ids = {n.handle_id for n in live}

        report = AuditReport(total_scheduled=len(live), total_plans=len(plans))
        report.orphaned = [n for n in live if n.handle_id not in claimed]
        report.tracked = [n.handle_id for n in live if n.handle_id in claimed]
        for plan in plans:
            absent = [h for h in plan.notification_handles if h not in live_ids]
            if absent:
                report.missing[plan.id] = absent
        report.duplicated = self._find_duplicates(plans, live_ids)
        report.summary = _summarize(report)

        logger.info(
            "Audit: %d live, %d plans, %d orphaned, %d missing, %d duplicated",
            report.total_scheduled, report.total_plans, len(report.orphaned),
            report.missing_count, len(report.duplicated),
        )
        for orphan in report.orphaned:
            logger.info(
                "  orphaned %s ('%s', tagged plan %s)",
                orphan.handle_id, orphan.content.vitamin, orphan.content.plan_id,
            )
        return report

    async def cleanup_orphaned(self) -> int:
        """Cancel every live trigger no plan claims. Returns how many went."""
        report = await self.audit()
        if not report.orphaned:
            logger.info("No orphaned notifications found - system is clean")
            return 0

        result = await self._scheduler.cancel([n.handle_id for n in report.orphaned])
        logger.info(
            "Orphan cleanup: %d removed, %d failed", result.cancelled, result.failed,
        )
        return result.cancelled

    async def _reschedule(self, plan_id: str, result: RepairResult) -> None:
        # Re-read right before writing: the plan may have changed or gone
        plan = await self._repo.get_plan(plan_id)
        if plan is None:
            logger.warning("Plan %s disappeared before repair", plan_id)
            return

        cancelled = await self._scheduler.cancel(plan.notification_handles)
        result.handles_cancelled += cancelled.cancelled
        result.cancel_failed += cancelled.failed

        now = self._scheduler.now()
        outcome = await self._reminders.schedule_plan(plan, now=now)
        expected = self._scheduler.expected_handle_count(plan, outcome.decision.time, now)
        if len(outcome.handles) < expected:
            logger.error(
                "Repair: plan %s got %d of %d handles",
                plan_id, len(outcome.handles), expected,
            )
            result.plans_failed += 1
        else:
            result.plans_repaired += 1
        result.handles_scheduled += len(outcome.handles)

        plan.notification_handles = outcome.handles
        await self._repo.upsert_plan(plan)

    async def repair_missing(self) -> RepairResult:
        """Re-schedule every plan the audit reports as under-scheduled."""
        report = await self.audit()
        result = RepairResult()
        for plan_id in report.missing:
            await self._reschedule(plan_id, result)
        logger.info(
            "Repair: %d plan(s) repaired, %d failed", result.plans_repaired,
            result.plans_failed,
        )
        return result

    async def reset_system(self) -> RepairResult:
        """Destructive: cancel every live trigger, then rebuild from plans.

        Needs explicit confirmation at the UI boundary.
        """
        logger.warning("Resetting notification system")
        await self._scheduler.cancel_all()

        result = RepairResult()
        plans = await self._repo.load_plans()
        fresh_handles: dict[str, list[str]] = {}
        now = self._scheduler.now()
        for plan in plans:
            outcome = await self._reminders.schedule_plan(plan, now=now)
            expected = self._scheduler.expected_handle_count(
                plan, outcome.decision.time, now,
            )
            if len(outcome.handles) < expected:
                logger.error(
                    "Reset: plan %s got %d of %d handles",
                    plan.id, len(outcome.handles), expected,
                )
                result.plans_failed += 1
            else:
                result.plans_repaired += 1
            result.handles_scheduled += len(outcome.handles)
            fresh_handles[plan.id] = outcome.handles

        # Re-read before writing; plans deleted meanwhile lose their new handles
        current = await self._repo.load_plans()
        current_ids = {p.id for p in current}
        for plan in current:
            if plan.id in fresh_handles:
                plan.notification_handles = fresh_handles[plan.id]
        await self._repo.save_plans(current)

        stale = [
            h for plan_id, handles in fresh_handles.items()
            if plan_id not in current_ids for h in handles
        ]
        if stale:
            await self._scheduler.cancel(stale)

        logger.info(
            "Reset complete: %d plan(s) rebuilt with %d handle(s), %d failed",
            result.plans_repaired, result.handles_scheduled, result.plans_failed,
        )
        return result
