"""Notification health summary for diagnostic display. Read-only."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.data.models import PermissionState

if TYPE_CHECKING:
    from src.core.reconciliation import ReconciliationAuditor
    from src.ports.notification_port import PlatformScheduler

logger = logging.getLogger(__name__)


@dataclass
class NotificationStatus:
    has_permissions: bool
    total_scheduled: int
    total_plans: int
    has_issues: bool
    summary: str


class StatusReporter:
    def __init__(self, platform: PlatformScheduler, auditor: ReconciliationAuditor) -> None:
        self._platform = platform
        self._auditor = auditor

    async def get_status(self) -> NotificationStatus:
        """Permission state plus counts from a fresh, detection-only audit."""
        state = await self._platform.get_permission_state()
        has_permissions = state is PermissionState.GRANTED

        report = await self._auditor.audit()
        has_issues = report.has_issues

        if not has_permissions:
            summary = "Permissions not granted"
        elif has_issues:
            summary = "System has issues - run audit"
        else:
            summary = "System healthy"

        return NotificationStatus(
            has_permissions=has_permissions,
            total_scheduled=report.total_scheduled,
            total_plans=report.total_plans,
            has_issues=has_issues,
            summary=summary,
        )
