"""Tests for src.core.status — health summary."""

import pytest
from datetime import date, time

from src.core.status import StatusReporter
from src.data.models import CalendarTrigger, Frequency, PermissionState, ReminderContent


class TestGetStatus:
    @pytest.mark.asyncio
    async def test_healthy(self, platform, auditor, reminders):
        await reminders.create_plan("Iron", Frequency.DAILY, time(8, 0), date(2030, 1, 1))
        status = await StatusReporter(platform, auditor).get_status()
        assert status.has_permissions
        assert not status.has_issues
        assert status.summary == "System healthy"
        assert (status.total_scheduled, status.total_plans) == (1, 1)

    @pytest.mark.asyncio
    async def test_issues(self, platform, auditor):
        platform.inject("h1", ReminderContent("t", "b", "x", "Iron"), CalendarTrigger(8, 0))
        status = await StatusReporter(platform, auditor).get_status()
        assert status.has_issues
        assert status.summary == "System has issues - run audit"

    @pytest.mark.asyncio
    async def test_no_permission_wins(self, platform, auditor):
        platform.permission = PermissionState.UNDETERMINED
        platform.inject("h1", ReminderContent("t", "b", "x", "Iron"), CalendarTrigger(8, 0))
        status = await StatusReporter(platform, auditor).get_status()
        assert not status.has_permissions
        assert status.summary == "Permissions not granted"
