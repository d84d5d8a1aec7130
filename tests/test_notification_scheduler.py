"""Tests for src.core.notification_scheduler — frequency rules and cancellation."""

import pytest
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from src.core.notification_scheduler import (
    NotificationScheduler,
    build_triggers,
    default_content,
)
from src.data.models import (
    CalendarTrigger,
    DateTrigger,
    Dosage,
    Frequency,
    PermissionState,
    Plan,
    Weekday,
)

# Monday
NOW = datetime(2026, 10, 19, 10, 0)


def _plan(frequency=Frequency.DAILY, days=None, at=time(8, 0), end=date(2030, 1, 1)):
    return Plan("Vitamin D", frequency, at, end, custom_days=days)


class TestBuildTriggers:
    def test_daily_is_one_repeating_trigger(self):
        triggers = build_triggers(_plan(), time(8, 0), NOW)
        assert triggers == [CalendarTrigger(8, 0)]
        assert triggers[0].repeats_daily

    def test_weekly_anchors_to_today(self):
        triggers = build_triggers(_plan(Frequency.WEEKLY), time(8, 0), NOW)
        assert triggers == [CalendarTrigger(8, 0, Weekday.MONDAY)]

    def test_custom_one_per_day(self):
        days = [Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY]
        triggers = build_triggers(_plan(Frequency.CUSTOM, days), time(9, 30), NOW)
        assert triggers == [CalendarTrigger(9, 30, d) for d in days]

    def test_custom_duplicate_days_collapse(self):
        days = [Weekday.MONDAY, Weekday.MONDAY]
        assert len(build_triggers(_plan(Frequency.CUSTOM, days), time(9, 0), NOW)) == 1

    def test_effective_time_wins_over_plan_time(self):
        triggers = build_triggers(_plan(at=time(8, 0)), time(20, 15), NOW)
        assert triggers == [CalendarTrigger(20, 15)]

    def test_every_other_day_batch_starts_tomorrow_when_time_passed(self):
        triggers = build_triggers(_plan(Frequency.EVERY_OTHER_DAY), time(8, 0), NOW, 7)
        assert len(triggers) == 7
        assert all(isinstance(t, DateTrigger) for t in triggers)
        assert triggers[0].at == datetime(2026, 10, 20, 8, 0)
        gaps = {b.at - a.at for a, b in zip(triggers, triggers[1:])}
        assert gaps == {timedelta(days=2)}

    def test_every_other_day_batch_starts_today_when_ahead(self):
        triggers = build_triggers(_plan(Frequency.EVERY_OTHER_DAY), time(18, 0), NOW, 3)
        assert triggers[0].at == datetime(2026, 10, 19, 18, 0)

    def test_every_other_day_respects_end_date(self):
        plan = _plan(Frequency.EVERY_OTHER_DAY, end=date(2026, 10, 25))
        triggers = build_triggers(plan, time(8, 0), NOW, 7)
        assert [t.at.day for t in triggers] == [20, 22, 24]

    def test_expired_plan_has_no_triggers(self):
        assert build_triggers(_plan(end=date(2026, 10, 18)), time(8, 0), NOW) == []

    def test_deterministic(self):
        plan = _plan(Frequency.EVERY_OTHER_DAY)
        assert build_triggers(plan, time(8, 0), NOW) == build_triggers(plan, time(8, 0), NOW)


class TestDefaultContent:
    def test_carries_plan_id_and_dosage(self):
        plan = _plan()
        plan.dosage = Dosage(1000, "IU", "1,000 IU")
        content = default_content(plan)
        assert content.plan_id == plan.id
        assert "1,000 IU" in content.body


class TestSchedule:
    @pytest.mark.asyncio
    async def test_daily_returns_one_live_handle(self, scheduler, platform):
        handles = await scheduler.schedule(_plan(), now=NOW)
        assert len(handles) == 1
        assert set(platform.queue) == set(handles)

    @pytest.mark.asyncio
    async def test_custom_returns_one_handle_per_day(self, scheduler, platform):
        days = [Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY]
        handles = await scheduler.schedule(_plan(Frequency.CUSTOM, days), now=NOW)
        assert len(handles) == 3
        weekdays = [platform.queue[h].trigger.weekday for h in handles]
        assert weekdays == days

    @pytest.mark.asyncio
    async def test_no_permission_schedules_nothing(self, scheduler, platform):
        platform.permission = PermissionState.DENIED
        assert await scheduler.schedule(_plan(), now=NOW) == []
        assert platform.queue == {}

    @pytest.mark.asyncio
    async def test_partial_failure_returns_successful_subset(self, scheduler, platform):
        platform.fail_schedule_after = 2
        days = [Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY]
        handles = await scheduler.schedule(_plan(Frequency.CUSTOM, days), now=NOW)
        assert len(handles) == 2
        assert set(handles) == set(platform.queue)

    @pytest.mark.asyncio
    async def test_content_payload_names_plan(self, scheduler, platform):
        plan = _plan()
        handles = await scheduler.schedule(plan, now=NOW)
        assert platform.queue[handles[0]].content.plan_id == plan.id


class TestCancel:
    @pytest.mark.asyncio
    async def test_empty_list_is_noop(self, scheduler):
        result = await scheduler.cancel([])
        assert (result.cancelled, result.failed) == (0, 0)

    @pytest.mark.asyncio
    async def test_unknown_handle_is_not_an_error(self, scheduler):
        result = await scheduler.cancel(["ghost"])
        assert result.failed == 0

    @pytest.mark.asyncio
    async def test_idempotent(self, scheduler, platform):
        handles = await scheduler.schedule(_plan(), now=NOW)
        await scheduler.cancel(handles)
        await scheduler.cancel(handles)
        assert platform.queue == {}

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(self, scheduler, platform):
        days = [Weekday.MONDAY, Weekday.TUESDAY, Weekday.FRIDAY]
        handles = await scheduler.schedule(_plan(Frequency.CUSTOM, days), now=NOW)
        platform.fail_cancel = {handles[0]}
        result = await scheduler.cancel(handles)
        assert (result.cancelled, result.failed) == (2, 1)
        assert list(platform.queue) == [handles[0]]

    @pytest.mark.asyncio
    async def test_cancel_all(self, scheduler, platform):
        await scheduler.schedule(_plan(), now=NOW)
        await scheduler.schedule(_plan(Frequency.WEEKLY), now=NOW)
        await scheduler.cancel_all()
        assert platform.queue == {}


class TestHandleCounts:
    def test_expected_counts(self, scheduler):
        assert scheduler.expected_handle_count(_plan(), now=NOW) == 1
        assert scheduler.expected_handle_count(_plan(Frequency.EVERY_OTHER_DAY), now=NOW) == 7
        assert scheduler.expected_handle_count(_plan(end=date(2020, 1, 1)), now=NOW) == 0

    def test_max_counts(self, scheduler):
        days = [Weekday.MONDAY, Weekday.FRIDAY]
        assert scheduler.max_handle_count(_plan(Frequency.CUSTOM, days)) == 2
        assert scheduler.max_handle_count(_plan(Frequency.EVERY_OTHER_DAY)) == 7
        assert scheduler.max_handle_count(_plan(Frequency.WEEKLY)) == 1


class TestConfiguredTimezone:
    """Triggers are computed from the configured zone's clock, not the host's."""

    ZONE = "Pacific/Kiritimati"  # UTC+14, far from any CI host

    def test_now_follows_zone(self, platform):
        scheduler = NotificationScheduler(platform, 7, timezone=self.ZONE)
        expected = datetime.now(ZoneInfo(self.ZONE)).replace(tzinfo=None)
        assert abs(scheduler.now() - expected) < timedelta(seconds=5)

    @pytest.mark.asyncio
    async def test_every_other_day_first_trigger_is_in_the_future(self, platform):
        scheduler = NotificationScheduler(platform, 7, timezone=self.ZONE)
        soon = (scheduler.now() + timedelta(hours=1)).replace(second=0, microsecond=0)
        plan = _plan(Frequency.EVERY_OTHER_DAY, at=soon.time())

        handles = await scheduler.schedule(plan)

        first = platform.queue[handles[0]].trigger.at
        assert first == soon
        assert first > scheduler.now()

    @pytest.mark.asyncio
    async def test_weekly_anchors_to_zone_weekday(self, platform):
        scheduler = NotificationScheduler(platform, 7, timezone=self.ZONE)
        handles = await scheduler.schedule(_plan(Frequency.WEEKLY))
        weekday = platform.queue[handles[0]].trigger.weekday
        assert weekday is Weekday.from_ordinal(scheduler.now().weekday())
