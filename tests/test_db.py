"""Tests for src.data.db and src.data.repository — SQLite key-value persistence."""

import pytest
from datetime import date, time

from src.data.db import SqliteKeyValueStore
from src.data.models import (
    BehaviorProfile,
    Frequency,
    PermissionState,
    Plan,
    SmartReminderSettings,
    TimingProfile,
)
from src.data.repository import PLANS_KEY, PlanRepository
from src.ports.store_port import StoreError


def _plan(vitamin="Vitamin D", handles=None, plan_id=None):
    plan = Plan(vitamin, Frequency.DAILY, time(8, 0), date(2030, 1, 1))
    if plan_id:
        plan.id = plan_id
    plan.notification_handles = list(handles or [])
    return plan


class TestKeyValueStore:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, kv_store):
        assert await kv_store.get("nope") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, kv_store):
        await kv_store.set("k", "v1")
        await kv_store.set("k", "v2")
        assert await kv_store.get("k") == "v2"

    @pytest.mark.asyncio
    async def test_remove(self, kv_store):
        await kv_store.set("k", "v")
        await kv_store.remove("k")
        assert await kv_store.get("k") is None

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_db_path):
        await SqliteKeyValueStore(db_path=tmp_db_path).set("k", "v")
        assert await SqliteKeyValueStore(db_path=tmp_db_path).get("k") == "v"

    @pytest.mark.asyncio
    async def test_sqlite_error_becomes_store_error(self, kv_store, monkeypatch):
        import sqlite3

        def boom(*args):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(kv_store, "_get_sync", boom)
        with pytest.raises(StoreError):
            await kv_store.get("k")


class TestPlanRepository:
    @pytest.mark.asyncio
    async def test_empty_store_has_no_plans(self, repository):
        assert await repository.load_plans() == []

    @pytest.mark.asyncio
    async def test_upsert_appends_then_replaces(self, repository):
        plan = _plan(handles=["h1"])
        await repository.upsert_plan(plan)
        plan.notification_handles = ["h2"]
        await repository.upsert_plan(plan)

        plans = await repository.load_plans()
        assert len(plans) == 1
        assert plans[0].notification_handles == ["h2"]

    @pytest.mark.asyncio
    async def test_get_and_remove(self, repository):
        await repository.save_plans([_plan(plan_id="a"), _plan(plan_id="b")])
        assert (await repository.get_plan("b")).id == "b"
        assert await repository.remove_plan("a") is True
        assert await repository.remove_plan("a") is False
        assert [p.id for p in await repository.load_plans()] == ["b"]

    @pytest.mark.asyncio
    async def test_corrupt_json_raises_store_error(self, repository, kv_store):
        await kv_store.set(PLANS_KEY, "{not json")
        with pytest.raises(StoreError):
            await repository.load_plans()


class TestSmartState:
    @pytest.mark.asyncio
    async def test_smart_settings_default_off(self, repository):
        assert await repository.load_smart_settings() == SmartReminderSettings()

    @pytest.mark.asyncio
    async def test_smart_settings_saved(self, repository):
        await repository.save_smart_settings(SmartReminderSettings(True, True, False))
        smart = await repository.load_smart_settings()
        assert smart.enabled and smart.adaptive_timing and not smart.behavior_learning

    @pytest.mark.asyncio
    async def test_behavior_profile_lifecycle(self, repository):
        assert await repository.load_behavior_profile() is None
        await repository.save_behavior_profile(BehaviorProfile(hour_scores={9: 3.0}))
        profile = await repository.load_behavior_profile()
        assert profile.hour_scores == {9: 3.0}
        assert profile.last_updated
        await repository.reset_behavior_profile()
        assert await repository.load_behavior_profile() is None

    @pytest.mark.asyncio
    async def test_timing_profile_default(self, repository):
        assert await repository.load_timing_profile() == TimingProfile()

    @pytest.mark.asyncio
    async def test_permission_default_undetermined(self, repository):
        assert await repository.load_permission() is PermissionState.UNDETERMINED
        await repository.save_permission(PermissionState.GRANTED)
        assert await repository.load_permission() is PermissionState.GRANTED
