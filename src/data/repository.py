"""
Takeamin Assistant — Typed repository over the key-value store.

The plan list is read-modify-write as a whole: one JSON array under one key.
Callers that repair state must re-read immediately before writing.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.data.models import (
    BehaviorProfile,
    PermissionState,
    Plan,
    SmartReminderSettings,
    TimingProfile,
)
from src.ports.store_port import StoreError

if TYPE_CHECKING:
    from src.ports.store_port import KeyValueStore

logger = logging.getLogger(__name__)

PLANS_KEY = "vitaminPlans"
SMART_SETTINGS_KEY = "smartReminderSettings"
BEHAVIOR_PROFILE_KEY = "notificationBehaviorProfile"
TIMING_PROFILE_KEY = "smartTimingProfile"
PERMISSION_KEY = "notificationPermission"


class PlanRepository:
    """Typed access to everything the reminder core persists."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def _read_json(self, key: str):
        raw = await self._store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreError(f"Corrupt JSON under {key!r}: {exc}") from exc

    async def _write_json(self, key: str, value) -> None:
        await self._store.set(key, json.dumps(value))

    # -- plans ---------------------------------------------------------------

    async def load_plans(self) -> list[Plan]:
        data = await self._read_json(PLANS_KEY)
        if not data:
            return []
        return [Plan.from_dict(item) for item in data]

    async def save_plans(self, plans: list[Plan]) -> None:
        await self._write_json(PLANS_KEY, [p.to_dict() for p in plans])
        logger.debug("Saved %d plans", len(plans))

    async def get_plan(self, plan_id: str) -> Plan | None:
        for plan in await self.load_plans():
            if plan.id == plan_id:
                return plan
        return None

    async def upsert_plan(self, plan: Plan) -> None:
        """Replace the plan with the same id, or append it."""
        plans = await self.load_plans()
        for i, existing in enumerate(plans):
            if existing.id == plan.id:
                plans[i] = plan
                break
        else:
            plans.append(plan)
        await self.save_plans(plans)

    async def remove_plan(self, plan_id: str) -> bool:
        plans = await self.load_plans()
        remaining = [p for p in plans if p.id != plan_id]
        if len(remaining) == len(plans):
            return False
        await self.save_plans(remaining)
        logger.info("Plan %s removed from store", plan_id)
        return True

    # -- smart reminder state --------------------------------------------------

    async def load_smart_settings(self) -> SmartReminderSettings:
        data = await self._read_json(SMART_SETTINGS_KEY) or {}
        return SmartReminderSettings(**data)

    async def save_smart_settings(self, smart: SmartReminderSettings) -> None:
        await self._write_json(
            SMART_SETTINGS_KEY,
            {
                "enabled": smart.enabled,
                "adaptive_timing": smart.adaptive_timing,
                "behavior_learning": smart.behavior_learning,
            },
        )

    async def load_behavior_profile(self) -> BehaviorProfile | None:
        """Return the stored profile, or None before the first learning event."""
        data = await self._read_json(BEHAVIOR_PROFILE_KEY)
        return BehaviorProfile.from_dict(data) if data else None

    async def save_behavior_profile(self, profile: BehaviorProfile) -> None:
        profile.last_updated = datetime.now().isoformat()
        await self._write_json(BEHAVIOR_PROFILE_KEY, profile.to_dict())

    async def reset_behavior_profile(self) -> None:
        await self._store.remove(BEHAVIOR_PROFILE_KEY)

    async def load_timing_profile(self) -> TimingProfile:
        data = await self._read_json(TIMING_PROFILE_KEY)
        return TimingProfile.from_dict(data) if data else TimingProfile()

    async def save_timing_profile(self, profile: TimingProfile) -> None:
        await self._write_json(TIMING_PROFILE_KEY, profile.to_dict())

    # -- permission ------------------------------------------------------------

    async def load_permission(self) -> PermissionState:
        raw = await self._store.get(PERMISSION_KEY)
        return PermissionState(raw) if raw else PermissionState.UNDETERMINED

    async def save_permission(self, state: PermissionState) -> None:
        await self._store.set(PERMISSION_KEY, state.value)
