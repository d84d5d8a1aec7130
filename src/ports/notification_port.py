"""Notification ports — abstract interfaces for the platform scheduler.

Core modules depend on these protocols, never on a specific platform.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from src.data.models import (
        PermissionState,
        ReminderContent,
        ScheduledNotification,
        Trigger,
    )


class SchedulerError(Exception):
    """Raised when the platform fails to register or cancel a trigger."""


class PlatformScheduler(Protocol):
    """Opaque scheduler with calendar-trigger semantics.

    cancel() must be idempotent: cancelling an unknown handle is not an error.
    """

    async def schedule_trigger(
        self, content: ReminderContent, trigger: Trigger
    ) -> str: ...

    async def cancel(self, handle_id: str) -> None: ...

    async def cancel_all(self) -> None: ...

    async def list_scheduled(self) -> list[ScheduledNotification]: ...

    async def get_permission_state(self) -> PermissionState: ...

    async def request_permission(self) -> PermissionState: ...


class NotificationPort(Protocol):
    """Delivers a fired reminder to the user."""

    async def send_reminder(
        self, user_id: int, content: ReminderContent, snooze_options: list[dict]
    ) -> None: ...

    async def send_message(self, user_id: int, text: str) -> None: ...
