"""
Takeamin Assistant — Data Models.

Plans are the local source of truth: the user's reminder configuration plus
the handles of the triggers we believe the platform scheduler holds for them.
Everything here is plain data; persistence lives in src.data.repository.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum


class Frequency(str, Enum):
    """How often a plan's reminder repeats."""

    DAILY = "daily"
    EVERY_OTHER_DAY = "every-other-day"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class Weekday(str, Enum):
    """Weekday tags used by custom plans. Order follows date.weekday()."""

    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @property
    def ordinal(self) -> int:
        """0 = Monday … 6 = Sunday, matching date.weekday()."""
        return list(Weekday).index(self)

    @classmethod
    def from_ordinal(cls, ordinal: int) -> Weekday:
        return list(cls)[ordinal % 7]

    @classmethod
    def parse(cls, raw: str) -> Weekday:
        """Accept full names or 3-letter prefixes, case-insensitive."""
        text = raw.strip().lower()
        for day in cls:
            if day.value.lower() == text or day.value[:3].lower() == text:
                return day
        raise ValueError(f"Unknown weekday: {raw!r}")


class PermissionState(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


class ResponseType(str, Enum):
    """How the user reacted to a fired reminder."""

    TAKEN = "taken"
    SNOOZED = "snoozed"
    IGNORED = "ignored"


def parse_hhmm(raw: str) -> time:
    """Parse an HH:MM string into a naive time. Raises ValueError."""
    text = raw.strip()
    if ":" not in text:
        raise ValueError(f"No colon in time: {raw!r}")
    hour_str, minute_str = text.split(":", 1)
    hour, minute = int(hour_str), int(minute_str[:2])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Hour/minute out of range: {hour}:{minute}")
    return time(hour, minute)


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


@dataclass
class Dosage:
    amount: float
    unit: str
    display_text: str   # e.g. "1,000 IU (25 mcg)"


@dataclass
class Plan:
    """A user's vitamin reminder configuration.

    notification_handles is mutated only by the scheduling core
    (ReminderService / ReconciliationAuditor), never by UI handlers.
    """

    vitamin: str
    frequency: Frequency
    reminder_time: time
    end_date: date
    custom_days: list[Weekday] | None = None
    notification_handles: list[str] = field(default_factory=list)
    created_date: date = field(default_factory=date.today)
    dosage: Dosage | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if self.frequency is Frequency.CUSTOM:
            if not self.custom_days:
                raise ValueError("Custom plans need at least one weekday")
        elif self.custom_days is not None:
            raise ValueError("custom_days is only valid for custom plans")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vitamin": self.vitamin,
            "frequency": self.frequency.value,
            "custom_days": (
                [d.value for d in self.custom_days] if self.custom_days else None
            ),
            "reminder_time": format_hhmm(self.reminder_time),
            "end_date": self.end_date.isoformat(),
            "notification_handles": list(self.notification_handles),
            "created_date": self.created_date.isoformat(),
            "dosage": (
                {
                    "amount": self.dosage.amount,
                    "unit": self.dosage.unit,
                    "display_text": self.dosage.display_text,
                }
                if self.dosage
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Plan:
        custom = data.get("custom_days")
        dosage = data.get("dosage")
        return cls(
            id=data["id"],
            vitamin=data["vitamin"],
            frequency=Frequency(data["frequency"]),
            custom_days=[Weekday(d) for d in custom] if custom else None,
            reminder_time=parse_hhmm(data["reminder_time"]),
            end_date=date.fromisoformat(data["end_date"]),
            notification_handles=list(data.get("notification_handles") or []),
            created_date=date.fromisoformat(
                data.get("created_date") or data["end_date"]
            ),
            dosage=Dosage(**dosage) if dosage else None,
        )


# ---------------------------------------------------------------------------
# Platform scheduler records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CalendarTrigger:
    """Repeating wall-clock trigger: daily when weekday is None, else weekly."""

    hour: int
    minute: int
    weekday: Weekday | None = None

    @property
    def repeats_daily(self) -> bool:
        return self.weekday is None


@dataclass(frozen=True)
class DateTrigger:
    """One-shot trigger at an absolute (naive, device-local) datetime."""

    at: datetime


Trigger = CalendarTrigger | DateTrigger


@dataclass(frozen=True)
class ReminderContent:
    """What the user sees, plus the payload that traces a handle to its plan."""

    title: str
    body: str
    plan_id: str
    vitamin: str


@dataclass(frozen=True)
class ScheduledNotification:
    """A live entry in the platform scheduler's queue."""

    handle_id: str
    content: ReminderContent
    trigger: Trigger


@dataclass
class CancelResult:
    cancelled: int = 0
    failed: int = 0


# ---------------------------------------------------------------------------
# Smart reminder state
# ---------------------------------------------------------------------------


@dataclass
class QuietHours:
    """A do-not-disturb window, HH:MM strings compared lexically."""

    start: str
    end: str
    recurring: str = "daily"   # "daily" | "weekdays" | "weekends"


@dataclass
class BehaviorProfile:
    """Response history used by behavioral learning."""

    hour_scores: dict[int, float] = field(default_factory=dict)
    weekday_scores: dict[int, float] = field(default_factory=dict)  # 0 = Sunday
    consecutive_misses: int = 0
    preferred_delay: int = 15
    quiet_hours: list[QuietHours] = field(default_factory=list)
    last_updated: str = ""

    def to_dict(self) -> dict:
        return {
            "hour_scores": {str(k): v for k, v in self.hour_scores.items()},
            "weekday_scores": {str(k): v for k, v in self.weekday_scores.items()},
            "consecutive_misses": self.consecutive_misses,
            "preferred_delay": self.preferred_delay,
            "quiet_hours": [
                {"start": q.start, "end": q.end, "recurring": q.recurring}
                for q in self.quiet_hours
            ],
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> BehaviorProfile:
        return cls(
            hour_scores={int(k): float(v) for k, v in data.get("hour_scores", {}).items()},
            weekday_scores={
                int(k): float(v) for k, v in data.get("weekday_scores", {}).items()
            },
            consecutive_misses=data.get("consecutive_misses", 0),
            preferred_delay=data.get("preferred_delay", 15),
            quiet_hours=[QuietHours(**q) for q in data.get("quiet_hours", [])],
            last_updated=data.get("last_updated", ""),
        )


@dataclass
class TimeWindow:
    start: str   # HH:MM
    end: str     # HH:MM


@dataclass
class TimingProfile:
    """The user's preferred reminder windows."""

    morning: TimeWindow = field(default_factory=lambda: TimeWindow("06:00", "10:00"))
    afternoon: TimeWindow = field(default_factory=lambda: TimeWindow("12:00", "17:00"))
    evening: TimeWindow = field(default_factory=lambda: TimeWindow("18:00", "22:00"))

    def windows(self) -> list[tuple[str, TimeWindow]]:
        return [
            ("morning", self.morning),
            ("afternoon", self.afternoon),
            ("evening", self.evening),
        ]

    def to_dict(self) -> dict:
        return {
            name: {"start": w.start, "end": w.end} for name, w in self.windows()
        }

    @classmethod
    def from_dict(cls, data: dict) -> TimingProfile:
        profile = cls()
        for name in ("morning", "afternoon", "evening"):
            if name in data:
                setattr(profile, name, TimeWindow(**data[name]))
        return profile


@dataclass
class SmartReminderSettings:
    enabled: bool = False
    adaptive_timing: bool = False
    behavior_learning: bool = False

    def with_enabled(self, enabled: bool) -> SmartReminderSettings:
        """Toggle the master switch; turning it off turns every feature off."""
        if not enabled:
            return SmartReminderSettings()
        return SmartReminderSettings(
            enabled=True, adaptive_timing=True, behavior_learning=True,
        )
