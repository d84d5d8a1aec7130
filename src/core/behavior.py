"""Behavioral learning — pure business logic.

Accumulates per-hour and per-weekday response scores from how the user
reacts to reminders, and derives insights and snooze suggestions from them.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from src.data.models import BehaviorProfile, QuietHours, ResponseType

logger = logging.getLogger(__name__)

TAKEN_SCORE = 1.0
MISSED_SCORE = -0.5

_DAY_NAMES = [
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday",
]

SNOOZE_QUICK = {"minutes": 5, "label": "5 minutes"}
SNOOZE_SHORT = {"minutes": 15, "label": "15 minutes"}
SNOOZE_MEDIUM = {"minutes": 30, "label": "30 minutes"}
SNOOZE_EVENING = {"minutes": 480, "label": "This evening"}


def _sunday_first(at: datetime) -> int:
    """0 = Sunday … 6 = Saturday."""
    return (at.weekday() + 1) % 7


def record_response(
    profile: BehaviorProfile | None,
    response: ResponseType,
    at: datetime,
) -> BehaviorProfile:
    """Return the profile updated with one response (created lazily)."""
    profile = profile or BehaviorProfile()
    delta = TAKEN_SCORE if response is ResponseType.TAKEN else MISSED_SCORE

    hour = at.hour
    day = _sunday_first(at)
    profile.hour_scores[hour] = profile.hour_scores.get(hour, 0.0) + delta
    profile.weekday_scores[day] = profile.weekday_scores.get(day, 0.0) + delta

    if response is ResponseType.TAKEN:
        profile.consecutive_misses = 0
    else:
        profile.consecutive_misses += 1

    logger.info(
        "Recorded %s response at %02d:00 (misses in a row: %d)",
        response.value, hour, profile.consecutive_misses,
    )
    return profile


def total_positive_responses(profile: BehaviorProfile) -> float:
    """Sum of positive hour scores — the learning data-point count."""
    return sum(max(0.0, score) for score in profile.hour_scores.values())


def _window_applies(window: QuietHours, at: datetime) -> bool:
    day = _sunday_first(at)
    if window.recurring == "weekdays":
        return 1 <= day <= 5
    if window.recurring == "weekends":
        return day in (0, 6)
    return True


def is_in_quiet_hours(quiet_hours: list[QuietHours], at: datetime) -> bool:
    """Check if a moment falls inside any quiet window that applies that day."""
    hhmm = f"{at.hour:02d}:{at.minute:02d}"
    return any(
        _window_applies(window, at) and window.start <= hhmm <= window.end
        for window in quiet_hours
    )


@dataclass
class BehaviorInsights:
    best_hour: int
    best_day: str
    total_responses: float
    consecutive_misses: int


def get_behavior_insights(profile: BehaviorProfile) -> BehaviorInsights:
    """Best-performing hour and weekday, for display."""
    best_hour = 9
    if profile.hour_scores:
        best_hour = max(profile.hour_scores, key=lambda h: (profile.hour_scores[h], -h))

    best_day = 1
    if profile.weekday_scores:
        best_day = max(
            profile.weekday_scores, key=lambda d: (profile.weekday_scores[d], -d),
        )

    return BehaviorInsights(
        best_hour=best_hour,
        best_day=_DAY_NAMES[best_day],
        total_responses=total_positive_responses(profile),
        consecutive_misses=profile.consecutive_misses,
    )


def smart_snooze_options(
    now: datetime, profile: BehaviorProfile | None = None,
) -> list[dict]:
    """Context-aware snooze choices, at most four."""
    options: list[dict] = [dict(SNOOZE_QUICK), dict(SNOOZE_SHORT)]

    if now.hour < 12:
        options.append({**SNOOZE_MEDIUM, "reason": "After breakfast"})
    elif now.hour < 17:
        options.append({**SNOOZE_MEDIUM, "reason": "After lunch"})
    else:
        options.append({**SNOOZE_EVENING, "reason": "After dinner"})

    if profile is not None:
        delay = profile.preferred_delay
        if delay > 0 and delay != 15:
            options.append({
                "minutes": delay,
                "label": f"{delay} minutes",
                "reason": "Your usual preference",
            })

    return options[:4]
