"""Smart timing overlay — pure business logic.

Nudges a plan's base reminder time through four ordered stages before it is
handed to the NotificationScheduler:

    1. category nudge      (vitamin-specific timing table)
    2. behavioral nudge    (learned per-hour response scores)
    3. preference window   (morning / afternoon / evening ranges)
    4. quiet hours         (shift past do-not-disturb windows)

Each stage works on the previous stage's output. The scheduling contract is
unchanged: the result is just a different time of day.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import time

from src.core.behavior import total_positive_responses
from src.data.models import (
    BehaviorProfile,
    Plan,
    QuietHours,
    ReminderContent,
    SmartReminderSettings,
    TimingProfile,
    format_hhmm,
    parse_hhmm,
)

logger = logging.getLogger(__name__)


VITAMIN_TIMING_RECOMMENDATIONS: dict[str, dict] = {
    "vitamin-d": {
        "optimal_times": ["07:00", "08:00", "09:00"],
        "reason": "Best absorbed in the morning with breakfast",
    },
    "vitamin-b12": {
        "optimal_times": ["07:00", "08:00", "09:00"],
        "reason": "Energizing - take in the morning to avoid sleep disruption",
    },
    "vitamin-c": {
        "optimal_times": ["07:00", "12:00", "17:00"],
        "reason": "Water-soluble - can take multiple times per day",
    },
    "iron": {
        "optimal_times": ["07:00", "08:00"],
        "reason": "Best absorbed on empty stomach, pair with Vitamin C",
    },
    "calcium": {
        "optimal_times": ["19:00", "20:00", "21:00"],
        "reason": "Take in evening for better absorption and bone health",
    },
    "magnesium": {
        "optimal_times": ["20:00", "21:00", "22:00"],
        "reason": "Promotes relaxation and better sleep quality",
    },
    "zinc": {
        "optimal_times": ["19:00", "20:00"],
        "reason": "Take in evening on empty stomach (1 hour before bed)",
    },
    "omega-3": {
        "optimal_times": ["07:00", "12:00", "18:00"],
        "reason": "Fat-soluble - take with meals for best absorption",
    },
    "multivitamin": {
        "optimal_times": ["08:00", "09:00"],
        "reason": "Take with breakfast for optimal nutrient absorption",
    },
}

_VITAMIN_IDS = {
    "vitamin a": "vitamin-a",
    "vitamin b1 (thiamine)": "vitamin-b1",
    "vitamin b2 (riboflavin)": "vitamin-b2",
    "vitamin b3 (niacin)": "vitamin-b3",
    "vitamin b6 (pyridoxine)": "vitamin-b6",
    "vitamin b12 (cobalamin)": "vitamin-b12",
    "vitamin b12": "vitamin-b12",
    "vitamin c": "vitamin-c",
    "vitamin d": "vitamin-d",
    "vitamin e": "vitamin-e",
    "vitamin k": "vitamin-k",
    "folate (folic acid)": "folate",
    "biotin": "biotin",
    "calcium": "calcium",
    "iron": "iron",
    "magnesium": "magnesium",
    "zinc": "zinc",
    "omega-3 fatty acids": "omega-3",
    "omega-3": "omega-3",
    "multivitamin": "multivitamin",
}

ESCALATION_MESSAGES = {
    "gentle": [
        "Gentle reminder: Time for your {vitamin}!",
        "Your daily {vitamin} is ready!",
        "{vitamin} time! Your health journey continues",
    ],
    "encouraging": [
        "Don't break your streak! Time for {vitamin}",
        "You're doing great! Don't forget your {vitamin}",
        "Keep your healthy habit going with {vitamin}",
    ],
    "urgent": [
        "Last call for {vitamin}! You've got this",
        "Final reminder: {vitamin} is waiting for you",
        "Don't let today slip by without your {vitamin}",
    ],
}


def vitamin_id(label: str) -> str:
    """Map a vitamin label to its recommendation-table key."""
    return _VITAMIN_IDS.get(label.strip().lower(), "multivitamin")


@dataclass
class TimingDecision:
    """Outcome of the overlay: the time to schedule and why."""

    time: time
    adapted: bool = False
    reason: str = "Using your selected time"
    steps: list[str] = field(default_factory=list)


@dataclass
class LearningThresholds:
    min_data_points: int = 7
    margin: float = 1.5
    confidence: float = 0.7

    @classmethod
    def from_settings(cls) -> LearningThresholds:
        from src.config import settings

        return cls(
            min_data_points=settings.LEARNING_MIN_DATA_POINTS,
            margin=settings.LEARNING_MARGIN,
            confidence=settings.LEARNING_CONFIDENCE_THRESHOLD,
        )


# ---------------------------------------------------------------------------
# Stages: each returns (new_time, reason) or None when it leaves time alone
# ---------------------------------------------------------------------------


def _category_nudge(
    current: time, category: str, table: dict[str, dict],
) -> tuple[time, str] | None:
    entry = table.get(category)
    if not entry:
        return None

    candidates = entry["optimal_times"]
    closest = candidates[0]
    for candidate in candidates[1:]:
        if abs(parse_hhmm(candidate).hour - current.hour) < abs(
            parse_hhmm(closest).hour - current.hour
        ):
            closest = candidate

    if closest == format_hhmm(current):
        return None
    return parse_hhmm(closest), entry["reason"]


def _behavioral_nudge(
    current: time, profile: BehaviorProfile, thresholds: LearningThresholds,
) -> tuple[time, str] | None:
    if total_positive_responses(profile) < thresholds.min_data_points:
        return None

    scores = profile.hour_scores
    best_hour = current.hour
    for hour in sorted(scores):
        if scores[hour] > 0 and scores[hour] > scores.get(best_hour, 0.0):
            best_hour = hour

    if best_hour == current.hour:
        return None

    current_score = scores.get(current.hour, 0.0)
    best_score = scores.get(best_hour, 0.0)
    if best_score > current_score * thresholds.margin and best_score > thresholds.confidence:
        return (
            time(best_hour, current.minute),
            f"Learned that you respond better at {best_hour}:{current.minute:02d}",
        )
    return None


def _preference_window_nudge(
    current: time, timing: TimingProfile,
) -> tuple[time, str] | None:
    windows = timing.windows()
    for _, window in windows:
        if parse_hhmm(window.start).hour <= current.hour <= parse_hhmm(window.end).hour:
            return None

    closest_name, closest = windows[0]
    for name, window in windows[1:]:
        if abs(parse_hhmm(window.start).hour - current.hour) < abs(
            parse_hhmm(closest.start).hour - current.hour
        ):
            closest_name, closest = name, window

    return (
        time(parse_hhmm(closest.start).hour, current.minute),
        f"Moved to your preferred {closest_name} time range",
    )


def _avoid_quiet_hours(
    current: time, quiet_hours: list[QuietHours],
) -> tuple[time, str] | None:
    hhmm = format_hhmm(current)
    for window in quiet_hours:
        if window.start <= hhmm <= window.end:
            end = parse_hhmm(window.end)
            return (
                time((end.hour + 1) % 24, end.minute),
                f"Moved to avoid your quiet hours ({window.start}-{window.end})",
            )
    return None


def calculate_optimal_time(
    base_time: time,
    vitamin: str,
    smart: SmartReminderSettings,
    behavior: BehaviorProfile | None = None,
    timing: TimingProfile | None = None,
    table: dict[str, dict] | None = None,
    thresholds: LearningThresholds | None = None,
) -> TimingDecision:
    """Run the four stages in order and return the final decision.

    Deterministic: the same inputs always give the same time and reason.
    """
    decision = TimingDecision(time=base_time)
    if not smart.enabled:
        return decision

    table = VITAMIN_TIMING_RECOMMENDATIONS if table is None else table
    thresholds = thresholds or LearningThresholds()

    stages = []
    if smart.adaptive_timing:
        stages.append(lambda t: _category_nudge(t, vitamin_id(vitamin), table))
    if smart.behavior_learning and behavior is not None:
        stages.append(lambda t: _behavioral_nudge(t, behavior, thresholds))
    if smart.adaptive_timing and timing is not None:
        stages.append(lambda t: _preference_window_nudge(t, timing))
    if behavior is not None and behavior.quiet_hours:
        stages.append(lambda t: _avoid_quiet_hours(t, behavior.quiet_hours))

    for stage in stages:
        outcome = stage(decision.time)
        if outcome is None:
            continue
        decision.time, decision.reason = outcome
        decision.adapted = True
        decision.steps.append(decision.reason)

    if decision.adapted:
        logger.info(
            "Smart timing for '%s': %s -> %s (%s)",
            vitamin, format_hhmm(base_time), format_hhmm(decision.time), decision.reason,
        )
    return decision


def build_reminder_content(
    plan: Plan,
    smart: SmartReminderSettings,
    behavior: BehaviorProfile | None = None,
    miss_threshold: int = 3,
    rng: random.Random | None = None,
) -> ReminderContent:
    """Reminder text, escalating with consecutive misses when learning is on."""
    rng = rng or random.Random()
    body = f"Don't forget to take your {plan.vitamin} today. You've got this!"

    if smart.behavior_learning and behavior is not None:
        if behavior.consecutive_misses >= miss_threshold:
            tier = "urgent"
        elif behavior.consecutive_misses > 0:
            tier = "encouraging"
        else:
            tier = "gentle"
        body = rng.choice(ESCALATION_MESSAGES[tier]).format(vitamin=plan.vitamin)

    if plan.dosage:
        body += f" ({plan.dosage.display_text})"

    return ReminderContent(
        title="Time for your vitamins!",
        body=body,
        plan_id=plan.id,
        vitamin=plan.vitamin,
    )
