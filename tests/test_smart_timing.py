"""Tests for src.core.smart_timing — the four-stage time overlay and content."""

import random
from datetime import date, time

from src.core.smart_timing import (
    ESCALATION_MESSAGES,
    LearningThresholds,
    build_reminder_content,
    calculate_optimal_time,
    vitamin_id,
)
from src.data.models import (
    BehaviorProfile,
    Dosage,
    Frequency,
    Plan,
    QuietHours,
    SmartReminderSettings,
    TimingProfile,
)

ALL_ON = SmartReminderSettings(enabled=True, adaptive_timing=True, behavior_learning=True)


class TestVitaminId:
    def test_known_labels(self):
        assert vitamin_id("Vitamin D") == "vitamin-d"
        assert vitamin_id("  omega-3 ") == "omega-3"

    def test_unknown_defaults_to_multivitamin(self):
        assert vitamin_id("Ashwagandha") == "multivitamin"


class TestCalculateOptimalTime:
    def test_disabled_returns_base(self):
        decision = calculate_optimal_time(time(10, 0), "Vitamin D", SmartReminderSettings())
        assert decision.time == time(10, 0)
        assert not decision.adapted
        assert decision.reason == "Using your selected time"

    def test_category_nudge_to_closest(self):
        smart = SmartReminderSettings(enabled=True, adaptive_timing=True)
        decision = calculate_optimal_time(time(10, 0), "Vitamin D", smart)
        assert decision.time == time(9, 0)
        assert decision.adapted
        assert "morning" in decision.reason

    def test_already_optimal_is_untouched(self):
        smart = SmartReminderSettings(enabled=True, adaptive_timing=True)
        decision = calculate_optimal_time(time(8, 0), "Vitamin D", smart)
        assert not decision.adapted

    def test_behavioral_nudge_needs_enough_data(self):
        smart = SmartReminderSettings(enabled=True, behavior_learning=True)
        sparse = BehaviorProfile(hour_scores={20: 3.0})
        assert calculate_optimal_time(time(9, 0), "Iron", smart, behavior=sparse).time == time(9, 0)

        rich = BehaviorProfile(hour_scores={20: 8.0})
        decision = calculate_optimal_time(
            time(9, 15), "Iron", smart, behavior=rich, thresholds=LearningThresholds(),
        )
        assert decision.time == time(20, 15)
        assert "respond better" in decision.reason

    def test_behavioral_nudge_respects_margin(self):
        smart = SmartReminderSettings(enabled=True, behavior_learning=True)
        close = BehaviorProfile(hour_scores={9: 5.0, 20: 6.0})
        decision = calculate_optimal_time(time(9, 0), "Iron", smart, behavior=close)
        assert decision.time == time(9, 0)

    def test_preference_window_snaps_to_closest_start(self):
        smart = SmartReminderSettings(enabled=True, adaptive_timing=True)
        decision = calculate_optimal_time(
            time(3, 45), "Biotin", smart, timing=TimingProfile(),
        )
        assert decision.time == time(6, 45)
        assert "morning" in decision.reason

    def test_quiet_hours_shift_past_window(self):
        smart = SmartReminderSettings(enabled=True)
        behavior = BehaviorProfile(quiet_hours=[QuietHours("22:00", "23:00")])
        decision = calculate_optimal_time(time(22, 30), "Iron", smart, behavior=behavior)
        assert decision.time == time(0, 0)
        assert "quiet hours" in decision.reason

    def test_stages_chain(self):
        behavior = BehaviorProfile(hour_scores={20: 8.0})
        decision = calculate_optimal_time(
            time(21, 0), "Magnesium", ALL_ON, behavior=behavior, timing=TimingProfile(),
        )
        # category keeps 21:00, learning moves to 20:00, evening window accepts it
        assert decision.time == time(20, 0)
        assert len(decision.steps) == 1

    def test_deterministic(self):
        behavior = BehaviorProfile(hour_scores={20: 8.0})
        args = (time(10, 0), "Vitamin C", ALL_ON)
        first = calculate_optimal_time(*args, behavior=behavior, timing=TimingProfile())
        second = calculate_optimal_time(*args, behavior=behavior, timing=TimingProfile())
        assert (first.time, first.reason) == (second.time, second.reason)


def _plan(dosage=None):
    return Plan("Iron", Frequency.DAILY, time(8, 0), date(2030, 1, 1), dosage=dosage)


def _expanded(tier):
    return [m.format(vitamin="Iron") for m in ESCALATION_MESSAGES[tier]]


class TestBuildReminderContent:
    def test_plain_when_learning_off(self):
        content = build_reminder_content(_plan(), SmartReminderSettings())
        assert content.title == "Time for your vitamins!"
        assert "Iron" in content.body

    def test_urgent_after_threshold(self):
        behavior = BehaviorProfile(consecutive_misses=3)
        content = build_reminder_content(
            _plan(), ALL_ON, behavior, miss_threshold=3, rng=random.Random(1),
        )
        assert content.body in _expanded("urgent")

    def test_encouraging_after_a_miss(self):
        behavior = BehaviorProfile(consecutive_misses=1)
        content = build_reminder_content(_plan(), ALL_ON, behavior, rng=random.Random(1))
        assert content.body in _expanded("encouraging")

    def test_gentle_without_misses(self):
        content = build_reminder_content(
            _plan(), ALL_ON, BehaviorProfile(), rng=random.Random(1),
        )
        assert content.body in _expanded("gentle")

    def test_dosage_appended(self):
        content = build_reminder_content(_plan(Dosage(18, "mg", "18 mg")), SmartReminderSettings())
        assert content.body.endswith("(18 mg)")
