from __future__ import annotations

import sys
from datetime import date, datetime
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.pulse_pattern_service import (  # noqa: E402
    NO_WORKOUT_DAYS,
    FoodEntry,
    SuggestionUsage,
    WeightEntry,
    WorkoutSession,
    action_kind_for_suggestion,
    build_pattern_profile,
    build_trend_snapshot,
    build_weekly_comparison,
    build_weight_routine,
    days_since_last_workout,
    food_logging_streak,
    learned_workout_time_windows,
)
from services.pulse_types import DailyCoachActionKind, PulseTimeWindow  # noqa: E402


# Wednesday evening.
NOW = datetime(2025, 1, 8, 20, 0)

FOOD = [
    FoodEntry(datetime(2025, 1, 7, 12, 30), "Greek Yogurt Bowl!", 420, 35.0),
    FoodEntry(datetime(2025, 1, 6, 12, 30), "greek yogurt bowl", 400, 35.0),
    FoodEntry(datetime(2025, 1, 5, 19, 0), "Chicken Salad", 650, 45.0),
    FoodEntry(datetime(2025, 1, 4, 10, 0), "apple", 95, 1.0),
]

WORKOUTS = [
    WorkoutSession(datetime(2025, 1, 7, 7, 0)),
    WorkoutSession(datetime(2025, 1, 6, 7, 15)),
    WorkoutSession(datetime(2025, 1, 3, 7, 0)),
    WorkoutSession(datetime(2025, 1, 2, 18, 0)),
]


def test_pattern_profile_scores_windows_anchors_and_affinity():
    usage = [SuggestionUsage("log_meal", 3), SuggestionUsage("start_workout", 1)]
    profile = build_pattern_profile(NOW, FOOD, WORKOUTS, usage, protein_goal=150)

    assert profile.workout_window_scores == {
        PulseTimeWindow.EARLY_MORNING.value: 0.75,
        PulseTimeWindow.EVENING.value: 0.25,
    }
    assert profile.meal_window_scores[PulseTimeWindow.MIDDAY.value] == 0.5
    assert profile.strongest_workout_window() == PulseTimeWindow.EARLY_MORNING
    assert profile.common_protein_anchors == ("Greek Yogurt Bowl", "Chicken Salad")
    assert profile.action_affinity == {"log_food": 0.75, "start_workout": 0.25}
    assert profile.adherence_notes == ("Logging is inconsistent lately", "Protein target is often missed")
    assert abs(profile.confidence - (0.45 * 4 / 14 + 0.30 * 0.5 + 0.25)) < 1e-9


def test_pattern_profile_with_empty_window_is_empty():
    profile = build_pattern_profile(NOW, FOOD, WORKOUTS, window_days=0)
    assert profile.workout_window_scores == {}
    assert profile.confidence == 0.0


def test_trend_snapshot_counts_hits_and_low_protein_streak():
    food = [
        FoodEntry(datetime(2025, 1, 8, 9, 0), "oats", 800, 40.0),
        FoodEntry(datetime(2025, 1, 7, 13, 0), "rice bowl", 1900, 130.0),
        FoodEntry(datetime(2025, 1, 6, 19, 0), "pizza", 2500, 90.0),
        FoodEntry(datetime(2025, 1, 1, 12, 0), "outside window", 2000, 150.0),
    ]
    workouts = [WorkoutSession(datetime(2025, 1, 5, 18, 0)), WorkoutSession(datetime(2024, 12, 20, 18, 0))]

    trend = build_trend_snapshot(NOW, food, workouts, calorie_goal=2000, protein_goal=150)

    assert trend is not None
    assert trend.days_window == 7
    assert trend.days_with_food_logs == 3
    assert trend.protein_target_hit_days == 1
    assert trend.calorie_target_hit_days == 1
    assert trend.low_protein_streak == 1
    assert trend.workout_days == 1
    assert trend.days_since_workout == 3
    assert abs(trend.logging_consistency - 3 / 7) < 1e-9


def test_trend_snapshot_requires_a_goal_and_window():
    assert build_trend_snapshot(NOW, FOOD, WORKOUTS, calorie_goal=0, protein_goal=0) is None
    assert build_trend_snapshot(NOW, FOOD, WORKOUTS, calorie_goal=2000, protein_goal=150, days_window=0) is None


def test_days_since_last_workout_without_history():
    assert days_since_last_workout(set(), date(2025, 1, 8)) == NO_WORKOUT_DAYS


def test_weekly_comparison_uses_monday_weeks():
    comparison = build_weekly_comparison(NOW, FOOD, WORKOUTS, protein_goal=40)

    assert comparison.this_week_food_log_days == 2
    assert comparison.last_week_food_log_days == 2
    assert comparison.this_week_workout_days == 2
    assert comparison.last_week_workout_days == 2
    assert comparison.protein_hit_delta == 1
    assert comparison.workout_delta == 0


def test_food_logging_streak_counts_back_from_yesterday_when_today_empty():
    assert food_logging_streak(NOW, FOOD) == 4
    assert food_logging_streak(datetime(2025, 1, 10, 8, 0), FOOD) == 0


def test_weight_routine_learns_weekday_and_time_of_day():
    entries = [
        WeightEntry(datetime(2025, 1, 6, 7, 0), 80.4),
        WeightEntry(datetime(2024, 12, 30, 7, 10), 81.0),
        WeightEntry(datetime(2024, 12, 23, 6, 50), 81.5),
        WeightEntry(datetime(2025, 1, 3, 19, 0), 80.9),
    ]
    routine = build_weight_routine(NOW, entries)

    assert routine.days_since_last_weight_log == 2
    assert routine.weight_logged_this_week is True
    assert routine.likely_weekday_label == "Monday"
    assert routine.likely_time_labels == ("Morning (4-9 AM)", "Evening (6-10 PM)")
    assert routine.routine_score == 0.675
    assert routine.recent_range_kg == 0.6


def test_weight_routine_below_minimum_entries_has_no_pattern():
    entries = [WeightEntry(datetime(2025, 1, 6, 7, 0), 80.4), WeightEntry(datetime(2025, 1, 2, 7, 0), 80.0)]
    routine = build_weight_routine(NOW, entries)

    assert routine.routine_score == 0.0
    assert routine.likely_time_labels == ()
    assert routine.likely_weekday_label is None
    assert routine.days_since_last_weight_log == 2


def test_learned_workout_time_windows_render_hour_ranges():
    profile = build_pattern_profile(NOW, FOOD, WORKOUTS, protein_goal=150)
    assert learned_workout_time_windows(profile) == ["Early Morning (5-8)", "Evening (17-21)"]
    assert learned_workout_time_windows(profile, min_score=0.5) == ["Early Morning (5-8)"]
    assert learned_workout_time_windows(None) == []


def test_suggestion_types_map_to_action_kinds():
    assert action_kind_for_suggestion("log_meal") == DailyCoachActionKind.LOG_FOOD
    assert action_kind_for_suggestion("review_workout_plan") == DailyCoachActionKind.REVIEW_WORKOUT_PLAN
    assert action_kind_for_suggestion("daily_reminder") == DailyCoachActionKind.COMPLETE_REMINDER
    assert action_kind_for_suggestion("something else") == DailyCoachActionKind.OPEN_PROFILE
