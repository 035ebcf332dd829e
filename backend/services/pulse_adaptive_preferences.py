"""Infer daily coach preferences from recent behavior when the host has none."""
from __future__ import annotations

from services.pulse_types import (
    DailyCoachContext,
    DailyCoachPreferences,
    EffortMode,
    PulseTimeWindow,
    TomorrowFocus,
    WorkoutWindow,
)


_WINDOW_FOR_LEARNED = {
    PulseTimeWindow.EARLY_MORNING: WorkoutWindow.MORNING,
    PulseTimeWindow.MORNING: WorkoutWindow.MORNING,
    PulseTimeWindow.MIDDAY: WorkoutWindow.LUNCH,
    PulseTimeWindow.AFTERNOON: WorkoutWindow.LUNCH,
    PulseTimeWindow.EVENING: WorkoutWindow.EVENING,
    PulseTimeWindow.LATE_NIGHT: WorkoutWindow.FLEXIBLE,
}


def infer_workout_window(context: DailyCoachContext) -> WorkoutWindow:
    if context.pattern_profile is not None:
        strongest = context.pattern_profile.strongest_workout_window(min_score=0.34)
        if strongest is not None:
            return _WINDOW_FOR_LEARNED[strongest]

    hour = context.now.hour
    if hour < 11:
        return WorkoutWindow.MORNING
    if hour < 16:
        return WorkoutWindow.LUNCH
    if hour <= 21:
        return WorkoutWindow.EVENING
    return WorkoutWindow.FLEXIBLE


def infer_tomorrow_focus(context: DailyCoachContext) -> TomorrowFocus:
    trend = context.trend
    if trend is None:
        return TomorrowFocus.BOTH
    if trend.days_since_workout >= 3 and trend.low_protein_streak < 2:
        return TomorrowFocus.WORKOUT
    if trend.low_protein_streak >= 2 and trend.days_since_workout < 3:
        return TomorrowFocus.NUTRITION
    return TomorrowFocus.BOTH


def infer_tomorrow_workout_minutes(context: DailyCoachContext) -> int:
    if context.has_workout_today:
        return 30
    if context.trend is not None and context.trend.days_since_workout >= 4:
        return 25
    return 40


def infer_effort_mode(context: DailyCoachContext) -> EffortMode:
    trend = context.trend
    if trend is None:
        return EffortMode.BALANCED
    if trend.days_since_workout >= 4 or trend.low_protein_streak >= 3:
        return EffortMode.CONSISTENCY
    if trend.workout_days >= 4 and trend.protein_hit_rate >= 0.6:
        return EffortMode.PUSH
    return EffortMode.BALANCED


def make_preferences(context: DailyCoachContext) -> DailyCoachPreferences:
    return DailyCoachPreferences(
        effort_mode=infer_effort_mode(context),
        workout_window=infer_workout_window(context),
        tomorrow_focus=infer_tomorrow_focus(context),
        tomorrow_workout_minutes=infer_tomorrow_workout_minutes(context),
    )
