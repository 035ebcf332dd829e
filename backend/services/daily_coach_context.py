"""Assemble a ``DailyCoachContext`` from raw host data in one place."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from config import settings
from services.behavior_profile_service import build_profile
from services.behavior_tracker import todays_action_keys
from services.pulse_pattern_service import (
    FoodEntry,
    SuggestionUsage,
    WeightEntry,
    WorkoutSession,
    build_pattern_profile,
    build_trend_snapshot,
    build_weight_routine,
)
from services.pulse_types import (
    BehaviorEvent,
    CoachSignal,
    DailyCoachContext,
    ReminderCandidate,
    ReminderCompletion,
)
from services.reminder_habit_service import reminder_adherence, reminder_habit_scores


@dataclass(frozen=True)
class TodayState:
    """Live state for today that the host already tracks."""

    has_workout_today: bool = False
    has_active_workout: bool = False
    calories_consumed: int = 0
    calorie_goal: int = 0
    protein_consumed: int = 0
    protein_goal: int = 0
    ready_muscle_count: int = 0
    recommended_workout_name: str | None = None
    last_active_workout_hour: int | None = None
    workout_window_start_hour: int = 6
    workout_window_end_hour: int = 22
    plan_review_trigger: str | None = None
    plan_review_message: str | None = None
    plan_review_days_since: int | None = None


@dataclass(frozen=True)
class CoachHistory:
    events: tuple[BehaviorEvent, ...] = ()
    food_entries: tuple[FoodEntry, ...] = ()
    workouts: tuple[WorkoutSession, ...] = ()
    weight_entries: tuple[WeightEntry, ...] = ()
    suggestion_usage: tuple[SuggestionUsage, ...] = ()
    signals: tuple[CoachSignal, ...] = ()
    pending_reminders: tuple[ReminderCandidate, ...] = ()
    all_reminders: tuple[ReminderCandidate, ...] = ()
    reminder_completions: tuple[ReminderCompletion, ...] = ()


def build_daily_coach_context(now: datetime, today: TodayState, history: CoachHistory) -> DailyCoachContext:
    behavior_profile = build_profile(now, history.events, window_days=settings.PULSE_BEHAVIOR_WINDOW_DAYS)
    pattern_profile = build_pattern_profile(
        now,
        history.food_entries,
        history.workouts,
        history.suggestion_usage,
        protein_goal=today.protein_goal or None,
        window_days=settings.PULSE_PATTERN_WINDOW_DAYS,
    )
    trend = build_trend_snapshot(
        now,
        history.food_entries,
        history.workouts,
        calorie_goal=today.calorie_goal,
        protein_goal=today.protein_goal,
        days_window=settings.PULSE_TREND_WINDOW_DAYS,
    )
    routine = build_weight_routine(now, history.weight_entries)
    opened, completed = todays_action_keys(list(history.events), now)

    scheduled = history.all_reminders or history.pending_reminders
    completion_rate, missed = reminder_adherence(scheduled, history.reminder_completions, now)
    scores = reminder_habit_scores(history.pending_reminders, history.reminder_completions, now)

    return DailyCoachContext(
        now=now,
        has_workout_today=today.has_workout_today,
        has_active_workout=today.has_active_workout,
        calories_consumed=today.calories_consumed,
        calorie_goal=today.calorie_goal,
        protein_consumed=today.protein_consumed,
        protein_goal=today.protein_goal,
        ready_muscle_count=today.ready_muscle_count,
        recommended_workout_name=today.recommended_workout_name,
        active_signals=tuple(s for s in history.signals if s.is_active(now)),
        trend=trend,
        pattern_profile=pattern_profile,
        behavior_profile=behavior_profile,
        workout_window_start_hour=today.workout_window_start_hour,
        workout_window_end_hour=today.workout_window_end_hour,
        reminder_completion_rate=completion_rate,
        missed_reminder_count=missed,
        days_since_last_weight_log=routine.days_since_last_weight_log,
        weight_logged_this_week=routine.weight_logged_this_week,
        weight_likely_log_weekday=routine.likely_weekday_label,
        weight_likely_log_times=routine.likely_time_labels,
        weight_log_routine_score=routine.routine_score,
        weight_recent_range_kg=routine.recent_range_kg,
        last_active_workout_hour=today.last_active_workout_hour,
        plan_review_trigger=today.plan_review_trigger,
        plan_review_message=today.plan_review_message,
        plan_review_days_since=today.plan_review_days_since,
        today_opened_action_keys=opened,
        today_completed_action_keys=completed,
        pending_reminder_candidates=tuple(history.pending_reminders),
        pending_reminder_candidate_scores=scores,
    )
