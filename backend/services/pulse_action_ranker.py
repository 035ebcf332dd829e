"""Deterministic candidate ranking for Pulse actions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from config import settings
from services.behavior_profile_service import label_contains_hour
from services.pulse_types import (
    DailyCoachAction,
    DailyCoachActionKind,
    DailyCoachContext,
    ReminderCandidate,
    SignalDomain,
    clamp,
)

Kind = DailyCoachActionKind

# (cap, per-day) staleness boost by action kind.
_STALENESS = {
    Kind.LOG_WEIGHT: (0.18, 0.03),
    Kind.OPEN_WEIGHT: (0.18, 0.03),
    Kind.REVIEW_NUTRITION_PLAN: (0.14, 0.025),
    Kind.REVIEW_WORKOUT_PLAN: (0.14, 0.025),
    Kind.OPEN_WORKOUT_PLAN: (0.14, 0.025),
    Kind.OPEN_PROFILE: (0.14, 0.025),
    Kind.LOG_FOOD: (0.08, 0.015),
    Kind.LOG_FOOD_CAMERA: (0.08, 0.015),
    Kind.START_WORKOUT: (0.1, 0.018),
    Kind.START_WORKOUT_TEMPLATE: (0.1, 0.018),
}
_DEFAULT_STALENESS = (0.07, 0.012)

# (completed today, opened today) repetition penalty by action kind.
_REPETITION = {
    Kind.LOG_WEIGHT: (0.42, 0.26),
    Kind.OPEN_WEIGHT: (0.42, 0.26),
    Kind.START_WORKOUT: (0.36, 0.2),
    Kind.START_WORKOUT_TEMPLATE: (0.36, 0.2),
    Kind.LOG_FOOD: (0.08, 0.04),
    Kind.LOG_FOOD_CAMERA: (0.08, 0.04),
}
_DEFAULT_REPETITION = (0.24, 0.16)


@dataclass(frozen=True)
class RankedAction:
    action: DailyCoachAction
    score: float


def _affinity(kind: DailyCoachActionKind, context: DailyCoachContext) -> float:
    if context.pattern_profile is None:
        return 0.0
    return context.pattern_profile.affinity(kind)


def _timing_boost(kind: DailyCoachActionKind, context: DailyCoachContext, hour: int) -> float:
    if context.behavior_profile is None:
        return 0.0
    preference = context.behavior_profile.hourly_preference_score(
        kind.behavior_action_key,
        hour,
        minimum_events=2,
    )
    return min(preference * 0.22, 0.16)


def _staleness_boost(kind: DailyCoachActionKind, context: DailyCoachContext) -> float:
    if context.behavior_profile is None:
        return 0.0
    days = context.behavior_profile.days_since_last_action(kind.behavior_action_key, context.now)
    if days is None or days <= 0:
        return 0.0
    cap, per_day = _STALENESS.get(kind, _DEFAULT_STALENESS)
    return min(days * per_day, cap)


def _repetition_penalty(kind: DailyCoachActionKind, context: DailyCoachContext) -> float:
    key = kind.behavior_action_key
    opened = key in context.today_opened_action_keys
    completed = key in context.today_completed_action_keys
    if not (opened or completed):
        return 0.0

    if kind == Kind.COMPLETE_REMINDER:
        if len(context.pending_reminder_candidates) > 1:
            return 0.08 if completed else 0.04
        return 0.2 if completed else 0.1

    completed_penalty, opened_penalty = _REPETITION.get(kind, _DEFAULT_REPETITION)
    return completed_penalty if completed else opened_penalty


def _adjusted(base: float, kind: DailyCoachActionKind, context: DailyCoachContext, hour: int) -> float:
    boosted = min(base + _timing_boost(kind, context, hour) + _staleness_boost(kind, context), 1.0)
    return clamp(boosted - _repetition_penalty(kind, context))


def _best_reminder(context: DailyCoachContext) -> tuple[ReminderCandidate, float] | None:
    best: tuple[ReminderCandidate, float] | None = None
    for candidate in context.pending_reminder_candidates:
        score = context.reminder_score(candidate.id)
        if best is None or score > best[1]:
            best = (candidate, score)
    return best


def should_suggest_weight_log(context: DailyCoachContext, hour: int) -> bool:
    """Weight logging is only offered inside a learned weigh-in bucket, once due."""
    days_since = context.days_since_last_weight_log
    if days_since is None or days_since < 1:
        return False
    return any(label_contains_hour(label, hour) for label in context.weight_likely_log_times)


def _dedupe_keeping_best(candidates: list[RankedAction]) -> list[RankedAction]:
    best: dict[DailyCoachActionKind, RankedAction] = {}
    for candidate in candidates:
        existing = best.get(candidate.action.kind)
        if existing is None or candidate.score > existing.score:
            best[candidate.action.kind] = candidate
    return list(best.values())


def rank_actions(
    context: DailyCoachContext,
    now: datetime | None = None,
    limit: int | None = None,
) -> list[RankedAction]:
    now = now or context.now
    limit = settings.PULSE_RANKER_LIMIT if limit is None else limit
    if limit <= 0:
        return []

    hour = now.hour
    protein_remaining = context.protein_remaining
    candidates: list[RankedAction] = []

    def add(action: DailyCoachAction, base: float) -> None:
        candidates.append(RankedAction(action=action, score=_adjusted(base, action.kind, context, hour)))

    reminder = _best_reminder(context)
    if reminder is not None:
        candidate, score = reminder
        add(
            DailyCoachAction(
                kind=Kind.COMPLETE_REMINDER,
                title=f"Complete {candidate.title}",
                subtitle=f"Scheduled at {candidate.time}",
                metadata={
                    "reminder_id": candidate.id,
                    "reminder_title": candidate.title,
                    "reminder_time": candidate.time,
                    "reminder_hour": str(candidate.hour),
                    "reminder_minute": str(candidate.minute),
                },
            ),
            0.67 + score * 0.2 + _affinity(Kind.COMPLETE_REMINDER, context) * 0.1,
        )

    if should_suggest_weight_log(context, hour):
        days_since = float(context.days_since_last_weight_log or 1)
        add(
            DailyCoachAction(kind=Kind.LOG_WEIGHT, title="Log Morning Weight", subtitle="Keep your check-in routine"),
            0.71 + min(days_since, 7) * 0.02 + context.weight_log_routine_score * 0.1,
        )

    if context.days_since_last_weight_log is not None and context.days_since_last_weight_log >= 6:
        add(
            DailyCoachAction(kind=Kind.OPEN_WEIGHT, title="Review Weight Trend", subtitle="Re-anchor your routine"),
            0.6 + min(float(context.days_since_last_weight_log), 10) * 0.02 + context.weight_log_routine_score * 0.08,
        )

    if context.workout_owed:
        in_window = 6 <= hour <= 21
        workout_title = (
            f"Start {context.recommended_workout_name}" if context.recommended_workout_name else "Start Workout"
        )
        add(
            DailyCoachAction(kind=Kind.START_WORKOUT, title=workout_title),
            (0.68 if in_window else 0.56) + _affinity(Kind.START_WORKOUT, context) * 0.24,
        )
        add(
            DailyCoachAction(kind=Kind.OPEN_WORKOUTS, title="Open Workouts"),
            0.46 + _affinity(Kind.OPEN_WORKOUTS, context) * 0.2,
        )
        if context.recommended_workout_name is not None:
            add(
                DailyCoachAction(kind=Kind.OPEN_WORKOUT_PLAN, title="Open Workout Plan"),
                0.48 + _affinity(Kind.OPEN_WORKOUT_PLAN, context) * 0.2,
            )

    if protein_remaining >= 25:
        add(
            DailyCoachAction(
                kind=Kind.LOG_FOOD,
                title="Log Protein Meal",
                subtitle=f"{protein_remaining}g protein remaining",
            ),
            0.62 + min(protein_remaining / 100.0, 0.16) + _affinity(Kind.LOG_FOOD, context) * 0.18,
        )
        add(
            DailyCoachAction(kind=Kind.LOG_FOOD_CAMERA, title="Scan Next Meal", subtitle="Fast photo log"),
            0.58 + min(protein_remaining / 120.0, 0.12) + _affinity(Kind.LOG_FOOD_CAMERA, context) * 0.16,
        )

    if context.calories_consumed > 0:
        add(
            DailyCoachAction(kind=Kind.OPEN_CALORIE_DETAIL, title="Open Calorie Detail"),
            0.44 + _affinity(Kind.OPEN_CALORIE_DETAIL, context) * 0.2,
        )

    add(
        DailyCoachAction(kind=Kind.OPEN_MACRO_DETAIL, title="Open Macro Detail"),
        0.42 + _affinity(Kind.OPEN_MACRO_DETAIL, context) * 0.2,
    )

    if any(s.domain in (SignalDomain.PAIN, SignalDomain.RECOVERY) for s in context.active_signals):
        add(
            DailyCoachAction(kind=Kind.OPEN_RECOVERY, title="Check Recovery"),
            0.66 + _affinity(Kind.OPEN_RECOVERY, context) * 0.2,
        )

    add(
        DailyCoachAction(kind=Kind.OPEN_PROFILE, title="Open Profile"),
        0.34 + _affinity(Kind.OPEN_PROFILE, context) * 0.2,
    )

    trigger = (context.plan_review_trigger or "").strip()
    if trigger:
        if trigger == "plan_age":
            kind, title = Kind.REVIEW_WORKOUT_PLAN, "Review Workout Plan"
        else:
            kind, title = Kind.REVIEW_NUTRITION_PLAN, "Review Nutrition Plan"
        add(DailyCoachAction(kind=kind, title=title), 0.8 + _affinity(kind, context) * 0.18)

    ranked = sorted(
        _dedupe_keeping_best(candidates),
        key=lambda item: (-item.score, item.action.kind.value),
    )
    return ranked[:limit]


def score_for(action: DailyCoachAction, ranked: list[RankedAction]) -> float:
    """Score of the first ranked entry with the same kind; ``0.0`` when absent."""
    for candidate in ranked:
        if candidate.action.kind == action.kind:
            return candidate.score
    return 0.0
