"""Builds compact, ranked context packets for model prompts.

The packet is a handful of short snippets (goal, constraints, patterns,
anomalies, next actions) rendered into ``key=value`` lines and trimmed until
the estimated token count fits the budget. Output is deterministic for
identical inputs.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from config import settings
from services.pulse_action_ranker import rank_actions
from services.pulse_types import (
    CoachSignal,
    ContextPacket,
    DailyCoachActionKind,
    DailyCoachContext,
    PatternProfile,
    ReminderCandidate,
    clamp,
)

PLAN_REVIEW_MIN_RANGE_KG = 1.5
PLAN_REVIEW_MIN_DAYS = 30
WEIGHT_ROUTINE_PATTERN_MIN_SCORE = 0.45

# Generic next-action phrasing, keyed by ranked action kind.
_ACTION_PHRASES = {
    DailyCoachActionKind.LOG_FOOD: "Log a protein-focused meal",
    DailyCoachActionKind.LOG_FOOD_CAMERA: "Scan your next meal",
    DailyCoachActionKind.LOG_WEIGHT: "Log a morning weigh-in",
    DailyCoachActionKind.OPEN_WEIGHT: "Review the weight trend",
    DailyCoachActionKind.OPEN_RECOVERY: "Check recovery for a pain-aware adjustment",
    DailyCoachActionKind.OPEN_CALORIE_DETAIL: "Review today's calories",
    DailyCoachActionKind.OPEN_MACRO_DETAIL: "Review today's macros",
    DailyCoachActionKind.OPEN_WORKOUTS: "Open workouts",
    DailyCoachActionKind.OPEN_WORKOUT_PLAN: "Open the workout plan",
    DailyCoachActionKind.OPEN_PROFILE: "Refine tomorrow's plan in the profile",
}

# Kinds rendered separately (reminders, plan reviews) or not useful as model hints.
_SKIPPED_KINDS = {
    DailyCoachActionKind.COMPLETE_REMINDER,
    DailyCoachActionKind.REVIEW_NUTRITION_PLAN,
    DailyCoachActionKind.REVIEW_WORKOUT_PLAN,
}


@dataclass(frozen=True)
class _Snippet:
    text: str
    utility: float


def estimate_tokens(text: str) -> int:
    words = len(text.split())
    return max(1, int(math.floor(words * 1.25 + 0.5)))


def primary_goal(context: DailyCoachContext) -> str:
    if context.workout_owed:
        return "Complete your workout in today's available window"
    if context.protein_remaining >= 30:
        return f"Close the protein gap (~{context.protein_remaining}g remaining)"
    if context.calorie_remaining >= 450:
        return "Finish nutrition within today's calorie target"
    return "Protect consistency and recovery for tomorrow"


def _ranked(snippets: Iterable[_Snippet]) -> list[_Snippet]:
    # Stable sort keeps insertion order for equal utility.
    return sorted(snippets, key=lambda s: -s.utility)


def _constraints(signals: Iterable[CoachSignal], context: DailyCoachContext) -> list[_Snippet]:
    ranked = [
        _Snippet(
            text=f"{s.domain.display_name}: {s.title}",
            utility=clamp(s.severity * 0.7 + s.confidence * 0.3),
        )
        for s in sorted(signals, key=lambda s: -(s.severity * s.confidence))
    ]
    if context.workout_owed and context.now.hour > context.workout_window_end_hour:
        ranked.append(_Snippet(text="Today's workout window has passed", utility=0.8))
    return _ranked(ranked)


def _patterns(profile: PatternProfile, context: DailyCoachContext) -> list[_Snippet]:
    ranked: list[_Snippet] = []

    window = profile.strongest_workout_window(min_score=0.32)
    if window is not None:
        score = profile.workout_window_scores.get(window.value, 0.0)
        ranked.append(_Snippet(
            text=f"You usually train in the {window.label.lower()}",
            utility=clamp(score * 0.9 + profile.confidence * 0.1),
        ))

    meal_window = profile.strongest_meal_window(min_score=0.28)
    if meal_window is not None:
        score = profile.meal_window_scores.get(meal_window.value, 0.0)
        ranked.append(_Snippet(
            text=f"Most meal logs happen in the {meal_window.label.lower()}",
            utility=clamp(score * 0.85 + profile.confidence * 0.15),
        ))

    if profile.common_protein_anchors:
        anchors = ", ".join(profile.common_protein_anchors[:2])
        ranked.append(_Snippet(
            text=f"Common protein anchors: {anchors}",
            utility=clamp(0.62 + min(len(profile.common_protein_anchors), 3) * 0.08),
        ))

    for note in profile.adherence_notes:
        ranked.append(_Snippet(text=note, utility=0.58))

    if context.weight_log_routine_score >= WEIGHT_ROUTINE_PATTERN_MIN_SCORE:
        routine_utility = clamp(0.5 + context.weight_log_routine_score * 0.3)
        if context.weight_likely_log_weekday:
            ranked.append(_Snippet(
                text=f"Weigh-ins usually happen on {context.weight_likely_log_weekday}",
                utility=routine_utility,
            ))
        if context.weight_likely_log_times:
            ranked.append(_Snippet(
                text=f"Weigh-ins usually happen in the {context.weight_likely_log_times[0]}",
                utility=routine_utility - 0.01,
            ))

    return _ranked(ranked)


def _anomalies(context: DailyCoachContext) -> list[_Snippet]:
    anomalies: list[_Snippet] = []
    trend = context.trend
    if trend is not None:
        if trend.low_protein_streak >= 2:
            anomalies.append(_Snippet(
                text=f"Protein has been under target for {trend.low_protein_streak} days",
                utility=clamp(0.62 + min(trend.low_protein_streak, 4) * 0.08),
            ))
        if trend.days_since_workout >= 3:
            anomalies.append(_Snippet(
                text=f"No workout logged for {trend.days_since_workout} days",
                utility=clamp(0.6 + min(trend.days_since_workout, 6) * 0.05),
            ))
        if trend.logging_consistency < 0.5:
            anomalies.append(_Snippet(
                text="Logging coverage is low this week",
                utility=clamp(0.72 - trend.logging_consistency * 0.5),
            ))

    if context.missed_reminder_count > 0:
        anomalies.append(_Snippet(
            text=f"{context.missed_reminder_count} reminder(s) missed today",
            utility=clamp(0.5 + min(context.missed_reminder_count, 4) * 0.05),
        ))
    return _ranked(anomalies)


def reminder_actions(
    context: DailyCoachContext,
    threshold: float | None = None,
    limit: int | None = None,
) -> list[str]:
    """Reminders at or above ``threshold``, best score first, then earliest time."""
    threshold = settings.PULSE_REMINDER_INCLUSION_THRESHOLD if threshold is None else threshold
    limit = settings.PULSE_MAX_REMINDER_ACTIONS if limit is None else limit

    eligible: list[tuple[float, ReminderCandidate]] = [
        (context.reminder_score(c.id), c)
        for c in context.pending_reminder_candidates
        if context.reminder_score(c.id) >= threshold
    ]
    eligible.sort(key=lambda item: (-item[0], item[1].minute_of_day, item[1].id))
    return [f"Complete {c.title} at {c.time}" for _, c in eligible[: max(limit, 0)]]


def _generic_actions(context: DailyCoachContext) -> list[str]:
    actions: list[str] = []
    for ranked in rank_actions(context, context.now, limit=len(DailyCoachActionKind)):
        kind = ranked.action.kind
        if kind in _SKIPPED_KINDS:
            continue
        if kind == DailyCoachActionKind.START_WORKOUT:
            actions.append(ranked.action.title)
        elif kind in _ACTION_PHRASES:
            actions.append(_ACTION_PHRASES[kind])
    return actions


def plan_review_action(context: DailyCoachContext) -> str | None:
    trigger = (context.plan_review_trigger or "").strip()
    if not trigger:
        return None
    range_kg = context.weight_recent_range_kg or 0.0
    days_since = context.plan_review_days_since or 0
    if range_kg < PLAN_REVIEW_MIN_RANGE_KG and days_since < PLAN_REVIEW_MIN_DAYS:
        return None
    return "Review Workout Plan" if trigger == "plan_age" else "Review Nutrition Plan"


def _render(
    goal: str,
    constraints: list[str],
    patterns: list[str],
    anomalies: list[str],
    actions: list[str],
) -> str:
    lines = [f"goal={goal}"]
    if constraints:
        lines.append("constraints=" + " | ".join(constraints))
    if patterns:
        lines.append("patterns=" + " | ".join(patterns))
    if anomalies:
        lines.append("anomalies=" + " | ".join(anomalies))
    if actions:
        lines.append("next_actions=" + " | ".join(actions))
    return "\n".join(lines)


def _max_words(token_budget: int) -> int:
    words = 0
    while math.floor((words + 1) * 1.25 + 0.5) <= token_budget:
        words += 1
    return max(words, 1)


def _truncate_to_budget(summary: str, token_budget: int) -> str:
    kept_lines: list[str] = []
    remaining = _max_words(token_budget)
    for line in summary.split("\n"):
        words = line.split()
        if not words:
            continue
        if remaining <= 0:
            break
        kept_lines.append(" ".join(words[:remaining]))
        remaining -= min(len(words), remaining)
    return "\n".join(kept_lines)


def assemble(
    pattern_profile: PatternProfile | None,
    active_signals: Iterable[CoachSignal],
    context: DailyCoachContext,
    token_budget: int | None = None,
) -> ContextPacket:
    token_budget = settings.PULSE_CONTEXT_TOKEN_BUDGET if token_budget is None else token_budget
    if token_budget < 1:
        raise ValueError("token_budget must be at least 1")
    profile = pattern_profile or PatternProfile.empty()
    signals = [s for s in active_signals if s.is_active(context.now)]

    goal = primary_goal(context)
    constraints = [s.text for s in _constraints(signals, context)][:2]
    patterns = [s.text for s in _patterns(profile, context)][:3]
    anomalies = [s.text for s in _anomalies(context)][:2]

    action_slots = max(settings.PULSE_MAX_SUGGESTED_ACTIONS, 0)
    actions = reminder_actions(context)[:action_slots]
    for text in _generic_actions(context):
        if len(actions) >= action_slots:
            break
        if text not in actions:
            actions.append(text)
    review = plan_review_action(context)
    if review is not None and review not in actions:
        actions.append(review)

    summary = _render(goal, constraints, patterns, anomalies, actions)
    while estimate_tokens(summary) > token_budget:
        if anomalies:
            anomalies.pop()
        elif len(patterns) > 1:
            patterns.pop()
        elif len(actions) > 1:
            actions.pop()
        elif len(constraints) > 1:
            constraints.pop()
        else:
            break
        summary = _render(goal, constraints, patterns, anomalies, actions)

    if estimate_tokens(summary) > token_budget:
        summary = _truncate_to_budget(summary, token_budget)

    return ContextPacket(
        goal=goal,
        constraints=tuple(constraints),
        patterns=tuple(patterns),
        anomalies=tuple(anomalies),
        suggested_actions=tuple(actions),
        estimated_tokens=estimate_tokens(summary),
        prompt_summary=summary,
    )
