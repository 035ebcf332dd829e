"""Deterministic daily coach recommendations.

``make_recommendation`` is pure and total: every context and preference
combination maps to a valid recommendation.
"""
from __future__ import annotations

from services.pulse_types import (
    CoachSignal,
    DailyCoachAction,
    DailyCoachActionKind,
    DailyCoachContext,
    DailyCoachPhase,
    DailyCoachPreferences,
    DailyCoachRecommendation,
    DailyCoachSwap,
    EffortMode,
    PulseQuestion,
    PulseTimeWindow,
    QuestionMode,
    SignalDomain,
    TomorrowFocus,
    TrendSnapshot,
    WorkoutWindow,
    clamp,
    has_recent_question_answer,
)

Kind = DailyCoachActionKind

LEARNED_WINDOW_MIN_SCORE = 0.38
RESCUE_HOUR = 20
SWAP_COUNT = 3


def _progress(consumed: int, goal: int) -> float:
    if goal <= 0:
        return 0.0
    return clamp(consumed / goal)


def resolve_workout_window(context: DailyCoachContext, preferences: DailyCoachPreferences) -> tuple[int, int]:
    """Learned window first, then the preferred window, then the context hours."""
    if context.pattern_profile is not None:
        learned = context.pattern_profile.strongest_workout_window(min_score=LEARNED_WINDOW_MIN_SCORE)
        if learned is not None:
            return learned.hour_range
    if preferences.workout_window != WorkoutWindow.FLEXIBLE:
        return preferences.workout_window.hours
    return context.workout_window_start_hour, context.workout_window_end_hour


def schedule_risk(hour: int, start_hour: int, end_hour: int, workout_owed: bool) -> float:
    if not workout_owed:
        return 0.05
    if hour < start_hour:
        return 0.25
    if hour <= end_hour:
        span = max(end_hour - start_hour, 1)
        elapsed = max(0, hour - start_hour)
        return clamp(0.35 + (elapsed / span) * 0.45)
    return 0.88


def trend_risk(trend: TrendSnapshot | None) -> float:
    if trend is None:
        return 0.45

    logging_penalty = (1.0 - trend.logging_consistency) * 0.35
    protein_penalty = (1.0 - trend.protein_hit_rate) * 0.35
    if trend.days_since_workout >= 5:
        workout_penalty = 0.30
    elif trend.days_since_workout >= 3:
        workout_penalty = 0.18
    else:
        workout_penalty = 0.05
    if trend.low_protein_streak >= 3:
        streak_penalty = 0.20
    elif trend.low_protein_streak >= 2:
        streak_penalty = 0.10
    else:
        streak_penalty = 0.0
    return clamp(logging_penalty + protein_penalty + workout_penalty + streak_penalty)


def recovery_readiness(ready_muscle_count: int, signals: tuple[CoachSignal, ...]) -> float:
    base = clamp(ready_muscle_count / 8.0)
    pain = max((s.severity for s in signals if s.domain == SignalDomain.PAIN), default=0.0)
    sleep = max((s.severity for s in signals if s.domain == SignalDomain.SLEEP), default=0.0)
    return clamp(base - pain * 0.35 - sleep * 0.20)


def _nutrition_lags(context: DailyCoachContext, hour: int) -> bool:
    if context.calorie_goal <= 0 and context.protein_goal <= 0:
        return False
    nutrition = (
        _progress(context.calories_consumed, context.calorie_goal)
        + _progress(context.protein_consumed, context.protein_goal)
    ) / 2.0
    day_share = clamp((hour - 6) / 16.0)
    return nutrition + 0.35 < day_share


def derive_phase(context: DailyCoachContext, start_hour: int, end_hour: int) -> DailyCoachPhase:
    hour = context.now.hour
    if context.has_active_workout:
        return DailyCoachPhase.ON_TRACK
    if context.has_workout_today:
        return DailyCoachPhase.COMPLETED
    if hour < start_hour:
        nothing_logged = context.calories_consumed <= 0 and context.protein_consumed <= 0
        return DailyCoachPhase.MORNING_PLAN if nothing_logged else DailyCoachPhase.ON_TRACK
    if hour <= end_hour:
        if hour >= end_hour - 1 or _nutrition_lags(context, hour):
            return DailyCoachPhase.AT_RISK
        return DailyCoachPhase.ON_TRACK
    return DailyCoachPhase.RESCUE if hour >= RESCUE_HOUR else DailyCoachPhase.AT_RISK


def _workout_name(context: DailyCoachContext) -> str:
    return context.recommended_workout_name or "Workout"


def _workout_action(context: DailyCoachContext, preferences: DailyCoachPreferences) -> DailyCoachAction:
    name = _workout_name(context)
    if context.has_active_workout:
        return DailyCoachAction(kind=Kind.START_WORKOUT, title=f"Resume {name}", subtitle="Session in progress")
    if preferences.effort_mode == EffortMode.CONSISTENCY:
        minutes = max(10, min(preferences.tomorrow_workout_minutes, 20))
        return DailyCoachAction(
            kind=Kind.START_WORKOUT,
            title=f"Start {minutes}-Min Session",
            subtitle="Short and repeatable",
        )
    if preferences.effort_mode == EffortMode.PUSH:
        return DailyCoachAction(kind=Kind.START_WORKOUT, title=f"Start Full {name}", subtitle="Go for the full plan")
    return DailyCoachAction(kind=Kind.START_WORKOUT, title=f"Start {name}")


def _recovery_workout_action(preferences: DailyCoachPreferences) -> DailyCoachAction:
    minutes = max(10, preferences.tomorrow_workout_minutes // 2)
    return DailyCoachAction(
        kind=Kind.START_WORKOUT,
        title=f"Start {minutes}-Min Recovery Session",
        subtitle="Light movement after today's session",
    )


def _food_action(context: DailyCoachContext) -> DailyCoachAction:
    if context.protein_remaining > 0:
        return DailyCoachAction(
            kind=Kind.LOG_FOOD,
            title="Log Protein Meal",
            subtitle=f"{context.protein_remaining}g protein remaining",
        )
    if context.calorie_remaining > 0:
        return DailyCoachAction(kind=Kind.LOG_FOOD, title="Log Final Meal", subtitle="Finish within target")
    return DailyCoachAction(kind=Kind.LOG_FOOD, title="Log Recovery Meal", subtitle="Keep the streak clean")


def _recovery_action() -> DailyCoachAction:
    return DailyCoachAction(kind=Kind.OPEN_RECOVERY, title="Check Recovery", subtitle="See what's ready tomorrow")


def _summary_action() -> DailyCoachAction:
    return DailyCoachAction(kind=Kind.OPEN_CALORIE_DETAIL, title="Open Today's Summary")


def _has_any_signal(context: DailyCoachContext) -> bool:
    return (
        context.calorie_goal > 0
        or context.protein_goal > 0
        or context.has_workout_today
        or context.has_active_workout
        or context.recommended_workout_name is not None
    )


def _actions_for(
    phase: DailyCoachPhase,
    context: DailyCoachContext,
    preferences: DailyCoachPreferences,
) -> tuple[DailyCoachAction, DailyCoachAction]:
    if not _has_any_signal(context):
        return _summary_action(), DailyCoachAction(kind=Kind.OPEN_PROFILE, title="Set Your Goals")

    if preferences.tomorrow_focus == TomorrowFocus.NUTRITION:
        secondary = _workout_action(context, preferences) if context.workout_owed else _recovery_action()
        return _food_action(context), secondary

    if preferences.tomorrow_focus == TomorrowFocus.WORKOUT:
        if context.has_workout_today and not context.has_active_workout:
            return _recovery_workout_action(preferences), _food_action(context)
        return _workout_action(context, preferences), _food_action(context)

    if phase == DailyCoachPhase.COMPLETED:
        return _food_action(context), _recovery_action()

    primary = _workout_action(context, preferences)
    if phase == DailyCoachPhase.RESCUE:
        primary = DailyCoachAction(
            kind=Kind.START_WORKOUT,
            title="Start 15-Min Quick Session",
            subtitle="Fast consistency win",
        )
    if context.protein_remaining > 0:
        return primary, _food_action(context)
    return primary, DailyCoachAction(kind=Kind.OPEN_MACRO_DETAIL, title="Open Macro Detail")


def rescue_swaps(context: DailyCoachContext, preferences: DailyCoachPreferences) -> tuple[DailyCoachSwap, ...]:
    """Three alternatives ranked by urgency, highest first."""
    pain = max(
        (s.severity for s in context.active_signals if s.domain in (SignalDomain.PAIN, SignalDomain.RECOVERY)),
        default=0.0,
    )
    quick_minutes = 15 if preferences.effort_mode == EffortMode.CONSISTENCY else 20

    options = [
        DailyCoachSwap(
            action=DailyCoachAction(
                kind=Kind.START_WORKOUT,
                title=f"Start {quick_minutes}-Min Quick Session",
                subtitle="Protects the streak",
            ),
            reason="A short session still counts today",
            score=0.9 if context.workout_owed else 0.3,
        ),
        DailyCoachSwap(
            action=_food_action(context),
            reason="Protein closes out recovery",
            score=min(0.6 + min(context.protein_remaining / 150.0, 0.3), 0.85),
        ),
        DailyCoachSwap(
            action=DailyCoachAction(
                kind=Kind.OPEN_RECOVERY,
                title="Recovery Walk + Stretch",
                subtitle="Low-friction momentum",
            ),
            reason="Light movement keeps tomorrow easy",
            score=0.45 + pain * 0.35,
        ),
        DailyCoachSwap(
            action=_summary_action(),
            reason="Review the day and reset for tomorrow",
            score=0.4,
        ),
    ]
    options.sort(key=lambda swap: (-swap.score, swap.action.kind.value))
    return tuple(options[:SWAP_COUNT])


def _strongest_pain(signals: tuple[CoachSignal, ...]) -> CoachSignal | None:
    pains = [s for s in signals if s.domain == SignalDomain.PAIN]
    if not pains:
        return None
    return max(pains, key=lambda s: s.severity)


def _title(phase: DailyCoachPhase, risk: float, pain: CoachSignal | None, trend: TrendSnapshot | None) -> str:
    if pain is not None:
        return "Smart Recovery Mode"
    if trend is not None and trend.days_since_workout >= 4 and phase != DailyCoachPhase.COMPLETED:
        return "Let's Rebuild Momentum"
    if trend is not None and trend.low_protein_streak >= 3 and phase == DailyCoachPhase.COMPLETED:
        return "Strong Recovery Finish"
    if phase == DailyCoachPhase.MORNING_PLAN:
        return "Today's Pulse Plan"
    if phase == DailyCoachPhase.ON_TRACK:
        return "On Track"
    if phase == DailyCoachPhase.AT_RISK:
        return "You Can Still Make Today Count"
    if phase == DailyCoachPhase.RESCUE:
        return "Let's Save The Day" if risk > 0.85 else "Adaptive Plan"
    return "Great Work Today"


def _message(
    phase: DailyCoachPhase,
    context: DailyCoachContext,
    pain: CoachSignal | None,
) -> str:
    name = context.recommended_workout_name or "your recommended session"
    trend = context.trend
    if pain is not None:
        return f"{pain.title}. We'll keep the plan pain-safe and still productive."
    if trend is not None and trend.days_since_workout >= 4 and phase != DailyCoachPhase.COMPLETED:
        return f"You've had a few days off, which is okay. A lighter {name} block gets momentum back quickly."

    if phase == DailyCoachPhase.MORNING_PLAN:
        preferred = None
        if context.pattern_profile is not None:
            preferred = context.pattern_profile.strongest_workout_window(min_score=LEARNED_WINDOW_MIN_SCORE)
        if preferred is not None and preferred not in (PulseTimeWindow.EARLY_MORNING, PulseTimeWindow.MORNING):
            return (
                f"You usually train in the {preferred.label.lower()}. "
                f"Keep energy steady now and execute {name} later."
            )
        return f"Start with {name}, then finish with protein so recovery stays strong."
    if phase == DailyCoachPhase.ON_TRACK:
        return "You're in a good rhythm. Keep it simple and close the nutrition gap tonight."
    if phase == DailyCoachPhase.AT_RISK:
        return "A quick decision still wins this day. Pick full session or a short adaptive version."
    if phase == DailyCoachPhase.RESCUE:
        return "Window slipped, but a short session still protects consistency for tomorrow."

    if trend is not None and trend.low_protein_streak >= 2:
        return "Workout done. A high-protein meal tonight helps break the recent low-protein trend."
    if context.protein_remaining > 0:
        return f"Workout done. Add about {context.protein_remaining}g protein to support recovery."
    if context.calorie_remaining > 0:
        return f"Workout done. Stay inside your remaining {context.calorie_remaining} kcal target."
    return "Workout and nutrition lined up well today. Keep hydration and sleep simple tonight."


def _reasons(context: DailyCoachContext, adherence: float, readiness: float, pain: CoachSignal | None) -> tuple[str, ...]:
    reasons: list[str] = []
    trend = context.trend
    if trend is not None:
        reasons.append(f"{trend.days_window}d logging {trend.days_with_food_logs}/{trend.days_window} days")
        if trend.low_protein_streak >= 2:
            reasons.append(f"Protein under target {trend.low_protein_streak}d streak")
        else:
            reasons.append(f"Protein hit {trend.protein_target_hit_days}/{trend.days_window} days")
        if trend.days_since_workout >= 3:
            reasons.append(f"Last workout {trend.days_since_workout}d ago")
        else:
            reasons.append(f"Workout days {trend.workout_days}/{trend.days_window}")

    reasons.append(f"Adherence {int(round(adherence * 100))}%")
    reasons.append(f"Recovery {int(round(readiness * 100))}%")
    if pain is not None:
        reasons.append(pain.title)
    else:
        reasons.append(f"{max(context.ready_muscle_count, 0)} muscle groups ready")
    return tuple(reasons[:3])


def confidence_label(confidence: float) -> str:
    if confidence < 0.34:
        return "Low data confidence"
    if confidence < 0.67:
        return "Medium data confidence"
    return "High data confidence"


def tomorrow_preview(preferences: DailyCoachPreferences) -> str:
    minutes = preferences.tomorrow_workout_minutes
    if preferences.effort_mode == EffortMode.CONSISTENCY:
        minutes = min(minutes, 30)
    window = preferences.workout_window.value
    if preferences.tomorrow_focus == TomorrowFocus.NUTRITION:
        return f"Tomorrow: protein-first meals, optional {minutes}-min session"
    if preferences.tomorrow_focus == TomorrowFocus.WORKOUT:
        if preferences.workout_window == WorkoutWindow.FLEXIBLE:
            return f"Tomorrow: {minutes}-min session whenever it fits"
        return f"Tomorrow: {minutes}-min {window} session"
    return f"Tomorrow: {minutes}-min session plus a protein-first breakfast"


def make_recommendation(
    context: DailyCoachContext,
    preferences: DailyCoachPreferences | None = None,
) -> DailyCoachRecommendation:
    preferences = preferences or DailyCoachPreferences()
    hour = context.now.hour
    start_hour, end_hour = resolve_workout_window(context, preferences)

    phase = derive_phase(context, start_hour, end_hour)
    risk = schedule_risk(hour, start_hour, end_hour, context.workout_owed)

    calorie_progress = _progress(context.calories_consumed, context.calorie_goal)
    protein_progress = _progress(context.protein_consumed, context.protein_goal)
    workout_progress = 0.0 if context.workout_owed else 1.0
    adherence = clamp((calorie_progress + protein_progress + workout_progress) / 3.0)
    readiness = recovery_readiness(context.ready_muscle_count, context.active_signals)

    coverage = clamp(
        (0.45 if context.calories_consumed > 0 else 0.0)
        + (0.35 if context.protein_consumed > 0 else 0.0)
        + (0.0 if context.workout_owed else 0.20)
    )
    consistency = 1.0 - abs(calorie_progress - protein_progress)
    confidence = clamp(
        0.40 * coverage
        + 0.25 * consistency
        + 0.20 * (1.0 - risk)
        + 0.15 * (1.0 - trend_risk(context.trend))
    )

    pain = _strongest_pain(context.active_signals)
    primary, secondary = _actions_for(phase, context, preferences)
    swaps = rescue_swaps(context, preferences) if phase == DailyCoachPhase.RESCUE else ()

    return DailyCoachRecommendation(
        phase=phase,
        primary_action=primary,
        secondary_action=secondary,
        swaps=swaps,
        title=_title(phase, risk, pain, context.trend),
        message=_message(phase, context, pain),
        reasons=_reasons(context, adherence, readiness, pain),
        confidence=confidence,
        confidence_label=confidence_label(confidence),
        tomorrow_preview=tomorrow_preview(preferences),
    )


def question_for(context: DailyCoachContext, phase: DailyCoachPhase) -> PulseQuestion:
    """Deterministic check-in question for the current state.

    Questions already answered (see ``has_recent_question_answer``) are
    skipped in favor of the next one down the list.
    """
    signals = context.active_signals
    trend = context.trend
    pain = _strongest_pain(signals)

    if pain is not None and not has_recent_question_answer("pain-follow-up", signals):
        return PulseQuestion(
            id="pain-follow-up",
            prompt=f"How does {pain.domain.display_name.lower()} feel now?",
            mode=QuestionMode.SLIDER,
            placeholder="Any movement that triggered it?",
            slider_min=0,
            slider_max=10,
            slider_step=1,
            slider_unit="/10",
        )
    if phase == DailyCoachPhase.RESCUE and not has_recent_question_answer("schedule-rescue", signals):
        return PulseQuestion(
            id="schedule-rescue",
            prompt="What can you commit to tonight?",
            mode=QuestionMode.SINGLE_CHOICE,
            options=("15 min quick lift", "30 min full session", "Recovery walk + protein"),
            placeholder="Or add a quick note",
        )
    if (
        trend is not None
        and trend.days_since_workout >= 3
        and phase != DailyCoachPhase.COMPLETED
        and not has_recent_question_answer("workout-consistency-unblock", signals)
    ):
        return PulseQuestion(
            id="workout-consistency-unblock",
            prompt="What helps you get a workout in this week?",
            mode=QuestionMode.SINGLE_CHOICE,
            options=("Short home session", "Schedule gym time", "Need a lighter plan"),
            placeholder="Optional note",
        )
    if trend is not None and trend.low_protein_streak >= 2 and not has_recent_question_answer(
        "protein-trend-blocker", signals
    ):
        return PulseQuestion(
            id="protein-trend-blocker",
            prompt="What's blocking protein lately?",
            mode=QuestionMode.SINGLE_CHOICE,
            options=("No time to prep", "Not hungry", "Need easy options"),
            placeholder="Optional note",
        )
    if trend is not None and trend.logging_consistency < 0.5 and not has_recent_question_answer(
        "logging-consistency", signals
    ):
        return PulseQuestion(
            id="logging-consistency",
            prompt="Want a faster logging setup?",
            mode=QuestionMode.MULTIPLE_CHOICE,
            options=("1-tap repeat meals", "Photo-first logging", "Reminder prompts"),
            placeholder="Optional note",
        )
    if context.protein_remaining >= 35 and not has_recent_question_answer("protein-close", signals):
        return PulseQuestion(
            id="protein-close",
            prompt="How do you want to close protein today?",
            mode=QuestionMode.MULTIPLE_CHOICE,
            options=("Shake", "Greek yogurt", "Lean dinner", "Need suggestions"),
            placeholder="Add food preference",
        )
    if not has_recent_question_answer("readiness-scan", signals):
        return PulseQuestion(
            id="readiness-scan",
            prompt="Quick readiness scan for tomorrow?",
            mode=QuestionMode.SINGLE_CHOICE,
            options=("Push", "Balanced", "Keep it light"),
            placeholder="Optional note",
        )
    return PulseQuestion(
        id="open-note",
        prompt="Anything I should adapt for tomorrow?",
        mode=QuestionMode.NOTE,
        placeholder="Type a quick note",
        max_length=180,
    )
