from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.pulse_context_assembler import (  # noqa: E402
    assemble,
    estimate_tokens,
    plan_review_action,
    primary_goal,
    reminder_actions,
)
from services.pulse_types import (  # noqa: E402
    CoachSignal,
    DailyCoachContext,
    PatternProfile,
    ReminderCandidate,
    SignalDomain,
    TrendSnapshot,
)


def _context(**overrides) -> DailyCoachContext:
    base = DailyCoachContext(
        now=datetime(2025, 1, 8, 10, 0),
        has_workout_today=False,
        has_active_workout=False,
        calories_consumed=900,
        calorie_goal=2200,
        protein_consumed=50,
        protein_goal=150,
    )
    return replace(base, **overrides)


def _rich_context() -> DailyCoachContext:
    return _context(
        now=datetime(2025, 1, 8, 23, 0),
        active_signals=(
            CoachSignal(domain=SignalDomain.PAIN, title="Knee soreness", severity=0.7, confidence=0.8),
            CoachSignal(domain=SignalDomain.SLEEP, title="Short sleep", severity=0.5, confidence=0.6),
        ),
        trend=TrendSnapshot(
            days_window=7,
            days_with_food_logs=3,
            protein_target_hit_days=1,
            calorie_target_hit_days=1,
            workout_days=1,
            low_protein_streak=3,
            days_since_workout=4,
        ),
        pattern_profile=PatternProfile(
            workout_window_scores={"evening": 0.7},
            meal_window_scores={"midday": 0.5},
            common_protein_anchors=("Greek Yogurt", "Chicken Salad"),
            adherence_notes=("Protein target is often missed",),
            confidence=0.6,
        ),
        missed_reminder_count=2,
    )


def test_estimate_tokens_rounds_word_count():
    assert estimate_tokens("") == 1
    assert estimate_tokens("one two three four") == 5
    assert estimate_tokens("one two") == 3


def test_primary_goal_prefers_owed_workout_then_protein():
    assert primary_goal(_context()) == "Complete your workout in today's available window"
    assert primary_goal(_context(has_workout_today=True)) == "Close the protein gap (~100g remaining)"
    assert primary_goal(_context(has_workout_today=True, protein_consumed=150, calories_consumed=2100)) == (
        "Protect consistency and recovery for tomorrow"
    )


def test_reminders_above_threshold_fill_action_slots_in_order():
    context = _context(
        has_workout_today=True,
        protein_goal=0,
        calorie_goal=0,
        pending_reminder_candidates=(
            ReminderCandidate(id="r3", title="Walk", time="07:00 AM", hour=7, minute=0),
            ReminderCandidate(id="r2", title="Hydrate", time="09:30 AM", hour=9, minute=30),
            ReminderCandidate(id="r1", title="Stretch", time="08:15 AM", hour=8, minute=15),
        ),
        pending_reminder_candidate_scores={"r1": 0.9, "r2": 0.9, "r3": 0.4},
    )

    assert reminder_actions(context) == ["Complete Stretch at 08:15 AM", "Complete Hydrate at 09:30 AM"]
    packet = assemble(None, (), context)
    assert list(packet.suggested_actions) == ["Complete Stretch at 08:15 AM", "Complete Hydrate at 09:30 AM"]
    assert packet.goal == "Protect consistency and recovery for tomorrow"


def test_plan_review_is_appended_after_ranked_actions():
    context = _context(plan_review_trigger="weight_change", plan_review_days_since=45, weight_recent_range_kg=2.6)
    packet = assemble(None, (), context)

    assert list(packet.suggested_actions) == [
        "Log a protein-focused meal",
        "Scan your next meal",
        "Review Nutrition Plan",
    ]
    assert plan_review_action(replace(context, plan_review_trigger="plan_age")) == "Review Workout Plan"
    assert plan_review_action(replace(context, plan_review_days_since=10, weight_recent_range_kg=1.0)) is None


def test_rich_context_is_capped_and_rendered():
    context = _rich_context()
    packet = assemble(context.pattern_profile, context.active_signals, context)

    assert packet.constraints == ("Today's workout window has passed", "Pain: Knee soreness")
    assert len(packet.patterns) == 3
    assert "You usually train in the evening" in packet.patterns
    assert len(packet.anomalies) == 2
    assert packet.prompt_summary.startswith("goal=Complete your workout")
    assert "\nconstraints=" in packet.prompt_summary
    assert packet.estimated_tokens == estimate_tokens(packet.prompt_summary)


def test_expired_signals_are_ignored():
    context = _context()
    expired = CoachSignal(
        domain=SignalDomain.PAIN,
        title="Old strain",
        severity=0.9,
        confidence=0.9,
        expires_at=datetime(2025, 1, 7, 9, 0),
    )
    packet = assemble(None, (expired,), context)
    assert packet.constraints == ()


def test_tight_budget_trims_deterministically():
    context = _rich_context()
    first = assemble(context.pattern_profile, context.active_signals, context, token_budget=40)
    second = assemble(context.pattern_profile, context.active_signals, context, token_budget=40)

    assert first == second
    assert first.estimated_tokens <= 40
    assert first.anomalies == ()

    tiny = assemble(context.pattern_profile, context.active_signals, context, token_budget=12)
    assert tiny.estimated_tokens <= 12
    assert tiny.prompt_summary.startswith("goal=Complete")


def test_non_positive_budget_is_rejected():
    context = _context()
    with pytest.raises(ValueError):
        assemble(None, (), context, token_budget=0)
    with pytest.raises(ValueError):
        assemble(None, (), context, token_budget=-5)

    smallest = assemble(None, (), context, token_budget=1)
    assert smallest.estimated_tokens == 1
