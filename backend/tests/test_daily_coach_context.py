from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.daily_coach_context import CoachHistory, TodayState, build_daily_coach_context  # noqa: E402
from services.daily_coach_engine import make_recommendation  # noqa: E402
from services.pulse_pattern_service import FoodEntry, WeightEntry, WorkoutSession  # noqa: E402
from services.pulse_types import (  # noqa: E402
    BehaviorActionKey,
    BehaviorDomain,
    BehaviorEvent,
    BehaviorOutcome,
    BehaviorSurface,
    CoachSignal,
    ReminderCandidate,
    ReminderCompletion,
    SignalDomain,
)


NOW = datetime(2025, 1, 8, 8, 0)


def test_context_combines_history_into_one_snapshot():
    reminder = ReminderCandidate(id="r1", title="Stretch", time="07:30 AM", hour=7, minute=30)
    history = CoachHistory(
        events=(
            BehaviorEvent(
                action_key=BehaviorActionKey.OPEN_WEIGHT,
                domain=BehaviorDomain.BODY,
                surface=BehaviorSurface.DASHBOARD,
                outcome=BehaviorOutcome.OPENED,
                occurred_at=NOW - timedelta(minutes=30),
            ),
        ),
        food_entries=(FoodEntry(NOW - timedelta(days=1), "Chicken Bowl", 700, 50.0),),
        workouts=(WorkoutSession(NOW - timedelta(days=2)),),
        weight_entries=tuple(
            WeightEntry(NOW - timedelta(days=d), 80.0 + d * 0.1) for d in (1, 8, 15)
        ),
        signals=(
            CoachSignal(domain=SignalDomain.SLEEP, title="Short sleep", expires_at=NOW - timedelta(hours=1)),
        ),
        pending_reminders=(reminder,),
        reminder_completions=(ReminderCompletion("r1", NOW - timedelta(days=1, minutes=20), True),),
    )
    today = TodayState(calorie_goal=2200, protein_goal=150, recommended_workout_name="Upper Body")

    context = build_daily_coach_context(NOW, today, history)

    assert context.trend is not None
    assert context.trend.days_since_workout == 2
    assert context.pattern_profile is not None
    assert context.behavior_profile.action_counts == {BehaviorActionKey.OPEN_WEIGHT: 1}
    assert context.today_opened_action_keys == frozenset({BehaviorActionKey.OPEN_WEIGHT})
    assert context.active_signals == ()
    assert context.days_since_last_weight_log == 1
    assert context.weight_likely_log_times == ("Morning (4-9 AM)",)
    assert context.weight_likely_log_weekday == "Tuesday"
    assert context.reminder_score("r1") > 0.0
    assert context.missed_reminder_count == 1

    rec = make_recommendation(context)
    assert rec.primary_action.title.startswith("Start")
