from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.behavior_profile_service import bucket_label, build_profile, label_contains_hour  # noqa: E402
from services.pulse_types import (  # noqa: E402
    BehaviorActionKey,
    BehaviorDomain,
    BehaviorEvent,
    BehaviorOutcome,
    BehaviorSurface,
)


NOW = datetime(2025, 1, 7, 12, 0)


def _event(at: datetime, key: str = BehaviorActionKey.LOG_FOOD, outcome=BehaviorOutcome.COMPLETED) -> BehaviorEvent:
    return BehaviorEvent(
        action_key=key,
        domain=BehaviorDomain.NUTRITION,
        surface=BehaviorSurface.FOOD,
        outcome=outcome,
        occurred_at=at,
    )


def test_hourly_preference_blends_exact_and_neighbor_hours():
    events = [
        _event(datetime(2025, 1, 6, 8, 0)),
        _event(datetime(2025, 1, 5, 8, 10)),
        _event(datetime(2025, 1, 4, 7, 30)),
        _event(datetime(2025, 1, 3, 9, 45)),
    ]
    profile = build_profile(NOW, events)

    assert abs(profile.hourly_preference_score(BehaviorActionKey.LOG_FOOD, 8) - 0.675) < 1e-9
    assert profile.hourly_preference_score(BehaviorActionKey.LOG_FOOD, 15) == 0.0
    assert profile.hourly_preference_score("unknown.key", 8) == 0.0


def test_hourly_preference_requires_minimum_events():
    events = [_event(datetime(2025, 1, 6, 8, 0)), _event(datetime(2025, 1, 5, 8, 0))]
    profile = build_profile(NOW, events)

    assert profile.hourly_preference_score(BehaviorActionKey.LOG_FOOD, 8) == 0.0
    assert profile.hourly_preference_score(BehaviorActionKey.LOG_FOOD, 8, minimum_events=2) == 1.0


def test_dismissed_and_out_of_window_events_are_ignored():
    events = [
        _event(datetime(2025, 1, 6, 8, 0)),
        _event(datetime(2025, 1, 6, 9, 0), outcome=BehaviorOutcome.DISMISSED),
        _event(NOW - timedelta(days=31)),
        _event(NOW + timedelta(hours=1)),
        _event(datetime(2025, 1, 6, 10, 0), key="   "),
    ]
    profile = build_profile(NOW, events)

    assert profile.action_counts == {BehaviorActionKey.LOG_FOOD: 1}
    assert profile.action_hourly_counts[BehaviorActionKey.LOG_FOOD] == {8: 1}
    assert profile.last_action_at[BehaviorActionKey.LOG_FOOD] == datetime(2025, 1, 6, 8, 0)


def test_days_since_last_action_uses_calendar_days():
    now = datetime(2025, 1, 7, 0, 30)
    profile = build_profile(now, [_event(datetime(2025, 1, 6, 23, 50))])

    assert profile.days_since_last_action(BehaviorActionKey.LOG_FOOD) == 1
    assert profile.days_since_last_action(BehaviorActionKey.LOG_FOOD, now=datetime(2025, 1, 6, 23, 59)) == 0
    assert profile.days_since_last_action(BehaviorActionKey.LOG_WEIGHT) is None


def test_likely_time_labels_rank_buckets_and_respect_minimum():
    events = [
        _event(datetime(2025, 1, 6, 7, 0), key=BehaviorActionKey.LOG_WEIGHT),
        _event(datetime(2025, 1, 5, 6, 30), key=BehaviorActionKey.LOG_WEIGHT),
        _event(datetime(2025, 1, 4, 19, 0), key=BehaviorActionKey.LOG_WEIGHT),
    ]
    profile = build_profile(NOW, events)

    assert profile.likely_time_labels(BehaviorActionKey.LOG_WEIGHT) == ["Morning (4-9 AM)", "Evening (6-10 PM)"]
    assert profile.likely_time_labels(BehaviorActionKey.LOG_WEIGHT, max_labels=1) == ["Morning (4-9 AM)"]
    assert profile.likely_time_labels(BehaviorActionKey.LOG_WEIGHT, minimum_events=4) == []


def test_night_bucket_wraps_past_midnight():
    assert bucket_label(23) == "Night (10 PM-4 AM)"
    assert bucket_label(2) == "Night (10 PM-4 AM)"
    assert bucket_label(4) == "Morning (4-9 AM)"
    assert label_contains_hour("night (10 pm-4 am)", 1)
    assert not label_contains_hour("Brunch", 10)


def test_profile_to_dict_is_json_friendly():
    profile = build_profile(NOW, [_event(datetime(2025, 1, 6, 8, 0))])
    payload = profile.to_dict()

    assert payload["window_days"] == 30
    assert payload["action_hourly_counts"][BehaviorActionKey.LOG_FOOD] == {"8": 1}
    assert payload["last_action_at"][BehaviorActionKey.LOG_FOOD] == "2025-01-06T08:00:00"
