from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import BehaviorEventRecord  # noqa: E402
from services.behavior_tracker import (  # noqa: E402
    events_between,
    record_event,
    record_plan_decision,
    suggestion_action_key,
    todays_action_keys,
)
from services.pulse_types import (  # noqa: E402
    BehaviorActionKey,
    BehaviorDomain,
    BehaviorOutcome,
    BehaviorSurface,
    PlanProposalDecision,
)


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def test_record_event_persists_and_round_trips_metadata():
    db = _new_db()
    row = record_event(
        db,
        action_key=f"  {BehaviorActionKey.LOG_WEIGHT} ",
        domain=BehaviorDomain.BODY,
        surface=BehaviorSurface.WEIGHT,
        outcome=BehaviorOutcome.COMPLETED,
        related_entity_id="w-1",
        metadata={"source": "scale"},
        occurred_at=datetime(2025, 1, 7, 7, 15),
    )
    db.commit()

    assert row is not None
    assert row.action_key == BehaviorActionKey.LOG_WEIGHT

    events = events_between(db, datetime(2025, 1, 7), datetime(2025, 1, 8))
    assert len(events) == 1
    assert events[0].domain == BehaviorDomain.BODY
    assert events[0].outcome == BehaviorOutcome.COMPLETED
    assert events[0].metadata == {"source": "scale"}
    assert events[0].related_entity_id == "w-1"


def test_blank_action_key_is_ignored():
    db = _new_db()
    assert record_event(db, action_key="   ", domain=BehaviorDomain.GENERAL, surface=BehaviorSurface.SYSTEM) is None
    assert db.query(BehaviorEventRecord).count() == 0


def test_unknown_stored_enum_values_fall_back_to_defaults():
    db = _new_db()
    db.add(BehaviorEventRecord(
        action_key="legacy.tap",
        domain="legacy",
        surface="watch",
        outcome="swiped",
        occurred_at=datetime(2025, 1, 7, 9, 0),
        metadata_json="not json",
    ))
    db.commit()

    event = events_between(db, datetime(2025, 1, 7), datetime(2025, 1, 8))[0]
    assert event.domain == BehaviorDomain.GENERAL
    assert event.surface == BehaviorSurface.SYSTEM
    assert event.outcome == BehaviorOutcome.PERFORMED
    assert event.metadata is None


def test_window_read_is_inclusive_and_ordered():
    db = _new_db()
    for hour in (10, 8, 12):
        record_event(
            db,
            action_key=BehaviorActionKey.LOG_FOOD,
            domain=BehaviorDomain.NUTRITION,
            surface=BehaviorSurface.FOOD,
            occurred_at=datetime(2025, 1, 7, hour, 0),
        )
    db.commit()

    events = events_between(db, datetime(2025, 1, 7, 8, 0), datetime(2025, 1, 7, 10, 0))
    assert [e.occurred_at.hour for e in events] == [8, 10]


def test_todays_action_keys_split_opened_and_completed():
    db = _new_db()
    now = datetime(2025, 1, 7, 12, 0)
    record_event(db, action_key=BehaviorActionKey.OPEN_WEIGHT, domain=BehaviorDomain.BODY,
                 surface=BehaviorSurface.DASHBOARD, outcome=BehaviorOutcome.OPENED,
                 occurred_at=datetime(2025, 1, 7, 8, 0))
    record_event(db, action_key=BehaviorActionKey.LOG_FOOD, domain=BehaviorDomain.NUTRITION,
                 surface=BehaviorSurface.FOOD, occurred_at=datetime(2025, 1, 7, 9, 0))
    record_event(db, action_key=BehaviorActionKey.START_WORKOUT, domain=BehaviorDomain.WORKOUT,
                 surface=BehaviorSurface.WORKOUTS, occurred_at=datetime(2025, 1, 6, 18, 0))
    record_event(db, action_key=BehaviorActionKey.LOG_WEIGHT, domain=BehaviorDomain.BODY,
                 surface=BehaviorSurface.WEIGHT, outcome=BehaviorOutcome.PRESENTED,
                 occurred_at=datetime(2025, 1, 7, 10, 0))
    db.commit()

    opened, completed = todays_action_keys(events_between(db, datetime(2025, 1, 6), now), now)
    assert opened == frozenset({BehaviorActionKey.OPEN_WEIGHT})
    assert completed == frozenset({BehaviorActionKey.LOG_FOOD})


def test_suggestion_types_map_to_action_keys():
    assert suggestion_action_key("review_workout_plan") == BehaviorActionKey.REVIEW_WORKOUT_PLAN
    assert suggestion_action_key("plan") == BehaviorActionKey.REVIEW_NUTRITION_PLAN
    assert suggestion_action_key("Log Weight") == BehaviorActionKey.LOG_WEIGHT
    assert suggestion_action_key("start workout") == BehaviorActionKey.START_WORKOUT
    assert suggestion_action_key("protein snack") == BehaviorActionKey.LOG_FOOD
    assert suggestion_action_key("hydrate more") == "engagement.suggestion.hydrate_more"


def test_plan_decisions_are_logged_without_applying_anything():
    db = _new_db()
    row = record_plan_decision(
        db,
        proposal_id="p1",
        decision=PlanProposalDecision.APPLY,
        occurred_at=datetime(2025, 1, 7, 18, 0),
    )
    db.commit()

    assert row.action_key == BehaviorActionKey.APPLY_PLAN_UPDATE
    assert row.outcome == BehaviorOutcome.SUGGESTED_TAP.value
    assert row.related_entity_id == "p1"

    later = record_plan_decision(db, proposal_id="p1", decision=PlanProposalDecision.LATER)
    assert later.outcome == BehaviorOutcome.DISMISSED.value

    with pytest.raises(ValueError):
        record_plan_decision(db, proposal_id=" ", decision=PlanProposalDecision.REVIEW)
