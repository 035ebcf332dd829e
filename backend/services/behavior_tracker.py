"""Single write path for app-wide behavior events, plus window reads."""
from __future__ import annotations

import json
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from db.models import BehaviorEventRecord
from services.pulse_types import (
    BehaviorActionKey,
    BehaviorDomain,
    BehaviorEvent,
    BehaviorOutcome,
    BehaviorSurface,
    PlanProposalDecision,
)

logger = logging.getLogger(__name__)


def _encode_metadata(metadata: dict[str, str] | None) -> str | None:
    if not metadata:
        return None
    return json.dumps({str(k): str(v) for k, v in metadata.items()}, ensure_ascii=True, sort_keys=True)


def _decode_metadata(raw: str | None) -> dict[str, str] | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable behavior event metadata")
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(k): str(v) for k, v in parsed.items()}


def _enum_or_default(enum_cls, raw: str | None, default):
    try:
        return enum_cls(raw)
    except ValueError:
        return default


def record_event(
    db: Session,
    *,
    action_key: str,
    domain: BehaviorDomain,
    surface: BehaviorSurface,
    outcome: BehaviorOutcome = BehaviorOutcome.PERFORMED,
    related_entity_id: str | None = None,
    metadata: dict[str, str] | None = None,
    occurred_at: datetime | None = None,
) -> BehaviorEventRecord | None:
    """Append one event. Blank action keys are ignored and return ``None``."""
    key = (action_key or "").strip()
    if not key:
        return None

    row = BehaviorEventRecord(
        action_key=key,
        domain=BehaviorDomain(domain).value,
        surface=BehaviorSurface(surface).value,
        outcome=BehaviorOutcome(outcome).value,
        occurred_at=occurred_at or datetime.now(),
        related_entity_id=related_entity_id,
        metadata_json=_encode_metadata(metadata),
    )
    db.add(row)
    db.flush()
    return row


def to_event(row: BehaviorEventRecord) -> BehaviorEvent:
    return BehaviorEvent(
        action_key=row.action_key,
        domain=_enum_or_default(BehaviorDomain, row.domain, BehaviorDomain.GENERAL),
        surface=_enum_or_default(BehaviorSurface, row.surface, BehaviorSurface.SYSTEM),
        outcome=_enum_or_default(BehaviorOutcome, row.outcome, BehaviorOutcome.PERFORMED),
        occurred_at=row.occurred_at,
        related_entity_id=row.related_entity_id,
        metadata=_decode_metadata(row.metadata_json),
    )


def events_between(db: Session, start: datetime, end: datetime) -> list[BehaviorEvent]:
    rows = (
        db.query(BehaviorEventRecord)
        .filter(
            BehaviorEventRecord.occurred_at >= start,
            BehaviorEventRecord.occurred_at <= end,
        )
        .order_by(BehaviorEventRecord.occurred_at.asc(), BehaviorEventRecord.id.asc())
        .all()
    )
    return [to_event(row) for row in rows]


def todays_action_keys(events: list[BehaviorEvent], now: datetime) -> tuple[frozenset[str], frozenset[str]]:
    """Split today's events into (opened keys, completed keys)."""
    opened: set[str] = set()
    completed: set[str] = set()
    for event in events:
        if event.occurred_at.date() != now.date() or event.occurred_at > now:
            continue
        if event.outcome == BehaviorOutcome.OPENED:
            opened.add(event.action_key)
        elif event.outcome in {BehaviorOutcome.COMPLETED, BehaviorOutcome.PERFORMED}:
            completed.add(event.action_key)
    return frozenset(opened), frozenset(completed)


def suggestion_action_key(suggestion_type: str) -> str:
    """Map a free-form suggestion type onto a behavior action key."""
    normalized = (suggestion_type or "").strip().lower()

    if "review" in normalized or "plan" in normalized:
        if "workout" in normalized:
            return BehaviorActionKey.REVIEW_WORKOUT_PLAN
        return BehaviorActionKey.REVIEW_NUTRITION_PLAN
    if "profile" in normalized:
        return BehaviorActionKey.OPEN_PROFILE
    if "recovery" in normalized:
        return BehaviorActionKey.OPEN_RECOVERY
    if "weight" in normalized:
        return BehaviorActionKey.LOG_WEIGHT
    if "workout" in normalized or "train" in normalized:
        return BehaviorActionKey.START_WORKOUT
    if "macro" in normalized:
        return BehaviorActionKey.OPEN_MACRO_DETAIL
    if "calorie" in normalized:
        return BehaviorActionKey.OPEN_CALORIE_DETAIL
    if "reminder" in normalized:
        return BehaviorActionKey.COMPLETE_REMINDER
    if any(term in normalized for term in ("meal", "food", "protein", "log_")):
        return BehaviorActionKey.LOG_FOOD

    return "engagement.suggestion." + normalized.replace(" ", "_")


_DECISION_OUTCOMES = {
    PlanProposalDecision.APPLY: BehaviorOutcome.SUGGESTED_TAP,
    PlanProposalDecision.REVIEW: BehaviorOutcome.OPENED,
    PlanProposalDecision.LATER: BehaviorOutcome.DISMISSED,
}


def record_plan_decision(
    db: Session,
    *,
    proposal_id: str,
    decision: PlanProposalDecision,
    occurred_at: datetime | None = None,
) -> BehaviorEventRecord:
    """Log the user's answer to a plan proposal.

    Applying the change itself is left to the host after its own
    confirmation step; this only records the decision.
    """
    proposal_id = (proposal_id or "").strip()
    if not proposal_id:
        raise ValueError("proposal_id is required")
    decision = PlanProposalDecision(decision)
    return record_event(
        db,
        action_key=BehaviorActionKey.APPLY_PLAN_UPDATE,
        domain=BehaviorDomain.PLANNING,
        surface=BehaviorSurface.DASHBOARD,
        outcome=_DECISION_OUTCOMES[decision],
        related_entity_id=proposal_id,
        metadata={"decision": decision.value},
        occurred_at=occurred_at,
    )
