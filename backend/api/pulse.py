from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config import settings
from db.database import SessionLocal, get_db
from services.behavior_profile_service import build_profile
from services.behavior_tracker import events_between, record_event, record_plan_decision, todays_action_keys
from services.daily_coach_engine import make_recommendation
from services.pulse_action_ranker import rank_actions
from services.pulse_adaptive_preferences import make_preferences
from services.pulse_content_service import PulseContentService, parse_model_reply
from services.pulse_context_assembler import assemble
from services.pulse_policy_engine import PulsePolicyEngine
from services.pulse_state_store import SqlStateStore
from services.pulse_types import (
    BehaviorDomain,
    BehaviorOutcome,
    BehaviorSurface,
    CoachSignal,
    CoachTone,
    DailyCoachContext,
    DailyCoachPreferences,
    EffortMode,
    PatternProfile,
    PlanProposalDecision,
    PulseContentRequest,
    ReminderCandidate,
    SignalDomain,
    SignalSource,
    TomorrowFocus,
    TrendSnapshot,
    WorkoutWindow,
)
from services.reminder_habit_service import (
    load_completions,
    record_completion,
    reminder_adherence,
    reminder_habit_scores,
)


router = APIRouter(prefix="/pulse", tags=["pulse"])

_content_service = PulseContentService(PulsePolicyEngine(SqlStateStore(SessionLocal)))


class EventCreate(BaseModel):
    action_key: str
    domain: str = "general"
    surface: str = "system"
    outcome: str = "performed"
    related_entity_id: Optional[str] = None
    metadata: Optional[dict[str, str]] = None
    occurred_at: Optional[datetime] = None


class PlanDecisionCreate(BaseModel):
    decision: str
    occurred_at: Optional[datetime] = None


class ReminderCompletionCreate(BaseModel):
    hour: int
    minute: int
    completed_at: Optional[datetime] = None


class SignalPayload(BaseModel):
    domain: str = "general"
    title: str
    detail: str = ""
    severity: float = 0.0
    confidence: float = 0.0
    source: str = "system"
    expires_at: Optional[datetime] = None


class TrendPayload(BaseModel):
    days_window: int
    days_with_food_logs: int
    protein_target_hit_days: int
    calorie_target_hit_days: int
    workout_days: int
    low_protein_streak: int
    days_since_workout: int


class PatternPayload(BaseModel):
    workout_window_scores: dict[str, float] = Field(default_factory=dict)
    meal_window_scores: dict[str, float] = Field(default_factory=dict)
    common_protein_anchors: list[str] = Field(default_factory=list)
    adherence_notes: list[str] = Field(default_factory=list)
    action_affinity: dict[str, float] = Field(default_factory=dict)
    confidence: float = 0.0


class ReminderPayload(BaseModel):
    id: str
    title: str
    time: str
    hour: int
    minute: int
    score: Optional[float] = None


class ContextPayload(BaseModel):
    now: Optional[datetime] = None
    has_workout_today: bool = False
    has_active_workout: bool = False
    calories_consumed: int = 0
    calorie_goal: int = 0
    protein_consumed: int = 0
    protein_goal: int = 0
    ready_muscle_count: int = 0
    recommended_workout_name: Optional[str] = None
    active_signals: list[SignalPayload] = Field(default_factory=list)
    trend: Optional[TrendPayload] = None
    pattern_profile: Optional[PatternPayload] = None
    workout_window_start_hour: int = 6
    workout_window_end_hour: int = 22
    reminder_completion_rate: Optional[float] = None
    missed_reminder_count: Optional[int] = None
    days_since_last_weight_log: Optional[int] = None
    weight_logged_this_week: bool = False
    weight_likely_log_weekday: Optional[str] = None
    weight_likely_log_times: list[str] = Field(default_factory=list)
    weight_log_routine_score: float = 0.0
    weight_recent_range_kg: Optional[float] = None
    last_active_workout_hour: Optional[int] = None
    plan_review_trigger: Optional[str] = None
    plan_review_message: Optional[str] = None
    plan_review_days_since: Optional[int] = None
    pending_reminders: list[ReminderPayload] = Field(default_factory=list)


class PreferencesPayload(BaseModel):
    effort_mode: str = "balanced"
    workout_window: str = "flexible"
    tomorrow_focus: str = "both"
    tomorrow_workout_minutes: int = 40


class RecommendationRequest(BaseModel):
    context: ContextPayload
    preferences: Optional[PreferencesPayload] = None


class RankRequest(BaseModel):
    context: ContextPayload
    limit: Optional[int] = None


class ContextPacketRequest(BaseModel):
    context: ContextPayload
    token_budget: Optional[int] = None


class ContentReviewRequest(BaseModel):
    context: ContextPayload
    preferences: Optional[PreferencesPayload] = None
    tone: str = "balanced"
    allow_question: bool = True
    blocked_question_id: Optional[str] = None
    content: dict[str, Any]


def _to_preferences(payload: PreferencesPayload) -> DailyCoachPreferences:
    return DailyCoachPreferences(
        effort_mode=EffortMode(payload.effort_mode),
        workout_window=WorkoutWindow(payload.workout_window),
        tomorrow_focus=TomorrowFocus(payload.tomorrow_focus),
        tomorrow_workout_minutes=int(payload.tomorrow_workout_minutes),
    )


def _to_context(payload: ContextPayload, db: Session) -> DailyCoachContext:
    now = payload.now or datetime.now()
    events = events_between(db, now - timedelta(days=settings.PULSE_BEHAVIOR_WINDOW_DAYS), now)
    opened, completed = todays_action_keys(events, now)

    signals = tuple(
        CoachSignal(
            domain=SignalDomain(s.domain),
            title=s.title,
            detail=s.detail,
            severity=s.severity,
            confidence=s.confidence,
            source=SignalSource(s.source),
            expires_at=s.expires_at,
        )
        for s in payload.active_signals
    )
    pattern = None
    if payload.pattern_profile is not None:
        p = payload.pattern_profile
        pattern = PatternProfile(
            workout_window_scores=dict(p.workout_window_scores),
            meal_window_scores=dict(p.meal_window_scores),
            common_protein_anchors=tuple(p.common_protein_anchors),
            adherence_notes=tuple(p.adherence_notes),
            action_affinity=dict(p.action_affinity),
            confidence=p.confidence,
        )

    candidates = tuple(
        ReminderCandidate(id=r.id, title=r.title, time=r.time, hour=r.hour, minute=r.minute)
        for r in payload.pending_reminders
    )
    # Scores and adherence the client did not supply come from stored completions.
    completions = load_completions(db, now)
    scores = reminder_habit_scores(candidates, completions, now)
    for r in payload.pending_reminders:
        if r.score is not None:
            scores[r.id] = r.score
    completion_rate, missed = reminder_adherence(candidates, completions, now)
    if payload.reminder_completion_rate is not None:
        completion_rate = payload.reminder_completion_rate
    if payload.missed_reminder_count is not None:
        missed = payload.missed_reminder_count

    return DailyCoachContext(
        now=now,
        has_workout_today=payload.has_workout_today,
        has_active_workout=payload.has_active_workout,
        calories_consumed=payload.calories_consumed,
        calorie_goal=payload.calorie_goal,
        protein_consumed=payload.protein_consumed,
        protein_goal=payload.protein_goal,
        ready_muscle_count=payload.ready_muscle_count,
        recommended_workout_name=payload.recommended_workout_name,
        active_signals=tuple(s for s in signals if s.is_active(now)),
        trend=TrendSnapshot(**payload.trend.model_dump()) if payload.trend else None,
        pattern_profile=pattern,
        behavior_profile=build_profile(now, events, window_days=settings.PULSE_BEHAVIOR_WINDOW_DAYS),
        workout_window_start_hour=payload.workout_window_start_hour,
        workout_window_end_hour=payload.workout_window_end_hour,
        reminder_completion_rate=completion_rate,
        missed_reminder_count=missed,
        days_since_last_weight_log=payload.days_since_last_weight_log,
        weight_logged_this_week=payload.weight_logged_this_week,
        weight_likely_log_weekday=payload.weight_likely_log_weekday,
        weight_likely_log_times=tuple(payload.weight_likely_log_times),
        weight_log_routine_score=payload.weight_log_routine_score,
        weight_recent_range_kg=payload.weight_recent_range_kg,
        last_active_workout_hour=payload.last_active_workout_hour,
        plan_review_trigger=payload.plan_review_trigger,
        plan_review_message=payload.plan_review_message,
        plan_review_days_since=payload.plan_review_days_since,
        today_opened_action_keys=opened,
        today_completed_action_keys=completed,
        pending_reminder_candidates=candidates,
        pending_reminder_candidate_scores=scores,
    )


@router.post("/events")
def create_event(payload: EventCreate, db: Session = Depends(get_db)):
    try:
        row = record_event(
            db,
            action_key=payload.action_key,
            domain=BehaviorDomain(payload.domain),
            surface=BehaviorSurface(payload.surface),
            outcome=BehaviorOutcome(payload.outcome),
            related_entity_id=payload.related_entity_id,
            metadata=payload.metadata,
            occurred_at=payload.occurred_at,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()
    if row is None:
        return {"recorded": False, "id": None}
    return {"recorded": True, "id": row.id}


@router.get("/profile")
def behavior_profile(window_days: Optional[int] = None, db: Session = Depends(get_db)):
    days = settings.PULSE_BEHAVIOR_WINDOW_DAYS if window_days is None else window_days
    if days <= 0:
        raise HTTPException(status_code=400, detail="window_days must be positive")
    now = datetime.now()
    events = events_between(db, now - timedelta(days=days), now)
    return build_profile(now, events, window_days=days).to_dict()


@router.post("/reminders/{reminder_id}/complete")
def complete_reminder(reminder_id: str, payload: ReminderCompletionCreate, db: Session = Depends(get_db)):
    try:
        row = record_completion(
            db,
            reminder_id=reminder_id,
            reminder_hour=payload.hour,
            reminder_minute=payload.minute,
            completed_at=payload.completed_at,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()
    return {
        "reminder_id": row.reminder_id,
        "completed_at": row.completed_at.isoformat(),
        "was_on_time": bool(row.was_on_time),
    }


@router.post("/plan-proposals/{proposal_id}/decision")
def plan_decision(proposal_id: str, payload: PlanDecisionCreate, db: Session = Depends(get_db)):
    try:
        row = record_plan_decision(
            db,
            proposal_id=proposal_id,
            decision=PlanProposalDecision(payload.decision),
            occurred_at=payload.occurred_at,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()
    return {"proposal_id": row.related_entity_id, "decision": payload.decision, "outcome": row.outcome}


@router.post("/recommendation")
def recommendation(payload: RecommendationRequest, db: Session = Depends(get_db)):
    try:
        context = _to_context(payload.context, db)
        preferences = _to_preferences(payload.preferences) if payload.preferences else make_preferences(context)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    result = make_recommendation(context, preferences).to_dict()
    result["preferences"] = {
        "effort_mode": preferences.effort_mode.value,
        "workout_window": preferences.workout_window.value,
        "tomorrow_focus": preferences.tomorrow_focus.value,
        "tomorrow_workout_minutes": preferences.tomorrow_workout_minutes,
    }
    return result


@router.post("/actions/rank")
def ranked_actions(payload: RankRequest, db: Session = Depends(get_db)):
    try:
        context = _to_context(payload.context, db)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    ranked = rank_actions(context, context.now, limit=payload.limit)
    return {
        "actions": [
            {"action": item.action.to_dict(), "score": round(item.score, 4)}
            for item in ranked
        ]
    }


@router.post("/context-packet")
def context_packet(payload: ContextPacketRequest, db: Session = Depends(get_db)):
    try:
        context = _to_context(payload.context, db)
        packet = assemble(context.pattern_profile, context.active_signals, context, token_budget=payload.token_budget)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return packet.to_dict()


@router.post("/content/review")
def review_content(payload: ContentReviewRequest, db: Session = Depends(get_db)):
    try:
        context = _to_context(payload.context, db)
        preferences = _to_preferences(payload.preferences) if payload.preferences else make_preferences(context)
        request = PulseContentRequest(
            context=context,
            preferences=preferences,
            tone=CoachTone(payload.tone),
            allow_question=payload.allow_question,
            blocked_question_id=payload.blocked_question_id,
        )
        snapshot = parse_model_reply(json.dumps(payload.content))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _content_service.review(snapshot, request).to_dict()
