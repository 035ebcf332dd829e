"""Final safety gate for Pulse content.

Every snapshot, deterministic or model-managed, passes through
``PulsePolicyEngine.apply`` before it reaches the user. Rules only pass
through, rewrite or drop the prompt; unresolvable ambiguity resolves to no
prompt.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime

from config import settings
from services.behavior_profile_service import MORNING_BUCKET_LABELS, label_contains_hour
from services.pulse_state_store import InMemoryStateStore, StateStore
from services.pulse_types import (
    DailyCoachAction,
    DailyCoachActionKind,
    DailyCoachContext,
    PlanProposal,
    PulseContentRequest,
    PulseContentSnapshot,
    PulsePrompt,
    PulseQuestion,
    PulseSurfaceType,
    QuestionMode,
    ReminderCandidate,
    SignalDomain,
    has_recent_question_answer,
)

logger = logging.getLogger(__name__)

POLICY_VERSION = "pulse_policy_v2"
LAST_PLAN_PROPOSAL_SHOWN_KEY = "pulse_last_plan_proposal_shown_at"
POST_WORKOUT_QUESTION_ID = "readiness-post-workout"
MORNING_WEIGHT_MIN_ROUTINE_SCORE = 0.45
SECONDS_PER_DAY = 24 * 60 * 60


def _clean(value: str | None) -> str:
    return (value or "").strip()


def _reminder_metadata(candidate: ReminderCandidate) -> dict[str, str]:
    return {
        "reminder_id": candidate.id,
        "reminder_title": candidate.title,
        "reminder_time": candidate.time,
        "reminder_hour": str(candidate.hour),
        "reminder_minute": str(candidate.minute),
    }


def resolve_reminder(action: DailyCoachAction, context: DailyCoachContext) -> ReminderCandidate | None:
    candidates = list(context.pending_reminder_candidates)
    if not candidates:
        return None

    metadata = action.metadata or {}
    reminder_id = _clean(metadata.get("reminder_id"))
    if reminder_id:
        for candidate in candidates:
            if candidate.id == reminder_id:
                return candidate
        # Unknown id: only a sole pending reminder is accepted.
        return candidates[0] if len(candidates) == 1 else None

    title = _clean(metadata.get("reminder_title")).lower()
    if not title and action.title.lower().startswith("complete "):
        title = action.title[len("complete "):].strip().lower()
    time_label = _clean(metadata.get("reminder_time")).lower()
    if title or time_label:
        matches = [
            c for c in candidates
            if (not title or c.title.strip().lower() == title)
            and (not time_label or c.time.strip().lower() == time_label)
        ]
        if len(matches) == 1:
            return matches[0]
        return candidates[0] if len(candidates) == 1 else None

    if len(candidates) == 1:
        return candidates[0]

    scored = sorted(((context.reminder_score(c.id), c) for c in candidates), key=lambda item: -item[0])
    top_score, top = scored[0]
    if top_score > 0 and top_score > scored[1][0]:
        return top
    return None


def has_plan_proposal_evidence(context: DailyCoachContext) -> bool:
    trend = context.trend
    if trend is not None and trend.days_with_food_logs >= 3:
        if trend.low_protein_streak >= 3 or trend.days_since_workout >= 4:
            return True

    return any(
        s.domain in (SignalDomain.PAIN, SignalDomain.RECOVERY, SignalDomain.NUTRITION)
        and s.severity >= 0.65
        and s.confidence >= 0.6
        for s in context.active_signals
    )


def plan_checkin_question(proposal: PlanProposal) -> PulseQuestion:
    return PulseQuestion(
        id=f"plan_checkin_{proposal.id}",
        prompt="Should we review your plan this week based on recent trends?",
        mode=QuestionMode.SINGLE_CHOICE,
        options=("Yes, review it", "Not now"),
        placeholder="Add context",
        is_required=True,
    )


def post_workout_question() -> PulseQuestion:
    return PulseQuestion(
        id=POST_WORKOUT_QUESTION_ID,
        prompt="How did today's session feel?",
        mode=QuestionMode.SINGLE_CHOICE,
        options=("Strong", "Solid", "Drained"),
        placeholder="Anything sore or tight?",
    )


def _post_workout_eligible(request: PulseContentRequest, now: datetime) -> bool:
    context = request.context
    if not context.has_workout_today or context.has_active_workout:
        return False
    if context.last_active_workout_hour is None:
        return False
    if (now.hour - context.last_active_workout_hour) % 24 < 1:
        return False
    if not request.allow_question:
        return False
    if request.blocked_question_id == POST_WORKOUT_QUESTION_ID:
        return False
    return not has_recent_question_answer(POST_WORKOUT_QUESTION_ID, context.active_signals)


def _morning_weight_due(context: DailyCoachContext, now: datetime) -> bool:
    if context.days_since_last_weight_log is None or context.days_since_last_weight_log < 1:
        return False
    if context.weight_log_routine_score < MORNING_WEIGHT_MIN_ROUTINE_SCORE:
        return False
    morning_labels = [
        label for label in context.weight_likely_log_times
        if label.strip().lower() in {m.lower() for m in MORNING_BUCKET_LABELS}
    ]
    return any(label_contains_hour(label, now.hour) for label in morning_labels)


class PulsePolicyEngine:
    def __init__(self, store: StateStore | None = None, cooldown_days: int | None = None) -> None:
        self.store = store or InMemoryStateStore()
        days = settings.PULSE_PLAN_PROPOSAL_COOLDOWN_DAYS if cooldown_days is None else cooldown_days
        self.cooldown_seconds = max(days, 0) * SECONDS_PER_DAY
        self._lock = threading.Lock()

    def _claim_plan_proposal_slot(self, now: datetime) -> bool:
        """Advance the last-shown timestamp unless still cooling down."""
        now_ts = now.timestamp()
        with self._lock:
            try:
                last_shown = self.store.get_float(LAST_PLAN_PROPOSAL_SHOWN_KEY)
                if last_shown and now_ts - last_shown < self.cooldown_seconds:
                    return False
                self.store.set_float(LAST_PLAN_PROPOSAL_SHOWN_KEY, now_ts)
                return True
            except Exception:
                logger.warning("Pulse cooldown store unavailable; suppressing plan proposal", exc_info=True)
                return False

    def apply(
        self,
        snapshot: PulseContentSnapshot,
        request: PulseContentRequest,
        now: datetime | None = None,
    ) -> PulseContentSnapshot:
        now = now or request.context.now
        context = request.context
        adjusted = snapshot

        prompt = adjusted.prompt
        if prompt is not None and prompt.action is not None and prompt.action.kind == DailyCoachActionKind.COMPLETE_REMINDER:
            candidate = resolve_reminder(prompt.action, context)
            if candidate is None:
                logger.info("Dropping unresolved reminder action %r", prompt.action.title)
                adjusted = replace(adjusted, prompt=None)
            else:
                action = prompt.action.with_metadata(pulse_policy_version=POLICY_VERSION, **_reminder_metadata(candidate))
                adjusted = replace(adjusted, prompt=PulsePrompt.for_action(action))

        prompt = adjusted.prompt
        if prompt is not None and prompt.plan_proposal is not None:
            proposal = prompt.plan_proposal
            if not has_plan_proposal_evidence(context):
                logger.info("Plan proposal %s lacks trend evidence; asking instead", proposal.id)
                adjusted = replace(
                    adjusted,
                    surface_type=PulseSurfaceType.QUICK_CHECKIN,
                    prompt=PulsePrompt.for_question(plan_checkin_question(proposal)),
                )
            elif not self._claim_plan_proposal_slot(now):
                logger.info("Plan proposal %s suppressed by cooldown", proposal.id)
                adjusted = replace(adjusted, surface_type=PulseSurfaceType.COACH_NOTE, prompt=None)

        prompt = adjusted.prompt
        if prompt is not None and prompt.question is not None:
            question_id = prompt.question.id
            if not request.allow_question or question_id == request.blocked_question_id:
                logger.debug("Dropping question %s", question_id)
                adjusted = replace(adjusted, surface_type=PulseSurfaceType.COACH_NOTE, prompt=None)

        if adjusted.surface_type == PulseSurfaceType.PLAN_PROPOSAL and (
            adjusted.prompt is None or adjusted.prompt.plan_proposal is None
        ):
            adjusted = replace(adjusted, surface_type=PulseSurfaceType.QUICK_CHECKIN)

        if adjusted.prompt is None and _post_workout_eligible(request, now):
            adjusted = replace(
                adjusted,
                surface_type=PulseSurfaceType.QUICK_CHECKIN,
                prompt=PulsePrompt.for_question(post_workout_question()),
            )

        prompt = adjusted.prompt
        if (
            prompt is not None
            and prompt.action is not None
            and prompt.action.kind == DailyCoachActionKind.START_WORKOUT
            and _morning_weight_due(context, now)
        ):
            weight_action = DailyCoachAction(
                kind=DailyCoachActionKind.LOG_WEIGHT,
                title="Log Morning Weight",
                subtitle="Quick check-in before training",
                metadata={"pulse_policy_version": POLICY_VERSION},
            )
            adjusted = replace(
                adjusted,
                surface_type=PulseSurfaceType.TIMING_NUDGE,
                prompt=PulsePrompt.for_action(weight_action),
            )

        return adjusted
