"""Model-managed Pulse content.

Builds the prompt from an assembled context packet, hands it to an injected
model callable, maps the JSON reply into a ``PulseContentSnapshot`` and
runs the result through the policy engine. A deterministic snapshot built
from the daily coach engine is available for hosts without a model.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable

from config import settings
from services.daily_coach_engine import make_recommendation, question_for
from services.pulse_context_assembler import assemble
from services.pulse_policy_engine import PulsePolicyEngine
from services.pulse_types import (
    DailyCoachAction,
    DailyCoachActionKind,
    DailyCoachPhase,
    PlanProposal,
    PulseContentRequest,
    PulseContentSnapshot,
    PulseContentSource,
    PulsePrompt,
    PulseQuestion,
    PulseSurfaceType,
    QuestionMode,
)

logger = logging.getLogger(__name__)

ModelCallable = Callable[[str], str]

NOTE_MAX_LENGTH = 180
MAX_PLAN_CHANGES = 3


class PulseContentError(ValueError):
    """Raised when a model reply cannot be mapped into Pulse content."""


PROMPT_TEMPLATE = """You are generating content for a fitness app dashboard surface called Pulse.

OUTPUT STYLE:
- This is NOT a conversation. Write like a concise coach note.
- Tone profile: {tone}. {tone_style}
- Use positive framing; avoid scolding or alarmist phrasing.

SURFACE RULES:
- Return JSON only with keys surfaceType, title, message, prompt.
- prompt.kind is one of question, action, plan_proposal, none.
- If allow_question is false, do not output a question prompt.
- If blocked_question_id is present, do not reuse that id.
- Keep title <= 6 words, message <= 26 words.
- surfaceType is one of coach_note, quick_checkin, recovery_probe, timing_nudge, plan_proposal.
- Use plan_proposal only with meaningful multi-day trend evidence; never imply an automatic plan change.

USER CONTEXT:
- hour_of_day: {hour}
- effort_mode: {effort_mode}
- tomorrow_focus: {tomorrow_focus}
- preferred_workout_window: {workout_window}
- recommended_workout: {workout_name}
- has_workout_today: {has_workout_today}
- has_active_workout: {has_active_workout}
- calories_today: {calories} / {calorie_goal}
- protein_today: {protein} / {protein_goal}
- allow_question: {allow_question}
- blocked_question_id: {blocked_question_id}

COMPACT STATE PACKET:
{packet}
"""


def build_prompt(request: PulseContentRequest) -> str:
    context = request.context
    preferences = request.preferences
    packet = assemble(
        context.pattern_profile,
        context.active_signals,
        context,
        token_budget=settings.PULSE_PROMPT_TOKEN_BUDGET,
    )
    return PROMPT_TEMPLATE.format(
        tone=request.tone.value,
        tone_style=request.tone.style_prompt,
        hour=context.now.hour,
        effort_mode=preferences.effort_mode.value,
        tomorrow_focus=preferences.tomorrow_focus.value,
        workout_window=preferences.workout_window.value,
        workout_name=context.recommended_workout_name or "recommended workout",
        has_workout_today=str(context.has_workout_today).lower(),
        has_active_workout=str(context.has_active_workout).lower(),
        calories=context.calories_consumed,
        calorie_goal=context.calorie_goal,
        protein=context.protein_consumed,
        protein_goal=context.protein_goal,
        allow_question=str(request.allow_question).lower(),
        blocked_question_id=request.blocked_question_id or "",
        packet=packet.prompt_summary,
    )


def _strip_fences(text: str) -> str:
    payload = (text or "").strip()
    if payload.startswith("```"):
        payload = payload.strip("`")
        if payload.lower().startswith("json"):
            payload = payload[4:].strip()
    return payload


def _text(raw: Any) -> str:
    return str(raw).strip() if raw is not None else ""


def _map_action(payload: dict[str, Any]) -> DailyCoachAction | None:
    try:
        kind = DailyCoachActionKind(_text(payload.get("kind")))
    except ValueError:
        logger.warning("Ignoring unknown pulse action kind %r", payload.get("kind"))
        return None

    title = _text(payload.get("title"))
    if not title:
        raise PulseContentError("Action title is required")
    subtitle = _text(payload.get("subtitle")) or None

    metadata = payload.get("metadata")
    if isinstance(metadata, dict):
        metadata = {str(k): _text(v) for k, v in metadata.items()} or None
    else:
        metadata = None
    return DailyCoachAction(kind=kind, title=title, subtitle=subtitle, metadata=metadata)


def _map_question(payload: dict[str, Any]) -> PulseQuestion:
    question_id = _text(payload.get("id"))
    prompt = _text(payload.get("prompt"))
    if not question_id or not prompt:
        raise PulseContentError("Question id and prompt are required")

    try:
        mode = QuestionMode(_text(payload.get("mode")))
    except ValueError as exc:
        raise PulseContentError(f"Unknown question mode {payload.get('mode')!r}") from exc

    options = tuple(_text(o) for o in (payload.get("options") or []) if _text(o))
    placeholder = _text(payload.get("placeholder"))
    is_required = bool(payload.get("isRequired", False))

    if mode in (QuestionMode.SINGLE_CHOICE, QuestionMode.MULTIPLE_CHOICE):
        if len(options) < 2:
            raise PulseContentError("Choice questions need at least two options")
        return PulseQuestion(question_id, prompt, mode, options[:4], placeholder, is_required)

    if mode == QuestionMode.SLIDER:
        try:
            low = float(payload["sliderMin"])
            high = float(payload["sliderMax"])
            step = float(payload["sliderStep"])
        except (KeyError, TypeError, ValueError) as exc:
            raise PulseContentError("Slider questions need numeric bounds") from exc
        if high <= low or step <= 0:
            raise PulseContentError("Slider bounds are invalid")
        return PulseQuestion(
            question_id,
            prompt,
            mode,
            (),
            placeholder,
            is_required,
            slider_min=low,
            slider_max=high,
            slider_step=step,
            slider_unit=_text(payload.get("sliderUnit")) or None,
        )

    if options:
        raise PulseContentError("Note questions take no options")
    return PulseQuestion(question_id, prompt, mode, (), placeholder, is_required, max_length=NOTE_MAX_LENGTH)


def _map_plan_proposal(payload: dict[str, Any]) -> PlanProposal:
    fields = {key: _text(payload.get(key)) for key in ("id", "title", "rationale", "impact")}
    changes = tuple(_text(c) for c in (payload.get("changes") or []) if _text(c))
    if not all(fields.values()) or not changes:
        raise PulseContentError("Plan proposal is missing required fields")
    return PlanProposal(
        id=fields["id"],
        title=fields["title"],
        rationale=fields["rationale"],
        impact=fields["impact"],
        changes=changes[:MAX_PLAN_CHANGES],
        apply_label=_text(payload.get("applyLabel")) or "Apply with review",
        review_label=_text(payload.get("reviewLabel")) or "Review in Trai",
        defer_label=_text(payload.get("deferLabel")) or "Not now",
    )


def _surface_type(raw: Any, prompt: PulsePrompt | None) -> PulseSurfaceType:
    try:
        return PulseSurfaceType(_text(raw))
    except ValueError:
        pass
    if prompt is None or prompt.action is not None:
        return PulseSurfaceType.COACH_NOTE
    if prompt.plan_proposal is not None:
        return PulseSurfaceType.PLAN_PROPOSAL
    if prompt.question.mode == QuestionMode.SLIDER:
        return PulseSurfaceType.RECOVERY_PROBE
    return PulseSurfaceType.QUICK_CHECKIN


def parse_model_reply(text: str) -> PulseContentSnapshot:
    try:
        payload = json.loads(_strip_fences(text))
    except json.JSONDecodeError as exc:
        raise PulseContentError("Model reply is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise PulseContentError("Model reply must be a JSON object")

    title = _text(payload.get("title"))
    message = _text(payload.get("message"))
    if not title or not message:
        raise PulseContentError("Title and message are required")

    prompt: PulsePrompt | None = None
    prompt_payload = payload.get("prompt")
    if isinstance(prompt_payload, dict):
        kind = _text(prompt_payload.get("kind"))
        body = prompt_payload.get(
            {"action": "action", "question": "question", "plan_proposal": "planProposal"}.get(kind, ""),
        )
        if kind in ("", "none"):
            prompt = None
        elif not isinstance(body, dict):
            raise PulseContentError(f"Prompt kind {kind!r} has no body")
        elif kind == "action":
            action = _map_action(body)
            prompt = PulsePrompt.for_action(action) if action is not None else None
        elif kind == "question":
            prompt = PulsePrompt.for_question(_map_question(body))
        else:
            prompt = PulsePrompt.for_plan_proposal(_map_plan_proposal(body))
    elif prompt_payload is not None:
        raise PulseContentError("Prompt must be an object")

    return PulseContentSnapshot(
        source=PulseContentSource.MODEL_MANAGED,
        surface_type=_surface_type(payload.get("surfaceType"), prompt),
        title=title,
        message=message,
        prompt=prompt,
    )


class PulseContentService:
    def __init__(self, policy: PulsePolicyEngine, model: ModelCallable | None = None) -> None:
        self.policy = policy
        self.model = model

    def review(self, snapshot: PulseContentSnapshot, request: PulseContentRequest) -> PulseContentSnapshot:
        return self.policy.apply(snapshot, request, request.context.now)

    def generate(self, request: PulseContentRequest) -> PulseContentSnapshot | None:
        """Ask the model for content; ``None`` means no suggestion this cycle."""
        if self.model is None:
            return self.review(self.deterministic_snapshot(request), request)

        prompt = build_prompt(request)
        try:
            reply = self.model(prompt)
        except Exception:
            logger.warning("Pulse model call failed", exc_info=True)
            return None

        try:
            snapshot = parse_model_reply(reply)
        except PulseContentError as exc:
            logger.warning("Discarding pulse model reply: %s", exc)
            return None
        return self.review(snapshot, request)

    def deterministic_snapshot(self, request: PulseContentRequest) -> PulseContentSnapshot:
        recommendation = make_recommendation(request.context, request.preferences)
        if request.allow_question and recommendation.phase in (DailyCoachPhase.RESCUE, DailyCoachPhase.COMPLETED):
            question = question_for(request.context, recommendation.phase)
            if question.id != request.blocked_question_id:
                return PulseContentSnapshot(
                    source=PulseContentSource.DETERMINISTIC,
                    surface_type=(
                        PulseSurfaceType.RECOVERY_PROBE
                        if question.mode == QuestionMode.SLIDER
                        else PulseSurfaceType.QUICK_CHECKIN
                    ),
                    title=recommendation.title,
                    message=recommendation.message,
                    prompt=PulsePrompt.for_question(question),
                )
        return PulseContentSnapshot(
            source=PulseContentSource.DETERMINISTIC,
            surface_type=PulseSurfaceType.COACH_NOTE,
            title=recommendation.title,
            message=recommendation.message,
            prompt=PulsePrompt.for_action(recommendation.primary_action),
        )
