from __future__ import annotations

import json
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.pulse_content_service import (  # noqa: E402
    PulseContentError,
    PulseContentService,
    build_prompt,
    parse_model_reply,
)
from services.pulse_policy_engine import PulsePolicyEngine  # noqa: E402
from services.pulse_state_store import InMemoryStateStore  # noqa: E402
from services.pulse_types import (  # noqa: E402
    CoachTone,
    DailyCoachActionKind,
    DailyCoachContext,
    DailyCoachPreferences,
    EffortMode,
    PulseContentRequest,
    PulseContentSource,
    PulseSurfaceType,
    QuestionMode,
    WorkoutWindow,
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


def _request(context: DailyCoachContext | None = None, **overrides) -> PulseContentRequest:
    return PulseContentRequest(
        context=context or _context(),
        preferences=DailyCoachPreferences(),
        **overrides,
    )


def _service(model=None) -> PulseContentService:
    return PulseContentService(PulsePolicyEngine(store=InMemoryStateStore()), model=model)


ACTION_REPLY = {
    "surfaceType": "coach_note",
    "title": "Protein push",
    "message": "Close the protein gap before dinner.",
    "prompt": {"kind": "action", "action": {"kind": "log_food", "title": "Log Protein Meal"}},
}


def test_fenced_action_reply_is_parsed():
    snapshot = parse_model_reply("```json\n" + json.dumps(ACTION_REPLY) + "\n```")

    assert snapshot.source == PulseContentSource.MODEL_MANAGED
    assert snapshot.surface_type == PulseSurfaceType.COACH_NOTE
    assert snapshot.prompt.action.kind == DailyCoachActionKind.LOG_FOOD


def test_invalid_replies_raise_content_errors():
    with pytest.raises(PulseContentError):
        parse_model_reply("not json at all")
    with pytest.raises(PulseContentError):
        parse_model_reply(json.dumps(["a", "list"]))
    with pytest.raises(PulseContentError):
        parse_model_reply(json.dumps({"title": "", "message": "Hi"}))


def test_question_validation_by_mode():
    slider = {
        "title": "Check in",
        "message": "Quick pulse.",
        "prompt": {
            "kind": "question",
            "question": {"id": "knee", "prompt": "How is the knee?", "mode": "slider",
                         "sliderMin": 0, "sliderMax": 10, "sliderStep": 1},
        },
    }
    snapshot = parse_model_reply(json.dumps(slider))
    assert snapshot.surface_type == PulseSurfaceType.RECOVERY_PROBE
    assert snapshot.prompt.question.slider_max == 10.0

    del slider["prompt"]["question"]["sliderStep"]
    with pytest.raises(PulseContentError):
        parse_model_reply(json.dumps(slider))

    single_option = {
        "title": "Check in",
        "message": "Quick pulse.",
        "prompt": {"kind": "question", "question": {"id": "q", "prompt": "Pick", "mode": "single_choice",
                                                    "options": ["Only one"]}},
    }
    with pytest.raises(PulseContentError):
        parse_model_reply(json.dumps(single_option))


def test_unknown_action_kind_yields_no_prompt():
    reply = dict(ACTION_REPLY, prompt={"kind": "action", "action": {"kind": "teleport", "title": "Go"}})
    snapshot = parse_model_reply(json.dumps(reply))
    assert snapshot.prompt is None


def test_prompt_embeds_state_packet_and_tone():
    prompt = build_prompt(_request(tone=CoachTone.DIRECT))

    assert "Tone profile: direct." in prompt
    assert "hour_of_day: 10" in prompt
    assert "goal=Complete your workout in today's available window" in prompt


def test_generate_reviews_model_output():
    seen: list[str] = []

    def model(prompt: str) -> str:
        seen.append(prompt)
        return json.dumps(ACTION_REPLY)

    snapshot = _service(model).generate(_request())

    assert len(seen) == 1
    assert snapshot.title == "Protein push"
    assert snapshot.prompt.action.kind == DailyCoachActionKind.LOG_FOOD


def test_generate_returns_none_when_model_fails_or_replies_badly():
    def failing(prompt: str) -> str:
        raise TimeoutError("model timed out")

    assert _service(failing).generate(_request()) is None
    assert _service(lambda prompt: "```json\n{broken").generate(_request()) is None


def test_deterministic_content_asks_a_question_in_rescue():
    context = _context(now=datetime(2025, 1, 8, 23, 0))
    request = PulseContentRequest(
        context=context,
        preferences=DailyCoachPreferences(effort_mode=EffortMode.CONSISTENCY, workout_window=WorkoutWindow.MORNING),
    )

    snapshot = _service().generate(request)
    assert snapshot.source == PulseContentSource.DETERMINISTIC
    assert snapshot.surface_type == PulseSurfaceType.QUICK_CHECKIN
    assert snapshot.prompt.question.id == "schedule-rescue"
    assert snapshot.prompt.question.mode == QuestionMode.SINGLE_CHOICE

    quiet = replace(request, allow_question=False)
    fallback = _service().generate(quiet)
    assert fallback.surface_type == PulseSurfaceType.COACH_NOTE
    assert fallback.prompt.action.title == "Start 15-Min Quick Session"
