"""Value types shared by the Pulse coaching pipeline.

Everything here is immutable. A ``DailyCoachContext`` is built once per
recommendation cycle and handed to the engine, ranker, policy engine and
context assembler unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class BehaviorDomain(str, Enum):
    NUTRITION = "nutrition"
    WORKOUT = "workout"
    BODY = "body"
    REMINDER = "reminder"
    PLANNING = "planning"
    PROFILE = "profile"
    ENGAGEMENT = "engagement"
    GENERAL = "general"


class BehaviorSurface(str, Enum):
    DASHBOARD = "dashboard"
    WORKOUTS = "workouts"
    FOOD = "food"
    WEIGHT = "weight"
    CHAT = "chat"
    PROFILE = "profile"
    WIDGET = "widget"
    INTENT = "intent"
    SYSTEM = "system"


class BehaviorOutcome(str, Enum):
    PRESENTED = "presented"
    PERFORMED = "performed"
    COMPLETED = "completed"
    SUGGESTED_TAP = "suggested_tap"
    DISMISSED = "dismissed"
    OPENED = "opened"


class BehaviorActionKey:
    LOG_FOOD = "nutrition.log_food"
    EDIT_FOOD = "nutrition.edit_food"
    LOG_WEIGHT = "body.log_weight"
    START_WORKOUT = "workout.start"
    COMPLETE_WORKOUT = "workout.complete"
    COMPLETE_REMINDER = "reminder.complete"
    CREATE_REMINDER = "reminder.create"
    OPEN_CALORIE_DETAIL = "nutrition.open_calorie_detail"
    OPEN_MACRO_DETAIL = "nutrition.open_macro_detail"
    OPEN_WEIGHT = "body.open_weight"
    OPEN_PROFILE = "profile.open_profile"
    OPEN_WORKOUTS = "workout.open_workouts"
    OPEN_WORKOUT_PLAN = "workout.open_plan"
    OPEN_RECOVERY = "workout.open_recovery"
    REVIEW_NUTRITION_PLAN = "planning.review_nutrition_plan"
    REVIEW_WORKOUT_PLAN = "planning.review_workout_plan"
    APPLY_PLAN_UPDATE = "planning.apply_plan_update"


@dataclass(frozen=True)
class BehaviorEvent:
    action_key: str
    domain: BehaviorDomain
    surface: BehaviorSurface
    outcome: BehaviorOutcome
    occurred_at: datetime
    related_entity_id: str | None = None
    metadata: dict[str, str] | None = None


class PulseTimeWindow(str, Enum):
    EARLY_MORNING = "early_morning"
    MORNING = "morning"
    MIDDAY = "midday"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    LATE_NIGHT = "late_night"

    @property
    def label(self) -> str:
        return _TIME_WINDOW_LABELS[self]

    @property
    def hour_range(self) -> tuple[int, int]:
        return _TIME_WINDOW_HOURS[self]


_TIME_WINDOW_LABELS = {
    PulseTimeWindow.EARLY_MORNING: "Early Morning",
    PulseTimeWindow.MORNING: "Morning",
    PulseTimeWindow.MIDDAY: "Midday",
    PulseTimeWindow.AFTERNOON: "Afternoon",
    PulseTimeWindow.EVENING: "Evening",
    PulseTimeWindow.LATE_NIGHT: "Late Night",
}

_TIME_WINDOW_HOURS = {
    PulseTimeWindow.EARLY_MORNING: (5, 8),
    PulseTimeWindow.MORNING: (8, 11),
    PulseTimeWindow.MIDDAY: (11, 14),
    PulseTimeWindow.AFTERNOON: (14, 17),
    PulseTimeWindow.EVENING: (17, 21),
    PulseTimeWindow.LATE_NIGHT: (21, 24),
}


class SignalDomain(str, Enum):
    PAIN = "pain"
    RECOVERY = "recovery"
    SLEEP = "sleep"
    NUTRITION = "nutrition"
    STRESS = "stress"
    GENERAL = "general"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class SignalSource(str, Enum):
    DASHBOARD_NOTE = "dashboard_note"
    CHAT = "chat"
    SYSTEM = "system"


@dataclass(frozen=True)
class CoachSignal:
    domain: SignalDomain
    title: str
    detail: str = ""
    severity: float = 0.0
    confidence: float = 0.0
    source: SignalSource = SignalSource.SYSTEM
    expires_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


def has_recent_question_answer(question_id: str, signals: list[CoachSignal] | tuple[CoachSignal, ...]) -> bool:
    marker = f"[PulseQuestion:{question_id}]"
    return any(s.source == SignalSource.DASHBOARD_NOTE and marker in s.detail for s in signals)


@dataclass(frozen=True)
class TrendSnapshot:
    days_window: int
    days_with_food_logs: int
    protein_target_hit_days: int
    calorie_target_hit_days: int
    workout_days: int
    low_protein_streak: int
    days_since_workout: int

    @property
    def logging_consistency(self) -> float:
        if self.days_window <= 0:
            return 0.0
        return self.days_with_food_logs / self.days_window

    @property
    def protein_hit_rate(self) -> float:
        if self.days_window <= 0:
            return 0.0
        return self.protein_target_hit_days / self.days_window

    @property
    def calorie_hit_rate(self) -> float:
        if self.days_window <= 0:
            return 0.0
        return self.calorie_target_hit_days / self.days_window


class DailyCoachActionKind(str, Enum):
    START_WORKOUT = "start_workout"
    START_WORKOUT_TEMPLATE = "start_workout_template"
    LOG_FOOD = "log_food"
    LOG_FOOD_CAMERA = "log_food_camera"
    LOG_WEIGHT = "log_weight"
    OPEN_WEIGHT = "open_weight"
    OPEN_CALORIE_DETAIL = "open_calorie_detail"
    OPEN_MACRO_DETAIL = "open_macro_detail"
    OPEN_PROFILE = "open_profile"
    OPEN_WORKOUTS = "open_workouts"
    OPEN_WORKOUT_PLAN = "open_workout_plan"
    OPEN_RECOVERY = "open_recovery"
    REVIEW_NUTRITION_PLAN = "review_nutrition_plan"
    REVIEW_WORKOUT_PLAN = "review_workout_plan"
    COMPLETE_REMINDER = "complete_reminder"

    @property
    def behavior_action_key(self) -> str:
        return _KIND_ACTION_KEYS[self]


_KIND_ACTION_KEYS = {
    DailyCoachActionKind.START_WORKOUT: BehaviorActionKey.START_WORKOUT,
    DailyCoachActionKind.START_WORKOUT_TEMPLATE: BehaviorActionKey.START_WORKOUT,
    DailyCoachActionKind.LOG_FOOD: BehaviorActionKey.LOG_FOOD,
    DailyCoachActionKind.LOG_FOOD_CAMERA: BehaviorActionKey.LOG_FOOD,
    DailyCoachActionKind.LOG_WEIGHT: BehaviorActionKey.LOG_WEIGHT,
    DailyCoachActionKind.OPEN_WEIGHT: BehaviorActionKey.OPEN_WEIGHT,
    DailyCoachActionKind.OPEN_CALORIE_DETAIL: BehaviorActionKey.OPEN_CALORIE_DETAIL,
    DailyCoachActionKind.OPEN_MACRO_DETAIL: BehaviorActionKey.OPEN_MACRO_DETAIL,
    DailyCoachActionKind.OPEN_PROFILE: BehaviorActionKey.OPEN_PROFILE,
    DailyCoachActionKind.OPEN_WORKOUTS: BehaviorActionKey.OPEN_WORKOUTS,
    DailyCoachActionKind.OPEN_WORKOUT_PLAN: BehaviorActionKey.OPEN_WORKOUT_PLAN,
    DailyCoachActionKind.OPEN_RECOVERY: BehaviorActionKey.OPEN_RECOVERY,
    DailyCoachActionKind.REVIEW_NUTRITION_PLAN: BehaviorActionKey.REVIEW_NUTRITION_PLAN,
    DailyCoachActionKind.REVIEW_WORKOUT_PLAN: BehaviorActionKey.REVIEW_WORKOUT_PLAN,
    DailyCoachActionKind.COMPLETE_REMINDER: BehaviorActionKey.COMPLETE_REMINDER,
}


@dataclass(frozen=True)
class DailyCoachAction:
    kind: DailyCoachActionKind
    title: str
    subtitle: str | None = None
    metadata: dict[str, str] | None = None

    def with_metadata(self, **values: str) -> DailyCoachAction:
        merged = dict(self.metadata or {})
        merged.update(values)
        return replace(self, metadata=merged)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "subtitle": self.subtitle,
            "metadata": dict(self.metadata) if self.metadata else None,
        }


@dataclass(frozen=True)
class PatternProfile:
    workout_window_scores: dict[str, float] = field(default_factory=dict)
    meal_window_scores: dict[str, float] = field(default_factory=dict)
    common_protein_anchors: tuple[str, ...] = ()
    adherence_notes: tuple[str, ...] = ()
    action_affinity: dict[str, float] = field(default_factory=dict)
    confidence: float = 0.0

    @classmethod
    def empty(cls) -> PatternProfile:
        return cls()

    def strongest_workout_window(self, min_score: float = 0.30) -> PulseTimeWindow | None:
        return _strongest(self.workout_window_scores, min_score)

    def strongest_meal_window(self, min_score: float = 0.25) -> PulseTimeWindow | None:
        return _strongest(self.meal_window_scores, min_score)

    def affinity(self, kind: DailyCoachActionKind | str) -> float:
        key = kind.value if isinstance(kind, DailyCoachActionKind) else str(kind)
        return float(self.action_affinity.get(key, 0.0))


def _strongest(scores: dict[str, float], min_score: float) -> PulseTimeWindow | None:
    if not scores:
        return None
    # Ties resolve to the lexically smallest window so repeated calls agree.
    key, value = sorted(scores.items(), key=lambda item: (-item[1], item[0]))[0]
    if value < min_score:
        return None
    try:
        return PulseTimeWindow(key)
    except ValueError:
        return None


@dataclass(frozen=True)
class ReminderCandidate:
    id: str
    title: str
    time: str
    hour: int
    minute: int

    @property
    def minute_of_day(self) -> int:
        return self.hour * 60 + self.minute


@dataclass(frozen=True)
class ReminderCompletion:
    reminder_id: str
    completed_at: datetime
    was_on_time: bool


class EffortMode(str, Enum):
    BALANCED = "balanced"
    CONSISTENCY = "consistency"
    PUSH = "push"


class WorkoutWindow(str, Enum):
    MORNING = "morning"
    LUNCH = "lunch"
    EVENING = "evening"
    FLEXIBLE = "flexible"

    @property
    def hours(self) -> tuple[int, int]:
        return _WORKOUT_WINDOW_HOURS[self]


_WORKOUT_WINDOW_HOURS = {
    WorkoutWindow.MORNING: (6, 11),
    WorkoutWindow.LUNCH: (11, 15),
    WorkoutWindow.EVENING: (17, 21),
    WorkoutWindow.FLEXIBLE: (6, 22),
}


class TomorrowFocus(str, Enum):
    NUTRITION = "nutrition"
    WORKOUT = "workout"
    BOTH = "both"


@dataclass(frozen=True)
class DailyCoachPreferences:
    effort_mode: EffortMode = EffortMode.BALANCED
    workout_window: WorkoutWindow = WorkoutWindow.FLEXIBLE
    tomorrow_focus: TomorrowFocus = TomorrowFocus.BOTH
    tomorrow_workout_minutes: int = 40


@dataclass(frozen=True)
class DailyCoachContext:
    now: datetime
    has_workout_today: bool
    has_active_workout: bool
    calories_consumed: int
    calorie_goal: int
    protein_consumed: int
    protein_goal: int
    ready_muscle_count: int = 0
    recommended_workout_name: str | None = None
    active_signals: tuple[CoachSignal, ...] = ()
    trend: TrendSnapshot | None = None
    pattern_profile: PatternProfile | None = None
    behavior_profile: Any = None  # BehaviorProfileSnapshot
    workout_window_start_hour: int = 6
    workout_window_end_hour: int = 22
    reminder_completion_rate: float = 0.0
    missed_reminder_count: int = 0
    days_since_last_weight_log: int | None = None
    weight_logged_this_week: bool = False
    weight_likely_log_weekday: str | None = None
    weight_likely_log_times: tuple[str, ...] = ()
    weight_log_routine_score: float = 0.0
    weight_recent_range_kg: float | None = None
    last_active_workout_hour: int | None = None
    plan_review_trigger: str | None = None
    plan_review_message: str | None = None
    plan_review_days_since: int | None = None
    today_opened_action_keys: frozenset[str] = frozenset()
    today_completed_action_keys: frozenset[str] = frozenset()
    pending_reminder_candidates: tuple[ReminderCandidate, ...] = ()
    pending_reminder_candidate_scores: dict[str, float] = field(default_factory=dict)

    @property
    def protein_remaining(self) -> int:
        return max(self.protein_goal - self.protein_consumed, 0)

    @property
    def calorie_remaining(self) -> int:
        return max(self.calorie_goal - self.calories_consumed, 0)

    @property
    def workout_owed(self) -> bool:
        return not self.has_workout_today and not self.has_active_workout

    def reminder_score(self, reminder_id: str) -> float:
        return float(self.pending_reminder_candidate_scores.get(reminder_id, 0.0))


class DailyCoachPhase(str, Enum):
    MORNING_PLAN = "morning_plan"
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    RESCUE = "rescue"
    COMPLETED = "completed"


@dataclass(frozen=True)
class DailyCoachSwap:
    action: DailyCoachAction
    reason: str
    score: float


@dataclass(frozen=True)
class DailyCoachRecommendation:
    phase: DailyCoachPhase
    primary_action: DailyCoachAction
    secondary_action: DailyCoachAction
    swaps: tuple[DailyCoachSwap, ...] = ()
    title: str = ""
    message: str = ""
    reasons: tuple[str, ...] = ()
    confidence: float = 0.0
    confidence_label: str = ""
    tomorrow_preview: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "title": self.title,
            "message": self.message,
            "primary_action": self.primary_action.to_dict(),
            "secondary_action": self.secondary_action.to_dict(),
            "swaps": [
                {"action": s.action.to_dict(), "reason": s.reason, "score": round(s.score, 4)}
                for s in self.swaps
            ],
            "reasons": list(self.reasons),
            "confidence": round(self.confidence, 4),
            "confidence_label": self.confidence_label,
            "tomorrow_preview": self.tomorrow_preview,
        }


class QuestionMode(str, Enum):
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    SLIDER = "slider"
    NOTE = "note"


@dataclass(frozen=True)
class PulseQuestion:
    id: str
    prompt: str
    mode: QuestionMode
    options: tuple[str, ...] = ()
    placeholder: str = ""
    is_required: bool = False
    slider_min: float | None = None
    slider_max: float | None = None
    slider_step: float | None = None
    slider_unit: str | None = None
    max_length: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "mode": self.mode.value,
            "options": list(self.options),
            "placeholder": self.placeholder,
            "is_required": self.is_required,
            "slider_min": self.slider_min,
            "slider_max": self.slider_max,
            "slider_step": self.slider_step,
            "slider_unit": self.slider_unit,
            "max_length": self.max_length,
        }


@dataclass(frozen=True)
class PlanProposal:
    id: str
    title: str
    rationale: str
    impact: str
    changes: tuple[str, ...]
    apply_label: str = "Apply with review"
    review_label: str = "Review in Trai"
    defer_label: str = "Not now"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "rationale": self.rationale,
            "impact": self.impact,
            "changes": list(self.changes),
            "apply_label": self.apply_label,
            "review_label": self.review_label,
            "defer_label": self.defer_label,
        }


class PlanProposalDecision(str, Enum):
    APPLY = "apply"
    REVIEW = "review"
    LATER = "later"


@dataclass(frozen=True)
class PulsePrompt:
    """Exactly one of ``question``, ``action`` or ``plan_proposal`` is set."""

    question: PulseQuestion | None = None
    action: DailyCoachAction | None = None
    plan_proposal: PlanProposal | None = None

    def __post_init__(self) -> None:
        populated = sum(item is not None for item in (self.question, self.action, self.plan_proposal))
        if populated != 1:
            raise ValueError("PulsePrompt requires exactly one of question, action or plan_proposal")

    @classmethod
    def for_question(cls, question: PulseQuestion) -> PulsePrompt:
        return cls(question=question)

    @classmethod
    def for_action(cls, action: DailyCoachAction) -> PulsePrompt:
        return cls(action=action)

    @classmethod
    def for_plan_proposal(cls, proposal: PlanProposal) -> PulsePrompt:
        return cls(plan_proposal=proposal)

    def to_dict(self) -> dict[str, Any]:
        if self.question is not None:
            return {"kind": "question", "question": self.question.to_dict()}
        if self.action is not None:
            return {"kind": "action", "action": self.action.to_dict()}
        return {"kind": "plan_proposal", "plan_proposal": self.plan_proposal.to_dict()}


class PulseContentSource(str, Enum):
    MODEL_MANAGED = "model_managed"
    DETERMINISTIC = "deterministic"


class PulseSurfaceType(str, Enum):
    COACH_NOTE = "coach_note"
    QUICK_CHECKIN = "quick_checkin"
    RECOVERY_PROBE = "recovery_probe"
    TIMING_NUDGE = "timing_nudge"
    PLAN_PROPOSAL = "plan_proposal"


@dataclass(frozen=True)
class PulseContentSnapshot:
    source: PulseContentSource
    surface_type: PulseSurfaceType
    title: str
    message: str
    prompt: PulsePrompt | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "surface_type": self.surface_type.value,
            "title": self.title,
            "message": self.message,
            "prompt": self.prompt.to_dict() if self.prompt else None,
        }


class CoachTone(str, Enum):
    ENCOURAGING = "encouraging"
    BALANCED = "balanced"
    DIRECT = "direct"

    @property
    def style_prompt(self) -> str:
        if self == CoachTone.ENCOURAGING:
            return "Lead with warmth and celebrate small wins."
        if self == CoachTone.DIRECT:
            return "Be brief and specific; skip pleasantries."
        return "Be supportive but practical."


@dataclass(frozen=True)
class PulseContentRequest:
    context: DailyCoachContext
    preferences: DailyCoachPreferences
    tone: CoachTone = CoachTone.BALANCED
    allow_question: bool = True
    blocked_question_id: str | None = None


@dataclass(frozen=True)
class ContextPacket:
    goal: str
    constraints: tuple[str, ...]
    patterns: tuple[str, ...]
    anomalies: tuple[str, ...]
    suggested_actions: tuple[str, ...]
    estimated_tokens: int
    prompt_summary: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal": self.goal,
            "constraints": list(self.constraints),
            "patterns": list(self.patterns),
            "anomalies": list(self.anomalies),
            "suggested_actions": list(self.suggested_actions),
            "estimated_tokens": self.estimated_tokens,
            "prompt_summary": self.prompt_summary,
        }


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(max(value, low), high)
