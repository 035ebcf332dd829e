"""Deterministic behavior pattern extraction for Pulse personalization.

Inputs are plain records the host already has (food entries, workout
sessions, weigh-ins, suggestion usage). Outputs are the pattern profile,
trend snapshot, weekly comparison and weight-logging routine that feed the
``DailyCoachContext``.
"""
from __future__ import annotations

import re
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from services.behavior_profile_service import bucket_label
from services.pulse_types import (
    DailyCoachActionKind,
    PatternProfile,
    PulseTimeWindow,
    TrendSnapshot,
    clamp,
)


WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

# Days without any workout are reported as this many days.
NO_WORKOUT_DAYS = 30


@dataclass(frozen=True)
class FoodEntry:
    logged_at: datetime
    name: str
    calories: int
    protein_grams: float


@dataclass(frozen=True)
class WorkoutSession:
    started_at: datetime


@dataclass(frozen=True)
class WeightEntry:
    logged_at: datetime
    weight_kg: float


@dataclass(frozen=True)
class SuggestionUsage:
    suggestion_type: str
    tap_count: int


@dataclass(frozen=True)
class WeeklyComparison:
    this_week_workout_days: int
    last_week_workout_days: int
    this_week_food_log_days: int
    last_week_food_log_days: int
    this_week_protein_hit_days: int
    last_week_protein_hit_days: int

    @property
    def workout_delta(self) -> int:
        return self.this_week_workout_days - self.last_week_workout_days

    @property
    def food_log_delta(self) -> int:
        return self.this_week_food_log_days - self.last_week_food_log_days

    @property
    def protein_hit_delta(self) -> int:
        return self.this_week_protein_hit_days - self.last_week_protein_hit_days


@dataclass(frozen=True)
class WeightRoutine:
    days_since_last_weight_log: int | None
    weight_logged_this_week: bool
    likely_weekday_label: str | None
    likely_time_labels: tuple[str, ...]
    routine_score: float
    recent_range_kg: float | None


def _start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), datetime.min.time())


def _start_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _workout_window_for_hour(hour: int) -> PulseTimeWindow:
    if 5 <= hour < 8:
        return PulseTimeWindow.EARLY_MORNING
    if 8 <= hour < 11:
        return PulseTimeWindow.MORNING
    if 11 <= hour < 14:
        return PulseTimeWindow.MIDDAY
    if 14 <= hour < 17:
        return PulseTimeWindow.AFTERNOON
    if 17 <= hour < 21:
        return PulseTimeWindow.EVENING
    return PulseTimeWindow.LATE_NIGHT


def _meal_window_for_hour(hour: int) -> PulseTimeWindow:
    if 5 <= hour < 9:
        return PulseTimeWindow.EARLY_MORNING
    if 9 <= hour < 12:
        return PulseTimeWindow.MORNING
    if 12 <= hour < 15:
        return PulseTimeWindow.MIDDAY
    if 15 <= hour < 18:
        return PulseTimeWindow.AFTERNOON
    if 18 <= hour < 22:
        return PulseTimeWindow.EVENING
    return PulseTimeWindow.LATE_NIGHT


def _normalized_scores(counts: Counter, total: int) -> dict[str, float]:
    if total <= 0:
        return {}
    return {
        window.value: counts[window] / total
        for window in PulseTimeWindow
        if counts.get(window, 0) > 0
    }


def _nutrition_by_day(entries: Iterable[FoodEntry]) -> dict[date, tuple[int, float, int]]:
    totals: dict[date, list] = defaultdict(lambda: [0, 0.0, 0])
    for entry in entries:
        day = entry.logged_at.date()
        totals[day][0] += int(entry.calories or 0)
        totals[day][1] += float(entry.protein_grams or 0.0)
        totals[day][2] += 1
    return {day: (vals[0], vals[1], vals[2]) for day, vals in totals.items()}


def _workout_days(workouts: Iterable[WorkoutSession]) -> set[date]:
    return {w.started_at.date() for w in workouts}


def action_kind_for_suggestion(suggestion_type: str) -> DailyCoachActionKind:
    suggestion = (suggestion_type or "").lower()

    if "reminder" in suggestion:
        return DailyCoachActionKind.COMPLETE_REMINDER
    if "log_" in suggestion or "meal" in suggestion or "protein" in suggestion:
        return DailyCoachActionKind.LOG_FOOD
    if "recovery" in suggestion:
        return DailyCoachActionKind.OPEN_RECOVERY
    if "review" in suggestion or "plan" in suggestion:
        if "workout" in suggestion:
            return DailyCoachActionKind.REVIEW_WORKOUT_PLAN
        return DailyCoachActionKind.REVIEW_NUTRITION_PLAN
    if "workout" in suggestion or "train" in suggestion:
        return DailyCoachActionKind.START_WORKOUT
    if "weight" in suggestion:
        return DailyCoachActionKind.LOG_WEIGHT
    if "calorie" in suggestion:
        return DailyCoachActionKind.OPEN_CALORIE_DETAIL
    if "macro" in suggestion:
        return DailyCoachActionKind.OPEN_MACRO_DETAIL
    return DailyCoachActionKind.OPEN_PROFILE


def _action_affinity(usage: Iterable[SuggestionUsage]) -> dict[str, float]:
    scores: dict[DailyCoachActionKind, float] = defaultdict(float)
    for item in usage:
        scores[action_kind_for_suggestion(item.suggestion_type)] += float(max(item.tap_count, 0))
    total = sum(scores.values())
    if total <= 0:
        return {}
    return {kind.value: clamp(value / total) for kind, value in scores.items()}


def _normalized_meal_name(raw: str) -> str:
    cleaned = re.sub(r"[^a-z0-9 ]", " ", (raw or "").lower())
    words = [w for w in cleaned.split() if len(w) > 1][:4]
    return " ".join(words)


def _top_protein_anchors(entries: list[FoodEntry], protein_goal: int | None) -> tuple[str, ...]:
    threshold = max(20.0, float(protein_goal or 140) * 0.2)
    stats: dict[str, list] = defaultdict(lambda: [0, 0.0])
    for entry in entries:
        if entry.protein_grams < threshold:
            continue
        key = _normalized_meal_name(entry.name)
        if not key:
            continue
        stats[key][0] += 1
        stats[key][1] += entry.protein_grams

    ranked = sorted(stats.items(), key=lambda item: (-item[1][0], -item[1][1], item[0]))
    return tuple(name.title() for name, _ in ranked[:3])


def _weakest_weekday(weekday_stats: dict[int, list[int]]) -> str | None:
    weakest: tuple[int, float] | None = None
    for weekday in sorted(weekday_stats):
        hits, total = weekday_stats[weekday]
        if total < 2:
            continue
        rate = hits / total
        if weakest is None or rate < weakest[1]:
            weakest = (weekday, rate)
    if weakest is None or weakest[1] > 0.35:
        return None
    return WEEKDAY_NAMES[weakest[0]]


def _adherence(
    entries: list[FoodEntry],
    workout_days_in_window: set[date],
    protein_goal: int | None,
) -> tuple[float, float, tuple[str, ...]]:
    protein_hit_threshold = float(max(protein_goal or 140, 1)) * 0.8
    by_day = _nutrition_by_day(entries)

    logged_days = len(by_day)
    logging_coverage = clamp(logged_days / 14.0)
    workout_coverage = clamp(len(workout_days_in_window) / 8.0)

    weekday_stats: dict[int, list[int]] = defaultdict(lambda: [0, 0])
    protein_hit_days = 0
    for day, (_cal, protein, _n) in by_day.items():
        stat = weekday_stats[day.weekday()]
        stat[1] += 1
        if protein >= protein_hit_threshold:
            stat[0] += 1
            protein_hit_days += 1

    notes: list[str] = []
    if logging_coverage < 0.45:
        notes.append("Logging is inconsistent lately")
    hit_rate = protein_hit_days / logged_days if logged_days else 0.0
    if hit_rate < 0.45 and logged_days >= 4:
        notes.append("Protein target is often missed")
    weak = _weakest_weekday(weekday_stats)
    if weak:
        notes.append(f"{weak} tends to be your hardest consistency day")

    return logging_coverage, workout_coverage, tuple(notes[:2])


def build_pattern_profile(
    now: datetime,
    food_entries: Iterable[FoodEntry],
    workouts: Iterable[WorkoutSession],
    suggestion_usage: Iterable[SuggestionUsage] = (),
    protein_goal: int | None = None,
    window_days: int = 28,
) -> PatternProfile:
    if window_days <= 0:
        return PatternProfile.empty()

    start = _start_of_day(now) - timedelta(days=window_days - 1)
    window_food = [e for e in food_entries if start <= e.logged_at <= now]
    window_workouts = [w for w in workouts if start <= w.started_at <= now]

    workout_buckets = Counter(_workout_window_for_hour(w.started_at.hour) for w in window_workouts)
    meal_buckets = Counter(_meal_window_for_hour(e.logged_at.hour) for e in window_food)

    logging_coverage, workout_coverage, notes = _adherence(
        window_food,
        _workout_days(window_workouts),
        protein_goal,
    )
    affinity = _action_affinity(suggestion_usage)

    confidence = clamp(
        0.45 * logging_coverage
        + 0.30 * workout_coverage
        + 0.25 * min(sum(affinity.values()), 1.0)
    )

    return PatternProfile(
        workout_window_scores=_normalized_scores(workout_buckets, len(window_workouts)),
        meal_window_scores=_normalized_scores(meal_buckets, len(window_food)),
        common_protein_anchors=_top_protein_anchors(window_food, protein_goal),
        adherence_notes=notes,
        action_affinity=affinity,
        confidence=confidence,
    )


def days_since_last_workout(workout_days: set[date], reference_day: date) -> int:
    past = [d for d in workout_days if d <= reference_day]
    if not past:
        return NO_WORKOUT_DAYS
    return max((reference_day - max(past)).days, 0)


def build_trend_snapshot(
    now: datetime,
    food_entries: Iterable[FoodEntry],
    workouts: Iterable[WorkoutSession],
    calorie_goal: int,
    protein_goal: int,
    days_window: int = 7,
) -> TrendSnapshot | None:
    """Summarize the last ``days_window`` calendar days, today included.

    Returns ``None`` when there are no goals to measure against.
    """
    if days_window <= 0 or (calorie_goal <= 0 and protein_goal <= 0):
        return None

    end_day = now.date()
    start_day = end_day - timedelta(days=days_window - 1)
    by_day = _nutrition_by_day(e for e in food_entries if start_day <= e.logged_at.date() <= end_day)

    protein_target = float(max(protein_goal, 1))
    protein_hit = protein_target * 0.8
    low_protein = protein_target * 0.65
    calorie_target = max(calorie_goal, 1)
    calorie_min = int(calorie_target * 0.8)
    calorie_max = int(calorie_target * 1.15)

    days_with_logs = 0
    protein_hit_days = 0
    calorie_hit_days = 0
    for offset in range(days_window):
        calories, protein, count = by_day.get(start_day + timedelta(days=offset), (0, 0.0, 0))
        if count > 0:
            days_with_logs += 1
            if calorie_min <= calories <= calorie_max:
                calorie_hit_days += 1
        if protein >= protein_hit:
            protein_hit_days += 1

    low_streak = 0
    for offset in range(days_window):
        _cal, protein, _n = by_day.get(end_day - timedelta(days=offset), (0, 0.0, 0))
        if protein < low_protein:
            low_streak += 1
        else:
            break

    all_workout_days = _workout_days(workouts)
    in_window = {d for d in all_workout_days if start_day <= d <= end_day}

    return TrendSnapshot(
        days_window=days_window,
        days_with_food_logs=days_with_logs,
        protein_target_hit_days=protein_hit_days,
        calorie_target_hit_days=calorie_hit_days,
        workout_days=len(in_window),
        low_protein_streak=low_streak,
        days_since_workout=days_since_last_workout(all_workout_days, end_day),
    )


def build_weekly_comparison(
    now: datetime,
    food_entries: Iterable[FoodEntry],
    workouts: Iterable[WorkoutSession],
    protein_goal: int,
) -> WeeklyComparison:
    """Compare this calendar week so far against the whole previous week."""
    this_week_start = _start_of_week(now.date())
    last_week_start = this_week_start - timedelta(days=7)
    by_day = _nutrition_by_day(e for e in food_entries if e.logged_at <= now)
    workout_days = {d for d in _workout_days(workouts) if d <= now.date()}
    protein_hit = float(max(protein_goal, 1)) * 0.8

    def _counts(start: date, end: date) -> tuple[int, int, int]:
        days = [d for d in by_day if start <= d < end]
        hits = sum(1 for d in days if by_day[d][1] >= protein_hit)
        workouts_in = sum(1 for d in workout_days if start <= d < end)
        return workouts_in, len(days), hits

    this_w, this_f, this_p = _counts(this_week_start, now.date() + timedelta(days=1))
    last_w, last_f, last_p = _counts(last_week_start, this_week_start)
    return WeeklyComparison(
        this_week_workout_days=this_w,
        last_week_workout_days=last_w,
        this_week_food_log_days=this_f,
        last_week_food_log_days=last_f,
        this_week_protein_hit_days=this_p,
        last_week_protein_hit_days=last_p,
    )


def food_logging_streak(now: datetime, food_entries: Iterable[FoodEntry]) -> int:
    """Consecutive logged days ending today, or yesterday when today is still empty."""
    logged = {e.logged_at.date() for e in food_entries if e.logged_at <= now}
    day = now.date()
    if day not in logged:
        day -= timedelta(days=1)
    streak = 0
    while day in logged:
        streak += 1
        day -= timedelta(days=1)
    return streak


def build_weight_routine(
    now: datetime,
    weight_entries: Iterable[WeightEntry],
    window_days: int = 28,
    recent_range_days: int = 14,
    minimum_entries: int = 3,
) -> WeightRoutine:
    all_past = sorted((e for e in weight_entries if e.logged_at <= now), key=lambda e: e.logged_at)
    days_since = (now.date() - all_past[-1].logged_at.date()).days if all_past else None
    week_start = _start_of_week(now.date())
    logged_this_week = any(e.logged_at.date() >= week_start for e in all_past)

    recent_cutoff = now - timedelta(days=recent_range_days)
    recent_weights = [e.weight_kg for e in all_past if e.logged_at >= recent_cutoff]
    recent_range = round(max(recent_weights) - min(recent_weights), 2) if len(recent_weights) >= 2 else None

    window = [e for e in all_past if e.logged_at >= now - timedelta(days=window_days)]
    if len(window) < minimum_entries:
        return WeightRoutine(
            days_since_last_weight_log=days_since,
            weight_logged_this_week=logged_this_week,
            likely_weekday_label=None,
            likely_time_labels=(),
            routine_score=0.0,
            recent_range_kg=recent_range,
        )

    buckets = Counter(bucket_label(e.logged_at.hour) for e in window)
    ranked_buckets = sorted(buckets.items(), key=lambda item: (-item[1], item[0]))
    weekdays = Counter(e.logged_at.weekday() for e in window)
    top_weekday, top_weekday_count = sorted(weekdays.items(), key=lambda item: (-item[1], item[0]))[0]

    count = len(window)
    time_share = ranked_buckets[0][1] / count
    weekday_share = top_weekday_count / count
    frequency = min(1.0, len({e.logged_at.date() for e in window}) / 8.0)
    score = clamp(0.45 * time_share + 0.25 * weekday_share + 0.30 * frequency)

    weekday_label = None
    if top_weekday_count >= 2 and weekday_share >= 0.3:
        weekday_label = WEEKDAY_NAMES[top_weekday]

    return WeightRoutine(
        days_since_last_weight_log=days_since,
        weight_logged_this_week=logged_this_week,
        likely_weekday_label=weekday_label,
        likely_time_labels=tuple(label for label, _ in ranked_buckets[:2]),
        routine_score=round(score, 4),
        recent_range_kg=recent_range,
    )


def learned_workout_time_windows(
    profile: PatternProfile | None,
    max_windows: int = 2,
    min_score: float = 0.18,
) -> list[str]:
    if profile is None or max_windows <= 0:
        return []

    ranked: list[tuple[PulseTimeWindow, float]] = []
    for raw, score in profile.workout_window_scores.items():
        try:
            window = PulseTimeWindow(raw)
        except ValueError:
            continue
        if score >= min_score:
            ranked.append((window, score))
    ranked.sort(key=lambda item: (-item[1], item[0].value))

    return [
        f"{window.label} ({window.hour_range[0]}-{window.hour_range[1]})"
        for window, _ in ranked[:max_windows]
    ]
