"""Reminder completion tracking and habit scoring.

Completions are stored as ``ReminderCompletionRecord`` rows. Habit scores
turn the rolling completion history of each pending reminder into a [0, 1]
likelihood that the user acts on it around now.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from config import settings
from db.models import ReminderCompletionRecord
from services.pulse_types import ReminderCandidate, ReminderCompletion, clamp

logger = logging.getLogger(__name__)

ON_TIME_GRACE_MINUTES = 30
TIME_MATCH_SPAN_MINUTES = 180
HABIT_NORMALIZER = 1.35


def was_on_time(reminder_hour: int, reminder_minute: int, completed_at: datetime) -> bool:
    """True when completed no later than 30 minutes past the scheduled minute-of-day."""
    scheduled = reminder_hour * 60 + reminder_minute
    completed = completed_at.hour * 60 + completed_at.minute
    return completed <= scheduled + ON_TIME_GRACE_MINUTES


def prune_completions(
    completions: Iterable[ReminderCompletion],
    now: datetime,
    window_days: int | None = None,
    max_per_reminder: int | None = None,
) -> list[ReminderCompletion]:
    """Keep completions inside the habit window, newest ``max_per_reminder`` per reminder."""
    window_days = settings.PULSE_REMINDER_HABIT_WINDOW_DAYS if window_days is None else window_days
    max_per_reminder = settings.PULSE_REMINDER_MAX_COMPLETIONS if max_per_reminder is None else max_per_reminder
    cutoff = now - timedelta(days=max(window_days, 0))

    grouped: dict[str, list[ReminderCompletion]] = defaultdict(list)
    for completion in completions:
        if cutoff <= completion.completed_at <= now:
            grouped[completion.reminder_id].append(completion)

    kept: list[ReminderCompletion] = []
    for reminder_id in sorted(grouped):
        newest = sorted(grouped[reminder_id], key=lambda c: c.completed_at, reverse=True)
        kept.extend(newest[: max(max_per_reminder, 0)])
    kept.sort(key=lambda c: (c.completed_at, c.reminder_id))
    return kept


def _completion_weight(
    candidate: ReminderCandidate,
    completion: ReminderCompletion,
    now: datetime,
    window_days: int,
) -> float:
    days_ago = max((now.date() - completion.completed_at.date()).days, 0)
    recency = clamp(1.0 - days_ago / max(window_days, 1))

    completed_minute = completion.completed_at.hour * 60 + completion.completed_at.minute
    time_match = clamp(1.0 - abs(completed_minute - candidate.minute_of_day) / TIME_MATCH_SPAN_MINUTES)

    weekday_match = 1.0 if completion.completed_at.weekday() == now.weekday() else 0.0
    on_time = 1.0 if completion.was_on_time else 0.0

    return 0.5 * recency + 0.25 * time_match + 0.2 * weekday_match + 0.15 * on_time


def habit_score(
    candidate: ReminderCandidate,
    completions: Iterable[ReminderCompletion],
    now: datetime,
    window_days: int | None = None,
) -> float:
    window_days = settings.PULSE_REMINDER_HABIT_WINDOW_DAYS if window_days is None else window_days
    cutoff = now - timedelta(days=max(window_days, 0))
    relevant = [
        c for c in completions
        if c.reminder_id == candidate.id and cutoff <= c.completed_at <= now
    ]
    if not relevant:
        return 0.0

    average = sum(_completion_weight(candidate, c, now, window_days) for c in relevant) / len(relevant)
    confidence = clamp(average / HABIT_NORMALIZER)
    completion_rate = min(1.0, len(relevant) / 3.0)
    return clamp(0.75 * confidence + 0.25 * completion_rate)


def reminder_habit_scores(
    candidates: Iterable[ReminderCandidate],
    completions: Iterable[ReminderCompletion],
    now: datetime,
    window_days: int | None = None,
) -> dict[str, float]:
    history = list(completions)
    return {
        candidate.id: round(habit_score(candidate, history, now, window_days), 4)
        for candidate in candidates
    }


def reminder_adherence(
    reminders: Iterable[ReminderCandidate],
    completions: Iterable[ReminderCompletion],
    now: datetime,
    days: int = 7,
) -> tuple[float, int]:
    """Return ``(completion_rate, missed_today)``.

    Each reminder is expected once per day; today's occurrence only counts
    once its scheduled time has passed.
    """
    reminders = list(reminders)
    if not reminders or days <= 0:
        return 0.0, 0

    completed_days = {(c.reminder_id, c.completed_at.date()) for c in completions if c.completed_at <= now}
    now_minute = now.hour * 60 + now.minute

    expected = 0
    completed = 0
    missed_today = 0
    for offset in range(days):
        day = now.date() - timedelta(days=offset)
        for reminder in reminders:
            if offset == 0 and reminder.minute_of_day > now_minute:
                continue
            expected += 1
            if (reminder.id, day) in completed_days:
                completed += 1
            elif offset == 0:
                missed_today += 1

    rate = completed / expected if expected else 0.0
    return round(rate, 4), missed_today


def record_completion(
    db: Session,
    *,
    reminder_id: str,
    reminder_hour: int,
    reminder_minute: int,
    completed_at: datetime | None = None,
) -> ReminderCompletionRecord:
    reminder_id = (reminder_id or "").strip()
    if not reminder_id:
        raise ValueError("reminder_id is required")
    if not (0 <= reminder_hour <= 23 and 0 <= reminder_minute <= 59):
        raise ValueError("Reminder time is out of range")

    completed_at = completed_at or datetime.now()
    row = ReminderCompletionRecord(
        reminder_id=reminder_id,
        completed_at=completed_at,
        was_on_time=was_on_time(reminder_hour, reminder_minute, completed_at),
    )
    db.add(row)
    db.flush()
    return row


def load_completions(db: Session, now: datetime, window_days: int | None = None) -> list[ReminderCompletion]:
    window_days = settings.PULSE_REMINDER_HABIT_WINDOW_DAYS if window_days is None else window_days
    cutoff = now - timedelta(days=max(window_days, 0))
    rows = (
        db.query(ReminderCompletionRecord)
        .filter(
            ReminderCompletionRecord.completed_at >= cutoff,
            ReminderCompletionRecord.completed_at <= now,
        )
        .order_by(ReminderCompletionRecord.completed_at.asc())
        .all()
    )
    completions = [
        ReminderCompletion(
            reminder_id=row.reminder_id,
            completed_at=row.completed_at,
            was_on_time=bool(row.was_on_time),
        )
        for row in rows
    ]
    return prune_completions(completions, now, window_days=window_days)


def purge_expired_completions(db: Session, now: datetime, window_days: int | None = None) -> int:
    window_days = settings.PULSE_REMINDER_HABIT_WINDOW_DAYS if window_days is None else window_days
    cutoff = now - timedelta(days=max(window_days, 0))
    removed = (
        db.query(ReminderCompletionRecord)
        .filter(ReminderCompletionRecord.completed_at < cutoff)
        .delete(synchronize_session=False)
    )
    if removed:
        logger.info("Purged %d reminder completions older than %s", removed, cutoff.isoformat())
    return int(removed or 0)
