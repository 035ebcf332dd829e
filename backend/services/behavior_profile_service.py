from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from services.pulse_types import BehaviorEvent, BehaviorOutcome, clamp


TIME_BUCKETS: tuple[tuple[str, int, int], ...] = (
    ("Morning (4-9 AM)", 4, 9),
    ("Late Morning (9-12 PM)", 9, 12),
    ("Early Afternoon (12-3 PM)", 12, 15),
    ("Mid-Afternoon (3-6 PM)", 15, 18),
    ("Evening (6-10 PM)", 18, 22),
    ("Night (10 PM-4 AM)", 22, 28),  # wraps past midnight
)

MORNING_BUCKET_LABELS = ("Morning (4-9 AM)", "Late Morning (9-12 PM)")

NEIGHBOR_HOUR_WEIGHT = 0.35


def bucket_label(hour: int) -> str:
    h = hour % 24
    for label, start, end in TIME_BUCKETS[:-1]:
        if start <= h < end:
            return label
    return TIME_BUCKETS[-1][0]


def label_contains_hour(label: str, hour: int) -> bool:
    """True when ``hour`` falls inside the bucket named by ``label``.

    Labels are matched case-insensitively so host-formatted variants still
    resolve. Unknown labels never match.
    """
    needle = (label or "").strip().lower()
    for name, _start, _end in TIME_BUCKETS:
        if name.lower() == needle:
            return bucket_label(hour) == name
    return False


@dataclass(frozen=True)
class BehaviorProfileSnapshot:
    generated_at: datetime
    window_days: int
    action_counts: dict[str, int]
    action_hourly_counts: dict[str, dict[int, int]]
    last_action_at: dict[str, datetime]

    def days_since_last_action(self, action_key: str, now: datetime | None = None) -> int | None:
        last = self.last_action_at.get(action_key)
        if last is None:
            return None
        reference = now or self.generated_at
        return max((reference.date() - last.date()).days, 0)

    def likely_time_labels(
        self,
        action_key: str,
        max_labels: int = 2,
        minimum_events: int = 3,
    ) -> list[str]:
        hourly = self.action_hourly_counts.get(action_key) or {}
        if not hourly:
            return []
        if self.action_counts.get(action_key, 0) < minimum_events:
            return []

        bucket_counts: dict[str, int] = defaultdict(int)
        for hour, count in hourly.items():
            if count > 0:
                bucket_counts[bucket_label(hour)] += count

        ranked = sorted(bucket_counts.items(), key=lambda item: (-item[1], item[0]))
        return [label for label, _count in ranked[: max(0, max_labels)]]

    def hourly_preference_score(self, action_key: str, hour: int, minimum_events: int = 3) -> float:
        hourly = self.action_hourly_counts.get(action_key) or {}
        if not hourly:
            return 0.0
        total = self.action_counts.get(action_key, 0)
        if total <= 0 or total < minimum_events:
            return 0.0

        center = hour % 24
        previous_hour = (center + 23) % 24
        next_hour = (center + 1) % 24

        exact_weight = hourly.get(center, 0) / total
        neighbor_weight = (hourly.get(previous_hour, 0) + hourly.get(next_hour, 0)) / total
        return clamp(exact_weight + neighbor_weight * NEIGHBOR_HOUR_WEIGHT)

    def to_dict(self) -> dict:
        return {
            "generated_at": self.generated_at.isoformat(),
            "window_days": self.window_days,
            "action_counts": dict(self.action_counts),
            "action_hourly_counts": {
                key: {str(h): c for h, c in sorted(hours.items())}
                for key, hours in self.action_hourly_counts.items()
            },
            "last_action_at": {key: ts.isoformat() for key, ts in self.last_action_at.items()},
        }


def build_profile(
    now: datetime,
    events: Iterable[BehaviorEvent],
    window_days: int = 30,
) -> BehaviorProfileSnapshot:
    start = now - timedelta(days=max(window_days, 0))

    counts: dict[str, int] = defaultdict(int)
    hourly: dict[str, dict[int, int]] = defaultdict(lambda: defaultdict(int))
    last_seen: dict[str, datetime] = {}

    for event in events:
        if event.outcome == BehaviorOutcome.DISMISSED:
            continue
        if not (start <= event.occurred_at <= now):
            continue
        key = (event.action_key or "").strip()
        if not key:
            continue

        counts[key] += 1
        hourly[key][event.occurred_at.hour] += 1
        existing = last_seen.get(key)
        if existing is None or event.occurred_at > existing:
            last_seen[key] = event.occurred_at

    return BehaviorProfileSnapshot(
        generated_at=now,
        window_days=window_days,
        action_counts=dict(counts),
        action_hourly_counts={key: dict(hours) for key, hours in hourly.items()},
        last_action_at=last_seen,
    )
