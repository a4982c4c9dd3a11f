"""
aggregation.py
==============
Shared machinery for the scoring engines: weekly bucketing, feature adoption
and a handful of small statistics helpers.

All helpers here are pure and take explicit inputs (events, `now`).
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from statistics import fmean, pstdev
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .schemas import FeatureAdoption, UsageEvent, UsageTrend, WeekTrend

WEEK = timedelta(days=7)
DAY = timedelta(days=1)

# week-over-week change beyond +/-10% counts as a trend
TREND_UP_RATIO = 1.1
TREND_DOWN_RATIO = 0.9


# ---------- statistics ----------

def clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    """Clamp a numeric value to [lo, hi]."""
    return max(lo, min(hi, float(x)))


def round_half_up(x: float) -> int:
    """Round .5 away from zero for positives (what dashboards expect), not to even."""
    return int(x + 0.5) if x >= 0 else -int(-x + 0.5)


def mean(values: Sequence[float]) -> float:
    return fmean(values) if values else 0.0


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population std-dev over mean; 0 when empty or the mean is 0."""
    m = mean(values)
    if not values or m == 0:
        return 0.0
    return pstdev(values) / m


def linear_regression(values: Sequence[float]) -> Tuple[float, float]:
    """
    Ordinary least squares of `values` against their index 0..n-1.

    Returns (slope, r_squared) with r_squared clamped to [0, 1].
    Fewer than 2 points, or zero x-variance, yields (0, 0).
    """
    n = len(values)
    if n < 2:
        return 0.0, 0.0

    sum_x = sum(range(n))
    sum_y = float(sum(values))
    sum_xy = sum(i * y for i, y in enumerate(values))
    sum_x2 = sum(i * i for i in range(n))

    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0, 0.0
    slope = (n * sum_xy - sum_x * sum_y) / denominator

    y_mean = sum_y / n
    x_mid = (n - 1) / 2
    ss_res = sum((y - (y_mean + slope * (i - x_mid))) ** 2 for i, y in enumerate(values))
    ss_tot = sum((y - y_mean) ** 2 for y in values)
    r_squared = 0.0 if ss_tot == 0 else 1 - ss_res / ss_tot
    return slope, clamp(r_squared, 0.0, 1.0)


# ---------- weekly buckets ----------

def week_start(ts: datetime) -> date:
    """Calendar week start (Sunday) of a UTC timestamp."""
    d = ts.date()
    return d - timedelta(days=(d.weekday() + 1) % 7)


def classify_week(count: int, previous: Optional[int]) -> WeekTrend:
    """First week (no previous) is stable; otherwise +/-10% against the previous week."""
    if previous is None:
        return WeekTrend.stable
    if count > previous * TREND_UP_RATIO:
        return WeekTrend.increasing
    if count < previous * TREND_DOWN_RATIO:
        return WeekTrend.decreasing
    return WeekTrend.stable


def calculate_usage_trends(events: Iterable[UsageEvent]) -> List[UsageTrend]:
    """
    Bucket events into calendar weeks, oldest first.

    Only weeks that contain events appear; gaps are not zero-filled.
    """
    weeks: Dict[date, List[UsageEvent]] = defaultdict(list)
    for event in events:
        weeks[week_start(event.timestamp)].append(event)

    trends: List[UsageTrend] = []
    previous: Optional[int] = None
    for start in sorted(weeks):
        bucket = weeks[start]
        count = len(bucket)
        trends.append(UsageTrend(
            period=start.isoformat(),
            event_count=count,
            active_users=len({e.user_id for e in bucket if e.user_id}),
            features_used=len({e.feature_name for e in bucket if e.feature_name}),
            trend=classify_week(count, previous),
        ))
        previous = count
    return trends


def weekly_histogram(timestamps: Iterable[datetime], now: datetime, weeks: int = 12) -> List[int]:
    """
    Fixed-length weekly counts ending at `now`; index weeks-1 is the most recent week.

    Events older than `weeks` weeks (or in the future) are dropped.
    """
    counts = [0] * weeks
    for ts in timestamps:
        weeks_ago = (now - ts) // WEEK
        if 0 <= weeks_ago < weeks:
            counts[weeks - 1 - weeks_ago] += 1
    return counts


# ---------- feature adoption ----------

def calculate_feature_adoption(events: Sequence[UsageEvent]) -> List[FeatureAdoption]:
    """Per-feature usage counts and last use, most used first (ties by name)."""
    counts: Dict[str, int] = defaultdict(int)
    last_used: Dict[str, datetime] = {}
    for event in events:
        name = event.feature_name
        if not name:
            continue
        counts[name] += 1
        if name not in last_used or event.timestamp > last_used[name]:
            last_used[name] = event.timestamp

    total = len(events) or 1
    adoption = [
        FeatureAdoption(
            feature_name=name,
            usage_count=count,
            last_used=last_used[name],
            adoption_rate=round_half_up(count / total * 100),
        )
        for name, count in counts.items()
    ]
    adoption.sort(key=lambda f: (-f.usage_count, f.feature_name))
    return adoption
