"""Performance Profiler: composite engagement score over a trailing window."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass

from mct_engine.config.settings import PERFORMANCE_WINDOW_DAYS
from mct_engine.context import TrackerContext
from mct_engine.engine.metrics import belief_trend_analyses
from mct_engine.engine.timeseries import mean, window_dates
from mct_engine.store import metric_store as store

logger = logging.getLogger(__name__)

# Composite weights; DM rate is scaled so 5 practices/day reads as 100
WEIGHTS = {"att": 0.4, "dm": 0.3, "postponement": 0.3}
DM_SCALE = 20


@dataclass
class PerformanceProfile:
    att_consistency_score: int
    att_avg_duration: int
    dm_engagement_rate: float
    postponement_success_rate: int
    belief_change_velocity: float
    overall_engagement: int

    def to_dict(self) -> dict:
        return asdict(self)


def overall_engagement(att_consistency: float, dm_rate: float, postponement_rate: float) -> int:
    return round(
        att_consistency * WEIGHTS["att"]
        + min(100, dm_rate * DM_SCALE) * WEIGHTS["dm"]
        + postponement_rate * WEIGHTS["postponement"]
    )


def analyze_performance(ctx: TrackerContext, window_days: int = PERFORMANCE_WINDOW_DAYS) -> PerformanceProfile:
    """Profile the last ``window_days`` of practice.

    ATT consistency is normalized against days that actually have a session,
    so a new user is not penalized for the part of the window before they
    started. Zero-sample rates resolve to 0.
    """
    dates = window_dates(ctx.today(), window_days)
    start, end = dates[0], dates[-1]

    sessions = store.get_practice_sessions(ctx, start, end)
    tracked_days = {s.date for s in sessions}
    completed = [s for s in sessions if s.completed]
    completed_days = {s.date for s in completed}
    att_consistency = (
        len(completed_days) / min(len(tracked_days), window_days) * 100
        if tracked_days else 0.0
    )
    att_avg_duration = mean(s.duration_minutes for s in completed)

    dm_per_day = Counter(p.date for p in store.get_micro_practices(ctx, start, end))
    dm_rate = mean(dm_per_day.values())

    events = store.get_postponement_events(ctx, start, end)
    postponement_rate = (
        sum(1 for e in events if e.processed) / len(events) * 100 if events else 0.0
    )

    _, beliefs = belief_trend_analyses(ctx, window_days)
    velocity = mean(abs(trend.week_over_week_change) for _, trend in beliefs.values())

    profile = PerformanceProfile(
        att_consistency_score=round(att_consistency),
        att_avg_duration=round(att_avg_duration),
        dm_engagement_rate=round(dm_rate, 2),
        postponement_success_rate=round(postponement_rate),
        belief_change_velocity=round(velocity, 2),
        overall_engagement=overall_engagement(att_consistency, dm_rate, postponement_rate),
    )
    logger.debug(f"Performance profile: {profile}")
    return profile
