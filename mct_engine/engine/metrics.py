"""Computed reads over the daily metric store: CAS trends, practice stats,
belief trends and the weekly summary.
"""

from __future__ import annotations

from collections import Counter
from datetime import date
from typing import Optional

from mct_engine.config.settings import DEFAULT_BELIEF_RATING, TREND_WINDOW_DAYS
from mct_engine.context import TrackerContext
from mct_engine.errors import ValidationError
from mct_engine.models.engagement import Streak
from mct_engine.models.records import BELIEF_TYPES, CAS_FIELDS
from mct_engine.engine.timeseries import (
    METRICS,
    belief_series,
    dense_series,
    history_days,
    iso_dates,
    mean,
    rolling_average,
    window_dates,
)
from mct_engine.engine.trends import week_over_week
from mct_engine.store import metric_store as store


def _check_days(days: int) -> int:
    if isinstance(days, bool) or not isinstance(days, int) or days < 1:
        raise ValidationError("days", f"expected a positive integer, got {days!r}")
    return days


def get_cas_trends(ctx: TrackerContext, days: int = 30) -> dict:
    """Daily CAS series with 7-day rolling averages for worry, rumination and monitoring."""
    dates = window_dates(ctx.today(), _check_days(days))
    logs = {e.date: e for e in store.get_daily_logs(ctx, dates[0], dates[-1])}

    out: dict = {"dates": iso_dates(dates)}
    for f in CAS_FIELDS:
        out[f] = dense_series({d: getattr(e, f) for d, e in logs.items()}, dates)
    out["worry_rolling_avg"] = rolling_average(out["worry_minutes"])
    out["rumination_rolling_avg"] = rolling_average(out["rumination_minutes"])
    out["monitoring_rolling_avg"] = rolling_average(out["monitoring_count"])
    out["sample_days"] = min(history_days(ctx, "cas"), days)
    return out


def get_practice_stats(ctx: TrackerContext, days: int = 30) -> dict:
    """ATT completion, DM frequency and postponement success with week-over-week trends."""
    dates = window_dates(ctx.today(), _check_days(days))
    start, end = dates[0], dates[-1]

    att_daily = dense_series(METRICS["att_completed"](ctx, start, end), dates)
    dm_daily = dense_series(METRICS["dm_count"](ctx, start, end), dates)
    postponement_daily = dense_series(METRICS["postponement_success"](ctx, start, end), dates)

    att_trend = week_over_week(
        [v * 100 for v in att_daily],
        min(history_days(ctx, store.ATT), days),
    )
    att_trend.current_value = att_trend.seven_day_avg
    dm_trend = week_over_week(dm_daily, min(history_days(ctx, store.DM), days))
    dm_trend.current_value = dm_trend.seven_day_avg
    postponement_trend = week_over_week(
        postponement_daily, min(history_days(ctx, store.POSTPONEMENT), days),
    )
    postponement_trend.current_value = postponement_trend.seven_day_avg

    return {
        "att_completion_rate": round(att_trend.seven_day_avg),
        "att_completion_trend": att_trend.to_dict(),
        "dm_frequency": round(dm_trend.seven_day_avg, 2),
        "dm_frequency_trend": dm_trend.to_dict(),
        "postponement_success_rate": round(postponement_trend.seven_day_avg),
        "postponement_trend": postponement_trend.to_dict(),
        "dates": iso_dates(dates),
        "att_daily_completion": [bool(v) for v in att_daily],
        "dm_daily_count": dm_daily,
        "postponement_daily_success": [round(v, 2) for v in postponement_daily],
    }


def belief_trend_analyses(ctx: TrackerContext, days: int = 30) -> tuple[list[date], dict]:
    """Per fixed belief type: (carried-forward series, TrendAnalysis)."""
    dates = window_dates(ctx.today(), _check_days(days))
    sample_days = min(history_days(ctx, store.BELIEF), days)
    out = {}
    for belief_type in BELIEF_TYPES:
        series = belief_series(ctx, belief_type, dates, DEFAULT_BELIEF_RATING)
        out[belief_type] = (series, week_over_week(series, sample_days))
    return dates, out


def get_belief_trends(ctx: TrackerContext, days: int = 30) -> dict:
    dates, analyses = belief_trend_analyses(ctx, days)
    out: dict = {"dates": iso_dates(dates)}
    for belief_type, (series, trend) in analyses.items():
        out[belief_type] = series
        out[f"{belief_type}_trend"] = trend.to_dict()
    return out


def best_att_slot(ctx: TrackerContext, start: date, end: date) -> Optional[str]:
    """Most common time-of-day slot of completed ATT sessions, or None."""
    slots = Counter(
        s.slot for s in store.get_practice_sessions(ctx, start, end)
        if s.completed and s.created_at
    )
    if not slots:
        return None
    return slots.most_common(1)[0][0]


def get_weekly_summary(ctx: TrackerContext) -> dict:
    """CAS averages, practice stats, belief trends and engagement over the trailing week."""
    dates = window_dates(ctx.today(), TREND_WINDOW_DAYS)
    start, end = dates[0], dates[-1]

    logs = store.get_daily_logs(ctx, start, end)
    cas_averages = {f: round(mean(getattr(e, f) for e in logs)) for f in CAS_FIELDS}

    sessions = [s for s in store.get_practice_sessions(ctx, start, end) if s.completed]
    att_days = len({s.date for s in sessions})
    completion_rate = round(att_days / TREND_WINDOW_DAYS * 100)

    dm_per_day = Counter(p.date for p in store.get_micro_practices(ctx, start, end))
    events = store.get_postponement_events(ctx, start, end)
    processed = sum(1 for e in events if e.processed)

    _, beliefs = belief_trend_analyses(ctx, 14)
    overall = Streak.from_redis(ctx, "overall")

    return {
        "start": iso_dates([start])[0],
        "end": iso_dates([end])[0],
        "cas_averages": cas_averages,
        "practice_stats": {
            "att_completion_rate": completion_rate,
            "att_average_duration": round(mean(s.duration_minutes for s in sessions)),
            "dm_daily_average": round(mean(dm_per_day.values()), 2),
            "postponement_success_rate": round(processed / len(events) * 100) if events else 0,
        },
        "belief_trends": {t: trend.to_dict() for t, (_, trend) in beliefs.items()},
        "engagement": {
            "best_practice_time": best_att_slot(ctx, start, end),
            "consistency_score": completion_rate,
            "streak_current": overall.current_streak,
            "streak_longest": overall.longest_streak,
            "completion_rate": completion_rate,
        },
    }
