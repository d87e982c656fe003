"""Time-Series Aggregator.

Turns stored daily records into dense, zero-filled series (one value per
calendar day, most recent last) and trailing rolling averages.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Callable

from mct_engine.context import TrackerContext
from mct_engine.errors import ValidationError
from mct_engine.models.records import CAS_FIELDS
from mct_engine.models.validation import format_day
from mct_engine.store import metric_store as store


def window_dates(end: date, days: int) -> list[date]:
    """The ``days`` calendar days ending at ``end``, oldest first."""
    if days < 1:
        raise ValidationError("days", f"must be >= 1, got {days}")
    return [end - timedelta(days=i) for i in range(days - 1, -1, -1)]


def dense_series(values: dict[date, float], dates: list[date]) -> list[float]:
    """Lay ``values`` over ``dates``; days without a value read as 0."""
    return [values.get(d, 0) for d in dates]


def carry_forward(values: dict[date, float], dates: list[date], seed: float) -> list[float]:
    """Lay ``values`` over ``dates``, repeating the last known value across gaps."""
    out = []
    last = seed
    for d in dates:
        if d in values:
            last = values[d]
        out.append(last)
    return out


def rolling_average(series: list[float], window: int = 7) -> list[float]:
    """Trailing mean per index over ``series[max(0, i-window+1) .. i]``.

    The denominator is the slice length, so early values average over the
    history that exists rather than the full window.
    """
    if window < 1:
        raise ValidationError("window", f"must be >= 1, got {window}")
    out = []
    for i in range(len(series)):
        chunk = series[max(0, i - window + 1): i + 1]
        out.append(round(sum(chunk) / len(chunk), 2))
    return out


def mean(values) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


# ── Per-day metric extractors ────────────────────────────────────────────
# Each maps (ctx, start, end) -> {day: value} for days that have data.


def _cas_field(name: str) -> Callable:
    def extract(ctx, start, end):
        return {e.date: getattr(e, name) for e in store.get_daily_logs(ctx, start, end)}
    return extract


def _att_completed(ctx, start, end):
    return {s.date: 1 for s in store.get_practice_sessions(ctx, start, end) if s.completed}


def _att_minutes(ctx, start, end):
    out: dict[date, int] = defaultdict(int)
    for s in store.get_practice_sessions(ctx, start, end):
        if s.completed:
            out[s.date] += s.duration_minutes
    return dict(out)


def _dm_count(ctx, start, end):
    return dict(Counter(p.date for p in store.get_micro_practices(ctx, start, end)))


def _postponement_success(ctx, start, end):
    totals: Counter = Counter()
    processed: Counter = Counter()
    for e in store.get_postponement_events(ctx, start, end):
        totals[e.date] += 1
        if e.processed:
            processed[e.date] += 1
    return {d: processed[d] / n * 100 for d, n in totals.items()}


METRICS: dict[str, Callable] = {
    **{name: _cas_field(name) for name in CAS_FIELDS},
    "att_completed": _att_completed,
    "att_minutes": _att_minutes,
    "dm_count": _dm_count,
    "postponement_success": _postponement_success,
}

# Which stored record kind backs each metric (for history length)
METRIC_SOURCES = {
    **{name: "cas" for name in CAS_FIELDS},
    "att_completed": store.ATT,
    "att_minutes": store.ATT,
    "dm_count": store.DM,
    "postponement_success": store.POSTPONEMENT,
}


def build_series(ctx: TrackerContext, metric: str, days: int, end: date | None = None) -> list[float]:
    """Dense daily series of ``metric`` over the ``days`` days ending at ``end``."""
    if metric not in METRICS:
        raise ValidationError("metric", f"unknown metric {metric!r}")
    dates = window_dates(end or ctx.today(), days)
    return dense_series(METRICS[metric](ctx, dates[0], dates[-1]), dates)


def belief_series(ctx: TrackerContext, belief_type: str, dates: list[date], default: int) -> list[float]:
    """Carried-forward daily belief ratings, seeded from the last rating before the window."""
    latest: dict[date, int] = {}
    for b in store.get_belief_ratings(ctx, dates[0], dates[-1], belief_type):
        latest[b.date] = b.rating              # later rows win: date, then creation order
    seed = store.latest_belief_before(ctx, belief_type, dates[0])
    return carry_forward(latest, dates, default if seed is None else seed)


def history_days(ctx: TrackerContext, kind: str, end: date | None = None) -> int:
    """Calendar days since the first record of ``kind`` (inclusive), 0 if none."""
    first = store.first_record_date(ctx, kind)
    end = end or ctx.today()
    if first is None or first > end:
        return 0
    return (end - first).days + 1


def iso_dates(dates: list[date]) -> list[str]:
    return [format_day(d) for d in dates]
