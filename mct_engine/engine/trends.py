"""Trend Classifier: week-over-week comparison of a daily series."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from mct_engine.config.settings import MIN_TREND_SAMPLE_DAYS, TREND_WINDOW_DAYS

STABLE_THRESHOLD = 0.05


@dataclass
class TrendAnalysis:
    current_value: float
    seven_day_avg: float
    week_over_week_change: float
    trend_direction: str            # increasing | decreasing | stable
    percentage_change: int
    sample_days: int = 0
    reliable: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def percent_change(current: float, previous: float) -> int:
    if previous == 0:
        return 100 if current > 0 else 0
    return round((current - previous) / previous * 100)


def direction(current: float, previous: float) -> str:
    change = abs(current - previous) / (previous or 1)
    if change < STABLE_THRESHOLD:
        return "stable"
    return "increasing" if current > previous else "decreasing"


def classify(current: float, previous: float) -> dict:
    """Direction and integer percent change from ``previous`` to ``current``."""
    return {
        "direction": direction(current, previous),
        "percent_change": percent_change(current, previous),
    }


def window_means(series: list[float], window: int = TREND_WINDOW_DAYS) -> tuple[float, float]:
    """(mean of the last ``window`` values, mean of the ``window`` before).

    Both divide by ``window``: a short series reads as zero-padded on the
    older side.
    """
    current = sum(series[-window:]) / window
    previous = sum(series[-2 * window:-window]) / window if len(series) > window else 0.0
    return current, previous


def week_over_week(series: list[float], sample_days: int, current_value: float | None = None) -> TrendAnalysis:
    """Classify the last 7 days of ``series`` against the 7 before them.

    ``sample_days`` is how many days of real history back the series; below
    MIN_TREND_SAMPLE_DAYS the result is flagged unreliable.
    """
    current, previous = window_means(series)
    result = classify(current, previous)
    if current_value is None:
        current_value = series[-1] if series else 0
    return TrendAnalysis(
        current_value=round(current_value, 2),
        seven_day_avg=round(current, 2),
        week_over_week_change=round(current - previous, 2),
        trend_direction=result["direction"],
        percentage_change=result["percent_change"],
        sample_days=sample_days,
        reliable=sample_days >= MIN_TREND_SAMPLE_DAYS,
    )
