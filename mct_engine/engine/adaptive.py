"""Adaptive Settings Engine.

Difficulty parameters and recommendations are ordered ``(predicate,
outcome)`` tables evaluated top-down to the first match, so each threshold
can be read and tuned on its own line.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from mct_engine.config.settings import PERFORMANCE_WINDOW_DAYS
from mct_engine.context import TrackerContext
from mct_engine.models.engagement import Priority, get_settings
from mct_engine.engine.metrics import belief_trend_analyses
from mct_engine.engine.profiler import PerformanceProfile, analyze_performance
from mct_engine.engine.timeseries import window_dates
from mct_engine.store import metric_store as store

logger = logging.getLogger(__name__)

Rule = tuple[Callable[..., bool], Any]


def first_match(rules: list[Rule], *args, default=None):
    """Outcome of the first rule whose predicate holds. Callable outcomes are applied to ``args``."""
    for predicate, outcome in rules:
        if predicate(*args):
            return outcome(*args) if callable(outcome) else outcome
    return default


# ── Difficulty ladders: (profile, week) -> value ─────────────────────────

ATT_DURATION_RULES: list[Rule] = [
    (lambda p, w: p.att_consistency_score >= 80 and p.att_avg_duration >= 10,
     lambda p, w: min(15, p.att_avg_duration + 2)),
    (lambda p, w: p.att_consistency_score < 50,
     lambda p, w: max(8, p.att_avg_duration - 1)),
]
DEFAULT_ATT_DURATION = 12

COMPLEXITY_RULES: list[Rule] = [
    (lambda p, w: w >= 4 and p.overall_engagement >= 70, "advanced"),
    (lambda p, w: w >= 2 and p.overall_engagement >= 50, "intermediate"),
]

SAR_FREQUENCY_RULES: list[Rule] = [
    (lambda p, w: p.postponement_success_rate >= 70, "high"),
    (lambda p, w: p.postponement_success_rate < 40, "low"),
]


@dataclass
class DifficultySettings:
    att_duration_minutes: int
    experiment_complexity: str      # basic | intermediate | advanced
    sar_plan_frequency: str         # low | medium | high
    challenge_level: int            # 1-10

    def to_dict(self) -> dict:
        return asdict(self)


def challenge_level(profile: PerformanceProfile, week: int) -> int:
    return min(10, max(1, round(profile.overall_engagement / 10 + week)))


def difficulty_for(profile: PerformanceProfile, week: int) -> DifficultySettings:
    return DifficultySettings(
        att_duration_minutes=first_match(ATT_DURATION_RULES, profile, week, default=DEFAULT_ATT_DURATION),
        experiment_complexity=first_match(COMPLEXITY_RULES, profile, week, default="basic"),
        sar_plan_frequency=first_match(SAR_FREQUENCY_RULES, profile, week, default="medium"),
        challenge_level=challenge_level(profile, week),
    )


def get_difficulty_settings(ctx: TrackerContext) -> DifficultySettings:
    profile = analyze_performance(ctx)
    week = get_settings(ctx).current_week
    return difficulty_for(profile, week)


# ── Recommendations ──────────────────────────────────────────────────────

TRIGGER_WINDOW_DAYS = 14
TRIGGER_MIN_OCCURRENCES = 3


@dataclass
class Recommendation:
    type: str                       # practice_time | experiment | sar_plan | reminder_adjustment
    title: str
    description: str
    rationale: str
    priority: str
    actionable: bool = True
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def reminder_slot(reminder_time: str) -> str:
    """Slot of an HH:MM reminder; early-morning hours count as evening."""
    hour = int(reminder_time.split(":")[0])
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "midday"
    return "evening"


def frequent_trigger_slots(ctx: TrackerContext) -> list[str]:
    """Trigger slots with at least 3 postponement events in the trailing 14 days."""
    dates = window_dates(ctx.today(), TRIGGER_WINDOW_DAYS)
    counts = Counter(e.trigger_slot for e in store.get_postponement_events(ctx, dates[0], dates[-1]))
    return [slot for slot, n in counts.most_common() if n >= TRIGGER_MIN_OCCURRENCES]


def practice_slot_success(ctx: TrackerContext) -> dict[str, tuple[int, int]]:
    """Per ATT slot over the profiling window: (completed, total)."""
    dates = window_dates(ctx.today(), PERFORMANCE_WINDOW_DAYS)
    out: dict[str, list[int]] = {}
    for s in store.get_practice_sessions(ctx, dates[0], dates[-1]):
        if not s.created_at:
            continue
        completed, total = out.setdefault(s.slot, [0, 0])
        out[s.slot] = [completed + int(s.completed), total + 1]
    return {slot: (c, t) for slot, (c, t) in out.items()}


def best_practice_slot(ctx: TrackerContext) -> tuple[str | None, int]:
    """(slot with the highest ATT completion rate, that rate). Ties go to more completions."""
    stats = practice_slot_success(ctx)
    if not stats:
        return None, 0
    slot, (completed, total) = max(
        stats.items(), key=lambda item: (item[1][0] / item[1][1], item[1][0]),
    )
    if not completed:
        return None, 0
    return slot, round(completed / total * 100)


def _schedule_rule(ctx, profile, beliefs) -> Recommendation | None:
    if profile.att_consistency_score >= 60:
        return None
    best, _ = best_practice_slot(ctx)
    return Recommendation(
        type="practice_time",
        title="Optimize Your ATT Schedule",
        description=(
            f"Your ATT consistency is at {profile.att_consistency_score}%. "
            "Consider adjusting your practice time."
        ),
        rationale="Consistent practice is more effective than longer but irregular sessions.",
        priority=Priority.HIGH,
        metadata={"suggested_time": best, "current_consistency": profile.att_consistency_score},
    )


def _experiment_rule(ctx, profile, beliefs) -> Recommendation | None:
    series, trend = beliefs["uncontrollability"]
    if not trend.reliable or trend.trend_direction != "stable" or series[-1] <= 60:
        return None
    return Recommendation(
        type="experiment",
        title="Uncontrollability Challenge Experiment",
        description="Your uncontrollability beliefs have plateaued. Time for a targeted experiment.",
        rationale="Stable high uncontrollability beliefs suggest a need for behavioral testing.",
        priority=Priority.MEDIUM,
        metadata={"belief_type": "uncontrollability", "current_rating": series[-1]},
    )


def _trigger_rule(ctx, profile, beliefs) -> Recommendation | None:
    slots = frequent_trigger_slots(ctx)
    if not slots:
        return None
    return Recommendation(
        type="sar_plan",
        title="Create Coping Plans for Top Triggers",
        description=f"We've identified {len(slots)} recurring trigger patterns.",
        rationale="Proactive coping plans reduce worry activation in predictable situations.",
        priority=Priority.MEDIUM,
        metadata={"triggers": [f"{slot}_trigger" for slot in slots]},
    )


def _reminder_rule(ctx, profile, beliefs) -> Recommendation | None:
    best, rate = best_practice_slot(ctx)
    current = reminder_slot(get_settings(ctx).att_reminder_time)
    if best is None or best == current:
        return None
    return Recommendation(
        type="reminder_adjustment",
        title="Adjust Practice Reminders",
        description=f"Your most successful practices happen in the {best}.",
        rationale="Aligning practice time with your natural patterns improves consistency.",
        priority=Priority.LOW,
        metadata={"optimal_time": best, "current_time": current, "success_rate_at_optimal": rate},
    )


RECOMMENDATION_RULES = [_schedule_rule, _experiment_rule, _trigger_rule, _reminder_rule]


def generate_recommendations(ctx: TrackerContext) -> list[Recommendation]:
    """Independent threshold checks, sorted high > medium > low and deduplicated."""
    profile = analyze_performance(ctx)
    _, beliefs = belief_trend_analyses(ctx, TRIGGER_WINDOW_DAYS)

    seen: set[tuple[str, str]] = set()
    out = []
    for rule in RECOMMENDATION_RULES:
        rec = rule(ctx, profile, beliefs)
        if rec is None or (rec.type, rec.title) in seen:
            continue
        seen.add((rec.type, rec.title))
        out.append(rec)

    out.sort(key=lambda rec: Priority.RANK[rec.priority])
    return out
