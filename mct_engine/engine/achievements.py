"""Achievement rule engine.

Each catalog entry pairs a criteria descriptor with a measure over stored
history. ``check_and_award`` evaluates every unearned entry; ``earned_date``
is written with HSETNX so an award happens once and is never revised, even
if the measured value later drops.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import redis

from mct_engine.context import TrackerContext
from mct_engine.errors import NotFoundError
from mct_engine.models.engagement import Achievement, ProgramWeek, Streak
from mct_engine.models.records import METAPHORS
from mct_engine.engine.timeseries import window_dates
from mct_engine.store import metric_store as store

logger = logging.getLogger(__name__)

POSTPONEMENT_WINDOW_DAYS = 30
POSTPONEMENT_MIN_EVENTS = 10


@dataclass(frozen=True)
class AchievementRule:
    achievement_id: str
    name: str
    description: str
    category: str
    criteria_type: str
    criteria_value: int
    measure: Callable[[TrackerContext], tuple[int, bool]]   # -> (value, met)

    @property
    def total_required(self) -> int:
        return self.criteria_value


# ── Measures ─────────────────────────────────────────────────────────────


def _all_sessions(ctx: TrackerContext):
    return store.records_through(ctx, store.ATT)


def _completed_att_count(threshold: int):
    def measure(ctx):
        n = sum(1 for s in _all_sessions(ctx) if s.completed)
        return n, n >= threshold
    return measure


def _streak(streak_type: str, threshold: int):
    def measure(ctx):
        n = Streak.from_redis(ctx, streak_type).current_streak
        return n, n >= threshold
    return measure


def _metaphor_variety(ctx):
    used = {p.metaphor_used for p in store.records_through(ctx, store.DM) if p.metaphor_used}
    return len(used), len(used) >= len(METAPHORS)


def _postponement_rate(threshold: int):
    def measure(ctx):
        dates = window_dates(ctx.today(), POSTPONEMENT_WINDOW_DAYS)
        events = store.get_postponement_events(ctx, dates[0], dates[-1])
        if not events:
            return 0, False
        rate = round(sum(1 for e in events if e.processed) / len(events) * 100)
        return rate, len(events) >= POSTPONEMENT_MIN_EVENTS and rate >= threshold
    return measure


def _slot_days(slot: str, threshold: int):
    """Distinct days in the trailing week with a completed ATT session started in ``slot``."""
    def measure(ctx):
        dates = window_dates(ctx.today(), 7)
        days = {
            s.date for s in store.get_practice_sessions(ctx, dates[0], dates[-1])
            if s.completed and s.created_at and s.slot == slot
        }
        return len(days), len(days) >= threshold
    return measure


def _week_completed(week: int):
    def measure(ctx):
        row = ProgramWeek.from_redis(ctx, week)
        done = bool(row and row.completed)
        return (week if done else 0), done
    return measure


CATALOG: list[AchievementRule] = [
    AchievementRule("first_att_session", "First Steps", "Complete your first ATT session",
                    "practice", "count", 1, _completed_att_count(1)),
    AchievementRule("att_streak_3", "Building Momentum", "Complete ATT sessions for 3 consecutive days",
                    "streak", "streak", 3, _streak("att", 3)),
    AchievementRule("att_streak_7", "Consistent Practitioner", "Complete ATT sessions for 7 consecutive days",
                    "streak", "streak", 7, _streak("att", 7)),
    AchievementRule("att_streak_30", "Dedication Master", "Complete ATT sessions for 30 consecutive days",
                    "streak", "streak", 30, _streak("att", 30)),
    AchievementRule("dm_streak_7", "Mindful Week", "Do 3 DM practices a day for 7 consecutive days",
                    "streak", "streak", 7, _streak("dm", 7)),
    AchievementRule("logging_streak_7", "Self-Observer", "Log your CAS for 7 consecutive days",
                    "streak", "streak", 7, _streak("logging", 7)),
    AchievementRule("dm_variety", "Metaphor Master", "Practice DM with all three metaphors",
                    "mastery", "special", 3, _metaphor_variety),
    AchievementRule("postponement_success", "Postponement Pro",
                    "Process 80% of postponed worries over 30 days (at least 10 events)",
                    "mastery", "percentage", 80, _postponement_rate(80)),
    AchievementRule("early_bird", "Early Bird", "Complete morning ATT practice on 7 days in a week",
                    "practice", "special", 7, _slot_days("morning", 7)),
    AchievementRule("night_owl", "Night Owl", "Complete evening ATT practice on 7 days in a week",
                    "practice", "special", 7, _slot_days("evening", 7)),
    AchievementRule("week_4_completion", "Midway Champion", "Complete the first half of the program",
                    "milestone", "special", 4, _week_completed(4)),
    AchievementRule("program_graduation", "Program Graduate", "Complete the entire 8-week program",
                    "milestone", "special", 8, _week_completed(8)),
]

RULES = {rule.achievement_id: rule for rule in CATALOG}


# ── Persistence ──────────────────────────────────────────────────────────


def _key(ctx: TrackerContext, achievement_id: str) -> str:
    return ctx.key("achievement", achievement_id)


def _row(ctx: TrackerContext, rule: AchievementRule, data: dict) -> Achievement:
    return Achievement(
        achievement_id=rule.achievement_id,
        name=rule.name,
        description=rule.description,
        category=rule.category,
        criteria_type=rule.criteria_type,
        criteria_value=rule.criteria_value,
        total_required=rule.total_required,
        progress=int(data.get("progress") or 0),
        earned_date=data.get("earned_date") or None,
    )


def get_achievement(ctx: TrackerContext, achievement_id: str) -> Achievement:
    rule = RULES.get(achievement_id)
    if rule is None:
        raise NotFoundError("achievement", achievement_id)
    return _row(ctx, rule, ctx.r.hgetall(_key(ctx, achievement_id)))


def get_achievements(ctx: TrackerContext) -> list[Achievement]:
    pipe = ctx.r.pipeline(transaction=False)
    for rule in CATALOG:
        pipe.hgetall(_key(ctx, rule.achievement_id))
    return [_row(ctx, rule, data) for rule, data in zip(CATALOG, pipe.execute())]


def award_achievement(ctx: TrackerContext, achievement_id: str) -> tuple[Achievement, bool]:
    """Set ``earned_date`` if unset. Returns (row, newly_awarded)."""
    rule = RULES.get(achievement_id)
    if rule is None:
        raise NotFoundError("achievement", achievement_id)
    key = _key(ctx, achievement_id)
    newly = bool(ctx.r.hsetnx(key, "earned_date", ctx.now().isoformat(timespec="seconds")))
    if newly:
        ctx.r.hset(key, "progress", rule.total_required)
        logger.info(f"Achievement awarded: {achievement_id}")
    return get_achievement(ctx, achievement_id), newly


def _record_progress(ctx: TrackerContext, rule: AchievementRule, value: int) -> None:
    """Store capped progress unless the achievement is already earned."""
    key = _key(ctx, rule.achievement_id)

    def _update(pipe: redis.client.Pipeline) -> None:
        if pipe.hget(key, "earned_date"):
            return
        pipe.multi()
        pipe.hset(key, "progress", min(value, rule.total_required))

    ctx.r.transaction(_update, key)


def check_and_award(ctx: TrackerContext) -> list[str]:
    """Evaluate every unearned achievement. Returns the ids awarded in this pass."""
    awarded = []
    for achievement in get_achievements(ctx):
        if achievement.earned:
            continue
        rule = RULES[achievement.achievement_id]
        value, met = rule.measure(ctx)
        _record_progress(ctx, rule, value)
        if met:
            _, newly = award_achievement(ctx, rule.achievement_id)
            if newly:
                awarded.append(rule.achievement_id)
    return awarded
