"""Nudge Generator.

Heuristics over streaks, trends, milestones and the performance profile
produce short-lived, dismissible prompts. A nudge is skipped when a
non-dismissed one with the same (type, title) was created in the last day,
and every nudge is purged after NUDGE_TTL_DAYS whether dismissed or not.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

import redis

from mct_engine.config.settings import ACTIVE_NUDGE_LIMIT, NUDGE_TTL_DAYS, PROGRAM_WEEKS
from mct_engine.context import TrackerContext
from mct_engine.errors import NotFoundError
from mct_engine.models.engagement import (
    Milestone,
    Nudge,
    NudgeType,
    Priority,
    get_settings,
)
from mct_engine.models.validation import format_day, parse_day
from mct_engine.engine.metrics import belief_trend_analyses
from mct_engine.engine.profiler import analyze_performance
from mct_engine.engine.streaks import get_streaks
from mct_engine.store import metric_store as store

logger = logging.getLogger(__name__)

DEDUPE_WINDOW = timedelta(days=1)
LAPSE_DAYS = 3
BELIEF_SHIFT_POINTS = 5
CONSISTENCY_INSIGHT_SCORE = 80
STREAK_CELEBRATIONS = (7, 14, 30)
RECOVERY_MIN_LONGEST = 7
DM_REMINDER_HOUR = 12

# Hour after which a missed ATT practice is worth a same-day reminder
PREFERRED_CUTOFF_HOUR = {"morning": 10, "midday": 15, "evening": 20}


def _index_key(ctx: TrackerContext) -> str:
    return ctx.key("nudges")


def _load(ctx: TrackerContext, ids: list) -> list[Nudge]:
    if not ids:
        return []
    pipe = ctx.r.pipeline(transaction=False)
    for nid in ids:
        pipe.hgetall(Nudge.redis_key(ctx, nid))
    return [Nudge.from_dict(d) for d in pipe.execute() if d]


def list_nudges(ctx: TrackerContext) -> list[Nudge]:
    """Every stored nudge, oldest first."""
    return _load(ctx, ctx.r.zrange(_index_key(ctx), 0, -1))


def create_nudge(
    ctx: TrackerContext,
    nudge_type: str,
    title: str,
    message: str,
    priority: str = Priority.MEDIUM,
) -> Optional[Nudge]:
    """Store a nudge unless a live duplicate exists. Returns None when deduplicated."""
    nudge = Nudge(nudge_type=nudge_type, title=title, message=message, priority=priority)
    nudge.validate()

    now = ctx.now()
    index_key = _index_key(ctx)

    def _create(pipe: redis.client.Pipeline) -> Optional[Nudge]:
        recent_ids = pipe.zrangebyscore(index_key, (now - DEDUPE_WINDOW).timestamp(), "+inf")
        for nid in recent_ids:
            data = pipe.hgetall(Nudge.redis_key(ctx, nid))
            if not data:
                continue
            existing = Nudge.from_dict(data)
            if (existing.nudge_type, existing.title) == (nudge_type, title) and not existing.dismissed:
                return None
        nudge.nudge_id = pipe.incr(ctx.key("nudge", "seq"))
        nudge.created_at = now.isoformat(timespec="seconds")
        pipe.multi()
        pipe.hset(Nudge.redis_key(ctx, nudge.nudge_id), mapping=nudge.to_dict())
        pipe.zadd(index_key, {nudge.nudge_id: now.timestamp()})
        return nudge

    created = ctx.r.transaction(_create, index_key, value_from_callable=True)
    if created:
        logger.info(f"Nudge #{created.nudge_id} [{priority}] {title}")
    return created


def dismiss_nudge(ctx: TrackerContext, nudge_id: int) -> Nudge:
    nudge = Nudge.from_redis(ctx, nudge_id)
    if nudge is None:
        raise NotFoundError("nudge", nudge_id)
    if not nudge.dismissed:
        ctx.r.hset(Nudge.redis_key(ctx, nudge_id), "dismissed", 1)
        nudge.dismissed = True
    return nudge


def purge_old_nudges(ctx: TrackerContext) -> int:
    """Delete nudges older than NUDGE_TTL_DAYS. Returns how many were removed."""
    cutoff = (ctx.now() - timedelta(days=NUDGE_TTL_DAYS)).timestamp()
    index_key = _index_key(ctx)
    stale = ctx.r.zrangebyscore(index_key, "-inf", f"({cutoff}")
    if not stale:
        return 0
    pipe = ctx.r.pipeline()
    pipe.zrem(index_key, *stale)
    pipe.delete(*(Nudge.redis_key(ctx, nid) for nid in stale))
    pipe.execute()
    logger.info(f"Purged {len(stale)} expired nudges")
    return len(stale)


def get_active_nudges(ctx: TrackerContext, limit: int = ACTIVE_NUDGE_LIMIT) -> list[Nudge]:
    """Non-dismissed nudges from the TTL window, by priority then newest first."""
    cutoff = (ctx.now() - timedelta(days=NUDGE_TTL_DAYS)).timestamp()
    ids = ctx.r.zrevrangebyscore(_index_key(ctx), "+inf", cutoff)
    live = [n for n in _load(ctx, ids) if not n.dismissed]
    # ids are newest first and sort() is stable
    live.sort(key=lambda n: Priority.RANK[n.priority])
    return live[:limit]


# ═══════════════════════════════════════════════════════════════════════════
# Heuristics
# ═══════════════════════════════════════════════════════════════════════════


def _label(streak_type: str) -> str:
    return "ATT" if streak_type == "att" else streak_type.upper()


def _last_completed_att(ctx: TrackerContext):
    completed = [s.date for s in store.records_through(ctx, store.ATT) if s.completed]
    return max(completed) if completed else None


def _practice_reminders(ctx: TrackerContext, now: datetime) -> list[Optional[Nudge]]:
    out = []
    today = ctx.today()
    recent = [
        s for s in store.get_practice_sessions(ctx, ctx.days_ago(LAPSE_DAYS), today)
        if s.completed
    ]
    if not recent:
        out.append(create_nudge(
            ctx, NudgeType.REMINDER, "ATT Practice Opportunity",
            "It's been a few days since your last ATT session. "
            "Even 5 minutes can help maintain your progress.",
            Priority.MEDIUM,
        ))
    elif max(s.date for s in recent) != today:
        preference = get_settings(ctx).practice_time_preference
        cutoff = PREFERRED_CUTOFF_HOUR.get(preference)
        if cutoff is not None and now.hour >= cutoff:
            out.append(create_nudge(
                ctx, NudgeType.REMINDER, "Today's ATT Practice",
                "A gentle reminder that you haven't practiced ATT today. "
                "Your consistency helps build lasting change.",
                Priority.LOW,
            ))

    if now.hour >= DM_REMINDER_HOUR and store.count_on(ctx, store.DM, today) == 0:
        out.append(create_nudge(
            ctx, NudgeType.REMINDER, "DM Micro-Practice",
            "A quick 30-second DM practice can help strengthen your attentional flexibility.",
            Priority.LOW,
        ))
    return out


def _progress_insights(ctx: TrackerContext) -> list[Optional[Nudge]]:
    out = []
    _, beliefs = belief_trend_analyses(ctx, 14)
    for belief_type, (_, trend) in beliefs.items():
        change = trend.week_over_week_change
        if not trend.reliable or abs(change) < BELIEF_SHIFT_POINTS:
            continue
        moved = "increased" if change > 0 else "decreased"
        out.append(create_nudge(
            ctx, NudgeType.INSIGHT, f"{belief_type.capitalize()} Belief Shift",
            f"Your {belief_type} beliefs have {moved} by {abs(change)} points this week. "
            "This suggests your practices are creating real change.",
            Priority.MEDIUM,
        ))

    profile = analyze_performance(ctx)
    if profile.att_consistency_score >= CONSISTENCY_INSIGHT_SCORE:
        out.append(create_nudge(
            ctx, NudgeType.INSIGHT, "Excellent Consistency",
            f"Your {profile.att_consistency_score}% ATT consistency is building real skill. "
            "You're developing habits that will serve you long-term.",
            Priority.LOW,
        ))
    return out


def _celebrations(ctx: TrackerContext) -> list[Optional[Nudge]]:
    out = []
    since = ctx.days_ago(LAPSE_DAYS)
    for week in range(1, PROGRAM_WEEKS + 1):
        milestone = Milestone.from_redis(ctx, week)
        if not milestone or not milestone.completed or not milestone.completed_date:
            continue
        if parse_day(milestone.completed_date[:10]) >= since:
            out.append(create_nudge(
                ctx, NudgeType.CELEBRATION, "Milestone Celebration",
                f"Completing {milestone.title} is a significant accomplishment. "
                "You're building real skills for lasting change.",
                Priority.MEDIUM,
            ))

    for streak in get_streaks(ctx).values():
        if streak.current_streak in STREAK_CELEBRATIONS:
            label = _label(streak.streak_type)
            out.append(create_nudge(
                ctx, NudgeType.CELEBRATION, f"{streak.current_streak}-Day {label} Streak!",
                f"Your dedication to consistent {label} practice is remarkable.",
                Priority.MEDIUM,
            ))
    return out


def _recovery(ctx: TrackerContext) -> list[Optional[Nudge]]:
    out = []
    since = format_day(ctx.days_ago(LAPSE_DAYS))
    for streak in get_streaks(ctx).values():
        if (
            streak.current_streak == 0
            and streak.longest_streak >= RECOVERY_MIN_LONGEST
            and streak.last_activity_date
            and streak.last_activity_date >= since
        ):
            label = _label(streak.streak_type)
            out.append(create_nudge(
                ctx, NudgeType.RECOVERY, "Back on Track",
                f"You had a {streak.longest_streak}-day {label} streak. That shows what "
                "you're capable of. One missed day doesn't erase your progress.",
                Priority.MEDIUM,
            ))

    last = _last_completed_att(ctx)
    if last is None or last < ctx.days_ago(LAPSE_DAYS):
        out.append(create_nudge(
            ctx, NudgeType.RECOVERY, "Gentle Return",
            "It's been a few days since your last practice. No pressure. "
            "When you're ready, we're here to support your journey.",
            Priority.LOW,
        ))
    return out


def generate_nudges(ctx: TrackerContext) -> list[Nudge]:
    """Purge expired nudges, then run every heuristic. Returns the nudges created."""
    purge_old_nudges(ctx)
    now = ctx.now()
    candidates = (
        _practice_reminders(ctx, now)
        + _progress_insights(ctx)
        + _celebrations(ctx)
        + _recovery(ctx)
    )
    created = [n for n in candidates if n is not None]
    logger.info(f"Generated {len(created)} nudges")
    return created
