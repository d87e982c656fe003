"""Streak Tracker.

One row per practice type (att | dm | logging | overall). A qualifying
activity today moves the row forward:

    last == yesterday   current += 1
    last != today       current  = 1
    last == today       unchanged

``longest_streak`` is a watermark and only ever grows. Every mutation is a
WATCH/MULTI read-modify-write so concurrent same-day calls cannot
double-increment.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

import redis

from mct_engine.context import TrackerContext
from mct_engine.models.engagement import STREAK_TYPES, Streak
from mct_engine.models.validation import format_day, parse_day, require_choice
from mct_engine.store import metric_store as store

logger = logging.getLogger(__name__)

DM_DAILY_MINIMUM = 3


def advance(streak: Streak, today: date) -> Streak:
    """Apply one qualifying activity on ``today`` to ``streak`` (pure)."""
    today_str = format_day(today)
    yesterday_str = format_day(today - timedelta(days=1))

    if streak.last_activity_date == yesterday_str:
        current = streak.current_streak + 1
    elif streak.last_activity_date != today_str:
        current = 1
    else:
        current = streak.current_streak

    return Streak(
        streak_type=streak.streak_type,
        current_streak=current,
        longest_streak=max(streak.longest_streak, current),
        last_activity_date=today_str,
    )


def qualifies(ctx: TrackerContext, streak_type: str, day: date) -> bool:
    """Whether ``day`` holds a qualifying activity for ``streak_type``."""
    if streak_type == "att":
        return any(s.completed for s in store.get_practice_sessions(ctx, day, day))
    if streak_type == "dm":
        return store.count_on(ctx, store.DM, day) >= DM_DAILY_MINIMUM
    if streak_type == "logging":
        return store.has_records_on(ctx, "cas", day)
    # overall: all three practices on the same day
    return (
        qualifies(ctx, "att", day)
        and store.count_on(ctx, store.DM, day) >= 1
        and store.has_records_on(ctx, "cas", day)
    )


def _commit(ctx: TrackerContext, streak_type: str, today: date) -> tuple[Streak, Streak]:
    key = Streak.redis_key(ctx, streak_type)

    def _update(pipe: redis.client.Pipeline):
        data = pipe.hgetall(key)
        before = Streak.from_dict(data) if data else Streak(streak_type=streak_type)
        after = advance(before, today)
        pipe.multi()
        pipe.hset(key, mapping=after.to_dict())
        return before, after

    return ctx.r.transaction(_update, key, value_from_callable=True)


def update_streak(ctx: TrackerContext, streak_type: str) -> Streak:
    """Record today's activity for ``streak_type`` if today qualifies.

    Never raises for data reasons: a non-qualifying day returns the stored
    row untouched, and repeated calls on the same day are no-ops.
    """
    require_choice(streak_type, STREAK_TYPES, "type")
    today = ctx.today()
    if not qualifies(ctx, streak_type, today):
        return Streak.from_redis(ctx, streak_type)

    before, after = _commit(ctx, streak_type, today)
    if after.current_streak != before.current_streak:
        logger.info(
            f"Streak {streak_type}: {before.current_streak} -> {after.current_streak} "
            f"(longest {after.longest_streak})"
        )
    return after


def update_all_streaks(ctx: TrackerContext) -> dict[str, Streak]:
    """Refresh the individual streaks, then ``overall`` from same-day state."""
    out = {t: update_streak(ctx, t) for t in ("att", "dm", "logging")}
    out["overall"] = update_streak(ctx, "overall")
    return out


def get_streaks(ctx: TrackerContext) -> dict[str, Streak]:
    return {t: Streak.from_redis(ctx, t) for t in STREAK_TYPES}


def expire_streaks(ctx: TrackerContext) -> list[str]:
    """Zero ``current_streak`` for rows whose last activity is before yesterday.

    ``longest_streak`` and ``last_activity_date`` are left alone. Returns the
    types that were reset.
    """
    cutoff = ctx.days_ago(1)
    expired = []
    for streak_type in STREAK_TYPES:
        key = Streak.redis_key(ctx, streak_type)

        def _expire(pipe: redis.client.Pipeline) -> bool:
            data = pipe.hgetall(key)
            if not data:
                return False
            streak = Streak.from_dict(data)
            if streak.current_streak == 0 or not streak.last_activity_date:
                return False
            if parse_day(streak.last_activity_date) >= cutoff:
                return False
            pipe.multi()
            pipe.hset(key, "current_streak", 0)
            return True

        if ctx.r.transaction(_expire, key, value_from_callable=True):
            expired.append(streak_type)
            logger.info(f"Streak {streak_type} expired")
    return expired
