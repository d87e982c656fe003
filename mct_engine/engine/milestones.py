"""Weekly milestones: one row per program week, completed by a composite
practice check on the currently active week only.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis

from mct_engine.config.settings import MILESTONE_COMPLETION_THRESHOLD, PROGRAM_WEEKS
from mct_engine.context import TrackerContext
from mct_engine.errors import NotFoundError
from mct_engine.models.engagement import Milestone, NudgeType, Priority, get_settings
from mct_engine.engine.nudges import create_nudge
from mct_engine.engine.timeseries import window_dates
from mct_engine.store import metric_store as store

logger = logging.getLogger(__name__)

WEEK_TITLES = {
    1: "CAS Mapping Complete",
    2: "ATT Skills Developed",
    3: "Positive Beliefs Examined",
    4: "Midway Milestone",
    5: "Safety Behaviors Reduced",
    6: "Trigger Mastery",
    7: "Change Consolidated",
    8: "Program Graduate",
}

# Weekly targets for the composite check
ATT_TARGET = 3
DM_TARGET = 5
CAS_TARGET = 5


def milestone_type(week: int) -> str:
    if week == PROGRAM_WEEKS:
        return "graduation"
    if week == PROGRAM_WEEKS // 2:
        return "mid_program"
    return "week_completion"


def ensure_milestones(ctx: TrackerContext) -> None:
    """Create any missing milestone rows (weeks 1..PROGRAM_WEEKS)."""
    for week in range(1, PROGRAM_WEEKS + 1):
        key = Milestone.redis_key(ctx, week)
        if ctx.r.exists(key):
            continue
        row = Milestone(
            week_number=week,
            milestone_type=milestone_type(week),
            title=WEEK_TITLES.get(week, f"Week {week} Complete"),
        )
        for name, value in row.to_dict().items():
            ctx.r.hsetnx(key, name, value)


def get_milestones(ctx: TrackerContext) -> list[Milestone]:
    ensure_milestones(ctx)
    return [Milestone.from_redis(ctx, week) for week in range(1, PROGRAM_WEEKS + 1)]


def week_progress(ctx: TrackerContext) -> int:
    """Composite practice score (0-100) over the trailing 7 days."""
    dates = window_dates(ctx.today(), 7)
    start, end = dates[0], dates[-1]
    att = sum(1 for s in store.get_practice_sessions(ctx, start, end) if s.completed)
    dm = len(store.get_micro_practices(ctx, start, end))
    cas = len(store.get_daily_logs(ctx, start, end))
    parts = [
        min(100, att / ATT_TARGET * 100),
        min(100, dm / DM_TARGET * 100),
        min(100, cas / CAS_TARGET * 100),
    ]
    return round(sum(parts) / len(parts))


def _mark_completed(ctx: TrackerContext, week: int) -> Optional[Milestone]:
    """Flip a milestone to completed. Returns it if this call did the flip."""
    key = Milestone.redis_key(ctx, week)

    def _complete(pipe: redis.client.Pipeline) -> Optional[Milestone]:
        data = pipe.hgetall(key)
        if not data:
            raise NotFoundError("milestone", week)
        milestone = Milestone.from_dict(data)
        if milestone.completed:
            return None
        milestone.completed = True
        milestone.completed_date = ctx.now().isoformat(timespec="seconds")
        pipe.multi()
        pipe.hset(key, mapping=milestone.to_dict())
        return milestone

    return ctx.r.transaction(_complete, key, value_from_callable=True)


def _celebrate(ctx: TrackerContext, milestone: Milestone) -> None:
    create_nudge(
        ctx, NudgeType.CELEBRATION, f"Week {milestone.week_number} Complete!",
        f"You've completed {milestone.title}. This is real progress in your program.",
        Priority.HIGH,
    )


def check_milestone_completion(ctx: TrackerContext) -> Optional[Milestone]:
    """Complete the current week's milestone if the trailing week scores >= threshold.

    Past and future weeks are never touched. Idempotent: a completed
    milestone is left as is.
    """
    week = get_settings(ctx).current_week
    if week < 1 or week > PROGRAM_WEEKS:
        return None
    ensure_milestones(ctx)

    current = Milestone.from_redis(ctx, week)
    if current.completed:
        return None

    progress = week_progress(ctx)
    if progress < MILESTONE_COMPLETION_THRESHOLD:
        logger.debug(f"Week {week} milestone at {progress}%")
        return None

    milestone = _mark_completed(ctx, week)
    if milestone:
        logger.info(f"Milestone completed: week {week} ({progress}%)")
        _celebrate(ctx, milestone)
    return milestone


def complete_milestone(ctx: TrackerContext, milestone_id: int) -> Milestone:
    """Explicitly complete a milestone. Completing twice is a no-op."""
    ensure_milestones(ctx)
    milestone = _mark_completed(ctx, milestone_id)
    if milestone:
        logger.info(f"Milestone completed: week {milestone_id} (explicit)")
        _celebrate(ctx, milestone)
        return milestone
    return Milestone.from_redis(ctx, milestone_id)


def mark_celebration_shown(ctx: TrackerContext, milestone_id: int) -> Milestone:
    milestone = Milestone.from_redis(ctx, milestone_id)
    if milestone is None:
        raise NotFoundError("milestone", milestone_id)
    ctx.r.hset(Milestone.redis_key(ctx, milestone_id), "celebration_shown", 1)
    milestone.celebration_shown = True
    return milestone
