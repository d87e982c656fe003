"""Write path for daily activity.

Stores a record, then refreshes the streaks it can affect. Streaks only move
for activity dated today; backfilled records are stored but leave streaks
alone.
"""

from __future__ import annotations

import logging

from mct_engine.context import TrackerContext
from mct_engine.models.records import (
    BeliefRating,
    DailyLogEntry,
    MergeMode,
    MicroPractice,
    PostponementEvent,
    PracticeSession,
)
from mct_engine.engine.streaks import update_streak
from mct_engine.store import metric_store as store

logger = logging.getLogger(__name__)


def _touch_streaks(ctx: TrackerContext, day, streak_type: str) -> None:
    if day != ctx.today():
        return
    update_streak(ctx, streak_type)
    update_streak(ctx, "overall")


def upsert_daily_log(
    ctx: TrackerContext,
    day,
    fields: dict[str, int],
    mode: str = MergeMode.REPLACE,
    notes: str = "",
) -> DailyLogEntry:
    entry = store.upsert_daily_log(ctx, day, fields, mode, notes)
    _touch_streaks(ctx, entry.date, "logging")
    return entry


def log_cas_from_exercise(ctx: TrackerContext, fields: dict[str, int], notes: str = "") -> DailyLogEntry:
    """Add an exercise's CAS contribution to today's totals."""
    return upsert_daily_log(ctx, ctx.today(), fields, MergeMode.INCREMENT, notes)


def record_practice_session(ctx: TrackerContext, session: PracticeSession) -> PracticeSession:
    session = store.add_practice_session(ctx, session)
    logger.info(
        f"ATT session #{session.id} on {session.date} "
        f"({session.duration_minutes}min, completed={session.completed})"
    )
    if session.completed:
        _touch_streaks(ctx, session.date, "att")
    return session


def record_micro_practice(ctx: TrackerContext, practice: MicroPractice) -> MicroPractice:
    practice = store.add_micro_practice(ctx, practice)
    _touch_streaks(ctx, practice.date, "dm")
    return practice


def record_postponement_event(ctx: TrackerContext, event: PostponementEvent) -> PostponementEvent:
    return store.add_postponement_event(ctx, event)


def record_belief_rating(ctx: TrackerContext, rating: BeliefRating) -> BeliefRating:
    return store.add_belief_rating(ctx, rating)
