#!/usr/bin/env python3
"""Seed Redis with three weeks of demo history for one profile.

Run: python scripts/seed_demo.py [profile_id]

Days are replayed in order with the context clock set to each day, so
streaks, program unlocks and milestones move exactly as they would have
live.
"""

from __future__ import annotations

import logging
import random
import sys
from datetime import datetime, time, timedelta
from pathlib import Path

_root = Path(__file__).resolve().parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from mct_engine.config.settings import PROFILE_ID
from mct_engine.context import TrackerContext, get_context
from mct_engine.models.engagement import update_settings
from mct_engine.models.records import (
    BeliefRating,
    MergeMode,
    MicroPractice,
    PostponementEvent,
    PracticeSession,
)
from mct_engine.engine import activity
from mct_engine.engine.achievements import check_and_award
from mct_engine.engine.milestones import check_milestone_completion
from mct_engine.engine.program import check_week_unlock, complete_week, initialize_program

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-7s  %(name)-22s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("seed_demo")

HISTORY_DAYS = 21
DM_SLOTS = [("morning", 8), ("midday", 13), ("evening", 18)]
METAPHORS = ["radio", "screen", "weather"]


def clear_profile(ctx: TrackerContext) -> None:
    """Remove every key in the profile namespace."""
    removed = 0
    for key in ctx.r.scan_iter(ctx.key("*")):
        ctx.r.delete(key)
        removed += 1
    logger.info(f"Cleared {removed} keys for profile {ctx.profile_id}")


def _at(ctx: TrackerContext, moment: datetime) -> TrackerContext:
    return TrackerContext(r=ctx.r, profile_id=ctx.profile_id, clock=lambda: moment)


def seed_day(ctx: TrackerContext, day_index: int, rng: random.Random) -> None:
    day = ctx.today()
    # Worry eases off over the three weeks
    worry = max(5, 60 - day_index * 2 + rng.randint(-5, 5))
    activity.upsert_daily_log(ctx, day, {
        "worry_minutes": worry,
        "rumination_minutes": max(0, worry // 2 + rng.randint(-3, 3)),
        "monitoring_count": rng.randint(1, 6),
        "checking_count": rng.randint(0, 4),
        "reassurance_count": rng.randint(0, 3),
        "avoidance_count": rng.randint(0, 2),
    }, MergeMode.REPLACE)

    for slot, hour in DM_SLOTS:
        if rng.random() < 0.85:
            dm_ctx = _at(ctx, datetime.combine(day, time(hour, 5)))
            activity.record_micro_practice(dm_ctx, MicroPractice(
                date=day,
                time_of_day=slot,
                duration_seconds=rng.choice([60, 90, 120]),
                confidence_rating=min(100, 40 + day_index * 2),
                metaphor_used=rng.choice(METAPHORS),
            ))

    if rng.random() < 0.8:
        att_ctx = _at(ctx, datetime.combine(day, time(20, 15)))
        activity.record_practice_session(att_ctx, PracticeSession(
            date=day,
            duration_minutes=rng.choice([10, 12, 12, 15]),
            completed=True,
            attentional_control_rating=min(100, 45 + day_index * 2),
            shift_ease_rating=min(100, 40 + day_index * 2),
            intrusion_count=rng.randint(0, 5),
            script_type="standard",
        ))
        activity.log_cas_from_exercise(att_ctx, {"worry_minutes": 2}, "post-ATT check-in")

    if rng.random() < 0.5:
        processed = rng.random() < 0.75
        activity.record_postponement_event(ctx, PostponementEvent(
            date=day,
            trigger_time=f"{rng.choice([9, 14, 19]):02d}:30",
            scheduled_time="18:30",
            urge_before=rng.randint(50, 90),
            urge_after=rng.randint(10, 50) if processed else None,
            processed=processed,
            processing_duration_minutes=15 if processed else None,
        ))

    if day_index % 3 == 0:
        for belief_type, start in (("uncontrollability", 75), ("danger", 65), ("positive", 55)):
            activity.record_belief_rating(ctx, BeliefRating(
                date=day,
                belief_type=belief_type,
                rating=max(10, start - day_index),
            ))


def seed(profile_id: str | None = None) -> None:
    base = get_context(profile_id or PROFILE_ID)
    clear_profile(base)
    rng = random.Random(42)

    first_day = base.today() - timedelta(days=HISTORY_DAYS - 1)
    start_ctx = _at(base, datetime.combine(first_day, time(7, 0)))
    initialize_program(start_ctx)
    complete_week(start_ctx, 0)
    check_week_unlock(start_ctx)

    for i in range(HISTORY_DAYS):
        day = first_day + timedelta(days=i)
        day_ctx = _at(base, datetime.combine(day, time(12, 0)))
        seed_day(day_ctx, i, rng)

        night_ctx = _at(base, datetime.combine(day, time(23, 0)))
        check_milestone_completion(night_ctx)
        check_and_award(night_ctx)
        check_week_unlock(night_ctx)

    update_settings(base, practice_time_preference="evening")
    logger.info(f"Seeded {HISTORY_DAYS} days of history for profile {base.profile_id}")


if __name__ == "__main__":
    seed(sys.argv[1] if len(sys.argv) > 1 else None)
