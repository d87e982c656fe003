"""Scheduled jobs.

Each job is an idempotent sweep over persisted state. ``run_due_jobs`` runs
every job whose interval has elapsed since its last successful run, each
under its own ``SET NX EX`` lock so overlapping ticks (or processes) never
run the same job twice at once. A failing job is logged and retried on the
next tick.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from mct_engine.config.settings import (
    JOB_LOCK_SECONDS,
    NOTIFICATION_RETENTION_DAYS,
    SCHEDULER_TICK_SECONDS,
)
from mct_engine.context import TrackerContext
from mct_engine.models.engagement import (
    Notification,
    enqueue_notification,
    get_settings,
    purge_notifications,
)
from mct_engine.engine.achievements import check_and_award
from mct_engine.engine.milestones import check_milestone_completion
from mct_engine.engine.nudges import generate_nudges
from mct_engine.engine.program import check_week_unlock
from mct_engine.engine.streaks import expire_streaks

logger = logging.getLogger(__name__)

DM_SLOT_LABELS = ("morning", "midday", "evening")


@dataclass(frozen=True)
class Job:
    name: str
    interval: timedelta
    run: Callable[[TrackerContext], object]


# ── Job bodies ───────────────────────────────────────────────────────────


def schedule_daily_notifications(ctx: TrackerContext) -> int:
    """Queue today's ATT, DM and postponement reminders. Returns how many were new."""
    settings = get_settings(ctx)
    if not settings.notifications_enabled:
        return 0

    today = ctx.today().isoformat()
    pending = [
        Notification(
            notification_type="att_reminder",
            scheduled_time=f"{today}T{settings.att_reminder_time}:00",
            title="Time for Attention Training",
            message="Your daily ATT session is scheduled now. Take 12-15 minutes for this practice.",
        ),
    ]
    for i, t in enumerate(settings.dm_reminder_times):
        label = DM_SLOT_LABELS[i] if i < len(DM_SLOT_LABELS) else "other"
        pending.append(Notification(
            notification_type="dm_reminder",
            scheduled_time=f"{today}T{t}:00",
            title=f"Detached Mindfulness ({label})",
            message="Time for your 1-3 minute micro-practice.",
            payload={"time_of_day": label},
        ))
    if settings.postponement_slot_start:
        pending.append(Notification(
            notification_type="postponement_reminder",
            scheduled_time=f"{today}T{settings.postponement_slot_start}:00",
            title="Worry/Rumination Time",
            message=f"Your scheduled worry time starts now ({settings.postponement_slot_duration} minutes).",
        ))
    return sum(1 for n in pending if enqueue_notification(ctx, n))


def cleanup_notifications(ctx: TrackerContext) -> int:
    cutoff = ctx.now() - timedelta(days=NOTIFICATION_RETENTION_DAYS)
    removed = purge_notifications(ctx, cutoff.isoformat(timespec="seconds"))
    logger.info(f"Cleaned up {removed} old notifications")
    return removed


JOBS: list[Job] = [
    Job("daily_notifications", timedelta(days=1), schedule_daily_notifications),
    Job("week_unlock", timedelta(days=1), check_week_unlock),
    Job("expire_streaks", timedelta(days=1), expire_streaks),
    Job("nudges", timedelta(days=1), generate_nudges),
    Job("achievements", timedelta(hours=2), check_and_award),
    Job("milestones", timedelta(days=1), check_milestone_completion),
    Job("notification_cleanup", timedelta(weeks=1), cleanup_notifications),
]


# ── Runner ───────────────────────────────────────────────────────────────


def _last_run_key(ctx: TrackerContext) -> str:
    return ctx.key("jobs", "last_run")


def last_runs(ctx: TrackerContext) -> dict[str, str]:
    return ctx.r.hgetall(_last_run_key(ctx))


def is_due(ctx: TrackerContext, job: Job, now: datetime) -> bool:
    last = ctx.r.hget(_last_run_key(ctx), job.name)
    return not last or now - datetime.fromisoformat(last) >= job.interval


def run_job(ctx: TrackerContext, job: Job) -> str:
    """Run one job under its advisory lock. Returns ok | locked | failed."""
    lock_key = ctx.key("jobs", "lock", job.name)
    token = uuid.uuid4().hex
    if not ctx.r.set(lock_key, token, nx=True, ex=JOB_LOCK_SECONDS):
        logger.warning(f"Job {job.name} skipped: already running")
        return "locked"
    try:
        job.run(ctx)
    except Exception:
        logger.exception(f"Job {job.name} failed")
        return "failed"
    finally:
        if ctx.r.get(lock_key) == token:
            ctx.r.delete(lock_key)

    ctx.r.hset(_last_run_key(ctx), job.name, ctx.now().isoformat(timespec="seconds"))
    logger.info(f"Job {job.name} done")
    return "ok"


def run_due_jobs(ctx: TrackerContext, jobs: list[Job] | None = None) -> dict[str, str]:
    """Run every due job once. Returns {job name: outcome} for the jobs attempted."""
    now = ctx.now()
    results = {}
    for job in jobs or JOBS:
        if is_due(ctx, job, now):
            results[job.name] = run_job(ctx, job)
    return results


async def scheduler_loop(ctx_factory: Callable[[], TrackerContext], tick: int = SCHEDULER_TICK_SECONDS):
    """Background task: run due jobs every ``tick`` seconds until cancelled."""
    logger.info(f"Scheduler started (tick {tick}s)")
    try:
        while True:
            try:
                await asyncio.to_thread(run_due_jobs, ctx_factory())
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")
            await asyncio.sleep(tick)
    except asyncio.CancelledError:
        logger.info("Scheduler stopped")
