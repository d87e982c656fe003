"""Program Unlock State Machine.

Per week: Locked -> Unlocked -> Completed, forward only. Week n unlocks
either because week n-1 was completed, or automatically once week n-1 has
been unlocked for AUTO_UNLOCK_MIN_DAYS and the trailing week shows enough
ATT and DM practice. Rejections are returned, not raised, so callers can
show a "not yet eligible" message.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import redis

from mct_engine.config.settings import (
    AUTO_UNLOCK_MIN_ATT,
    AUTO_UNLOCK_MIN_DAYS,
    AUTO_UNLOCK_MIN_DM,
    PROGRAM_WEEKS,
)
from mct_engine.context import TrackerContext
from mct_engine.errors import IneligibleTransitionError, NotFoundError
from mct_engine.models.engagement import (
    Notification,
    ProgramWeek,
    enqueue_notification,
    get_settings,
    set_current_week,
)
from mct_engine.models.validation import format_day, parse_day
from mct_engine.engine.milestones import ensure_milestones
from mct_engine.engine.timeseries import window_dates
from mct_engine.store import metric_store as store

logger = logging.getLogger(__name__)

WEEK_TITLES = {
    0: "Orientation",
    1: "Mapping Your CAS",
    2: "Attention Training",
    3: "Positive Beliefs About Worry",
    4: "Negative Beliefs: Uncontrollability",
    5: "Negative Beliefs: Danger",
    6: "Safety Behaviors",
    7: "Applying Skills to Triggers",
    8: "Relapse Prevention",
}


@dataclass
class TransitionResult:
    ok: bool
    week: Optional[ProgramWeek] = None
    via: str = ""                   # completion | criteria | explicit
    error: Optional[IneligibleTransitionError] = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {
            "ok": self.ok,
            "week": self.week.to_json() if self.week else None,
            "via": self.via,
            "details": self.details,
        }
        if self.error:
            d.update(self.error.to_dict())
        return d


def _rejected(reason: str, message: str, week: Optional[ProgramWeek] = None, **details) -> TransitionResult:
    return TransitionResult(
        ok=False,
        week=week,
        error=IneligibleTransitionError(reason, message),
        details=details,
    )


def initialize_program(ctx: TrackerContext) -> list[ProgramWeek]:
    """Create weeks 0..PROGRAM_WEEKS once; week 0 starts unlocked. Safe to repeat."""
    created = 0
    for n in range(PROGRAM_WEEKS + 1):
        key = ProgramWeek.redis_key(ctx, n)
        row = ProgramWeek(week_number=n, title=WEEK_TITLES.get(n, f"Week {n}"))
        if n == 0:
            row.unlocked = True
            row.unlocked_date = format_day(ctx.today())
        # Whole-row create guarded on the week_number field
        if ctx.r.hsetnx(key, "week_number", n):
            ctx.r.hset(key, mapping=row.to_dict())
            created += 1
    ensure_milestones(ctx)
    if created:
        logger.info(f"Program initialized ({created} weeks created)")
    return get_program_weeks(ctx)


def get_program_weeks(ctx: TrackerContext) -> list[ProgramWeek]:
    rows = [ProgramWeek.from_redis(ctx, n) for n in range(PROGRAM_WEEKS + 1)]
    return [row for row in rows if row is not None]


def practice_counts(ctx: TrackerContext) -> tuple[int, int]:
    """(completed ATT sessions, DM practices) over the trailing 7 days."""
    dates = window_dates(ctx.today(), 7)
    att = sum(1 for s in store.get_practice_sessions(ctx, dates[0], dates[-1]) if s.completed)
    dm = len(store.get_micro_practices(ctx, dates[0], dates[-1]))
    return att, dm


def _criteria(ctx: TrackerContext, prior: ProgramWeek, today: date) -> tuple[bool, dict]:
    days_unlocked = (today - parse_day(prior.unlocked_date)).days if prior.unlocked_date else 0
    att, dm = practice_counts(ctx)
    details = {
        "days_since_prior_unlock": days_unlocked,
        "att_completions": att,
        "dm_practices": dm,
        "required": {
            "days": AUTO_UNLOCK_MIN_DAYS,
            "att_completions": AUTO_UNLOCK_MIN_ATT,
            "dm_practices": AUTO_UNLOCK_MIN_DM,
        },
    }
    met = (
        days_unlocked >= AUTO_UNLOCK_MIN_DAYS
        and att >= AUTO_UNLOCK_MIN_ATT
        and dm >= AUTO_UNLOCK_MIN_DM
    )
    return met, details


def _emit_unlock(ctx: TrackerContext, n: int, via: str) -> None:
    if via == "completion":
        message = f"Week {n} content is now available. Check the Program tab to continue your journey."
    else:
        message = f"Week {n} content is now available. You've met the minimum practice requirements!"
    enqueue_notification(ctx, Notification(
        notification_type="weekly_unlock",
        scheduled_time=ctx.now().isoformat(timespec="seconds"),
        title="New Week Unlocked!",
        message=message,
        payload={"week": n, "via": via},
    ))
    ctx.r.publish(ctx.key("events"), json.dumps({"event": "week_unlocked", "week": n, "via": via}))


def unlock_week(ctx: TrackerContext, n: int) -> TransitionResult:
    """Try to move week ``n`` from Locked to Unlocked.

    Raises NotFoundError for an unknown week; every business-rule rejection
    comes back as a failed TransitionResult.
    """
    if ProgramWeek.from_redis(ctx, n) is None:
        raise NotFoundError("week", n)
    if n == 0:
        return _rejected("already_unlocked", "Week 0 is unlocked from the start")

    key = ProgramWeek.redis_key(ctx, n)
    prior_key = ProgramWeek.redis_key(ctx, n - 1)
    today = ctx.today()

    def _unlock(pipe: redis.client.Pipeline) -> TransitionResult:
        week = ProgramWeek.from_dict(pipe.hgetall(key))
        prior_data = pipe.hgetall(prior_key)
        prior = ProgramWeek.from_dict(prior_data) if prior_data else None

        if week.unlocked:
            return _rejected("already_unlocked", f"Week {n} is already unlocked", week)
        if prior is None or not prior.unlocked:
            return _rejected("prior_locked", f"Week {n - 1} has not been unlocked yet", week)

        if prior.completed:
            via, details = "completion", {}
        else:
            met, details = _criteria(ctx, prior, today)
            if not met:
                return _rejected(
                    "criteria_not_met",
                    f"Week {n} unlocks after week {n - 1} is completed or the practice criteria are met",
                    week,
                    **details,
                )
            via = "criteria"

        week.unlocked = True
        week.unlocked_date = format_day(today)
        current_week = int(pipe.hget(ctx.key("settings"), "current_week") or 0)
        pipe.multi()
        pipe.hset(key, mapping=week.to_dict())
        if n > current_week:
            set_current_week(pipe, ctx, n)
        return TransitionResult(ok=True, week=week, via=via, details=details)

    result = ctx.r.transaction(_unlock, key, prior_key, ctx.key("settings"), value_from_callable=True)
    if result.ok:
        logger.info(f"Week {n} unlocked (via {result.via})")
        _emit_unlock(ctx, n, result.via)
    else:
        logger.debug(f"Week {n} unlock rejected: {result.error.reason}")
    return result


def complete_week(ctx: TrackerContext, n: int) -> TransitionResult:
    """Move week ``n`` from Unlocked to Completed (explicit action only)."""
    if ProgramWeek.from_redis(ctx, n) is None:
        raise NotFoundError("week", n)
    key = ProgramWeek.redis_key(ctx, n)

    def _complete(pipe: redis.client.Pipeline) -> TransitionResult:
        week = ProgramWeek.from_dict(pipe.hgetall(key))
        if not week.unlocked:
            return _rejected("not_unlocked", f"Week {n} is still locked", week)
        if week.completed:
            return _rejected("already_completed", f"Week {n} is already completed", week)
        week.completed = True
        week.completed_date = format_day(ctx.today())
        pipe.multi()
        pipe.hset(key, mapping=week.to_dict())
        return TransitionResult(ok=True, week=week, via="explicit")

    result = ctx.r.transaction(_complete, key, value_from_callable=True)
    if result.ok:
        logger.info(f"Week {n} completed")
    return result


def check_week_unlock(ctx: TrackerContext) -> TransitionResult:
    """Scheduled check: try to unlock the week after the current one."""
    nxt = get_settings(ctx).current_week + 1
    if ProgramWeek.from_redis(ctx, nxt) is None:
        return _rejected("no_successor", f"There is no week {nxt}")
    return unlock_week(ctx, nxt)
