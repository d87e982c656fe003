"""Redis-backed Daily Metric Store.

Holds the raw daily records the analytics read from. Key layout (all keys
namespaced by profile through ``TrackerContext.key``):

    cas:events:{day}   list   immutable CASDelta events, in write order
    cas:log:{day}      hash   materialized fold of the day's events
    cas:dates          zset   days with a CAS log, scored by ordinal
    {kind}:seq         str    creation-order id counter
    {kind}:{id}        hash   one record
    {kind}:day:{day}   list   record ids for the day, in creation order
    {kind}:dates       zset   days with at least one record

``kind`` is one of att | dm | postponement | belief.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Optional, Type

import redis

from mct_engine.context import TrackerContext
from mct_engine.errors import ValidationError
from mct_engine.models.records import (
    CAS_FIELDS,
    BeliefRating,
    CASDelta,
    DailyLogEntry,
    MergeMode,
    MicroPractice,
    PostponementEvent,
    PracticeSession,
)
from mct_engine.models.validation import format_day, parse_day

logger = logging.getLogger(__name__)

ATT = "att"
DM = "dm"
POSTPONEMENT = "postponement"
BELIEF = "belief"

_RECORD_TYPES: dict[str, Type] = {
    ATT: PracticeSession,
    DM: MicroPractice,
    POSTPONEMENT: PostponementEvent,
    BELIEF: BeliefRating,
}


def _populated_days(ctx: TrackerContext, dates_key: str, start: date, end: date) -> list[str]:
    """Indexed days in ``[start, end]``, oldest first."""
    return ctx.r.zrangebyscore(dates_key, start.toordinal(), end.toordinal())


def _check_range(start, end) -> tuple[date, date]:
    start = parse_day(start, "start")
    end = parse_day(end, "end")
    if start > end:
        raise ValidationError("start", f"{start} is after {end}")
    return start, end


# ═══════════════════════════════════════════════════════════════════════════
# CAS daily log (event-sourced)
# ═══════════════════════════════════════════════════════════════════════════


def materialize(day: date, events: list[CASDelta]) -> DailyLogEntry:
    """Fold a day's delta events into its totals."""
    entry = DailyLogEntry(date=day)
    for event in events:
        event.apply(entry)
    return entry


def _load_events(raw: list[str]) -> list[CASDelta]:
    return [CASDelta(**json.loads(item)) for item in raw]


def upsert_daily_log(
    ctx: TrackerContext,
    day,
    fields: dict[str, int],
    mode: str = MergeMode.REPLACE,
    notes: str = "",
) -> DailyLogEntry:
    """Record a write against the day's CAS log and return the new totals.

    ``replace`` sets the day's totals to ``fields`` (omitted fields become 0);
    ``increment`` adds ``fields`` to whatever the day already holds. Both are
    stored as events and the materialized record is the fold of all of them.
    """
    day = parse_day(day)
    delta = CASDelta(
        mode=mode,
        fields=dict(fields),
        notes=notes or "",
        recorded_at=ctx.now().isoformat(timespec="seconds"),
    )
    delta.validate()

    day_str = format_day(day)
    events_key = ctx.key("cas", "events", day_str)
    log_key = ctx.key("cas", "log", day_str)

    def _write(pipe: redis.client.Pipeline) -> DailyLogEntry:
        events = _load_events(pipe.lrange(events_key, 0, -1))
        entry = materialize(day, events + [delta])
        pipe.multi()
        pipe.rpush(events_key, json.dumps(delta.__dict__))
        pipe.hset(log_key, mapping=entry.to_dict())
        pipe.zadd(ctx.key("cas", "dates"), {day_str: day.toordinal()})
        return entry

    entry = ctx.r.transaction(_write, events_key, value_from_callable=True)
    logger.debug(f"CAS log {day_str} ({mode}): {entry.totals()}")
    return entry


def rebuild_daily_log(ctx: TrackerContext, day) -> Optional[DailyLogEntry]:
    """Recompute a day's materialized totals from its event history."""
    day = parse_day(day)
    day_str = format_day(day)
    events = _load_events(ctx.r.lrange(ctx.key("cas", "events", day_str), 0, -1))
    if not events:
        return None
    entry = materialize(day, events)
    ctx.r.hset(ctx.key("cas", "log", day_str), mapping=entry.to_dict())
    return entry


def get_daily_log(ctx: TrackerContext, day) -> Optional[DailyLogEntry]:
    data = ctx.r.hgetall(ctx.key("cas", "log", format_day(parse_day(day))))
    if not data:
        return None
    return DailyLogEntry.from_dict(data)


def get_daily_logs(ctx: TrackerContext, start, end) -> list[DailyLogEntry]:
    """All CAS logs in ``[start, end]``, oldest first. Days without a log are skipped."""
    start, end = _check_range(start, end)
    pipe = ctx.r.pipeline(transaction=False)
    for day_str in _populated_days(ctx, ctx.key("cas", "dates"), start, end):
        pipe.hgetall(ctx.key("cas", "log", day_str))
    return [DailyLogEntry.from_dict(d) for d in pipe.execute() if d]


# ═══════════════════════════════════════════════════════════════════════════
# Append-only records
# ═══════════════════════════════════════════════════════════════════════════


def _append(ctx: TrackerContext, kind: str, record):
    record.validate()
    if not record.created_at:
        record.created_at = ctx.now().isoformat(timespec="seconds")
    record.id = ctx.r.incr(ctx.key(kind, "seq"))

    day_str = format_day(record.date)
    pipe = ctx.r.pipeline()
    pipe.hset(ctx.key(kind, record.id), mapping=record.to_dict())
    pipe.rpush(ctx.key(kind, "day", day_str), record.id)
    pipe.zadd(ctx.key(kind, "dates"), {day_str: record.date.toordinal()})
    pipe.execute()
    return record


def _records_in_range(ctx: TrackerContext, kind: str, start, end) -> list:
    start, end = _check_range(start, end)
    cls = _RECORD_TYPES[kind]

    pipe = ctx.r.pipeline(transaction=False)
    for day_str in _populated_days(ctx, ctx.key(kind, "dates"), start, end):
        pipe.lrange(ctx.key(kind, "day", day_str), 0, -1)
    ids = [rid for day_ids in pipe.execute() for rid in day_ids]
    if not ids:
        return []

    for rid in ids:
        pipe.hgetall(ctx.key(kind, rid))
    return [cls.from_dict(d) for d in pipe.execute() if d]


def add_practice_session(ctx: TrackerContext, session: PracticeSession) -> PracticeSession:
    return _append(ctx, ATT, session)


def add_micro_practice(ctx: TrackerContext, practice: MicroPractice) -> MicroPractice:
    return _append(ctx, DM, practice)


def add_postponement_event(ctx: TrackerContext, event: PostponementEvent) -> PostponementEvent:
    return _append(ctx, POSTPONEMENT, event)


def add_belief_rating(ctx: TrackerContext, rating: BeliefRating) -> BeliefRating:
    return _append(ctx, BELIEF, rating)


def get_practice_sessions(ctx: TrackerContext, start, end) -> list[PracticeSession]:
    return _records_in_range(ctx, ATT, start, end)


def get_micro_practices(ctx: TrackerContext, start, end) -> list[MicroPractice]:
    return _records_in_range(ctx, DM, start, end)


def get_postponement_events(ctx: TrackerContext, start, end) -> list[PostponementEvent]:
    return _records_in_range(ctx, POSTPONEMENT, start, end)


def get_belief_ratings(
    ctx: TrackerContext,
    start,
    end,
    belief_type: str | None = None,
) -> list[BeliefRating]:
    """Belief ratings in range, ordered by date then creation order."""
    ratings = _records_in_range(ctx, BELIEF, start, end)
    if belief_type:
        ratings = [b for b in ratings if b.belief_type == belief_type]
    return ratings


def todays_session(ctx: TrackerContext, day=None) -> Optional[PracticeSession]:
    """Most recently created ATT session for the day."""
    day = parse_day(day) if day else ctx.today()
    sessions = get_practice_sessions(ctx, day, day)
    return sessions[-1] if sessions else None


def latest_belief_before(ctx: TrackerContext, belief_type: str, day) -> Optional[int]:
    """Latest rating of ``belief_type`` strictly before ``day``, or None."""
    day = parse_day(day)
    dates_key = ctx.key(BELIEF, "dates")
    for prior in ctx.r.zrevrangebyscore(dates_key, day.toordinal() - 1, "-inf"):
        ratings = get_belief_ratings(ctx, prior, prior, belief_type)
        if ratings:
            return ratings[-1].rating
    return None


def first_record_date(ctx: TrackerContext, kind: str) -> Optional[date]:
    """Earliest day holding a record of ``kind`` (or ``cas``)."""
    key = ctx.key("cas", "dates") if kind == "cas" else ctx.key(kind, "dates")
    first = ctx.r.zrange(key, 0, 0)
    return parse_day(first[0]) if first else None


def records_through(ctx: TrackerContext, kind: str, end=None) -> list:
    """Every record of ``kind`` dated on or before ``end`` (default today).

    Records dated after ``end`` are left out; a history that only holds
    such records reads as empty.
    """
    end = parse_day(end) if end else ctx.today()
    first = first_record_date(ctx, kind)
    if first is None or first > end:
        return []
    return _records_in_range(ctx, kind, first, end)


def has_records_on(ctx: TrackerContext, kind: str, day) -> bool:
    day_str = format_day(parse_day(day))
    if kind == "cas":
        return bool(ctx.r.exists(ctx.key("cas", "log", day_str)))
    return ctx.r.llen(ctx.key(kind, "day", day_str)) > 0


def count_on(ctx: TrackerContext, kind: str, day) -> int:
    return ctx.r.llen(ctx.key(kind, "day", format_day(parse_day(day))))


__all__ = [
    "ATT",
    "BELIEF",
    "CAS_FIELDS",
    "DM",
    "POSTPONEMENT",
    "add_belief_rating",
    "add_micro_practice",
    "add_postponement_event",
    "add_practice_session",
    "count_on",
    "first_record_date",
    "get_belief_ratings",
    "get_daily_log",
    "get_daily_logs",
    "get_micro_practices",
    "get_postponement_events",
    "get_practice_sessions",
    "has_records_on",
    "latest_belief_before",
    "materialize",
    "rebuild_daily_log",
    "records_through",
    "todays_session",
    "upsert_daily_log",
]
