"""Shared test fixtures for the MCT engine test suite."""

import threading
from datetime import date, datetime, time, timedelta

import fakeredis
import pytest

from mct_engine.context import TrackerContext
from mct_engine.models.engagement import Streak, set_current_week
from mct_engine.models.records import (
    BeliefRating,
    MicroPractice,
    PostponementEvent,
    PracticeSession,
)
from mct_engine.store import metric_store as store


# ── Redis ────────────────────────────────────────────────────────────────

@pytest.fixture
def r():
    """Fresh fakeredis instance per test (decode_responses=True like production)."""
    return fakeredis.FakeRedis(decode_responses=True)


# ── Time Freezing ───────────────────────────────────────────────────────

class Clock:
    """Settable wall clock handed to TrackerContext."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, days: int = 0, hours: int = 0) -> None:
        self.now += timedelta(days=days, hours=hours)


@pytest.fixture
def frozen_now():
    """Fixed local 'now': 2026-02-15 12:00 (a Sunday)."""
    return datetime(2026, 2, 15, 12, 0, 0)


@pytest.fixture
def clock(frozen_now):
    return Clock(frozen_now)


@pytest.fixture
def ctx(r, clock):
    """Context on fakeredis with a settable clock."""
    return TrackerContext(r=r, profile_id="test", clock=clock)


@pytest.fixture
def today(frozen_now) -> date:
    return frozen_now.date()


# ── Record Factories ────────────────────────────────────────────────────
# Factories write straight to the store (no streak side effects) so tests
# can lay down history for any day.


def _stamp(day: date, hour: int) -> str:
    return datetime.combine(day, time(hour, 0)).isoformat(timespec="seconds")


@pytest.fixture
def add_session(ctx):
    """Usage: add_session(day, completed=True, duration=12, hour=20)."""
    def _factory(day, completed=True, duration=12, hour=20, **overrides):
        session = PracticeSession(
            date=day,
            duration_minutes=duration,
            completed=completed,
            created_at=_stamp(day, hour),
            **overrides,
        )
        return store.add_practice_session(ctx, session)
    return _factory


@pytest.fixture
def add_dm(ctx):
    def _factory(day, count=1, metaphor=None, slot="morning"):
        return [
            store.add_micro_practice(ctx, MicroPractice(
                date=day, time_of_day=slot, metaphor_used=metaphor, created_at=_stamp(day, 9),
            ))
            for _ in range(count)
        ]
    return _factory


@pytest.fixture
def add_postponement(ctx):
    def _factory(day, processed=True, trigger_time="19:30"):
        return store.add_postponement_event(ctx, PostponementEvent(
            date=day, trigger_time=trigger_time, processed=processed,
        ))
    return _factory


@pytest.fixture
def add_belief(ctx):
    def _factory(day, belief_type, rating):
        return store.add_belief_rating(ctx, BeliefRating(
            date=day, belief_type=belief_type, rating=rating,
        ))
    return _factory


@pytest.fixture
def add_cas(ctx):
    def _factory(day, **fields):
        return store.upsert_daily_log(ctx, day, fields or {"worry_minutes": 10})
    return _factory


@pytest.fixture
def put_streak(ctx):
    """Usage: put_streak("att", current=5, longest=5, last=day)."""
    def _factory(streak_type, current=0, longest=0, last=None):
        streak = Streak(
            streak_type=streak_type,
            current_streak=current,
            longest_streak=max(longest, current),
            last_activity_date=last.isoformat() if last else "",
        )
        ctx.r.hset(Streak.redis_key(ctx, streak_type), mapping=streak.to_dict())
        return streak
    return _factory


@pytest.fixture
def set_week(ctx):
    """Position the program pointer without going through an unlock."""
    def _factory(week):
        pipe = ctx.r.pipeline()
        set_current_week(pipe, ctx, week)
        pipe.execute()
    return _factory


# ── Concurrency ─────────────────────────────────────────────────────────

@pytest.fixture
def race():
    """Usage: results = race(fn, threads=16). Releases every call at once."""
    def _run(fn, threads=16):
        barrier = threading.Barrier(threads)
        results, errors = [], []

        def _worker():
            barrier.wait()
            try:
                results.append(fn())
            except Exception as exc:
                errors.append(exc)

        workers = [threading.Thread(target=_worker) for _ in range(threads)]
        for t in workers:
            t.start()
        for t in workers:
            t.join()
        assert not errors, errors
        return results
    return _run
