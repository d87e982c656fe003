"""Tests for streak tracking through the activity write path."""

from datetime import datetime, time, timedelta

import pytest

from mct_engine.engine import activity
from mct_engine.engine.streaks import advance, expire_streaks, get_streaks, update_streak
from mct_engine.errors import ValidationError
from mct_engine.models.engagement import Streak
from mct_engine.models.records import MicroPractice, PracticeSession


def _complete_att(ctx):
    return activity.record_practice_session(ctx, PracticeSession(
        date=ctx.today(), duration_minutes=12, completed=True,
    ))


def _dm(ctx, n=1):
    for _ in range(n):
        activity.record_micro_practice(ctx, MicroPractice(date=ctx.today(), time_of_day="midday"))


# ═══════════════════════════════════════════════════════════════════════════
# Pure transition
# ═══════════════════════════════════════════════════════════════════════════


class TestAdvance:
    def test_first_activity_starts_at_one(self, today):
        s = advance(Streak(streak_type="att"), today)
        assert (s.current_streak, s.longest_streak) == (1, 1)
        assert s.last_activity_date == today.isoformat()

    def test_consecutive_day_extends(self, today):
        prev = Streak("att", 4, 6, (today - timedelta(days=1)).isoformat())
        s = advance(prev, today)
        assert (s.current_streak, s.longest_streak) == (5, 6)

    def test_same_day_is_unchanged(self, today):
        prev = Streak("att", 4, 6, today.isoformat())
        assert advance(prev, today) == prev

    def test_gap_resets_but_keeps_longest(self, today):
        prev = Streak("att", 9, 9, (today - timedelta(days=2)).isoformat())
        s = advance(prev, today)
        assert (s.current_streak, s.longest_streak) == (1, 9)


# ═══════════════════════════════════════════════════════════════════════════
# Activity-driven updates
# ═══════════════════════════════════════════════════════════════════════════


class TestStreakUpdates:
    def test_three_consecutive_days(self, ctx, clock, today):
        for offset in (2, 1, 0):
            clock.set(datetime.combine(today - timedelta(days=offset), time(20, 0)))
            _complete_att(ctx)
        att = Streak.from_redis(ctx, "att")
        assert (att.current_streak, att.longest_streak) == (3, 3)

    def test_same_day_is_idempotent(self, ctx):
        _complete_att(ctx)
        _complete_att(ctx)
        assert update_streak(ctx, "att").current_streak == 1
        assert Streak.from_redis(ctx, "att").current_streak == 1

    def test_concurrent_same_day_updates_count_once(self, ctx, today, add_session, put_streak, race):
        put_streak("att", current=4, longest=4, last=today - timedelta(days=1))
        add_session(today)
        results = race(lambda: update_streak(ctx, "att"))
        assert {s.current_streak for s in results} == {5}
        att = Streak.from_redis(ctx, "att")
        assert (att.current_streak, att.longest_streak) == (5, 5)
        assert att.last_activity_date == today.isoformat()

    def test_gap_after_long_streak(self, ctx, today, put_streak):
        """Streak of 5, then two missed days, then one completed session."""
        put_streak("att", current=5, longest=5, last=today - timedelta(days=3))
        _complete_att(ctx)
        att = Streak.from_redis(ctx, "att")
        assert (att.current_streak, att.longest_streak) == (1, 5)

    def test_incomplete_session_does_not_qualify(self, ctx):
        activity.record_practice_session(ctx, PracticeSession(
            date=ctx.today(), duration_minutes=4, completed=False,
        ))
        assert Streak.from_redis(ctx, "att").current_streak == 0

    def test_backfilled_record_leaves_streak_alone(self, ctx, today):
        activity.record_practice_session(ctx, PracticeSession(
            date=today - timedelta(days=1), duration_minutes=12, completed=True,
        ))
        assert Streak.from_redis(ctx, "att").last_activity_date == ""

    def test_dm_needs_three_practices(self, ctx):
        _dm(ctx, 2)
        assert Streak.from_redis(ctx, "dm").current_streak == 0
        _dm(ctx, 1)
        assert Streak.from_redis(ctx, "dm").current_streak == 1

    def test_logging_streak_from_cas_write(self, ctx, today):
        activity.upsert_daily_log(ctx, today, {"worry_minutes": 5})
        assert Streak.from_redis(ctx, "logging").current_streak == 1

    def test_overall_requires_all_three(self, ctx, today):
        _complete_att(ctx)
        _dm(ctx, 1)
        assert Streak.from_redis(ctx, "overall").current_streak == 0
        activity.log_cas_from_exercise(ctx, {"worry_minutes": 3})
        assert Streak.from_redis(ctx, "overall").current_streak == 1

    def test_non_qualifying_update_returns_stored_row(self, ctx, today, put_streak):
        put_streak("att", current=4, longest=6, last=today - timedelta(days=1))
        s = update_streak(ctx, "att")
        assert (s.current_streak, s.longest_streak) == (4, 6)

    def test_unknown_type_rejected(self, ctx):
        with pytest.raises(ValidationError):
            update_streak(ctx, "sleep")

    def test_missing_rows_read_as_empty(self, ctx):
        streaks = get_streaks(ctx)
        assert set(streaks) == {"att", "dm", "logging", "overall"}
        assert all(s.current_streak == 0 for s in streaks.values())


class TestExpireStreaks:
    def test_lapsed_streak_resets_current_only(self, ctx, today, put_streak):
        put_streak("att", current=4, longest=8, last=today - timedelta(days=2))
        put_streak("dm", current=3, longest=3, last=today - timedelta(days=1))

        assert expire_streaks(ctx) == ["att"]
        att = Streak.from_redis(ctx, "att")
        assert (att.current_streak, att.longest_streak) == (0, 8)
        assert att.last_activity_date == (today - timedelta(days=2)).isoformat()
        assert Streak.from_redis(ctx, "dm").current_streak == 3

    def test_expire_is_idempotent(self, ctx, today, put_streak):
        put_streak("logging", current=2, longest=2, last=today - timedelta(days=5))
        assert expire_streaks(ctx) == ["logging"]
        assert expire_streaks(ctx) == []
