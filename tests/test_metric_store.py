"""Tests for the Redis-backed daily metric store."""

import json
from datetime import timedelta

import pytest

from mct_engine.errors import ValidationError
from mct_engine.models.records import BeliefRating, MergeMode, PracticeSession
from mct_engine.store import metric_store as store


# ═══════════════════════════════════════════════════════════════════════════
# CAS daily log: replace vs increment
# ═══════════════════════════════════════════════════════════════════════════


class TestDailyLogMerge:
    def test_increment_twice_adds(self, ctx, today):
        store.upsert_daily_log(ctx, today, {"worry_minutes": 10}, MergeMode.INCREMENT)
        entry = store.upsert_daily_log(ctx, today, {"worry_minutes": 10}, MergeMode.INCREMENT)
        assert entry.worry_minutes == 20
        assert store.get_daily_log(ctx, today).worry_minutes == 20

    def test_replace_twice_keeps_last(self, ctx, today):
        store.upsert_daily_log(ctx, today, {"worry_minutes": 10}, MergeMode.REPLACE)
        store.upsert_daily_log(ctx, today, {"worry_minutes": 15}, MergeMode.REPLACE)
        assert store.get_daily_log(ctx, today).worry_minutes == 15

    def test_replace_zeroes_unspecified_fields(self, ctx, today):
        store.upsert_daily_log(
            ctx, today, {"worry_minutes": 10, "rumination_minutes": 5}, MergeMode.INCREMENT,
        )
        entry = store.upsert_daily_log(ctx, today, {"worry_minutes": 3}, MergeMode.REPLACE)
        assert entry.worry_minutes == 3
        assert entry.rumination_minutes == 0

    def test_increment_after_replace_builds_on_it(self, ctx, today):
        store.upsert_daily_log(ctx, today, {"checking_count": 4}, MergeMode.REPLACE)
        entry = store.upsert_daily_log(ctx, today, {"checking_count": 1}, MergeMode.INCREMENT)
        assert entry.checking_count == 5

    def test_notes_join_on_increment_and_reset_on_replace(self, ctx, today):
        store.upsert_daily_log(ctx, today, {}, MergeMode.INCREMENT, notes="after ATT")
        entry = store.upsert_daily_log(ctx, today, {}, MergeMode.INCREMENT, notes="after DM")
        assert entry.notes == "after ATT; after DM"
        entry = store.upsert_daily_log(ctx, today, {"worry_minutes": 1}, MergeMode.REPLACE, notes="evening")
        assert entry.notes == "evening"

    def test_events_are_kept_and_fold_to_the_same_totals(self, ctx, today):
        store.upsert_daily_log(ctx, today, {"worry_minutes": 10}, MergeMode.REPLACE)
        store.upsert_daily_log(ctx, today, {"worry_minutes": 5}, MergeMode.INCREMENT)
        store.upsert_daily_log(ctx, today, {"monitoring_count": 2}, MergeMode.INCREMENT)

        events = ctx.r.lrange(ctx.key("cas", "events", today.isoformat()), 0, -1)
        assert [json.loads(e)["mode"] for e in events] == ["replace", "increment", "increment"]

        rebuilt = store.rebuild_daily_log(ctx, today)
        assert rebuilt.totals() == store.get_daily_log(ctx, today).totals()
        assert rebuilt.worry_minutes == 15
        assert rebuilt.monitoring_count == 2

    def test_days_are_independent(self, ctx, today):
        yesterday = today - timedelta(days=1)
        store.upsert_daily_log(ctx, yesterday, {"worry_minutes": 30})
        store.upsert_daily_log(ctx, today, {"worry_minutes": 5}, MergeMode.INCREMENT)
        logs = store.get_daily_logs(ctx, yesterday, today)
        assert [e.worry_minutes for e in logs] == [30, 5]

    def test_missing_day_reads_none(self, ctx, today):
        assert store.get_daily_log(ctx, today) is None
        assert store.rebuild_daily_log(ctx, today) is None


class TestDailyLogValidation:
    def test_negative_count_rejected_before_write(self, ctx, today):
        with pytest.raises(ValidationError) as exc:
            store.upsert_daily_log(ctx, today, {"worry_minutes": -1})
        assert exc.value.field == "worry_minutes"
        assert not ctx.r.exists(ctx.key("cas", "log", today.isoformat()))
        assert not ctx.r.exists(ctx.key("cas", "events", today.isoformat()))

    def test_unknown_field_rejected(self, ctx, today):
        with pytest.raises(ValidationError):
            store.upsert_daily_log(ctx, today, {"panic_minutes": 3})

    def test_unknown_mode_rejected(self, ctx, today):
        with pytest.raises(ValidationError):
            store.upsert_daily_log(ctx, today, {"worry_minutes": 3}, "merge")

    def test_malformed_date_rejected(self, ctx):
        with pytest.raises(ValidationError):
            store.upsert_daily_log(ctx, "2026-13-01", {"worry_minutes": 3})

    def test_non_integer_rejected(self, ctx, today):
        with pytest.raises(ValidationError):
            store.upsert_daily_log(ctx, today, {"worry_minutes": 2.5})

    def test_reversed_range_rejected(self, ctx, today):
        with pytest.raises(ValidationError):
            store.get_daily_logs(ctx, today, today - timedelta(days=1))

    @pytest.mark.parametrize("raw", ["2026-2-5", "2026-02-5", "20260215", "2026-02-15T00:00"])
    def test_unpadded_or_extended_date_rejected(self, ctx, raw):
        with pytest.raises(ValidationError):
            store.upsert_daily_log(ctx, raw, {"worry_minutes": 3})

    def test_wide_range_reads_only_logged_days(self, ctx, today, add_cas):
        add_cas(today - timedelta(days=40), worry_minutes=4)
        add_cas(today, worry_minutes=6)
        logs = store.get_daily_logs(ctx, "0001-01-01", "9999-12-31")
        assert [log.worry_minutes for log in logs] == [4, 6]


# ═══════════════════════════════════════════════════════════════════════════
# Append-only records
# ═══════════════════════════════════════════════════════════════════════════


class TestRecords:
    def test_sessions_keep_creation_order(self, ctx, today, add_session):
        add_session(today, duration=10, hour=8)
        add_session(today, duration=15, hour=20)
        sessions = store.get_practice_sessions(ctx, today, today)
        assert [s.duration_minutes for s in sessions] == [10, 15]
        assert sessions[0].id < sessions[1].id

    def test_todays_session_is_most_recent(self, ctx, today, add_session):
        add_session(today, duration=10)
        add_session(today, duration=15, completed=False)
        latest = store.todays_session(ctx)
        assert latest.duration_minutes == 15
        assert latest.completed is False

    def test_session_round_trips_optional_fields(self, ctx, today):
        store.add_practice_session(ctx, PracticeSession(
            date=today, duration_minutes=12, completed=True,
            attentional_control_rating=70, script_type="short",
        ))
        stored = store.get_practice_sessions(ctx, today, today)[0]
        assert stored.attentional_control_rating == 70
        assert stored.shift_ease_rating is None
        assert stored.script_type == "short"
        assert stored.created_at.startswith("2026-02-15T12:00")

    def test_rating_out_of_range_rejected(self, ctx, today):
        with pytest.raises(ValidationError):
            store.add_practice_session(ctx, PracticeSession(
                date=today, duration_minutes=12, attentional_control_rating=101,
            ))
        assert store.get_practice_sessions(ctx, today, today) == []

    def test_unknown_script_variant_rejected(self, ctx, today):
        with pytest.raises(ValidationError):
            store.add_practice_session(ctx, PracticeSession(
                date=today, duration_minutes=12, script_type="extended",
            ))

    def test_belief_filter_by_type(self, ctx, today, add_belief):
        add_belief(today, "danger", 60)
        add_belief(today, "positive", 40)
        ratings = store.get_belief_ratings(ctx, today, today, "danger")
        assert [b.rating for b in ratings] == [60]

    def test_belief_type_validated(self, ctx, today):
        with pytest.raises(ValidationError):
            store.add_belief_rating(ctx, BeliefRating(date=today, belief_type="hope", rating=50))

    def test_latest_belief_before(self, ctx, today, add_belief):
        add_belief(today - timedelta(days=10), "danger", 70)
        add_belief(today - timedelta(days=4), "danger", 55)
        add_belief(today - timedelta(days=4), "danger", 52)
        add_belief(today - timedelta(days=2), "positive", 30)
        assert store.latest_belief_before(ctx, "danger", today) == 52
        assert store.latest_belief_before(ctx, "danger", today - timedelta(days=4)) == 70
        assert store.latest_belief_before(ctx, "uncontrollability", today) is None

    def test_postponement_trigger_time_validated(self, ctx, today, add_postponement):
        with pytest.raises(ValidationError):
            add_postponement(today, trigger_time="7pm")

    def test_first_record_date_and_counts(self, ctx, today, add_dm):
        add_dm(today - timedelta(days=3), count=2)
        add_dm(today, count=1)
        assert store.first_record_date(ctx, store.DM) == today - timedelta(days=3)
        assert store.count_on(ctx, store.DM, today - timedelta(days=3)) == 2
        assert store.first_record_date(ctx, store.ATT) is None

    def test_wide_range_record_read(self, ctx, today, add_session):
        add_session(today - timedelta(days=400), duration=9)
        add_session(today, duration=12)
        sessions = store.get_practice_sessions(ctx, "0001-01-01", today)
        assert [s.duration_minutes for s in sessions] == [9, 12]

    def test_records_through_today_skips_future_days(self, ctx, today, add_session):
        add_session(today - timedelta(days=2), duration=10)
        add_session(today + timedelta(days=1), duration=20)
        assert [s.duration_minutes for s in store.records_through(ctx, store.ATT)] == [10]

    def test_records_through_with_only_future_records(self, ctx, today, add_dm):
        add_dm(today + timedelta(days=2))
        assert store.records_through(ctx, store.DM) == []
        assert store.records_through(ctx, store.BELIEF) == []
