"""Tests for the performance profiler and the adaptive settings engine."""

from datetime import timedelta

from mct_engine.engine.adaptive import (
    best_practice_slot,
    difficulty_for,
    first_match,
    frequent_trigger_slots,
    generate_recommendations,
    get_difficulty_settings,
    reminder_slot,
)
from mct_engine.engine.profiler import PerformanceProfile, analyze_performance, overall_engagement


def _profile(att=60, duration=10, dm=2.0, postponement=50, velocity=0.0, engagement=40):
    return PerformanceProfile(
        att_consistency_score=att,
        att_avg_duration=duration,
        dm_engagement_rate=dm,
        postponement_success_rate=postponement,
        belief_change_velocity=velocity,
        overall_engagement=engagement,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Performance Profiler
# ═══════════════════════════════════════════════════════════════════════════


class TestPerformanceProfiler:
    def test_empty_history_is_all_zero(self, ctx):
        profile = analyze_performance(ctx)
        assert profile.att_consistency_score == 0
        assert profile.dm_engagement_rate == 0
        assert profile.postponement_success_rate == 0
        assert profile.overall_engagement == 0

    def test_consistency_normalized_to_tracked_days(self, ctx, today, add_session):
        """Three completed days out of four tracked days reads 75, not 10."""
        for i in range(3):
            add_session(today - timedelta(days=i), duration=14)
        add_session(today - timedelta(days=5), completed=False, duration=3)
        profile = analyze_performance(ctx)
        assert profile.att_consistency_score == 75
        assert profile.att_avg_duration == 14

    def test_dm_rate_is_per_active_day(self, ctx, today, add_dm):
        add_dm(today, count=2)
        add_dm(today - timedelta(days=1), count=4)
        assert analyze_performance(ctx).dm_engagement_rate == 3.0

    def test_postponement_rate(self, ctx, today, add_postponement):
        for processed in (True, True, True, False):
            add_postponement(today, processed=processed)
        assert analyze_performance(ctx).postponement_success_rate == 75

    def test_overall_engagement_weights(self, ctx, today, add_session, add_dm, add_postponement):
        for i in range(3):
            add_session(today - timedelta(days=i))
        add_session(today - timedelta(days=5), completed=False)
        add_dm(today, count=2)
        add_dm(today - timedelta(days=1), count=4)
        add_postponement(today)
        add_postponement(today - timedelta(days=1))
        # 0.4 * 75 + 0.3 * min(100, 3 * 20) + 0.3 * 100
        assert analyze_performance(ctx).overall_engagement == 78

    def test_dm_component_is_capped(self):
        assert overall_engagement(0, 50, 0) == 30

    def test_belief_velocity(self, ctx, today, add_belief):
        add_belief(today - timedelta(days=10), "uncontrollability", 80)
        # uncontrollability moves 50 -> 80 between weeks, the others stay at 50
        assert analyze_performance(ctx).belief_change_velocity == 4.29


# ═══════════════════════════════════════════════════════════════════════════
# Difficulty settings
# ═══════════════════════════════════════════════════════════════════════════


class TestDifficulty:
    def test_first_match_default(self):
        rules = [(lambda x: x > 10, "big")]
        assert first_match(rules, 3, default="small") == "small"
        assert first_match(rules, 30, default="small") == "big"

    def test_defaults(self):
        settings = difficulty_for(_profile(), week=0)
        assert settings.att_duration_minutes == 12
        assert settings.experiment_complexity == "basic"
        assert settings.sar_plan_frequency == "medium"
        assert settings.challenge_level == 4

    def test_strong_profile_late_in_program(self):
        settings = difficulty_for(_profile(att=85, duration=12, postponement=75, engagement=75), week=4)
        assert settings.att_duration_minutes == 14
        assert settings.experiment_complexity == "advanced"
        assert settings.sar_plan_frequency == "high"
        assert settings.challenge_level == 10

    def test_duration_capped_at_fifteen(self):
        assert difficulty_for(_profile(att=90, duration=15), 0).att_duration_minutes == 15

    def test_struggling_profile(self):
        settings = difficulty_for(_profile(att=40, duration=10, postponement=30, engagement=52), week=2)
        assert settings.att_duration_minutes == 9
        assert settings.experiment_complexity == "intermediate"
        assert settings.sar_plan_frequency == "low"
        assert settings.challenge_level == 7

    def test_duration_floor(self):
        assert difficulty_for(_profile(att=10, duration=5), 0).att_duration_minutes == 8

    def test_complexity_gated_by_week(self):
        assert difficulty_for(_profile(engagement=95), week=1).experiment_complexity == "basic"

    def test_challenge_level_floor(self):
        assert difficulty_for(_profile(engagement=0), week=0).challenge_level == 1

    def test_from_stored_history(self, ctx, set_week):
        set_week(3)
        settings = get_difficulty_settings(ctx)
        assert settings.att_duration_minutes == 8
        assert settings.sar_plan_frequency == "low"
        assert settings.challenge_level == 3


# ═══════════════════════════════════════════════════════════════════════════
# Recommendations
# ═══════════════════════════════════════════════════════════════════════════


class TestRecommendations:
    def test_reminder_slot(self):
        assert reminder_slot("08:30") == "morning"
        assert reminder_slot("13:00") == "midday"
        assert reminder_slot("20:00") == "evening"
        assert reminder_slot("03:00") == "evening"

    def test_empty_history_only_suggests_schedule(self, ctx):
        recs = generate_recommendations(ctx)
        assert [r.title for r in recs] == ["Optimize Your ATT Schedule"]
        assert recs[0].priority == "high"
        assert recs[0].metadata["suggested_time"] is None

    def test_recurring_triggers(self, ctx, today, add_postponement):
        for i in range(3):
            add_postponement(today - timedelta(days=i), trigger_time="19:30")
        add_postponement(today, trigger_time="09:00")
        assert frequent_trigger_slots(ctx) == ["evening"]
        rec = next(r for r in generate_recommendations(ctx) if r.type == "sar_plan")
        assert rec.metadata["triggers"] == ["evening_trigger"]

    def test_two_triggers_are_not_a_pattern(self, ctx, today, add_postponement):
        add_postponement(today, trigger_time="19:30")
        add_postponement(today, trigger_time="20:30")
        assert frequent_trigger_slots(ctx) == []

    def test_best_slot_by_completion_rate(self, ctx, today, add_session):
        add_session(today, hour=8)
        add_session(today - timedelta(days=1), hour=8)
        add_session(today, hour=20, completed=False)
        add_session(today - timedelta(days=1), hour=20)
        assert best_practice_slot(ctx) == ("morning", 100)

    def test_reminder_adjustment_when_best_slot_differs(self, ctx, today, add_session):
        for i in range(5):
            add_session(today - timedelta(days=i), hour=8)
        recs = generate_recommendations(ctx)
        rec = next(r for r in recs if r.type == "reminder_adjustment")
        assert rec.metadata == {
            "optimal_time": "morning",
            "current_time": "evening",
            "success_rate_at_optimal": 100,
        }
        assert all(r.type != "practice_time" for r in recs)

    def test_plateaued_uncontrollability_needs_reliable_trend(self, ctx, today, add_belief):
        add_belief(today - timedelta(days=5), "uncontrollability", 75)
        assert all(r.type != "experiment" for r in generate_recommendations(ctx))

    def test_plateaued_uncontrollability_experiment(self, ctx, today, add_belief):
        add_belief(today - timedelta(days=20), "uncontrollability", 75)
        rec = next(r for r in generate_recommendations(ctx) if r.type == "experiment")
        assert rec.metadata["current_rating"] == 75

    def test_sorted_by_priority(self, ctx, today, add_session, add_postponement, add_belief):
        add_belief(today - timedelta(days=20), "uncontrollability", 75)
        for i in range(3):
            add_postponement(today - timedelta(days=i))
        add_session(today, hour=8)
        add_session(today - timedelta(days=1), hour=20, completed=False)
        add_session(today - timedelta(days=2), hour=20, completed=False)
        priorities = [r.priority for r in generate_recommendations(ctx)]
        assert priorities == sorted(priorities, key=["high", "medium", "low"].index)
        assert priorities[0] == "high"
        assert priorities[-1] == "low"
