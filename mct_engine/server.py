"""FastAPI server exposing the analytics and engagement engine as JSON.

Every route resolves a TrackerContext through ``_get_context`` (patched in
tests) and calls straight into the core. Core errors map to HTTP status
codes in one place, the exception handlers below.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from mct_engine.config.settings import ACTIVE_NUDGE_LIMIT, SCHEDULER_ENABLED
from mct_engine.context import TrackerContext, get_context
from mct_engine.errors import IneligibleTransitionError, NotFoundError, TrackerError, ValidationError
from mct_engine.models.engagement import Priority, get_settings, list_notifications, update_settings
from mct_engine.models.records import (
    BeliefRating,
    MergeMode,
    MicroPractice,
    PostponementEvent,
    PracticeSession,
)
from mct_engine.models.validation import format_day
from mct_engine.engine import activity
from mct_engine.engine.achievements import award_achievement, check_and_award, get_achievements
from mct_engine.engine.adaptive import generate_recommendations, get_difficulty_settings
from mct_engine.engine.jobs import run_due_jobs, scheduler_loop
from mct_engine.engine.metrics import (
    get_belief_trends,
    get_cas_trends,
    get_practice_stats,
    get_weekly_summary,
)
from mct_engine.engine.milestones import (
    check_milestone_completion,
    complete_milestone,
    get_milestones,
    mark_celebration_shown,
)
from mct_engine.engine.nudges import create_nudge, dismiss_nudge, generate_nudges, get_active_nudges
from mct_engine.engine.profiler import analyze_performance
from mct_engine.engine.program import (
    TransitionResult,
    check_week_unlock,
    complete_week,
    get_program_weeks,
    initialize_program,
    unlock_week,
)
from mct_engine.engine.streaks import get_streaks, update_streak
from mct_engine.store import metric_store as store

logger = logging.getLogger(__name__)

app = FastAPI(title="MCT Engine", description="Progress analytics and adaptive engagement")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_scheduler_task: Optional[asyncio.Task] = None


def _get_context() -> TrackerContext:
    return get_context()


def _range(start: Optional[str], end: Optional[str], ctx: TrackerContext, days: int = 30):
    """Default range: the trailing ``days`` days."""
    return start or ctx.days_ago(days - 1), end or ctx.today()


# ── Error mapping ────────────────────────────────────────────────────────

_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    IneligibleTransitionError: 409,
}


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    status = next((code for cls, code in _STATUS.items() if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status, content=exc.to_dict())


def _transition(result: TransitionResult):
    if result.ok:
        return result.to_dict()
    return JSONResponse(status_code=409, content=result.to_dict())


# ── Lifecycle ────────────────────────────────────────────────────────────

@app.on_event("startup")
async def start_scheduler():
    """Start the job scheduler loop when enabled."""
    global _scheduler_task
    if SCHEDULER_ENABLED:
        _scheduler_task = asyncio.create_task(scheduler_loop(_get_context))


@app.on_event("shutdown")
async def stop_scheduler():
    if _scheduler_task and not _scheduler_task.done():
        _scheduler_task.cancel()
        try:
            await _scheduler_task
        except asyncio.CancelledError:
            pass


@app.get("/api/health")
async def health():
    ctx = _get_context()
    try:
        ctx.r.ping()
        redis_ok = True
    except Exception:
        redis_ok = False
    return {
        "status": "ok",
        "redis": redis_ok,
        "profile": ctx.profile_id,
        "scheduler": bool(_scheduler_task and not _scheduler_task.done()),
    }


# ── Daily CAS log ────────────────────────────────────────────────────────

class DailyLogRequest(BaseModel):
    mode: str = MergeMode.REPLACE
    worry_minutes: Optional[int] = None
    rumination_minutes: Optional[int] = None
    monitoring_count: Optional[int] = None
    checking_count: Optional[int] = None
    reassurance_count: Optional[int] = None
    avoidance_count: Optional[int] = None
    notes: str = ""


@app.get("/api/cas-logs")
async def list_daily_logs(start: Optional[str] = None, end: Optional[str] = None):
    ctx = _get_context()
    start, end = _range(start, end, ctx)
    return {"logs": [e.to_dict() for e in store.get_daily_logs(ctx, start, end)]}


@app.put("/api/cas-logs/{day}")
async def upsert_daily_log(day: str, req: DailyLogRequest):
    """Replace (form submit) or increment (exercise contribution) a day's CAS log."""
    ctx = _get_context()
    fields = req.model_dump(exclude={"mode", "notes"}, exclude_none=True)
    entry = activity.upsert_daily_log(ctx, day, fields, req.mode, req.notes)
    return entry.to_dict()


# ── Practice records ─────────────────────────────────────────────────────

class PracticeSessionRequest(BaseModel):
    date: str
    duration_minutes: int
    completed: bool = False
    attentional_control_rating: Optional[int] = None
    shift_ease_rating: Optional[int] = None
    intrusion_count: Optional[int] = None
    script_type: Optional[str] = None
    notes: str = ""


class MicroPracticeRequest(BaseModel):
    date: str
    time_of_day: str = "other"
    duration_seconds: int = 60
    confidence_rating: Optional[int] = None
    metaphor_used: Optional[str] = None


class PostponementRequest(BaseModel):
    date: str
    trigger_time: str
    scheduled_time: Optional[str] = None
    urge_before: Optional[int] = None
    urge_after: Optional[int] = None
    processed: bool = False
    processing_duration_minutes: Optional[int] = None
    notes: str = ""


class BeliefRatingRequest(BaseModel):
    date: str
    belief_type: str
    rating: int
    belief_statement: str = ""
    context: str = ""


def _record_json(record) -> dict:
    d = asdict(record)
    d["date"] = format_day(record.date)
    return d


@app.get("/api/att-sessions")
async def list_practice_sessions(start: Optional[str] = None, end: Optional[str] = None):
    ctx = _get_context()
    start, end = _range(start, end, ctx)
    return {"sessions": [_record_json(s) for s in store.get_practice_sessions(ctx, start, end)]}


@app.post("/api/att-sessions", status_code=201)
async def record_practice_session(req: PracticeSessionRequest):
    ctx = _get_context()
    session = activity.record_practice_session(ctx, PracticeSession(**req.model_dump()))
    return _record_json(session)


@app.get("/api/dm-practices")
async def list_micro_practices(start: Optional[str] = None, end: Optional[str] = None):
    ctx = _get_context()
    start, end = _range(start, end, ctx)
    return {"practices": [_record_json(p) for p in store.get_micro_practices(ctx, start, end)]}


@app.post("/api/dm-practices", status_code=201)
async def record_micro_practice(req: MicroPracticeRequest):
    ctx = _get_context()
    practice = activity.record_micro_practice(ctx, MicroPractice(**req.model_dump()))
    return _record_json(practice)


@app.get("/api/postponements")
async def list_postponement_events(start: Optional[str] = None, end: Optional[str] = None):
    ctx = _get_context()
    start, end = _range(start, end, ctx)
    return {"events": [_record_json(e) for e in store.get_postponement_events(ctx, start, end)]}


@app.post("/api/postponements", status_code=201)
async def record_postponement_event(req: PostponementRequest):
    ctx = _get_context()
    event = activity.record_postponement_event(ctx, PostponementEvent(**req.model_dump()))
    return _record_json(event)


@app.get("/api/belief-ratings")
async def list_belief_ratings(
    type: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
):
    ctx = _get_context()
    start, end = _range(start, end, ctx)
    ratings = store.get_belief_ratings(ctx, start, end, type)
    return {"ratings": [_record_json(b) for b in ratings]}


@app.post("/api/belief-ratings", status_code=201)
async def record_belief_rating(req: BeliefRatingRequest):
    ctx = _get_context()
    rating = activity.record_belief_rating(ctx, BeliefRating(**req.model_dump()))
    return _record_json(rating)


# ── Streaks, achievements, milestones ────────────────────────────────────

@app.get("/api/streaks")
async def list_streaks():
    ctx = _get_context()
    return {t: s.to_dict() for t, s in get_streaks(ctx).items()}


@app.post("/api/streaks/{streak_type}/update")
async def refresh_streak(streak_type: str):
    ctx = _get_context()
    return update_streak(ctx, streak_type).to_dict()


@app.get("/api/achievements")
async def list_achievements():
    ctx = _get_context()
    return {"achievements": [a.to_dict() for a in get_achievements(ctx)]}


@app.post("/api/achievements/check")
async def check_achievements():
    ctx = _get_context()
    return {"awarded": check_and_award(ctx)}


@app.post("/api/achievements/{achievement_id}/award")
async def award(achievement_id: str):
    ctx = _get_context()
    achievement, newly = award_achievement(ctx, achievement_id)
    return {"achievement": achievement.to_dict(), "newly_awarded": newly}


@app.get("/api/milestones")
async def list_milestones():
    ctx = _get_context()
    return {"milestones": [m.to_json() for m in get_milestones(ctx)]}


@app.post("/api/milestones/check")
async def check_milestones():
    ctx = _get_context()
    milestone = check_milestone_completion(ctx)
    return {"completed": milestone.to_json() if milestone else None}


@app.post("/api/milestones/{milestone_id}/complete")
async def complete_milestone_route(milestone_id: int):
    ctx = _get_context()
    return complete_milestone(ctx, milestone_id).to_json()


@app.post("/api/milestones/{milestone_id}/celebration-shown")
async def celebration_shown(milestone_id: int):
    ctx = _get_context()
    return mark_celebration_shown(ctx, milestone_id).to_json()


# ── Nudges ───────────────────────────────────────────────────────────────

class NudgeRequest(BaseModel):
    type: str
    title: str
    message: str
    priority: str = Priority.MEDIUM


@app.get("/api/nudges")
async def active_nudges(limit: int = Query(ACTIVE_NUDGE_LIMIT, ge=1, le=50)):
    ctx = _get_context()
    return {"nudges": [n.to_json() for n in get_active_nudges(ctx, limit)]}


@app.post("/api/nudges", status_code=201)
async def create_nudge_route(req: NudgeRequest):
    ctx = _get_context()
    nudge = create_nudge(ctx, req.type, req.title, req.message, req.priority)
    return {"created": nudge is not None, "nudge": nudge.to_json() if nudge else None}


@app.post("/api/nudges/generate")
async def generate():
    ctx = _get_context()
    return {"created": [n.to_json() for n in generate_nudges(ctx)]}


@app.post("/api/nudges/{nudge_id}/dismiss")
async def dismiss(nudge_id: int):
    ctx = _get_context()
    return dismiss_nudge(ctx, nudge_id).to_json()


# ── Program ──────────────────────────────────────────────────────────────

@app.post("/api/program/initialize")
async def initialize():
    ctx = _get_context()
    return {"weeks": [w.to_json() for w in initialize_program(ctx)]}


@app.get("/api/program/weeks")
async def list_program_weeks():
    ctx = _get_context()
    return {
        "current_week": get_settings(ctx).current_week,
        "weeks": [w.to_json() for w in get_program_weeks(ctx)],
    }


@app.post("/api/program/weeks/{week}/unlock")
async def unlock(week: int):
    ctx = _get_context()
    return _transition(unlock_week(ctx, week))


@app.post("/api/program/weeks/{week}/complete")
async def complete(week: int):
    ctx = _get_context()
    return _transition(complete_week(ctx, week))


@app.post("/api/program/check-unlock")
async def check_unlock():
    ctx = _get_context()
    return check_week_unlock(ctx).to_dict()


# ── Computed reads ───────────────────────────────────────────────────────

@app.get("/api/metrics/cas-trends")
async def cas_trends(days: int = Query(30, ge=1, le=365)):
    return get_cas_trends(_get_context(), days)


@app.get("/api/metrics/practice-stats")
async def practice_stats(days: int = Query(30, ge=1, le=365)):
    return get_practice_stats(_get_context(), days)


@app.get("/api/metrics/belief-trends")
async def belief_trends(days: int = Query(30, ge=1, le=365)):
    return get_belief_trends(_get_context(), days)


@app.get("/api/metrics/weekly-summary")
async def weekly_summary():
    return get_weekly_summary(_get_context())


@app.get("/api/personalization/profile")
async def performance_profile():
    return analyze_performance(_get_context()).to_dict()


@app.get("/api/personalization/difficulty")
async def difficulty_settings():
    return get_difficulty_settings(_get_context()).to_dict()


@app.get("/api/personalization/recommendations")
async def recommendations():
    return {"recommendations": [r.to_dict() for r in generate_recommendations(_get_context())]}


# ── Settings, notifications, jobs ────────────────────────────────────────

class SettingsUpdateRequest(BaseModel):
    att_reminder_time: Optional[str] = None
    dm_reminder_times: Optional[list[str]] = None
    postponement_slot_start: Optional[str] = None
    postponement_slot_duration: Optional[int] = None
    notifications_enabled: Optional[bool] = None
    practice_time_preference: Optional[str] = None


@app.get("/api/settings")
async def read_settings():
    return get_settings(_get_context()).to_json()


@app.patch("/api/settings")
async def patch_settings(req: SettingsUpdateRequest):
    ctx = _get_context()
    return update_settings(ctx, **req.model_dump(exclude_none=True)).to_json()


@app.get("/api/notifications")
async def notifications(type: Optional[str] = None):
    ctx = _get_context()
    return {"notifications": [n.to_json() for n in list_notifications(ctx, type)]}


@app.post("/api/jobs/run")
async def run_jobs():
    """Run every due job now (same path as the scheduler tick)."""
    return {"results": run_due_jobs(_get_context())}
