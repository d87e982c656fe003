"""Engagement state: streaks, achievements, milestones, nudges, program
weeks, the notification outbox and the per-profile settings row.

Each row is a dataclass persisted as a Redis hash under the profile
namespace. Read helpers return None (or defaults) when a row is missing;
mutations that must be serialized live in the engine modules and go through
``ctx.r.transaction``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

from mct_engine.context import TrackerContext
from mct_engine.errors import ValidationError
from mct_engine.models.validation import (
    require_choice,
    require_clock_time,
    require_count,
)

STREAK_TYPES = ("att", "dm", "logging", "overall")


class Priority:
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    ALL = (HIGH, MEDIUM, LOW)
    RANK = {HIGH: 0, MEDIUM: 1, LOW: 2}


class NudgeType:
    REMINDER = "reminder"
    INSIGHT = "insight"
    CELEBRATION = "celebration"
    RECOVERY = "recovery"

    ALL = (REMINDER, INSIGHT, CELEBRATION, RECOVERY)


def _flag(value) -> bool:
    if isinstance(value, str):
        return value in ("1", "true", "True")
    return bool(value)


# ═══════════════════════════════════════════════════════════════════════════
# Streak
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class Streak:
    streak_type: str
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: str = ""    # YYYY-MM-DD, "" until first activity

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Streak:
        return cls(
            streak_type=data["streak_type"],
            current_streak=int(data.get("current_streak") or 0),
            longest_streak=int(data.get("longest_streak") or 0),
            last_activity_date=data.get("last_activity_date", ""),
        )

    @staticmethod
    def redis_key(ctx: TrackerContext, streak_type: str) -> str:
        return ctx.key("streak", streak_type)

    @classmethod
    def from_redis(cls, ctx: TrackerContext, streak_type: str) -> Streak:
        """Load a streak row; a missing row reads as an empty streak."""
        data = ctx.r.hgetall(cls.redis_key(ctx, streak_type))
        if not data:
            return cls(streak_type=streak_type)
        return cls.from_dict(data)


# ═══════════════════════════════════════════════════════════════════════════
# Achievement
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class Achievement:
    achievement_id: str
    name: str
    description: str
    category: str                   # practice | streak | mastery | milestone
    criteria_type: str              # count | streak | percentage | special
    criteria_value: int
    total_required: int
    progress: int = 0
    earned_date: Optional[str] = None

    @property
    def earned(self) -> bool:
        return bool(self.earned_date)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["earned"] = self.earned
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Milestone
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class Milestone:
    week_number: int
    milestone_type: str             # week_completion | mid_program | graduation
    title: str
    completed: bool = False
    completed_date: str = ""
    celebration_shown: bool = False

    @property
    def milestone_id(self) -> int:
        return self.week_number

    def to_dict(self) -> dict:
        d = asdict(self)
        d["completed"] = int(self.completed)
        d["celebration_shown"] = int(self.celebration_shown)
        return d

    def to_json(self) -> dict:
        d = asdict(self)
        d["id"] = self.milestone_id
        return d

    @classmethod
    def from_dict(cls, data: dict) -> Milestone:
        return cls(
            week_number=int(data["week_number"]),
            milestone_type=data["milestone_type"],
            title=data.get("title", ""),
            completed=_flag(data.get("completed")),
            completed_date=data.get("completed_date", ""),
            celebration_shown=_flag(data.get("celebration_shown")),
        )

    @staticmethod
    def redis_key(ctx: TrackerContext, week_number: int) -> str:
        return ctx.key("milestone", week_number)

    @classmethod
    def from_redis(cls, ctx: TrackerContext, week_number: int) -> Optional[Milestone]:
        data = ctx.r.hgetall(cls.redis_key(ctx, week_number))
        return cls.from_dict(data) if data else None


# ═══════════════════════════════════════════════════════════════════════════
# Nudge
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class Nudge:
    nudge_type: str
    title: str
    message: str
    priority: str = Priority.MEDIUM
    dismissed: bool = False
    nudge_id: int = 0
    created_at: str = ""            # ISO 8601, local time

    def validate(self) -> None:
        require_choice(self.nudge_type, NudgeType.ALL, "type")
        require_choice(self.priority, Priority.ALL, "priority")
        if not self.title:
            raise ValidationError("title", "must not be empty")

    def to_dict(self) -> dict:
        d = asdict(self)
        d["dismissed"] = int(self.dismissed)
        return d

    def to_json(self) -> dict:
        return {
            "id": self.nudge_id,
            "type": self.nudge_type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "dismissed": self.dismissed,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Nudge:
        return cls(
            nudge_type=data["nudge_type"],
            title=data["title"],
            message=data.get("message", ""),
            priority=data.get("priority", Priority.MEDIUM),
            dismissed=_flag(data.get("dismissed")),
            nudge_id=int(data.get("nudge_id") or 0),
            created_at=data.get("created_at", ""),
        )

    @staticmethod
    def redis_key(ctx: TrackerContext, nudge_id: int) -> str:
        return ctx.key("nudge", nudge_id)

    @classmethod
    def from_redis(cls, ctx: TrackerContext, nudge_id: int) -> Optional[Nudge]:
        data = ctx.r.hgetall(cls.redis_key(ctx, nudge_id))
        return cls.from_dict(data) if data else None


# ═══════════════════════════════════════════════════════════════════════════
# Program week
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class ProgramWeek:
    week_number: int
    title: str = ""
    unlocked: bool = False
    completed: bool = False
    unlocked_date: str = ""         # YYYY-MM-DD
    completed_date: str = ""

    def to_dict(self) -> dict:
        d = asdict(self)
        d["unlocked"] = int(self.unlocked)
        d["completed"] = int(self.completed)
        return d

    def to_json(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ProgramWeek:
        return cls(
            week_number=int(data["week_number"]),
            title=data.get("title", ""),
            unlocked=_flag(data.get("unlocked")),
            completed=_flag(data.get("completed")),
            unlocked_date=data.get("unlocked_date", ""),
            completed_date=data.get("completed_date", ""),
        )

    @staticmethod
    def redis_key(ctx: TrackerContext, week_number: int) -> str:
        return ctx.key("week", week_number)

    @classmethod
    def from_redis(cls, ctx: TrackerContext, week_number: int) -> Optional[ProgramWeek]:
        data = ctx.r.hgetall(cls.redis_key(ctx, week_number))
        return cls.from_dict(data) if data else None


# ═══════════════════════════════════════════════════════════════════════════
# Notification outbox
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class Notification:
    """A "what and when" record for the external delivery collaborator."""
    notification_type: str          # att_reminder | dm_reminder | postponement_reminder | weekly_unlock
    scheduled_time: str             # ISO 8601
    title: str
    message: str
    payload: dict = field(default_factory=dict)

    @property
    def dedupe_key(self) -> str:
        return f"{self.notification_type}|{self.scheduled_time}"

    def to_json(self) -> dict:
        return asdict(self)


def _outbox_keys(ctx: TrackerContext) -> tuple[str, str]:
    return ctx.key("notifications", "index"), ctx.key("notifications", "data")


def enqueue_notification(ctx: TrackerContext, notification: Notification) -> bool:
    """Add to the outbox. Returns False if the same (type, time) is already queued."""
    index_key, data_key = _outbox_keys(ctx)
    if not ctx.r.hsetnx(data_key, notification.dedupe_key, json.dumps(notification.to_json())):
        return False
    score = _timestamp_score(notification.scheduled_time)
    ctx.r.zadd(index_key, {notification.dedupe_key: score})
    return True


def list_notifications(ctx: TrackerContext, notification_type: str | None = None) -> list[Notification]:
    """Queued notifications ordered by scheduled time."""
    index_key, data_key = _outbox_keys(ctx)
    members = ctx.r.zrange(index_key, 0, -1)
    if not members:
        return []
    raw = ctx.r.hmget(data_key, members)
    out = [Notification(**json.loads(item)) for item in raw if item]
    if notification_type:
        out = [n for n in out if n.notification_type == notification_type]
    return out


def purge_notifications(ctx: TrackerContext, before_iso: str) -> int:
    """Drop notifications scheduled before ``before_iso``. Returns count removed."""
    index_key, data_key = _outbox_keys(ctx)
    stale = ctx.r.zrangebyscore(index_key, "-inf", f"({_timestamp_score(before_iso)}")
    if not stale:
        return 0
    pipe = ctx.r.pipeline()
    pipe.zrem(index_key, *stale)
    pipe.hdel(data_key, *stale)
    pipe.execute()
    return len(stale)


def _timestamp_score(iso: str) -> float:
    return datetime.fromisoformat(iso).timestamp()


# ═══════════════════════════════════════════════════════════════════════════
# User settings
# ═══════════════════════════════════════════════════════════════════════════

PRACTICE_TIME_PREFERENCES = ("morning", "midday", "evening", "flexible")


@dataclass
class UserSettings:
    current_week: int = 0
    att_reminder_time: str = "20:00"
    dm_reminder_times: list = field(default_factory=lambda: ["08:00", "13:00", "18:00"])
    postponement_slot_start: str = "18:30"
    postponement_slot_duration: int = 15
    notifications_enabled: bool = True
    practice_time_preference: str = "evening"

    def validate(self) -> None:
        require_count(self.current_week, "current_week")
        require_clock_time(self.att_reminder_time, "att_reminder_time")
        if not isinstance(self.dm_reminder_times, list):
            raise ValidationError("dm_reminder_times", "expected a list of HH:MM times")
        for t in self.dm_reminder_times:
            require_clock_time(t, "dm_reminder_times")
        require_clock_time(self.postponement_slot_start, "postponement_slot_start")
        require_count(self.postponement_slot_duration, "postponement_slot_duration")
        if not isinstance(self.notifications_enabled, bool):
            raise ValidationError("notifications_enabled", "expected a boolean")
        require_choice(self.practice_time_preference, PRACTICE_TIME_PREFERENCES, "practice_time_preference")

    def to_dict(self) -> dict:
        d = asdict(self)
        d["dm_reminder_times"] = json.dumps(self.dm_reminder_times)
        d["notifications_enabled"] = int(self.notifications_enabled)
        return d

    def to_json(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> UserSettings:
        defaults = cls()
        return cls(
            current_week=int(data.get("current_week") or 0),
            att_reminder_time=data.get("att_reminder_time") or defaults.att_reminder_time,
            dm_reminder_times=(
                json.loads(data["dm_reminder_times"])
                if data.get("dm_reminder_times") else defaults.dm_reminder_times
            ),
            postponement_slot_start=data.get("postponement_slot_start") or defaults.postponement_slot_start,
            postponement_slot_duration=int(
                data.get("postponement_slot_duration") or defaults.postponement_slot_duration
            ),
            notifications_enabled=_flag(data.get("notifications_enabled", "1")),
            practice_time_preference=data.get("practice_time_preference") or defaults.practice_time_preference,
        )


def get_settings(ctx: TrackerContext) -> UserSettings:
    """Profile settings; a missing row reads as defaults."""
    return UserSettings.from_dict(ctx.r.hgetall(ctx.key("settings")))


def update_settings(ctx: TrackerContext, **fields) -> UserSettings:
    """Validate and persist a partial settings update.

    ``current_week`` is not writable here; only program unlocks move it.
    """
    settings = get_settings(ctx)
    for name, value in fields.items():
        if name not in UserSettings.__dataclass_fields__:
            raise ValidationError(name, "unknown setting")
        if name == "current_week":
            raise ValidationError(name, "advanced only by program unlocks")
        setattr(settings, name, value)
    settings.validate()
    ctx.r.hset(ctx.key("settings"), mapping=settings.to_dict())
    return settings


def set_current_week(pipe, ctx: TrackerContext, week: int) -> None:
    """Queue a current_week write on an open MULTI pipeline."""
    pipe.hset(ctx.key("settings"), "current_week", week)
