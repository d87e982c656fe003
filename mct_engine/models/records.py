"""Daily metric records: CAS logs, practice sessions, micro-practices,
postponement events and belief ratings.

Records are plain dataclasses. Redis hashes hold strings, so each record
knows how to flatten itself (``to_dict``) and rebuild from a hash
(``from_dict``); ``validate`` is called by the store before anything is
written.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Optional

from mct_engine.models.validation import (
    format_day,
    optional_rating,
    parse_day,
    parse_timestamp,
    require_choice,
    require_clock_time,
    require_count,
    require_rating,
)

CAS_FIELDS = (
    "worry_minutes",
    "rumination_minutes",
    "monitoring_count",
    "checking_count",
    "reassurance_count",
    "avoidance_count",
)

TIME_SLOTS = ("morning", "midday", "evening", "other")
METAPHORS = ("radio", "screen", "weather")
SCRIPT_VARIANTS = ("standard", "short", "emergency")
BELIEF_TYPES = ("uncontrollability", "danger", "positive")
ALL_BELIEF_TYPES = BELIEF_TYPES + ("custom",)


class MergeMode:
    REPLACE = "replace"      # manual form submit: the day's full totals
    INCREMENT = "increment"  # exercise completion: add to the day's totals

    ALL = (REPLACE, INCREMENT)


def time_slot(ts: datetime) -> str:
    """Bucket a timestamp into morning / midday / evening / other."""
    if 6 <= ts.hour < 12:
        return "morning"
    if 12 <= ts.hour < 18:
        return "midday"
    if 18 <= ts.hour < 24:
        return "evening"
    return "other"


def _flag(value) -> bool:
    if isinstance(value, str):
        return value in ("1", "true", "True")
    return bool(value)


def _opt_int(value) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(value)


@dataclass
class DailyLogEntry:
    date: date
    worry_minutes: int = 0
    rumination_minutes: int = 0
    monitoring_count: int = 0
    checking_count: int = 0
    reassurance_count: int = 0
    avoidance_count: int = 0
    notes: str = ""
    updated_at: str = ""

    def totals(self) -> dict[str, int]:
        return {f: getattr(self, f) for f in CAS_FIELDS}

    def to_dict(self) -> dict:
        d = asdict(self)
        d["date"] = format_day(self.date)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> DailyLogEntry:
        data = dict(data)
        data["date"] = parse_day(data["date"])
        for f in CAS_FIELDS:
            data[f] = int(data.get(f) or 0)
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class CASDelta:
    """One immutable write against a day's CAS log."""
    mode: str
    fields: dict[str, int] = field(default_factory=dict)
    notes: str = ""
    recorded_at: str = ""

    def validate(self) -> None:
        require_choice(self.mode, MergeMode.ALL, "mode")
        for name, value in self.fields.items():
            require_choice(name, CAS_FIELDS, "fields")
            require_count(value, name)

    def apply(self, entry: DailyLogEntry) -> DailyLogEntry:
        """Fold this delta into ``entry`` (in place) and return it."""
        if self.mode == MergeMode.REPLACE:
            for f in CAS_FIELDS:
                setattr(entry, f, self.fields.get(f, 0))
            entry.notes = self.notes or ""
        else:
            for f, value in self.fields.items():
                setattr(entry, f, getattr(entry, f) + value)
            if self.notes:
                entry.notes = f"{entry.notes}; {self.notes}" if entry.notes else self.notes
        entry.updated_at = self.recorded_at
        return entry


@dataclass
class PracticeSession:
    """Attention-training (ATT) session."""
    date: date
    duration_minutes: int
    completed: bool = False
    attentional_control_rating: Optional[int] = None
    shift_ease_rating: Optional[int] = None
    intrusion_count: Optional[int] = None
    script_type: Optional[str] = None
    notes: str = ""
    id: int = 0
    created_at: str = ""

    def validate(self) -> None:
        self.date = parse_day(self.date)
        require_count(self.duration_minutes, "duration_minutes")
        optional_rating(self.attentional_control_rating, "attentional_control_rating")
        optional_rating(self.shift_ease_rating, "shift_ease_rating")
        if self.intrusion_count is not None:
            require_count(self.intrusion_count, "intrusion_count")
        if self.script_type is not None:
            require_choice(self.script_type, SCRIPT_VARIANTS, "script_type")
        if self.created_at:
            parse_timestamp(self.created_at, "created_at")

    @property
    def slot(self) -> str:
        return time_slot(datetime.fromisoformat(self.created_at))

    def to_dict(self) -> dict:
        d = asdict(self)
        d["date"] = format_day(self.date)
        d["completed"] = int(self.completed)
        # Redis rejects None values
        return {k: ("" if v is None else v) for k, v in d.items()}

    @classmethod
    def from_dict(cls, data: dict) -> PracticeSession:
        return cls(
            date=parse_day(data["date"]),
            duration_minutes=int(data.get("duration_minutes") or 0),
            completed=_flag(data.get("completed")),
            attentional_control_rating=_opt_int(data.get("attentional_control_rating")),
            shift_ease_rating=_opt_int(data.get("shift_ease_rating")),
            intrusion_count=_opt_int(data.get("intrusion_count")),
            script_type=data.get("script_type") or None,
            notes=data.get("notes", ""),
            id=int(data.get("id") or 0),
            created_at=data.get("created_at", ""),
        )


@dataclass
class MicroPractice:
    """Detached-mindfulness (DM) check-in."""
    date: date
    time_of_day: str = "other"
    duration_seconds: int = 60
    confidence_rating: Optional[int] = None
    metaphor_used: Optional[str] = None
    id: int = 0
    created_at: str = ""

    def validate(self) -> None:
        self.date = parse_day(self.date)
        require_choice(self.time_of_day, TIME_SLOTS, "time_of_day")
        require_count(self.duration_seconds, "duration_seconds")
        optional_rating(self.confidence_rating, "confidence_rating")
        if self.metaphor_used is not None:
            require_choice(self.metaphor_used, METAPHORS, "metaphor_used")

    def to_dict(self) -> dict:
        d = asdict(self)
        d["date"] = format_day(self.date)
        return {k: ("" if v is None else v) for k, v in d.items()}

    @classmethod
    def from_dict(cls, data: dict) -> MicroPractice:
        return cls(
            date=parse_day(data["date"]),
            time_of_day=data.get("time_of_day") or "other",
            duration_seconds=int(data.get("duration_seconds") or 0),
            confidence_rating=_opt_int(data.get("confidence_rating")),
            metaphor_used=data.get("metaphor_used") or None,
            id=int(data.get("id") or 0),
            created_at=data.get("created_at", ""),
        )


@dataclass
class PostponementEvent:
    date: date
    trigger_time: str                    # HH:MM
    scheduled_time: Optional[str] = None  # HH:MM
    urge_before: Optional[int] = None
    urge_after: Optional[int] = None
    processed: bool = False
    processing_duration_minutes: Optional[int] = None
    notes: str = ""
    id: int = 0
    created_at: str = ""

    def validate(self) -> None:
        self.date = parse_day(self.date)
        require_clock_time(self.trigger_time, "trigger_time")
        if self.scheduled_time is not None:
            require_clock_time(self.scheduled_time, "scheduled_time")
        optional_rating(self.urge_before, "urge_before")
        optional_rating(self.urge_after, "urge_after")
        if self.processing_duration_minutes is not None:
            require_count(self.processing_duration_minutes, "processing_duration_minutes")

    @property
    def trigger_slot(self) -> str:
        hour = int(self.trigger_time.split(":")[0])
        return time_slot(datetime(2000, 1, 1, hour))

    def to_dict(self) -> dict:
        d = asdict(self)
        d["date"] = format_day(self.date)
        d["processed"] = int(self.processed)
        return {k: ("" if v is None else v) for k, v in d.items()}

    @classmethod
    def from_dict(cls, data: dict) -> PostponementEvent:
        return cls(
            date=parse_day(data["date"]),
            trigger_time=data["trigger_time"],
            scheduled_time=data.get("scheduled_time") or None,
            urge_before=_opt_int(data.get("urge_before")),
            urge_after=_opt_int(data.get("urge_after")),
            processed=_flag(data.get("processed")),
            processing_duration_minutes=_opt_int(data.get("processing_duration_minutes")),
            notes=data.get("notes", ""),
            id=int(data.get("id") or 0),
            created_at=data.get("created_at", ""),
        )


@dataclass
class BeliefRating:
    date: date
    belief_type: str
    rating: int
    belief_statement: str = ""
    context: str = ""
    id: int = 0
    created_at: str = ""

    def validate(self) -> None:
        self.date = parse_day(self.date)
        require_choice(self.belief_type, ALL_BELIEF_TYPES, "belief_type")
        require_rating(self.rating, "rating")

    def to_dict(self) -> dict:
        d = asdict(self)
        d["date"] = format_day(self.date)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> BeliefRating:
        return cls(
            date=parse_day(data["date"]),
            belief_type=data["belief_type"],
            rating=int(data["rating"]),
            belief_statement=data.get("belief_statement", ""),
            context=data.get("context", ""),
            id=int(data.get("id") or 0),
            created_at=data.get("created_at", ""),
        )
