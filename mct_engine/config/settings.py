"""Application-wide configuration loaded from environment variables."""

import os

from dotenv import load_dotenv

load_dotenv()

# Redis
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
KEY_PREFIX: str = os.getenv("KEY_PREFIX", "mct")

# Single local user; override to keep several profiles in one Redis
PROFILE_ID: str = os.getenv("PROFILE_ID", "default")

# ── Program ──────────────────────────────────────────────────────────────

PROGRAM_WEEKS: int = int(os.getenv("PROGRAM_WEEKS", "8"))
AUTO_UNLOCK_MIN_DAYS: int = int(os.getenv("AUTO_UNLOCK_MIN_DAYS", "7"))
AUTO_UNLOCK_MIN_ATT: int = int(os.getenv("AUTO_UNLOCK_MIN_ATT", "3"))
AUTO_UNLOCK_MIN_DM: int = int(os.getenv("AUTO_UNLOCK_MIN_DM", "6"))

# ── Analytics ────────────────────────────────────────────────────────────

TREND_WINDOW_DAYS: int = int(os.getenv("TREND_WINDOW_DAYS", "7"))
MIN_TREND_SAMPLE_DAYS: int = int(os.getenv("MIN_TREND_SAMPLE_DAYS", "14"))
PERFORMANCE_WINDOW_DAYS: int = int(os.getenv("PERFORMANCE_WINDOW_DAYS", "30"))
DEFAULT_BELIEF_RATING: int = int(os.getenv("DEFAULT_BELIEF_RATING", "50"))

# ── Engagement ───────────────────────────────────────────────────────────

NUDGE_TTL_DAYS: int = int(os.getenv("NUDGE_TTL_DAYS", "7"))
ACTIVE_NUDGE_LIMIT: int = int(os.getenv("ACTIVE_NUDGE_LIMIT", "5"))
MILESTONE_COMPLETION_THRESHOLD: int = int(os.getenv("MILESTONE_COMPLETION_THRESHOLD", "80"))

# ── Scheduler ────────────────────────────────────────────────────────────

SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "false").lower() in ("1", "true", "yes")
SCHEDULER_TICK_SECONDS: int = int(os.getenv("SCHEDULER_TICK_SECONDS", "60"))
JOB_LOCK_SECONDS: int = int(os.getenv("JOB_LOCK_SECONDS", "300"))
NOTIFICATION_RETENTION_DAYS: int = int(os.getenv("NOTIFICATION_RETENTION_DAYS", "30"))

# ── Server Configuration ─────────────────────────────────────────────────

SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
