"""Error taxonomy shared by the store, the engine and the HTTP layer.

None of these are fatal: each one describes a single rejected operation and
carries a stable ``code`` the caller can switch on.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for per-operation failures."""

    code = "tracker_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class ValidationError(TrackerError):
    """Malformed or out-of-range input, rejected before any write."""

    code = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["field"] = self.field
        return d


class NotFoundError(TrackerError):
    """Operation addressed a week, achievement, milestone or nudge that does not exist."""

    code = "not_found"

    def __init__(self, kind: str, ident):
        super().__init__(f"{kind} {ident!r} not found")
        self.kind = kind
        self.ident = ident


class IneligibleTransitionError(TrackerError):
    """Expected business-rule rejection (e.g. unlocking a week too early)."""

    code = "ineligible_transition"

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["reason"] = self.reason
        return d
