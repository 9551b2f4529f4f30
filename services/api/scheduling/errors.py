"""
Error taxonomy for the date-consensus engine.

Three families, each with a stable machine code the request layer passes
through verbatim:

  validation     InvalidRange, InvalidRecord, InvalidWindow, DuplicateRank
  authorization  NotLeader, NotMember
  state          TripLocked, TripCanceled, InvalidTransition, AlreadyLocked

State errors mean the caller's view is stale; they are surfaced, never
swallowed, so the client can refresh and retry.
"""

from __future__ import annotations

from typing import Any


class SchedulingError(Exception):
    """Base class. Subclasses set `code` and `http_status`."""

    code = "SCHEDULING_ERROR"
    http_status = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            body["context"] = self.context
        return body


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationError(SchedulingError):
    code = "VALIDATION_ERROR"
    http_status = 400


class InvalidRange(ValidationError):
    code = "INVALID_RANGE"


class InvalidRecord(ValidationError):
    code = "INVALID_RECORD"


class InvalidWindow(ValidationError):
    code = "INVALID_WINDOW"


class DuplicateRank(ValidationError):
    code = "DUPLICATE_RANK"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class NotLeader(SchedulingError):
    code = "LEADER_ONLY"
    http_status = 403


class NotMember(SchedulingError):
    code = "NOT_MEMBER"
    http_status = 403


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

class StateError(SchedulingError):
    code = "STATE_ERROR"
    http_status = 409


class TripLocked(StateError):
    code = "TRIP_LOCKED"


class TripCanceled(StateError):
    code = "TRIP_CANCELED"


class InvalidTransition(StateError):
    code = "INVALID_TRANSITION"


class AlreadyLocked(StateError):
    code = "ALREADY_LOCKED"


class TripNotFound(SchedulingError):
    code = "NOT_FOUND"
    http_status = 404
