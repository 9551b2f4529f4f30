"""
Plain data records for the date-consensus engine.

Submissions arrive as a tagged union (per-day, broad, weekly, or a combination
of the three) and are normalized to per-day AvailabilityRecords before scoring.
Ranked date picks stay a separate shape because they are scored per window,
not per day.

Serialized field names are camelCase to match the stored documents and the
JSON envelope returned to the web client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Union

from services.api.scheduling.errors import InvalidRecord


class TripStatus(str, Enum):
    PROPOSED = "proposed"
    SCHEDULING = "scheduling"
    VOTING = "voting"
    LOCKED = "locked"
    COMPLETED = "completed"
    CANCELED = "canceled"


class TripType(str, Enum):
    COLLABORATIVE = "collaborative"
    HOSTED = "hosted"


class SchedulingMode(str, Enum):
    # Broad / weekly / per-day availability, then a voting round.
    LEGACY = "legacy"
    # Each member ranks three start dates (love / can / might).
    TOP3_HEATMAP = "top3_heatmap"


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    MAYBE = "maybe"
    UNAVAILABLE = "unavailable"


class RecordSource(str, Enum):
    DAY = "day"
    WEEK = "week"
    BROAD = "broad"


STATUS_WEIGHTS: dict[AvailabilityStatus, float] = {
    AvailabilityStatus.AVAILABLE: 1.0,
    AvailabilityStatus.MAYBE: 0.5,
    AvailabilityStatus.UNAVAILABLE: 0.0,
}

# rank -> composite weight
RANK_WEIGHTS: dict[int, int] = {1: 3, 2: 2, 3: 1}


def parse_day(value: Any) -> date:
    """Parse a YYYY-MM-DD string (or pass through a date). Raises InvalidRecord."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidRecord(f"Expected a YYYY-MM-DD date, got {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidRecord(f"Invalid date {value!r}; expected YYYY-MM-DD")


def parse_status(value: Any) -> AvailabilityStatus:
    try:
        return AvailabilityStatus(value)
    except ValueError:
        raise InvalidRecord(
            f"Invalid status {value!r}; expected available, maybe or unavailable"
        )


def _iso(d: date | None) -> str | None:
    return d.isoformat() if d is not None else None


# ---------------------------------------------------------------------------
# Trip
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TripSnapshot:
    """Scheduling-relevant view of a trip as loaded from the store."""

    id: str
    circle_id: str
    created_by: str
    type: TripType
    scheduling_mode: SchedulingMode
    planning_window_start: date
    planning_window_end: date
    trip_length_days: int
    status: TripStatus
    locked_start_date: date | None = None
    locked_end_date: date | None = None
    canceled_by: str | None = None

    @property
    def is_hosted(self) -> bool:
        return self.type == TripType.HOSTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "circleId": self.circle_id,
            "createdBy": self.created_by,
            "type": self.type.value,
            "schedulingMode": self.scheduling_mode.value,
            "planningWindowStart": self.planning_window_start.isoformat(),
            "planningWindowEnd": self.planning_window_end.isoformat(),
            "tripLengthDays": self.trip_length_days,
            "status": self.status.value,
            "lockedStartDate": _iso(self.locked_start_date),
            "lockedEndDate": _iso(self.locked_end_date),
            "canceledBy": self.canceled_by,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "TripSnapshot":
        trip_type = TripType(d.get("type") or TripType.COLLABORATIVE.value)
        raw_status = d.get("status")
        if not raw_status:
            # Older trips were stored without a status field.
            raw_status = "locked" if trip_type == TripType.HOSTED else "scheduling"
        locked_start = d.get("lockedStartDate")
        locked_end = d.get("lockedEndDate")
        return cls(
            id=d["id"],
            circle_id=d.get("circleId", ""),
            created_by=d["createdBy"],
            type=trip_type,
            scheduling_mode=SchedulingMode(
                d.get("schedulingMode") or SchedulingMode.TOP3_HEATMAP.value
            ),
            planning_window_start=parse_day(d["planningWindowStart"]),
            planning_window_end=parse_day(d["planningWindowEnd"]),
            trip_length_days=int(d.get("tripLengthDays") or 3),
            status=TripStatus(raw_status),
            locked_start_date=parse_day(locked_start) if locked_start else None,
            locked_end_date=parse_day(locked_end) if locked_end else None,
            canceled_by=d.get("canceledBy"),
        )


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class DateWindow:
    """Inclusive [start, end] range of calendar days."""

    start: date
    end: date

    @property
    def option_key(self) -> str:
        return f"{self.start.isoformat()}_{self.end.isoformat()}"

    @property
    def length(self) -> int:
        return (self.end - self.start).days + 1

    def days(self) -> list[date]:
        return [self.start + timedelta(days=i) for i in range(self.length)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "startDateISO": self.start.isoformat(),
            "endDateISO": self.end.isoformat(),
            "optionKey": self.option_key,
        }


# ---------------------------------------------------------------------------
# Availability records and submissions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AvailabilityRecord:
    """One member's effective status for one day."""

    user_id: str
    day: date
    status: AvailabilityStatus
    source: RecordSource = RecordSource.DAY

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "day": self.day.isoformat(),
            "status": self.status.value,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AvailabilityRecord":
        return cls(
            user_id=d["userId"],
            day=parse_day(d["day"]),
            status=parse_status(d["status"]),
            source=RecordSource(d.get("source") or RecordSource.DAY.value),
        )


@dataclass(frozen=True)
class DayStatus:
    day: date
    status: AvailabilityStatus


@dataclass(frozen=True)
class WeekBlock:
    start: date
    end: date
    status: AvailabilityStatus


@dataclass(frozen=True)
class PerDaySubmission:
    days: tuple[DayStatus, ...]


@dataclass(frozen=True)
class BroadSubmission:
    status: AvailabilityStatus


@dataclass(frozen=True)
class WeeklySubmission:
    blocks: tuple[WeekBlock, ...]


@dataclass(frozen=True)
class CombinedSubmission:
    """Any mix of the three shapes sent in one request."""

    broad: BroadSubmission | None = None
    weekly: WeeklySubmission | None = None
    per_day: PerDaySubmission | None = None


Submission = Union[PerDaySubmission, BroadSubmission, WeeklySubmission, CombinedSubmission]


# ---------------------------------------------------------------------------
# Ranked picks and votes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DatePick:
    rank: int
    start_date: date

    def to_dict(self) -> dict[str, Any]:
        return {"rank": self.rank, "startDateISO": self.start_date.isoformat()}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "DatePick":
        rank = d.get("rank")
        if not isinstance(rank, int) or isinstance(rank, bool):
            raise InvalidRecord("Each pick must have rank (1-3) and startDateISO")
        return cls(rank=rank, start_date=parse_day(d.get("startDateISO")))


@dataclass(frozen=True)
class UserPicks:
    user_id: str
    picks: tuple[DatePick, ...]


@dataclass(frozen=True)
class Vote:
    user_id: str
    option_key: str

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "optionKey": self.option_key}


# ---------------------------------------------------------------------------
# Derived (never persisted)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WindowScore:
    """Consensus score of one valid window from per-day availability."""

    window: DateWindow
    score: float
    total_score: float
    coverage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.window.to_dict(),
            "score": round(self.score, 4),
            "totalScore": self.total_score,
            "coverage": round(self.coverage, 4),
        }


@dataclass(frozen=True)
class RankedCandidate:
    """Window scored from ranked love/can/might picks."""

    window: DateWindow
    score: int
    love_count: int = 0
    can_count: int = 0
    might_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.window.to_dict(),
            "score": self.score,
            "loveCount": self.love_count,
            "canCount": self.can_count,
            "mightCount": self.might_count,
        }


@dataclass
class VoteOption:
    option_key: str
    window: DateWindow
    votes: int = 0
    voter_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {**self.window.to_dict(), "votes": self.votes, "voterIds": list(self.voter_ids)}


@dataclass
class VotingStatus:
    is_voting_stage: bool = False
    total_members: int = 0
    voted_count: int = 0
    remaining_count: int = 0
    leading_option: VoteOption | None = None
    is_tie: bool = False
    ready_to_lock: bool = False
    ready_to_lock_reason: str | None = None
    options: list[VoteOption] = field(default_factory=list)
    # Active members who have voted / not yet, in roster order.
    voter_ids: list[str] = field(default_factory=list)
    pending_voter_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isVotingStage": self.is_voting_stage,
            "totalMembers": self.total_members,
            "votedCount": self.voted_count,
            "remainingCount": self.remaining_count,
            "leadingOption": self.leading_option.to_dict() if self.leading_option else None,
            "isTie": self.is_tie,
            "readyToLock": self.ready_to_lock,
            "readyToLockReason": self.ready_to_lock_reason,
            "options": [o.to_dict() for o in self.options],
            "voterIds": list(self.voter_ids),
            "pendingVoterIds": list(self.pending_voter_ids),
        }


@dataclass
class ScheduleView:
    """Read-side projection returned by get_schedule_view."""

    trip: TripSnapshot
    candidates: list[RankedCandidate | WindowScore] = field(default_factory=list)
    promising_windows: list[WindowScore] = field(default_factory=list)
    refinement_dates: list[date] = field(default_factory=list)
    heatmap: dict[str, Any] = field(default_factory=dict)
    responded_count: int = 0
    refined_count: int = 0
    voted_count: int = 0
    total_members: int = 0
    responded_user_ids: list[str] = field(default_factory=list)
    pending_user_ids: list[str] = field(default_factory=list)
    voted_user_ids: list[str] = field(default_factory=list)
    pending_voter_ids: list[str] = field(default_factory=list)
    voting_status: VotingStatus | None = None
    viewer: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trip": self.trip.to_dict(),
            "candidates": [c.to_dict() for c in self.candidates],
            "promisingWindows": [w.to_dict() for w in self.promising_windows],
            "refinementDates": [d.isoformat() for d in self.refinement_dates],
            "heatmap": self.heatmap,
            "respondedCount": self.responded_count,
            "refinedCount": self.refined_count,
            "votedCount": self.voted_count,
            "totalMembers": self.total_members,
            "respondedUserIds": list(self.responded_user_ids),
            "pendingUserIds": list(self.pending_user_ids),
            "votedUserIds": list(self.voted_user_ids),
            "pendingVoterIds": list(self.pending_voter_ids),
            "votingStatus": self.voting_status.to_dict() if self.voting_status else None,
            "viewer": self.viewer,
        }
