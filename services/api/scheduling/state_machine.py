"""
Trip scheduling state machine.

    proposed -> scheduling -> voting -> locked -> completed
       |            |           |         |
       +------------+-----------+---------+--> canceled

  - proposed -> scheduling happens on the first accepted availability/pick.
  - scheduling -> voting is the leader's call (legacy mode only).
  - locked is entered from voting (legacy) or scheduling/voting (top3_heatmap).
  - locked -> completed once the locked end date has passed, by a leader or
    the system scheduler.
  - canceled and completed are terminal.
  - hosted trips start locked; their dates are never scheduled here.

Leaders are the trip creator and the circle owner.

`check_action` is pure: given (trip, action, actor, leaders) and the current
date it either returns the Transition to apply (None for a plain write) or
raises. Callers apply transitions with a compare-and-set on the status it was
computed from.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum

from services.api.scheduling.errors import (
    AlreadyLocked,
    InvalidTransition,
    NotLeader,
    TripCanceled,
    TripLocked,
)
from services.api.scheduling.types import SchedulingMode, TripSnapshot, TripStatus


class Action(str, Enum):
    SUBMIT_AVAILABILITY = "submit_availability"
    SUBMIT_REFINEMENT = "submit_refinement"
    SUBMIT_DATE_PICKS = "submit_date_picks"
    VOTE = "vote"
    OPEN_VOTING = "open_voting"
    LOCK = "lock"
    CANCEL = "cancel"
    COMPLETE = "complete"


LEADER_ONLY = frozenset({Action.OPEN_VOTING, Action.LOCK, Action.CANCEL, Action.COMPLETE})
# Leader-only actions the system scheduler may also run.
SYSTEM_ACTIONS = frozenset({Action.COMPLETE})
WRITE_ACTIONS = frozenset({
    Action.SUBMIT_AVAILABILITY,
    Action.SUBMIT_REFINEMENT,
    Action.SUBMIT_DATE_PICKS,
    Action.VOTE,
})

# Statuses from which each action is legal (mode-independent part).
_ALLOWED_FROM: dict[Action, frozenset[TripStatus]] = {
    Action.SUBMIT_AVAILABILITY: frozenset({TripStatus.PROPOSED, TripStatus.SCHEDULING}),
    Action.SUBMIT_REFINEMENT: frozenset({TripStatus.SCHEDULING}),
    Action.SUBMIT_DATE_PICKS: frozenset({TripStatus.PROPOSED, TripStatus.SCHEDULING}),
    Action.VOTE: frozenset({TripStatus.VOTING}),
    Action.OPEN_VOTING: frozenset({TripStatus.SCHEDULING}),
    Action.LOCK: frozenset({TripStatus.SCHEDULING, TripStatus.VOTING}),
    Action.CANCEL: frozenset({
        TripStatus.PROPOSED,
        TripStatus.SCHEDULING,
        TripStatus.VOTING,
        TripStatus.LOCKED,
    }),
    Action.COMPLETE: frozenset({TripStatus.LOCKED}),
}

# Mode an action is restricted to (absent = any mode).
_REQUIRED_MODE: dict[Action, SchedulingMode] = {
    Action.SUBMIT_AVAILABILITY: SchedulingMode.LEGACY,
    Action.SUBMIT_REFINEMENT: SchedulingMode.LEGACY,
    Action.VOTE: SchedulingMode.LEGACY,
    Action.OPEN_VOTING: SchedulingMode.LEGACY,
    Action.SUBMIT_DATE_PICKS: SchedulingMode.TOP3_HEATMAP,
}

_TARGET: dict[Action, TripStatus] = {
    Action.OPEN_VOTING: TripStatus.VOTING,
    Action.LOCK: TripStatus.LOCKED,
    Action.CANCEL: TripStatus.CANCELED,
    Action.COMPLETE: TripStatus.COMPLETED,
}


@dataclass(frozen=True)
class Transition:
    expected: TripStatus
    target: TripStatus


def leader_ids(trip: TripSnapshot, circle_owner_id: str | None = None) -> frozenset[str]:
    ids = {trip.created_by}
    if circle_owner_id:
        ids.add(circle_owner_id)
    return frozenset(ids)


def is_leader(actor_id: str | None, leaders: Iterable[str]) -> bool:
    return actor_id is not None and actor_id in set(leaders)


def check_action(
    trip: TripSnapshot,
    action: Action,
    actor_id: str | None,
    leaders: Iterable[str],
    *,
    system: bool = False,
    today: date | None = None,
) -> Transition | None:
    """
    Validate `action` against the trip's current status.

    `system` marks a call from the scheduler rather than a member; it only
    stands in for a leader on SYSTEM_ACTIONS. `today` defaults to the UTC date.

    Returns the status transition to apply, or None when the action is a plain
    write that leaves the status alone.
    """
    status = trip.status

    if status == TripStatus.CANCELED:
        raise TripCanceled("This trip has been canceled and cannot be modified", status=status.value)

    if status == TripStatus.COMPLETED:
        if action in WRITE_ACTIONS or action == Action.OPEN_VOTING:
            raise TripLocked("This trip has been completed; its dates are final", status=status.value)
        raise InvalidTransition("This trip has been completed and cannot be modified", status=status.value)

    if status == TripStatus.LOCKED:
        if action == Action.LOCK:
            raise AlreadyLocked("Trip is already locked", status=status.value)
        if action in WRITE_ACTIONS or action == Action.OPEN_VOTING:
            raise TripLocked("Dates are locked; scheduling is closed.", status=status.value)

    system_ok = system and action in SYSTEM_ACTIONS
    if action in LEADER_ONLY and not system_ok and not is_leader(actor_id, leaders):
        raise NotLeader(
            f"Only the trip creator or circle owner can {action.value.replace('_', ' ')}",
            action=action.value,
        )

    if trip.is_hosted and action in WRITE_ACTIONS | {Action.OPEN_VOTING, Action.LOCK}:
        raise InvalidTransition("Hosted trips have fixed dates; scheduling does not apply")

    required_mode = _REQUIRED_MODE.get(action)
    if required_mode is not None and trip.scheduling_mode != required_mode:
        raise InvalidTransition(
            f"{action.value} is only available in {required_mode.value} scheduling mode",
            schedulingMode=trip.scheduling_mode.value,
        )

    allowed = _ALLOWED_FROM[action]
    if action == Action.LOCK and trip.scheduling_mode == SchedulingMode.LEGACY:
        # Legacy trips lock off the vote.
        allowed = frozenset({TripStatus.VOTING})

    if status not in allowed:
        if action == Action.SUBMIT_AVAILABILITY and status == TripStatus.VOTING:
            message = "Availability is frozen while voting is open."
        elif action == Action.OPEN_VOTING and status == TripStatus.VOTING:
            message = "Voting is already open"
        elif action == Action.VOTE:
            message = "Voting is not open for this trip"
        else:
            message = f"Cannot {action.value.replace('_', ' ')} while trip is {status.value}"
        raise InvalidTransition(message, status=status.value, action=action.value)

    if action == Action.COMPLETE:
        _check_trip_ended(trip, today or datetime.now(timezone.utc).date())

    if action in _TARGET:
        return Transition(expected=status, target=_TARGET[action])
    if status == TripStatus.PROPOSED and action in WRITE_ACTIONS:
        return Transition(expected=TripStatus.PROPOSED, target=TripStatus.SCHEDULING)
    return None


def _check_trip_ended(trip: TripSnapshot, today: date) -> None:
    end = trip.locked_end_date or trip.planning_window_end
    if today <= end:
        raise InvalidTransition(
            "Trip cannot be completed before its end date",
            lockedEndDate=end.isoformat(),
        )
