"""
Lock coordinator -- the single-writer path for every trip status change.

No lock is held. Each transition is one conditional update on the trip's status
(compare-and-set against the status the decision was made from). When the CAS
loses, the trip is re-read and the action re-checked, so the caller gets the
error that describes the state the winner left behind: a second concurrent
lock sees AlreadyLocked, a lock racing a cancel sees TripCanceled.

Locking is irreversible: lockedStartDate/lockedEndDate are written in the same
update that moves status to locked, and nothing in the engine writes them again.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Union

from services.api.scheduling.errors import InvalidRecord, InvalidTransition, InvalidWindow, TripNotFound
from services.api.scheduling.state_machine import Action, Transition, check_action, leader_ids
from services.api.scheduling.store import MembershipProvider, StoreAdapter
from services.api.scheduling.types import DateWindow, TripSnapshot, TripStatus, parse_day
from services.api.scheduling.window_math import PlanningWindow, parse_option_key

logger = logging.getLogger(__name__)

ChosenWindow = Union[DateWindow, date, str]


def resolve_window(window: PlanningWindow, chosen: ChosenWindow) -> DateWindow:
    """
    Accept a DateWindow, a start date, a "YYYY-MM-DD" start, or a legacy
    "YYYY-MM-DD_YYYY-MM-DD" option key, and return the validated trip window.

    Any valid window is accepted; the leader is not limited to ranked candidates.
    """
    if isinstance(chosen, DateWindow):
        return window.validate_window(chosen)
    if isinstance(chosen, date):
        return window.validate_start(chosen)
    if isinstance(chosen, str):
        if "_" in chosen:
            return window.validate_window(parse_option_key(chosen))
        try:
            start = parse_day(chosen)
        except InvalidRecord:
            raise InvalidWindow(f"Invalid window {chosen!r}")
        return window.validate_start(start)
    raise InvalidWindow(f"Invalid window {chosen!r}")


class LockCoordinator:
    """
    Applies status transitions with compare-and-set.

    Usage:
        coordinator = LockCoordinator(store, membership)
        start, end = await coordinator.lock("trip-1", "user-leader", "2025-06-04")
    """

    def __init__(self, store: StoreAdapter, membership: MembershipProvider) -> None:
        self.store = store
        self.membership = membership

    async def _load(self, trip_id: str) -> tuple[TripSnapshot, frozenset[str]]:
        trip = await self.store.get_trip(trip_id)
        if trip is None:
            raise TripNotFound("Trip not found.", tripId=trip_id)
        owner = await self.membership.circle_owner_id(trip.circle_id)
        return trip, leader_ids(trip, owner)

    async def apply(
        self,
        trip: TripSnapshot,
        transition: Transition,
        action: Action,
        actor_id: str | None,
        extra_fields: dict[str, Any] | None = None,
        *,
        system: bool = False,
        today: date | None = None,
    ) -> None:
        """CAS the transition; on a lost race raise the error for the new state."""
        applied = await self.store.cas_trip_status(
            trip.id, transition.expected, transition.target, extra_fields
        )
        if applied:
            logger.info(
                "trip_transition trip=%s %s->%s action=%s by=%s",
                trip.id,
                transition.expected.value,
                transition.target.value,
                action.value,
                actor_id,
            )
            return

        current, leaders = await self._load(trip.id)
        logger.info(
            "trip_transition_conflict trip=%s expected=%s actual=%s action=%s by=%s",
            trip.id,
            transition.expected.value,
            current.status.value,
            action.value,
            actor_id,
        )
        check_action(current, action, actor_id, leaders, system=system, today=today)
        raise InvalidTransition(
            "Trip status changed while the request was in flight; refresh and retry",
            expected=transition.expected.value,
            actual=current.status.value,
        )

    async def transition(
        self,
        trip_id: str,
        action: Action,
        actor_id: str | None,
        *,
        system: bool = False,
        today: date | None = None,
    ) -> TripStatus:
        """
        Run a status-only transition (open voting, cancel, complete).

        `system` is set only for scheduler-triggered completion; `today` pins
        the date the end-of-trip check uses.
        """
        trip, leaders = await self._load(trip_id)
        transition = check_action(trip, action, actor_id, leaders, system=system, today=today)
        if transition is None:
            return trip.status

        extra: dict[str, Any] = {"updatedAt": datetime.now(timezone.utc)}
        if action == Action.CANCEL:
            extra["canceledBy"] = actor_id
            extra["canceledAt"] = datetime.now(timezone.utc)
        await self.apply(trip, transition, action, actor_id, extra, system=system, today=today)
        return transition.target

    async def lock(
        self,
        trip_id: str,
        requested_by: str,
        chosen_window: ChosenWindow,
    ) -> tuple[date, date]:
        """
        Lock the trip to `chosen_window`.

        Raises NotLeader, InvalidTransition, InvalidWindow, AlreadyLocked.
        """
        trip, leaders = await self._load(trip_id)
        transition = check_action(trip, Action.LOCK, requested_by, leaders)
        window = resolve_window(PlanningWindow.for_trip(trip), chosen_window)

        await self.apply(
            trip,
            transition,
            Action.LOCK,
            requested_by,
            {
                "lockedStartDate": window.start,
                "lockedEndDate": window.end,
                "updatedAt": datetime.now(timezone.utc),
            },
        )
        logger.info(
            "trip_locked trip=%s by=%s start=%s end=%s",
            trip_id,
            requested_by,
            window.start.isoformat(),
            window.end.isoformat(),
        )
        return window.start, window.end
