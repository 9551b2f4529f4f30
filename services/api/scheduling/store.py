"""
Collaborator interfaces consumed by the scheduling engine, plus an in-memory
implementation used by tests and local tooling.

The engine treats storage as a key-value repository keyed by (tripId, userId).
Retries on transient failures belong to the adapter; the engine never retries
and never masks an adapter error.

Member writes re-check the trip status in the same step that writes, so a
lock or cancel committed after the engine's own check still rejects them.
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date
from typing import Any

from services.api.scheduling.errors import (
    InvalidTransition,
    TripCanceled,
    TripLocked,
    TripNotFound,
)
from services.api.scheduling.types import (
    AvailabilityRecord,
    DatePick,
    TripSnapshot,
    TripStatus,
    UserPicks,
    Vote,
)

# Statuses in which each kind of member write may land.
OPEN_FOR_ANSWERS = frozenset({TripStatus.PROPOSED, TripStatus.SCHEDULING})
OPEN_FOR_VOTES = frozenset({TripStatus.VOTING})


def ensure_open(trip_id: str, status: TripStatus | None, open_statuses: frozenset[TripStatus]) -> None:
    """Raise the state error for a write that reached a trip no longer accepting it."""
    if status in open_statuses:
        return
    if status is None:
        raise TripNotFound("Trip not found.", tripId=trip_id)
    if status == TripStatus.CANCELED:
        raise TripCanceled("This trip has been canceled and cannot be modified", status=status.value)
    if status in (TripStatus.LOCKED, TripStatus.COMPLETED):
        raise TripLocked("Dates are locked; scheduling is closed.", status=status.value)
    raise InvalidTransition("Trip moved on before this change was saved", status=status.value)


class StoreAdapter(ABC):
    """Trip, availability, pick and vote persistence."""

    @abstractmethod
    async def get_trip(self, trip_id: str) -> TripSnapshot | None:
        ...

    @abstractmethod
    async def get_records(self, trip_id: str) -> list[AvailabilityRecord]:
        ...

    @abstractmethod
    async def upsert_records(
        self,
        trip_id: str,
        user_id: str,
        records: list[AvailabilityRecord],
    ) -> int:
        """
        Replace the user's records for every day in `records`.
        Days not present in `records` keep their previous values.
        Returns the number of records written. Raises a state error unless
        the trip is in OPEN_FOR_ANSWERS when the write lands.
        """

    @abstractmethod
    async def get_date_picks(self, trip_id: str) -> list[UserPicks]:
        ...

    @abstractmethod
    async def replace_date_picks(self, trip_id: str, user_id: str, picks: list[DatePick]) -> None:
        """Replace the user's picks; same status rule as upsert_records."""

    @abstractmethod
    async def get_votes(self, trip_id: str) -> list[Vote]:
        ...

    @abstractmethod
    async def upsert_vote(self, trip_id: str, user_id: str, option_key: str) -> None:
        """Raises a state error unless the trip is in OPEN_FOR_VOTES."""

    @abstractmethod
    async def cas_trip_status(
        self,
        trip_id: str,
        expected: TripStatus,
        next_status: TripStatus,
        extra_fields: dict[str, Any] | None = None,
    ) -> bool:
        """
        Set status to `next_status` (plus `extra_fields`) only if it currently
        equals `expected`. Returns False when another writer got there first.
        """


class MembershipProvider(ABC):
    """Active roster for a trip's circle."""

    @abstractmethod
    async def active_member_ids(self, trip: TripSnapshot) -> list[str]:
        """Members who can take part in scheduling; excludes anyone who left."""

    @abstractmethod
    async def circle_owner_id(self, circle_id: str) -> str | None:
        ...


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------

def _serialize(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, TripStatus):
        return value.value
    return value


class InMemoryStore(StoreAdapter, MembershipProvider):
    """
    Dict-backed store. Trips are held as camelCase documents, the same shape
    the web client and the SQL mirror use.

    CAS is serialized with an asyncio.Lock. Reads take their snapshot, then
    yield to the event loop once, so concurrent callers act on stale reads the
    way they would after a real database round-trip.
    """

    def __init__(self) -> None:
        self.trips: dict[str, dict[str, Any]] = {}
        self.records: dict[str, dict[tuple[str, date], AvailabilityRecord]] = {}
        self.picks: dict[str, dict[str, tuple[DatePick, ...]]] = {}
        self.votes: dict[str, dict[str, str]] = {}
        self.members: dict[str, dict[str, str]] = {}  # circleId -> {userId: status}
        self.circle_owners: dict[str, str] = {}
        self._cas_lock = asyncio.Lock()

    # -- seeding helpers ----------------------------------------------------

    def add_trip(self, trip: dict[str, Any]) -> TripSnapshot:
        self.trips[trip["id"]] = copy.deepcopy(trip)
        return TripSnapshot.from_dict(self.trips[trip["id"]])

    def add_members(self, circle_id: str, user_ids: Iterable[str], status: str = "joined") -> None:
        roster = self.members.setdefault(circle_id, {})
        for uid in user_ids:
            roster[uid] = status

    def set_member_status(self, circle_id: str, user_id: str, status: str) -> None:
        self.members.setdefault(circle_id, {})[user_id] = status

    # -- StoreAdapter -------------------------------------------------------

    def _current_status(self, trip_id: str) -> TripStatus | None:
        doc = self.trips.get(trip_id)
        return TripSnapshot.from_dict(doc).status if doc is not None else None

    async def get_trip(self, trip_id: str) -> TripSnapshot | None:
        doc = self.trips.get(trip_id)
        snapshot = TripSnapshot.from_dict(doc) if doc is not None else None
        await asyncio.sleep(0)
        return snapshot

    async def get_records(self, trip_id: str) -> list[AvailabilityRecord]:
        rows = self.records.get(trip_id, {})
        records = [rows[k] for k in sorted(rows)]
        await asyncio.sleep(0)
        return records

    async def upsert_records(
        self,
        trip_id: str,
        user_id: str,
        records: list[AvailabilityRecord],
    ) -> int:
        ensure_open(trip_id, self._current_status(trip_id), OPEN_FOR_ANSWERS)
        rows = self.records.setdefault(trip_id, {})
        for rec in records:
            rows[(user_id, rec.day)] = rec
        return len(records)

    async def get_date_picks(self, trip_id: str) -> list[UserPicks]:
        by_user = self.picks.get(trip_id, {})
        picks = [UserPicks(user_id=uid, picks=by_user[uid]) for uid in sorted(by_user)]
        await asyncio.sleep(0)
        return picks

    async def replace_date_picks(self, trip_id: str, user_id: str, picks: list[DatePick]) -> None:
        ensure_open(trip_id, self._current_status(trip_id), OPEN_FOR_ANSWERS)
        by_user = self.picks.setdefault(trip_id, {})
        if picks:
            by_user[user_id] = tuple(sorted(picks, key=lambda p: p.rank))
        else:
            by_user.pop(user_id, None)

    async def get_votes(self, trip_id: str) -> list[Vote]:
        by_user = self.votes.get(trip_id, {})
        votes = [Vote(user_id=uid, option_key=by_user[uid]) for uid in sorted(by_user)]
        await asyncio.sleep(0)
        return votes

    async def upsert_vote(self, trip_id: str, user_id: str, option_key: str) -> None:
        ensure_open(trip_id, self._current_status(trip_id), OPEN_FOR_VOTES)
        self.votes.setdefault(trip_id, {})[user_id] = option_key

    async def cas_trip_status(
        self,
        trip_id: str,
        expected: TripStatus,
        next_status: TripStatus,
        extra_fields: dict[str, Any] | None = None,
    ) -> bool:
        async with self._cas_lock:
            doc = self.trips.get(trip_id)
            if doc is None:
                return False
            current = TripSnapshot.from_dict(doc).status
            if current != expected:
                return False
            doc["status"] = next_status.value
            for key, value in (extra_fields or {}).items():
                doc[key] = _serialize(value)
            return True

    # -- MembershipProvider -------------------------------------------------

    async def active_member_ids(self, trip: TripSnapshot) -> list[str]:
        roster = self.members.get(trip.circle_id, {})
        return sorted(uid for uid, status in roster.items() if status != "left")

    async def circle_owner_id(self, circle_id: str) -> str | None:
        return self.circle_owners.get(circle_id)
