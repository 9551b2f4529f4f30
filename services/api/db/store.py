"""
SQLAlchemy-backed StoreAdapter and MembershipProvider.

One instance wraps one AsyncSession (a request's session from get_db).
Every write commits before returning, so a successful call means the change
is durable. Status transitions are a single conditional UPDATE ... RETURNING:
zero rows back means another writer moved the trip first.

Member writes first read the trip status with SELECT ... FOR UPDATE inside the
same transaction. A lock or cancel UPDATE on that row waits for the write to
commit, and a write that arrives after the transition sees the new status and
is rejected before touching any rows.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.api.config import settings
from services.api.db.models import (
    Circle,
    Trip,
    TripAvailability,
    TripDatePick,
    TripMember,
    TripVote,
)
from services.api.scheduling.store import (
    OPEN_FOR_ANSWERS,
    OPEN_FOR_VOTES,
    MembershipProvider,
    StoreAdapter,
    ensure_open,
)
from services.api.scheduling.types import (
    AvailabilityRecord,
    DatePick,
    TripSnapshot,
    TripStatus,
    UserPicks,
    Vote,
)

logger = logging.getLogger(__name__)

# Trip columns a transition may write alongside status.
_TRANSITION_FIELDS = frozenset({
    "lockedStartDate",
    "lockedEndDate",
    "canceledBy",
    "canceledAt",
    "updatedAt",
})


def _status_is(expected: TripStatus):
    """Status predicate that also matches rows stored before the status column existed."""
    cond = Trip.status == expected.value
    if expected == TripStatus.SCHEDULING:
        return or_(cond, and_(Trip.status.is_(None), Trip.type != "hosted"))
    if expected == TripStatus.LOCKED:
        return or_(cond, and_(Trip.status.is_(None), Trip.type == "hosted"))
    return cond


def _row_status(status: str | None, trip_type: str | None) -> TripStatus:
    if status:
        return TripStatus(status)
    return TripStatus.LOCKED if trip_type == "hosted" else TripStatus.SCHEDULING


def trip_to_snapshot(row: Trip) -> TripSnapshot:
    return TripSnapshot.from_dict({
        "id": row.id,
        "circleId": row.circleId,
        "createdBy": row.createdBy,
        "type": row.type,
        "schedulingMode": row.schedulingMode,
        "planningWindowStart": row.startDate,
        "planningWindowEnd": row.endDate,
        "tripLengthDays": row.tripLengthDays or settings.scheduling_default_trip_length,
        "status": row.status,
        "lockedStartDate": row.lockedStartDate,
        "lockedEndDate": row.lockedEndDate,
        "canceledBy": row.canceledBy,
    })


class SAStoreAdapter(StoreAdapter):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _claim_open_trip(self, trip_id: str, open_statuses: frozenset[TripStatus]) -> None:
        """Row-lock the trip until commit; raise when it no longer takes this write."""
        stmt = select(Trip.status, Trip.type).where(Trip.id == trip_id).with_for_update()
        row = (await self.session.execute(stmt)).first()
        status = _row_status(*row) if row is not None else None
        if status not in open_statuses:
            await self.session.rollback()
            logger.info("trip_write_rejected trip=%s status=%s", trip_id, status.value if status else None)
        ensure_open(trip_id, status, open_statuses)

    async def get_trip(self, trip_id: str) -> TripSnapshot | None:
        result = await self.session.execute(select(Trip).where(Trip.id == trip_id))
        row = result.scalars().first()
        return trip_to_snapshot(row) if row is not None else None

    async def get_records(self, trip_id: str) -> list[AvailabilityRecord]:
        stmt = (
            select(TripAvailability)
            .where(TripAvailability.tripId == trip_id)
            .order_by(TripAvailability.userId, TripAvailability.day)
        )
        result = await self.session.execute(stmt)
        return [
            AvailabilityRecord.from_dict({
                "userId": row.userId,
                "day": row.day,
                "status": row.status,
                "source": row.source,
            })
            for row in result.scalars().all()
        ]

    async def upsert_records(
        self,
        trip_id: str,
        user_id: str,
        records: list[AvailabilityRecord],
    ) -> int:
        if not records:
            return 0
        await self._claim_open_trip(trip_id, OPEN_FOR_ANSWERS)
        now = datetime.now(timezone.utc)
        await self.session.execute(
            delete(TripAvailability).where(
                and_(
                    TripAvailability.tripId == trip_id,
                    TripAvailability.userId == user_id,
                    TripAvailability.day.in_([r.day for r in records]),
                )
            )
        )
        await self.session.execute(
            insert(TripAvailability).values([
                {
                    "tripId": trip_id,
                    "userId": user_id,
                    "day": r.day,
                    "status": r.status.value,
                    "source": r.source.value,
                    "createdAt": now,
                }
                for r in records
            ])
        )
        await self.session.commit()
        return len(records)

    async def get_date_picks(self, trip_id: str) -> list[UserPicks]:
        stmt = (
            select(TripDatePick)
            .where(TripDatePick.tripId == trip_id)
            .order_by(TripDatePick.userId)
        )
        result = await self.session.execute(stmt)
        return [
            UserPicks(
                user_id=row.userId,
                picks=tuple(DatePick.from_dict(p) for p in (row.picks or [])),
            )
            for row in result.scalars().all()
        ]

    async def replace_date_picks(self, trip_id: str, user_id: str, picks: list[DatePick]) -> None:
        await self._claim_open_trip(trip_id, OPEN_FOR_ANSWERS)
        await self.session.execute(
            delete(TripDatePick).where(
                and_(TripDatePick.tripId == trip_id, TripDatePick.userId == user_id)
            )
        )
        if picks:
            await self.session.execute(
                insert(TripDatePick).values(
                    tripId=trip_id,
                    userId=user_id,
                    picks=[p.to_dict() for p in sorted(picks, key=lambda p: p.rank)],
                    updatedAt=datetime.now(timezone.utc),
                )
            )
        await self.session.commit()

    async def get_votes(self, trip_id: str) -> list[Vote]:
        stmt = select(TripVote).where(TripVote.tripId == trip_id).order_by(TripVote.userId)
        result = await self.session.execute(stmt)
        return [Vote(user_id=row.userId, option_key=row.optionKey) for row in result.scalars().all()]

    async def upsert_vote(self, trip_id: str, user_id: str, option_key: str) -> None:
        await self._claim_open_trip(trip_id, OPEN_FOR_VOTES)
        await self.session.execute(
            delete(TripVote).where(and_(TripVote.tripId == trip_id, TripVote.userId == user_id))
        )
        await self.session.execute(
            insert(TripVote).values(
                tripId=trip_id,
                userId=user_id,
                optionKey=option_key,
                updatedAt=datetime.now(timezone.utc),
            )
        )
        await self.session.commit()

    async def cas_trip_status(
        self,
        trip_id: str,
        expected: TripStatus,
        next_status: TripStatus,
        extra_fields: dict[str, Any] | None = None,
    ) -> bool:
        values: dict[str, Any] = {"status": next_status.value}
        for key, value in (extra_fields or {}).items():
            if key not in _TRANSITION_FIELDS:
                raise ValueError(f"Unsupported trip field for transition: {key}")
            values[key] = value

        # SECURITY: atomic compare-and-set on status; no read-modify-write window
        stmt = (
            update(Trip)
            .where(and_(Trip.id == trip_id, _status_is(expected)))
            .values(**values)
            .returning(Trip.id)
        )
        result = await self.session.execute(stmt)
        if result.first() is None:
            await self.session.rollback()
            logger.info(
                "trip_cas_miss trip=%s expected=%s next=%s",
                trip_id,
                expected.value,
                next_status.value,
            )
            return False
        await self.session.commit()
        return True


class SAMembershipProvider(MembershipProvider):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def active_member_ids(self, trip: TripSnapshot) -> list[str]:
        stmt = (
            select(TripMember.userId)
            .where(and_(TripMember.tripId == trip.id, TripMember.status != "left"))
            .order_by(TripMember.userId)
        )
        result = await self.session.execute(stmt)
        return list(dict.fromkeys(row[0] for row in result.all()))

    async def circle_owner_id(self, circle_id: str) -> str | None:
        result = await self.session.execute(select(Circle).where(Circle.id == circle_id))
        circle = result.scalars().first()
        return circle.ownerId if circle is not None else None
