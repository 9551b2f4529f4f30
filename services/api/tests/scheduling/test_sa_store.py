"""
SQLAlchemy store adapter tests (MockSASession).

Validates:
  - Trip rows map to snapshots (missing status / length fall back to defaults)
  - Compare-and-set: RETURNING row -> commit + True, no row -> rollback + False
  - Only transition columns may ride along with a status change
  - Writes replace the member's rows for the covered days and commit
  - Writes re-check the trip status under a row lock and roll back when it moved on
  - Membership excludes departed members; circle owner lookup
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from services.api.db.store import SAMembershipProvider, SAStoreAdapter
from services.api.scheduling.errors import InvalidTransition, TripCanceled, TripLocked, TripNotFound
from services.api.scheduling.types import (
    AvailabilityRecord,
    AvailabilityStatus,
    DatePick,
    RecordSource,
    TripStatus,
)
from services.api.tests.conftest import _make_obj, make_member, make_trip_row
from services.api.tests.helpers.mock_sa import MockSASession

pytestmark = pytest.mark.asyncio


@pytest.fixture
def session() -> MockSASession:
    return MockSASession()


@pytest.fixture
def adapter(session) -> SAStoreAdapter:
    return SAStoreAdapter(session.mock)


class TestGetTrip:
    async def test_row_maps_to_snapshot(self, adapter, session):
        row = make_trip_row(status="voting", schedulingMode="legacy")
        session.returns_one(_make_obj(row))

        trip = await adapter.get_trip(row["id"])

        assert trip.id == row["id"]
        assert trip.status == TripStatus.VOTING
        assert trip.planning_window_start == date(2025, 6, 1)
        assert trip.trip_length_days == 3

    async def test_missing_columns_use_defaults(self, adapter, session):
        session.returns_one(_make_obj(make_trip_row(status=None, tripLengthDays=None, schedulingMode=None)))
        trip = await adapter.get_trip("t1")
        assert trip.status == TripStatus.SCHEDULING
        assert trip.trip_length_days == 3
        assert trip.scheduling_mode.value == "top3_heatmap"

    async def test_missing_trip(self, adapter, session):
        session.returns_none()
        assert await adapter.get_trip("missing") is None


class TestCompareAndSet:
    async def test_win_commits(self, adapter, session):
        session.returns_row("t1")
        ok = await adapter.cas_trip_status(
            "t1",
            TripStatus.SCHEDULING,
            TripStatus.LOCKED,
            {"lockedStartDate": date(2025, 6, 4), "lockedEndDate": date(2025, 6, 6)},
        )
        assert ok is True
        session.mock.execute.assert_called_once()
        session.mock.commit.assert_called_once()

    async def test_lost_race_rolls_back(self, adapter, session):
        session.returns_none()
        ok = await adapter.cas_trip_status("t1", TripStatus.SCHEDULING, TripStatus.LOCKED)
        assert ok is False
        session.mock.rollback.assert_called_once()
        session.mock.commit.assert_not_called()

    async def test_unknown_field_rejected(self, adapter, session):
        with pytest.raises(ValueError):
            await adapter.cas_trip_status("t1", TripStatus.LOCKED, TripStatus.CANCELED, {"createdBy": "x"})
        session.mock.execute.assert_not_called()


class TestWrites:
    """Each write claims the trip row first (SELECT ... FOR UPDATE), then deletes and inserts."""

    async def test_upsert_records_deletes_then_inserts(self, adapter, session):
        session.returns_row("scheduling", "collaborative")
        records = [
            AvailabilityRecord("u1", date(2025, 6, d), AvailabilityStatus.AVAILABLE, RecordSource.WEEK)
            for d in (1, 2, 3)
        ]
        written = await adapter.upsert_records("t1", "u1", records)
        assert written == 3
        assert session.mock.execute.call_count == 3
        session.mock.commit.assert_called_once()

    async def test_upsert_nothing_is_a_noop(self, adapter, session):
        assert await adapter.upsert_records("t1", "u1", []) == 0
        session.mock.execute.assert_not_called()

    async def test_clearing_picks_only_deletes(self, adapter, session):
        session.returns_row("proposed", "collaborative")
        await adapter.replace_date_picks("t1", "u1", [])
        assert session.mock.execute.call_count == 2
        session.mock.commit.assert_called_once()

    async def test_replace_picks(self, adapter, session):
        session.returns_row("scheduling", "collaborative")
        await adapter.replace_date_picks("t1", "u1", [DatePick(1, date(2025, 6, 4))])
        assert session.mock.execute.call_count == 3

    async def test_upsert_vote(self, adapter, session):
        session.returns_row("voting", "collaborative")
        await adapter.upsert_vote("t1", "u1", "2025-06-04_2025-06-06")
        assert session.mock.execute.call_count == 2
        session.mock.commit.assert_called_once()

    async def test_missing_status_counts_as_scheduling(self, adapter, session):
        session.returns_row(None, "collaborative")
        await adapter.replace_date_picks("t1", "u1", [DatePick(1, date(2025, 6, 4))])
        session.mock.commit.assert_called_once()


class TestWriteAfterTransition:
    """A lock or cancel that commits after the engine's check still stops the write."""

    async def test_picks_after_lock_rejected(self, adapter, session):
        session.returns_row("locked", "collaborative")
        with pytest.raises(TripLocked):
            await adapter.replace_date_picks("t1", "u1", [DatePick(1, date(2025, 6, 4))])
        session.mock.execute.assert_called_once()
        session.mock.rollback.assert_called_once()
        session.mock.commit.assert_not_called()

    async def test_availability_after_cancel_rejected(self, adapter, session):
        session.returns_row("canceled", "collaborative")
        records = [AvailabilityRecord("u1", date(2025, 6, 1), AvailabilityStatus.AVAILABLE)]
        with pytest.raises(TripCanceled):
            await adapter.upsert_records("t1", "u1", records)
        session.mock.execute.assert_called_once()
        session.mock.commit.assert_not_called()

    async def test_availability_after_voting_opened_rejected(self, adapter, session):
        session.returns_row("voting", "collaborative")
        records = [AvailabilityRecord("u1", date(2025, 6, 1), AvailabilityStatus.AVAILABLE)]
        with pytest.raises(InvalidTransition):
            await adapter.upsert_records("t1", "u1", records)
        session.mock.rollback.assert_called_once()

    async def test_vote_after_lock_rejected(self, adapter, session):
        session.returns_row("locked", "collaborative")
        with pytest.raises(TripLocked):
            await adapter.upsert_vote("t1", "u1", "2025-06-04_2025-06-06")
        session.mock.execute.assert_called_once()
        session.mock.commit.assert_not_called()

    async def test_hosted_trip_without_status_is_locked(self, adapter, session):
        session.returns_row(None, "hosted")
        with pytest.raises(TripLocked):
            await adapter.replace_date_picks("t1", "u1", [])

    async def test_deleted_trip(self, adapter, session):
        session.returns_none()
        with pytest.raises(TripNotFound):
            await adapter.upsert_vote("t1", "u1", "2025-06-04_2025-06-06")
        session.mock.rollback.assert_called_once()


class TestReads:
    async def test_records_from_rows(self, adapter, session):
        session.returns_many([
            _make_obj({"userId": "u1", "day": date(2025, 6, 1), "status": "maybe", "source": "broad"}),
        ])
        records = await adapter.get_records("t1")
        assert records == [
            AvailabilityRecord("u1", date(2025, 6, 1), AvailabilityStatus.MAYBE, RecordSource.BROAD)
        ]

    async def test_picks_from_json(self, adapter, session):
        session.returns_many([
            _make_obj({"userId": "u1", "picks": [{"rank": 1, "startDateISO": "2025-06-04"}]}),
        ])
        (user,) = await adapter.get_date_picks("t1")
        assert user.picks == (DatePick(1, date(2025, 6, 4)),)

    async def test_votes(self, adapter, session):
        session.returns_many([_make_obj({"userId": "u1", "optionKey": "2025-06-04_2025-06-06"})])
        (vote,) = await adapter.get_votes("t1")
        assert vote.option_key == "2025-06-04_2025-06-06"


class TestMembership:
    async def test_active_members(self, session):
        provider = SAMembershipProvider(session.mock)
        rows = [make_member(userId="u1"), make_member(userId="u2")]
        session.returns_rows([(r["userId"],) for r in rows])

        trip = _make_obj({"id": "t1"})
        assert await provider.active_member_ids(trip) == ["u1", "u2"]

    async def test_circle_owner(self, session):
        provider = SAMembershipProvider(session.mock)
        session.returns_one(_make_obj({"ownerId": "boss", "createdAt": datetime.now(timezone.utc)}))
        assert await provider.circle_owner_id("c1") == "boss"

    async def test_missing_circle(self, session):
        provider = SAMembershipProvider(session.mock)
        session.returns_none()
        assert await provider.circle_owner_id("c1") is None
