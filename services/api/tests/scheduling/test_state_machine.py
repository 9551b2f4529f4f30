"""
Trip state machine tests.

Validates:
  - Allowed transitions per status and scheduling mode
  - Leader-only actions (creator or circle owner)
  - Terminal states: canceled rejects everything, completed is final
  - Writes after lock raise TripLocked; a second lock raises AlreadyLocked
  - First write on a proposed trip moves it to scheduling
"""

from __future__ import annotations

from datetime import date

import pytest

from services.api.scheduling.errors import (
    AlreadyLocked,
    InvalidTransition,
    NotLeader,
    TripCanceled,
    TripLocked,
)
from services.api.scheduling.state_machine import Action, Transition, check_action, leader_ids
from services.api.scheduling.types import TripSnapshot, TripStatus
from services.api.tests.conftest import make_legacy_trip, make_trip

LEADER = "leader"
OWNER = "owner"


def _trip(status: str, legacy: bool = False, **overrides) -> TripSnapshot:
    factory = make_legacy_trip if legacy else make_trip
    return TripSnapshot.from_dict(factory(status=status, createdBy=LEADER, **overrides))


def _check(trip: TripSnapshot, action: Action, actor: str = LEADER):
    return check_action(trip, action, actor, leader_ids(trip, OWNER))


class TestHappyPath:
    def test_legacy_lifecycle(self):
        assert _check(_trip("proposed", legacy=True), Action.SUBMIT_AVAILABILITY, "m1") == Transition(
            TripStatus.PROPOSED, TripStatus.SCHEDULING
        )
        assert _check(_trip("scheduling", legacy=True), Action.SUBMIT_AVAILABILITY, "m1") is None
        assert _check(_trip("scheduling", legacy=True), Action.OPEN_VOTING).target == TripStatus.VOTING
        assert _check(_trip("voting", legacy=True), Action.VOTE, "m1") is None
        assert _check(_trip("voting", legacy=True), Action.LOCK).target == TripStatus.LOCKED
        assert _check(_trip("locked", legacy=True), Action.COMPLETE).target == TripStatus.COMPLETED

    def test_top3_locks_straight_from_scheduling(self):
        assert _check(_trip("scheduling"), Action.LOCK).target == TripStatus.LOCKED

    def test_circle_owner_is_a_leader(self):
        assert _check(_trip("scheduling"), Action.LOCK, OWNER).target == TripStatus.LOCKED

    @pytest.mark.parametrize("status", ["proposed", "scheduling", "voting", "locked"])
    def test_cancel_from_any_live_status(self, status):
        assert _check(_trip(status), Action.CANCEL).target == TripStatus.CANCELED


class TestRejections:
    def test_non_leader_cannot_lock(self):
        with pytest.raises(NotLeader):
            _check(_trip("scheduling"), Action.LOCK, "m1")

    def test_non_leader_cannot_cancel(self):
        with pytest.raises(NotLeader):
            _check(_trip("scheduling"), Action.CANCEL, "m1")

    def test_legacy_lock_requires_voting(self):
        with pytest.raises(InvalidTransition):
            _check(_trip("scheduling", legacy=True), Action.LOCK)

    def test_availability_frozen_while_voting(self):
        with pytest.raises(InvalidTransition) as exc_info:
            _check(_trip("voting", legacy=True), Action.SUBMIT_AVAILABILITY, "m1")
        assert "frozen" in exc_info.value.message

    def test_vote_before_voting_opens(self):
        with pytest.raises(InvalidTransition):
            _check(_trip("scheduling", legacy=True), Action.VOTE, "m1")

    def test_mode_mismatch(self):
        with pytest.raises(InvalidTransition):
            _check(_trip("scheduling"), Action.SUBMIT_AVAILABILITY, "m1")
        with pytest.raises(InvalidTransition):
            _check(_trip("scheduling", legacy=True), Action.SUBMIT_DATE_PICKS, "m1")

    def test_open_voting_twice(self):
        with pytest.raises(InvalidTransition) as exc_info:
            _check(_trip("voting", legacy=True), Action.OPEN_VOTING)
        assert "already open" in exc_info.value.message

    def test_hosted_trip_has_fixed_dates(self):
        trip = _trip("scheduling", type="hosted")
        with pytest.raises(InvalidTransition):
            _check(trip, Action.SUBMIT_DATE_PICKS, "m1")

    def test_complete_requires_lock(self):
        with pytest.raises(InvalidTransition):
            _check(_trip("scheduling"), Action.COMPLETE)


class TestTerminalAndLocked:
    @pytest.mark.parametrize("action", list(Action))
    def test_canceled_rejects_everything(self, action):
        with pytest.raises(TripCanceled):
            _check(_trip("canceled"), action)

    def test_completed_cannot_be_canceled(self):
        with pytest.raises(InvalidTransition):
            _check(_trip("completed"), Action.CANCEL)

    def test_writes_after_lock(self):
        with pytest.raises(TripLocked):
            _check(_trip("locked"), Action.SUBMIT_DATE_PICKS, "m1")
        with pytest.raises(TripLocked):
            _check(_trip("locked", legacy=True), Action.VOTE, "m1")
        with pytest.raises(TripLocked):
            _check(_trip("locked", legacy=True), Action.OPEN_VOTING)

    def test_second_lock(self):
        with pytest.raises(AlreadyLocked):
            _check(_trip("locked"), Action.LOCK)


class TestComplete:
    """locked -> completed needs a leader or the scheduler, and a finished trip."""

    def _locked(self) -> TripSnapshot:
        return _trip("locked", lockedStartDate="2025-06-04", lockedEndDate="2025-06-06")

    def test_member_cannot_complete(self):
        with pytest.raises(NotLeader):
            _check(self._locked(), Action.COMPLETE, "m1")

    def test_anonymous_cannot_complete(self):
        with pytest.raises(NotLeader):
            _check(self._locked(), Action.COMPLETE, None)

    def test_scheduler_completes_without_actor(self):
        trip = self._locked()
        transition = check_action(
            trip, Action.COMPLETE, None, leader_ids(trip), system=True, today=date(2025, 6, 7)
        )
        assert transition.target == TripStatus.COMPLETED

    def test_scheduler_flag_does_not_unlock_other_actions(self):
        trip = _trip("scheduling")
        with pytest.raises(NotLeader):
            check_action(trip, Action.LOCK, None, leader_ids(trip), system=True)

    @pytest.mark.parametrize("today", [date(2025, 6, 4), date(2025, 6, 6)])
    def test_rejected_until_end_date_passes(self, today):
        trip = self._locked()
        with pytest.raises(InvalidTransition):
            check_action(trip, Action.COMPLETE, LEADER, leader_ids(trip), today=today)

    def test_leader_completes_day_after_end(self):
        trip = self._locked()
        transition = check_action(trip, Action.COMPLETE, LEADER, leader_ids(trip), today=date(2025, 6, 7))
        assert transition.target == TripStatus.COMPLETED

    def test_hosted_trip_uses_its_fixed_end(self):
        trip = _trip("locked", type="hosted")
        with pytest.raises(InvalidTransition):
            check_action(trip, Action.COMPLETE, LEADER, leader_ids(trip), today=date(2025, 6, 10))


class TestMissingStatus:
    def test_collaborative_defaults_to_scheduling(self):
        trip = TripSnapshot.from_dict(make_trip(status=None))
        assert trip.status == TripStatus.SCHEDULING

    def test_hosted_defaults_to_locked(self):
        trip = TripSnapshot.from_dict(make_trip(status=None, type="hosted"))
        assert trip.status == TripStatus.LOCKED
