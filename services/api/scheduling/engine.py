"""
Scheduling engine -- the function-call surface the request layer talks to.

Writes (availability, refinement, picks, votes) are per-user upserts gated by
the state machine. Reads recompute aggregation -> ranking -> refinement from
committed records every time; nothing derived is written back to the trip.
Status changes go through the LockCoordinator's compare-and-set.

Usage:
    engine = SchedulingEngine(store, membership)
    await engine.submit_date_picks("trip-1", "user-a", [DatePick(1, date(2025, 6, 1))])
    view = await engine.get_schedule_view("trip-1")
    await engine.lock("trip-1", "user-leader", view.candidates[0].window)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from services.api.config import settings
from services.api.scheduling.aggregation import build_day_maps, day_heatmap, expand_submission, score_windows
from services.api.scheduling.errors import (
    DuplicateRank,
    InvalidRecord,
    NotMember,
    TripNotFound,
)
from services.api.scheduling.lock import ChosenWindow, LockCoordinator
from services.api.scheduling.ranking import (
    pick_heatmap,
    rank_windows,
    score_picks,
    tally_votes,
    top_n,
)
from services.api.scheduling.refinement import (
    build_refinement_plan,
    refined_users,
    responded_users,
    validate_refinement,
)
from services.api.scheduling.state_machine import Action, Transition, check_action, is_leader, leader_ids
from services.api.scheduling.store import MembershipProvider, StoreAdapter
from services.api.scheduling.types import (
    RANK_WEIGHTS,
    DatePick,
    PerDaySubmission,
    ScheduleView,
    SchedulingMode,
    Submission,
    TripSnapshot,
    TripStatus,
)
from services.api.scheduling.window_math import PlanningWindow, parse_option_key

logger = logging.getLogger(__name__)

_MAX_PICKS = 3


def _set_responders(view: ScheduleView, active: Sequence[str], responded: set[str]) -> None:
    """Split the roster (in roster order) into members who answered and members still pending."""
    roster = list(dict.fromkeys(active))
    view.responded_user_ids = [uid for uid in roster if uid in responded]
    view.pending_user_ids = [uid for uid in roster if uid not in responded]
    view.responded_count = len(view.responded_user_ids)


@dataclass(frozen=True)
class EngineConfig:
    top_candidates: int = 3
    heatmap_top: int = 5
    promising_windows: int = 3
    refinement_threshold: float = 0.5

    @classmethod
    def from_settings(cls) -> "EngineConfig":
        return cls(
            top_candidates=settings.scheduling_top_candidates,
            heatmap_top=settings.scheduling_heatmap_top,
            promising_windows=settings.scheduling_promising_windows,
            refinement_threshold=settings.scheduling_refinement_threshold,
        )


class SchedulingEngine:
    def __init__(
        self,
        store: StoreAdapter,
        membership: MembershipProvider,
        config: EngineConfig | None = None,
    ) -> None:
        self.store = store
        self.membership = membership
        self.config = config or EngineConfig.from_settings()
        self.coordinator = LockCoordinator(store, membership)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_trip(self, trip_id: str) -> TripSnapshot:
        trip = await self.store.get_trip(trip_id)
        if trip is None:
            raise TripNotFound("Trip not found.", tripId=trip_id)
        return trip

    async def _gate(self, trip: TripSnapshot, action: Action, user_id: str) -> Transition | None:
        owner = await self.membership.circle_owner_id(trip.circle_id)
        transition = check_action(trip, action, user_id, leader_ids(trip, owner))
        active = await self.membership.active_member_ids(trip)
        if user_id not in active:
            raise NotMember("You are not a member of this trip's circle", userId=user_id)
        return transition

    async def _start_scheduling(self, trip: TripSnapshot, transition: Transition | None, user_id: str) -> None:
        """First accepted answer moves proposed -> scheduling. Losing that race is fine."""
        if transition is None:
            return
        moved = await self.store.cas_trip_status(trip.id, transition.expected, transition.target)
        if moved:
            logger.info("scheduling_started trip=%s by=%s", trip.id, user_id)
        else:
            logger.debug("scheduling_start_skipped trip=%s already moved", trip.id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def submit_availability(self, trip_id: str, user_id: str, submission: Submission) -> int:
        """
        Store a member's availability (per-day, broad, weekly, or a mix).

        Replaces the member's previous status for every day the submission
        covers; other days are untouched. Returns the number of day records
        written.
        """
        trip = await self._load_trip(trip_id)
        transition = await self._gate(trip, Action.SUBMIT_AVAILABILITY, user_id)
        records = expand_submission(user_id, submission, PlanningWindow.for_trip(trip))
        written = await self.store.upsert_records(trip_id, user_id, records)
        await self._start_scheduling(trip, transition, user_id)
        logger.info("availability_saved trip=%s user=%s days=%d", trip_id, user_id, written)
        return written

    async def submit_refinement(self, trip_id: str, user_id: str, submission: PerDaySubmission) -> int:
        """Second, per-day pass restricted to the current promising windows."""
        trip = await self._load_trip(trip_id)
        await self._gate(trip, Action.SUBMIT_REFINEMENT, user_id)

        active = await self.membership.active_member_ids(trip)
        records = await self.store.get_records(trip_id)
        if user_id not in responded_users(records, active):
            raise InvalidRecord("Submit your availability before refining it")

        window = PlanningWindow.for_trip(trip)
        scores = score_windows(build_day_maps(records, active), window, len(active))
        plan = build_refinement_plan(
            scores,
            limit=self.config.promising_windows,
            threshold_ratio=self.config.refinement_threshold,
        )
        validate_refinement(submission, plan)

        refined = expand_submission(user_id, submission, window)
        written = await self.store.upsert_records(trip_id, user_id, refined)
        logger.info("refinement_saved trip=%s user=%s days=%d", trip_id, user_id, written)
        return written

    async def submit_date_picks(self, trip_id: str, user_id: str, picks: Sequence[DatePick]) -> int:
        """
        Replace a member's ranked picks (rank 1 love, 2 can, 3 might).

        At most three picks, one per rank, three different start dates, each a
        valid trip window. An empty list clears the member's picks.
        """
        trip = await self._load_trip(trip_id)
        transition = await self._gate(trip, Action.SUBMIT_DATE_PICKS, user_id)

        if len(picks) > _MAX_PICKS:
            raise InvalidRecord(f"Maximum {_MAX_PICKS} picks allowed")
        window = PlanningWindow.for_trip(trip)
        seen_ranks: set[int] = set()
        seen_dates: set[date] = set()
        for pick in picks:
            if pick.rank not in RANK_WEIGHTS:
                raise InvalidRecord("Rank must be 1, 2, or 3", rank=pick.rank)
            if pick.rank in seen_ranks:
                raise DuplicateRank(f"Duplicate rank {pick.rank}", rank=pick.rank)
            if pick.start_date in seen_dates:
                raise InvalidRecord(
                    f"Duplicate start date {pick.start_date.isoformat()}",
                    startDateISO=pick.start_date.isoformat(),
                )
            window.validate_start(pick.start_date)
            seen_ranks.add(pick.rank)
            seen_dates.add(pick.start_date)

        await self.store.replace_date_picks(trip_id, user_id, list(picks))
        await self._start_scheduling(trip, transition, user_id)
        logger.info("date_picks_saved trip=%s user=%s picks=%d", trip_id, user_id, len(picks))
        return len(picks)

    async def submit_vote(self, trip_id: str, user_id: str, option_key: str) -> str:
        """Record (or replace) a member's vote for a window during voting."""
        trip = await self._load_trip(trip_id)
        await self._gate(trip, Action.VOTE, user_id)
        window = PlanningWindow.for_trip(trip).validate_window(parse_option_key(option_key))
        await self.store.upsert_vote(trip_id, user_id, window.option_key)
        logger.info("vote_recorded trip=%s user=%s option=%s", trip_id, user_id, window.option_key)
        return window.option_key

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def open_voting(self, trip_id: str, requested_by: str) -> TripStatus:
        return await self.coordinator.transition(trip_id, Action.OPEN_VOTING, requested_by)

    async def cancel(self, trip_id: str, requested_by: str) -> TripStatus:
        return await self.coordinator.transition(trip_id, Action.CANCEL, requested_by)

    async def complete(
        self,
        trip_id: str,
        requested_by: str | None = None,
        *,
        system: bool = False,
        today: date | None = None,
    ) -> TripStatus:
        """locked -> completed after the end date; a leader, or the scheduler with `system=True`."""
        return await self.coordinator.transition(
            trip_id, Action.COMPLETE, requested_by, system=system, today=today
        )

    async def lock(self, trip_id: str, requested_by: str, chosen_window: ChosenWindow) -> tuple[date, date]:
        return await self.coordinator.lock(trip_id, requested_by, chosen_window)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_schedule_view(self, trip_id: str, viewer_id: str | None = None) -> ScheduleView:
        """
        Recompute the schedule projection from committed records.

        Pure with respect to stored state: safe to retry and to run
        concurrently with anything.
        """
        trip = await self._load_trip(trip_id)
        active = await self.membership.active_member_ids(trip)
        view = ScheduleView(trip=trip, total_members=len(active))

        if trip.is_hosted:
            return view

        window = PlanningWindow.for_trip(trip)
        if trip.scheduling_mode == SchedulingMode.TOP3_HEATMAP:
            all_picks = await self.store.get_date_picks(trip_id)
            ranked = score_picks(all_picks, window, active)
            view.candidates = top_n(ranked, self.config.top_candidates)
            view.heatmap = {
                "starts": pick_heatmap(ranked),
                "top": [c.to_dict() for c in top_n(ranked, self.config.heatmap_top)],
            }
            _set_responders(view, active, {p.user_id for p in all_picks if p.picks})
            if viewer_id is not None:
                mine = next((p for p in all_picks if p.user_id == viewer_id), None)
                view.viewer = {
                    "userId": viewer_id,
                    "picks": [p.to_dict() for p in mine.picks] if mine else [],
                }
        else:
            records = await self.store.get_records(trip_id)
            day_maps = build_day_maps(records, active)
            scores = score_windows(day_maps, window, len(active))
            ranked = rank_windows(scores)
            view.candidates = top_n(ranked, self.config.top_candidates)
            view.heatmap = {"days": day_heatmap(day_maps, window, len(active))}
            _set_responders(view, active, responded_users(records, active))

            if trip.status == TripStatus.SCHEDULING and day_maps:
                plan = build_refinement_plan(
                    scores,
                    limit=self.config.promising_windows,
                    threshold_ratio=self.config.refinement_threshold,
                )
                view.promising_windows = plan.promising_windows
                view.refinement_dates = plan.refinement_dates
                view.refined_count = len(refined_users(records, plan.refinement_dates, active))

            votes = await self.store.get_votes(trip_id)
            if trip.status == TripStatus.VOTING:
                view.voting_status = tally_votes(votes, [c.window for c in view.candidates], active)
                view.voted_count = view.voting_status.voted_count
                view.voted_user_ids = list(view.voting_status.voter_ids)
                view.pending_voter_ids = list(view.voting_status.pending_voter_ids)
            else:
                voters = {v.user_id for v in votes}
                view.voted_user_ids = [uid for uid in dict.fromkeys(active) if uid in voters]
                view.voted_count = len(view.voted_user_ids)

            if viewer_id is not None:
                my_vote = next((v for v in votes if v.user_id == viewer_id), None)
                view.viewer = {
                    "userId": viewer_id,
                    "availability": [r.to_dict() for r in records if r.user_id == viewer_id],
                    "vote": my_vote.option_key if my_vote else None,
                }

        if view.viewer is not None:
            owner = await self.membership.circle_owner_id(trip.circle_id)
            view.viewer["isLeader"] = is_leader(viewer_id, leader_ids(trip, owner))

        logger.debug(
            "schedule_view trip=%s mode=%s candidates=%d responded=%d/%d",
            trip_id,
            trip.scheduling_mode.value,
            len(view.candidates),
            view.responded_count,
            view.total_members,
        )
        return view
