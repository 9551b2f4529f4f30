"""
Candidate ranking.

Ranked (top3_heatmap) model:
  For every distinct start date in anyone's picks, count love (rank 1),
  can (rank 2) and might (rank 3) picks.

      composite = 3 * loveCount + 2 * canCount + 1 * mightCount

  Sorted by composite descending, ties broken by the earliest start date.

Legacy model:
  Consensus windows from the aggregation engine, same ordering rule on the
  normalized score. Windows nobody scored above zero are not candidates.

Also tallies legacy votes into a voting status (leading option, tie flag,
ready-to-lock hint) for the voting stage.

Determinism guarantee: identical inputs always produce the identical ordered
list. No randomness, no clock reads.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date

from services.api.scheduling.types import (
    RANK_WEIGHTS,
    DateWindow,
    RankedCandidate,
    UserPicks,
    Vote,
    VoteOption,
    VotingStatus,
    WindowScore,
)
from services.api.scheduling.window_math import PlanningWindow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Ranked picks
# ---------------------------------------------------------------------------

def score_picks(
    all_picks: Iterable[UserPicks],
    window: PlanningWindow,
    active_member_ids: Iterable[str] | None = None,
) -> list[RankedCandidate]:
    """
    Aggregate every active member's picks into ranked candidates.

    Picks whose start date is no longer a valid start (e.g. the planning
    window was edited after they were submitted) are skipped.
    """
    active = set(active_member_ids) if active_member_ids is not None else None
    counts: dict[date, list[int]] = {}  # start -> [love, can, might]

    for user in all_picks:
        if active is not None and user.user_id not in active:
            continue
        for pick in user.picks:
            if pick.rank not in RANK_WEIGHTS or not window.is_valid_start(pick.start_date):
                continue
            counts.setdefault(pick.start_date, [0, 0, 0])[pick.rank - 1] += 1

    candidates = [
        RankedCandidate(
            window=window.window_for(start),
            score=3 * love + 2 * can + might,
            love_count=love,
            can_count=can,
            might_count=might,
        )
        for start, (love, can, might) in counts.items()
    ]
    return sort_ranked(candidates)


def sort_ranked(candidates: Iterable[RankedCandidate]) -> list[RankedCandidate]:
    return sorted(candidates, key=lambda c: (-c.score, c.window.start))


def pick_heatmap(candidates: Iterable[RankedCandidate]) -> dict[str, int]:
    """{startDateISO: composite score} for every start date that received a pick."""
    return {c.window.start.isoformat(): c.score for c in sorted(candidates, key=lambda c: c.window.start)}


# ---------------------------------------------------------------------------
# Legacy consensus windows
# ---------------------------------------------------------------------------

def rank_windows(scores: Iterable[WindowScore]) -> list[WindowScore]:
    """Order consensus windows by score descending, earliest start first on ties."""
    ranked = [s for s in scores if s.total_score > 0]
    return sorted(ranked, key=lambda s: (-s.score, s.window.start))


def top_n(ranked: Sequence, n: int) -> list:
    """First n entries of an already-ranked list. n <= 0 yields nothing."""
    if n <= 0:
        return []
    return list(ranked[:n])


# ---------------------------------------------------------------------------
# Legacy voting
# ---------------------------------------------------------------------------

def tally_votes(
    votes: Iterable[Vote],
    options: Sequence[DateWindow],
    active_member_ids: Iterable[str],
) -> VotingStatus:
    """
    Count votes per option and decide whether the leader has a clear signal.

    Ready to lock when more than half the active members voted and one option
    leads outright, or when everyone voted (a tie is then the leader's call).
    Votes from members who left, or for options not on the ballot, count
    towards nobody.
    """
    active = list(dict.fromkeys(active_member_ids))
    active_set = set(active)
    status = VotingStatus(is_voting_stage=True, total_members=len(active))

    by_key: dict[str, VoteOption] = {}
    for window in options:
        by_key.setdefault(window.option_key, VoteOption(option_key=window.option_key, window=window))
    ballot_order = {key: idx for idx, key in enumerate(by_key)}

    voters: set[str] = set()
    for vote in votes:
        if vote.user_id not in active_set or vote.user_id in voters:
            continue
        voters.add(vote.user_id)
        option = by_key.get(vote.option_key)
        if option is not None:
            option.votes += 1
            option.voter_ids.append(vote.user_id)

    status.voter_ids = [uid for uid in active if uid in voters]
    status.pending_voter_ids = [uid for uid in active if uid not in voters]
    status.voted_count = len(voters)
    status.remaining_count = status.total_members - status.voted_count
    status.options = sorted(by_key.values(), key=lambda o: (-o.votes, ballot_order[o.option_key]))

    if status.options and status.options[0].votes > 0:
        status.leading_option = status.options[0]
        if len(status.options) > 1 and status.options[1].votes == status.options[0].votes:
            status.is_tie = True

    has_leader = status.leading_option is not None
    all_voted = status.total_members > 0 and status.voted_count == status.total_members
    if status.voted_count > status.total_members / 2 and has_leader and not status.is_tie:
        status.ready_to_lock = True
        status.ready_to_lock_reason = f"{status.voted_count}/{status.total_members} voted, clear leader"
    elif all_voted and has_leader:
        status.ready_to_lock = True
        status.ready_to_lock_reason = "All votes in (tie - leader decides)"

    logger.debug(
        "tally_votes voted=%d total=%d tie=%s ready=%s",
        status.voted_count,
        status.total_members,
        status.is_tie,
        status.ready_to_lock,
    )
    return status
