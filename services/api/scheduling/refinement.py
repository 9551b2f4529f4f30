"""
Promising-window refiner (legacy availability model).

Once a first pass of broad/weekly/per-day answers exists and the trip is still
in scheduling, the best-scoring windows are offered for a finer second pass:

  1. Take windows in ranking order (score desc, earliest start on ties).
  2. Keep those scoring at least `threshold_ratio * best_score`, up to `limit`.
  3. The union of their days is the refinement date set.

A refinement pass is an ordinary per-day submission restricted to that set.
Because submissions replace only the days they cover, it overrides the
member's broad/weekly-derived status inside the set and leaves every other day
untouched.

responded = member has any availability record
refined   = member has a per-day record on a day inside the refinement set
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from services.api.scheduling.errors import InvalidRecord
from services.api.scheduling.ranking import rank_windows
from services.api.scheduling.types import (
    AvailabilityRecord,
    PerDaySubmission,
    RecordSource,
    WindowScore,
)
from services.api.scheduling.window_math import window_union


@dataclass(frozen=True)
class RefinementPlan:
    promising_windows: list[WindowScore]
    refinement_dates: list[date]

    @property
    def is_open(self) -> bool:
        return bool(self.refinement_dates)


def select_promising_windows(
    scores: Iterable[WindowScore],
    limit: int = 3,
    threshold_ratio: float = 0.5,
) -> list[WindowScore]:
    ranked = rank_windows(scores)
    if not ranked or limit <= 0:
        return []
    cutoff = ranked[0].score * threshold_ratio
    return [s for s in ranked if s.score >= cutoff][:limit]


def build_refinement_plan(
    scores: Iterable[WindowScore],
    limit: int = 3,
    threshold_ratio: float = 0.5,
) -> RefinementPlan:
    windows = select_promising_windows(scores, limit=limit, threshold_ratio=threshold_ratio)
    return RefinementPlan(
        promising_windows=windows,
        refinement_dates=window_union([w.window for w in windows]),
    )


def validate_refinement(submission: PerDaySubmission, plan: RefinementPlan) -> None:
    """Every day in a refinement pass must belong to the refinement set."""
    if not plan.is_open:
        raise InvalidRecord("No promising windows to refine yet")
    if not submission.days:
        raise InvalidRecord("Refinement must include at least one day")
    allowed = set(plan.refinement_dates)
    outside = sorted(d.day for d in submission.days if d.day not in allowed)
    if outside:
        raise InvalidRecord(
            f"Day {outside[0].isoformat()} is not part of the promising windows",
            days=[d.isoformat() for d in outside],
        )


def responded_users(records: Iterable[AvailabilityRecord], active_member_ids: Iterable[str]) -> set[str]:
    active = set(active_member_ids)
    return {r.user_id for r in records if r.user_id in active}


def refined_users(
    records: Iterable[AvailabilityRecord],
    refinement_dates: Iterable[date],
    active_member_ids: Iterable[str],
) -> set[str]:
    active = set(active_member_ids)
    dates = set(refinement_dates)
    return {
        r.user_id
        for r in records
        if r.user_id in active and r.source == RecordSource.DAY and r.day in dates
    }
