"""
Aggregation engine -- turns member availability into a per-window score surface.

Submission shapes are normalized at the boundary:

  per-day   used directly
  weekly    each block expanded to one record per covered day
  broad     one status expanded to every day of the planning window

Within one submission per-day entries override weekly blocks, which override
the broad status. Every expanded record keeps a `source` tag so the refiner
can tell a deliberate per-day answer from a broad/weekly default.

Scoring, for each valid start day s with window W(s):

    totalScore(s) = sum over active responders u, sum over d in W(s) of weight(u, d)
    score(s)      = totalScore(s) / (tripLengthDays * activeMemberCount)

with weight available=1, maybe=0.5, unavailable=0. A member who has not
responded contributes nothing; no member can contribute below zero. The
denominator counts the whole active roster, so the score doubles as a [0, 1]
heatmap intensity.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from services.api.scheduling.errors import InvalidRecord
from services.api.scheduling.types import (
    STATUS_WEIGHTS,
    AvailabilityRecord,
    AvailabilityStatus,
    BroadSubmission,
    CombinedSubmission,
    PerDaySubmission,
    RecordSource,
    Submission,
    WeeklySubmission,
    WindowScore,
)
from services.api.scheduling.window_math import PlanningWindow

logger = logging.getLogger(__name__)

# Lower number wins when two records land on the same day.
_SOURCE_PRECEDENCE = {RecordSource.DAY: 0, RecordSource.WEEK: 1, RecordSource.BROAD: 2}

DayMap = dict[date, AvailabilityStatus]


# ---------------------------------------------------------------------------
# Submission -> per-day records
# ---------------------------------------------------------------------------

def _split(submission: Submission) -> CombinedSubmission:
    if isinstance(submission, CombinedSubmission):
        return submission
    if isinstance(submission, PerDaySubmission):
        return CombinedSubmission(per_day=submission)
    if isinstance(submission, WeeklySubmission):
        return CombinedSubmission(weekly=submission)
    if isinstance(submission, BroadSubmission):
        return CombinedSubmission(broad=submission)
    raise InvalidRecord(f"Unsupported submission type {type(submission).__name__}")


def expand_submission(
    user_id: str,
    submission: Submission,
    window: PlanningWindow,
) -> list[AvailabilityRecord]:
    """
    Validate a submission against the planning window and expand it to
    per-day records, sorted by day.

    Raises InvalidRecord for an empty submission, a day or block outside the
    planning window, an inverted block, or the same day listed twice.
    """
    parts = _split(submission)
    has_broad = parts.broad is not None
    has_weekly = parts.weekly is not None and len(parts.weekly.blocks) > 0
    has_per_day = parts.per_day is not None and len(parts.per_day.days) > 0
    if not (has_broad or has_weekly or has_per_day):
        raise InvalidRecord("Must provide availabilities, broadStatus, or weeklyBlocks")

    by_day: dict[date, AvailabilityRecord] = {}

    if has_broad:
        for day in window.days():
            by_day[day] = AvailabilityRecord(user_id, day, parts.broad.status, RecordSource.BROAD)

    if has_weekly:
        for block in parts.weekly.blocks:
            if block.start > block.end:
                raise InvalidRecord(
                    f"Weekly block startDate ({block.start.isoformat()}) must be <= endDate ({block.end.isoformat()})"
                )
            if not (window.contains(block.start) and window.contains(block.end)):
                raise InvalidRecord(
                    f"Weekly block dates ({block.start.isoformat()} to {block.end.isoformat()}) must be within "
                    f"trip range ({window.start.isoformat()} to {window.end.isoformat()})"
                )
            for day in PlanningWindow(block.start, block.end, 1).days():
                by_day[day] = AvailabilityRecord(user_id, day, block.status, RecordSource.WEEK)

    if has_per_day:
        seen: set[date] = set()
        for entry in parts.per_day.days:
            if not window.contains(entry.day):
                raise InvalidRecord(
                    f"Day {entry.day.isoformat()} is outside trip date range "
                    f"({window.start.isoformat()} to {window.end.isoformat()})"
                )
            if entry.day in seen:
                raise InvalidRecord(f"Day {entry.day.isoformat()} listed more than once")
            seen.add(entry.day)
            by_day[entry.day] = AvailabilityRecord(user_id, entry.day, entry.status, RecordSource.DAY)

    return [by_day[d] for d in sorted(by_day)]


# ---------------------------------------------------------------------------
# Records -> per-user day maps
# ---------------------------------------------------------------------------

def build_day_maps(
    records: Iterable[AvailabilityRecord],
    active_member_ids: Iterable[str] | None = None,
) -> dict[str, DayMap]:
    """
    Group records into {userId: {day: status}}.

    Records from users outside `active_member_ids` (when given) are dropped.
    If a store ever returns two records for the same user and day, the more
    specific source wins.
    """
    active = set(active_member_ids) if active_member_ids is not None else None
    chosen: dict[tuple[str, date], AvailabilityRecord] = {}
    for rec in records:
        if active is not None and rec.user_id not in active:
            continue
        key = (rec.user_id, rec.day)
        current = chosen.get(key)
        if current is None or _SOURCE_PRECEDENCE[rec.source] <= _SOURCE_PRECEDENCE[current.source]:
            chosen[key] = rec

    day_maps: dict[str, DayMap] = {}
    for (user_id, day), rec in sorted(chosen.items()):
        day_maps.setdefault(user_id, {})[day] = rec.status
    return day_maps


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def score_windows(
    day_maps: dict[str, DayMap],
    window: PlanningWindow,
    active_member_count: int,
) -> list[WindowScore]:
    """
    Score every valid start day, in chronological order.

    Returns an empty list when nobody active has responded. With an empty
    roster the denominator falls back to the number of responders so scores
    stay finite.
    """
    if not day_maps:
        return []

    denominator_members = active_member_count if active_member_count > 0 else len(day_maps)
    denominator = window.trip_length_days * denominator_members

    # Per-day weight sum and responder presence, computed once.
    day_weight: dict[date, float] = {}
    day_has_response: set[date] = set()
    for statuses in day_maps.values():
        for day, status in statuses.items():
            day_weight[day] = day_weight.get(day, 0.0) + STATUS_WEIGHTS[status]
            day_has_response.add(day)

    scores: list[WindowScore] = []
    for trip_window in window.windows():
        days = trip_window.days()
        total = sum(day_weight.get(d, 0.0) for d in days)
        covered = sum(1 for d in days if d in day_has_response)
        scores.append(
            WindowScore(
                window=trip_window,
                score=total / denominator,
                total_score=total,
                coverage=covered / window.trip_length_days,
            )
        )

    logger.debug(
        "score_windows responders=%d active=%d windows=%d",
        len(day_maps),
        active_member_count,
        len(scores),
    )
    return scores


def day_heatmap(
    day_maps: dict[str, DayMap],
    window: PlanningWindow,
    active_member_count: int,
) -> dict[str, dict[str, float]]:
    """
    Per-day counts and intensity for every day of the planning window.

    intensity = (available + 0.5 * maybe) / activeMemberCount, in [0, 1].
    """
    counts: dict[date, dict[AvailabilityStatus, int]] = {
        d: {s: 0 for s in AvailabilityStatus} for d in window.days()
    }
    for statuses in day_maps.values():
        for day, status in statuses.items():
            if day in counts:
                counts[day][status] += 1

    members = active_member_count if active_member_count > 0 else max(len(day_maps), 1)
    heatmap: dict[str, dict[str, float]] = {}
    for day, c in counts.items():
        weighted = sum(STATUS_WEIGHTS[s] * n for s, n in c.items())
        heatmap[day.isoformat()] = {
            "available": c[AvailabilityStatus.AVAILABLE],
            "maybe": c[AvailabilityStatus.MAYBE],
            "unavailable": c[AvailabilityStatus.UNAVAILABLE],
            "intensity": round(weighted / members, 4),
        }
    return heatmap
