"""
Trip date scheduling.

Endpoints:
  GET  /trips/{id}/schedule      -- recomputed schedule view (candidates, heatmap, counts)
  POST /trips/{id}/availability  -- broad / weekly / per-day availability (legacy mode)
  POST /trips/{id}/refinement    -- per-day pass over the promising windows (legacy mode)
  POST /trips/{id}/date-picks    -- ranked love / can / might start dates (top3_heatmap mode)
  POST /trips/{id}/vote          -- vote for a window while voting is open (legacy mode)
  POST /trips/{id}/open-voting   -- scheduling -> voting (leader only)
  POST /trips/{id}/lock          -- lock the trip to a window (leader only)
  POST /trips/{id}/cancel        -- cancel the trip (leader only)
  POST /trips/{id}/complete      -- locked -> completed after the end date (leader or scheduler)

Auth: X-User-Id header is set by the Next.js layer after session validation.
The completion scheduler authenticates with X-Scheduler-Key instead.
Engine errors keep their machine code in the error envelope; state errors
(409) mean the client's view is stale and should be refreshed.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from services.api.config import settings
from services.api.db.session import get_db
from services.api.db.store import SAMembershipProvider, SAStoreAdapter
from services.api.scheduling.engine import SchedulingEngine
from services.api.scheduling.errors import InvalidWindow, SchedulingError
from services.api.scheduling.types import (
    BroadSubmission,
    CombinedSubmission,
    DatePick,
    DayStatus,
    PerDaySubmission,
    WeekBlock,
    WeeklySubmission,
    parse_day,
    parse_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trips", tags=["scheduling"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_engine(session: AsyncSession = Depends(get_db)) -> SchedulingEngine:
    """One engine per request, bound to the request's SA session."""
    return SchedulingEngine(SAStoreAdapter(session), SAMembershipProvider(session))


def is_system_caller(x_scheduler_key: Optional[str] = Header(None, alias="X-Scheduler-Key")) -> bool:
    """True when the request carries the completion scheduler's shared key."""
    if not settings.scheduler_api_key or not x_scheduler_key:
        return False
    return hmac.compare_digest(x_scheduler_key.encode(), settings.scheduler_api_key.encode())


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


def _http_error(exc: SchedulingError, request_id: str) -> HTTPException:
    return HTTPException(
        status_code=exc.http_status,
        detail={"success": False, "error": exc.to_dict(), "requestId": request_id},
    )


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class DayStatusIn(BaseModel):
    day: str
    status: str


class WeekBlockIn(BaseModel):
    startDate: str
    endDate: str
    status: str


class AvailabilityRequest(BaseModel):
    availabilities: list[DayStatusIn] = Field(default_factory=list)
    broadStatus: Optional[str] = None
    weeklyBlocks: list[WeekBlockIn] = Field(default_factory=list)

    def to_submission(self) -> CombinedSubmission:
        return CombinedSubmission(
            broad=BroadSubmission(parse_status(self.broadStatus)) if self.broadStatus else None,
            weekly=WeeklySubmission(tuple(
                WeekBlock(parse_day(b.startDate), parse_day(b.endDate), parse_status(b.status))
                for b in self.weeklyBlocks
            )) if self.weeklyBlocks else None,
            per_day=_per_day(self.availabilities) if self.availabilities else None,
        )


class RefinementRequest(BaseModel):
    availabilities: list[DayStatusIn]


class DatePicksRequest(BaseModel):
    picks: list[dict[str, Any]] = Field(default_factory=list)


class VoteRequest(BaseModel):
    optionKey: str


class LockRequest(BaseModel):
    startDateISO: Optional[str] = None
    optionKey: Optional[str] = None


class ScheduleResponse(BaseModel):
    success: bool
    data: dict
    requestId: str


def _per_day(entries: list[DayStatusIn]) -> PerDaySubmission:
    return PerDaySubmission(tuple(
        DayStatus(parse_day(e.day), parse_status(e.status)) for e in entries
    ))


def _ok(data: dict, request_id: str) -> ScheduleResponse:
    return ScheduleResponse(success=True, data=data, requestId=request_id)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

@router.get("/{trip_id}/schedule", response_model=ScheduleResponse)
async def get_schedule(
    trip_id: str,
    request: Request,
    engine: SchedulingEngine = Depends(get_engine),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> ScheduleResponse:
    request_id = _request_id(request)
    try:
        view = await engine.get_schedule_view(trip_id, viewer_id=x_user_id)
    except SchedulingError as exc:
        raise _http_error(exc, request_id)
    return _ok(view.to_dict(), request_id)


# ---------------------------------------------------------------------------
# Member writes
# ---------------------------------------------------------------------------

@router.post("/{trip_id}/availability", response_model=ScheduleResponse)
async def submit_availability(
    trip_id: str,
    body: AvailabilityRequest,
    request: Request,
    engine: SchedulingEngine = Depends(get_engine),
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> ScheduleResponse:
    request_id = _request_id(request)
    try:
        written = await engine.submit_availability(trip_id, x_user_id, body.to_submission())
    except SchedulingError as exc:
        raise _http_error(exc, request_id)
    return _ok({"tripId": trip_id, "userId": x_user_id, "daysWritten": written}, request_id)


@router.post("/{trip_id}/refinement", response_model=ScheduleResponse)
async def submit_refinement(
    trip_id: str,
    body: RefinementRequest,
    request: Request,
    engine: SchedulingEngine = Depends(get_engine),
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> ScheduleResponse:
    request_id = _request_id(request)
    try:
        written = await engine.submit_refinement(trip_id, x_user_id, _per_day(body.availabilities))
    except SchedulingError as exc:
        raise _http_error(exc, request_id)
    return _ok({"tripId": trip_id, "userId": x_user_id, "daysWritten": written}, request_id)


@router.post("/{trip_id}/date-picks", response_model=ScheduleResponse)
async def submit_date_picks(
    trip_id: str,
    body: DatePicksRequest,
    request: Request,
    engine: SchedulingEngine = Depends(get_engine),
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> ScheduleResponse:
    request_id = _request_id(request)
    try:
        picks = [DatePick.from_dict(p) for p in body.picks]
        await engine.submit_date_picks(trip_id, x_user_id, picks)
    except SchedulingError as exc:
        raise _http_error(exc, request_id)
    return _ok(
        {"tripId": trip_id, "userId": x_user_id, "picks": [p.to_dict() for p in picks]},
        request_id,
    )


@router.post("/{trip_id}/vote", response_model=ScheduleResponse)
async def submit_vote(
    trip_id: str,
    body: VoteRequest,
    request: Request,
    engine: SchedulingEngine = Depends(get_engine),
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> ScheduleResponse:
    request_id = _request_id(request)
    try:
        option_key = await engine.submit_vote(trip_id, x_user_id, body.optionKey)
    except SchedulingError as exc:
        raise _http_error(exc, request_id)
    return _ok({"tripId": trip_id, "userId": x_user_id, "optionKey": option_key}, request_id)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

@router.post("/{trip_id}/open-voting", response_model=ScheduleResponse)
async def open_voting(
    trip_id: str,
    request: Request,
    engine: SchedulingEngine = Depends(get_engine),
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> ScheduleResponse:
    request_id = _request_id(request)
    try:
        status = await engine.open_voting(trip_id, x_user_id)
    except SchedulingError as exc:
        raise _http_error(exc, request_id)
    return _ok({"tripId": trip_id, "status": status.value}, request_id)


@router.post("/{trip_id}/lock", response_model=ScheduleResponse)
async def lock_trip(
    trip_id: str,
    body: LockRequest,
    request: Request,
    engine: SchedulingEngine = Depends(get_engine),
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> ScheduleResponse:
    request_id = _request_id(request)
    chosen = body.startDateISO or body.optionKey
    try:
        if not chosen:
            raise InvalidWindow("Must provide startDateISO or optionKey")
        start, end = await engine.lock(trip_id, x_user_id, chosen)
    except SchedulingError as exc:
        raise _http_error(exc, request_id)
    return _ok(
        {
            "tripId": trip_id,
            "status": "locked",
            "lockedStartDate": start.isoformat(),
            "lockedEndDate": end.isoformat(),
        },
        request_id,
    )


@router.post("/{trip_id}/cancel", response_model=ScheduleResponse)
async def cancel_trip(
    trip_id: str,
    request: Request,
    engine: SchedulingEngine = Depends(get_engine),
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> ScheduleResponse:
    request_id = _request_id(request)
    try:
        status = await engine.cancel(trip_id, x_user_id)
    except SchedulingError as exc:
        raise _http_error(exc, request_id)
    return _ok({"tripId": trip_id, "status": status.value, "canceledBy": x_user_id}, request_id)


@router.post("/{trip_id}/complete", response_model=ScheduleResponse)
async def complete_trip(
    trip_id: str,
    request: Request,
    engine: SchedulingEngine = Depends(get_engine),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    system: bool = Depends(is_system_caller),
) -> ScheduleResponse:
    request_id = _request_id(request)
    try:
        status = await engine.complete(trip_id, x_user_id, system=system)
    except SchedulingError as exc:
        raise _http_error(exc, request_id)
    return _ok({"tripId": trip_id, "status": status.value}, request_id)
