"""
SQLAlchemy DeclarativeBase models -- mirrors of the tables the scheduling
service reads and writes.

Column names use camelCase to match the actual PostgreSQL column names
(the web app's schema owns the naming).

IMPORTANT: These models are NOT used for migrations. The web app's migration
tool owns the DDL; SA only reads and writes rows.
"""

import uuid as _uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Date, DateTime, Enum, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# PostgreSQL enum types -- declared here so SA knows to cast properly.
# create_type=False: the migration tool owns the DDL, SA just reads.
TripStatusEnum = Enum(
    "proposed", "scheduling", "voting", "locked", "completed", "canceled",
    name="TripStatus", create_type=False,
)
TripTypeEnum = Enum("collaborative", "hosted", name="TripType", create_type=False)
SchedulingModeEnum = Enum("legacy", "top3_heatmap", name="SchedulingMode", create_type=False)
AvailabilityStatusEnum = Enum("available", "maybe", "unavailable", name="AvailabilityStatus", create_type=False)
AvailabilitySourceEnum = Enum("day", "week", "broad", name="AvailabilitySource", create_type=False)
MemberStatusEnum = Enum("invited", "joined", "left", name="MemberStatus", create_type=False)
MemberRoleEnum = Enum("owner", "member", name="MemberRole", create_type=False)


class Base(DeclarativeBase):
    pass


class Circle(Base):
    __tablename__ = "circles"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    ownerId: Mapped[str] = mapped_column(String)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Trip(Base):
    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    circleId: Mapped[str] = mapped_column(String)
    createdBy: Mapped[str] = mapped_column(String)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    type: Mapped[str] = mapped_column(TripTypeEnum, default="collaborative")
    # Older rows predate these columns; TripSnapshot fills the defaults.
    schedulingMode: Mapped[Optional[str]] = mapped_column(SchedulingModeEnum, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(TripStatusEnum, nullable=True)
    # Planning window bounds (inclusive).
    startDate: Mapped[date] = mapped_column(Date)
    endDate: Mapped[date] = mapped_column(Date)
    tripLengthDays: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    lockedStartDate: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    lockedEndDate: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    canceledBy: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    canceledAt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TripMember(Base):
    __tablename__ = "trip_members"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    tripId: Mapped[str] = mapped_column(String)
    userId: Mapped[str] = mapped_column(String)
    role: Mapped[str] = mapped_column(MemberRoleEnum, default="member")
    status: Mapped[str] = mapped_column(MemberStatusEnum)
    joinedAt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TripAvailability(Base):
    """One member's status for one day. Broad and weekly answers are stored expanded."""

    __tablename__ = "trip_availabilities"
    __table_args__ = (UniqueConstraint("tripId", "userId", "day"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    tripId: Mapped[str] = mapped_column(String)
    userId: Mapped[str] = mapped_column(String)
    day: Mapped[date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(AvailabilityStatusEnum)
    source: Mapped[str] = mapped_column(AvailabilitySourceEnum, default="day")
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TripDatePick(Base):
    """A member's ranked picks, stored as one row: [{rank, startDateISO}, ...]."""

    __tablename__ = "trip_date_picks"
    __table_args__ = (UniqueConstraint("tripId", "userId"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    tripId: Mapped[str] = mapped_column(String)
    userId: Mapped[str] = mapped_column(String)
    picks: Mapped[list] = mapped_column(JSON)
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TripVote(Base):
    __tablename__ = "trip_votes"
    __table_args__ = (UniqueConstraint("tripId", "userId"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    tripId: Mapped[str] = mapped_column(String)
    userId: Mapped[str] = mapped_column(String)
    optionKey: Mapped[str] = mapped_column(String)
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
