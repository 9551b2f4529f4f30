"""
SQLAlchemy async database module.

Re-exports engine, session, model and store utilities for the FastAPI service.
"""

from services.api.db.engine import create_engine
from services.api.db.session import get_db
from services.api.db.models import (
    Base,
    Circle,
    Trip,
    TripMember,
    TripAvailability,
    TripDatePick,
    TripVote,
)

__all__ = [
    "create_engine",
    "get_db",
    "Base",
    "Circle",
    "Trip",
    "TripMember",
    "TripAvailability",
    "TripDatePick",
    "TripVote",
]
