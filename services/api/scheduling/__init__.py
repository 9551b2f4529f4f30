# scheduling package -- date-consensus engine, state machine, lock coordinator
from services.api.scheduling.engine import EngineConfig, SchedulingEngine
from services.api.scheduling.errors import (
    AlreadyLocked,
    DuplicateRank,
    InvalidRange,
    InvalidRecord,
    InvalidTransition,
    InvalidWindow,
    NotLeader,
    NotMember,
    SchedulingError,
    TripCanceled,
    TripLocked,
    TripNotFound,
)
from services.api.scheduling.lock import LockCoordinator
from services.api.scheduling.store import InMemoryStore, MembershipProvider, StoreAdapter
from services.api.scheduling.types import (
    AvailabilityStatus,
    BroadSubmission,
    CombinedSubmission,
    DatePick,
    DateWindow,
    DayStatus,
    PerDaySubmission,
    ScheduleView,
    SchedulingMode,
    TripSnapshot,
    TripStatus,
    WeekBlock,
    WeeklySubmission,
)
from services.api.scheduling.window_math import PlanningWindow

__all__ = [
    "SchedulingEngine",
    "EngineConfig",
    "LockCoordinator",
    "StoreAdapter",
    "MembershipProvider",
    "InMemoryStore",
    "PlanningWindow",
    "SchedulingError",
    "InvalidRange",
    "InvalidRecord",
    "InvalidWindow",
    "DuplicateRank",
    "NotLeader",
    "NotMember",
    "TripLocked",
    "TripCanceled",
    "InvalidTransition",
    "AlreadyLocked",
    "TripNotFound",
    "TripSnapshot",
    "TripStatus",
    "SchedulingMode",
    "AvailabilityStatus",
    "DateWindow",
    "DayStatus",
    "WeekBlock",
    "PerDaySubmission",
    "BroadSubmission",
    "WeeklySubmission",
    "CombinedSubmission",
    "DatePick",
    "ScheduleView",
]
