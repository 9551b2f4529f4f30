"""
Window math: pure date arithmetic over a bounded planning window.

A trip occupies `trip_length_days` consecutive days. A day d is a valid start
iff d + trip_length_days - 1 <= planning_window_end. Everything here is
stateless and deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from services.api.scheduling.errors import InvalidRange, InvalidRecord, InvalidWindow
from services.api.scheduling.types import DateWindow, TripSnapshot, parse_day


@dataclass(frozen=True)
class PlanningWindow:
    start: date
    end: date
    trip_length_days: int

    def __post_init__(self) -> None:
        if self.trip_length_days < 1:
            raise InvalidRange(
                f"tripLengthDays must be >= 1, got {self.trip_length_days}",
                tripLengthDays=self.trip_length_days,
            )
        if self.end < self.start:
            raise InvalidRange(
                f"Planning window end {self.end.isoformat()} is before start {self.start.isoformat()}",
                start=self.start.isoformat(),
                end=self.end.isoformat(),
            )

    @classmethod
    def for_trip(cls, trip: TripSnapshot) -> "PlanningWindow":
        return cls(
            start=trip.planning_window_start,
            end=trip.planning_window_end,
            trip_length_days=trip.trip_length_days,
        )

    # -- enumeration --------------------------------------------------------

    def days(self) -> list[date]:
        """Every calendar day in [start, end]."""
        span = (self.end - self.start).days
        return [self.start + timedelta(days=i) for i in range(span + 1)]

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def end_for_start(self, start: date) -> date:
        return start + timedelta(days=self.trip_length_days - 1)

    def is_valid_start(self, day: date) -> bool:
        return self.start <= day and self.end_for_start(day) <= self.end

    def valid_start_days(self) -> list[date]:
        """Start days whose full window fits. Empty when the trip is longer than the window."""
        last_start = self.end - timedelta(days=self.trip_length_days - 1)
        if last_start < self.start:
            return []
        span = (last_start - self.start).days
        return [self.start + timedelta(days=i) for i in range(span + 1)]

    def windows(self) -> list[DateWindow]:
        return [self.window_for(d) for d in self.valid_start_days()]

    def window_for(self, start: date) -> DateWindow:
        return DateWindow(start=start, end=self.end_for_start(start))

    # -- validation ---------------------------------------------------------

    def validate_start(self, start: date) -> DateWindow:
        """Return the window starting at `start` or raise InvalidWindow."""
        if not self.contains(start):
            raise InvalidWindow(
                f"Start date {start.isoformat()} is outside trip bounds "
                f"({self.start.isoformat()} to {self.end.isoformat()})",
                startDateISO=start.isoformat(),
            )
        window = self.window_for(start)
        if window.end > self.end:
            raise InvalidWindow(
                f"Window starting {start.isoformat()} ({self.trip_length_days} days) "
                f"extends beyond end bound {self.end.isoformat()}",
                startDateISO=start.isoformat(),
            )
        return window

    def validate_window(self, window: DateWindow) -> DateWindow:
        """Check an explicit [start, end] pair is exactly one valid trip window."""
        expected = self.validate_start(window.start)
        if window.end != expected.end:
            raise InvalidWindow(
                f"Window {window.option_key} must span exactly {self.trip_length_days} days",
                optionKey=window.option_key,
            )
        return expected


def parse_option_key(option_key: str) -> DateWindow:
    """Parse "YYYY-MM-DD_YYYY-MM-DD" into a DateWindow. Raises InvalidWindow."""
    if not isinstance(option_key, str) or option_key.count("_") != 1:
        raise InvalidWindow(f"Invalid option key {option_key!r}", optionKey=option_key)
    start_raw, end_raw = option_key.split("_")
    try:
        start, end = parse_day(start_raw), parse_day(end_raw)
    except InvalidRecord:
        raise InvalidWindow(f"Invalid option key {option_key!r}", optionKey=option_key)
    if end < start:
        raise InvalidWindow(f"Option key {option_key!r} ends before it starts", optionKey=option_key)
    return DateWindow(start=start, end=end)


def window_union(windows: list[DateWindow]) -> list[date]:
    """Sorted, de-duplicated days covered by any of the windows."""
    days: set[date] = set()
    for window in windows:
        days.update(window.days())
    return sorted(days)
