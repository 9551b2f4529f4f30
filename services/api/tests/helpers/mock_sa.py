"""
MockSASession -- queue-driven stand-in for an AsyncSession.

Each returns_* call queues the result of the next session.execute(), so a
store method that issues several statements is scripted in order.

Usage:
    session = MockSASession()
    session.returns_one(trip_row)            # next execute -> scalars().first()
    session.returns_many([rec1, rec2])       # next execute -> scalars().all()
    session.returns_none()                   # next execute -> first() / scalars().first() is None
    session.returns_row("t1")                # next execute -> .first() == ("t1",)  (UPDATE ... RETURNING)
    session.returns_rows([("u1",), ("u2",)]) # next execute -> .all()

Assert via:
    session.mock.execute.assert_called_once()
    session.mock.commit.assert_called_once()
    session.mock.rollback.assert_called_once()
"""

from __future__ import annotations

from collections import deque
from typing import Any
from unittest.mock import AsyncMock


class _ScalarsResult:
    def __init__(self, items: list[Any] | None, single: Any | None = None):
        self._items = items
        self._single = single

    def all(self) -> list[Any]:
        return self._items if self._items is not None else []

    def first(self) -> Any | None:
        if self._single is not None:
            return self._single
        if self._items:
            return self._items[0]
        return None


class _ExecuteResult:
    """What session.execute() hands back; an empty result by default."""

    def __init__(
        self,
        *,
        scalars_items: list[Any] | None = None,
        scalars_single: Any | None = None,
        row: tuple | None = None,
        rows: list[tuple] | None = None,
    ):
        self._scalars_items = scalars_items
        self._scalars_single = scalars_single
        self._row = row
        self._rows = rows

    def scalars(self) -> _ScalarsResult:
        return _ScalarsResult(self._scalars_items, self._scalars_single)

    def first(self) -> tuple | None:
        return self._row

    def all(self) -> list[tuple]:
        return self._rows if self._rows is not None else []


class MockSASession:
    def __init__(self) -> None:
        self._queue: deque[_ExecuteResult] = deque()
        self.mock = AsyncMock()
        self.mock.commit = AsyncMock()
        self.mock.rollback = AsyncMock()

        async def _execute(*args, **kwargs):
            if self._queue:
                return self._queue.popleft()
            return _ExecuteResult()

        self.mock.execute = AsyncMock(side_effect=_execute)

    def returns_one(self, obj: Any) -> MockSASession:
        self._queue.append(_ExecuteResult(scalars_single=obj))
        return self

    def returns_many(self, items: list[Any]) -> MockSASession:
        self._queue.append(_ExecuteResult(scalars_items=items))
        return self

    def returns_none(self) -> MockSASession:
        self._queue.append(_ExecuteResult())
        return self

    def returns_row(self, *values: Any) -> MockSASession:
        """Next execute() returns one row tuple via .first()."""
        self._queue.append(_ExecuteResult(row=values))
        return self

    def returns_rows(self, rows: list[tuple]) -> MockSASession:
        self._queue.append(_ExecuteResult(rows=rows))
        return self
