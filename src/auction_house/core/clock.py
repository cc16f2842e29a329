"""Authoritative time sources.

Every business decision (bid window, anti-sniping, settlement deadlines) reads
the time once per operation from a clock object handed to the service, never
from the client and never from ``datetime.now()`` at the call site. All values
are naive UTC, matching how timestamps are stored.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession


class Clock(Protocol):
    async def now(self) -> datetime: ...


def to_naive_utc(value: datetime | str) -> datetime:
    """Normalize a driver-returned timestamp to naive UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class DatabaseClock:
    """Reads ``now()`` from the datastore so every instance agrees on the time."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def now(self) -> datetime:
        result = await self.db.execute(select(func.now()))
        return to_naive_utc(result.scalar_one())


class FrozenClock:
    """Settable clock for tests and scripts."""

    def __init__(self, instant: datetime):
        self.instant = to_naive_utc(instant)

    async def now(self) -> datetime:
        return self.instant

    def set(self, instant: datetime) -> None:
        self.instant = to_naive_utc(instant)

    def advance(self, **delta: float) -> datetime:
        self.instant += timedelta(**delta)
        return self.instant
