"""Pytest configuration and fixtures for testing.

Service and API tests run against a file-backed SQLite database so that
separate sessions behave like separate connections: concurrent writers
serialize on SQLite's write lock and a stale compare-and-swap really misses.
"""

from datetime import datetime, timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from auction_house.core.clock import FrozenClock
from auction_house.core.database import Base
from auction_house.models import Auction, AuctionStatus, Bid, Vehicle, VehicleStatus
from auction_house.services.rate_limiter import RateLimiter

NOW = datetime(2026, 3, 2, 15, 0, 0)


# Mock Redis client fixture
@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create a mock Redis client whose counter script always returns 1."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.incr = AsyncMock(return_value=1)
    redis.expire = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)

    mock_script = AsyncMock(return_value=1)
    redis.register_script = MagicMock(return_value=mock_script)
    return redis


@pytest.fixture
def rate_limiter(mock_redis: AsyncMock) -> RateLimiter:
    """Rate limiter that lets every request through."""
    return RateLimiter(mock_redis)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'auctions.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def vehicle(session_maker) -> Vehicle:
    """A published vehicle."""
    async with session_maker() as session:
        vehicle = Vehicle(
            title="Toyota Corolla 2019",
            status=VehicleStatus.PUBLISHED.value,
            created_at=NOW,
            updated_at=NOW,
        )
        session.add(vehicle)
        await session.commit()
        return vehicle


@pytest.fixture
def make_auction(session_maker, vehicle):
    """Factory inserting an auction row directly, bypassing the lifecycle."""

    async def _make(
        status: AuctionStatus = AuctionStatus.ACTIVE,
        starting_price: int = 5_000_000,
        min_increment: int = 10_000,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        vehicle_id=None,
        **extra,
    ) -> Auction:
        start_time = start_time or NOW - timedelta(hours=1)
        end_time = end_time or NOW + timedelta(hours=1)
        async with session_maker() as session:
            auction = Auction(
                vehicle_id=vehicle_id or vehicle.id,
                starting_price=starting_price,
                min_increment=min_increment,
                start_time=start_time,
                end_time=end_time,
                original_end_time=end_time,
                status=status.value,
                version=1,
                vehicle_sync_pending=False,
                created_at=NOW - timedelta(days=1),
                updated_at=NOW - timedelta(days=1),
                **extra,
            )
            session.add(auction)
            await session.commit()
            return auction

    return _make


@pytest.fixture
def add_bid(session_maker):
    """Factory inserting a bid row and updating the auction's highest-bid pointer."""

    async def _add(auction: Auction, amount: int, created_at: datetime | None = None, **extra) -> Bid:
        async with session_maker() as session:
            bid = Bid(
                auction_id=auction.id,
                bidder_name=extra.pop("bidder_name", "Ana Rojas"),
                bidder_phone=extra.pop("bidder_phone", "+56911112222"),
                amount=amount,
                is_winner=False,
                created_at=created_at or NOW - timedelta(minutes=30),
                **extra,
            )
            session.add(bid)
            row = await session.get(Auction, auction.id)
            if row.highest_bid_amount is None or amount > row.highest_bid_amount:
                await session.flush()
                row.highest_bid_amount = amount
                row.highest_bid_id = bid.id
                row.version = row.version + 1
                row.updated_at = NOW
            await session.commit()
            return bid

    return _add


@pytest.fixture
def fetch(session_maker):
    """Read a fresh copy of a row in a new session."""

    async def _fetch(model, key):
        async with session_maker() as session:
            return await session.get(model, key)

    return _fetch
