"""Seed data script for local development.

Creates:
- 3 published vehicles
- 1 scheduled auction starting in AUCTION_START_MINUTES
- 1 active auction ending in AUCTION_DURATION_MINUTES

Environment Variables:
    AUCTION_DURATION_MINUTES: Active auction duration in minutes (default: 20)
    AUCTION_START_MINUTES: Minutes until the scheduled auction starts (default: 60)

Usage:
    python -m scripts.seed_data
"""

import asyncio
import os
from datetime import timedelta

from auction_house.core.clock import DatabaseClock
from auction_house.core.database import Base, async_session_maker, engine
from auction_house.models import AuctionStatus, Vehicle, VehicleStatus
from auction_house.services.auction_service import AuctionService

AUCTION_DURATION_MINUTES = int(os.getenv("AUCTION_DURATION_MINUTES", "20"))
AUCTION_START_MINUTES = int(os.getenv("AUCTION_START_MINUTES", "60"))

VEHICLES = [
    "Toyota Corolla 2019 1.8 XEI",
    "Mazda CX-5 2021 2.5 AWD",
    "Ford Ranger 2018 3.2 XLT",
]


async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as session:
        clock = DatabaseClock(session)
        now = await clock.now()

        vehicles = [
            Vehicle(title=title, status=VehicleStatus.PUBLISHED.value, created_at=now, updated_at=now)
            for title in VEHICLES
        ]
        session.add_all(vehicles)
        await session.commit()
        print(f"Created {len(vehicles)} published vehicles")

        service = AuctionService(session, clock)

        active = await service.create_auction(
            vehicle_id=vehicles[0].id,
            starting_price=5_000_000,
            start_time=now,
            end_time=now + timedelta(minutes=AUCTION_DURATION_MINUTES),
            min_increment=10_000,
        )
        active = await service.start_auction(active.id)
        print(f"Created {AuctionStatus.ACTIVE.value} auction {active.id} ending {active.end_time}")

        scheduled = await service.create_auction(
            vehicle_id=vehicles[1].id,
            starting_price=12_000_000,
            start_time=now + timedelta(minutes=AUCTION_START_MINUTES),
            end_time=now + timedelta(minutes=AUCTION_START_MINUTES + AUCTION_DURATION_MINUTES),
        )
        print(f"Created {AuctionStatus.SCHEDULED.value} auction {scheduled.id} starting {scheduled.start_time}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
