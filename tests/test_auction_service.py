"""Tests for auction creation, queries and administrative transitions."""

from datetime import timedelta
from uuid import uuid4

import pytest

from auction_house.core.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from auction_house.models import Auction, AuctionStatus, Reservation, Vehicle, VehicleStatus
from auction_house.services.auction_service import AuctionService
from auction_house.services.state_machine import TransitionFacts

from conftest import NOW


class TestCreateAuction:
    """Test the availability guard and input validation."""

    @pytest.mark.asyncio
    async def test_creates_scheduled_auction(self, db, clock, vehicle, session_maker):
        service = AuctionService(db, clock)

        auction = await service.create_auction(
            vehicle_id=vehicle.id,
            starting_price=5_000_000,
            start_time=NOW + timedelta(hours=1),
            end_time=NOW + timedelta(days=1),
        )

        assert auction.status == AuctionStatus.SCHEDULED.value
        assert auction.min_increment == 10_000
        assert auction.original_end_time == auction.end_time
        assert auction.version == 1

        trail = await service.get_audit_trail(auction.id)
        assert [entry.action for entry in trail] == ["auction_created"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "starting_price,min_increment,start_offset,end_offset",
        [
            (0, 10_000, 1, 2),
            (5_000_000, 0, 1, 2),
            (5_000_000, 10_000, 2, 1),
            (5_000_000, 10_000, -3, -1),
        ],
    )
    async def test_rejects_invalid_input(
        self, db, clock, vehicle, starting_price, min_increment, start_offset, end_offset
    ):
        with pytest.raises(ValidationError):
            await AuctionService(db, clock).create_auction(
                vehicle_id=vehicle.id,
                starting_price=starting_price,
                min_increment=min_increment,
                start_time=NOW + timedelta(hours=start_offset),
                end_time=NOW + timedelta(hours=end_offset),
            )

    @pytest.mark.asyncio
    async def test_unknown_vehicle(self, db, clock):
        with pytest.raises(NotFoundError):
            await AuctionService(db, clock).create_auction(
                uuid4(), 5_000_000, NOW, NOW + timedelta(hours=1)
            )

    @pytest.mark.asyncio
    async def test_vehicle_must_be_published(self, db, clock, session_maker):
        async with session_maker() as session:
            draft = Vehicle(title="Kia Rio 2018", status=VehicleStatus.DRAFT.value, created_at=NOW, updated_at=NOW)
            session.add(draft)
            await session.commit()

        with pytest.raises(StateConflictError):
            await AuctionService(db, clock).create_auction(
                draft.id, 5_000_000, NOW, NOW + timedelta(hours=1)
            )

    @pytest.mark.asyncio
    async def test_vehicle_with_open_auction(self, db, clock, vehicle, make_auction):
        await make_auction(status=AuctionStatus.SCHEDULED, start_time=NOW + timedelta(minutes=5))

        with pytest.raises(StateConflictError):
            await AuctionService(db, clock).create_auction(
                vehicle.id, 5_000_000, NOW, NOW + timedelta(hours=1)
            )

    @pytest.mark.asyncio
    async def test_vehicle_free_after_auction_ended(self, db, clock, vehicle, make_auction):
        await make_auction(
            status=AuctionStatus.ENDED_NO_BIDS,
            start_time=NOW - timedelta(hours=3),
            end_time=NOW - timedelta(hours=1),
        )

        auction = await AuctionService(db, clock).create_auction(
            vehicle.id, 4_500_000, NOW, NOW + timedelta(hours=1)
        )
        assert auction.status == AuctionStatus.SCHEDULED.value

    @pytest.mark.asyncio
    async def test_vehicle_with_active_reservation(self, db, clock, vehicle, session_maker):
        async with session_maker() as session:
            session.add(
                Reservation(
                    vehicle_id=vehicle.id,
                    customer_name="Ana Rojas",
                    customer_phone="+56911112222",
                    amount=500_000,
                    status="paid",
                    idempotency_key="direct_reservation_1",
                    created_at=NOW,
                    updated_at=NOW,
                )
            )
            await session.commit()

        with pytest.raises(StateConflictError):
            await AuctionService(db, clock).create_auction(
                vehicle.id, 5_000_000, NOW, NOW + timedelta(hours=1)
            )


class TestTransitions:
    """Test administrative start and cancel."""

    @pytest.mark.asyncio
    async def test_start_due_auction(self, db, clock, make_auction):
        auction = await make_auction(status=AuctionStatus.SCHEDULED)

        started = await AuctionService(db, clock).start_auction(auction.id)

        assert started.status == AuctionStatus.ACTIVE.value
        assert started.version == 2

    @pytest.mark.asyncio
    async def test_start_before_start_time(self, db, clock, make_auction, fetch):
        auction = await make_auction(
            status=AuctionStatus.SCHEDULED, start_time=NOW + timedelta(minutes=10)
        )

        with pytest.raises(StateConflictError):
            await AuctionService(db, clock).start_auction(auction.id)
        assert (await fetch(Auction, auction.id)).status == AuctionStatus.SCHEDULED.value

    @pytest.mark.asyncio
    async def test_repeated_start_is_illegal(self, db, clock, make_auction):
        auction = await make_auction(status=AuctionStatus.SCHEDULED)
        service = AuctionService(db, clock)
        await service.start_auction(auction.id)

        with pytest.raises(StateConflictError) as exc_info:
            await service.start_auction(auction.id)
        assert "active -> active" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_cancel_active_auction(self, db, clock, make_auction, fetch, vehicle):
        auction = await make_auction()
        service = AuctionService(db, clock)

        cancelled = await service.cancel_auction(auction.id)

        assert cancelled.status == AuctionStatus.CANCELLED.value
        assert cancelled.vehicle_sync_pending is False
        assert (await fetch(Vehicle, vehicle.id)).status == VehicleStatus.PUBLISHED.value
        with pytest.raises(StateConflictError):
            await service.cancel_auction(auction.id)

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, db, clock, make_auction, session_maker):
        """A status write based on an outdated read never overwrites the newer row."""
        auction = await make_auction(status=AuctionStatus.SCHEDULED)
        async with session_maker() as other:
            await AuctionService(other, clock).cancel_auction(auction.id)

        with pytest.raises(ConcurrencyConflictError):
            await AuctionService(db, clock).apply_transition(
                auction, AuctionStatus.ACTIVE, NOW, TransitionFacts(start_time=auction.start_time)
            )


class TestQueries:
    """Test listing and detail reads."""

    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, db, clock, make_auction):
        await make_auction()
        await make_auction()
        await make_auction(status=AuctionStatus.SCHEDULED)
        service = AuctionService(db, clock)

        active, total = await service.list_auctions(status=AuctionStatus.ACTIVE)
        everything, overall = await service.list_auctions()

        assert total == 2
        assert all(a.status == AuctionStatus.ACTIVE.value for a in active)
        assert overall == 3
        assert len(everything) == 3

    @pytest.mark.asyncio
    async def test_detail_reports_next_minimum(self, db, clock, make_auction, add_bid):
        auction = await make_auction()
        await add_bid(auction, 5_000_000)
        await add_bid(auction, 5_030_000)

        detail = await AuctionService(db, clock).get_detail(auction.id)

        assert detail.min_next_bid == 5_040_000
        assert [b.amount for b in detail.bids] == [5_030_000, 5_000_000]

    @pytest.mark.asyncio
    async def test_detail_of_unknown_auction(self, db, clock):
        with pytest.raises(NotFoundError):
            await AuctionService(db, clock).get_detail(uuid4())
