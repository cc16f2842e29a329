"""Tests for atomic bid placement.

Tests verify:
1. Minimum-bid scenario and typed rejections
2. Anti-sniping extension applied in the same write
3. Concurrent bidders never both win against the same predecessor
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import Update, func, select

from auction_house.core.clock import FrozenClock
from auction_house.core.errors import BidErrorCode, BidRejected, ConcurrencyConflictError
from auction_house.models import Auction, AuctionStatus, AuditLog, Bid
from auction_house.services.bid_service import BidRequest, BidService, _CompareAndSwapLost
from auction_house.services.rate_limiter import RateLimiter

from conftest import NOW


def request_for(auction, amount, **kwargs) -> BidRequest:
    return BidRequest(
        auction_id=auction.id,
        bidder_name=kwargs.pop("bidder_name", "Ana Rojas"),
        bidder_phone=kwargs.pop("bidder_phone", "+56911112222"),
        amount=amount,
        ip=kwargs.pop("ip", "10.0.0.1"),
        **kwargs,
    )


async def bid_rows(session_maker, auction_id) -> list[Bid]:
    async with session_maker() as session:
        result = await session.execute(
            select(Bid).where(Bid.auction_id == auction_id).order_by(Bid.amount)
        )
        return list(result.scalars().all())


class TestPlaceBid:
    """Test single-bidder placement."""

    @pytest.mark.asyncio
    async def test_minimum_bid_scenario(self, db, clock, rate_limiter, make_auction, fetch):
        """5,000,000 accepted; 5,005,000 rejected with min 5,010,000; 5,010,000 accepted."""
        auction = await make_auction(starting_price=5_000_000, min_increment=10_000)
        service = BidService(db, clock, rate_limiter)

        first = await service.place_bid(request_for(auction, 5_000_000))
        assert first.bid.amount == 5_000_000

        with pytest.raises(BidRejected) as exc_info:
            await service.place_bid(request_for(auction, 5_005_000))
        assert exc_info.value.error_code is BidErrorCode.INVALID_AMOUNT
        assert exc_info.value.min_amount == 5_010_000

        third = await service.place_bid(request_for(auction, 5_010_000))
        assert third.bid.amount == 5_010_000

        stored = await fetch(Auction, auction.id)
        assert stored.highest_bid_amount == 5_010_000
        assert stored.highest_bid_id == third.bid.id
        assert stored.version == 3

    @pytest.mark.asyncio
    async def test_unknown_auction(self, db, clock, rate_limiter):
        service = BidService(db, clock, rate_limiter)
        with pytest.raises(BidRejected) as exc_info:
            await service.place_bid(
                BidRequest(uuid4(), "Ana", "+56911112222", 1_000_000, ip="10.0.0.1")
            )
        assert exc_info.value.error_code is BidErrorCode.AUCTION_NOT_FOUND
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_scheduled_auction_not_active(self, db, clock, rate_limiter, make_auction):
        auction = await make_auction(status=AuctionStatus.SCHEDULED)
        service = BidService(db, clock, rate_limiter)

        with pytest.raises(BidRejected) as exc_info:
            await service.place_bid(request_for(auction, 5_000_000))
        assert exc_info.value.error_code is BidErrorCode.AUCTION_NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_bid_after_end_rejected(self, db, clock, rate_limiter, make_auction, session_maker):
        """A bid after end_time is rejected and leaves no bid row."""
        auction = await make_auction(end_time=NOW - timedelta(seconds=1))
        service = BidService(db, clock, rate_limiter)

        with pytest.raises(BidRejected) as exc_info:
            await service.place_bid(request_for(auction, 50_000_000))

        assert exc_info.value.error_code is BidErrorCode.ENDED
        assert await bid_rows(session_maker, auction.id) == []

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, db, clock, rate_limiter, make_auction):
        auction = await make_auction()
        service = BidService(db, clock, rate_limiter)
        with pytest.raises(BidRejected) as exc_info:
            await service.place_bid(request_for(auction, 0))
        assert exc_info.value.error_code is BidErrorCode.INVALID_AMOUNT

    @pytest.mark.asyncio
    async def test_rejection_is_audited(self, db, clock, rate_limiter, make_auction, session_maker):
        auction = await make_auction()
        service = BidService(db, clock, rate_limiter)

        with pytest.raises(BidRejected):
            await service.place_bid(request_for(auction, 1_000))

        async with session_maker() as session:
            actions = (
                await session.execute(
                    select(AuditLog.action, AuditLog.new_value).where(AuditLog.entity_id == auction.id)
                )
            ).all()
        assert [a for a, _ in actions] == ["bid_rejected"]
        assert actions[0][1]["reason"] == "invalid_amount"
        assert actions[0][1]["min_amount"] == 5_000_000

    @pytest.mark.asyncio
    async def test_rate_limited_before_auction_logic(self, db, clock, mock_redis, make_auction, session_maker):
        """A rate-limited request never touches the auction, even for a missing one."""
        mock_script = AsyncMock(return_value=99)
        mock_redis.register_script = MagicMock(return_value=mock_script)
        service = BidService(db, clock, RateLimiter(mock_redis))

        with pytest.raises(BidRejected) as exc_info:
            await service.place_bid(BidRequest(uuid4(), "Ana", "+56911112222", 1, ip="10.0.0.1"))

        error = exc_info.value
        assert error.error_code is BidErrorCode.RATE_LIMITED
        assert error.status_code == 429
        assert error.reset_at == NOW + timedelta(minutes=1)
        assert "ip_rate_limit" in error.reasons


class TestAntiSniping:
    """Test end-time extension during placement."""

    @pytest.mark.asyncio
    async def test_bid_in_last_minutes_extends(self, db, clock, rate_limiter, make_auction, fetch, session_maker):
        auction = await make_auction(end_time=NOW + timedelta(seconds=30))
        service = BidService(db, clock, rate_limiter)

        placement = await service.place_bid(request_for(auction, 5_000_000))

        assert placement.anti_sniping_extended
        assert placement.new_end_time == NOW + timedelta(minutes=2)
        stored = await fetch(Auction, auction.id)
        assert stored.end_time == NOW + timedelta(minutes=2)
        assert stored.original_end_time == NOW + timedelta(seconds=30)

        async with session_maker() as session:
            actions = (
                await session.execute(select(AuditLog.action).where(AuditLog.entity_id == auction.id))
            ).scalars().all()
        assert sorted(actions) == ["anti_sniping_extend", "bid_placed"]

    @pytest.mark.asyncio
    async def test_early_bid_does_not_extend(self, db, clock, rate_limiter, make_auction, fetch):
        auction = await make_auction(end_time=NOW + timedelta(minutes=30))
        service = BidService(db, clock, rate_limiter)

        placement = await service.place_bid(request_for(auction, 5_000_000))

        assert not placement.anti_sniping_extended
        assert (await fetch(Auction, auction.id)).end_time == NOW + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_extension_capped_past_original_end(self, db, rate_limiter, make_auction, fetch):
        """Extensions stop ten minutes past the scheduled end."""
        original_end = NOW + timedelta(seconds=30)
        auction = await make_auction(end_time=original_end)
        clock = FrozenClock(NOW)
        service = BidService(db, clock, rate_limiter)

        amount = 5_000_000
        for _ in range(12):
            stored = await fetch(Auction, auction.id)
            clock.set(stored.end_time - timedelta(seconds=5))
            await service.place_bid(request_for(auction, amount))
            amount += 10_000

        stored = await fetch(Auction, auction.id)
        assert stored.end_time == original_end + timedelta(minutes=10)


class TestConcurrentBids:
    """Test compare-and-swap under concurrent bidders."""

    @pytest.mark.asyncio
    async def test_reverse_order_bids_keep_highest(self, session_maker, clock, rate_limiter, make_auction, fetch):
        """5,010,000 and 5,020,000 submitted together; the higher one ends as highest."""
        auction = await make_auction()

        async def place(amount):
            async with session_maker() as session:
                service = BidService(session, clock, rate_limiter)
                try:
                    return await service.place_bid(request_for(auction, amount))
                except BidRejected as e:
                    return e

        results = await asyncio.gather(place(5_020_000), place(5_010_000))

        stored = await fetch(Auction, auction.id)
        assert stored.highest_bid_amount == 5_020_000
        accepted = [r for r in results if not isinstance(r, BidRejected)]
        rows = await bid_rows(session_maker, auction.id)
        assert sorted(b.amount for b in rows) == sorted(r.bid.amount for r in accepted)
        assert 5_020_000 in [b.amount for b in rows]

    @pytest.mark.asyncio
    async def test_same_amount_only_one_wins(self, session_maker, clock, rate_limiter, make_auction, add_bid, fetch):
        """Two bids of the same amount against the same predecessor: exactly one lands."""
        auction = await make_auction()
        await add_bid(auction, 5_000_000)

        async def place(name):
            async with session_maker() as session:
                service = BidService(session, clock, rate_limiter)
                try:
                    return await service.place_bid(
                        request_for(auction, 5_010_000, bidder_name=name)
                    )
                except BidRejected as e:
                    return e

        results = await asyncio.gather(place("Ana"), place("Luis"))

        rejected = [r for r in results if isinstance(r, BidRejected)]
        assert len(rejected) == 1
        assert rejected[0].error_code is BidErrorCode.INVALID_AMOUNT
        assert rejected[0].min_amount == 5_020_000
        assert len(await bid_rows(session_maker, auction.id)) == 2

    @pytest.mark.asyncio
    async def test_accepted_bids_strictly_increase(self, session_maker, clock, rate_limiter, make_auction, fetch):
        """Every accepted bid clears its predecessor by the increment."""
        auction = await make_auction()
        amounts = [5_000_000 + 10_000 * i for i in range(8)]

        async def place(amount):
            async with session_maker() as session:
                service = BidService(session, clock, rate_limiter, max_retries=10)
                try:
                    return await service.place_bid(request_for(auction, amount))
                except (BidRejected, ConcurrencyConflictError) as e:
                    return e

        await asyncio.gather(*(place(a) for a in reversed(amounts)))

        async with session_maker() as session:
            result = await session.execute(
                select(Bid.amount).where(Bid.auction_id == auction.id).order_by(Bid.created_at, Bid.amount)
            )
            accepted = list(result.scalars().all())
            count = (
                await session.execute(select(func.count()).select_from(Bid).where(Bid.auction_id == auction.id))
            ).scalar_one()

        stored = await fetch(Auction, auction.id)
        assert stored.highest_bid_amount == max(accepted)
        assert count == len(accepted)
        for lower, higher in zip(sorted(accepted), sorted(accepted)[1:]):
            assert higher - lower >= 10_000

    @pytest.mark.asyncio
    async def test_lost_swap_is_retried(self, db, clock, rate_limiter, make_auction, session_maker, fetch, monkeypatch):
        """A bid committed between read and conditional write forces a retry against fresh state."""
        auction = await make_auction()
        service = BidService(db, clock, rate_limiter)
        original_execute = db.execute
        raced = []

        async def racing_execute(statement, *args, **kwargs):
            if isinstance(statement, Update) and not raced:
                raced.append(True)
                async with session_maker() as other:
                    other_service = BidService(other, clock, rate_limiter)
                    await other_service.place_bid(request_for(auction, 5_000_000, bidder_name="Luis"))
            return await original_execute(statement, *args, **kwargs)

        monkeypatch.setattr(db, "execute", racing_execute)
        placement = await service.place_bid(request_for(auction, 5_050_000))

        assert raced == [True]
        assert placement.bid.amount == 5_050_000
        stored = await fetch(Auction, auction.id)
        assert stored.highest_bid_amount == 5_050_000
        assert stored.version == 3
        assert len(await bid_rows(session_maker, auction.id)) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, db, clock, rate_limiter, make_auction):
        auction = await make_auction()
        service = BidService(db, clock, rate_limiter, max_retries=2)
        attempts = []

        async def always_lost(request, now):
            attempts.append(now)
            raise _CompareAndSwapLost()

        service._attempt = always_lost
        with pytest.raises(ConcurrencyConflictError):
            await service.place_bid(request_for(auction, 5_000_000))
        assert len(attempts) == 2
