"""Atomic bid placement with anti-sniping extension.

Each attempt runs in one transaction:

1. ``SELECT ... FOR UPDATE`` on the auction row (serializes bidders on
   datastores with row locks)
2. Validate against that fresh state
3. Compare-and-swap UPDATE of the highest-bid pointer and end time, matched
   on the version that was read
4. Insert the bid row and its audit entries, then commit

If the compare-and-swap matches no row another bid committed in between; the
attempt is rolled back and retried from step 1 against the new state.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auction_house.core.clock import Clock
from auction_house.core.config import settings
from auction_house.core.errors import BidErrorCode, BidRejected, ConcurrencyConflictError
from auction_house.middleware.metrics import record_anti_sniping_extension, record_bid_outcome
from auction_house.models.auction import Auction
from auction_house.models.bid import Bid
from auction_house.models.status import AuctionStatus
from auction_house.services.anti_sniping import compute_extension
from auction_house.services.audit_service import AuditService
from auction_house.services.bid_validator import AuctionSnapshot, validate_bid
from auction_house.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BidRequest:
    auction_id: UUID
    bidder_name: str
    bidder_phone: str
    amount: int
    bidder_email: str | None = None
    user_id: UUID | None = None
    ip: str = "unknown"


@dataclass
class BidPlacement:
    """Result of an accepted bid."""

    bid: Bid
    auction: Auction
    min_amount: int
    anti_sniping_extended: bool
    new_end_time: datetime


class _CompareAndSwapLost(Exception):
    """The auction row changed between read and conditional write."""


class BidService:
    """Service class for placing bids."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        rate_limiter: RateLimiter,
        audit: AuditService | None = None,
        max_retries: int | None = None,
        sniping_window: timedelta | None = None,
        sniping_extension: timedelta | None = None,
        sniping_max_total: timedelta | None = None,
    ):
        """Initialize bid service.

        Args:
            db: SQLAlchemy async session
            clock: Authoritative time source
            rate_limiter: Fixed-window limiter checked before any auction logic
            audit: Audit service (defaults to one on ``db``)
            max_retries: Compare-and-swap attempts before giving up
            sniping_window: Time before the end in which bids extend the auction
            sniping_extension: Margin after ``now`` the end time moves to
            sniping_max_total: Cap on total extension past the original end
        """
        self.db = db
        self.clock = clock
        self.rate_limiter = rate_limiter
        self.audit = audit or AuditService(db)
        self.max_retries = max_retries or settings.BID_MAX_RETRIES
        self.sniping_window = sniping_window or timedelta(
            seconds=settings.ANTI_SNIPING_WINDOW_SECONDS
        )
        self.sniping_extension = sniping_extension or timedelta(
            seconds=settings.ANTI_SNIPING_EXTENSION_SECONDS
        )
        self.sniping_max_total = sniping_max_total or timedelta(
            seconds=settings.ANTI_SNIPING_MAX_EXTENSION_SECONDS
        )

    async def place_bid(self, request: BidRequest) -> BidPlacement:
        """Place a bid.

        Args:
            request: Bid request

        Returns:
            BidPlacement with the stored bid and the resulting end time

        Raises:
            BidRejected: Typed rejection (not found, not active, ended,
                invalid amount, rate limited, internal error)
            ConcurrencyConflictError: Every attempt lost its compare-and-swap
        """
        now = await self.clock.now()

        decision = await self.rate_limiter.check_bid(
            ip=request.ip, auction_id=request.auction_id, now=now, user_id=request.user_id
        )
        if not decision.allowed:
            record_bid_outcome(BidErrorCode.RATE_LIMITED.value)
            raise BidRejected(
                BidErrorCode.RATE_LIMITED,
                "Too many bids, retry after the reset time",
                reset_at=decision.reset_at,
                reasons=decision.reasons,
            )

        if request.amount <= 0:
            record_bid_outcome(BidErrorCode.INVALID_AMOUNT.value)
            raise BidRejected(BidErrorCode.INVALID_AMOUNT, "Amount must be greater than 0")

        for attempt in range(1, self.max_retries + 1):
            try:
                placement = await self._attempt(request, now)
            except _CompareAndSwapLost:
                await self.db.rollback()
                logger.info(
                    f"Bid on auction {request.auction_id} lost compare-and-swap "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                continue
            except BidRejected as e:
                await self.db.rollback()
                record_bid_outcome(e.code)
                if e.error_code is not BidErrorCode.AUCTION_NOT_FOUND:
                    await self._record_rejection(request, e, now)
                raise
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.exception(f"Bid on auction {request.auction_id} failed: {e}")
                record_bid_outcome(BidErrorCode.INTERNAL_ERROR.value)
                raise BidRejected(BidErrorCode.INTERNAL_ERROR, "Could not place bid") from e

            record_bid_outcome("accepted")
            if placement.anti_sniping_extended:
                record_anti_sniping_extension()
            return placement

        record_bid_outcome("concurrency_conflict")
        raise ConcurrencyConflictError(
            f"Auction {request.auction_id} is too contended, retry",
            auction_id=str(request.auction_id),
        )

    async def _attempt(self, request: BidRequest, now: datetime) -> BidPlacement:
        result = await self.db.execute(
            select(Auction)
            .where(Auction.id == request.auction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        auction = result.scalar_one_or_none()
        if auction is None:
            raise BidRejected(BidErrorCode.AUCTION_NOT_FOUND, "Auction not found")

        min_amount = validate_bid(
            AuctionSnapshot(
                status=auction.status,
                start_time=auction.start_time,
                end_time=auction.end_time,
                starting_price=auction.starting_price,
                min_increment=auction.min_increment,
                highest_bid=auction.highest_bid_amount,
            ),
            request.amount,
            now,
        )

        extension = compute_extension(
            now,
            auction.end_time,
            auction.original_end_time,
            self.sniping_window,
            self.sniping_extension,
            self.sniping_max_total,
        )
        previous_end = auction.end_time
        bid_id = uuid.uuid4()

        # Conditional write: only lands if nobody committed since our read
        swapped = await self.db.execute(
            update(Auction)
            .where(Auction.id == auction.id)
            .where(Auction.version == auction.version)
            .where(Auction.status == AuctionStatus.ACTIVE.value)
            .values(
                highest_bid_amount=request.amount,
                highest_bid_id=bid_id,
                end_time=extension.end_time,
                version=Auction.version + 1,
                updated_at=now,
            )
            .returning(Auction.version)
            .execution_options(synchronize_session=False)
        )
        if swapped.first() is None:
            raise _CompareAndSwapLost()

        bid = Bid(
            id=bid_id,
            auction_id=auction.id,
            user_id=request.user_id,
            bidder_name=request.bidder_name,
            bidder_phone=request.bidder_phone,
            bidder_email=request.bidder_email,
            amount=request.amount,
            is_winner=False,
            created_at=now,
        )
        self.db.add(bid)

        self.audit.record(
            "auction",
            auction.id,
            "bid_placed",
            now,
            old_value={"highest_bid": auction.highest_bid_amount},
            new_value={"bid_id": bid_id, "amount": request.amount, "min_amount": min_amount},
            user_id=request.user_id,
        )
        if extension.extended:
            self.audit.record(
                "auction",
                auction.id,
                "anti_sniping_extend",
                now,
                old_value={"end_time": previous_end},
                new_value={"end_time": extension.end_time, "bid_id": bid_id},
                user_id=request.user_id,
            )

        await self.db.commit()
        await self.db.refresh(auction)

        logger.info(
            f"Bid {bid_id} accepted on auction {auction.id}: amount={request.amount}"
            + (f", end extended to {extension.end_time.isoformat()}" if extension.extended else "")
        )
        return BidPlacement(
            bid=bid,
            auction=auction,
            min_amount=min_amount,
            anti_sniping_extended=extension.extended,
            new_end_time=extension.end_time,
        )

    async def _record_rejection(self, request: BidRequest, error: BidRejected, now: datetime) -> None:
        """Write a bid_rejected audit row in its own transaction."""
        try:
            self.audit.record(
                "auction",
                request.auction_id,
                "bid_rejected",
                now,
                new_value={
                    "amount": request.amount,
                    "reason": error.code,
                    "min_amount": error.min_amount,
                },
                user_id=request.user_id,
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Could not audit rejected bid on auction {request.auction_id}: {e}")
