"""Bid acceptance rules. Pure functions, no I/O."""

from dataclasses import dataclass
from datetime import datetime

from auction_house.core.errors import BidErrorCode, BidRejected
from auction_house.models.status import AuctionStatus


@dataclass(frozen=True)
class AuctionSnapshot:
    """The auction fields a bid is judged against."""

    status: str
    start_time: datetime
    end_time: datetime
    starting_price: int
    min_increment: int
    highest_bid: int | None


def minimum_bid(starting_price: int, highest_bid: int | None, min_increment: int) -> int:
    """Smallest acceptable amount.

    The first bid may equal the starting price; the increment only applies
    once a bid exists.
    """
    if highest_bid is None:
        return starting_price
    return highest_bid + min_increment


def validate_bid(auction: AuctionSnapshot, amount: int, now: datetime) -> int:
    """Check a proposed amount against the auction state at ``now``.

    Args:
        auction: Current auction state
        amount: Proposed bid amount
        now: Authoritative current time

    Returns:
        The minimum amount that was required (the bid met it)

    Raises:
        BidRejected: auction_not_active, ended or invalid_amount
    """
    min_amount = minimum_bid(auction.starting_price, auction.highest_bid, auction.min_increment)

    if auction.status != AuctionStatus.ACTIVE.value:
        raise BidRejected(
            BidErrorCode.AUCTION_NOT_ACTIVE,
            f"Auction is {auction.status}",
            min_amount=min_amount,
        )
    if now < auction.start_time:
        raise BidRejected(
            BidErrorCode.AUCTION_NOT_ACTIVE,
            "Auction has not started yet",
            min_amount=min_amount,
        )
    if now > auction.end_time:
        raise BidRejected(BidErrorCode.ENDED, "Auction has ended", min_amount=min_amount)
    if amount < min_amount:
        raise BidRejected(
            BidErrorCode.INVALID_AMOUNT,
            f"Bid must be at least {min_amount}",
            min_amount=min_amount,
        )
    return min_amount
