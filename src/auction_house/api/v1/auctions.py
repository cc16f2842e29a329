"""Public auction endpoints: browsing and bidding."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from auction_house.api.deps import AuctionServiceDep, BidServiceDep, ClientIp
from auction_house.core.errors import BidRejected
from auction_house.models.status import AuctionStatus
from auction_house.schemas.auction import (
    AuctionDetailResponse,
    AuctionListResponse,
    AuctionResponse,
)
from auction_house.schemas.bid import BidCreate, BidPlacementResponse, BidResponse
from auction_house.services.bid_service import BidRequest
from auction_house.services.bid_validator import minimum_bid

router = APIRouter()


@router.get("", response_model=AuctionListResponse)
async def list_auctions(
    auction_service: AuctionServiceDep,
    status_filter: Optional[AuctionStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    """List auctions, newest first."""
    items, total = await auction_service.list_auctions(status=status_filter, skip=skip, limit=limit)
    return AuctionListResponse(
        items=[AuctionResponse.model_validate(a) for a in items],
        total=total,
    )


@router.get("/{auction_id}", response_model=AuctionDetailResponse)
async def get_auction(auction_id: UUID, auction_service: AuctionServiceDep):
    """Get an auction with its bids and the current minimum next bid."""
    detail = await auction_service.get_detail(auction_id)
    return AuctionDetailResponse(
        auction=AuctionResponse.model_validate(detail.auction),
        bids=[BidResponse.model_validate(b) for b in detail.bids],
        highest_bid=detail.auction.highest_bid_amount,
        bid_count=len(detail.bids),
        min_next_bid=detail.min_next_bid,
    )


@router.post(
    "/{auction_id}/bids",
    response_model=BidPlacementResponse,
    status_code=status.HTTP_201_CREATED,
)
async def place_bid(
    auction_id: UUID,
    bid_data: BidCreate,
    bid_service: BidServiceDep,
    client_ip: ClientIp,
):
    """Place a bid on an active auction.

    Rejections answer with ``{"detail": {"accepted": false, "code", "message",
    "min_amount"?, "reset_at"?, "reasons"?}}``; rate-limited rejections also
    carry a ``Retry-After`` header.
    """
    try:
        placement = await bid_service.place_bid(
            BidRequest(
                auction_id=auction_id,
                bidder_name=bid_data.bidder_name,
                bidder_phone=bid_data.bidder_phone,
                bidder_email=bid_data.bidder_email,
                amount=bid_data.amount,
                user_id=bid_data.user_id,
                ip=client_ip,
            )
        )
    except BidRejected as e:
        headers = None
        if e.reset_at is not None:
            now = await bid_service.clock.now()
            retry_after = max(1, int((e.reset_at - now).total_seconds()))
            headers = {"Retry-After": str(retry_after)}
        raise HTTPException(
            status_code=e.status_code,
            detail={"accepted": False, **e.to_detail()},
            headers=headers,
        )

    auction = placement.auction
    return BidPlacementResponse(
        bid=BidResponse.model_validate(placement.bid),
        highest_bid=auction.highest_bid_amount,
        min_next_bid=minimum_bid(
            auction.starting_price, auction.highest_bid_amount, auction.min_increment
        ),
        anti_sniping_extended=placement.anti_sniping_extended,
        new_end_time=placement.new_end_time,
    )
