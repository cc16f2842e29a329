"""Administrator endpoints: auction creation, lifecycle actions, deposits and audit."""

from typing import Union
from uuid import UUID

from fastapi import APIRouter, Query, status

from auction_house.api.deps import AdminGuard, AuctionServiceDep, SettlementServiceDep
from auction_house.core.clock import to_naive_utc
from auction_house.schemas.auction import (
    AuctionActionRequest,
    AuctionCreate,
    AuctionResponse,
    AuditLogResponse,
    SettlementResponse,
)
from auction_house.schemas.payment import DepositRequest, DepositResponse

router = APIRouter(dependencies=[AdminGuard])


@router.post("", response_model=AuctionResponse, status_code=status.HTTP_201_CREATED)
async def create_auction(data: AuctionCreate, auction_service: AuctionServiceDep):
    """Create a scheduled auction for a published vehicle."""
    auction = await auction_service.create_auction(
        vehicle_id=data.vehicle_id,
        starting_price=data.starting_price,
        start_time=to_naive_utc(data.start_time),
        end_time=to_naive_utc(data.end_time),
        min_increment=data.min_increment,
        created_by=data.created_by,
    )
    return AuctionResponse.model_validate(auction)


@router.post(
    "/{auction_id}/actions",
    response_model=Union[AuctionResponse, SettlementResponse],
)
async def run_action(
    auction_id: UUID,
    request: AuctionActionRequest,
    auction_service: AuctionServiceDep,
    settlement_service: SettlementServiceDep,
):
    """Apply ``start``, ``cancel`` or ``close`` to an auction.

    Repeating an action that is no longer legal answers 409 with both states.
    """
    if request.action == "start":
        auction = await auction_service.start_auction(auction_id, actor_id=request.actor_id)
        return AuctionResponse.model_validate(auction)
    if request.action == "cancel":
        auction = await auction_service.cancel_auction(auction_id, actor_id=request.actor_id)
        return AuctionResponse.model_validate(auction)

    outcome = await settlement_service.close_auction(auction_id, actor_id=request.actor_id)
    return SettlementResponse.model_validate(outcome)


@router.post(
    "/{auction_id}/deposit",
    response_model=DepositResponse,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_deposit(
    auction_id: UUID,
    settlement_service: SettlementServiceDep,
    request: DepositRequest | None = None,
):
    """Open a deposit payment for the auction winner."""
    provider = request.provider if request else "mock"
    payment = await settlement_service.initiate_deposit(auction_id, provider=provider)
    return DepositResponse.model_validate(payment)


@router.get("/{auction_id}/audit", response_model=list[AuditLogResponse])
async def get_audit_trail(
    auction_id: UUID,
    auction_service: AuctionServiceDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """Audit trail of an auction, newest first."""
    entries = await auction_service.get_audit_trail(auction_id, skip=skip, limit=limit)
    return [AuditLogResponse.model_validate(e) for e in entries]
