"""Auction schemas for request/response validation."""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from auction_house.schemas.bid import BidResponse


class AuctionCreate(BaseModel):
    """Schema for auction creation request."""

    vehicle_id: UUID
    starting_price: int = Field(..., gt=0)
    min_increment: Optional[int] = Field(None, gt=0)
    start_time: datetime
    end_time: datetime
    created_by: Optional[UUID] = None

    @model_validator(mode="after")
    def check_times(self) -> "AuctionCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AuctionResponse(BaseModel):
    """Schema for auction response."""

    id: UUID
    vehicle_id: UUID
    starting_price: int
    min_increment: int
    start_time: datetime
    end_time: datetime
    original_end_time: datetime
    status: str
    highest_bid_amount: Optional[int] = None
    winner_id: Optional[UUID] = None
    winner_bid_id: Optional[UUID] = None
    final_price: Optional[int] = None
    payment_expires_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AuctionListResponse(BaseModel):
    """Schema for paginated auction list."""

    items: list[AuctionResponse]
    total: int


class AuctionDetailResponse(BaseModel):
    """Schema for auction detail with its bids."""

    auction: AuctionResponse
    bids: list[BidResponse]
    highest_bid: Optional[int] = None
    bid_count: int
    min_next_bid: int


class AuctionActionRequest(BaseModel):
    """Schema for an admin lifecycle action."""

    action: Literal["start", "cancel", "close"]
    actor_id: Optional[UUID] = None


class SettlementResponse(BaseModel):
    """Schema for the result of closing an auction."""

    auction_id: UUID
    status: str
    winner_bid_id: Optional[UUID] = None
    final_price: Optional[int] = None
    payment_expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AuditLogResponse(BaseModel):
    """Schema for one audit trail entry."""

    id: UUID
    user_id: Optional[UUID] = None
    entity_type: str
    entity_id: UUID
    action: str
    old_value: Optional[dict] = None
    new_value: Optional[dict] = None
    created_at: datetime

    model_config = {"from_attributes": True}
