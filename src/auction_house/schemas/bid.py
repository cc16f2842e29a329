"""Bid schemas for request/response validation."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class BidCreate(BaseModel):
    """Schema for bid creation request."""

    bidder_name: str = Field(..., min_length=1, max_length=120)
    bidder_phone: str = Field(..., min_length=6, max_length=40)
    bidder_email: Optional[str] = Field(None, max_length=255)
    amount: int = Field(..., gt=0)
    user_id: Optional[UUID] = None


class BidResponse(BaseModel):
    """Schema for bid response."""

    id: UUID
    auction_id: UUID
    user_id: Optional[UUID] = None
    bidder_name: str
    amount: int
    is_winner: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BidPlacementResponse(BaseModel):
    """Schema for an accepted bid."""

    accepted: bool = True
    bid: BidResponse
    highest_bid: int
    min_next_bid: int
    anti_sniping_extended: bool
    new_end_time: datetime
