"""Payment schemas for deposit initiation and gateway callbacks."""

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DepositRequest(BaseModel):
    """Schema for opening a deposit payment."""

    provider: str = "mock"


class DepositResponse(BaseModel):
    """Schema for an opened deposit payment."""

    id: UUID
    entity_id: UUID
    amount: int
    currency: str
    provider: str
    idempotency_key: str
    payment_url: Optional[str] = None
    status: str
    expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentCallbackRequest(BaseModel):
    """Schema for a payment gateway callback."""

    idempotency_key: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    status: Literal["completed", "failed", "pending", "refunded"]
    amount: int = Field(..., ge=0)
    currency: str = "CLP"
    metadata: Optional[dict[str, Any]] = None


class PaymentOutcomeResponse(BaseModel):
    """Schema for the result of a payment callback."""

    auction_id: UUID
    auction_status: str
    payment_status: str
    reservation_id: Optional[UUID] = None
    replayed: bool

    model_config = {"from_attributes": True}
