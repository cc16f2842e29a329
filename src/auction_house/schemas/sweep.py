"""Sweep result schema."""

from pydantic import BaseModel


class SweepErrorResponse(BaseModel):
    entity_type: str
    entity_id: str
    stage: str
    message: str


class SweepResponse(BaseModel):
    """Schema for the expiration sweep result."""

    auctions_started: int
    auctions_closed: int
    payments_expired: int
    reservations_expired: int
    vehicles_reconciled: int
    errors: list[SweepErrorResponse]
