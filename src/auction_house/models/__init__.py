"""SQLAlchemy ORM models."""

from auction_house.models.audit_log import AuditLog
from auction_house.models.auction import Auction
from auction_house.models.base import TimestampMixin
from auction_house.models.bid import Bid
from auction_house.models.payment import PaymentTransaction
from auction_house.models.reservation import Reservation
from auction_house.models.status import (
    AuctionStatus,
    PaymentStatus,
    ReservationStatus,
    VehicleStatus,
)
from auction_house.models.vehicle import Vehicle

__all__ = [
    "TimestampMixin",
    "Vehicle",
    "Auction",
    "Bid",
    "Reservation",
    "PaymentTransaction",
    "AuditLog",
    "AuctionStatus",
    "VehicleStatus",
    "ReservationStatus",
    "PaymentStatus",
]
