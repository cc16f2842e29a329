"""Status vocabularies for every stateful entity."""

from enum import Enum


class AuctionStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED_PENDING_PAYMENT = "ended_pending_payment"
    CLOSED_WON = "closed_won"
    CLOSED_FAILED = "closed_failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    ENDED_NO_BIDS = "ended_no_bids"


class VehicleStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    RESERVED = "reserved"
    SOLD = "sold"
    HIDDEN = "hidden"
    ARCHIVED = "archived"


class ReservationStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
