"""Reservation model for deposit-backed vehicle holds."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from auction_house.core.database import Base
from auction_house.models.base import TimestampMixin
from auction_house.models.status import ReservationStatus


class Reservation(Base, TimestampMixin):
    """Reservation model representing a customer's hold on a vehicle."""

    __tablename__ = "reservations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    vehicle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("vehicles.id"),
        nullable=False,
    )
    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(40), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReservationStatus.PENDING_PAYMENT.value,
    )
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="direct")
    idempotency_key: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_reservations_vehicle_status", "vehicle_id", "status"),
        Index("idx_reservations_status_expires", "status", "expires_at"),
    )
