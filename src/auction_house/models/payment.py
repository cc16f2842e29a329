"""Payment transaction model; the settlement record of an auction deposit."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from auction_house.core.database import Base
from auction_house.models.base import TimestampMixin
from auction_house.models.status import PaymentStatus


class PaymentTransaction(Base, TimestampMixin):
    """Payment transaction model keyed by a unique idempotency key."""

    __tablename__ = "payment_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="CLP")
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default="mock")
    idempotency_key: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value,
    )
    webhook_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_payments_entity", "entity_type", "entity_id"),
    )
