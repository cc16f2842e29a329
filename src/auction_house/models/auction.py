"""Auction model for timed vehicle sales."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from auction_house.core.database import Base
from auction_house.models.base import TimestampMixin
from auction_house.models.status import AuctionStatus

if TYPE_CHECKING:
    from auction_house.models.bid import Bid
    from auction_house.models.vehicle import Vehicle


class Auction(Base, TimestampMixin):
    """Auction model representing one timed sale event bound to a vehicle.

    ``highest_bid_amount``/``highest_bid_id`` are the cached highest-bid
    pointer written by the bid compare-and-swap; ``version`` is bumped on
    every write so concurrent writers can detect each other.
    ``vehicle_sync_pending`` stays set between the auction-status write and
    the matching vehicle-status write.
    """

    __tablename__ = "auctions"

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
    starting_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    min_increment: Mapped[int] = mapped_column(BigInteger, nullable=False, default=10000)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    original_end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=AuctionStatus.SCHEDULED.value,
    )
    highest_bid_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    highest_bid_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    winner_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    winner_bid_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    final_price: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    payment_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    vehicle_sync_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    vehicle: Mapped["Vehicle"] = relationship("Vehicle", back_populates="auctions")
    bids: Mapped[List["Bid"]] = relationship(
        "Bid", back_populates="auction", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="chk_auction_time"),
        CheckConstraint("starting_price > 0", name="chk_auction_starting_price"),
        CheckConstraint("min_increment > 0", name="chk_auction_min_increment"),
        Index("idx_auctions_status_end", "status", "end_time"),
        Index("idx_auctions_status_start", "status", "start_time"),
        Index("idx_auctions_vehicle", "vehicle_id"),
    )
