"""Bid model for auction offers."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from auction_house.core.database import Base

if TYPE_CHECKING:
    from auction_house.models.auction import Auction


class Bid(Base):
    """Bid model representing one offer against an auction. Append-only."""

    __tablename__ = "bids"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    auction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("auctions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    bidder_name: Mapped[str] = mapped_column(String(120), nullable=False)
    bidder_phone: Mapped[str] = mapped_column(String(40), nullable=False)
    bidder_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_winner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )

    # Relationships
    auction: Mapped["Auction"] = relationship("Auction", back_populates="bids")

    __table_args__ = (
        Index("idx_bids_auction_amount", "auction_id", "amount"),
        Index("idx_bids_auction_created", "auction_id", "created_at"),
    )
