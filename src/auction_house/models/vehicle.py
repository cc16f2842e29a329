"""Vehicle model for the dealership inventory."""

import uuid
from typing import TYPE_CHECKING, List

from sqlalchemy import Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from auction_house.core.database import Base
from auction_house.models.base import TimestampMixin
from auction_house.models.status import VehicleStatus

if TYPE_CHECKING:
    from auction_house.models.auction import Auction


class Vehicle(Base, TimestampMixin):
    """Vehicle model representing one unit of sellable inventory."""

    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=VehicleStatus.DRAFT.value,
    )

    # Relationships
    auctions: Mapped[List["Auction"]] = relationship("Auction", back_populates="vehicle")

    __table_args__ = (Index("idx_vehicles_status", "status"),)
