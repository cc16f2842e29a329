"""Auction lifecycle service: creation, queries, admin transitions and vehicle sync."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auction_house.core.clock import Clock
from auction_house.core.config import settings
from auction_house.core.errors import (
    ConcurrencyConflictError,
    IllegalTransitionError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from auction_house.models.auction import Auction
from auction_house.models.audit_log import AuditLog
from auction_house.models.bid import Bid
from auction_house.models.status import AuctionStatus, VehicleStatus
from auction_house.services.audit_service import AuditService
from auction_house.services.bid_validator import minimum_bid
from auction_house.services.reservation_service import ReservationService
from auction_house.services.state_machine import (
    VEHICLE_HOLDING_STATUSES,
    TransitionFacts,
    check_transition,
    vehicle_status_for,
)
from auction_house.services.vehicle_service import VehicleService

logger = logging.getLogger(__name__)


@dataclass
class AuctionDetail:
    auction: Auction
    bids: list[Bid]
    min_next_bid: int


class AuctionService:
    """Service class for auction lifecycle operations."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        vehicles: VehicleService | None = None,
        reservations: ReservationService | None = None,
        audit: AuditService | None = None,
        default_min_increment: int | None = None,
    ):
        self.db = db
        self.clock = clock
        self.vehicles = vehicles or VehicleService(db)
        self.reservations = reservations or ReservationService(db, self.vehicles)
        self.audit = audit or AuditService(db)
        self.default_min_increment = default_min_increment or settings.DEFAULT_MIN_INCREMENT

    # ==================== Queries ====================

    async def get_auction(self, auction_id: UUID, lock: bool = False) -> Auction:
        """Load an auction, optionally taking its row lock.

        Raises:
            NotFoundError: Auction does not exist
        """
        query = select(Auction).where(Auction.id == auction_id).execution_options(
            populate_existing=True
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        auction = result.scalar_one_or_none()
        if auction is None:
            raise NotFoundError(f"Auction {auction_id} not found", auction_id=str(auction_id))
        return auction

    async def list_auctions(
        self, status: AuctionStatus | None = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[Auction], int]:
        query = select(Auction)
        count_query = select(func.count()).select_from(Auction)
        if status is not None:
            query = query.where(Auction.status == status.value)
            count_query = count_query.where(Auction.status == status.value)

        result = await self.db.execute(
            query.order_by(Auction.created_at.desc(), Auction.id).offset(skip).limit(limit)
        )
        total = await self.db.execute(count_query)
        return list(result.scalars().all()), total.scalar_one()

    async def get_bids(self, auction_id: UUID) -> list[Bid]:
        """Get bids of an auction, highest first."""
        result = await self.db.execute(
            select(Bid)
            .where(Bid.auction_id == auction_id)
            .order_by(Bid.amount.desc(), Bid.created_at)
        )
        return list(result.scalars().all())

    async def get_detail(self, auction_id: UUID) -> AuctionDetail:
        auction = await self.get_auction(auction_id)
        bids = await self.get_bids(auction_id)
        return AuctionDetail(
            auction=auction,
            bids=bids,
            min_next_bid=minimum_bid(
                auction.starting_price, auction.highest_bid_amount, auction.min_increment
            ),
        )

    async def get_audit_trail(
        self, auction_id: UUID, skip: int = 0, limit: int = 50
    ) -> list[AuditLog]:
        await self.get_auction(auction_id)
        return await self.audit.list_for_entity("auction", auction_id, skip=skip, limit=limit)

    # ==================== Creation ====================

    async def create_auction(
        self,
        vehicle_id: UUID,
        starting_price: int,
        start_time: datetime,
        end_time: datetime,
        min_increment: int | None = None,
        created_by: UUID | None = None,
    ) -> Auction:
        """Create a scheduled auction for an available vehicle.

        The vehicle row lock serializes concurrent creations for the same
        vehicle, so the availability check and the insert cannot interleave.

        Args:
            vehicle_id: Vehicle to auction
            starting_price: Opening price, > 0
            start_time: Scheduled start (naive UTC)
            end_time: Scheduled end, strictly after ``start_time``
            min_increment: Increment over the highest bid, > 0
            created_by: Administrator creating the auction

        Returns:
            The created auction

        Raises:
            ValidationError: Price, increment or times out of range
            NotFoundError: Vehicle does not exist
            StateConflictError: Vehicle is not available for auction
        """
        min_increment = min_increment if min_increment is not None else self.default_min_increment
        if starting_price <= 0:
            raise ValidationError("starting_price must be greater than 0")
        if min_increment <= 0:
            raise ValidationError("min_increment must be greater than 0")
        if end_time <= start_time:
            raise ValidationError("end_time must be after start_time")

        now = await self.clock.now()
        if end_time <= now:
            raise ValidationError("end_time must be in the future")

        vehicle = await self.vehicles.get_vehicle(vehicle_id, lock=True)
        if vehicle.status != VehicleStatus.PUBLISHED.value:
            raise StateConflictError(
                f"Vehicle {vehicle_id} is {vehicle.status}, not published",
                vehicle_status=vehicle.status,
            )
        if await self.reservations.has_active_reservation(vehicle_id):
            raise StateConflictError(f"Vehicle {vehicle_id} has an active reservation")

        holding = await self.db.execute(
            select(Auction.id)
            .where(Auction.vehicle_id == vehicle_id)
            .where(Auction.status.in_([s.value for s in VEHICLE_HOLDING_STATUSES]))
            .limit(1)
        )
        if holding.first() is not None:
            raise StateConflictError(f"Vehicle {vehicle_id} already has an open auction")

        auction = Auction(
            vehicle_id=vehicle_id,
            starting_price=starting_price,
            min_increment=min_increment,
            start_time=start_time,
            end_time=end_time,
            original_end_time=end_time,
            status=AuctionStatus.SCHEDULED.value,
            created_by=created_by,
            version=1,
            vehicle_sync_pending=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(auction)
        await self.db.flush()
        self.audit.record(
            "auction",
            auction.id,
            "auction_created",
            now,
            new_value={
                "vehicle_id": vehicle_id,
                "starting_price": starting_price,
                "min_increment": min_increment,
                "start_time": start_time,
                "end_time": end_time,
            },
            user_id=created_by,
        )
        await self.db.commit()
        logger.info(f"Auction {auction.id} created for vehicle {vehicle_id}")
        return auction

    # ==================== Transitions ====================

    async def apply_transition(
        self,
        auction: Auction,
        target: AuctionStatus,
        now: datetime,
        facts: TransitionFacts,
        values: dict[str, Any] | None = None,
        actor_id: UUID | None = None,
    ) -> None:
        """Check and write one status change within the caller's transaction.

        The UPDATE only matches the version and status that were read, so a
        writer that raced us in between makes this fail instead of being
        overwritten. Every change that implies a vehicle status marks the
        row for the vehicle sync that follows the commit.

        Raises:
            IllegalTransitionError: Pair not in the transition table
            GuardFailedError: Guard does not hold
            ConcurrencyConflictError: Row changed since it was read
        """
        current = AuctionStatus(auction.status)
        check_transition(current, target, now, facts)

        row_values: dict[str, Any] = dict(values or {})
        row_values.update(
            status=target.value,
            version=Auction.version + 1,
            updated_at=now,
        )
        if vehicle_status_for(target) is not None:
            row_values["vehicle_sync_pending"] = True

        result = await self.db.execute(
            update(Auction)
            .where(Auction.id == auction.id)
            .where(Auction.version == auction.version)
            .where(Auction.status == current.value)
            .values(**row_values)
            .returning(Auction.version)
            .execution_options(synchronize_session=False)
        )
        if result.first() is None:
            raise ConcurrencyConflictError(
                f"Auction {auction.id} changed while moving to {target.value}",
                auction_id=str(auction.id),
            )

        self.audit.record(
            "auction",
            auction.id,
            "status_changed",
            now,
            old_value={"status": current.value},
            new_value={"status": target.value, **(values or {})},
            user_id=actor_id,
        )
        logger.info(f"Auction {auction.id}: {current.value} -> {target.value}")

    async def start_auction(self, auction_id: UUID, actor_id: UUID | None = None) -> Auction:
        """Activate a scheduled auction whose start time has been reached."""
        now = await self.clock.now()
        auction = await self.get_auction(auction_id, lock=True)
        await self.apply_transition(
            auction,
            AuctionStatus.ACTIVE,
            now,
            TransitionFacts(start_time=auction.start_time),
            actor_id=actor_id,
        )
        await self.db.commit()
        return await self.get_auction(auction_id)

    async def cancel_auction(self, auction_id: UUID, actor_id: UUID | None = None) -> Auction:
        """Cancel a scheduled or active auction and give the vehicle back."""
        now = await self.clock.now()
        auction = await self.get_auction(auction_id, lock=True)
        await self.apply_transition(
            auction, AuctionStatus.CANCELLED, now, TransitionFacts(), actor_id=actor_id
        )
        await self.db.commit()
        await self.sync_vehicle_best_effort(auction_id)
        return await self.get_auction(auction_id)

    # ==================== Vehicle sync ====================

    async def sync_vehicle(self, auction_id: UUID) -> bool:
        """Align the vehicle status with the auction status.

        Second step of every status change that touches the vehicle. The
        pending flag is cleared in the same transaction as the vehicle write,
        so a crash in between leaves the flag set for the sweeper. A vehicle
        that can no longer make the move (sold or hidden meanwhile) is left
        as is and the flag is still cleared.

        Returns:
            True if the vehicle status changed
        """
        now = await self.clock.now()
        auction = await self.get_auction(auction_id, lock=True)
        if not auction.vehicle_sync_pending:
            await self.db.rollback()
            return False

        changed = False
        target = vehicle_status_for(auction.status)
        if target is not None:
            try:
                changed = await self.vehicles.set_status(auction.vehicle_id, target, now)
            except IllegalTransitionError as e:
                # Vehicle was moved by hand (sold, hidden); leave it where it is
                logger.warning(
                    f"Auction {auction_id}: vehicle {auction.vehicle_id} not moved to "
                    f"{target.value}: {e}"
                )

        await self.db.execute(
            update(Auction)
            .where(Auction.id == auction_id)
            .where(Auction.status == auction.status)
            .where(Auction.vehicle_sync_pending.is_(True))
            .values(vehicle_sync_pending=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return changed

    async def sync_vehicle_best_effort(self, auction_id: UUID) -> None:
        """Run the vehicle sync, leaving the flag for the sweeper on failure."""
        try:
            await self.sync_vehicle(auction_id)
        except Exception as e:
            await self.db.rollback()
            logger.warning(
                f"Vehicle sync for auction {auction_id} deferred to sweeper: {e}"
            )
