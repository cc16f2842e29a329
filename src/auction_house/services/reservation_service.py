"""Reservation subsystem: creation on settlement and expiry of lapsed holds."""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auction_house.models.reservation import Reservation
from auction_house.models.status import ReservationStatus, VehicleStatus
from auction_house.services.vehicle_service import VehicleService

logger = logging.getLogger(__name__)

# Statuses that still hold the vehicle (availability guard)
ACTIVE_RESERVATION_STATUSES = (
    ReservationStatus.PENDING_PAYMENT.value,
    ReservationStatus.PAID.value,
    ReservationStatus.CONFIRMED.value,
)


class ReservationService:
    """Service class for reservation operations."""

    def __init__(self, db: AsyncSession, vehicles: VehicleService | None = None):
        self.db = db
        self.vehicles = vehicles or VehicleService(db)

    async def get_by_idempotency_key(self, key: str) -> Reservation | None:
        result = await self.db.execute(
            select(Reservation).where(Reservation.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def has_active_reservation(self, vehicle_id: UUID) -> bool:
        result = await self.db.execute(
            select(Reservation.id)
            .where(Reservation.vehicle_id == vehicle_id)
            .where(Reservation.status.in_(ACTIVE_RESERVATION_STATUSES))
            .limit(1)
        )
        return result.first() is not None

    async def create_reservation(
        self,
        vehicle_id: UUID,
        customer_name: str,
        customer_phone: str,
        amount: int,
        idempotency_key: str,
        now: datetime,
        expires_at: datetime | None = None,
        customer_email: str | None = None,
        status: ReservationStatus = ReservationStatus.PENDING_PAYMENT,
        source: str = "direct",
        payment_id: str | None = None,
    ) -> Reservation:
        """Stage a reservation in the caller's transaction.

        The unique ``idempotency_key`` makes a second insert for the same
        settlement fail at flush time instead of producing a duplicate.
        """
        reservation = Reservation(
            vehicle_id=vehicle_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=customer_email,
            amount=amount,
            status=status.value,
            source=source,
            idempotency_key=idempotency_key,
            payment_id=payment_id,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        self.db.add(reservation)
        await self.db.flush()
        return reservation

    async def get_expired_ids(self, now: datetime) -> list[UUID]:
        """Unpaid reservations whose hold has lapsed.

        Paid and confirmed holds (an auction winner's included) are never
        expired here; their ``expires_at`` is a pickup deadline, not a
        payment deadline.
        """
        result = await self.db.execute(
            select(Reservation.id)
            .where(Reservation.status == ReservationStatus.PENDING_PAYMENT.value)
            .where(Reservation.expires_at.is_not(None))
            .where(Reservation.expires_at < now)
            .order_by(Reservation.expires_at)
        )
        return list(result.scalars().all())

    async def expire_reservation(self, reservation_id: UUID, now: datetime) -> bool:
        """Expire one lapsed unpaid reservation and release its vehicle.

        The guarded UPDATE only matches a still-unpaid, still-lapsed row, so a
        concurrent sweep or a late payment leaves nothing to do here.

        Returns:
            True if this call expired the reservation
        """
        result = await self.db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id)
            .where(Reservation.status == ReservationStatus.PENDING_PAYMENT.value)
            .where(Reservation.expires_at < now)
            .values(status=ReservationStatus.EXPIRED.value, updated_at=now)
            .returning(Reservation.vehicle_id)
            .execution_options(synchronize_session=False)
        )
        row = result.first()
        if row is None:
            await self.db.rollback()
            return False

        vehicle = await self.vehicles.get_vehicle(row.vehicle_id, lock=True)
        if vehicle.status == VehicleStatus.RESERVED.value:
            await self.vehicles.set_status(row.vehicle_id, VehicleStatus.PUBLISHED, now)

        await self.db.commit()
        logger.info(f"Reservation {reservation_id} expired, vehicle {row.vehicle_id} released")
        return True
