"""Vehicle inventory status operations consumed by settlement and the sweeper."""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auction_house.core.errors import NotFoundError
from auction_house.models.status import VehicleStatus
from auction_house.models.vehicle import Vehicle
from auction_house.services.state_machine import check_vehicle_transition

logger = logging.getLogger(__name__)


class VehicleService:
    """Service class for vehicle status reads and guarded writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_vehicle(self, vehicle_id: UUID, lock: bool = False) -> Vehicle:
        query = select(Vehicle).where(Vehicle.id == vehicle_id).execution_options(
            populate_existing=True
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        vehicle = result.scalar_one_or_none()
        if vehicle is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found", vehicle_id=str(vehicle_id))
        return vehicle

    async def set_status(
        self, vehicle_id: UUID, status: VehicleStatus, now: datetime
    ) -> bool:
        """Move a vehicle to ``status`` within the caller's transaction.

        Setting the status a vehicle already has is a no-op, so repeated
        settlement or sweep runs never flip it twice.

        Args:
            vehicle_id: Vehicle UUID
            status: Target status
            now: Authoritative current time

        Returns:
            True if the row changed, False if it already had ``status``

        Raises:
            NotFoundError: Vehicle does not exist
            IllegalTransitionError: Vehicle status cannot move to ``status``
        """
        vehicle = await self.get_vehicle(vehicle_id, lock=True)
        current = VehicleStatus(vehicle.status)
        if current is status:
            return False

        check_vehicle_transition(current, status)
        await self.db.execute(
            update(Vehicle)
            .where(Vehicle.id == vehicle_id)
            .where(Vehicle.status == current.value)
            .values(status=status.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Vehicle {vehicle_id}: {current.value} -> {status.value}")
        return True
