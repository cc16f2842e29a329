"""Expiration sweeper invoked periodically by an external scheduler.

Each stage selects the rows that are due, then handles them one at a time.
Every row gets its own transaction and its own guarded write, so:

- a failing row is rolled back, reported and skipped while the rest proceed
- a row another sweeper (or an admin) already handled fails its guard and is
  counted as skipped, which makes concurrent and repeated runs harmless
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auction_house.core.clock import Clock
from auction_house.core.errors import ConcurrencyConflictError, StateConflictError
from auction_house.middleware.metrics import record_sweep_row
from auction_house.models.auction import Auction
from auction_house.models.status import AuctionStatus
from auction_house.services.auction_service import AuctionService
from auction_house.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


@dataclass
class SweepError:
    entity_type: str
    entity_id: str
    stage: str
    message: str


@dataclass
class SweepResult:
    auctions_started: int = 0
    auctions_closed: int = 0
    payments_expired: int = 0
    reservations_expired: int = 0
    vehicles_reconciled: int = 0
    errors: list[SweepError] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class ExpirationSweeper:
    """Runs every idempotent expiration stage once."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        settlement: SettlementService | None = None,
    ):
        self.db = db
        self.clock = clock
        self.settlement = settlement or SettlementService(db, clock)
        self.auctions: AuctionService = self.settlement.auctions
        self.reservations = self.settlement.reservations

    async def run(self) -> SweepResult:
        """Run all stages in order and report per-row errors."""
        result = SweepResult()
        now = await self.clock.now()

        result.auctions_started = await self._each(
            "start_auctions",
            "auction",
            await self._auction_ids(
                Auction.status == AuctionStatus.SCHEDULED.value, Auction.start_time <= now
            ),
            self.auctions.start_auction,
            result,
        )
        result.auctions_closed = await self._each(
            "close_auctions",
            "auction",
            await self._auction_ids(
                Auction.status == AuctionStatus.ACTIVE.value, Auction.end_time <= now
            ),
            self.settlement.close_auction,
            result,
        )
        result.payments_expired = await self._each(
            "expire_payments",
            "auction",
            await self._auction_ids(
                Auction.status == AuctionStatus.ENDED_PENDING_PAYMENT.value,
                Auction.payment_expires_at <= now,
            ),
            self.settlement.expire_payment,
            result,
        )
        result.reservations_expired = await self._each(
            "expire_reservations",
            "reservation",
            await self.reservations.get_expired_ids(now),
            lambda reservation_id: self.reservations.expire_reservation(reservation_id, now),
            result,
        )
        result.vehicles_reconciled = await self._each(
            "reconcile_vehicles",
            "auction",
            await self._auction_ids(Auction.vehicle_sync_pending.is_(True)),
            self.auctions.sync_vehicle,
            result,
        )

        logger.info(
            f"Sweep done: started={result.auctions_started} closed={result.auctions_closed} "
            f"payments_expired={result.payments_expired} "
            f"reservations_expired={result.reservations_expired} "
            f"vehicles_reconciled={result.vehicles_reconciled} errors={len(result.errors)}"
        )
        return result

    async def _auction_ids(self, *conditions) -> list[UUID]:
        rows = await self.db.execute(select(Auction.id).where(*conditions).order_by(Auction.id))
        ids = list(rows.scalars().all())
        # End the read transaction before per-row work starts
        await self.db.rollback()
        return ids

    async def _each(
        self,
        stage: str,
        entity_type: str,
        ids: list[UUID],
        handler: Callable[[UUID], Awaitable[object]],
        result: SweepResult,
    ) -> int:
        done = 0
        for entity_id in ids:
            try:
                outcome = await handler(entity_id)
            except (StateConflictError, ConcurrencyConflictError) as e:
                await self.db.rollback()
                logger.info(f"Sweep {stage}: {entity_type} {entity_id} skipped: {e}")
                record_sweep_row(stage, "skipped")
                continue
            except Exception as e:
                await self.db.rollback()
                logger.exception(f"Sweep {stage}: {entity_type} {entity_id} failed: {e}")
                record_sweep_row(stage, "error")
                result.errors.append(SweepError(entity_type, str(entity_id), stage, str(e)))
                continue

            # Handlers that report "nothing to do" with False count as skipped
            if outcome is False:
                record_sweep_row(stage, "skipped")
                continue
            record_sweep_row(stage, "done")
            done += 1
        return done
