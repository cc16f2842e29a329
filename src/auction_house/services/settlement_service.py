"""Settlement engine: winner determination and the payment-to-reservation handoff.

Every settlement step is two writes. The auction status change commits first
and sets ``vehicle_sync_pending``. The vehicle status write then clears it.
If the process dies in between, the expiration sweeper finds the flag and
finishes the vehicle write.

Deposit confirmation is at-most-once per auction: the reservation carries
the unique key ``auction_{auction_id}_confirmed`` and is created in the same
transaction that moves the auction to ``closed_won`` and marks the payment
completed.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auction_house.core.clock import Clock
from auction_house.core.config import settings
from auction_house.core.errors import NotFoundError, StateConflictError, ValidationError
from auction_house.middleware.metrics import record_settlement
from auction_house.models.auction import Auction
from auction_house.models.bid import Bid
from auction_house.models.payment import PaymentTransaction
from auction_house.models.status import (
    AuctionStatus,
    PaymentStatus,
    ReservationStatus,
    VehicleStatus,
)
from auction_house.services.auction_service import AuctionService
from auction_house.services.state_machine import TransitionFacts

logger = logging.getLogger(__name__)

DEPOSIT_ENTITY = "auction_deposit"
SUPPORTED_PROVIDERS = ("mock",)


def confirmation_key(auction_id: UUID) -> str:
    return f"auction_{auction_id}_confirmed"


@dataclass
class SettlementOutcome:
    auction_id: UUID
    status: str
    winner_bid_id: UUID | None = None
    final_price: int | None = None
    payment_expires_at: datetime | None = None


@dataclass
class PaymentCallback:
    idempotency_key: str
    payment_id: str
    status: str
    amount: int
    payload: dict[str, Any] | None = None


@dataclass
class PaymentOutcome:
    auction_id: UUID
    auction_status: str
    payment_status: str
    reservation_id: UUID | None = None
    replayed: bool = False


class SettlementService:
    """Service class for auction settlement operations."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        auctions: AuctionService | None = None,
        payment_window: timedelta | None = None,
        deposit_link_ttl: timedelta | None = None,
        reservation_hold: timedelta | None = None,
        callback_url: str | None = None,
    ):
        self.db = db
        self.clock = clock
        self.auctions = auctions or AuctionService(db, clock)
        self.reservations = self.auctions.reservations
        self.vehicles = self.auctions.vehicles
        self.audit = self.auctions.audit
        self.payment_window = payment_window or timedelta(hours=settings.PAYMENT_WINDOW_HOURS)
        self.deposit_link_ttl = deposit_link_ttl or timedelta(
            minutes=settings.DEPOSIT_LINK_MINUTES
        )
        self.reservation_hold = reservation_hold or timedelta(
            days=settings.RESERVATION_HOLD_DAYS
        )
        self.callback_url = callback_url or settings.PAYMENT_CALLBACK_URL

    # ==================== Closing ====================

    async def find_winner(self, auction_id: UUID) -> Bid | None:
        """Highest bid; on equal amounts the earliest-created bid wins."""
        result = await self.db.execute(
            select(Bid)
            .where(Bid.auction_id == auction_id)
            .order_by(Bid.amount.desc(), Bid.created_at.asc(), Bid.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def close_auction(
        self, auction_id: UUID, actor_id: UUID | None = None
    ) -> SettlementOutcome:
        """Close an active auction whose end time has passed.

        Args:
            auction_id: Auction UUID
            actor_id: Administrator closing it, None for the sweeper

        Returns:
            SettlementOutcome

        Raises:
            NotFoundError: Auction does not exist
            StateConflictError: Auction is not active or has not reached its end
        """
        now = await self.clock.now()
        auction = await self.auctions.get_auction(auction_id, lock=True)
        winner = await self.find_winner(auction_id)

        facts = TransitionFacts(end_time=auction.end_time, has_bids=winner is not None)
        if winner is None:
            await self.auctions.apply_transition(
                auction, AuctionStatus.ENDED_NO_BIDS, now, facts, actor_id=actor_id
            )
            outcome = SettlementOutcome(auction_id, AuctionStatus.ENDED_NO_BIDS.value)
        else:
            payment_expires_at = now + self.payment_window
            await self.auctions.apply_transition(
                auction,
                AuctionStatus.ENDED_PENDING_PAYMENT,
                now,
                facts,
                values={
                    "winner_id": winner.user_id,
                    "winner_bid_id": winner.id,
                    "final_price": winner.amount,
                    "payment_expires_at": payment_expires_at,
                },
                actor_id=actor_id,
            )
            await self.db.execute(
                update(Bid)
                .where(Bid.id == winner.id)
                .values(is_winner=True)
                .execution_options(synchronize_session=False)
            )
            self.audit.record(
                "auction",
                auction_id,
                "winner_determined",
                now,
                new_value={
                    "bid_id": winner.id,
                    "user_id": winner.user_id,
                    "amount": winner.amount,
                    "payment_expires_at": payment_expires_at,
                },
                user_id=actor_id,
            )
            outcome = SettlementOutcome(
                auction_id,
                AuctionStatus.ENDED_PENDING_PAYMENT.value,
                winner_bid_id=winner.id,
                final_price=winner.amount,
                payment_expires_at=payment_expires_at,
            )

        await self.db.commit()
        record_settlement(outcome.status)
        logger.info(f"Auction {auction_id} closed as {outcome.status}")

        await self.auctions.sync_vehicle_best_effort(auction_id)
        return outcome

    # ==================== Deposit ====================

    async def get_completed_deposit(self, auction_id: UUID) -> PaymentTransaction | None:
        result = await self.db.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.entity_type == DEPOSIT_ENTITY)
            .where(PaymentTransaction.entity_id == auction_id)
            .where(PaymentTransaction.status == PaymentStatus.COMPLETED.value)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def initiate_deposit(
        self, auction_id: UUID, provider: str = "mock"
    ) -> PaymentTransaction:
        """Open a deposit payment attempt for the winner of an auction.

        Args:
            auction_id: Auction UUID
            provider: Payment provider name

        Returns:
            The pending PaymentTransaction, carrying the idempotency key the
            gateway echoes back in its callback

        Raises:
            ValidationError: Unsupported provider
            StateConflictError: Auction is not awaiting payment, its window has
                closed, or a deposit was already confirmed
        """
        if provider not in SUPPORTED_PROVIDERS:
            raise ValidationError(f"Unsupported payment provider: {provider}")

        now = await self.clock.now()
        auction = await self.auctions.get_auction(auction_id, lock=True)
        if auction.status != AuctionStatus.ENDED_PENDING_PAYMENT.value:
            raise StateConflictError(
                f"Auction {auction_id} is {auction.status}, not awaiting payment",
                status=auction.status,
            )
        if auction.payment_expires_at is None or auction.payment_expires_at <= now:
            raise StateConflictError(f"Payment window of auction {auction_id} has closed")
        if await self.get_completed_deposit(auction_id) is not None:
            raise StateConflictError(f"Deposit for auction {auction_id} already confirmed")

        epoch_ms = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
        key = f"{DEPOSIT_ENTITY}_{auction_id}_{epoch_ms}_{secrets.token_hex(4)}"
        payment = PaymentTransaction(
            entity_type=DEPOSIT_ENTITY,
            entity_id=auction_id,
            amount=auction.final_price,
            currency="CLP",
            provider=provider,
            idempotency_key=key,
            status=PaymentStatus.PENDING.value,
            payment_url=f"{self.callback_url}?mock=true&idempotency_key={key}",
            expires_at=min(now + self.deposit_link_ttl, auction.payment_expires_at),
            created_at=now,
            updated_at=now,
        )
        self.db.add(payment)
        await self.db.commit()
        logger.info(f"Deposit {key} opened for auction {auction_id}: {auction.final_price} CLP")
        return payment

    # ==================== Payment callback ====================

    async def handle_payment_callback(self, callback: PaymentCallback) -> PaymentOutcome:
        """Apply a payment gateway callback. Safe to deliver any number of times.

        - completed: create the winner's reservation, close the auction as
          won and mark the payment completed, all in one commit
        - failed/refunded: close the auction as failed and release the vehicle
        - pending: acknowledged, nothing changes
        - completed after the attempt was marked failed: the charge is
          recorded; if the auction can no longer be won it is audited as
          orphaned for refund

        A repeated delivery for a payment that already reached a final status
        returns the stored outcome without writing anything.

        Raises:
            NotFoundError: Unknown idempotency key
            ValidationError: Unknown status or amount mismatch
            StateConflictError: Payment completed for an auction that can no
                longer be won (recorded for manual refund)
        """
        try:
            status = PaymentStatus(callback.status)
        except ValueError:
            raise ValidationError(f"Unknown payment status: {callback.status}")

        # Lock order is auction row, then payment row, the same as expire_payment
        found = await self.db.execute(
            select(PaymentTransaction.entity_type, PaymentTransaction.entity_id).where(
                PaymentTransaction.idempotency_key == callback.idempotency_key
            )
        )
        target = found.first()
        if target is None:
            logger.warning(f"Payment callback for unknown key {callback.idempotency_key}")
            raise NotFoundError(
                "Unknown payment idempotency key", idempotency_key=callback.idempotency_key
            )
        if target.entity_type != DEPOSIT_ENTITY:
            raise ValidationError(f"Payment {callback.idempotency_key} is not an auction deposit")

        auction = await self.auctions.get_auction(target.entity_id, lock=True)
        result = await self.db.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.idempotency_key == callback.idempotency_key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one()

        current = PaymentStatus(payment.status)
        if current is PaymentStatus.COMPLETED and status is PaymentStatus.REFUNDED:
            return await self._refund_settled(payment, callback)
        if current is PaymentStatus.FAILED and status is PaymentStatus.COMPLETED:
            # Charged after the attempt was written off (window lapsed or failure reported)
            return await self._confirm(auction, payment, callback)
        if current is not PaymentStatus.PENDING or status is PaymentStatus.PENDING:
            await self.db.rollback()
            return await self._stored_outcome(
                callback.idempotency_key, replayed=current is not PaymentStatus.PENDING
            )

        if status is PaymentStatus.COMPLETED:
            return await self._confirm(auction, payment, callback)
        return await self._fail(auction, payment, callback, status)

    async def _confirm(
        self, auction: Auction, payment: PaymentTransaction, callback: PaymentCallback
    ) -> PaymentOutcome:
        expected = payment.amount
        if callback.amount != expected:
            await self.db.rollback()
            raise ValidationError(
                f"Payment amount {callback.amount} does not match deposit {expected}",
                expected=expected,
                received=callback.amount,
            )

        now = await self.clock.now()
        auction_id = auction.id
        self._mark_payment(payment, callback, PaymentStatus.COMPLETED, now)

        if auction.status == AuctionStatus.CLOSED_WON.value:
            # A second attempt paid after the auction was already won
            self.audit.record(
                "auction",
                auction_id,
                "auction_duplicate_payment",
                now,
                new_value={"idempotency_key": payment.idempotency_key, "amount": payment.amount},
            )
            await self.db.commit()
            logger.error(f"Duplicate deposit {payment.idempotency_key} on won auction {auction_id}")
            return await self._stored_outcome(callback.idempotency_key, replayed=True)

        if auction.status != AuctionStatus.ENDED_PENDING_PAYMENT.value:
            # Charged after the auction failed: keep the record as the refund anchor
            self.audit.record(
                "auction",
                auction_id,
                "auction_payment_orphaned",
                now,
                old_value={"status": auction.status},
                new_value={"idempotency_key": payment.idempotency_key, "amount": payment.amount},
            )
            await self.db.commit()
            logger.error(
                f"Deposit {payment.idempotency_key} completed for {auction.status} "
                f"auction {auction_id}; refund required"
            )
            raise StateConflictError(
                f"Auction {auction_id} is {auction.status}; payment recorded for refund",
                status=auction.status,
            )

        winner_bid = await self.db.get(Bid, auction.winner_bid_id)
        try:
            reservation = await self.reservations.create_reservation(
                vehicle_id=auction.vehicle_id,
                customer_name=winner_bid.bidder_name,
                customer_phone=winner_bid.bidder_phone,
                customer_email=winner_bid.bidder_email,
                amount=payment.amount,
                idempotency_key=confirmation_key(auction_id),
                now=now,
                expires_at=now + self.reservation_hold,
                status=ReservationStatus.CONFIRMED,
                source="auction_winner",
                payment_id=callback.payment_id,
            )
            reservation_id = reservation.id
            await self.auctions.apply_transition(
                auction,
                AuctionStatus.CLOSED_WON,
                now,
                TransitionFacts(payment_confirmed=True),
            )
            self.audit.record(
                "auction",
                auction_id,
                "auction_winner_confirmed",
                now,
                new_value={
                    "reservation_id": reservation_id,
                    "payment_id": callback.payment_id,
                    "idempotency_key": payment.idempotency_key,
                    "amount": payment.amount,
                },
                user_id=auction.winner_id,
            )
            await self.db.commit()
        except IntegrityError:
            # Another delivery settled this auction first
            await self.db.rollback()
            existing = await self.reservations.get_by_idempotency_key(confirmation_key(auction_id))
            if existing is None:
                raise
            logger.info(f"Auction {auction_id} already settled by a concurrent callback")
            return await self._stored_outcome(callback.idempotency_key, replayed=True)

        record_settlement(AuctionStatus.CLOSED_WON.value)
        logger.info(f"Auction {auction_id} won; reservation {reservation_id} confirmed")
        await self.auctions.sync_vehicle_best_effort(auction_id)
        return PaymentOutcome(
            auction_id=auction_id,
            auction_status=AuctionStatus.CLOSED_WON.value,
            payment_status=PaymentStatus.COMPLETED.value,
            reservation_id=reservation_id,
        )

    async def _fail(
        self,
        auction: Auction,
        payment: PaymentTransaction,
        callback: PaymentCallback,
        status: PaymentStatus,
    ) -> PaymentOutcome:
        now = await self.clock.now()
        auction_id = auction.id
        self._mark_payment(payment, callback, status, now)

        closed = False
        if auction.status == AuctionStatus.ENDED_PENDING_PAYMENT.value:
            await self.auctions.apply_transition(
                auction,
                AuctionStatus.CLOSED_FAILED,
                now,
                TransitionFacts(payment_failed=True),
            )
            self.audit.record(
                "auction",
                auction_id,
                "auction_payment_failed",
                now,
                new_value={"idempotency_key": payment.idempotency_key, "payment_status": status},
            )
            closed = True

        await self.db.commit()
        if closed:
            record_settlement(AuctionStatus.CLOSED_FAILED.value)
            logger.info(f"Auction {auction_id} failed: deposit {status.value}")
            await self.auctions.sync_vehicle_best_effort(auction_id)
        return await self._stored_outcome(callback.idempotency_key)

    async def _refund_settled(
        self, payment: PaymentTransaction, callback: PaymentCallback
    ) -> PaymentOutcome:
        """Refund of a deposit that already settled: cancel the hold and release the car."""
        now = await self.clock.now()
        self._mark_payment(payment, callback, PaymentStatus.REFUNDED, now)

        reservation = await self.reservations.get_by_idempotency_key(
            confirmation_key(payment.entity_id)
        )
        if reservation is not None and reservation.payment_id == payment.payment_id:
            reservation.status = ReservationStatus.REFUNDED.value
            reservation.updated_at = now
            vehicle = await self.vehicles.get_vehicle(reservation.vehicle_id, lock=True)
            if vehicle.status == VehicleStatus.RESERVED.value:
                await self.vehicles.set_status(vehicle.id, VehicleStatus.PUBLISHED, now)

        self.audit.record(
            "auction",
            payment.entity_id,
            "auction_payment_refunded",
            now,
            new_value={"idempotency_key": payment.idempotency_key, "amount": payment.amount},
        )
        await self.db.commit()
        logger.info(f"Deposit {payment.idempotency_key} refunded")
        return await self._stored_outcome(callback.idempotency_key)

    def _mark_payment(
        self,
        payment: PaymentTransaction,
        callback: PaymentCallback,
        status: PaymentStatus,
        now: datetime,
    ) -> None:
        payment.status = status.value
        payment.payment_id = callback.payment_id
        payment.webhook_payload = callback.payload
        payment.updated_at = now
        if status is PaymentStatus.COMPLETED:
            payment.confirmed_at = now

    async def _stored_outcome(self, idempotency_key: str, replayed: bool = False) -> PaymentOutcome:
        """Read back the current result for a payment from fresh rows."""
        result = await self.db.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one()
        auction = await self.auctions.get_auction(payment.entity_id)
        reservation = await self.reservations.get_by_idempotency_key(
            confirmation_key(payment.entity_id)
        )
        return PaymentOutcome(
            auction_id=auction.id,
            auction_status=auction.status,
            payment_status=payment.status,
            reservation_id=reservation.id if reservation else None,
            replayed=replayed,
        )

    # ==================== Expiry ====================

    async def expire_payment(self, auction_id: UUID) -> SettlementOutcome:
        """Fail an auction whose winner did not pay within the window.

        Pending deposit attempts are marked failed and an
        ``auction_payment_expired`` audit row records the lapse; no
        reservation is created.

        Raises:
            NotFoundError: Auction does not exist
            StateConflictError: Auction is not awaiting payment, the window is
                still open, or the deposit was confirmed
        """
        now = await self.clock.now()
        auction = await self.auctions.get_auction(auction_id, lock=True)
        confirmed = (
            auction.status == AuctionStatus.ENDED_PENDING_PAYMENT.value
            and await self.get_completed_deposit(auction_id) is not None
        )
        await self.auctions.apply_transition(
            auction,
            AuctionStatus.CLOSED_FAILED,
            now,
            TransitionFacts(
                payment_expires_at=auction.payment_expires_at, payment_confirmed=confirmed
            ),
        )
        await self.db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.entity_type == DEPOSIT_ENTITY)
            .where(PaymentTransaction.entity_id == auction_id)
            .where(PaymentTransaction.status == PaymentStatus.PENDING.value)
            .values(status=PaymentStatus.FAILED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.audit.record(
            "auction",
            auction_id,
            "auction_payment_expired",
            now,
            old_value={"payment_expires_at": auction.payment_expires_at},
            new_value={"status": AuctionStatus.CLOSED_FAILED.value, "final_price": auction.final_price},
        )
        outcome = SettlementOutcome(
            auction_id,
            AuctionStatus.CLOSED_FAILED.value,
            winner_bid_id=auction.winner_bid_id,
            final_price=auction.final_price,
            payment_expires_at=auction.payment_expires_at,
        )
        await self.db.commit()
        record_settlement(outcome.status)
        logger.info(f"Auction {auction_id} payment window lapsed")

        await self.auctions.sync_vehicle_best_effort(auction_id)
        return outcome
