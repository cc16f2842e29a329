"""Auction and vehicle lifecycle rules.

The transition tables below are the only place that decides which status
changes are legal. Everything here is pure: callers pass the current time and
whatever facts the guards need, and either get ``None`` back or an exception
naming both states.
"""

from dataclasses import dataclass
from datetime import datetime

from auction_house.core.errors import GuardFailedError, IllegalTransitionError
from auction_house.models.status import AuctionStatus, VehicleStatus

S = AuctionStatus

AUCTION_TRANSITIONS: dict[AuctionStatus, frozenset[AuctionStatus]] = {
    S.SCHEDULED: frozenset({S.ACTIVE, S.CANCELLED}),
    S.ACTIVE: frozenset({S.CANCELLED, S.ENDED_PENDING_PAYMENT, S.ENDED_NO_BIDS}),
    S.ENDED_PENDING_PAYMENT: frozenset({S.CLOSED_WON, S.CLOSED_FAILED}),
    S.CLOSED_WON: frozenset(),
    S.CLOSED_FAILED: frozenset(),
    S.CANCELLED: frozenset(),
    S.EXPIRED: frozenset(),
    S.ENDED_NO_BIDS: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in AUCTION_TRANSITIONS.items() if not targets)

# An auction in one of these holds exclusive selling rights to its vehicle
VEHICLE_HOLDING_STATUSES = frozenset({S.SCHEDULED, S.ACTIVE, S.ENDED_PENDING_PAYMENT})

V = VehicleStatus

VEHICLE_TRANSITIONS: dict[VehicleStatus, frozenset[VehicleStatus]] = {
    V.DRAFT: frozenset({V.PUBLISHED, V.HIDDEN}),
    V.PUBLISHED: frozenset({V.RESERVED, V.HIDDEN, V.SOLD}),
    V.RESERVED: frozenset({V.PUBLISHED, V.SOLD, V.HIDDEN}),
    V.SOLD: frozenset({V.ARCHIVED}),
    V.HIDDEN: frozenset({V.PUBLISHED, V.DRAFT, V.ARCHIVED}),
    V.ARCHIVED: frozenset(),
}


@dataclass(frozen=True)
class TransitionFacts:
    """Auxiliary facts the transition guards consult."""

    start_time: datetime | None = None
    end_time: datetime | None = None
    has_bids: bool = False
    payment_confirmed: bool = False
    payment_failed: bool = False
    payment_expires_at: datetime | None = None


def is_terminal(status: AuctionStatus | str) -> bool:
    return AuctionStatus(status) in TERMINAL_STATUSES


def is_legal(current: AuctionStatus | str, target: AuctionStatus | str) -> bool:
    """Return whether ``current -> target`` appears in the transition table."""
    return AuctionStatus(target) in AUCTION_TRANSITIONS[AuctionStatus(current)]


def check_transition(
    current: AuctionStatus | str,
    target: AuctionStatus | str,
    now: datetime,
    facts: TransitionFacts = TransitionFacts(),
) -> None:
    """Decide whether an auction may move from ``current`` to ``target``.

    Args:
        current: Status the auction is in now
        target: Requested status
        now: Authoritative current time
        facts: Facts the guard of this transition depends on

    Raises:
        IllegalTransitionError: The pair is not in the transition table
        GuardFailedError: The pair is legal but its guard does not hold
    """
    current = AuctionStatus(current)
    target = AuctionStatus(target)

    if target not in AUCTION_TRANSITIONS[current]:
        raise IllegalTransitionError("auction", current.value, target.value)

    reason = _guard_failure(current, target, now, facts)
    if reason is not None:
        raise GuardFailedError(current.value, target.value, reason)


def _guard_failure(
    current: AuctionStatus,
    target: AuctionStatus,
    now: datetime,
    facts: TransitionFacts,
) -> str | None:
    if current is S.SCHEDULED and target is S.ACTIVE:
        if facts.start_time is None or now < facts.start_time:
            return "start_time not reached"

    elif current is S.ACTIVE and target in (S.ENDED_PENDING_PAYMENT, S.ENDED_NO_BIDS):
        if facts.end_time is None or now < facts.end_time:
            return "end_time not reached"
        if target is S.ENDED_PENDING_PAYMENT and not facts.has_bids:
            return "no bids"
        if target is S.ENDED_NO_BIDS and facts.has_bids:
            return "auction has bids"

    elif current is S.ENDED_PENDING_PAYMENT and target is S.CLOSED_WON:
        if not facts.payment_confirmed:
            return "deposit payment not confirmed"

    elif current is S.ENDED_PENDING_PAYMENT and target is S.CLOSED_FAILED:
        if facts.payment_confirmed:
            return "deposit payment already confirmed"
        if facts.payment_failed:
            return None
        if facts.payment_expires_at is None or now < facts.payment_expires_at:
            return "payment window still open"

    return None


def check_vehicle_transition(current: VehicleStatus | str, target: VehicleStatus | str) -> None:
    """Raise IllegalTransitionError unless ``current -> target`` is a legal vehicle move."""
    current = VehicleStatus(current)
    target = VehicleStatus(target)
    if target not in VEHICLE_TRANSITIONS[current]:
        raise IllegalTransitionError("vehicle", current.value, target.value)


def vehicle_status_for(status: AuctionStatus | str) -> VehicleStatus | None:
    """Vehicle status an auction in ``status`` implies, or None if it implies no change.

    A pending or won auction keeps the car reserved; every other ending gives
    it back to the catalog.
    """
    status = AuctionStatus(status)
    if status in (S.ENDED_PENDING_PAYMENT, S.CLOSED_WON):
        return VehicleStatus.RESERVED
    if status in TERMINAL_STATUSES:
        return VehicleStatus.PUBLISHED
    return None
