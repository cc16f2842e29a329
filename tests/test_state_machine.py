"""Tests for the auction and vehicle transition tables."""

from datetime import datetime, timedelta

import pytest

from auction_house.core.errors import GuardFailedError, IllegalTransitionError, StateConflictError
from auction_house.models.status import AuctionStatus, VehicleStatus
from auction_house.services.state_machine import (
    TERMINAL_STATUSES,
    TransitionFacts,
    check_transition,
    check_vehicle_transition,
    is_legal,
    is_terminal,
    vehicle_status_for,
)

S = AuctionStatus
NOW = datetime(2026, 3, 2, 15, 0, 0)
PAST = NOW - timedelta(minutes=1)
FUTURE = NOW + timedelta(minutes=1)

LEGAL = {
    (S.SCHEDULED, S.ACTIVE),
    (S.SCHEDULED, S.CANCELLED),
    (S.ACTIVE, S.CANCELLED),
    (S.ACTIVE, S.ENDED_PENDING_PAYMENT),
    (S.ACTIVE, S.ENDED_NO_BIDS),
    (S.ENDED_PENDING_PAYMENT, S.CLOSED_WON),
    (S.ENDED_PENDING_PAYMENT, S.CLOSED_FAILED),
}

# Facts under which each legal transition's guard holds
SATISFIED = {
    (S.SCHEDULED, S.ACTIVE): TransitionFacts(start_time=PAST),
    (S.SCHEDULED, S.CANCELLED): TransitionFacts(),
    (S.ACTIVE, S.CANCELLED): TransitionFacts(),
    (S.ACTIVE, S.ENDED_PENDING_PAYMENT): TransitionFacts(end_time=PAST, has_bids=True),
    (S.ACTIVE, S.ENDED_NO_BIDS): TransitionFacts(end_time=PAST, has_bids=False),
    (S.ENDED_PENDING_PAYMENT, S.CLOSED_WON): TransitionFacts(payment_confirmed=True),
    (S.ENDED_PENDING_PAYMENT, S.CLOSED_FAILED): TransitionFacts(payment_expires_at=PAST),
}

ALL_PAIRS = [(a, b) for a in AuctionStatus for b in AuctionStatus]


class TestTransitionTable:
    """Every (current, requested) pair against the table."""

    @pytest.mark.parametrize("current,target", [p for p in ALL_PAIRS if p not in LEGAL])
    def test_unlisted_pair_rejected(self, current, target):
        """Pairs not in the table are rejected naming both states."""
        with pytest.raises(IllegalTransitionError) as exc_info:
            check_transition(current, target, NOW, TransitionFacts(
                start_time=PAST, end_time=PAST, has_bids=True, payment_confirmed=True,
            ))

        assert current.value in str(exc_info.value)
        assert target.value in str(exc_info.value)
        assert not is_legal(current, target)

    @pytest.mark.parametrize("current,target", sorted(LEGAL))
    def test_legal_pair_with_guard_succeeds(self, current, target):
        """Legal pairs pass when their guard holds."""
        check_transition(current, target, NOW, SATISFIED[(current, target)])
        assert is_legal(current, target)

    def test_terminal_states_have_no_exits(self):
        """Terminal statuses accept no outgoing transition."""
        assert TERMINAL_STATUSES == {
            S.CLOSED_WON, S.CLOSED_FAILED, S.CANCELLED, S.EXPIRED, S.ENDED_NO_BIDS,
        }
        for status in TERMINAL_STATUSES:
            assert is_terminal(status)
        assert not is_terminal("active")

    def test_accepts_plain_strings(self):
        """Stored status strings work as inputs."""
        check_transition("scheduled", "cancelled", NOW)


class TestGuards:
    """Guards of the legal transitions."""

    def test_start_before_start_time(self):
        with pytest.raises(GuardFailedError):
            check_transition(S.SCHEDULED, S.ACTIVE, NOW, TransitionFacts(start_time=FUTURE))

    def test_start_exactly_at_start_time(self):
        check_transition(S.SCHEDULED, S.ACTIVE, NOW, TransitionFacts(start_time=NOW))

    def test_end_before_end_time(self):
        with pytest.raises(GuardFailedError):
            check_transition(
                S.ACTIVE, S.ENDED_NO_BIDS, NOW, TransitionFacts(end_time=FUTURE)
            )

    def test_pending_payment_requires_bids(self):
        with pytest.raises(GuardFailedError):
            check_transition(
                S.ACTIVE, S.ENDED_PENDING_PAYMENT, NOW, TransitionFacts(end_time=PAST)
            )

    def test_no_bids_requires_no_bids(self):
        with pytest.raises(GuardFailedError):
            check_transition(
                S.ACTIVE, S.ENDED_NO_BIDS, NOW, TransitionFacts(end_time=PAST, has_bids=True)
            )

    def test_won_requires_confirmed_payment(self):
        with pytest.raises(GuardFailedError):
            check_transition(S.ENDED_PENDING_PAYMENT, S.CLOSED_WON, NOW, TransitionFacts())

    def test_failed_while_window_open(self):
        with pytest.raises(GuardFailedError):
            check_transition(
                S.ENDED_PENDING_PAYMENT,
                S.CLOSED_FAILED,
                NOW,
                TransitionFacts(payment_expires_at=FUTURE),
            )

    def test_failed_on_payment_failure_inside_window(self):
        check_transition(
            S.ENDED_PENDING_PAYMENT,
            S.CLOSED_FAILED,
            NOW,
            TransitionFacts(payment_expires_at=FUTURE, payment_failed=True),
        )

    def test_failed_blocked_once_payment_confirmed(self):
        with pytest.raises(GuardFailedError):
            check_transition(
                S.ENDED_PENDING_PAYMENT,
                S.CLOSED_FAILED,
                NOW,
                TransitionFacts(payment_expires_at=PAST, payment_confirmed=True),
            )

    def test_guard_failure_is_state_conflict(self):
        """Callers can handle both failure kinds as one state conflict."""
        assert issubclass(GuardFailedError, StateConflictError)
        assert issubclass(IllegalTransitionError, StateConflictError)


class TestVehicleRules:
    """Vehicle transitions and the status an auction implies."""

    @pytest.mark.parametrize("current,target", [
        (VehicleStatus.PUBLISHED, VehicleStatus.RESERVED),
        (VehicleStatus.RESERVED, VehicleStatus.PUBLISHED),
        (VehicleStatus.RESERVED, VehicleStatus.SOLD),
        (VehicleStatus.SOLD, VehicleStatus.ARCHIVED),
    ])
    def test_legal_vehicle_moves(self, current, target):
        check_vehicle_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (VehicleStatus.SOLD, VehicleStatus.PUBLISHED),
        (VehicleStatus.ARCHIVED, VehicleStatus.PUBLISHED),
        (VehicleStatus.DRAFT, VehicleStatus.RESERVED),
    ])
    def test_illegal_vehicle_moves(self, current, target):
        with pytest.raises(IllegalTransitionError):
            check_vehicle_transition(current, target)

    def test_vehicle_status_for_auction(self):
        assert vehicle_status_for(S.ENDED_PENDING_PAYMENT) is VehicleStatus.RESERVED
        assert vehicle_status_for(S.CLOSED_WON) is VehicleStatus.RESERVED
        assert vehicle_status_for(S.ENDED_NO_BIDS) is VehicleStatus.PUBLISHED
        assert vehicle_status_for(S.CLOSED_FAILED) is VehicleStatus.PUBLISHED
        assert vehicle_status_for(S.CANCELLED) is VehicleStatus.PUBLISHED
        assert vehicle_status_for(S.ACTIVE) is None
