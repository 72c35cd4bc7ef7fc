"""
Tests for domain models and status transition rules.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from conftest import BUYER_WALLET
from tokenpay.models.api import PaymentProviderName, PaymentStatus, TokenTransferStatus
from tokenpay.models.domain import (
    TERMINAL_PAYMENT_STATUSES,
    TERMINAL_TRANSFER_STATUSES,
    InventorySnapshot,
    PaymentEvent,
    SettlementOutcome,
    describe_payment_state,
    format_timestamp,
    is_payment_transition_allowed,
    is_transfer_transition_allowed,
)

payment_statuses = st.sampled_from(list(PaymentStatus))
transfer_statuses = st.sampled_from(list(TokenTransferStatus))


class TestPaymentTransitions:
    @given(payment_statuses)
    def test_same_status_rewrite_always_allowed(self, status: PaymentStatus):
        assert is_payment_transition_allowed(status, status)

    @given(st.sampled_from(sorted(TERMINAL_PAYMENT_STATUSES)), payment_statuses)
    def test_terminal_statuses_never_change(self, current, requested):
        if current != requested:
            assert not is_payment_transition_allowed(current, requested)

    @given(payment_statuses, payment_statuses)
    def test_nothing_returns_to_pending(self, current, requested):
        if requested == PaymentStatus.PENDING and current != PaymentStatus.PENDING:
            assert not is_payment_transition_allowed(current, requested)

    @pytest.mark.parametrize(
        "current, requested",
        [
            (PaymentStatus.PENDING, PaymentStatus.PROCESSING),
            (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED),
            (PaymentStatus.PROCESSING, PaymentStatus.PAID),
            (PaymentStatus.PROCESSING, PaymentStatus.MONITORING),
            (PaymentStatus.PROCESSING, PaymentStatus.FAILED),
            (PaymentStatus.MONITORING, PaymentStatus.COMPLETED),
            (PaymentStatus.MONITORING, PaymentStatus.FAILED),
            (PaymentStatus.PAID, PaymentStatus.COMPLETED),
        ],
    )
    def test_forward_transitions(self, current, requested):
        assert is_payment_transition_allowed(current, requested)

    @pytest.mark.parametrize(
        "current, requested",
        [
            (PaymentStatus.COMPLETED, PaymentStatus.PROCESSING),
            (PaymentStatus.FAILED, PaymentStatus.COMPLETED),
            (PaymentStatus.PAID, PaymentStatus.PROCESSING),
            (PaymentStatus.MONITORING, PaymentStatus.PROCESSING),
        ],
    )
    def test_backward_transitions_rejected(self, current, requested):
        assert not is_payment_transition_allowed(current, requested)


class TestTransferTransitions:
    @given(transfer_statuses)
    def test_same_status_rewrite_always_allowed(self, status: TokenTransferStatus):
        assert is_transfer_transition_allowed(status, status)

    @given(transfer_statuses)
    def test_completed_is_final(self, requested):
        if requested != TokenTransferStatus.COMPLETED:
            assert not is_transfer_transition_allowed(TokenTransferStatus.COMPLETED, requested)
            assert not is_transfer_transition_allowed(
                TokenTransferStatus.COMPLETED, requested, reconciled=True
            )

    @given(transfer_statuses)
    def test_failed_is_final_outside_reconciliation(self, requested):
        if requested != TokenTransferStatus.FAILED:
            assert not is_transfer_transition_allowed(TokenTransferStatus.FAILED, requested)

    @pytest.mark.parametrize(
        "requested", [TokenTransferStatus.IN_INBOX, TokenTransferStatus.DIRECT_TRANSFERRED]
    )
    def test_reconciliation_may_resolve_failed(self, requested):
        assert is_transfer_transition_allowed(
            TokenTransferStatus.FAILED, requested, reconciled=True
        )

    def test_reconciliation_cannot_reset_to_pending(self):
        assert not is_transfer_transition_allowed(
            TokenTransferStatus.FAILED, TokenTransferStatus.PENDING, reconciled=True
        )

    def test_direct_transferred_only_completes(self):
        assert is_transfer_transition_allowed(
            TokenTransferStatus.DIRECT_TRANSFERRED, TokenTransferStatus.COMPLETED
        )
        assert not is_transfer_transition_allowed(
            TokenTransferStatus.DIRECT_TRANSFERRED, TokenTransferStatus.FAILED
        )

    def test_inbox_flow(self):
        assert is_transfer_transition_allowed(
            TokenTransferStatus.PENDING, TokenTransferStatus.REQUIRES_OPT_IN
        )
        assert is_transfer_transition_allowed(
            TokenTransferStatus.REQUIRES_OPT_IN, TokenTransferStatus.IN_INBOX
        )
        assert is_transfer_transition_allowed(
            TokenTransferStatus.IN_INBOX, TokenTransferStatus.COMPLETED
        )

    def test_terminal_set(self):
        assert TERMINAL_TRANSFER_STATUSES == {
            TokenTransferStatus.COMPLETED,
            TokenTransferStatus.FAILED,
        }


def build_event(**overrides) -> PaymentEvent:
    values = {
        "provider": PaymentProviderName.STRIPE,
        "event_id": "evt_1",
        "payment_reference": "ref_1",
        "token_amount": 100,
        "price_per_token": Decimal("0.10"),
        "total_amount": Decimal("10.30"),
        "currency": "USD",
        "user_wallet_address": BUYER_WALLET,
        "network": "algorand",
        "processing_fee": Decimal("0.30"),
    }
    values.update(overrides)
    return PaymentEvent(**values)


class TestPaymentEvent:
    def test_subtotal_excludes_fee(self):
        assert build_event().subtotal == Decimal("10.00")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"payment_reference": ""},
            {"token_amount": 0},
            {"token_amount": -5},
            {"price_per_token": Decimal("-1")},
            {"total_amount": Decimal("-1")},
            {"currency": "US"},
            {"user_wallet_address": "not-an-address"},
        ],
    )
    def test_invalid_events_rejected(self, overrides):
        with pytest.raises(ValueError):
            build_event(**overrides)

    @given(st.integers(min_value=1, max_value=10**15))
    def test_any_positive_amount_accepted(self, amount: int):
        assert build_event(token_amount=amount).token_amount == amount


class TestInventorySnapshot:
    def test_valid(self):
        snapshot = InventorySnapshot("algorand", 1, 100, 60, 40, BUYER_WALLET)
        assert snapshot.available_balance + snapshot.reserved_balance == 100

    def test_negative_balance_rejected(self):
        with pytest.raises(ValueError):
            InventorySnapshot("algorand", 1, 100, -1, 0, BUYER_WALLET)

    def test_over_supply_rejected(self):
        with pytest.raises(ValueError):
            InventorySnapshot("algorand", 1, 100, 80, 40, BUYER_WALLET)


class TestSettlementOutcome:
    @pytest.mark.parametrize(
        "status, succeeded",
        [
            (TokenTransferStatus.DIRECT_TRANSFERRED, True),
            (TokenTransferStatus.IN_INBOX, True),
            (TokenTransferStatus.FAILED, False),
            (TokenTransferStatus.REQUIRES_OPT_IN, False),
        ],
    )
    def test_succeeded(self, status, succeeded):
        outcome = SettlementOutcome(
            payment_id=uuid4(),
            method=None,
            payment_status=PaymentStatus.PROCESSING,
            token_transfer_status=status,
        )
        assert outcome.succeeded is succeeded


class TestDescribePaymentState:
    def test_claimable_inbox(self):
        message, can_claim = describe_payment_state(
            PaymentStatus.PAID, TokenTransferStatus.IN_INBOX
        )
        assert can_claim is True
        assert "ready to claim" in message

    def test_direct_transfer(self):
        message, can_claim = describe_payment_state(
            PaymentStatus.COMPLETED, TokenTransferStatus.DIRECT_TRANSFERRED
        )
        assert can_claim is False
        assert "directly" in message

    def test_monitoring_is_not_reported_as_failure(self):
        message, can_claim = describe_payment_state(
            PaymentStatus.MONITORING, TokenTransferStatus.FAILED
        )
        assert can_claim is False
        assert "verified" in message

    def test_failure(self):
        message, _ = describe_payment_state(PaymentStatus.FAILED, TokenTransferStatus.FAILED)
        assert "failed" in message

    def test_processing(self):
        message, _ = describe_payment_state(
            PaymentStatus.PROCESSING, TokenTransferStatus.PENDING
        )
        assert message == "Payment processing"

    @given(payment_statuses, transfer_statuses)
    def test_only_paid_inbox_is_claimable(self, payment_status, transfer_status):
        _, can_claim = describe_payment_state(payment_status, transfer_status)
        assert can_claim == (
            payment_status == PaymentStatus.PAID
            and transfer_status == TokenTransferStatus.IN_INBOX
        )


class TestFormatTimestamp:
    def test_none(self):
        assert format_timestamp(None) is None

    def test_iso(self):
        value = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)
        assert format_timestamp(value) == "2026-10-01T12:00:00+00:00"
