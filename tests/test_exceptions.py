"""
Tests for the exception hierarchy.
"""

from uuid import uuid4

import pytest

from tokenpay.exceptions import (
    AuthenticationError,
    ChainError,
    ChainTimeoutError,
    ConfigurationError,
    InsufficientInventoryError,
    InventoryNotProvisionedError,
    PaymentNotFoundError,
    SettlementError,
    StateConflictError,
    ValidationError,
)


class TestHierarchy:
    """Every request-level error is a SettlementError."""

    @pytest.mark.parametrize(
        "exc",
        [
            AuthenticationError("bad signature"),
            ValidationError("missing metadata", field="token_amount"),
            InsufficientInventoryError(available=5, required=10),
            ChainError("boom"),
            ChainTimeoutError("direct_transfer", 20.0),
            StateConflictError(uuid4(), "payment_status", "completed", "processing"),
            PaymentNotFoundError("ref"),
            InventoryNotProvisionedError("algorand", 1),
        ],
    )
    def test_is_settlement_error(self, exc: Exception):
        assert isinstance(exc, SettlementError)

    def test_configuration_error_is_not_a_request_error(self):
        assert not issubclass(ConfigurationError, SettlementError)

    def test_timeout_is_a_chain_error(self):
        assert issubclass(ChainTimeoutError, ChainError)


class TestAttributes:
    """Exceptions carry typed attributes."""

    def test_authentication_error(self):
        exc = AuthenticationError("Missing header")
        assert exc.message == "Missing header"
        assert "Authentication failed" in str(exc)

    def test_validation_error_field(self):
        exc = ValidationError("Missing required metadata: token_amount", field="token_amount")
        assert exc.field == "token_amount"
        assert exc.message.startswith("Missing required metadata")

    def test_validation_error_field_defaults_to_none(self):
        assert ValidationError("bad").field is None

    def test_insufficient_inventory(self):
        exc = InsufficientInventoryError(available=50, required=100)
        assert exc.available == 50
        assert exc.required == 100
        assert "Available: 50" in str(exc)
        assert "Required: 100" in str(exc)

    def test_chain_error_defaults_to_transient(self):
        assert ChainError("gateway down").permanent is False

    def test_chain_error_permanent(self):
        exc = ChainError("receiver closed", permanent=True)
        assert exc.permanent is True
        assert exc.message == "receiver closed"

    def test_chain_timeout(self):
        exc = ChainTimeoutError("deposit_to_inbox", 1.5)
        assert exc.operation == "deposit_to_inbox"
        assert exc.timeout_seconds == 1.5
        assert exc.permanent is False
        assert "deposit_to_inbox timed out after 1.5s" in exc.message

    def test_state_conflict(self):
        payment_id = uuid4()
        exc = StateConflictError(payment_id, "payment_status", "completed", "processing")
        assert exc.payment_id == payment_id
        assert exc.current == "completed"
        assert exc.requested == "processing"
        assert "completed -> processing" in str(exc)

    def test_inventory_not_provisioned(self):
        exc = InventoryNotProvisionedError("algorand", 42)
        assert exc.network == "algorand"
        assert exc.asset_id == 42
