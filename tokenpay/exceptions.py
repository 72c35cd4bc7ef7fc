"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID

from tokenpay.config import ConfigurationError


class SettlementError(Exception):
    """Base exception for all settlement errors."""

    pass


class AuthenticationError(SettlementError):
    """Raised when a webhook signature is missing or invalid."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class ValidationError(SettlementError):
    """Raised when webhook payload or metadata is malformed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(f"Validation failed: {message}")


class InsufficientInventoryError(SettlementError):
    """Raised when available inventory cannot cover a reservation."""

    def __init__(self, available: int, required: int) -> None:
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient token inventory. Available: {available}, Required: {required}"
        )


class ChainError(SettlementError):
    """Raised when an on-chain operation fails."""

    def __init__(self, message: str, permanent: bool = False) -> None:
        self.message = message
        self.permanent = permanent
        super().__init__(f"Chain operation failed: {message}")


class ChainTimeoutError(ChainError):
    """Raised when a chain call exceeds its deadline; the outcome is unknown."""

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{operation} timed out after {timeout_seconds}s", permanent=False)


class StateConflictError(SettlementError):
    """Raised when a write would move a payment backwards from a terminal status."""

    def __init__(self, payment_id: UUID, field: str, current: str, requested: str) -> None:
        self.payment_id = payment_id
        self.field = field
        self.current = current
        self.requested = requested
        super().__init__(
            f"Illegal {field} transition for payment {payment_id}: {current} -> {requested}"
        )


class PaymentNotFoundError(SettlementError):
    """Raised when a payment transaction doesn't exist."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Payment not found: {reference}")


class InventoryNotProvisionedError(SettlementError):
    """Raised when no inventory row exists for a network and asset."""

    def __init__(self, network: str, asset_id: int) -> None:
        self.network = network
        self.asset_id = asset_id
        super().__init__(f"No token inventory provisioned for {network}/{asset_id}")


__all__ = [
    "AuthenticationError",
    "ChainError",
    "ChainTimeoutError",
    "ConfigurationError",
    "InsufficientInventoryError",
    "InventoryNotProvisionedError",
    "PaymentNotFoundError",
    "SettlementError",
    "StateConflictError",
    "ValidationError",
]
