"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from algosdk import encoding

from tokenpay.models.api import (
    PaymentProviderName,
    PaymentStatus,
    TokenTransferStatus,
    TransferKind,
    WebhookOutcome,
)


# ============================================================================
# Status transition rules
# ============================================================================

TERMINAL_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
        PaymentStatus.REFUNDED,
    }
)

TERMINAL_TRANSFER_STATUSES = frozenset(
    {TokenTransferStatus.COMPLETED, TokenTransferStatus.FAILED}
)

_PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {
            PaymentStatus.PROCESSING,
            PaymentStatus.PAID,
            PaymentStatus.MONITORING,
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELED,
        }
    ),
    PaymentStatus.PROCESSING: frozenset(
        {
            PaymentStatus.PAID,
            PaymentStatus.MONITORING,
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELED,
        }
    ),
    PaymentStatus.MONITORING: frozenset(
        {PaymentStatus.PAID, PaymentStatus.COMPLETED, PaymentStatus.FAILED}
    ),
    PaymentStatus.PAID: frozenset(
        {PaymentStatus.MONITORING, PaymentStatus.COMPLETED, PaymentStatus.REFUNDED}
    ),
}

_TRANSFER_TRANSITIONS: dict[TokenTransferStatus, frozenset[TokenTransferStatus]] = {
    TokenTransferStatus.PENDING: frozenset(
        {
            TokenTransferStatus.REQUIRES_OPT_IN,
            TokenTransferStatus.IN_INBOX,
            TokenTransferStatus.DIRECT_TRANSFERRED,
            TokenTransferStatus.COMPLETED,
            TokenTransferStatus.FAILED,
        }
    ),
    TokenTransferStatus.REQUIRES_OPT_IN: frozenset(
        {
            TokenTransferStatus.IN_INBOX,
            TokenTransferStatus.DIRECT_TRANSFERRED,
            TokenTransferStatus.FAILED,
        }
    ),
    TokenTransferStatus.IN_INBOX: frozenset({TokenTransferStatus.COMPLETED}),
    TokenTransferStatus.DIRECT_TRANSFERRED: frozenset({TokenTransferStatus.COMPLETED}),
}

# Only the reconciliation sweep may resolve a timed-out transfer
_RECONCILED_TRANSFER_TRANSITIONS: dict[TokenTransferStatus, frozenset[TokenTransferStatus]] = {
    TokenTransferStatus.FAILED: frozenset(
        {TokenTransferStatus.IN_INBOX, TokenTransferStatus.DIRECT_TRANSFERRED}
    ),
}


def is_payment_transition_allowed(current: PaymentStatus, requested: PaymentStatus) -> bool:
    """Check a payment status write. Re-writing the same status is always allowed."""
    if current == requested:
        return True
    return requested in _PAYMENT_TRANSITIONS.get(current, frozenset())


def is_transfer_transition_allowed(
    current: TokenTransferStatus,
    requested: TokenTransferStatus,
    reconciled: bool = False,
) -> bool:
    """Check a token transfer status write."""
    if current == requested:
        return True
    if requested in _TRANSFER_TRANSITIONS.get(current, frozenset()):
        return True
    if reconciled:
        return requested in _RECONCILED_TRANSFER_TRANSITIONS.get(current, frozenset())
    return False


# ============================================================================
# Webhook / payment events
# ============================================================================


@dataclass(frozen=True)
class CanonicalEvent:
    """Verified provider event, before business interpretation."""

    provider: PaymentProviderName
    event_id: str
    event_type: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class PaymentEvent:
    """
    Provider-agnostic successful payment.

    Each processor adapter produces one of these; the settlement pipeline
    never sees provider-specific payloads.
    """

    provider: PaymentProviderName
    event_id: str
    payment_reference: str
    token_amount: int
    price_per_token: Decimal
    total_amount: Decimal
    currency: str
    user_wallet_address: str
    network: str
    session_id: str | None = None
    payment_intent_id: str | None = None
    user_email: str | None = None
    processing_fee: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        """Validate payment event constraints."""
        if not self.payment_reference:
            raise ValueError("payment_reference cannot be empty")
        if self.token_amount <= 0:
            raise ValueError(f"Token amount must be positive: {self.token_amount}")
        if self.price_per_token < 0:
            raise ValueError(f"Price per token cannot be negative: {self.price_per_token}")
        if self.total_amount < 0:
            raise ValueError(f"Total amount cannot be negative: {self.total_amount}")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")
        if not encoding.is_valid_address(self.user_wallet_address):
            raise ValueError(f"Invalid wallet address: {self.user_wallet_address}")

    @property
    def subtotal(self) -> Decimal:
        """Amount before processing fees."""
        return self.total_amount - self.processing_fee


@dataclass(frozen=True)
class PaymentIdempotency:
    """Result of the business-level idempotency lookup."""

    found: bool
    current_status: PaymentStatus | None
    payment_id: UUID | None


@dataclass(frozen=True)
class PaymentClaim:
    """Result of inserting-or-detecting a payment row."""

    payment_id: UUID
    created: bool
    payment_status: PaymentStatus


# ============================================================================
# Inventory
# ============================================================================


@dataclass(frozen=True)
class InventoryAvailability:
    """Availability check result."""

    available: bool
    available_balance: int


@dataclass(frozen=True)
class InventorySnapshot:
    """Immutable inventory state at a point in time."""

    network: str
    asset_id: int
    total_supply: int
    available_balance: int
    reserved_balance: int
    central_wallet_address: str

    def __post_init__(self) -> None:
        """Validate inventory invariants."""
        if self.available_balance < 0 or self.reserved_balance < 0:
            raise ValueError("Inventory balances cannot be negative")
        if self.available_balance + self.reserved_balance > self.total_supply:
            raise ValueError("available + reserved exceeds total supply")


# ============================================================================
# Settlement
# ============================================================================


@dataclass(frozen=True)
class TxResult:
    """Outcome of a submitted chain transaction."""

    tx_id: str


@dataclass(frozen=True)
class InboxSendInfo:
    """Requirements reported by the inbox router for a deposit."""

    router_opted_in: bool
    receiver_opted_in: bool
    inner_txn_count: int
    mbr: int
    receiver_algo_needed_for_claim: int


@dataclass(frozen=True)
class FoundTransfer:
    """A confirmed on-chain movement located by note during reconciliation."""

    tx_id: str
    method: TransferKind


@dataclass(frozen=True)
class SettlementOutcome:
    """Final result of one settlement attempt."""

    payment_id: UUID
    method: TransferKind | None
    payment_status: PaymentStatus
    token_transfer_status: TokenTransferStatus
    tx_id: str | None = None
    funding_tx_id: str | None = None
    funded_amount: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        """True when tokens left custody."""
        return self.token_transfer_status in (
            TokenTransferStatus.DIRECT_TRANSFERRED,
            TokenTransferStatus.IN_INBOX,
        )


@dataclass(frozen=True)
class WebhookResult:
    """What the payment processing boundary did with one delivery."""

    outcome: WebhookOutcome
    event_id: str
    payment_reference: str | None = None
    settlement: SettlementOutcome | None = None
    reason: str | None = None


@dataclass(frozen=True)
class ReconciliationResult:
    """Counts from one reconciliation sweep."""

    examined: int
    confirmed: int
    failed: int
    skipped: int


@dataclass(frozen=True)
class PaymentStatistics:
    """Aggregate payment counts."""

    total_payments: int
    completed_payments: int
    awaiting_claim_payments: int
    failed_payments: int
    total_tokens_delivered: int


def describe_payment_state(
    payment_status: PaymentStatus, transfer_status: TokenTransferStatus
) -> tuple[str, bool]:
    """Return the buyer-facing message and whether the tokens can be claimed."""
    if transfer_status == TokenTransferStatus.FAILED and payment_status == PaymentStatus.MONITORING:
        return "Token delivery is being verified on-chain", False
    if transfer_status == TokenTransferStatus.FAILED or payment_status == PaymentStatus.FAILED:
        return "Token transfer failed - please contact support", False
    if transfer_status == TokenTransferStatus.DIRECT_TRANSFERRED:
        return "Tokens transferred directly to your wallet", False
    if transfer_status == TokenTransferStatus.COMPLETED:
        return "Tokens claimed", False
    if transfer_status == TokenTransferStatus.IN_INBOX and payment_status == PaymentStatus.PAID:
        return "Tokens are waiting in your inbox - ready to claim", True
    if transfer_status == TokenTransferStatus.IN_INBOX:
        return "Tokens will be available for claiming soon", False
    if payment_status in (PaymentStatus.CANCELED, PaymentStatus.REFUNDED):
        return f"Payment {payment_status.value}", False
    if payment_status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
        return "Payment processing", False
    return "Payment status unknown", False


def format_timestamp(value: datetime | None) -> str | None:
    """ISO format helper for optional timestamps."""
    return value.isoformat() if value else None
