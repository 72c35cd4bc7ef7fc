"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    """Payment lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    MONITORING = "monitoring"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


class TokenTransferStatus(str, Enum):
    """Token delivery status for a payment."""

    PENDING = "pending"
    REQUIRES_OPT_IN = "requires_opt_in"
    IN_INBOX = "in_inbox"
    DIRECT_TRANSFERRED = "direct_transferred"
    COMPLETED = "completed"
    FAILED = "failed"


class TransferKind(str, Enum):
    """Kind of on-chain movement recorded in token_transfers."""

    DIRECT_TRANSFER = "direct_transfer"
    INBOX_DEPOSIT = "inbox_deposit"
    FUNDING = "funding"
    ROUTER_OPT_IN = "router_opt_in"


class TransferRecordStatus(str, Enum):
    """Status of a single token_transfers row."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ReservationStatus(str, Enum):
    """Inventory reservation status."""

    ACTIVE = "active"
    RELEASED = "released"
    COMMITTED = "committed"


class BalanceDirection(str, Enum):
    """Direction of a cached wallet balance update."""

    CREDIT = "credit"
    DEBIT = "debit"


class PaymentProviderName(str, Enum):
    """Supported payment processors."""

    STRIPE = "stripe"
    PAYSTACK = "paystack"


class WebhookOutcome(str, Enum):
    """How a verified webhook delivery was handled."""

    SETTLED = "settled"
    MONITORING = "monitoring"
    DUPLICATE = "duplicate"
    ALREADY_EXISTS = "already_exists"
    IGNORED = "ignored"
    REJECTED = "rejected"


# ============================================================================
# Webhook Models
# ============================================================================


class WebhookAck(BaseModel):
    """Response returned to the payment processor."""

    received: bool = True
    event_id: str | None = None
    status: WebhookOutcome
    payment_reference: str | None = None


# ============================================================================
# Payment Status Models
# ============================================================================


class PaymentStatusResponse(BaseModel):
    """GET /v1/payments/{payment_reference} response - buyer facing."""

    payment_reference: str
    payment_status: PaymentStatus
    token_transfer_status: TokenTransferStatus
    token_amount: int
    user_wallet_address: str
    token_transfer_tx_id: str | None = None
    token_transfer_error: str | None = None
    can_claim: bool = False
    message: str
    created_at: str
    paid_at: str | None = None
    tokens_transferred_at: str | None = None


class PendingPaymentsResponse(BaseModel):
    """GET /v1/payments/pending response."""

    wallet_address: str
    payments: list[PaymentStatusResponse]
    total_count: int


# ============================================================================
# Admin Models
# ============================================================================


class InventoryResponse(BaseModel):
    """Token inventory snapshot."""

    network: str
    asset_id: int
    total_supply: int
    available_balance: int
    reserved_balance: int
    central_wallet_address: str


class ProvisionInventoryRequest(BaseModel):
    """POST /v1/admin/inventory request body."""

    network: str = Field(..., min_length=1, max_length=50)
    asset_id: int = Field(..., gt=0)
    additional_supply: int = Field(..., gt=0, description="Base units added to the pool")
    central_wallet_address: str = Field(..., min_length=58, max_length=58)


class PaymentStatisticsResponse(BaseModel):
    """GET /v1/admin/statistics response."""

    total_payments: int
    completed_payments: int
    awaiting_claim_payments: int
    failed_payments: int
    total_tokens_delivered: int


class ReconciliationResponse(BaseModel):
    """POST /v1/admin/reconcile response."""

    examined: int
    confirmed: int
    failed: int
    skipped: int


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
    version: str
