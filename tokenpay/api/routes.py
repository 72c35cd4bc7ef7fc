"""
API Routes - FastAPI endpoints for webhooks and buyer payment status.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from algosdk import encoding
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenpay.api.dependencies import get_payment_processor
from tokenpay.config import settings
from tokenpay.db.models import PaymentTransaction
from tokenpay.db.session import get_read_db
from tokenpay.exceptions import (
    AuthenticationError,
    ChainError,
    StateConflictError,
    ValidationError,
)
from tokenpay.models.api import (
    HealthResponse,
    PaymentProviderName,
    PaymentStatus,
    PaymentStatusResponse,
    PendingPaymentsResponse,
    TokenTransferStatus,
    WebhookAck,
)
from tokenpay.models.domain import describe_payment_state, format_timestamp
from tokenpay.observability.metrics import metrics
from tokenpay.services.ledger import TransactionLedger
from tokenpay.services.payment_processor import PaymentProcessor

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Webhook Endpoints
# =============================================================================


async def _handle_webhook(
    provider: PaymentProviderName,
    request: Request,
    signature: str | None,
    processor: PaymentProcessor,
) -> WebhookAck:
    """Run one delivery through the processor and map failures to status codes."""
    payload = await request.body()

    try:
        result = await processor.handle(provider, payload, signature)

    except AuthenticationError as exc:
        logger.warning("webhook_verification_failed", provider=provider.value, error=exc.message)
        metrics.record_webhook(provider.value, "unknown", "unauthenticated")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        ) from exc

    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        ) from exc

    except StateConflictError as exc:
        logger.error(
            "webhook_state_conflict",
            provider=provider.value,
            payment_id=str(exc.payment_id),
            field=exc.field,
            current=exc.current,
            requested=exc.requested,
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Payment is already in a final state",
        ) from exc

    except ChainError as exc:
        logger.error("webhook_settlement_failed", provider=provider.value, error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Token settlement failed",
        ) from exc

    except Exception as exc:
        logger.error("webhook_processing_failed", provider=provider.value, error=str(exc))
        metrics.record_error(type(exc).__name__, "webhook")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    return WebhookAck(
        event_id=result.event_id,
        status=result.outcome,
        payment_reference=result.payment_reference,
    )


@router.post("/v1/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="stripe-signature"),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> WebhookAck:
    """
    Handle Stripe webhook events.

    checkout.session.completed and payment_intent.succeeded settle tokens;
    every other event type is acknowledged and ignored.
    """
    return await _handle_webhook(PaymentProviderName.STRIPE, request, stripe_signature, processor)


@router.post("/webhook", response_model=WebhookAck)
async def generic_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="stripe-signature"),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> WebhookAck:
    """Legacy webhook path; deliveries are Stripe-signed."""
    return await _handle_webhook(PaymentProviderName.STRIPE, request, stripe_signature, processor)


@router.post("/v1/webhooks/paystack", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    paystack_signature: str | None = Header(None, alias="x-paystack-signature"),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> WebhookAck:
    """Handle Paystack webhook events (charge.success settles tokens)."""
    return await _handle_webhook(
        PaymentProviderName.PAYSTACK, request, paystack_signature, processor
    )


# =============================================================================
# Buyer Payment Status
# =============================================================================


def _to_status_response(payment: PaymentTransaction) -> PaymentStatusResponse:
    payment_status = PaymentStatus(payment.payment_status)
    transfer_status = TokenTransferStatus(payment.token_transfer_status)
    message, can_claim = describe_payment_state(payment_status, transfer_status)
    return PaymentStatusResponse(
        payment_reference=payment.payment_reference,
        payment_status=payment_status,
        token_transfer_status=transfer_status,
        token_amount=payment.token_amount,
        user_wallet_address=payment.user_wallet_address,
        token_transfer_tx_id=payment.token_transfer_tx_id,
        token_transfer_error=payment.token_transfer_error,
        can_claim=can_claim,
        message=message,
        created_at=payment.created_at.isoformat(),
        paid_at=format_timestamp(payment.paid_at),
        tokens_transferred_at=format_timestamp(payment.tokens_transferred_at),
    )


# Declared before /{payment_reference} so "pending" is not taken as a reference
@router.get("/v1/payments/pending", response_model=PendingPaymentsResponse)
async def pending_payments(
    wallet_address: str = Query(..., min_length=58, max_length=58),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_read_db),
) -> PendingPaymentsResponse:
    """Recent payments for a wallet, with buyer-facing status messages."""
    if not encoding.is_valid_address(wallet_address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid wallet address",
        )

    payments = await TransactionLedger(db).list_by_wallet(wallet_address, limit=limit)
    items = [_to_status_response(payment) for payment in payments]
    return PendingPaymentsResponse(
        wallet_address=wallet_address,
        payments=items,
        total_count=len(items),
    )


@router.get("/v1/payments/{payment_reference}", response_model=PaymentStatusResponse)
async def get_payment_status(
    payment_reference: str,
    db: AsyncSession = Depends(get_read_db),
) -> PaymentStatusResponse:
    """Buyer status view for one payment."""
    payment = await TransactionLedger(db).get_by_reference(payment_reference)
    if payment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    return _to_status_response(payment)


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
        version=settings.api_version,
    )
