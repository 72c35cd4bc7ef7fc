"""
Payment Processor - Webhook-to-settlement orchestration.

Flow for one delivery:
    verify -> dedupe event id -> interpret -> look up existing payment ->
    create payment row (unique on reference) -> reserve inventory -> settle on
    chain -> mark event processed

Only the caller that creates the payment row reserves and settles, so
concurrent or replayed deliveries for the same payment can never transfer
twice.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenpay.config import SettlementConfig
from tokenpay.exceptions import ChainError, InsufficientInventoryError, ValidationError
from tokenpay.models.api import (
    PaymentProviderName,
    PaymentStatus,
    TokenTransferStatus,
    WebhookOutcome,
)
from tokenpay.models.domain import CanonicalEvent, PaymentEvent, WebhookResult
from tokenpay.observability.logging import log_context
from tokenpay.observability.metrics import metrics
from tokenpay.services.chain_client import ChainClient
from tokenpay.services.event_gateway import EventGateway
from tokenpay.services.idempotency import IdempotencyLedger
from tokenpay.services.inventory import InventoryManager
from tokenpay.services.ledger import TransactionLedger
from tokenpay.services.settlement import SettlementDispatcher
from tokenpay.services.ttl_store import KeyedStore

logger = get_logger(__name__)


class PaymentProcessor:
    """Entry point for payment processor webhooks."""

    def __init__(
        self,
        session: AsyncSession,
        gateways: dict[PaymentProviderName, EventGateway],
        chain: ChainClient,
        config: SettlementConfig,
        store: KeyedStore,
        event_cache_ttl_seconds: float = 3600,
    ) -> None:
        self.session = session
        self.gateways = gateways
        self.config = config
        self.idempotency = IdempotencyLedger(session, store, event_cache_ttl_seconds)
        self.ledger = TransactionLedger(session)
        self.inventory = InventoryManager(session, config)
        self.dispatcher = SettlementDispatcher(session, chain, config)

    async def handle(
        self, provider: PaymentProviderName, payload: bytes, signature: str | None
    ) -> WebhookResult:
        """
        Process one webhook delivery.

        Raises:
            AuthenticationError: Signature missing or invalid
            ValidationError: Malformed payload or metadata (event marked processed)
            ChainError: Settlement failed on chain (recorded; event marked processed)
            StateConflictError: Illegal status regression
        """
        gateway = self.gateways.get(provider)
        if gateway is None:
            raise ValidationError(f"Payment provider not configured: {provider.value}")

        event = gateway.verify(payload, signature)
        with log_context(event_id=event.event_id, provider=provider.value):
            if await self.idempotency.already_processed(event.event_id):
                logger.info("webhook_duplicate", event_type=event.event_type)
                metrics.record_webhook(provider.value, event.event_type, "duplicate")
                return WebhookResult(outcome=WebhookOutcome.DUPLICATE, event_id=event.event_id)

            try:
                payment_event = gateway.to_payment_event(event)
            except ValidationError as exc:
                logger.warning(
                    "webhook_payload_invalid",
                    event_type=event.event_type,
                    error=exc.message,
                    field=exc.field,
                )
                await self._mark_processed(event)
                metrics.record_webhook(provider.value, event.event_type, "invalid")
                raise

            if payment_event is None:
                await self._mark_processed(event)
                metrics.record_webhook(provider.value, event.event_type, "ignored")
                return WebhookResult(outcome=WebhookOutcome.IGNORED, event_id=event.event_id)

            with log_context(payment_reference=payment_event.payment_reference):
                result = await self._process_payment(event, payment_event)
                metrics.record_webhook(provider.value, event.event_type, result.outcome.value)
                return result

    async def _mark_processed(self, event: CanonicalEvent) -> None:
        await self.idempotency.mark_processed(event.event_id, event.event_type, event.provider)

    async def _already_exists(
        self, event: CanonicalEvent, reference: str, status: PaymentStatus
    ) -> WebhookResult:
        await self._mark_processed(event)
        return WebhookResult(
            outcome=WebhookOutcome.ALREADY_EXISTS,
            event_id=event.event_id,
            payment_reference=reference,
            reason=f"Payment already {status.value}",
        )

    async def _process_payment(
        self, event: CanonicalEvent, payment_event: PaymentEvent
    ) -> WebhookResult:
        reference = payment_event.payment_reference
        existing = await self.idempotency.check_payment_idempotency(reference)
        if existing.found:
            logger.info("payment_already_exists", payment_id=str(existing.payment_id))
            return await self._already_exists(event, reference, existing.current_status)

        # The insert stays the arbiter: a concurrent delivery can win between the two
        claim = await self.ledger.create_payment_transaction(payment_event, self.config.asset_id)
        if not claim.created:
            await self.session.commit()
            return await self._already_exists(event, reference, claim.payment_status)

        payment = await self.ledger.update_payment_status(
            claim.payment_id, PaymentStatus.PROCESSING
        )
        try:
            await self.inventory.reserve(
                payment_event.token_amount, claim.payment_id, payment_event.network
            )
        except InsufficientInventoryError as exc:
            await self.ledger.update_token_transfer_status(
                claim.payment_id, TokenTransferStatus.FAILED, error="Insufficient token inventory"
            )
            await self.ledger.update_payment_status(
                claim.payment_id, PaymentStatus.FAILED, note=f"InsufficientInventory: {exc}"
            )
            await self.session.commit()
            await self._mark_processed(event)
            return WebhookResult(
                outcome=WebhookOutcome.REJECTED,
                event_id=event.event_id,
                payment_reference=reference,
                reason="Insufficient token inventory",
            )
        await self.session.commit()

        outcome = await self.dispatcher.settle(payment)
        await self._mark_processed(event)

        if outcome.succeeded:
            return WebhookResult(
                outcome=WebhookOutcome.SETTLED,
                event_id=event.event_id,
                payment_reference=reference,
                settlement=outcome,
            )
        if outcome.payment_status == PaymentStatus.MONITORING:
            return WebhookResult(
                outcome=WebhookOutcome.MONITORING,
                event_id=event.event_id,
                payment_reference=reference,
                settlement=outcome,
                reason=outcome.error,
            )
        raise ChainError(outcome.error or "Token settlement failed")
