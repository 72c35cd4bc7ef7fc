"""
Idempotency Ledger - Webhook event and payment reference deduplication.

Event ids are checked against a short-lived in-process memo first, then
against webhook_events. The memo is only written once the database agrees.
"""

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenpay.db.models import PaymentTransaction, WebhookEvent, utc_now
from tokenpay.models.api import PaymentProviderName, PaymentStatus
from tokenpay.models.domain import PaymentIdempotency
from tokenpay.services.ttl_store import KeyedStore

logger = get_logger(__name__)

_CACHE_PREFIX = "webhook-event:"


class IdempotencyLedger:
    """Records which provider events have had their business effect applied."""

    def __init__(
        self,
        session: AsyncSession,
        cache: KeyedStore,
        cache_ttl_seconds: float = 3600,
    ) -> None:
        self.session = session
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    async def already_processed(self, event_id: str) -> bool:
        """True if the event was previously marked processed."""
        if self.cache.get(_CACHE_PREFIX + event_id) is not None:
            logger.debug("webhook_event_cache_hit", event_id=event_id)
            return True

        stmt = select(WebhookEvent.processed).where(WebhookEvent.event_id == event_id)
        result = await self.session.execute(stmt)
        processed = result.scalar_one_or_none()
        if processed:
            self.cache.set(_CACHE_PREFIX + event_id, "1", self.cache_ttl_seconds)
            return True
        return False

    async def mark_processed(
        self, event_id: str, event_type: str, provider: PaymentProviderName
    ) -> None:
        """
        Record the event as processed and commit.

        Safe to call repeatedly: a second call only refreshes processed_at.
        """
        now = utc_now()
        stmt = (
            pg_insert(WebhookEvent)
            .values(
                event_id=event_id,
                provider=provider.value,
                event_type=event_type,
                processed=True,
                processed_at=now,
            )
            .on_conflict_do_update(
                index_elements=[WebhookEvent.event_id],
                set_={"processed": True, "processed_at": now},
            )
        )
        await self.session.execute(stmt)
        await self.session.commit()
        self.cache.set(_CACHE_PREFIX + event_id, "1", self.cache_ttl_seconds)
        logger.info("webhook_event_marked_processed", event_id=event_id, event_type=event_type)

    async def check_payment_idempotency(self, payment_reference: str) -> PaymentIdempotency:
        """Look up any existing payment for the reference, whatever its status."""
        stmt = select(PaymentTransaction.id, PaymentTransaction.payment_status).where(
            PaymentTransaction.payment_reference == payment_reference
        )
        result = await self.session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return PaymentIdempotency(found=False, current_status=None, payment_id=None)
        return PaymentIdempotency(
            found=True, current_status=PaymentStatus(row.payment_status), payment_id=row.id
        )
