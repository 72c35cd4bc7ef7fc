"""
FastAPI Dependencies - Collaborator wiring and admin authentication.

NO DICTIONARIES - All dependencies return typed objects.
"""

import hmac

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenpay.config import SettlementConfig, get_settlement_config, settings
from tokenpay.db.session import get_write_db
from tokenpay.models.api import PaymentProviderName
from tokenpay.services.chain_client import ChainClient, HttpChainClient
from tokenpay.services.event_gateway import EventGateway
from tokenpay.services.payment_processor import PaymentProcessor
from tokenpay.services.paystack_gateway import PaystackGateway
from tokenpay.services.stripe_gateway import StripeGateway
from tokenpay.services.ttl_store import InMemoryTTLStore, KeyedStore

logger = get_logger(__name__)

# Process-wide collaborators, created on first use
_ttl_store: InMemoryTTLStore | None = None
_chain_client: HttpChainClient | None = None


def get_ttl_store() -> KeyedStore:
    """Shared expiring memo for processed webhook event ids."""
    global _ttl_store
    if _ttl_store is None:
        _ttl_store = InMemoryTTLStore(max_entries=settings.processed_event_cache_max_entries)
    return _ttl_store


def get_chain_client() -> ChainClient:
    """Shared HTTP client for the custodial signing gateway."""
    global _chain_client
    if _chain_client is None:
        _chain_client = HttpChainClient(
            base_url=settings.chain_gateway_url,
            api_token=settings.chain_gateway_token,
            inbox_router_app_id=settings.inbox_router_app_id,
            timeout_seconds=settings.chain_call_timeout_seconds,
        )
    return _chain_client


async def close_chain_client() -> None:
    """Close the gateway client (for graceful shutdown)."""
    global _chain_client
    if _chain_client is not None:
        await _chain_client.close()
        _chain_client = None


def get_gateways() -> dict[PaymentProviderName, EventGateway]:
    """Webhook gateways for every processor with a configured secret."""
    gateways: dict[PaymentProviderName, EventGateway] = {}
    if settings.stripe_webhook_secret:
        gateways[PaymentProviderName.STRIPE] = StripeGateway(settings.stripe_webhook_secret)
    if settings.paystack_secret_key:
        gateways[PaymentProviderName.PAYSTACK] = PaystackGateway(settings.paystack_secret_key)
    return gateways


async def get_payment_processor(
    db: AsyncSession = Depends(get_write_db),
    gateways: dict[PaymentProviderName, EventGateway] = Depends(get_gateways),
    chain: ChainClient = Depends(get_chain_client),
    store: KeyedStore = Depends(get_ttl_store),
    config: SettlementConfig = Depends(get_settlement_config),
) -> PaymentProcessor:
    """Per-request payment processor bound to the write session."""
    return PaymentProcessor(
        session=db,
        gateways=gateways,
        chain=chain,
        config=config,
        store=store,
        event_cache_ttl_seconds=settings.processed_event_cache_ttl_seconds,
    )


async def require_admin_key(
    x_admin_key: str | None = Header(None, description="Admin API key"),
) -> None:
    """
    FastAPI dependency guarding admin endpoints with the X-Admin-Key header.

    Raises:
        HTTPException 503 if no admin key is configured
        HTTPException 401 if the header is missing or wrong
    """
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )
    provided = (x_admin_key or "").encode("utf-8", "surrogateescape")
    if not provided or not hmac.compare_digest(provided, settings.admin_api_key.encode()):
        logger.warning("admin_auth_failed", header_present=bool(x_admin_key))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
