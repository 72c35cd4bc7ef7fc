"""
Event Gateway Protocol - Provider-agnostic webhook verification.

NO DICTIONARIES - Adapters turn raw provider payloads into typed
CanonicalEvent / PaymentEvent values; nothing downstream sees provider JSON.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from algosdk import encoding
from structlog import get_logger

from tokenpay.exceptions import ValidationError
from tokenpay.models.api import PaymentProviderName
from tokenpay.models.domain import CanonicalEvent, PaymentEvent

logger = get_logger(__name__)

DEFAULT_NETWORK = "algorand"


class EventGateway(Protocol):
    """
    Protocol for payment processor webhook adapters.

    Implementations: StripeGateway, PaystackGateway.
    """

    provider: PaymentProviderName

    def verify(self, payload: bytes, signature: str | None) -> CanonicalEvent:
        """
        Verify the signature and parse the payload.

        Raises:
            AuthenticationError: Signature missing or invalid
            ValidationError: Payload is not a well-formed provider event
        """
        ...

    def to_payment_event(self, event: CanonicalEvent) -> PaymentEvent | None:
        """
        Interpret a verified event.

        Returns None for event kinds that do not confirm a payment.

        Raises:
            ValidationError: Payment metadata missing or invalid
        """
        ...


def _require(metadata: dict[str, Any], key: str) -> str:
    value = metadata.get(key)
    if value is None or str(value).strip() == "":
        raise ValidationError(f"Missing required metadata: {key}", field=key)
    return str(value).strip()


def _parse_positive_int(raw: str, field: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"{field} must be an integer: {raw}", field=field) from exc
    if value <= 0:
        raise ValidationError(f"{field} must be positive: {value}", field=field)
    return value


def _parse_decimal(raw: Any, field: str) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be numeric: {raw}", field=field) from exc
    if not value.is_finite() or value < 0:
        raise ValidationError(f"{field} must be a non-negative number: {raw}", field=field)
    return value


def minor_to_major(amount_minor: Any, field: str = "amount") -> Decimal:
    """Convert a smallest-currency-unit amount (cents, kobo) to major units."""
    if amount_minor is None:
        raise ValidationError(f"Missing {field}", field=field)
    return _parse_decimal(amount_minor, field) / Decimal(100)


def build_payment_event(
    provider: PaymentProviderName,
    event_id: str,
    metadata: dict[str, Any] | None,
    total_amount: Decimal,
    currency: str,
    session_id: str | None = None,
    payment_intent_id: str | None = None,
    user_email: str | None = None,
) -> PaymentEvent:
    """
    Build a PaymentEvent from the checkout metadata both processors carry.

    Required keys: token_amount, price_per_token, payment_reference,
    user_wallet_address. Optional: network (defaults to algorand).

    Raises:
        ValidationError: Missing metadata or invalid wallet address
    """
    if not isinstance(metadata, dict) or not metadata:
        raise ValidationError("Payment carries no metadata", field="metadata")

    token_amount = _parse_positive_int(_require(metadata, "token_amount"), "token_amount")
    price_per_token = _parse_decimal(_require(metadata, "price_per_token"), "price_per_token")
    payment_reference = _require(metadata, "payment_reference")
    wallet_address = _require(metadata, "user_wallet_address")
    network = str(metadata.get("network") or DEFAULT_NETWORK)

    if not encoding.is_valid_address(wallet_address):
        raise ValidationError(
            f"Invalid wallet address: {wallet_address}", field="user_wallet_address"
        )

    try:
        return PaymentEvent(
            provider=provider,
            event_id=event_id,
            payment_reference=payment_reference,
            token_amount=token_amount,
            price_per_token=price_per_token,
            total_amount=total_amount,
            currency=currency.upper(),
            user_wallet_address=wallet_address,
            network=network,
            session_id=session_id,
            payment_intent_id=payment_intent_id,
            user_email=user_email,
        )
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
