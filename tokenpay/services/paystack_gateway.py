"""
Paystack Webhook Gateway.

Paystack signs the raw request body with HMAC-SHA512 keyed by the account
secret key and sends the hex digest in the x-paystack-signature header.
"""

import hashlib
import hmac
import json
from typing import Any

from structlog import get_logger

from tokenpay.exceptions import AuthenticationError, ValidationError
from tokenpay.models.api import PaymentProviderName
from tokenpay.models.domain import CanonicalEvent, PaymentEvent
from tokenpay.services.event_gateway import build_payment_event, minor_to_major

logger = get_logger(__name__)

CHARGE_SUCCESS = "charge.success"
DEFAULT_CURRENCY = "NGN"


def compute_signature(payload: bytes, secret_key: str) -> str:
    """Hex HMAC-SHA512 of the raw body."""
    return hmac.new(secret_key.encode("utf-8"), payload, hashlib.sha512).hexdigest()


class PaystackGateway:
    """
    Paystack implementation of the EventGateway protocol.

    Paystack sends no delivery id, so the event id is derived from the event
    name and the transaction reference.
    """

    provider = PaymentProviderName.PAYSTACK

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("Paystack secret key is required")
        self.secret_key = secret_key

    def verify(self, payload: bytes, signature: str | None) -> CanonicalEvent:
        """
        Verify x-paystack-signature and parse the event.

        Raises:
            AuthenticationError: Signature missing or invalid
            ValidationError: Payload is not a Paystack event
        """
        if not signature:
            logger.warning("paystack_webhook_signature_missing")
            raise AuthenticationError("Missing x-paystack-signature header")

        expected = compute_signature(payload, self.secret_key)
        provided = signature.strip().lower().encode("utf-8", "surrogateescape")
        if not hmac.compare_digest(expected.encode(), provided):
            logger.warning("paystack_webhook_verification_failed")
            raise AuthenticationError("Invalid Paystack webhook signature")

        try:
            body = json.loads(payload)
        except ValueError as exc:
            logger.warning("paystack_webhook_malformed", error=str(exc))
            raise ValidationError(f"Malformed Paystack payload: {exc}") from exc

        if not isinstance(body, dict):
            raise ValidationError("Paystack payload must be a JSON object")

        event_type = body.get("event")
        data = body.get("data")
        if not event_type or not isinstance(data, dict) or not data.get("reference"):
            raise ValidationError("Paystack event is missing event, data or data.reference")

        event_id = f"{event_type}:{data['reference']}"
        logger.info("paystack_webhook_verified", event_id=event_id, event_type=event_type)
        return CanonicalEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=str(event_type),
            payload=data,
        )

    def to_payment_event(self, event: CanonicalEvent) -> PaymentEvent | None:
        """Map charge.success to a PaymentEvent; everything else is ignored."""
        if event.event_type != CHARGE_SUCCESS:
            logger.info(
                "paystack_event_ignored", event_id=event.event_id, event_type=event.event_type
            )
            return None

        data: dict[str, Any] = event.payload
        if data.get("status") != "success":
            logger.info(
                "paystack_charge_not_successful",
                event_id=event.event_id,
                status=data.get("status"),
            )
            return None

        metadata = data.get("metadata")
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError as exc:
                raise ValidationError("Paystack metadata is not valid JSON", "metadata") from exc

        customer = data.get("customer") or {}
        metadata_currency = metadata.get("currency") if isinstance(metadata, dict) else None
        currency = data.get("currency") or metadata_currency or DEFAULT_CURRENCY
        transaction_id = data.get("id")
        return build_payment_event(
            provider=self.provider,
            event_id=event.event_id,
            metadata=metadata,
            total_amount=minor_to_major(data.get("amount"), "amount"),
            currency=str(currency),
            session_id=str(data["reference"]),
            payment_intent_id=str(transaction_id) if transaction_id is not None else None,
            user_email=customer.get("email"),
        )
