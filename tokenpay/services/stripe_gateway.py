"""
Stripe Webhook Gateway.

NO DICTIONARIES - Raw Stripe events are reduced to CanonicalEvent and
PaymentEvent values at this boundary.
"""

import json
from typing import Any

import stripe
from structlog import get_logger

from tokenpay.exceptions import AuthenticationError, ValidationError
from tokenpay.models.api import PaymentProviderName
from tokenpay.models.domain import CanonicalEvent, PaymentEvent
from tokenpay.services.event_gateway import build_payment_event, minor_to_major

logger = get_logger(__name__)

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"


class StripeGateway:
    """
    Stripe implementation of the EventGateway protocol.

    Handles checkout.session.completed (only when payment_status is "paid")
    and payment_intent.succeeded; every other event kind is acknowledged
    without effect.
    """

    provider = PaymentProviderName.STRIPE

    def __init__(self, webhook_secret: str) -> None:
        """
        Initialize Stripe gateway.

        Args:
            webhook_secret: Stripe webhook signing secret
        """
        if not webhook_secret:
            raise ValueError("Stripe webhook secret is required")
        self.webhook_secret = webhook_secret

    def verify(self, payload: bytes, signature: str | None) -> CanonicalEvent:
        """
        Verify the Stripe-Signature header and parse the event.

        Raises:
            AuthenticationError: Signature missing or invalid
            ValidationError: Payload is not a Stripe event
        """
        if not signature:
            logger.warning("stripe_webhook_signature_missing")
            raise AuthenticationError("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("stripe_webhook_verification_failed", error=str(exc))
            raise AuthenticationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.warning("stripe_webhook_malformed", error=str(exc))
            raise ValidationError(f"Malformed Stripe payload: {exc}") from exc

        body = json.loads(payload)
        if not isinstance(body, dict):
            raise ValidationError("Stripe payload must be a JSON object")

        event_id = body.get("id")
        event_type = body.get("type")
        data_object = (body.get("data") or {}).get("object")
        if not event_id or not event_type or not isinstance(data_object, dict):
            raise ValidationError("Stripe event is missing id, type or data.object")

        logger.info("stripe_webhook_verified", event_id=event_id, event_type=event_type)
        return CanonicalEvent(
            provider=self.provider,
            event_id=str(event_id),
            event_type=str(event_type),
            payload=data_object,
        )

    def to_payment_event(self, event: CanonicalEvent) -> PaymentEvent | None:
        """Map a verified Stripe event to a PaymentEvent, or None if not a payment."""
        if event.event_type == CHECKOUT_SESSION_COMPLETED:
            return self._from_checkout_session(event)
        if event.event_type == PAYMENT_INTENT_SUCCEEDED:
            return self._from_payment_intent(event)

        logger.info(
            "stripe_event_ignored", event_id=event.event_id, event_type=event.event_type
        )
        return None

    def _from_checkout_session(self, event: CanonicalEvent) -> PaymentEvent | None:
        session: dict[str, Any] = event.payload
        if session.get("payment_status") != "paid":
            logger.info(
                "stripe_checkout_not_paid",
                event_id=event.event_id,
                payment_status=session.get("payment_status"),
            )
            return None

        customer = session.get("customer_details") or {}
        return build_payment_event(
            provider=self.provider,
            event_id=event.event_id,
            metadata=session.get("metadata"),
            total_amount=minor_to_major(session.get("amount_total"), "amount_total"),
            currency=str(session.get("currency") or "usd"),
            session_id=session.get("id"),
            payment_intent_id=session.get("payment_intent"),
            user_email=customer.get("email") or session.get("customer_email"),
        )

    def _from_payment_intent(self, event: CanonicalEvent) -> PaymentEvent:
        intent: dict[str, Any] = event.payload
        amount = intent.get("amount_received", intent.get("amount"))
        return build_payment_event(
            provider=self.provider,
            event_id=event.event_id,
            metadata=intent.get("metadata"),
            total_amount=minor_to_major(amount, "amount"),
            currency=str(intent.get("currency") or "usd"),
            payment_intent_id=intent.get("id"),
            user_email=intent.get("receipt_email"),
        )
