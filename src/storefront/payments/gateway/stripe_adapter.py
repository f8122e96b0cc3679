"""Stripe payment gateway adapter."""

import json

import stripe
import structlog

from storefront.errors import GatewayError, WebhookSignatureError
from storefront.payments.gateway.port import (
    PaymentEvent,
    PaymentGateway,
    PaymentIntentHandle,
    PaymentIntentInfo,
    check_metadata,
)

logger = structlog.get_logger(__name__)


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter.

    Network retries are left to the caller so that each call is bounded by
    a single request timeout.
    """

    def __init__(self, api_key: str, webhook_secret: str, timeout: float = 5.0) -> None:
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is required for the Stripe gateway")
        self.api_key = api_key
        self.webhook_secret = webhook_secret

        stripe.api_key = api_key
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
        receipt_email: str | None = None,
    ) -> PaymentIntentHandle:
        check_metadata(metadata)
        params = {
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if receipt_email:
            params["receipt_email"] = receipt_email

        try:
            intent = stripe.PaymentIntent.create(idempotency_key=idempotency_key, **params)
        except stripe.StripeError as exc:
            logger.warning("Stripe payment intent creation failed", error=str(exc), code=getattr(exc, "code", None))
            raise GatewayError(str(exc)) from exc

        return PaymentIntentHandle(
            intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=intent.currency,
            status=intent.status,
        )

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentInfo:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as exc:
            raise GatewayError(str(exc)) from exc

        return PaymentIntentInfo(
            intent_id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            status=intent.status,
            metadata=dict(intent.metadata or {}),
        )

    def parse_webhook_event(self, payload: bytes, signature: str) -> PaymentEvent:
        if not self.webhook_secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            raise WebhookSignatureError(f"Invalid payload: {exc}") from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError(f"Invalid signature: {exc}") from exc

        # The signature covers the raw bytes; decode them as plain JSON.
        event = json.loads(payload)
        return event_from_dict(event)


def event_from_dict(event: dict) -> PaymentEvent:
    """Map a Stripe event body to a PaymentEvent."""
    data = (event.get("data") or {}).get("object") or {}
    is_intent = data.get("object") == "payment_intent"
    last_error = data.get("last_payment_error") or {}
    return PaymentEvent(
        event_id=event.get("id", ""),
        event_type=event.get("type", ""),
        intent_id=data.get("id") if is_intent else None,
        amount=data.get("amount"),
        currency=data.get("currency"),
        metadata=dict(data.get("metadata") or {}),
        failure_reason=last_error.get("message"),
    )
