"""Configurable fake payment gateway for development and testing.

Simulates Stripe without any external calls:
- payment intents are kept in memory and can be retrieved for reconciliation
- webhook payloads use Stripe's event shape and are signed with HMAC-SHA256
- failures can be switched on permanently or for the next N calls
"""

import hashlib
import hmac
import json
from uuid import uuid4

from storefront.errors import GatewayError, WebhookSignatureError
from storefront.payments.gateway.port import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    PaymentEvent,
    PaymentGateway,
    PaymentIntentHandle,
    PaymentIntentInfo,
    check_metadata,
)
from storefront.payments.gateway.stripe_adapter import event_from_dict

DEFAULT_WEBHOOK_SECRET = "whsec_test"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self, webhook_secret: str = DEFAULT_WEBHOOK_SECRET) -> None:
        self.webhook_secret = webhook_secret
        self.should_succeed: bool = True
        self.failure_reason: str = "Processor unavailable"
        self.failures_remaining: int = 0
        self.intents: dict[str, dict] = {}
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Processor unavailable") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def fail_next(self, times: int, failure_reason: str = "Processor unavailable") -> None:
        """Fail the next ``times`` processor calls, then recover."""
        self.failures_remaining = times
        self.failure_reason = failure_reason

    def _maybe_fail(self) -> None:
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise GatewayError(self.failure_reason)
        if not self.should_succeed:
            raise GatewayError(self.failure_reason)

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
        receipt_email: str | None = None,
    ) -> PaymentIntentHandle:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount": amount,
                "currency": currency,
                "metadata": dict(metadata),
                "idempotency_key": idempotency_key,
                "receipt_email": receipt_email,
            }
        )
        check_metadata(metadata)
        self._maybe_fail()

        existing = next(
            (i for i in self.intents.values() if i["idempotency_key"] == idempotency_key),
            None,
        )
        if existing is None:
            intent_id = f"pi_fake_{uuid4().hex[:16]}"
            existing = {
                "id": intent_id,
                "client_secret": f"{intent_id}_secret_{uuid4().hex[:8]}",
                "amount": amount,
                "currency": currency,
                "status": "requires_payment_method",
                "metadata": dict(metadata),
                "idempotency_key": idempotency_key,
            }
            self.intents[intent_id] = existing

        return PaymentIntentHandle(
            intent_id=existing["id"],
            client_secret=existing["client_secret"],
            amount=existing["amount"],
            currency=existing["currency"],
            status=existing["status"],
        )

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentInfo:
        self.calls.append({"method": "retrieve_payment_intent", "intent_id": intent_id})
        self._maybe_fail()
        intent = self.intents.get(intent_id)
        if intent is None:
            raise GatewayError(f"No such payment_intent: '{intent_id}'")
        return PaymentIntentInfo(
            intent_id=intent["id"],
            amount=intent["amount"],
            currency=intent["currency"],
            status=intent["status"],
            metadata=dict(intent["metadata"]),
        )

    # -------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------
    def sign(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()

    def parse_webhook_event(self, payload: bytes, signature: str) -> PaymentEvent:
        if not signature or not hmac.compare_digest(self.sign(payload), signature):
            raise WebhookSignatureError("Invalid signature")
        try:
            return event_from_dict(json.loads(payload))
        except ValueError as exc:
            raise WebhookSignatureError(f"Invalid payload: {exc}") from exc

    def complete_intent(self, intent_id: str, succeeded: bool = True, failure_reason: str | None = None) -> None:
        """Move an intent to its terminal status, as the customer paying would."""
        intent = self.intents[intent_id]
        intent["status"] = "succeeded" if succeeded else "requires_payment_method"
        intent["last_payment_error"] = None if succeeded else {"message": failure_reason or "Card declined"}

    def build_event(self, intent_id: str, event_type: str = PAYMENT_SUCCEEDED, event_id: str | None = None):
        """Build a signed webhook delivery for an intent. Returns ``(payload, signature)``."""
        intent = self.intents[intent_id]
        data = {
            "id": intent["id"],
            "object": "payment_intent",
            "amount": intent["amount"],
            "currency": intent["currency"],
            "status": "succeeded" if event_type == PAYMENT_SUCCEEDED else "requires_payment_method",
            "metadata": intent["metadata"],
        }
        if event_type == PAYMENT_FAILED:
            data["last_payment_error"] = intent.get("last_payment_error") or {"message": "Card declined"}

        event = {
            "id": event_id or f"evt_fake_{uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "data": {"object": data},
        }
        payload = json.dumps(event).encode()
        return payload, self.sign(payload)
