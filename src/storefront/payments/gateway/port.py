"""Payment gateway port (abstract interface).

Defines the contract the checkout and confirmation code needs from the
payment processor. StripeGateway talks to Stripe; FakeGateway simulates it
in development and tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from storefront.errors import GatewayError

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"

# Stripe metadata limits
METADATA_MAX_KEYS = 50
METADATA_MAX_VALUE_LENGTH = 500


def split_metadata_value(key: str, value: str, limit: int = METADATA_MAX_VALUE_LENGTH) -> dict[str, str]:
    """Spread ``value`` over ``<key>_0``, ``<key>_1``, ... so that every part fits ``limit``."""
    parts = [value[start : start + limit] for start in range(0, len(value), limit)] or [""]
    return {f"{key}_{index}": part for index, part in enumerate(parts)}


def join_metadata_value(metadata: dict, key: str) -> str | None:
    """Reassemble a value written by ``split_metadata_value``. A plain ``key`` is read as is."""
    if key in metadata:
        return metadata[key]
    parts = []
    while f"{key}_{len(parts)}" in metadata:
        parts.append(metadata[f"{key}_{len(parts)}"])
    return "".join(parts) if parts else None


def check_metadata(metadata: dict[str, str]) -> None:
    """Raise GatewayError when ``metadata`` exceeds what the processor accepts."""
    if len(metadata) > METADATA_MAX_KEYS:
        raise GatewayError(f"Metadata has {len(metadata)} keys, the limit is {METADATA_MAX_KEYS}")
    for key, value in metadata.items():
        if len(value) > METADATA_MAX_VALUE_LENGTH:
            raise GatewayError(
                f"Metadata value for '{key}' is {len(value)} characters, the limit is {METADATA_MAX_VALUE_LENGTH}"
            )


@dataclass(frozen=True)
class PaymentIntentHandle:
    """What the client needs to confirm a payment intent."""

    intent_id: str
    client_secret: str
    amount: int
    currency: str
    status: str = "requires_payment_method"


@dataclass(frozen=True)
class PaymentIntentInfo:
    """A payment intent as currently known to the processor."""

    intent_id: str
    amount: int
    currency: str
    status: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentEvent:
    """An authenticated webhook event about a payment intent."""

    event_id: str
    event_type: str
    intent_id: str | None
    amount: int | None = None
    currency: str | None = None
    metadata: dict = field(default_factory=dict)
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
        receipt_email: str | None = None,
    ) -> PaymentIntentHandle:
        """Open a payment intent. Raises GatewayError on failure."""
        ...

    @abstractmethod
    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentInfo:
        """Fetch a payment intent for reconciliation. Raises GatewayError on failure."""
        ...

    @abstractmethod
    def parse_webhook_event(self, payload: bytes, signature: str) -> PaymentEvent:
        """Authenticate and decode a webhook payload.

        Raises WebhookSignatureError when the payload cannot be verified.
        """
        ...
