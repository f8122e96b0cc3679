"""Payment failures: recorded for observability, and their holds released at once."""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront

logger = structlog.get_logger(__name__)


@storefront.aggregate
class PaymentFailure:
    payment_intent_id = String(required=True, max_length=255)
    event_id = String(max_length=255)
    checkout_id = Identifier()
    customer_email = String(max_length=254)
    amount = Integer()
    reason = Text()
    recorded_at = DateTime(default=lambda: datetime.now(UTC))

    @classmethod
    def record(cls, payment_intent_id, event_id=None, checkout_id=None, customer_email=None, amount=None, reason=None):
        from storefront.ordering.events import PaymentFailureRecorded

        now = datetime.now(UTC)
        failure = cls(
            payment_intent_id=payment_intent_id,
            event_id=event_id,
            checkout_id=checkout_id,
            customer_email=customer_email,
            amount=amount,
            reason=reason,
            recorded_at=now,
        )
        failure.raise_(
            PaymentFailureRecorded(
                payment_failure_id=str(failure.id),
                payment_intent_id=payment_intent_id,
                checkout_id=checkout_id,
                customer_email=customer_email,
                reason=reason,
                recorded_at=now,
            )
        )
        return failure


@storefront.command(part_of="PaymentFailure")
class RecordPaymentFailure:
    payment_intent_id = String(required=True, max_length=255)
    event_id = String(max_length=255)
    checkout_id = Identifier()
    customer_email = String(max_length=254)
    amount = Integer()
    reason = Text()


@storefront.command_handler(part_of=PaymentFailure)
class PaymentFailureHandler:
    @handle(RecordPaymentFailure)
    def record_payment_failure(self, command):
        repo = current_domain.repository_for(PaymentFailure)
        if command.event_id:
            existing = repo._dao.query.filter(event_id=command.event_id).all().first
            if existing is not None:
                return str(existing.id)

        failure = PaymentFailure.record(
            payment_intent_id=command.payment_intent_id,
            event_id=command.event_id,
            checkout_id=command.checkout_id,
            customer_email=command.customer_email,
            amount=command.amount,
            reason=command.reason,
        )
        repo.add(failure)

        logger.warning(
            "Payment failed",
            payment_intent_id=command.payment_intent_id,
            checkout_id=command.checkout_id,
            reason=command.reason,
        )
        return str(failure.id)
