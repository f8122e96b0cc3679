"""Tests for the payment gateway adapters."""

import json
from types import SimpleNamespace
from unittest import mock

import pytest
import stripe
from storefront.errors import GatewayError, WebhookSignatureError
from storefront.payments.gateway.fake_adapter import FakeGateway
from storefront.payments.gateway.port import (
    METADATA_MAX_KEYS,
    METADATA_MAX_VALUE_LENGTH,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    join_metadata_value,
    split_metadata_value,
)
from storefront.payments.gateway.stripe_adapter import StripeGateway, event_from_dict


def _create(gateway, idempotency_key="chk-1", amount=12990):
    return gateway.create_payment_intent(
        amount=amount,
        currency="usd",
        metadata={"checkout_id": idempotency_key},
        idempotency_key=idempotency_key,
        receipt_email="ada@example.com",
    )


class TestFakeGateway:
    def test_creates_intent(self):
        gateway = FakeGateway()
        handle = _create(gateway)
        assert handle.intent_id.startswith("pi_fake_")
        assert handle.client_secret.startswith(handle.intent_id)
        assert handle.amount == 12990

    def test_same_idempotency_key_returns_same_intent(self):
        gateway = FakeGateway()
        first = _create(gateway)
        second = _create(gateway)
        assert first.intent_id == second.intent_id
        assert len(gateway.intents) == 1

    def test_fail_next_recovers(self):
        gateway = FakeGateway()
        gateway.fail_next(1)
        with pytest.raises(GatewayError):
            _create(gateway)
        assert _create(gateway).intent_id

    def test_configured_failure(self):
        gateway = FakeGateway()
        gateway.configure(should_succeed=False, failure_reason="Card network down")
        with pytest.raises(GatewayError, match="Card network down"):
            _create(gateway)

    def test_metadata_value_over_limit_is_rejected(self):
        gateway = FakeGateway()
        with pytest.raises(GatewayError, match="items"):
            gateway.create_payment_intent(
                amount=100, currency="usd", metadata={"items": "x" * 501}, idempotency_key="chk-1"
            )
        assert gateway.intents == {}

    def test_too_many_metadata_keys_is_rejected(self):
        metadata = {f"key_{index}": "v" for index in range(METADATA_MAX_KEYS + 1)}
        with pytest.raises(GatewayError):
            FakeGateway().create_payment_intent(amount=100, currency="usd", metadata=metadata, idempotency_key="k")

    def test_retrieve(self):
        gateway = FakeGateway()
        handle = _create(gateway)
        gateway.complete_intent(handle.intent_id)
        info = gateway.retrieve_payment_intent(handle.intent_id)
        assert info.status == "succeeded"
        assert info.metadata == {"checkout_id": "chk-1"}

    def test_retrieve_unknown(self):
        with pytest.raises(GatewayError):
            FakeGateway().retrieve_payment_intent("pi_missing")

    def test_signed_event_round_trip(self):
        gateway = FakeGateway()
        handle = _create(gateway)
        payload, signature = gateway.build_event(handle.intent_id, event_id="evt_1")

        event = gateway.parse_webhook_event(payload, signature)

        assert event.event_id == "evt_1"
        assert event.event_type == PAYMENT_SUCCEEDED
        assert event.intent_id == handle.intent_id
        assert event.metadata == {"checkout_id": "chk-1"}

    def test_failed_event_carries_reason(self):
        gateway = FakeGateway()
        handle = _create(gateway)
        gateway.complete_intent(handle.intent_id, succeeded=False, failure_reason="Insufficient funds")
        payload, signature = gateway.build_event(handle.intent_id, PAYMENT_FAILED)

        event = gateway.parse_webhook_event(payload, signature)

        assert event.event_type == PAYMENT_FAILED
        assert event.failure_reason == "Insufficient funds"

    def test_wrong_signature_rejected(self):
        gateway = FakeGateway()
        handle = _create(gateway)
        payload, _ = gateway.build_event(handle.intent_id)
        with pytest.raises(WebhookSignatureError):
            gateway.parse_webhook_event(payload, "deadbeef")

    def test_tampered_payload_rejected(self):
        gateway = FakeGateway()
        handle = _create(gateway)
        payload, signature = gateway.build_event(handle.intent_id)
        tampered = payload.replace(b"12990", b"1")
        with pytest.raises(WebhookSignatureError):
            gateway.parse_webhook_event(tampered, signature)

    def test_missing_signature_rejected(self):
        with pytest.raises(WebhookSignatureError):
            FakeGateway().parse_webhook_event(b"{}", "")


@pytest.fixture()
def stripe_globals(monkeypatch):
    """Restore Stripe's module-level configuration after each test."""
    monkeypatch.setattr(stripe, "api_key", None)
    monkeypatch.setattr(stripe, "max_network_retries", stripe.max_network_retries)
    monkeypatch.setattr(stripe, "default_http_client", None)


class TestStripeGateway:
    def test_requires_api_key(self, stripe_globals):
        with pytest.raises(ValueError):
            StripeGateway(api_key="", webhook_secret="whsec")

    def test_configures_client(self, stripe_globals):
        StripeGateway(api_key="sk_test_123", webhook_secret="whsec", timeout=3.0)
        assert stripe.api_key == "sk_test_123"
        assert stripe.max_network_retries == 0

    def test_create_payment_intent(self, stripe_globals):
        intent = SimpleNamespace(
            id="pi_123", client_secret="pi_123_secret", amount=12990, currency="usd", status="requires_payment_method"
        )
        gateway = StripeGateway(api_key="sk_test_123", webhook_secret="whsec")
        with mock.patch.object(stripe.PaymentIntent, "create", return_value=intent) as create:
            handle = gateway.create_payment_intent(
                amount=12990,
                currency="usd",
                metadata={"checkout_id": "chk-1"},
                idempotency_key="chk-1",
                receipt_email="ada@example.com",
            )

        assert handle.intent_id == "pi_123"
        assert handle.client_secret == "pi_123_secret"
        kwargs = create.call_args.kwargs
        assert kwargs["idempotency_key"] == "chk-1"
        assert kwargs["amount"] == 12990
        assert kwargs["metadata"] == {"checkout_id": "chk-1"}
        assert kwargs["automatic_payment_methods"] == {"enabled": True}

    def test_stripe_error_becomes_gateway_error(self, stripe_globals):
        gateway = StripeGateway(api_key="sk_test_123", webhook_secret="whsec")
        with mock.patch.object(stripe.PaymentIntent, "create", side_effect=stripe.StripeError("rate limited")):
            with pytest.raises(GatewayError):
                gateway.create_payment_intent(amount=100, currency="usd", metadata={}, idempotency_key="k")

    def test_oversized_metadata_never_reaches_stripe(self, stripe_globals):
        gateway = StripeGateway(api_key="sk_test_123", webhook_secret="whsec")
        with mock.patch.object(stripe.PaymentIntent, "create") as create:
            with pytest.raises(GatewayError):
                gateway.create_payment_intent(
                    amount=100, currency="usd", metadata={"items": "x" * 501}, idempotency_key="k"
                )
        create.assert_not_called()

    def test_retrieve_payment_intent(self, stripe_globals):
        intent = SimpleNamespace(
            id="pi_123", amount=12990, currency="usd", status="succeeded", metadata={"checkout_id": "chk-1"}
        )
        gateway = StripeGateway(api_key="sk_test_123", webhook_secret="whsec")
        with mock.patch.object(stripe.PaymentIntent, "retrieve", return_value=intent):
            info = gateway.retrieve_payment_intent("pi_123")
        assert info.status == "succeeded"
        assert info.metadata == {"checkout_id": "chk-1"}

    def test_webhook_verified_then_parsed(self, stripe_globals):
        body = {
            "id": "evt_1",
            "type": PAYMENT_SUCCEEDED,
            "data": {"object": {"id": "pi_123", "object": "payment_intent", "amount": 500, "metadata": {}}},
        }
        payload = json.dumps(body).encode()
        gateway = StripeGateway(api_key="sk_test_123", webhook_secret="whsec")
        with mock.patch.object(stripe.Webhook, "construct_event") as construct:
            event = gateway.parse_webhook_event(payload, "t=1,v1=abc")

        construct.assert_called_once_with(payload, "t=1,v1=abc", "whsec")
        assert event.intent_id == "pi_123"
        assert event.amount == 500

    def test_bad_signature(self, stripe_globals):
        gateway = StripeGateway(api_key="sk_test_123", webhook_secret="whsec")
        error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=abc")
        with mock.patch.object(stripe.Webhook, "construct_event", side_effect=error):
            with pytest.raises(WebhookSignatureError):
                gateway.parse_webhook_event(b"{}", "t=1,v1=abc")

    def test_missing_webhook_secret(self, stripe_globals):
        gateway = StripeGateway(api_key="sk_test_123", webhook_secret="")
        with pytest.raises(WebhookSignatureError):
            gateway.parse_webhook_event(b"{}", "t=1,v1=abc")


class TestEventMapping:
    def test_non_intent_object_has_no_intent_id(self):
        event = event_from_dict({"id": "evt_1", "type": "charge.refunded", "data": {"object": {"object": "charge"}}})
        assert event.intent_id is None
        assert event.event_type == "charge.refunded"


class TestMetadataSplitting:
    def test_short_value_uses_one_key(self):
        assert split_metadata_value("items", "[]") == {"items_0": "[]"}

    def test_long_value_is_split_and_joined(self):
        value = "".join(str(index % 10) for index in range(1203))
        parts = split_metadata_value("items", value)

        assert list(parts) == ["items_0", "items_1", "items_2"]
        assert all(len(part) <= METADATA_MAX_VALUE_LENGTH for part in parts.values())
        assert join_metadata_value({"checkout_id": "chk-1", **parts}, "items") == value

    def test_plain_key_is_read_as_is(self):
        assert join_metadata_value({"items": "[1]"}, "items") == "[1]"

    def test_missing_value(self):
        assert join_metadata_value({}, "items") is None
