import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from storefront_service.clients import FulfillmentClient, PaymentGateway, to_minor_units
from storefront_service.errors import InvalidSignature, MisconfiguredSecret, UpstreamFailure
from storefront_service.models import LineItem, OrderRecord

from .conftest import payment_event

WEBHOOK_SECRET = "whsec_test_secret"


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def live_gateway():
    return PaymentGateway(secret_key="sk_test_live_mode", webhook_secret=WEBHOOK_SECRET)


@pytest.mark.parametrize("amount, expected", [
    (Decimal("50.00"), 5000),
    (Decimal("149.99"), 14999),
    (19.995, 2000),
    (0, 0),
])
def test_to_minor_units(amount, expected):
    assert to_minor_units(amount) == expected


class TestDemoMode:
    def test_mode_follows_secret_key(self):
        assert PaymentGateway().demo_mode
        assert not PaymentGateway("sk_test_x").demo_mode
        assert PaymentGateway("sk_test_x", enabled=False).demo_mode

    def test_create_intent_fabricates_client_secret(self):
        intent = PaymentGateway().create_intent(Decimal("12.34"), "usd", {"orderId": "o-1"})

        assert intent.id.startswith("pi_demo_")
        assert intent.client_secret == f"{intent.id}_secret_demo"
        assert intent.status == "requires_payment_method"
        assert intent.amount == 1234
        assert intent.metadata == {"orderId": "o-1"}

    def test_intent_ids_are_unique(self):
        gateway = PaymentGateway()
        assert gateway.create_intent(1).id != gateway.create_intent(1).id

    def test_retrieve_always_succeeds(self):
        assert PaymentGateway().retrieve_intent("pi_demo_abc").status == "succeeded"

    def test_customer_and_refund(self):
        gateway = PaymentGateway()

        assert gateway.create_customer("a@b.com").startswith("cus_demo_")
        refund = gateway.refund("pi_demo_abc", Decimal("5.50"))
        assert refund["paymentIntentId"] == "pi_demo_abc"
        assert refund["amount"] == 550
        assert refund["status"] == "succeeded"

    def test_webhook_fabricates_succeeded_event(self):
        event = PaymentGateway().verify_and_parse_webhook(b"{}", "t=1,v1=whatever")

        assert event.type == "payment_intent.succeeded"
        assert event.order_id is None

    def test_webhook_still_requires_signature_header(self):
        with pytest.raises(InvalidSignature):
            PaymentGateway().verify_and_parse_webhook(b"{}", None)


class TestConfiguredMode:
    def test_valid_webhook_is_parsed(self, live_gateway):
        body = payment_event("payment_intent.succeeded", order_id="order-9", intent_id="pi_9")

        event = live_gateway.verify_and_parse_webhook(body, stripe_signature(body))

        assert event.type == "payment_intent.succeeded"
        assert event.order_id == "order-9"
        assert event.object["id"] == "pi_9"

    def test_tampered_body_rejected(self, live_gateway):
        body = payment_event("payment_intent.succeeded", order_id="order-9")
        signature = stripe_signature(body)
        tampered = body.replace(b"order-9", b"order-6")

        with pytest.raises(InvalidSignature):
            live_gateway.verify_and_parse_webhook(tampered, signature)

    def test_wrong_secret_rejected(self, live_gateway):
        body = payment_event("payment_intent.succeeded", order_id="order-9")

        with pytest.raises(InvalidSignature):
            live_gateway.verify_and_parse_webhook(body, stripe_signature(body, secret="whsec_other"))

    def test_missing_webhook_secret_is_misconfiguration(self):
        gateway = PaymentGateway(secret_key="sk_test_live_mode")
        body = payment_event("payment_intent.succeeded")

        with pytest.raises(MisconfiguredSecret):
            gateway.verify_and_parse_webhook(body, stripe_signature(body))

    def test_create_intent_calls_processor(self, live_gateway, monkeypatch):
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(id="pi_live", client_secret="pi_live_secret", amount=kwargs["amount"],
                                   currency=kwargs["currency"], status="requires_payment_method")

        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

        intent = live_gateway.create_intent(Decimal("50.00"), "usd", {"orderId": "o-1"})

        assert intent.client_secret == "pi_live_secret"
        assert intent.metadata == {"orderId": "o-1"}
        assert calls[0]["amount"] == 5000
        assert calls[0]["automatic_payment_methods"] == {"enabled": True}
        assert calls[0]["api_key"] == "sk_test_live_mode"

    def test_processor_error_becomes_upstream_failure(self, live_gateway, monkeypatch, caplog):
        def failing_create(**kwargs):
            raise stripe.StripeError("card_processing_error: raw upstream detail")

        monkeypatch.setattr(stripe.PaymentIntent, "create", failing_create)

        with caplog.at_level(logging.ERROR), pytest.raises(UpstreamFailure) as exc_info:
            live_gateway.create_intent(Decimal("1.00"), "usd", {"orderId": "o-1"})

        assert "raw upstream detail" not in exc_info.value.message
        assert "raw upstream detail" in caplog.text

    def test_retrieve_maps_processor_object(self, live_gateway, monkeypatch):
        monkeypatch.setattr(
            stripe.PaymentIntent, "retrieve",
            lambda intent_id, **kwargs: SimpleNamespace(id=intent_id, status="succeeded", amount=5000,
                                                        currency="usd", metadata={"orderId": "o-1"}),
        )

        intent = live_gateway.retrieve_intent("pi_live")

        assert intent.status == "succeeded"
        assert intent.metadata == {"orderId": "o-1"}


class TestCommercePlatformClient:
    def test_products(self, platform):
        products = platform.get_products()

        assert {p["id"] for p in products} >= {1001, 1002}
        assert platform.get_product("1001")["title"] == "Canvas Tote Bag"

    def test_checkout_roundtrip(self, platform):
        checkout = platform.create_checkout([{"variantId": "5001", "quantity": 2}])

        assert checkout["total_price"] == "49.00"
        fetched = platform.get_checkout(checkout["id"])
        assert fetched["completed_at"] is None

        updated = platform.update_checkout(checkout["id"], {"email": "a@b.com"})
        assert updated["email"] == "a@b.com"

    def test_orders_and_webhooks(self, platform):
        assert platform.get_order("7001")["financial_status"] == "paid"
        assert len(platform.get_orders(limit=1)) == 1

        webhook = platform.create_webhook("orders/paid", "https://shop.example.com/checkout/webhook/order/paid")
        assert webhook["topic"] == "orders/paid"
        assert webhook in platform.get_webhooks()

    @pytest.mark.parametrize("checkout_id", ["unknown", "err_outage"])
    def test_http_errors_become_upstream_failure(self, platform, checkout_id):
        with pytest.raises(UpstreamFailure):
            platform.get_checkout(checkout_id)

    def test_missing_token_is_rejected(self, platform):
        platform.access_token = ""

        with pytest.raises(UpstreamFailure):
            platform.get_products()


class FakeChannel:
    def __init__(self):
        self.published = []

    def basic_publish(self, exchange, routing_key, body, properties=None):
        self.published.append((routing_key, json.loads(body)))


def _order():
    return OrderRecord(
        id="order-1", customer_id="cust-1", total=Decimal("50.00"), currency="usd",
        status="COMPLETED", payment_status="COMPLETED",
        items=[LineItem(product_id="sku1", quantity=2, unit_price=Decimal("25.00"))],
        created_at="2026-01-01T00:00:00Z", updated_at="2026-01-01T00:00:00Z",
    )


class TestFulfillmentClient:
    def test_without_broker_only_logs(self, caplog):
        client = FulfillmentClient(host=None)

        with caplog.at_level(logging.INFO):
            client.dispatch(_order())

        assert not client.enabled
        assert "order-1" in caplog.text

    def test_publishes_shipment_instruction(self):
        client = FulfillmentClient(host="rabbitmq", queue="storefront.fulfillment")
        client.connection = SimpleNamespace(is_closed=False, is_open=False)
        client.channel = FakeChannel()

        client.dispatch(_order())

        [(queue, message)] = client.channel.published
        assert queue == "storefront.fulfillment"
        assert message["orderId"] == "order-1"
        assert message["items"] == [{"productId": "sku1", "quantity": 2}]
