import json

import pytest

from storefront_service.errors import InvalidInput, InvalidSignature
from storefront_service.webhooks import WebhookDispatcher, verify_platform_signature

from .conftest import PLATFORM_SECRET, payment_event, sign_platform

BODY = json.dumps({"id": 820982911946154508, "email": "jon@example.com"}).encode()


class TestPlatformSignature:
    def test_valid_signature(self):
        assert verify_platform_signature(BODY, sign_platform(BODY), PLATFORM_SECRET)

    def test_sha256_prefix_accepted(self):
        assert verify_platform_signature(BODY, "sha256=" + sign_platform(BODY), PLATFORM_SECRET)

    @pytest.mark.parametrize("signature", [None, "", "not base64!!", sign_platform(b"other body")])
    def test_bad_signatures(self, signature):
        assert not verify_platform_signature(BODY, signature, PLATFORM_SECRET)

    def test_altered_body(self):
        signature = sign_platform(BODY)
        assert not verify_platform_signature(BODY + b" ", signature, PLATFORM_SECRET)

    @pytest.mark.parametrize("secret", [None, ""])
    def test_missing_secret_fails_closed(self, secret):
        assert not verify_platform_signature(BODY, sign_platform(BODY), secret)


class RecordingWorkflow:
    def __init__(self):
        self.events = []

    def handle_payment_event(self, event):
        self.events.append(event)


@pytest.fixture
def recorded():
    return []


@pytest.fixture
def dispatcher(gateway, recorded):
    return WebhookDispatcher(PLATFORM_SECRET, gateway, RecordingWorkflow(),
                             platform_handlers={"order/paid": recorded.append})


def test_platform_webhook_routed_by_topic(dispatcher, recorded):
    dispatcher.dispatch_platform("order/paid", BODY, sign_platform(BODY))

    assert recorded == [json.loads(BODY)]


def test_default_handlers_accept_without_state_change(dispatcher, recorded):
    dispatcher.dispatch_platform("order/created", BODY, sign_platform(BODY))
    dispatcher.dispatch_platform("order/cancelled", BODY, sign_platform(BODY))

    assert recorded == []


def test_invalid_signature_never_reaches_handler(dispatcher, recorded):
    with pytest.raises(InvalidSignature):
        dispatcher.dispatch_platform("order/paid", BODY, sign_platform(BODY, "wrong-secret"))

    assert recorded == []


def test_registered_handler_replaces_default(dispatcher):
    seen = []
    dispatcher.register("order/updated", seen.append)

    dispatcher.dispatch_platform("order/updated", BODY, sign_platform(BODY))

    assert seen == [json.loads(BODY)]


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]"])
def test_malformed_payload(dispatcher, body):
    with pytest.raises(InvalidInput):
        dispatcher.dispatch_platform("order/paid", body, sign_platform(body))


def test_payment_webhook_forwarded_to_workflow(dispatcher):
    body = payment_event("payment_intent.succeeded", order_id="order-1")

    event = dispatcher.dispatch_payment(body, "t=1,v1=demo")

    assert dispatcher.workflow.events == [event]


def test_payment_webhook_without_signature(dispatcher):
    with pytest.raises(InvalidSignature):
        dispatcher.dispatch_payment(b"{}", None)

    assert dispatcher.workflow.events == []
