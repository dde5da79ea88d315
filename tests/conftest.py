import base64
import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from storefront_service.clients import CommercePlatformClient, PaymentGateway
from storefront_service.config import Settings
from storefront_service.database import Database
from storefront_service.errors import UpstreamFailure
from storefront_service.main import create_app
from storefront_service.models import PaymentIntent
from storefront_service.store import Catalog, CustomerStore, OrderStore
from storefront_service.workflow import CheckoutWorkflow
from mock_services.mock_commerce_platform import API_PREFIX, app as mock_platform_app

PLATFORM_SECRET = "shpss_test_secret"


class RecordingFulfillment:
    """Collects dispatched orders instead of publishing them."""

    def __init__(self, fail=False):
        self.dispatched = []
        self.fail = fail

    def dispatch(self, order):
        if self.fail:
            raise RuntimeError("broker down")
        self.dispatched.append(order.id)


class ScriptedGateway(PaymentGateway):
    """Demo gateway whose intent status and failures are set by the test."""

    def __init__(self):
        super().__init__(secret_key=None)
        self.intent_status = "succeeded"
        self.fail_create = False
        self.fail_retrieve = False
        self.fail_customer = False
        self.created = []

    def create_intent(self, amount, currency="usd", metadata=None):
        if self.fail_create:
            raise UpstreamFailure("Failed to create payment intent")
        intent = super().create_intent(amount, currency, metadata)
        self.created.append(intent)
        return intent

    def retrieve_intent(self, intent_id):
        if self.fail_retrieve:
            raise UpstreamFailure("Failed to confirm payment")
        return PaymentIntent(id=intent_id, status=self.intent_status)

    def create_customer(self, email, name=None):
        if self.fail_customer:
            raise UpstreamFailure("Failed to create payment customer")
        return super().create_customer(email, name)


def sign_platform(body: bytes, secret: str = PLATFORM_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def payment_event(event_type: str, order_id=None, intent_id="pi_test") -> bytes:
    metadata = {"orderId": order_id} if order_id else {}
    return json.dumps({
        "id": "evt_test",
        "object": "event",
        "type": event_type,
        "data": {"object": {"id": intent_id, "object": "payment_intent", "metadata": metadata}},
    }).encode()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def catalog(database):
    catalog = Catalog(database.session_factory)
    catalog.add("Sample Item", Decimal("25.00"), product_id="sku1")
    catalog.add("Second Item", Decimal("9.99"), product_id="sku2")
    return catalog


@pytest.fixture
def customers(database):
    return CustomerStore(database.session_factory)


@pytest.fixture
def orders(database):
    return OrderStore(database.session_factory)


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def fulfillment():
    return RecordingFulfillment()


@pytest.fixture
def workflow(orders, customers, catalog, gateway, fulfillment):
    return CheckoutWorkflow(orders, customers, catalog, gateway, fulfillment)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-jwt-secret",
        bcrypt_rounds=4,
        shopify_webhook_secret=PLATFORM_SECRET,
    )


@pytest.fixture
def platform():
    http_client = TestClient(mock_platform_app, base_url=f"http://mock-platform{API_PREFIX}")
    return CommercePlatformClient(access_token="shpat_test", http_client=http_client)


@pytest.fixture
def client(settings, database, catalog, gateway, fulfillment, platform):
    app = create_app(settings=settings, database=database, gateway=gateway,
                     platform=platform, fulfillment=fulfillment)
    with TestClient(app) as test_client:
        yield test_client
