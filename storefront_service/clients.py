"""
This module provides communication clients for external systems used by the storefront:
- Payment Gateway (Stripe SDK, with a demo mode when no secret key is configured)
- Commerce Platform (Shopify Admin REST API via httpx)
- Fulfillment Queue (RabbitMQ via pika)
Each class encapsulates its protocol logic, error handling, and connection management.
Library exceptions are logged with their raw detail and re-raised as UpstreamFailure.
"""

import json
import time
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import httpx
import pika
import stripe

from .errors import InvalidSignature, MisconfiguredSecret, UpstreamFailure
from .logging_config import get_logger
from .models import OrderRecord, PaymentEvent, PaymentIntent

SHOPIFY_API_VERSION = "2023-10"

log = get_logger(__name__)


def to_minor_units(amount) -> int:
    """Converts a major-unit amount (e.g. 149.99) to minor units (14999), rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_dict(obj) -> Dict[str, Any]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


# --- Payment Gateway (Stripe) ---
class PaymentGateway:
    """
    Adapter for the payment processor.

    In configured mode every call goes to Stripe with the instance's secret key.
    Without a key (or with the placeholder key) the gateway runs in demo mode and
    fabricates stand-in objects so checkout can be exercised end to end without
    a payment account. Demo responses always report success and must never be
    used in production.
    """

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None,
                 enabled: Optional[bool] = None):
        """
        Args:
            secret_key (str | None): Stripe secret key.
            webhook_secret (str | None): Signing secret of the Stripe webhook endpoint.
            enabled (bool | None): Overrides the mode; defaults to "key present".
        """
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.enabled = bool(secret_key) if enabled is None else enabled
        if not self.enabled:
            log.warning("Stripe nicht konfiguriert - Demo-Modus aktiv. STRIPE_SECRET_KEY setzen für echte Zahlungen.")

    @property
    def demo_mode(self) -> bool:
        return not self.enabled

    def _intent_from_stripe(self, intent, metadata=None) -> PaymentIntent:
        return PaymentIntent(
            id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            amount=getattr(intent, "amount", 0) or 0,
            currency=getattr(intent, "currency", "usd") or "usd",
            status=intent.status,
            metadata=metadata if metadata is not None else _as_dict(getattr(intent, "metadata", None)),
        )

    def create_intent(self, amount, currency: str = "usd", metadata: Optional[Dict[str, str]] = None) -> PaymentIntent:
        """
        Creates a payment intent for `amount` (major units).

        Args:
            amount (Decimal | float): Order total in major currency units.
            currency (str): ISO currency code.
            metadata (dict): Tags stored on the intent (orderId, customerEmail, ...).

        Returns:
            PaymentIntent: The created intent including its client secret.

        Raises:
            UpstreamFailure: If the processor rejects the request or is unreachable.
        """
        metadata = metadata or {}
        amount_minor = to_minor_units(amount)

        if self.demo_mode:
            intent_id = f"pi_demo_{uuid.uuid4().hex}"
            return PaymentIntent(
                id=intent_id,
                client_secret=f"{intent_id}_secret_demo",
                amount=amount_minor,
                currency=currency,
                status="requires_payment_method",
                metadata=metadata,
            )

        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            log.error(f"[Order: {metadata.get('orderId')}] Stripe PaymentIntent-Erstellung fehlgeschlagen: {e}")
            raise UpstreamFailure("Failed to create payment intent")
        return self._intent_from_stripe(intent, metadata=metadata)

    def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        """
        Fetches the live state of a payment intent.

        Raises:
            UpstreamFailure: If the processor call fails.
        """
        if self.demo_mode:
            return PaymentIntent(id=intent_id, status="succeeded", amount=0, currency="usd")

        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            log.error(f"Stripe PaymentIntent {intent_id} konnte nicht abgerufen werden: {e}")
            raise UpstreamFailure("Failed to confirm payment")
        return self._intent_from_stripe(intent)

    def create_customer(self, email: str, name: Optional[str] = None) -> str:
        """Creates a processor-side customer and returns its id."""
        if self.demo_mode:
            return f"cus_demo_{uuid.uuid4().hex}"

        try:
            customer = stripe.Customer.create(email=email, name=name, api_key=self.secret_key)
        except stripe.StripeError as e:
            log.error(f"Stripe Customer-Erstellung für {email} fehlgeschlagen: {e}")
            raise UpstreamFailure("Failed to create payment customer")
        return customer.id

    def refund(self, intent_id: str, amount=None) -> Dict[str, Any]:
        """
        Refunds a captured payment, fully or by `amount` (major units).

        Returns:
            dict: Refund summary with `id`, `paymentIntentId`, `amount` (minor units) and `status`.
        """
        amount_minor = to_minor_units(amount) if amount is not None else None

        if self.demo_mode:
            return {
                "id": f"re_demo_{uuid.uuid4().hex}",
                "paymentIntentId": intent_id,
                "amount": amount_minor or 0,
                "status": "succeeded",
            }

        params = {"payment_intent": intent_id, "api_key": self.secret_key}
        if amount_minor is not None:
            params["amount"] = amount_minor
        try:
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as e:
            log.error(f"Stripe Rückerstattung für {intent_id} fehlgeschlagen: {e}")
            raise UpstreamFailure("Failed to refund payment")
        return {
            "id": refund.id,
            "paymentIntentId": intent_id,
            "amount": refund.amount,
            "status": refund.status,
        }

    def verify_and_parse_webhook(self, raw_body: bytes, signature_header: Optional[str]) -> PaymentEvent:
        """
        Verifies a Stripe webhook delivery and returns the parsed event.

        Args:
            raw_body (bytes): Request body exactly as received.
            signature_header (str | None): Value of the `Stripe-Signature` header.

        Returns:
            PaymentEvent: The verified event.

        Raises:
            InvalidSignature: If the header is missing or does not match the body.
            MisconfiguredSecret: If no webhook secret is configured (configured mode only).
        """
        if not signature_header:
            raise InvalidSignature("Missing stripe signature")

        if self.demo_mode:
            # Demo-Modus: Event wird ohne Prüfung fabriziert
            return PaymentEvent(
                id=f"evt_demo_{uuid.uuid4().hex}",
                type="payment_intent.succeeded",
                object={"id": "pi_demo_123", "metadata": {}},
            )

        if not self.webhook_secret:
            log.critical("STRIPE_WEBHOOK_SECRET fehlt - Stripe-Webhooks können nicht verifiziert werden!")
            raise MisconfiguredSecret("STRIPE_WEBHOOK_SECRET environment variable is required")

        try:
            stripe.Webhook.construct_event(raw_body, signature_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            log.warning(f"Stripe-Webhook-Signatur ungültig: {e}")
            raise InvalidSignature("Invalid signature")
        except ValueError as e:
            log.warning(f"Stripe-Webhook-Payload nicht lesbar: {e}")
            raise InvalidSignature("Invalid payload")

        payload = json.loads(raw_body)
        return PaymentEvent(
            id=payload.get("id", ""),
            type=payload.get("type", ""),
            object=(payload.get("data") or {}).get("object") or {},
        )


# --- Commerce Platform Client (REST) ---
class CommercePlatformClient:
    """
    Client for the commerce platform Admin API (REST).
    Used for catalog sync, checkout lookups, order reads and webhook registration.
    """

    def __init__(self, store_url: Optional[str] = None, access_token: Optional[str] = None,
                 http_client: Optional[httpx.Client] = None):
        """
        Initializes the HTTP client with proper timeout configuration.

        Args:
            store_url (str | None): Store host, e.g. `my-shop.myshopify.com`.
            access_token (str | None): Admin API access token.
            http_client (httpx.Client | None): Preconfigured client (base URL included);
                used by tests to talk to the mock platform.
        """
        self.access_token = access_token or ""
        if http_client is not None:
            self.client = http_client
        else:
            timeout_config = httpx.Timeout(5.0, read=10.0)
            base_url = f"https://{store_url}/admin/api/{SHOPIFY_API_VERSION}"
            self.client = httpx.Client(base_url=base_url, timeout=timeout_config)

    def close(self):
        """Closes the HTTP client session."""
        self.client.close()

    def _request(self, method: str, endpoint: str, **kwargs) -> dict:
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }
        try:
            response = self.client.request(method, endpoint, headers=headers, **kwargs)
            response.raise_for_status()  # Löst HTTPStatusError bei 4xx/5xx aus
            return response.json()
        except httpx.HTTPStatusError as e:
            log.error(f"Shopify API Fehler: {e.response.status_code} {method} {endpoint} - {e.response.text}")
            raise UpstreamFailure(f"Commerce platform error: {e.response.status_code}")
        except httpx.HTTPError as e:
            log.error(f"Shopify API nicht erreichbar ({method} {endpoint}): {e}")
            raise UpstreamFailure("Commerce platform unavailable")

    def get_products(self) -> List[dict]:
        return self._request("GET", "/products.json")["products"]

    def get_product(self, product_id: str) -> dict:
        return self._request("GET", f"/products/{product_id}.json")["product"]

    def create_checkout(self, items: List[dict]) -> dict:
        """
        Creates a platform checkout.

        Args:
            items (list): Dicts with 'variantId' and 'quantity'.
        """
        line_items = [{"variant_id": int(i["variantId"]), "quantity": i["quantity"]} for i in items]
        return self._request("POST", "/checkouts.json", json={"checkout": {"line_items": line_items}})["checkout"]

    def get_checkout(self, checkout_id: str) -> dict:
        return self._request("GET", f"/checkouts/{checkout_id}.json")["checkout"]

    def update_checkout(self, checkout_id: str, updates: dict) -> dict:
        return self._request("PUT", f"/checkouts/{checkout_id}.json", json={"checkout": updates})["checkout"]

    def get_order(self, order_id: str) -> dict:
        return self._request("GET", f"/orders/{order_id}.json")["order"]

    def get_orders(self, limit: int = 50) -> List[dict]:
        return self._request("GET", "/orders.json", params={"limit": limit})["orders"]

    def create_webhook(self, topic: str, address: str) -> dict:
        payload = {"webhook": {"topic": topic, "address": address, "format": "json"}}
        return self._request("POST", "/webhooks.json", json=payload)["webhook"]

    def get_webhooks(self) -> List[dict]:
        return self._request("GET", "/webhooks.json")["webhooks"]


# --- Fulfillment Client (MQ) ---
class FulfillmentClient:
    """
    Publishes shipment instructions for completed orders to RabbitMQ.

    Without a broker host the client only logs the instruction, mirroring the
    payment gateway's demo mode. The connection is opened lazily on first
    publish and reopened when the broker dropped it.
    """

    def __init__(self, host: Optional[str] = None, queue: str = "storefront.fulfillment",
                 username: str = "guest", password: str = "guest"):
        self.host = host
        self.queue = queue
        self.credentials = pika.PlainCredentials(username, password)
        self.connection = None
        self.channel = None

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def _connect(self):
        """
        Establishes the RabbitMQ connection and declares the fulfillment queue.
        Raises:
            pika.exceptions.AMQPConnectionError: If the connection fails.
        """
        try:
            self.connection = pika.BlockingConnection(
                pika.ConnectionParameters(host=self.host, credentials=self.credentials, heartbeat=60)
            )
            self.channel = self.connection.channel()
            self.channel.queue_declare(queue=self.queue, durable=True)
            log.info("Fulfillment Client mit RabbitMQ verbunden.")
        except pika.exceptions.AMQPConnectionError as e:
            log.critical(f"Kann nicht zu RabbitMQ (Fulfillment) verbinden: {e}")
            raise

    def dispatch(self, order: OrderRecord):
        """
        Sends a shipment instruction for a completed order.
        Args:
            order (OrderRecord): The order that just transitioned to COMPLETED.
        Raises:
            pika.exceptions.AMQPError: If message publishing fails.
        """
        message = {
            "instructionId": str(uuid.uuid4()),
            "orderId": order.id,
            "customerId": order.customer_id,
            "instructionTimestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "items": [{"productId": i.product_id, "quantity": i.quantity} for i in order.items],
        }
        if not self.enabled:
            log.info(f"[Order: {order.id}] Kein RabbitMQ konfiguriert - Versandanweisung nur protokolliert: {message}")
            return

        try:
            if not self.connection or self.connection.is_closed:
                self._connect()

            self.channel.basic_publish(
                exchange='',
                routing_key=self.queue,
                body=json.dumps(message),
                properties=pika.BasicProperties(delivery_mode=2)  # Macht Nachricht persistent
            )
            log.info(f"[Order: {order.id}] Versandanweisung an Fulfillment-Queue gesendet.")
        except Exception as e:
            log.error(f"[Order: {order.id}] FEHLER beim Senden an Fulfillment-Queue: {e}")
            raise

    def close(self):
        if self.connection and self.connection.is_open:
            self.connection.close()
