"""
webhooks.py — Inbound webhook verification and routing

Two webhook families reach the storefront:
    • Commerce platform (order/created, order/updated, order/paid): HMAC-SHA256
      over the raw body, base64-encoded, optionally prefixed with "sha256=".
    • Payment processor: verified by the PaymentGateway, then handed to the
      checkout workflow.

Verification fails closed: without a configured secret nothing is accepted.
"""

import base64
import binascii
import hashlib
import hmac
import json
from typing import Callable, Dict, Optional

from .errors import InvalidInput, InvalidSignature
from .logging_config import get_logger

log = get_logger(__name__)

PLATFORM_TOPICS = ("order/created", "order/updated", "order/paid")

PlatformHandler = Callable[[dict], None]


def verify_platform_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Checks a commerce platform webhook signature.

    Args:
        raw_body (bytes): Request body exactly as received.
        signature (str | None): Header value, base64 digest with optional "sha256=" prefix.
        secret (str | None): Shared webhook secret.

    Returns:
        bool: True only if the signature matches; False for a missing secret,
            a missing header or any mismatch.
    """
    if not signature:
        return False
    if not secret:
        log.error("SHOPIFY_WEBHOOK_SECRET ist nicht konfiguriert - Webhook abgelehnt.")
        return False

    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    try:
        provided = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False

    computed = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return hmac.compare_digest(provided, computed)


def _log_order_created(payload: dict):
    log.info(f"Shopify-Webhook order/created empfangen: {payload.get('id')}")


def _log_order_updated(payload: dict):
    log.info(f"Shopify-Webhook order/updated empfangen: {payload.get('id')}")


def _log_order_paid(payload: dict):
    log.info(f"Shopify-Webhook order/paid empfangen: {payload.get('id')}")


DEFAULT_PLATFORM_HANDLERS = {
    "order/created": _log_order_created,
    "order/updated": _log_order_updated,
    "order/paid": _log_order_paid,
}


class WebhookDispatcher:
    """
    Verifies inbound webhooks and routes them to their handlers.

    Platform handlers are registered per topic; the defaults only log, since
    platform orders are not mirrored into the order store. Payment events go to
    the checkout workflow's `handle_payment_event`.
    """

    def __init__(self, platform_secret: Optional[str], gateway, workflow,
                 platform_handlers: Optional[Dict[str, PlatformHandler]] = None):
        self.platform_secret = platform_secret
        self.gateway = gateway
        self.workflow = workflow
        self.platform_handlers = dict(DEFAULT_PLATFORM_HANDLERS)
        if platform_handlers:
            self.platform_handlers.update(platform_handlers)

    def register(self, topic: str, handler: PlatformHandler):
        self.platform_handlers[topic] = handler

    def dispatch_platform(self, topic: str, raw_body: bytes, signature: Optional[str]):
        """
        Verifies and routes a commerce platform webhook.

        Raises:
            InvalidSignature: If the signature is missing or wrong (rendered as 401).
            InvalidInput: If the verified body is not a JSON object.
        """
        if not verify_platform_signature(raw_body, signature, self.platform_secret):
            log.warning(f"Shopify-Webhook {topic} mit ungültiger Signatur abgelehnt.")
            raise InvalidSignature("Unauthorized")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise InvalidInput("Malformed webhook payload")
        if not isinstance(payload, dict):
            raise InvalidInput("Malformed webhook payload")

        handler = self.platform_handlers.get(topic)
        if handler is None:
            log.info(f"Kein Handler für Shopify-Webhook {topic} registriert - ignoriert.")
            return
        handler(payload)

    def dispatch_payment(self, raw_body: bytes, signature: Optional[str]):
        """
        Verifies a payment processor webhook and applies it to the order.

        Raises:
            InvalidSignature: Missing or invalid signature.
            MisconfiguredSecret: Processor configured without webhook secret.
        """
        event = self.gateway.verify_and_parse_webhook(raw_body, signature)
        self.workflow.handle_payment_event(event)
        return event
