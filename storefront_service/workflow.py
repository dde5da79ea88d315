"""
workflow.py — Core Orchestration Logic for Checkout and Payment Reconciliation

This module contains the checkout workflow of the storefront. It coordinates the
order store and the payment gateway in the correct sequence and reconciles order
completion arriving from three independent triggers.

Workflow Overview:
1. Price the cart from the catalog (client prices are ignored)
2. Resolve the customer (authenticated identity, existing email, or new guest)
3. Persist the order (PENDING/PENDING), then create the payment intent, then
   store the intent reference
4. Complete the order from one of:
       - confirm_payment: client reports success, verified against the processor
       - handle_payment_event: processor webhook
       - complete_legacy: unverified direct completion (demo/compat only)

Completion is a compare-and-set on the order row. Whichever trigger wins
dispatches fulfillment; the others observe COMPLETED and return normally.

Customers may cancel their own PENDING orders. A payment that still succeeds
for a cancelled order completes it, since the money has been captured.
"""

from decimal import Decimal
from typing import List, Optional

from .database import OrderStatus
from .errors import (
    IntentMismatch,
    InvalidInput,
    MissingCustomer,
    NotFound,
    OrderNotCancellable,
    PaymentNotCompleted,
    StateConflict,
    UnknownItem,
    UpstreamFailure,
)
from .logging_config import get_logger
from .models import CartItem, CustomerInfo, Identity, LineItem, OrderLineRequest, OrderRecord, PaymentEvent

log = get_logger(__name__)

CENT = Decimal("0.01")


class CheckoutWorkflow:
    """
    Checkout orchestrator.

    All collaborators are injected: the stores own persistence, the gateway talks
    to the payment processor (or fakes it in demo mode), and the fulfillment
    client receives one shipment instruction per completed order.
    """

    def __init__(self, orders, customers, catalog, gateway, fulfillment, currency: str = "usd"):
        self.orders = orders
        self.customers = customers
        self.catalog = catalog
        self.gateway = gateway
        self.fulfillment = fulfillment
        self.currency = currency

    # --- Step 1: pricing ---
    def price_cart(self, cart_items: Optional[List[CartItem]]) -> List[LineItem]:
        """
        Prices cart lines with authoritative catalog prices.

        Raises:
            InvalidInput: If the cart is missing or empty.
            UnknownItem: If a line references an id that is not in the catalog.
        """
        if not cart_items:
            raise InvalidInput("Items are required")

        products = self.catalog.get_many(item.id for item in cart_items)
        lines = []
        for item in cart_items:
            product = products.get(item.id)
            if product is None:
                raise UnknownItem(f"Product {item.id} not found")
            lines.append(LineItem(product_id=item.id, quantity=item.quantity, unit_price=product.unit_price))
        return lines

    # --- Step 2: customer ---
    def resolve_customer(self, customer_info: Optional[CustomerInfo], identity: Optional[Identity]) -> Identity:
        """
        Raises:
            MissingCustomer: Neither an identity nor a customer email was supplied.
        """
        if identity is not None:
            return identity
        if customer_info is not None and customer_info.email:
            return self.customers.get_or_create_guest(customer_info.email, customer_info.name).to_identity()
        raise MissingCustomer()

    def start_checkout(self, cart_items: Optional[List[CartItem]], customer_info: Optional[CustomerInfo] = None,
                       identity: Optional[Identity] = None) -> dict:
        """
        Creates a PENDING order and its payment intent.

        Args:
            cart_items (list[CartItem] | None): Cart lines; any submitted price is ignored.
            customer_info (CustomerInfo | None): Guest checkout details.
            identity (Identity | None): Authenticated customer, takes precedence over customer_info.

        Returns:
            dict: orderId, clientSecret, total and status "payment_intent_created".

        Raises:
            InvalidInput / UnknownItem / MissingCustomer: Rejected before anything is written.
            UpstreamFailure: The intent could not be created. The order stays PENDING
                without intent reference and is not rolled back.
            StateConflict: The order already carries another intent reference; the new
                intent's client secret is not handed out.
        """
        lines = self.price_cart(cart_items)
        customer = self.resolve_customer(customer_info, identity)
        total = sum((line.subtotal for line in lines), Decimal("0")).quantize(CENT)

        payment_customer_ref = None
        try:
            payment_customer_ref = self.gateway.create_customer(customer.email, customer.name)
        except UpstreamFailure as e:
            # Kunde existiert evtl. schon beim Processor, Checkout läuft ohne Kunden-ID weiter
            log.warning(f"Processor-Kunde für {customer.email} nicht angelegt: {e}")

        order = self.orders.create(customer.id, lines, total, self.currency, payment_customer_ref)
        log_prefix = f"[Order: {order.id}]"
        log.info(f"{log_prefix} Bestellung angelegt (Summe {total} {self.currency}, {len(lines)} Positionen).")

        try:
            intent = self.gateway.create_intent(
                total,
                self.currency,
                {"orderId": order.id, "customerEmail": customer.email, "itemCount": str(len(lines))},
            )
        except UpstreamFailure:
            log.error(f"{log_prefix} PaymentIntent fehlgeschlagen. Bestellung bleibt PENDING ohne Intent.")
            raise

        if not self.orders.attach_payment_intent(order.id, intent.id):
            log.error(f"{log_prefix} Intent-Referenz war bereits gesetzt, {intent.id} verworfen.")
            raise StateConflict("Payment intent already bound to order")
        log.info(f"{log_prefix} PaymentIntent {intent.id} erstellt.")

        return {
            "orderId": order.id,
            "clientSecret": intent.client_secret,
            "total": order.total,
            "status": "payment_intent_created",
        }

    # --- Step 4: completion ---
    def _get_order(self, order_id: str) -> OrderRecord:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    def _complete(self, order_id: str, source: str) -> OrderRecord:
        """Applies the terminal transition; only the winning caller dispatches fulfillment."""
        log_prefix = f"[Order: {order_id}]"
        if self.orders.mark_completed(order_id):
            log.info(f"{log_prefix} Abgeschlossen via {source}.")
            order = self._get_order(order_id)
            try:
                self.fulfillment.dispatch(order)
            except Exception as e:
                # Zahlung ist erfolgt, Versand muss manuell angestoßen werden
                log.critical(f"{log_prefix} KRITISCH: Versandanweisung fehlgeschlagen! {e}. BENÖTIGT MANUELLE AKTION!")
            return order

        log.info(f"{log_prefix} Bereits abgeschlossen, {source} ändert nichts.")
        return self._get_order(order_id)

    def confirm_payment(self, order_id: str, claimed_intent_ref: Optional[str]) -> dict:
        """
        Completes an order after verifying its payment intent with the processor.

        Returns:
            dict: orderId, status, paymentStatus, total and a message.

        Raises:
            NotFound: Unknown order.
            IntentMismatch: The claimed intent is not the one bound to the order.
            UpstreamFailure: The processor could not be queried.
            PaymentNotCompleted: The intent has not succeeded; paymentStatus is now FAILED.
        """
        order = self._get_order(order_id)
        log_prefix = f"[Order: {order_id}]"

        if not claimed_intent_ref or claimed_intent_ref != order.payment_intent_ref:
            log.warning(f"{log_prefix} Bestätigung mit fremdem Intent {claimed_intent_ref} abgelehnt.")
            raise IntentMismatch()

        if order.status != OrderStatus.COMPLETED.value:
            intent = self.gateway.retrieve_intent(claimed_intent_ref)
            if intent.status == "succeeded":
                order = self._complete(order_id, "confirm")
            else:
                self.orders.mark_payment_failed(order_id)
                order = self._get_order(order_id)
                # Ein paralleler Webhook kann die Bestellung inzwischen abgeschlossen haben
                if order.status != OrderStatus.COMPLETED.value:
                    log.warning(f"{log_prefix} Zahlung nicht abgeschlossen (Intent-Status: {intent.status}).")
                    raise PaymentNotCompleted(paymentStatus=intent.status)

        return {
            "orderId": order.id,
            "status": order.status,
            "paymentStatus": order.payment_status,
            "total": order.total,
            "message": "Payment confirmed and order completed successfully!",
        }

    def complete_legacy(self, order_id: str, payment_method: Optional[str] = None) -> dict:
        """
        Marks an order completed WITHOUT any payment verification.

        Kept for older storefront clients and demo flows only. Anything that needs
        proof of payment must go through confirm_payment or the processor webhook.

        Raises:
            NotFound: Unknown order.
        """
        self._get_order(order_id)
        log.warning(f"[Order: {order_id}] Legacy-Abschluss ohne Zahlungsprüfung (Methode: {payment_method}).")
        order = self._complete(order_id, "legacy complete")
        return {
            "orderId": order.id,
            "status": order.status,
            "total": order.total,
            "message": "Order completed successfully!",
        }

    def handle_payment_event(self, event: PaymentEvent):
        """
        Applies a verified processor event to its order.

        Events without an orderId in their metadata, or for an unknown order,
        are logged and dropped; redelivering them would not change the outcome.
        """
        order_id = event.order_id

        if event.type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
            log.info(f"Unbehandelter Stripe-Event-Typ: {event.type}")
            return
        if not order_id:
            log.info(f"Stripe-Event {event.id} ({event.type}) ohne orderId - ignoriert.")
            return
        if self.orders.get(order_id) is None:
            log.warning(f"Stripe-Event {event.id} verweist auf unbekannte Order {order_id} - ignoriert.")
            return

        if event.type == "payment_intent.succeeded":
            self._complete(order_id, "webhook")
        elif self.orders.mark_payment_failed(order_id):
            log.info(f"[Order: {order_id}] Zahlung fehlgeschlagen via Webhook.")
        else:
            log.info(f"[Order: {order_id}] Fehlschlag-Webhook für abgeschlossene Order ignoriert.")

    def get_order_status(self, order_id: str) -> dict:
        return self._get_order(order_id).to_status()

    # --- Customer order endpoints ---
    def place_order(self, items: Optional[List[OrderLineRequest]], identity: Identity) -> OrderRecord:
        """
        Creates a PENDING order for a signed-in customer without a payment intent.

        Raises:
            InvalidInput: If no items were sent.
            UnknownItem: If a line references an id that is not in the catalog.
        """
        if not items:
            raise InvalidInput("Order items are required")
        lines = self.price_cart([CartItem(id=item.productId, quantity=item.quantity) for item in items])
        total = sum((line.subtotal for line in lines), Decimal("0")).quantize(CENT)

        order = self.orders.create(identity.id, lines, total, self.currency)
        log.info(f"[Order: {order.id}] Bestellung ohne Zahlung angelegt (Summe {total} {self.currency}).")
        return order

    def update_order_status(self, order_id: str, status: str, identity: Identity) -> OrderRecord:
        """
        Changes the status of the customer's own order. Only cancellation is
        supported, and only while the order is PENDING.

        Raises:
            NotFound: Unknown order or an order of another customer.
            InvalidInput: Any target status other than CANCELLED.
            OrderNotCancellable: The order is no longer PENDING.
        """
        order = self.orders.get(order_id)
        if order is None or order.customer_id != identity.id:
            raise NotFound("Order not found")
        if status != OrderStatus.CANCELLED.value:
            raise InvalidInput(f"Unsupported order status {status}")

        if self.orders.mark_cancelled(order_id):
            log.info(f"[Order: {order_id}] Vom Kunden storniert.")
        order = self._get_order(order_id)
        if order.status != OrderStatus.CANCELLED.value:
            log.warning(f"[Order: {order_id}] Stornierung abgelehnt, Status ist {order.status}.")
            raise OrderNotCancellable(status=order.status)
        return order
