"""
models.py — Data Models for Checkout and Order Management

This module defines the data structures exchanged between the API layer, the
checkout workflow and the external adapters. Pydantic models give type safety
and automatic validation of incoming payloads; the record models are detached
snapshots of database rows, so the workflow never holds a live session.

Models:
    - CartItem / CustomerInfo / CreatePaymentIntentRequest: checkout request payload.
    - ConfirmPaymentRequest / CompleteOrderRequest: completion request payloads.
    - CreateOrderRequest / UpdateOrderStatusRequest: customer order endpoints.
    - RegisterRequest / LoginRequest: auth request payloads.
    - Identity: authenticated customer as resolved from a bearer token.
    - CatalogItem / CustomerRecord / LineItem / OrderRecord: persisted records.
    - PaymentIntent / PaymentEvent: payment processor objects.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CartItem(BaseModel):
    """
    Represents a single cart line as submitted by the storefront.

    Attributes:
        id (str): Catalog item identifier.
        quantity (int): Quantity to order. Must be greater than zero.
        price (float | None): Price shown to the shopper. Accepted for compatibility
            with older clients and never used for pricing.
    """
    id: str
    quantity: int = Field(..., gt=0)
    price: Optional[float] = None


class CustomerInfo(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


class CreatePaymentIntentRequest(BaseModel):
    """
    Checkout request sent by the cart page.

    `items` is optional at the schema level so that a missing or empty cart is
    reported as a checkout error (400) rather than a schema error.
    """
    items: Optional[List[CartItem]] = None
    customerInfo: Optional[CustomerInfo] = None


class ConfirmPaymentRequest(BaseModel):
    paymentIntentId: Optional[str] = None


class CompleteOrderRequest(BaseModel):
    paymentMethod: Optional[str] = None


class OrderLineRequest(BaseModel):
    productId: str
    quantity: int = Field(..., gt=0)


class CreateOrderRequest(BaseModel):
    """Order placed directly by a signed-in customer, outside the payment checkout."""
    items: Optional[List[OrderLineRequest]] = None


class UpdateOrderStatusRequest(BaseModel):
    status: str


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)


class Identity(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


class CatalogItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    unit_price: Decimal
    image_ref: Optional[str] = None
    platform_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "price": self.unit_price,
            "imageUrl": self.image_ref,
            "shopifyId": self.platform_id,
            "createdAt": self.created_at,
        }


class CustomerRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    display_name: Optional[str] = None
    credential_hash: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_guest(self) -> bool:
        return self.credential_hash is None

    def to_identity(self) -> Identity:
        return Identity(id=self.id, email=self.email, name=self.display_name)


class LineItem(BaseModel):
    """A priced cart line; unit_price is the catalog price at purchase time."""
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    quantity: int = Field(..., gt=0)
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    items: List[LineItem] = []
    total: Decimal
    currency: str
    status: str
    payment_status: str
    payment_intent_ref: Optional[str] = None
    payment_customer_ref: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def to_status(self) -> dict:
        return {
            "orderId": self.id,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "total": self.total,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def to_api(self) -> dict:
        body = self.to_status()
        body["currency"] = self.currency
        body["paymentIntentId"] = self.payment_intent_ref
        body["items"] = [
            {"productId": i.product_id, "quantity": i.quantity, "price": i.unit_price}
            for i in self.items
        ]
        return body


class PaymentIntent(BaseModel):
    """
    Payment processor intent as seen by the checkout workflow.

    Attributes:
        id (str): Processor identifier of the intent.
        client_secret (str | None): Handle the browser uses to complete the payment.
        amount (int): Amount in the smallest currency unit (e.g. cents).
        currency (str): ISO 4217 currency code.
        status (str): Processor status (requires_payment_method, succeeded, ...).
        metadata (dict): Tags attached at creation, including `orderId`.
    """
    id: str
    client_secret: Optional[str] = None
    amount: int = 0
    currency: str = "usd"
    status: str
    metadata: Dict[str, str] = {}


class PaymentEvent(BaseModel):
    """Verified payment processor webhook event."""
    id: str
    type: str
    object: Dict[str, Any] = {}

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.object.get("metadata") or {}

    @property
    def order_id(self) -> Optional[str]:
        return self.metadata.get("orderId")
