"""
store.py — Repositories over the relational store

Three repositories share one session factory:
    • CustomerStore — customer lookup by id/email, guest and registered creation
    • Catalog       — authoritative product prices, platform sync upserts
    • OrderStore    — order creation and the conditional status transitions

Every status change of an order is a single compare-and-set UPDATE. The
returned row count tells the caller whether its write won, which is what keeps
concurrent confirm/webhook/legacy completions idempotent.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from .database import Customer, Order, OrderItem, OrderStatus, PaymentStatus, Product, utcnow
from .errors import InvalidInput
from .logging_config import get_logger
from .models import CatalogItem, CustomerRecord, LineItem, OrderRecord

log = get_logger(__name__)

GUEST_NAME = "Guest User"


class CustomerStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, customer_id: str) -> Optional[CustomerRecord]:
        with self.session_factory() as session:
            row = session.get(Customer, customer_id)
            return CustomerRecord.model_validate(row) if row else None

    def get_by_email(self, email: str) -> Optional[CustomerRecord]:
        with self.session_factory() as session:
            row = session.execute(select(Customer).where(Customer.email == email)).scalar_one_or_none()
            return CustomerRecord.model_validate(row) if row else None

    def create(self, email: str, display_name: Optional[str] = None,
               credential_hash: Optional[str] = None) -> CustomerRecord:
        """
        Inserts a new customer.

        Raises:
            InvalidInput: If the email is already taken.
        """
        with self.session_factory() as session:
            row = Customer(email=email, display_name=display_name, credential_hash=credential_hash)
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise InvalidInput("User already exists")
            return CustomerRecord.model_validate(row)

    def get_or_create_guest(self, email: str, display_name: Optional[str] = None) -> CustomerRecord:
        """
        Returns the customer owning `email`, creating a guest (no credential) if none exists.

        A concurrent checkout with the same email may insert first; the unique
        constraint then fails this insert and the existing row is returned.
        """
        existing = self.get_by_email(email)
        if existing:
            return existing
        try:
            customer = self.create(email, display_name or GUEST_NAME)
            log.info(f"Gastkunde {customer.id} für {email} angelegt.")
            return customer
        except InvalidInput:
            return self.get_by_email(email)

    def set_credentials(self, customer_id: str, display_name: str, credential_hash: str) -> Optional[CustomerRecord]:
        """Turns a guest into a registered customer. Only succeeds while no credential is set."""
        with self.session_factory() as session:
            result = session.execute(
                update(Customer)
                .where(Customer.id == customer_id, Customer.credential_hash.is_(None))
                .values(display_name=display_name, credential_hash=credential_hash)
            )
            session.commit()
            if result.rowcount != 1:
                return None
        return self.get(customer_id)


class Catalog:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def list_products(self) -> List[CatalogItem]:
        with self.session_factory() as session:
            rows = session.execute(select(Product).order_by(Product.created_at.desc())).scalars()
            return [CatalogItem.model_validate(r) for r in rows]

    def get(self, product_id: str) -> Optional[CatalogItem]:
        with self.session_factory() as session:
            row = session.get(Product, product_id)
            return CatalogItem.model_validate(row) if row else None

    def get_many(self, product_ids: Iterable[str]) -> Dict[str, CatalogItem]:
        ids = set(product_ids)
        if not ids:
            return {}
        with self.session_factory() as session:
            rows = session.execute(select(Product).where(Product.id.in_(ids))).scalars()
            return {r.id: CatalogItem.model_validate(r) for r in rows}

    def count(self) -> int:
        with self.session_factory() as session:
            return session.execute(select(func.count()).select_from(Product)).scalar_one()

    def add(self, title: str, unit_price: Decimal, description: Optional[str] = None,
            image_ref: Optional[str] = None, platform_id: Optional[str] = None,
            product_id: Optional[str] = None) -> CatalogItem:
        with self.session_factory() as session:
            row = Product(title=title, unit_price=Decimal(str(unit_price)), description=description,
                          image_ref=image_ref, platform_id=platform_id)
            if product_id:
                row.id = product_id
            session.add(row)
            session.commit()
            return CatalogItem.model_validate(row)

    def upsert_from_platform(self, platform_products: List[dict]) -> List[CatalogItem]:
        """
        Upserts commerce platform products keyed on their platform id.

        Args:
            platform_products (list): Product payloads as returned by the platform's
                products endpoint (`id`, `title`, `body_html`, `variants`, `images`).

        Returns:
            list[CatalogItem]: The stored catalog items, in input order.
        """
        synced = []
        with self.session_factory() as session:
            for payload in platform_products:
                platform_id = str(payload["id"])
                variants = payload.get("variants") or []
                images = payload.get("images") or []
                values = {
                    "title": payload.get("title") or "",
                    "description": payload.get("body_html"),
                    "unit_price": Decimal(str(variants[0].get("price") or "0")) if variants else Decimal("0"),
                    "image_ref": images[0].get("src") if images else None,
                }
                row = session.execute(
                    select(Product).where(Product.platform_id == platform_id)
                ).scalar_one_or_none()
                if row is None:
                    row = Product(platform_id=platform_id, **values)
                    session.add(row)
                else:
                    for key, value in values.items():
                        setattr(row, key, value)
                synced.append(row)
            session.commit()
            return [CatalogItem.model_validate(r) for r in synced]


class OrderStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def create(self, customer_id: str, items: List[LineItem], total: Decimal, currency: str,
               payment_customer_ref: Optional[str] = None) -> OrderRecord:
        """Persists a new order in PENDING/PENDING with its line item snapshot."""
        with self.session_factory() as session:
            order = Order(
                customer_id=customer_id,
                total=total,
                currency=currency,
                status=OrderStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                payment_customer_ref=payment_customer_ref,
            )
            order.items = [
                OrderItem(position=i, product_id=item.product_id, quantity=item.quantity,
                          unit_price=item.unit_price)
                for i, item in enumerate(items)
            ]
            session.add(order)
            session.commit()
            return OrderRecord.model_validate(order)

    def get(self, order_id: str) -> Optional[OrderRecord]:
        with self.session_factory() as session:
            order = session.execute(
                select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
            ).scalar_one_or_none()
            return OrderRecord.model_validate(order) if order else None

    def list_for_customer(self, customer_id: str) -> List[OrderRecord]:
        with self.session_factory() as session:
            rows = session.execute(
                select(Order)
                .options(selectinload(Order.items))
                .where(Order.customer_id == customer_id)
                .order_by(Order.created_at.desc())
            ).scalars()
            return [OrderRecord.model_validate(r) for r in rows]

    def count_for_customer(self, customer_id: str) -> int:
        with self.session_factory() as session:
            return session.execute(
                select(func.count()).select_from(Order).where(Order.customer_id == customer_id)
            ).scalar_one()

    def _conditional_update(self, order_id: str, conditions: list, values: dict) -> bool:
        with self.session_factory() as session:
            result = session.execute(
                update(Order)
                .where(Order.id == order_id, *conditions)
                .values(updated_at=utcnow(), **values)
            )
            session.commit()
            return result.rowcount == 1

    def attach_payment_intent(self, order_id: str, intent_ref: str) -> bool:
        """Stores the intent reference unless one is already set (first write wins)."""
        return self._conditional_update(
            order_id,
            [Order.payment_intent_ref.is_(None)],
            {"payment_intent_ref": intent_ref},
        )

    def mark_completed(self, order_id: str) -> bool:
        """
        Moves an order to COMPLETED/COMPLETED.

        Returns:
            bool: True only for the call that performed the transition; False when the
                order was already completed (or does not exist).
        """
        return self._conditional_update(
            order_id,
            [Order.status != OrderStatus.COMPLETED.value],
            {"status": OrderStatus.COMPLETED.value, "payment_status": PaymentStatus.COMPLETED.value},
        )

    def mark_cancelled(self, order_id: str) -> bool:
        """Cancels an order that is still PENDING; completed orders are never touched."""
        return self._conditional_update(
            order_id,
            [Order.status == OrderStatus.PENDING.value],
            {"status": OrderStatus.CANCELLED.value},
        )

    def mark_payment_failed(self, order_id: str) -> bool:
        """Sets paymentStatus=FAILED on an order that has not completed; status is untouched."""
        return self._conditional_update(
            order_id,
            [Order.status != OrderStatus.COMPLETED.value],
            {"payment_status": PaymentStatus.FAILED.value},
        )
