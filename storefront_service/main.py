"""
main.py — FastAPI Entry Point for the Storefront Service

This module provides the REST API of the storefront. It wires the relational
store, the payment gateway, the commerce platform client and the fulfillment
queue into the checkout workflow and exposes them over HTTP.

Responsibilities:
    • Checkout: create payment intent, confirm payment, legacy complete, order status
    • Webhooks: payment processor and commerce platform deliveries
    • Auth and catalog endpoints
    • Customer orders: history, direct placement, cancellation
    • Uniform error bodies ({"error": ...}) for every failure
    • Provide system health information

Blocking I/O (database, Stripe, platform API) runs in FastAPI's threadpool:
handlers are plain `def` functions, and the raw-body webhook handlers hand the
work to `run_in_threadpool`.
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import AuthService
from .clients import CommercePlatformClient, FulfillmentClient, PaymentGateway
from .config import Settings
from .database import Database
from .errors import AuthFailure, InvalidSignature, NotFound, StorefrontError, UpstreamFailure
from .logging_config import get_logger, setup_logging
from .models import (
    CompleteOrderRequest,
    ConfirmPaymentRequest,
    CreateOrderRequest,
    CreatePaymentIntentRequest,
    Identity,
    LoginRequest,
    RegisterRequest,
    UpdateOrderStatusRequest,
)
from .seed import seed_catalog
from .store import Catalog, CustomerStore, OrderStore
from .webhooks import WebhookDispatcher
from .workflow import CheckoutWorkflow

log = get_logger(__name__)


# Dependencies
def get_workflow(request: Request) -> CheckoutWorkflow:
    return request.app.state.workflow


def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


def get_catalog(request: Request) -> Catalog:
    return request.app.state.catalog


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.dispatcher


def get_platform(request: Request) -> CommercePlatformClient:
    platform = request.app.state.platform
    if platform is None:
        raise UpstreamFailure("Commerce platform not configured")
    return platform


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):]


def optional_identity(authorization: Optional[str] = Header(None),
                      auth: AuthService = Depends(get_auth)) -> Optional[Identity]:
    """Resolves the bearer token if one is sent; bad tokens count as anonymous."""
    return auth.authenticate(_bearer_token(authorization))


def required_identity(identity: Optional[Identity] = Depends(optional_identity)) -> Identity:
    if identity is None:
        raise AuthFailure("Missing or invalid token")
    return identity


def register_routes(app: FastAPI):
    # --- Checkout ---
    @app.post("/checkout/create-payment-intent", status_code=201)
    def create_payment_intent(
            body: CreatePaymentIntentRequest,
            identity: Optional[Identity] = Depends(optional_identity),
            workflow: CheckoutWorkflow = Depends(get_workflow)
    ):
        """
        Creates a PENDING order for the cart and a payment intent for its total.

        The total is computed from catalog prices; prices sent by the client are ignored.

        Returns:
            dict: orderId, clientSecret, total, status ("payment_intent_created").
        """
        return workflow.start_checkout(body.items, body.customerInfo, identity)

    @app.post("/checkout/create")
    def create_checkout_legacy():
        """Legacy endpoint, forwards to /checkout/create-payment-intent."""
        return RedirectResponse("/checkout/create-payment-intent", status_code=307)

    @app.post("/checkout/confirm-payment/{order_id}")
    def confirm_payment(
            order_id: str,
            body: Optional[ConfirmPaymentRequest] = None,
            workflow: CheckoutWorkflow = Depends(get_workflow)
    ):
        """
        Verifies the order's payment intent with the processor and completes the order.

        Raises:
            NotFound (404), IntentMismatch (400), PaymentNotCompleted (400), UpstreamFailure (500).
        """
        return workflow.confirm_payment(order_id, body.paymentIntentId if body else None)

    @app.post("/checkout/complete/{order_id}")
    def complete_order(
            order_id: str,
            body: Optional[CompleteOrderRequest] = None,
            workflow: CheckoutWorkflow = Depends(get_workflow)
    ):
        """Legacy/demo completion without payment verification."""
        return workflow.complete_legacy(order_id, body.paymentMethod if body else None)

    @app.get("/checkout/order-status/{order_id}")
    def order_status(order_id: str, workflow: CheckoutWorkflow = Depends(get_workflow)):
        return workflow.get_order_status(order_id)

    @app.get("/checkout/status/{checkout_id}")
    def platform_checkout_status(checkout_id: str, platform: CommercePlatformClient = Depends(get_platform)):
        """Looks up a checkout on the commerce platform."""
        try:
            checkout = platform.get_checkout(checkout_id)
        except UpstreamFailure:
            raise UpstreamFailure("Failed to get checkout status")
        return {
            "id": checkout.get("id"),
            "completed": checkout.get("completed_at") is not None,
            "totalPrice": checkout.get("total_price"),
            "currency": checkout.get("currency"),
        }

    # --- Webhooks ---
    @app.post("/checkout/webhook/stripe")
    async def stripe_webhook(request: Request, dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
        """
        Receives payment processor events.

        Signature problems answer 400 so the processor does not keep retrying a
        delivery that can never verify.
        """
        payload = await request.body()
        signature = request.headers.get("stripe-signature")
        try:
            await run_in_threadpool(dispatcher.dispatch_payment, payload, signature)
        except InvalidSignature as e:
            return JSONResponse(status_code=400, content={"error": e.message})
        return {"received": True}

    @app.post("/checkout/webhook/order/{action}")
    async def platform_order_webhook(action: str, request: Request,
                                     dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
        """Receives commerce platform order webhooks (created, updated, paid)."""
        if action not in ("created", "updated", "paid"):
            raise NotFound("Not found")
        payload = await request.body()
        signature = request.headers.get("x-shopify-hmac-sha256")
        await run_in_threadpool(dispatcher.dispatch_platform, f"order/{action}", payload, signature)
        return {"status": "ok"}

    # --- Auth ---
    @app.post("/auth/register")
    def register(body: RegisterRequest, auth: AuthService = Depends(get_auth)):
        return auth.register(body.email, body.name, body.password)

    @app.post("/auth/login")
    def login(body: LoginRequest, auth: AuthService = Depends(get_auth)):
        return auth.login(body.email, body.password)

    @app.get("/auth/verify")
    def verify(identity: Identity = Depends(required_identity)):
        return {"user": identity.model_dump()}

    @app.get("/auth/profile")
    def profile(request: Request, identity: Identity = Depends(required_identity)):
        order_count = request.app.state.orders.count_for_customer(identity.id)
        return {"user": {**identity.model_dump(), "orderCount": order_count}}

    # --- Catalog ---
    @app.get("/products")
    def list_products(catalog: Catalog = Depends(get_catalog)):
        return [p.to_api() for p in catalog.list_products()]

    @app.get("/products/{product_id}")
    def get_product(product_id: str, catalog: Catalog = Depends(get_catalog)):
        product = catalog.get(product_id)
        if product is None:
            raise NotFound("Product not found")
        return product.to_api()

    @app.post("/products/sync")
    def sync_products(catalog: Catalog = Depends(get_catalog),
                      platform: CommercePlatformClient = Depends(get_platform)):
        """Upserts the commerce platform's products into the local catalog."""
        try:
            platform_products = platform.get_products()
        except UpstreamFailure:
            raise UpstreamFailure("Failed to sync products")
        synced = catalog.upsert_from_platform(platform_products)
        log.info(f"{len(synced)} Produkte von Shopify synchronisiert.")
        return {"message": "Products synced successfully", "count": len(synced)}

    # --- Orders (own orders only) ---
    @app.get("/orders")
    def list_orders(request: Request, identity: Identity = Depends(required_identity)):
        return [o.to_api() for o in request.app.state.orders.list_for_customer(identity.id)]

    @app.get("/orders/{order_id}")
    def get_order(order_id: str, request: Request, identity: Identity = Depends(required_identity)):
        order = request.app.state.orders.get(order_id)
        if order is None or order.customer_id != identity.id:
            raise NotFound("Order not found")
        return order.to_api()

    @app.post("/orders")
    def create_order(body: CreateOrderRequest, identity: Identity = Depends(required_identity),
                     workflow: CheckoutWorkflow = Depends(get_workflow)):
        """
        Creates a PENDING order for the signed-in customer, priced from the catalog.

        No payment intent is created; payment goes through the checkout endpoints.
        """
        return workflow.place_order(body.items, identity).to_api()

    @app.patch("/orders/{order_id}/status")
    def update_order_status(order_id: str, body: UpdateOrderStatusRequest,
                            identity: Identity = Depends(required_identity),
                            workflow: CheckoutWorkflow = Depends(get_workflow)):
        """Cancels the customer's own PENDING order (status "CANCELLED")."""
        return workflow.update_order_status(order_id, body.status, identity).to_api()

    # Health Check Endpoint
    @app.get("/health")
    def health_check():
        """
        Simple health check endpoint for monitoring systems and container orchestrators.

        Returns:
            dict: Service availability and the current server time.
        """
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


def register_error_handlers(app: FastAPI):
    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "Invalid request body"
        if errors:
            location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
            message = f"{location}: {errors[0].get('msg')}" if location else errors[0].get("msg", message)
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log.critical(f"Unerwarteter Fehler bei {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None,
               gateway: Optional[PaymentGateway] = None, platform: Optional[CommercePlatformClient] = None,
               fulfillment=None, platform_handlers: Optional[dict] = None) -> FastAPI:
    """
    Builds the storefront application.

    Every collaborator can be passed in; anything omitted is built from `settings`
    (which default to the process environment).

    Args:
        settings (Settings | None): Runtime configuration.
        database (Database | None): Relational store.
        gateway (PaymentGateway | None): Payment processor adapter.
        platform (CommercePlatformClient | None): Commerce platform client; without one,
            platform endpoints answer 500.
        fulfillment: Object with a `dispatch(order)` method receiving completed orders.
        platform_handlers (dict | None): Commerce platform webhook handlers by topic.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or Settings.from_env()
    database = database or Database(settings.database_url)
    if gateway is None:
        gateway = PaymentGateway(settings.stripe_secret_key, settings.stripe_webhook_secret,
                                 enabled=settings.payments_enabled)
    if platform is None and settings.shopify_store_url:
        platform = CommercePlatformClient(settings.shopify_store_url, settings.shopify_access_token)
    if fulfillment is None:
        fulfillment = FulfillmentClient(settings.rabbitmq_host, settings.fulfillment_queue)

    customers = CustomerStore(database.session_factory)
    catalog = Catalog(database.session_factory)
    orders = OrderStore(database.session_factory)
    workflow = CheckoutWorkflow(orders, customers, catalog, gateway, fulfillment, currency=settings.currency)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Storefront-Service startet...")
        database.create_all()
        if settings.seed_catalog:
            seed_catalog(catalog)
        yield
        log.info("Storefront-Service wird beendet.")
        if platform is not None:
            platform.close()
        if hasattr(fulfillment, "close"):
            fulfillment.close()
        database.dispose()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.database = database
    app.state.orders = orders
    app.state.catalog = catalog
    app.state.customers = customers
    app.state.platform = platform
    app.state.workflow = workflow
    app.state.auth = AuthService(customers, settings.jwt_secret, settings.bcrypt_rounds)
    app.state.dispatcher = WebhookDispatcher(settings.shopify_webhook_secret, gateway, workflow, platform_handlers)

    register_routes(app)
    register_error_handlers(app)
    return app


# Initialization
# Configure logging and initialize FastAPI app
setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("API_PORT", 3001)))
