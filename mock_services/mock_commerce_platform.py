"""
mock_commerce_platform.py — Mock Implementation of the Commerce Platform Admin API (REST)

This module provides a simulated commerce platform for local development and for
the test suite. It exposes a FastAPI application that mimics the subset of the
Shopify Admin REST API used by the storefront's CommercePlatformClient.

Simulation Scenarios:
    • Product listing and lookup from an in-memory catalog
    • Checkout creation, lookup and update
    • Unknown ids → HTTP 404
    • Checkout ids starting with "err_" → HTTP 503 (platform outage)
    • Missing access token → HTTP 401

Endpoints (prefix /admin/api/2023-10):
    GET  /products.json, /products/{id}.json
    POST /checkouts.json, GET|PUT /checkouts/{id}.json
    GET  /orders.json, /orders/{id}.json
    GET|POST /webhooks.json

Port:
    Default: 8002 (HTTP)
"""

import logging
import time
import uuid

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException

API_PREFIX = "/admin/api/2023-10"

app = FastAPI(title="Mock Commerce Platform")
router = APIRouter(prefix=API_PREFIX)
logging.basicConfig(level=logging.INFO)

PRODUCTS = {
    1001: {
        "id": 1001,
        "title": "Canvas Tote Bag",
        "body_html": "<p>Heavy cotton tote.</p>",
        "variants": [{"id": 5001, "price": "24.50", "inventory_quantity": 12}],
        "images": [{"src": "https://cdn.example.com/tote.jpg"}],
    },
    1002: {
        "id": 1002,
        "title": "Enamel Mug",
        "body_html": "<p>Camping mug.</p>",
        "variants": [{"id": 5002, "price": "12.00", "inventory_quantity": 40}],
        "images": [],
    },
}
ORDERS = {
    7001: {"id": 7001, "name": "#1001", "financial_status": "paid", "total_price": "36.50", "currency": "USD"},
}
CHECKOUTS = {}
WEBHOOKS = []


def require_token(x_shopify_access_token: str = Header(None)):
    if not x_shopify_access_token:
        raise HTTPException(status_code=401, detail={"errors": "Invalid API key or access token"})


def _timestamp():
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@router.get("/products.json", dependencies=[Depends(require_token)])
def list_products():
    return {"products": list(PRODUCTS.values())}


@router.get("/products/{product_id}.json", dependencies=[Depends(require_token)])
def get_product(product_id: int):
    if product_id not in PRODUCTS:
        raise HTTPException(status_code=404, detail={"errors": "Not Found"})
    return {"product": PRODUCTS[product_id]}


@router.post("/checkouts.json", dependencies=[Depends(require_token)])
def create_checkout(payload: dict):
    """
    Creates a checkout from `checkout.line_items` (variant_id, quantity).

    The total is priced from the mock catalog's variants.
    """
    line_items = payload.get("checkout", {}).get("line_items", [])
    prices = {v["id"]: float(v["price"]) for p in PRODUCTS.values() for v in p["variants"]}
    total = sum(prices.get(i["variant_id"], 0.0) * i["quantity"] for i in line_items)
    checkout_id = uuid.uuid4().hex
    checkout = {
        "id": checkout_id,
        "web_url": f"https://mock-shop.example.com/checkouts/{checkout_id}",
        "completed_at": None,
        "total_price": f"{total:.2f}",
        "currency": "USD",
        "line_items": line_items,
    }
    CHECKOUTS[checkout_id] = checkout
    logging.info(f"[CP] Checkout {checkout_id} angelegt.")
    return {"checkout": checkout}


@router.get("/checkouts/{checkout_id}.json", dependencies=[Depends(require_token)])
def get_checkout(checkout_id: str):
    if checkout_id.startswith("err_"):
        logging.error(f"[CP] Simulierter Ausfall für Checkout {checkout_id}.")
        raise HTTPException(status_code=503, detail={"errors": "Service Unavailable"})
    if checkout_id not in CHECKOUTS:
        raise HTTPException(status_code=404, detail={"errors": "Not Found"})
    return {"checkout": CHECKOUTS[checkout_id]}


@router.put("/checkouts/{checkout_id}.json", dependencies=[Depends(require_token)])
def update_checkout(checkout_id: str, payload: dict):
    if checkout_id not in CHECKOUTS:
        raise HTTPException(status_code=404, detail={"errors": "Not Found"})
    CHECKOUTS[checkout_id].update(payload.get("checkout", {}))
    return {"checkout": CHECKOUTS[checkout_id]}


@router.get("/orders.json", dependencies=[Depends(require_token)])
def list_orders(limit: int = 50):
    return {"orders": list(ORDERS.values())[:limit]}


@router.get("/orders/{order_id}.json", dependencies=[Depends(require_token)])
def get_order(order_id: int):
    if order_id not in ORDERS:
        raise HTTPException(status_code=404, detail={"errors": "Not Found"})
    return {"order": ORDERS[order_id]}


@router.get("/webhooks.json", dependencies=[Depends(require_token)])
def list_webhooks():
    return {"webhooks": WEBHOOKS}


@router.post("/webhooks.json", dependencies=[Depends(require_token)])
def create_webhook(payload: dict):
    webhook = {"id": len(WEBHOOKS) + 1, "created_at": _timestamp(), **payload.get("webhook", {})}
    WEBHOOKS.append(webhook)
    logging.info(f"[CP] Webhook {webhook.get('topic')} → {webhook.get('address')} registriert.")
    return {"webhook": webhook}


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8002)
