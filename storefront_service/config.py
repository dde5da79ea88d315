"""
config.py — Environment configuration

Service addresses and secrets come from environment variables. The values are
collected once into a Settings object that is handed to create_app(), so tests
can build the app with explicit values instead of patching os.environ.
"""

import os
from typing import List, Optional

from pydantic import BaseModel

STRIPE_PLACEHOLDER_KEY = "sk_test_replace_with_your_stripe_secret_key"


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name)
    return value if value else None


class Settings(BaseModel):
    """
    Runtime configuration of the storefront API.

    Attributes:
        database_url (str): SQLAlchemy URL of the relational store.
        stripe_secret_key (str | None): Payment processor key; absent means demo mode.
        stripe_webhook_secret (str | None): Shared secret of processor webhooks.
        shopify_store_url (str | None): Store host of the commerce platform.
        shopify_access_token (str | None): Admin API access token.
        shopify_webhook_secret (str | None): HMAC secret of platform webhooks; absent means reject.
        jwt_secret (str): Signing key of auth tokens.
        bcrypt_rounds (int): Cost factor for password hashes.
        currency (str): ISO currency code of payment intents.
        rabbitmq_host (str | None): Broker of the fulfillment queue; absent means log only.
        fulfillment_queue (str): Queue receiving shipment instructions.
        cors_origins (List[str]): Allowed browser origins.
        seed_catalog (bool): Load the demo catalog on startup when it is empty.
    """
    database_url: str = "sqlite:///./storefront.db"
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    shopify_store_url: Optional[str] = None
    shopify_access_token: Optional[str] = None
    shopify_webhook_secret: Optional[str] = None
    jwt_secret: str = "your-secret-key"
    bcrypt_rounds: int = 12
    currency: str = "usd"
    rabbitmq_host: Optional[str] = None
    fulfillment_queue: str = "storefront.fulfillment"
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:3002"]
    seed_catalog: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Builds the settings from the process environment."""
        values = {
            "database_url": _env("DATABASE_URL"),
            "stripe_secret_key": _env("STRIPE_SECRET_KEY"),
            "stripe_webhook_secret": _env("STRIPE_WEBHOOK_SECRET"),
            "shopify_store_url": _env("SHOPIFY_STORE_URL"),
            "shopify_access_token": _env("SHOPIFY_ACCESS_TOKEN"),
            "shopify_webhook_secret": _env("SHOPIFY_WEBHOOK_SECRET"),
            "jwt_secret": _env("JWT_SECRET"),
            "bcrypt_rounds": _env("BCRYPT_ROUNDS"),
            "currency": _env("PAYMENT_CURRENCY"),
            "rabbitmq_host": _env("RABBITMQ_HOST"),
            "fulfillment_queue": _env("FULFILLMENT_QUEUE"),
            "seed_catalog": _env("SEED_CATALOG"),
        }
        origins = _env("CORS_ORIGINS")
        if origins:
            values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
        return cls(**{k: v for k, v in values.items() if v is not None})

    @property
    def payments_enabled(self) -> bool:
        return bool(self.stripe_secret_key) and self.stripe_secret_key != STRIPE_PLACEHOLDER_KEY
