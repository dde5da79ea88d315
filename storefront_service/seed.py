"""
seed.py — Demo catalog

Loads a small set of products into an empty catalog so the storefront can be
clicked through without a commerce platform connection.

Usage:
    python -m storefront_service.seed
"""

from decimal import Decimal

from .config import Settings
from .database import Database
from .logging_config import get_logger, setup_logging
from .store import Catalog

log = get_logger(__name__)

DEMO_PRODUCTS = [
    ("dummy-1", "Wireless Bluetooth Headphones",
     "Premium noise-canceling wireless headphones with 30-hour battery life.",
     "199.99", "https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=500&h=500&fit=crop"),
    ("dummy-2", "Smartphone Stand",
     "Adjustable aluminum smartphone stand compatible with all devices.",
     "29.99", "https://images.unsplash.com/photo-1556656793-08538906a9f8?w=500&h=500&fit=crop"),
    ("dummy-3", "Portable Power Bank",
     "20,000mAh high-capacity power bank with fast charging and dual USB ports.",
     "49.99", "https://images.unsplash.com/photo-1609091839311-d5365f9ff1c5?w=500&h=500&fit=crop"),
    ("dummy-4", "Mechanical Gaming Keyboard",
     "RGB backlit mechanical keyboard with blue switches.",
     "129.99", "https://images.unsplash.com/photo-1541140532154-b024d705b90a?w=500&h=500&fit=crop"),
    ("dummy-5", "Wireless Mouse",
     "Ergonomic wireless mouse with precision tracking and long battery life.",
     "39.99", "https://images.unsplash.com/photo-1527864550417-7fd91fc51a46?w=500&h=500&fit=crop"),
    ("dummy-6", "USB-C Hub",
     "7-in-1 USB-C hub with HDMI, USB 3.0 and SD card reader.",
     "69.99", "https://images.unsplash.com/photo-1625842268584-8f3296236761?w=500&h=500&fit=crop"),
]


def seed_catalog(catalog: Catalog) -> int:
    """
    Inserts the demo products if the catalog is empty.

    Returns:
        int: Number of products inserted (0 when the catalog already had data).
    """
    if catalog.count() > 0:
        log.info("Katalog enthält bereits Produkte - Seed übersprungen.")
        return 0

    for platform_id, title, description, price, image in DEMO_PRODUCTS:
        catalog.add(title, Decimal(price), description=description, image_ref=image, platform_id=platform_id)
    log.info(f"{len(DEMO_PRODUCTS)} Demo-Produkte angelegt.")
    return len(DEMO_PRODUCTS)


if __name__ == "__main__":
    setup_logging()
    database = Database(Settings.from_env().database_url)
    database.create_all()
    seed_catalog(Catalog(database.session_factory))
