"""
SQLAlchemy database models for multi-tenant Menu Sync.

Models:
- Business: Tenant credentials and catalog sync settings
- BusinessLocation: Location id to business indirection
- Category: Menu category, optionally owning its own catalog
- Product: Menu item mirrored to the commerce catalog
- Presentation: Purchasable size/variant of a product
"""

from .base import Base
from .business import Business, BusinessLocation, CatalogSyncMode
from .category import Category
from .product import Product, Presentation

__all__ = [
    "Base",
    "Business",
    "BusinessLocation",
    "CatalogSyncMode",
    "Category",
    "Product",
    "Presentation",
]
