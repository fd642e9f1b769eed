"""
Commerce platform integrations.

Provides a unified catalog client interface and the Meta (WhatsApp
Business) Graph API implementation.
"""

from .base import CatalogClient, MetaCredentials, BatchOperation, BatchMethod
from .factory import create_catalog_client

__all__ = [
    "CatalogClient",
    "MetaCredentials",
    "BatchOperation",
    "BatchMethod",
    "create_catalog_client",
]
