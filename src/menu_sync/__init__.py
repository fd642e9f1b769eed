"""
Menu Sync - catalog reconciliation for multi-tenant restaurant backends.

Mirrors each tenant's product catalog into the WhatsApp Business commerce
catalog and ingests signed webhook callbacks from the Meta platform.
"""

__version__ = "1.0.0"
