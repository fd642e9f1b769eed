"""
Fire-and-forget catalog sync triggered by CRUD writes.

Each job opens its own session and only logs its outcome, so a failed sync
never affects the write that triggered it.
"""

from typing import Optional

from menu_sync.database.connection import get_db_context
from menu_sync.database.models import Business, Category, CatalogSyncMode, Product
from menu_sync.services.catalog_sync import CatalogSyncService
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)


def realtime_sync_enabled(business: Business) -> bool:
    """Whether product writes of this business sync immediately."""
    return bool(business.catalog_sync_enabled) and business.catalog_sync_mode == CatalogSyncMode.REALTIME


def run_product_sync(product_id: int, availability_only: bool = False) -> None:
    """Sync one product in the background."""
    try:
        with get_db_context() as db:
            product = db.get(Product, product_id)
            if product is None:
                logger.warning(f"Background sync skipped: product {product_id} not found")
                return

            service = CatalogSyncService(db)
            if availability_only:
                result = service.sync_product_availability(product)
            else:
                result = service.sync_product(product)

        if result.success:
            logger.info(f"Background sync of {result.product_id}: {result.action.value}")
        else:
            logger.warning(f"Background sync of {result.product_id} did not complete: {result.error}")
    except Exception as e:
        logger.error(f"Background sync of product {product_id} failed: {e}", exc_info=True)


def run_product_removal(retailer_id: str, subdomain: str, location_id: Optional[str] = None,
                        category_id: Optional[int] = None) -> None:
    """Remove one product from its catalog in the background."""
    try:
        with get_db_context() as db:
            result = CatalogSyncService(db).remove_product(
                retailer_id, subdomain, location_id=location_id, category_id=category_id
            )

        if not result.success:
            logger.warning(f"Background removal of {retailer_id} did not complete: {result.error}")
    except Exception as e:
        logger.error(f"Background removal of {retailer_id} failed: {e}", exc_info=True)


def run_category_provisioning(category_id: int) -> None:
    """Create a catalog for a new category when the tenant uses per-category catalogs."""
    try:
        with get_db_context() as db:
            category = db.get(Category, category_id)
            if category is None:
                return
            result = CatalogSyncService(db).create_category_catalog(category)

        if result.catalogs_created:
            logger.info(f"Provisioned catalog for category {category_id}: {result.catalog_mapping}")
        elif not result.success:
            logger.warning(f"Catalog provisioning for category {category_id} failed: {result.errors}")
    except Exception as e:
        logger.error(f"Background provisioning for category {category_id} failed: {e}", exc_info=True)
