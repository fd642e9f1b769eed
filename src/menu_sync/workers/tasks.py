"""
Celery tasks for background processing.

Tasks:
- process_webhook_entry: Handle one attributed webhook entry
- sync_tenant_catalog: Batch sync a tenant or one of its categories
- run_daily_catalog_syncs: Fan out batch syncs for tenants in daily mode
"""

from typing import Any, Callable, Dict, Optional

from celery import Task
from sqlalchemy.orm import Session

from menu_sync.database.connection import SessionLocal
from menu_sync.database.models import Business, CatalogSyncMode
from menu_sync.services.catalog_sync import CatalogSyncService
from menu_sync.services.webhook_guard import redact_change
from menu_sync.utils.logger import get_logger
from menu_sync.workers.celery_app import celery_app

logger = get_logger(__name__)


class DatabaseTask(Task):
    """
    Base task class that provides database session management.

    Automatically creates and closes database sessions for tasks.
    """
    _db: Optional[Session] = None

    @property
    def db(self) -> Session:
        if self._db is None:
            self._db = SessionLocal()
        return self._db

    def after_return(self, *args, **kwargs):
        """Close database session after task completion."""
        if self._db is not None:
            self._db.close()
            self._db = None


def _log_change(business_id: str, change: Dict[str, Any]) -> None:
    redacted = redact_change(change)
    logger.info(f"Webhook change '{redacted['field']}' for business {business_id}: {redacted['value']}")


# Handlers keyed by change field. Conversation and template handling plug in here.
WEBHOOK_FIELD_HANDLERS: Dict[str, Callable[[str, Dict[str, Any]], None]] = {
    "messages": _log_change,
    "message_template_status_update": _log_change,
    "account_update": _log_change,
}


@celery_app.task(
    bind=True,
    base=DatabaseTask,
    name="menu_sync.workers.tasks.process_webhook_entry",
    max_retries=3,
    default_retry_delay=30,
)
def process_webhook_entry(self, business_id: str, entry: Dict[str, Any],
                          sub_domain: Optional[str] = None) -> dict:
    """
    Process one webhook entry attributed to a business.

    Args:
        business_id: Business the entry was attributed to
        entry: Raw webhook entry
        sub_domain: Business subdomain, for logging

    Returns:
        dict with handled/ignored change counts
    """
    business = self.db.query(Business).filter(Business.business_id == business_id).first()
    if business is None:
        logger.warning(f"Dropping webhook entry for unknown business {business_id}")
        return {"status": "skipped", "reason": "unknown_business", "business_id": business_id}

    handled = 0
    ignored = 0
    try:
        for change in entry.get("changes") or []:
            handler = WEBHOOK_FIELD_HANDLERS.get(change.get("field"))
            if handler is None:
                ignored += 1
                continue
            handler(business_id, change)
            handled += 1
    except Exception as e:
        logger.error(f"Webhook entry processing failed for {sub_domain or business_id}: {e}")
        raise self.retry(exc=e)

    return {"status": "processed", "business_id": business_id, "handled": handled, "ignored": ignored}


@celery_app.task(
    bind=True,
    base=DatabaseTask,
    name="menu_sync.workers.tasks.sync_tenant_catalog",
)
def sync_tenant_catalog(self, subdomain: str, location_id: Optional[str] = None,
                        category_id: Optional[int] = None) -> dict:
    """Batch sync all active products of a tenant, or of one category."""
    service = CatalogSyncService(self.db)
    if category_id is not None:
        result = service.sync_category(category_id, subdomain, location_id)
    else:
        result = service.sync_all_products(subdomain, location_id)

    logger.info(f"Catalog sync for {subdomain}: {result.synced} submitted, {result.failed} failed")
    return result.to_dict()


@celery_app.task(
    bind=True,
    base=DatabaseTask,
    name="menu_sync.workers.tasks.run_daily_catalog_syncs",
)
def run_daily_catalog_syncs(self) -> dict:
    """Queue a batch sync for every tenant with daily sync enabled."""
    businesses = (
        self.db.query(Business)
        .filter(
            Business.catalog_sync_enabled.is_(True),
            Business.catalog_sync_mode == CatalogSyncMode.DAILY,
        )
        .all()
    )

    queued = 0
    for business in businesses:
        if not business.catalog_ids:
            logger.debug(f"Skipping daily sync for {business.subdomain}: no catalog linked")
            continue
        sync_tenant_catalog.delay(business.subdomain)
        queued += 1

    logger.info(f"Queued daily catalog sync for {queued} business(es)")
    return {"queued": queued}
