"""
Catalog management and sync endpoints.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from menu_sync.api.dependencies import get_current_business
from menu_sync.database.connection import get_db
from menu_sync.database.models import Business, Category, Product
from menu_sync.services.catalog_sync import CatalogSyncService
from menu_sync.utils.exceptions import NotFoundError
from menu_sync.utils.logger import get_logger
from menu_sync.workers.tasks import sync_tenant_catalog

logger = get_logger(__name__)

router = APIRouter()


class SyncResultResponse(BaseModel):
    """Single product sync outcome."""
    success: bool
    product_id: str
    action: Optional[str] = None
    catalog_id: Optional[str] = None
    error: Optional[str] = None


class BatchSyncResponse(BaseModel):
    """Batch sync outcome."""
    success: bool
    synced: int
    failed: int
    skipped: int
    errors: List[Dict[str, str]]
    catalog_id: Optional[str] = None
    handle: Optional[str] = None


class ProvisioningResponse(BaseModel):
    """Catalog provisioning outcome."""
    success: bool
    catalogs_created: int
    catalog_mapping: Dict[str, str]
    errors: List[Dict[str, str]]


class CreateCatalogRequest(BaseModel):
    """Request body for creating the primary catalog."""
    name: Optional[str] = None


class RenameCatalogRequest(BaseModel):
    """Request body for renaming a catalog."""
    name: str


class AssignUserRequest(BaseModel):
    """Request body for granting a user access to a catalog."""
    user_id: str
    tasks: Optional[List[str]] = None


class QueuedResponse(BaseModel):
    """Response for work handed to the task queue."""
    status: str
    task_id: str


def _get_product(db: Session, business: Business, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if product is None or product.subdomain != business.subdomain:
        raise NotFoundError(f"Product {product_id} not found", resource="product", identifier=product_id)
    return product


def _get_category(db: Session, business: Business, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if category is None or category.subdomain != business.subdomain:
        raise NotFoundError(f"Category {category_id} not found", resource="category", identifier=category_id)
    return category


@router.get("/status")
async def get_sync_status(
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Catalog configuration and last sync time of the business."""
    return CatalogSyncService(db).get_sync_status(business.subdomain, location_id)


@router.get("/catalogs")
async def list_catalogs(
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """List catalogs owned by the business on the platform."""
    return CatalogSyncService(db).list_catalogs(business.subdomain, location_id)


@router.post("/catalogs", status_code=201)
async def create_catalog(
    request: CreateCatalogRequest,
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create a catalog on the platform and link it to the business."""
    return CatalogSyncService(db).create_primary_catalog(business.subdomain, request.name, location_id)


@router.get("/catalogs/{catalog_id}")
async def get_catalog(
    catalog_id: str,
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Fetch one linked catalog."""
    return CatalogSyncService(db).get_catalog(business.subdomain, catalog_id, location_id)


@router.patch("/catalogs/{catalog_id}")
async def rename_catalog(
    catalog_id: str,
    request: RenameCatalogRequest,
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Rename a linked catalog."""
    return CatalogSyncService(db).rename_catalog(business.subdomain, catalog_id, request.name, location_id)


@router.delete("/catalogs/{catalog_id}")
async def delete_catalog(
    catalog_id: str,
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Delete a linked catalog and unlink it from the business."""
    return CatalogSyncService(db).delete_catalog(business.subdomain, catalog_id, location_id)


@router.get("/catalogs/{catalog_id}/products")
async def list_catalog_products(
    catalog_id: str,
    limit: int = Query(100, ge=1, le=500),
    after: Optional[str] = Query(None),
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """One page of items held in a linked catalog."""
    return CatalogSyncService(db).list_catalog_products(
        business.subdomain, catalog_id, limit=limit, after=after, location_id=location_id
    )


@router.get("/catalogs/{catalog_id}/users")
async def list_catalog_users(
    catalog_id: str,
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Users assigned to a linked catalog."""
    return CatalogSyncService(db).list_catalog_users(business.subdomain, catalog_id, location_id)


@router.post("/catalogs/{catalog_id}/users")
async def assign_catalog_user(
    catalog_id: str,
    request: AssignUserRequest,
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Grant a platform user access to a linked catalog."""
    return CatalogSyncService(db).assign_catalog_user(
        business.subdomain, catalog_id, request.user_id, tasks=request.tasks, location_id=location_id
    )


@router.delete("/catalogs/{catalog_id}/users/{user_id}")
async def remove_catalog_user(
    catalog_id: str,
    user_id: str,
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Revoke a platform user's access to a linked catalog."""
    return CatalogSyncService(db).remove_catalog_user(business.subdomain, catalog_id, user_id, location_id)


@router.delete("/catalog-owner", status_code=204)
async def reset_catalog_owner(
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Forget the cached catalog owner; it is looked up again on next use."""
    CatalogSyncService(db).reset_catalog_owner(business.subdomain, location_id)


@router.post("/category-catalogs", response_model=ProvisioningResponse)
async def create_category_catalogs(
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Create one catalog per active category."""
    result = CatalogSyncService(db).create_category_catalogs(business.subdomain, location_id)
    return result.to_dict()


@router.post("/sync", response_model=BatchSyncResponse)
async def sync_all_products(
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Batch sync all active products of the business."""
    result = CatalogSyncService(db).sync_all_products(business.subdomain, location_id)
    logger.info(f"Manual sync for {business.subdomain}: {result.synced} submitted, {result.failed} failed")
    return result.to_dict()


@router.post("/sync/queue", response_model=QueuedResponse, status_code=202)
async def queue_sync_all_products(
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
):
    """Hand a full batch sync to the worker queue."""
    task = sync_tenant_catalog.delay(business.subdomain, location_id)
    return {"status": "queued", "task_id": task.id}


@router.post("/products/{product_id}/sync", response_model=SyncResultResponse)
async def sync_product(
    product_id: int,
    availability_only: bool = Query(False),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Sync one product, or only its availability."""
    product = _get_product(db, business, product_id)
    service = CatalogSyncService(db)
    if availability_only:
        result = service.sync_product_availability(product)
    else:
        result = service.sync_product(product)
    return result.to_dict()


@router.post("/categories/{category_id}/sync", response_model=BatchSyncResponse)
async def sync_category(
    category_id: int,
    location_id: Optional[str] = Query(None),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Batch sync all active products of one category."""
    category = _get_category(db, business, category_id)
    result = CatalogSyncService(db).sync_category(category.id, business.subdomain, location_id)
    return result.to_dict()
