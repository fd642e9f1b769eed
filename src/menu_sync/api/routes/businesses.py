"""
Business settings endpoints: platform credentials and catalog sync settings.
"""

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from menu_sync.api.dependencies import get_current_business
from menu_sync.database.connection import get_db
from menu_sync.database.models import Business, CatalogSyncMode
from menu_sync.database.operations import store_tokens
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


class CredentialsRequest(BaseModel):
    """WhatsApp Business credentials for a business."""
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    waba_id: Optional[str] = None
    phone_number_ids: Optional[List[str]] = None


class CatalogSettingsRequest(BaseModel):
    sync_enabled: Optional[bool] = None
    sync_mode: Optional[CatalogSyncMode] = None


class BusinessSettingsResponse(BaseModel):
    """Non-secret settings of a business."""
    business_id: str
    subdomain: str
    name: str
    waba_id: Optional[str] = None
    phone_number_ids: List[str] = []
    has_access_token: bool
    catalog_ids: List[str] = []
    catalog_mapping: Dict[str, str] = {}
    catalog_sync_enabled: bool
    catalog_sync_mode: Optional[str] = None
    last_catalog_sync_at: Optional[datetime] = None


def _settings(business: Business) -> dict:
    return {
        "business_id": business.business_id,
        "subdomain": business.subdomain,
        "name": business.name,
        "waba_id": business.waba_id,
        "phone_number_ids": list(business.phone_number_ids or []),
        "has_access_token": bool(business.whatsapp_access_token),
        "catalog_ids": list(business.catalog_ids or []),
        "catalog_mapping": dict(business.catalog_mapping or {}),
        "catalog_sync_enabled": bool(business.catalog_sync_enabled),
        "catalog_sync_mode": business.catalog_sync_mode.value if business.catalog_sync_mode else None,
        "last_catalog_sync_at": business.last_catalog_sync_at,
    }


@router.get("/settings", response_model=BusinessSettingsResponse)
async def get_settings(business: Business = Depends(get_current_business)):
    """Business settings without any secrets."""
    return _settings(business)


@router.put("/credentials", response_model=BusinessSettingsResponse)
async def store_credentials(
    request: CredentialsRequest,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Store WhatsApp credentials; tokens are encrypted before they are written."""
    if request.waba_id is not None:
        business.waba_id = request.waba_id
    if request.phone_number_ids is not None:
        business.phone_number_ids = list(request.phone_number_ids)
    db.commit()

    store_tokens(db, business, request.access_token, request.refresh_token, request.expires_at)
    logger.info(f"Updated WhatsApp credentials for {business.subdomain}")
    return _settings(business)


@router.patch("/catalog-settings", response_model=BusinessSettingsResponse)
async def update_catalog_settings(
    request: CatalogSettingsRequest,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Enable or disable catalog sync and choose when it runs."""
    if request.sync_enabled is not None:
        business.catalog_sync_enabled = request.sync_enabled
    if request.sync_mode is not None:
        business.catalog_sync_mode = request.sync_mode
    db.commit()
    db.refresh(business)

    logger.info(
        f"Catalog sync for {business.subdomain}: enabled={business.catalog_sync_enabled} "
        f"mode={business.catalog_sync_mode.value}"
    )
    return _settings(business)
