"""
Shared FastAPI dependencies.
"""

from typing import Optional

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from menu_sync.database.connection import get_db
from menu_sync.database.models import Business
from menu_sync.services.tenant_resolver import TenantResolver


def get_current_business(
    subdomain: str,
    location_id: Optional[str] = Query(None, description="Business location id"),
    db: Session = Depends(get_db),
) -> Business:
    """Resolve the business addressed by the ``{subdomain}`` path segment."""
    return TenantResolver(db).get_business(subdomain, location_id)
