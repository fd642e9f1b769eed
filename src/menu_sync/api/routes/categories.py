"""
Category CRUD endpoints.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from menu_sync.api.background import run_category_provisioning
from menu_sync.api.dependencies import get_current_business
from menu_sync.database.connection import get_db
from menu_sync.database.models import Business, Category
from menu_sync.utils.exceptions import NotFoundError

router = APIRouter()


class CategoryCreate(BaseModel):
    """Request body for creating a category."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = None
    location_id: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class CategoryResponse(BaseModel):
    """Category response model."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    subdomain: str
    location_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool
    sort_order: int
    created_at: datetime


def _get_category(db: Session, business: Business, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if category is None or category.subdomain != business.subdomain:
        raise NotFoundError(f"Category {category_id} not found", resource="category", identifier=category_id)
    return category


@router.get("", response_model=List[CategoryResponse])
async def list_categories(
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """List categories of the business."""
    return (
        db.query(Category)
        .filter(Category.subdomain == business.subdomain)
        .order_by(Category.sort_order, Category.id)
        .all()
    )


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    request: CategoryCreate,
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """
    Create a category.

    Businesses with per-category catalogs get a catalog for it in the background.
    """
    category = Category(subdomain=business.subdomain, **request.model_dump())
    db.add(category)
    db.commit()
    db.refresh(category)

    if business.catalog_sync_enabled and business.catalog_mapping:
        background_tasks.add_task(run_category_provisioning, category.id)
    return category


@router.put("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    request: CategoryUpdate,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Update a category."""
    category = _get_category(db, business, category_id)
    for key, value in request.model_dump(exclude_unset=True).items():
        setattr(category, key, value)
    db.commit()
    db.refresh(category)
    return category


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: int,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Delete a category; its products are kept without a category."""
    category = _get_category(db, business, category_id)
    db.delete(category)
    db.commit()
