"""
Product CRUD endpoints.

Writes hand a catalog sync to the background when the business syncs in
realtime; the response never depends on the sync outcome.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from menu_sync.api.background import (
    realtime_sync_enabled,
    run_product_removal,
    run_product_sync,
)
from menu_sync.api.dependencies import get_current_business
from menu_sync.database.connection import get_db
from menu_sync.database.models import Business, Category, Presentation, Product
from menu_sync.utils.exceptions import NotFoundError, ValidationError
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


class PresentationIn(BaseModel):
    """Presentation (size) of a product."""
    name: str
    price: float = Field(..., ge=0)
    amount_with_discount: Optional[float] = Field(None, ge=0)
    is_active: bool = True


class PresentationResponse(PresentationIn):
    model_config = ConfigDict(from_attributes=True)

    id: int


class ProductCreate(BaseModel):
    """Request body for creating a product."""
    retailer_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    base_price: float = Field(0, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    image_url: Optional[str] = None
    brand: Optional[str] = None
    category_id: Optional[int] = None
    location_id: Optional[str] = None
    is_active: bool = True
    is_available: bool = True
    is_out_of_stock: bool = False
    presentations: List[PresentationIn] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    """Partial product update; omitted fields stay unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    base_price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    image_url: Optional[str] = None
    brand: Optional[str] = None
    category_id: Optional[int] = None
    is_active: Optional[bool] = None
    is_available: Optional[bool] = None
    is_out_of_stock: Optional[bool] = None
    presentations: Optional[List[PresentationIn]] = None


class AvailabilityUpdate(BaseModel):
    """Availability flags only."""
    is_available: Optional[bool] = None
    is_out_of_stock: Optional[bool] = None


class ProductResponse(BaseModel):
    """Product response model."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    retailer_id: str
    subdomain: str
    location_id: Optional[str] = None
    category_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    base_price: float
    currency: Optional[str] = None
    image_url: Optional[str] = None
    brand: Optional[str] = None
    is_active: bool
    is_available: bool
    is_out_of_stock: bool
    presentations: List[PresentationResponse] = []
    created_at: datetime
    updated_at: Optional[datetime] = None


class ProductListResponse(BaseModel):
    """Paginated product list."""
    products: List[ProductResponse]
    total: int
    page: int
    limit: int
    pages: int


def _get_product(db: Session, business: Business, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if product is None or product.subdomain != business.subdomain:
        raise NotFoundError(f"Product {product_id} not found", resource="product", identifier=product_id)
    return product


def _check_category(db: Session, business: Business, category_id: Optional[int]) -> None:
    if category_id is None:
        return
    category = db.get(Category, category_id)
    if category is None or category.subdomain != business.subdomain:
        raise ValidationError(
            f"Category {category_id} does not belong to this business",
            field="category_id", value=category_id,
        )


def _replace_presentations(product: Product, presentations: List[PresentationIn]) -> None:
    product.presentations = [Presentation(**p.model_dump()) for p in presentations]


def _schedule_sync(background_tasks: BackgroundTasks, business: Business, product_id: int,
                   availability_only: bool = False) -> None:
    if realtime_sync_enabled(business):
        background_tasks.add_task(run_product_sync, product_id, availability_only)


@router.get("", response_model=ProductListResponse)
async def list_products(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=200, description="Items per page"),
    category_id: Optional[int] = Query(None, description="Filter by category"),
    active_only: bool = Query(False, description="Only active products"),
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """List products of the business with pagination."""
    query = db.query(Product).filter(Product.subdomain == business.subdomain)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if active_only:
        query = query.filter(Product.is_active.is_(True))

    total = query.count()
    products = query.order_by(Product.id).offset((page - 1) * limit).limit(limit).all()

    return {
        "products": products,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit,
    }


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Get a single product."""
    return _get_product(db, business, product_id)


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    request: ProductCreate,
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Create a product and push it to the catalog in the background."""
    exists = (
        db.query(Product.id)
        .filter(Product.subdomain == business.subdomain, Product.retailer_id == request.retailer_id)
        .first()
    )
    if exists:
        raise ValidationError(
            f"Product with retailer id {request.retailer_id} already exists",
            field="retailer_id", value=request.retailer_id,
        )
    _check_category(db, business, request.category_id)

    data = request.model_dump(exclude={"presentations"})
    product = Product(subdomain=business.subdomain, **data)
    _replace_presentations(product, request.presentations)

    db.add(product)
    db.commit()
    db.refresh(product)

    logger.info(f"Created product {product.retailer_id} for {business.subdomain}")
    _schedule_sync(background_tasks, business, product.id)
    return product


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    request: ProductUpdate,
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Update a product and re-sync it in the background."""
    product = _get_product(db, business, product_id)

    changes = request.model_dump(exclude_unset=True, exclude={"presentations"})
    if "category_id" in changes:
        _check_category(db, business, changes["category_id"])
    for key, value in changes.items():
        setattr(product, key, value)
    if request.presentations is not None:
        _replace_presentations(product, request.presentations)

    db.commit()
    db.refresh(product)

    _schedule_sync(background_tasks, business, product.id)
    return product


@router.patch("/{product_id}/availability", response_model=ProductResponse)
async def update_availability(
    product_id: int,
    request: AvailabilityUpdate,
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Toggle availability flags and push only the availability."""
    product = _get_product(db, business, product_id)

    for key, value in request.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(product, key, value)

    db.commit()
    db.refresh(product)

    _schedule_sync(background_tasks, business, product.id, availability_only=True)
    return product


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: int,
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Delete a product and remove it from its catalog in the background."""
    product = _get_product(db, business, product_id)
    retailer_id = product.retailer_id
    location_id = product.location_id
    category_id = product.category_id

    db.delete(product)
    db.commit()
    logger.info(f"Deleted product {retailer_id} of {business.subdomain}")

    if realtime_sync_enabled(business):
        background_tasks.add_task(
            run_product_removal, retailer_id, business.subdomain, location_id, category_id
        )
