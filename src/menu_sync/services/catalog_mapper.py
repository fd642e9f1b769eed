"""
Mapping of menu products to commerce catalog items.

Pure functions: no database or network access. Prices are converted to
integer minor units and the product flags collapse to one availability value.
"""

import enum
import math
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional, Tuple

from menu_sync.utils.config import get_config
from menu_sync.utils.exceptions import ValidationError

MULTIPLE_SIZES_NOTE = "Available in multiple sizes"


class Availability(str, enum.Enum):
    """Catalog availability values, in the platform's wire format."""
    DISCONTINUED = "discontinued"
    OUT_OF_STOCK = "out of stock"
    IN_STOCK = "in stock"
    AVAILABLE_FOR_ORDER = "available for order"


@dataclass
class ExternalProductPayload:
    """Product representation accepted by the catalog API."""
    retailer_id: str
    name: str
    price: int
    currency: str
    availability: Availability
    image_url: str
    condition: str = "new"
    description: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["availability"] = self.availability.value
        return {k: v for k, v in data.items() if v is not None}


def resolve_availability(is_active: bool, is_available: bool, is_out_of_stock: bool) -> Availability:
    """Collapse product flags into one availability value, first match wins."""
    if not is_active:
        return Availability.DISCONTINUED
    if is_out_of_stock:
        return Availability.OUT_OF_STOCK
    if is_available:
        return Availability.IN_STOCK
    return Availability.AVAILABLE_FOR_ORDER


def product_availability(product) -> Availability:
    return resolve_availability(
        bool(product.is_active), bool(product.is_available), bool(product.is_out_of_stock)
    )


def _to_decimal(price: Any, field: str = "price") -> Decimal:
    if isinstance(price, bool) or not isinstance(price, (int, float, Decimal)):
        raise ValidationError(
            f"Price must be numeric, got {type(price).__name__}",
            field=field,
            value=price,
            expected_type="decimal",
        )
    if isinstance(price, float) and not math.isfinite(price):
        raise ValidationError("Price must be finite", field=field, value=price, expected_type="decimal")

    try:
        value = Decimal(str(price))
    except InvalidOperation as e:
        raise ValidationError("Price is not a valid number", field=field, value=price,
                              expected_type="decimal") from e

    if not value.is_finite():
        raise ValidationError("Price must be finite", field=field, value=price, expected_type="decimal")
    if value < 0:
        raise ValidationError("Price cannot be negative", field=field, value=price,
                              expected_type="non-negative decimal")
    return value


def price_to_cents(price: Any) -> int:
    """
    Convert a price in currency units to integer minor units.

    Halves round away from zero, so 19.995 becomes 2000.

    Raises:
        ValidationError: for negative or non-numeric prices
    """
    value = _to_decimal(price)
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def presentation_price(presentation) -> Decimal:
    """Effective price of a presentation, preferring its discounted amount."""
    if presentation.amount_with_discount is not None:
        return _to_decimal(presentation.amount_with_discount, field="amount_with_discount")
    return _to_decimal(presentation.price, field="presentation.price")


def price_range(presentations: Iterable) -> Optional[Tuple[Decimal, Decimal]]:
    """Min and max effective price over active presentations, or None if there are none."""
    prices = [presentation_price(p) for p in presentations if p.is_active]
    if not prices:
        return None
    return min(prices), max(prices)


def _format_amount(value: Decimal) -> str:
    return f"{value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}"


def map_to_external(product, include_price_range: bool = False, currency: Optional[str] = None,
                    brand: Optional[str] = None, category_name: Optional[str] = None,
                    placeholder_image_url: Optional[str] = None) -> ExternalProductPayload:
    """
    Build the catalog payload for a product.

    Args:
        product: Product record (its ``presentations`` are read in range mode)
        include_price_range: Show the cheapest presentation and annotate the range
        currency: Fallback currency when the product has none
        brand: Fallback brand when the product has none
        category_name: Category label for the catalog item
        placeholder_image_url: Image used when the product has none

    Returns:
        ExternalProductPayload

    Raises:
        ValidationError: if any price involved is negative or non-numeric
    """
    catalog_defaults = get_config().catalog

    display_price = _to_decimal(product.base_price, field="base_price")
    name = product.name
    description = (product.description or "").strip()

    if include_price_range:
        bounds = price_range(product.presentations or [])
        if bounds is not None:
            low, high = bounds
            if low != high and low > 0:
                display_price = low
                name = f"{product.name} ({_format_amount(low)} - {_format_amount(high)})"
                description = f"{description}\n\n{MULTIPLE_SIZES_NOTE}".strip()

    return ExternalProductPayload(
        retailer_id=product.retailer_id,
        name=name,
        price=price_to_cents(display_price),
        currency=product.currency or currency or catalog_defaults.default_currency,
        availability=product_availability(product),
        image_url=product.image_url or placeholder_image_url or catalog_defaults.placeholder_image_url,
        description=description or None,
        brand=product.brand or brand,
        category=category_name,
    )
