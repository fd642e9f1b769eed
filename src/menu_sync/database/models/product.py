"""
Product model for menu items mirrored to the WhatsApp commerce catalog.
"""

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Numeric, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base


class Product(Base):
    """
    Menu item owned by the CRUD layer.

    ``retailer_id`` is the immutable join key with the external catalog and
    is unique per tenant.
    """

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    retailer_id = Column(String(100), nullable=False)

    # Tenant
    subdomain = Column(String(100), nullable=False, index=True)
    location_id = Column(String(64))
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), index=True)

    # Details
    name = Column(String(500), nullable=False)
    description = Column(Text)
    base_price = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3))
    image_url = Column(String(1024))
    brand = Column(String(255))

    # Availability flags
    is_active = Column(Boolean, default=True, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    is_out_of_stock = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    presentations = relationship(
        "Presentation",
        back_populates="product",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("subdomain", "retailer_id", name="uq_product_retailer_id"),
        Index("idx_product_tenant_active", "subdomain", "location_id", "is_active"),
    )

    def __repr__(self):
        return f"<Product(id={self.id}, retailer_id='{self.retailer_id}', name='{self.name}')>"


class Presentation(Base):
    """Purchasable size or variant of a product with its own price."""

    __tablename__ = "presentations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    amount_with_discount = Column(Numeric(12, 2))
    is_active = Column(Boolean, default=True, nullable=False)

    product = relationship("Product", back_populates="presentations")

    def __repr__(self):
        return f"<Presentation(id={self.id}, name='{self.name}', price={self.price})>"
