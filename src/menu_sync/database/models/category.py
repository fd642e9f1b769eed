"""
Category model for menu grouping.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Index

from .base import Base


class Category(Base):
    """Menu category. Per-category catalogs are keyed by ``id`` in Business.catalog_mapping."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subdomain = Column(String(100), nullable=False, index=True)
    location_id = Column(String(64))
    name = Column(String(255), nullable=False)
    description = Column(Text)
    image_url = Column(String(1024))
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_category_tenant", "subdomain", "location_id"),
    )

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"
