"""
Business model - a restaurant tenant with its WhatsApp catalog credentials.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Enum as SQLEnum, Text, JSON,
    ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base


class CatalogSyncMode(str, enum.Enum):
    """When product changes reach the external catalog."""
    MANUAL = "manual"
    REALTIME = "realtime"
    DAILY = "daily"


class Business(Base):
    """
    Tenant record holding encrypted platform credentials.

    Token columns only ever contain vault ciphertext; writes go through
    ``menu_sync.database.operations.store_tokens``.
    """

    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(String(64), nullable=False, unique=True, index=True)
    subdomain = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)

    # WhatsApp Business account
    waba_id = Column(String(64), index=True)
    phone_number_ids = Column(JSON, default=list, nullable=False)

    # Encrypted credentials
    whatsapp_access_token = Column(Text)
    whatsapp_refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))

    # Catalog
    catalog_owner_id = Column(String(64))
    catalog_ids = Column(JSON, default=list, nullable=False)
    catalog_mapping = Column(JSON, default=dict, nullable=False)
    catalog_sync_enabled = Column(Boolean, default=True, nullable=False)
    catalog_sync_mode = Column(
        SQLEnum(CatalogSyncMode, values_callable=lambda e: [m.value for m in e]),
        default=CatalogSyncMode.REALTIME,
        nullable=False,
    )
    last_catalog_sync_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    locations = relationship("BusinessLocation", back_populates="business", lazy="selectin")

    def __repr__(self):
        return f"<Business(id={self.id}, business_id='{self.business_id}', subdomain='{self.subdomain}')>"


class BusinessLocation(Base):
    """Maps a (subdomain, location id) pair to the business that owns it."""

    __tablename__ = "business_locations"
    __table_args__ = (
        UniqueConstraint("subdomain", "location_id", name="uq_business_location"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    subdomain = Column(String(100), nullable=False, index=True)
    location_id = Column(String(64), nullable=False)
    business_id = Column(
        String(64),
        ForeignKey("businesses.business_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255))

    business = relationship("Business", back_populates="locations")

    def __repr__(self):
        return f"<BusinessLocation(subdomain='{self.subdomain}', location_id='{self.location_id}')>"
