"""
Test configuration and fixtures for Menu Sync
"""
import os
import tempfile

# Environment must be in place before menu_sync reads its configuration
TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4
TEST_APP_SECRET = "test-app-secret"
TEST_VERIFY_TOKEN = "test-verify-token"

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["FACEBOOK_APP_ID"] = "test-app-id"
os.environ["FACEBOOK_APP_SECRET"] = TEST_APP_SECRET
os.environ["WHATSAPP_WEBHOOK_VERIFY_TOKEN"] = TEST_VERIFY_TOKEN
os.environ["LEGACY_PLAINTEXT_TOKENS"] = "false"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="menu_sync_logs_")

from decimal import Decimal
from typing import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from menu_sync.api.main import app
from menu_sync.database.connection import SessionLocal, engine, get_db
from menu_sync.database.models import (
    Base,
    Business,
    BusinessLocation,
    CatalogSyncMode,
    Category,
    Presentation,
    Product,
)
from menu_sync.platforms.base import CatalogClient
from menu_sync.security.encryption import CredentialVault, reset_vault
from menu_sync.services.catalog_sync import CatalogSyncService
from menu_sync.services.tenant_resolver import TenantResolver
from menu_sync.utils.exceptions import ExternalNotFoundError


# =============================================================================
# Test Database Setup
# =============================================================================

@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Fresh in-memory schema and session for each test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fresh_vault():
    """Drop the cached vault so each test sees the current environment"""
    reset_vault()
    yield
    reset_vault()


@pytest.fixture
def vault() -> CredentialVault:
    """Vault using the test key"""
    return CredentialVault(key=TEST_ENCRYPTION_KEY)


# =============================================================================
# FastAPI Test Client
# =============================================================================

@pytest.fixture(scope="function")
def client(db_session) -> TestClient:
    """Create FastAPI test client with overridden dependencies"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# =============================================================================
# Test Data Fixtures
# =============================================================================

@pytest.fixture
def business(db_session, vault) -> Business:
    """Business with WhatsApp linked and one primary catalog"""
    business = Business(
        business_id="biz-001",
        subdomain="pizzeria",
        name="Pizzeria Roma",
        waba_id="100200300",
        phone_number_ids=["555000111"],
        whatsapp_access_token=vault.encrypt("EAAG-test-access-token"),
        catalog_owner_id="owner-001",
        catalog_ids=["catalog-001"],
        catalog_mapping={},
        catalog_sync_enabled=True,
        catalog_sync_mode=CatalogSyncMode.REALTIME,
    )
    db_session.add(business)
    db_session.commit()
    db_session.refresh(business)
    return business


@pytest.fixture
def location(db_session, business) -> BusinessLocation:
    """Second branch of the test business"""
    location = BusinessLocation(
        subdomain=business.subdomain,
        location_id="loc-2",
        business_id=business.business_id,
        name="Miraflores",
    )
    db_session.add(location)
    db_session.commit()
    db_session.refresh(location)
    return location


@pytest.fixture
def category(db_session, business) -> Category:
    """Pizza category"""
    category = Category(subdomain=business.subdomain, name="Pizzas", sort_order=1)
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def product(db_session, business, category) -> Product:
    """Active, available product"""
    product = Product(
        retailer_id="PIZZA-MARG",
        subdomain=business.subdomain,
        category_id=category.id,
        name="Margherita",
        description="Tomato, mozzarella, basil",
        base_price=Decimal("25.90"),
        currency="PEN",
        image_url="https://cdn.example.com/margherita.png",
        is_active=True,
        is_available=True,
        is_out_of_stock=False,
    )
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def sized_product(db_session, business, category) -> Product:
    """Product sold in several sizes"""
    product = Product(
        retailer_id="PIZZA-PEPP",
        subdomain=business.subdomain,
        category_id=category.id,
        name="Pepperoni",
        description="Spicy pepperoni",
        base_price=Decimal("30.00"),
        is_active=True,
        is_available=True,
        is_out_of_stock=False,
    )
    product.presentations = [
        Presentation(name="Personal", price=Decimal("20.00")),
        Presentation(name="Familiar", price=Decimal("45.00"), amount_with_discount=Decimal("40.00")),
        Presentation(name="Gigante", price=Decimal("99.00"), is_active=False),
    ]
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


# =============================================================================
# Mock External Services
# =============================================================================

@pytest.fixture
def mock_catalog_client() -> MagicMock:
    """Catalog client where products do not exist yet"""
    mock_client = MagicMock(spec=CatalogClient)
    mock_client.get_product.side_effect = ExternalNotFoundError("not found", status_code=404)
    mock_client.create_product.return_value = {"id": "meta-product-1"}
    mock_client.update_product.return_value = {"handle": "handle-update"}
    mock_client.delete_product.return_value = {"handle": "handle-delete"}
    mock_client.batch_products.return_value = {"handle": "handle-batch"}
    mock_client.create_catalog.return_value = {"id": "catalog-new"}
    mock_client.get_owner_business_id.return_value = "owner-001"
    return mock_client


@pytest.fixture
def sync_service(db_session, mock_catalog_client) -> CatalogSyncService:
    """Sync service wired to the mock catalog client"""
    return CatalogSyncService(
        db_session,
        resolver=TenantResolver(db_session, legacy_mode=False),
        client_factory=lambda tenant: mock_catalog_client,
    )
