"""
Unit tests for the catalog sync service
"""
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from menu_sync.database.models import Category, Product
from menu_sync.platforms.base import BatchMethod
from menu_sync.platforms.factory import create_catalog_client
from menu_sync.services.catalog_sync import NOT_CONFIGURED, CatalogSyncService, SyncAction
from menu_sync.services.tenant_resolver import TenantResolver
from menu_sync.utils.exceptions import DatabaseError, ExternalApiError, NotFoundError, ValidationError


class TestSyncProduct:
    """Test single product create/update"""

    def test_creates_missing_product(self, sync_service, mock_catalog_client, product):
        result = sync_service.sync_product(product)

        assert result.success is True
        assert result.action == SyncAction.CREATE
        assert result.catalog_id == "catalog-001"
        mock_catalog_client.get_product.assert_called_once_with("catalog-001", "PIZZA-MARG")

        catalog_id, payload = mock_catalog_client.create_product.call_args[0]
        assert catalog_id == "catalog-001"
        assert payload["retailer_id"] == "PIZZA-MARG"
        assert payload["price"] == 2590
        assert payload["availability"] == "in stock"
        assert payload["brand"] == "Pizzeria Roma"
        assert payload["category"] == "Pizzas"
        mock_catalog_client.update_product.assert_not_called()

    def test_updates_existing_product(self, sync_service, mock_catalog_client, product):
        mock_catalog_client.get_product.side_effect = None
        mock_catalog_client.get_product.return_value = {"id": "meta-1", "retailer_id": "PIZZA-MARG"}

        result = sync_service.sync_product(product)

        assert result.action == SyncAction.UPDATE
        catalog_id, retailer_id, payload = mock_catalog_client.update_product.call_args[0]
        assert (catalog_id, retailer_id) == ("catalog-001", "PIZZA-MARG")
        assert payload["name"] == "Margherita"
        mock_catalog_client.create_product.assert_not_called()

    def test_category_catalog_preferred(self, sync_service, mock_catalog_client, db_session,
                                        business, category, product):
        business.catalog_mapping = {str(category.id): "catalog-pizzas"}
        db_session.commit()

        result = sync_service.sync_product(product)

        assert result.catalog_id == "catalog-pizzas"
        assert mock_catalog_client.create_product.call_args[0][0] == "catalog-pizzas"

    def test_explicit_catalog(self, sync_service, mock_catalog_client, product):
        result = sync_service.sync_product(product, catalog_id="catalog-explicit")
        assert result.catalog_id == "catalog-explicit"

    def test_sync_disabled_skips(self, sync_service, mock_catalog_client, db_session, business, product):
        business.catalog_sync_enabled = False
        db_session.commit()

        result = sync_service.sync_product(product)

        assert result.success is False
        assert result.action == SyncAction.SKIP
        assert result.error == NOT_CONFIGURED
        mock_catalog_client.get_product.assert_not_called()

    def test_no_catalog_skips(self, sync_service, mock_catalog_client, db_session, business, product):
        business.catalog_ids = []
        db_session.commit()

        result = sync_service.sync_product(product)

        assert result.action == SyncAction.SKIP
        assert result.error == NOT_CONFIGURED
        mock_catalog_client.create_product.assert_not_called()

    def test_inactive_product_skipped(self, sync_service, mock_catalog_client, db_session, product):
        product.is_active = False
        db_session.commit()

        result = sync_service.sync_product(product)

        assert result.success is True
        assert result.action == SyncAction.SKIP
        mock_catalog_client.create_product.assert_not_called()

    def test_inactive_out_of_stock_product_created(self, sync_service, mock_catalog_client,
                                                   db_session, product):
        product.is_active = False
        product.is_out_of_stock = True
        db_session.commit()

        result = sync_service.sync_product(product)

        assert result.success is True
        assert result.action == SyncAction.CREATE
        payload = mock_catalog_client.create_product.call_args[0][1]
        assert payload["availability"] == "discontinued"

    def test_inactive_out_of_stock_listing_updated(self, sync_service, mock_catalog_client,
                                                   db_session, product):
        product.is_active = False
        product.is_out_of_stock = True
        db_session.commit()
        mock_catalog_client.get_product.side_effect = None
        mock_catalog_client.get_product.return_value = {"id": "meta-1", "retailer_id": "PIZZA-MARG"}

        result = sync_service.sync_product(product)

        assert result.action == SyncAction.UPDATE
        payload = mock_catalog_client.update_product.call_args[0][2]
        assert payload["availability"] == "discontinued"

    def test_platform_error_reported(self, sync_service, mock_catalog_client, product):
        mock_catalog_client.create_product.side_effect = ExternalApiError(
            "(#100) Invalid parameter", status_code=400
        )

        result = sync_service.sync_product(product)

        assert result.success is False
        assert result.action is None
        assert result.error == "(#100) Invalid parameter"

    def test_missing_token_is_skip(self, db_session, business, product):
        business.whatsapp_access_token = None
        db_session.commit()
        service = CatalogSyncService(db_session, client_factory=create_catalog_client)

        result = service.sync_product(product)

        assert result.success is False
        assert result.action == SyncAction.SKIP
        assert "access token" in result.error

    def test_undecryptable_token_fails(self, sync_service, mock_catalog_client, db_session, business, product):
        business.whatsapp_access_token = "EAAGplaintextwithoutencryption"
        db_session.commit()

        result = sync_service.sync_product(product)

        assert result.success is False
        mock_catalog_client.create_product.assert_not_called()

    def test_invalid_price_never_reaches_platform(self, sync_service, mock_catalog_client, db_session, product):
        product.base_price = Decimal("-1.00")
        db_session.commit()

        result = sync_service.sync_product(product)

        assert result.success is False
        mock_catalog_client.get_product.assert_not_called()
        mock_catalog_client.create_product.assert_not_called()

    def test_client_cached_per_business(self, db_session, business, product, mock_catalog_client):
        factory = MagicMock(return_value=mock_catalog_client)
        service = CatalogSyncService(db_session, client_factory=factory)

        service.sync_product(product)
        service.sync_product(product)

        assert factory.call_count == 1

    def test_result_to_dict(self, sync_service, product):
        data = sync_service.sync_product(product).to_dict()

        assert data == {
            "success": True,
            "product_id": "PIZZA-MARG",
            "action": "create",
            "catalog_id": "catalog-001",
            "error": None,
        }


class TestAvailabilityAndRemoval:
    """Test availability-only updates and deletes"""

    def test_availability_only(self, sync_service, mock_catalog_client, db_session, product):
        product.is_out_of_stock = True
        db_session.commit()

        result = sync_service.sync_product_availability(product)

        assert result.success is True
        assert result.action == SyncAction.UPDATE
        mock_catalog_client.update_product.assert_called_once_with(
            "catalog-001", "PIZZA-MARG", {"availability": "out of stock"}
        )
        mock_catalog_client.get_product.assert_not_called()

    def test_availability_of_inactive_product(self, sync_service, mock_catalog_client, db_session, product):
        product.is_active = False
        db_session.commit()

        sync_service.sync_product_availability(product)

        assert mock_catalog_client.update_product.call_args[0][2] == {"availability": "discontinued"}

    def test_availability_without_catalog(self, sync_service, mock_catalog_client, db_session, business, product):
        business.catalog_ids = []
        db_session.commit()

        result = sync_service.sync_product_availability(product)

        assert result.action == SyncAction.SKIP
        mock_catalog_client.update_product.assert_not_called()

    def test_remove_product(self, sync_service, mock_catalog_client, business):
        result = sync_service.remove_product("PIZZA-MARG", "pizzeria")

        assert result.success is True
        assert result.action == SyncAction.DELETE
        mock_catalog_client.delete_product.assert_called_once_with("catalog-001", "PIZZA-MARG")

    def test_remove_from_category_catalog(self, sync_service, mock_catalog_client, db_session, business):
        business.catalog_mapping = {"5": "catalog-5"}
        db_session.commit()

        sync_service.remove_product("PIZZA-MARG", "pizzeria", category_id=5)

        mock_catalog_client.delete_product.assert_called_once_with("catalog-5", "PIZZA-MARG")

    def test_remove_without_catalog(self, sync_service, mock_catalog_client, db_session, business):
        business.catalog_ids = []
        db_session.commit()

        result = sync_service.remove_product("PIZZA-MARG", "pizzeria")

        assert result.action == SyncAction.SKIP
        mock_catalog_client.delete_product.assert_not_called()

    def test_remove_unknown_business(self, sync_service, mock_catalog_client, db_session):
        result = sync_service.remove_product("PIZZA-MARG", "nowhere")

        assert result.success is False
        assert "nowhere" in result.error


class TestBatchSync:
    """Test batch sync of a tenant or a category"""

    def test_batch_submits_active_products(self, sync_service, mock_catalog_client, db_session,
                                           business, product, sized_product):
        result = sync_service.sync_all_products("pizzeria")

        assert result.success is True
        assert result.synced == 2
        assert result.failed == 0
        assert result.handle == "handle-batch"
        assert result.catalog_id == "catalog-001"

        catalog_id, operations = mock_catalog_client.batch_products.call_args[0]
        assert catalog_id == "catalog-001"
        assert {op.retailer_id for op in operations} == {"PIZZA-MARG", "PIZZA-PEPP"}
        assert all(op.method == BatchMethod.CREATE for op in operations)

        db_session.refresh(business)
        assert business.last_catalog_sync_at is not None

    def test_batch_without_price_range(self, sync_service, mock_catalog_client, sized_product):
        sync_service.sync_all_products("pizzeria")

        operation = mock_catalog_client.batch_products.call_args[0][1][0]
        assert operation.data["name"] == "Pepperoni"
        assert operation.data["price"] == 3000

    def test_empty_set_makes_no_call(self, sync_service, mock_catalog_client, business):
        result = sync_service.sync_all_products("pizzeria")

        assert result.success is True
        assert result.synced == 0
        mock_catalog_client.batch_products.assert_not_called()

    def test_inactive_products_excluded(self, sync_service, mock_catalog_client, db_session, product):
        product.is_active = False
        db_session.commit()

        result = sync_service.sync_all_products("pizzeria")

        assert result.synced == 0
        mock_catalog_client.batch_products.assert_not_called()

    def test_invalid_item_reported_rest_submitted(self, sync_service, mock_catalog_client, db_session,
                                                  product, sized_product):
        product.base_price = Decimal("-2.00")
        db_session.commit()

        result = sync_service.sync_all_products("pizzeria")

        assert result.success is False
        assert result.synced == 1
        assert result.failed == 1
        assert result.errors[0]["product_id"] == "PIZZA-MARG"
        operations = mock_catalog_client.batch_products.call_args[0][1]
        assert [op.retailer_id for op in operations] == ["PIZZA-PEPP"]

    def test_all_invalid_makes_no_call(self, sync_service, mock_catalog_client, db_session, product):
        product.base_price = Decimal("-2.00")
        db_session.commit()

        result = sync_service.sync_all_products("pizzeria")

        assert result.success is False
        assert result.failed == 1
        mock_catalog_client.batch_products.assert_not_called()

    def test_platform_rejects_batch(self, sync_service, mock_catalog_client, db_session, business, product):
        mock_catalog_client.batch_products.side_effect = ExternalApiError("Rate limit", status_code=429)

        result = sync_service.sync_all_products("pizzeria")

        assert result.success is False
        assert result.errors == [{"product_id": "batch", "error": "Rate limit"}]
        db_session.refresh(business)
        assert business.last_catalog_sync_at is None

    def test_sync_disabled(self, sync_service, mock_catalog_client, db_session, business, product):
        business.catalog_sync_enabled = False
        db_session.commit()

        result = sync_service.sync_all_products("pizzeria")

        assert result.success is False
        assert result.errors[0]["error"] == NOT_CONFIGURED
        mock_catalog_client.batch_products.assert_not_called()

    def test_category_batch_uses_price_range(self, sync_service, mock_catalog_client, db_session,
                                             business, category, sized_product):
        business.catalog_mapping = {str(category.id): "catalog-pizzas"}
        db_session.commit()

        result = sync_service.sync_category(category.id, "pizzeria")

        assert result.catalog_id == "catalog-pizzas"
        operation = mock_catalog_client.batch_products.call_args[0][1][0]
        assert operation.data["name"] == "Pepperoni (20.00 - 40.00)"
        assert operation.data["price"] == 2000

    def test_category_batch_only_that_category(self, sync_service, mock_catalog_client, db_session,
                                               business, category, product):
        other = Category(subdomain="pizzeria", name="Drinks")
        db_session.add(other)
        db_session.commit()
        db_session.add(Product(retailer_id="COKE", subdomain="pizzeria", category_id=other.id,
                               name="Coke", base_price=Decimal("5.00")))
        db_session.commit()

        result = sync_service.sync_category(category.id, "pizzeria")

        assert result.synced == 1
        operations = mock_catalog_client.batch_products.call_args[0][1]
        assert [op.retailer_id for op in operations] == ["PIZZA-MARG"]


class TestCatalogProvisioning:
    """Test per-category catalog creation"""

    def test_creates_catalog_per_category(self, sync_service, mock_catalog_client, db_session,
                                          business, category):
        drinks = Category(subdomain="pizzeria", name="Drinks", sort_order=2)
        db_session.add(drinks)
        db_session.commit()
        mock_catalog_client.create_catalog.side_effect = [{"id": "c-pizzas"}, {"id": "c-drinks"}]

        result = sync_service.create_category_catalogs("pizzeria")

        assert result.success is True
        assert result.catalogs_created == 2
        mock_catalog_client.create_catalog.assert_any_call(
            "owner-001", "Pizzeria Roma - Pizzas", vertical="commerce"
        )
        db_session.refresh(business)
        assert business.catalog_mapping == {str(category.id): "c-pizzas", str(drinks.id): "c-drinks"}

    def test_mapped_categories_skipped(self, sync_service, mock_catalog_client, db_session,
                                       business, category):
        business.catalog_mapping = {str(category.id): "existing"}
        db_session.commit()

        result = sync_service.create_category_catalogs("pizzeria")

        assert result.catalogs_created == 0
        mock_catalog_client.create_catalog.assert_not_called()

    def test_partial_failure_keeps_successes(self, sync_service, mock_catalog_client, db_session,
                                             business, category):
        drinks = Category(subdomain="pizzeria", name="Drinks", sort_order=2)
        db_session.add(drinks)
        db_session.commit()
        mock_catalog_client.create_catalog.side_effect = [
            {"id": "c-pizzas"},
            ExternalApiError("Permission denied", status_code=403),
        ]

        result = sync_service.create_category_catalogs("pizzeria")

        assert result.success is False
        assert result.catalogs_created == 1
        assert result.errors == [{"category_id": str(drinks.id), "error": "Permission denied"}]
        db_session.refresh(business)
        assert business.catalog_mapping == {str(category.id): "c-pizzas"}

    def test_mapping_save_failure_reports_created_catalogs(self, sync_service, mock_catalog_client,
                                                           business, category):
        mock_catalog_client.create_catalog.return_value = {"id": "c-pizzas"}

        with patch("menu_sync.services.catalog_sync.set_catalog_mapping",
                   side_effect=DatabaseError("Failed to save catalog mapping")):
            result = sync_service.create_category_catalogs("pizzeria")

        assert result.success is False
        assert result.catalogs_created == 1
        assert result.catalog_mapping == {str(category.id): "c-pizzas"}
        assert result.errors == [{"category_id": "mapping", "error": "Failed to save catalog mapping"}]

    def test_new_category_provisioned_when_mapping_in_use(self, sync_service, mock_catalog_client,
                                                          db_session, business, category):
        business.catalog_mapping = {"999": "c-old"}
        db_session.commit()

        result = sync_service.create_category_catalog(category)

        assert result.catalogs_created == 1
        db_session.refresh(business)
        assert business.catalog_mapping[str(category.id)] == "catalog-new"
        assert business.catalog_mapping["999"] == "c-old"

    def test_new_category_ignored_without_mapping(self, sync_service, mock_catalog_client, category):
        result = sync_service.create_category_catalog(category)

        assert result.success is True
        mock_catalog_client.create_catalog.assert_not_called()

    def test_create_primary_catalog(self, sync_service, mock_catalog_client, db_session, business):
        result = sync_service.create_primary_catalog("pizzeria", name="Main menu")

        mock_catalog_client.create_catalog.assert_called_once_with("owner-001", "Main menu")
        assert result == {"catalog_id": "catalog-new", "catalog_ids": ["catalog-001", "catalog-new"]}

    def test_list_catalogs(self, sync_service, mock_catalog_client, business):
        mock_catalog_client.list_catalogs.return_value = [{"id": "catalog-001", "name": "Main"}]

        assert sync_service.list_catalogs("pizzeria") == [{"id": "catalog-001", "name": "Main"}]
        mock_catalog_client.list_catalogs.assert_called_once_with("owner-001")

    def test_sync_status(self, sync_service, business, product):
        status = sync_service.get_sync_status("pizzeria")

        assert status["catalog_id"] == "catalog-001"
        assert status["sync_enabled"] is True
        assert status["sync_mode"] == "realtime"
        assert status["last_sync_at"] is None
        assert status["total_products"] == 1


class TestCatalogManagement:
    """Test management of catalogs linked to a tenant"""

    def test_get_linked_catalog(self, sync_service, mock_catalog_client, business):
        mock_catalog_client.get_catalog.return_value = {"id": "catalog-001", "name": "Main"}

        assert sync_service.get_catalog("pizzeria", "catalog-001") == {"id": "catalog-001", "name": "Main"}
        mock_catalog_client.get_catalog.assert_called_once_with("catalog-001")

    def test_unlinked_catalog_not_found(self, sync_service, mock_catalog_client, business):
        with pytest.raises(NotFoundError):
            sync_service.get_catalog("pizzeria", "catalog-999")

        mock_catalog_client.get_catalog.assert_not_called()

    def test_category_catalog_counts_as_linked(self, sync_service, mock_catalog_client, db_session, business):
        business.catalog_mapping = {"7": "catalog-pizzas"}
        db_session.commit()
        mock_catalog_client.get_products.return_value = {"products": [], "paging": None}

        sync_service.list_catalog_products("pizzeria", "catalog-pizzas", limit=25, after="cursor-1")

        mock_catalog_client.get_products.assert_called_once_with("catalog-pizzas", limit=25, after="cursor-1")

    def test_rename_catalog(self, sync_service, mock_catalog_client, business):
        mock_catalog_client.update_catalog.return_value = {"success": True}

        sync_service.rename_catalog("pizzeria", "catalog-001", "  Evening menu ")

        mock_catalog_client.update_catalog.assert_called_once_with("catalog-001", "Evening menu")

    def test_rename_requires_name(self, sync_service, mock_catalog_client, business):
        with pytest.raises(ValidationError):
            sync_service.rename_catalog("pizzeria", "catalog-001", "   ")

        mock_catalog_client.update_catalog.assert_not_called()

    def test_delete_unlinks_catalog(self, sync_service, mock_catalog_client, db_session, business):
        business.catalog_ids = ["catalog-001", "catalog-pizzas"]
        business.catalog_mapping = {"7": "catalog-pizzas", "8": "catalog-001"}
        db_session.commit()
        mock_catalog_client.delete_catalog.return_value = {"success": True}

        result = sync_service.delete_catalog("pizzeria", "catalog-pizzas")

        mock_catalog_client.delete_catalog.assert_called_once_with("catalog-pizzas")
        assert result == {"deleted": "catalog-pizzas", "catalog_ids": ["catalog-001"]}
        db_session.refresh(business)
        assert business.catalog_mapping == {"8": "catalog-001"}

    def test_platform_delete_failure_keeps_link(self, sync_service, mock_catalog_client, db_session, business):
        mock_catalog_client.delete_catalog.side_effect = ExternalApiError("denied", status_code=403)

        with pytest.raises(ExternalApiError):
            sync_service.delete_catalog("pizzeria", "catalog-001")

        db_session.refresh(business)
        assert business.catalog_ids == ["catalog-001"]

    def test_list_users(self, sync_service, mock_catalog_client, business):
        mock_catalog_client.list_catalog_users.return_value = [{"id": "user-1", "tasks": ["MANAGE"]}]

        assert sync_service.list_catalog_users("pizzeria", "catalog-001") == [{"id": "user-1", "tasks": ["MANAGE"]}]

    def test_assign_user_with_owner(self, sync_service, mock_catalog_client, business):
        mock_catalog_client.assign_user.return_value = {"success": True}

        sync_service.assign_catalog_user("pizzeria", "catalog-001", "user-1", tasks=["MANAGE", "ADVERTISE"])

        mock_catalog_client.assign_user.assert_called_once_with(
            "catalog-001", "user-1", "owner-001", tasks=["MANAGE", "ADVERTISE"]
        )

    def test_assign_user_looks_up_missing_owner(self, sync_service, mock_catalog_client, db_session, business):
        business.catalog_owner_id = None
        db_session.commit()
        mock_catalog_client.get_owner_business_id.return_value = "owner-777"

        sync_service.assign_catalog_user("pizzeria", "catalog-001", "user-1")

        mock_catalog_client.get_owner_business_id.assert_called_once_with("100200300")
        mock_catalog_client.assign_user.assert_called_once_with("catalog-001", "user-1", "owner-777", tasks=None)

    @pytest.mark.parametrize("tasks", [[], ["MANAGE", "DELETE_EVERYTHING"]])
    def test_assign_user_rejects_tasks(self, sync_service, mock_catalog_client, business, tasks):
        with pytest.raises(ValidationError):
            sync_service.assign_catalog_user("pizzeria", "catalog-001", "user-1", tasks=tasks)

        mock_catalog_client.assign_user.assert_not_called()

    def test_remove_user(self, sync_service, mock_catalog_client, business):
        mock_catalog_client.remove_user.return_value = {"success": True}

        sync_service.remove_catalog_user("pizzeria", "catalog-001", "user-1")

        mock_catalog_client.remove_user.assert_called_once_with("catalog-001", "user-1", "owner-001")

    def test_reset_owner(self, sync_service, db_session, business):
        sync_service.reset_catalog_owner("pizzeria")

        db_session.refresh(business)
        assert business.catalog_owner_id is None


class TestResolverInjection:
    """The service honours an injected resolver"""

    def test_legacy_resolver(self, db_session, business, product, mock_catalog_client):
        business.whatsapp_access_token = "EAAGplaintextwithoutencryption"
        db_session.commit()
        service = CatalogSyncService(
            db_session,
            resolver=TenantResolver(db_session, legacy_mode=True),
            client_factory=lambda tenant: mock_catalog_client,
        )

        result = service.sync_product(product)

        assert result.success is True
        mock_catalog_client.create_product.assert_called_once()
