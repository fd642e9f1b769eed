"""
Catalog sync service - reconciles menu products with the WhatsApp commerce catalog.

Internal records are the source of truth. Each operation returns a result
object instead of raising, so callers on the CRUD path can fire a sync and
only log its outcome.
"""

import enum
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from menu_sync.database.models import Business, Category, Product
from menu_sync.database.operations import (
    add_catalog_ids,
    clear_catalog_owner_id,
    mark_catalog_synced,
    remove_catalog_id,
    set_catalog_mapping,
)
from menu_sync.monitoring.metrics import get_metrics
from menu_sync.platforms.base import BatchMethod, BatchOperation, CatalogClient
from menu_sync.platforms.factory import create_catalog_client
from menu_sync.services.catalog_mapper import map_to_external, product_availability
from menu_sync.services.tenant_resolver import (
    TenantContext,
    TenantResolver,
    catalog_id_for_category,
    primary_catalog_id,
)
from menu_sync.utils.exceptions import (
    ConfigurationError,
    DatabaseError,
    ExternalNotFoundError,
    MenuSyncError,
    NotFoundError,
    ValidationError,
)
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

NOT_CONFIGURED = "No catalog configured or sync disabled"

CATALOG_USER_TASKS = ("MANAGE", "ADVERTISE", "MANAGE_AR", "AA_ANALYZE")


class SyncAction(str, enum.Enum):
    """Action taken for one product."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"


@dataclass
class SyncResult:
    """Outcome of a single-product sync."""
    success: bool
    product_id: str
    action: Optional[SyncAction] = None
    catalog_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value if self.action else None
        return data


@dataclass
class BatchSyncResult:
    """
    Outcome of a batch sync.

    ``synced`` counts products accepted by the platform in the batch; per-item
    completion is reported asynchronously by the platform under ``handle``.
    """
    success: bool
    synced: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    catalog_id: Optional[str] = None
    handle: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CatalogProvisioningResult:
    """Outcome of creating per-category catalogs."""
    success: bool
    catalogs_created: int = 0
    catalog_mapping: Dict[str, str] = field(default_factory=dict)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CatalogSyncService:
    """
    Pushes product changes to the tenant's commerce catalog.

    Provides:
    - single product create/update with existence check
    - availability-only updates for stock toggles
    - removal by retailer id
    - batch sync for a tenant or one category
    - per-category catalog provisioning
    - management of linked catalogs and their users
    """

    def __init__(self, db_session: Session, resolver: Optional[TenantResolver] = None,
                 client_factory: Callable[[TenantContext], CatalogClient] = create_catalog_client):
        """
        Initialize sync service.

        Args:
            db_session: Database session
            resolver: Tenant resolver (created from the session if omitted)
            client_factory: Builds a catalog client for a resolved tenant
        """
        self.db = db_session
        self.resolver = resolver or TenantResolver(db_session, client_factory=client_factory)
        self.client_factory = client_factory
        self.metrics = get_metrics()
        self._clients: Dict[str, CatalogClient] = {}

    # Helpers

    def _client(self, tenant: TenantContext) -> CatalogClient:
        key = tenant.business.business_id
        if key not in self._clients:
            self._clients[key] = self.client_factory(tenant)
        return self._clients[key]

    @staticmethod
    def resolve_catalog_target(business: Business, category_id=None) -> Optional[str]:
        """Category catalog if mapped, else the primary catalog. None when sync is off."""
        if not business.catalog_sync_enabled:
            return None
        return catalog_id_for_category(business, category_id) or primary_catalog_id(business)

    def _category_name(self, category_id) -> Optional[str]:
        if category_id is None:
            return None
        category = self.db.get(Category, category_id)
        return category.name if category else None

    def _build_payload(self, product: Product, business: Business,
                       include_price_range: bool = False) -> Dict[str, Any]:
        payload = map_to_external(
            product,
            include_price_range=include_price_range,
            brand=business.name,
            category_name=self._category_name(product.category_id),
        )
        return payload.to_dict()

    def _product_exists(self, client: CatalogClient, catalog_id: str, retailer_id: str) -> bool:
        try:
            client.get_product(catalog_id, retailer_id)
        except ExternalNotFoundError:
            return False
        return True

    def _failure(self, product_id: str, error: Exception, catalog_id: Optional[str] = None,
                 action: Optional[SyncAction] = None) -> SyncResult:
        message = error.message if isinstance(error, MenuSyncError) else str(error)
        if isinstance(error, ConfigurationError):
            action = SyncAction.SKIP
        if isinstance(error, MenuSyncError):
            logger.error(f"Catalog sync failed for product {product_id}: {error}")
        else:
            logger.error(f"Unexpected error syncing product {product_id}: {error}", exc_info=True)
        result = SyncResult(False, product_id, action=action, catalog_id=catalog_id,
                            error=message or type(error).__name__)
        self.metrics.track_catalog_operation(action.value if action else None, False)
        return result

    def _done(self, result: SyncResult) -> SyncResult:
        self.metrics.track_catalog_operation(result.action.value if result.action else None,
                                             result.success)
        return result

    # Single product

    def sync_product(self, product: Product, catalog_id: Optional[str] = None) -> SyncResult:
        """
        Create or update one product in its catalog.

        Args:
            product: Product to push
            catalog_id: Explicit target catalog, bypassing resolution

        Returns:
            SyncResult with action create, update or skip
        """
        target = None
        try:
            business = self.resolver.get_business(product.subdomain, product.location_id)
            target = catalog_id or self.resolve_catalog_target(business, product.category_id)

            if not target:
                logger.info(f"Skipping product {product.retailer_id}: {NOT_CONFIGURED}")
                return self._done(SyncResult(False, product.retailer_id, SyncAction.SKIP,
                                             error=NOT_CONFIGURED))

            if not product.is_active and not product.is_out_of_stock:
                logger.info(f"Skipping sync for inactive product {product.retailer_id}")
                return self._done(SyncResult(True, product.retailer_id, SyncAction.SKIP,
                                             catalog_id=target))

            payload = self._build_payload(product, business)

            tenant = self.resolver.context_for(business, product.location_id)
            client = self._client(tenant)

            if self._product_exists(client, target, product.retailer_id):
                client.update_product(target, product.retailer_id, payload)
                action = SyncAction.UPDATE
            else:
                client.create_product(target, payload)
                action = SyncAction.CREATE

            logger.info(f"Product {product.retailer_id} {action.value}d in catalog {target}")
            return self._done(SyncResult(True, product.retailer_id, action, catalog_id=target))

        except Exception as e:
            return self._failure(product.retailer_id, e, catalog_id=target)

    def sync_product_availability(self, product: Product,
                                  catalog_id: Optional[str] = None) -> SyncResult:
        """Update only the availability field of a product already in the catalog."""
        target = None
        try:
            business = self.resolver.get_business(product.subdomain, product.location_id)
            target = catalog_id or self.resolve_catalog_target(business, product.category_id)

            if not target:
                return self._done(SyncResult(False, product.retailer_id, SyncAction.SKIP,
                                             error=NOT_CONFIGURED))

            availability = product_availability(product)
            tenant = self.resolver.context_for(business, product.location_id)
            self._client(tenant).update_product(
                target, product.retailer_id, {"availability": availability.value}
            )

            logger.info(
                f"Availability of {product.retailer_id} set to '{availability.value}' in catalog {target}"
            )
            return self._done(SyncResult(True, product.retailer_id, SyncAction.UPDATE,
                                         catalog_id=target))

        except Exception as e:
            return self._failure(product.retailer_id, e, catalog_id=target)

    def remove_product(self, retailer_id: str, subdomain: str, location_id: Optional[str] = None,
                       catalog_id: Optional[str] = None, category_id=None) -> SyncResult:
        """
        Delete a product from its catalog by retailer id.

        A tenant without a catalog yields a skip rather than an error.
        """
        target = None
        try:
            business = self.resolver.get_business(subdomain, location_id)
            target = catalog_id or self.resolve_catalog_target(business, category_id)

            if not target:
                return self._done(SyncResult(False, retailer_id, SyncAction.SKIP,
                                             error=NOT_CONFIGURED))

            tenant = self.resolver.context_for(business, location_id)
            self._client(tenant).delete_product(target, retailer_id)

            logger.info(f"Product {retailer_id} removed from catalog {target}")
            return self._done(SyncResult(True, retailer_id, SyncAction.DELETE, catalog_id=target))

        except Exception as e:
            return self._failure(retailer_id, e, catalog_id=target)

    # Batch

    def _active_query(self, subdomain: str, location_id: Optional[str] = None, category_id=None):
        query = self.db.query(Product).filter(
            Product.subdomain == subdomain,
            Product.is_active.is_(True),
        )
        if location_id:
            query = query.filter(Product.location_id == str(location_id))
        if category_id is not None:
            query = query.filter(Product.category_id == category_id)
        return query

    def sync_all_products(self, subdomain: str, location_id: Optional[str] = None,
                          catalog_id: Optional[str] = None, category_id=None) -> BatchSyncResult:
        """
        Push every active product of a tenant in one batch.

        Scoping to a category targets that category's catalog and enables
        price-range display.

        Returns:
            BatchSyncResult; ``synced`` means accepted by the platform
        """
        scope = "batch" if category_id is None else "category"
        target = None
        try:
            business = self.resolver.get_business(subdomain, location_id)
            target = catalog_id or self.resolve_catalog_target(business, category_id)

            if not target:
                return BatchSyncResult(False, errors=[{"product_id": scope, "error": NOT_CONFIGURED}])

            products = self._active_query(subdomain, location_id, category_id).order_by(Product.id).all()
            if not products:
                logger.info(f"No products to sync for {subdomain} ({scope})")
                return BatchSyncResult(True, catalog_id=target)

            operations: List[BatchOperation] = []
            errors: List[Dict[str, str]] = []
            for product in products:
                try:
                    payload = self._build_payload(
                        product, business, include_price_range=category_id is not None
                    )
                except ValidationError as e:
                    logger.warning(f"Product {product.retailer_id} left out of batch: {e}")
                    errors.append({"product_id": product.retailer_id, "error": e.message})
                    continue
                operations.append(BatchOperation(BatchMethod.CREATE, product.retailer_id, payload))

            if not operations:
                self.metrics.track_batch(0, len(errors), 0)
                return BatchSyncResult(False, failed=len(errors), errors=errors, catalog_id=target)

            logger.info(f"Submitting {len(operations)} product(s) to catalog {target} for {subdomain}")
            tenant = self.resolver.context_for(business, location_id)
            response = self._client(tenant).batch_products(target, operations)
            mark_catalog_synced(self.db, business)

            result = BatchSyncResult(
                success=not errors,
                synced=len(operations),
                failed=len(errors),
                errors=errors,
                catalog_id=target,
                handle=response.get("handle"),
            )
            self.metrics.track_batch(result.synced, result.failed, result.skipped)
            logger.info(
                f"Batch accepted for {subdomain}: {result.synced} submitted, "
                f"{result.failed} failed, handle={result.handle}"
            )
            return result

        except Exception as e:
            if isinstance(e, MenuSyncError):
                logger.error(f"Batch sync failed for {subdomain}: {e}")
                message = e.message
            else:
                logger.error(f"Unexpected error in batch sync for {subdomain}: {e}", exc_info=True)
                message = str(e) or type(e).__name__
            return BatchSyncResult(False, errors=[{"product_id": scope, "error": message}],
                                   catalog_id=target)

    def sync_category(self, category_id: int, subdomain: str,
                      location_id: Optional[str] = None) -> BatchSyncResult:
        """Batch sync all active products of one category to its catalog."""
        return self.sync_all_products(subdomain, location_id, category_id=category_id)

    # Catalog management

    def _provision(self, tenant: TenantContext, categories: List[Category]) -> CatalogProvisioningResult:
        business = tenant.business
        client = self._client(tenant)
        owner_id = self.resolver.ensure_catalog_owner_id(tenant, client)

        existing = business.catalog_mapping or {}
        created: Dict[str, str] = {}
        errors: List[Dict[str, str]] = []

        for category in categories:
            key = str(category.id)
            if key in existing:
                logger.debug(f"Category {key} already has catalog {existing[key]}")
                continue

            catalog_name = f"{business.name} - {category.name}"
            try:
                catalog = client.create_catalog(owner_id, catalog_name, vertical="commerce")
            except MenuSyncError as e:
                logger.error(f"Failed to create catalog for category {key}: {e}")
                errors.append({"category_id": key, "error": e.message})
                continue

            created[key] = catalog["id"]
            logger.info(f"Created catalog {catalog['id']} for category {key}")

        if created:
            try:
                set_catalog_mapping(self.db, business, created)
            except DatabaseError as e:
                # remote catalogs already exist, keep their ids in the result
                logger.error(f"Created catalogs {created} for {business.subdomain} but could not "
                             f"save the mapping: {e}")
                errors.append({"category_id": "mapping", "error": e.message})

        return CatalogProvisioningResult(
            success=not errors,
            catalogs_created=len(created),
            catalog_mapping=created,
            errors=errors,
        )

    def create_category_catalogs(self, subdomain: str,
                                 location_id: Optional[str] = None) -> CatalogProvisioningResult:
        """
        Create one catalog per active category and record the mapping.

        Categories that fail are reported while the others are kept.
        """
        try:
            tenant = self.resolver.resolve(subdomain, location_id)

            query = self.db.query(Category).filter(
                Category.subdomain == subdomain,
                Category.is_active.is_(True),
            )
            if location_id:
                query = query.filter(Category.location_id == str(location_id))
            categories = query.order_by(Category.sort_order, Category.id).all()

            if not categories:
                logger.info(f"No active categories for {subdomain}")
                return CatalogProvisioningResult(True)

            logger.info(f"Creating catalogs for {len(categories)} categories of {subdomain}")
            return self._provision(tenant, categories)

        except MenuSyncError as e:
            logger.error(f"Catalog provisioning failed for {subdomain}: {e}")
            return CatalogProvisioningResult(False, errors=[{"category_id": "business", "error": e.message}])

    def create_category_catalog(self, category: Category) -> CatalogProvisioningResult:
        """
        Provision a catalog for a newly created category.

        Only runs for tenants already using per-category catalogs.
        """
        try:
            tenant = self.resolver.resolve(category.subdomain, category.location_id)
            if not tenant.business.catalog_mapping:
                return CatalogProvisioningResult(True)
            return self._provision(tenant, [category])

        except MenuSyncError as e:
            logger.error(f"Catalog provisioning failed for category {category.id}: {e}")
            return CatalogProvisioningResult(False, errors=[{"category_id": str(category.id), "error": e.message}])

    def create_primary_catalog(self, subdomain: str, name: Optional[str] = None,
                               location_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a catalog and link it to the tenant.

        Raises:
            ConfigurationError: if the catalog owner cannot be resolved
            ExternalApiError: if the platform rejects the request
        """
        tenant = self.resolver.resolve(subdomain, location_id)
        client = self._client(tenant)
        owner_id = self.resolver.ensure_catalog_owner_id(tenant, client)

        catalog = client.create_catalog(owner_id, name or tenant.business.name)
        catalog_ids = add_catalog_ids(self.db, tenant.business, [catalog["id"]])
        logger.info(f"Linked catalog {catalog['id']} to {subdomain}")
        return {"catalog_id": catalog["id"], "catalog_ids": catalog_ids}

    def list_catalogs(self, subdomain: str, location_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """List catalogs owned by the tenant's business entity."""
        tenant = self.resolver.resolve(subdomain, location_id)
        client = self._client(tenant)
        owner_id = self.resolver.ensure_catalog_owner_id(tenant, client)
        return client.list_catalogs(owner_id)

    # Catalog management

    def _linked_catalog(self, subdomain: str, catalog_id: str,
                        location_id: Optional[str] = None) -> TenantContext:
        tenant = self.resolver.resolve(subdomain, location_id)
        business = tenant.business
        linked = set(business.catalog_ids or []) | set((business.catalog_mapping or {}).values())
        if catalog_id not in linked:
            raise NotFoundError(
                f"Catalog {catalog_id} is not linked to {subdomain}",
                resource="catalog",
                identifier=catalog_id,
            )
        return tenant

    def get_catalog(self, subdomain: str, catalog_id: str,
                    location_id: Optional[str] = None) -> Dict[str, Any]:
        """Fetch one linked catalog from the platform."""
        tenant = self._linked_catalog(subdomain, catalog_id, location_id)
        return self._client(tenant).get_catalog(catalog_id)

    def rename_catalog(self, subdomain: str, catalog_id: str, name: str,
                       location_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Rename a linked catalog.

        Raises:
            NotFoundError: if the catalog is not linked to the tenant
            ValidationError: if the name is blank
            ExternalApiError: if the platform rejects the request
        """
        if not name or not name.strip():
            raise ValidationError("Catalog name is required", field="name", value=name)
        tenant = self._linked_catalog(subdomain, catalog_id, location_id)
        return self._client(tenant).update_catalog(catalog_id, name.strip())

    def delete_catalog(self, subdomain: str, catalog_id: str,
                       location_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Delete a linked catalog on the platform and unlink it from the tenant.

        Category mappings pointing at the catalog are dropped as well, so
        their products fall back to the primary catalog.
        """
        tenant = self._linked_catalog(subdomain, catalog_id, location_id)
        business = tenant.business
        self._client(tenant).delete_catalog(catalog_id)

        catalog_ids = remove_catalog_id(self.db, business, catalog_id)
        logger.info(f"Unlinked catalog {catalog_id} from {subdomain}")
        return {"deleted": catalog_id, "catalog_ids": catalog_ids}

    def list_catalog_products(self, subdomain: str, catalog_id: str, limit: int = 100,
                              after: Optional[str] = None,
                              location_id: Optional[str] = None) -> Dict[str, Any]:
        """List one page of items held in a linked catalog."""
        tenant = self._linked_catalog(subdomain, catalog_id, location_id)
        return self._client(tenant).get_products(catalog_id, limit=limit, after=after)

    def list_catalog_users(self, subdomain: str, catalog_id: str,
                           location_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """List users assigned to a linked catalog."""
        tenant = self._linked_catalog(subdomain, catalog_id, location_id)
        return self._client(tenant).list_catalog_users(catalog_id)

    def assign_catalog_user(self, subdomain: str, catalog_id: str, user_id: str,
                            tasks: Optional[List[str]] = None,
                            location_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Grant a platform user access to a linked catalog.

        Args:
            subdomain: Tenant subdomain
            catalog_id: Linked catalog id
            user_id: Platform user (or system user) id
            tasks: Permissions to grant; MANAGE when omitted
            location_id: Optional tenant location

        Raises:
            ValidationError: if tasks is empty or names an unknown permission
            ConfigurationError: if the catalog owner cannot be resolved
        """
        if tasks is not None:
            unknown = [task for task in tasks if task not in CATALOG_USER_TASKS]
            if not tasks or unknown:
                raise ValidationError(
                    f"Tasks must be a non-empty list of {', '.join(CATALOG_USER_TASKS)}",
                    field="tasks",
                    value=tasks,
                )
        tenant = self._linked_catalog(subdomain, catalog_id, location_id)
        client = self._client(tenant)
        owner_id = self.resolver.ensure_catalog_owner_id(tenant, client)

        response = client.assign_user(catalog_id, user_id, owner_id, tasks=tasks)
        logger.info(f"Assigned user {user_id} to catalog {catalog_id} for {subdomain}")
        return response

    def remove_catalog_user(self, subdomain: str, catalog_id: str, user_id: str,
                            location_id: Optional[str] = None) -> Dict[str, Any]:
        """Revoke a platform user's access to a linked catalog."""
        tenant = self._linked_catalog(subdomain, catalog_id, location_id)
        client = self._client(tenant)
        owner_id = self.resolver.ensure_catalog_owner_id(tenant, client)

        response = client.remove_user(catalog_id, user_id, owner_id)
        logger.info(f"Removed user {user_id} from catalog {catalog_id} for {subdomain}")
        return response

    def reset_catalog_owner(self, subdomain: str, location_id: Optional[str] = None) -> None:
        """Forget the cached catalog owner so the next call looks it up again."""
        business = self.resolver.get_business(subdomain, location_id)
        clear_catalog_owner_id(self.db, business)
        logger.info(f"Cleared catalog owner for {subdomain}")

    def get_sync_status(self, subdomain: str, location_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Report catalog configuration and the latest accepted sync.

        Raises:
            NotFoundError: if the tenant does not exist
        """
        business = self.resolver.get_business(subdomain, location_id)
        return {
            "catalog_id": self.resolve_catalog_target(business),
            "catalog_ids": list(business.catalog_ids or []),
            "catalog_mapping": dict(business.catalog_mapping or {}),
            "sync_enabled": bool(business.catalog_sync_enabled),
            "sync_mode": business.catalog_sync_mode.value if business.catalog_sync_mode else None,
            "last_sync_at": business.last_catalog_sync_at.isoformat() if business.last_catalog_sync_at else None,
            "total_products": self._active_query(subdomain, location_id).count(),
        }
