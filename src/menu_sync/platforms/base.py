"""
Abstract base class for commerce catalog clients.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional


@dataclass
class MetaCredentials:
    """Credentials for the Meta Graph API."""
    access_token: str
    waba_id: Optional[str] = None

    def __repr__(self) -> str:
        return f"MetaCredentials(waba_id={self.waba_id!r}, access_token='***')"


class BatchMethod(str, enum.Enum):
    """Operations accepted by the catalog batch endpoint."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class BatchOperation:
    """One request inside a catalog batch envelope."""
    method: BatchMethod
    retailer_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_request(self) -> Dict[str, Any]:
        """Render as ``{method, data: {id, ...fields}}``."""
        data = {"id": self.retailer_id}
        if self.method != BatchMethod.DELETE:
            data.update({k: v for k, v in self.data.items() if k not in ("id", "retailer_id")})
        return {"method": self.method.value, "data": data}


class CatalogClient(ABC):
    """
    Abstract catalog client interface.

    Every call authenticates with the tenant's bearer token and raises
    ExternalApiError with the platform message on rejection.
    """

    def __init__(self, credentials: MetaCredentials):
        self.credentials = credentials

    @abstractmethod
    def get_owner_business_id(self, waba_id: str) -> Optional[str]:
        """Look up the business entity that owns a WhatsApp Business account."""

    @abstractmethod
    def exchange_access_token(self, app_id: str, app_secret: str) -> Dict[str, Any]:
        """Trade the current token for a fresh long-lived one (access_token, expires_in)."""

    @abstractmethod
    def list_catalogs(self, owner_id: str) -> List[Dict[str, Any]]:
        """List catalogs owned by a business entity."""

    @abstractmethod
    def get_catalog(self, catalog_id: str) -> Dict[str, Any]:
        """Fetch catalog metadata."""

    @abstractmethod
    def create_catalog(self, owner_id: str, name: str, vertical: str = "commerce") -> Dict[str, Any]:
        """Create a catalog. Returns ``{"id": ...}``."""

    @abstractmethod
    def update_catalog(self, catalog_id: str, name: str) -> Dict[str, Any]:
        """Rename a catalog."""

    @abstractmethod
    def delete_catalog(self, catalog_id: str) -> Dict[str, Any]:
        """Delete a catalog."""

    @abstractmethod
    def get_products(self, catalog_id: str, limit: int = 100,
                     after: Optional[str] = None) -> Dict[str, Any]:
        """List one page of catalog products. Returns ``{"products", "paging"}``."""

    @abstractmethod
    def get_product(self, catalog_id: str, retailer_id: str) -> Dict[str, Any]:
        """
        Fetch a product by retailer id.

        Raises:
            ExternalNotFoundError: if the catalog has no such product
        """

    @abstractmethod
    def create_product(self, catalog_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a single product. Returns ``{"id": ...}``."""

    @abstractmethod
    def update_product(self, catalog_id: str, retailer_id: str,
                       fields: Dict[str, Any]) -> Dict[str, Any]:
        """Update fields of an existing product."""

    @abstractmethod
    def delete_product(self, catalog_id: str, retailer_id: str) -> Dict[str, Any]:
        """Remove a product by retailer id."""

    @abstractmethod
    def batch_products(self, catalog_id: str, operations: List[BatchOperation]) -> Dict[str, Any]:
        """Submit a batch of operations. Returns ``{"handle": ...}``."""

    @abstractmethod
    def assign_user(self, catalog_id: str, user_id: str, owner_id: str,
                    tasks: Optional[List[str]] = None) -> Dict[str, Any]:
        """Grant a user access to a catalog."""

    @abstractmethod
    def remove_user(self, catalog_id: str, user_id: str, owner_id: str) -> Dict[str, Any]:
        """Revoke a user's access to a catalog."""

    @abstractmethod
    def list_catalog_users(self, catalog_id: str) -> List[Dict[str, Any]]:
        """List users assigned to a catalog."""

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Get platform name."""
