"""
Meta Graph API catalog client.

Talks to the WhatsApp Business commerce catalog endpoints:
- /{waba_id}?fields=business: owning business lookup
- /{owner_id}/owned_product_catalogs: list and create catalogs
- /{catalog_id}/products: list, filter and create products
- /{catalog_id}/items_batch: update, delete and bulk operations
- /{catalog_id}/assigned_users: catalog permissions

POST bodies are form-encoded; nested values are sent as JSON strings.
"""

import json
from typing import Dict, List, Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from menu_sync.platforms.base import CatalogClient, MetaCredentials, BatchOperation, BatchMethod
from menu_sync.utils.config import get_config
from menu_sync.utils.exceptions import ExternalApiError, ExternalNotFoundError, handle_api_error
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

PRODUCT_ITEM = "PRODUCT_ITEM"
DEFAULT_CATALOG_USER_TASKS = ["MANAGE"]


class MetaCatalogClient(CatalogClient):
    """Synchronous Graph API client bound to one tenant's access token."""

    def __init__(self, credentials: MetaCredentials, graph_url: Optional[str] = None,
                 timeout: Optional[int] = None, max_retries: Optional[int] = None):
        """
        Initialize Meta catalog client.

        Args:
            credentials: Tenant access token and WABA id
            graph_url: Versioned Graph API root, e.g. https://graph.facebook.com/v24.0
            timeout: Request timeout in seconds
            max_retries: Retry attempts for 5xx and connection errors
        """
        super().__init__(credentials)
        meta = get_config().meta

        self.graph_url = (graph_url or meta.graph_url).rstrip("/")
        self.timeout = timeout or meta.timeout
        max_retries = meta.max_retries if max_retries is None else max_retries

        self.session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=meta.backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS", "DELETE"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.headers.update({
            "Authorization": f"Bearer {credentials.access_token}",
            "User-Agent": "MenuSync/1.0",
        })

        logger.debug(f"Initialized Meta catalog client for {self.graph_url}")

    @property
    def platform_name(self) -> str:
        return "meta"

    @staticmethod
    def _form_encode(data: Dict[str, Any]) -> Dict[str, str]:
        form = {}
        for key, value in data.items():
            if value is None:
                continue
            if isinstance(value, (dict, list)):
                form[key] = json.dumps(value)
            elif isinstance(value, bool):
                form[key] = "true" if value else "false"
            else:
                form[key] = str(value)
        return form

    def _make_request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None,
                      data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Make HTTP request with error handling.

        Args:
            method: HTTP method
            endpoint: Path below the versioned Graph root
            params: Query parameters
            data: Form body for POST/DELETE

        Returns:
            Decoded JSON response

        Raises:
            ExternalApiError: If request fails
        """
        url = f"{self.graph_url}{endpoint}"
        logger.info(f"Meta API {method} {endpoint}")

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                data=self._form_encode(data) if data else None,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ExternalApiError(f"Request timeout after {self.timeout}s", endpoint=endpoint) from e
        except requests.exceptions.ConnectionError as e:
            raise ExternalApiError(f"Connection failed to {endpoint}", endpoint=endpoint) from e
        except requests.exceptions.RequestException as e:
            raise ExternalApiError(f"Request failed: {e}", endpoint=endpoint) from e

        if not response.ok:
            logger.error(f"Meta API {method} {endpoint} failed with status {response.status_code}")
            handle_api_error(response, endpoint)

        try:
            return response.json()
        except ValueError as e:
            raise ExternalApiError("Invalid JSON in Meta API response", endpoint=endpoint,
                                   status_code=response.status_code) from e

    # Business and catalogs

    def get_owner_business_id(self, waba_id: str) -> Optional[str]:
        response = self._make_request("GET", f"/{waba_id}", params={"fields": "business"})
        business = response.get("business") or {}
        return business.get("id")

    def exchange_access_token(self, app_id: str, app_secret: str) -> Dict[str, Any]:
        """
        Exchange the bound access token for a new long-lived token.

        Returns:
            Dict with ``access_token`` and ``expires_in`` (seconds, may be absent)

        Raises:
            ExternalApiError: If the platform rejects the exchange or returns no token
        """
        response = self._make_request(
            "GET",
            "/oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": app_id,
                "client_secret": app_secret,
                "fb_exchange_token": self.credentials.access_token,
            },
        )
        if not response.get("access_token"):
            raise ExternalApiError("Token exchange returned no access token",
                                   endpoint="/oauth/access_token")
        expires_in = response.get("expires_in")
        return {
            "access_token": response["access_token"],
            "expires_in": int(expires_in) if expires_in is not None else None,
        }

    def list_catalogs(self, owner_id: str) -> List[Dict[str, Any]]:
        response = self._make_request(
            "GET",
            f"/{owner_id}/owned_product_catalogs",
            params={"fields": "id,name,vertical,product_count"},
        )
        return response.get("data", [])

    def get_catalog(self, catalog_id: str) -> Dict[str, Any]:
        return self._make_request(
            "GET", f"/{catalog_id}", params={"fields": "id,name,vertical,product_count"}
        )

    def create_catalog(self, owner_id: str, name: str, vertical: str = "commerce") -> Dict[str, Any]:
        response = self._make_request(
            "POST",
            f"/{owner_id}/owned_product_catalogs",
            data={"name": name, "vertical": vertical},
        )
        logger.info(f"Created catalog {response.get('id')} '{name}' for owner {owner_id}")
        return response

    def update_catalog(self, catalog_id: str, name: str) -> Dict[str, Any]:
        return self._make_request("POST", f"/{catalog_id}", data={"name": name})

    def delete_catalog(self, catalog_id: str) -> Dict[str, Any]:
        response = self._make_request("DELETE", f"/{catalog_id}")
        logger.info(f"Deleted catalog {catalog_id}")
        return response

    # Products

    def get_products(self, catalog_id: str, limit: int = 100,
                     after: Optional[str] = None) -> Dict[str, Any]:
        params = {"limit": limit}
        if after:
            params["after"] = after
        response = self._make_request("GET", f"/{catalog_id}/products", params=params)
        return {"products": response.get("data", []), "paging": response.get("paging")}

    def get_product(self, catalog_id: str, retailer_id: str) -> Dict[str, Any]:
        product_filter = json.dumps({"retailer_id": {"eq": retailer_id}})
        response = self._make_request(
            "GET", f"/{catalog_id}/products", params={"filter": product_filter}
        )
        data = response.get("data") or []
        if not data:
            raise ExternalNotFoundError(
                f"Product with retailer_id {retailer_id} not found",
                status_code=404,
                endpoint=f"/{catalog_id}/products",
            )
        return data[0]

    def create_product(self, catalog_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self._make_request("POST", f"/{catalog_id}/products", data=payload)
        logger.info(f"Created product {payload.get('retailer_id')} in catalog {catalog_id}")
        return {"id": response.get("id")}

    def update_product(self, catalog_id: str, retailer_id: str,
                       fields: Dict[str, Any]) -> Dict[str, Any]:
        result = self.batch_products(
            catalog_id, [BatchOperation(BatchMethod.UPDATE, retailer_id, fields)]
        )
        logger.info(f"Updated product {retailer_id} in catalog {catalog_id}")
        return result

    def delete_product(self, catalog_id: str, retailer_id: str) -> Dict[str, Any]:
        result = self.batch_products(
            catalog_id, [BatchOperation(BatchMethod.DELETE, retailer_id)]
        )
        logger.info(f"Deleted product {retailer_id} from catalog {catalog_id}")
        return result

    def batch_products(self, catalog_id: str, operations: List[BatchOperation]) -> Dict[str, Any]:
        response = self._make_request(
            "POST",
            f"/{catalog_id}/items_batch",
            data={
                "item_type": PRODUCT_ITEM,
                "requests": [op.to_request() for op in operations],
            },
        )
        handles = response.get("handles") or []
        handle = response.get("handle") or (handles[0] if handles else None)
        logger.info(f"Batch of {len(operations)} operation(s) accepted for catalog {catalog_id}")
        return {"handle": handle}

    # Permissions

    def assign_user(self, catalog_id: str, user_id: str, owner_id: str,
                    tasks: Optional[List[str]] = None) -> Dict[str, Any]:
        return self._make_request(
            "POST",
            f"/{catalog_id}/assigned_users",
            data={
                "user": user_id,
                "business": owner_id,
                "tasks": tasks or DEFAULT_CATALOG_USER_TASKS,
            },
        )

    def remove_user(self, catalog_id: str, user_id: str, owner_id: str) -> Dict[str, Any]:
        return self._make_request(
            "DELETE",
            f"/{catalog_id}/assigned_users",
            params={"user": user_id, "business": owner_id},
        )

    def list_catalog_users(self, catalog_id: str) -> List[Dict[str, Any]]:
        response = self._make_request("GET", f"/{catalog_id}/assigned_users")
        return response.get("data", [])
