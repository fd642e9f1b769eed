"""
Factory for creating catalog clients from a resolved tenant.
"""

from menu_sync.platforms.base import CatalogClient, MetaCredentials
from menu_sync.platforms.meta_client import MetaCatalogClient
from menu_sync.utils.exceptions import ConfigurationError
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)


def create_catalog_client(tenant) -> CatalogClient:
    """
    Create a catalog client for a resolved tenant.

    Args:
        tenant: TenantContext carrying the decrypted access token

    Returns:
        CatalogClient bound to the tenant's credentials

    Raises:
        ConfigurationError: If the tenant has no usable access token
    """
    if not tenant.access_token:
        raise ConfigurationError(
            f"WhatsApp access token not configured for {tenant.subdomain}",
            {"business_id": tenant.business.business_id},
        )

    if tenant.token_degraded:
        logger.warning(f"Creating catalog client for {tenant.subdomain} with a legacy plaintext token")

    credentials = MetaCredentials(
        access_token=tenant.access_token,
        waba_id=tenant.business.waba_id,
    )
    return MetaCatalogClient(credentials)
