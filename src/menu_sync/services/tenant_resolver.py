"""
Tenant resolution for catalog operations.

Maps a (subdomain, location id) key to its Business record, decrypts the
stored access token through the credential vault and lazily caches the
catalog owner id looked up from the platform.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import String, cast
from sqlalchemy.orm import Session

from menu_sync.database.models import Business, BusinessLocation
from menu_sync.database.operations import set_catalog_owner_id, set_token_expiry, store_tokens
from menu_sync.platforms.base import CatalogClient
from menu_sync.platforms.factory import create_catalog_client
from menu_sync.security.encryption import CredentialVault, get_vault
from menu_sync.utils.config import get_config
from menu_sync.utils.exceptions import (
    ConfigurationError,
    DecryptionError,
    ExternalApiError,
    NotFoundError,
)
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_BASE64_PADDED_RE = re.compile(r"^[A-Za-z0-9+/_-]+={0,2}$")
MIN_CIPHERTEXT_HEX = 64
MIN_CIPHERTEXT_BASE64 = 44


@dataclass
class DecryptedToken:
    """Result of reading a token column; ``degraded`` marks legacy plaintext."""
    value: Optional[str]
    degraded: bool = False


@dataclass
class TenantContext:
    """A resolved tenant with its decrypted credentials."""
    business: Business
    location_id: Optional[str]
    access_token: Optional[str]
    token_degraded: bool = False

    @property
    def subdomain(self) -> str:
        return self.business.subdomain


def looks_like_ciphertext(value: str) -> bool:
    """
    Whether a stored value has the shape of vault output.

    Long hex strings and base64 strings carrying padding or symbols qualify.
    Platform tokens are long alphanumerics without either trait.
    """
    if _HEX_RE.match(value):
        return len(value) >= MIN_CIPHERTEXT_HEX
    has_base64_symbols = any(c in "+/=" for c in value)
    return (
        has_base64_symbols
        and len(value) >= MIN_CIPHERTEXT_BASE64
        and bool(_BASE64_PADDED_RE.match(value))
    )


def decrypt_token(raw: Optional[str], vault: CredentialVault,
                  legacy_mode: bool = False, label: str = "access token") -> DecryptedToken:
    """
    Decrypt a stored token column.

    Args:
        raw: Column value as stored
        vault: Credential vault
        legacy_mode: Allow plaintext values left over from before encryption
        label: Token name for log messages

    Returns:
        DecryptedToken, flagged degraded when the legacy fallback was used

    Raises:
        DecryptionError: if the value is ciphertext-shaped but fails to decrypt,
            or is plaintext while legacy mode is off
    """
    if not raw:
        return DecryptedToken(value=None)

    try:
        return DecryptedToken(value=vault.decrypt(raw))
    except DecryptionError as e:
        if looks_like_ciphertext(raw):
            logger.error(f"Stored {label} looks encrypted but failed to decrypt ({e.reason})")
            raise

        if not legacy_mode:
            logger.error(f"Stored {label} is not encrypted and legacy plaintext mode is off")
            raise DecryptionError(
                f"Stored {label} is not valid ciphertext", reason="plaintext_rejected"
            ) from e

        logger.warning(f"Using legacy plaintext {label}; re-save it to encrypt")
        return DecryptedToken(value=raw, degraded=True)


def primary_catalog_id(business: Business) -> Optional[str]:
    """First linked catalog id, if any."""
    catalog_ids = business.catalog_ids or []
    return catalog_ids[0] if catalog_ids else None


def catalog_id_for_category(business: Business, category_id) -> Optional[str]:
    """Catalog id mapped to a category, if per-category catalogs are configured."""
    if category_id is None:
        return None
    mapping = business.catalog_mapping or {}
    return mapping.get(str(category_id))


def token_expired(business: Business, now: Optional[datetime] = None) -> bool:
    """Whether the stored access token is past its recorded expiry."""
    expires_at = business.token_expires_at
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) >= expires_at


def display_name(business: Business, location: Optional[BusinessLocation] = None) -> str:
    """Business name, suffixed with the location name when one is given."""
    if location is not None and location.name:
        return f"{business.name} - {location.name}"
    return business.name


class TenantResolver:
    """Resolves tenants and their credentials for one database session."""

    def __init__(self, db: Session, vault: Optional[CredentialVault] = None,
                 legacy_mode: Optional[bool] = None,
                 client_factory: Callable[[TenantContext], CatalogClient] = create_catalog_client):
        """
        Initialize resolver.

        Args:
            db: Database session
            vault: Credential vault (defaults to the global one)
            legacy_mode: Accept legacy plaintext tokens (defaults to LEGACY_PLAINTEXT_TOKENS)
            client_factory: Builds the catalog client used for owner lookups and token refresh
        """
        self.db = db
        self._vault = vault
        self.client_factory = client_factory
        self.legacy_mode = (
            get_config().security.legacy_plaintext_tokens if legacy_mode is None else legacy_mode
        )

    @property
    def vault(self) -> CredentialVault:
        if self._vault is None:
            self._vault = get_vault()
        return self._vault

    def get_business(self, subdomain: str, location_id: Optional[str] = None) -> Business:
        """
        Find the Business for a tenant key.

        A location id is resolved through BusinessLocation first; otherwise
        the subdomain is matched directly.

        Raises:
            NotFoundError: if no business matches
        """
        if location_id:
            location = (
                self.db.query(BusinessLocation)
                .filter(
                    BusinessLocation.subdomain == subdomain,
                    BusinessLocation.location_id == str(location_id),
                )
                .first()
            )
            if location is None:
                raise NotFoundError(
                    f"Location {location_id} not found for {subdomain}",
                    resource="business_location",
                    identifier=f"{subdomain}/{location_id}",
                )
            business = self.db.query(Business).filter(
                Business.business_id == location.business_id
            ).first()
        else:
            business = self.db.query(Business).filter(Business.subdomain == subdomain).first()

        if business is None:
            raise NotFoundError(
                f"Business not found for {subdomain}",
                resource="business",
                identifier=subdomain,
            )
        return business

    def resolve(self, subdomain: str, location_id: Optional[str] = None) -> TenantContext:
        """
        Resolve a tenant and decrypt its access token.

        Raises:
            NotFoundError: if the tenant does not exist
            DecryptionError: if the stored token cannot be read
        """
        business = self.get_business(subdomain, location_id)
        return self.context_for(business, location_id)

    def context_for(self, business: Business, location_id: Optional[str] = None) -> TenantContext:
        """
        Build a TenantContext for an already loaded Business.

        An access token past its recorded expiry is exchanged for a new one
        before the context is returned.

        Raises:
            DecryptionError: if the stored token cannot be read
            ConfigurationError: if an expired token cannot be refreshed
        """
        token = decrypt_token(business.whatsapp_access_token, self.vault, self.legacy_mode)
        if token.degraded:
            logger.warning(
                f"Business {business.business_id} is running on a legacy plaintext access token"
            )
        tenant = TenantContext(
            business=business,
            location_id=location_id,
            access_token=token.value,
            token_degraded=token.degraded,
        )
        if tenant.access_token and token_expired(business):
            tenant.access_token = self.refresh_access_token(tenant)
            tenant.token_degraded = False
        return tenant

    def refresh_access_token(self, tenant: TenantContext) -> str:
        """
        Exchange an expired access token and persist the new one encrypted.

        Returns:
            The new plaintext access token

        Raises:
            ConfigurationError: if the app credentials are missing or the
                platform refuses the exchange
        """
        business = tenant.business
        security = get_config().security
        if not security.app_id or not security.app_secret:
            raise ConfigurationError(
                f"Access token for {business.subdomain} expired and app credentials "
                f"are not configured for a refresh",
                {"business_id": business.business_id},
            )

        logger.info(f"Access token for business {business.business_id} expired, refreshing")
        try:
            refreshed = self.client_factory(tenant).exchange_access_token(
                security.app_id, security.app_secret
            )
        except ExternalApiError as e:
            logger.error(f"Token refresh failed for business {business.business_id}: {e}")
            raise ConfigurationError(
                f"Access token for {business.subdomain} expired and could not be refreshed",
                {"business_id": business.business_id, "status_code": e.status_code},
            ) from e

        expires_at = None
        if refreshed.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=refreshed["expires_in"])
        store_tokens(self.db, business, refreshed["access_token"], vault=self.vault)
        set_token_expiry(self.db, business, expires_at)
        return refreshed["access_token"]

    def get_refresh_token(self, business: Business) -> DecryptedToken:
        """Decrypt the stored refresh token."""
        return decrypt_token(
            business.whatsapp_refresh_token, self.vault, self.legacy_mode, label="refresh token"
        )

    def find_by_account(self, phone_number_id: Optional[str] = None,
                        waba_id: Optional[str] = None) -> Optional[Business]:
        """
        Attribute a platform account to a business.

        Phone number ids are tried before the WhatsApp Business account id.
        The JSON id list is narrowed in SQL by its serialized text, then
        confirmed element-wise.
        """
        if phone_number_id:
            phone_number_id = str(phone_number_id)
            candidates = (
                self.db.query(Business)
                .filter(
                    cast(Business.phone_number_ids, String).contains(
                        json.dumps(phone_number_id), autoescape=True
                    )
                )
                .all()
            )
            for business in candidates:
                if phone_number_id in (business.phone_number_ids or []):
                    return business

        if waba_id:
            return self.db.query(Business).filter(Business.waba_id == waba_id).first()

        return None

    def ensure_catalog_owner_id(self, tenant: TenantContext, client=None) -> str:
        """
        Return the catalog owner id, looking it up on first use.

        Args:
            tenant: Resolved tenant
            client: Catalog client to use for the lookup (created from tenant if omitted)

        Returns:
            The platform business id owning the tenant's catalogs

        Raises:
            ConfigurationError: if the WABA id or token is missing, or the
                platform reports no owner
        """
        business = tenant.business
        if business.catalog_owner_id:
            return business.catalog_owner_id

        if not business.waba_id:
            raise ConfigurationError(
                f"WhatsApp Business account id not configured for {business.subdomain}",
                {"business_id": business.business_id},
            )
        if not tenant.access_token:
            raise ConfigurationError(
                f"WhatsApp access token not configured for {business.subdomain}",
                {"business_id": business.business_id},
            )

        if client is None:
            client = self.client_factory(tenant)

        logger.info(f"Looking up catalog owner for WABA {business.waba_id}")
        owner_id = client.get_owner_business_id(business.waba_id)
        if not owner_id:
            raise ConfigurationError(
                f"No owning business found for WABA {business.waba_id}",
                {"business_id": business.business_id},
            )

        return set_catalog_owner_id(self.db, business, owner_id)
