"""
Partial-field updates on the Business credential record.

Each helper issues a single UPDATE against the touched columns so that
concurrent writers never rewrite the whole row.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from menu_sync.database.models import Business
from menu_sync.security.encryption import CredentialVault, get_vault
from menu_sync.utils.exceptions import DatabaseError
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)


def _execute_update(db: Session, business: Business, values: dict, operation: str, where=None) -> int:
    stmt = update(Business).where(Business.id == business.id)
    if where is not None:
        stmt = stmt.where(where)
    stmt = stmt.values(**values)

    try:
        result = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {operation} for business {business.business_id}: {e}")
        raise DatabaseError(f"Failed to {operation}", operation=operation, table="businesses") from e

    db.refresh(business)
    return result.rowcount


def set_catalog_owner_id(db: Session, business: Business, owner_id: str) -> str:
    """
    Compare-and-set the cached catalog owner id.

    The write only lands while the column is still empty. When another writer
    won the race, their value is returned instead.

    Returns:
        The owner id stored on the record after the update
    """
    updated = _execute_update(
        db,
        business,
        {"catalog_owner_id": owner_id},
        "cache catalog owner id",
        where=Business.catalog_owner_id.is_(None),
    )
    if not updated:
        logger.info(
            f"Catalog owner id for {business.business_id} was set concurrently, "
            f"keeping {business.catalog_owner_id}"
        )
    return business.catalog_owner_id


def clear_catalog_owner_id(db: Session, business: Business) -> None:
    """Forget the cached owner id so the next lookup hits the platform again."""
    _execute_update(db, business, {"catalog_owner_id": None}, "clear catalog owner id")


def _locked_column(db: Session, business: Business, column, operation: str):
    """
    Re-read one column of the business row under a row lock.

    The value comes from the database rather than the session's identity
    map, so merges start from what other writers have committed.
    """
    stmt = select(column).where(Business.id == business.id).with_for_update()
    try:
        return db.execute(stmt).scalar_one()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {operation} for business {business.business_id}: {e}")
        raise DatabaseError(f"Failed to {operation}", operation=operation, table="businesses") from e


def add_catalog_ids(db: Session, business: Business, catalog_ids: Iterable[str]) -> List[str]:
    """Append catalog ids that are not yet linked, keeping the primary first."""
    current = list(_locked_column(db, business, Business.catalog_ids, "link catalog ids") or [])
    merged = current + [cid for cid in catalog_ids if cid not in current]
    if merged != current:
        _execute_update(db, business, {"catalog_ids": merged}, "link catalog ids")
    else:
        db.commit()
        db.refresh(business)
    return list(business.catalog_ids or [])


def remove_catalog_id(db: Session, business: Business, catalog_id: str) -> List[str]:
    """Unlink a catalog id from the business, along with category mappings to it."""
    current = _locked_column(db, business, Business.catalog_ids, "unlink catalog id") or []
    mapping = _locked_column(db, business, Business.catalog_mapping, "unlink catalog id") or {}
    remaining = [cid for cid in current if cid != catalog_id]
    kept = {k: v for k, v in mapping.items() if v != catalog_id}
    _execute_update(db, business, {"catalog_ids": remaining, "catalog_mapping": kept}, "unlink catalog id")
    return remaining


def set_catalog_mapping(db: Session, business: Business, mapping: Dict[str, str]) -> Dict[str, str]:
    """Merge category id to catalog id entries into the stored mapping."""
    merged = dict(_locked_column(db, business, Business.catalog_mapping, "save catalog mapping") or {})
    merged.update({str(k): v for k, v in mapping.items()})
    _execute_update(db, business, {"catalog_mapping": merged}, "save catalog mapping")
    return merged


def mark_catalog_synced(db: Session, business: Business, synced_at: Optional[datetime] = None) -> None:
    """Record the time of the latest accepted catalog sync."""
    _execute_update(
        db,
        business,
        {"last_catalog_sync_at": synced_at or datetime.now(timezone.utc)},
        "record sync time",
    )


def store_tokens(db: Session, business: Business, access_token: Optional[str],
                 refresh_token: Optional[str] = None,
                 expires_at: Optional[datetime] = None,
                 vault: Optional[CredentialVault] = None) -> None:
    """
    Persist platform tokens through the credential vault.

    Values that already decrypt with the vault are stored unchanged, so a
    re-save never double-encrypts.
    """
    vault = vault or get_vault()
    values = {}

    if access_token is not None:
        values["whatsapp_access_token"] = vault.encrypt_if_needed(access_token)
    if refresh_token is not None:
        values["whatsapp_refresh_token"] = vault.encrypt_if_needed(refresh_token)
    if expires_at is not None:
        values["token_expires_at"] = expires_at

    if values:
        _execute_update(db, business, values, "store tokens")
        logger.info(f"Stored encrypted credentials for business {business.business_id}")


def set_token_expiry(db: Session, business: Business, expires_at: Optional[datetime]) -> None:
    """Record when the stored access token expires; None means no known expiry."""
    _execute_update(db, business, {"token_expires_at": expires_at}, "record token expiry")
