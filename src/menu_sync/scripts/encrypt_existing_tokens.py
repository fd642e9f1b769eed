"""
Encrypt WhatsApp tokens that are still stored as plaintext.

Run this once after enabling the credential vault, then turn off
LEGACY_PLAINTEXT_TOKENS.

Usage:
    python -m menu_sync.scripts.encrypt_existing_tokens [--dry-run] [--subdomain SUBDOMAIN]
    python -m menu_sync.scripts.encrypt_existing_tokens --generate-key
"""

import argparse
import sys
from typing import Dict, Optional

from sqlalchemy.orm import Session

from menu_sync.database.connection import get_db_context
from menu_sync.database.models import Business
from menu_sync.security.encryption import CredentialVault, get_vault
from menu_sync.services.tenant_resolver import looks_like_ciphertext
from menu_sync.utils.exceptions import ConfigurationError
from menu_sync.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

TOKEN_COLUMNS = ("whatsapp_access_token", "whatsapp_refresh_token")


def encrypt_existing_tokens(db: Session, vault: CredentialVault, dry_run: bool = False,
                            subdomain: Optional[str] = None) -> Dict[str, int]:
    """
    Encrypt plaintext token columns in place.

    Values that already decrypt are left alone. Values shaped like ciphertext
    that do not decrypt are reported and left alone, since they are most
    likely encrypted under a different key.

    Returns:
        Counters: encrypted, already_encrypted, undecryptable, failed
    """
    stats = {"encrypted": 0, "already_encrypted": 0, "undecryptable": 0, "failed": 0}

    query = db.query(Business)
    if subdomain:
        query = query.filter(Business.subdomain == subdomain)

    for business in query.order_by(Business.id).all():
        changed = False
        for column in TOKEN_COLUMNS:
            value = getattr(business, column)
            if not value:
                continue

            if vault.is_encrypted(value):
                stats["already_encrypted"] += 1
                continue

            if looks_like_ciphertext(value):
                logger.warning(f"{business.subdomain}.{column} looks encrypted but does not decrypt with this key")
                stats["undecryptable"] += 1
                continue

            if dry_run:
                logger.info(f"[dry-run] would encrypt {business.subdomain}.{column}")
                stats["encrypted"] += 1
                continue

            setattr(business, column, vault.encrypt(value))
            changed = True
            stats["encrypted"] += 1

        if not changed:
            continue

        try:
            db.commit()
            logger.info(f"Encrypted tokens of {business.subdomain}")
        except Exception as e:
            logger.error(f"Failed to store encrypted tokens of {business.subdomain}: {e}")
            db.rollback()
            stats["failed"] += 1

    return stats


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Encrypt plaintext WhatsApp tokens")
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    parser.add_argument("--subdomain", help="Only migrate this business")
    parser.add_argument("--generate-key", action="store_true", help="Print a new ENCRYPTION_KEY and exit")
    args = parser.parse_args(argv)

    if args.generate_key:
        print(CredentialVault.generate_key())
        return 0

    setup_logging()

    try:
        vault = get_vault()
    except ConfigurationError as e:
        logger.error(f"Credential vault is not configured: {e}")
        return 1

    with get_db_context() as db:
        stats = encrypt_existing_tokens(db, vault, dry_run=args.dry_run, subdomain=args.subdomain)

    logger.info(
        f"Token migration finished: {stats['encrypted']} encrypted, "
        f"{stats['already_encrypted']} already encrypted, "
        f"{stats['undecryptable']} undecryptable, {stats['failed']} failed"
    )
    return 0 if stats["failed"] == 0 and stats["undecryptable"] == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
