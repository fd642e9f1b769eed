"""
Security module: credential vault and webhook signature verification.
"""

from .encryption import (
    CredentialVault,
    get_vault,
    encrypt_credential,
    decrypt_credential,
    is_encrypted,
)
from .webhook_signature import verify_signature, verify_subscription

__all__ = [
    "CredentialVault",
    "get_vault",
    "encrypt_credential",
    "decrypt_credential",
    "is_encrypted",
    "verify_signature",
    "verify_subscription",
]
