"""Per-account Instagram credentials.

Connected accounts live in `instagram_accounts` with the page id and an
AES-256-GCM encrypted access token. Environment variables are the fallback
for single-account deployments.

Security:
- Access tokens are NEVER logged, even encrypted
- ACCESS_TOKEN_KEY must be 32 bytes hex
"""

from __future__ import annotations

import base64
import os
from typing import Any

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from psycopg2.extensions import cursor as PgCursor

from instaflow.domain.models import AccountConfig

_NONCE_SIZE = 12


def _get_encryption_key() -> bytes:
    """Get AES-256 key for access token encryption.

    Raises:
        RuntimeError: If ACCESS_TOKEN_KEY is not configured or invalid.
    """
    key_hex = os.environ.get("ACCESS_TOKEN_KEY")
    if not key_hex:
        raise RuntimeError(
            "ACCESS_TOKEN_KEY not configured. "
            "Generate with: openssl rand -hex 32"
        )
    key = bytes.fromhex(key_hex)
    if len(key) != 32:
        raise RuntimeError(
            "ACCESS_TOKEN_KEY must be 32 bytes hex (64 hex chars). "
            "Generate with: openssl rand -hex 32"
        )
    return key


def encrypt_token(token: str) -> str:
    """Encrypt an access token. Returns base64(nonce + ciphertext)."""
    aesgcm = AESGCM(_get_encryption_key())
    nonce = os.urandom(_NONCE_SIZE)
    ciphertext = aesgcm.encrypt(nonce, token.encode(), None)
    return base64.b64encode(nonce + ciphertext).decode()


def decrypt_token(encrypted: str) -> str:
    """Decrypt a token produced by encrypt_token."""
    aesgcm = AESGCM(_get_encryption_key())
    data = base64.b64decode(encrypted)
    return aesgcm.decrypt(data[:_NONCE_SIZE], data[_NONCE_SIZE:], None).decode()


def load_account(cur: PgCursor, account_id: str) -> dict[str, Any] | None:
    """Load the raw account row (token still encrypted)."""
    cur.execute(
        """
        SELECT id, page_id, access_token_enc, settings
        FROM instagram_accounts
        WHERE id = %s AND is_active
        """,
        (account_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "account_id": row[0],
        "page_id": row[1],
        "access_token_enc": row[2],
        "settings": row[3] or {},
    }


def resolve_account(account_id: str, row: dict[str, Any] | None) -> AccountConfig:
    """Merge a database row with environment fallbacks.

    Priority:
    1. instagram_accounts row (decrypted token)
    2. INSTAGRAM_PAGE_ID / INSTAGRAM_ACCESS_TOKEN env vars
    """
    row = row or {}
    token = None
    if row.get("access_token_enc"):
        token = decrypt_token(row["access_token_enc"])
    return AccountConfig(
        account_id=account_id,
        page_id=row.get("page_id") or os.environ.get("INSTAGRAM_PAGE_ID") or None,
        access_token=token or os.environ.get("INSTAGRAM_ACCESS_TOKEN") or None,
        settings=dict(row.get("settings") or {}),
    )
