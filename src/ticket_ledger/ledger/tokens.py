"""Random secrets minted by the ledger.

Scan tokens are bearer credentials printed on tickets; claim tokens are
emailed to transfer recipients and only their SHA-256 hash is stored.
"""

from __future__ import annotations

import hashlib
import secrets

#: Bytes of entropy in a scan token (hex-encoded, so 32 characters).
TICKET_TOKEN_BYTES = 16

#: Bytes of entropy in a transfer claim token (hex-encoded, so 48 characters).
CLAIM_TOKEN_BYTES = 24


def generate_ticket_token() -> str:
    return secrets.token_hex(TICKET_TOKEN_BYTES)


def generate_claim_token() -> str:
    return secrets.token_hex(CLAIM_TOKEN_BYTES)


def hash_claim_token(raw_token: str) -> str:
    """Return the SHA-256 hex digest stored in place of a raw claim token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
