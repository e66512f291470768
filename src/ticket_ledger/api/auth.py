"""
Shared-secret check for calls coming through the trusted proxy.

The ledger is never exposed directly: the web app, the order service and the
door scanners reach it through a proxy that injects ``X-Proxy-Key``. When
``config.security.proxy_key`` is empty the check is disabled, which is the
development default.
"""

import logging
import secrets

from fastapi import Header, HTTPException

from ticket_ledger.config import config

logger = logging.getLogger(__name__)

PROXY_KEY_HEADER = "X-Proxy-Key"


def require_proxy_key(x_proxy_key: str | None = Header(default=None)) -> None:
    """
    FastAPI dependency rejecting requests without the configured proxy key.

    Raises:
        HTTPException: 403 when a key is configured and the header is missing
            or does not match.
    """
    expected = config.security.proxy_key
    if not expected:
        return
    if x_proxy_key is None or not secrets.compare_digest(x_proxy_key, expected):
        logger.warning("Rejected request with missing or invalid %s", PROXY_KEY_HEADER)
        raise HTTPException(status_code=403, detail="Forbidden")
