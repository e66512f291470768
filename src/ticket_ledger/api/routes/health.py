"""Health and root endpoints.

Provides the root ``/`` endpoint (API identity and version) and the
``/health`` endpoint (liveness check that also touches the database).
Neither endpoint requires the proxy key, so load balancers can poll them.
"""

import logging
import sqlite3

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ticket_ledger import __version__
from ticket_ledger.db.connection import connection_scope

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
def root():
    """Root endpoint showing API identity and current version."""
    return {"message": "Ticket Ledger API", "version": __version__}


@router.get("/health")
def health_check():
    """Liveness check; answers 503 ``degraded`` when SQLite is unreachable."""
    try:
        with connection_scope() as conn:
            conn.execute("SELECT 1").fetchone()
    except sqlite3.Error as exc:
        logger.warning("Health check failed: %s", exc)
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "error"})
    return {"status": "ok", "database": "ok", "version": __version__}
