"""
FastAPI application for the ticket ledger.

This module builds the HTTP service that fronts the ledger. It sets up:
- Logging from ``config.logging``
- Exception handlers translating ledger and storage errors into JSON bodies
- The ledger services shared by every route handler
- All API routers (see :mod:`ticket_ledger.api.routes.register`)

Route handlers are plain ``def`` functions: the ledger talks to SQLite
synchronously, so FastAPI runs each request in its worker threadpool.

Run with ``ticket-ledger run`` or ``uvicorn ticket_ledger.api.server:app``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ticket_ledger import __version__
from ticket_ledger.api.routes.register import register_routes
from ticket_ledger.api.services import LedgerServices
from ticket_ledger.config import config
from ticket_ledger.db.errors import DatabaseError
from ticket_ledger.ledger import LedgerError, RateLimitedError
from ticket_ledger.logging_config import configure_logging

logger = logging.getLogger(__name__)

# ============================================================================
# ERROR TRANSLATION
# ============================================================================


async def handle_ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
    """Expected outcomes: typed code and status, plus any extra fields."""
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    logger.info(
        "%s %s -> %d %s: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.code,
        exc.detail,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def handle_database_error(request: Request, exc: DatabaseError) -> JSONResponse:
    """Storage failures the ledger could not classify; details stay in the log."""
    logger.error("%s %s failed with storage error: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"error": "storage_error", "detail": "Internal storage error"},
    )


# ============================================================================
# APPLICATION FACTORY
# ============================================================================


def create_app(services: LedgerServices | None = None) -> FastAPI:
    """
    Build a configured FastAPI app.

    Args:
        services: Ledger services for the route handlers. Defaults to the
            production wiring (SQLite rate limiter, webhook notifier).
    """
    configure_logging()

    docs = config.docs_should_be_enabled
    app = FastAPI(
        title="Ticket Ledger",
        version=__version__,
        docs_url="/docs" if docs else None,
        redoc_url="/redoc" if docs else None,
        openapi_url="/openapi.json" if docs else None,
    )
    app.add_exception_handler(LedgerError, handle_ledger_error)
    app.add_exception_handler(DatabaseError, handle_database_error)

    register_routes(app, services or LedgerServices())
    return app


# ============================================================================
# MODULE-LEVEL APP
# ============================================================================

# Imported by uvicorn; constructing it does not touch the database.
app = create_app()
