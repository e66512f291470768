"""
Route registration entry point for the FastAPI application.

Every router except health sits behind the proxy-key dependency.
"""

from fastapi import Depends, FastAPI

from ticket_ledger.api.auth import require_proxy_key
from ticket_ledger.api.routes import admin, fulfillments, health, scan, transfers
from ticket_ledger.api.services import LedgerServices


def register_routes(app: FastAPI, services: LedgerServices) -> None:
    """Register all API routes with the FastAPI app."""
    protected = [Depends(require_proxy_key)]
    app.include_router(health.router)
    app.include_router(fulfillments.router(services), dependencies=protected)
    app.include_router(scan.router(services), dependencies=protected)
    app.include_router(transfers.router(services), dependencies=protected)
    app.include_router(admin.router(services), dependencies=protected)
