"""Tests for version reporting.

``ticket_ledger.__version__`` comes from the installed package metadata; the
FastAPI app and the root endpoint must report the same string.
"""

from __future__ import annotations

import re
from typing import Any

import pytest

import ticket_ledger

_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+(-[A-Za-z0-9]+(\.[A-Za-z0-9]+)*)?$")


@pytest.mark.unit
class TestVersionAttribute:
    def test_version_is_a_string(self) -> None:
        assert isinstance(ticket_ledger.__version__, str)
        assert ticket_ledger.__version__

    def test_version_matches_semver(self) -> None:
        assert _SEMVER_RE.match(ticket_ledger.__version__)


@pytest.mark.unit
class TestVersionInApp:
    def test_openapi_version_matches_package(self) -> None:
        from ticket_ledger.api.server import app

        assert app.version == ticket_ledger.__version__

    def test_root_endpoint_version_matches_package(self) -> None:
        """The root endpoint is outside the proxy key check, so no header is sent."""
        import asyncio

        from httpx import ASGITransport, AsyncClient

        from ticket_ledger.api.server import app

        async def _fetch_root() -> dict[str, Any]:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                resp = await client.get("/")
                resp.raise_for_status()
                result: dict[str, Any] = resp.json()
                return result

        data = asyncio.run(_fetch_root())
        assert data["version"] == ticket_ledger.__version__
