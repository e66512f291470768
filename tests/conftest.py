"""
Shared pytest fixtures for the ticket ledger test suite.

This module provides fixtures that are automatically available to all test files:
- Temporary test databases (through ``use_test_database``)
- A controllable clock so expiry and ordering are deterministic
- Stub collaborators (rate limiter, notifier) for transfer tests
- Ledger services and a FastAPI TestClient wired to them
- Event factories

Fixtures are function scoped: each test gets its own SQLite file.
"""

import shutil
import tempfile
from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ticket_ledger.clock import to_timestamp
from ticket_ledger.config import config, use_test_database
from ticket_ledger.db import events_repo, schema, users_repo
from ticket_ledger.db.types import EventRecord
from ticket_ledger.ledger import FulfillmentGuard, IssueRequest, TicketLedger, TransferWorkflow
from tests.doubles import START, FrozenClock, RecordingNotifier, StubRateLimiter

# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    """
    Create a temporary database file for testing.

    Uses the config system's use_test_database context manager so every
    repository call in the test hits this file.

    Yields:
        Path to temporary database file
    """
    temp_dir = tempfile.mkdtemp()
    temp_db = Path(temp_dir) / "test_ledger.db"

    with use_test_database(temp_db):
        yield temp_db

    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope="function")
def test_db(temp_db_path: Path) -> Generator[None, None, None]:
    """Initialize a test database with schema but no data."""
    schema.init_database()
    yield


@pytest.fixture(scope="function")
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture(scope="function")
def make_event(test_db, clock) -> Callable[..., EventRecord]:
    """
    Factory creating events.

    Example:
        def test_x(make_event):
            event = make_event("E1", remaining_quantity=100)
    """

    def _make(
        event_id: str = "E1",
        *,
        remaining_quantity: int = 100,
        name: str | None = None,
        starts_at: datetime | None = None,
    ) -> EventRecord:
        return events_repo.create_event(
            name or f"Event {event_id}",
            remaining_quantity=remaining_quantity,
            created_at=to_timestamp(clock()),
            starts_at=to_timestamp(starts_at) if starts_at else None,
            event_id=event_id,
        )

    return _make


@pytest.fixture(scope="function")
def event(make_event) -> EventRecord:
    """Event ``E1`` with 100 admissions and a start a week away."""
    return make_event("E1", remaining_quantity=100, starts_at=START + timedelta(days=7))


@pytest.fixture(scope="function")
def directory(test_db, clock) -> dict[str, str]:
    """Recipient directory with two users; returns username -> user id."""
    users_repo.upsert_user(
        "user_b",
        created_at=to_timestamp(clock()),
        username="bee",
        email="b@x.com",
        display_name="Bee",
    )
    users_repo.upsert_user(
        "user_c",
        created_at=to_timestamp(clock()),
        username="cee",
        email="c@x.com",
        display_name="Cee",
    )
    return {"bee": "user_b", "cee": "user_c"}


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def ledger(test_db, clock) -> TicketLedger:
    return TicketLedger(clock=clock)


@pytest.fixture(scope="function")
def guard(ledger, clock) -> FulfillmentGuard:
    return FulfillmentGuard(ledger, clock=clock)


@pytest.fixture(scope="function")
def rate_limiter() -> StubRateLimiter:
    return StubRateLimiter()


@pytest.fixture(scope="function")
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(scope="function")
def transfers(test_db, clock, rate_limiter, notifier) -> TransferWorkflow:
    return TransferWorkflow(rate_limiter=rate_limiter, notifier=notifier, clock=clock)


@pytest.fixture(scope="function")
def issue(guard) -> Callable[..., str]:
    """Settle a one-item order and return the new ticket id."""
    counter = {"n": 0}

    def _issue(owner_id: str = "user_a", quantity: int = 2, event_id: str = "E1") -> str:
        counter["n"] += 1
        result = guard.settle(
            f"pi_fixture_{counter['n']}", [IssueRequest(event_id, owner_id, quantity)]
        )
        return result.fulfillment.created_ticket_refs[0]["ticket_id"]

    return _issue


# ============================================================================
# FASTAPI TEST CLIENT FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def test_client(ledger, guard, transfers) -> Generator[TestClient, None, None]:
    """
    Create a FastAPI TestClient for API endpoint testing.

    The app shares the fixture services, so tests can arrange state through
    the ledger and observe it over HTTP. The proxy key is cleared for the
    duration of the test.

    Example:
        def test_health(test_client):
            assert test_client.get("/health").status_code == 200
    """
    from ticket_ledger.api.server import create_app
    from ticket_ledger.api.services import LedgerServices

    original_key = config.security.proxy_key
    config.security.proxy_key = ""
    app = create_app(LedgerServices(ledger=ledger, guard=guard, transfers=transfers))
    try:
        yield TestClient(app)
    finally:
        config.security.proxy_key = original_key
