"""
Tests for issuance and the fulfillment idempotency barrier.

Tests cover:
- Settling an order decrements inventory and creates tokened tickets
- Replaying a settled key changes nothing
- Per-item failures are recorded without undoing successful items
- Issued tickets stay listed on the row when settlement stops early
- Concurrent settles of one key issue exactly once
- Inventory clamps at zero instead of refusing issuance
"""

import sqlite3
import threading
from unittest.mock import patch

import pytest

from ticket_ledger.db import (
    events_repo,
    fulfillments_repo,
    summaries_repo,
    tickets_repo,
    tokens_repo,
)
from ticket_ledger.db.errors import DatabaseOperationContext, DatabaseWriteError
from ticket_ledger.ledger import (
    FulfillmentGuard,
    InvalidRequestError,
    IssueRequest,
    NotFoundError,
)
from ticket_ledger.ledger.fulfillment import STATUS_COMPLETED, STATUS_FAILED, STATUS_PROCESSING

# ============================================================================
# SETTLEMENT
# ============================================================================


@pytest.mark.unit
def test_settle_issues_ticket_and_decrements_inventory(guard, event):
    result = guard.settle("pi_1", [IssueRequest("E1", "user_a", 2)])

    assert result.replayed is False
    assert result.fulfillment.status == STATUS_COMPLETED
    assert result.fulfillment.errors is None
    [ref] = result.fulfillment.created_ticket_refs
    assert ref["quantity"] == 2

    ticket = tickets_repo.get_ticket(ref["ticket_id"])
    assert (ticket.quantity, ticket.used_count, ticket.active) == (2, 0, True)
    assert ticket.order_ref == "pi_1"
    assert events_repo.get_event("E1").remaining_quantity == 98

    entry = tokens_repo.lookup_token(ticket.token)
    assert (entry.ticket_id, entry.event_id) == (ticket.id, "E1")
    assert summaries_repo.get_summary("E1", "user_a").total_tickets == 2


@pytest.mark.unit
def test_settle_replay_returns_stored_result_without_side_effects(guard, event):
    first = guard.settle("pi_1", [IssueRequest("E1", "user_a", 2)])
    second = guard.settle("pi_1", [IssueRequest("E1", "user_a", 2)])

    assert second.replayed is True
    assert second.fulfillment.created_ticket_refs == first.fulfillment.created_ticket_refs
    assert events_repo.get_event("E1").remaining_quantity == 98
    assert len(tickets_repo.list_owner_tickets("E1", "user_a")) == 1


@pytest.mark.unit
def test_settle_replay_ignores_different_payload(guard, event):
    guard.settle("pi_1", [IssueRequest("E1", "user_a", 2)])
    replay = guard.settle("pi_1", [IssueRequest("E1", "user_a", 5)])

    assert replay.replayed is True
    assert replay.fulfillment.created_ticket_refs[0]["quantity"] == 2
    assert events_repo.get_event("E1").remaining_quantity == 98


@pytest.mark.unit
def test_settle_records_partial_failure(guard, event):
    result = guard.settle(
        "pi_2",
        [
            IssueRequest("E1", "user_a", 1),
            IssueRequest("missing", "user_a", 1),
            IssueRequest("E1", "user_b", 0),
            IssueRequest("E1", "user_b", 3),
        ],
    )

    record = result.fulfillment
    assert record.status == STATUS_COMPLETED
    assert result.partial_success is True
    assert [ref["index"] for ref in record.created_ticket_refs] == [0, 3]
    assert [(err["index"], err["code"]) for err in record.errors] == [
        (1, "not_found"),
        (2, "invalid_request"),
    ]
    assert record.errors[0]["event_id"] == "missing"
    assert events_repo.get_event("E1").remaining_quantity == 96


@pytest.mark.unit
def test_settle_all_items_failing_is_failed(guard, event):
    result = guard.settle("pi_3", [IssueRequest("missing", "user_a", 1)])

    assert result.fulfillment.status == STATUS_FAILED
    assert result.fulfillment.created_ticket_refs == []
    assert result.partial_success is False


@pytest.mark.unit
def test_settle_empty_order_completes(guard, event):
    result = guard.settle("pi_empty", [])
    assert result.fulfillment.status == STATUS_COMPLETED
    assert result.fulfillment.completed_at is not None


@pytest.mark.unit
def test_settle_records_storage_failure_per_item(guard, ledger, event):
    failure = DatabaseWriteError(context=DatabaseOperationContext(operation="ledger.issue"))
    with patch.object(ledger, "issue_in", side_effect=failure):
        result = guard.settle("pi_db", [IssueRequest("E1", "user_a", 1)])

    assert result.fulfillment.status == STATUS_FAILED
    assert result.fulfillment.errors[0]["code"] == "storage_error"


@pytest.mark.unit
def test_settle_storage_failure_keeps_stored_error(guard, ledger, event):
    failure = DatabaseWriteError(context=DatabaseOperationContext(operation="ledger.issue"))
    with patch.object(ledger, "issue_in", side_effect=failure):
        guard.settle("pi_db", [IssueRequest("E1", "user_a", 1)])

    stored = fulfillments_repo.get_fulfillment("pi_db")
    assert stored.created_ticket_refs == []
    assert [error["index"] for error in stored.errors] == [0]


@pytest.mark.unit
def test_settle_failing_to_finish_still_lists_issued_tickets(guard, event):
    with patch.object(
        fulfillments_repo,
        "finish_fulfillment",
        side_effect=sqlite3.OperationalError("disk I/O error"),
    ):
        with pytest.raises(DatabaseWriteError):
            guard.settle("pi_crash", [IssueRequest("E1", "user_a", 2)])

    [ticket] = tickets_repo.list_owner_tickets("E1", "user_a")
    stored = fulfillments_repo.get_fulfillment("pi_crash")
    assert stored.status == STATUS_PROCESSING
    assert [ref["ticket_id"] for ref in stored.created_ticket_refs] == [ticket.id]

    replay = guard.settle("pi_crash", [IssueRequest("E1", "user_a", 2)])
    assert replay.replayed is True
    assert replay.fulfillment.created_ticket_refs == stored.created_ticket_refs
    assert len(tickets_repo.list_owner_tickets("E1", "user_a")) == 1


@pytest.mark.unit
def test_settle_requires_key(guard, event):
    with pytest.raises(InvalidRequestError):
        guard.settle("", [IssueRequest("E1", "user_a", 1)])


@pytest.mark.unit
def test_get_returns_stored_fulfillment(guard, event):
    guard.settle("pi_1", [IssueRequest("E1", "user_a", 2)])
    assert guard.get("pi_1").status == STATUS_COMPLETED


@pytest.mark.unit
def test_get_unknown_key_is_not_found(guard, test_db):
    with pytest.raises(NotFoundError):
        guard.get("pi_unknown")


@pytest.mark.unit
def test_default_guard_builds_its_own_ledger(event):
    result = FulfillmentGuard().settle("pi_default", [IssueRequest("E1", "user_a", 1)])
    assert len(result.fulfillment.created_ticket_refs) == 1


# ============================================================================
# CONCURRENCY
# ============================================================================


@pytest.mark.slow
def test_concurrent_settles_of_one_key_issue_once(guard, event):
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        result = guard.settle("pi_race", [IssueRequest("E1", "user_a", 2)])
        with lock:
            results.append(result)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert len(results) == 8
    assert [result.replayed for result in results].count(False) == 1
    assert events_repo.get_event("E1").remaining_quantity == 98
    assert len(tickets_repo.list_owner_tickets("E1", "user_a")) == 1
    assert summaries_repo.get_summary("E1", "user_a").total_tickets == 2


# ============================================================================
# ISSUANCE
# ============================================================================


@pytest.mark.unit
def test_issue_oversell_clamps_inventory_and_warns(ledger, make_event, caplog):
    make_event("E1", remaining_quantity=1)

    with caplog.at_level("WARNING", logger="ticket_ledger.ledger.tickets"):
        ticket = ledger.issue("E1", "user_a", 3)

    assert ticket.quantity == 3
    assert events_repo.get_event("E1").remaining_quantity == 0
    assert "only 1 remaining" in caplog.text


@pytest.mark.unit
@pytest.mark.parametrize("quantity", [0, -1])
def test_issue_rejects_non_positive_quantity(ledger, event, quantity):
    with pytest.raises(InvalidRequestError):
        ledger.issue("E1", "user_a", quantity)
    assert events_repo.get_event("E1").remaining_quantity == 100


@pytest.mark.unit
def test_issue_unknown_event_is_not_found(ledger, test_db):
    with pytest.raises(NotFoundError):
        ledger.issue("missing", "user_a", 1)


@pytest.mark.unit
def test_issued_tokens_are_unique(ledger, event):
    tokens = {ledger.issue("E1", "user_a", 1).token for _ in range(20)}
    assert len(tokens) == 20
