"""
Tests for the transfer workflow.

Tests cover:
- Create / claim / cancel / preview happy paths
- Token invalidation: the original token stops working after a claim
- Exclusivity: one live pending transfer per ticket
- Concurrent claims of one transfer: exactly one wins
- Lazy expiry and event start cut-off
- Recipient resolution by email and username
- Rate limiting and notifier isolation
"""

import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from ticket_ledger.config import config
from ticket_ledger.db import summaries_repo, tickets_repo, tokens_repo, transfers_repo
from ticket_ledger.integrations.rate_limiter import RateLimitDecision
from ticket_ledger.ledger import (
    AlreadyUsedError,
    ClaimerIdentity,
    ConflictError,
    ExpiredError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    RateLimitedError,
    TransferWorkflow,
)
from ticket_ledger.ledger.transfers import STATUS_CANCELLED, STATUS_CLAIMED, STATUS_PENDING
from tests.doubles import START, StubRateLimiter

BEE = ClaimerIdentity(user_id="user_b", email="b@x.com", display_name="Bee")

# ============================================================================
# CREATE
# ============================================================================


@pytest.mark.unit
def test_create_by_email_links_existing_account(transfers, issue, event, directory, notifier):
    ticket_id = issue(quantity=2)

    created = transfers.create(ticket_id, "user_a", "B@X.com", sender_name="Ay")

    transfer = created.transfer
    assert transfer.status == STATUS_PENDING
    assert transfer.to_email == "b@x.com"
    assert transfer.to_user_id == "user_b"
    assert transfer.quantity == 2
    assert created.recipient_has_account is True
    assert created.event_name == "Event E1"
    assert transfer.expires_at == (START + timedelta(hours=72)).isoformat(timespec="microseconds")
    assert tickets_repo.get_ticket(ticket_id).pending_transfer_id == transfer.id
    assert notifier.kinds() == ["created"]
    assert notifier.events[0][2]["raw_claim_token"] == created.raw_claim_token


@pytest.mark.unit
def test_create_stores_only_claim_token_hash(transfers, issue, event):
    created = transfers.create(issue(), "user_a", "b@x.com")

    stored = transfers_repo.get_transfer(created.transfer.id)
    assert stored.claim_token_hash != created.raw_claim_token
    assert len(stored.claim_token_hash) == 64


@pytest.mark.unit
def test_create_by_username_resolves_directory(transfers, issue, event, directory):
    created = transfers.create(issue(), "user_a", "@Bee")

    assert created.transfer.to_user_id == "user_b"
    assert created.transfer.to_username == "bee"
    assert created.transfer.to_email == "b@x.com"
    assert created.transfer.to_display_name == "Bee"


@pytest.mark.unit
def test_create_to_unknown_email_has_no_account(transfers, issue, event):
    created = transfers.create(issue(), "user_a", "stranger@x.com")
    assert created.recipient_has_account is False


@pytest.mark.unit
@pytest.mark.parametrize(
    ("recipient", "error"),
    [
        ("", InvalidRequestError),
        ("not-an-email@", InvalidRequestError),
        ("@ghost", NotFoundError),
    ],
)
def test_create_rejects_bad_recipients(transfers, issue, event, directory, recipient, error):
    with pytest.raises(error):
        transfers.create(issue(), "user_a", recipient)


@pytest.mark.unit
def test_create_rejects_self_transfer(transfers, issue, event, directory):
    ticket_id = issue(owner_id="user_b")
    with pytest.raises(InvalidRequestError):
        transfers.create(ticket_id, "user_b", "b@x.com")
    with pytest.raises(InvalidRequestError):
        transfers.create(issue(), "user_a", "a@x.com", sender_email="A@x.com")


@pytest.mark.unit
def test_create_requires_ownership(transfers, issue, event):
    with pytest.raises(ForbiddenError):
        transfers.create(issue(owner_id="user_a"), "user_z", "b@x.com")


@pytest.mark.unit
def test_create_unknown_ticket(transfers, event):
    with pytest.raises(NotFoundError):
        transfers.create("missing", "user_a", "b@x.com")


@pytest.mark.unit
def test_create_refuses_used_ticket(transfers, ledger, issue, event):
    ticket = tickets_repo.get_ticket(issue(quantity=2))
    ledger.consume_by_token(ticket.token)

    with pytest.raises(AlreadyUsedError):
        transfers.create(ticket.id, "user_a", "b@x.com")


@pytest.mark.unit
def test_create_refuses_after_event_start(transfers, issue, event, clock):
    ticket_id = issue()
    clock.advance(days=8)

    with pytest.raises(ExpiredError):
        transfers.create(ticket_id, "user_a", "b@x.com")


@pytest.mark.unit
def test_create_allows_event_without_start(transfers, issue, make_event):
    make_event("E9", starts_at=None)
    created = transfers.create(issue(event_id="E9"), "user_a", "b@x.com")
    assert created.transfer.event_id == "E9"


# ============================================================================
# EXCLUSIVITY
# ============================================================================


@pytest.mark.unit
def test_second_pending_transfer_is_conflict(transfers, issue, event):
    ticket_id = issue()
    first = transfers.create(ticket_id, "user_a", "b@x.com")

    with pytest.raises(ConflictError) as excinfo:
        transfers.create(ticket_id, "user_a", "c@x.com")

    assert excinfo.value.extra["transfer_id"] == first.transfer.id


@pytest.mark.unit
def test_expired_pending_transfer_does_not_block_new_one(transfers, issue, event, clock):
    ticket_id = issue()
    stale = transfers.create(ticket_id, "user_a", "b@x.com")
    clock.advance(hours=73)

    fresh = transfers.create(ticket_id, "user_a", "c@x.com")

    assert tickets_repo.get_ticket(ticket_id).pending_transfer_id == fresh.transfer.id
    with pytest.raises(ExpiredError):
        transfers.claim(stale.raw_claim_token, BEE)


@pytest.mark.unit
def test_cancelled_transfer_frees_ticket(transfers, issue, event):
    ticket_id = issue()
    first = transfers.create(ticket_id, "user_a", "b@x.com")
    transfers.cancel(first.transfer.id, "user_a")

    second = transfers.create(ticket_id, "user_a", "b@x.com")
    assert second.transfer.id != first.transfer.id


# ============================================================================
# CLAIM
# ============================================================================


@pytest.mark.unit
def test_claim_moves_ticket_and_invalidates_old_token(
    transfers, ledger, issue, event, directory, notifier
):
    original = tickets_repo.get_ticket(issue(quantity=2))
    created = transfers.create(original.id, "user_a", "b@x.com")

    new_ticket = transfers.claim(created.raw_claim_token, BEE)

    assert new_ticket.owner_id == "user_b"
    assert new_ticket.quantity == 2
    assert new_ticket.previous_owner_id == "user_a"
    assert new_ticket.claimed_from_transfer_id == created.transfer.id
    assert new_ticket.token != original.token

    old = tickets_repo.get_ticket(original.id)
    assert old.active is False
    assert old.token is None
    assert old.transferred_to == "user_b"
    assert old.pending_transfer_id is None
    assert tokens_repo.lookup_token(original.token) is None
    with pytest.raises(NotFoundError):
        ledger.consume_by_token(original.token)

    result = ledger.consume_by_token(new_ticket.token)
    assert result.owner_id == "user_b"

    transfer = transfers_repo.get_transfer(created.transfer.id)
    assert transfer.status == STATUS_CLAIMED
    assert transfer.new_ticket_id == new_ticket.id
    assert summaries_repo.get_summary("E1", "user_b").total_tickets == 2
    assert notifier.kinds() == ["created", "claimed"]


@pytest.mark.unit
def test_claim_twice_is_conflict(transfers, issue, event, directory):
    created = transfers.create(issue(), "user_a", "b@x.com")
    transfers.claim(created.raw_claim_token, BEE)

    with pytest.raises(ConflictError):
        transfers.claim(created.raw_claim_token, BEE)


@pytest.mark.slow
def test_concurrent_claims_of_one_transfer_move_ticket_once(transfers, issue, event, directory):
    created = transfers.create(issue(quantity=2), "user_a", "b@x.com")
    barrier = threading.Barrier(6)
    outcomes = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            transfers.claim(created.raw_claim_token, BEE)
            outcome = "ok"
        except ConflictError:
            outcome = "conflict"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["conflict"] * 5 + ["ok"]
    assert len(tickets_repo.list_owner_tickets("E1", "user_b")) == 1
    assert transfers_repo.get_transfer(created.transfer.id).status == STATUS_CLAIMED


@pytest.mark.unit
def test_claim_by_email_without_account_link(transfers, issue, event):
    created = transfers.create(issue(), "user_a", "new@x.com")

    ticket = transfers.claim(
        created.raw_claim_token, ClaimerIdentity(user_id="user_new", email="NEW@x.com")
    )

    assert ticket.owner_id == "user_new"
    assert ticket.owner_email == "new@x.com"


@pytest.mark.unit
def test_claim_by_wrong_person_is_forbidden(transfers, issue, event, directory):
    created = transfers.create(issue(), "user_a", "b@x.com")

    with pytest.raises(ForbiddenError):
        transfers.claim(created.raw_claim_token, ClaimerIdentity("user_c", email="c@x.com"))


@pytest.mark.unit
def test_claim_after_expiry_is_expired(transfers, issue, event, directory, clock):
    created = transfers.create(issue(), "user_a", "b@x.com")
    clock.advance(hours=72, seconds=1)

    with pytest.raises(ExpiredError):
        transfers.claim(created.raw_claim_token, BEE)


@pytest.mark.unit
def test_claim_unknown_token(transfers, event):
    with pytest.raises(NotFoundError):
        transfers.claim("0" * 48, BEE)


@pytest.mark.unit
def test_claim_after_scan_while_pending_is_already_used(
    transfers, ledger, issue, event, directory
):
    original = tickets_repo.get_ticket(issue(quantity=2))
    created = transfers.create(original.id, "user_a", "b@x.com")
    ledger.consume_by_token(original.token)

    with pytest.raises(AlreadyUsedError):
        transfers.claim(created.raw_claim_token, BEE)

    assert tickets_repo.get_ticket(original.id).owner_id == "user_a"
    assert transfers_repo.get_transfer(created.transfer.id).status == STATUS_PENDING


def _fetch_transfer_vanishing_after(calls):
    real_fetch = transfers_repo.fetch_transfer
    seen = []

    def fetch(conn, transfer_id):
        seen.append(transfer_id)
        if len(seen) > calls:
            return None
        return real_fetch(conn, transfer_id)

    return fetch


@pytest.mark.unit
def test_claim_rolls_back_when_transfer_row_disappears(transfers, issue, event, directory):
    original = tickets_repo.get_ticket(issue())
    created = transfers.create(original.id, "user_a", "b@x.com")

    with patch.object(transfers_repo, "fetch_transfer", _fetch_transfer_vanishing_after(1)):
        with pytest.raises(NotFoundError):
            transfers.claim(created.raw_claim_token, BEE)

    assert transfers_repo.get_transfer(created.transfer.id).status == STATUS_PENDING
    assert tickets_repo.get_ticket(original.id).owner_id == "user_a"
    assert tokens_repo.lookup_token(original.token).ticket_id == original.id
    assert tickets_repo.list_owner_tickets("E1", "user_b") == []


# ============================================================================
# CANCEL
# ============================================================================


@pytest.mark.unit
def test_cancel_by_sender(transfers, issue, event, notifier):
    ticket_id = issue()
    created = transfers.create(ticket_id, "user_a", "b@x.com")

    cancelled = transfers.cancel(created.transfer.id, "user_a")

    assert cancelled.status == STATUS_CANCELLED
    assert cancelled.cancelled_by_admin is False
    assert tickets_repo.get_ticket(ticket_id).pending_transfer_id is None
    with pytest.raises(ConflictError):
        transfers.claim(created.raw_claim_token, BEE)
    assert notifier.kinds() == ["created", "cancelled"]


@pytest.mark.unit
def test_cancel_by_other_user_is_forbidden(transfers, issue, event):
    created = transfers.create(issue(), "user_a", "b@x.com")
    with pytest.raises(ForbiddenError):
        transfers.cancel(created.transfer.id, "user_b")


@pytest.mark.unit
def test_admin_cancel(transfers, issue, event):
    created = transfers.create(issue(), "user_a", "b@x.com")
    cancelled = transfers.cancel(created.transfer.id, None, is_admin=True)
    assert cancelled.cancelled_by_admin is True


@pytest.mark.unit
def test_cancel_claimed_transfer_is_conflict(transfers, issue, event, directory):
    created = transfers.create(issue(), "user_a", "b@x.com")
    transfers.claim(created.raw_claim_token, BEE)

    with pytest.raises(ConflictError):
        transfers.cancel(created.transfer.id, "user_a")


@pytest.mark.unit
def test_cancel_requires_requester_unless_admin(transfers, event):
    with pytest.raises(InvalidRequestError):
        transfers.cancel("t1", None)
    with pytest.raises(NotFoundError):
        transfers.cancel("t1", None, is_admin=True)


@pytest.mark.unit
def test_cancel_rolls_back_when_transfer_row_disappears(transfers, issue, event):
    ticket_id = issue()
    created = transfers.create(ticket_id, "user_a", "b@x.com")

    with patch.object(transfers_repo, "fetch_transfer", _fetch_transfer_vanishing_after(1)):
        with pytest.raises(NotFoundError):
            transfers.cancel(created.transfer.id, "user_a")

    assert transfers_repo.get_transfer(created.transfer.id).status == STATUS_PENDING
    assert tickets_repo.get_ticket(ticket_id).pending_transfer_id == created.transfer.id


# ============================================================================
# PREVIEW
# ============================================================================


@pytest.mark.unit
def test_preview_shows_public_details(transfers, issue, event):
    created = transfers.create(issue(quantity=2), "user_a", "b@x.com", sender_name="Ay")

    preview = transfers.preview(created.raw_claim_token)

    assert preview.event_name == "Event E1"
    assert preview.event_starts_at == event.starts_at
    assert preview.quantity == 2
    assert preview.from_name == "Ay"
    assert preview.to_email == "b@x.com"


@pytest.mark.unit
def test_preview_of_finished_transfers(transfers, issue, event, clock):
    created = transfers.create(issue(), "user_a", "b@x.com")
    transfers.cancel(created.transfer.id, "user_a")
    with pytest.raises(ConflictError):
        transfers.preview(created.raw_claim_token)

    other = transfers.create(issue(), "user_a", "b@x.com")
    clock.advance(hours=73)
    with pytest.raises(ExpiredError):
        transfers.preview(other.raw_claim_token)

    with pytest.raises(NotFoundError):
        transfers.preview("f" * 48)


# ============================================================================
# COLLABORATORS
# ============================================================================


@pytest.mark.unit
def test_rate_limited_sender_is_refused(issue, event, clock, notifier):
    limiter = StubRateLimiter(RateLimitDecision(allowed=False, retry_after=120))
    workflow = TransferWorkflow(rate_limiter=limiter, notifier=notifier, clock=clock)

    with pytest.raises(RateLimitedError) as excinfo:
        workflow.create(issue(), "user_a", "b@x.com")

    assert excinfo.value.retry_after == 120
    assert limiter.calls == [("transfer:user_a", 10, 3600)]


@pytest.mark.unit
def test_rate_limit_disabled_skips_limiter(issue, event, clock, notifier):
    limiter = StubRateLimiter(RateLimitDecision(allowed=False, retry_after=120))
    workflow = TransferWorkflow(rate_limiter=limiter, notifier=notifier, clock=clock)

    original = config.rate_limit.enabled
    config.rate_limit.enabled = False
    try:
        workflow.create(issue(), "user_a", "b@x.com")
    finally:
        config.rate_limit.enabled = original

    assert limiter.calls == []


@pytest.mark.unit
def test_notifier_failure_does_not_undo_transfer(issue, event, clock, rate_limiter, caplog):
    class ExplodingNotifier:
        def transfer_created(self, transfer, **kwargs):
            raise RuntimeError("smtp down")

    workflow = TransferWorkflow(rate_limiter=rate_limiter, notifier=ExplodingNotifier(), clock=clock)
    ticket_id = issue()

    with caplog.at_level("WARNING", logger="ticket_ledger.ledger.transfers"):
        created = workflow.create(ticket_id, "user_a", "b@x.com")

    assert tickets_repo.get_ticket(ticket_id).pending_transfer_id == created.transfer.id
    assert "transfer_created failed" in caplog.text
