"""Ticket ledger: issuance and consumption of admission tickets.

:class:`TicketLedger` owns every write to ``tickets``, ``ticket_tokens``,
``events.remaining_quantity`` and the live ``event_user_summaries`` counters.

Issuance
--------
``issue`` runs one transaction that clamps the event inventory at zero,
inserts the ticket with a fresh scan token, indexes the token, and bumps the
owner's summary. Inventory shortfall never blocks issuance; the counter
simply stops at zero.

Consumption
-----------
Two entry points share one rule: inside ``BEGIN IMMEDIATE`` re-read the
ticket, refuse when it has nothing left, otherwise increment ``used_count``
and recompute ``active`` in the same statement. Because SQLite admits one
writer at a time, concurrent scans of the same ticket serialize and the loser
sees the winner's count.

- ``consume_by_token`` routes through a point read of the token index that
  happens *before* the transaction; the transaction re-checks that the ticket
  still carries that token, so a token superseded in between is a miss.
- ``consume_by_owner`` selects the ticket inside the transaction: most
  admissions left, then oldest ``issued_at``, then lowest id.

Scan metrics (accepted/denied/preview counts) are written after the fact and
never affect the scan outcome.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime

from ticket_ledger.clock import to_timestamp, utc_now
from ticket_ledger.db import events_repo, metrics_repo, summaries_repo, tickets_repo, tokens_repo
from ticket_ledger.db.errors import DatabaseError
from ticket_ledger.db.types import TicketRecord
from ticket_ledger.ledger.errors import (
    AlreadyUsedError,
    ExhaustedError,
    InvalidRequestError,
    NotFoundError,
    WrongEventError,
)
from ticket_ledger.ledger.storage import atomic
from ticket_ledger.ledger.tokens import generate_ticket_token
from ticket_ledger.ledger.types import ConsumeResult, OwnerPreview

logger = logging.getLogger(__name__)


def insert_new_ticket(
    conn: sqlite3.Connection,
    *,
    event_id: str,
    owner_id: str,
    quantity: int,
    issued_at: str,
    owner_email: str | None = None,
    owner_name: str | None = None,
    order_ref: str | None = None,
    previous_owner_id: str | None = None,
    claimed_from_transfer_id: str | None = None,
) -> TicketRecord:
    """Create a ticket, its token index entry, and its summary increment.

    Shared by issuance and transfer claims; must run inside an open
    transaction.
    """
    ticket = TicketRecord(
        id=uuid.uuid4().hex,
        event_id=event_id,
        owner_id=owner_id,
        owner_email=owner_email,
        owner_name=owner_name,
        quantity=quantity,
        used_count=0,
        active=True,
        token=generate_ticket_token(),
        pending_transfer_id=None,
        previous_owner_id=previous_owner_id,
        transferred_to=None,
        transferred_at=None,
        claimed_from_transfer_id=claimed_from_transfer_id,
        order_ref=order_ref,
        issued_at=issued_at,
        last_scan_at=None,
        last_scanned_by=None,
    )
    tickets_repo.insert_ticket(conn, ticket)
    tokens_repo.insert_token(
        conn,
        ticket.token or "",
        event_id=event_id,
        ticket_id=ticket.id,
        created_at=issued_at,
    )
    summaries_repo.add_tickets(conn, event_id, owner_id, quantity, updated_at=issued_at)
    return ticket


class TicketLedger:
    """Issue and consume tickets.

    Args:
        clock: Returns the current aware UTC time. Injected by tests.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(
        self,
        event_id: str,
        owner_id: str,
        quantity: int,
        *,
        order_ref: str | None = None,
        owner_email: str | None = None,
        owner_name: str | None = None,
    ) -> TicketRecord:
        """Issue one ticket of ``quantity`` admissions to ``owner_id``.

        Raises:
            InvalidRequestError: ``quantity`` is below 1 or ids are blank.
            NotFoundError: The event does not exist.
        """
        ticket = atomic(
            "ledger.issue",
            lambda conn: self.issue_in(
                conn,
                event_id,
                owner_id,
                quantity,
                order_ref=order_ref,
                owner_email=owner_email,
                owner_name=owner_name,
            ),
            details=f"event_id={event_id!r}",
        )
        logger.info(
            "Issued ticket %s (%d admission(s)) for event %s to %s",
            ticket.id,
            quantity,
            event_id,
            owner_id,
        )
        return ticket

    def issue_in(
        self,
        conn: sqlite3.Connection,
        event_id: str,
        owner_id: str,
        quantity: int,
        *,
        order_ref: str | None = None,
        owner_email: str | None = None,
        owner_name: str | None = None,
    ) -> TicketRecord:
        """Issue a ticket on an open transaction; the caller commits.

        Lets callers record the ticket alongside their own rows so both land
        in one commit. Raises the same errors as :meth:`issue`.
        """
        if quantity < 1:
            raise InvalidRequestError("quantity must be at least 1", quantity=quantity)
        if not event_id or not owner_id:
            raise InvalidRequestError("event_id and owner_id are required")

        event = events_repo.fetch_event(conn, event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found", event_id=event_id)
        remaining = events_repo.decrement_inventory(conn, event_id, quantity)
        if event.remaining_quantity < quantity:
            logger.warning(
                "Issuing %d admission(s) for event %s with only %d remaining",
                quantity,
                event_id,
                event.remaining_quantity,
            )
        ticket = insert_new_ticket(
            conn,
            event_id=event_id,
            owner_id=owner_id,
            quantity=quantity,
            issued_at=to_timestamp(self._clock()),
            owner_email=owner_email,
            owner_name=owner_name,
            order_ref=order_ref,
        )
        logger.debug("Event %s inventory now %d", event_id, remaining)
        return ticket

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def consume_by_token(
        self,
        token: str,
        *,
        expected_event_id: str | None = None,
        scanner_id: str | None = None,
    ) -> ConsumeResult:
        """Consume one admission from the ticket holding ``token``.

        Args:
            token: Scan token read from the ticket.
            expected_event_id: Event the scanner is working; a token for any
                other event is refused without touching the ticket.
            scanner_id: Identity recorded as ``last_scanned_by``.

        Raises:
            NotFoundError: Unknown or superseded token.
            WrongEventError: Token belongs to another event.
            AlreadyUsedError: No admissions left on the ticket.
        """
        if not token:
            raise InvalidRequestError("token is required")

        entry = tokens_repo.lookup_token(token)
        if entry is None:
            if expected_event_id:
                self._bump_metric(expected_event_id, "scan_denials")
            raise NotFoundError("Ticket token not found")

        if expected_event_id and entry.event_id != expected_event_id:
            self._bump_metric(expected_event_id, "scan_denials")
            raise WrongEventError(
                "Ticket belongs to a different event",
                event_id=entry.event_id,
                expected_event_id=expected_event_id,
            )

        scanned_at = to_timestamp(self._clock())

        def work(conn: sqlite3.Connection) -> ConsumeResult:
            ticket = tickets_repo.fetch_ticket(conn, entry.ticket_id)
            if ticket is None or ticket.token != token:
                raise NotFoundError("Ticket token not found")
            return self._consume(conn, ticket, scanned_at=scanned_at, scanner_id=scanner_id)

        try:
            result = atomic("ledger.consume_by_token", work, details=f"ticket_id={entry.ticket_id!r}")
        except (NotFoundError, AlreadyUsedError):
            self._bump_metric(entry.event_id, "scan_denials")
            raise
        self._bump_metric(entry.event_id, "scans_accepted")
        logger.info(
            "Scanned ticket %s at event %s: %d remaining",
            result.ticket_id,
            result.event_id,
            result.remaining,
        )
        return result

    def consume_by_owner(
        self,
        event_id: str,
        owner_id: str,
        *,
        scanner_id: str | None = None,
    ) -> ConsumeResult:
        """Consume one admission from the owner's best ticket at ``event_id``.

        Raises:
            NotFoundError: The owner holds no tickets at the event.
            ExhaustedError: The owner's tickets have no admissions left.
        """
        if not event_id or not owner_id:
            raise InvalidRequestError("event_id and owner_id are required")

        scanned_at = to_timestamp(self._clock())

        def work(conn: sqlite3.Connection) -> ConsumeResult:
            tickets = tickets_repo.fetch_owner_tickets(conn, event_id, owner_id)
            if not tickets:
                raise NotFoundError(
                    "No tickets for this user at this event",
                    event_id=event_id,
                    owner_id=owner_id,
                )
            remaining_total = sum(ticket.remaining for ticket in tickets)
            if remaining_total == 0:
                raise ExhaustedError(
                    "All tickets for this user have been used",
                    event_id=event_id,
                    owner_id=owner_id,
                    remaining_total=0,
                )
            # fetch_owner_tickets returns selection order.
            selected = tickets[0]
            result = self._consume(conn, selected, scanned_at=scanned_at, scanner_id=scanner_id)
            return ConsumeResult(
                event_id=result.event_id,
                ticket_id=result.ticket_id,
                owner_id=result.owner_id,
                quantity=result.quantity,
                used_count=result.used_count,
                remaining=result.remaining,
                active=result.active,
                remaining_total=remaining_total - 1,
            )

        try:
            result = atomic(
                "ledger.consume_by_owner",
                work,
                details=f"event_id={event_id!r}, owner_id={owner_id!r}",
            )
        except (NotFoundError, ExhaustedError):
            self._bump_metric(event_id, "scan_denials")
            raise
        self._bump_metric(event_id, "scans_accepted")
        logger.info(
            "Scanned owner %s at event %s via ticket %s: %d remaining overall",
            owner_id,
            event_id,
            result.ticket_id,
            result.remaining_total,
        )
        return result

    def preview_owner(self, event_id: str, owner_id: str) -> OwnerPreview:
        """Describe the owner's tickets and which one the next scan would use.

        Never mutates tickets. An owner with no tickets gets an empty preview.
        """
        tickets = tickets_repo.list_owner_tickets(event_id, owner_id)
        remaining_total = sum(ticket.remaining for ticket in tickets)
        next_ticket = next((ticket for ticket in tickets if ticket.remaining > 0), None)
        self._bump_metric(event_id, "preview_count")
        return OwnerPreview(
            event_id=event_id,
            owner_id=owner_id,
            tickets=tickets,
            remaining_total=remaining_total,
            next_ticket_id=next_ticket.id if next_ticket else None,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _consume(
        self,
        conn: sqlite3.Connection,
        ticket: TicketRecord,
        *,
        scanned_at: str,
        scanner_id: str | None,
    ) -> ConsumeResult:
        """Apply one admission to ``ticket`` inside the caller's transaction."""
        if not ticket.active or ticket.used_count >= ticket.quantity:
            raise AlreadyUsedError(
                "Ticket has no admissions left",
                ticket_id=ticket.id,
                used_count=ticket.used_count,
                quantity=ticket.quantity,
            )
        tickets_repo.record_use(conn, ticket.id, scanned_at=scanned_at, scanned_by=scanner_id)
        summaries_repo.add_use(conn, ticket.event_id, ticket.owner_id, scanned_at=scanned_at)

        used_count = ticket.used_count + 1
        remaining = ticket.quantity - used_count
        return ConsumeResult(
            event_id=ticket.event_id,
            ticket_id=ticket.id,
            owner_id=ticket.owner_id,
            quantity=ticket.quantity,
            used_count=used_count,
            remaining=remaining,
            active=remaining > 0,
        )

    def _bump_metric(self, event_id: str, field: str) -> None:
        """Best-effort scan counter update; failures are logged, never raised."""
        try:
            metrics_repo.increment_metric(event_id, field, updated_at=to_timestamp(self._clock()))
        except DatabaseError as exc:
            logger.warning("Failed to update %s for event %s: %s", field, event_id, exc)
