"""Fulfillment guard: settle an order into tickets exactly once.

The ``fulfillments`` row keyed by the order's idempotency key (typically the
payment intent id) is claimed with check-then-insert inside one
``BEGIN IMMEDIATE`` transaction. Whoever inserts it issues the tickets; every
other caller, concurrent or later, gets the stored row back untouched.

A row stuck in ``processing`` (the issuer crashed mid-way) or ending in
``failed`` is terminal for its key. Replays never re-issue; recovery happens
under a new key or through an explicit repair. Each issued ticket is appended
to ``created_ticket_refs`` in the transaction that created it, so even a row
left in ``processing`` lists every ticket that exists for its key.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Sequence
from datetime import datetime

from ticket_ledger.clock import to_timestamp, utc_now
from ticket_ledger.db import fulfillments_repo
from ticket_ledger.db.errors import DatabaseError
from ticket_ledger.db.types import FulfillmentRecord, TicketRecord
from ticket_ledger.ledger.errors import InvalidRequestError, LedgerError, NotFoundError
from ticket_ledger.ledger.storage import atomic
from ticket_ledger.ledger.tickets import TicketLedger
from ticket_ledger.ledger.types import FulfillmentResult, IssueRequest

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class FulfillmentGuard:
    """Idempotency barrier in front of :meth:`TicketLedger.issue`.

    Args:
        ledger: Ticket ledger used to issue each request.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        ledger: TicketLedger | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ledger = ledger or TicketLedger(clock=clock)
        self._clock = clock

    def settle(self, key: str, requests: Sequence[IssueRequest]) -> FulfillmentResult:
        """Issue tickets for ``requests`` unless ``key`` was already settled.

        Each request is issued in its own transaction with ``order_ref=key``,
        and that transaction also appends the ticket to the stored refs.
        A failing request is recorded in ``errors`` as
        ``{index, event_id, code, message}`` and does not undo the requests
        that succeeded before or after it.

        Returns:
            The stored fulfillment and whether this call was a replay.

        Raises:
            InvalidRequestError: ``key`` is blank.
        """
        if not key:
            raise InvalidRequestError("Idempotency key is required")

        created_at = to_timestamp(self._clock())

        def claim(conn: sqlite3.Connection) -> tuple[FulfillmentRecord, bool]:
            existing = fulfillments_repo.fetch_fulfillment(conn, key)
            if existing is not None:
                return existing, True
            return fulfillments_repo.insert_processing(conn, key, created_at=created_at), False

        record, replayed = atomic("fulfillment.claim", claim, details=f"key={key!r}")
        if replayed:
            logger.info("Fulfillment %s already %s; replaying", key, record.status)
            return FulfillmentResult(fulfillment=record, replayed=True)

        created = 0
        failed = 0
        for index, request in enumerate(requests):
            try:
                ticket = atomic(
                    "fulfillment.issue",
                    lambda conn, index=index, request=request: self._issue_item(
                        conn, key, index, request
                    ),
                    details=f"key={key!r} index={index}",
                )
            except (LedgerError, DatabaseError) as exc:
                failed += 1
                code = exc.code if isinstance(exc, LedgerError) else "storage_error"
                logger.error(
                    "Fulfillment %s item %d (event %s) failed: %s",
                    key,
                    index,
                    request.event_id,
                    exc,
                )
                error = {
                    "index": index,
                    "event_id": request.event_id,
                    "code": code,
                    "message": str(exc),
                }
                atomic(
                    "fulfillment.record_error",
                    lambda conn, error=error: fulfillments_repo.append_error(conn, key, error),
                    details=f"key={key!r} index={index}",
                )
                continue
            created += 1
            logger.debug("Fulfillment %s item %d issued ticket %s", key, index, ticket.id)

        status = STATUS_COMPLETED if created or not requests else STATUS_FAILED
        completed_at = to_timestamp(self._clock())
        record = atomic(
            "fulfillment.finish",
            lambda conn: fulfillments_repo.finish_fulfillment(
                conn, key, status=status, completed_at=completed_at
            ),
            details=f"key={key!r}",
        )
        result = FulfillmentResult(fulfillment=record, replayed=False)
        logger.info(
            "Fulfillment %s %s: %d ticket(s), %d error(s)%s",
            key,
            status,
            created,
            failed,
            " (partial)" if result.partial_success else "",
        )
        return result

    def _issue_item(
        self,
        conn: sqlite3.Connection,
        key: str,
        index: int,
        request: IssueRequest,
    ) -> TicketRecord:
        ticket = self._ledger.issue_in(
            conn,
            request.event_id,
            request.owner_id,
            request.quantity,
            order_ref=key,
            owner_email=request.owner_email,
            owner_name=request.owner_name,
        )
        fulfillments_repo.append_ticket_ref(
            conn,
            key,
            {
                "index": index,
                "event_id": ticket.event_id,
                "ticket_id": ticket.id,
                "owner_id": ticket.owner_id,
                "quantity": ticket.quantity,
            },
        )
        return ticket

    def get(self, key: str) -> FulfillmentRecord:
        """Read back a fulfillment, e.g. after a caller timed out.

        Raises:
            NotFoundError: No fulfillment exists for ``key``.
        """
        record = fulfillments_repo.get_fulfillment(key)
        if record is None:
            raise NotFoundError(f"Fulfillment {key} not found", key=key)
        return record
