"""Transfer workflow: hand a ticket to another person via a claim link.

State machine per transfer::

    pending --claim--> claimed
    pending --cancel--> cancelled
    pending --(now > expires_at)--> void

Expiry is lazy. Nothing sweeps old transfers; every read compares
``expires_at`` with the clock, and a void transfer neither blocks a new one
nor can be claimed.

Exclusivity
-----------
A ticket has at most one live pending transfer, tracked by
``tickets.pending_transfer_id``. ``create`` and ``claim`` both verify that
pointer inside ``BEGIN IMMEDIATE``, so two racing creates (or claims) cannot
both succeed.

While a transfer is pending the original ticket remains fully scannable. A
scan in that window makes the claim fail with ``AlreadyUsedError``; the
sender keeps the partly used ticket.

Claim tokens
------------
The raw claim token (24 random bytes, hex) is returned once, to the sender,
and emailed to the recipient. Only its SHA-256 hash is stored.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from ticket_ledger.clock import parse_timestamp, to_timestamp, utc_now
from ticket_ledger.db import events_repo, tickets_repo, tokens_repo, transfers_repo, users_repo
from ticket_ledger.db.types import TicketRecord, TransferRecord
from ticket_ledger.integrations.notifications import Notifier, TransferNotifier
from ticket_ledger.integrations.rate_limiter import RateLimiter, SqliteRateLimiter
from ticket_ledger.ledger.errors import (
    AlreadyUsedError,
    ConflictError,
    ExpiredError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    RateLimitedError,
)
from ticket_ledger.ledger.storage import atomic
from ticket_ledger.ledger.tickets import insert_new_ticket
from ticket_ledger.ledger.tokens import generate_claim_token, hash_claim_token
from ticket_ledger.ledger.types import ClaimerIdentity, CreatedTransfer, TransferPreview

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

STATUS_PENDING = "pending"
STATUS_CLAIMED = "claimed"
STATUS_CANCELLED = "cancelled"


class _Recipient:
    """Resolved transfer recipient."""

    __slots__ = ("user_id", "email", "username", "display_name")

    def __init__(
        self,
        *,
        user_id: str | None,
        email: str,
        username: str | None,
        display_name: str | None,
    ) -> None:
        self.user_id = user_id
        self.email = email
        self.username = username
        self.display_name = display_name


class TransferWorkflow:
    """Create, claim, cancel, and preview ticket transfers.

    Args:
        rate_limiter: Consulted before every ``create``; defaults to the
            SQLite sliding-window limiter.
        notifier: Informed after each committed state change; defaults to
            :class:`~ticket_ledger.integrations.notifications.Notifier`.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        *,
        rate_limiter: RateLimiter | None = None,
        notifier: TransferNotifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._rate_limiter = rate_limiter or SqliteRateLimiter()
        self._notifier = notifier or Notifier(clock=clock)
        self._clock = clock

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        ticket_id: str,
        from_owner_id: str,
        recipient: str,
        *,
        sender_email: str | None = None,
        sender_name: str | None = None,
    ) -> CreatedTransfer:
        """Offer ``ticket_id`` to ``recipient`` (an email or a ``@username``).

        Raises:
            InvalidRequestError: Bad email, missing fields, or sending to self.
            NotFoundError: Unknown ticket, event, or username.
            RateLimitedError: Sender exceeded the transfer rate.
            ForbiddenError: Sender does not own the ticket.
            ConflictError: Ticket inactive, already given away, or already
                has a live pending transfer.
            AlreadyUsedError: Ticket has been scanned at least once.
            ExpiredError: The event has already started.
        """
        from ticket_ledger.config import config

        if not ticket_id or not from_owner_id:
            raise InvalidRequestError("ticket_id and from_owner_id are required")

        resolved = self._resolve_recipient(recipient)
        if resolved.user_id is not None and resolved.user_id == from_owner_id:
            raise InvalidRequestError("Cannot transfer a ticket to yourself")
        if sender_email and resolved.email == sender_email.strip().lower():
            raise InvalidRequestError("Cannot transfer a ticket to yourself")

        if config.rate_limit.enabled:
            decision = self._rate_limiter.allow(
                f"transfer:{from_owner_id}",
                config.rate_limit.transfers_per_window,
                config.rate_limit.transfer_window_seconds,
            )
            if not decision.allowed:
                raise RateLimitedError(
                    "Transfer rate limit exceeded. Try again later.",
                    retry_after=decision.retry_after,
                )

        now = self._clock()
        raw_token = generate_claim_token()
        created_at = to_timestamp(now)
        expires_at = to_timestamp(now + timedelta(hours=config.ledger.transfer_ttl_hours))

        def work(conn: sqlite3.Connection) -> tuple[TransferRecord, str]:
            ticket = tickets_repo.fetch_ticket(conn, ticket_id)
            if ticket is None:
                raise NotFoundError("Ticket not found", ticket_id=ticket_id)
            if ticket.owner_id != from_owner_id:
                raise ForbiddenError("You do not own this ticket")
            if ticket.transferred_to is not None:
                raise ConflictError("Ticket has already been transferred")
            if ticket.used_count > 0:
                raise AlreadyUsedError("Cannot transfer a ticket that has been used")
            if not ticket.active:
                raise ConflictError("Ticket is not active")
            if self._has_live_pending(conn, ticket, now):
                raise ConflictError(
                    "Ticket already has a pending transfer",
                    transfer_id=ticket.pending_transfer_id,
                )

            event = events_repo.fetch_event(conn, ticket.event_id)
            if event is None:
                raise NotFoundError("Event not found", event_id=ticket.event_id)
            if event.starts_at and parse_timestamp(event.starts_at) < now:
                raise ExpiredError("Cannot transfer tickets for past events")

            transfer = TransferRecord(
                id=uuid.uuid4().hex,
                event_id=ticket.event_id,
                ticket_id=ticket.id,
                from_owner_id=from_owner_id,
                from_email=sender_email,
                from_name=sender_name,
                to_user_id=resolved.user_id,
                to_email=resolved.email,
                to_username=resolved.username,
                to_display_name=resolved.display_name,
                claim_token_hash=hash_claim_token(raw_token),
                status=STATUS_PENDING,
                quantity=ticket.quantity,
                created_at=created_at,
                expires_at=expires_at,
                claimed_by_user_id=None,
                claimed_at=None,
                new_ticket_id=None,
                cancelled_at=None,
                cancelled_by_admin=False,
            )
            transfers_repo.insert_transfer(conn, transfer)
            tickets_repo.set_pending_transfer(conn, ticket.id, transfer.id)
            return transfer, event.name

        transfer, event_name = atomic(
            "transfers.create", work, details=f"ticket_id={ticket_id!r}"
        )
        logger.info(
            "Transfer %s created for ticket %s from %s to %s",
            transfer.id,
            ticket_id,
            from_owner_id,
            f"@{transfer.to_username}" if transfer.to_username else transfer.to_email,
        )
        self._notify(
            "transfer_created",
            lambda: self._notifier.transfer_created(
                transfer, event_name=event_name, raw_claim_token=raw_token
            ),
        )
        return CreatedTransfer(transfer=transfer, raw_claim_token=raw_token, event_name=event_name)

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim(self, raw_claim_token: str, claimer: ClaimerIdentity) -> TicketRecord:
        """Move a pending transfer's ticket to ``claimer``.

        The original ticket is deactivated and its token removed from the
        index; the claimer gets a brand new ticket and token.

        Raises:
            NotFoundError: Unknown claim token.
            ConflictError: Transfer already claimed or cancelled, or superseded.
            ExpiredError: Transfer expired.
            ForbiddenError: ``claimer`` is not the intended recipient.
            AlreadyUsedError: Original ticket was scanned while pending.
        """
        if not raw_claim_token or not claimer.user_id:
            raise InvalidRequestError("claim token and claimer user id are required")

        transfer = transfers_repo.get_transfer_by_hash(hash_claim_token(raw_claim_token))
        if transfer is None:
            raise NotFoundError("Transfer not found")
        now = self._clock()
        self._check_claimable(transfer, now)
        if not self._recipient_matches(transfer, claimer):
            raise ForbiddenError("This ticket was sent to someone else")

        claimed_at = to_timestamp(now)

        def work(conn: sqlite3.Connection) -> tuple[TicketRecord, TransferRecord, str]:
            current = transfers_repo.fetch_transfer(conn, transfer.id)
            if current is None:
                raise NotFoundError("Transfer not found")
            self._check_claimable(current, now)

            original = tickets_repo.fetch_ticket(conn, current.ticket_id)
            if original is None:
                raise NotFoundError("Original ticket not found", ticket_id=current.ticket_id)
            if original.pending_transfer_id != current.id or original.transferred_to is not None:
                raise ConflictError("Transfer is no longer valid for this ticket")
            if original.used_count > 0:
                raise AlreadyUsedError("Ticket was used after the transfer was sent")

            new_ticket = insert_new_ticket(
                conn,
                event_id=original.event_id,
                owner_id=claimer.user_id,
                quantity=original.quantity,
                issued_at=claimed_at,
                owner_email=(claimer.email or current.to_email).lower(),
                owner_name=claimer.display_name or original.owner_name,
                order_ref=original.order_ref,
                previous_owner_id=original.owner_id,
                claimed_from_transfer_id=current.id,
            )
            if original.token:
                tokens_repo.delete_token(conn, original.token)
            tickets_repo.mark_transferred(
                conn, original.id, to_user_id=claimer.user_id, transferred_at=claimed_at
            )
            transfers_repo.mark_claimed(
                conn,
                current.id,
                claimed_by_user_id=claimer.user_id,
                claimed_at=claimed_at,
                new_ticket_id=new_ticket.id,
            )
            event = events_repo.fetch_event(conn, original.event_id)
            claimed = transfers_repo.fetch_transfer(conn, current.id)
            if claimed is None:
                raise NotFoundError("Transfer not found", transfer_id=current.id)
            return new_ticket, claimed, event.name if event else "Event"

        new_ticket, claimed, event_name = atomic(
            "transfers.claim", work, details=f"transfer_id={transfer.id!r}"
        )
        logger.info(
            "Transfer %s claimed by %s: ticket %s replaces %s",
            claimed.id,
            claimer.user_id,
            new_ticket.id,
            claimed.ticket_id,
        )
        self._notify(
            "transfer_claimed",
            lambda: self._notifier.transfer_claimed(
                claimed, event_name=event_name, claimer_name=claimer.display_name
            ),
        )
        return new_ticket

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel(
        self, transfer_id: str, requested_by: str | None, *, is_admin: bool = False
    ) -> TransferRecord:
        """Withdraw a pending transfer. The original ticket is untouched otherwise.

        Raises:
            NotFoundError: Unknown transfer.
            ForbiddenError: Requester is not the sender and not an admin.
            ConflictError: Transfer is no longer pending.
        """
        if not transfer_id:
            raise InvalidRequestError("transfer_id is required")
        if not is_admin and not requested_by:
            raise InvalidRequestError("requested_by is required")

        cancelled_at = to_timestamp(self._clock())

        def work(conn: sqlite3.Connection) -> tuple[TransferRecord, str]:
            transfer = transfers_repo.fetch_transfer(conn, transfer_id)
            if transfer is None:
                raise NotFoundError("Transfer not found", transfer_id=transfer_id)
            if not is_admin and transfer.from_owner_id != requested_by:
                raise ForbiddenError("You cannot cancel this transfer")
            if transfer.status != STATUS_PENDING:
                raise ConflictError(f"Transfer is {transfer.status}", status=transfer.status)

            ticket = tickets_repo.fetch_ticket(conn, transfer.ticket_id)
            if ticket is not None and ticket.pending_transfer_id == transfer.id:
                tickets_repo.set_pending_transfer(conn, ticket.id, None)
            transfers_repo.mark_cancelled(
                conn, transfer.id, cancelled_at=cancelled_at, by_admin=is_admin
            )
            event = events_repo.fetch_event(conn, transfer.event_id)
            cancelled = transfers_repo.fetch_transfer(conn, transfer.id)
            if cancelled is None:
                raise NotFoundError("Transfer not found", transfer_id=transfer.id)
            return cancelled, event.name if event else "Event"

        cancelled, event_name = atomic(
            "transfers.cancel", work, details=f"transfer_id={transfer_id!r}"
        )
        logger.info(
            "Transfer %s cancelled by %s%s",
            transfer_id,
            requested_by or "admin",
            " (admin)" if is_admin else "",
        )
        self._notify(
            "transfer_cancelled",
            lambda: self._notifier.transfer_cancelled(cancelled, event_name=event_name),
        )
        return cancelled

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def preview(self, raw_claim_token: str) -> TransferPreview:
        """Public details for a claim link, without sensitive fields.

        Raises:
            NotFoundError: Unknown claim token.
            ConflictError: Transfer already claimed or cancelled.
            ExpiredError: Transfer expired.
        """
        if not raw_claim_token:
            raise InvalidRequestError("Missing claim token")
        transfer = transfers_repo.get_transfer_by_hash(hash_claim_token(raw_claim_token))
        if transfer is None:
            raise NotFoundError("Transfer not found")
        self._check_claimable(transfer, self._clock())

        event = events_repo.get_event(transfer.event_id)
        return TransferPreview(
            transfer_id=transfer.id,
            event_id=transfer.event_id,
            event_name=event.name if event else "Event",
            event_starts_at=event.starts_at if event else None,
            quantity=transfer.quantity,
            from_name=transfer.from_name,
            to_email=transfer.to_email,
            expires_at=transfer.expires_at,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _resolve_recipient(self, recipient: str) -> _Recipient:
        """Turn an email or ``@username`` into a recipient identity."""
        value = (recipient or "").strip()
        if not value:
            raise InvalidRequestError("A recipient email or username is required")

        if "@" in value and not value.startswith("@"):
            email = value.lower()
            if not EMAIL_PATTERN.match(email):
                raise InvalidRequestError("Invalid recipient email format")
            user = users_repo.get_user_by_email(email)
            return _Recipient(
                user_id=user.id if user else None,
                email=email,
                username=None,
                display_name=user.display_name if user else None,
            )

        username = value.lstrip("@").lower()
        user = users_repo.get_user_by_username(username)
        if user is None:
            raise NotFoundError(f"Username @{username} not found")
        if not user.email:
            raise InvalidRequestError(f"User @{username} does not have an email on file")
        if not EMAIL_PATTERN.match(user.email):
            raise InvalidRequestError("Invalid recipient email format")
        return _Recipient(
            user_id=user.id,
            email=user.email.lower(),
            username=username,
            display_name=user.display_name or username,
        )

    @staticmethod
    def _check_claimable(transfer: TransferRecord, now: datetime) -> None:
        if transfer.status != STATUS_PENDING:
            raise ConflictError(
                f"Transfer has already been {transfer.status}", status=transfer.status
            )
        if now > parse_timestamp(transfer.expires_at):
            raise ExpiredError("Transfer link has expired", expires_at=transfer.expires_at)

    @staticmethod
    def _recipient_matches(transfer: TransferRecord, claimer: ClaimerIdentity) -> bool:
        """Match on account id when the transfer names one, else on email."""
        if transfer.to_user_id and transfer.to_user_id == claimer.user_id:
            return True
        return bool(claimer.email) and claimer.email.strip().lower() == transfer.to_email

    @staticmethod
    def _has_live_pending(conn: sqlite3.Connection, ticket: TicketRecord, now: datetime) -> bool:
        if not ticket.pending_transfer_id:
            return False
        pending = transfers_repo.fetch_transfer(conn, ticket.pending_transfer_id)
        if pending is None or pending.status != STATUS_PENDING:
            return False
        return parse_timestamp(pending.expires_at) >= now

    def _notify(self, what: str, send: Callable[[], None]) -> None:
        """Run a notifier callback after commit; its failures are logged only."""
        try:
            send()
        except Exception:
            logger.warning("Notification %s failed", what, exc_info=True)
