"""Best-effort notifications for transfer lifecycle events.

Two channels, both fire-and-forget:

1. In-app notifications, stored in the ``notifications`` table for any party
   that has an account.
2. Email, posted as JSON to ``config.notifications.email_webhook_url`` (a mail
   relay) when ``email_enabled`` is set.

Every method here is called *after* the ledger transaction committed. Nothing
raised in this module may reach the caller: failures are logged and the
transfer stands.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import urlencode

import requests

from ticket_ledger.clock import to_timestamp, utc_now
from ticket_ledger.db import notifications_repo
from ticket_ledger.db.errors import DatabaseError
from ticket_ledger.db.types import TransferRecord

logger = logging.getLogger(__name__)

KIND_TRANSFER_SENT = "ticket_transfer_sent"
KIND_TRANSFER_RECEIVED = "ticket_transfer_received"
KIND_TRANSFER_CLAIMED = "ticket_transfer_claimed"
KIND_TRANSFER_CANCELLED = "ticket_transfer_cancelled"


class TransferNotifier(Protocol):
    def transfer_created(
        self, transfer: TransferRecord, *, event_name: str, raw_claim_token: str
    ) -> None: ...

    def transfer_claimed(
        self, transfer: TransferRecord, *, event_name: str, claimer_name: str | None
    ) -> None: ...

    def transfer_cancelled(self, transfer: TransferRecord, *, event_name: str) -> None: ...


class Notifier:
    """Default :class:`TransferNotifier` backed by SQLite and an email webhook.

    Settings are read from ``config.notifications`` at call time so tests can
    toggle them.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    # ------------------------------------------------------------------
    # Transfer lifecycle
    # ------------------------------------------------------------------

    def transfer_created(
        self, transfer: TransferRecord, *, event_name: str, raw_claim_token: str
    ) -> None:
        """Email the claim link to the recipient and notify both parties in-app."""
        from ticket_ledger.config import config

        sender = transfer.from_name or "Someone"
        claim_url = f"{config.notifications.claim_url_base}?{urlencode({'t': raw_claim_token})}"
        plural = "s" if transfer.quantity > 1 else ""
        self.send_email(
            to=transfer.to_email,
            subject=f"{sender} sent you a ticket!",
            text=(
                f"{sender} sent you {transfer.quantity} ticket{plural} for {event_name}.\n\n"
                f"Claim your ticket: {claim_url}\n\n"
                f"This link expires at {transfer.expires_at}."
            ),
        )

        recipient_display = f"@{transfer.to_username}" if transfer.to_username else transfer.to_email
        self.notify(
            transfer.from_owner_id,
            kind=KIND_TRANSFER_SENT,
            title="Ticket Transfer Sent",
            body=f"Your ticket for {event_name} was sent to {recipient_display}",
            payload={"event_id": transfer.event_id, "transfer_id": transfer.id},
        )
        if transfer.to_user_id:
            self.notify(
                transfer.to_user_id,
                kind=KIND_TRANSFER_RECEIVED,
                title="You received a ticket!",
                body=f"{sender} sent you a ticket for {event_name}",
                payload={
                    "event_id": transfer.event_id,
                    "transfer_id": transfer.id,
                    "from_user_id": transfer.from_owner_id,
                },
            )

    def transfer_claimed(
        self, transfer: TransferRecord, *, event_name: str, claimer_name: str | None
    ) -> None:
        claimer_id = transfer.claimed_by_user_id or ""
        if claimer_id:
            self.notify(
                claimer_id,
                kind=KIND_TRANSFER_CLAIMED,
                title="Ticket Claimed!",
                body=f"You've claimed a ticket for {event_name}",
                payload={
                    "event_id": transfer.event_id,
                    "ticket_id": transfer.new_ticket_id,
                    "from_user_id": transfer.from_owner_id,
                },
            )
        self.notify(
            transfer.from_owner_id,
            kind=KIND_TRANSFER_CLAIMED,
            title="Transfer Complete",
            body=(
                f"{claimer_name or transfer.to_email or 'The recipient'} "
                f"claimed your ticket for {event_name}"
            ),
            payload={"event_id": transfer.event_id, "claimer_user_id": claimer_id},
        )
        if transfer.from_email:
            self.send_email(
                to=transfer.from_email,
                subject="Your ticket transfer is complete",
                text=f"Your ticket for {event_name} was claimed by {transfer.to_email}.",
            )

    def transfer_cancelled(self, transfer: TransferRecord, *, event_name: str) -> None:
        payload = {"event_id": transfer.event_id, "transfer_id": transfer.id}
        if transfer.to_user_id:
            self.notify(
                transfer.to_user_id,
                kind=KIND_TRANSFER_CANCELLED,
                title="Transfer Cancelled",
                body=f"The ticket transfer for {event_name} was cancelled",
                payload=payload,
            )
        if transfer.cancelled_by_admin:
            self.notify(
                transfer.from_owner_id,
                kind=KIND_TRANSFER_CANCELLED,
                title="Transfer Cancelled by Support",
                body=(
                    f"Your ticket transfer for {event_name} was cancelled "
                    "and your ticket has been restored"
                ),
                payload=payload,
            )

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def notify(
        self,
        user_id: str,
        *,
        kind: str,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        """Store an in-app notification. Returns False (and logs) on failure."""
        try:
            notifications_repo.insert_notification(
                user_id,
                kind=kind,
                title=title,
                body=body,
                payload=payload,
                created_at=to_timestamp(self._clock()),
            )
        except DatabaseError as exc:
            logger.warning("Failed to store %s notification for %s: %s", kind, user_id, exc)
            return False
        return True

    def send_email(self, *, to: str, subject: str, text: str) -> bool:
        """POST an email to the configured relay. Returns False when skipped or failed."""
        from ticket_ledger.config import config

        settings = config.notifications
        if not settings.email_enabled or not settings.email_webhook_url:
            logger.debug("Email disabled; not sending %r to %s", subject, to)
            return False

        payload = {"from": settings.email_from, "to": to, "subject": subject, "text": text}
        try:
            response = requests.post(
                settings.email_webhook_url,
                json=payload,
                timeout=settings.timeout_seconds,
            )
            response.raise_for_status()
        except requests.exceptions.Timeout:
            logger.warning(
                "Email relay timed out after %.1fs (to=%s)", settings.timeout_seconds, to
            )
            return False
        except requests.exceptions.RequestException as exc:
            logger.warning("Email relay request failed (to=%s): %s", to, exc)
            return False
        return True
