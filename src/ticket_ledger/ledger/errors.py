"""Domain error taxonomy for ledger operations.

Every outcome a caller is expected to handle (a used ticket, an expired
transfer, a wrong recipient) is a :class:`LedgerError` subclass carrying a
stable machine ``code`` and the HTTP status the API layer answers with.
Infrastructure failures stay in :mod:`ticket_ledger.db.errors`.

=====================  ======  ===============================================
Error                  Status  Meaning
=====================  ======  ===============================================
NotFoundError          404     Unknown ticket, token, transfer, or event
AlreadyUsedError       409     Ticket has no admissions left, or was scanned
ExhaustedError         409     Owner has tickets, but none with admissions left
WrongEventError        409     Token belongs to a different event
ConflictError          409     State does not allow the operation right now
ExpiredError           410     Transfer expired or event already started
ForbiddenError         403     Caller is not the owner or intended recipient
RateLimitedError       429     Too many attempts; see ``retry_after``
InvalidRequestError    400     Malformed input
TransientStorageError  503     Storage busy; safe to retry idempotent calls
=====================  ======  ===============================================
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for expected ledger outcomes.

    Attributes:
        code: Stable machine-readable identifier (for example ``"already_used"``).
        status_code: HTTP status the API layer maps this error to.
        detail: Human-readable message.
        extra: Additional JSON-safe fields included in API error bodies.
    """

    code = "ledger_error"
    status_code = 400

    def __init__(self, detail: str, **extra: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.detail, **self.extra}


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = 404


class AlreadyUsedError(LedgerError):
    code = "already_used"
    status_code = 409


class ExhaustedError(LedgerError):
    code = "exhausted"
    status_code = 409


class WrongEventError(LedgerError):
    code = "wrong_event"
    status_code = 409


class ConflictError(LedgerError):
    code = "conflict"
    status_code = 409


class ExpiredError(LedgerError):
    code = "expired"
    status_code = 410


class ForbiddenError(LedgerError):
    code = "forbidden"
    status_code = 403


class RateLimitedError(LedgerError):
    """Raised when the rate limiter refuses an attempt.

    Attributes:
        retry_after: Whole seconds until the next attempt can succeed.
    """

    code = "rate_limited"
    status_code = 429

    def __init__(self, detail: str, *, retry_after: int) -> None:
        super().__init__(detail, retry_after=retry_after)
        self.retry_after = retry_after


class InvalidRequestError(LedgerError):
    code = "invalid_request"
    status_code = 400


class TransientStorageError(LedgerError):
    code = "transient_storage"
    status_code = 503
