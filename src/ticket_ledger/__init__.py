"""Ticket Ledger: issuance, scanning, transfer and reconciliation of admission tickets.

The ledger owns ticket rows for paid orders and guarantees three properties
without a central lock manager:

- exactly-once issuance per payment (``ledger.fulfillment``),
- at-most-N consumption per ticket under concurrent scanning (``ledger.tickets``),
- exactly-once ownership transfer (``ledger.transfers``).

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__: str = version("ticket-ledger")
except PackageNotFoundError:
    __version__ = "0.1.0"
