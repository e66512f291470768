"""Collaborators consulted by the ledger: rate limiting and notifications."""
