"""HTTP surface of the ticket ledger (FastAPI)."""
