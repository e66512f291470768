"""SQLite persistence layer: connections, schema, and per-table repositories."""
