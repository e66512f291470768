"""Process-wide logging setup driven by ``config.logging``.

Modules log through ``logging.getLogger(__name__)``; this module only decides
where records go and how they look. ``configure_logging`` is called once by
the CLI and by the API app factory.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

_FORMATS = {
    "simple": "%(levelname)s %(message)s",
    "detailed": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
}

# Attributes present on every LogRecord; anything else came in via ``extra``.
_RESERVED_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

# Name of the handler installed here, so repeat calls replace only that one.
HANDLER_NAME = "ticket_ledger"


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, sort_keys=True)


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Install a single stream handler on the root logger.

    Args:
        level: Log level name; defaults to ``config.logging.level``.
        fmt: ``simple``, ``detailed`` or ``json``; defaults to ``config.logging.format``.
    """
    from ticket_ledger.config import config

    level_name = (level or config.logging.level).upper()
    format_name = fmt or config.logging.format

    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    if format_name == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_FORMATS.get(format_name, _FORMATS["detailed"])))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))
