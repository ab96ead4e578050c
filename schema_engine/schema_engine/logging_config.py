"""Log handler setup for the schema engine.

Two output modes are supported:

* Plain text (default) -- ``timestamp level logger: message``.
* Single-line JSON (``SCHEMA_ENGINE_STRUCTURED_LOGGING=true``) for log
  aggregators that index fields without regex parsing.

Output schema per JSON line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "WARNING",
        "logger": "schema_engine.graph.fk_graph_builder",
        "message": "Skipping foreign keys for table 'orders'",
        "database_id": "...",     // present when passed via ``extra``
        "table": "orders",        // present when passed via ``extra``
        "exc_info": "Traceback ..."  // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from schema_engine.config import Settings

# Context attributes copied from ``extra={...}`` into the JSON payload.
_CONTEXT_FIELDS: tuple[str, ...] = ("database_id", "table", "operation", "step")

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field_name in _CONTEXT_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                payload[field_name] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(settings: Settings) -> None:
    """Replace the root handlers according to *settings*.

    Safe to call more than once; previously installed root handlers are
    cleared each time.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    if settings.structured_logging:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))

    root_logger.addHandler(handler)
    level = logging.DEBUG if settings.debug else logging.getLevelName(settings.log_level.upper())
    root_logger.setLevel(level if isinstance(level, int) else logging.INFO)
