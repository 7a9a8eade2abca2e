"""JSON line logging for the service.

Modules keep using ``logging.getLogger(__name__)`` and pass structured
metadata through ``extra=``. Committed payloads must never be logged.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Structured fields copied from ``extra=`` onto the JSON line
STRUCTURED_FIELDS = (
    "event",
    "operation",
    "actor_id",
    "scope_id",
    "guild_id",
    "session_id",
    "timer_id",
    "interaction_id",
    "interaction_type",
    "command",
    "custom_id",
    "reason",
    "count",
    "backend",
    "error",
)

_configured = False


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_utc": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def configure_logging(level: str = "INFO", *, json_lines: bool = True) -> None:
    """Install a single stdout handler on the root logger.

    Safe to call more than once; later calls only adjust the level.
    """
    global _configured

    root = logging.getLogger()
    root.setLevel(level.upper())
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    if json_lines:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)-5s | %(name)-30s | %(message)s")
        )
    root.addHandler(handler)
    _configured = True
