"""JSON log output for requestor processes.

Components log through `logging.getLogger(__name__)` and attach context with
`extra={...}`. The ids that tie a log line to a market or activity object
(`agreement_id`, `batch_id`, ...) are lifted to the top level of the JSON
payload so log pipelines can filter on them; any other extra keys are nested
under `"extra"`.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any

CORRELATION_FIELDS: tuple[str, ...] = (
    "agreement_id",
    "activity_id",
    "batch_id",
    "subscription_id",
    "provider",
)

# Chatty transport loggers; the long-poll and stream loops reconnect constantly.
NOISY_LOGGERS: tuple[str, ...] = ("urllib3",)

_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in CORRELATION_FIELDS:
                payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, stream: IO[str] | None = None) -> None:
    """Send all records to `stream` (stdout by default) as JSON lines.

    Re-configuring replaces the previously installed handler.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
