"""Logging setup driven by ``LoggingConfig``."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from tamma.core.redact import redact_secrets

if TYPE_CHECKING:
    from tamma.config.schema import LoggingConfig

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, message redacted."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_secrets(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_type"] = record.exc_info[0].__name__
        return json.dumps(payload)


class RedactingFormatter(logging.Formatter):
    """Plain text formatter that scrubs credentials from messages."""

    def format(self, record: logging.LogRecord) -> str:
        return redact_secrets(super().format(record))


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Attach a handler to the ``tamma`` logger.

    Idempotent: handlers installed by a previous call are replaced.
    """
    logger = logging.getLogger("tamma")
    logger.setLevel(config.level.upper())

    for existing in list(logger.handlers):
        if getattr(existing, "_tamma_handler", False):
            logger.removeHandler(existing)
            existing.close()

    handler: logging.Handler
    if config.file:
        path = Path(config.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    else:
        handler = logging.StreamHandler()

    formatter: logging.Formatter = (
        JSONFormatter() if config.structured else RedactingFormatter(_FORMAT)
    )
    handler.setFormatter(formatter)
    handler._tamma_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger
