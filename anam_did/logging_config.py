"""Logging configuration for the trust engine.

Settings (``ANAM_`` environment prefix, see ``config.TrustSettings``):
    LOG_FORMAT -- ``json`` for structured JSON output, ``text`` for human-readable (default).
    LOG_LEVEL  -- Python log level name (default: ``INFO``).
"""

import logging
import traceback
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

from .config import settings

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _resolve_level(name: Optional[str]) -> int:
    numeric = getattr(logging, (name or settings.LOG_LEVEL).upper(), None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per log line.

    Identity fields passed through ``extra`` (did, vc_id, session_id, stage)
    become top-level keys; exceptions become a ``traceback`` list.
    """

    def __init__(self) -> None:
        super().__init__()
        self._inner = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        if record.exc_info and record.exc_info[1] is not None:
            record.traceback = traceback.format_exception(*record.exc_info)
            record.exc_info = None
            record.exc_text = None
        # attributes set through ``extra`` are emitted by JsonFormatter itself
        return self._inner.format(record)


def setup_logging(log_format: Optional[str] = None, level: Optional[str] = None) -> None:
    """Configure the root logger from LOG_FORMAT / LOG_LEVEL (arguments override)."""
    numeric_level = _resolve_level(level)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(numeric_level)

    if (log_format or settings.LOG_FORMAT).lower() == "json":
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root.addHandler(handler)
