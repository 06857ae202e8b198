"""
Structured JSON logging configuration for the Officers Log service.

All log records are emitted as single-line JSON objects to both
``server.log`` and stderr.

Usage::

    from officers_log.utils.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("callback committed", extra={"actor_id": aid, "request_id": rid})

For code that works on one character at a time::

    from officers_log.utils.logging_config import get_logger, ActorAdapter

    raw = get_logger("officers_log.callback")
    logger = ActorAdapter(raw, actor_id="abc-123")
    logger.info("offer sent")        # automatically includes actor_id
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

class JSONFormatter(logging.Formatter):
    """Emits each record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Merge extra fields (actor_id, request_id, etc.)
        for key in ("actor_id", "user_id", "request_id", "event_type",
                     "action", "metadata"):
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ---------------------------------------------------------------------------
# ActorAdapter: attaches actor_id to every log call
# ---------------------------------------------------------------------------

class ActorAdapter(logging.LoggerAdapter):
    """Logger adapter that injects ``actor_id`` into every record."""

    def __init__(self, logger: logging.Logger, actor_id: str):
        super().__init__(logger, {"actor_id": actor_id})

    def process(
        self,
        msg: str,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        extra.update(self.extra)
        return msg, kwargs


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_CONFIGURED = False


def setup_logging(log_file: str = "server.log", level: int = logging.INFO) -> None:
    """Configure the root ``officers_log`` logger with JSON handlers.

    Safe to call multiple times; only the first call has effect.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    root = logging.getLogger("officers_log")
    root.setLevel(level)
    root.propagate = False

    formatter = JSONFormatter()

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setFormatter(formatter)
    root.addHandler(fh)

    # Stderr handler for docker / systemd journal visibility
    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(formatter)
    sh.setLevel(logging.WARNING)
    root.addHandler(sh)


def get_logger(name: str = "officers_log") -> logging.Logger:
    """Return a child logger under the ``officers_log`` namespace.

    Automatically calls :func:`setup_logging` on first use.
    """
    setup_logging()
    if name.startswith("officers_log"):
        return logging.getLogger(name)
    return logging.getLogger(f"officers_log.{name}")
