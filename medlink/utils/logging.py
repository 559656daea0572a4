"""Logging setup and structured connectivity events.

Uses stdlib logging only. ``log_event`` attaches structured fields to a
record; ``StructuredFormatter`` renders them as single-line JSON when the CLI
runs with ``--json-logs``.

Usage:
    from medlink.utils.logging import log_event

    log_event(logger, "status.online_changed", is_online=True, queued=3)
"""

from __future__ import annotations

import json
import logging
from typing import Any

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    Outputs timestamp, level, logger, message, plus the event/metrics/metadata
    fields set by ``log_event``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if getattr(record, "event_type", None):
            entry["event"] = record.event_type  # type: ignore[attr-defined]
        if getattr(record, "metrics", None):
            entry["metrics"] = record.metrics  # type: ignore[attr-defined]
        if getattr(record, "metadata", None):
            entry["metadata"] = record.metadata  # type: ignore[attr-defined]

        if record.exc_info and record.exc_info[1]:
            entry["error"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


def log_event(
    log: logging.Logger,
    event_type: str,
    level: int = logging.INFO,
    message: str | None = None,
    **fields: Any,
) -> None:
    """Log a structured event.

    Args:
        log: Logger instance.
        event_type: Dotted event name (e.g., "duplex.reconnect_scheduled").
        level: Log level.
        message: Optional human-readable message. Defaults to event_type.
        **fields: Numeric values go to metrics, everything else to metadata.
    """
    metrics = {
        k: v for k, v in fields.items() if isinstance(v, (int, float)) and not isinstance(v, bool)
    }
    metadata = {k: v for k, v in fields.items() if k not in metrics}

    log.log(
        level,
        message or event_type,
        extra={
            "event_type": event_type,
            "metrics": metrics or None,
            "metadata": metadata or None,
        },
    )


def setup_logging(verbose: bool = False, json_output: bool = False) -> None:
    """Configure root logging for the CLI.

    Args:
        verbose: If True, set DEBUG level; otherwise INFO.
        json_output: Emit single-line JSON records instead of text.
    """
    level = logging.DEBUG if verbose else logging.INFO
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    logging.basicConfig(level=level, handlers=[handler], force=True)

    # urllib3 logs every connection retry at DEBUG
    if not verbose:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("websocket").setLevel(logging.DEBUG if verbose else logging.WARNING)


__all__ = ["StructuredFormatter", "log_event", "setup_logging", "TEXT_FORMAT"]
