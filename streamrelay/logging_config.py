"""Structured logging configuration for StreamRelay.

Environment variables:
    SR_LOG_FORMAT  -- ``json`` for structured JSON output, ``text`` for human-readable (default).
    SR_LOG_LEVEL   -- Python log level name (default: ``INFO``).

Relay records carry their routing context as ``extra`` fields: ``topic`` for
broadcaster subscriptions, ``channel_key`` for channel sessions, ``attempt``
for client reconnects and ``dropped`` for session backpressure. JSON output
lifts them into the object; text output appends them as ``key=value`` pairs.
"""

from __future__ import annotations

import logging
import os
import traceback
from typing import Any

_REQUEST_FIELDS = ("request_id", "path", "method", "status_code", "duration_ms")
_RELAY_FIELDS = ("topic", "channel_key", "attempt", "dropped")
_STRUCTURED_FIELDS = _REQUEST_FIELDS + _RELAY_FIELDS

# The request middleware already logs one line per request.
_QUIET_LOGGERS = ("uvicorn.access",)

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _is_json_mode(log_format: str | None = None) -> bool:
    """Return True when structured JSON logging is requested."""
    value = log_format or os.environ.get("SR_LOG_FORMAT", "text")
    return value.lower() == "json"


def _get_log_level(log_level: str | None = None) -> int:
    """Return the numeric log level from SR_LOG_LEVEL (default INFO)."""
    name = (log_level or os.environ.get("SR_LOG_LEVEL", "INFO")).upper()
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric


def _relay_context(record: logging.LogRecord) -> dict[str, Any]:
    context: dict[str, Any] = {}
    for key in _RELAY_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            context[key] = value
    return context


class StructuredJsonFormatter(logging.Formatter):
    """JSON formatter that emits one JSON object per log line.

    Uses ``pythonjsonlogger`` under the hood but lifts the request fields
    and the relay context (topic, channel_key, attempt, dropped) into the
    output when they are present on the LogRecord.
    """

    def __init__(self) -> None:
        super().__init__()
        from pythonjsonlogger.json import JsonFormatter

        self._inner = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        extras: dict[str, Any] = {}
        for key in _STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                extras[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            extras["traceback"] = traceback.format_exception(*record.exc_info)
            # Keep the inner formatter from appending free-form traceback text.
            record.exc_info = None
            record.exc_text = None

        for k, v in extras.items():
            setattr(record, k, v)

        return self._inner.format(record)


class RelayTextFormatter(logging.Formatter):
    """Human-readable formatter that appends the relay context.

    ``Listener added`` logged with ``extra={"topic": "resource:42"}`` renders
    as ``... Listener added (topic=resource:42)``.
    """

    def __init__(self) -> None:
        super().__init__(_TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        line = super().format(record)
        context = _relay_context(record)
        if not context:
            return line
        pairs = " ".join(f"{k}={v}" for k, v in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} ({pairs}){sep}{tail}"


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """Configure the root logger.

    Explicit arguments win over SR_LOG_FORMAT and SR_LOG_LEVEL.
    """
    level = _get_log_level(log_level)
    root = logging.getLogger()
    root.setLevel(level)

    # Remove any existing handlers so we don't double-log during tests.
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if _is_json_mode(log_format):
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(RelayTextFormatter())

    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def log_startup_info() -> None:
    """Emit a structured startup log line with relay configuration."""
    import streamrelay
    from streamrelay.config import settings

    logger = logging.getLogger("streamrelay")
    logger.info(
        "StreamRelay started",
        extra={
            "version": streamrelay.__version__,
            "broadcaster_type": settings.broadcaster_type,
            "max_listeners": settings.max_listeners,
            "keep_alive_seconds": settings.keep_alive_seconds,
            "heartbeat_interval": settings.heartbeat_interval,
            "session_queue_size": settings.session_queue_size,
            "channel_key_prefix": settings.channel_key_prefix,
            "channel_key_suffix": settings.channel_key_suffix,
            "reconnect_base_delay_ms": settings.reconnect_base_delay_ms,
            "reconnect_max_delay_ms": settings.reconnect_max_delay_ms,
        },
    )
