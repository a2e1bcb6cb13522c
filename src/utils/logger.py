"""
Logging setup for Session Stream using Python's standard logging
with JSON formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable, colored format for debugging
- logs/streams.jsonl: JSON format for session and generation lifecycle
- logs/errors.jsonl: JSON format for error tracking
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
import uuid

from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from api.middleware.request_context import get_request_context
from core.constants import (
    LOG_BACKUP_COUNT_ERRORS,
    LOG_BACKUP_COUNT_STREAMS,
    LOG_MAX_SIZE,
    LOGGER_ID_LENGTH,
    PROJECT_ROOT,
)


class StreamFilter(logging.Filter):
    """Filter to allow INFO and above for the stream log"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Filter to only allow ERROR and CRITICAL logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that colors the level and standardizes format.
    Format: HH:MM:SS [LEVEL] logger_name - message
    """

    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        level_fmt = f"{color}[{record.levelname}]{self.RESET}" if color else f"[{record.levelname}]"
        record.asctime = self.formatTime(record, "%H:%M:%S")

        # uvicorn access records: (client_addr, method, full_path, http_version, status_code)
        if record.name == "uvicorn.access" and record.args and len(record.args) == 5:
            client_addr, method, full_path, http_version, status_code = cast(tuple[Any, ...], record.args)
            status_num = int(status_code)
            status_color = self.GREEN if status_num < 400 else self.YELLOW if status_num < 500 else self.RED
            message = f'{client_addr} - "\x1b[1m{method}\x1b[0m {full_path} HTTP/{http_version}" {status_color}{status_code}{self.RESET}'
            return f"{record.asctime} {level_fmt} {record.name} - {message}"

        message = f"{record.asctime} {level_fmt} {record.name} - {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def configure_uvicorn_logging() -> None:
    """Route uvicorn's access and error loggers through the colored formatter."""
    formatter = ColoredConsoleFormatter()

    logging.getLogger("uvicorn").handlers = []

    for name in ("uvicorn.access", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        uv_logger.addHandler(handler)
        uv_logger.propagate = False


def setup_logging(name: str = "session-stream", debug: bool | None = None) -> logging.Logger:
    """
    Set up logging with console and rotating JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug logging (overrides DEBUG env var)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    logger.handlers = []

    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    # --- Console Handler (Human-readable) ---
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console_handler)

    # --- Stream Log Handler (JSON) ---
    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    stream_handler = logging.handlers.RotatingFileHandler(
        log_dir / "streams.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_STREAMS,
        encoding="utf-8",
    )
    stream_handler.setLevel(logging.INFO)
    stream_handler.addFilter(StreamFilter())
    stream_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(message)s %(session_id)s %(request_id)s %(chunks)s %(outcome)s",
            timestamp=True,
        )
    )
    logger.addHandler(stream_handler)

    # --- Error Log Handler (JSON) ---
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "errors.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_ERRORS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.addFilter(ErrorFilter())
    error_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(error_handler)

    return logger


class StreamLogger:
    """
    High-level logging interface for Session Stream.
    Wraps standard Python logging with context enrichment.
    """

    def __init__(self, name: str = "session-stream"):
        self.logger = setup_logging(name)
        self.instance_id = uuid.uuid4().hex[:LOGGER_ID_LENGTH]

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Enrich log arguments with request context."""
        kwargs.setdefault("instance_id", self.instance_id)

        if ctx := get_request_context():
            for key, value in ctx.to_log_context().items():
                kwargs.setdefault(key, value)

        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._enrich_context(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._enrich_context(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._enrich_context(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Error level logging with optional exception info"""
        self.logger.error(message, extra=self._enrich_context(kwargs), exc_info=exc_info)

    def log_generation(
        self,
        session_id: str,
        generation_id: str,
        outcome: str,
        chunks: int,
        duration_ms: float | None = None,
        subscribers: int | None = None,
    ) -> None:
        """
        Log a finished generation. Content is never logged, only counts.
        """
        msg_parts = [f"Generation {generation_id} for session {session_id} ended: {outcome}", f"[{chunks} chunks]"]
        if duration_ms is not None:
            msg_parts.append(f"[{duration_ms:.0f}ms]")
        if subscribers is not None:
            msg_parts.append(f"[{subscribers} subscribers]")

        extra_data: dict[str, Any] = {
            "generation": True,
            "session_id": session_id,
            "generation_id": generation_id,
            "outcome": outcome,
            "chunks": chunks,
        }
        if duration_ms is not None:
            extra_data["ms"] = int(duration_ms)
        if subscribers is not None:
            extra_data["subscribers"] = subscribers

        self.logger.info(" ".join(msg_parts), extra=self._enrich_context(extra_data))


# Global logger instance
logger = StreamLogger()
