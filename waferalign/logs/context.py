"""Logging set-up, correlation ids, patch context and per-test log files."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from waferalign.logs.config import LoggingConfig
from waferalign.logs.formatters import ConsoleFormatter, level_from_string, level_to_string

LOGGER_NAME = "waferalign"
LEVEL_ENV_VAR = "WAFERALIGN_LOG"
LOG_FILE_NAME = "alignment.log"

logger = logging.getLogger(__name__)

_CORRELATION_ID: ContextVar[uuid.UUID | None] = ContextVar(
    "waferalign_correlation_id", default=None
)


@dataclass
class PatchContext:
    """Where a patch came from, for spatial logging."""

    extracted_from: tuple[int, int]
    patch_size: tuple[int, int]
    source_image_size: tuple[int, int]
    variance: float


_PATCH_CONTEXT: ContextVar[PatchContext | None] = ContextVar(
    "waferalign_patch_context", default=None
)


@dataclass
class LogEntry:
    """One entry of a per-test algorithm log."""

    timestamp: str
    level: str
    message: str
    fields: dict[str, str] = field(default_factory=dict)


class _JsonFormatter(logging.Formatter):
    """One JSON object per line, for log files."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": level_to_string(record.levelno).upper(),
            "target": record.name,
            "message": record.getMessage(),
            "spans": list(getattr(record, "spans", None) or []),
            "fields": dict(getattr(record, "fields", None) or {}),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _LocatedConsoleFormatter(ConsoleFormatter):
    """Console output that names the source file and line of each event."""

    def format(self, record: logging.LogRecord) -> str:
        first, sep, rest = super().format(record).partition("\n")
        return f"{first} ({record.pathname}:{record.lineno}){sep}{rest}"


_installed_handlers: list[logging.Handler] = []


def _resolve_level(config: LoggingConfig) -> int:
    from_env = os.environ.get(LEVEL_ENV_VAR)
    if from_env:
        level = level_from_string(from_env.strip())
        if level is not None:
            return level
    level = level_from_string(config.global_level)
    return level if level is not None else logging.INFO


def init_logging(config: LoggingConfig) -> None:
    """Configure the package logger from ``config``, replacing earlier set-up.

    The ``WAFERALIGN_LOG`` environment variable, when it names a valid level,
    takes precedence over ``config.global_level``.
    """
    package_logger = logging.getLogger(LOGGER_NAME)
    while _installed_handlers:
        handler = _installed_handlers.pop()
        package_logger.removeHandler(handler)
        handler.close()

    package_logger.setLevel(_resolve_level(config))

    if config.console_output:
        stream = sys.stdout
        isatty = getattr(stream, "isatty", None)
        colors = bool(isatty()) if callable(isatty) else False
        formatter_cls = (
            _LocatedConsoleFormatter if config.include_file_location else ConsoleFormatter
        )
        console = logging.StreamHandler(stream)
        console.setFormatter(formatter_cls(with_colors=colors))
        _installed_handlers.append(console)

    if config.log_directory is not None:
        directory = Path(config.log_directory)
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            directory / LOG_FILE_NAME, when="midnight", encoding="utf-8"
        )
        file_handler.setFormatter(_JsonFormatter())
        _installed_handlers.append(file_handler)

    for handler in _installed_handlers:
        package_logger.addHandler(handler)

    logger.info("Logging system initialized with config: %r", config)


def set_correlation_id(id: uuid.UUID) -> None:
    """Set the correlation id of the current context."""
    _CORRELATION_ID.set(id)


def get_correlation_id() -> uuid.UUID | None:
    return _CORRELATION_ID.get()


def new_correlation_id() -> uuid.UUID:
    """Generate a fresh correlation id, make it current and return it."""
    correlation_id = uuid.uuid4()
    set_correlation_id(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    _CORRELATION_ID.set(None)


def set_patch_context(context: PatchContext) -> None:
    _PATCH_CONTEXT.set(context)


def get_patch_context() -> PatchContext | None:
    return _PATCH_CONTEXT.get()


def clear_patch_context() -> None:
    _PATCH_CONTEXT.set(None)


def write_algorithm_log(
    log_file_path: Path | str,
    algorithm_name: str,
    test_id: str,
    correlation_id: uuid.UUID | None,
    logs: Iterable[LogEntry],
) -> None:
    """Write a per-test log file with a header and every entry, replacing any old file."""
    path = Path(log_file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as out:
        out.write("=== Algorithm Execution Log ===\n")
        out.write(f"Test ID: {test_id}\n")
        out.write(f"Algorithm: {algorithm_name}\n")
        if correlation_id is not None:
            out.write(f"Correlation ID: {correlation_id}\n")
        out.write(f"Timestamp: {datetime.now(timezone.utc).isoformat()}\n")
        out.write("================================\n\n")
        for entry in logs:
            out.write(f"[{entry.timestamp}] {entry.level}: {entry.message}\n")
            for key, value in entry.fields.items():
                out.write(f"  {key}: {value}\n")
            out.write("\n")