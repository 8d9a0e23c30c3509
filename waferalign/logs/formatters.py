"""Log formatting for the console, structured files and the dashboard."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LEVELS_BY_NAME = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_COLORS = {
    "ERROR": "\x1b[31m",
    "WARN": "\x1b[33m",
    "INFO": "\x1b[32m",
    "DEBUG": "\x1b[36m",
    "TRACE": "\x1b[35m",
}
_RESET = "\x1b[0m"


def level_from_string(level_str: str) -> int | None:
    """Return the numeric level for a name such as ``"debug"``, or None."""
    return _LEVELS_BY_NAME.get(level_str.lower())


def level_to_string(level: int) -> str:
    """Return the lower-case name of a numeric level."""
    if level >= logging.ERROR:
        return "error"
    if level >= logging.WARNING:
        return "warn"
    if level >= logging.INFO:
        return "info"
    if level >= logging.DEBUG:
        return "debug"
    return "trace"


def should_log(current_level: int, configured_level: str) -> bool:
    """True if ``current_level`` passes the configured threshold; unknown thresholds pass all."""
    threshold = level_from_string(configured_level)
    if threshold is None:
        return True
    return current_level >= threshold


class ConsoleFormatter(logging.Formatter):
    """Readable single-line console output with optional colours and timestamps."""

    def __init__(
        self,
        with_colors: bool = True,
        with_timestamps: bool = True,
        compact: bool = False,
    ) -> None:
        super().__init__()
        self.with_colors = with_colors
        self.with_timestamps = with_timestamps
        self.compact = compact

    def format(self, record: logging.LogRecord) -> str:
        parts: list[str] = []

        if self.with_timestamps:
            stamp = datetime.fromtimestamp(record.created)
            parts.append(f"{stamp.strftime('%H:%M:%S')}.{int(record.msecs):03d}")

        name = level_to_string(record.levelno).upper()
        label = name.ljust(5)
        if self.with_colors:
            label = f"{_COLORS[name]}{label}{_RESET}"
        parts.append(f"[{label}]")

        if not self.compact and record.name:
            parts.append(f"{record.name.rsplit('.', 1)[-1]}:")

        spans = getattr(record, "spans", None)
        if spans:
            spans = list(spans)
            parts.append(f"[{spans[-1]}]" if self.compact else f"[{'::'.join(spans)}]")

        parts.append(record.getMessage())

        fields = getattr(record, "fields", None)
        if fields:
            parts.append(" ".join(f"{key}={value}" for key, value in fields.items()))

        text = " ".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


@dataclass
class PerformanceData:
    """Performance-related values pulled out of a log event's fields."""

    operation: str | None = None
    duration_ms: float | None = None
    algorithm: str | None = None
    patch_location: tuple[int, int] | None = None
    keypoints: int | None = None
    matches: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "duration_ms": self.duration_ms,
            "algorithm": self.algorithm,
            "patch_location": list(self.patch_location) if self.patch_location else None,
            "keypoints": self.keypoints,
            "matches": self.matches,
        }


@dataclass
class StructuredLogEntry:
    """A log event with its fields, ready for structured output."""

    timestamp: datetime
    level: str
    target: str
    message: str
    span: str | None = None
    correlation_id: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    performance_data: PerformanceData | None = None


class DashboardFormatter:
    """Shapes structured log entries for live dashboard display."""

    def __init__(self, include_performance_data: bool = True) -> None:
        self.include_performance_data = include_performance_data

    def format_for_dashboard(self, entry: StructuredLogEntry) -> dict[str, Any]:
        timestamp = entry.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        result: dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": entry.level,
            "message": entry.message,
            "span": entry.span,
            "correlation_id": entry.correlation_id,
        }
        for key in ("algorithm", "execution_time_ms", "confidence"):
            if key in entry.fields:
                result[key] = entry.fields[key]
        if self.include_performance_data and entry.performance_data is not None:
            result["performance"] = entry.performance_data.to_dict()
        return result


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _as_unsigned(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def format_duration(duration_ms: float) -> str:
    """Render a duration in milliseconds as microseconds, milliseconds or seconds."""
    if duration_ms < 1.0:
        return f"{duration_ms * 1000.0:.2f}μs"
    if duration_ms < 1000.0:
        return f"{duration_ms:.2f}ms"
    return f"{duration_ms / 1000.0:.2f}s"


def extract_performance_data(fields: Mapping[str, Any]) -> PerformanceData | None:
    """Collect performance values from log fields, or None if there are none."""
    if not any(key in fields for key in ("execution_time_ms", "algorithm", "keypoints_detected")):
        return None

    x = _as_unsigned(fields.get("patch_x"))
    y = _as_unsigned(fields.get("patch_y"))
    return PerformanceData(
        operation=_as_str(fields.get("operation")),
        duration_ms=_as_float(fields.get("execution_time_ms")),
        algorithm=_as_str(fields.get("algorithm")),
        patch_location=(x, y) if x is not None and y is not None else None,
        keypoints=_as_unsigned(fields.get("keypoints_detected")),
        matches=_as_unsigned(fields.get("filtered_matches")),
    )


def create_compact_message(operation: str, duration_ms: float, success: bool) -> str:
    """One-line status message for high-frequency operations."""
    status = "✓" if success else "✗"
    return f"{status} {operation} ({format_duration(duration_ms)})"


def _is_control(char: str) -> bool:
    code = ord(char)
    return code < 0x20 or 0x7F <= code <= 0x9F


def sanitize_message(message: str) -> str:
    """Keep printable ASCII and whitespace, dropping everything else."""
    return "".join(
        char
        for char in message
        if (char.isascii() and not _is_control(char)) or char.isspace()
    )