"""Live log and metrics feed for the dashboard: filtering, operations and streaming."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from aiohttp import WSMsgType, web

from waferalign.logs.metrics import MetricsCollector, PerformanceMeasurement

logger = logging.getLogger(__name__)

BROADCAST_CAPACITY = 1000
DEFAULT_LOG_LIMIT = 1000
TRACKED_ALGORITHMS = ("ORB", "SIFT", "AKAZE", "Template", "ECC")
RECENT_WINDOW = timedelta(minutes=5)
ERROR_WINDOW = timedelta(hours=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(text: str) -> datetime:
    value = text.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


@dataclass
class DashboardLogEntry:
    """A log event as shown on the dashboard."""

    level: str
    message: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: datetime = field(default_factory=_utc_now)
    correlation_id: uuid.UUID | None = None
    algorithm: str | None = None
    execution_time_ms: float | None = None
    confidence: float | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "algorithm": self.algorithm,
            "execution_time_ms": self.execution_time_ms,
            "confidence": self.confidence,
            "error": self.error,
            "metadata": dict(self.metadata),
        }


@dataclass
class ActiveOperation:
    """An operation that is currently running."""

    correlation_id: uuid.UUID
    operation_type: str
    algorithm: str | None = None
    started_at: datetime = field(default_factory=_utc_now)
    current_stage: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "correlation_id": str(self.correlation_id),
            "operation_type": self.operation_type,
            "algorithm": self.algorithm,
            "started_at": self.started_at.isoformat(),
            "current_stage": self.current_stage,
        }


@dataclass
class AlgorithmActivity:
    """Recent execution figures and current load of one algorithm."""

    name: str
    executions_last_hour: int
    average_execution_time_ms: float
    success_rate: float
    current_load: int


@dataclass
class SystemHealth:
    log_entries_per_second: float
    active_correlations: int
    memory_usage_mb: float
    error_rate_last_hour: float


@dataclass
class LiveMetricsSnapshot:
    """Everything the live metrics view shows at one moment."""

    timestamp: datetime
    active_operations: list[ActiveOperation]
    recent_performance: list[PerformanceMeasurement]
    algorithm_stats: dict[str, AlgorithmActivity]
    system_health: SystemHealth

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "active_operations": [op.to_dict() for op in self.active_operations],
            "recent_performance": [m.to_dict() for m in self.recent_performance],
            "algorithm_stats": {
                name: asdict(stats) for name, stats in self.algorithm_stats.items()
            },
            "system_health": asdict(self.system_health),
        }


@dataclass
class LogQuery:
    """Filters applied to stored log entries."""

    level: str | None = None
    algorithm: str | None = None
    correlation_id: uuid.UUID | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    limit: int | None = None

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> LogQuery:
        """Parse URL query parameters; raise ValueError on malformed values."""
        limit = None
        if "limit" in query:
            limit = int(query["limit"])
            if limit < 0:
                raise ValueError(f"limit must not be negative: {limit}")
        return cls(
            level=query.get("level"),
            algorithm=query.get("algorithm"),
            correlation_id=(
                uuid.UUID(query["correlation_id"]) if "correlation_id" in query else None
            ),
            start_time=_parse_time(query["start_time"]) if "start_time" in query else None,
            end_time=_parse_time(query["end_time"]) if "end_time" in query else None,
            limit=limit,
        )


def _deliver(queue: asyncio.Queue, entry: DashboardLogEntry) -> None:
    """Put an entry on a subscriber queue, dropping the oldest one when full."""
    if queue.full():
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
    queue.put_nowait(entry)


class DashboardLogManager:
    """Keeps recent log entries and running operations, and streams new entries."""

    def __init__(self, metrics_collector: MetricsCollector, max_entries: int = 1000) -> None:
        self.metrics_collector = metrics_collector
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: list[DashboardLogEntry] = []
        self._operations: dict[uuid.UUID, ActiveOperation] = {}
        self._subscribers: dict[asyncio.Queue, asyncio.AbstractEventLoop | None] = {}

    def add_log_entry(self, entry: DashboardLogEntry) -> None:
        """Store an entry, trimming the oldest beyond ``max_entries``, and broadcast it."""
        with self._lock:
            self._entries.append(entry)
            excess = len(self._entries) - self.max_entries
            if excess > 0:
                del self._entries[:excess]
            subscribers = list(self._subscribers.items())

        if not subscribers:
            logger.warning("Failed to broadcast log entry: no active subscribers")
            return

        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        for queue, loop in subscribers:
            if loop is None or loop is current:
                _deliver(queue, entry)
            elif not loop.is_closed():
                loop.call_soon_threadsafe(_deliver, queue, entry)

    def start_operation(self, correlation_id: uuid.UUID, operation: ActiveOperation) -> None:
        with self._lock:
            self._operations[correlation_id] = operation

    def update_operation_stage(self, correlation_id: uuid.UUID, stage: str) -> None:
        with self._lock:
            operation = self._operations.get(correlation_id)
            if operation is not None:
                operation.current_stage = stage

    def complete_operation(self, correlation_id: uuid.UUID) -> None:
        with self._lock:
            self._operations.pop(correlation_id, None)

    def active_operations(self) -> list[ActiveOperation]:
        with self._lock:
            return list(self._operations.values())

    def get_logs(self, query: LogQuery | None = None) -> list[DashboardLogEntry]:
        """Entries matching the query, newest first, at most ``limit`` (default 1000)."""
        query = query if query is not None else LogQuery()
        with self._lock:
            entries = list(self._entries)

        if query.level is not None:
            wanted = query.level.lower()
            entries = [e for e in entries if e.level.lower() == wanted]
        if query.algorithm is not None:
            wanted = query.algorithm.lower()
            entries = [
                e for e in entries if e.algorithm is not None and e.algorithm.lower() == wanted
            ]
        if query.correlation_id is not None:
            entries = [e for e in entries if e.correlation_id == query.correlation_id]
        if query.start_time is not None:
            entries = [e for e in entries if e.timestamp >= query.start_time]
        if query.end_time is not None:
            entries = [e for e in entries if e.timestamp <= query.end_time]

        entries.sort(key=lambda e: e.timestamp, reverse=True)
        limit = query.limit if query.limit is not None else DEFAULT_LOG_LIMIT
        return entries[:limit]

    def get_live_metrics(self) -> LiveMetricsSnapshot:
        """Snapshot of running operations, recent timings and system health."""
        operations = self.active_operations()
        now = _utc_now()
        recent = [
            m
            for m in self.metrics_collector.all_measurements()
            if m.timestamp >= now - RECENT_WINDOW
        ]

        stats: dict[str, AlgorithmActivity] = {}
        for name in TRACKED_ALGORITHMS:
            metrics = self.metrics_collector.get_algorithm_metrics(name)
            if metrics is None:
                continue
            total = metrics.total_executions
            stats[name] = AlgorithmActivity(
                name=name,
                executions_last_hour=total,
                average_execution_time_ms=metrics.mean_execution_time_ms,
                success_rate=(
                    metrics.successful_executions / total * 100.0 if total > 0 else 0.0
                ),
                current_load=sum(1 for op in operations if op.algorithm == name),
            )

        with self._lock:
            total_entries = len(self._entries)
            errors = sum(
                1
                for e in self._entries
                if e.timestamp >= now - ERROR_WINDOW and e.level == "ERROR"
            )

        health = SystemHealth(
            log_entries_per_second=len(recent) / RECENT_WINDOW.total_seconds(),
            active_correlations=len(operations),
            memory_usage_mb=0.0,
            error_rate_last_hour=errors / total_entries * 100.0 if total_entries else 0.0,
        )
        return LiveMetricsSnapshot(
            timestamp=_utc_now(),
            active_operations=operations,
            recent_performance=recent,
            algorithm_stats=stats,
            system_health=health,
        )

    def subscribe(self) -> asyncio.Queue:
        """Return a queue that receives every entry added from now on."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=BROADCAST_CAPACITY)
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        with self._lock:
            self._subscribers[queue] = loop
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers.pop(queue, None)


async def _drain(ws: web.WebSocketResponse) -> None:
    async for message in ws:
        if message.type in (WSMsgType.CLOSE, WSMsgType.ERROR):
            break


def create_dashboard_routes(log_manager: DashboardLogManager) -> web.Application:
    """Web application serving logs, live metrics and operations of ``log_manager``."""

    async def get_logs(request: web.Request) -> web.Response:
        try:
            query = LogQuery.from_query(request.query)
        except ValueError as exc:
            raise web.HTTPBadRequest(text=f"Invalid query: {exc}") from exc
        return web.json_response([e.to_dict() for e in log_manager.get_logs(query)])

    async def live_logs(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        queue = log_manager.subscribe()
        reader = asyncio.ensure_future(_drain(ws))
        try:
            while not ws.closed:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {getter, reader}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter not in done:
                    getter.cancel()
                    break
                entry = getter.result()
                try:
                    text = json.dumps(entry.to_dict(), default=str)
                except (TypeError, ValueError) as exc:
                    logger.warning("Failed to serialize log entry: %s", exc)
                    continue
                try:
                    await ws.send_str(text)
                except (ConnectionError, RuntimeError) as exc:
                    logger.warning("WebSocket send failed: %s", exc)
                    break
        finally:
            reader.cancel()
            log_manager.unsubscribe(queue)
        return ws

    async def live_metrics(request: web.Request) -> web.Response:
        return web.json_response(log_manager.get_live_metrics().to_dict())

    async def operations(request: web.Request) -> web.Response:
        return web.json_response([op.to_dict() for op in log_manager.active_operations()])

    async def update_operation(request: web.Request) -> web.Response:
        return web.Response(status=200)

    app = web.Application()
    app.router.add_get("/api/logs", get_logs)
    app.router.add_get("/api/logs/live", live_logs)
    app.router.add_get("/api/metrics/live", live_metrics)
    app.router.add_get("/api/operations", operations)
    app.router.add_post("/api/operations/{correlation_id}", update_operation)
    return app


def convert_to_dashboard_entry(
    level: str,
    message: str,
    correlation_id: uuid.UUID | None,
    fields: dict[str, Any],
) -> DashboardLogEntry:
    """Build a dashboard entry from a log event and its structured fields."""
    algorithm = fields.get("algorithm")
    if level == "ERROR":
        error: str | None = message
    else:
        raw_error = fields.get("error")
        error = raw_error if isinstance(raw_error, str) else None
    return DashboardLogEntry(
        level=level,
        message=message,
        correlation_id=correlation_id,
        algorithm=algorithm if isinstance(algorithm, str) else None,
        execution_time_ms=_as_float(fields.get("execution_time_ms")),
        confidence=_as_float(fields.get("confidence")),
        error=error,
        metadata=fields,
    )