import uuid
from datetime import datetime, timedelta, timezone

import pytest
from aiohttp.test_utils import TestClient, TestServer

from waferalign.logs.live import (
    ActiveOperation,
    DashboardLogEntry,
    DashboardLogManager,
    LogQuery,
    convert_to_dashboard_entry,
    create_dashboard_routes,
)
from waferalign.logs.metrics import MetricsCollector


def make_manager(max_entries=1000):
    return DashboardLogManager(MetricsCollector(True), max_entries)


def make_entry(message="Test message", level="INFO", **kwargs):
    return DashboardLogEntry(level=level, message=message, **kwargs)


def test_dashboard_log_manager():
    manager = make_manager()
    manager.add_log_entry(
        make_entry(algorithm="ORB", execution_time_ms=25.0, confidence=0.85)
    )
    logs = manager.get_logs(LogQuery(level="INFO", limit=10))
    assert len(logs) == 1
    assert logs[0].message == "Test message"


def test_convert_to_dashboard_entry():
    fields = {"algorithm": "ORB", "execution_time_ms": 23.5}
    entry = convert_to_dashboard_entry("INFO", "Algorithm completed", uuid.uuid4(), fields)
    assert entry.level == "INFO"
    assert entry.message == "Algorithm completed"
    assert entry.algorithm == "ORB"
    assert entry.execution_time_ms == 23.5


def test_convert_error_level_uses_message():
    entry = convert_to_dashboard_entry("ERROR", "boom", None, {"error": "other"})
    assert entry.error == "boom"
    other = convert_to_dashboard_entry("WARN", "careful", None, {"error": "disk"})
    assert other.error == "disk"
    assert other.metadata == {"error": "disk"}


def test_convert_ignores_wrong_types():
    entry = convert_to_dashboard_entry("INFO", "m", None, {"algorithm": 3, "confidence": "x"})
    assert entry.algorithm is None
    assert entry.confidence is None


def test_max_entries_trims_oldest():
    manager = make_manager(max_entries=3)
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for index in range(5):
        manager.add_log_entry(make_entry(f"m{index}", timestamp=base + timedelta(seconds=index)))
    messages = [e.message for e in manager.get_logs()]
    assert messages == ["m4", "m3", "m2"]


def test_filters_level_and_algorithm_case_insensitive():
    manager = make_manager()
    manager.add_log_entry(make_entry("a", level="INFO", algorithm="ORB"))
    manager.add_log_entry(make_entry("b", level="ERROR", algorithm="SIFT"))
    manager.add_log_entry(make_entry("c", level="info"))
    assert {e.message for e in manager.get_logs(LogQuery(level="Info"))} == {"a", "c"}
    assert [e.message for e in manager.get_logs(LogQuery(algorithm="orb"))] == ["a"]


def test_filters_correlation_and_time_range():
    manager = make_manager()
    cid = uuid.uuid4()
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    manager.add_log_entry(make_entry("early", timestamp=base, correlation_id=cid))
    manager.add_log_entry(make_entry("late", timestamp=base + timedelta(hours=2)))
    assert [e.message for e in manager.get_logs(LogQuery(correlation_id=cid))] == ["early"]
    query = LogQuery(start_time=base + timedelta(hours=1))
    assert [e.message for e in manager.get_logs(query)] == ["late"]
    query = LogQuery(end_time=base)
    assert [e.message for e in manager.get_logs(query)] == ["early"]


def test_logs_sorted_newest_first_with_limit():
    manager = make_manager()
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for index in range(4):
        manager.add_log_entry(make_entry(f"m{index}", timestamp=base + timedelta(minutes=index)))
    logs = manager.get_logs(LogQuery(limit=2))
    assert [e.message for e in logs] == ["m3", "m2"]


def test_operation_lifecycle():
    manager = make_manager()
    cid = uuid.uuid4()
    manager.start_operation(cid, ActiveOperation(cid, "alignment", "ORB", current_stage="start"))
    manager.update_operation_stage(cid, "matching")
    ops = manager.active_operations()
    assert len(ops) == 1
    assert ops[0].current_stage == "matching"
    manager.complete_operation(cid)
    assert manager.active_operations() == []


def test_live_metrics():
    collector = MetricsCollector(True)
    collector.record("ORB_execution", 0.02, metadata={"success": True, "confidence": 0.8})
    collector.record("ORB_execution", 0.04, metadata={"success": False})
    manager = DashboardLogManager(collector, 100)
    cid = uuid.uuid4()
    manager.start_operation(cid, ActiveOperation(cid, "alignment", "ORB"))
    manager.add_log_entry(make_entry("bad", level="ERROR"))
    manager.add_log_entry(make_entry("fine"))

    snapshot = manager.get_live_metrics()
    assert set(snapshot.algorithm_stats) == {"ORB"}
    orb = snapshot.algorithm_stats["ORB"]
    assert orb.executions_last_hour == 2
    assert orb.success_rate == pytest.approx(50.0)
    assert orb.current_load == 1
    assert orb.average_execution_time_ms == pytest.approx(30.0)
    assert len(snapshot.recent_performance) == 2
    assert snapshot.system_health.log_entries_per_second == pytest.approx(2 / 300)
    assert snapshot.system_health.active_correlations == 1
    assert snapshot.system_health.error_rate_last_hour == pytest.approx(50.0)
    assert snapshot.to_dict()["algorithm_stats"]["ORB"]["current_load"] == 1


def test_log_query_from_query():
    cid = uuid.uuid4()
    query = LogQuery.from_query(
        {"level": "INFO", "correlation_id": str(cid), "limit": "5", "start_time": "2024-01-01T00:00:00Z"}
    )
    assert query.level == "INFO"
    assert query.correlation_id == cid
    assert query.limit == 5
    assert query.start_time == datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "params", [{"limit": "abc"}, {"limit": "-1"}, {"correlation_id": "nope"}, {"end_time": "x"}]
)
def test_log_query_rejects_malformed(params):
    with pytest.raises(ValueError):
        LogQuery.from_query(params)


def test_entry_to_dict():
    cid = uuid.uuid4()
    entry = make_entry(correlation_id=cid, algorithm="ORB")
    data = entry.to_dict()
    assert data["correlation_id"] == str(cid)
    assert data["id"] == str(entry.id)
    assert data["algorithm"] == "ORB"


@pytest.mark.asyncio
async def test_subscribe_receives_entries():
    manager = make_manager()
    queue = manager.subscribe()
    manager.add_log_entry(make_entry("live"))
    received = queue.get_nowait()
    assert received.message == "live"
    manager.unsubscribe(queue)
    manager.add_log_entry(make_entry("after"))
    assert queue.empty()


@pytest.mark.asyncio
async def test_routes():
    manager = make_manager()
    manager.add_log_entry(make_entry("hello", algorithm="ORB"))
    cid = uuid.uuid4()
    manager.start_operation(cid, ActiveOperation(cid, "alignment"))
    app = create_dashboard_routes(manager)
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/api/logs", params={"level": "info"})
        assert resp.status == 200
        body = await resp.json()
        assert [item["message"] for item in body] == ["hello"]

        resp = await client.get("/api/logs", params={"limit": "bad"})
        assert resp.status == 400

        resp = await client.get("/api/metrics/live")
        metrics = await resp.json()
        assert metrics["system_health"]["active_correlations"] == 1

        resp = await client.get("/api/operations")
        ops = await resp.json()
        assert ops[0]["correlation_id"] == str(cid)

        resp = await client.post(f"/api/operations/{cid}")
        assert resp.status == 200