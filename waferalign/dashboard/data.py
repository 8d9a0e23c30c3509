"""Loading and summarising visual-test results for the dashboard."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


def _string(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {value!r}")
    return value


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {value!r}")
    return float(value)


def _integer(value: Any, *, unsigned: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected an integer, got {value!r}")
    if unsigned and value < 0:
        raise ValueError(f"expected a non-negative integer, got {value}")
    return value


def _boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"expected a boolean, got {value!r}")
    return value


def _pair(value: Any, *, unsigned: bool) -> tuple[int, int]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError(f"expected a pair, got {value!r}")
    return (_integer(value[0], unsigned=unsigned), _integer(value[1], unsigned=unsigned))


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _success_rate(total: int, successes: int) -> float:
    return successes / total * 100.0 if total > 0 else 0.0


@dataclass
class PatchInfo:
    size: tuple[int, int]
    location: tuple[int, int]
    patch_path: str

    @property
    def size_label(self) -> str:
        return f"{self.size[0]}x{self.size[1]}"


@dataclass
class TransformationInfo:
    noise_type: str
    noise_parameters: str
    rotation_deg: float
    translation: tuple[int, int]
    scale_factor: float
    transformed_patch_path: str


@dataclass
class VisualOutputs:
    overlay_result_path: str
    side_by_side_path: str
    error_heatmap_path: str


@dataclass
class PerformanceMetrics:
    translation_error_px: float
    processing_time_ms: float
    confidence_score: float
    success: bool


@dataclass
class TestResult:
    """One test report: a patch, its transformation and an algorithm's result."""

    __test__ = False

    test_id: str
    algorithm_name: str
    original_image_path: str
    patch_info: PatchInfo
    transformation_applied: TransformationInfo
    alignment_result: dict[str, Any]
    visual_outputs: VisualOutputs
    performance_metrics: PerformanceMetrics

    @property
    def execution_time_ms(self) -> float:
        return float(self.alignment_result["execution_time_ms"])

    @property
    def confidence(self) -> float:
        return float(self.alignment_result["confidence"])

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TestResult:
        """Build from a decoded ``test_report.json``; raise ValueError if malformed."""
        try:
            patch = data["patch_info"]
            transform = data["transformation_applied"]
            outputs = data["visual_outputs"]
            metrics = data["performance_metrics"]
            alignment = data["alignment_result"]
            if not isinstance(alignment, Mapping):
                raise ValueError("alignment_result must be an object")
            _number(alignment["execution_time_ms"])
            _number(alignment["confidence"])
            return cls(
                test_id=_string(data["test_id"]),
                algorithm_name=_string(data["algorithm_name"]),
                original_image_path=_string(data["original_image_path"]),
                patch_info=PatchInfo(
                    size=_pair(patch["size"], unsigned=True),
                    location=_pair(patch["location"], unsigned=True),
                    patch_path=_string(patch["patch_path"]),
                ),
                transformation_applied=TransformationInfo(
                    noise_type=_string(transform["noise_type"]),
                    noise_parameters=_string(transform["noise_parameters"]),
                    rotation_deg=_number(transform["rotation_deg"]),
                    translation=_pair(transform["translation"], unsigned=False),
                    scale_factor=_number(transform["scale_factor"]),
                    transformed_patch_path=_string(transform["transformed_patch_path"]),
                ),
                alignment_result=dict(alignment),
                visual_outputs=VisualOutputs(
                    overlay_result_path=_string(outputs["overlay_result_path"]),
                    side_by_side_path=_string(outputs["side_by_side_path"]),
                    error_heatmap_path=_string(outputs["error_heatmap_path"]),
                ),
                performance_metrics=PerformanceMetrics(
                    translation_error_px=_number(metrics["translation_error_px"]),
                    processing_time_ms=_number(metrics["processing_time_ms"]),
                    confidence_score=_number(metrics["confidence_score"]),
                    success=_boolean(metrics["success"]),
                ),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Malformed test result: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["patch_info"]["size"] = list(self.patch_info.size)
        result["patch_info"]["location"] = list(self.patch_info.location)
        result["transformation_applied"]["translation"] = list(
            self.transformation_applied.translation
        )
        return result


@dataclass
class TestSession:
    """All test reports found in one results directory."""

    __test__ = False

    id: str
    name: str
    sem_image_path: str
    created_at: str
    total_tests: int
    success_rate: float
    avg_processing_time: float
    test_results: list[TestResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sem_image_path": self.sem_image_path,
            "created_at": self.created_at,
            "total_tests": self.total_tests,
            "success_rate": self.success_rate,
            "avg_processing_time": self.avg_processing_time,
            "test_results": [result.to_dict() for result in self.test_results],
        }


@dataclass
class DashboardData:
    """Sessions plus the distinct algorithms, patch sizes and transformations seen."""

    test_sessions: list[TestSession] = field(default_factory=list)
    algorithms: list[str] = field(default_factory=list)
    patch_sizes: list[str] = field(default_factory=list)
    transformations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_sessions": [session.to_dict() for session in self.test_sessions],
            "algorithms": list(self.algorithms),
            "patch_sizes": list(self.patch_sizes),
            "transformations": list(self.transformations),
        }


@dataclass
class AlgorithmSummary:
    name: str
    total_tests: int
    success_count: int
    success_rate: float
    avg_translation_error: float
    avg_processing_time: float
    avg_confidence: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _created_at(path: Path) -> str:
    try:
        stat = path.stat()
        stamp = getattr(stat, "st_birthtime", stat.st_ctime)
        moment = datetime.fromtimestamp(stamp, tz=timezone.utc)
    except OSError:
        moment = datetime.now(timezone.utc)
    return moment.strftime(_TIME_FORMAT)


class DashboardDataLoader:
    """Scans a results directory for ``test*`` session directories."""

    def __init__(self, results_dir: Path | str, results_per_page: int = 0) -> None:
        self.results_dir = Path(results_dir)
        self.results_per_page = results_per_page

    def load_dashboard_data(self) -> DashboardData:
        """Load every readable session, newest first, limited to ``results_per_page`` if set."""
        sessions: list[TestSession] = []
        algorithms: set[str] = set()
        patch_sizes: set[str] = set()
        transformations: set[str] = set()

        if self.results_dir.exists():
            for path in sorted(self.results_dir.iterdir()):
                if not (path.is_dir() and path.name.startswith("test")):
                    continue
                try:
                    session = self.load_test_session(path)
                except (OSError, ValueError):
                    continue
                for test in session.test_results:
                    algorithms.add(test.algorithm_name)
                    patch_sizes.add(test.patch_info.size_label)
                    transformations.add(test.transformation_applied.noise_parameters)
                sessions.append(session)

        sessions.sort(key=lambda session: session.created_at, reverse=True)
        if self.results_per_page > 0:
            sessions = sessions[: self.results_per_page]

        return DashboardData(
            test_sessions=sessions,
            algorithms=sorted(algorithms),
            patch_sizes=sorted(patch_sizes),
            transformations=sorted(transformations),
        )

    def load_test_session(self, session_dir: Path | str) -> TestSession:
        """Read the ``test_report.json`` of every sub-directory; malformed reports are skipped."""
        session_dir = Path(session_dir)
        session_name = session_dir.name
        results: list[TestResult] = []

        for path in sorted(session_dir.iterdir()):
            if not path.is_dir():
                continue
            report = path / "test_report.json"
            if not report.exists():
                continue
            content = report.read_text(encoding="utf-8")
            try:
                results.append(TestResult.from_dict(json.loads(content)))
            except ValueError:
                continue

        successes = sum(1 for test in results if test.performance_metrics.success)
        return TestSession(
            id=session_name,
            name=session_name.replace("_", " ").upper(),
            sem_image_path=results[0].original_image_path if results else "",
            created_at=_created_at(session_dir),
            total_tests=len(results),
            success_rate=_success_rate(len(results), successes),
            avg_processing_time=_average([test.execution_time_ms for test in results]),
            test_results=results,
        )

    def calculate_algorithm_summaries(self, data: DashboardData) -> list[AlgorithmSummary]:
        """Per-algorithm totals and averages across all sessions, in first-seen order."""
        grouped: dict[str, list[TestResult]] = {}
        for session in data.test_sessions:
            for test in session.test_results:
                grouped.setdefault(test.algorithm_name, []).append(test)

        summaries = []
        for name, tests in grouped.items():
            successes = sum(1 for test in tests if test.performance_metrics.success)
            summaries.append(
                AlgorithmSummary(
                    name=name,
                    total_tests=len(tests),
                    success_count=successes,
                    success_rate=_success_rate(len(tests), successes),
                    avg_translation_error=_average(
                        [test.performance_metrics.translation_error_px for test in tests]
                    ),
                    avg_processing_time=_average([test.execution_time_ms for test in tests]),
                    avg_confidence=_average([test.confidence for test in tests]),
                )
            )
        return summaries


__all__ = [
    "AlgorithmSummary",
    "DashboardData",
    "DashboardDataLoader",
    "PatchInfo",
    "PerformanceMetrics",
    "TestResult",
    "TestSession",
    "TransformationInfo",
    "VisualOutputs",
]

_ = os  # platform stat fields are read through os.stat_result