"""HTTP dashboard serving test results, images, logs and a visual-test runner."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import mimetypes
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence

from aiohttp import BodyPartReader, web

from waferalign.dashboard.data import DashboardData, DashboardDataLoader, TestResult

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000
DEFAULT_VISUAL_TEST_COMMAND = ("align",)


@dataclass
class TestProgress:
    """Progress of a visual test started from the dashboard."""

    __test__ = False

    status: str
    percentage: int
    message: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _split_list(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [part.strip() for part in value.split(",")]


@dataclass
class FilterParams:
    """Filters on algorithms, patch sizes, transformations and success."""

    algorithms: list[str] | None = None
    patch_sizes: list[str] | None = None
    transformations: list[str] | None = None
    success_only: bool | None = None

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> FilterParams:
        """Parse comma-separated query parameters; raise ValueError on a bad boolean."""
        raw_success = query.get("success_only")
        if raw_success is None:
            success_only = None
        elif raw_success == "true":
            success_only = True
        elif raw_success == "false":
            success_only = False
        else:
            raise ValueError(f"success_only must be true or false, got {raw_success!r}")
        return cls(
            algorithms=_split_list(query.get("algorithms")),
            patch_sizes=_split_list(query.get("patch_sizes")),
            transformations=_split_list(query.get("transformations")),
            success_only=success_only,
        )


def _matches(test: TestResult, params: FilterParams) -> bool:
    if params.algorithms and test.algorithm_name not in params.algorithms:
        return False
    if params.patch_sizes and test.patch_info.size_label not in params.patch_sizes:
        return False
    if (
        params.transformations
        and test.transformation_applied.noise_parameters not in params.transformations
    ):
        return False
    if params.success_only and not test.performance_metrics.success:
        return False
    return True


def filter_dashboard_data(data: DashboardData, params: FilterParams) -> DashboardData:
    """A copy of ``data`` keeping only matching tests, with session statistics recomputed."""
    sessions = []
    for session in data.test_sessions:
        kept = [test for test in session.test_results if _matches(test, params)]
        total = len(kept)
        successes = sum(1 for test in kept if test.performance_metrics.success)
        sessions.append(
            dataclasses.replace(
                session,
                test_results=kept,
                total_tests=total,
                success_rate=successes / total * 100.0 if total else 0.0,
                avg_processing_time=(
                    sum(test.performance_metrics.processing_time_ms for test in kept) / total
                    if total
                    else 0.0
                ),
            )
        )
    return DashboardData(
        test_sessions=sessions,
        algorithms=list(data.algorithms),
        patch_sizes=list(data.patch_sizes),
        transformations=list(data.transformations),
    )


class DashboardState:
    """Loaded results, progress of running tests and the command that runs them."""

    def __init__(
        self,
        results_dir: Path | str,
        results_per_page: int = 0,
        visual_test_command: Sequence[str] | None = None,
    ) -> None:
        self.data_loader = DashboardDataLoader(results_dir, results_per_page)
        self.dashboard_data = self.data_loader.load_dashboard_data()
        self.test_progress: dict[str, TestProgress] = {}
        self.visual_test_command = tuple(
            visual_test_command if visual_test_command is not None else DEFAULT_VISUAL_TEST_COMMAND
        )
        self.background_tasks: set[asyncio.Task] = set()

    def refresh_data(self) -> None:
        """Reload all results from disk."""
        self.dashboard_data = self.data_loader.load_dashboard_data()

    def update_progress(self, test_id: str, percentage: int, message: str) -> None:
        self.test_progress[test_id] = TestProgress("running", percentage, message)


async def _run_visual_test(
    state: DashboardState,
    test_id: str,
    image_data: bytes,
    patch_sizes: str,
    scenarios: str,
) -> None:
    state.update_progress(test_id, 10, "Processing image...")

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    output_dir = Path.cwd() / "results" / f"test_{timestamp}"
    output_dir.mkdir(parents=True, exist_ok=True)
    image_path = output_dir / "input_image.jpg"
    await asyncio.to_thread(image_path.write_bytes, image_data)

    state.update_progress(test_id, 20, "Preparing visual test command...")
    command = [
        *state.visual_test_command,
        "--config",
        "config.toml",
        "visual-test",
        "--sem-image",
        str(image_path),
        "--output",
        str(output_dir),
        "--patch-sizes",
        patch_sizes,
        "--scenarios",
        scenarios,
    ]

    state.update_progress(test_id, 30, "Running visual test...")
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
    except OSError as exc:
        state.test_progress[test_id] = TestProgress("failed", 0, "Test failed", str(exc))
        raise

    if process.returncode != 0:
        error_msg = stderr.decode("utf-8", errors="replace")
        logger.error("Visual test command failed: %s", error_msg)
        state.test_progress[test_id] = TestProgress("failed", 0, "Test failed", error_msg)
        raise RuntimeError(f"Visual test command failed: {error_msg}")

    state.update_progress(test_id, 90, "Finalizing results...")
    state.refresh_data()
    state.test_progress[test_id] = TestProgress(
        "completed", 100, "Test completed successfully!"
    )


async def _run_in_background(coro) -> None:
    try:
        await coro
    except Exception as exc:  # the task has no caller to report to
        logger.error("Background test failed: %s", exc)


def _within(path: Path, root: Path) -> bool:
    return path.is_relative_to(root)


def _allow_cors(headers) -> None:
    headers["Access-Control-Allow-Origin"] = "*"
    headers["Access-Control-Allow-Methods"] = "*"
    headers["Access-Control-Allow-Headers"] = "*"


@web.middleware
async def _cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        response = web.Response(status=200)
    else:
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            _allow_cors(exc.headers)
            raise
    _allow_cors(response.headers)
    return response


def create_app(
    state: DashboardState,
    static_dir: Path | str | None = None,
    enable_cors: bool = False,
) -> web.Application:
    """Build the dashboard web application around ``state``."""
    static_path = Path(static_dir) if static_dir is not None else None

    async def get_dashboard_data(request: web.Request) -> web.Response:
        try:
            params = FilterParams.from_query(request.query)
        except ValueError as exc:
            raise web.HTTPBadRequest(text=str(exc)) from exc
        return web.json_response(filter_dashboard_data(state.dashboard_data, params).to_dict())

    async def get_test_sessions(request: web.Request) -> web.Response:
        return web.json_response(
            [session.to_dict() for session in state.dashboard_data.test_sessions]
        )

    async def get_test_session(request: web.Request) -> web.Response:
        session_id = request.match_info["id"]
        for session in state.dashboard_data.test_sessions:
            if session.id == session_id:
                return web.json_response(session.to_dict())
        raise web.HTTPNotFound()

    async def get_algorithm_summary(request: web.Request) -> web.Response:
        summaries = state.data_loader.calculate_algorithm_summaries(state.dashboard_data)
        return web.json_response([summary.to_dict() for summary in summaries])

    async def refresh_dashboard_data(request: web.Request) -> web.Response:
        try:
            state.refresh_data()
        except (OSError, ValueError) as exc:
            raise web.HTTPInternalServerError() from exc
        return web.json_response({"status": "success"})

    async def run_visual_test(request: web.Request) -> web.Response:
        image_data: bytes | None = None
        patch_sizes: str | None = None
        scenarios: str | None = None
        try:
            reader = await request.multipart()
            while (part := await reader.next()) is not None:
                if not isinstance(part, BodyPartReader):
                    continue
                if part.name == "sem_image":
                    image_data = bytes(await part.read())
                elif part.name == "patch_sizes":
                    patch_sizes = await part.text()
                elif part.name == "scenarios":
                    scenarios = await part.text()
        except Exception as exc:  # any malformed form body is the client's fault
            raise web.HTTPBadRequest() from exc

        if image_data is None or patch_sizes is None or scenarios is None:
            raise web.HTTPBadRequest()

        test_id = f"test_{int(time.time())}"
        state.test_progress[test_id] = TestProgress("running", 0, "Starting test...")
        task = asyncio.create_task(
            _run_in_background(
                _run_visual_test(state, test_id, image_data, patch_sizes, scenarios)
            )
        )
        state.background_tasks.add(task)
        task.add_done_callback(state.background_tasks.discard)
        return web.json_response({"status": "started", "test_id": test_id})

    async def get_test_progress(request: web.Request) -> web.Response:
        progress = state.test_progress.get(request.match_info["id"])
        if progress is None:
            raise web.HTTPNotFound()
        return web.json_response(progress.to_dict())

    async def serve_image(request: web.Request) -> web.Response:
        safe_path = request.match_info["path"].replace("..", "")
        cwd = Path.cwd()
        results_dir = state.data_loader.results_dir
        if safe_path.startswith("results/"):
            full_path = cwd / safe_path
        else:
            full_path = results_dir / safe_path

        allowed = (cwd / "results", cwd / "datasets", results_dir)
        if not full_path.exists() or not any(_within(full_path, root) for root in allowed):
            logger.warning("Image not found or unsafe path: %s", full_path)
            raise web.HTTPNotFound()

        try:
            contents = await asyncio.to_thread(full_path.read_bytes)
        except OSError as exc:
            logger.warning("Failed to read image file %s: %s", full_path, exc)
            raise web.HTTPNotFound() from exc
        mime_type = mimetypes.guess_type(full_path.name)[0] or "application/octet-stream"
        return web.Response(body=contents, content_type=mime_type)

    async def serve_test_log(request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        test_id = request.match_info["test_id"]
        results_dir = Path.cwd() / "results"

        log_path: Path | None = None
        if results_dir.is_dir():
            for session_dir in sorted(results_dir.iterdir()):
                if not session_dir.is_dir():
                    continue
                test_dir = session_dir / test_id
                if not test_dir.is_dir():
                    continue
                log_path = next(
                    (
                        entry
                        for entry in sorted(test_dir.iterdir())
                        if entry.name.endswith("_algorithm.log")
                    ),
                    None,
                )
                if log_path is not None:
                    break

        if log_path is None:
            logger.warning("Log file not found for session: %s, test: %s", session_id, test_id)
            raise web.HTTPNotFound()
        if not _within(log_path.resolve(), results_dir.resolve()):
            logger.warning("Unsafe log path requested: %s", log_path)
            raise web.HTTPForbidden()

        try:
            contents = await asyncio.to_thread(log_path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read log file %s: %s", log_path, exc)
            raise web.HTTPNotFound() from exc
        return web.Response(text=contents, content_type="text/plain", charset="utf-8")

    async def serve_index(request: web.Request) -> web.Response:
        if static_path is not None:
            index = static_path / "index.html"
            if index.is_file():
                return web.Response(
                    text=await asyncio.to_thread(index.read_text, encoding="utf-8"),
                    content_type="text/html",
                )
        raise web.HTTPNotFound()

    app = web.Application(middlewares=[_cors_middleware] if enable_cors else [])
    router = app.router
    router.add_get("/api/data", get_dashboard_data)
    router.add_get("/api/sessions", get_test_sessions)
    router.add_get("/api/sessions/{id}", get_test_session)
    router.add_get("/api/algorithms/summary", get_algorithm_summary)
    router.add_get("/api/refresh", refresh_dashboard_data)
    router.add_post("/api/run-visual-test", run_visual_test)
    router.add_get("/api/test-progress/{id}", get_test_progress)
    router.add_get("/api/image/{path:.*}", serve_image)
    router.add_get("/api/test-logs/{session_id}/{test_id}", serve_test_log)
    router.add_get("/", serve_index)
    router.add_get("/dashboard", serve_index)
    router.add_get("/session/{id}", serve_index)
    if static_path is not None and static_path.is_dir():
        router.add_static("/static", static_path)
    return app


class DashboardServer:
    """Serves the dashboard on all interfaces at the given port."""

    def __init__(self, results_dir: Path | str, port: int = DEFAULT_PORT) -> None:
        self.state = DashboardState(results_dir)
        self.port = port if port else DEFAULT_PORT
        self.static_dir = Path(__file__).parent / "frontend"
        self.enable_cors = True

    async def run(self) -> None:
        """Serve until cancelled."""
        app = create_app(self.state, self.static_dir, self.enable_cors)
        runner = web.AppRunner(app)
        await runner.setup()
        try:
            site = web.TCPSite(runner, "0.0.0.0", self.port)
            await site.start()
            print(f"🚀 Dashboard server running on http://localhost:{self.port}")
            print("📊 Open your browser to view the SEM Image Alignment Dashboard")
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()


async def start_dashboard_server(results_dir: Path | str, port: int = DEFAULT_PORT) -> None:
    """Load results from ``results_dir`` and serve the dashboard until cancelled."""
    await DashboardServer(results_dir, port).run()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="waferalign-dashboard",
        description="Launch web dashboard to visualize test results",
    )
    parser.add_argument("-r", "--results-dir", type=Path, default=Path("results"))
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)

    print("🚀 Starting SEM Image Alignment Dashboard...")
    print(f"📁 Results Directory: {args.results_dir}")
    print(f"🌐 Port: {args.port}")
    print()
    try:
        asyncio.run(start_dashboard_server(args.results_dir, args.port))
    except KeyboardInterrupt:
        pass
    return 0