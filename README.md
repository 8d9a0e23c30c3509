# waferalign

Tooling around the alignment of semiconductor wafer (SEM) images:

- **Test data** (`waferalign.data`): cut patches with enough contrast out of a
  grayscale SEM image and apply known rotations, translations and scalings to
  them, so that alignment results can be checked against a ground truth.
- **Structured logging** (`waferalign.logs`): configuration presets with
  per-component levels, correlation ids and patch context held in context
  variables, spans for algorithm runs, pipeline stages and test sessions,
  console and dashboard formatters, per-test log files, and size/age based log
  rotation with gzip archives.
- **Metrics** (`waferalign.logs.metrics`): a thread-safe collector of timing
  measurements with mean, median, standard deviation, 95th/99th percentiles and
  per-algorithm summaries.
- **Results dashboard** (`waferalign.dashboard`): an aiohttp server that reads
  test sessions from a results directory and serves them as JSON, with
  filtering, result images, per-test logs and background visual-test runs.

## Installation

```
pip install waferalign
```

For the test suite:

```
pip install "waferalign[test]"
pytest
```

## The dashboard

```
waferalign-dashboard --results-dir results --port 3000
```

`-r/--results-dir` defaults to `results` and `-p/--port` to `3000`. The server
listens on all interfaces with CORS enabled and runs until interrupted.

It reads test sessions from directories whose names start with `test` inside
the results directory; each test is a subdirectory holding a
`test_report.json`. Sessions are listed newest first.

| Route | Purpose |
| --- | --- |
| `GET /api/data` | all sessions; the query parameters `algorithms`, `patch_sizes`, `transformations` (comma separated) and `success_only` (`true`/`false`) filter the tests and recompute session statistics |
| `GET /api/sessions` | list of sessions |
| `GET /api/sessions/{id}` | one session, 404 if unknown |
| `GET /api/algorithms/summary` | test count, success rate, mean translation error, time and confidence per algorithm |
| `GET /api/refresh` | rescan the results directory |
| `POST /api/run-visual-test` | multipart upload (`sem_image`, `patch_sizes`, `scenarios`) that starts a background run |
| `GET /api/test-progress/{id}` | progress of a background run |
| `GET /api/image/{path}` | a file under the results directory, or under `results/` or `datasets/` in the working directory |
| `GET /api/test-logs/{session_id}/{test_id}` | the `*_algorithm.log` file of a test under `results/` in the working directory |

`waferalign.dashboard.server.create_app` builds the same application for use in
your own aiohttp setup, and `waferalign.logs.live.create_dashboard_routes`
builds a separate one serving live logs (`/api/logs`, a WebSocket at
`/api/logs/live`), live metrics and running operations from a
`DashboardLogManager`.

## Library use

### Generating test data

```python
import numpy as np
from waferalign.data import patch_extractor, transformer

sem = np.asarray(..., dtype=np.uint8)          # a grayscale SEM image

patches = patch_extractor.extract_good_patches(sem, 64, 3)
truth = transformer.GroundTruth.rotation(15.0)

for patch in patches:
    moved = transformer.rotate_and_translate(patch.image, truth.rotation_degrees, 8, -5)

patch_extractor.save_patches(patches, "wafer", "out/patches")
```

`extract_patch` raises `ValueError` when the patch would leave the image, and
`extract_good_patches` raises when no patch with a variance above
`min_variance` (100 by default) is found in ten attempts per requested patch.

### Logging configuration

```python
from waferalign.logs.config import LoggingConfig
from waferalign.logs.context import init_logging, new_correlation_id

config = LoggingConfig.development()
config.validate()                          # raises ValueError on a bad level
config.get_component_level("algorithm")    # "trace"

init_logging(config)
new_correlation_id()
```

The `WAFERALIGN_LOG` environment variable, when it names a valid level,
overrides `global_level` in `init_logging`.

### Timing and statistics

```python
from waferalign.logs.metrics import MetricsCollector, Timer

collector = MetricsCollector(True)
with Timer("ORB_execution", None, collector):
    ...

stats = collector.calculate_stats("ORB_execution")
print(stats.mean_ms, stats.p95_ms)
```

### Reading results without the server

```python
from pathlib import Path
from waferalign.dashboard.data import DashboardDataLoader

loader = DashboardDataLoader(Path("results"))
data = loader.load_dashboard_data()
for summary in loader.calculate_algorithm_summaries(data):
    print(summary.name, summary.success_rate)
```

## What this package does not do

- It contains no alignment algorithms. `waferalign.results.AlignmentResult`
  describes an alignment outcome, but nothing here computes one.
- `POST /api/run-visual-test` starts an external `align` command
  (`align --config config.toml visual-test ...`). That command is not part of
  this package; if it is not installed, the run is marked as failed.
- No web pages are bundled. The routes `/`, `/dashboard` and `/session/{id}`
  answer 404 and `/static` is not served unless a `frontend` directory with an
  `index.html` is placed next to `waferalign/dashboard/server.py`. The JSON API
  works without it.