[build-system]
requires = ["hatchling>=1.18"]
build-backend = "hatchling.build"

[project]
name = "waferalign"
version = "0.1.0"
description = "Wafer image alignment tooling: test-patch generation, structured logging, metrics and a results dashboard"
requires-python = ">=3.10"
keywords = [
    "image-alignment",
    "semiconductor",
    "wafer",
    "sem",
    "registration",
    "dashboard",
    "metrics",
    "logging",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: System :: Logging",
]
dependencies = [
    "numpy>=1.23",
    "pillow>=9.5",
    "aiohttp>=3.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
waferalign-dashboard = "waferalign.dashboard.server:main"

[tool.hatch.build.targets.wheel]
packages = ["waferalign"]

[tool.hatch.build.targets.sdist]
include = [
    "waferalign",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
ignore_missing_imports = true
