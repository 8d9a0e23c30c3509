"""Logging configuration with per-component levels."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from waferalign.logs.rotation import RotationConfig

VALID_LEVELS = ("trace", "debug", "info", "warn", "error")

_MB = 1024 * 1024


@dataclass
class LoggingConfig:
    """Levels, outputs and rotation policy for the logging system."""

    global_level: str = "info"
    console_output: bool = True
    log_directory: Path | None = None
    include_file_location: bool = False
    algorithm_level: str = "info"
    pipeline_level: str = "info"
    testing_level: str = "debug"
    dashboard_level: str = "info"
    rotation: RotationConfig = field(default_factory=RotationConfig)

    def __post_init__(self) -> None:
        if self.log_directory is not None:
            self.log_directory = Path(self.log_directory)

    @classmethod
    def development(cls) -> LoggingConfig:
        """Verbose settings for local work."""
        return cls(
            global_level="debug",
            console_output=True,
            log_directory=Path("logs"),
            include_file_location=True,
            algorithm_level="trace",
            pipeline_level="debug",
            testing_level="trace",
            dashboard_level="debug",
        )

    @classmethod
    def production(cls) -> LoggingConfig:
        """Low-overhead settings with long retention."""
        return cls(
            global_level="warn",
            console_output=False,
            log_directory=Path("/var/log/image-alignment"),
            include_file_location=False,
            algorithm_level="info",
            pipeline_level="info",
            testing_level="info",
            dashboard_level="warn",
            rotation=RotationConfig(
                max_file_size=500 * _MB,
                max_file_age_hours=168,
                max_files=30,
                archive_directory=Path("/var/log/image-alignment/archive"),
                compress_archives=True,
            ),
        )

    @classmethod
    def performance_testing(cls) -> LoggingConfig:
        """Settings for benchmark runs."""
        return cls(
            global_level="info",
            console_output=True,
            log_directory=Path("performance_logs"),
            include_file_location=False,
            algorithm_level="info",
            pipeline_level="debug",
            testing_level="info",
            dashboard_level="info",
            rotation=RotationConfig(
                max_file_size=50 * _MB,
                max_file_age_hours=24,
                max_files=5,
                archive_directory=Path("performance_logs/archive"),
                compress_archives=True,
            ),
        )

    def validate(self) -> None:
        """Raise ValueError if a level is unknown or the log directory's parent is missing."""
        allowed = "[" + ", ".join(f'"{level}"' for level in VALID_LEVELS) + "]"
        for name in (
            "global_level",
            "algorithm_level",
            "pipeline_level",
            "testing_level",
            "dashboard_level",
        ):
            value = getattr(self, name)
            if value not in VALID_LEVELS:
                raise ValueError(f"Invalid {name}: {value}. Must be one of: {allowed}")

        if self.log_directory is not None:
            parent = self.log_directory.parent
            if str(parent) not in ("", ".") and not parent.exists():
                raise ValueError(f"Log directory parent does not exist: {parent}")

    def get_component_level(self, component: str) -> str:
        """Return the level that applies to a named component."""
        if component in ("algorithm", "algorithms"):
            return self.algorithm_level
        if component == "pipeline":
            return self.pipeline_level
        if component in ("testing", "test"):
            return self.testing_level
        if component == "dashboard":
            return self.dashboard_level
        return self.global_level