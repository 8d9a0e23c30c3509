"""Size- and age-based rotation of log files, with archive retention."""

from __future__ import annotations

import gzip
import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
import time

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


@dataclass
class RotationConfig:
    """Rotation thresholds and retention policy."""

    max_file_size: int = 100 * _MB
    max_file_age_hours: int = 24
    max_files: int = 10
    archive_directory: Path | None = None
    compress_archives: bool = True

    def __post_init__(self) -> None:
        if self.archive_directory is not None:
            self.archive_directory = Path(self.archive_directory)


@dataclass
class LogStatistics:
    """File counts and sizes of active logs and archives."""

    active_files: int
    active_size_bytes: int
    archive_files: int
    archive_size_bytes: int
    log_directory: Path
    archive_directory: Path

    def total_size_mb(self) -> float:
        return (self.active_size_bytes + self.archive_size_bytes) / _MB

    def active_size_mb(self) -> float:
        return self.active_size_bytes / _MB

    def archive_size_mb(self) -> float:
        return self.archive_size_bytes / _MB


def _creation_time(stat: os.stat_result) -> float:
    return getattr(stat, "st_birthtime", stat.st_ctime)


def _count_files(directory: Path) -> tuple[int, int]:
    count = 0
    size = 0
    try:
        entries = list(directory.iterdir())
    except OSError:
        return 0, 0
    for entry in entries:
        try:
            if entry.is_file():
                count += 1
                size += entry.stat().st_size
        except OSError:
            continue
    return count, size


@dataclass
class LogRotationManager:
    """Rotates log files in a directory and prunes old archives."""

    log_directory: Path
    config: RotationConfig = field(default_factory=RotationConfig)
    archive_directory: Path = field(init=False)

    def __init__(self, log_directory: Path | str, config: RotationConfig | None = None) -> None:
        self.log_directory = Path(log_directory)
        self.config = config if config is not None else RotationConfig()
        self.archive_directory = (
            Path(self.config.archive_directory)
            if self.config.archive_directory is not None
            else self.log_directory / "archive"
        )
        for directory, label in (
            (self.log_directory, "log"),
            (self.archive_directory, "archive"),
        ):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.error("Failed to create %s directory: %s", label, exc)

    def needs_rotation(self, log_file: Path | str) -> bool:
        """Return True when the file is too large or too old."""
        log_file = Path(log_file)
        if not log_file.exists():
            return False
        try:
            stat = log_file.stat()
        except OSError:
            return False

        if stat.st_size >= self.config.max_file_size:
            logger.info(
                "Log file needs rotation due to size: %s (%d MB, max %d MB)",
                log_file,
                stat.st_size // _MB,
                self.config.max_file_size // _MB,
            )
            return True

        age_seconds = max(0.0, time.time() - _creation_time(stat))
        max_age_seconds = self.config.max_file_age_hours * 3600
        if age_seconds >= max_age_seconds:
            logger.info(
                "Log file needs rotation due to age: %s (%d h, max %d h)",
                log_file,
                int(age_seconds) // 3600,
                self.config.max_file_age_hours,
            )
            return True
        return False

    def rotate_log(self, log_file: Path | str) -> None:
        """Move the file into the archive directory, compressing it if configured."""
        log_file = Path(log_file)
        if not log_file.exists():
            logger.warning("Cannot rotate non-existent log file: %s", log_file)
            return

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        stem = log_file.stem or "log"
        extension = log_file.suffix[1:] if log_file.suffix else "log"
        archive_name = f"{stem}_{timestamp}.{extension}"
        if self.config.compress_archives:
            archive_name += ".gz"
        archive_path = self.archive_directory / archive_name

        logger.info(
            "Rotating log file %s -> %s (compressed=%s)",
            log_file,
            archive_path,
            self.config.compress_archives,
        )

        if self.config.compress_archives:
            self._compress_and_archive(log_file, archive_path)
        else:
            log_file.rename(archive_path)

        self._cleanup_old_archives()
        logger.info("Log rotation completed successfully")

    @staticmethod
    def _compress_and_archive(source: Path, target: Path) -> None:
        with source.open("rb") as reader, gzip.open(target, "wb") as writer:
            shutil.copyfileobj(reader, writer)
        source.unlink()

    def _cleanup_old_archives(self) -> None:
        archives: list[tuple[Path, float]] = []
        for path in self.archive_directory.iterdir():
            if not path.is_file():
                continue
            try:
                archives.append((path, _creation_time(path.stat())))
            except OSError:
                continue

        archives.sort(key=lambda item: item[1])
        excess = max(0, len(archives) - self.config.max_files)

        for path, _ in archives[:excess]:
            logger.info("Removing old archive file due to retention policy: %s", path)
            try:
                path.unlink()
            except OSError as exc:
                logger.warning("Failed to remove archive file %s: %s", path, exc)

        if excess:
            logger.info("Cleaned up %d old archive files", excess)

    def perform_maintenance(self) -> None:
        """Rotate every due ``.log`` file and enforce the retention policy."""
        logger.info("Starting log maintenance in %s", self.log_directory)
        for path in self.log_directory.iterdir():
            if path.is_file() and path.suffix == ".log" and self.needs_rotation(path):
                try:
                    self.rotate_log(path)
                except OSError as exc:
                    logger.error("Failed to rotate log file %s: %s", path, exc)
        self._cleanup_old_archives()
        logger.info("Log maintenance completed")

    def get_statistics(self) -> LogStatistics:
        active_files, active_size = _count_files(self.log_directory)
        archive_files, archive_size = _count_files(self.archive_directory)
        return LogStatistics(
            active_files=active_files,
            active_size_bytes=active_size,
            archive_files=archive_files,
            archive_size_bytes=archive_size,
            log_directory=self.log_directory,
            archive_directory=self.archive_directory,
        )