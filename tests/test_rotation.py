import gzip
import re

import pytest

from waferalign.logs.rotation import LogRotationManager, LogStatistics, RotationConfig


def test_rotation_config_default():
    config = RotationConfig()
    assert config.max_file_size == 100 * 1024 * 1024
    assert config.max_file_age_hours == 24
    assert config.max_files == 10
    assert config.compress_archives is True
    assert config.archive_directory is None


def test_needs_rotation_size(tmp_path):
    manager = LogRotationManager(tmp_path, RotationConfig(max_file_size=100))
    log_file = tmp_path / "test.log"
    log_file.write_bytes(b"x" * 200)
    assert manager.needs_rotation(log_file) is True


def test_small_fresh_file_does_not_need_rotation(tmp_path):
    manager = LogRotationManager(tmp_path, RotationConfig(max_file_size=1000))
    log_file = tmp_path / "test.log"
    log_file.write_bytes(b"x" * 10)
    assert manager.needs_rotation(log_file) is False


def test_needs_rotation_age_zero_limit(tmp_path):
    manager = LogRotationManager(
        tmp_path, RotationConfig(max_file_size=10_000, max_file_age_hours=0)
    )
    log_file = tmp_path / "test.log"
    log_file.write_text("short")
    assert manager.needs_rotation(log_file) is True


def test_missing_file_does_not_need_rotation(tmp_path):
    manager = LogRotationManager(tmp_path, RotationConfig(max_file_size=1))
    assert manager.needs_rotation(tmp_path / "absent.log") is False


def test_log_statistics(tmp_path):
    manager = LogRotationManager(tmp_path, RotationConfig())
    (tmp_path / "test.log").write_bytes(b"test log content")
    stats = manager.get_statistics()
    assert stats.active_files == 1
    assert stats.active_size_bytes == len(b"test log content")
    assert stats.active_size_mb() > 0.0
    assert stats.archive_files == 0


def test_default_archive_directory_created(tmp_path):
    manager = LogRotationManager(tmp_path / "logs")
    assert manager.archive_directory == tmp_path / "logs" / "archive"
    assert manager.archive_directory.is_dir()


def test_rotate_compressed_round_trip(tmp_path):
    manager = LogRotationManager(tmp_path, RotationConfig())
    log_file = tmp_path / "test.log"
    content = b"line one\nline two\n"
    log_file.write_bytes(content)

    manager.rotate_log(log_file)

    assert not log_file.exists()
    archives = list(manager.archive_directory.iterdir())
    assert len(archives) == 1
    assert re.fullmatch(r"test_\d{8}_\d{6}\.log\.gz", archives[0].name)
    with gzip.open(archives[0], "rb") as handle:
        assert handle.read() == content


def test_rotate_uncompressed(tmp_path):
    archive_dir = tmp_path / "old"
    manager = LogRotationManager(
        tmp_path / "logs",
        RotationConfig(compress_archives=False, archive_directory=archive_dir),
    )
    log_file = tmp_path / "logs" / "app.txt"
    log_file.write_text("hello")

    manager.rotate_log(log_file)

    archives = list(archive_dir.iterdir())
    assert len(archives) == 1
    assert re.fullmatch(r"app_\d{8}_\d{6}\.txt", archives[0].name)
    assert archives[0].read_text() == "hello"


def test_rotate_missing_file_is_noop(tmp_path):
    manager = LogRotationManager(tmp_path)
    manager.rotate_log(tmp_path / "absent.log")
    assert list(manager.archive_directory.iterdir()) == []


def test_retention_limits_archive_count(tmp_path):
    manager = LogRotationManager(tmp_path, RotationConfig(max_files=2))
    for name in ("a", "b", "c"):
        path = tmp_path / f"{name}.log"
        path.write_text(name)
        manager.rotate_log(path)
    assert len(list(manager.archive_directory.iterdir())) == 2


def test_perform_maintenance_rotates_only_log_files(tmp_path):
    manager = LogRotationManager(tmp_path, RotationConfig(max_file_size=5))
    (tmp_path / "big.log").write_bytes(b"x" * 50)
    (tmp_path / "small.log").write_bytes(b"x")
    (tmp_path / "big.txt").write_bytes(b"x" * 50)

    manager.perform_maintenance()

    remaining = sorted(p.name for p in tmp_path.iterdir() if p.is_file())
    assert remaining == ["big.txt", "small.log"]
    stats = manager.get_statistics()
    assert stats.archive_files == 1
    assert stats.active_files == 2


def test_statistics_size_conversions():
    stats = LogStatistics(
        active_files=1,
        active_size_bytes=1024 * 1024,
        archive_files=1,
        archive_size_bytes=2 * 1024 * 1024,
        log_directory=None,
        archive_directory=None,
    )
    assert stats.active_size_mb() == pytest.approx(1.0)
    assert stats.archive_size_mb() == pytest.approx(2.0)
    assert stats.total_size_mb() == pytest.approx(3.0)