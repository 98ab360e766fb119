"""Tests for the daily rotating log manager."""

import gzip
import json
import os
from datetime import timedelta

import pytest

from chat_relay.logs import LogManager, compress_log


def _read_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestAppend:
    def test_writes_to_todays_destination(self, log_manager):
        log_manager.info("Server starting...", {"port": 3000})
        path = log_manager.log_dir / "app-2025-01-15.log"
        assert log_manager.log_path == path
        records = _read_lines(path)
        assert len(records) == 1
        assert records[0]["level"] == "info"
        assert records[0]["message"] == "Server starting..."
        assert records[0]["port"] == 3000
        assert records[0]["timestamp"] == "2025-01-15T23:59:00.000Z"

    def test_metadata_cannot_override_required_fields(self, log_manager):
        record = log_manager.warn("real message", {"message": "spoofed", "level": "error", "ip": "1.2.3.4"})
        assert record["message"] == "real message"
        assert record["level"] == "warn"
        assert record["ip"] == "1.2.3.4"

    def test_unknown_level_rejected(self, log_manager):
        with pytest.raises(ValueError):
            log_manager.append("debug", "nope")

    def test_non_json_metadata_is_stringified(self, log_manager):
        log_manager.info("with path", {"path": log_manager.log_dir})
        record = _read_lines(log_manager.log_path)[0]
        assert record["path"] == str(log_manager.log_dir)

    def test_console_streams(self, tmp_path, log_clock, capsys):
        manager = LogManager(tmp_path / "logs", clock=log_clock)
        manager.info("all good", {"uuid": "u1"})
        manager.error("boom")
        captured = capsys.readouterr()
        assert "INFO: all good" in captured.out
        assert '"uuid": "u1"' in captured.out
        assert "ERROR: boom" in captured.err
        assert "boom" not in captured.out


class TestRollover:
    def test_rollover_compresses_previous_day(self, log_manager, log_clock):
        log_manager.info("day one")
        log_clock.advance(minutes=2)
        log_manager.info("day two")
        log_manager.wait_for_compression(timeout=5)

        log_dir = log_manager.log_dir
        assert not (log_dir / "app-2025-01-15.log").exists()
        archived = log_dir / "app-2025-01-15.log.gz"
        assert archived.exists()
        with gzip.open(archived, "rt", encoding="utf-8") as fh:
            assert json.loads(fh.readline())["message"] == "day one"

        today = log_dir / "app-2025-01-16.log"
        assert [r["message"] for r in _read_lines(today)] == ["day two"]
        assert log_manager.current_date == "2025-01-16"

    def test_tail_after_rollover_only_sees_new_day(self, log_manager, log_clock):
        log_manager.info("old")
        log_clock.advance(days=1)
        log_manager.info("new")
        log_manager.wait_for_compression(timeout=5)
        assert [r["message"] for r in log_manager.tail()] == ["new"]

    def test_rollover_without_previous_file(self, log_manager, log_clock):
        log_clock.advance(days=1)
        log_manager.info("first ever")
        log_manager.wait_for_compression(timeout=5)
        assert log_manager.list_destinations() == ["app-2025-01-16.log"]

    def test_skipped_days(self, log_manager, log_clock):
        log_manager.info("monday")
        log_clock.advance(days=3)
        log_manager.info("thursday")
        log_manager.wait_for_compression(timeout=5)
        assert log_manager.list_destinations() == ["app-2025-01-18.log", "app-2025-01-15.log.gz"]


class TestCompress:
    def test_missing_source_is_tolerated(self, tmp_path):
        assert compress_log(tmp_path / "app-2025-01-01.log") is None
        assert not (tmp_path / "app-2025-01-01.log.gz").exists()

    def test_already_compressed_archive_is_kept(self, tmp_path):
        archive = tmp_path / "app-2025-01-01.log.gz"
        with gzip.open(archive, "wt", encoding="utf-8") as fh:
            fh.write("kept\n")
        assert compress_log(tmp_path / "app-2025-01-01.log") is None
        with gzip.open(archive, "rt", encoding="utf-8") as fh:
            assert fh.read() == "kept\n"

    def test_compresses_and_removes_original(self, tmp_path):
        source = tmp_path / "app-2025-01-01.log"
        source.write_text('{"message": "x"}\n', encoding="utf-8")
        result = compress_log(source)
        assert result == tmp_path / "app-2025-01-01.log.gz"
        assert not source.exists()


class TestTail:
    def test_newest_first_with_limit(self, log_manager):
        for i in range(5):
            log_manager.info(f"event {i}")
        assert [r["message"] for r in log_manager.tail(3)] == ["event 4", "event 3", "event 2"]

    def test_malformed_lines_become_raw(self, log_manager):
        log_manager.info("good")
        with log_manager.log_path.open("a", encoding="utf-8") as fh:
            fh.write("this is not json\n")
            fh.write("[1, 2]\n")
        records = log_manager.tail()
        assert records[0] == {"raw": "[1, 2]"}
        assert records[1] == {"raw": "this is not json"}
        assert records[2]["message"] == "good"

    def test_empty_or_missing(self, log_manager):
        assert log_manager.tail() == []
        log_manager.info("x")
        assert log_manager.tail(0) == []


class TestDestinations:
    def test_lists_only_matching_names_newest_first(self, log_manager):
        log_dir = log_manager.log_dir
        for name in ("app-2025-01-10.log.gz", "app-2025-01-12.log", "other.log", "app-notes.txt"):
            (log_dir / name).write_text("", encoding="utf-8")
        (log_dir / "app-2025-01-11.log").mkdir()
        assert log_manager.list_destinations() == ["app-2025-01-12.log", "app-2025-01-10.log.gz"]


class TestRetention:
    def test_sweep_deletes_only_expired(self, log_manager, log_clock):
        log_dir = log_manager.log_dir
        now = log_clock.now
        ages = {"app-2025-01-15.log": 0, "app-2025-01-05.log.gz": 10, "app-2024-12-06.log.gz": 40}
        for name, days in ages.items():
            path = log_dir / name
            path.write_text("", encoding="utf-8")
            stamp = (now - timedelta(days=days)).timestamp()
            os.utime(path, (stamp, stamp))

        deleted = log_manager.sweep_retention(30)

        assert deleted == ["app-2024-12-06.log.gz"]
        assert sorted(log_manager.list_destinations()) == ["app-2025-01-05.log.gz", "app-2025-01-15.log"]
        messages = [r["message"] for r in log_manager.tail()]
        assert messages == ["Deleted old log file: app-2024-12-06.log.gz"]

    def test_sweep_with_nothing_expired(self, log_manager):
        log_manager.info("fresh")
        assert log_manager.sweep_retention(30) == []
