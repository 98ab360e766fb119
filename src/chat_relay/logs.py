"""Date-partitioned application log.

Records are appended as JSON lines to ``app-YYYY-MM-DD.log`` in the log
directory. The date is checked on every append: once the UTC day changes, the
previous day's file is gzipped to ``app-YYYY-MM-DD.log.gz`` on a background
thread and writing continues in the new day's file. Old destinations are
removed by :meth:`LogManager.sweep_retention`, which the service schedules.
"""

import gzip
import json
import logging
import shutil
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import click

logger = logging.getLogger(__name__)

LEVELS = ("info", "warn", "error")
LOG_PREFIX = "app-"
LOG_SUFFIXES = (".log", ".log.gz")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogManager:
    """Owns the active daily log destination."""

    def __init__(
        self,
        log_dir: Path,
        clock: Callable[[], datetime] | None = None,
        echo: bool = True,
    ):
        self.log_dir = Path(log_dir)
        self.clock = clock or _utcnow
        self.echo = echo
        self._lock = threading.Lock()
        self._workers: list[threading.Thread] = []

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.current_date = self._today()

    @property
    def log_path(self) -> Path:
        """Path of the active destination."""
        return self.log_dir / f"{LOG_PREFIX}{self.current_date}.log"

    # ── Writing ──────────────────────────────────────────────────────

    def append(self, level: str, message: str, metadata: dict | None = None) -> dict:
        """Append one record to today's destination and echo it to the console."""
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level!r}")

        metadata = dict(metadata or {})
        with self._lock:
            self._rotate_if_needed()
            timestamp = _format_timestamp(self.clock())
            record = {**metadata, "timestamp": timestamp, "level": level, "message": message}
            line = json.dumps(record, ensure_ascii=False, default=str)
            with self.log_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")

        if self.echo:
            console = f"[{timestamp}] {level.upper()}: {message}"
            if metadata:
                console += f" {json.dumps(metadata, ensure_ascii=False, default=str)}"
            click.echo(console, err=level == "error")
        return record

    def info(self, message: str, metadata: dict | None = None) -> dict:
        return self.append("info", message, metadata)

    def warn(self, message: str, metadata: dict | None = None) -> dict:
        return self.append("warn", message, metadata)

    def error(self, message: str, metadata: dict | None = None) -> dict:
        return self.append("error", message, metadata)

    # ── Rotation ─────────────────────────────────────────────────────

    def _today(self) -> str:
        return self.clock().astimezone(timezone.utc).date().isoformat()

    def _rotate_if_needed(self) -> None:
        """Switch to a new day's destination, compressing the previous one off-thread."""
        today = self._today()
        if today == self.current_date:
            return

        previous = self.log_path
        self.current_date = today
        if previous.exists():
            worker = threading.Thread(
                target=compress_log,
                args=(previous,),
                name=f"log-compress-{previous.name}",
                daemon=True,
            )
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
            worker.start()

    def wait_for_compression(self, timeout: float | None = None) -> None:
        """Block until scheduled compressions have finished."""
        for worker in list(self._workers):
            worker.join(timeout)
        self._workers = [w for w in self._workers if w.is_alive()]

    # ── Reading ──────────────────────────────────────────────────────

    def tail(self, limit: int = 100) -> list[dict]:
        """Return up to *limit* most-recent records of the current day, newest first."""
        if limit <= 0:
            return []

        path = self.log_path
        if not path.exists():
            return []

        lines = [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
        records = []
        for line in lines[-limit:]:
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                record = {"raw": line}
            if not isinstance(record, dict):
                record = {"raw": line}
            records.append(record)

        records.reverse()
        return records

    def list_destinations(self) -> list[str]:
        """Return every rotated destination name, newest date first."""
        if not self.log_dir.is_dir():
            return []
        names = [
            p.name for p in self.log_dir.iterdir()
            if p.is_file() and p.name.startswith(LOG_PREFIX) and p.name.endswith(LOG_SUFFIXES)
        ]
        return sorted(names, reverse=True)

    # ── Retention ────────────────────────────────────────────────────

    def sweep_retention(self, days_to_keep: int = 30) -> list[str]:
        """Delete destinations last modified more than *days_to_keep* days ago.

        Returns the names removed.
        """
        cutoff = (self.clock() - timedelta(days=days_to_keep)).timestamp()
        deleted = []
        for name in self.list_destinations():
            path = self.log_dir / name
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
                path.unlink()
            except FileNotFoundError:
                # Compression finished and removed it while we were scanning
                continue
            deleted.append(name)
            self.info(f"Deleted old log file: {name}", {"file": name})
        return deleted


def compress_log(path: Path) -> Path | None:
    """Gzip *path* to ``<path>.gz`` and remove the original.

    Failures are tolerated: a partial archive is discarded, the original stays
    in place, and None is returned.
    """
    gz_path = path.with_name(path.name + ".gz")
    try:
        src = path.open("rb")
    except OSError as e:
        logger.debug("Nothing to compress at %s: %s", path, e)
        return None

    try:
        with src, gzip.open(gz_path, "wb") as dst:
            shutil.copyfileobj(src, dst)
    except OSError as e:
        logger.debug("Compression of %s failed: %s", path, e)
        gz_path.unlink(missing_ok=True)
        return None

    try:
        path.unlink()
    except OSError as e:
        logger.debug("Could not remove %s after compression: %s", path, e)
    return gz_path


def _format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
