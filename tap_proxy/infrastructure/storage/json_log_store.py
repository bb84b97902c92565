"""Filesystem log store — one pretty-printed JSON file per interaction.

Storage layout:
    <log_dir>/<timestamp with ':' and '.' replaced by '-'>-<uuid>.json

The timestamp prefix makes lexicographic order chronological, so "newest
first" is a reverse name sort. Every write goes to a temporary file in the
same directory, is fsynced and then renamed over the target, so readers see
either the previous or the new content, never a mix.
"""

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path

from tap_proxy.application.interfaces.log_store import DeleteFailure, DeleteResult, LogStore
from tap_proxy.domain.entities import InteractionRecord

logger = logging.getLogger(__name__)

LOG_FILE_REGEX = re.compile(
    r"^[0-9A-Z\-]+-[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\.json$",
    re.IGNORECASE,
)

_TEMP_PREFIX = ".tmp-"


class JsonFileLogStore(LogStore):
    """Infrastructure adapter for the on-disk interaction log."""

    def __init__(self, log_dir: str | os.PathLike[str]):
        self._dir = Path(log_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def location(self) -> str:
        return str(self._dir)

    # ── Naming ──────────────────────────────────────────────────────

    def name_for(self, record: InteractionRecord) -> str:
        safe_timestamp = re.sub(r"[:.]", "-", record.timestamp)
        return f"{safe_timestamp}-{record.id}.json"

    def is_valid_name(self, name: str) -> bool:
        return bool(LOG_FILE_REGEX.match(name))

    def path_for(self, name: str) -> Path:
        """Absolute path of a record file.

        Raises:
            ValueError: If ``name`` is not a valid log file name.
        """
        if not self.is_valid_name(name):
            raise ValueError(f"invalid file name: {name}")
        return self._dir / name

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    # ── Read / write ────────────────────────────────────────────────

    def write(self, record: InteractionRecord) -> bool:
        name = self.name_for(record)
        try:
            target = self.path_for(name)
            payload = json.dumps(record.to_dict(), indent=2, ensure_ascii=False)
            with self._lock_for(name):
                self._dir.mkdir(parents=True, exist_ok=True)
                self._atomic_write(target, payload)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to write interaction log %s: %s", record.id, exc)
            return False
        logger.debug("Wrote interaction log %s", name)
        return True

    def _atomic_write(self, target: Path, payload: str) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=_TEMP_PREFIX, suffix=".part", dir=self._dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def read(self, name: str) -> InteractionRecord | None:
        if not self.is_valid_name(name):
            logger.debug("Rejected invalid log file name: %s", name)
            return None

        path = self._dir / name
        try:
            with self._lock_for(name):
                raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("Failed to read log file %s: %s", name, exc)
            return None

        try:
            return InteractionRecord.from_dict(json.loads(raw))
        except (json.JSONDecodeError, ValueError, TypeError) as exc:
            logger.warning("Skipping unreadable log file %s: %s", name, exc)
            return None

    def list_names(self) -> list[str]:
        try:
            names = [entry.name for entry in self._dir.iterdir() if entry.is_file()]
        except FileNotFoundError:
            return []
        return sorted((n for n in names if self.is_valid_name(n)), reverse=True)

    def version(self, name: str) -> int | None:
        if not self.is_valid_name(name):
            return None
        try:
            return (self._dir / name).stat().st_mtime_ns
        except OSError:
            return None

    def delete(self, names: list[str]) -> DeleteResult:
        result = DeleteResult()
        for name in names:
            if not self.is_valid_name(name):
                result.failed.append(DeleteFailure(file_name=name, error="invalid file name"))
                continue
            try:
                with self._lock_for(name):
                    (self._dir / name).unlink()
            except FileNotFoundError:
                result.failed.append(DeleteFailure(file_name=name, error="not found"))
                continue
            except OSError as exc:
                result.failed.append(DeleteFailure(file_name=name, error=str(exc)))
                continue
            with self._locks_guard:
                self._locks.pop(name, None)
            result.deleted.append(name)
            logger.info("Deleted log file: %s", name)
        return result
