"""Bounded append-only reading log persisted as a single JSON document."""

import asyncio
import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from config import configure_logging
from processor.schemas import Reading, as_utc, utcnow

DEFAULT_MAX_READINGS = 1000


class PersistenceError(Exception):
    """The reading log could not be read from or written to disk."""


class JsonLogFile:
    """
    Whole-document JSON persistence: {"readings": [...], "last_updated": iso}.
    Writes go to a temp file in the same directory and are swapped in with
    os.replace, so a crash never leaves a half-written log behind.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            document = json.load(f)
        return list(document.get("readings", []))

    def write(self, records: list[dict[str, Any]]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {"readings": records, "last_updated": utcnow().isoformat()}
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class BoundedReadingStore:
    """
    Size-capped log of readings, independent of the in-memory aggregate.

    append() trims the oldest entries once the log exceeds max_readings and
    persists before returning. All mutations are serialized by one lock so
    overlapping appends never interleave their evict/write sequences.
    """

    def __init__(self, path: str | Path, max_readings: int = DEFAULT_MAX_READINGS, log_level: str | None = None):
        if max_readings < 1:
            raise ValueError("max_readings must be positive")
        self.log = configure_logging("reading-store", log_level)
        self.max_readings = max_readings
        self._file = JsonLogFile(path)
        self._readings: list[Reading] = []
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._file.path

    async def open(self):
        """Load an existing log from disk, trimming it to the cap."""
        async with self._lock:
            try:
                records = await asyncio.to_thread(self._file.read)
                readings = [Reading.model_validate(r) for r in records]
            except (OSError, ValueError, ValidationError) as e:
                raise PersistenceError(f"cannot load reading log {self.path}: {e}") from e
            self._readings = readings[-self.max_readings:]
        self.log.info("reading_store_opened", path=str(self.path), readings=len(self._readings))

    async def append(self, reading: Reading) -> Reading:
        """Append and persist. Raises PersistenceError if the write fails.

        On failure the reading stays in the in-memory log; it is simply not
        durable until the next successful write.
        """
        async with self._lock:
            self._readings.append(reading)
            if len(self._readings) > self.max_readings:
                del self._readings[: len(self._readings) - self.max_readings]
            records = [r.to_record() for r in self._readings]
            try:
                await asyncio.to_thread(self._file.write, records)
            except OSError as e:
                self.log.error("reading_persist_failed", path=str(self.path), error=str(e))
                raise PersistenceError(f"cannot write reading log {self.path}: {e}") from e
        self.log.debug("reading_stored", kind=reading.kind, value=reading.value, size=len(self._readings))
        return reading

    def latest(self, count: int = 1) -> list[Reading]:
        """Most recent `count` readings, oldest of the window first."""
        if count <= 0:
            return []
        return list(self._readings[-count:])

    def latest_by_kind(self, kind: str) -> Reading | None:
        kind = kind.strip().lower()
        for reading in reversed(self._readings):
            if reading.kind == kind:
                return reading
        return None

    def in_range(self, start: datetime, end: datetime) -> list[Reading]:
        """Readings observed within [start, end], in insertion order."""
        start, end = as_utc(start), as_utc(end)
        return [r for r in self._readings if start <= r.observed_at <= end]

    def __len__(self) -> int:
        return len(self._readings)
