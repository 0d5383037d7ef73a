from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import List, Optional

from pydantic import ValidationError

from app.schemas import NewReading, StoredReading

logger = logging.getLogger(__name__)


class StoreClosedError(RuntimeError):
    """Raised when the store is used after :meth:`ReadingStore.close`."""


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _recency_key(reading: StoredReading) -> tuple[datetime, int]:
    return reading.recorded_at, reading.id


class ReadingStore:
    """Append-only log of weather readings.

    Readings live in memory and, when ``persistence_path`` is set, are appended
    to a JSON-lines file that is replayed on construction.
    """

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self.persistence_path = persistence_path
        self._readings: List[StoredReading] = []
        self._next_id = 1
        self._closed = False
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def insert(self, reading: NewReading) -> int:
        """Persist ``reading`` and return the identifier assigned to it."""
        with self._lock:
            if self._closed:
                raise StoreClosedError("Reading store is closed.")
            stored = StoredReading(
                id=self._next_id,
                city_name=reading.city_name,
                temperature_c=reading.temperature_c,
                humidity_percent=reading.humidity_percent,
                recorded_at=_as_utc(reading.recorded_at),
            )
            self._append(stored)
            self._readings.append(stored)
            self._next_id += 1
            return stored.id

    def query_recent(self, limit: int) -> List[StoredReading]:
        """Return up to ``limit`` readings, most recent first."""
        if limit <= 0:
            return []
        with self._lock:
            ordered = sorted(self._readings, key=_recency_key, reverse=True)
        return ordered[:limit]

    def query_window(self, cutoff: datetime) -> List[StoredReading]:
        """Return every reading recorded at or after ``cutoff``, unordered."""
        threshold = _as_utc(cutoff)
        with self._lock:
            return [reading for reading in self._readings if reading.recorded_at >= threshold]

    def query_by_city(self, city: str, limit: int) -> List[StoredReading]:
        if limit <= 0:
            return []
        with self._lock:
            matching = [reading for reading in self._readings if reading.city_name == city]
        matching.sort(key=_recency_key, reverse=True)
        return matching[:limit]

    def count(self) -> int:
        with self._lock:
            return len(self._readings)

    def close(self) -> None:
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _append(self, reading: StoredReading) -> None:
        if not self.persistence_path:
            return
        with self.persistence_path.open("a", encoding="utf-8") as handle:
            handle.write(reading.model_dump_json())
            handle.write("\n")

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            lines = self.persistence_path.read_text(encoding="utf-8").splitlines()
        except OSError:
            logger.warning(
                "Could not read reading log; starting empty",
                extra={"reason": str(self.persistence_path)},
            )
            return

        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                reading = StoredReading.model_validate_json(line)
            except ValidationError:
                logger.warning(
                    "Skipping unreadable reading log entry at line %d",
                    line_number,
                    extra={"reason": "invalid json"},
                )
                continue
            self._readings.append(reading)
            self._next_id = max(self._next_id, reading.id + 1)

