"""Windowed analytics over stored weather readings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Protocol

from app.schemas import CityAnalytics, StoredReading

logger = logging.getLogger(__name__)

MIN_WINDOW_HOURS = 1
MAX_WINDOW_HOURS = 168
DEFAULT_WINDOW_HOURS = 24


class WindowValidationError(ValueError):
    """Raised when an analytics window is outside the supported range."""


class WindowedReadings(Protocol):
    def query_window(self, cutoff: datetime) -> List[StoredReading]:
        ...


@dataclass
class _CityAccumulator:
    min_temperature: float
    max_temperature: float
    humidity_total: int = 0
    count: int = 0

    def add(self, reading: StoredReading) -> None:
        temperature = reading.temperature_c
        if temperature < self.min_temperature:
            self.min_temperature = temperature
        if temperature > self.max_temperature:
            self.max_temperature = temperature
        self.humidity_total += reading.humidity_percent
        self.count += 1


class Aggregator:
    """Pure per-city aggregation that can be unit tested in isolation."""

    def aggregate(self, readings: Iterable[StoredReading]) -> List[CityAnalytics]:
        groups: Dict[str, _CityAccumulator] = {}

        for reading in readings:
            group = groups.get(reading.city_name)
            if group is None:
                group = _CityAccumulator(
                    min_temperature=reading.temperature_c,
                    max_temperature=reading.temperature_c,
                )
                groups[reading.city_name] = group
            group.add(reading)

        return [
            CityAnalytics(
                city_name=city,
                min_temperature=group.min_temperature,
                max_temperature=group.max_temperature,
                avg_humidity=group.humidity_total / group.count,
            )
            for city, group in sorted(groups.items())
        ]


def validate_window(window_hours: int) -> int:
    if isinstance(window_hours, bool) or not isinstance(window_hours, int):
        raise WindowValidationError(
            f"Hours parameter must be an integer, got {window_hours!r}"
        )
    if not MIN_WINDOW_HOURS <= window_hours <= MAX_WINDOW_HOURS:
        raise WindowValidationError(
            f"Hours parameter must be between {MIN_WINDOW_HOURS} and "
            f"{MAX_WINDOW_HOURS} (7 days), got {window_hours}"
        )
    return window_hours


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AnalyticsEngine:
    """Computes min/max temperature and mean humidity per city."""

    def __init__(
        self,
        store: WindowedReadings,
        aggregator: Aggregator | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.aggregator = aggregator or Aggregator()
        self._clock = clock

    def compute_analytics(self, window_hours: int = DEFAULT_WINDOW_HOURS) -> List[CityAnalytics]:
        validate_window(window_hours)
        cutoff = self._clock() - timedelta(hours=window_hours)
        readings = self.store.query_window(cutoff)
        analytics = self.aggregator.aggregate(readings)
        logger.debug(
            "Computed analytics for %d cities",
            len(analytics),
            extra={"window_hours": window_hours, "reading_count": len(readings)},
        )
        return analytics
