"""Domain models shared across services."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(slots=True)
class ExternalReading:
    """A normalized observation returned by an upstream weather API."""

    city: str
    temperature: float
    humidity: float


@dataclass(slots=True)
class FetchAttempt:
    """Outcome of a single request made while fetching one city."""

    city: str
    attempt_number: int
    reading: Optional[ExternalReading] = None
    error: Optional[BaseException] = None


@dataclass(slots=True)
class FetchFailure:
    """A city that could not be fetched during a batch."""

    city: str
    reason: str
    attempts: int


@dataclass
class FetchBatch:
    """Successful readings in tracked-city order plus the cities that failed."""

    readings: List[ExternalReading] = field(default_factory=list)
    failures: List[FetchFailure] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)
