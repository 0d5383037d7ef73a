"""Pydantic schemas shared by the store, broadcast channel and HTTP API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

UPDATE_EVENT = "weather:update"


class NewReading(BaseModel):
    """A reading about to be persisted; the store assigns its identifier."""

    model_config = ConfigDict(frozen=True)

    city_name: str = Field(..., min_length=1)
    temperature_c: float = Field(..., allow_inf_nan=False)
    humidity_percent: int = Field(..., ge=0, le=100)
    recorded_at: datetime


class StoredReading(NewReading):
    """A persisted reading together with its store-generated identifier."""

    id: int = Field(..., ge=1, description="Identifier assigned by the reading store.")


class CityAnalytics(BaseModel):
    """Aggregated statistics for one city over an analytics window."""

    city_name: str
    min_temperature: float
    max_temperature: float
    avg_humidity: float


class AnalyticsResponse(BaseModel):
    period_hours: int
    analytics: List[CityAnalytics] = Field(default_factory=list)


class BroadcastEvent(BaseModel):
    """Envelope pushed to WebSocket subscribers."""

    event: str = UPDATE_EVENT
    data: StoredReading


class IngestionState(str, Enum):
    """Lifecycle states of the ingestion scheduler."""

    idle = "idle"
    running = "running"
    stopped = "stopped"


class FailedCity(BaseModel):
    city: str
    reason: str


class CycleReport(BaseModel):
    """Summary of a single ingestion cycle."""

    cycle_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    requested_cities: List[str] = Field(default_factory=list)
    persisted_ids: List[int] = Field(default_factory=list)
    fetch_failures: List[FailedCity] = Field(default_factory=list)
    persist_failures: List[FailedCity] = Field(default_factory=list)
    published_count: int = Field(default=0, ge=0)
    duration_ms: Optional[int] = None


class IngestionStatus(BaseModel):
    state: IngestionState
    started: bool
    interval_minutes: int
    tracked_cities: List[str]
    next_run_at: Optional[datetime] = None
    last_report: Optional[CycleReport] = None
