"""Scheduled fetch, persist and broadcast cycle for tracked cities."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Optional, Protocol, Sequence
from uuid import uuid4

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.schemas import (
    CycleReport,
    FailedCity,
    IngestionState,
    IngestionStatus,
    NewReading,
    StoredReading,
)
from models.records import ExternalReading, FetchBatch, round_half_up

logger = logging.getLogger(__name__)

INGESTION_JOB_ID = "weather_ingestion"
DEFAULT_INTERVAL_MINUTES = 10


class CityFetcher(Protocol):
    def fetch_many(self, cities: Sequence[str]) -> FetchBatch:
        ...


class ReadingWriter(Protocol):
    def insert(self, reading: NewReading) -> int:
        ...


class ReadingSink(Protocol):
    def publish(self, reading: StoredReading) -> int:
        ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IngestionScheduler:
    """Runs ingestion cycles immediately on start and then every interval.

    Cycles are serialized: a trigger that fires while a cycle is running is
    skipped. The broadcast sink may only be attached before :meth:`start`.
    """

    def __init__(
        self,
        source: CityFetcher,
        store: ReadingWriter,
        cities: Sequence[str],
        interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
        clock: Callable[[], datetime] = _utc_now,
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        if interval_minutes <= 0:
            raise ValueError("Ingestion interval must be a positive number of minutes.")
        self.source = source
        self.store = store
        self.cities = tuple(cities)
        self.interval_minutes = interval_minutes
        self._clock = clock
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self._sink: Optional[ReadingSink] = None
        self._started = False
        self._stopped = False
        self._state_lock = Lock()
        self._cycle_lock = Lock()
        self._last_report: Optional[CycleReport] = None

    def attach_sink(self, sink: ReadingSink) -> None:
        with self._state_lock:
            if self._started or self._stopped:
                raise RuntimeError("Broadcast sink must be attached before the scheduler starts.")
            self._sink = sink
        logger.info("Broadcast sink attached to ingestion scheduler")

    def start(self) -> None:
        with self._state_lock:
            if self._stopped:
                raise RuntimeError("Ingestion scheduler has been stopped and cannot be restarted.")
            if self._started:
                logger.warning("Ingestion scheduler already running")
                return

            self._scheduler.add_job(
                self.run_cycle,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=INGESTION_JOB_ID,
                name="Fetch weather for tracked cities",
                next_run_time=datetime.now(timezone.utc),
                max_instances=1,
                coalesce=True,
                misfire_grace_time=None,
                replace_existing=True,
            )
            self._scheduler.start()
            self._started = True

        logger.info(
            "Ingestion scheduler started: %s every %d min",
            ", ".join(self.cities),
            self.interval_minutes,
        )

    def stop(self) -> None:
        """Cancel the periodic trigger and wait for any running cycle."""
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True
            was_started = self._started

        if was_started:
            self._scheduler.shutdown(wait=True)
        with self._cycle_lock:
            pass
        logger.info("Ingestion scheduler stopped")

    def run_cycle(self) -> Optional[CycleReport]:
        """Run one ingestion cycle, or return ``None`` if one cannot start now."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Ingestion cycle already in progress; skipping trigger")
            return None
        try:
            if self._stopped:
                logger.info("Ingestion scheduler stopped; skipping cycle")
                return None
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    @property
    def state(self) -> IngestionState:
        if self._cycle_lock.locked():
            return IngestionState.running
        if self._stopped:
            return IngestionState.stopped
        return IngestionState.idle

    @property
    def last_report(self) -> Optional[CycleReport]:
        return self._last_report

    def status(self) -> IngestionStatus:
        next_run_at = None
        if self._started and not self._stopped:
            job = self._scheduler.get_job(INGESTION_JOB_ID)
            if job is not None:
                next_run_at = job.next_run_time
        return IngestionStatus(
            state=self.state,
            started=self._started and not self._stopped,
            interval_minutes=self.interval_minutes,
            tracked_cities=list(self.cities),
            next_run_at=next_run_at,
            last_report=self._last_report,
        )

    def _run_cycle(self) -> CycleReport:
        start_time = time.perf_counter()
        report = CycleReport(
            cycle_id=uuid4().hex[:12],
            started_at=self._clock(),
            requested_cities=list(self.cities),
        )
        log_extra = {"cycle_id": report.cycle_id}
        logger.info("Starting weather data ingestion for %s", ", ".join(self.cities), extra=log_extra)

        try:
            batch = self.source.fetch_many(self.cities)
        except Exception:
            logger.exception("Weather fetch failed for the whole cycle", extra=log_extra)
            batch = FetchBatch()

        report.fetch_failures = [
            FailedCity(city=failure.city, reason=failure.reason) for failure in batch.failures
        ]
        for external in batch.readings:
            self._ingest_reading(external, report)

        report.finished_at = self._clock()
        report.duration_ms = int((time.perf_counter() - start_time) * 1000)
        self._last_report = report

        logger.info(
            "Ingestion completed (%d/%d cities)",
            len(report.persisted_ids),
            len(self.cities),
            extra={
                **log_extra,
                "failed_count": len(report.fetch_failures) + len(report.persist_failures),
                "duration_ms": report.duration_ms,
            },
        )
        return report

    def _ingest_reading(self, external: ExternalReading, report: CycleReport) -> None:
        log_extra = {"cycle_id": report.cycle_id, "city": external.city}
        try:
            reading = NewReading(
                city_name=external.city,
                temperature_c=external.temperature,
                humidity_percent=round_half_up(external.humidity),
                recorded_at=self._clock(),
            )
            reading_id = self.store.insert(reading)
        except Exception as exc:
            logger.exception("Failed to persist reading for %s", external.city, extra=log_extra)
            report.persist_failures.append(FailedCity(city=external.city, reason=str(exc)))
            return

        stored = StoredReading(id=reading_id, **reading.model_dump())
        report.persisted_ids.append(reading_id)
        logger.info(
            "Saved reading for %s",
            external.city,
            extra={**log_extra, "reading_id": reading_id},
        )

        sink = self._sink
        if sink is None:
            return
        try:
            sink.publish(stored)
        except Exception:
            logger.exception(
                "Failed to broadcast reading for %s",
                external.city,
                extra={**log_extra, "reading_id": reading_id},
            )
            return
        report.published_count += 1
