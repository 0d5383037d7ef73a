"""Construction of the long-lived services shared by the API and ingestion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from datastore.readings import ReadingStore
from services.analytics import AnalyticsEngine
from services.broadcast import BroadcastChannel
from services.ingestion import IngestionScheduler
from services.weather_source import WeatherSource, build_weather_source
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    store: ReadingStore
    source: WeatherSource
    channel: BroadcastChannel
    scheduler: IngestionScheduler
    analytics: AnalyticsEngine

    def start(self) -> None:
        self.scheduler.attach_sink(self.channel)
        self.scheduler.start()

    def shutdown(self) -> None:
        """Stop ingestion, then release the HTTP client and the store."""
        self.scheduler.stop()
        self.source.close()
        self.store.close()
        logger.info("Weather services shut down")


def build_services(settings: Optional[Settings] = None) -> ServiceContainer:
    """Wire the default services from ``settings`` (environment by default)."""
    settings = settings or get_settings()
    store_path = Path(settings.store_path) if settings.store_path else None
    store = ReadingStore(persistence_path=store_path)
    source = build_weather_source(settings)
    channel = BroadcastChannel(store=store, catch_up_size=settings.catch_up_size)
    scheduler = IngestionScheduler(
        source=source,
        store=store,
        cities=settings.tracked_cities,
        interval_minutes=settings.ingestion_interval_minutes,
    )
    return ServiceContainer(
        store=store,
        source=source,
        channel=channel,
        scheduler=scheduler,
        analytics=AnalyticsEngine(store=store),
    )
