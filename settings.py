from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional, Tuple


_TRACKED_CITIES_ENV = "TRACKED_CITIES"
_INTERVAL_ENV = "INGESTION_INTERVAL_MINUTES"
_BACKEND_ENV = "WEATHER_API_BACKEND"
_API_URL_ENV = "WEATHER_API_URL"
_API_KEY_ENV = "WEATHER_API_KEY"
_TIMEOUT_ENV = "WEATHER_REQUEST_TIMEOUT_SECONDS"
_MAX_ATTEMPTS_ENV = "WEATHER_MAX_ATTEMPTS"
_BASE_DELAY_ENV = "WEATHER_RETRY_BASE_DELAY_SECONDS"
_STORE_PATH_ENV = "READINGS_STORE_PATH"
_CATCH_UP_ENV = "BROADCAST_CATCH_UP_SIZE"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_TRACKED_CITIES = ("London", "Dubai", "Tokyo")


class WeatherBackend(str, Enum):
    """Upstream weather APIs the ingestion adapter can talk to."""

    open_meteo = "open_meteo"
    openweathermap = "openweathermap"

    @property
    def default_url(self) -> str:
        if self is WeatherBackend.openweathermap:
            return "https://api.openweathermap.org/data/2.5/weather"
        return "https://api.open-meteo.com/v1/forecast"


@dataclass(frozen=True)
class Settings:
    tracked_cities: Tuple[str, ...]
    ingestion_interval_minutes: int
    weather_backend: WeatherBackend
    weather_api_url: str
    weather_api_key: Optional[str]
    request_timeout_seconds: float
    max_attempts: int
    retry_base_delay_seconds: float
    store_path: Optional[str]
    catch_up_size: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_cities(default: Tuple[str, ...]) -> Tuple[str, ...]:
    value = os.getenv(_TRACKED_CITIES_ENV)
    if value is None:
        return default
    cities: list[str] = []
    for part in value.split(","):
        city = part.strip()
        if city and city not in cities:
            cities.append(city)
    return tuple(cities) or default


def _read_backend(default: WeatherBackend) -> WeatherBackend:
    value = os.getenv(_BACKEND_ENV)
    if value is None:
        return default
    candidate = value.strip().lower()
    if not candidate:
        return default
    try:
        return WeatherBackend(candidate)
    except ValueError:
        return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    backend = _read_backend(WeatherBackend.open_meteo)
    return Settings(
        tracked_cities=_read_cities(DEFAULT_TRACKED_CITIES),
        ingestion_interval_minutes=_read_positive_int(_INTERVAL_ENV, 10),
        weather_backend=backend,
        weather_api_url=_read_str_env(_API_URL_ENV, backend.default_url),
        weather_api_key=_read_optional_env(_API_KEY_ENV, None),
        request_timeout_seconds=_read_positive_float(_TIMEOUT_ENV, 10.0),
        max_attempts=_read_positive_int(_MAX_ATTEMPTS_ENV, 3),
        retry_base_delay_seconds=_read_positive_float(_BASE_DELAY_ENV, 5.0),
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/readings.jsonl"),
        catch_up_size=_read_positive_int(_CATCH_UP_ENV, 10),
        log_level=_read_log_level("INFO"),
    )
