"""Adapter over the upstream weather APIs used for ingestion."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import httpx

from models.records import (
    ExternalReading,
    FetchAttempt,
    FetchBatch,
    FetchFailure,
    round_half_up,
)
from settings import Settings, WeatherBackend

logger = logging.getLogger(__name__)

# Substituted when Open-Meteo returns no hourly humidity values.
DEFAULT_HUMIDITY = 50.0

CITY_COORDINATES: Mapping[str, Tuple[float, float]] = {
    "London": (51.5074, -0.1278),
    "Dubai": (25.2048, 55.2708),
    "Tokyo": (35.6762, 139.6503),
    "New York": (40.7128, -74.0060),
    "Paris": (48.8566, 2.3522),
    "Sydney": (-33.8688, 151.2093),
}


class WeatherSourceError(RuntimeError):
    """Base error for the weather source adapter."""


class WeatherSourceConfigError(WeatherSourceError):
    """The adapter was configured without what its backend requires."""


class MalformedPayloadError(WeatherSourceError):
    """The upstream response did not contain a usable observation."""


class WeatherFetchError(WeatherSourceError):
    """Terminal failure to fetch a city after all attempts were spent."""

    def __init__(
        self,
        city: str,
        attempts: int,
        message: str,
        history: Sequence[FetchAttempt] = (),
    ) -> None:
        super().__init__(message)
        self.city = city
        self.attempts = attempts
        self.history: List[FetchAttempt] = list(history)


class UnsupportedCityError(WeatherFetchError):
    """The selected backend cannot serve this city; never retried."""

    def __init__(self, city: str, backend: WeatherBackend) -> None:
        super().__init__(
            city,
            attempts=1,
            message=f"City {city} not supported for {backend.value}",
        )
        self.backend = backend


_RETRYABLE_ERRORS = (httpx.HTTPError, MalformedPayloadError)


class WeatherBackendClient(Protocol):
    kind: WeatherBackend

    def fetch(self, client: httpx.Client, city: str) -> ExternalReading:
        ...


def _json_payload(response: httpx.Response) -> Dict[str, Any]:
    response.raise_for_status()
    try:
        payload = response.json()
    except ValueError as exc:
        raise MalformedPayloadError("Response body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Response body is not a JSON object")
    return payload


class OpenWeatherMapBackend:
    """Backend returning humidity and temperature keyed by city name."""

    kind = WeatherBackend.openweathermap

    def __init__(self, url: str, api_key: Optional[str]) -> None:
        if not api_key:
            raise WeatherSourceConfigError("WEATHER_API_KEY is required for OpenWeatherMap")
        self.url = url
        self._api_key = api_key

    def fetch(self, client: httpx.Client, city: str) -> ExternalReading:
        response = client.get(
            self.url,
            params={"q": city, "appid": self._api_key, "units": "metric"},
        )
        payload = _json_payload(response)
        try:
            main = payload["main"]
            temperature = float(main["temp"])
            humidity = float(main["humidity"])
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedPayloadError(f"Unexpected OpenWeatherMap payload: {exc!r}") from exc
        return ExternalReading(city=city, temperature=temperature, humidity=humidity)


class OpenMeteoBackend:
    """Coordinate-based backend with current temperature and hourly humidity."""

    kind = WeatherBackend.open_meteo

    def __init__(
        self,
        url: str,
        coordinates: Mapping[str, Tuple[float, float]] = CITY_COORDINATES,
    ) -> None:
        self.url = url
        self.coordinates = dict(coordinates)

    def fetch(self, client: httpx.Client, city: str) -> ExternalReading:
        coords = self.coordinates.get(city)
        if coords is None:
            raise UnsupportedCityError(city, self.kind)

        latitude, longitude = coords
        response = client.get(
            self.url,
            params={
                "latitude": latitude,
                "longitude": longitude,
                "current_weather": "true",
                "hourly": "relativehumidity_2m",
                "forecast_days": 1,
            },
        )
        payload = _json_payload(response)
        try:
            temperature = float(payload["current_weather"]["temperature"])
            series = payload["hourly"]["relativehumidity_2m"]
            first = series[0] if series else None
            humidity = DEFAULT_HUMIDITY if first is None else float(first)
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            raise MalformedPayloadError(f"Unexpected Open-Meteo payload: {exc!r}") from exc
        return ExternalReading(city=city, temperature=temperature, humidity=humidity)


def _validated(reading: ExternalReading) -> ExternalReading:
    if not math.isfinite(reading.temperature):
        raise MalformedPayloadError(f"Non-finite temperature for {reading.city}")
    # Stored humidity is the half-up rounded value, so 100.3 is still valid.
    if not math.isfinite(reading.humidity) or not 0 <= round_half_up(reading.humidity) <= 100:
        raise MalformedPayloadError(
            f"Humidity {reading.humidity!r} for {reading.city} is outside 0-100"
        )
    return reading


def _build_backend(
    backend: WeatherBackend, url: str, api_key: Optional[str]
) -> WeatherBackendClient:
    if backend is WeatherBackend.openweathermap:
        return OpenWeatherMapBackend(url=url, api_key=api_key)
    return OpenMeteoBackend(url=url)


class WeatherSource:
    """Fetches current observations for cities with bounded retries.

    The backend is chosen once from ``backend``. ``sleep`` is used for the
    pause between attempts, which grows as ``base_delay * attempt_number``.
    """

    def __init__(
        self,
        backend: WeatherBackend,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        base_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if max_attempts < 1:
            raise WeatherSourceConfigError("max_attempts must be at least 1")
        self.backend = backend
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self._backend = _build_backend(backend, url or backend.default_url, api_key)
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def fetch_one(self, city: str) -> ExternalReading:
        attempts: List[FetchAttempt] = []
        for attempt_number in range(1, self.max_attempts + 1):
            try:
                reading = _validated(self._backend.fetch(self._client, city))
            except UnsupportedCityError:
                logger.error(
                    "City is not supported by the configured backend",
                    extra={"city": city, "reason": self.backend.value},
                )
                raise
            except _RETRYABLE_ERRORS as exc:
                attempts.append(FetchAttempt(city=city, attempt_number=attempt_number, error=exc))
                logger.warning(
                    "Attempt %d/%d failed for %s: %s",
                    attempt_number,
                    self.max_attempts,
                    city,
                    exc,
                    extra={"city": city, "attempt": attempt_number},
                )
                if attempt_number < self.max_attempts:
                    delay = self.base_delay * attempt_number
                    logger.info(
                        "Retrying %s",
                        city,
                        extra={"city": city, "delay_seconds": delay},
                    )
                    self._sleep(delay)
                continue

            attempts.append(
                FetchAttempt(city=city, attempt_number=attempt_number, reading=reading)
            )
            return reading

        last_error = attempts[-1].error if attempts else None
        raise WeatherFetchError(
            city,
            attempts=len(attempts),
            message=(
                f"Failed to fetch weather data for {city} after {len(attempts)} attempts: "
                f"{last_error}"
            ),
            history=attempts,
        ) from last_error

    def fetch_many(self, cities: Sequence[str]) -> FetchBatch:
        """Fetch ``cities`` one after another, keeping successes in input order."""
        batch = FetchBatch()
        for city in cities:
            try:
                reading = self.fetch_one(city)
            except WeatherFetchError as exc:
                batch.failures.append(
                    FetchFailure(city=city, reason=str(exc), attempts=exc.attempts)
                )
                logger.error("Failed to fetch weather for %s", city, extra={"city": city})
                continue
            batch.readings.append(reading)
            logger.debug("Fetched weather for %s", city, extra={"city": city})

        if batch.failures:
            logger.warning(
                "Failed to fetch %d/%d cities",
                batch.failed_count,
                len(cities),
                extra={"failed_count": batch.failed_count},
            )
        return batch


def build_weather_source(settings: Settings) -> WeatherSource:
    return WeatherSource(
        backend=settings.weather_backend,
        url=settings.weather_api_url,
        api_key=settings.weather_api_key,
        timeout=settings.request_timeout_seconds,
        max_attempts=settings.max_attempts,
        base_delay=settings.retry_base_delay_seconds,
    )
