from __future__ import annotations

import math
from typing import Callable, List

import httpx
import pytest

from models.records import ExternalReading
from services.weather_source import (
    DEFAULT_HUMIDITY,
    UnsupportedCityError,
    WeatherFetchError,
    WeatherSource,
    WeatherSourceConfigError,
)
from settings import WeatherBackend

Handler = Callable[[httpx.Request], httpx.Response]

LONDON_LATITUDE = "51.5074"


def _open_meteo_payload(temperature: float = 15.5, humidity: list | None = None) -> dict:
    return {
        "current_weather": {"temperature": temperature},
        "hourly": {"relativehumidity_2m": [65, 70, 68] if humidity is None else humidity},
    }


def _build_source(
    handler: Handler,
    delays: List[float],
    backend: WeatherBackend = WeatherBackend.open_meteo,
    api_key: str | None = None,
) -> WeatherSource:
    return WeatherSource(
        backend=backend,
        api_key=api_key,
        sleep=delays.append,
        transport=httpx.MockTransport(handler),
    )


def test_fetch_one_normalizes_open_meteo_payload() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=_open_meteo_payload())

    source = _build_source(handler, [])

    reading = source.fetch_one("London")

    assert reading == ExternalReading(city="London", temperature=15.5, humidity=65.0)
    params = requests[0].url.params
    assert params["latitude"] == LONDON_LATITUDE
    assert params["hourly"] == "relativehumidity_2m"
    assert params["current_weather"] == "true"


@pytest.mark.parametrize("series", [[], [None, 70]])
def test_missing_hourly_humidity_defaults(series: list) -> None:
    source = _build_source(
        lambda request: httpx.Response(200, json=_open_meteo_payload(humidity=series)), []
    )

    reading = source.fetch_one("Tokyo")

    assert reading.humidity == DEFAULT_HUMIDITY


@pytest.mark.parametrize("raw_humidity", [0, 0.4, 49.5, 99.6, 100])
def test_successful_fetch_has_valid_humidity_and_finite_temperature(raw_humidity: float) -> None:
    source = _build_source(
        lambda request: httpx.Response(
            200, json=_open_meteo_payload(temperature=-3.25, humidity=[raw_humidity])
        ),
        [],
    )

    reading = source.fetch_one("Paris")

    assert 0 <= round(reading.humidity) <= 100
    assert math.isfinite(reading.temperature)


def test_out_of_range_humidity_is_treated_as_failed_attempt() -> None:
    delays: List[float] = []
    source = _build_source(
        lambda request: httpx.Response(200, json=_open_meteo_payload(humidity=[120])), delays
    )

    with pytest.raises(WeatherFetchError) as exc_info:
        source.fetch_one("London")

    assert exc_info.value.attempts == 3
    assert "outside 0-100" in str(exc_info.value)


@pytest.mark.parametrize("raw_humidity", [100.3, -0.4])
def test_humidity_that_rounds_into_range_is_accepted_first_time(raw_humidity: float) -> None:
    delays: List[float] = []
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=_open_meteo_payload(humidity=[raw_humidity]))

    reading = _build_source(handler, delays).fetch_one("London")

    assert reading.humidity == raw_humidity
    assert len(requests) == 1
    assert delays == []


def test_humidity_rounding_past_100_is_rejected() -> None:
    delays: List[float] = []
    source = _build_source(
        lambda request: httpx.Response(200, json=_open_meteo_payload(humidity=[100.5])), delays
    )

    with pytest.raises(WeatherFetchError):
        source.fetch_one("London")

    assert delays == [5.0, 10.0]


def test_retry_succeeds_on_third_attempt_after_backoff() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(500, json={"error": "Server error"})
        return httpx.Response(200, json=_open_meteo_payload(temperature=18.0, humidity=[60]))

    delays: List[float] = []
    source = _build_source(handler, delays)

    reading = source.fetch_one("London")

    assert reading == ExternalReading(city="London", temperature=18.0, humidity=60.0)
    assert calls["count"] == 3
    assert delays == [5.0, 10.0]
    assert sum(delays) >= 3 * source.base_delay


def test_exhausted_attempts_raise_terminal_error_naming_city() -> None:
    delays: List[float] = []
    source = _build_source(lambda request: httpx.Response(500), delays)

    with pytest.raises(WeatherFetchError) as exc_info:
        source.fetch_one("London")

    error = exc_info.value
    assert "Failed to fetch weather data for London after 3 attempts" in str(error)
    assert error.city == "London"
    assert error.attempts == 3
    assert [attempt.attempt_number for attempt in error.history] == [1, 2, 3]
    assert isinstance(error.__cause__, httpx.HTTPStatusError)
    assert delays == [5.0, 10.0]


def test_timeouts_and_network_errors_are_retried() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        if calls["count"] == 2:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=_open_meteo_payload())

    delays: List[float] = []
    source = _build_source(handler, delays)

    assert source.fetch_one("Dubai").city == "Dubai"
    assert delays == [5.0, 10.0]


def test_unsupported_city_fails_fast_without_requests_or_sleep() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=_open_meteo_payload())

    delays: List[float] = []
    source = _build_source(handler, delays)

    with pytest.raises(UnsupportedCityError) as exc_info:
        source.fetch_one("Atlantis")

    assert "Atlantis" in str(exc_info.value)
    assert exc_info.value.attempts == 1
    assert requests == []
    assert delays == []


def test_fetch_many_skips_failed_city_and_keeps_order() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["latitude"] == LONDON_LATITUDE:
            return httpx.Response(500, json={"error": "Server error"})
        return httpx.Response(200, json=_open_meteo_payload(temperature=25.0, humidity=[45]))

    source = _build_source(handler, [])

    batch = source.fetch_many(["London", "Dubai", "Tokyo"])

    assert [reading.city for reading in batch.readings] == ["Dubai", "Tokyo"]
    assert batch.failed_count == 1
    assert batch.failures[0].city == "London"
    assert batch.failures[0].attempts == 3


def test_fetch_many_records_unsupported_city_without_raising(caplog) -> None:
    source = _build_source(lambda request: httpx.Response(200, json=_open_meteo_payload()), [])

    with caplog.at_level("WARNING"):
        batch = source.fetch_many(["Atlantis", "Sydney"])

    assert [reading.city for reading in batch.readings] == ["Sydney"]
    assert [failure.city for failure in batch.failures] == ["Atlantis"]
    assert any("Failed to fetch 1/2 cities" in record.getMessage() for record in caplog.records)


def test_openweathermap_requires_api_key_at_construction() -> None:
    with pytest.raises(WeatherSourceConfigError, match="WEATHER_API_KEY is required"):
        WeatherSource(backend=WeatherBackend.openweathermap, api_key=None)


def test_openweathermap_backend_reads_main_block() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200, json={"name": "London", "main": {"temp": 16.5, "humidity": 70}}
        )

    source = _build_source(
        handler, [], backend=WeatherBackend.openweathermap, api_key="test_api_key"
    )

    reading = source.fetch_one("London")

    assert reading == ExternalReading(city="London", temperature=16.5, humidity=70.0)
    params = requests[0].url.params
    assert params["q"] == "London"
    assert params["appid"] == "test_api_key"
    assert params["units"] == "metric"
    assert requests[0].url.host == "api.openweathermap.org"
