from __future__ import annotations

from typing import Iterator

import pytest

from services.container import build_services
from services.weather_source import WeatherSourceConfigError
from settings import DEFAULT_TRACKED_CITIES, WeatherBackend, get_settings


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults_apply_without_environment(monkeypatch) -> None:
    for name in (
        "TRACKED_CITIES",
        "INGESTION_INTERVAL_MINUTES",
        "WEATHER_API_BACKEND",
        "WEATHER_API_URL",
        "WEATHER_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings.tracked_cities == DEFAULT_TRACKED_CITIES
    assert settings.ingestion_interval_minutes == 10
    assert settings.weather_backend is WeatherBackend.open_meteo
    assert settings.weather_api_url == "https://api.open-meteo.com/v1/forecast"
    assert settings.max_attempts == 3
    assert settings.retry_base_delay_seconds == 5.0
    assert settings.request_timeout_seconds == 10.0
    assert settings.catch_up_size == 10


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    store_path = tmp_path / "readings.jsonl"
    monkeypatch.setenv("TRACKED_CITIES", " Paris, Sydney ,,Paris")
    monkeypatch.setenv("INGESTION_INTERVAL_MINUTES", "5")
    monkeypatch.setenv("WEATHER_API_BACKEND", "OpenWeatherMap")
    monkeypatch.setenv("WEATHER_API_KEY", "secret")
    monkeypatch.delenv("WEATHER_API_URL", raising=False)
    monkeypatch.setenv("READINGS_STORE_PATH", str(store_path))

    settings = get_settings()
    services = build_services(settings)

    try:
        assert settings.tracked_cities == ("Paris", "Sydney")
        assert settings.weather_backend is WeatherBackend.openweathermap
        assert settings.weather_api_url == "https://api.openweathermap.org/data/2.5/weather"
        assert services.scheduler.cities == ("Paris", "Sydney")
        assert services.scheduler.interval_minutes == 5
        assert services.source.backend is WeatherBackend.openweathermap
        assert services.store.persistence_path == store_path
    finally:
        services.shutdown()


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("INGESTION_INTERVAL_MINUTES", "-3")
    monkeypatch.setenv("WEATHER_API_BACKEND", "carrier-pigeon")
    monkeypatch.setenv("WEATHER_MAX_ATTEMPTS", "many")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.ingestion_interval_minutes == 10
    assert settings.weather_backend is WeatherBackend.open_meteo
    assert settings.max_attempts == 3
    assert settings.log_level == "DEBUG"


def test_missing_api_key_for_openweathermap_fails_wiring(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("WEATHER_API_BACKEND", "openweathermap")
    monkeypatch.delenv("WEATHER_API_KEY", raising=False)
    monkeypatch.setenv("READINGS_STORE_PATH", str(tmp_path / "readings.jsonl"))

    with pytest.raises(WeatherSourceConfigError):
        build_services(get_settings())
