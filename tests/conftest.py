"""Pytest fixtures and upstream payload builders."""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

# main.py loads its configuration at import time
os.environ.setdefault("CONFIG_PATH", str(Path(__file__).resolve().parent.parent / "config.toml"))

from models import Config, LocationConfig, WeatherProviderConfig, WeatherSample  # noqa: E402
from risk_forecast import ForecastAggregator  # noqa: E402
from weather_service import WeatherService  # noqa: E402

NOW = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)
BASE_URL = "https://weather.test/data/2.5"
GEOCODE_URL = "https://geo.test/reverse"
PLACE = "Connaught Place, New Delhi, Delhi, India"


def owm_entry(
    timestamp: datetime,
    temp: float = 25.0,
    wind: float = 3.0,
    humidity: float = 60,
    pressure: float = 1012,
    code: int = 800,
    rain: float = None,
    rain_key: str = "3h",
) -> dict:
    entry = {
        "dt": int(timestamp.timestamp()),
        "main": {"temp": temp, "humidity": humidity, "pressure": pressure},
        "wind": {"speed": wind},
        "weather": [{"id": code, "main": "Weather", "description": "weather"}],
    }
    if rain is not None:
        entry["rain"] = {rain_key: rain}
    return entry


def current_payload(timestamp: datetime = NOW, utc_offset: int = 0, **kwargs) -> dict:
    payload = owm_entry(timestamp, rain_key="1h", **kwargs)
    payload["timezone"] = utc_offset
    payload["name"] = "New Delhi"
    return payload


def forecast_payload(
    start: datetime = NOW + timedelta(hours=3),
    count: int = 40,
    step_hours: int = 3,
    utc_offset: int = 0,
    **kwargs,
) -> dict:
    return {
        "cnt": count,
        "list": [
            owm_entry(start + timedelta(hours=i * step_hours), **kwargs) for i in range(count)
        ],
        "city": {"name": "New Delhi", "timezone": utc_offset},
    }


def make_sample(
    timestamp: datetime = NOW,
    temperature: float = 25.0,
    wind_speed: float = 3.0,
    humidity: float = 60,
    pressure: float = 1012,
    condition_code: int = 800,
    precipitation: float = 0.0,
) -> WeatherSample:
    return WeatherSample(
        timestamp=timestamp,
        temperature=temperature,
        wind_speed=wind_speed,
        humidity=humidity,
        pressure=pressure,
        condition_code=condition_code,
        precipitation=precipitation,
    )


class FakeUpstream:
    """Routes requests to canned responses and records what was asked for."""

    def __init__(self, current=None, forecast=None, place=PLACE):
        self.current = current if current is not None else current_payload()
        self.forecast = forecast if forecast is not None else forecast_payload()
        self.place = place
        self.status = {"weather": 200, "forecast": 200, "reverse": 200}
        self.errors = {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.rsplit("/", 1)[-1]
        if endpoint in self.errors:
            raise self.errors[endpoint]
        status = self.status.get(endpoint, 404)
        if status != 200:
            return httpx.Response(status, json={"message": "upstream error"})
        if endpoint == "weather":
            return httpx.Response(200, json=self.current)
        if endpoint == "forecast":
            return httpx.Response(200, json=self.forecast)
        if endpoint == "reverse":
            return httpx.Response(200, json={"display_name": self.place})
        return httpx.Response(404)

    def params_for(self, endpoint: str) -> dict:
        for request in self.requests:
            if request.url.path.endswith(endpoint):
                return dict(request.url.params)
        return {}


@pytest.fixture
def test_config():
    return Config(
        weather=WeatherProviderConfig(
            api_key="test-key",
            base_url=BASE_URL,
            geocode_url=GEOCODE_URL,
            timeout_seconds=2.0,
            cycle_timeout_seconds=5.0,
        ),
        locations={
            "new-delhi": LocationConfig(name="New Delhi", latitude=28.6139, longitude=77.2090),
            "mumbai": LocationConfig(name="Mumbai", latitude=19.0760, longitude=72.8777),
        },
    )


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def weather_service(test_config, upstream):
    return WeatherService(test_config.weather, transport=httpx.MockTransport(upstream))


@pytest.fixture
def aggregator(weather_service, test_config):
    return ForecastAggregator(weather_service, test_config, clock=lambda: NOW)
