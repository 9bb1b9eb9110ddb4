import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from models import RiskForecast, WeatherProviderConfig, WeatherSample

logger = logging.getLogger(__name__)


class WeatherDataError(Exception):
    """Raised when an upstream payload is empty or missing required fields."""


def _precipitation(entry: Dict[str, Any]) -> float:
    """Rain plus snow water equivalent for the entry's interval, in mm."""
    total = 0.0
    for kind in ("rain", "snow"):
        amounts = entry.get(kind) or {}
        total += float(amounts.get("1h", amounts.get("3h", 0.0)) or 0.0)
    return total


def _sample_from_entry(entry: Dict[str, Any]) -> WeatherSample:
    try:
        main = entry["main"]
        return WeatherSample(
            timestamp=datetime.fromtimestamp(entry["dt"], tz=timezone.utc),
            temperature=main["temp"],
            wind_speed=(entry.get("wind") or {}).get("speed", 0.0),
            humidity=main["humidity"],
            pressure=main.get("pressure", 1013.0),
            condition_code=entry["weather"][0]["id"],
            precipitation=_precipitation(entry),
        )
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise WeatherDataError(f"Malformed weather entry: {e}") from e


def parse_current_payload(payload: Dict[str, Any]) -> Tuple[WeatherSample, int]:
    """Parse an OpenWeatherMap current-weather payload into a sample and UTC offset."""
    if not payload:
        raise WeatherDataError("Empty current weather payload")
    return _sample_from_entry(payload), int(payload.get("timezone", 0))


def parse_forecast_payload(payload: Dict[str, Any]) -> Tuple[List[WeatherSample], int]:
    """Parse an OpenWeatherMap 5 day / 3 hour forecast payload."""
    entries = (payload or {}).get("list")
    if not entries:
        raise WeatherDataError("Forecast payload contains no entries")
    utc_offset = int((payload.get("city") or {}).get("timezone", 0))
    return [_sample_from_entry(entry) for entry in entries], utc_offset


class WeatherService:
    def __init__(
        self,
        provider: WeatherProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self.transport = transport
        self.cached_forecasts: Dict[str, RiskForecast] = {}

    def open_client(self) -> httpx.AsyncClient:
        """Create a client for one fetch cycle."""
        return httpx.AsyncClient(
            timeout=self.provider.timeout_seconds,
            headers={"User-Agent": self.provider.user_agent},
            transport=self.transport,
        )

    async def _get_json(
        self, client: httpx.AsyncClient, url: str, params: Dict[str, Any], **kwargs
    ) -> Dict[str, Any]:
        logger.debug(f"GET {url}")
        response = await client.get(url, params=params, **kwargs)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise WeatherDataError(f"Invalid JSON from {url}: {e}") from e

    async def reverse_geocode(
        self, client: httpx.AsyncClient, latitude: float, longitude: float
    ) -> str:
        """Human readable place name for a coordinate."""
        data = await self._get_json(
            client,
            self.provider.geocode_url,
            {
                "format": "json",
                "lat": latitude,
                "lon": longitude,
                "zoom": 18,
                "addressdetails": 1,
            },
            headers={"Accept-Language": "en"},
        )
        label = data.get("display_name")
        if not label:
            raise WeatherDataError("Reverse geocoding returned no display_name")
        return label

    async def fetch_current(
        self, client: httpx.AsyncClient, latitude: float, longitude: float
    ) -> Tuple[WeatherSample, int]:
        data = await self._get_json(
            client, f"{self.provider.base_url}/weather", self._params(latitude, longitude)
        )
        return parse_current_payload(data)

    async def fetch_forecast(
        self, client: httpx.AsyncClient, latitude: float, longitude: float
    ) -> Tuple[List[WeatherSample], int]:
        data = await self._get_json(
            client, f"{self.provider.base_url}/forecast", self._params(latitude, longitude)
        )
        samples, utc_offset = parse_forecast_payload(data)
        logger.info(f"Fetched {len(samples)} forecast samples for {latitude}, {longitude}")
        return samples, utc_offset

    def _params(self, latitude: float, longitude: float) -> Dict[str, Any]:
        return {
            "lat": latitude,
            "lon": longitude,
            "units": "metric",
            "appid": self.provider.api_key,
        }

    def update_cache(self, slug: str, forecast: RiskForecast):
        """Update the cache with a new risk forecast."""
        self.cached_forecasts[slug] = forecast
        logger.info(f"Updated cache for {slug}")

    def get_cached_forecast(self, slug: str) -> Optional[RiskForecast]:
        """Get cached forecast data."""
        return self.cached_forecasts.get(slug)

    def clear_cache(self):
        """Clear all cached data."""
        self.cached_forecasts.clear()
        logger.info("Cleared forecast cache")
