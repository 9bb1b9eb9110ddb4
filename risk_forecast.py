import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

import httpx

from models import Config, RiskForecast
from risk_engine import (
    bucket_samples,
    build_window,
    fallback_series,
    local_date,
    make_rng,
    risk_status,
)
from weather_service import WeatherDataError, WeatherService

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown location"
LOCATION_ERROR = "Could not determine your location. Using default location."
WEATHER_ERROR = "Unable to fetch live weather data. Showing sample forecast."


class FetchToken:
    """Cancellation handle for one fetch cycle."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def _valid_coordinate(value: Optional[float], limit: float) -> bool:
    return value is not None and math.isfinite(value) and -limit <= value <= limit


class ForecastAggregator:
    def __init__(
        self,
        weather_service: WeatherService,
        config: Config,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.weather_service = weather_service
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve_position(
        self, latitude: Optional[float], longitude: Optional[float]
    ) -> Tuple[float, float, Optional[str]]:
        """Return usable coordinates, substituting the fallback position if needed."""
        if _valid_coordinate(latitude, 90) and _valid_coordinate(longitude, 180):
            return latitude, longitude, None

        fallback = self.config.fallback
        logger.warning(
            f"Invalid position ({latitude}, {longitude}), "
            f"using fallback {fallback.name} ({fallback.latitude}, {fallback.longitude})"
        )
        return fallback.latitude, fallback.longitude, LOCATION_ERROR

    async def build_forecast(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        token: Optional[FetchToken] = None,
        slug: Optional[str] = None,
    ) -> Optional[RiskForecast]:
        """
        Produce the 7-day risk forecast for a position.

        Upstream failures never propagate: they yield the fallback series with
        an advisory message. Returns None only when the token was cancelled
        before the cycle finished.
        """
        latitude, longitude, error = self.resolve_position(latitude, longitude)
        # Filled in by _collect so a timeout still reports the resolved place
        cycle = {"location": UNKNOWN_LOCATION}
        try:
            return await asyncio.wait_for(
                self._collect(latitude, longitude, error, token, slug, cycle),
                timeout=self.config.weather.cycle_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Fetch cycle for {latitude}, {longitude} timed out")
        except Exception as e:
            logger.exception(f"Unexpected error building forecast for {latitude}, {longitude}: {e}")

        if token is not None and token.cancelled:
            return None
        return self._fallback(latitude, longitude, cycle["location"], error, slug)

    async def _collect(
        self,
        latitude: float,
        longitude: float,
        error: Optional[str],
        token: Optional[FetchToken],
        slug: Optional[str],
        cycle: Dict[str, str],
    ) -> Optional[RiskForecast]:
        async with self.weather_service.open_client() as client:
            location = await self._location_label(client, latitude, longitude)
            cycle["location"] = location
            if _is_cancelled(token):
                return None

            try:
                current, utc_offset = await self.weather_service.fetch_current(
                    client, latitude, longitude
                )
                if _is_cancelled(token):
                    return None
                samples, forecast_offset = await self.weather_service.fetch_forecast(
                    client, latitude, longitude
                )
            except (httpx.HTTPError, WeatherDataError) as e:
                logger.error(f"Error fetching weather data for {latitude}, {longitude}: {e}")
                return self._fallback(latitude, longitude, location, error, slug)

        if _is_cancelled(token):
            return None

        utc_offset = utc_offset or forecast_offset
        today = local_date(self.clock(), utc_offset)
        buckets = bucket_samples([current, *samples], utc_offset)
        rng = make_rng(today, latitude, longitude)
        predictions = build_window(buckets, today, rng, utc_offset)

        return RiskForecast(
            slug=slug,
            latitude=latitude,
            longitude=longitude,
            location=location,
            generated_at=self.clock(),
            predictions=predictions,
            risk_status=risk_status(predictions[2].risk),
            is_fallback=False,
            error=error,
        )

    async def _location_label(
        self, client: httpx.AsyncClient, latitude: float, longitude: float
    ) -> str:
        try:
            return await self.weather_service.reverse_geocode(client, latitude, longitude)
        except (httpx.HTTPError, WeatherDataError) as e:
            logger.warning(f"Reverse geocoding failed for {latitude}, {longitude}: {e}")
            return UNKNOWN_LOCATION

    def _fallback(
        self,
        latitude: float,
        longitude: float,
        location: str,
        error: Optional[str],
        slug: Optional[str],
    ) -> RiskForecast:
        today = local_date(self.clock())
        predictions = fallback_series(today)
        message = WEATHER_ERROR if error is None else f"{error} {WEATHER_ERROR}"
        return RiskForecast(
            slug=slug,
            latitude=latitude,
            longitude=longitude,
            location=location,
            generated_at=self.clock(),
            predictions=predictions,
            risk_status=risk_status(predictions[2].risk),
            is_fallback=True,
            error=message,
        )


def _is_cancelled(token: Optional[FetchToken]) -> bool:
    if token is not None and token.cancelled:
        logger.info("Fetch cycle cancelled, discarding result")
        return True
    return False
