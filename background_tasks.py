import asyncio
import logging
from typing import Dict, Optional

from models import Config, LocationConfig, RiskForecast
from risk_forecast import FetchToken, ForecastAggregator
from weather_service import WeatherService

logger = logging.getLogger(__name__)


class RiskUpdateTask:
    def __init__(
        self,
        aggregator: ForecastAggregator,
        weather_service: WeatherService,
        config: Config,
    ):
        self.aggregator = aggregator
        self.weather_service = weather_service
        self.config = config
        self.running = False
        self._tokens: Dict[str, FetchToken] = {}

    async def start_background_updates(self):
        """Start the background task for updating risk forecasts."""
        self.running = True
        logger.info("Starting background risk forecast updates")

        # Initial fetch on startup
        await self.update_all_locations()

        # Schedule periodic updates
        while self.running:
            await asyncio.sleep(self.config.server.refresh_interval_minutes * 60)
            if self.running:
                await self.update_all_locations()

    async def update_all_locations(self):
        """Update risk forecasts for all configured locations, one at a time."""
        locations = list(self.config.locations.items())
        logger.info(f"Updating risk forecasts for {len(locations)} locations")

        for slug, location in locations:
            try:
                await self.update_location(slug, location)
            except Exception as e:
                logger.error(f"Failed to update {slug}: {e}")

    async def update_location(
        self, slug: str, location: LocationConfig
    ) -> Optional[RiskForecast]:
        """
        Recompute the forecast for a single location.

        A newer refresh of the same slug cancels this one; a cancelled
        refresh leaves the cache untouched and returns None.
        """
        previous = self._tokens.get(slug)
        if previous is not None:
            previous.cancel()
        token = FetchToken()
        self._tokens[slug] = token

        try:
            forecast = await self.aggregator.build_forecast(
                location.latitude, location.longitude, token=token, slug=slug
            )
            if forecast is None or token.cancelled:
                logger.info(f"Discarding stale forecast for {slug}")
                return None
            self.weather_service.update_cache(slug, forecast)
            logger.info(f"Successfully updated {slug} (fallback={forecast.is_fallback})")
            return forecast
        finally:
            if self._tokens.get(slug) is token:
                del self._tokens[slug]

    def stop(self):
        """Stop the background update task."""
        self.running = False
        for token in self._tokens.values():
            token.cancel()
        logger.info("Stopping background risk forecast updates")
