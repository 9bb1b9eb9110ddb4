import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from assistant import respond
from background_tasks import RiskUpdateTask
from config_loader import get_location_slugs, load_config
from geo import calculate_distance, format_distance
from models import (
    AssistantRequest,
    AssistantResponse,
    DisasterPrediction,
    ErrorResponse,
    RiskForecast,
)
from risk_engine import WINDOW_NAMES
from risk_forecast import ForecastAggregator
from weather_service import WeatherService

# Configure logging with Docker-friendly format
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),  # Console output for Docker logs
        (
            logging.FileHandler("/app/logs/risk_api.log")
            if os.path.exists("/app/logs")
            else logging.NullHandler()
        ),
    ],
)
logger = logging.getLogger(__name__)

# Global variables
config = load_config()
weather_service = WeatherService(config.weather)
aggregator = ForecastAggregator(weather_service, config)
update_task = RiskUpdateTask(aggregator, weather_service, config)
background_task = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    global background_task

    # Startup
    logger.info("Starting disaster risk forecast API")
    logger.info(f"Configured locations: {get_location_slugs(config)}")
    logger.info(f"Refresh interval: {config.server.refresh_interval_minutes} minutes")
    if not config.weather.api_key:
        logger.warning("No weather API key configured, forecasts will use sample data")

    background_task = asyncio.create_task(update_task.start_background_updates())

    yield

    # Shutdown
    logger.info("Shutting down disaster risk forecast API")
    update_task.stop()
    if background_task:
        background_task.cancel()
        try:
            await background_task
        except asyncio.CancelledError:
            logger.info("Background task cancelled successfully")


app = FastAPI(
    title="Disaster Risk Forecast API",
    description="Weather-driven 7-day disaster risk forecasts",
    version="1.0.0",
    lifespan=lifespan,
)


def _check_day_index(index: int):
    if not 0 <= index < len(WINDOW_NAMES):
        raise HTTPException(
            status_code=404,
            detail=f"Day index {index} out of range (0-{len(WINDOW_NAMES) - 1})",
        )


def _select_day(forecast: RiskForecast, index: int) -> DisasterPrediction:
    _check_day_index(index)
    return forecast.predictions[index]


@app.get("/risk-forecast", response_model=RiskForecast)
async def get_risk_forecast(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
):
    """
    Compute the 7-day disaster risk forecast for a position.

    Without coordinates the configured fallback position is used. Upstream
    failures produce the sample series with an advisory in `error`.
    """
    return await aggregator.build_forecast(lat, lon)


@app.get("/risk-forecast/days/{index}", response_model=DisasterPrediction)
async def get_risk_forecast_day(
    index: int,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
):
    """Detail for one day of the live forecast (0 = two days ago, 2 = today)."""
    _check_day_index(index)
    forecast = await aggregator.build_forecast(lat, lon)
    return _select_day(forecast, index)


def _cached_forecast(slug: str) -> RiskForecast:
    if slug not in config.locations:
        available_locations = list(config.locations.keys())
        raise HTTPException(
            status_code=404,
            detail=f"Location '{slug}' not found. Available locations: {available_locations}",
        )

    forecast = weather_service.get_cached_forecast(slug)
    if forecast is None:
        raise HTTPException(
            status_code=503,
            detail=f"Risk forecast for '{slug}' is not available yet. Please try again in a few moments.",
        )
    return forecast


@app.get("/forecast/{slug}", response_model=RiskForecast)
async def get_forecast(slug: str):
    """Get the cached risk forecast for a configured location."""
    return _cached_forecast(slug)


@app.get("/forecast/{slug}/days/{index}", response_model=DisasterPrediction)
async def get_forecast_day(slug: str, index: int):
    """Get one day of the cached risk forecast for a configured location."""
    return _select_day(_cached_forecast(slug), index)


@app.get("/locations")
async def get_locations(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
):
    """Get list of all configured locations, with distances when a position is given."""
    locations = {}
    for slug, location in config.locations.items():
        entry = {
            "name": location.name,
            "latitude": location.latitude,
            "longitude": location.longitude,
        }
        if lat is not None and lon is not None:
            distance = calculate_distance(lat, lon, location.latitude, location.longitude)
            entry["distance_km"] = round(distance, 2)
            entry["distance"] = format_distance(distance)
        locations[slug] = entry
    return {"locations": locations}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    cached_locations = list(weather_service.cached_forecasts.keys())
    return {
        "status": "healthy",
        "cached_locations": cached_locations,
        "total_locations": len(config.locations),
        "refresh_interval_minutes": config.server.refresh_interval_minutes,
        "cache_status": {
            slug: forecast.generated_at.isoformat()
            for slug, forecast in weather_service.cached_forecasts.items()
        },
    }


@app.post("/refresh/{slug}")
async def refresh_location(slug: str):
    """Manually refresh the risk forecast for a specific location."""
    if slug not in config.locations:
        raise HTTPException(status_code=404, detail=f"Location '{slug}' not found")

    try:
        forecast = await update_task.update_location(slug, config.locations[slug])
    except Exception as e:
        logger.error(f"Failed to refresh {slug}: {e}")
        raise HTTPException(
            status_code=500, detail=f"Failed to refresh data for {slug}: {str(e)}"
        )

    if forecast is None:
        return {"message": f"Refresh for {slug} was superseded by a newer refresh"}
    return {
        "message": f"Successfully refreshed data for {slug}",
        "is_fallback": forecast.is_fallback,
    }


@app.post("/assistant", response_model=AssistantResponse)
async def ask_assistant(request: AssistantRequest):
    """Answer a disaster-preparedness question."""
    return AssistantResponse(reply=respond(request.message))


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error", message=str(exc)).model_dump(),
    )


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", config.server.host)
    port = int(os.getenv("PORT", config.server.port))

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(app, host=host, port=port, log_level=log_level.lower(), access_log=True)
