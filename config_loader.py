import os
from typing import Optional

import toml

from models import Config, FallbackConfig, LocationConfig, ServerConfig, WeatherProviderConfig

DEFAULT_CONFIG_PATH = "config.toml"


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from TOML file."""
    config_path = config_path or os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)
    try:
        with open(config_path, "r") as f:
            config_data = toml.load(f)

        server_config = ServerConfig(**config_data.get("server", {}))
        fallback_config = FallbackConfig(**config_data.get("fallback", {}))

        weather_data = config_data.get("weather", {})
        # API keys are usually injected by the environment rather than committed
        api_key = os.getenv("OPENWEATHER_API_KEY")
        if api_key:
            weather_data["api_key"] = api_key
        weather_config = WeatherProviderConfig(**weather_data)

        locations = {}
        for slug, location_data in config_data.get("locations", {}).items():
            locations[slug] = LocationConfig(**location_data)

        return Config(
            server=server_config,
            weather=weather_config,
            fallback=fallback_config,
            locations=locations,
        )

    except Exception as e:
        raise Exception(f"Failed to load config: {e}") from e


def get_location_slugs(config: Config) -> list[str]:
    """Get list of all configured location slugs."""
    return list(config.locations.keys())
