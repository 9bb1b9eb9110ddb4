from collections import Counter
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class LocationConfig(BaseModel):
    name: str
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    refresh_interval_minutes: int = 60


class WeatherProviderConfig(BaseModel):
    api_key: str = ""
    base_url: str = "https://api.openweathermap.org/data/2.5"
    geocode_url: str = "https://nominatim.openstreetmap.org/reverse"
    user_agent: str = "disaster-risk-forecast/1.0"
    timeout_seconds: float = 10.0
    cycle_timeout_seconds: float = 30.0


class FallbackConfig(BaseModel):
    name: str = "New Delhi, India"
    latitude: float = 28.6139
    longitude: float = 77.2090


class Config(BaseModel):
    server: ServerConfig = ServerConfig()
    weather: WeatherProviderConfig = WeatherProviderConfig()
    fallback: FallbackConfig = FallbackConfig()
    locations: Dict[str, LocationConfig] = {}


class WeatherSample(BaseModel):
    timestamp: datetime
    temperature: float  # °C
    wind_speed: float  # m/s
    humidity: float  # %
    pressure: float  # hPa
    condition_code: int
    precipitation: float = 0.0  # mm over the sample interval


class DayBucket(BaseModel):
    """All samples that fall on one local calendar day."""

    day: date
    samples: List[WeatherSample] = Field(min_length=1)

    @property
    def total_rainfall(self) -> float:
        return sum(s.precipitation for s in self.samples)

    @property
    def condition_codes(self) -> List[int]:
        return [s.condition_code for s in self.samples]

    @property
    def temperatures(self) -> List[float]:
        return [s.temperature for s in self.samples]

    @property
    def wind_speeds(self) -> List[float]:
        return [s.wind_speed for s in self.samples]

    @property
    def humidities(self) -> List[float]:
        return [s.humidity for s in self.samples]

    @property
    def pressures(self) -> List[float]:
        return [s.pressure for s in self.samples]

    @property
    def dominant_code(self) -> int:
        """Most frequent condition code; ties go to the lowest code."""
        counts = Counter(self.condition_codes)
        return min(counts, key=lambda code: (-counts[code], code))


class RiskAssessment(BaseModel):
    risk: int = Field(ge=0, le=100)
    warning_type: Optional[str] = None


class DisasterPrediction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    date: date
    display_date: str = Field(alias="displayDate")
    risk: int = Field(ge=0, le=100)
    rainfall: float = Field(ge=0)  # mm
    wind_speed: float = Field(ge=0, alias="windSpeed")  # m/s
    temperature: float  # °C
    humidity: float = Field(ge=0, le=100)
    predicted: bool
    warning_type: Optional[str] = Field(default=None, alias="warningType")
    synthetic: bool = False

    @computed_field(alias="windSpeedKmh")
    @property
    def wind_speed_kmh(self) -> float:
        return round(self.wind_speed * 3.6, 1)


class RiskForecast(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slug: Optional[str] = None
    latitude: float
    longitude: float
    location: str
    generated_at: datetime = Field(alias="generatedAt")
    predictions: List[DisasterPrediction] = Field(min_length=7, max_length=7)
    selected_day: int = Field(default=2, ge=0, le=6, alias="selectedDay")
    risk_status: str = Field(alias="riskStatus")
    is_fallback: bool = Field(default=False, alias="isFallback")
    error: Optional[str] = None

    @property
    def today(self) -> DisasterPrediction:
        return self.predictions[2]


class AssistantRequest(BaseModel):
    message: str


class AssistantResponse(BaseModel):
    reply: str


class ErrorResponse(BaseModel):
    error: str
    message: str
