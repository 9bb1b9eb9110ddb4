"""
Disaster risk scoring over day-bucketed weather samples.

Everything in this module is synchronous and free of I/O: samples go in,
a 7-day window of DisasterPrediction rows comes out. The only randomness is
the synthesized history and the slot backfill, both drawn from a
caller-provided random.Random.
"""
import logging
import random
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from models import DayBucket, DisasterPrediction, RiskAssessment, WeatherSample

logger = logging.getLogger(__name__)

WINDOW_NAMES = [
    "2 Days Ago",
    "Yesterday",
    "Today",
    "Tomorrow",
    "In 2 Days",
    "In 3 Days",
    "In 4 Days",
]
TODAY_INDEX = 2

# Demonstration series served when no live data can be obtained
FALLBACK_RISK = [15, 25, 65, 80, 45, 30, 20]
FALLBACK_RAINFALL = [5, 20, 45, 60, 30, 15, 5]
FALLBACK_WIND = [3, 5, 8, 12, 9, 6, 4]
FALLBACK_TEMPERATURE = [22, 20, 19, 18, 21, 23, 24]
FALLBACK_HUMIDITY = [50, 65, 85, 90, 75, 60, 55]
FALLBACK_WARNINGS = {2: "Heavy Rain", 3: "Flood Risk"}

# (days back, temperature delta, rainfall scale, rainfall noise, wind scale, humidity scale)
HISTORY_PROFILE = [
    (2, 2.0, 0.5, 2.0, 0.7, 0.9),
    (1, 1.5, 0.8, 1.5, 0.8, 0.95),
]

EXTREME_CODES = {
    906: (50, "Hail"),
    905: (60, "High Winds"),
    957: (60, "High Winds"),
    901: (90, "Hurricane"),
    902: (90, "Hurricane"),
    962: (90, "Hurricane"),
    900: (95, "Tornado"),
}


def make_rng(today: date, latitude: float, longitude: float) -> random.Random:
    """RNG seeded by day and position so a fetch cycle is reproducible."""
    return random.Random(f"{today.isoformat()}:{latitude:.4f}:{longitude:.4f}")


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def local_date(timestamp: datetime, utc_offset_seconds: int = 0) -> date:
    """Calendar date of a timestamp at a fixed UTC offset."""
    tz = timezone(timedelta(seconds=utc_offset_seconds))
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(tz).date()


def bucket_samples(
    samples: Iterable[WeatherSample], utc_offset_seconds: int = 0
) -> Dict[str, DayBucket]:
    """
    Group samples by local calendar date.

    Returns buckets keyed by ISO date string, each holding its samples in
    timestamp order.
    """
    grouped: Dict[str, List[WeatherSample]] = {}
    for sample in sorted(samples, key=lambda s: s.timestamp):
        key = local_date(sample.timestamp, utc_offset_seconds).isoformat()
        grouped.setdefault(key, []).append(sample)

    return {
        key: DayBucket(day=date.fromisoformat(key), samples=day_samples)
        for key, day_samples in grouped.items()
    }


def synthesize_history(
    today_bucket: DayBucket,
    rng: random.Random,
    utc_offset_seconds: int = 0,
) -> Dict[str, DayBucket]:
    """
    Build stand-in buckets for the two days before today.

    The provider only forecasts forward, so past days are derived from
    today's aggregates with small perturbations. Each synthesized bucket
    holds a single sample.
    """
    temperature = float(np.mean(today_bucket.temperatures))
    rainfall = today_bucket.total_rainfall
    wind = float(np.mean(today_bucket.wind_speeds))
    humidity = float(np.mean(today_bucket.humidities))
    pressure = float(np.mean(today_bucket.pressures))
    code = today_bucket.dominant_code
    tz = timezone(timedelta(seconds=utc_offset_seconds))

    history = {}
    for days_back, temp_delta, rain_scale, rain_noise, wind_scale, humidity_scale in HISTORY_PROFILE:
        day = today_bucket.day - timedelta(days=days_back)
        sample = WeatherSample(
            timestamp=datetime.combine(day, time(12, 0), tzinfo=tz),
            temperature=temperature + rng.uniform(-temp_delta, temp_delta),
            wind_speed=max(0.0, wind * wind_scale),
            humidity=clamp(humidity * humidity_scale, 0, 100),
            pressure=pressure,
            condition_code=code,
            precipitation=max(
                0.0, rainfall * rain_scale + rng.uniform(-rain_noise, rain_noise)
            ),
        )
        history[day.isoformat()] = DayBucket(day=day, samples=[sample])
    return history


def condition_contribution(code: int) -> Tuple[int, Optional[str]]:
    """Risk points and warning label for a dominant weather condition code."""
    if 200 <= code < 300:
        return 60, "Thunderstorm"
    if 300 <= code < 400:
        return 20, "Drizzle"
    if 500 <= code < 600:
        if code >= 502:
            return 50, "Heavy Rain"
        return 30, "Rain"
    if 600 <= code < 700:
        if code >= 602:
            return 55, "Heavy Snow"
        return 35, "Snow"
    if 700 <= code < 800:
        return 25, "Reduced Visibility"
    if code == 800:
        return 10, None
    if 800 < code < 900:
        return 15, None
    if code >= 900:
        return EXTREME_CODES.get(code, (70, "Extreme Weather"))
    return 0, None


def assess_bucket(bucket: DayBucket) -> RiskAssessment:
    """
    Score one day.

    Contributions are additive; the warning label is taken from the first
    contribution that carries one.
    """
    risk, warning = condition_contribution(bucket.dominant_code)

    rainfall = bucket.total_rainfall
    if rainfall > 50:
        risk += 25
        warning = warning or "Flood Risk"
    elif rainfall > 20:
        risk += 15
    elif rainfall > 10:
        risk += 5

    wind = float(np.mean(bucket.wind_speeds))
    if wind > 20:
        risk += 25
        warning = warning or "High Winds"
    elif wind > 13.8:
        risk += 15
    elif wind > 8:
        risk += 5

    temperature = float(np.mean(bucket.temperatures))
    if temperature > 35:
        risk += 20
        warning = warning or "Extreme Heat"
    elif temperature < 0:
        risk += 20
        warning = warning or "Freezing Conditions"

    if float(np.mean(bucket.pressures)) < 990:
        risk += 15

    return RiskAssessment(risk=int(clamp(round(risk), 0, 100)), warning_type=warning)


def risk_status(risk: int) -> str:
    if risk < 30:
        return "Low"
    if risk < 60:
        return "Moderate"
    return "High"


def display_date(day: date) -> str:
    return day.strftime("%a, %b %d")


def window_days(today: date) -> List[date]:
    return [today + timedelta(days=i - TODAY_INDEX) for i in range(len(WINDOW_NAMES))]


def prediction_from_bucket(
    index: int, bucket: DayBucket, synthetic: bool = False
) -> DisasterPrediction:
    assessment = assess_bucket(bucket)
    return DisasterPrediction(
        name=WINDOW_NAMES[index],
        date=bucket.day,
        display_date=display_date(bucket.day),
        risk=assessment.risk,
        rainfall=round(bucket.total_rainfall, 1),
        wind_speed=round(float(np.mean(bucket.wind_speeds)), 1),
        temperature=round(float(np.mean(bucket.temperatures)), 1),
        humidity=round(clamp(float(np.mean(bucket.humidities)), 0, 100)),
        predicted=index > TODAY_INDEX,
        warning_type=assessment.warning_type,
        synthetic=synthetic,
    )


def perturb_prediction(
    source: DisasterPrediction, index: int, day: date, rng: random.Random
) -> DisasterPrediction:
    """Fill an empty slot from a neighbouring row with bounded noise."""
    return DisasterPrediction(
        name=WINDOW_NAMES[index],
        date=day,
        display_date=display_date(day),
        risk=int(clamp(source.risk + rng.randint(-10, 10), 0, 100)),
        rainfall=round(max(0.0, source.rainfall + rng.uniform(-2.5, 2.5)), 1),
        wind_speed=round(max(0.0, source.wind_speed + rng.uniform(-1, 1)), 1),
        temperature=round(source.temperature + rng.uniform(-1, 1), 1),
        humidity=round(clamp(source.humidity + rng.uniform(-5, 5), 0, 100)),
        predicted=index > TODAY_INDEX,
        warning_type=None,
        synthetic=True,
    )


def backfill(
    slots: List[Optional[DisasterPrediction]], today: date, rng: random.Random
) -> List[DisasterPrediction]:
    """
    Populate every empty slot.

    Each empty slot is perturbed from the nearest earlier slot that held a
    row before backfilling started; a leading gap uses the first populated
    slot. Filled rows are never used as a source, so noise does not compound.
    """
    populated = [i for i, slot in enumerate(slots) if slot is not None]
    if not populated:
        raise ValueError("cannot backfill a window with no populated slot")

    days = window_days(today)
    filled = list(slots)
    source = populated[0]
    for index, slot in enumerate(slots):
        if slot is not None:
            source = index
            continue
        filled[index] = perturb_prediction(slots[source], index, days[index], rng)
    return filled


def build_window(
    buckets: Dict[str, DayBucket],
    today: date,
    rng: random.Random,
    utc_offset_seconds: int = 0,
) -> List[DisasterPrediction]:
    """
    Turn day buckets into the 7-slot prediction window centred on today.

    History is synthesized from today's bucket when the provider has nothing
    for the previous two days; slots still missing afterwards are backfilled.
    """
    buckets = dict(buckets)
    synthetic_keys = set()
    today_bucket = buckets.get(today.isoformat())
    if today_bucket is not None:
        for key, bucket in synthesize_history(today_bucket, rng, utc_offset_seconds).items():
            if key not in buckets:
                buckets[key] = bucket
                synthetic_keys.add(key)
    else:
        logger.warning(f"No samples for {today.isoformat()}, history not synthesized")

    slots: List[Optional[DisasterPrediction]] = []
    for index, day in enumerate(window_days(today)):
        key = day.isoformat()
        bucket = buckets.get(key)
        if bucket is None:
            slots.append(None)
        else:
            slots.append(prediction_from_bucket(index, bucket, key in synthetic_keys))

    missing = [WINDOW_NAMES[i] for i, slot in enumerate(slots) if slot is None]
    if missing:
        logger.info(f"Backfilling {len(missing)} empty slots: {missing}")
    return backfill(slots, today, rng)


def fallback_series(today: date) -> List[DisasterPrediction]:
    """Fixed demonstration series aligned to the window around today."""
    predictions = []
    for index, day in enumerate(window_days(today)):
        predictions.append(
            DisasterPrediction(
                name=WINDOW_NAMES[index],
                date=day,
                display_date=display_date(day),
                risk=FALLBACK_RISK[index],
                rainfall=FALLBACK_RAINFALL[index],
                wind_speed=FALLBACK_WIND[index],
                temperature=FALLBACK_TEMPERATURE[index],
                humidity=FALLBACK_HUMIDITY[index],
                predicted=index > TODAY_INDEX,
                warning_type=FALLBACK_WARNINGS.get(index),
                synthetic=True,
            )
        )
    return predictions
