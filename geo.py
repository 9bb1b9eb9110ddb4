import math

EARTH_RADIUS_KM = 6371


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km (haversine)."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def km_to_miles(km: float) -> float:
    return km * 0.621371


def format_distance(distance_km: float, use_km: bool = True) -> str:
    if use_km:
        if distance_km < 1:
            return f"{round(distance_km * 1000)} m"
        return f"{distance_km:.1f} km"
    miles = km_to_miles(distance_km)
    if miles < 1:
        return f"{round(miles * 5280)} ft"
    return f"{miles:.1f} miles"
