"""
Great-circle distance helpers.

All venue geofencing is done in meters; the haversine formula is accurate
well beyond the few hundred meters the geofence cares about.
"""

import math

EARTH_RADIUS_KM = 6371.0


def calculate_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the haversine distance between two coordinates.

    Args:
        lat1: Latitude of the first point in degrees
        lon1: Longitude of the first point in degrees
        lat2: Latitude of the second point in degrees
        lon2: Longitude of the second point in degrees

    Returns:
        Distance in kilometers
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def calculate_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in meters."""
    return calculate_distance_km(lat1, lon1, lat2, lon2) * 1000.0


def is_within_distance_m(
    lat1: float, lon1: float, lat2: float, lon2: float, max_distance_m: float
) -> bool:
    """Check whether two coordinates are at most ``max_distance_m`` apart."""
    return calculate_distance_m(lat1, lon1, lat2, lon2) <= max_distance_m


def format_distance(distance_m: float) -> str:
    """
    Format a distance for display.

    Examples:
        >>> format_distance(312.4)
        '312 m'
        >>> format_distance(2500)
        '2.5 km'
        >>> format_distance(12600)
        '13 km'
    """
    if distance_m < 1000:
        return f"{distance_m:.0f} m"
    distance_km = distance_m / 1000.0
    if distance_km < 10:
        return f"{distance_km:.1f} km"
    return f"{round(distance_km)} km"
