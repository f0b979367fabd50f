"""Geographic utility functions."""

import math
import time

METERS_PER_DEGREE_LAT = 111_320.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters using Haversine formula"""
    R = 6371000  # Earth's radius in meters

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def closest_point_on_segment(lat: float, lon: float,
                             lat1: float, lon1: float,
                             lat2: float, lon2: float) -> tuple[float, float]:
    """Project a point onto a segment in degree space, clamped to the endpoints"""
    dx = lon2 - lon1
    dy = lat2 - lat1
    if dx == 0 and dy == 0:
        return lat1, lon1

    t = ((lon - lon1) * dx + (lat - lat1) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))
    return lat1 + t * dy, lon1 + t * dx


def point_to_segment_distance(lat: float, lon: float,
                              lat1: float, lon1: float,
                              lat2: float, lon2: float) -> float:
    """Distance in meters from a point to the closest point of a segment.

    The projection is done on raw lat/lon, which is accurate enough at street
    scale; the final distance is great-circle. A zero-length segment reduces
    to point-to-point distance.
    """
    clat, clon = closest_point_on_segment(lat, lon, lat1, lon1, lat2, lon2)
    return haversine_distance(lat, lon, clat, clon)


def meters_to_degrees(meters: float, lat: float) -> tuple[float, float]:
    """Convert a distance to (degrees latitude, degrees longitude) at a latitude"""
    dlat = meters / METERS_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    return dlat, dlat / cos_lat


def retry_with_backoff(func, max_time: float = 30.0, initial_delay: float = 1.0,
                       max_delay: float = 8.0, description: str = "operation",
                       sleep=time.sleep, logger=None):
    """Retry a function with exponential backoff.

    Args:
        func: Function that returns a truthy value on success, falsy on failure
        max_time: Maximum total time to retry (seconds)
        initial_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        description: Description for logging
        sleep: Sleep function (replaced in tests)
        logger: Optional Logger for retry messages

    Returns:
        The result of func() on success, or None if all retries failed
    """
    start_time = time.time()
    delay = initial_delay
    attempt = 1

    while True:
        result = func()
        if result:
            return result

        elapsed = time.time() - start_time
        if elapsed >= max_time:
            if logger:
                logger.log(f"Failed to complete {description} after {elapsed:.1f}s ({attempt} attempts)")
            return None

        remaining = max_time - elapsed
        sleep_time = min(delay, remaining, max_delay)
        if sleep_time > 0:
            if logger:
                logger.log(f"Retrying {description} in {sleep_time:.1f}s (attempt {attempt})...")
            sleep(sleep_time)

        delay = min(delay * 2, max_delay)
        attempt += 1
