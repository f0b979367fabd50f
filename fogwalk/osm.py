"""OpenStreetMap street geometry fetching via Overpass API with disk caching."""

import hashlib
import json
import os
import time
from typing import Optional

import requests

from .config import CONFIG
from .geo import haversine_distance
from .logger import Logger
from .models import StreetGeometry

HIGHWAY_TYPES = (
    "residential", "primary", "secondary", "tertiary", "unclassified",
    "living_street", "pedestrian", "footway", "path", "cycleway",
)


def parse_overpass(data: dict) -> list[StreetGeometry]:
    """Turn an Overpass `out body; >; out skel` response into street polylines.

    Node order within a way is preserved and nodes absent from the response
    are dropped, so the same response always yields the same segment indices.
    """
    elements = data.get("elements", [])
    nodes: dict[int, tuple[float, float]] = {}
    for element in elements:
        if element.get("type") == "node":
            nodes[element["id"]] = (element["lat"], element["lon"])

    streets = []
    for element in elements:
        if element.get("type") != "way":
            continue
        tags = element.get("tags") or {}
        points = [nodes[n] for n in element.get("nodes", []) if n in nodes]
        if len(points) < 2:
            continue
        streets.append(StreetGeometry(
            id=f"osm_{element['id']}",
            name=tags.get("name"),
            points=tuple(points),
            road_type=tags.get("highway", "unknown"),
        ))
    return streets


class OSMFetcher:
    """Fetch street geometry from OpenStreetMap via Overpass API"""

    OVERPASS_URL = "https://overpass-api.de/api/interpreter"

    def __init__(self, cache_dir: Optional[str] = None, cache_max_age: Optional[float] = None,
                 logger: Optional[Logger] = None):
        self.cache_dir = cache_dir or CONFIG["osm_cache_dir"]
        self.cache_max_age = cache_max_age if cache_max_age is not None else CONFIG["osm_cache_max_age"]
        self.logger = logger or Logger.quiet()

    def _cache_path(self, lat: float, lon: float, radius: float) -> str:
        """Generate a cache file path for the given query parameters."""
        # Round coordinates to reduce near-duplicate caches
        key = f"{lat:.5f},{lon:.5f},{radius:.0f}"
        h = hashlib.md5(key.encode()).hexdigest()[:12]
        return os.path.join(self.cache_dir, f"osm_{h}.json")

    def _find_covering_cache(self, lat: float, lon: float, radius: float) -> Optional[dict]:
        """Find a cached response whose circle contains the requested circle."""
        if not os.path.isdir(self.cache_dir):
            return None
        now = time.time()
        for fname in sorted(os.listdir(self.cache_dir)):
            if not fname.endswith(".json"):
                continue
            fpath = os.path.join(self.cache_dir, fname)
            try:
                age = now - os.path.getmtime(fpath)
                if age > self.cache_max_age:
                    continue
                with open(fpath) as f:
                    cached = json.load(f)
                meta = cached.get("_cache_meta")
                if not meta:
                    continue
                clat, clon, cradius = meta["lat"], meta["lon"], meta["radius"]
                dist = haversine_distance(lat, lon, clat, clon)
                if cradius >= dist + radius:
                    self.logger.log(f"Using cached OSM data ({cradius:.0f}m radius from {age/3600:.1f}h ago)")
                    return cached
            except (json.JSONDecodeError, KeyError, OSError):
                continue
        return None

    def fetch_streets(self, lat: float, lon: float, radius_km: float) -> Optional[list[StreetGeometry]]:
        """Fetch walkable streets within radius_km of a point.

        Returns None when the request fails so callers can keep whatever
        geometry they already hold; an empty list means the area has no
        streets.
        """
        radius = radius_km * 1000
        cached = self._find_covering_cache(lat, lon, radius)
        if cached:
            return parse_overpass(cached)

        timeout = max(25, int(radius / 50))
        query = f"""
        [out:json][timeout:{timeout}];
        (
          way["highway"~"^({'|'.join(HIGHWAY_TYPES)})$"]
            (around:{radius},{lat},{lon});
        );
        out body;
        >;
        out skel qt;
        """

        self.logger.log(f"Fetching OSM data around ({lat:.5f}, {lon:.5f}), radius {radius:.0f}m...")

        try:
            response = requests.post(self.OVERPASS_URL, data={"data": query}, timeout=timeout + 5)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            self.logger.log(f"OSM fetch error: {e}")
            return None

        if data.get("elements"):
            os.makedirs(self.cache_dir, exist_ok=True)
            cache_data = dict(data)
            cache_data["_cache_meta"] = {
                "lat": lat, "lon": lon, "radius": radius,
                "fetched_at": time.time(),
            }
            cache_path = self._cache_path(lat, lon, radius)
            with open(cache_path, "w") as f:
                json.dump(cache_data, f)
            self.logger.log(f"Cached OSM data to {cache_path}")

        streets = parse_overpass(data)
        self.logger.log(f"Fetched {len(streets)} streets")
        return streets
