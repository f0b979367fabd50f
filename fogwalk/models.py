"""Data classes for Fogwalk."""

import math
from dataclasses import dataclass, asdict, field
from typing import Optional

from .config import CONFIG
from .geo import haversine_distance

SCHEMA_VERSION = 2

# Display states, lowest to highest
TEAM_DISCOVERED = "team_discovered"
DISCOVERED = "discovered"
MASTERED = "mastered"
LEGENDARY = "legendary"


class InvalidRecordError(ValueError):
    """A segment record payload is missing required fields"""


def segment_tier(times_walked: int) -> str:
    """Tier for a walk count: discovered (1-9), mastered (10-49), legendary (50+)"""
    if times_walked >= CONFIG["legendary_walks"]:
        return LEGENDARY
    if times_walked >= CONFIG["mastered_walks"]:
        return MASTERED
    return DISCOVERED


def display_state(record: "SegmentRecord") -> str:
    """Colour state for a revealed segment, distinguishing teammates' discoveries"""
    if not record.discovered_by_me:
        return TEAM_DISCOVERED
    return record.tier


@dataclass
class Location:
    lat: float
    lon: float
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Location":
        return cls(**d)


@dataclass(frozen=True)
class StreetGeometry:
    """A named street polyline as delivered by the geometry provider"""
    id: str  # provider-assigned, e.g. "osm_12345"
    name: Optional[str]
    points: tuple[tuple[float, float], ...]  # (lat, lon)
    road_type: str = "unknown"

    def __post_init__(self):
        object.__setattr__(self, "points", tuple((float(lat), float(lon)) for lat, lon in self.points))
        if len(self.points) < 2:
            raise ValueError(f"Street {self.id} needs at least 2 points, got {len(self.points)}")

    @property
    def segment_count(self) -> int:
        return len(self.points) - 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "points": [list(p) for p in self.points],
            "type": self.road_type,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "StreetGeometry":
        return cls(
            id=d["id"],
            name=d.get("name"),
            points=tuple(tuple(p) for p in d["points"]),
            road_type=d.get("type", "unknown"),
        )


def _coordinate(d: dict, key: str) -> float:
    value = d.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidRecordError(f"missing or non-numeric {key!r}")
    if not math.isfinite(value):
        raise InvalidRecordError(f"non-finite {key!r}")
    return float(value)


@dataclass
class SegmentRecord:
    """One revealed slice of a street (a consecutive point pair)"""
    id: str  # "{street_id}_{segment_index}"
    street_id: str
    start_lat: float
    start_lon: float
    end_lat: float
    end_lon: float
    street_name: Optional[str] = None
    times_walked: int = 1
    first_discovered_at: float = 0.0
    last_walked_at: float = 0.0
    discovered_by_me: bool = True

    @classmethod
    def make_id(cls, street_id: str, segment_index: int) -> str:
        return f"{street_id}_{segment_index}"

    @property
    def tier(self) -> str:
        return segment_tier(self.times_walked)

    @property
    def start_point(self) -> tuple[float, float]:
        return (self.start_lat, self.start_lon)

    @property
    def end_point(self) -> tuple[float, float]:
        return (self.end_lat, self.end_lon)

    @property
    def length_meters(self) -> float:
        return haversine_distance(self.start_lat, self.start_lon, self.end_lat, self.end_lon)

    def record_walk(self, now: float):
        """Count another local walk; a teammate's segment becomes mine"""
        self.times_walked += 1
        self.last_walked_at = max(self.last_walked_at, now)
        self.discovered_by_me = True

    def validate(self):
        """Raise InvalidRecordError unless id, coordinates and walk count are usable.

        A walk count below 1 is accepted here; mergers clamp it to 1, as
        from_dict does.
        """
        if not isinstance(self.id, str) or not self.id:
            raise InvalidRecordError("missing segment id")
        d = asdict(self)
        for key in ("start_lat", "start_lon", "end_lat", "end_lon"):
            _coordinate(d, key)
        if isinstance(self.times_walked, bool) or not isinstance(self.times_walked, int):
            raise InvalidRecordError(f"non-integer times_walked in segment {self.id}")

    def to_dict(self) -> dict:
        d = asdict(self)
        d["schema_version"] = SCHEMA_VERSION
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "SegmentRecord":
        """Build a record from a stored or wire payload, migrating older schemas.

        Version 1 payloads predate team play and carry no discovered_by_me
        flag; everything in them was walked on this device. Missing walk
        counts default to 1 and a missing last_walked_at falls back to the
        discovery time.
        """
        if not isinstance(d, dict):
            raise InvalidRecordError(f"expected a mapping, got {type(d).__name__}")
        segment_id = d.get("id")
        if not isinstance(segment_id, str) or not segment_id:
            raise InvalidRecordError("missing segment id")

        try:
            version = int(d.get("schema_version", 1))
            first = d.get("first_discovered_at")
            first = float(first) if first is not None else 0.0
            last = d.get("last_walked_at")
            last = float(last) if last is not None else first
            times_walked = d.get("times_walked")
            times_walked = max(1, int(times_walked)) if times_walked is not None else 1
        except (TypeError, ValueError) as e:
            raise InvalidRecordError(f"bad field in segment {segment_id}: {e}") from e

        street_id = d.get("street_id") or segment_id.rsplit("_", 1)[0]
        if version < 2:
            discovered_by_me = True
        else:
            discovered_by_me = bool(d.get("discovered_by_me", True))

        return cls(
            id=segment_id,
            street_id=street_id,
            street_name=d.get("street_name"),
            start_lat=_coordinate(d, "start_lat"),
            start_lon=_coordinate(d, "start_lon"),
            end_lat=_coordinate(d, "end_lat"),
            end_lon=_coordinate(d, "end_lon"),
            times_walked=times_walked,
            first_discovered_at=first,
            last_walked_at=last,
            discovered_by_me=discovered_by_me,
        )


@dataclass
class PlayerProgress:
    """Player state touched by exploration"""
    xp: int = 0
    level: int = 1
    discovery_points: int = 0
    total_distance_walked: float = 0.0  # meters

    @property
    def xp_for_next_level(self) -> int:
        return self.level * CONFIG["xp_per_level"]

    @property
    def level_progress(self) -> float:
        """Progress to next level (0.0 - 1.0)"""
        return self.xp / self.xp_for_next_level

    @property
    def title(self) -> str:
        if self.level <= 10:
            return "Wanderer"
        if self.level <= 25:
            return "Peddler"
        return "Merchant"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "PlayerProgress":
        return cls(
            xp=int(d.get("xp", 0)),
            level=int(d.get("level", 1)),
            discovery_points=int(d.get("discovery_points", 0)),
            total_distance_walked=float(d.get("total_distance_walked", 0.0)),
        )


@dataclass
class DiscoveryEvent:
    """Outcome of processing one accepted position"""
    new_segments: int
    walked_segments: int
    new_ids: list[str] = field(default_factory=list)
    position: Optional[Location] = None
