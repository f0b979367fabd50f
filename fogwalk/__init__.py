"""Fogwalk - Street-segment discovery and reveal engine."""

from .config import CONFIG
from .models import (
    Location,
    StreetGeometry,
    SegmentRecord,
    PlayerProgress,
    DiscoveryEvent,
    InvalidRecordError,
    segment_tier,
    display_state,
)
from .logger import Logger
from .geo import (
    haversine_distance,
    point_to_segment_distance,
    retry_with_backoff,
)
from .gps import PositionFilter, GPSPlayback
from .street_index import StreetIndex
from .store import SegmentStore, ExplorationDB
from .progress import ProgressAccumulator
from .reveal import RevealEngine
from .sync import MergeResult, Reconciler, SyncTransport, HttpSyncTransport, TeamSync
from .osm import OSMFetcher, parse_overpass
from .app import Explorer

__all__ = [
    "CONFIG",
    "Location",
    "StreetGeometry",
    "SegmentRecord",
    "PlayerProgress",
    "DiscoveryEvent",
    "InvalidRecordError",
    "segment_tier",
    "display_state",
    "Logger",
    "haversine_distance",
    "point_to_segment_distance",
    "retry_with_backoff",
    "PositionFilter",
    "GPSPlayback",
    "StreetIndex",
    "SegmentStore",
    "ExplorationDB",
    "ProgressAccumulator",
    "RevealEngine",
    "MergeResult",
    "Reconciler",
    "SyncTransport",
    "HttpSyncTransport",
    "TeamSync",
    "OSMFetcher",
    "parse_overpass",
    "Explorer",
]
