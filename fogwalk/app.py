"""Main Fogwalk application."""

import time
from typing import Optional

from .config import CONFIG
from .geo import haversine_distance, retry_with_backoff
from .gps import PositionFilter
from .logger import Logger
from .models import DiscoveryEvent, Location, PlayerProgress
from .osm import OSMFetcher
from .progress import ProgressAccumulator
from .reveal import RevealEngine
from .store import ExplorationDB, SegmentStore
from .street_index import StreetIndex
from .sync import Reconciler, SyncTransport, TeamSync


class Explorer:
    """Wires GPS filtering, street geometry, reveal engine, progress and team sync"""

    def __init__(self, store: Optional[SegmentStore] = None,
                 fetcher: Optional[OSMFetcher] = None,
                 transport: Optional[SyncTransport] = None,
                 team_id: Optional[str] = None,
                 progress: Optional[PlayerProgress] = None,
                 logger: Optional[Logger] = None,
                 clock=time.time):
        self.logger = logger or Logger.quiet()
        self.store = store if store is not None else SegmentStore()
        self.fetcher = fetcher or OSMFetcher(logger=self.logger)
        self.clock = clock

        if progress is None and isinstance(self.store, ExplorationDB):
            progress = self.store.load_progress()
        self.progress = ProgressAccumulator(progress, logger=self.logger)

        self.filter = PositionFilter(clock=clock, logger=self.logger)
        self.index = StreetIndex()
        self.reconciler = Reconciler(self.store, clock=clock, logger=self.logger)

        self.team_sync: Optional[TeamSync] = None
        if transport is not None:
            watermark = None
            if team_id and isinstance(self.store, ExplorationDB):
                watermark = self.store.get_watermark(team_id)
            self.team_sync = TeamSync(
                self.reconciler, transport,
                team_id=team_id,
                watermark=watermark,
                on_watermark=self._save_watermark,
                logger=self.logger,
            )

        self.engine = RevealEngine(
            self.index, self.store,
            progress=self.progress,
            publish=self.team_sync.publish if self.team_sync else None,
            clock=clock,
            logger=self.logger,
        )

        self.current_location: Optional[Location] = None
        self.fetch_center: Optional[tuple[float, float]] = None
        self.fetch_failed_at: Optional[float] = None
        self.walk_id: Optional[int] = None
        self.walk_distance = 0.0
        self.walk_new_segments = 0
        self.running = False

    def _save_watermark(self, team_id: str, watermark: Optional[float]):
        if isinstance(self.store, ExplorationDB):
            self.store.set_watermark(team_id, watermark)

    def set_team(self, team_id: Optional[str]):
        """Join (or leave, with None) a team; local discoveries are shared on joining"""
        if not self.team_sync:
            return
        watermark = None
        if team_id and isinstance(self.store, ExplorationDB):
            watermark = self.store.get_watermark(team_id)
        if self.team_sync.set_team(team_id, watermark):
            self.team_sync.upload_local(self.store.list_all())

    def set_online(self, online: bool):
        """Connectivity changed; segments revealed while offline are shared on reconnect"""
        if not self.team_sync:
            return
        if self.team_sync.set_online(online):
            self.team_sync.upload_local(self.store.list_all())

    def refresh_streets(self, lat: float, lon: float, radius_km: Optional[float] = None) -> bool:
        """Fetch geometry around a point; on failure keep what is loaded"""
        radius_km = radius_km if radius_km is not None else CONFIG["street_fetch_radius_km"]
        streets = self.fetcher.fetch_streets(lat, lon, radius_km)
        if streets is None:
            self.fetch_failed_at = self.clock()
            self.logger.log("Street fetch failed, keeping previous geometry", {
                "streets_loaded": len(self.index),
            })
            return False
        self.index.load(streets)
        self.fetch_center = (lat, lon)
        self.fetch_failed_at = None
        self.logger.log("Loaded street geometry", {
            "streets": len(self.index),
            "segments": self.index.segment_count,
        })
        return True

    def initialize(self, lat: float, lon: float, max_time: Optional[float] = None) -> bool:
        """Load geometry for the starting area, retrying with backoff"""
        max_time = max_time if max_time is not None else CONFIG["osm_fetch_max_time"]
        ok = retry_with_backoff(
            lambda: self.refresh_streets(lat, lon),
            max_time=max_time,
            description="street fetch",
            logger=self.logger,
        )
        if self.team_sync:
            self.team_sync.catch_up()
        return bool(ok)

    def _needs_refetch(self, location: Location) -> bool:
        if (self.fetch_failed_at is not None
                and self.clock() - self.fetch_failed_at < CONFIG["street_fetch_retry_interval"]):
            return False
        if self.fetch_center is None:
            return True
        moved = haversine_distance(self.fetch_center[0], self.fetch_center[1],
                                   location.lat, location.lon)
        return moved >= CONFIG["street_refetch_distance"]

    def handle_fix(self, fix: Location) -> Optional[DiscoveryEvent]:
        """Process one raw GPS fix. Returns None when the filter rejects it."""
        position = self.filter.accept(fix)
        if position is None:
            return None

        previous = self.current_location
        self.current_location = position
        if previous is not None:
            distance = haversine_distance(previous.lat, previous.lon, position.lat, position.lon)
            if distance >= CONFIG["min_distance_for_new_point"]:
                self.progress.on_distance_walked(distance)
                self.walk_distance += distance

        if self._needs_refetch(position):
            self.refresh_streets(position.lat, position.lon)

        event = self.engine.on_position(position)
        self.walk_new_segments += event.new_segments
        self.save_progress()
        return event

    def save_progress(self):
        if isinstance(self.store, ExplorationDB):
            self.store.save_progress(self.progress.progress)

    def start_walk(self):
        self.filter.reset()
        self.current_location = None
        self.walk_distance = 0.0
        self.walk_new_segments = 0
        if isinstance(self.store, ExplorationDB):
            self.walk_id = self.store.start_walk()
        self.logger.log("Walk started")

    def end_walk(self):
        if self.walk_id is not None and isinstance(self.store, ExplorationDB):
            self.store.end_walk(self.walk_id, self.walk_distance, self.walk_new_segments)
        self.walk_id = None
        self.logger.log("Walk ended", {
            "distance_m": round(self.walk_distance, 1),
            "new_segments": self.walk_new_segments,
        })

    def get_state(self) -> dict:
        """Get current state as dict for logging"""
        p = self.progress.progress
        state = {
            "level": p.level,
            "xp": p.xp,
            "discovery_points": p.discovery_points,
            "total_distance_walked": round(p.total_distance_walked, 1),
            "segments_revealed": len(self.store),
            "streets_loaded": len(self.index),
            "walk_distance": round(self.walk_distance, 1),
        }
        if self.current_location:
            state["location"] = {
                "lat": self.current_location.lat,
                "lon": self.current_location.lon,
                "accuracy": self.current_location.accuracy,
            }
        return state

    def stop(self):
        """Stop after the fix currently being processed"""
        self.running = False

    def run(self, source, sleep=time.sleep):
        """Feed fixes from a source (e.g. GPSPlayback) until it is exhausted or stopped"""
        self.running = True
        self.start_walk()
        if self.team_sync:
            self.team_sync.start()
        try:
            while self.running and not source.is_finished():
                fix = source.get_location()
                if fix is not None:
                    event = self.handle_fix(fix)
                    if event and event.new_segments:
                        self.logger.log("State", self.get_state())
                sleep(source.get_poll_interval())
        finally:
            if self.team_sync:
                self.team_sync.stop()
            self.end_walk()
            self.running = False
