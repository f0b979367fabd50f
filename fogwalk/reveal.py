"""Segment reveal engine: turns accepted positions into revealed street segments."""

import dataclasses
import time
from typing import Callable, Optional

from .config import CONFIG
from .logger import Logger
from .models import DiscoveryEvent, Location, SegmentRecord
from .progress import ProgressAccumulator
from .store import SegmentStore
from .street_index import StreetIndex


class RevealEngine:
    """Reveals and re-walks segments near each accepted position.

    Every segment within the reveal radius is either created (a new
    discovery, published to the team) or has its walk count bumped. A player
    standing still keeps bumping the same segments on every update.
    """

    def __init__(self, index: StreetIndex, store: SegmentStore,
                 progress: Optional[ProgressAccumulator] = None,
                 publish: Optional[Callable[[SegmentRecord], None]] = None,
                 reveal_radius: Optional[float] = None,
                 clock=time.time, logger: Optional[Logger] = None):
        self.index = index
        self.store = store
        self.progress = progress
        self.publish = publish
        self.reveal_radius = reveal_radius if reveal_radius is not None else CONFIG["reveal_radius"]
        self.clock = clock
        self.logger = logger or Logger.quiet()
        self.listeners: list[Callable[[DiscoveryEvent], None]] = []

    def add_listener(self, callback: Callable[[DiscoveryEvent], None]):
        self.listeners.append(callback)

    def remove_listener(self, callback: Callable[[DiscoveryEvent], None]):
        if callback in self.listeners:
            self.listeners.remove(callback)

    def on_position(self, position: Location) -> DiscoveryEvent:
        """Process one accepted position. Store errors propagate."""
        now = self.clock()
        in_range = self.index.segments_within(position.lat, position.lon, self.reveal_radius)

        created: list[SegmentRecord] = []
        walked = 0
        with self.store.lock:
            for street, i, start, end, _distance in in_range:
                segment_id = SegmentRecord.make_id(street.id, i)
                existing = self.store.get(segment_id)
                if existing is not None:
                    updated = dataclasses.replace(existing)
                    updated.record_walk(now)
                    self.store.put(updated)
                    walked += 1
                else:
                    record = SegmentRecord(
                        id=segment_id,
                        street_id=street.id,
                        street_name=street.name,
                        start_lat=start[0],
                        start_lon=start[1],
                        end_lat=end[0],
                        end_lon=end[1],
                        times_walked=1,
                        first_discovered_at=now,
                        last_walked_at=now,
                        discovered_by_me=True,
                    )
                    self.store.put(record)
                    created.append(record)

        event = DiscoveryEvent(
            new_segments=len(created),
            walked_segments=walked,
            new_ids=[r.id for r in created],
            position=position,
        )
        if not created:
            return event

        self.logger.log("Revealed new segments", {"count": len(created), "ids": event.new_ids})
        if self.publish:
            for record in created:
                self.publish(record)
        if self.progress:
            self.progress.on_segments_discovered(len(created))
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.log(f"Discovery listener failed: {e}")
        return event
