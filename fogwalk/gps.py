"""GPS fix filtering and trace playback."""

import json
import time
from typing import Optional

from .config import CONFIG
from .geo import haversine_distance
from .logger import Logger
from .models import Location


class PositionFilter:
    """Drops inaccurate fixes and implausible jumps before they reach the reveal engine"""

    def __init__(self, max_accuracy: Optional[float] = None, max_speed: Optional[float] = None,
                 clock=time.time, logger: Optional[Logger] = None):
        self.max_accuracy = max_accuracy if max_accuracy is not None else CONFIG["max_accuracy"]
        self.max_speed = max_speed if max_speed is not None else CONFIG["max_speed"]
        self.clock = clock
        self.logger = logger or Logger.quiet()
        self.last_position: Optional[Location] = None
        self.last_timestamp: Optional[float] = None
        self.accepted = 0
        self.rejected_accuracy = 0
        self.rejected_speed = 0

    def accept(self, fix: Location) -> Optional[Location]:
        """Return the fix if it passes accuracy and speed checks, else None.

        A rejected fix leaves the filter untouched; callers wanting a fallback
        use last_position.
        """
        if fix.accuracy is not None and fix.accuracy > self.max_accuracy:
            self.rejected_accuracy += 1
            self.logger.log("Rejected fix: low accuracy", {"accuracy": fix.accuracy})
            return None

        timestamp = fix.timestamp if fix.timestamp is not None else self.clock()

        if self.last_position is not None and self.last_timestamp is not None:
            elapsed = timestamp - self.last_timestamp
            if elapsed > 0:
                distance = haversine_distance(
                    self.last_position.lat, self.last_position.lon, fix.lat, fix.lon
                )
                speed = distance / elapsed
                if speed > self.max_speed:
                    self.rejected_speed += 1
                    self.logger.log("Rejected fix: implausible speed", {
                        "speed_kmh": round(speed * 3.6),
                        "jump_m": round(distance),
                    })
                    return None

        position = Location(lat=fix.lat, lon=fix.lon, accuracy=fix.accuracy, timestamp=timestamp)
        self.last_position = position
        self.last_timestamp = timestamp
        self.accepted += 1
        return position

    def reset(self):
        """Forget the last accepted fix (tracking restarted)"""
        self.last_position = None
        self.last_timestamp = None


class GPSPlayback:
    """Plays back a recorded GPS trace from file"""

    def __init__(self, playback_path: str, speed: float = 1.0):
        self.playback_path = playback_path
        self.speed = speed
        self.trace: list[dict] = []
        self.index = 0
        self.last_location: Optional[Location] = None
        self.consecutive_failures = 0

        with open(playback_path) as f:
            data = json.load(f)
            self.trace = data["trace"]

    def get_location(self) -> Optional[Location]:
        """Get next location from trace sequentially"""
        if self.index >= len(self.trace):
            return None

        entry = self.trace[self.index]
        self.index += 1

        if entry.get("location"):
            location = Location.from_dict(entry["location"])
            if location.timestamp is None and "timestamp" in entry:
                location.timestamp = entry["timestamp"]
            self.last_location = location
            self.consecutive_failures = 0
            return location
        else:
            self.consecutive_failures += 1
            return None

    def get_poll_interval(self) -> float:
        """Get the interval to wait between polls based on trace timing and speed"""
        if self.index <= 0 or self.index >= len(self.trace):
            return CONFIG["gps_poll_interval"] / self.speed

        prev_elapsed = self.trace[self.index - 1].get("elapsed", 0)
        curr_elapsed = self.trace[self.index].get("elapsed", 0)
        delta = curr_elapsed - prev_elapsed

        interval = delta / self.speed
        return max(0.0, min(interval, 5.0))

    def is_finished(self) -> bool:
        """Check if playback is complete"""
        return self.index >= len(self.trace)

    def get_status(self) -> str:
        progress = f"{self.index}/{len(self.trace)}"
        if self.consecutive_failures == 0:
            return f"Playback OK ({progress})"
        else:
            return f"Playback: {self.consecutive_failures} failures ({progress})"
