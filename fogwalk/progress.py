"""Player progression driven by exploration."""

from typing import Optional

from .config import CONFIG
from .logger import Logger
from .models import PlayerProgress


class ProgressAccumulator:
    """Applies discovery rewards and walked distance to PlayerProgress"""

    def __init__(self, progress: Optional[PlayerProgress] = None,
                 xp_per_segment: Optional[int] = None, logger: Optional[Logger] = None):
        self.progress = progress or PlayerProgress()
        self.xp_per_segment = xp_per_segment if xp_per_segment is not None else CONFIG["xp_per_segment"]
        self.logger = logger or Logger.quiet()

    def add_xp(self, amount: int) -> int:
        """Add XP and cascade overflow into level-ups. Returns levels gained."""
        p = self.progress
        p.xp += amount
        gained = 0
        while p.xp >= p.xp_for_next_level:
            p.xp -= p.xp_for_next_level
            p.level += 1
            gained += 1
        if gained:
            self.logger.log("Level up", {"level": p.level, "xp": p.xp})
        return gained

    def on_segments_discovered(self, count: int) -> int:
        if count <= 0:
            return 0
        self.progress.discovery_points += count
        return self.add_xp(count * self.xp_per_segment)

    def on_distance_walked(self, meters: float):
        self.progress.total_distance_walked += meters
