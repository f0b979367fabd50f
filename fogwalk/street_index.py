"""In-memory index of street geometry around the player."""

import math
from typing import Callable, Iterable, Optional

from .config import CONFIG
from .geo import METERS_PER_DEGREE_LAT, meters_to_degrees, point_to_segment_distance
from .models import StreetGeometry

Point = tuple[float, float]


class StreetIndex:
    """Holds the currently loaded streets and answers proximity queries.

    Segment indices are positions of consecutive point pairs within a street
    and are the basis of segment record ids, so geometry is kept exactly in
    the order it was loaded.
    """

    def __init__(self, snap_radius: Optional[float] = None, cell_size: Optional[float] = None):
        self.snap_radius = snap_radius if snap_radius is not None else CONFIG["snap_radius"]
        cell_meters = cell_size if cell_size is not None else CONFIG["grid_cell_size"]
        self.cell_size = cell_meters / METERS_PER_DEGREE_LAT  # degrees
        self.streets: list[StreetGeometry] = []
        self._by_id: dict[str, StreetGeometry] = {}
        # flat (street_pos, segment_index) list in for_each_segment order
        self._segments: list[tuple[int, int]] = []
        self._grid: dict[tuple[int, int], list[int]] = {}

    def load(self, streets: Iterable[StreetGeometry]):
        """Replace all held geometry"""
        self.streets = list(streets)
        self._by_id = {s.id: s for s in self.streets}
        self._segments = []
        self._grid = {}
        for street_pos, street in enumerate(self.streets):
            for i in range(street.segment_count):
                flat = len(self._segments)
                self._segments.append((street_pos, i))
                (lat1, lon1), (lat2, lon2) = street.points[i], street.points[i + 1]
                for cell in self._cells_for_box(min(lat1, lat2), min(lon1, lon2),
                                                max(lat1, lat2), max(lon1, lon2)):
                    self._grid.setdefault(cell, []).append(flat)

    def __len__(self) -> int:
        return len(self.streets)

    @property
    def segment_count(self) -> int:
        return len(self._segments)

    def street_ids(self) -> list[str]:
        return [s.id for s in self.streets]

    def get_street(self, street_id: str) -> Optional[StreetGeometry]:
        return self._by_id.get(street_id)

    def for_each_segment(self, visit: Callable[[str, int, Point, Point], None]):
        """Call visit(street_id, segment_index, start, end) for every segment"""
        for street in self.streets:
            for i in range(street.segment_count):
                visit(street.id, i, street.points[i], street.points[i + 1])

    def street_distance(self, street: StreetGeometry, lat: float, lon: float) -> float:
        """Minimum distance from a point to any segment of a street"""
        return min(
            point_to_segment_distance(lat, lon, *street.points[i], *street.points[i + 1])
            for i in range(street.segment_count)
        )

    def nearest_street(self, lat: float, lon: float) -> Optional[StreetGeometry]:
        """Closest street within the snap radius, or None"""
        nearest = None
        min_distance = math.inf
        for street in self.streets:
            distance = self.street_distance(street, lat, lon)
            if distance < min_distance and distance <= self.snap_radius:
                min_distance = distance
                nearest = street
        return nearest

    def snap_to_street(self, lat: float, lon: float) -> Optional[str]:
        street = self.nearest_street(lat, lon)
        return street.id if street else None

    def segments_within(self, lat: float, lon: float, radius: float):
        """Segments within radius meters of a point, in for_each_segment order.

        Returns (street, segment_index, start, end, distance) tuples. Candidates
        come from the grid buckets around the point; the exact distance check
        decides membership.
        """
        dlat, dlon = meters_to_degrees(radius, lat)
        # one extra cell of slack for projection and earth-model differences
        dlat += self.cell_size
        dlon += self.cell_size
        candidates = set()
        for cell in self._cells_for_box(lat - dlat, lon - dlon, lat + dlat, lon + dlon):
            candidates.update(self._grid.get(cell, ()))

        results = []
        for flat in sorted(candidates):
            street_pos, i = self._segments[flat]
            street = self.streets[street_pos]
            start, end = street.points[i], street.points[i + 1]
            distance = point_to_segment_distance(lat, lon, *start, *end)
            if distance <= radius:
                results.append((street, i, start, end, distance))
        return results

    def _cells_for_box(self, min_lat: float, min_lon: float, max_lat: float, max_lon: float):
        i0, i1 = math.floor(min_lat / self.cell_size), math.floor(max_lat / self.cell_size)
        j0, j1 = math.floor(min_lon / self.cell_size), math.floor(max_lon / self.cell_size)
        for ci in range(i0, i1 + 1):
            for cj in range(j0, j1 + 1):
                yield (ci, cj)
