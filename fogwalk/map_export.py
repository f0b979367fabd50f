"""Render revealed segments on an interactive map."""

from datetime import datetime
from typing import Iterable, Optional

import folium

from .models import (
    DISCOVERED, LEGENDARY, MASTERED, TEAM_DISCOVERED, SegmentRecord, display_state,
)

STATE_COLORS = {
    TEAM_DISCOVERED: "#22c55e",  # green
    DISCOVERED: "#facc15",  # yellow
    MASTERED: "#d4a017",  # gold
    LEGENDARY: "#ffd700",  # bright gold
}

STATE_WEIGHTS = {
    TEAM_DISCOVERED: 4,
    DISCOVERED: 5,
    MASTERED: 6,
    LEGENDARY: 7,
}


def _center_of(records: list[SegmentRecord]) -> tuple[float, float]:
    lats = [r.start_lat for r in records] + [r.end_lat for r in records]
    lons = [r.start_lon for r in records] + [r.end_lon for r in records]
    return sum(lats) / len(lats), sum(lons) / len(lons)


def create_map(records: Iterable[SegmentRecord],
               center: Optional[tuple[float, float]] = None) -> folium.Map:
    """Create an interactive map with one layer per display state."""
    records = list(records)
    if center is None:
        center = _center_of(records) if records else (0.0, 0.0)

    m = folium.Map(
        location=[center[0], center[1]],
        zoom_start=16,
        tiles="CartoDB positron"
    )
    folium.TileLayer("CartoDB dark_matter", name="Dark Mode").add_to(m)

    layers = {
        TEAM_DISCOVERED: folium.FeatureGroup(name="Team discoveries", show=True),
        DISCOVERED: folium.FeatureGroup(name="Discovered", show=True),
        MASTERED: folium.FeatureGroup(name="Mastered", show=True),
        LEGENDARY: folium.FeatureGroup(name="Legendary", show=True),
    }

    for record in records:
        state = display_state(record)
        last = datetime.fromtimestamp(record.last_walked_at).strftime("%Y-%m-%d")
        popup_text = f"""
            <b>{record.street_name or 'Unnamed'}</b><br>
            Length: {record.length_meters:.0f}m<br>
            <hr>
            Times walked: <b>{record.times_walked}</b><br>
            Tier: {record.tier}<br>
            Last walked: {last}
        """
        folium.PolyLine(
            [list(record.start_point), list(record.end_point)],
            weight=STATE_WEIGHTS[state],
            color=STATE_COLORS[state],
            opacity=0.85,
            popup=folium.Popup(popup_text, max_width=200)
        ).add_to(layers[state])

    for layer in layers.values():
        layer.add_to(m)
    folium.LayerControl().add_to(m)
    return m


def save_map(records: Iterable[SegmentRecord], path: str,
             center: Optional[tuple[float, float]] = None) -> str:
    m = create_map(records, center)
    m.save(path)
    return path
