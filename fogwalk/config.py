"""Configuration settings for Fogwalk."""

CONFIG = {
    "gps_poll_interval": 3,  # seconds
    # Position filter
    "max_accuracy": 50.0,  # meters - reject fixes less accurate than this
    "max_speed": 25.0,  # m/s (~90 km/h) - reject GPS jumps faster than this
    # Street matching
    "snap_radius": 30.0,  # meters - nearest-street match radius
    "reveal_radius": 15.0,  # meters - segments this close to the player are revealed
    "grid_cell_size": 50.0,  # meters - spatial index bucket size
    # Progression
    "xp_per_segment": 5,
    "xp_per_level": 100,  # threshold = level * xp_per_level
    "mastered_walks": 10,
    "legendary_walks": 50,
    "min_distance_for_new_point": 15.0,  # meters moved before distance is counted
    # Street geometry
    "street_fetch_radius_km": 2.0,
    "street_refetch_distance": 1000.0,  # meters from last fetch centre before refetching
    "street_fetch_retry_interval": 60.0,  # seconds to wait after a failed fetch before refetching
    "osm_cache_dir": "osm_cache",
    "osm_cache_max_age": 7 * 24 * 3600,  # 7 days
    "osm_fetch_max_time": 30.0,  # seconds of retries on startup
    # Team sync
    "sync_interval": 30.0,  # seconds between background pulls
    "sync_timeout": 15.0,  # seconds per HTTP request
    "db_path": "fogwalk_history.db",
}
