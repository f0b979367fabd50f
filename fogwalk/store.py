"""Local segment store: in-memory map of revealed segments, optionally backed by SQLite."""

import json
import sqlite3
import threading
from datetime import datetime
from typing import Optional

from .models import SCHEMA_VERSION, PlayerProgress, SegmentRecord, segment_tier


class SegmentStore:
    """Authoritative map of segment id -> SegmentRecord for this device.

    Writers (the reveal engine and the team merge) hold `lock` around their
    read-check-write sequences. A put is visible to the next get immediately.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._records: dict[str, SegmentRecord] = {}

    def get(self, segment_id: str) -> Optional[SegmentRecord]:
        return self._records.get(segment_id)

    def put(self, record: SegmentRecord):
        """Insert or overwrite by id"""
        with self.lock:
            self._records[record.id] = record

    def contains_id(self, segment_id: str) -> bool:
        return segment_id in self._records

    def list_all(self) -> list[SegmentRecord]:
        with self.lock:
            return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)


class ExplorationDB(SegmentStore):
    """SQLite-backed segment store, also holding player progress, sync state and walks"""

    def __init__(self, db_path: str = "fogwalk_history.db"):
        super().__init__()
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self._init_schema()
        self._load_segments()

    def _init_schema(self):
        """Create database tables, migrating older layouts"""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_meta (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        row = self.conn.execute(
            "SELECT value FROM schema_meta WHERE key = 'version'"
        ).fetchone()
        has_segments = self.conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'revealed_segments'"
        ).fetchone() is not None
        version = int(row[0]) if row else (1 if has_segments else SCHEMA_VERSION)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS revealed_segments (
                segment_id TEXT PRIMARY KEY,
                street_id TEXT NOT NULL,
                street_name TEXT,
                start_lat REAL NOT NULL,
                start_lon REAL NOT NULL,
                end_lat REAL NOT NULL,
                end_lon REAL NOT NULL,
                times_walked INTEGER DEFAULT 1,
                first_discovered_at REAL,
                last_walked_at REAL,
                discovered_by_me INTEGER DEFAULT 1
            )
        """)
        if version < 2:
            # v1 predates team play: every stored segment was walked here
            columns = {r[1] for r in self.conn.execute("PRAGMA table_info(revealed_segments)")}
            if "discovered_by_me" not in columns:
                self.conn.execute(
                    "ALTER TABLE revealed_segments ADD COLUMN discovered_by_me INTEGER DEFAULT 1"
                )
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS player_progress (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                data TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS walks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT,
                ended_at TEXT,
                distance_meters REAL,
                segments_discovered INTEGER
            )
        """)
        self.conn.execute(
            "INSERT OR REPLACE INTO schema_meta (key, value) VALUES ('version', ?)",
            (str(SCHEMA_VERSION),)
        )
        self.conn.commit()

    def _load_segments(self):
        cursor = self.conn.execute("""
            SELECT segment_id, street_id, street_name, start_lat, start_lon, end_lat, end_lon,
                   times_walked, first_discovered_at, last_walked_at, discovered_by_me
            FROM revealed_segments
        """)
        for row in cursor.fetchall():
            record = SegmentRecord.from_dict({
                "schema_version": SCHEMA_VERSION,
                "id": row[0],
                "street_id": row[1],
                "street_name": row[2],
                "start_lat": row[3],
                "start_lon": row[4],
                "end_lat": row[5],
                "end_lon": row[6],
                "times_walked": row[7],
                "first_discovered_at": row[8],
                "last_walked_at": row[9],
                "discovered_by_me": bool(row[10]) if row[10] is not None else True,
            })
            self._records[record.id] = record

    def put(self, record: SegmentRecord):
        """Write-through upsert; the in-memory copy changes only after the commit"""
        with self.lock:
            self.conn.execute("""
                INSERT OR REPLACE INTO revealed_segments (
                    segment_id, street_id, street_name, start_lat, start_lon, end_lat, end_lon,
                    times_walked, first_discovered_at, last_walked_at, discovered_by_me
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id, record.street_id, record.street_name,
                record.start_lat, record.start_lon, record.end_lat, record.end_lon,
                record.times_walked, record.first_discovered_at, record.last_walked_at,
                int(record.discovered_by_me),
            ))
            self.conn.commit()
            self._records[record.id] = record

    def load_progress(self) -> PlayerProgress:
        row = self.conn.execute("SELECT data FROM player_progress WHERE id = 1").fetchone()
        if row:
            return PlayerProgress.from_dict(json.loads(row[0]))
        return PlayerProgress()

    def save_progress(self, progress: PlayerProgress):
        with self.lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO player_progress (id, data) VALUES (1, ?)",
                (json.dumps(progress.to_dict()),)
            )
            self.conn.commit()

    def get_sync_value(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM sync_state WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_sync_value(self, key: str, value: Optional[str]):
        with self.lock:
            if value is None:
                self.conn.execute("DELETE FROM sync_state WHERE key = ?", (key,))
            else:
                self.conn.execute(
                    "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)", (key, value)
                )
            self.conn.commit()

    def get_watermark(self, team_id: str) -> Optional[float]:
        value = self.get_sync_value(f"watermark:{team_id}")
        return float(value) if value is not None else None

    def set_watermark(self, team_id: str, watermark: Optional[float]):
        self.set_sync_value(f"watermark:{team_id}", None if watermark is None else repr(watermark))

    def start_walk(self) -> int:
        """Start a new walk, return walk ID"""
        now = datetime.now().isoformat()
        with self.lock:
            cursor = self.conn.execute(
                "INSERT INTO walks (started_at) VALUES (?)",
                (now,)
            )
            self.conn.commit()
            return cursor.lastrowid

    def end_walk(self, walk_id: int, distance: float, segments: int):
        """End a walk with stats"""
        now = datetime.now().isoformat()
        with self.lock:
            self.conn.execute(
                "UPDATE walks SET ended_at = ?, distance_meters = ?, segments_discovered = ? WHERE id = ?",
                (now, distance, segments, walk_id)
            )
            self.conn.commit()

    def get_stats(self) -> dict:
        """Get overall exploration stats"""
        row = self.conn.execute(
            "SELECT COUNT(*), SUM(distance_meters) FROM walks WHERE ended_at IS NOT NULL"
        ).fetchone()
        records = self.list_all()
        tiers = {"discovered": 0, "mastered": 0, "legendary": 0}
        for record in records:
            if record.discovered_by_me:
                tiers[segment_tier(record.times_walked)] += 1
        return {
            "total_walks": row[0] or 0,
            "total_distance_km": (row[1] or 0) / 1000,
            "segments_total": len(records),
            "segments_mine": sum(1 for r in records if r.discovered_by_me),
            "segments_team": sum(1 for r in records if not r.discovered_by_me),
            "tiers": tiers,
        }

    def reset(self):
        """Erase all exploration history"""
        with self.lock:
            self.conn.execute("DELETE FROM revealed_segments")
            self.conn.execute("DELETE FROM player_progress")
            self.conn.execute("DELETE FROM sync_state")
            self.conn.execute("DELETE FROM walks")
            self.conn.commit()
            self._records.clear()

    def close(self):
        self.conn.close()
