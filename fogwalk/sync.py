"""Team sync: merging teammates' segments into the local store and sharing our own."""

import dataclasses
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Union

import requests

from .config import CONFIG
from .logger import Logger
from .models import InvalidRecordError, SegmentRecord
from .store import SegmentStore


@dataclass
class MergeResult:
    inserted: int = 0
    duplicates: int = 0
    invalid: int = 0
    watermark: Optional[float] = None


class Reconciler:
    """Merges incoming team records: union on new ids, local wins on conflict.

    Local records are never overwritten from remote data, whatever the remote
    walk count, so only walking on this device advances local progress.
    """

    def __init__(self, store: SegmentStore, clock=time.time, logger: Optional[Logger] = None):
        self.store = store
        self.clock = clock
        self.logger = logger or Logger.quiet()

    def merge_incoming(self, records: Iterable[Union[SegmentRecord, dict]],
                       watermark: Optional[float] = None) -> MergeResult:
        """Merge a batch; returns counts and the advanced watermark.

        Store errors propagate and leave the caller's watermark where it was.
        """
        result = MergeResult(watermark=watermark)
        with self.store.lock:
            for item in records:
                try:
                    record = self._parse(item)
                except InvalidRecordError as e:
                    result.invalid += 1
                    self.logger.log(f"Skipped invalid team segment: {e}")
                    continue

                if self.store.contains_id(record.id):
                    result.duplicates += 1
                    continue

                self.store.put(dataclasses.replace(
                    record,
                    times_walked=max(1, record.times_walked),
                    discovered_by_me=False,
                ))
                result.inserted += 1

        result.watermark = self.clock()
        if result.inserted or result.invalid:
            self.logger.log("Merged team segments", {
                "inserted": result.inserted,
                "duplicates": result.duplicates,
                "invalid": result.invalid,
            })
        return result

    @staticmethod
    def _parse(item) -> SegmentRecord:
        if isinstance(item, SegmentRecord):
            item.validate()
            return item
        return SegmentRecord.from_dict(item)


class SyncTransport:
    """Wire access to the team's shared segment collection"""

    def pull_since(self, team_id: str, watermark: Optional[float]) -> list:
        """Records (SegmentRecord or wire dicts) changed after watermark; all when None"""
        raise NotImplementedError

    def publish(self, team_id: str, record: SegmentRecord):
        raise NotImplementedError


class HttpSyncTransport(SyncTransport):
    """JSON-over-HTTP transport for a team segment service"""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else CONFIG["sync_timeout"]

    def _segments_url(self, team_id: str) -> str:
        return f"{self.base_url}/teams/{team_id}/segments"

    def pull_since(self, team_id: str, watermark: Optional[float]) -> list:
        params = {"since": repr(watermark)} if watermark is not None else {}
        response = self.session.get(self._segments_url(team_id), params=params, timeout=self.timeout)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        segments = payload.get("segments", [])
        if not isinstance(segments, list):
            raise ValueError(f"expected a segment list, got {type(segments).__name__}")
        return segments

    def publish(self, team_id: str, record: SegmentRecord):
        response = self.session.put(
            f"{self._segments_url(team_id)}/{record.id}",
            json=record.to_dict(),
            timeout=self.timeout,
        )
        response.raise_for_status()


class TeamSync:
    """Pulls team discoveries into the store and publishes new local ones.

    Network failures never reach the caller: they are logged and the
    watermark stays put so the next pull retries the same window. Published
    records go through an outbox drained by a worker thread, so a slow sync
    server never holds up position processing.
    """

    def __init__(self, reconciler: Reconciler, transport: SyncTransport,
                 team_id: Optional[str] = None, online: bool = True,
                 watermark: Optional[float] = None,
                 on_watermark: Optional[Callable[[str, Optional[float]], None]] = None,
                 logger: Optional[Logger] = None):
        self.reconciler = reconciler
        self.transport = transport
        self.team_id = team_id
        self.online = online
        self.watermark = watermark
        self.on_watermark = on_watermark
        self.logger = logger or Logger.quiet()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._outbox: queue.Queue = queue.Queue()
        self._publisher: Optional[threading.Thread] = None
        self._publisher_lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self.team_id is not None and self.online

    def set_team(self, team_id: Optional[str], watermark: Optional[float] = None) -> bool:
        """Switch team; the new team's stream is pulled from its own watermark.

        Returns True if the team changed.
        """
        if team_id == self.team_id:
            return False
        self.team_id = team_id
        self.watermark = watermark
        return True

    def set_online(self, online: bool) -> bool:
        """Returns True when connectivity came back"""
        came_back = online and not self.online
        if online != self.online:
            self.logger.log(f"Connectivity changed: {'online' if online else 'offline'}")
        self.online = online
        return came_back

    def catch_up(self) -> Optional[MergeResult]:
        """Pull everything newer than the watermark and merge it.

        Transport failures and malformed responses return None. Store errors
        propagate; the watermark only moves after a successful merge.
        """
        if not self.active:
            return None
        team_id = self.team_id
        try:
            records = self.transport.pull_since(team_id, self.watermark)
        except (requests.RequestException, ValueError) as e:
            self.logger.log(f"Team pull failed: {e}", {"team_id": team_id})
            return None

        result = self.reconciler.merge_incoming(records, self.watermark)
        self.watermark = result.watermark
        if self.on_watermark:
            self.on_watermark(team_id, self.watermark)
        return result

    def publish(self, record: SegmentRecord):
        """Queue a newly revealed segment for the team (fire-and-forget)"""
        if not self.active:
            return
        self._enqueue(self.team_id, record)

    def upload_local(self, records: Iterable[SegmentRecord]) -> int:
        """Queue every segment walked on this device for the current team.

        Covers discoveries made offline or before joining a team; the
        service keys on segment id, so re-sending is harmless. Returns the
        number of records queued.
        """
        if not self.active:
            return 0
        team_id = self.team_id
        count = 0
        for record in records:
            if record.discovered_by_me:
                self._enqueue(team_id, record)
                count += 1
        if count:
            self.logger.log("Uploading local segments", {"team_id": team_id, "count": count})
        return count

    def flush(self):
        """Block until every queued record has been sent or has failed"""
        self._outbox.join()

    def _enqueue(self, team_id: str, record: SegmentRecord):
        self._outbox.put((team_id, record))
        with self._publisher_lock:
            if self._publisher is None or not self._publisher.is_alive():
                self._publisher = threading.Thread(target=self._drain_outbox, daemon=True)
                self._publisher.start()

    def _drain_outbox(self):
        while True:
            team_id, record = self._outbox.get()
            try:
                self.transport.publish(team_id, record)
            except requests.RequestException as e:
                self.logger.log(f"Publishing segment {record.id} failed: {e}")
            except Exception as e:
                self.logger.log(f"Publishing segment {record.id} failed unexpectedly: {e}")
            finally:
                self._outbox.task_done()

    def start(self, interval: Optional[float] = None):
        """Run catch_up periodically on a background thread"""
        if self._thread and self._thread.is_alive():
            return
        interval = interval if interval is not None else CONFIG["sync_interval"]
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, args=(interval,), daemon=True)
        self._thread.start()

    def _run(self, interval: float):
        while not self._stop_event.is_set():
            try:
                self.catch_up()
            except Exception as e:
                self.logger.log(f"Team sync failed, retrying in {interval}s: {e}", {
                    "team_id": self.team_id,
                })
            self._stop_event.wait(interval)

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
