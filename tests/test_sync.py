"""Tests for team merge and sync."""

import dataclasses
import threading
import time

import pytest
import requests

from fogwalk import (
    HttpSyncTransport,
    Location,
    Reconciler,
    SegmentRecord,
    SegmentStore,
    SyncTransport,
    TeamSync,
)


def remote(segment_id="s1_0", times_walked=1, mine=True):
    return SegmentRecord(
        id=segment_id, street_id=segment_id.rsplit("_", 1)[0],
        start_lat=0.0, start_lon=0.0, end_lat=0.0, end_lon=0.001,
        times_walked=times_walked, first_discovered_at=50.0, last_walked_at=60.0,
        discovered_by_me=mine,
    )


class TestMergeIncoming:
    def test_new_record_inserted_as_teammates(self, reconciler, store):
        result = reconciler.merge_incoming([remote(mine=True)])
        assert result.inserted == 1
        stored = store.get("s1_0")
        assert stored.discovered_by_me is False
        assert stored.times_walked == 1

    def test_incoming_object_not_mutated(self, reconciler):
        incoming = remote(mine=True)
        reconciler.merge_incoming([incoming])
        assert incoming.discovered_by_me is True

    def test_duplicate_in_one_batch(self, reconciler, store):
        r = remote()
        result = reconciler.merge_incoming([r, r])
        assert (result.inserted, result.duplicates) == (1, 1)
        assert len(store) == 1
        assert store.get("s1_0") == dataclasses.replace(r, discovered_by_me=False)

    def test_redelivery_is_idempotent(self, reconciler, store):
        r = remote()
        reconciler.merge_incoming([r])
        before = store.get("s1_0")
        result = reconciler.merge_incoming([r])
        assert (result.inserted, result.duplicates) == (0, 1)
        assert store.get("s1_0") == before
        assert len(store) == 1

    @pytest.mark.parametrize("remote_count", [1, 99])
    def test_local_record_wins(self, reconciler, store, remote_count):
        local = remote(times_walked=5, mine=True)
        store.put(local)
        result = reconciler.merge_incoming([remote(times_walked=remote_count, mine=False)])
        assert result.duplicates == 1
        stored = store.get("s1_0")
        assert stored.times_walked == 5
        assert stored.discovered_by_me is True
        assert stored is local

    def test_invalid_counted_separately(self, reconciler, store):
        bad = remote("bad_0")
        bad.start_lat = None
        result = reconciler.merge_incoming([
            {"id": "x_0", "start_lat": 1.0},
            bad,
            remote("s1_0"),
            remote("s1_0"),
            {"schema_version": 2, "id": "s2_0", "start_lat": 0.0, "start_lon": 0.0,
             "end_lat": 0.0, "end_lon": 0.001},
        ])
        assert (result.inserted, result.duplicates, result.invalid) == (2, 1, 2)
        assert store.contains_id("s2_0")
        assert not store.contains_id("x_0")

    def test_zero_walk_count_clamped(self, reconciler, store):
        result = reconciler.merge_incoming([remote(times_walked=0)])
        assert result.inserted == 1
        assert store.get("s1_0").times_walked == 1

    @pytest.mark.parametrize("times_walked", [None, "3", 2.5, True])
    def test_non_integer_walk_count_invalid(self, reconciler, store, times_walked):
        result = reconciler.merge_incoming([remote(times_walked=times_walked)])
        assert (result.inserted, result.invalid) == (0, 1)
        assert len(store) == 0

    def test_watermark_advances_to_merge_time(self, reconciler, clock):
        result = reconciler.merge_incoming([], watermark=5.0)
        assert result.watermark == clock.now

    def test_store_failure_propagates(self, clock):
        class BrokenStore(SegmentStore):
            def put(self, record):
                raise OSError("read-only filesystem")

        reconciler = Reconciler(BrokenStore(), clock=clock)
        with pytest.raises(OSError):
            reconciler.merge_incoming([remote()])

    def test_concurrent_merges_insert_once(self, store, clock):
        reconciler = Reconciler(store, clock=clock)
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(reconciler.merge_incoming([remote()]))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sum(r.inserted for r in results) == 1
        assert sum(r.duplicates for r in results) == 7

    def test_concurrent_reveal_and_merge_keep_local_walks(self, engine, store, reconciler):
        barrier = threading.Barrier(2)

        def walk():
            barrier.wait()
            for _ in range(50):
                engine.on_position(Location(lat=0.0, lon=0.0))

        def merge():
            barrier.wait()
            for _ in range(50):
                reconciler.merge_incoming([remote(times_walked=1000)])

        threads = [threading.Thread(target=walk), threading.Thread(target=merge)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store) == 1
        # the merge may have won the first insert, in which case walking adds to its count
        assert store.get("s1_0").times_walked in (50, 1050)
        assert store.get("s1_0").discovered_by_me is True


class FakeTransport(SyncTransport):
    def __init__(self, batches=None, fail_pull=False, fail_publish=False):
        self.batches = list(batches or [])
        self.fail_pull = fail_pull
        self.fail_publish = fail_publish
        self.pulls = []
        self.published = []

    def pull_since(self, team_id, watermark):
        self.pulls.append((team_id, watermark))
        if self.fail_pull:
            raise requests.ConnectionError("offline")
        return self.batches.pop(0) if self.batches else []

    def publish(self, team_id, record):
        if self.fail_publish:
            raise requests.Timeout("slow")
        self.published.append((team_id, record.id))


class TestTeamSync:
    def test_catch_up_advances_watermark(self, reconciler, clock):
        transport = FakeTransport(batches=[[remote("a_0")], [remote("b_0")]])
        saved = []
        sync = TeamSync(reconciler, transport, team_id="t1", watermark=10.0,
                        on_watermark=lambda team, wm: saved.append((team, wm)))
        first = sync.catch_up()
        assert first.inserted == 1
        clock.advance(30)
        sync.catch_up()
        assert transport.pulls == [("t1", 10.0), ("t1", clock.now - 30)]
        assert sync.watermark == clock.now
        assert saved[-1] == ("t1", clock.now)

    def test_no_team_or_offline_skips(self, reconciler):
        transport = FakeTransport()
        sync = TeamSync(reconciler, transport, team_id=None)
        assert sync.catch_up() is None
        sync.publish(remote())
        sync.set_team("t1")
        sync.set_online(False)
        assert sync.catch_up() is None
        sync.publish(remote())
        assert transport.pulls == [] and transport.published == []

    def test_pull_failure_keeps_watermark(self, reconciler):
        sync = TeamSync(reconciler, FakeTransport(fail_pull=True), team_id="t1", watermark=42.0)
        assert sync.catch_up() is None
        assert sync.watermark == 42.0

    def test_publish_failure_is_swallowed(self, reconciler):
        transport = FakeTransport(fail_publish=True)
        sync = TeamSync(reconciler, transport, team_id="t1")
        sync.publish(remote())
        sync.flush()
        assert transport.published == []

    def test_switching_team_resets_watermark(self, reconciler):
        sync = TeamSync(reconciler, FakeTransport(), team_id="t1", watermark=99.0)
        sync.set_team("t1")
        assert sync.watermark == 99.0
        sync.set_team("t2")
        assert sync.watermark is None

    def test_background_polling(self, reconciler, store):
        transport = FakeTransport(batches=[[remote("a_0")]])
        sync = TeamSync(reconciler, transport, team_id="t1")
        sync.start(interval=0.01)
        try:
            for _ in range(200):
                if store.contains_id("a_0"):
                    break
                threading.Event().wait(0.01)
        finally:
            sync.stop()
        assert store.contains_id("a_0")

    def test_polling_survives_unexpected_errors(self, reconciler, store):
        class FlakyTransport(FakeTransport):
            def pull_since(self, team_id, watermark):
                self.pulls.append((team_id, watermark))
                if len(self.pulls) == 1:
                    raise RuntimeError("server returned garbage")
                return [remote("a_0")]

        transport = FlakyTransport()
        sync = TeamSync(reconciler, transport, team_id="t1", watermark=7.0)
        sync.start(interval=0.01)
        try:
            for _ in range(200):
                if store.contains_id("a_0"):
                    break
                threading.Event().wait(0.01)
            assert sync._thread.is_alive()
        finally:
            sync.stop()
        assert store.contains_id("a_0")
        assert transport.pulls[1] == ("t1", 7.0)

    def test_store_error_leaves_watermark(self, clock):
        class BrokenStore(SegmentStore):
            def put(self, record):
                raise OSError("disk full")

        sync = TeamSync(Reconciler(BrokenStore(), clock=clock),
                        FakeTransport(batches=[[remote()]]), team_id="t1", watermark=3.0)
        with pytest.raises(OSError):
            sync.catch_up()
        assert sync.watermark == 3.0

    def test_publish_does_not_wait_for_transport(self, reconciler):
        release = threading.Event()

        class SlowTransport(FakeTransport):
            def publish(self, team_id, record):
                release.wait(5)
                super().publish(team_id, record)

        transport = SlowTransport()
        sync = TeamSync(reconciler, transport, team_id="t1")
        started = time.monotonic()
        sync.publish(remote("a_0"))
        sync.publish(remote("b_0"))
        assert time.monotonic() - started < 0.5
        assert transport.published == []
        release.set()
        sync.flush()
        assert transport.published == [("t1", "a_0"), ("t1", "b_0")]

    def test_upload_local_sends_only_my_segments(self, reconciler):
        transport = FakeTransport()
        sync = TeamSync(reconciler, transport, team_id="t1")
        queued = sync.upload_local([remote("a_0"), remote("b_0", mine=False), remote("c_0")])
        sync.flush()
        assert queued == 2
        assert transport.published == [("t1", "a_0"), ("t1", "c_0")]

    def test_upload_local_skipped_when_inactive(self, reconciler):
        transport = FakeTransport()
        sync = TeamSync(reconciler, transport, team_id="t1", online=False)
        assert sync.upload_local([remote("a_0")]) == 0
        sync.set_team(None)
        sync.set_online(True)
        assert sync.upload_local([remote("a_0")]) == 0
        sync.flush()
        assert transport.published == []

    def test_set_team_and_online_report_changes(self, reconciler):
        sync = TeamSync(reconciler, FakeTransport(), team_id="t1", online=False)
        assert sync.set_team("t1") is False
        assert sync.set_team("t2") is True
        assert sync.set_online(False) is False
        assert sync.set_online(True) is True
        assert sync.set_online(True) is False


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload or {}
        self.status_code = status

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append(("GET", url, params))
        return self.response

    def put(self, url, json=None, timeout=None):
        self.calls.append(("PUT", url, json))
        return self.response


class TestHttpSyncTransport:
    def test_pull_since(self):
        session = FakeSession(FakeResponse({"segments": [remote().to_dict()]}))
        transport = HttpSyncTransport("https://sync.example/api/", session=session)
        records = transport.pull_since("t1", 12.5)
        assert session.calls == [("GET", "https://sync.example/api/teams/t1/segments", {"since": "12.5"})]
        assert records[0]["id"] == "s1_0"

    def test_pull_everything_without_watermark(self):
        session = FakeSession(FakeResponse({}))
        transport = HttpSyncTransport("https://sync.example", session=session)
        assert transport.pull_since("t1", None) == []
        assert session.calls[0][2] == {}

    def test_publish(self):
        session = FakeSession(FakeResponse())
        transport = HttpSyncTransport("https://sync.example", session=session)
        transport.publish("t1", remote())
        method, url, body = session.calls[0]
        assert (method, url) == ("PUT", "https://sync.example/teams/t1/segments/s1_0")
        assert body["times_walked"] == 1

    def test_http_error_raises_request_exception(self):
        transport = HttpSyncTransport("https://sync.example", session=FakeSession(FakeResponse(status=503)))
        with pytest.raises(requests.RequestException):
            transport.pull_since("t1", None)

    @pytest.mark.parametrize("payload", [[{"id": "s1_0"}], {"segments": {"id": "s1_0"}}])
    def test_malformed_payload_rejected(self, payload):
        transport = HttpSyncTransport("https://sync.example", session=FakeSession(FakeResponse(payload)))
        with pytest.raises(ValueError):
            transport.pull_since("t1", None)

    def test_malformed_payload_keeps_watermark(self, reconciler, store):
        session = FakeSession(FakeResponse([remote().to_dict()]))
        sync = TeamSync(reconciler, HttpSyncTransport("https://sync.example", session=session),
                        team_id="t1", watermark=8.0)
        assert sync.catch_up() is None
        assert sync.watermark == 8.0
        assert len(store) == 0

    def test_team_sync_merges_wire_payload(self, reconciler, store):
        session = FakeSession(FakeResponse({"segments": [remote(mine=True).to_dict(), {"id": "junk"}]}))
        sync = TeamSync(reconciler, HttpSyncTransport("https://sync.example", session=session), team_id="t1")
        result = sync.catch_up()
        assert (result.inserted, result.invalid) == (1, 1)
        assert store.get("s1_0").discovered_by_me is False
