"""Tests for CollectionPipeline orchestration and fault isolation."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

import pytest

from strava_challenge.auth import TokenRefresher
from strava_challenge.errors import (
    CollectionBusyError,
    FetchError,
    NotFoundError,
    RefreshError,
    StorageError,
)
from strava_challenge.pipeline import CollectionPipeline
from strava_challenge.strava_client.activities import ActivitiesAPI, ActivityFetcher

from conftest import FakeResp, NoopLimiter, activity_payload, make_activity, make_record

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeRefresher:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.calls = []
        self.forgotten = []

    def forget(self, user_id):
        self.forgotten.append(user_id)

    def ensure_valid(self, record):
        self.calls.append(record.user_id)
        if record.user_id in self.fail_for:
            raise RefreshError(record.user_id, "revoked")
        return record.access_token


class FakeFetcher:
    def __init__(self, activities, fail_for=()):
        self.activities = activities
        self.fail_for = set(fail_for)
        self.tokens = {}

    def fetch_all(self, access_token, start_date, end_date, *, user_id=None):
        self.tokens[user_id] = access_token
        if user_id in self.fail_for:
            raise FetchError(user_id, "boom", page=1)
        return list(self.activities.get(user_id, []))


def _pipeline(credential_store, stats_store, refresher, fetcher, max_workers=4):
    return CollectionPipeline(
        credential_store,
        stats_store,
        refresher=refresher,
        fetcher=fetcher,
        max_workers=max_workers,
        clock=lambda: NOW,
    )


def test_empty_store_produces_empty_snapshot(credential_store, stats_store):
    pipeline = _pipeline(credential_store, stats_store, FakeRefresher(), FakeFetcher({}))

    report = pipeline.run("2026-01-01", "2026-12-31")

    assert report.processed == 0
    snapshot = stats_store.read()
    assert snapshot.total_distance_km == 0
    assert snapshot.athletes == []
    assert snapshot.athlete_count == 0
    assert snapshot.last_updated == NOW
    assert credential_store.read_all() == {}


def test_two_athletes_scenario(credential_store, stats_store):
    credential_store.write_all(
        {"1": make_record(1, name="Bob B"), "2": make_record(2, name="Alice A")}
    )
    fetcher = FakeFetcher(
        {
            "1": [make_activity(5000.0, "Ride")],
            "2": [make_activity(4000.0, "Run"), make_activity(6000.0, "Run")],
        }
    )
    pipeline = _pipeline(credential_store, stats_store, FakeRefresher(), fetcher)

    report = pipeline.run("2026-01-01", "2026-12-31")

    snapshot = stats_store.read()
    assert report.failures == []
    assert snapshot.total_distance_km == pytest.approx(15.0)
    assert [a.display_name for a in snapshot.athletes] == ["Alice A", "Bob B"]
    assert snapshot.activity_types["Run"].distance_km == pytest.approx(10.0)
    assert snapshot.activity_types["Run"].count == 2
    assert snapshot.activity_types["Ride"].distance_km == pytest.approx(5.0)
    assert snapshot.activity_types["Ride"].count == 1
    assert str(snapshot.tracking_period.start) == "2026-01-01"


def test_refresh_failure_is_isolated(credential_store, stats_store, caplog):
    original = make_record(2, name="Broken", access="old", refresh="old-r", expires_at=0)
    credential_store.write_all({"1": make_record(1, name="Okay"), "2": original})
    fetcher = FakeFetcher({"1": [make_activity(3000.0)], "2": [make_activity(9000.0)]})
    pipeline = _pipeline(credential_store, stats_store, FakeRefresher(fail_for={"2"}), fetcher)

    with caplog.at_level(logging.WARNING):
        report = pipeline.run("2026-01-01", "2026-12-31")

    snapshot = stats_store.read()
    assert [a.display_name for a in snapshot.athletes] == ["Okay"]
    assert snapshot.total_distance_km == pytest.approx(3.0)
    assert [(f.user_id, f.stage) for f in report.failures] == [("2", "refresh")]
    assert "2" not in fetcher.tokens
    assert credential_store.read_all()["2"] == original
    assert "failed" in caplog.text.lower()


def test_fetch_failure_discards_athlete(credential_store, stats_store):
    credential_store.write_all({"1": make_record(1, name="Okay"), "2": make_record(2, name="Flaky")})
    fetcher = FakeFetcher({"1": [make_activity(1000.0)]}, fail_for={"2"})
    pipeline = _pipeline(credential_store, stats_store, FakeRefresher(), fetcher)

    report = pipeline.run("2026-01-01", "2026-12-31")

    assert [a.display_name for a in stats_store.read().athletes] == ["Okay"]
    assert report.failures[0].stage == "fetch"
    assert report.succeeded == 1


def test_unexpected_error_is_isolated(credential_store, stats_store):
    class ExplodingFetcher(FakeFetcher):
        def fetch_all(self, access_token, start_date, end_date, *, user_id=None):
            if user_id == "2":
                raise KeyError("surprise")
            return super().fetch_all(access_token, start_date, end_date, user_id=user_id)

    credential_store.write_all({"1": make_record(1), "2": make_record(2)})
    pipeline = _pipeline(
        credential_store, stats_store, FakeRefresher(), ExplodingFetcher({"1": [make_activity(1.0)]})
    )

    report = pipeline.run("2026-01-01", "2026-12-31")

    assert report.succeeded == 1
    assert report.failures[0].user_id == "2"


def test_all_failures_still_write_snapshot(credential_store, stats_store, caplog):
    credential_store.write_all({"1": make_record(1), "2": make_record(2)})
    pipeline = _pipeline(
        credential_store, stats_store, FakeRefresher(fail_for={"1", "2"}), FakeFetcher({})
    )

    with caplog.at_level(logging.WARNING):
        report = pipeline.run("2026-01-01", "2026-12-31")

    snapshot = stats_store.read()
    assert report.succeeded == 0
    assert snapshot.athlete_count == 0
    assert snapshot.last_updated == NOW
    assert "no data collected this run" in caplog.text.lower()


def test_expired_token_refreshed_and_persisted(credential_store, stats_store):
    credential_store.write_all(
        {"7": make_record(7, name="Expired", access="A-old", refresh="R-old", expires_at=100)}
    )

    class TokenSession:
        def post(self, url, data=None, timeout=None):
            assert data["refresh_token"] == "R-old"
            return FakeResp(200, data={"access_token": "A-new", "refresh_token": "R-new", "expires_at": 9_999_999_999})

    class ActivitySession:
        def __init__(self):
            self.auth_headers = []

        def get(self, url, headers=None, params=None, timeout=None):
            self.auth_headers.append(headers["Authorization"])
            return FakeResp(200, data=[activity_payload(2500.0, "Walk")])

    activity_session = ActivitySession()
    refresher = TokenRefresher(client_id="cid", client_secret="csec", session=TokenSession(), clock=lambda: 1_000)
    fetcher = ActivityFetcher(ActivitiesAPI(session=activity_session, limiter=NoopLimiter()))
    pipeline = _pipeline(credential_store, stats_store, refresher, fetcher)

    report = pipeline.run("2026-01-01", "2026-12-31")

    stored = credential_store.read_all()["7"]
    assert activity_session.auth_headers == ["Bearer A-new"]
    assert stored.access_token == "A-new"
    assert stored.refresh_token == "R-new"
    assert stored.expires_at == 9_999_999_999
    assert "R-old" not in credential_store.path.read_text()
    assert report.refreshed_user_ids == ["7"]
    assert stats_store.read().activity_types["Walk"].distance_km == pytest.approx(2.5)


def test_credentials_written_once_per_run(credential_store, stats_store, monkeypatch):
    credential_store.write_all({str(i): make_record(i) for i in range(5)})
    writes = []
    original_write_all = credential_store.write_all

    def counting_write_all(records):
        writes.append(len(records))
        original_write_all(records)

    monkeypatch.setattr(credential_store, "write_all", counting_write_all)
    pipeline = _pipeline(credential_store, stats_store, FakeRefresher(fail_for={"3"}), FakeFetcher({}))

    pipeline.run("2026-01-01", "2026-12-31")

    assert writes == [5]


def test_athlete_order_follows_store_with_parallel_workers(credential_store, stats_store):
    credential_store.write_all({str(i): make_record(i, name=f"A{i}") for i in range(8)})
    fetcher = FakeFetcher({str(i): [make_activity(1000.0)] for i in range(8)})
    pipeline = _pipeline(credential_store, stats_store, FakeRefresher(), fetcher, max_workers=4)

    pipeline.run("2026-01-01", "2026-12-31")

    assert [a.display_name for a in stats_store.read().athletes] == [f"A{i}" for i in range(8)]


def test_corrupt_store_aborts_run_before_processing(credential_store, stats_store):
    credential_store.path.write_text("{broken")
    refresher = FakeRefresher()
    stats_store.ensure_initialized()
    pipeline = _pipeline(credential_store, stats_store, refresher, FakeFetcher({}))

    with pytest.raises(StorageError):
        pipeline.run("2026-01-01", "2026-12-31")

    assert refresher.calls == []
    assert stats_store.read().last_updated is None


def test_overlapping_run_rejected_when_non_blocking(credential_store, stats_store):
    credential_store.write_all({"1": make_record(1)})
    entered = threading.Event()
    release = threading.Event()

    class BlockingRefresher(FakeRefresher):
        def ensure_valid(self, record):
            entered.set()
            release.wait(5)
            return super().ensure_valid(record)

    pipeline = _pipeline(credential_store, stats_store, BlockingRefresher(), FakeFetcher({}))
    worker = threading.Thread(target=pipeline.run, args=("2026-01-01", "2026-12-31"))
    worker.start()
    try:
        assert entered.wait(5)
        assert pipeline.is_running
        with pytest.raises(CollectionBusyError):
            pipeline.run("2026-01-01", "2026-12-31", blocking=False)
    finally:
        release.set()
        worker.join(5)
    assert not pipeline.is_running


def test_remove_user_waits_for_running_collection(credential_store, stats_store):
    credential_store.write_all({"1": make_record(1), "2": make_record(2)})
    entered = threading.Event()
    release = threading.Event()
    removed = threading.Event()

    class BlockingRefresher(FakeRefresher):
        def ensure_valid(self, record):
            entered.set()
            release.wait(5)
            return super().ensure_valid(record)

    pipeline = _pipeline(credential_store, stats_store, BlockingRefresher(), FakeFetcher({}), max_workers=1)
    runner = threading.Thread(target=pipeline.run, args=("2026-01-01", "2026-12-31"))
    runner.start()
    assert entered.wait(5)

    def _remove():
        pipeline.remove_user("2")
        removed.set()

    remover = threading.Thread(target=_remove)
    remover.start()
    assert not removed.wait(0.2)
    release.set()
    runner.join(5)
    remover.join(5)

    assert removed.is_set()
    assert list(credential_store.read_all()) == ["1"]


def test_remove_unknown_user(credential_store, stats_store):
    pipeline = _pipeline(credential_store, stats_store, FakeRefresher(), FakeFetcher({}))
    with pytest.raises(NotFoundError):
        pipeline.remove_user("nobody")


def test_inverted_window_rejected(credential_store, stats_store):
    pipeline = _pipeline(credential_store, stats_store, FakeRefresher(), FakeFetcher({}))
    with pytest.raises(ValueError):
        pipeline.run("2026-12-31", "2026-01-01")


def test_remove_user_releases_refresher_state(credential_store, stats_store):
    credential_store.write_all({"1": make_record(1), "2": make_record(2)})
    refresher = FakeRefresher()
    pipeline = _pipeline(credential_store, stats_store, refresher, FakeFetcher({}))

    pipeline.remove_user(2)

    assert refresher.forgotten == ["2"]
