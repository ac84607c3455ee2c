"""Global pytest fixtures & helpers.

Adds project root to path and provides reusable factories for credential
records, fake HTTP responses and file-backed stores.
"""
from __future__ import annotations

import json
import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from strava_challenge.models import ActivityRecord, CredentialRecord
from strava_challenge.storage import CredentialStore, StatsStore


FAR_FUTURE = 4_102_444_800  # 2100-01-01


class FakeResp:
    """Minimal fake response matching needed parts of requests.Response."""

    def __init__(self, status_code=200, data=None, headers=None):
        self.status_code = status_code
        self._data = data if data is not None else []
        self.headers = headers or {}

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data

    @property
    def text(self):
        try:
            return json.dumps(self._data)
        except Exception:
            return str(self._data)


class NoopLimiter:
    def before_request(self):
        return

    def after_response(self, headers, status_code):
        return False, ""


# --- Factory helpers -------------------------------------------------
def make_record(user_id="1", name="Alice Runner", access="acc-1", refresh="ref-1", expires_at=FAR_FUTURE):
    return CredentialRecord(
        user_id=str(user_id),
        display_name=name,
        access_token=access,
        refresh_token=refresh,
        expires_at=expires_at,
        connected_at="2026-01-02T09:30:00.000Z",
    )


def make_activity(distance_m, activity_type="Run"):
    return ActivityRecord(distance_meters=distance_m, activity_type=activity_type)


def activity_payload(distance_m, activity_type="Run", start="2026-03-01T08:00:00Z"):
    return {"distance": distance_m, "type": activity_type, "start_date": start}


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def credential_store(tmp_path):
    return CredentialStore(tmp_path / "athlete_tokens.json")


@pytest.fixture
def stats_store(tmp_path):
    return StatsStore(tmp_path / "stats.json")


@pytest.fixture
def noop_limiter():
    return NoopLimiter()
