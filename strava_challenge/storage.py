"""JSON file stores for athlete credentials and the stats snapshot.

Each artifact is a single JSON document replaced wholesale through a
temp-file + ``os.replace`` swap, so readers see either the previous or the
new version and never a torn file. The in-process lock serialises
read-modify-write helpers within one process only; cross-run exclusion is
the collection pipeline's job.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import date
from os import PathLike
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import NotFoundError, StorageError
from .models import (
    AthleteStat,
    CredentialRecord,
    StatsSnapshot,
    TrackingPeriod,
    TypeBreakdown,
    TypeTotals,
)
from .utils import isoformat_utc, parse_iso_datetime

LOGGER = logging.getLogger(__name__)

PathInput = str | Path | PathLike[str]


def _write_json_atomic(path: Path, payload: Any) -> None:
    serialized = json.dumps(payload, indent=2, ensure_ascii=False)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.stem}_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(serialized)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, path)
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)
    except OSError as exc:
        raise StorageError(f"Failed writing {path}: {exc}") from exc


def _read_json(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except json.JSONDecodeError as exc:
        raise StorageError(f"{path} is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise StorageError(f"Failed reading {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------
def record_to_dict(record: CredentialRecord) -> Dict[str, Any]:
    return {
        "athleteId": record.user_id,
        "displayName": record.display_name,
        "accessToken": record.access_token,
        "refreshToken": record.refresh_token,
        "expiresAt": record.expires_at,
        "connectedAt": record.connected_at,
    }


def _require_str(data: Mapping[str, Any], key: str, user_id: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise StorageError(f"Credential record {user_id} has invalid '{key}'")
    return value


def record_from_dict(user_id: str, data: Any) -> CredentialRecord:
    """Validate one stored record; malformed data raises :class:`StorageError`."""

    if not isinstance(data, dict):
        raise StorageError(f"Credential record {user_id} is not an object")
    stored_id = data.get("athleteId", user_id)
    if str(stored_id) != user_id:
        raise StorageError(
            f"Credential record keyed {user_id} carries athleteId {stored_id}"
        )
    display_name = data.get("displayName")
    if display_name is None:
        # Older files store the name split in two.
        parts = (data.get("firstName"), data.get("lastName"))
        display_name = " ".join(str(p).strip() for p in parts if p)
    if not isinstance(display_name, str):
        raise StorageError(f"Credential record {user_id} has invalid 'displayName'")
    expires_at = data.get("expiresAt")
    if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
        raise StorageError(f"Credential record {user_id} has invalid 'expiresAt'")
    return CredentialRecord(
        user_id=user_id,
        display_name=display_name,
        access_token=_require_str(data, "accessToken", user_id),
        refresh_token=_require_str(data, "refreshToken", user_id),
        expires_at=int(expires_at),
        connected_at=_require_str(data, "connectedAt", user_id),
    )


class CredentialStore:
    """Durable ``athlete id -> CredentialRecord`` mapping in one JSON file."""

    def __init__(self, path: PathInput) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def ensure_initialized(self) -> None:
        with self._lock:
            if not self.path.exists():
                LOGGER.info("Creating empty credential store at %s", self.path)
                _write_json_atomic(self.path, {})

    def read_all(self) -> Dict[str, CredentialRecord]:
        with self._lock:
            self.ensure_initialized()
            raw = _read_json(self.path)
        if not isinstance(raw, dict):
            raise StorageError(
                f"{self.path} must contain a JSON object, found {type(raw).__name__}"
            )
        return {str(key): record_from_dict(str(key), value) for key, value in raw.items()}

    def write_all(self, records: Mapping[str, CredentialRecord]) -> None:
        payload: Dict[str, Any] = {}
        for key, record in records.items():
            if str(key) != record.user_id:
                raise StorageError(
                    f"Credential key {key} does not match record athlete {record.user_id}"
                )
            payload[record.user_id] = record_to_dict(record)
        with self._lock:
            _write_json_atomic(self.path, payload)
        LOGGER.debug("Wrote %d credential records to %s", len(payload), self.path)

    def get(self, user_id: str | int) -> CredentialRecord:
        key = str(user_id)
        records = self.read_all()
        if key not in records:
            raise NotFoundError(key)
        return records[key]

    def upsert(self, record: CredentialRecord) -> CredentialRecord:
        """Insert or replace one record, keeping the original ``connected_at``."""

        with self._lock:
            records = self.read_all()
            existing = records.get(record.user_id)
            if existing is not None:
                record.connected_at = existing.connected_at
            records[record.user_id] = record
            self.write_all(records)
        LOGGER.info(
            "%s athlete=%s (%s)",
            "Updated" if existing is not None else "Connected",
            record.user_id,
            record.display_name,
        )
        return record

    def remove(self, user_id: str | int) -> CredentialRecord:
        key = str(user_id)
        with self._lock:
            records = self.read_all()
            if key not in records:
                raise NotFoundError(key)
            removed = records.pop(key)
            self.write_all(records)
        LOGGER.info("Removed athlete=%s (%s)", key, removed.display_name)
        return removed


# ---------------------------------------------------------------------------
# Stats snapshot
# ---------------------------------------------------------------------------
def _types_to_dict(by_type: TypeBreakdown) -> Dict[str, Dict[str, Any]]:
    return {
        key: {"distanceKm": value.distance_km, "count": value.count}
        for key, value in by_type.items()
    }


def _types_from_dict(raw: Any) -> TypeBreakdown:
    if not isinstance(raw, dict):
        raise StorageError("Activity type breakdown must be an object")
    result: TypeBreakdown = {}
    for key, value in raw.items():
        if not isinstance(value, dict):
            raise StorageError(f"Activity type '{key}' entry must be an object")
        result[str(key)] = TypeTotals(
            distance_km=float(value.get("distanceKm", 0.0)),
            count=int(value.get("count", 0)),
        )
    return result


def snapshot_to_dict(snapshot: StatsSnapshot) -> Dict[str, Any]:
    period = snapshot.tracking_period
    return {
        "totalDistanceKm": snapshot.total_distance_km,
        "totalDistanceMiles": snapshot.total_distance_miles,
        "athletes": [
            {
                "name": stat.display_name,
                "distanceKm": stat.total_distance_km,
                "activityCount": stat.activity_count,
                "byType": _types_to_dict(stat.by_type),
            }
            for stat in snapshot.athletes
        ],
        "athleteCount": snapshot.athlete_count,
        "activityTypeBreakdown": _types_to_dict(snapshot.activity_types),
        "lastUpdated": (
            isoformat_utc(snapshot.last_updated) if snapshot.last_updated else None
        ),
        "trackingPeriod": (
            {"start": period.start.isoformat(), "end": period.end.isoformat()}
            if period
            else None
        ),
    }


def snapshot_from_dict(raw: Any) -> StatsSnapshot:
    """Rebuild a snapshot; ``totalDistanceMiles`` is recomputed, not trusted."""

    if not isinstance(raw, dict):
        raise StorageError("Stats snapshot must be a JSON object")
    try:
        athletes = [
            AthleteStat(
                display_name=str(item.get("name", "")),
                total_distance_km=float(item.get("distanceKm", 0.0)),
                activity_count=int(item.get("activityCount", 0)),
                by_type=_types_from_dict(item.get("byType", {})),
            )
            for item in raw.get("athletes", [])
        ]
        period_raw = raw.get("trackingPeriod")
        period = None
        if isinstance(period_raw, dict):
            period = TrackingPeriod(
                start=date.fromisoformat(period_raw["start"]),
                end=date.fromisoformat(period_raw["end"]),
            )
        return StatsSnapshot(
            total_distance_km=float(raw.get("totalDistanceKm", 0.0)),
            athletes=athletes,
            activity_types=_types_from_dict(raw.get("activityTypeBreakdown", {})),
            last_updated=parse_iso_datetime(raw.get("lastUpdated")),
            tracking_period=period,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"Malformed stats snapshot: {exc}") from exc


class StatsStore:
    """Single-document store for the latest :class:`StatsSnapshot`."""

    def __init__(self, path: PathInput) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def ensure_initialized(self) -> bool:
        """Write the never-collected baseline if no snapshot exists yet."""

        with self._lock:
            if self.path.exists():
                return False
            LOGGER.info("Creating baseline stats snapshot at %s", self.path)
            _write_json_atomic(self.path, snapshot_to_dict(StatsSnapshot()))
            return True

    def read_raw(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        raw = _read_json(self.path)
        if not isinstance(raw, dict):
            raise StorageError(f"{self.path} must contain a JSON object")
        return raw

    def read(self) -> Optional[StatsSnapshot]:
        raw = self.read_raw()
        return snapshot_from_dict(raw) if raw is not None else None

    def write(self, snapshot: StatsSnapshot) -> None:
        with self._lock:
            _write_json_atomic(self.path, snapshot_to_dict(snapshot))


__all__ = [
    "CredentialStore",
    "StatsStore",
    "record_from_dict",
    "record_to_dict",
    "snapshot_from_dict",
    "snapshot_to_dict",
]
