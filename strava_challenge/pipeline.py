"""Collection pipeline.

One run loads every stored credential, refreshes/fetches/aggregates each
athlete on a bounded worker pool, then writes the credential set and the new
stats snapshot exactly once. Athletes fail independently: a refresh or fetch
error is recorded against that athlete and the run carries on. Only storage
failures abort a run.
"""

from __future__ import annotations

import copy
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .aggregation import breakdown, combine
from .auth import TokenRefresher
from .config import MAX_WORKERS
from .errors import CollectionBusyError, FetchError, RefreshError
from .models import (
    AthleteBreakdown,
    CredentialRecord,
    RunReport,
    StatsSnapshot,
    TrackingPeriod,
    UserFailure,
)
from .storage import CredentialStore, StatsStore
from .strava_client.activities import ActivityFetcher
from .utils import parse_date, utc_now

DateLike = str | date | datetime


@dataclass
class _UserOutcome:
    record: CredentialRecord
    result: Optional[AthleteBreakdown] = None
    failure: Optional[UserFailure] = None
    refreshed: bool = False


class CollectionPipeline:
    def __init__(
        self,
        credential_store: CredentialStore,
        stats_store: StatsStore,
        *,
        refresher: TokenRefresher | None = None,
        fetcher: ActivityFetcher | None = None,
        max_workers: int = MAX_WORKERS,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self.credential_store = credential_store
        self.stats_store = stats_store
        self.refresher = refresher or TokenRefresher()
        self.fetcher = fetcher or ActivityFetcher()
        self.max_workers = max(1, max_workers)
        self._clock = clock
        self._log = logger or logging.getLogger(self.__class__.__name__)
        # Guards every read-modify-write of the stores made through the pipeline.
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @contextmanager
    def _exclusive(self, blocking: bool) -> Iterator[None]:
        if not self._run_lock.acquire(blocking=blocking):
            raise CollectionBusyError("A collection run is already in progress")
        try:
            yield
        finally:
            self._run_lock.release()

    # -- administrative mutations -------------------------------------------
    def upsert_user(self, record: CredentialRecord) -> CredentialRecord:
        """Store a newly authorised athlete; waits for any in-flight run."""

        with self._exclusive(blocking=True):
            return self.credential_store.upsert(record)

    def remove_user(self, user_id: str | int) -> CredentialRecord:
        """Disconnect an athlete; waits for any in-flight run to finish."""

        with self._exclusive(blocking=True):
            removed = self.credential_store.remove(user_id)
            self.refresher.forget(removed.user_id)
            return removed

    # -- collection -----------------------------------------------------------
    def run(
        self,
        tracking_start: DateLike,
        tracking_end: DateLike,
        *,
        blocking: bool = True,
    ) -> RunReport:
        period = TrackingPeriod(parse_date(tracking_start), parse_date(tracking_end))
        if period.end < period.start:
            raise ValueError(
                f"Tracking window ends ({period.end}) before it starts ({period.start})"
            )
        with self._exclusive(blocking):
            return self._run_locked(period)

    def _run_locked(self, period: TrackingPeriod) -> RunReport:
        started_at = self._clock()
        self._log.info(
            "Starting data collection (tracking period %s to %s)",
            period.start,
            period.end,
        )
        records = self.credential_store.read_all()
        if not records:
            self._log.info("No athletes connected yet.")
            snapshot = combine([], period, now=self._clock())
            self.stats_store.write(snapshot)
            return RunReport(
                snapshot=snapshot, started_at=started_at, finished_at=self._clock()
            )

        self._log.info("Found %d connected athletes", len(records))
        # Workers mutate private copies; the store is written once at the end.
        working: Dict[str, CredentialRecord] = {
            user_id: copy.copy(record) for user_id, record in records.items()
        }
        outcomes = self._process_all(list(working.values()), period)

        per_user: List[Tuple[str, AthleteBreakdown]] = []
        failures: List[UserFailure] = []
        refreshed: List[str] = []
        for outcome in outcomes:
            if outcome.refreshed:
                refreshed.append(outcome.record.user_id)
            if outcome.failure is not None:
                failures.append(outcome.failure)
            elif outcome.result is not None:
                per_user.append((outcome.record.display_name, outcome.result))

        snapshot = combine(per_user, period, now=self._clock())
        self.credential_store.write_all(working)
        self.stats_store.write(snapshot)

        report = RunReport(
            snapshot=snapshot,
            processed=len(outcomes),
            failures=failures,
            refreshed_user_ids=refreshed,
            started_at=started_at,
            finished_at=self._clock(),
        )
        self._log_summary(report)
        return report

    def _process_all(
        self, records: Sequence[CredentialRecord], period: TrackingPeriod
    ) -> List[_UserOutcome]:
        workers = min(self.max_workers, len(records))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            # map() yields in submission order, which keeps the athlete
            # ordering (and therefore tie-breaks) identical to the store's.
            return list(
                executor.map(lambda rec: self._process_user(rec, period), records)
            )

    def _process_user(
        self, record: CredentialRecord, period: TrackingPeriod
    ) -> _UserOutcome:
        outcome = _UserOutcome(record=record)
        self._log.info("Processing %s...", record.display_name or record.user_id)
        stage = "refresh"
        try:
            before = record.access_token
            access_token = self.refresher.ensure_valid(record)
            outcome.refreshed = access_token != before
            stage = "fetch"
            activities = self.fetcher.fetch_all(
                access_token, period.start, period.end, user_id=record.user_id
            )
            stage = "aggregate"
            outcome.result = breakdown(activities)
        except (RefreshError, FetchError) as exc:
            outcome.failure = self._failure(record, stage, exc)
        except Exception as exc:
            self._log.error(
                "Athlete %s %s failed due to unexpected error: %s",
                record.user_id,
                stage,
                exc,
                exc_info=True,
            )
            outcome.failure = self._failure(record, stage, exc)
        else:
            self._log.info(
                "  %s: %d activities, %.2f km",
                record.display_name or record.user_id,
                outcome.result.activity_count,
                outcome.result.total_km,
            )
        return outcome

    def _failure(
        self, record: CredentialRecord, stage: str, exc: BaseException
    ) -> UserFailure:
        self._log.warning(
            "Skipping athlete=%s (%s) for this run; %s failed: %s",
            record.user_id,
            record.display_name,
            stage,
            exc,
        )
        return UserFailure(
            user_id=record.user_id,
            display_name=record.display_name,
            stage=stage,
            error=str(exc),
        )

    def _log_summary(self, report: RunReport) -> None:
        snapshot: StatsSnapshot = report.snapshot
        if report.failures:
            names = ", ".join(sorted(f.display_name or f.user_id for f in report.failures))
            self._log.warning(
                "%d of %d athletes failed this run (%s)",
                len(report.failures),
                report.processed,
                names,
            )
        if report.processed and not report.succeeded:
            self._log.warning(
                "No data collected this run: all %d athletes failed", report.processed
            )
        self._log.info(
            "Total distance: %.2f km (%.2f miles) across %d athletes",
            snapshot.total_distance_km,
            snapshot.total_distance_miles,
            snapshot.athlete_count,
        )
        for activity_type, totals in sorted(
            snapshot.activity_types.items(), key=lambda item: -item[1].distance_km
        ):
            self._log.info(
                "  %s: %.2f km (%d activities)",
                activity_type,
                totals.distance_km,
                totals.count,
            )


__all__ = ["CollectionPipeline"]
