"""Paginated download of an athlete's activities within the tracking window."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, TypeAlias

import requests

from ..config import ACTIVITY_PAGE_SIZE, REQUEST_TIMEOUT, STRAVA_BASE_URL
from ..errors import FetchError, StravaAPIError
from ..models import OTHER_ACTIVITY_TYPE, ActivityRecord
from ..utils import parse_iso_datetime, window_epoch_bounds
from .rate_limiter import RateLimiter
from .response_handling import check_response_status
from .session import get_default_session

JSONList: TypeAlias = List[Dict[str, Any]]
DateLike: TypeAlias = str | date | datetime

LOGGER = logging.getLogger(__name__)

__all__ = ["ActivitiesAPI", "ActivityFetcher", "to_activity_record"]


def _normalize_activity_type(value: Any) -> str:
    """Keep Strava's category verbatim (case-sensitive); blank becomes ``Other``."""

    if value is None:
        return OTHER_ACTIVITY_TYPE
    text = str(value).strip()
    return text or OTHER_ACTIVITY_TYPE


def to_activity_record(payload: Mapping[str, Any]) -> ActivityRecord:
    """Reduce a Strava activity summary to the fields the aggregation needs."""

    raw_distance = payload.get("distance")
    distance = 0.0
    if isinstance(raw_distance, (int, float)) and not isinstance(raw_distance, bool):
        distance = max(0.0, float(raw_distance))
    activity_type = payload.get("type") or payload.get("sport_type")
    return ActivityRecord(
        distance_meters=distance,
        activity_type=_normalize_activity_type(activity_type),
        start_date=parse_iso_datetime(payload.get("start_date")),
    )


class ActivitiesAPI:
    """Thin client for ``GET /athlete/activities`` honouring the rate limiter."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        limiter: RateLimiter | None = None,
        base_url: str = STRAVA_BASE_URL,
        timeout: int = REQUEST_TIMEOUT,
    ) -> None:
        self._session = session or get_default_session()
        self._limiter = limiter or RateLimiter()
        self._url = f"{base_url}/athlete/activities"
        self._timeout = timeout

    def get_page(
        self, access_token: str, params: Dict[str, Any], page: int
    ) -> JSONList:
        """GET one page. Raises :class:`StravaAPIError` or ``RequestException``."""

        query = dict(params)
        query["page"] = page
        self._limiter.before_request()
        try:
            resp = self._session.get(
                self._url,
                headers={"Authorization": f"Bearer {access_token}"},
                params=query,
                timeout=self._timeout,
            )
        except requests.RequestException:
            self._limiter.after_response(None, None)
            raise
        self._limiter.after_response(resp.headers, resp.status_code)
        check_response_status(resp, f"Activities page {page}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise StravaAPIError(f"Activities page {page} returned non-JSON") from exc
        if not isinstance(data, list):
            raise StravaAPIError(
                f"Activities page {page} returned {type(data).__name__}, expected list"
            )
        return data


class ActivityFetcher:
    """Collect the complete activity list for one athlete.

    Pages are requested from 1 upward until a page comes back shorter than
    ``page_size`` (or empty). Any failure aborts the whole fetch with
    :class:`FetchError`; nothing accumulated so far is returned.
    """

    def __init__(
        self,
        api: ActivitiesAPI | None = None,
        *,
        page_size: int = ACTIVITY_PAGE_SIZE,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._api = api or ActivitiesAPI()
        self.page_size = page_size

    def fetch_all(
        self,
        access_token: str,
        start_date: DateLike,
        end_date: DateLike,
        *,
        user_id: Optional[str] = None,
    ) -> List[ActivityRecord]:
        after_ts, before_ts = window_epoch_bounds(start_date, end_date)
        params = {"after": after_ts, "before": before_ts, "per_page": self.page_size}

        collected: JSONList = []
        page = 1
        while True:
            try:
                data = self._api.get_page(access_token, params, page)
            except (StravaAPIError, requests.RequestException) as exc:
                LOGGER.warning(
                    "Activities fetch failed athlete=%s page=%s err=%s",
                    user_id,
                    page,
                    exc,
                )
                raise FetchError(user_id, exc, page=page) from exc
            collected.extend(data)
            LOGGER.debug(
                "Activities athlete=%s page=%s returned %s rows",
                user_id,
                page,
                len(data),
            )
            if len(data) < self.page_size:
                break
            page += 1

        return [to_activity_record(item) for item in collected if isinstance(item, dict)]
