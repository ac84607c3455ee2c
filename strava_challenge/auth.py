"""OAuth token lifecycle for Strava athletes.

Two entry points live here:

* :class:`TokenRefresher` keeps a stored :class:`CredentialRecord` usable,
  exchanging the refresh token for a new access token once the current one
  has expired.
* :func:`exchange_authorization_code` turns the code Strava hands back to the
  web callback into a brand new :class:`CredentialRecord`.

Both use a shared session with limited transport retries (5xx only), log
with masked secrets, and parse the token JSON defensively.
"""

from __future__ import annotations

import logging
import threading
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import (
    CLIENT_ID,
    CLIENT_SECRET,
    OAUTH_SCOPE,
    REDIRECT_URI,
    REQUEST_TIMEOUT,
    STRAVA_AUTHORIZE_URL,
    STRAVA_OAUTH_URL,
)
from .errors import RefreshError, StravaAPIError
from .models import CredentialRecord
from .strava_client.response_handling import check_response_status
from .utils import isoformat_utc, mask_token, utc_now

LOGGER = logging.getLogger(__name__)

# Reusable session with limited retry for transient server issues. 429 is not
# retried: the athlete is skipped and picked up by the next run.
_token_retry = Retry(
    total=3,
    backoff_factor=1.0,
    status_forcelist=[500, 502, 503, 504],
    allowed_methods=["POST"],
    raise_on_status=False,
)
_session = requests.Session()
_session.mount("https://", HTTPAdapter(max_retries=_token_retry))
_session.mount("http://", HTTPAdapter(max_retries=_token_retry))


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str
    expires_at: int


def _post_token_request(
    payload: Dict[str, Any], context: str, session: Any = None
) -> Dict[str, Any]:
    """POST to the token endpoint and return the decoded JSON object."""

    http = session or _session
    try:
        resp = http.post(STRAVA_OAUTH_URL, data=payload, timeout=REQUEST_TIMEOUT)
    except requests.exceptions.RequestException as exc:
        raise StravaAPIError(f"{context} transport failure: {exc}") from exc
    LOGGER.debug("Token endpoint status=%s", resp.status_code)
    check_response_status(resp, context)
    try:
        data = resp.json()
    except ValueError as exc:
        raise StravaAPIError(f"{context} returned invalid JSON") from exc
    if not isinstance(data, dict):
        raise StravaAPIError(
            f"{context} returned unexpected shape {type(data).__name__}"
        )
    return data


def _grant_from_response(
    data: Mapping[str, Any], previous_refresh: Optional[str], now: float
) -> TokenGrant:
    access_token = data.get("access_token")
    if not access_token:
        raise StravaAPIError("No access_token in token response")
    expires_at = data.get("expires_at")
    try:
        if expires_at is None and data.get("expires_in") is not None:
            expires_at = now + float(data["expires_in"])
        expires_at_int = int(expires_at)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise StravaAPIError("No usable expires_at in token response") from exc
    refresh_token = data.get("refresh_token") or previous_refresh
    if not refresh_token:
        raise StravaAPIError("No refresh_token in token response")
    return TokenGrant(
        access_token=str(access_token),
        refresh_token=str(refresh_token),
        expires_at=expires_at_int,
    )


class TokenRefresher:
    """Return a currently valid access token for a credential record.

    ``ensure_valid`` compares against a fresh clock reading on every call, so
    a token that expires while a long run is in progress is still noticed.
    On success the record's access token, refresh token and expiry are
    replaced together; on failure the record is left exactly as it was.
    """

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        session: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = CLIENT_ID if client_id is None else client_id
        self._client_secret = CLIENT_SECRET if client_secret is None else client_secret
        self._session = session
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_lock = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_lock:
            if user_id not in self._locks:
                self._locks[user_id] = threading.Lock()
            return self._locks[user_id]

    def forget(self, user_id: str) -> None:
        """Drop the per-athlete lock of a disconnected athlete."""

        with self._locks_lock:
            self._locks.pop(str(user_id), None)

    def is_expired(self, record: CredentialRecord) -> bool:
        return not (record.expires_at > self._clock())

    def ensure_valid(self, record: CredentialRecord) -> str:
        with self._lock_for(record.user_id):
            if not self.is_expired(record):
                return record.access_token
            grant = self.refresh_grant(record.refresh_token, user_id=record.user_id)
            rotated = grant.refresh_token != record.refresh_token
            record.access_token = grant.access_token
            record.refresh_token = grant.refresh_token
            record.expires_at = grant.expires_at
            LOGGER.info(
                "Refreshed token athlete=%s expires_at=%s refresh_token_changed=%s",
                record.user_id,
                record.expires_at,
                rotated,
            )
            return record.access_token

    def refresh_grant(
        self, refresh_token: str, *, user_id: str | None = None
    ) -> TokenGrant:
        """Exchange ``refresh_token`` for a new grant; raise :class:`RefreshError`."""

        if not self._client_id or not self._client_secret:
            raise RefreshError(
                user_id,
                "Client credentials not configured (STRAVA_CLIENT_ID / STRAVA_CLIENT_SECRET missing)",
            )
        if not refresh_token:
            raise RefreshError(user_id, "Missing refresh token")
        LOGGER.info(
            "Refreshing Strava token athlete=%s refresh_token=%s",
            user_id,
            mask_token(refresh_token),
        )
        payload = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        try:
            data = _post_token_request(payload, "Token refresh", self._session)
            return _grant_from_response(data, refresh_token, self._clock())
        except StravaAPIError as exc:
            LOGGER.warning("Token refresh failed athlete=%s: %s", user_id, exc)
            raise RefreshError(user_id, exc) from exc


def build_authorize_url(
    *, client_id: str | None = None, redirect_uri: str = REDIRECT_URI
) -> str:
    params = {
        "client_id": CLIENT_ID if client_id is None else client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "approval_prompt": "force",
        "scope": OAUTH_SCOPE,
    }
    return f"{STRAVA_AUTHORIZE_URL}?{urllib.parse.urlencode(params)}"


def _display_name(athlete: Mapping[str, Any]) -> str:
    first = str(athlete.get("firstname") or "").strip()
    last = str(athlete.get("lastname") or "").strip()
    return " ".join(part for part in (first, last) if part)


def exchange_authorization_code(
    code: str,
    *,
    client_id: str | None = None,
    client_secret: str | None = None,
    session: Any = None,
) -> CredentialRecord:
    """Trade an authorisation ``code`` for a new :class:`CredentialRecord`."""

    if not code:
        raise StravaAPIError("Missing authorisation code")
    payload = {
        "client_id": CLIENT_ID if client_id is None else client_id,
        "client_secret": CLIENT_SECRET if client_secret is None else client_secret,
        "code": code,
        "grant_type": "authorization_code",
    }
    LOGGER.info("Exchanging authorisation code for tokens...")
    data = _post_token_request(payload, "Authorisation code exchange", session)
    athlete = data.get("athlete")
    if not isinstance(athlete, dict) or athlete.get("id") is None:
        raise StravaAPIError("Token response missing athlete details")
    grant = _grant_from_response(data, None, time.time())
    record = CredentialRecord(
        user_id=str(athlete["id"]),
        display_name=_display_name(athlete),
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        expires_at=grant.expires_at,
        connected_at=isoformat_utc(utc_now()),
    )
    LOGGER.info(
        "Token exchange succeeded athlete=%s access_token=%s refresh_token=%s expires_at=%s",
        record.user_id,
        mask_token(record.access_token),
        mask_token(record.refresh_token),
        record.expires_at,
    )
    return record


__all__ = [
    "TokenGrant",
    "TokenRefresher",
    "build_authorize_url",
    "exchange_authorization_code",
]
