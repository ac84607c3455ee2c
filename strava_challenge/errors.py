"""Central error types used across the application."""

from __future__ import annotations


class StorageError(RuntimeError):
    """Raised when a persisted artifact is unreadable, malformed or unwritable."""


class NotFoundError(RuntimeError):
    """Raised when an athlete id is not present in the credential store."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Athlete {user_id} is not connected")
        self.user_id = user_id


class CollectionBusyError(RuntimeError):
    """Raised when a collection run is requested while another one holds the lock."""


class StravaAPIError(RuntimeError):
    """Base error for Strava API failures."""


class StravaPermissionError(StravaAPIError):
    """Raised when the API reports insufficient scopes or authentication issues."""


class StravaRateLimitError(StravaAPIError):
    """Raised when Strava answers HTTP 429. Never retried within a run."""


class RefreshError(StravaAPIError):
    """Token refresh failed for one athlete; their record is left untouched."""

    def __init__(self, user_id: str | None, cause: BaseException | str) -> None:
        super().__init__(f"Token refresh failed for athlete {user_id}: {cause}")
        self.user_id = user_id
        self.cause = cause


class FetchError(StravaAPIError):
    """Activity download failed for one athlete; partial pages are discarded."""

    def __init__(
        self,
        user_id: str | None,
        cause: BaseException | str,
        *,
        page: int | None = None,
    ) -> None:
        where = f" (page {page})" if page is not None else ""
        super().__init__(f"Activity fetch failed for athlete {user_id}{where}: {cause}")
        self.user_id = user_id
        self.cause = cause
        self.page = page


__all__ = [
    "CollectionBusyError",
    "FetchError",
    "NotFoundError",
    "RefreshError",
    "StorageError",
    "StravaAPIError",
    "StravaPermissionError",
    "StravaRateLimitError",
]
