"""Strava challenge tracker package."""

from .errors import (
    FetchError,
    NotFoundError,
    RefreshError,
    StorageError,
    StravaAPIError,
)
from .models import CredentialRecord, StatsSnapshot
from .pipeline import CollectionPipeline

__all__ = [
    "CollectionPipeline",
    "CredentialRecord",
    "FetchError",
    "NotFoundError",
    "RefreshError",
    "StatsSnapshot",
    "StorageError",
    "StravaAPIError",
]
