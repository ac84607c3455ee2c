"""Modular Strava client components (rate limiter, session, activities)."""

from .activities import ActivitiesAPI, ActivityFetcher  # noqa: F401
from .rate_limiter import RateLimiter  # noqa: F401
from .session import create_default_session, get_default_session  # noqa: F401
