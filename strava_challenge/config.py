"""Central configuration for the Strava challenge tracker.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Strava settings
# ---------------------------------------------------------------------------
STRAVA_BASE_URL = "https://www.strava.com/api/v3"
STRAVA_OAUTH_URL = "https://www.strava.com/oauth/token"
STRAVA_AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"
OAUTH_SCOPE = "activity:read_all"

# Client credentials pulled from the environment. Do not hardcode secrets.
CLIENT_ID = os.getenv("STRAVA_CLIENT_ID", "")
CLIENT_SECRET = os.getenv("STRAVA_CLIENT_SECRET", "")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
# Paths can be absolute or relative to the working directory.
TOKENS_FILE = os.getenv("TOKENS_FILE", "athlete_tokens.json")
STATS_FILE = os.getenv("STATS_FILE", "stats.json")


# ---------------------------------------------------------------------------
# Tracking window
# ---------------------------------------------------------------------------
# Inclusive YYYY-MM-DD dates, interpreted as UTC calendar days.
START_DATE = os.getenv("START_DATE", "2026-01-01")
END_DATE = os.getenv("END_DATE", "2026-12-31")


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------
# Activities requested per page from /athlete/activities (Strava max is 200).
ACTIVITY_PAGE_SIZE = _env_int("ACTIVITY_PAGE_SIZE", 200)

# Athletes processed in parallel during a collection run.
MAX_WORKERS = _env_int("MAX_WORKERS", 4)

# Minutes between scheduled collection runs.
COLLECT_INTERVAL_MINUTES = _env_float("COLLECT_INTERVAL_MINUTES", 60.0)

# Run a collection immediately when the scheduler starts.
COLLECT_ON_STARTUP = _env_bool("COLLECT_ON_STARTUP", True)


# ---------------------------------------------------------------------------
# HTTP / rate limiting
# ---------------------------------------------------------------------------
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 10

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("REQUEST_TIMEOUT", 15)

# RATE_LIMIT_MAX_CONCURRENT caps total in-flight requests.
RATE_LIMIT_MAX_CONCURRENT = 4
# RATE_LIMIT_JITTER_RANGE adds random delay (seconds) to smooth bursts.
RATE_LIMIT_JITTER_RANGE = (0.05, 0.2)
# RATE_LIMIT_NEAR_LIMIT_BUFFER starts throttling when this close to the short-window limit.
RATE_LIMIT_NEAR_LIMIT_BUFFER = 3
# RATE_LIMIT_THROTTLE_SECONDS is the pause applied after 429s or near-limit signals.
RATE_LIMIT_THROTTLE_SECONDS = 15


# ---------------------------------------------------------------------------
# Web front end
# ---------------------------------------------------------------------------
PORT = _env_int("PORT", 3000)
REDIRECT_URI = os.getenv("REDIRECT_URI", f"http://localhost:{PORT}/auth/callback")

ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
SESSION_SECRET = os.getenv("SESSION_SECRET", "")
SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", False)

# Shared goal (miles) reported alongside the stats snapshot.
MILE_TARGET = _env_float("MILE_TARGET", 0.0)

# Seconds the public stats endpoint may serve a cached snapshot.
STATS_CACHE_TTL_SECONDS = _env_int("STATS_CACHE_TTL_SECONDS", 30)


# ---------------------------------------------------------------------------
# Excel export
# ---------------------------------------------------------------------------
EXCEL_AUTOSIZE_COLUMNS = True
EXCEL_AUTOSIZE_MAX_WIDTH = 50  # characters
EXCEL_AUTOSIZE_MIN_WIDTH = 6  # characters
EXCEL_AUTOSIZE_PADDING = 2  # extra characters added to the detected max
