"""Flask front end: athlete onboarding, public stats, and admin actions."""

from __future__ import annotations

import logging
import secrets
import threading
from functools import wraps
from typing import Any, Callable, Dict, Optional

from cachetools import TTLCache
from flask import Flask, jsonify, redirect, request, session
from flask.typing import ResponseReturnValue

from . import config
from .auth import build_authorize_url, exchange_authorization_code
from .errors import CollectionBusyError, NotFoundError, StorageError, StravaAPIError
from .models import CredentialRecord
from .pipeline import CollectionPipeline
from .storage import StatsStore

LOGGER = logging.getLogger(__name__)

CodeExchanger = Callable[[str], CredentialRecord]

_LANDING_PAGE = """<!DOCTYPE html>
<html>
<head><title>Strava Challenge Tracker</title></head>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 50px auto; text-align: center;">
  <h1>Join Our Strava Challenge!</h1>
  <p>Connect your Strava account to contribute to our fundraising goal.</p>
  <a href="/auth/strava">
    <img src="https://developers.strava.com/images/btn_strava_connectwith_orange.svg"
         alt="Connect with Strava">
  </a>
  <p style="margin-top: 30px; font-size: 12px; color: #666;">
    By connecting, you allow us to read your activity data to track our collective distance.
  </p>
</body>
</html>
"""


def _message_page(title: str, body: str) -> str:
    return (
        '<html><body style="font-family: Arial; text-align: center; padding: 50px;">'
        f"<h2>{title}</h2><p>{body}</p></body></html>"
    )


def create_app(
    pipeline: CollectionPipeline,
    stats_store: StatsStore,
    *,
    admin_password: str = config.ADMIN_PASSWORD,
    session_secret: str = config.SESSION_SECRET,
    mile_target: float = config.MILE_TARGET,
    tracking_window: Optional[Callable[[], tuple[str, str]]] = None,
    exchange_code: CodeExchanger = exchange_authorization_code,
    stats_cache_ttl: int = config.STATS_CACHE_TTL_SECONDS,
) -> Flask:
    app = Flask(__name__)
    if not session_secret:
        LOGGER.warning("SESSION_SECRET not set; admin sessions reset on restart")
        session_secret = secrets.token_hex(32)
    app.config.update(
        SECRET_KEY=session_secret,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SECURE=config.SESSION_COOKIE_SECURE,
    )
    if not admin_password:
        LOGGER.warning("ADMIN_PASSWORD not set; admin login is disabled")

    window = tracking_window or (lambda: (config.START_DATE, config.END_DATE))
    stats_cache: Optional[TTLCache[str, Dict[str, Any]]] = (
        TTLCache(maxsize=1, ttl=stats_cache_ttl) if stats_cache_ttl > 0 else None
    )
    cache_lock = threading.Lock()

    def _invalidate_stats() -> None:
        if stats_cache is not None:
            with cache_lock:
                stats_cache.clear()

    def _load_stats() -> Optional[Dict[str, Any]]:
        if stats_cache is None:
            return stats_store.read_raw()
        with cache_lock:
            cached = stats_cache.get("stats")
            if cached is None:
                cached = stats_store.read_raw()
                if cached is not None:
                    stats_cache["stats"] = cached
            return cached

    def require_admin(view: Callable[..., ResponseReturnValue]):
        @wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> ResponseReturnValue:
            if not session.get("is_admin"):
                return jsonify({"error": "Not authenticated"}), 401
            return view(*args, **kwargs)

        return wrapper

    # -- public -------------------------------------------------------------
    @app.get("/")
    def landing() -> ResponseReturnValue:
        return _LANDING_PAGE

    @app.get("/auth/strava")
    def auth_strava() -> ResponseReturnValue:
        return redirect(build_authorize_url())

    @app.get("/auth/callback")
    def auth_callback() -> ResponseReturnValue:
        if request.args.get("error") or not request.args.get("code"):
            return _message_page(
                "Authorization Failed",
                'You denied access or an error occurred. <a href="/">Try Again</a>',
            )
        try:
            record = exchange_code(request.args["code"])
            pipeline.upsert_user(record)
        except (StravaAPIError, StorageError) as exc:
            LOGGER.error("Error exchanging token: %s", exc)
            return (
                _message_page(
                    "Error",
                    'Failed to connect to Strava. Please try again. <a href="/">Go Back</a>',
                ),
                500,
            )
        first_name = record.display_name.split(" ")[0] if record.display_name else ""
        return _message_page(
            "Successfully Connected!",
            f"Welcome, {first_name}! Your activities will now be tracked. "
            "You can close this window.",
        )

    @app.get("/api/stats")
    def api_stats() -> ResponseReturnValue:
        try:
            stats = _load_stats()
        except StorageError as exc:
            LOGGER.error("Failed to read stats: %s", exc)
            return jsonify({"error": "Failed to read stats"}), 500
        if stats is None:
            return jsonify({"error": "Stats not initialised"}), 500
        payload = dict(stats)
        payload["mileTarget"] = mile_target
        return jsonify(payload)

    @app.get("/api/athletes")
    def api_athletes() -> ResponseReturnValue:
        try:
            records = pipeline.credential_store.read_all()
        except StorageError as exc:
            LOGGER.error("Failed to read athletes: %s", exc)
            return jsonify({"error": "Failed to read athletes"}), 500
        athletes = [
            {"name": rec.display_name, "connectedAt": rec.connected_at}
            for rec in records.values()
        ]
        return jsonify({"count": len(athletes), "athletes": athletes})

    @app.get("/health")
    def health() -> ResponseReturnValue:
        return jsonify({"status": "ok", "collecting": pipeline.is_running})

    # -- admin --------------------------------------------------------------
    @app.post("/api/admin/login")
    def admin_login() -> ResponseReturnValue:
        body = request.get_json(silent=True) or {}
        supplied = str(body.get("password") or "")
        if admin_password and secrets.compare_digest(supplied, admin_password):
            session["is_admin"] = True
            return jsonify({"success": True})
        return jsonify({"error": "Invalid password"}), 401

    @app.post("/api/admin/logout")
    def admin_logout() -> ResponseReturnValue:
        session.clear()
        return jsonify({"success": True})

    @app.get("/api/admin/check")
    def admin_check() -> ResponseReturnValue:
        return jsonify({"authenticated": bool(session.get("is_admin"))})

    @app.delete("/api/admin/athletes/<user_id>")
    @require_admin
    def admin_remove(user_id: str) -> ResponseReturnValue:
        try:
            removed = pipeline.remove_user(user_id)
        except NotFoundError:
            return jsonify({"error": f"Athlete {user_id} not found"}), 404
        except StorageError as exc:
            LOGGER.error("Failed to remove athlete %s: %s", user_id, exc)
            return jsonify({"error": "Failed to update credential store"}), 500
        return jsonify({"success": True, "removed": removed.display_name})

    @app.route("/api/trigger-collect", methods=["GET", "POST"])
    @require_admin
    def trigger_collect() -> ResponseReturnValue:
        start, end = window()
        try:
            report = pipeline.run(start, end, blocking=False)
        except CollectionBusyError:
            return jsonify({"success": False, "error": "Collection already running"}), 409
        except StorageError as exc:
            LOGGER.error("Triggered collection aborted: %s", exc)
            return jsonify({"success": False, "error": str(exc)}), 500
        finally:
            _invalidate_stats()
        return jsonify(
            {
                "success": True,
                "athletes": report.processed,
                "failed": [f.user_id for f in report.failures],
                "totalDistanceKm": report.snapshot.total_distance_km,
            }
        )

    return app


__all__ = ["create_app"]
