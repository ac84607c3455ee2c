"""Command line entry point.

Usage::

    python -m strava_challenge collect
    python -m strava_challenge schedule
    python -m strava_challenge serve
    python -m strava_challenge athletes
    python -m strava_challenge remove <athlete_id>
    python -m strava_challenge export stats.xlsx
"""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from . import config
from .errors import NotFoundError, StorageError
from .excel_writer import write_stats_workbook
from .pipeline import CollectionPipeline
from .scheduler import CollectionScheduler
from .storage import CredentialStore, StatsStore


def _setup_logging(verbose: bool = False) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def build_pipeline(tokens_file: str, stats_file: str) -> CollectionPipeline:
    credential_store = CredentialStore(tokens_file)
    stats_store = StatsStore(stats_file)
    credential_store.ensure_initialized()
    stats_store.ensure_initialized()
    return CollectionPipeline(credential_store, stats_store)


def _cmd_collect(pipeline: CollectionPipeline, args: argparse.Namespace) -> int:
    report = pipeline.run(args.start, args.end)
    return 1 if report.processed and not report.succeeded else 0


def _cmd_schedule(pipeline: CollectionPipeline, args: argparse.Namespace) -> int:
    scheduler = CollectionScheduler(
        pipeline,
        interval_seconds=args.interval * 60,
        window=lambda: (args.start, args.end),
    )
    scheduler.start()
    logging.info("Scheduler is running. Press Ctrl+C to stop.")
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        logging.info("Stopping scheduler...")
    finally:
        scheduler.stop()
    return 0


def _cmd_serve(pipeline: CollectionPipeline, args: argparse.Namespace) -> int:
    from .web import create_app  # local import keeps Flask optional for the CLI

    scheduler = None
    if not args.no_schedule:
        scheduler = CollectionScheduler(
            pipeline,
            interval_seconds=args.interval * 60,
            window=lambda: (args.start, args.end),
        )
        scheduler.start()
    app = create_app(
        pipeline,
        pipeline.stats_store,
        tracking_window=lambda: (args.start, args.end),
    )
    logging.info("Server running on http://%s:%s", args.host, args.port)
    try:
        app.run(host=args.host, port=args.port)
    finally:
        if scheduler is not None:
            scheduler.stop()
    return 0


def _cmd_athletes(pipeline: CollectionPipeline, args: argparse.Namespace) -> int:
    records = pipeline.credential_store.read_all()
    print(f"{len(records)} connected athletes")
    for record in records.values():
        print(f"  {record.user_id}\t{record.display_name}\tconnected {record.connected_at}")
    return 0


def _cmd_remove(pipeline: CollectionPipeline, args: argparse.Namespace) -> int:
    try:
        removed = pipeline.remove_user(args.athlete_id)
    except NotFoundError as exc:
        logging.error("%s", exc)
        return 1
    logging.info("Removed %s (%s)", removed.display_name, removed.user_id)
    return 0


def _cmd_export(pipeline: CollectionPipeline, args: argparse.Namespace) -> int:
    snapshot = pipeline.stats_store.read()
    if snapshot is None:
        logging.error("No stats snapshot at %s", pipeline.stats_store.path)
        return 1
    path = write_stats_workbook(args.output, snapshot)
    logging.info("Stats exported to %s", path)
    return 0


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Strava challenge tracker")
    parser.add_argument("--tokens-file", default=config.TOKENS_FILE)
    parser.add_argument("--stats-file", default=config.STATS_FILE)
    parser.add_argument("--start", default=config.START_DATE, help="YYYY-MM-DD")
    parser.add_argument("--end", default=config.END_DATE, help="YYYY-MM-DD")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("collect", help="Run one collection now")

    schedule = sub.add_parser("schedule", help="Collect on a timer until stopped")
    schedule.add_argument(
        "--interval", type=float, default=config.COLLECT_INTERVAL_MINUTES, help="Minutes"
    )

    serve = sub.add_parser("serve", help="Run the web front end (and the scheduler)")
    serve.add_argument("--host", default="0.0.0.0")  # nosec B104
    serve.add_argument("--port", type=int, default=config.PORT)
    serve.add_argument(
        "--interval", type=float, default=config.COLLECT_INTERVAL_MINUTES, help="Minutes"
    )
    serve.add_argument("--no-schedule", action="store_true")

    sub.add_parser("athletes", help="List connected athletes")

    remove = sub.add_parser("remove", help="Disconnect an athlete")
    remove.add_argument("athlete_id")

    export = sub.add_parser("export", help="Write the latest stats to an Excel file")
    export.add_argument("output")

    return parser.parse_args(argv)


_COMMANDS = {
    "collect": _cmd_collect,
    "schedule": _cmd_schedule,
    "serve": _cmd_serve,
    "athletes": _cmd_athletes,
    "remove": _cmd_remove,
    "export": _cmd_export,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    _setup_logging(args.verbose)
    try:
        pipeline = build_pipeline(args.tokens_file, args.stats_file)
        return _COMMANDS[args.command](pipeline, args)
    except StorageError as exc:
        logging.error("Storage failure: %s", exc)
        return 2
