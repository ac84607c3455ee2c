"""In-process timer that triggers collection runs."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Tuple

from .config import COLLECT_INTERVAL_MINUTES, COLLECT_ON_STARTUP, END_DATE, START_DATE
from .errors import CollectionBusyError, StorageError
from .models import RunReport
from .pipeline import CollectionPipeline

LOGGER = logging.getLogger(__name__)

WindowProvider = Callable[[], Tuple[str, str]]


def _configured_window() -> Tuple[str, str]:
    return START_DATE, END_DATE


class CollectionScheduler:
    """Call :meth:`CollectionPipeline.run` every ``interval_seconds``.

    A tick that finds a run already in progress is skipped. Storage errors
    are logged and the timer keeps going; the next tick is the retry.
    """

    def __init__(
        self,
        pipeline: CollectionPipeline,
        *,
        interval_seconds: float = COLLECT_INTERVAL_MINUTES * 60,
        run_on_start: bool = COLLECT_ON_STARTUP,
        window: WindowProvider = _configured_window,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self._window = window
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def trigger(self) -> Optional[RunReport]:
        """Run one collection now unless another run holds the lock."""

        start, end = self._window()
        try:
            return self.pipeline.run(start, end, blocking=False)
        except CollectionBusyError:
            LOGGER.info("Collection already in progress; skipping scheduled run")
        except StorageError as exc:
            LOGGER.error("Scheduled collection aborted: %s", exc)
        return None

    def _tick(self) -> None:
        # The timer thread must outlive any single failed run.
        try:
            self.trigger()
        except Exception:
            LOGGER.exception("Scheduled collection failed unexpectedly")

    def _loop(self) -> None:
        if self.run_on_start:
            LOGGER.info("Running initial data collection...")
            self._tick()
        while not self._stop.wait(self.interval_seconds):
            LOGGER.info("Running scheduled data collection...")
            self._tick()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        LOGGER.info(
            "Scheduling automatic data collection every %.1f minutes",
            self.interval_seconds / 60,
        )
        self._thread = threading.Thread(
            target=self._loop, name="collection-scheduler", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def wait(self) -> None:
        """Block the calling thread until :meth:`stop` is called."""

        self._stop.wait()


__all__ = ["CollectionScheduler"]
