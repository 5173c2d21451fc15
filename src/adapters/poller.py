"""
Background publish poller.

Runs reconciliation passes on an interval inside the API process or the
`poll` CLI command. Real deployments drive the cron endpoint instead; this
keeps a single-node install publishing without an external scheduler.

Key behaviors:
- A failing pass is logged and the loop keeps going
- The throttled publisher skips passes requested too soon after the last one
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from src.components.reconciler import ReconcileOutput

logger = logging.getLogger(__name__)

PassRunner = Callable[[str], ReconcileOutput]


@dataclass(frozen=True)
class ThrottledResult:
    """Outcome of a throttled publish request."""

    skipped: bool
    reason: str | None = None
    output: ReconcileOutput | None = None


class ThrottledPublisher:
    """
    Runs a pass at most once per `min_interval_seconds`.

    The clock is only advanced when a pass actually starts, so a skipped
    request never pushes the next allowed run further out.
    """

    def __init__(
        self,
        run_pass: PassRunner,
        min_interval_seconds: float,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._run_pass = run_pass
        self._min_interval = min_interval_seconds
        self._monotonic = monotonic
        self._last_run: float | None = None
        self._lock = threading.Lock()

    def maybe_run(self, trigger: str = "auto") -> ThrottledResult:
        with self._lock:
            now = self._monotonic()
            if self._last_run is not None and now - self._last_run < self._min_interval:
                return ThrottledResult(skipped=True, reason="Too soon since last check")
            self._last_run = now

        output = self._run_pass(trigger)
        if output.published_count:
            logger.info("Auto-publisher: published %d scheduled chapters", output.published_count)
        return ThrottledResult(skipped=False, output=output)

    def run_quietly(self, trigger: str = "request") -> None:
        """Background-task entry point; a failing pass never reaches the caller."""
        try:
            self.maybe_run(trigger)
        except Exception:
            logger.exception("Error in auto-publisher")


class BackgroundPoller:
    """
    Publish poller with a background thread.

    Calls the pass runner every `interval_seconds` until stopped.
    """

    def __init__(
        self,
        run_pass: PassRunner,
        interval_seconds: float = 600.0,
    ) -> None:
        """
        Initialize poller.

        Args:
            run_pass: Callable running one reconciliation pass for a trigger name
            interval_seconds: Interval between passes
        """
        self._run_pass = run_pass
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False

    def start(self) -> None:
        """Start the background poller."""
        if self._running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="publish-poller", daemon=True)
        self._thread.start()
        self._running = True
        logger.info("Publish poller started (interval: %.1fs)", self._interval)

    def stop(self) -> None:
        """Stop the poller gracefully."""
        if not self._running:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
        self._running = False
        logger.info("Publish poller stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the poller is stopped. Returns True if it was."""
        return self._stop_event.wait(timeout=timeout)

    @property
    def is_running(self) -> bool:
        """Check if poller is active."""
        return self._running

    def _poll_loop(self) -> None:
        """Background polling loop."""
        while not self._stop_event.wait(timeout=self._interval):
            self.run_once()

    def run_once(self) -> ReconcileOutput | None:
        """Run one pass, logging instead of raising on failure."""
        try:
            result = self._run_pass("poller")
        except Exception:
            logger.exception("Error in publish poll loop")
            return None

        if result.published_count or result.failed_count:
            logger.info(
                "Poller pass: %d published, %d skipped, %d failed",
                result.published_count,
                result.skipped_count,
                result.failed_count,
            )
        return result
