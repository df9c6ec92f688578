"""
Scheduled Publisher for the Blog Syndicator.

This module provides a background scheduler that periodically publishes
blogs whose scheduled time has passed.
"""
import logging
import threading
from datetime import datetime
from typing import Optional, TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

if TYPE_CHECKING:
    from notifications.pushover import PushoverNotifier
    from syndicator.orchestrator import PublishOrchestrator

logger = logging.getLogger(__name__)


class ScheduledPublisher:
    """
    Scheduler for publishing due blogs.

    Runs in a background thread and, every ``interval_seconds``, asks the
    orchestrator to publish all ``active`` blogs whose ``scheduled_at`` has
    passed. Each due blog goes through the same status gating as the HTTP
    update path: a blog whose platforms all fail stays ``active`` and is
    picked up again by the next sweep.

    Attributes:
        orchestrator: PublishOrchestrator performing the publish runs
        interval_seconds: Seconds between two sweeps
        enabled: Whether the scheduler is enabled
        notifier: Optional PushoverNotifier told about failed sweeps
    """

    def __init__(
        self,
        orchestrator: "PublishOrchestrator",
        interval_seconds: int = 60,
        enabled: bool = True,
        notifier: Optional["PushoverNotifier"] = None,
        timezone_name: str = "UTC",
    ):
        """
        Initialize the scheduled publisher.

        Args:
            orchestrator: PublishOrchestrator instance
            interval_seconds: Interval between sweeps in seconds
            enabled: Whether scheduler is enabled (default: True)
            notifier: Optional PushoverNotifier for sweep errors
            timezone_name: IANA timezone name used for scheduler time calculations
        """
        self.orchestrator = orchestrator
        self.interval_seconds = max(1, int(interval_seconds))
        self.enabled = enabled
        self.notifier = notifier
        self.timezone_name = self._normalize_timezone_name(timezone_name)
        self.timezone = ZoneInfo(self.timezone_name)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        logger.info(
            f"ScheduledPublisher initialized: "
            f"interval={self.interval_seconds}s, "
            f"enabled={enabled}, "
            f"timezone={self.timezone_name}"
        )

    @staticmethod
    def _normalize_timezone_name(timezone_name: str) -> str:
        """Return a valid timezone name, falling back to UTC."""
        if not isinstance(timezone_name, str) or not timezone_name.strip():
            return "UTC"
        candidate = timezone_name.strip()
        try:
            ZoneInfo(candidate)
        except ZoneInfoNotFoundError:
            logger.warning(f"Unknown timezone '{candidate}' for scheduler, falling back to UTC")
            return "UTC"
        return candidate

    def _now(self) -> datetime:
        """Return current datetime in scheduler timezone."""
        return datetime.now(self.timezone)

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if not self.enabled:
            logger.info("ScheduledPublisher is disabled, not starting")
            return

        if self.running:
            logger.warning("ScheduledPublisher is already running")
            return

        logger.info("Starting ScheduledPublisher")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="scheduled-publisher", daemon=True)
        self._thread.start()

    def stop(self, timeout: int = 30) -> None:
        """
        Stop the scheduler.

        Args:
            timeout: Maximum time to wait for scheduler to stop (seconds)
        """
        if not self.running:
            logger.info("ScheduledPublisher is not running")
            return

        logger.info("Stopping ScheduledPublisher")
        self._stop_event.set()
        self._thread.join(timeout=timeout)

        if self._thread.is_alive():
            logger.warning("ScheduledPublisher did not stop within timeout")
        else:
            logger.info("ScheduledPublisher stopped")

    def _run(self) -> None:
        """Main scheduler loop (runs in background thread)."""
        logger.info("ScheduledPublisher started")

        while not self._stop_event.is_set():
            self.run_once()
            # Returns early when stop() is called
            self._stop_event.wait(self.interval_seconds)

        logger.info("ScheduledPublisher stopped")

    def run_once(self) -> int:
        """
        Run a single sweep.

        Returns:
            Number of due blogs that were attempted

        Example:
            >>> scheduler.run_once()
            2
        """
        try:
            results = self.orchestrator.publish_due_blogs(self._now())
        except Exception as e:
            logger.error(f"Error in scheduled publishing sweep: {e}", exc_info=True)
            if self.notifier:
                self.notifier.notify_scheduler_error(str(e))
            return 0

        if results:
            published = sum(1 for outcome in results.values() if outcome.any_succeeded or not outcome.attempts)
            logger.info(f"Scheduled sweep complete: attempted={len(results)}, published={published}")
        else:
            logger.debug("Scheduled sweep found no due blogs")
        return len(results)
