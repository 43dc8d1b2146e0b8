"""In-process interval scheduler for the reconciliation job."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from budgeting.config import DEFAULT_RECONCILE_INTERVAL_SECONDS

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class IntervalScheduler:
    """Run a job every `interval_seconds` on a daemon thread.

    schedule() is idempotent: a second call while scheduled is a no-op.
    unschedule() signals the loop and waits for the current run to finish.
    Job errors are logged and the next tick still fires.
    """

    def __init__(
        self,
        job: Callable[[], Any],
        interval_seconds: float = DEFAULT_RECONCILE_INTERVAL_SECONDS,
        *,
        name: str = "budget-reconcile",
        run_immediately: bool = True,
    ) -> None:
        self.job = job
        self.interval_seconds = interval_seconds
        self.name = name
        self.run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_scheduled(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def schedule(self) -> bool:
        """Start the loop; return False when it was already scheduled."""
        if self.is_scheduled:
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Scheduled %s every %ss", self.name, self.interval_seconds)
        return True

    def unschedule(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Unscheduled %s", self.name)

    def tick(self) -> Any:  # noqa: ANN401
        """Run the job once, logging instead of raising on failure."""
        try:
            return self.job()
        except Exception:
            logger.exception("Scheduled job %s failed", self.name)
            return None

    def _run_loop(self) -> None:
        if not self.run_immediately:
            self._stop_event.wait(timeout=self.interval_seconds)
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self.interval_seconds)
