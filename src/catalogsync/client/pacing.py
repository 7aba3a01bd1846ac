"""Request pacing on top of a swappable scheduler.

This module provides:
- Scheduler: protocol for "what time is it" and "wait until then"
- SystemScheduler: blocking implementation backed by the wall clock
- RequestPacer: enforces a minimum interval between consecutive requests

All waiting in the sync core goes through a Scheduler, so the blocking
implementation can be replaced by a non-blocking timer without touching
call sites.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Clock and delay primitive used for pacing and backoff."""

    def now(self) -> float:
        """Return the current time in seconds since the epoch."""
        ...

    def sleep(self, seconds: float) -> None:
        """Suspend for the given number of seconds."""
        ...

    def wait_until(self, timestamp: float) -> None:
        """Suspend until the given time (returns immediately if past)."""
        ...


class SystemScheduler:
    """Scheduler that blocks the calling thread."""

    def now(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def wait_until(self, timestamp: float) -> None:
        self.sleep(timestamp - self.now())


class RequestPacer:
    """Keeps consecutive requests at least `min_interval` seconds apart."""

    def __init__(self, min_interval: float, scheduler: Scheduler | None = None) -> None:
        """Initialize the pacer.

        Args:
            min_interval: Minimum seconds between two requests.
            scheduler: Scheduler used to wait (default: SystemScheduler).
        """
        self._min_interval = max(0.0, min_interval)
        self._scheduler = scheduler or SystemScheduler()
        self._last_request_at: float | None = None
        self.total_wait = 0.0

    @property
    def scheduler(self) -> Scheduler:
        """Scheduler used for waiting."""
        return self._scheduler

    @property
    def next_allowed_at(self) -> float:
        """Earliest time the next request may be sent."""
        if self._last_request_at is None:
            return self._scheduler.now()
        return self._last_request_at + self._min_interval

    def wait(self) -> None:
        """Block until the next request is allowed, then mark it as sent."""
        now = self._scheduler.now()
        target = self.next_allowed_at
        if target > now:
            delay = target - now
            logger.debug(f"Pacing request: waiting {delay:.3f}s")
            self.total_wait += delay
            self._scheduler.wait_until(target)
        self._last_request_at = self._scheduler.now()
