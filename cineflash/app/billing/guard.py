"""Minimum-interval guard for the reconciliation trigger."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Optional

logger = logging.getLogger("billing")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MinimumIntervalGuard:
    """Lets one run through per window and turns the rest into no-ops.

    The last accepted run is remembered per instance, so separate processes or
    tests each get their own window.
    """

    def __init__(
        self,
        *,
        min_interval_seconds: float = 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._interval = timedelta(seconds=max(0.0, float(min_interval_seconds)))
        self._clock = clock
        self._lock = Lock()
        self._last_run_at: Optional[datetime] = None

    @property
    def last_run_at(self) -> Optional[datetime]:
        with self._lock:
            return self._last_run_at

    def try_acquire(self) -> bool:
        """Record a run and return ``True`` unless the previous one is too recent."""

        now = self._clock()
        with self._lock:
            if self._last_run_at is not None and now - self._last_run_at < self._interval:
                logger.info(
                    "Sync trigger rate limited last_run_at=%s",
                    self._last_run_at.isoformat(),
                )
                return False
            self._last_run_at = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last_run_at = None


__all__ = ["MinimumIntervalGuard"]
