"""Scheduler integration for periodic subscription reconciliation."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Event, Lock, Thread
from typing import Dict, Optional

from cineflash.app.billing.models import SyncSummary
from cineflash.app.services.billing import get_billing_config, get_sync_guard, get_sync_service

logger = logging.getLogger(__name__)

_scheduler_lock = Lock()
_worker: Optional["_SyncWorker"] = None

_SYNC_METRICS: Dict[str, object] = {
    "runs": 0,
    "skipped": 0,
    "failures": 0,
    "expired_marked": 0,
    "entitlements_revoked": 0,
    "profiles_unpublished": 0,
    "last_run_at": None,
    "last_success_at": None,
    "last_error": None,
}
_metrics_lock = Lock()


def _record_run_start(started_at: datetime) -> None:
    with _metrics_lock:
        _SYNC_METRICS["last_run_at"] = started_at


def _record_run_skipped() -> None:
    with _metrics_lock:
        _SYNC_METRICS["skipped"] = int(_SYNC_METRICS.get("skipped", 0)) + 1


def _record_run_success(completed_at: datetime, summary: SyncSummary) -> None:
    with _metrics_lock:
        _SYNC_METRICS["runs"] = int(_SYNC_METRICS.get("runs", 0)) + 1
        _SYNC_METRICS["expired_marked"] = int(_SYNC_METRICS.get("expired_marked", 0)) + summary.expired_marked
        _SYNC_METRICS["entitlements_revoked"] = (
            int(_SYNC_METRICS.get("entitlements_revoked", 0)) + summary.entitlements_revoked
        )
        _SYNC_METRICS["profiles_unpublished"] = (
            int(_SYNC_METRICS.get("profiles_unpublished", 0)) + summary.profiles_unpublished
        )
        _SYNC_METRICS["last_success_at"] = completed_at
        _SYNC_METRICS["last_error"] = None


def _record_run_failure(error: Exception) -> None:
    with _metrics_lock:
        _SYNC_METRICS["failures"] = int(_SYNC_METRICS.get("failures", 0)) + 1
        _SYNC_METRICS["last_error"] = f"{type(error).__name__}: {error}"


def run_sync_job() -> Optional[SyncSummary]:
    """Run one reconciliation pass unless the shared guard says it ran recently."""

    if not get_sync_guard().try_acquire():
        _record_run_skipped()
        logger.info("Subscription sync skipped; a recent run is still within the window")
        return None

    _record_run_start(datetime.now(timezone.utc))
    try:
        summary = get_sync_service().sync_all_subscriptions()
    except Exception as exc:
        _record_run_failure(exc)
        logger.exception("Subscription sync job failed")
        raise
    else:
        _record_run_success(datetime.now(timezone.utc), summary)
        logger.info(
            "Subscription sync job completed",
            extra={
                "users_checked": summary.users_checked,
                "expired_marked": summary.expired_marked,
                "entitlements_revoked": summary.entitlements_revoked,
                "profiles_unpublished": summary.profiles_unpublished,
            },
        )
        return summary


class _SyncWorker(Thread):
    def __init__(self, *, initial_delay: float, interval: float):
        super().__init__(daemon=True)
        self._initial_delay = max(0.0, initial_delay)
        self._interval = max(1.0, interval)
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        if self._stop_event.wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                run_sync_job()
            except Exception:
                # Logged inside run_sync_job; keep the schedule going.
                pass
            if self._stop_event.wait(self._interval):
                break


def start_sync_scheduler(*, initial_delay: float = 30.0) -> bool:
    """Start the background worker when enabled by configuration."""

    global _worker
    config = get_billing_config()
    if not config.sync_scheduler_enabled:
        logger.info("Subscription sync scheduler disabled")
        return False

    with _scheduler_lock:
        if _worker is not None:
            return True
        _worker = _SyncWorker(
            initial_delay=initial_delay,
            interval=config.sync_scheduler_interval_seconds,
        )
        _worker.start()
        logger.info(
            "Subscription sync scheduler started",
            extra={
                "initial_delay_seconds": round(initial_delay, 2),
                "interval_seconds": config.sync_scheduler_interval_seconds,
            },
        )
        return True


def shutdown_sync_scheduler() -> None:
    global _worker
    with _scheduler_lock:
        worker = _worker
        _worker = None
        if worker is None:
            return
        worker.stop()
        worker.join(timeout=1.0)
        logger.info("Subscription sync scheduler stopped")


def get_sync_metrics() -> Dict[str, object]:
    with _metrics_lock:
        snapshot = dict(_SYNC_METRICS)
    for key in ("last_run_at", "last_success_at"):
        value = snapshot.get(key)
        snapshot[key] = value.isoformat() if isinstance(value, datetime) else None
    return snapshot


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        _SYNC_METRICS.update(
            {
                "runs": 0,
                "skipped": 0,
                "failures": 0,
                "expired_marked": 0,
                "entitlements_revoked": 0,
                "profiles_unpublished": 0,
                "last_run_at": None,
                "last_success_at": None,
                "last_error": None,
            }
        )


__all__ = [
    "get_sync_metrics",
    "run_sync_job",
    "shutdown_sync_scheduler",
    "start_sync_scheduler",
]
