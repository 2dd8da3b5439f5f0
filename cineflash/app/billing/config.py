"""Billing configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for entitlement reconciliation and credit handling."""

    cron_secret: Optional[str]
    sync_min_interval_seconds: int
    sync_scheduler_enabled: bool
    sync_scheduler_interval_seconds: int
    job_credit_retry_attempts: int


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    cron_secret = (env_mapping.get("CRON_SECRET") or "").strip() or None

    sync_min_interval_seconds = max(0, _to_int(env_mapping.get("SYNC_MIN_INTERVAL_SECONDS"), default=60))
    sync_scheduler_enabled = _to_bool(env_mapping.get("SYNC_SCHEDULER_ENABLED"), default=False)
    sync_scheduler_interval_seconds = max(
        1, _to_int(env_mapping.get("SYNC_SCHEDULER_INTERVAL_SECONDS"), default=60 * 60)
    )
    job_credit_retry_attempts = max(0, _to_int(env_mapping.get("JOB_CREDIT_RETRY_ATTEMPTS"), default=1))

    return BillingConfig(
        cron_secret=cron_secret,
        sync_min_interval_seconds=sync_min_interval_seconds,
        sync_scheduler_enabled=sync_scheduler_enabled,
        sync_scheduler_interval_seconds=sync_scheduler_interval_seconds,
        job_credit_retry_attempts=job_credit_retry_attempts,
    )


__all__ = ["BillingConfig", "load_billing_config"]
