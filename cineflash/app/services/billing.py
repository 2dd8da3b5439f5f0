"""Application wiring for the billing services."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..billing import BillingAuditEvent, BillingEventLogger, SubscriptionService
from ..billing.config import BillingConfig, load_billing_config
from ..billing.guard import MinimumIntervalGuard
from ..billing.repository import PostgresBillingStore
from ..entitlements.credits import JobCreditService
from ..entitlements.sync import EntitlementSyncService
from ..profiles.publishing import ProfilePublishingService


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s user=%s subscription=%s metadata=%s",
            event.event_type.value,
            event.user_id,
            event.subscription_id,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_billing_store() -> PostgresBillingStore:
    return PostgresBillingStore()


@lru_cache(maxsize=1)
def get_event_logger() -> BillingEventLogger:
    return LoggingBillingEventLogger()


@lru_cache(maxsize=1)
def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(store=get_billing_store(), event_logger=get_event_logger())


@lru_cache(maxsize=1)
def get_sync_service() -> EntitlementSyncService:
    return EntitlementSyncService(store=get_billing_store(), event_logger=get_event_logger())


@lru_cache(maxsize=1)
def get_job_credit_service() -> JobCreditService:
    config = get_billing_config()
    return JobCreditService(
        store=get_billing_store(),
        event_logger=get_event_logger(),
        retry_attempts=config.job_credit_retry_attempts,
    )


@lru_cache(maxsize=1)
def get_publishing_service() -> ProfilePublishingService:
    return ProfilePublishingService(store=get_billing_store(), event_logger=get_event_logger())


@lru_cache(maxsize=1)
def get_sync_guard() -> MinimumIntervalGuard:
    """Process-wide guard shared by the cron route and the background scheduler."""

    return MinimumIntervalGuard(min_interval_seconds=get_billing_config().sync_min_interval_seconds)


__all__ = [
    "LoggingBillingEventLogger",
    "get_billing_config",
    "get_billing_store",
    "get_event_logger",
    "get_job_credit_service",
    "get_publishing_service",
    "get_subscription_service",
    "get_sync_guard",
    "get_sync_service",
]
