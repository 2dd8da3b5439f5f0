"""Billing domain package providing subscription models and lifecycle services."""

from .exceptions import (
    BillingError,
    ConcurrencyConflictError,
    ExpiredCreditsError,
    InsufficientCreditsError,
    JobCreditError,
    NoEntitlementError,
    SubscriptionNotFoundError,
)
from .models import (
    ACTIVE_STATUSES,
    BillingAuditEvent,
    BillingAuditEventType,
    PlanCycle,
    Subscription,
    SubscriptionStatus,
    SyncSummary,
)
from .service import BillingEventLogger, SubscriptionService
from .store import (
    BillingStore,
    EntitlementRepository,
    ProfileRepository,
    StoreSession,
    SubscriptionRepository,
)

__all__ = [
    "ACTIVE_STATUSES",
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingError",
    "BillingEventLogger",
    "BillingStore",
    "ConcurrencyConflictError",
    "EntitlementRepository",
    "ExpiredCreditsError",
    "InsufficientCreditsError",
    "JobCreditError",
    "NoEntitlementError",
    "PlanCycle",
    "ProfileRepository",
    "StoreSession",
    "Subscription",
    "SubscriptionNotFoundError",
    "SubscriptionRepository",
    "SubscriptionService",
    "SubscriptionStatus",
    "SyncSummary",
]
