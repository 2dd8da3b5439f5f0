"""Domain models for the billing system."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatus(str, Enum):
    """Lifecycle state for subscriptions."""

    ACTIVE = "active"
    RENEWING = "renewing"
    CANCELED = "canceled"
    EXPIRED = "expired"


ACTIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.RENEWING})


class PlanCycle(str, Enum):
    """Supported billing frequencies."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return _CYCLE_MONTHS[self]


_CYCLE_MONTHS: Dict[PlanCycle, int] = {
    PlanCycle.MONTHLY: 1,
    PlanCycle.QUARTERLY: 3,
    PlanCycle.YEARLY: 12,
}


class Subscription(BaseModel):
    """Normalized subscription state; one row per user."""

    subscription_id: str
    user_id: str
    plan_id: str
    plan_cycle: PlanCycle = PlanCycle.MONTHLY
    status: SubscriptionStatus
    started_at: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    provider_ref: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_active(self) -> bool:
        """Return ``True`` while the subscription still grants access."""
        return self.status in ACTIVE_STATUSES

    def is_due(self, now: datetime) -> bool:
        """Return ``True`` when the subscription is active but its period has ended."""
        return self.is_active and self.current_period_end <= now


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_RESTARTED = "subscription_restarted"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    CANCEL_AT_PERIOD_END_SET = "cancel_at_period_end_set"
    CANCEL_AT_PERIOD_END_CLEARED = "cancel_at_period_end_cleared"
    ENTITLEMENT_GRANTED = "entitlement_granted"
    ENTITLEMENT_REVOKED = "entitlement_revoked"
    PROFILE_AUTO_UNPUBLISHED = "profile_auto_unpublished"
    JOB_CREDITS_GRANTED = "job_credits_granted"


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    user_id: Optional[str] = None
    subscription_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SyncSummary(BaseModel):
    """Counters produced by an entitlement reconciliation pass."""

    users_checked: int = Field(default=0, ge=0, alias="usersChecked")
    expired_marked: int = Field(default=0, ge=0, alias="expiredMarked")
    entitlements_granted: int = Field(default=0, ge=0, alias="entitlementsGranted")
    entitlements_revoked: int = Field(default=0, ge=0, alias="entitlementsRevoked")
    profiles_unpublished: int = Field(default=0, ge=0, alias="profilesUnpublished")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def merge(self, other: "SyncSummary") -> "SyncSummary":
        """Return a new summary with the counters of both summaries added."""

        return SyncSummary(
            users_checked=self.users_checked + other.users_checked,
            expired_marked=self.expired_marked + other.expired_marked,
            entitlements_granted=self.entitlements_granted + other.entitlements_granted,
            entitlements_revoked=self.entitlements_revoked + other.entitlements_revoked,
            profiles_unpublished=self.profiles_unpublished + other.profiles_unpublished,
        )

    @property
    def is_empty(self) -> bool:
        return not any(self.to_counts().values())

    def to_counts(self) -> Dict[str, int]:
        """Serialize the counters using the public camelCase field names."""

        return self.model_dump(by_alias=True)
