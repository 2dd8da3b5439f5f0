"""Domain models for entitlements and job-post credits."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntitlementKey(str, Enum):
    """Capabilities that can be granted to a user."""

    CAN_PUBLISH_PROFILE = "CAN_PUBLISH_PROFILE"
    JOB_POST_CREDIT = "JOB_POST_CREDIT"


class EntitlementState(str, Enum):
    """State of an entitlement row, derived from its expiry at read time."""

    ACTIVE = "active"
    EXPIRED = "expired"


class PublishabilityReason(str, Enum):
    """Why a profile may not be published."""

    NO_ENTITLEMENT = "NO_ENTITLEMENT"
    ENTITLEMENT_EXPIRED = "ENTITLEMENT_EXPIRED"


class Entitlement(BaseModel):
    """A capability grant for a user, optionally time-boxed or credit-based."""

    entitlement_id: str
    user_id: str
    key: EntitlementKey
    expires_at: Optional[datetime] = None
    remaining_credits: Optional[int] = None
    subscription_id: Optional[str] = Field(
        default=None,
        description="Subscription backing the grant, if any",
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("remaining_credits")
    @classmethod
    def _validate_credits(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("remaining_credits must be >= 0")
        return value

    def state(self, now: datetime) -> EntitlementState:
        """Rows with an expiry in the past are expired even though they persist."""

        if self.expires_at is not None and self.expires_at <= now:
            return EntitlementState.EXPIRED
        return EntitlementState.ACTIVE

    def is_active(self, now: datetime) -> bool:
        return self.state(now) == EntitlementState.ACTIVE

    @property
    def has_credits(self) -> bool:
        return (self.remaining_credits or 0) > 0

    def is_backed_by(self, subscription_id: str) -> bool:
        return self.subscription_id is not None and self.subscription_id == subscription_id


class CreditRef(BaseModel):
    """Reference to the grant a job-post credit was consumed from."""

    entitlement_id: str = Field(alias="entitlementId")
    user_id: str = Field(alias="userId")
    remaining_credits: int = Field(alias="remainingCredits", ge=0)
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class JobCreditSummary(BaseModel):
    """Aggregate view of a user's usable job-post credits."""

    total: int = Field(ge=0)
    remaining: int = Field(ge=0)
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CreditGrantResult(BaseModel):
    """Outcome of granting job-post credits for a payment."""

    applied: bool
    reason: Optional[str] = None
    credits_granted: int = Field(default=0, alias="creditsGranted", ge=0)
    new_balance: Optional[int] = Field(default=None, alias="newBalance")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Publishability(BaseModel):
    """Whether a user currently holds the right to publish a profile."""

    can_publish: bool = Field(alias="canPublish")
    reason: Optional[PublishabilityReason] = None
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)
