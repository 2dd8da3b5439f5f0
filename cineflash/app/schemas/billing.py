"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import Subscription, SyncSummary
from ..entitlements.models import JobCreditSummary, Publishability


class SyncResponse(BaseModel):
    ok: bool = True
    rate_limited: Optional[bool] = Field(alias="rateLimited", default=None)
    users_checked: int = Field(alias="usersChecked", default=0)
    expired_marked: int = Field(alias="expiredMarked", default=0)
    entitlements_granted: int = Field(alias="entitlementsGranted", default=0)
    entitlements_revoked: int = Field(alias="entitlementsRevoked", default=0)
    profiles_unpublished: int = Field(alias="profilesUnpublished", default=0)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: SyncSummary, *, rate_limited: Optional[bool] = None) -> "SyncResponse":
        return cls(rate_limited=rate_limited, **summary.model_dump())

    @classmethod
    def rate_limited_response(cls) -> "SyncResponse":
        return cls.from_summary(SyncSummary(), rate_limited=True)


class EnforceVisibilityResponse(SyncResponse):
    changed: bool = False


class CancelAtPeriodEndRequest(BaseModel):
    cancel_at_period_end: bool = Field(alias="cancelAtPeriodEnd")

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionResponse(BaseModel):
    subscription: Subscription

    model_config = ConfigDict(populate_by_name=True)


class PublishEntitlementStatus(BaseModel):
    status: Literal["active", "inactive"]
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_publishability(cls, publishability: Publishability) -> "PublishEntitlementStatus":
        return cls(
            status="active" if publishability.can_publish else "inactive",
            expires_at=publishability.expires_at,
        )


class JobCreditStatus(BaseModel):
    remaining: int = 0

    model_config = ConfigDict(populate_by_name=True)


class EntitlementStatusResponse(BaseModel):
    user_id: str = Field(alias="userId")
    can_publish_profile: PublishEntitlementStatus = Field(alias="canPublishProfile")
    job_post_credit: JobCreditStatus = Field(alias="jobPostCredit")

    model_config = ConfigDict(populate_by_name=True)


class JobCreditSummaryResponse(BaseModel):
    summary: Optional[JobCreditSummary] = None

    model_config = ConfigDict(populate_by_name=True)
