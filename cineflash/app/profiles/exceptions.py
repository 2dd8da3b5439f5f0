"""Exceptions raised by profile publishing."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import status

from ..billing.exceptions import BillingError


@dataclass(eq=False)
class ProfileNotFoundError(BillingError):
    """The user has not created a profile yet."""

    code: str = "PROFILE_NOT_FOUND"
    message: str = "Profile not found."
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass(eq=False)
class PublishEntitlementRequiredError(BillingError):
    """Publishing requires an active publish entitlement."""

    code: str = "PUBLISH_ENTITLEMENT_REQUIRED"
    message: str = "برای انتشار پروفایل به اشتراک فعال نیاز دارید."
    status_code: int = status.HTTP_403_FORBIDDEN
