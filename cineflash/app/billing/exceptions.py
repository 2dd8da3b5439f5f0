"""Exceptions raised by the billing and entitlement services."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass(eq=False)
class BillingError(Exception):
    """Base error carrying an API-facing code, message and status."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    retryable: ClassVar[bool] = False

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass(eq=False)
class SubscriptionNotFoundError(BillingError):
    """The user has no subscription row."""

    code: str = "SUBSCRIPTION_NOT_FOUND"
    message: str = "Subscription not found."
    status_code: int = status.HTTP_404_NOT_FOUND

    @classmethod
    def for_user(cls, user_id: str) -> "SubscriptionNotFoundError":
        return cls(message=f"No subscription found for user {user_id}.", detail={"user_id": user_id})


@dataclass(eq=False)
class ConcurrencyConflictError(BillingError):
    """A conditional write found the row already changed by another actor."""

    code: str = "CONCURRENCY_CONFLICT"
    message: str = "The resource was modified concurrently; retry the operation."
    status_code: int = status.HTTP_409_CONFLICT

    retryable: ClassVar[bool] = True


# User-facing copy shown by the dashboard when a job post cannot be paid for.
CREDIT_ERROR_MESSAGES: Dict[str, str] = {
    "INSUFFICIENT_JOB_CREDITS": "اعتبار کافی ندارید.",
    "EXPIRED_JOB_CREDITS": "اعتبار شما منقضی شده است.",
    "NO_JOB_POST_ENTITLEMENT": "هیچ بسته اعتباری برای شما ثبت نشده است.",
}

PRICING_CTA: Dict[str, str] = {"label": "مشاهده پلن‌ها", "href": "/pricing"}


@dataclass(eq=False)
class JobCreditError(BillingError):
    """Terminal failure to spend a job-post credit."""

    status_code: int = status.HTTP_402_PAYMENT_REQUIRED
    detail: Optional[Mapping[str, Any]] = field(default_factory=lambda: {"cta": dict(PRICING_CTA)})


@dataclass(eq=False)
class InsufficientCreditsError(JobCreditError):
    """The credit grant is still valid but has no remaining credits."""

    code: str = "INSUFFICIENT_JOB_CREDITS"
    message: str = CREDIT_ERROR_MESSAGES["INSUFFICIENT_JOB_CREDITS"]


@dataclass(eq=False)
class ExpiredCreditsError(JobCreditError):
    """Every credit grant for the user has passed its expiry."""

    code: str = "EXPIRED_JOB_CREDITS"
    message: str = CREDIT_ERROR_MESSAGES["EXPIRED_JOB_CREDITS"]


@dataclass(eq=False)
class NoEntitlementError(JobCreditError):
    """The user has never been granted job-post credits."""

    code: str = "NO_JOB_POST_ENTITLEMENT"
    message: str = CREDIT_ERROR_MESSAGES["NO_JOB_POST_ENTITLEMENT"]


__all__ = [
    "BillingError",
    "ConcurrencyConflictError",
    "CREDIT_ERROR_MESSAGES",
    "ExpiredCreditsError",
    "InsufficientCreditsError",
    "JobCreditError",
    "NoEntitlementError",
    "PRICING_CTA",
    "SubscriptionNotFoundError",
]
