"""API routes exposing billing functionality."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, status

from ... import app_context
from ..billing import BillingError
from ..entitlements.models import CreditRef
from ..schemas.billing import (
    CancelAtPeriodEndRequest,
    EntitlementStatusResponse,
    JobCreditStatus,
    JobCreditSummaryResponse,
    PublishEntitlementStatus,
    SubscriptionResponse,
)
from ..services.billing import (
    get_job_credit_service,
    get_publishing_service,
    get_subscription_service,
)


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/subscription/cancel-at-period-end", response_model=SubscriptionResponse)
def set_cancel_at_period_end(
    payload: CancelAtPeriodEndRequest,
    *,
    current_user=Depends(_get_current_user),
) -> SubscriptionResponse:
    service = get_subscription_service()
    try:
        subscription = service.set_cancel_at_period_end(str(current_user.id), payload.cancel_at_period_end)
    except BillingError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(subscription=subscription)


@router.get("/entitlements", response_model=EntitlementStatusResponse)
def get_entitlement_status(
    user_id: str = Query(alias="userId"),
    *,
    current_user=Depends(_get_current_user),
) -> EntitlementStatusResponse:
    if user_id != str(current_user.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot view entitlements for another user")

    publishability = get_publishing_service().get_publishability(user_id)
    summary = get_job_credit_service().get_job_credit_summary(user_id)
    return EntitlementStatusResponse(
        user_id=user_id,
        can_publish_profile=PublishEntitlementStatus.from_publishability(publishability),
        job_post_credit=JobCreditStatus(remaining=summary.remaining if summary else 0),
    )


@router.get("/job-credits", response_model=JobCreditSummaryResponse)
def get_job_credits(*, current_user=Depends(_get_current_user)) -> JobCreditSummaryResponse:
    summary = get_job_credit_service().get_job_credit_summary(str(current_user.id))
    return JobCreditSummaryResponse(summary=summary)


@router.post("/job-credits/consume", response_model=CreditRef)
def consume_job_credit(*, current_user=Depends(_get_current_user)) -> CreditRef:
    service = get_job_credit_service()
    try:
        return service.consume_job_credit(str(current_user.id))
    except BillingError as exc:
        # Credit errors map to 402; a conflict that outlived the retry maps to 409.
        raise exc.to_http_exception() from exc
