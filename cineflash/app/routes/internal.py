"""Internal routes triggered by the scheduler and by webhooks."""
from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Header, status
from fastapi.responses import JSONResponse

from ..schemas.billing import EnforceVisibilityResponse, SyncResponse
from ..services.billing import get_billing_config, get_sync_guard, get_sync_service

logger = logging.getLogger("billing")

router = APIRouter(prefix="/api/internal", tags=["internal"])


def _is_authorized(provided: Optional[str]) -> bool:
    expected = get_billing_config().cron_secret
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _unauthorized() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"ok": False, "error": "unauthorized"},
    )


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"ok": False, "error": "internal_error"},
    )


@router.post(
    "/cron/sync-subscriptions",
    response_model=SyncResponse,
    response_model_exclude_none=True,
)
def sync_subscriptions(
    x_cron_secret: Optional[str] = Header(None, alias="x-cron-secret"),
):
    if not _is_authorized(x_cron_secret):
        logger.warning("Rejected subscription sync trigger with invalid secret")
        return _unauthorized()

    if not get_sync_guard().try_acquire():
        return SyncResponse.rate_limited_response()

    try:
        summary = get_sync_service().sync_all_subscriptions()
    except Exception:
        logger.exception("Subscription sync trigger failed")
        return _internal_error()
    return SyncResponse.from_summary(summary)


@router.post(
    "/profiles/{user_id}/enforce-visibility",
    response_model=EnforceVisibilityResponse,
    response_model_exclude_none=True,
)
def enforce_profile_visibility(
    user_id: str,
    x_cron_secret: Optional[str] = Header(None, alias="x-cron-secret"),
):
    if not _is_authorized(x_cron_secret):
        logger.warning("Rejected visibility enforcement with invalid secret user=%s", user_id)
        return _unauthorized()

    try:
        summary = get_sync_service().sync_single_user(user_id)
    except Exception:
        logger.exception("Profile visibility enforcement failed", extra={"user_id": user_id})
        return _internal_error()
    return EnforceVisibilityResponse(
        changed=summary.profiles_unpublished > 0,
        **summary.model_dump(),
    )
