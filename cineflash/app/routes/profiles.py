"""Profile publishing routes for the signed-in user."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..billing import BillingError
from ..profiles.models import Profile
from ..services.billing import get_publishing_service
from .billing import _get_current_user

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.post("/me/publish", response_model=Profile)
def publish_my_profile(*, current_user=Depends(_get_current_user)) -> Profile:
    try:
        return get_publishing_service().publish_profile(str(current_user.id))
    except BillingError as exc:
        raise exc.to_http_exception() from exc


@router.post("/me/unpublish", response_model=Profile)
def unpublish_my_profile(*, current_user=Depends(_get_current_user)) -> Profile:
    try:
        return get_publishing_service().unpublish_profile(str(current_user.id))
    except BillingError as exc:
        raise exc.to_http_exception() from exc
