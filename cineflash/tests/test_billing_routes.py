from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from cineflash.app.entitlements.models import EntitlementKey
from cineflash.app.profiles.models import ProfileVisibility
from cineflash.app.routes import billing as billing_routes
from cineflash.app.routes import profiles as profile_routes
from cineflash.app.schemas.billing import CancelAtPeriodEndRequest


@pytest.fixture(autouse=True)
def wire_services(monkeypatch, subscription_service, credit_service, publishing_service):
    monkeypatch.setattr(billing_routes, "get_subscription_service", lambda: subscription_service)
    monkeypatch.setattr(billing_routes, "get_job_credit_service", lambda: credit_service)
    monkeypatch.setattr(billing_routes, "get_publishing_service", lambda: publishing_service)
    monkeypatch.setattr(profile_routes, "get_publishing_service", lambda: publishing_service)


@pytest.fixture
def user():
    return SimpleNamespace(id="user-1")


def test_cancel_at_period_end_sets_flag(seed, clock, user):
    seed.subscription("user-1", period_end=clock() + timedelta(days=3))

    response = billing_routes.set_cancel_at_period_end(
        CancelAtPeriodEndRequest(cancelAtPeriodEnd=True),
        current_user=user,
    )

    assert response.subscription.cancel_at_period_end is True


def test_cancel_at_period_end_without_subscription_is_404(user):
    with pytest.raises(HTTPException) as exc_info:
        billing_routes.set_cancel_at_period_end(
            CancelAtPeriodEndRequest(cancel_at_period_end=False),
            current_user=user,
        )

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail["error"] == "SUBSCRIPTION_NOT_FOUND"


def test_entitlement_status_reports_publish_and_credits(seed, clock, user):
    expiry = clock() + timedelta(days=12)
    seed.entitlement("user-1", expires_at=expiry)
    seed.entitlement("user-1", EntitlementKey.JOB_POST_CREDIT, remaining_credits=4)

    response = billing_routes.get_entitlement_status(user_id="user-1", current_user=user)

    payload = response.model_dump(by_alias=True)
    assert payload["canPublishProfile"] == {"status": "active", "expiresAt": expiry}
    assert payload["jobPostCredit"] == {"remaining": 4}


def test_entitlement_status_for_other_user_is_forbidden(user):
    with pytest.raises(HTTPException) as exc_info:
        billing_routes.get_entitlement_status(user_id="someone-else", current_user=user)

    assert exc_info.value.status_code == 403


def test_job_credit_summary_is_null_without_credits(user):
    assert billing_routes.get_job_credits(current_user=user).summary is None


def test_consume_maps_terminal_errors_to_402(seed, user):
    seed.entitlement("user-1", EntitlementKey.JOB_POST_CREDIT, remaining_credits=0)

    with pytest.raises(HTTPException) as exc_info:
        billing_routes.consume_job_credit(current_user=user)

    assert exc_info.value.status_code == 402
    assert exc_info.value.detail["error"] == "INSUFFICIENT_JOB_CREDITS"
    assert exc_info.value.detail["message"]


def test_consume_maps_exhausted_conflict_to_409(seed, store, user):
    seed.entitlement("user-1", EntitlementKey.JOB_POST_CREDIT, remaining_credits=1)
    store.entitlements.decrement_credit = lambda entitlement_id, *, now: None

    with pytest.raises(HTTPException) as exc_info:
        billing_routes.consume_job_credit(current_user=user)

    assert exc_info.value.status_code == 409


def test_consume_returns_credit_ref(seed, user):
    seed.entitlement("user-1", EntitlementKey.JOB_POST_CREDIT, remaining_credits=2)

    ref = billing_routes.consume_job_credit(current_user=user)

    assert ref.remaining_credits == 1
    assert ref.user_id == "user-1"


def test_publish_route_requires_entitlement(seed, user):
    seed.profile("user-1", visibility=ProfileVisibility.PRIVATE)

    with pytest.raises(HTTPException) as exc_info:
        profile_routes.publish_my_profile(current_user=user)

    assert exc_info.value.status_code == 403


def test_publish_and_unpublish_routes(seed, clock, user):
    seed.entitlement("user-1", expires_at=None)
    seed.profile("user-1", visibility=ProfileVisibility.PRIVATE)

    assert profile_routes.publish_my_profile(current_user=user).visibility == ProfileVisibility.PUBLIC
    assert profile_routes.unpublish_my_profile(current_user=user).visibility == ProfileVisibility.PRIVATE
