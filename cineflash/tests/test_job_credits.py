"""Tests for job-post credit consumption and grants."""
from __future__ import annotations

from datetime import timedelta

import pytest

from cineflash.app.billing import (
    ConcurrencyConflictError,
    ExpiredCreditsError,
    InsufficientCreditsError,
    NoEntitlementError,
)
from cineflash.app.billing.exceptions import CREDIT_ERROR_MESSAGES
from cineflash.app.entitlements.models import EntitlementKey


JOB = EntitlementKey.JOB_POST_CREDIT


def test_consume_without_any_grant_raises_no_entitlement(credit_service):
    with pytest.raises(NoEntitlementError) as exc_info:
        credit_service.consume_job_credit("user-1")

    error = exc_info.value
    assert error.code == "NO_JOB_POST_ENTITLEMENT"
    assert error.status_code == 402
    assert error.message == CREDIT_ERROR_MESSAGES["NO_JOB_POST_ENTITLEMENT"]
    assert error.retryable is False


def test_consume_with_zero_credits_raises_insufficient(seed, credit_service):
    seed.entitlement("user-1", JOB, remaining_credits=0)

    with pytest.raises(InsufficientCreditsError) as exc_info:
        credit_service.consume_job_credit("user-1")

    assert exc_info.value.payload["error"] == "INSUFFICIENT_JOB_CREDITS"
    assert exc_info.value.payload["cta"]["href"] == "/pricing"


def test_consume_with_only_expired_grants_raises_expired(seed, credit_service, clock):
    seed.entitlement("user-1", JOB, remaining_credits=4, expires_at=clock() - timedelta(days=1))

    with pytest.raises(ExpiredCreditsError):
        credit_service.consume_job_credit("user-1")


def test_consume_spends_soonest_expiring_grant_first(seed, store, credit_service, clock):
    open_ended = seed.entitlement("user-1", JOB, entitlement_id="ent-open", remaining_credits=5)
    soon = seed.entitlement(
        "user-1",
        JOB,
        entitlement_id="ent-soon",
        remaining_credits=1,
        expires_at=clock() + timedelta(days=1),
    )
    seed.entitlement(
        "user-1",
        JOB,
        entitlement_id="ent-later",
        remaining_credits=2,
        expires_at=clock() + timedelta(days=9),
    )

    ref = credit_service.consume_job_credit("user-1")

    assert ref.entitlement_id == soon.entitlement_id
    assert ref.remaining_credits == 0
    assert store.state.entitlements[open_ended.entitlement_id].remaining_credits == 5

    second = credit_service.consume_job_credit("user-1")
    assert second.entitlement_id == "ent-later"


def test_ties_are_broken_by_oldest_update(seed, credit_service, clock):
    expiry = clock() + timedelta(days=3)
    seed.entitlement("user-1", JOB, entitlement_id="ent-new", remaining_credits=1, expires_at=expiry)
    seed.entitlement(
        "user-1",
        JOB,
        entitlement_id="ent-old",
        remaining_credits=1,
        expires_at=expiry,
        updated_at=clock() - timedelta(days=1),
    )

    assert credit_service.consume_job_credit("user-1").entitlement_id == "ent-old"


def test_conflict_is_retried_once(seed, store, credit_service):
    seed.entitlement("user-1", JOB, entitlement_id="ent-1", remaining_credits=2)
    original = store.entitlements.decrement_credit
    calls = []

    def racing_decrement(entitlement_id, *, now):
        calls.append(entitlement_id)
        if len(calls) == 1:
            return None
        return original(entitlement_id, now=now)

    store.entitlements.decrement_credit = racing_decrement

    ref = credit_service.consume_job_credit("user-1")

    assert len(calls) == 2
    assert ref.remaining_credits == 1


def test_conflict_propagates_after_retry(seed, store, credit_service):
    seed.entitlement("user-1", JOB, remaining_credits=2)
    store.entitlements.decrement_credit = lambda entitlement_id, *, now: None

    with pytest.raises(ConcurrencyConflictError) as exc_info:
        credit_service.consume_job_credit("user-1")

    assert exc_info.value.retryable is True
    assert exc_info.value.status_code == 409


def test_terminal_errors_are_not_retried(store, credit_service):
    with pytest.raises(NoEntitlementError):
        credit_service.consume_job_credit("user-1")

    assert store.transactions == 1


def test_has_and_assert_job_credit(seed, credit_service, clock):
    assert credit_service.has_job_credit("user-1") is False
    with pytest.raises(NoEntitlementError):
        credit_service.assert_has_job_credit("user-1")

    seed.entitlement("user-1", JOB, remaining_credits=1, expires_at=clock() + timedelta(hours=1))

    assert credit_service.has_job_credit("user-1") is True
    credit_service.assert_has_job_credit("user-1")


def test_summary_covers_active_window(seed, credit_service, clock):
    assert credit_service.get_job_credit_summary("user-1") is None

    soon = clock() + timedelta(days=2)
    seed.entitlement("user-1", JOB, remaining_credits=2, expires_at=soon)
    seed.entitlement("user-1", JOB, remaining_credits=3, expires_at=clock() + timedelta(days=8))
    seed.entitlement("user-1", JOB, remaining_credits=9, expires_at=clock() - timedelta(days=1))

    summary = credit_service.get_job_credit_summary("user-1")

    assert summary.total == 5
    assert summary.remaining == 5
    assert summary.expires_at == soon


def test_grant_is_idempotent_per_payment(store, credit_service, events):
    first = credit_service.grant_job_credits("user-1", "pay-1", 3)
    repeat = credit_service.grant_job_credits("user-1", "pay-1", 3)
    second = credit_service.grant_job_credits("user-1", "pay-2", 2)

    assert first.applied is True
    assert first.new_balance == 3
    assert repeat.applied is False
    assert repeat.reason == "ALREADY_GRANTED"
    assert second.new_balance == 5
    rows = store.entitlements.list_entitlements("user-1", JOB)
    assert len(rows) == 1
    assert rows[0].expires_at is None
    assert events.types() == ["job_credits_granted", "job_credits_granted"]


def test_grant_rejects_non_positive_credits(credit_service):
    with pytest.raises(ValueError):
        credit_service.grant_job_credits("user-1", "pay-1", 0)


def test_purchased_credits_do_not_inherit_a_dated_grant(seed, store, credit_service, clock):
    dated = seed.entitlement(
        "user-1",
        JOB,
        entitlement_id="ent-dated",
        remaining_credits=1,
        expires_at=clock() + timedelta(days=2),
    )

    result = credit_service.grant_job_credits("user-1", "pay-1", 5)

    assert result.new_balance == 5
    assert store.state.entitlements[dated.entitlement_id].remaining_credits == 1
    open_ended = [row for row in store.entitlements.list_entitlements("user-1", JOB) if row.expires_at is None]
    assert [row.remaining_credits for row in open_ended] == [5]

    clock.advance(days=3)
    summary = credit_service.get_job_credit_summary("user-1")
    assert summary is not None
    assert summary.remaining == 5
    assert summary.expires_at is None
