"""Job-post credit bookkeeping: grants, checks and consumption."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence
from uuid import uuid4

from ..billing.exceptions import (
    ConcurrencyConflictError,
    ExpiredCreditsError,
    InsufficientCreditsError,
    NoEntitlementError,
)
from ..billing.models import BillingAuditEvent, BillingAuditEventType
from ..billing.service import BillingEventLogger
from ..billing.store import BillingStore, StoreSession
from .grants import new_entitlement_id
from .models import CreditGrantResult, CreditRef, Entitlement, EntitlementKey, JobCreditSummary

logger = logging.getLogger(__name__)

_MAX_DATETIME = datetime.max.replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _consumption_key(entitlement: Entitlement):
    # Soonest expiry first, rows without expiry last, oldest update breaks ties.
    return (
        entitlement.expires_at is None,
        entitlement.expires_at or _MAX_DATETIME,
        entitlement.updated_at,
    )


def sort_for_consumption(entitlements: Sequence[Entitlement]) -> List[Entitlement]:
    return sorted(entitlements, key=_consumption_key)


def select_credit_row(entitlements: Sequence[Entitlement], now: datetime) -> Entitlement:
    """Pick the row to spend from or raise the matching terminal error."""

    if not entitlements:
        raise NoEntitlementError()

    within_window = [row for row in entitlements if row.is_active(now)]
    with_credits = [row for row in within_window if row.has_credits]
    if with_credits:
        return sort_for_consumption(with_credits)[0]

    if within_window:
        raise InsufficientCreditsError()
    if any(row.expires_at is not None and row.expires_at <= now for row in entitlements):
        raise ExpiredCreditsError()
    raise NoEntitlementError()


def consume_job_credit_tx(session: StoreSession, user_id: str, *, now: datetime) -> CreditRef:
    """Spend one credit inside the caller's transaction."""

    rows = session.entitlements.list_entitlements(user_id, EntitlementKey.JOB_POST_CREDIT)
    try:
        target = select_credit_row(rows, now)
    except (InsufficientCreditsError, ExpiredCreditsError, NoEntitlementError) as exc:
        logger.debug("No usable job credit user=%s reason=%s", user_id, exc.code)
        raise

    updated = session.entitlements.decrement_credit(target.entitlement_id, now=now)
    if updated is None:
        logger.debug("Job credit conflict user=%s entitlement=%s", user_id, target.entitlement_id)
        raise ConcurrencyConflictError(detail={"entitlement_id": target.entitlement_id})

    remaining = updated.remaining_credits or 0
    logger.debug(
        "Job credit consumed user=%s entitlement=%s remaining=%s",
        user_id,
        updated.entitlement_id,
        remaining,
    )
    return CreditRef(
        entitlement_id=updated.entitlement_id,
        user_id=user_id,
        remaining_credits=remaining,
        expires_at=updated.expires_at,
    )


@dataclass
class JobCreditService:
    """Grants and spends job-post credits."""

    store: BillingStore
    event_logger: BillingEventLogger
    clock: Callable[[], datetime] = field(default=_utcnow)
    retry_attempts: int = 1

    def has_job_credit(self, user_id: str) -> bool:
        now = self.clock()
        with self.store.transaction() as session:
            rows = session.entitlements.list_entitlements(user_id, EntitlementKey.JOB_POST_CREDIT)
        return any(row.is_active(now) and row.has_credits for row in rows)

    def assert_has_job_credit(self, user_id: str) -> None:
        now = self.clock()
        with self.store.transaction() as session:
            rows = session.entitlements.list_entitlements(user_id, EntitlementKey.JOB_POST_CREDIT)
        select_credit_row(rows, now)

    def get_job_credit_summary(self, user_id: str) -> Optional[JobCreditSummary]:
        now = self.clock()
        with self.store.transaction() as session:
            rows = session.entitlements.list_entitlements(user_id, EntitlementKey.JOB_POST_CREDIT)

        within_window = [row for row in rows if row.is_active(now)]
        if not within_window:
            return None

        # Only the remaining balance is tracked, so total mirrors it.
        total = sum(row.remaining_credits or 0 for row in within_window)
        if any(row.expires_at is None for row in within_window):
            expires_at = None
        else:
            expires_at = sort_for_consumption(within_window)[0].expires_at
        return JobCreditSummary(total=total, remaining=total, expires_at=expires_at)

    def consume_job_credit(self, user_id: str) -> CreditRef:
        """Spend one credit, re-reading and retrying after a concurrent update.

        Terminal errors propagate immediately. A conflict that survives the
        configured retries propagates as ``ConcurrencyConflictError``.
        """

        attempt = 0
        while True:
            try:
                with self.store.transaction() as session:
                    return consume_job_credit_tx(session, user_id, now=self.clock())
            except ConcurrencyConflictError:
                if attempt >= self.retry_attempts:
                    logger.warning("Job credit consumption conflicted after retries user=%s", user_id)
                    raise
                attempt += 1
                logger.info("Retrying job credit consumption user=%s attempt=%s", user_id, attempt)

    def grant_job_credits(self, user_id: str, payment_id: str, credits: int) -> CreditGrantResult:
        """Add purchased credits once per payment."""

        if credits <= 0:
            raise ValueError("credits must be positive")

        now = self.clock()
        with self.store.transaction() as session:
            recorded = session.entitlements.record_credit_grant(
                grant_id=f"jcg_{uuid4().hex}",
                user_id=user_id,
                payment_id=payment_id,
                credits=credits,
            )
            if not recorded:
                logger.info("Job credits already granted user=%s payment=%s", user_id, payment_id)
                return CreditGrantResult(applied=False, reason="ALREADY_GRANTED")

            # Paid credits never share a row that carries an expiry or a backer.
            rows = session.entitlements.list_entitlements(user_id, EntitlementKey.JOB_POST_CREDIT)
            open_ended = [row for row in rows if row.expires_at is None and row.subscription_id is None]
            current = min(open_ended, key=lambda row: row.created_at) if open_ended else None
            if current is None:
                updated = session.entitlements.save_entitlement(
                    Entitlement(
                        entitlement_id=new_entitlement_id(),
                        user_id=user_id,
                        key=EntitlementKey.JOB_POST_CREDIT,
                        remaining_credits=credits,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                updated = session.entitlements.increment_credits(current.entitlement_id, credits)
                if updated is None:
                    raise RuntimeError("Failed to grant job credits")

        balance = updated.remaining_credits or 0
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.JOB_CREDITS_GRANTED,
                user_id=user_id,
                metadata={
                    "payment_id": payment_id,
                    "credits": str(credits),
                    "balance": str(balance),
                },
            )
        )
        return CreditGrantResult(applied=True, credits_granted=credits, new_balance=balance)


__all__ = [
    "JobCreditService",
    "consume_job_credit_tx",
    "select_credit_row",
    "sort_for_consumption",
]
