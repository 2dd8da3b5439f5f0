"""Subscription lifecycle service: activation, renewal, expiry and cancellation."""
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Tuple
from uuid import uuid4

from ..entitlements.grants import grant_subscription_entitlements
from .exceptions import SubscriptionNotFoundError
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    PlanCycle,
    Subscription,
    SubscriptionStatus,
)
from .store import BillingStore

logger = logging.getLogger("billing")


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by whole months, clamping to the last day of the target month."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_period(anchor: datetime, cycle: PlanCycle) -> Tuple[datetime, datetime]:
    return anchor, add_months(anchor, cycle.months)


def coalesce_anchor(current: Optional[datetime], now: datetime) -> datetime:
    """A running period is extended from its end; a lapsed one restarts now."""

    if current is None or current <= now:
        return now
    return current


@dataclass(slots=True)
class SubscriptionService:
    """Coordinates subscription state changes and their audit trail."""

    store: BillingStore
    event_logger: BillingEventLogger
    clock: Callable[[], datetime] = field(default=_utcnow)

    def get_subscription(self, user_id: str) -> Optional[Subscription]:
        with self.store.transaction() as session:
            return session.subscriptions.get_subscription_for_user(user_id)

    def activate_or_start(
        self,
        *,
        user_id: str,
        plan_id: str,
        plan_cycle: PlanCycle,
        provider_ref: Optional[str] = None,
        starts_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
    ) -> Subscription:
        """Start a subscription at checkout, or extend and reactivate an existing one."""

        now = self.clock()
        with self.store.transaction() as session:
            existing = session.subscriptions.get_subscription_for_user(user_id, for_update=True)

            if existing is None:
                anchor = starts_at or now
                period_start, period_end = self._resolve_period(anchor, plan_cycle, ends_at)
                subscription = Subscription(
                    subscription_id=f"sub_{uuid4().hex}",
                    user_id=user_id,
                    plan_id=plan_id,
                    plan_cycle=plan_cycle,
                    status=SubscriptionStatus.ACTIVE,
                    started_at=period_start,
                    current_period_end=period_end,
                    cancel_at_period_end=False,
                    provider_ref=provider_ref,
                    created_at=now,
                    updated_at=now,
                )
                event_type = BillingAuditEventType.SUBSCRIPTION_ACTIVATED
            else:
                anchor_base = starts_at if starts_at and starts_at > now else existing.current_period_end
                anchor = coalesce_anchor(anchor_base, now)
                period_start, period_end = self._resolve_period(anchor, plan_cycle, ends_at)
                subscription = existing.model_copy(
                    update={
                        "plan_id": plan_id,
                        "plan_cycle": plan_cycle,
                        "status": SubscriptionStatus.ACTIVE,
                        "started_at": period_start,
                        "current_period_end": period_end,
                        "cancel_at_period_end": False,
                        "provider_ref": provider_ref or existing.provider_ref,
                        "updated_at": now,
                    }
                )
                event_type = (
                    BillingAuditEventType.SUBSCRIPTION_ACTIVATED
                    if existing.is_active
                    else BillingAuditEventType.SUBSCRIPTION_RESTARTED
                )

            persisted = session.subscriptions.save_subscription(subscription)
            granted = grant_subscription_entitlements(session, persisted, now=now)

        self._emit(event_type, persisted, granted=granted)
        return persisted

    def renew(self, user_id: str, *, provider_ref: Optional[str] = None) -> Subscription:
        now = self.clock()
        with self.store.transaction() as session:
            existing = session.subscriptions.get_subscription_for_user(user_id, for_update=True)
            if existing is None:
                raise SubscriptionNotFoundError.for_user(user_id)

            anchor = coalesce_anchor(existing.current_period_end, now)
            period_start, period_end = next_period(anchor, existing.plan_cycle)
            status = existing.status if existing.is_active else SubscriptionStatus.ACTIVE
            renewed = existing.model_copy(
                update={
                    "status": status,
                    "started_at": period_start,
                    "current_period_end": period_end,
                    "cancel_at_period_end": False,
                    "provider_ref": provider_ref or existing.provider_ref,
                    "updated_at": now,
                }
            )
            persisted = session.subscriptions.save_subscription(renewed)
            granted = grant_subscription_entitlements(session, persisted, now=now)

        self._emit(BillingAuditEventType.SUBSCRIPTION_RENEWED, persisted, granted=granted)
        return persisted

    def mark_expired(self, user_id: str) -> Subscription:
        """Expire immediately (refunds, admin action).

        Only the status changes; backed grants lapse at their own expiry unless
        a per-user sync revokes them first.
        """

        with self.store.transaction() as session:
            existing = session.subscriptions.get_subscription_for_user(user_id, for_update=True)
            if existing is None:
                raise SubscriptionNotFoundError.for_user(user_id)
            if existing.status == SubscriptionStatus.EXPIRED:
                return existing
            persisted = session.subscriptions.save_subscription(
                existing.model_copy(update={"status": SubscriptionStatus.EXPIRED, "updated_at": self.clock()})
            )

        self._emit(BillingAuditEventType.SUBSCRIPTION_EXPIRED, persisted)
        return persisted

    def set_cancel_at_period_end(self, user_id: str, flag: bool) -> Subscription:
        """Toggle cancellation at period end without touching entitlements.

        The status mirrors the flag (``active`` <-> ``renewing``); acting on it
        once the period ends is left to the reconciler.
        """

        with self.store.transaction() as session:
            existing = session.subscriptions.get_subscription_for_user(user_id, for_update=True)
            if existing is None:
                raise SubscriptionNotFoundError.for_user(user_id)

            status = existing.status
            if flag and existing.status == SubscriptionStatus.ACTIVE:
                status = SubscriptionStatus.RENEWING
            elif not flag and existing.status == SubscriptionStatus.RENEWING:
                status = SubscriptionStatus.ACTIVE

            updated = session.subscriptions.update_cancel_at_period_end(
                existing.subscription_id,
                cancel_at_period_end=flag,
                status=status,
            )
            if updated is None:
                raise RuntimeError("Failed to update cancel_at_period_end")

        event_type = (
            BillingAuditEventType.CANCEL_AT_PERIOD_END_SET
            if flag
            else BillingAuditEventType.CANCEL_AT_PERIOD_END_CLEARED
        )
        self._emit(event_type, updated)
        return updated

    def _resolve_period(
        self,
        anchor: datetime,
        cycle: PlanCycle,
        ends_at: Optional[datetime],
    ) -> Tuple[datetime, datetime]:
        if ends_at is not None and ends_at > anchor:
            return anchor, ends_at
        return next_period(anchor, cycle)

    def _emit(self, event_type: BillingAuditEventType, subscription: Subscription, *, granted: int = 0) -> None:
        metadata = {
            "status": subscription.status.value,
            "current_period_end": subscription.current_period_end.isoformat(),
            "cancel_at_period_end": str(subscription.cancel_at_period_end).lower(),
        }
        if granted:
            metadata["entitlements_granted"] = str(granted)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=event_type,
                user_id=subscription.user_id,
                subscription_id=subscription.subscription_id,
                metadata=metadata,
            )
        )


__all__ = [
    "BillingEventLogger",
    "SubscriptionService",
    "add_months",
    "coalesce_anchor",
    "next_period",
]
