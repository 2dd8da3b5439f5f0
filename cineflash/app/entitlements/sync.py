"""Reconciles entitlements and profile visibility with subscription state."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Sequence, Tuple

from ..billing.exceptions import ConcurrencyConflictError
from ..billing.models import (
    BillingAuditEvent,
    BillingAuditEventType,
    Subscription,
    SyncSummary,
)
from ..billing.service import BillingEventLogger
from ..billing.store import BillingStore, StoreSession
from ..profiles.publishing import auto_unpublish_if_no_entitlement
from .catalog import get_policy, subscription_bound_keys
from .grants import grant_subscription_entitlements, revoke_subscription_entitlements
from .models import Entitlement, EntitlementKey

logger = logging.getLogger("billing")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EntitlementSyncService:
    """Brings entitlements and profiles back in line with subscription status."""

    store: BillingStore
    event_logger: BillingEventLogger
    clock: Callable[[], datetime] = field(default=_utcnow)

    def sync_all_subscriptions(self) -> SyncSummary:
        """Expire due subscriptions and cascade the loss of their grants.

        Each candidate is processed in its own transaction. A failure on one
        candidate is logged and skipped, so the returned counts are a lower
        bound of the work actually done.
        """

        now = self.clock()
        with self.store.transaction() as session:
            candidates = list(session.subscriptions.list_due_subscriptions(now))

        summary = SyncSummary()
        for candidate in candidates:
            try:
                result, events = self._reconcile_subscription(candidate.subscription_id, now)
            except ConcurrencyConflictError:
                logger.warning(
                    "Subscription changed concurrently; skipping",
                    extra={"subscription_id": candidate.subscription_id, "user_id": candidate.user_id},
                )
                continue
            except Exception:
                logger.exception(
                    "Failed to reconcile subscription",
                    extra={"subscription_id": candidate.subscription_id, "user_id": candidate.user_id},
                )
                continue
            summary = summary.merge(result)
            self._emit_all(events)

        logger.info(
            "Subscription sync finished candidates=%s counts=%s",
            len(candidates),
            summary.to_counts(),
        )
        return summary

    def sync_single_user(self, user_id: str) -> SyncSummary:
        """Reconcile one user on demand, e.g. after a refund or an admin change."""

        now = self.clock()
        events: List[BillingAuditEvent] = []
        with self.store.transaction() as session:
            subscription = session.subscriptions.get_subscription_for_user(user_id, for_update=True)

            if subscription is not None and subscription.is_active and not subscription.is_due(now):
                granted = grant_subscription_entitlements(session, subscription, now=now)
                if granted:
                    events.append(self._event(BillingAuditEventType.ENTITLEMENT_GRANTED, subscription, granted=granted))
                summary = SyncSummary(users_checked=1, entitlements_granted=granted)
            else:
                expired_marked = 0
                if subscription is not None and subscription.is_due(now):
                    expired = session.subscriptions.mark_expired(subscription.subscription_id)
                    if expired is not None:
                        expired_marked = 1
                        events.append(self._event(BillingAuditEventType.SUBSCRIPTION_EXPIRED, expired))

                revoked = self._revoke_lapsed_grants(session, user_id, now)
                for row in revoked:
                    events.append(self._revocation_event(row))
                unpublished = auto_unpublish_if_no_entitlement(user_id, session, now=now)
                if unpublished:
                    events.append(BillingAuditEvent(event_type=BillingAuditEventType.PROFILE_AUTO_UNPUBLISHED, user_id=user_id))
                summary = SyncSummary(
                    users_checked=1,
                    expired_marked=expired_marked,
                    entitlements_revoked=len(revoked),
                    profiles_unpublished=int(unpublished),
                )

        self._emit_all(events)
        logger.info("User sync finished user=%s counts=%s", user_id, summary.to_counts())
        return summary

    def _reconcile_subscription(
        self,
        subscription_id: str,
        now: datetime,
    ) -> Tuple[SyncSummary, List[BillingAuditEvent]]:
        events: List[BillingAuditEvent] = []
        with self.store.transaction() as session:
            current = session.subscriptions.get_subscription(subscription_id, for_update=True)
            if current is None or not current.is_active:
                raise ConcurrencyConflictError(detail={"subscription_id": subscription_id})

            if not current.is_due(now):
                # Renewed after the candidate list was read.
                granted = grant_subscription_entitlements(session, current, now=now)
                if granted:
                    events.append(self._event(BillingAuditEventType.ENTITLEMENT_GRANTED, current, granted=granted))
                return SyncSummary(users_checked=1, entitlements_granted=granted), events

            expired = session.subscriptions.mark_expired(subscription_id)
            if expired is None:
                raise ConcurrencyConflictError(detail={"subscription_id": subscription_id})
            events.append(self._event(BillingAuditEventType.SUBSCRIPTION_EXPIRED, expired))

            revoked = revoke_subscription_entitlements(session, expired, now=now)
            events.extend(self._revocation_event(row) for row in revoked)

            unpublished = False
            if any(row.key == EntitlementKey.CAN_PUBLISH_PROFILE for row in revoked):
                unpublished = auto_unpublish_if_no_entitlement(expired.user_id, session, now=now)
                if unpublished:
                    events.append(
                        self._event(BillingAuditEventType.PROFILE_AUTO_UNPUBLISHED, expired)
                    )

        return (
            SyncSummary(
                users_checked=1,
                expired_marked=1,
                entitlements_revoked=len(revoked),
                profiles_unpublished=int(unpublished),
            ),
            events,
        )

    def _revoke_lapsed_grants(self, session: StoreSession, user_id: str, now: datetime) -> List[Entitlement]:
        """Expire grants still backed by a subscription and detach the backer.

        Grants without a backing subscription (manual adjustments) are kept.
        Backed rows that already lapsed are detached and counted as well.
        """

        revoked: List[Entitlement] = []
        for key in subscription_bound_keys():
            for row in session.entitlements.list_entitlements(user_id, key):
                if row.subscription_id is None:
                    continue
                if not get_policy(row.key).expires_with_subscription:
                    continue
                updated = session.entitlements.revoke_entitlement(row.entitlement_id, expires_at=now)
                if updated is None:
                    raise RuntimeError("Failed to revoke entitlement")
                revoked.append(updated)
        return revoked

    def _event(
        self,
        event_type: BillingAuditEventType,
        subscription: Subscription,
        *,
        granted: int = 0,
    ) -> BillingAuditEvent:
        metadata = {"status": subscription.status.value}
        if granted:
            metadata["entitlements_granted"] = str(granted)
        return BillingAuditEvent(
            event_type=event_type,
            user_id=subscription.user_id,
            subscription_id=subscription.subscription_id,
            metadata=metadata,
        )

    def _revocation_event(self, entitlement: Entitlement) -> BillingAuditEvent:
        return BillingAuditEvent(
            event_type=BillingAuditEventType.ENTITLEMENT_REVOKED,
            user_id=entitlement.user_id,
            metadata={
                "entitlement_id": entitlement.entitlement_id,
                "key": entitlement.key.value,
            },
        )

    def _emit_all(self, events: Sequence[BillingAuditEvent]) -> None:
        for event in events:
            self.event_logger.log(event)


__all__ = ["EntitlementSyncService"]
