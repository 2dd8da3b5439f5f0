"""Granting and revoking entitlements backed by subscriptions."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional, Sequence
from uuid import uuid4

from .catalog import get_policy, subscription_bound_keys
from .models import Entitlement

if TYPE_CHECKING:  # pragma: no cover
    from ..billing.models import Subscription
    from ..billing.store import StoreSession

logger = logging.getLogger(__name__)

_MIN_DATETIME = datetime.min.replace(tzinfo=timezone.utc)


def new_entitlement_id() -> str:
    return f"ent_{uuid4().hex}"


def latest_entitlement(entitlements: Sequence[Entitlement]) -> Optional[Entitlement]:
    """Return the row that expires last; a row without expiry outranks any dated one."""

    if not entitlements:
        return None
    return max(entitlements, key=lambda row: (row.expires_at is None, row.expires_at or _MIN_DATETIME))


def grant_subscription_entitlements(session: "StoreSession", subscription: "Subscription", *, now: datetime) -> int:
    """Make every subscription-bound key active until the subscription's period end.

    Returns how many grants went from missing or expired to active. Rows that
    already extend beyond the period through another grant are left alone.
    """

    granted = 0
    period_end = subscription.current_period_end
    for key in subscription_bound_keys():
        current = latest_entitlement(session.entitlements.list_entitlements(subscription.user_id, key))

        if current is None:
            session.entitlements.save_entitlement(
                Entitlement(
                    entitlement_id=new_entitlement_id(),
                    user_id=subscription.user_id,
                    key=key,
                    expires_at=period_end,
                    subscription_id=subscription.subscription_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            granted += 1
            continue

        if not current.is_active(now):
            session.entitlements.save_entitlement(
                current.model_copy(
                    update={
                        "expires_at": period_end,
                        "subscription_id": subscription.subscription_id,
                        "updated_at": now,
                    }
                )
            )
            granted += 1
            continue

        if current.expires_at is None:
            continue

        backed = current.is_backed_by(subscription.subscription_id)
        if not backed and current.expires_at > period_end:
            continue
        if backed and current.expires_at == period_end:
            continue

        session.entitlements.save_entitlement(
            current.model_copy(
                update={
                    "expires_at": period_end,
                    "subscription_id": subscription.subscription_id,
                    "updated_at": now,
                }
            )
        )

    if granted:
        logger.info(
            "Subscription entitlements granted",
            extra={
                "user_id": subscription.user_id,
                "subscription_id": subscription.subscription_id,
                "granted": granted,
            },
        )
    return granted


def revoke_subscription_entitlements(
    session: "StoreSession",
    subscription: "Subscription",
    *,
    now: datetime,
) -> List[Entitlement]:
    """Expire every grant solely backed by ``subscription`` whose key lapses with it.

    Revocation is expiry-based: credit counts are never decremented here.
    """

    revoked: List[Entitlement] = []
    for row in session.entitlements.list_backed_entitlements(subscription.subscription_id):
        if not get_policy(row.key).expires_with_subscription:
            continue
        updated = session.entitlements.revoke_entitlement(row.entitlement_id, expires_at=now)
        if updated is None:
            raise RuntimeError("Failed to revoke entitlement")
        revoked.append(updated)
    return revoked


__all__ = [
    "grant_subscription_entitlements",
    "latest_entitlement",
    "new_entitlement_id",
    "revoke_subscription_entitlements",
]
