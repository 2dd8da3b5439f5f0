"""Repository interfaces and the transactional store shared by billing services."""
from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Protocol, Sequence

from .models import Subscription, SubscriptionStatus

if TYPE_CHECKING:  # pragma: no cover
    from ..entitlements.models import Entitlement, EntitlementKey
    from ..profiles.models import Profile, ProfileVisibility


class SubscriptionRepository(Protocol):
    """Data access layer for subscriptions."""

    def get_subscription(self, subscription_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        ...

    def get_subscription_for_user(self, user_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        ...

    def list_due_subscriptions(self, now: datetime) -> Sequence[Subscription]:
        """Return active or renewing subscriptions whose period ended at or before ``now``."""

    def save_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def mark_expired(self, subscription_id: str) -> Optional[Subscription]:
        """Expire the row only if it is still active; ``None`` when nothing changed."""

    def update_cancel_at_period_end(
        self,
        subscription_id: str,
        *,
        cancel_at_period_end: bool,
        status: SubscriptionStatus,
    ) -> Optional[Subscription]:
        ...


class EntitlementRepository(Protocol):
    """Data access layer for entitlement rows and the credit ledger."""

    def list_entitlements(self, user_id: str, key: EntitlementKey) -> Sequence[Entitlement]:
        ...

    def list_backed_entitlements(self, subscription_id: str) -> Sequence[Entitlement]:
        ...

    def save_entitlement(self, entitlement: Entitlement) -> Entitlement:
        ...

    def revoke_entitlement(self, entitlement_id: str, *, expires_at: datetime) -> Optional[Entitlement]:
        """Set the expiry and detach the backing subscription."""

    def decrement_credit(self, entitlement_id: str, *, now: datetime) -> Optional[Entitlement]:
        """Spend one credit if the row still has credits and is unexpired; ``None`` otherwise."""

    def increment_credits(self, entitlement_id: str, credits: int) -> Optional[Entitlement]:
        ...

    def record_credit_grant(self, *, grant_id: str, user_id: str, payment_id: str, credits: int) -> bool:
        """Insert a ledger row; ``False`` when the payment was already granted."""


class ProfileRepository(Protocol):
    """Data access layer for the visibility slice of profiles."""

    def get_profile(self, user_id: str) -> Optional[Profile]:
        ...

    def update_visibility(
        self,
        user_id: str,
        *,
        visibility: ProfileVisibility,
        published_at: Optional[datetime],
    ) -> Optional[Profile]:
        ...


@dataclass(frozen=True)
class StoreSession:
    """Repositories bound to a single open transaction."""

    subscriptions: SubscriptionRepository
    entitlements: EntitlementRepository
    profiles: ProfileRepository


class BillingStore(Protocol):
    """Opens transactions; commits on success and rolls back on error."""

    def transaction(self) -> AbstractContextManager[StoreSession]:
        ...


__all__ = [
    "BillingStore",
    "EntitlementRepository",
    "ProfileRepository",
    "StoreSession",
    "SubscriptionRepository",
]
