"""Profile publishing rules driven by the publish entitlement."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from ..billing.models import BillingAuditEvent, BillingAuditEventType
from ..billing.service import BillingEventLogger
from ..billing.store import BillingStore, StoreSession
from ..entitlements.grants import latest_entitlement
from ..entitlements.models import (
    Entitlement,
    EntitlementKey,
    Publishability,
    PublishabilityReason,
)
from .exceptions import ProfileNotFoundError, PublishEntitlementRequiredError
from .models import Profile, ProfileVisibility

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def latest_publish_entitlement(entitlements: Sequence[Entitlement]) -> Optional[Entitlement]:
    return latest_entitlement([row for row in entitlements if row.key == EntitlementKey.CAN_PUBLISH_PROFILE])


def evaluate_publishability(entitlement: Optional[Entitlement], now: datetime) -> Publishability:
    if entitlement is None:
        return Publishability(can_publish=False, reason=PublishabilityReason.NO_ENTITLEMENT)
    if not entitlement.is_active(now):
        return Publishability(
            can_publish=False,
            reason=PublishabilityReason.ENTITLEMENT_EXPIRED,
            expires_at=entitlement.expires_at,
        )
    return Publishability(can_publish=True, expires_at=entitlement.expires_at)


def check_publishability(session: StoreSession, user_id: str, *, now: datetime) -> Publishability:
    rows = session.entitlements.list_entitlements(user_id, EntitlementKey.CAN_PUBLISH_PROFILE)
    return evaluate_publishability(latest_publish_entitlement(rows), now)


def auto_unpublish_if_no_entitlement(user_id: str, session: StoreSession, *, now: datetime) -> bool:
    """Force a profile private when its owner no longer holds the publish entitlement.

    Returns ``True`` only when a write happened. An active entitlement, a missing
    profile, or a profile that is already private leave the store untouched.
    """

    publishability = check_publishability(session, user_id, now=now)
    if publishability.can_publish:
        return False

    profile = session.profiles.get_profile(user_id)
    if profile is None or profile.visibility == ProfileVisibility.PRIVATE:
        return False

    updated = session.profiles.update_visibility(
        user_id,
        visibility=ProfileVisibility.PRIVATE,
        published_at=None,
    )
    if updated is None:
        raise RuntimeError("Failed to unpublish profile")

    logger.info(
        "Profile auto-unpublished",
        extra={
            "user_id": user_id,
            "profile_id": profile.profile_id,
            "reason": publishability.reason.value if publishability.reason else None,
        },
    )
    return True


@dataclass
class ProfilePublishingService:
    """Publishes and unpublishes profiles subject to the publish entitlement."""

    store: BillingStore
    event_logger: BillingEventLogger
    clock: Callable[[], datetime] = field(default=_utcnow)

    def get_publishability(self, user_id: str) -> Publishability:
        with self.store.transaction() as session:
            result = check_publishability(session, user_id, now=self.clock())
        logger.debug(
            "Publishability checked user=%s can_publish=%s reason=%s",
            user_id,
            result.can_publish,
            result.reason.value if result.reason else None,
        )
        return result

    def enforce_user_profile_visibility(self, user_id: str) -> bool:
        """Run the cascade on demand, outside of a reconciliation pass."""

        with self.store.transaction() as session:
            changed = auto_unpublish_if_no_entitlement(user_id, session, now=self.clock())
        if changed:
            self._log_unpublished(user_id)
        return changed

    def publish_profile(self, user_id: str) -> Profile:
        now = self.clock()
        with self.store.transaction() as session:
            profile = session.profiles.get_profile(user_id)
            if profile is None:
                raise ProfileNotFoundError()

            publishability = check_publishability(session, user_id, now=now)
            if not publishability.can_publish:
                raise PublishEntitlementRequiredError(
                    detail={"reason": publishability.reason.value if publishability.reason else None}
                )

            updated = session.profiles.update_visibility(
                user_id,
                visibility=ProfileVisibility.PUBLIC,
                published_at=now,
            )
            if updated is None:
                raise RuntimeError("Failed to publish profile")
        logger.info("Profile published user=%s profile=%s", user_id, updated.profile_id)
        return updated

    def unpublish_profile(self, user_id: str) -> Profile:
        with self.store.transaction() as session:
            profile = session.profiles.get_profile(user_id)
            if profile is None:
                raise ProfileNotFoundError()
            updated = session.profiles.update_visibility(
                user_id,
                visibility=ProfileVisibility.PRIVATE,
                published_at=None,
            )
            if updated is None:
                raise RuntimeError("Failed to unpublish profile")
        logger.info("Profile unpublished user=%s profile=%s", user_id, updated.profile_id)
        return updated

    def _log_unpublished(self, user_id: str) -> None:
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.PROFILE_AUTO_UNPUBLISHED,
                user_id=user_id,
            )
        )


__all__ = [
    "ProfilePublishingService",
    "auto_unpublish_if_no_entitlement",
    "check_publishability",
    "evaluate_publishability",
    "latest_publish_entitlement",
]
