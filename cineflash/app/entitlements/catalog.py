"""Static policy definitions for entitlement keys."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from .models import EntitlementKey


@dataclass(frozen=True)
class EntitlementPolicy:
    """Describes how an entitlement key reacts to subscription changes."""

    key: EntitlementKey
    display_name: str
    expires_with_subscription: bool = False
    consumable: bool = False


ENTITLEMENT_CATALOG: Dict[EntitlementKey, EntitlementPolicy] = {
    EntitlementKey.CAN_PUBLISH_PROFILE: EntitlementPolicy(
        key=EntitlementKey.CAN_PUBLISH_PROFILE,
        display_name="Publish profile",
        expires_with_subscription=True,
    ),
    # Purchased credits survive a lapsed subscription so consumed credits are
    # never charged twice.
    EntitlementKey.JOB_POST_CREDIT: EntitlementPolicy(
        key=EntitlementKey.JOB_POST_CREDIT,
        display_name="Job post credit",
        consumable=True,
    ),
}


def get_policy(key: EntitlementKey) -> EntitlementPolicy:
    """Return the policy for a key, raising if unsupported."""

    try:
        return ENTITLEMENT_CATALOG[key]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise KeyError(f"Unknown entitlement key: {key}") from exc


def subscription_bound_keys() -> Tuple[EntitlementKey, ...]:
    """Keys whose grants lapse together with their backing subscription."""

    return tuple(
        policy.key for policy in ENTITLEMENT_CATALOG.values() if policy.expires_with_subscription
    )
