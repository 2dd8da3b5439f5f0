"""Entitlement models and policies; services live in their own modules."""

from .catalog import ENTITLEMENT_CATALOG, EntitlementPolicy, get_policy, subscription_bound_keys
from .models import (
    CreditGrantResult,
    CreditRef,
    Entitlement,
    EntitlementKey,
    EntitlementState,
    JobCreditSummary,
    Publishability,
    PublishabilityReason,
)

__all__ = [
    "ENTITLEMENT_CATALOG",
    "CreditGrantResult",
    "CreditRef",
    "Entitlement",
    "EntitlementKey",
    "EntitlementPolicy",
    "EntitlementState",
    "JobCreditSummary",
    "Publishability",
    "PublishabilityReason",
    "get_policy",
    "subscription_bound_keys",
]
