"""Shared fixtures: a controllable clock and an in-memory billing store."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

import pytest

from cineflash.app.billing import (
    ACTIVE_STATUSES,
    BillingAuditEvent,
    PlanCycle,
    StoreSession,
    Subscription,
    SubscriptionService,
    SubscriptionStatus,
)
from cineflash.app.entitlements.credits import JobCreditService
from cineflash.app.entitlements.models import Entitlement, EntitlementKey
from cineflash.app.entitlements.sync import EntitlementSyncService
from cineflash.app.profiles.models import Profile, ProfileVisibility
from cineflash.app.profiles.publishing import ProfilePublishingService


NOW = datetime(2024, 8, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class InMemoryState:
    subscriptions: Dict[str, Subscription] = field(default_factory=dict)
    entitlements: Dict[str, Entitlement] = field(default_factory=dict)
    profiles: Dict[str, Profile] = field(default_factory=dict)
    credit_grants: Dict[str, dict] = field(default_factory=dict)

    def snapshot(self) -> "InMemoryState":
        # Models are frozen, so copying the containers is enough.
        return InMemoryState(
            subscriptions=dict(self.subscriptions),
            entitlements=dict(self.entitlements),
            profiles=dict(self.profiles),
            credit_grants=dict(self.credit_grants),
        )

    def restore(self, snapshot: "InMemoryState") -> None:
        self.subscriptions = snapshot.subscriptions
        self.entitlements = snapshot.entitlements
        self.profiles = snapshot.profiles
        self.credit_grants = snapshot.credit_grants


class InMemorySubscriptionRepository:
    def __init__(self, state: InMemoryState, clock: FakeClock) -> None:
        self.state = state
        self.clock = clock

    def get_subscription(self, subscription_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        return self.state.subscriptions.get(subscription_id)

    def get_subscription_for_user(self, user_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        for subscription in self.state.subscriptions.values():
            if subscription.user_id == user_id:
                return subscription
        return None

    def list_due_subscriptions(self, now: datetime) -> List[Subscription]:
        due = [sub for sub in self.state.subscriptions.values() if sub.is_due(now)]
        return sorted(due, key=lambda sub: sub.current_period_end)

    def save_subscription(self, subscription: Subscription) -> Subscription:
        stored = subscription.model_copy(update={"updated_at": self.clock()})
        self.state.subscriptions[subscription.subscription_id] = stored
        return stored

    def mark_expired(self, subscription_id: str) -> Optional[Subscription]:
        current = self.state.subscriptions.get(subscription_id)
        if current is None or current.status not in ACTIVE_STATUSES:
            return None
        return self.save_subscription(current.model_copy(update={"status": SubscriptionStatus.EXPIRED}))

    def update_cancel_at_period_end(
        self,
        subscription_id: str,
        *,
        cancel_at_period_end: bool,
        status: SubscriptionStatus,
    ) -> Optional[Subscription]:
        current = self.state.subscriptions.get(subscription_id)
        if current is None:
            return None
        return self.save_subscription(
            current.model_copy(update={"cancel_at_period_end": cancel_at_period_end, "status": status})
        )


class InMemoryEntitlementRepository:
    def __init__(self, state: InMemoryState, clock: FakeClock) -> None:
        self.state = state
        self.clock = clock

    def list_entitlements(self, user_id: str, key: EntitlementKey) -> List[Entitlement]:
        return [row for row in self.state.entitlements.values() if row.user_id == user_id and row.key == key]

    def list_backed_entitlements(self, subscription_id: str) -> List[Entitlement]:
        return [row for row in self.state.entitlements.values() if row.subscription_id == subscription_id]

    def save_entitlement(self, entitlement: Entitlement) -> Entitlement:
        stored = entitlement.model_copy(update={"updated_at": self.clock()})
        self.state.entitlements[entitlement.entitlement_id] = stored
        return stored

    def revoke_entitlement(self, entitlement_id: str, *, expires_at: datetime) -> Optional[Entitlement]:
        current = self.state.entitlements.get(entitlement_id)
        if current is None:
            return None
        new_expiry = expires_at if current.expires_at is None else min(current.expires_at, expires_at)
        return self.save_entitlement(current.model_copy(update={"expires_at": new_expiry, "subscription_id": None}))

    def decrement_credit(self, entitlement_id: str, *, now: datetime) -> Optional[Entitlement]:
        current = self.state.entitlements.get(entitlement_id)
        if current is None or not current.has_credits or not current.is_active(now):
            return None
        return self.save_entitlement(
            current.model_copy(update={"remaining_credits": current.remaining_credits - 1})
        )

    def increment_credits(self, entitlement_id: str, credits: int) -> Optional[Entitlement]:
        current = self.state.entitlements.get(entitlement_id)
        if current is None:
            return None
        return self.save_entitlement(
            current.model_copy(update={"remaining_credits": (current.remaining_credits or 0) + credits})
        )

    def record_credit_grant(self, *, grant_id: str, user_id: str, payment_id: str, credits: int) -> bool:
        if payment_id in self.state.credit_grants:
            return False
        self.state.credit_grants[payment_id] = {"grant_id": grant_id, "user_id": user_id, "credits": credits}
        return True


class InMemoryProfileRepository:
    def __init__(self, state: InMemoryState, clock: FakeClock) -> None:
        self.state = state
        self.clock = clock
        self.writes = 0

    def get_profile(self, user_id: str) -> Optional[Profile]:
        return self.state.profiles.get(user_id)

    def update_visibility(
        self,
        user_id: str,
        *,
        visibility: ProfileVisibility,
        published_at: Optional[datetime],
    ) -> Optional[Profile]:
        current = self.state.profiles.get(user_id)
        if current is None:
            return None
        self.writes += 1
        updated = current.model_copy(
            update={"visibility": visibility, "published_at": published_at, "updated_at": self.clock()}
        )
        self.state.profiles[user_id] = updated
        return updated


class InMemoryBillingStore:
    """Store whose transactions roll the whole state back on error."""

    def __init__(self, clock: FakeClock) -> None:
        self.state = InMemoryState()
        self.subscriptions = InMemorySubscriptionRepository(self.state, clock)
        self.entitlements = InMemoryEntitlementRepository(self.state, clock)
        self.profiles = InMemoryProfileRepository(self.state, clock)
        self.transactions = 0

    @contextmanager
    def transaction(self) -> Iterator[StoreSession]:
        self.transactions += 1
        snapshot = self.state.snapshot()
        try:
            yield StoreSession(
                subscriptions=self.subscriptions,
                entitlements=self.entitlements,
                profiles=self.profiles,
            )
        except Exception:
            self.state.restore(snapshot)
            raise


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: List[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [event.event_type.value for event in self.events]


class Seeder:
    """Writes fixture rows straight into the in-memory state."""

    def __init__(self, store: InMemoryBillingStore, clock: FakeClock) -> None:
        self.store = store
        self.clock = clock

    def subscription(
        self,
        user_id: str,
        *,
        period_end: datetime,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        cancel_at_period_end: bool = False,
        plan_cycle: PlanCycle = PlanCycle.MONTHLY,
    ) -> Subscription:
        subscription = Subscription(
            subscription_id=f"sub_{user_id}",
            user_id=user_id,
            plan_id="plan_pro",
            plan_cycle=plan_cycle,
            status=status,
            started_at=period_end - timedelta(days=30),
            current_period_end=period_end,
            cancel_at_period_end=cancel_at_period_end,
            created_at=self.clock(),
            updated_at=self.clock(),
        )
        self.store.state.subscriptions[subscription.subscription_id] = subscription
        return subscription

    def entitlement(
        self,
        user_id: str,
        key: EntitlementKey = EntitlementKey.CAN_PUBLISH_PROFILE,
        *,
        entitlement_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        remaining_credits: Optional[int] = None,
        subscription_id: Optional[str] = None,
        updated_at: Optional[datetime] = None,
    ) -> Entitlement:
        entitlement = Entitlement(
            entitlement_id=entitlement_id or f"ent_{user_id}_{len(self.store.state.entitlements)}",
            user_id=user_id,
            key=key,
            expires_at=expires_at,
            remaining_credits=remaining_credits,
            subscription_id=subscription_id,
            created_at=self.clock(),
            updated_at=updated_at or self.clock(),
        )
        self.store.state.entitlements[entitlement.entitlement_id] = entitlement
        return entitlement

    def profile(self, user_id: str, *, visibility: ProfileVisibility = ProfileVisibility.PUBLIC) -> Profile:
        profile = Profile(
            profile_id=f"prof_{user_id}",
            user_id=user_id,
            visibility=visibility,
            published_at=self.clock() - timedelta(days=10) if visibility == ProfileVisibility.PUBLIC else None,
            updated_at=self.clock(),
        )
        self.store.state.profiles[user_id] = profile
        return profile


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryBillingStore:
    return InMemoryBillingStore(clock)


@pytest.fixture
def events() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def seed(store: InMemoryBillingStore, clock: FakeClock) -> Seeder:
    return Seeder(store, clock)


@pytest.fixture
def subscription_service(store, events, clock) -> SubscriptionService:
    return SubscriptionService(store=store, event_logger=events, clock=clock)


@pytest.fixture
def sync_service(store, events, clock) -> EntitlementSyncService:
    return EntitlementSyncService(store=store, event_logger=events, clock=clock)


@pytest.fixture
def credit_service(store, events, clock) -> JobCreditService:
    return JobCreditService(store=store, event_logger=events, clock=clock)


@pytest.fixture
def publishing_service(store, events, clock) -> ProfilePublishingService:
    return ProfilePublishingService(store=store, event_logger=events, clock=clock)
