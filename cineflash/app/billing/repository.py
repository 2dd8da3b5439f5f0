"""Persistence layer for billing domain objects."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from .models import ACTIVE_STATUSES, PlanCycle, Subscription, SubscriptionStatus
from .store import StoreSession

_ACTIVE_STATUS_VALUES = sorted(status.value for status in ACTIVE_STATUSES)


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


class PostgresRepository:
    """Shared cursor handling for repositories that may join a caller's transaction."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        subscription_id=row["subscription_id"],
        user_id=row["user_id"],
        plan_id=row["plan_id"],
        plan_cycle=PlanCycle(row["plan_cycle"]),
        status=SubscriptionStatus(row["status"]),
        started_at=row["started_at"],
        current_period_end=row["current_period_end"],
        cancel_at_period_end=bool(row["cancel_at_period_end"]),
        provider_ref=row.get("provider_ref"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresSubscriptionRepository(PostgresRepository):
    """Concrete repository persisting subscriptions in PostgreSQL."""

    def get_subscription(self, subscription_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        lock_clause = "FOR UPDATE" if for_update else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM billing_subscriptions
                WHERE subscription_id = %s
                LIMIT 1
                {lock_clause}
                """,
                (subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def get_subscription_for_user(self, user_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        lock_clause = "FOR UPDATE" if for_update else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM billing_subscriptions
                WHERE user_id = %s
                LIMIT 1
                {lock_clause}
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def list_due_subscriptions(self, now: datetime) -> list[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_subscriptions
                WHERE current_period_end <= %s
                  AND status = ANY(%s)
                ORDER BY current_period_end ASC
                """,
                (now, _ACTIVE_STATUS_VALUES),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def save_subscription(self, subscription: Subscription) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_subscriptions (
                    subscription_id,
                    user_id,
                    plan_id,
                    plan_cycle,
                    status,
                    started_at,
                    current_period_end,
                    cancel_at_period_end,
                    provider_ref
                )
                VALUES (%(subscription_id)s, %(user_id)s, %(plan_id)s, %(plan_cycle)s,
                        %(status)s, %(started_at)s, %(current_period_end)s,
                        %(cancel_at_period_end)s, %(provider_ref)s)
                ON CONFLICT (subscription_id) DO UPDATE SET
                    plan_id = EXCLUDED.plan_id,
                    plan_cycle = EXCLUDED.plan_cycle,
                    status = EXCLUDED.status,
                    started_at = EXCLUDED.started_at,
                    current_period_end = EXCLUDED.current_period_end,
                    cancel_at_period_end = EXCLUDED.cancel_at_period_end,
                    provider_ref = EXCLUDED.provider_ref,
                    updated_at = NOW()
                RETURNING *
                """,
                {
                    "subscription_id": subscription.subscription_id,
                    "user_id": subscription.user_id,
                    "plan_id": subscription.plan_id,
                    "plan_cycle": subscription.plan_cycle.value,
                    "status": subscription.status.value,
                    "started_at": subscription.started_at,
                    "current_period_end": subscription.current_period_end,
                    "cancel_at_period_end": subscription.cancel_at_period_end,
                    "provider_ref": subscription.provider_ref,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def mark_expired(self, subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE billing_subscriptions
                SET status = %s, updated_at = NOW()
                WHERE subscription_id = %s
                  AND status = ANY(%s)
                RETURNING *
                """,
                (SubscriptionStatus.EXPIRED.value, subscription_id, _ACTIVE_STATUS_VALUES),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def update_cancel_at_period_end(
        self,
        subscription_id: str,
        *,
        cancel_at_period_end: bool,
        status: SubscriptionStatus,
    ) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE billing_subscriptions
                SET cancel_at_period_end = %s,
                    status = %s,
                    updated_at = NOW()
                WHERE subscription_id = %s
                RETURNING *
                """,
                (cancel_at_period_end, status.value, subscription_id),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None


class PostgresBillingStore:
    """Opens a PostgreSQL transaction and binds every repository to it."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def transaction(self) -> Iterator[StoreSession]:
        # Imported lazily: both repositories import this module for the cursor helpers.
        from ..entitlements.repository import PostgresEntitlementRepository
        from ..profiles.repository import PostgresProfileRepository

        with managed_connection(self._conn) as (connection, _managed):
            yield StoreSession(
                subscriptions=PostgresSubscriptionRepository(conn=connection),
                entitlements=PostgresEntitlementRepository(conn=connection),
                profiles=PostgresProfileRepository(conn=connection),
            )


__all__ = [
    "PostgresBillingStore",
    "PostgresRepository",
    "PostgresSubscriptionRepository",
    "managed_connection",
]
