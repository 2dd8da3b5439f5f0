"""PostgreSQL persistence for entitlements and the job-credit ledger."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..billing.repository import PostgresRepository
from .models import Entitlement, EntitlementKey


def _row_to_entitlement(row: dict) -> Entitlement:
    credits = row.get("remaining_credits")
    return Entitlement(
        entitlement_id=row["entitlement_id"],
        user_id=row["user_id"],
        key=EntitlementKey(row["key"]),
        expires_at=row.get("expires_at"),
        remaining_credits=int(credits) if credits is not None else None,
        subscription_id=row.get("subscription_id"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresEntitlementRepository(PostgresRepository):
    """Concrete repository persisting entitlement rows in PostgreSQL."""

    def list_entitlements(self, user_id: str, key: EntitlementKey) -> list[Entitlement]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM user_entitlements
                WHERE user_id = %s AND key = %s
                ORDER BY expires_at DESC NULLS FIRST, updated_at ASC
                """,
                (user_id, key.value),
            )
            rows = cursor.fetchall() or []
            return [_row_to_entitlement(row) for row in rows]

    def list_backed_entitlements(self, subscription_id: str) -> list[Entitlement]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM user_entitlements
                WHERE subscription_id = %s
                FOR UPDATE
                """,
                (subscription_id,),
            )
            rows = cursor.fetchall() or []
            return [_row_to_entitlement(row) for row in rows]

    def save_entitlement(self, entitlement: Entitlement) -> Entitlement:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO user_entitlements (
                    entitlement_id,
                    user_id,
                    key,
                    expires_at,
                    remaining_credits,
                    subscription_id
                )
                VALUES (%(entitlement_id)s, %(user_id)s, %(key)s, %(expires_at)s,
                        %(remaining_credits)s, %(subscription_id)s)
                ON CONFLICT (entitlement_id) DO UPDATE SET
                    expires_at = EXCLUDED.expires_at,
                    remaining_credits = EXCLUDED.remaining_credits,
                    subscription_id = EXCLUDED.subscription_id,
                    updated_at = NOW()
                RETURNING *
                """,
                {
                    "entitlement_id": entitlement.entitlement_id,
                    "user_id": entitlement.user_id,
                    "key": entitlement.key.value,
                    "expires_at": entitlement.expires_at,
                    "remaining_credits": entitlement.remaining_credits,
                    "subscription_id": entitlement.subscription_id,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist entitlement")
            return _row_to_entitlement(row)

    def revoke_entitlement(self, entitlement_id: str, *, expires_at: datetime) -> Optional[Entitlement]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE user_entitlements
                SET expires_at = LEAST(COALESCE(expires_at, %(expires_at)s), %(expires_at)s),
                    subscription_id = NULL,
                    updated_at = NOW()
                WHERE entitlement_id = %(entitlement_id)s
                RETURNING *
                """,
                {"entitlement_id": entitlement_id, "expires_at": expires_at},
            )
            row = cursor.fetchone()
            return _row_to_entitlement(row) if row else None

    def decrement_credit(self, entitlement_id: str, *, now: datetime) -> Optional[Entitlement]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE user_entitlements
                SET remaining_credits = remaining_credits - 1,
                    updated_at = NOW()
                WHERE entitlement_id = %s
                  AND remaining_credits > 0
                  AND (expires_at IS NULL OR expires_at > %s)
                RETURNING *
                """,
                (entitlement_id, now),
            )
            row = cursor.fetchone()
            return _row_to_entitlement(row) if row else None

    def increment_credits(self, entitlement_id: str, credits: int) -> Optional[Entitlement]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE user_entitlements
                SET remaining_credits = COALESCE(remaining_credits, 0) + %s,
                    updated_at = NOW()
                WHERE entitlement_id = %s
                RETURNING *
                """,
                (credits, entitlement_id),
            )
            row = cursor.fetchone()
            return _row_to_entitlement(row) if row else None

    def record_credit_grant(self, *, grant_id: str, user_id: str, payment_id: str, credits: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO job_credit_grants (
                    grant_id,
                    user_id,
                    payment_id,
                    credits,
                    reason
                )
                VALUES (%s, %s, %s, %s, 'JOB_CREDIT_PURCHASE')
                ON CONFLICT (payment_id) DO NOTHING
                """,
                (grant_id, user_id, payment_id, credits),
            )
            return cursor.rowcount > 0


__all__ = ["PostgresEntitlementRepository"]
