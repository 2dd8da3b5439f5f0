"""PostgreSQL persistence for profile visibility."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..billing.repository import PostgresRepository
from .models import Profile, ProfileVisibility


def _row_to_profile(row: dict) -> Profile:
    return Profile(
        profile_id=row["profile_id"],
        user_id=row["user_id"],
        visibility=ProfileVisibility(row["visibility"]),
        published_at=row.get("published_at"),
        updated_at=row["updated_at"],
    )


class PostgresProfileRepository(PostgresRepository):
    """Reads and writes the visibility columns of the profiles table."""

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT profile_id, user_id, visibility, published_at, updated_at
                FROM profiles
                WHERE user_id = %s
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_profile(row) if row else None

    def update_visibility(
        self,
        user_id: str,
        *,
        visibility: ProfileVisibility,
        published_at: Optional[datetime],
    ) -> Optional[Profile]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE profiles
                SET visibility = %s,
                    published_at = %s,
                    updated_at = NOW()
                WHERE user_id = %s
                RETURNING profile_id, user_id, visibility, published_at, updated_at
                """,
                (visibility.value, published_at, user_id),
            )
            row = cursor.fetchone()
            return _row_to_profile(row) if row else None


__all__ = ["PostgresProfileRepository"]
