"""Domain models for talent profiles as seen by the billing subsystem."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProfileVisibility(str, Enum):
    """Whether a profile is listed in the public directory."""

    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


class Profile(BaseModel):
    """Visibility-related slice of a user's profile."""

    profile_id: str
    user_id: str
    visibility: ProfileVisibility = ProfileVisibility.PRIVATE
    published_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_public(self) -> bool:
        return self.visibility == ProfileVisibility.PUBLIC
