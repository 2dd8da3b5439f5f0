"""Profile visibility models."""

from .models import Profile, ProfileVisibility

__all__ = ["Profile", "ProfileVisibility"]
