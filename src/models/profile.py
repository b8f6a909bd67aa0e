"""Profile model type definitions for database operations."""

from typing import Any, TypedDict


class UserProfile(TypedDict):
    """user_profiles table row representation.

    One row per identity-provider user. ``user_id`` is the provider's
    external id and carries a unique constraint; ``settings`` and
    ``working_days`` are JSON columns owned by the application.
    """

    user_id: str
    email: str
    full_name: str | None
    settings: dict[str, Any]
    working_days: dict[str, dict[str, Any]]
    created_at: str
    updated_at: str


class UserProfileUpdate(TypedDict, total=False):
    """Fields an identity "user updated" event may overwrite.

    Settings and working days are never part of an update.
    """

    email: str
    full_name: str | None
    updated_at: str
