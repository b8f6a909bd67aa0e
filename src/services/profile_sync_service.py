"""Idempotent reconciliation of identity-provider users into user_profiles rows."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from src.api.middleware.error_handler import DatabaseError, PayloadValidationError
from src.core.config import Settings, get_settings
from src.core.supabase import get_supabase_client
from src.models.profile import UserProfile, UserProfileUpdate
from src.schemas.profile import UserSettings, WorkingDays
from src.services.audit_log_service import AuditLogService

logger = logging.getLogger(__name__)

EXTERNAL_ID_COLUMN = "user_id"
UNIQUE_VIOLATION = "23505"


class SyncAction(str, Enum):
    """What a reconciliation call did to storage."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    UPDATED = "updated"
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


class ProfileSyncService:
    """Applies user.created / user.updated / user.deleted events to profiles.

    Every operation is safe under at-least-once, unordered delivery:
    creation is an ``INSERT ... ON CONFLICT (user_id) DO NOTHING``, and
    updating or deleting a missing profile is a successful no-op.
    """

    def __init__(
        self,
        client: Client | None = None,
        settings: Settings | None = None,
        audit_log: AuditLogService | None = None,
    ) -> None:
        """Initialize profile sync service with Supabase client."""
        self.client = client or get_supabase_client()
        self.settings = settings or get_settings()
        self.table = self.settings.profiles_table
        self.audit_log = audit_log or AuditLogService(self.client, self.settings.audit_logs_table)

    def _run(self, operation: str, query: Any) -> list[dict[str, Any]]:
        """Execute a query, translating storage failures into DatabaseError."""
        try:
            response = query.execute()
        except PostgrestAPIError as e:
            logger.error("%s failed: %s (code=%s)", operation, e.message, e.code)
            raise DatabaseError(f"{operation} failed: {e.message}") from e
        except httpx.HTTPError as e:
            logger.error("%s failed: database unreachable: %s", operation, str(e))
            raise DatabaseError(f"{operation} failed: database connection error") from e

        return response.data or []

    def build_default_profile(
        self,
        external_id: str,
        email: str,
        full_name: str | None = None,
    ) -> UserProfile:
        """Build a complete profile row with default settings and working days.

        Args:
            external_id: Clerk user id.
            email: Primary email address.
            full_name: Display name, if known.

        Returns:
            UserProfile: Row ready to insert.
        """
        now = datetime.now(timezone.utc).isoformat()
        user_settings = UserSettings(
            military_time=False,
            work_type=self.settings.default_work_type,
            categories=list(self.settings.default_categories),
        )

        return {
            "user_id": external_id,
            "email": email,
            "full_name": full_name,
            "settings": user_settings.model_dump(mode="json", by_alias=True),
            "working_days": WorkingDays.default().model_dump(mode="json", by_alias=True),
            "created_at": now,
            "updated_at": now,
        }

    async def get_profile(self, external_id: str) -> dict[str, Any] | None:
        """Get a profile by external id.

        Args:
            external_id: Clerk user id.

        Returns:
            dict | None: The profile row or None if not found.
        """
        rows = self._run(
            "select profile",
            self.client.table(self.table).select("*").eq(EXTERNAL_ID_COLUMN, external_id).limit(1),
        )
        return rows[0] if rows else None

    async def create_profile(
        self,
        external_id: str,
        email: str | None,
        full_name: str | None = None,
    ) -> SyncAction:
        """Create the profile for a new user unless it already exists.

        Args:
            external_id: Clerk user id.
            email: Primary email address; required.
            full_name: Display name, if known.

        Returns:
            SyncAction: CREATED, or ALREADY_EXISTS for duplicate deliveries.

        Raises:
            PayloadValidationError: If email is missing or not an address.
            DatabaseError: On unexpected storage failure.
        """
        if not email or "@" not in email:
            logger.warning("Rejecting profile creation without a valid email", extra={"user_id": external_id})
            raise PayloadValidationError(f"Missing or invalid email address for user {external_id}")

        if await self.get_profile(external_id):
            logger.info("Profile for %s already exists, skipping creation", external_id)
            return SyncAction.ALREADY_EXISTS

        row = self.build_default_profile(external_id, email, full_name)
        try:
            inserted = self._run(
                "upsert profile",
                self.client.table(self.table).upsert(
                    row,
                    on_conflict=EXTERNAL_ID_COLUMN,
                    ignore_duplicates=True,
                ),
            )
        except DatabaseError as e:
            cause = e.__cause__
            if isinstance(cause, PostgrestAPIError) and cause.code == UNIQUE_VIOLATION:
                if await self.get_profile(external_id):
                    logger.info("Concurrent creation of %s resolved as duplicate", external_id)
                    return SyncAction.ALREADY_EXISTS
            raise

        if not inserted:
            # ON CONFLICT DO NOTHING returns no rows when another delivery won the race
            logger.info("Profile for %s created concurrently, treating as duplicate", external_id)
            return SyncAction.ALREADY_EXISTS

        logger.info("Created profile for %s", external_id)
        await self.audit_log.record(external_id, "user.created", details={"email": email})
        return SyncAction.CREATED

    async def update_profile(
        self,
        external_id: str,
        email: str | None = None,
        full_name: str | None = None,
    ) -> SyncAction:
        """Mirror identity fields onto an existing profile.

        Only ``email`` and ``full_name`` are written; settings and working
        days belong to the application and are never touched here.

        Args:
            external_id: Clerk user id.
            email: New primary email, or None to leave unchanged.
            full_name: New display name, or None to leave unchanged.

        Returns:
            SyncAction: UPDATED, or NOT_FOUND if the profile does not exist yet.
        """
        update_data: UserProfileUpdate = {"updated_at": datetime.now(timezone.utc).isoformat()}
        if email:
            update_data["email"] = email
        if full_name is not None:
            update_data["full_name"] = full_name

        updated = self._run(
            "update profile",
            self.client.table(self.table).update(update_data).eq(EXTERNAL_ID_COLUMN, external_id),
        )

        if not updated:
            logger.warning(
                "Profile for %s not found on update; it may not have been created yet",
                external_id,
            )
            return SyncAction.NOT_FOUND

        logger.info("Updated profile for %s", external_id)
        await self.audit_log.record(
            external_id,
            "user.updated",
            details={key: value for key, value in update_data.items() if key != "updated_at"},
        )
        return SyncAction.UPDATED

    async def delete_profile(self, external_id: str) -> SyncAction:
        """Permanently delete a profile.

        Args:
            external_id: Clerk user id.

        Returns:
            SyncAction: DELETED, or NOT_FOUND if there was nothing to delete.
        """
        deleted = self._run(
            "delete profile",
            self.client.table(self.table).delete().eq(EXTERNAL_ID_COLUMN, external_id),
        )

        if not deleted:
            logger.info("No profile for %s to delete", external_id)
            return SyncAction.NOT_FOUND

        logger.info("Deleted profile for %s", external_id)
        await self.audit_log.record(
            external_id,
            "user.deleted",
            details={"deleted_at": datetime.now(timezone.utc).isoformat()},
        )
        return SyncAction.DELETED
