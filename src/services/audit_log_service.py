"""Best-effort audit log writer."""

import logging
from datetime import datetime, timezone
from typing import Any, Literal

import httpx
from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from src.models.audit_log import AuditLogEntry

logger = logging.getLogger(__name__)


class AuditLogService:
    """Records profile lifecycle changes in the audit_logs table.

    Writes never raise: an audit failure is logged and reported through the
    return value so that it cannot fail the operation being audited.
    """

    def __init__(self, client: Client, table: str = "audit_logs") -> None:
        self.client = client
        self.table = table

    async def record(
        self,
        user_id: str,
        action: str,
        resource: str = "user_profile",
        details: dict[str, Any] | None = None,
        status: Literal["success", "failure"] = "success",
        error_message: str | None = None,
    ) -> bool:
        """Insert one audit log entry.

        Args:
            user_id: External id of the affected user.
            action: What happened, e.g. ``user.created``.
            resource: The kind of record affected.
            details: Extra JSON context.
            status: Outcome of the audited action.
            error_message: Failure reason when status is ``failure``.

        Returns:
            bool: True if the entry was stored.
        """
        entry: AuditLogEntry = {
            "user_id": user_id,
            "action": action,
            "resource": resource,
            "details": details or {},
            "status": status,
            "error_message": error_message,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            self.client.table(self.table).insert(entry).execute()
        except (PostgrestAPIError, httpx.HTTPError) as e:
            logger.warning(
                "Failed to write audit log %s for %s: %s",
                action,
                user_id,
                str(e),
                extra={"user_id": user_id, "action": action},
            )
            return False

        return True
