"""Audit log model type definitions."""

from typing import Any, Literal, TypedDict


class AuditLogEntry(TypedDict, total=False):
    """audit_logs table row representation."""

    user_id: str
    action: str
    resource: str
    details: dict[str, Any]
    status: Literal["success", "failure"]
    error_message: str | None
    created_at: str
