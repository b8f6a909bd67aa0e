"""Database model type definitions."""

from src.models.audit_log import AuditLogEntry
from src.models.profile import UserProfile, UserProfileUpdate

__all__ = [
    "AuditLogEntry",
    "UserProfile",
    "UserProfileUpdate",
]
