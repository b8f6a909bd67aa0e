"""FastAPI dependency injection functions.

Settings, the Supabase client and the telemetry sink are built once per
process (cached) and handed to request handlers through ``Depends``, so tests
can swap any of them with ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from supabase import Client

from src.core.config import Settings, get_settings
from src.core.supabase import get_supabase_client
from src.core.telemetry import TelemetrySink
from src.services.audit_log_service import AuditLogService
from src.services.profile_sync_service import ProfileSyncService
from src.services.webhook_service import WebhookService
from src.services.webhook_verifier import WebhookVerifier

SettingsDep = Annotated[Settings, Depends(get_settings)]
SupabaseDep = Annotated[Client, Depends(get_supabase_client)]


@lru_cache
def get_telemetry_sink() -> TelemetrySink:
    """Get the process-wide telemetry sink."""
    return TelemetrySink()


def get_webhook_verifier(settings: SettingsDep) -> WebhookVerifier:
    """Build the svix verifier from configured secret and mode."""
    return WebhookVerifier(
        secret=settings.clerk_webhook_secret,
        test_mode=settings.webhook_test_mode,
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )


def get_profile_sync_service(settings: SettingsDep, client: SupabaseDep) -> ProfileSyncService:
    """Build the profile reconciler around the shared Supabase client."""
    audit_log = AuditLogService(client, settings.audit_logs_table)
    return ProfileSyncService(client=client, settings=settings, audit_log=audit_log)


def get_webhook_service(
    verifier: Annotated[WebhookVerifier, Depends(get_webhook_verifier)],
    profiles: Annotated[ProfileSyncService, Depends(get_profile_sync_service)],
    telemetry: Annotated[TelemetrySink, Depends(get_telemetry_sink)],
) -> WebhookService:
    """Assemble the webhook pipeline for one request."""
    return WebhookService(verifier=verifier, profiles=profiles, telemetry=telemetry)


# Type aliases for cleaner dependency injection
WebhookServiceDep = Annotated[WebhookService, Depends(get_webhook_service)]
