"""Application configuration management using Pydantic Settings."""

import base64
import binascii
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="taskmind-webhooks", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    max_request_body_size: int = Field(default=1_048_576, description="Maximum request body size in bytes")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(
        ...,
        validation_alias=AliasChoices("supabase_secret_key", "supabase_service_role_key"),
        description="Supabase secret (service role) key for backend operations",
    )
    profiles_table: str = Field(default="user_profiles", description="Table holding one profile per external user id")
    audit_logs_table: str = Field(default="audit_logs", description="Table receiving audit log entries")

    # Clerk webhook
    clerk_webhook_secret: str = Field(default="", description="Clerk (svix) webhook signing secret, whsec_...")
    webhook_test_mode: bool = Field(
        default=False,
        description="Relax cryptographic signature checks for non-production testing",
    )
    webhook_tolerance_seconds: int = Field(default=300, gt=0, description="Allowed clock skew for svix-timestamp")

    # Profile defaults
    default_work_type: Literal["full-time", "part-time"] = Field(
        default="full-time", description="Work type assigned to new profiles"
    )
    default_categories: list[str] = Field(
        default_factory=lambda: ["Work", "Personal", "Errands"],
        description="Category labels assigned to new profiles",
    )

    # Telemetry (OTLP/HTTP, e.g. Axiom)
    telemetry_endpoint: str = Field(default="", description="OTLP/HTTP base URL for traces and metrics")
    telemetry_token: str = Field(default="", description="Bearer token for the telemetry collector")
    telemetry_org_id: str = Field(default="", description="Telemetry organisation id")
    telemetry_dataset: str = Field(default="taskmind-webhooks", description="Telemetry dataset name")
    telemetry_service_name: str = Field(default="clerk-webhook", description="service.name resource attribute")

    @model_validator(mode="after")
    def check_webhook_settings(self) -> "Settings":
        """Reject webhook configurations that cannot verify deliveries or weaken verification in production."""
        if self.webhook_test_mode and self.is_production:
            raise ValueError("WEBHOOK_TEST_MODE cannot be enabled when APP_ENV=production")
        if self.clerk_webhook_secret:
            try:
                base64.b64decode(self.clerk_webhook_secret.removeprefix("whsec_"), validate=True)
            except binascii.Error as e:
                raise ValueError("CLERK_WEBHOOK_SECRET must be a whsec_ prefixed base64 secret") from e
        if not [category for category in self.default_categories if category.strip()]:
            raise ValueError("DEFAULT_CATEGORIES must contain at least one category")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def telemetry_enabled(self) -> bool:
        """Telemetry export needs both an endpoint and a token."""
        return bool(self.telemetry_endpoint and self.telemetry_token)

    @property
    def telemetry_headers(self) -> dict[str, str]:
        """HTTP headers sent with every OTLP export request."""
        headers = {"Authorization": f"Bearer {self.telemetry_token}"}
        if self.telemetry_org_id:
            headers["X-Axiom-Org-Id"] = self.telemetry_org_id
        if self.telemetry_dataset:
            headers["X-Axiom-Dataset"] = self.telemetry_dataset
        return headers


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
