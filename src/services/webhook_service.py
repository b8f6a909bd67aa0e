"""Clerk webhook pipeline: verify, parse, dispatch, reconcile."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi import status
from pydantic import ValidationError

from src.api.middleware.error_handler import (
    APIError,
    DatabaseError,
    PayloadValidationError,
    WebhookVerificationError,
)
from src.core.telemetry import TelemetrySink
from src.schemas.webhook import (
    EVENT_MODELS,
    InboundEvent,
    UnhandledEvent,
    UserCreatedEvent,
    UserDeletedEvent,
    UserUpdatedEvent,
    WebhookAck,
    WebhookErrorResponse,
)
from src.services.profile_sync_service import ProfileSyncService, SyncAction
from src.services.webhook_verifier import WebhookVerifier

logger = logging.getLogger(__name__)


class WebhookOutcome(str, Enum):
    """Kinds of result a webhook delivery can end in."""

    SUCCESS = "success"
    VERIFICATION_FAILURE = "verification_failure"
    VALIDATION_FAILURE = "validation_failure"
    STORAGE_FAILURE = "storage_failure"


_OUTCOME_BY_ERROR: dict[type[APIError], WebhookOutcome] = {
    WebhookVerificationError: WebhookOutcome.VERIFICATION_FAILURE,
    PayloadValidationError: WebhookOutcome.VALIDATION_FAILURE,
    DatabaseError: WebhookOutcome.STORAGE_FAILURE,
}


@dataclass
class WebhookResult:
    """Outcome of one delivery, ready to be turned into an HTTP response."""

    outcome: WebhookOutcome
    status_code: int = status.HTTP_200_OK
    action: SyncAction | None = None
    error: str | None = None
    error_type: str | None = None
    event_type: str | None = None
    details: list[dict[str, Any]] | None = field(default=None, repr=False)

    @classmethod
    def success(cls, action: SyncAction, event_type: str) -> "WebhookResult":
        return cls(outcome=WebhookOutcome.SUCCESS, action=action, event_type=event_type)

    @classmethod
    def failure(cls, error: APIError, event_type: str | None = None) -> "WebhookResult":
        return cls(
            outcome=_OUTCOME_BY_ERROR[type(error)],
            status_code=error.status_code,
            error=error.message,
            error_type=error.error_type,
            event_type=event_type,
            details=error.details,
        )

    @property
    def ok(self) -> bool:
        return self.outcome is WebhookOutcome.SUCCESS

    def body(self) -> dict[str, Any]:
        """JSON body in the format the webhook sender expects."""
        if self.ok:
            return WebhookAck().model_dump()
        return WebhookErrorResponse(error=self.error or "", error_type=self.error_type).model_dump(
            mode="json", by_alias=True
        )


def parse_event(payload: Any) -> InboundEvent:
    """Validate a verified payload into one of the known event shapes.

    Args:
        payload: Parsed JSON body.

    Returns:
        InboundEvent: Typed event; unknown types become UnhandledEvent.

    Raises:
        PayloadValidationError: If the payload is not an event or a known type is malformed.
    """
    if not isinstance(payload, dict):
        raise PayloadValidationError("Webhook payload must be a JSON object")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type.strip():
        raise PayloadValidationError("Webhook payload is missing the event type")

    model = EVENT_MODELS.get(event_type, UnhandledEvent)
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        details = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
        raise PayloadValidationError(f"Invalid {event_type} payload", details=details) from e


class WebhookService:
    """Routes verified Clerk events to the profile reconciler."""

    def __init__(
        self,
        verifier: WebhookVerifier,
        profiles: ProfileSyncService,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self.verifier = verifier
        self.profiles = profiles
        self.telemetry = telemetry or TelemetrySink()

    async def dispatch(self, event: InboundEvent, request_id: str | None = None) -> SyncAction:
        """Run exactly one reconciliation path for an event.

        Args:
            event: Validated inbound event.
            request_id: Request id for log and span correlation.

        Returns:
            SyncAction: What happened to storage.
        """
        if isinstance(event, UserCreatedEvent):
            email = event.data.primary_email
            if not email:
                self.telemetry.metric("user_creation_error", error_type="missing_email")
                raise PayloadValidationError(f"Missing or invalid email address for user {event.data.id}")
            with self.telemetry.span("user_creation", user_id=event.data.id, request_id=request_id):
                action = await self.profiles.create_profile(event.data.id, email, event.data.display_name)
            self.telemetry.metric("user_creation_success", action=action.value)
            return action

        if isinstance(event, UserUpdatedEvent):
            with self.telemetry.span("user_update", user_id=event.data.id, request_id=request_id):
                action = await self.profiles.update_profile(
                    event.data.id,
                    email=event.data.primary_email,
                    full_name=event.data.display_name,
                )
            self.telemetry.metric("user_update_success", action=action.value)
            return action

        if isinstance(event, UserDeletedEvent):
            with self.telemetry.span("user_deletion", user_id=event.data.id, request_id=request_id):
                action = await self.profiles.delete_profile(event.data.id)
            self.telemetry.metric("user_deletion_success", action=action.value)
            return action

        logger.debug("Unhandled webhook event type: %s", event.type)
        return SyncAction.IGNORED

    async def handle(
        self,
        payload: bytes,
        headers: Mapping[str, str],
        request_id: str | None = None,
    ) -> WebhookResult:
        """Process one delivery end to end.

        Verification and validation failures return before any storage call.
        Storage failures are reported as retryable 500 results.

        Args:
            payload: Raw request body.
            headers: Request headers.
            request_id: Request id for log and span correlation.

        Returns:
            WebhookResult: The outcome to send back to Clerk.
        """
        log_context = {"request_id": request_id}
        self.telemetry.metric("webhook_received")

        with self.telemetry.span("webhook_handler", request_id=request_id):
            try:
                with self.telemetry.span("verify_webhook", request_id=request_id):
                    event_payload = self.verifier.verify(payload, headers)
            except WebhookVerificationError as e:
                logger.warning("Webhook verification failed: %s", e.message, extra=log_context)
                self.telemetry.metric("webhook_verification_error")
                return WebhookResult.failure(e)
            self.telemetry.metric("webhook_verification_success")

            event_type = event_payload.get("type") if isinstance(event_payload.get("type"), str) else None
            log_context["event_type"] = event_type
            self.telemetry.event("webhook_verified", event_type=event_type)

            try:
                event = parse_event(event_payload)
                action = await self.dispatch(event, request_id=request_id)
            except PayloadValidationError as e:
                logger.warning("Invalid webhook payload: %s", e.message, extra=log_context)
                self.telemetry.metric("webhook_error", error_type=e.error_type, event_type=event_type)
                return WebhookResult.failure(e, event_type)
            except DatabaseError as e:
                logger.error("Webhook reconciliation failed: %s", e.message, extra=log_context)
                self.telemetry.metric("webhook_error", error_type=e.error_type, event_type=event_type)
                return WebhookResult.failure(e, event_type)

        logger.info("Processed webhook %s: %s", event.type, action.value, extra=log_context)
        self.telemetry.metric("webhook_processed", event_type=event.type, action=action.value)
        return WebhookResult.success(action, event.type)
