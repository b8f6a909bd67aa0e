"""Unit tests for the webhook pipeline (parse, dispatch, handle)."""

import json
import time
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.api.middleware.error_handler import DatabaseError, PayloadValidationError
from src.core.telemetry import TelemetrySink
from src.schemas.webhook import UnhandledEvent, UserCreatedEvent, UserDeletedEvent
from src.services.profile_sync_service import ProfileSyncService, SyncAction
from src.services.webhook_service import WebhookOutcome, WebhookService, parse_event
from src.services.webhook_verifier import WebhookVerifier


def created_event(user_id: str = "user_1", email: str | None = "a@x.com") -> dict[str, Any]:
    addresses = [{"id": "idn_1", "email_address": email}] if email is not None else []
    return {
        "type": "user.created",
        "data": {
            "id": user_id,
            "email_addresses": addresses,
            "primary_email_address_id": "idn_1",
            "first_name": "Ada",
            "last_name": "Lovelace",
        },
    }


def signed_headers() -> dict[str, str]:
    return {
        "svix-id": "msg_1",
        "svix-timestamp": str(int(time.time())),
        "svix-signature": "v1,test-signature",
    }


@pytest.fixture
def profiles() -> AsyncMock:
    """Create a mock profile reconciler."""
    mock = AsyncMock(spec=ProfileSyncService)
    mock.create_profile.return_value = SyncAction.CREATED
    mock.update_profile.return_value = SyncAction.UPDATED
    mock.delete_profile.return_value = SyncAction.DELETED
    return mock


@pytest.fixture
def service(profiles: AsyncMock) -> WebhookService:
    """Create a WebhookService with a test-mode verifier and no-op telemetry."""
    verifier = WebhookVerifier(secret="", test_mode=True)
    return WebhookService(verifier=verifier, profiles=profiles, telemetry=TelemetrySink())


class TestParseEvent:
    """Tests for parse_event."""

    def test_parses_user_created(self) -> None:
        """Test that a user.created payload becomes a typed event."""
        event = parse_event(created_event())

        assert isinstance(event, UserCreatedEvent)
        assert event.data.primary_email == "a@x.com"
        assert event.data.display_name == "Ada Lovelace"

    def test_parses_user_deleted(self) -> None:
        """Test that a user.deleted payload needs only the id."""
        event = parse_event({"type": "user.deleted", "data": {"id": "user_1", "deleted": True}})

        assert isinstance(event, UserDeletedEvent)
        assert event.data.id == "user_1"

    def test_unknown_type_is_unhandled(self) -> None:
        """Test that unknown event types are accepted as unhandled."""
        event = parse_event({"type": "session.created", "data": {"id": "sess_1"}})

        assert isinstance(event, UnhandledEvent)
        assert event.type == "session.created"

    @pytest.mark.parametrize("data", [None, "sess_1", [1, 2], 42])
    def test_unknown_type_accepts_any_data(self, data: Any) -> None:
        """Test that an unknown event is acknowledged whatever its data holds."""
        event = parse_event({"type": "session.created", "data": data})

        assert isinstance(event, UnhandledEvent)

    def test_unknown_type_without_data(self) -> None:
        assert isinstance(parse_event({"type": "session.ended"}), UnhandledEvent)

    @pytest.mark.parametrize("payload", [[], "user.created", None])
    def test_rejects_non_object(self, payload: Any) -> None:
        """Test that payloads that are not objects are validation errors."""
        with pytest.raises(PayloadValidationError):
            parse_event(payload)

    @pytest.mark.parametrize("payload", [{"data": {"id": "user_1"}}, {"type": "", "data": {}}, {"type": 7}])
    def test_rejects_missing_type(self, payload: dict[str, Any]) -> None:
        """Test that an event without a type string is rejected."""
        with pytest.raises(PayloadValidationError) as exc_info:
            parse_event(payload)

        assert "event type" in exc_info.value.message

    def test_rejects_known_type_without_user_id(self) -> None:
        """Test that user events without data.id are rejected with field details."""
        with pytest.raises(PayloadValidationError) as exc_info:
            parse_event({"type": "user.updated", "data": {"email_addresses": []}})

        assert exc_info.value.message == "Invalid user.updated payload"
        assert exc_info.value.details
        assert exc_info.value.details[0]["loc"] == ["data", "id"]


class TestDispatch:
    """Tests for WebhookService.dispatch routing."""

    @pytest.mark.asyncio
    async def test_created_routes_to_create(self, service: WebhookService, profiles: AsyncMock) -> None:
        """Test that user.created calls create_profile with email and name."""
        action = await service.dispatch(parse_event(created_event()))

        assert action is SyncAction.CREATED
        profiles.create_profile.assert_awaited_once_with("user_1", "a@x.com", "Ada Lovelace")
        profiles.update_profile.assert_not_awaited()
        profiles.delete_profile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_created_without_email_is_rejected(
        self, service: WebhookService, profiles: AsyncMock
    ) -> None:
        """Test that user.created without an email never reaches storage."""
        with pytest.raises(PayloadValidationError):
            await service.dispatch(parse_event(created_event(email=None)))

        profiles.create_profile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_updated_routes_to_update(self, service: WebhookService, profiles: AsyncMock) -> None:
        """Test that user.updated mirrors email and name."""
        payload = created_event(email="new@x.com")
        payload["type"] = "user.updated"

        action = await service.dispatch(parse_event(payload))

        assert action is SyncAction.UPDATED
        profiles.update_profile.assert_awaited_once_with("user_1", email="new@x.com", full_name="Ada Lovelace")

    @pytest.mark.asyncio
    async def test_deleted_routes_to_delete(self, service: WebhookService, profiles: AsyncMock) -> None:
        """Test that user.deleted deletes the profile."""
        action = await service.dispatch(parse_event({"type": "user.deleted", "data": {"id": "user_1"}}))

        assert action is SyncAction.DELETED
        profiles.delete_profile.assert_awaited_once_with("user_1")

    @pytest.mark.asyncio
    async def test_unknown_type_is_ignored(self, service: WebhookService, profiles: AsyncMock) -> None:
        """Test that unhandled events touch nothing."""
        action = await service.dispatch(parse_event({"type": "organization.created", "data": {}}))

        assert action is SyncAction.IGNORED
        assert profiles.method_calls == []


class TestHandle:
    """Tests for WebhookService.handle end to end."""

    @pytest.mark.asyncio
    async def test_success_returns_ack(self, service: WebhookService) -> None:
        """Test that a verified, valid event yields 200 success."""
        result = await service.handle(json.dumps(created_event()).encode(), signed_headers())

        assert result.ok
        assert result.status_code == 200
        assert result.action is SyncAction.CREATED
        assert result.event_type == "user.created"
        assert result.body() == {"success": True}

    @pytest.mark.asyncio
    async def test_verification_failure_skips_storage(
        self, service: WebhookService, profiles: AsyncMock
    ) -> None:
        """Test that unverified deliveries return 400 before any storage call."""
        result = await service.handle(json.dumps(created_event()).encode(), {})

        assert result.outcome is WebhookOutcome.VERIFICATION_FAILURE
        assert result.status_code == 400
        assert result.body()["errorType"] == "WEBHOOK_VERIFICATION"
        assert profiles.method_calls == []

    @pytest.mark.asyncio
    async def test_validation_failure_returns_400(
        self, service: WebhookService, profiles: AsyncMock
    ) -> None:
        """Test that a missing email yields a VALIDATION error."""
        result = await service.handle(json.dumps(created_event(email=None)).encode(), signed_headers())

        assert result.outcome is WebhookOutcome.VALIDATION_FAILURE
        assert result.status_code == 400
        assert result.body()["errorType"] == "VALIDATION"
        assert "email" in result.body()["error"]
        profiles.create_profile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_storage_failure_returns_500(self, service: WebhookService, profiles: AsyncMock) -> None:
        """Test that storage errors are reported as retryable DATABASE errors."""
        profiles.create_profile.side_effect = DatabaseError("upsert profile failed: connection reset")

        result = await service.handle(json.dumps(created_event()).encode(), signed_headers())

        assert result.outcome is WebhookOutcome.STORAGE_FAILURE
        assert result.status_code == 500
        assert result.body() == {
            "error": "upsert profile failed: connection reset",
            "errorType": "DATABASE",
        }

    @pytest.mark.asyncio
    async def test_unknown_event_is_acknowledged(self, service: WebhookService) -> None:
        """Test that unknown event types return 200 without side effects."""
        body = json.dumps({"type": "email.created", "data": {"id": "ema_1"}}).encode()

        result = await service.handle(body, signed_headers())

        assert result.ok
        assert result.action is SyncAction.IGNORED

    @pytest.mark.asyncio
    async def test_telemetry_failure_does_not_change_outcome(self, profiles: AsyncMock) -> None:
        """Test that a broken tracer and meter never fail the request."""
        tracer = MagicMock()
        tracer.start_span.side_effect = RuntimeError("exporter unavailable")
        meter = MagicMock()
        meter.create_counter.return_value.add.side_effect = RuntimeError("exporter unavailable")
        meter.create_histogram.return_value.record.side_effect = RuntimeError("exporter unavailable")
        service = WebhookService(
            verifier=WebhookVerifier(secret="", test_mode=True),
            profiles=profiles,
            telemetry=TelemetrySink(tracer=tracer, meter=meter),
        )

        result = await service.handle(json.dumps(created_event()).encode(), signed_headers())

        assert result.ok
        assert result.status_code == 200
        profiles.create_profile.assert_awaited_once()
