"""Clerk webhook payload and response schemas."""

from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class EmailAddress(BaseModel):
    """One entry of a Clerk user's ``email_addresses`` list."""

    model_config = ConfigDict(extra="allow")

    id: str | None = Field(default=None, description="Clerk email address id")
    email_address: str = Field(description="The address itself")


class UserEventData(BaseModel):
    """``data`` object of user.created and user.updated events."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1, description="Clerk user id (external id)")
    email_addresses: list[EmailAddress] = Field(default_factory=list)
    primary_email_address_id: str | None = Field(default=None)
    first_name: str | None = Field(default=None)
    last_name: str | None = Field(default=None)
    username: str | None = Field(default=None)

    @property
    def primary_email(self) -> str | None:
        """Primary address if Clerk marks one, else the first non-blank address."""
        addresses = [e for e in self.email_addresses if e.email_address.strip()]
        if not addresses:
            return None
        for address in addresses:
            if self.primary_email_address_id and address.id == self.primary_email_address_id:
                return address.email_address.strip()
        return addresses[0].email_address.strip()

    @property
    def display_name(self) -> str | None:
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or self.username or None


class DeletedUserData(BaseModel):
    """``data`` object of user.deleted events."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1, description="Clerk user id (external id)")
    deleted: bool = Field(default=True)


class UserCreatedEvent(BaseModel):
    type: Literal["user.created"]
    data: UserEventData


class UserUpdatedEvent(BaseModel):
    type: Literal["user.updated"]
    data: UserEventData


class UserDeletedEvent(BaseModel):
    type: Literal["user.deleted"]
    data: DeletedUserData


class UnhandledEvent(BaseModel):
    """Any event type this service does not act on. Acknowledged as a no-op."""

    model_config = ConfigDict(extra="allow")

    type: str
    data: Any = None


InboundEvent = Union[UserCreatedEvent, UserUpdatedEvent, UserDeletedEvent, UnhandledEvent]

EVENT_MODELS: dict[str, type[BaseModel]] = {
    "user.created": UserCreatedEvent,
    "user.updated": UserUpdatedEvent,
    "user.deleted": UserDeletedEvent,
}


class WebhookErrorType(str, Enum):
    """Classification tag returned to the webhook sender."""

    WEBHOOK_VERIFICATION = "WEBHOOK_VERIFICATION"
    VALIDATION = "VALIDATION"
    DATABASE = "DATABASE"


class WebhookAck(BaseModel):
    """Body of a 200 response."""

    success: bool = True


class WebhookErrorResponse(BaseModel):
    """Body of a 400/500 response."""

    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(description="Human-readable error message")
    error_type: WebhookErrorType = Field(alias="errorType", description="Error classification")
