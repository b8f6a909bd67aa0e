"""Webhook API routes for external service integrations."""

import logging
from uuid import uuid4

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.api.deps import WebhookServiceDep
from src.schemas.webhook import WebhookAck, WebhookErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/clerk",
    status_code=status.HTTP_200_OK,
    response_model=WebhookAck,
    responses={
        400: {"model": WebhookErrorResponse, "description": "Verification or validation failure"},
        500: {"model": WebhookErrorResponse, "description": "Database failure, safe to retry"},
    },
    summary="Handle Clerk user webhooks",
    description="Receives Clerk user events and keeps user profiles in sync. Requires valid svix headers.",
)
async def clerk_webhook(request: Request, service: WebhookServiceDep) -> JSONResponse:
    """Handle Clerk webhook events.

    Handles:
    - user.created: creates the profile with default settings (duplicate deliveries are no-ops)
    - user.updated: mirrors email and name onto the profile (missing profile is a no-op)
    - user.deleted: deletes the profile (missing profile is a no-op)

    Any other event type is acknowledged without action.

    Args:
        request: FastAPI request object for reading raw body and headers.
        service: The webhook pipeline.

    Returns:
        JSONResponse: ``{"success": true}`` or ``{"error": ..., "errorType": ...}``.
    """
    # Raw body is required for signature verification
    payload = await request.body()
    request_id = request.headers.get("X-Request-ID") or str(uuid4())

    logger.info("Received Clerk webhook (%d bytes)", len(payload), extra={"request_id": request_id})

    result = await service.handle(payload, request.headers, request_id=request_id)

    return JSONResponse(
        status_code=result.status_code,
        content=result.body(),
        headers={"X-Request-ID": request_id},
    )
