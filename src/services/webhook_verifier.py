"""Svix signature and replay-window verification for Clerk webhooks."""

import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from standardwebhooks.webhooks import WebhookVerificationError as StandardWebhookVerificationError
from svix.webhooks import Webhook
from svix.webhooks import WebhookVerificationError as SvixVerificationError

from src.api.middleware.error_handler import WebhookVerificationError

logger = logging.getLogger(__name__)

SVIX_ID_HEADER = "svix-id"
SVIX_TIMESTAMP_HEADER = "svix-timestamp"
SVIX_SIGNATURE_HEADER = "svix-signature"
REQUIRED_HEADERS = (SVIX_ID_HEADER, SVIX_TIMESTAMP_HEADER, SVIX_SIGNATURE_HEADER)

DEFAULT_TOLERANCE_SECONDS = 5 * 60


class WebhookVerifier:
    """Verifies that a webhook delivery comes from Clerk and is recent.

    Header presence and the timestamp window are always enforced. Test mode
    only relaxes the HMAC check to a ``v1,<token>`` format check.
    """

    def __init__(
        self,
        secret: str,
        test_mode: bool = False,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the verifier.

        Args:
            secret: The ``whsec_`` signing secret shared with Clerk.
            test_mode: Accept any well-formed ``v1,`` signature.
            tolerance_seconds: Maximum allowed distance between now and svix-timestamp.
            clock: Source of the current Unix time.
        """
        self.test_mode = test_mode
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock
        self._webhook = Webhook(secret) if secret and not test_mode else None

    def verify(self, payload: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        """Verify a delivery and return its parsed JSON body.

        Args:
            payload: Raw, unparsed request body.
            headers: Request headers; lookup is case-insensitive.

        Returns:
            dict: The parsed event payload.

        Raises:
            WebhookVerificationError: Missing header, stale timestamp, bad signature or malformed JSON.
        """
        svix_headers = self._extract_headers(headers)
        self._check_timestamp(svix_headers[SVIX_TIMESTAMP_HEADER])

        if self.test_mode:
            self._check_test_signature(svix_headers[SVIX_SIGNATURE_HEADER])
        else:
            self._verify_signature(payload, svix_headers)

        event = self._parse_json(payload)

        if not isinstance(event, dict):
            raise WebhookVerificationError("Malformed JSON payload: expected an object")

        logger.debug("Verified webhook %s", svix_headers[SVIX_ID_HEADER])
        return event

    def _extract_headers(self, headers: Mapping[str, str]) -> dict[str, str]:
        lowered = {key.lower(): value for key, value in headers.items()}
        svix_headers = {name: (lowered.get(name) or "").strip() for name in REQUIRED_HEADERS}

        missing = [name for name, value in svix_headers.items() if not value]
        if missing:
            logger.warning("Webhook missing svix headers: %s", ", ".join(missing))
            raise WebhookVerificationError(f"Missing required svix headers: {', '.join(missing)}")

        return svix_headers

    def _check_timestamp(self, raw_timestamp: str) -> None:
        try:
            timestamp = int(raw_timestamp)
        except ValueError as e:
            raise WebhookVerificationError("Invalid svix-timestamp header") from e

        now = self._clock()
        if timestamp < now - self.tolerance_seconds:
            logger.warning("Webhook timestamp too old: %s (now %d)", raw_timestamp, now)
            raise WebhookVerificationError("Message timestamp too old")
        if timestamp > now + self.tolerance_seconds:
            logger.warning("Webhook timestamp too new: %s (now %d)", raw_timestamp, now)
            raise WebhookVerificationError("Message timestamp too new")

    def _check_test_signature(self, signature: str) -> None:
        version, _, token = signature.partition(",")
        if version != "v1" or not token.strip():
            raise WebhookVerificationError("No matching signature found")

    def _verify_signature(self, payload: bytes, svix_headers: dict[str, str]) -> None:
        if self._webhook is None:
            raise WebhookVerificationError(
                "Webhook secret is not configured. Please set CLERK_WEBHOOK_SECRET environment variable."
            )

        try:
            self._webhook.verify(payload, svix_headers)
        except (SvixVerificationError, StandardWebhookVerificationError) as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise WebhookVerificationError(str(e) or "Invalid webhook signature") from e
        except ValueError as e:
            # Undecodable base64 or a signature without a version prefix
            logger.warning("Unparseable webhook signature: %s", str(e))
            raise WebhookVerificationError("Invalid webhook signature") from e

    @staticmethod
    def _parse_json(payload: bytes) -> Any:
        try:
            return json.loads(payload)
        except ValueError as e:
            raise WebhookVerificationError("Malformed JSON payload") from e
