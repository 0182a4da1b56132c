"""Inbound webhook processing for the WhatsApp Cloud channel.

The HTTP layer acknowledges Meta with 200 before any of this runs (Meta
retries aggressively on non-2xx). Everything here therefore reports
problems through logs only: a forged, malformed or partially blocked
delivery is dropped, never answered with an error.

Security: PII (sender numbers, text) stays in memory. Logs carry hashes,
prefixes and lengths.
"""

from __future__ import annotations

import hmac
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from wacloud.infra.settings import WhatsAppCloudConfig
from wacloud.observability.correlation import bind_correlation_id
from wacloud.observability.logging import get_logger
from wacloud.observability.redaction import hash_identifier, id_prefix, safe_log_context
from wacloud.tasks.detached import DetachedTasks

from .access import is_allowed
from .meta_adapter import normalize, verify_signature
from .meta_sender import WhatsAppCloudClient
from .models import InboundMessage, StatusUpdate

logger = get_logger(__name__)

SUBSCRIBE_MODE = "subscribe"

MessageHandler = Callable[[InboundMessage], Awaitable[None]]
StatusHandler = Callable[[StatusUpdate], Awaitable[None] | None]


class WebhookStatus(str, Enum):
    PROCESSED = "processed"
    REJECTED = "rejected"
    INVALID_JSON = "invalid_json"


@dataclass(frozen=True)
class WebhookOutcome:
    """What one webhook delivery turned into (for logs and tests)."""

    status: WebhookStatus
    dispatched: int = 0
    blocked: int = 0
    failed: int = 0
    statuses: int = 0


class InboundGateway:
    """Verifies, normalizes, filters and dispatches webhook deliveries.

    Args:
        config: Account configuration (read-only).
        client: Outbound client, used for read receipts.
        on_message: Awaited once per allowed message, in payload order.
        on_status: Called once per delivery status update, if given.
        tasks: Tracker for detached read-receipt calls.
    """

    def __init__(
        self,
        config: WhatsAppCloudConfig,
        client: WhatsAppCloudClient,
        on_message: MessageHandler,
        on_status: StatusHandler | None = None,
        tasks: DetachedTasks | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self._on_message = on_message
        self._on_status = on_status
        self.tasks = tasks if tasks is not None else DetachedTasks()

    def verify_challenge(
        self,
        mode: str | None,
        token: str | None,
        challenge: str | None,
    ) -> str | None:
        """Answer Meta's subscription handshake.

        Returns:
            The challenge to echo back, or None when verification fails.
        """
        expected = self.config.verify_token
        token_ok = bool(
            token
            and expected
            and hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
        )

        if mode == SUBSCRIBE_MODE and token_ok and challenge:
            logger.info("webhook verification successful")
            return challenge

        logger.warning(
            "webhook verification failed",
            extra={
                "extra_fields": safe_log_context(
                    hub_mode=mode or "missing",
                    token_match=token_ok,
                    challenge_present=bool(challenge),
                )
            },
        )
        return None

    def _signature_ok(self, raw_body: bytes, signature_header: str | None) -> bool:
        if self.config.app_secret:
            if verify_signature(raw_body, signature_header, self.config.app_secret):
                return True
            logger.warning(
                "webhook signature verification failed - ignoring payload",
                extra={
                    "extra_fields": safe_log_context(
                        signature_present=bool(signature_header),
                        body_len=len(raw_body),
                    )
                },
            )
            return False

        if self.config.allow_unsigned_webhooks:
            logger.warning(
                "no app secret configured - skipping signature verification "
                "(insecure mode, NOT safe for production)"
            )
            return True

        logger.warning("no app secret configured and unsigned webhooks not allowed - ignoring payload")
        return False

    async def process_webhook(
        self,
        raw_body: bytes,
        signature_header: str | None,
    ) -> WebhookOutcome:
        """Run one webhook delivery through the inbound pipeline."""
        if not self._signature_ok(raw_body, signature_header):
            return WebhookOutcome(status=WebhookStatus.REJECTED)

        try:
            payload = json.loads(raw_body)
        except (ValueError, RecursionError) as e:
            logger.error(
                "failed to parse webhook json",
                extra={
                    "extra_fields": safe_log_context(
                        body_len=len(raw_body), error_type=type(e).__name__
                    )
                },
            )
            return WebhookOutcome(status=WebhookStatus.INVALID_JSON)

        batch = normalize(payload)

        status_count = 0
        if self._on_status is not None:
            for update in batch.statuses:
                await self._deliver_status(update)
                status_count += 1

        dispatched = blocked = failed = 0
        for message in batch.messages:
            if not is_allowed(message.sender_id, self.config.access_policy):
                logger.info(
                    "blocked message from sender not in allowlist",
                    extra={
                        "extra_fields": safe_log_context(
                            from_hash=hash_identifier(message.sender_id),
                            message_id_prefix=id_prefix(message.message_id),
                        )
                    },
                )
                blocked += 1
                continue

            logger.info(
                "inbound message received",
                extra={
                    "extra_fields": safe_log_context(
                        from_hash=hash_identifier(message.sender_id),
                        message_id_prefix=id_prefix(message.message_id),
                        kind=message.kind.value,
                        text_len=len(message.text),
                    )
                },
            )

            if self.config.send_read_receipts:
                self.tasks.spawn(
                    self.client.mark_as_read(message.message_id),
                    name=f"read-receipt:{id_prefix(message.message_id)}",
                )

            try:
                await self._on_message(message)
                dispatched += 1
            except Exception:
                failed += 1
                logger.exception(
                    "failed to dispatch inbound message",
                    extra={
                        "extra_fields": safe_log_context(
                            message_id_prefix=id_prefix(message.message_id),
                        )
                    },
                )

        return WebhookOutcome(
            status=WebhookStatus.PROCESSED,
            dispatched=dispatched,
            blocked=blocked,
            failed=failed,
            statuses=status_count,
        )

    async def _deliver_status(self, update: StatusUpdate) -> None:
        try:
            result = self._on_status(update)  # type: ignore[misc]
            if result is not None:
                await result
        except Exception:
            logger.exception(
                "status handler failed",
                extra={
                    "extra_fields": safe_log_context(
                        message_id_prefix=id_prefix(update.message_id),
                        status=update.status,
                    )
                },
            )

    async def handle_webhook(
        self,
        raw_body: bytes,
        signature_header: str | None,
        correlation_id: str | None = None,
    ) -> None:
        """Background entry point for the HTTP route. Never raises."""
        with bind_correlation_id(correlation_id):
            try:
                outcome = await self.process_webhook(raw_body, signature_header)
            except Exception:
                logger.exception("webhook processing failed")
                return

            logger.info(
                "webhook processed",
                extra={
                    "extra_fields": safe_log_context(
                        status=outcome.status.value,
                        dispatched=outcome.dispatched,
                        blocked=outcome.blocked,
                        failed=outcome.failed,
                        statuses=outcome.statuses,
                    )
                },
            )
