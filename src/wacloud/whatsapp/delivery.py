"""Reply delivery - turns dispatcher reply payloads into outbound sends."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wacloud.observability.logging import get_logger
from wacloud.observability.redaction import hash_identifier, safe_log_context

from .meta_sender import WhatsAppCloudClient
from .models import SendResult
from .outbound import MediaRef, MediaType

logger = get_logger(__name__)


class ReplyPayload(BaseModel):
    """Reply produced by the dispatcher: optional text plus media URLs."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str | None = None
    media_url: str | None = Field(default=None, alias="mediaUrl")
    media_urls: list[str] = Field(default_factory=list, alias="mediaUrls")


class DeliveryAdapter:
    """Delivers dispatcher replies to one WhatsApp recipient.

    Order is fixed: text first, then media_url, then each of media_urls.
    Nothing is deduplicated, and a failed send does not stop the next one.
    """

    def __init__(
        self,
        client: WhatsAppCloudClient,
        to: str,
        media_type: MediaType = "image",
    ) -> None:
        self._client = client
        self._to = to
        self._media_type = media_type

    async def __call__(self, payload: ReplyPayload | Mapping[str, Any]) -> list[SendResult]:
        return await self.deliver(payload)

    async def deliver(self, payload: ReplyPayload | Mapping[str, Any]) -> list[SendResult]:
        """Send everything in payload, in order.

        Returns:
            One SendResult per outbound call made. Failures are logged
            individually here; the list is not collapsed into one error.
        """
        try:
            reply = (
                payload
                if isinstance(payload, ReplyPayload)
                else ReplyPayload.model_validate(payload)
            )
        except ValidationError as e:
            logger.error(
                "invalid reply payload from dispatcher",
                extra={"extra_fields": safe_log_context(error_count=e.error_count())},
            )
            return []

        results: list[SendResult] = []

        if reply.text:
            result = await self._client.send_text(self._to, reply.text)
            results.append(self._log_result("text", result))

        media_urls = [reply.media_url, *reply.media_urls]
        for url in filter(None, media_urls):
            result = await self._client.send_media(self._to, self._media_type, MediaRef(link=url))
            results.append(self._log_result("media", result))

        return results

    def _log_result(self, part: str, result: SendResult) -> SendResult:
        if not result.ok:
            logger.warning(
                "reply delivery failed",
                extra={
                    "extra_fields": safe_log_context(
                        to_hash=hash_identifier(self._to),
                        part=part,
                        error=result.error,
                    )
                },
            )
        return result
