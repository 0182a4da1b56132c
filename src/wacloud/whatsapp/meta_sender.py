"""Outbound WhatsApp messaging via Meta Cloud API.

Every send returns a SendResult: remote 4xx/5xx answers and transport
failures become ok=False values, never exceptions. No automatic retries;
the caller decides.

Security: NEVER log recipient numbers or text. Only log hashes and lengths.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from wacloud.infra.settings import WhatsAppCloudConfig
from wacloud.observability.logging import get_logger
from wacloud.observability.redaction import hash_identifier, id_prefix, safe_log_context

from .models import DownloadedMedia, SendResult
from .outbound import (
    InteractiveRequest,
    ListSection,
    MediaRef,
    MediaRequest,
    MediaType,
    OutboundRequest,
    ReadReceiptRequest,
    ReplyButton,
    TemplateRequest,
    TextRequest,
    build_button_message,
    build_list_message,
)

logger = get_logger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"

# WhatsApp rejects text bodies longer than this
TEXT_CHUNK_LIMIT = 4096


def split_message(text: str, max_length: int = TEXT_CHUNK_LIMIT) -> list[str]:
    """Split text into chunks of at most max_length characters.

    Prefers the last newline before the limit, then the last space; falls
    back to a hard split when neither sits in a reasonable spot. Whitespace
    at chunk boundaries is trimmed.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    remaining = text

    while len(remaining) > max_length:
        split_index = remaining.rfind("\n", 0, max_length + 1)
        if split_index < max_length * 0.5:
            split_index = remaining.rfind(" ", 0, max_length + 1)
        if split_index < max_length * 0.3:
            split_index = max_length

        chunks.append(remaining[:split_index].rstrip())
        remaining = remaining[split_index:].lstrip()

    if remaining:
        chunks.append(remaining)

    return chunks


def _error_message(response: httpx.Response) -> str:
    """Pull error.message out of a Graph API error body, if there is one."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"HTTP {response.status_code} {response.reason_phrase}".rstrip()


class WhatsAppCloudClient:
    """Async client for the WhatsApp Cloud API messages and media endpoints.

    Owns an httpx.AsyncClient unless one is injected (tests pass one built
    on httpx.MockTransport). Use as an async context manager or call
    aclose() when done.
    """

    def __init__(
        self,
        config: WhatsAppCloudConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.http_timeout_seconds)

    async def __aenter__(self) -> WhatsAppCloudClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    @property
    def config(self) -> WhatsAppCloudConfig:
        return self._config

    def _url(self, path: str) -> str:
        return f"{GRAPH_API_BASE}/{self._config.api_version}/{path}"

    @property
    def _messages_url(self) -> str:
        return self._url(f"{self._config.phone_number_id}/messages")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.access_token}",
            "Content-Type": "application/json",
        }

    async def _send(self, request: OutboundRequest, **log_fields: Any) -> SendResult:
        """POST one request body and turn the answer into a SendResult."""
        log_ctx = safe_log_context(
            to_hash=hash_identifier(request.to),
            type=type(request).__name__,
            **log_fields,
        )

        try:
            response = await self._http.post(
                self._messages_url,
                json=request.to_payload(),
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error(
                "outbound send via meta failed (network)",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, error_type=type(e).__name__
                    )
                },
            )
            return SendResult.failure(str(e) or type(e).__name__)

        if not response.is_success:
            error = _error_message(response)
            logger.error(
                "outbound send via meta rejected",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, status_code=response.status_code, error=error
                    )
                },
            )
            return SendResult.failure(error)

        message_id = None
        try:
            data = response.json()
            message_id = data["messages"][0]["id"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning(
                "meta accepted message but returned no message id",
                extra={"extra_fields": log_ctx},
            )

        logger.info("outbound message sent via meta", extra={"extra_fields": log_ctx})
        return SendResult.success(str(message_id) if message_id is not None else None)

    async def send_text(self, to: str, text: str) -> SendResult:
        """Send a text message, split into ordered chunks when too long.

        Chunks go out one at a time; the first failure stops the rest and
        is returned.
        """
        chunks = split_message(text, TEXT_CHUNK_LIMIT)
        result = SendResult.failure("no chunks")

        for index, chunk in enumerate(chunks):
            result = await self._send(
                TextRequest(to=to, body=chunk),
                chunk=index,
                chunks=len(chunks),
                text_len=len(chunk),
            )
            if not result.ok:
                return result

        return result

    async def send_template(
        self,
        to: str,
        template_name: str,
        language_code: str = "en",
        components: Sequence[Mapping[str, Any]] | None = None,
    ) -> SendResult:
        """Send a pre-approved template message."""
        request = TemplateRequest(
            to=to,
            name=template_name,
            language_code=language_code,
            components=tuple(components) if components is not None else None,
        )
        return await self._send(request, template=template_name)

    async def send_interactive(self, to: str, interactive: Mapping[str, Any]) -> SendResult:
        """Send an interactive (button or list) message."""
        return await self._send(
            InteractiveRequest(to=to, interactive=interactive),
            interactive_type=interactive.get("type"),
        )

    async def send_buttons(
        self,
        to: str,
        body_text: str,
        buttons: Sequence[ReplyButton | Mapping[str, str]],
    ) -> SendResult:
        """Send up to 3 quick-reply buttons (extras dropped, titles cut to 20)."""
        return await self.send_interactive(to, build_button_message(body_text, buttons))

    async def send_list(
        self,
        to: str,
        body_text: str,
        button_label: str,
        sections: Sequence[ListSection],
    ) -> SendResult:
        """Send a list picker."""
        return await self.send_interactive(
            to, build_list_message(body_text, button_label, sections)
        )

    async def send_media(self, to: str, media_type: MediaType, media: MediaRef) -> SendResult:
        """Send image/audio/video/document by URL or uploaded media ID."""
        return await self._send(
            MediaRequest(to=to, media_type=media_type, media=media),
            media_type=media_type,
            by_link=bool(media.link),
        )

    async def _post_status(self, request: ReadReceiptRequest, what: str) -> None:
        try:
            response = await self._http.post(
                self._messages_url,
                json=request.to_payload(),
                headers=self._headers(),
            )
            if not response.is_success:
                logger.debug(
                    f"{what} rejected by meta",
                    extra={
                        "extra_fields": safe_log_context(
                            message_id_prefix=id_prefix(request.message_id),
                            status_code=response.status_code,
                        )
                    },
                )
        except Exception as e:
            logger.debug(
                f"{what} failed",
                extra={
                    "extra_fields": safe_log_context(
                        message_id_prefix=id_prefix(request.message_id),
                        error_type=type(e).__name__,
                    )
                },
            )

    async def mark_as_read(self, message_id: str) -> None:
        """Best-effort read receipt. Never raises."""
        await self._post_status(ReadReceiptRequest(message_id=message_id), "read receipt")

    async def send_typing_indicator(self, message_id: str) -> None:
        """Best-effort "typing..." indicator (cleared by Meta on reply or after 25s)."""
        await self._post_status(
            ReadReceiptRequest(message_id=message_id, typing_indicator=True),
            "typing indicator",
        )

    async def get_media_url(self, media_id: str) -> str | None:
        """Resolve the temporary download URL of an inbound media object."""
        try:
            response = await self._http.get(self._url(media_id), headers=self._headers())
            if not response.is_success:
                logger.error(
                    "failed to get media url",
                    extra={"extra_fields": safe_log_context(status_code=response.status_code)},
                )
                return None
            url = response.json().get("url")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(
                "failed to get media url",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            return None

        return str(url) if url else None

    async def download_media(self, url: str) -> DownloadedMedia | None:
        """Download media bytes from Meta's CDN (bearer-authenticated)."""
        try:
            response = await self._http.get(
                url,
                headers={"Authorization": f"Bearer {self._config.access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error(
                "media download error",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            return None

        if not response.is_success:
            logger.error(
                "media download failed",
                extra={"extra_fields": safe_log_context(status_code=response.status_code)},
            )
            return None

        return DownloadedMedia(
            content=response.content,
            mime_type=response.headers.get("content-type", "application/octet-stream"),
        )
