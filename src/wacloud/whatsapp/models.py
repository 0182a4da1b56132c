"""WhatsApp message models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


class MessageKind(str, Enum):
    """Canonical kind of an inbound message."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"
    INTERACTIVE_BUTTON_REPLY = "interactive_button_reply"
    INTERACTIVE_LIST_REPLY = "interactive_list_reply"
    BUTTON_REPLY = "button_reply"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class MediaInfo:
    """Media attached to an inbound message (download it via get_media_url)."""

    media_id: str
    mime_type: str
    caption: str | None = None
    filename: str | None = None


@dataclass(frozen=True)
class InteractiveReply:
    """Button or list row the user picked."""

    reply_id: str
    title: str
    subkind: Literal["button_reply", "list_reply"]


@dataclass(frozen=True)
class InboundMessage:
    """Canonical inbound message handed to the dispatcher.

    Contains PII (sender_id, sender_name, text): keep it in memory only and
    never log it.
    """

    sender_id: str
    sender_name: str
    text: str
    message_id: str
    timestamp: int
    kind: MessageKind
    raw_type: str = ""
    media: MediaInfo | None = None
    interactive_reply: InteractiveReply | None = None
    quoted_message_id: str | None = None

    def __post_init__(self) -> None:
        if not self.sender_id:
            raise ValueError("sender_id is required")
        if not self.message_id:
            raise ValueError("message_id is required")
        if not self.text:
            raise ValueError("text must not be empty")
        if self.media is not None and self.interactive_reply is not None:
            raise ValueError("media and interactive_reply are mutually exclusive")


@dataclass(frozen=True)
class WebhookError:
    """Error object embedded in a webhook change or status."""

    code: int | None
    title: str
    message: str
    details: str | None = None


@dataclass(frozen=True)
class StatusUpdate:
    """Delivery status of a message we sent (sent/delivered/read/failed)."""

    message_id: str
    status: str
    recipient_id: str
    timestamp: int = 0
    errors: tuple[WebhookError, ...] = ()


@dataclass(frozen=True)
class WebhookBatch:
    """Everything extracted from one webhook delivery."""

    messages: tuple[InboundMessage, ...] = ()
    statuses: tuple[StatusUpdate, ...] = ()
    errors: tuple[WebhookError, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.messages or self.statuses or self.errors)


@dataclass(frozen=True)
class SendResult:
    """Terminal result of one outbound API call."""

    ok: bool
    message_id: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, message_id: str | None = None) -> "SendResult":
        return cls(ok=True, message_id=message_id)

    @classmethod
    def failure(cls, error: str) -> "SendResult":
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class DownloadedMedia:
    """Binary media fetched from Meta's CDN."""

    content: bytes = field(repr=False)
    mime_type: str = "application/octet-stream"
