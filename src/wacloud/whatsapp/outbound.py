"""Outbound Graph API request bodies.

Each request type knows how to render the JSON body Meta expects on
POST /<version>/<phone_number_id>/messages. Builders truncate interactive
IDs and titles to the provider limits so a long label never turns into a
rejected send.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

MediaType = Literal["image", "audio", "video", "document"]

MEDIA_TYPES: tuple[str, ...] = ("image", "audio", "video", "document")

# Provider limits for interactive messages
MAX_REPLY_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_BUTTON_ID = 256
MAX_LIST_BUTTON_LABEL = 20
MAX_LIST_ROWS = 10
MAX_SECTION_TITLE = 24
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72
MAX_ROW_ID = 200

_PRODUCT = "whatsapp"


@dataclass(frozen=True)
class TextRequest:
    to: str
    body: str
    preview_url: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "messaging_product": _PRODUCT,
            "recipient_type": "individual",
            "to": self.to,
            "type": "text",
            "text": {"preview_url": self.preview_url, "body": self.body},
        }


@dataclass(frozen=True)
class TemplateRequest:
    """Pre-approved template (the only kind allowed outside the 24h window)."""

    to: str
    name: str
    language_code: str = "en"
    components: tuple[Mapping[str, Any], ...] | None = None

    def to_payload(self) -> dict[str, Any]:
        template: dict[str, Any] = {
            "name": self.name,
            "language": {"code": self.language_code},
        }
        if self.components is not None:
            template["components"] = [dict(c) for c in self.components]
        return {
            "messaging_product": _PRODUCT,
            "to": self.to,
            "type": "template",
            "template": template,
        }


@dataclass(frozen=True)
class InteractiveRequest:
    to: str
    interactive: Mapping[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {
            "messaging_product": _PRODUCT,
            "recipient_type": "individual",
            "to": self.to,
            "type": "interactive",
            "interactive": dict(self.interactive),
        }


@dataclass(frozen=True)
class MediaRef:
    """Media to send: a public URL (link) or an uploaded media ID."""

    link: str | None = None
    media_id: str | None = None
    caption: str | None = None
    filename: str | None = None

    def __post_init__(self) -> None:
        if bool(self.link) == bool(self.media_id):
            raise ValueError("MediaRef needs exactly one of link or media_id")


@dataclass(frozen=True)
class MediaRequest:
    to: str
    media_type: MediaType
    media: MediaRef

    def __post_init__(self) -> None:
        if self.media_type not in MEDIA_TYPES:
            raise ValueError(f"unsupported media type: {self.media_type!r}")

    def to_payload(self) -> dict[str, Any]:
        obj: dict[str, Any] = {}
        if self.media.link:
            obj["link"] = self.media.link
        else:
            obj["id"] = self.media.media_id
        # Audio has no caption; only documents carry a filename
        if self.media.caption and self.media_type != "audio":
            obj["caption"] = self.media.caption
        if self.media.filename and self.media_type == "document":
            obj["filename"] = self.media.filename
        return {
            "messaging_product": _PRODUCT,
            "recipient_type": "individual",
            "to": self.to,
            "type": self.media_type,
            self.media_type: obj,
        }


@dataclass(frozen=True)
class ReadReceiptRequest:
    """Marks an inbound message as read, optionally showing "typing..."."""

    message_id: str
    typing_indicator: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "messaging_product": _PRODUCT,
            "status": "read",
            "message_id": self.message_id,
        }
        if self.typing_indicator:
            payload["typing_indicator"] = {"type": "text"}
        return payload


OutboundRequest = TextRequest | TemplateRequest | InteractiveRequest | MediaRequest


@dataclass(frozen=True)
class ReplyButton:
    button_id: str
    title: str


@dataclass(frozen=True)
class ListRow:
    row_id: str
    title: str
    description: str | None = None


@dataclass(frozen=True)
class ListSection:
    title: str
    rows: tuple[ListRow, ...] = field(default_factory=tuple)


def _optional_parts(header: str | None, footer: str | None) -> dict[str, Any]:
    parts: dict[str, Any] = {}
    if header:
        parts["header"] = {"type": "text", "text": header}
    if footer:
        parts["footer"] = {"text": footer}
    return parts


def build_button_message(
    body_text: str,
    buttons: Sequence[ReplyButton | Mapping[str, str]],
    *,
    header: str | None = None,
    footer: str | None = None,
) -> dict[str, Any]:
    """Build a reply-button interactive message.

    Keeps the first 3 buttons; extra buttons are dropped. Titles are cut
    to 20 characters.
    """
    rendered = []
    for button in list(buttons)[:MAX_REPLY_BUTTONS]:
        if isinstance(button, ReplyButton):
            button_id, title = button.button_id, button.title
        else:
            button_id, title = str(button["id"]), str(button["title"])
        rendered.append(
            {
                "type": "reply",
                "reply": {
                    "id": button_id[:MAX_BUTTON_ID],
                    "title": title[:MAX_BUTTON_TITLE],
                },
            }
        )

    return {
        "type": "button",
        **_optional_parts(header, footer),
        "body": {"text": body_text},
        "action": {"buttons": rendered},
    }


def build_list_message(
    body_text: str,
    button_label: str,
    sections: Sequence[ListSection],
    *,
    header: str | None = None,
    footer: str | None = None,
) -> dict[str, Any]:
    """Build a list interactive message.

    At most 10 rows are kept across all sections; sections left empty by
    that cap are dropped.
    """
    remaining = MAX_LIST_ROWS
    rendered_sections = []
    for section in sections:
        if remaining <= 0:
            break
        rows = []
        for row in section.rows[:remaining]:
            rendered_row: dict[str, Any] = {
                "id": row.row_id[:MAX_ROW_ID],
                "title": row.title[:MAX_ROW_TITLE],
            }
            if row.description:
                rendered_row["description"] = row.description[:MAX_ROW_DESCRIPTION]
            rows.append(rendered_row)
        remaining -= len(rows)
        if rows:
            rendered_sections.append({"title": section.title[:MAX_SECTION_TITLE], "rows": rows})

    return {
        "type": "list",
        **_optional_parts(header, footer),
        "body": {"text": body_text},
        "action": {
            "button": button_label[:MAX_LIST_BUTTON_LABEL],
            "sections": rendered_sections,
        },
    }
