"""Meta Cloud API adapter - verify and normalize webhook payloads.

Handles Meta WhatsApp Business API webhook payloads, including
signature verification and message normalization.

Meta payload structure:
{
  "object": "whatsapp_business_account",
  "entry": [{
    "id": "WABA_ID",
    "changes": [{
      "field": "messages",
      "value": {
        "metadata": {"phone_number_id": "..."},
        "contacts": [{"wa_id": "PHONE", "profile": {"name": "..."}}],
        "messages": [{"from": "PHONE", "id": "wamid...", "type": "text", ...}],
        "statuses": [{"id": "wamid...", "status": "delivered", ...}],
        "errors": [{"code": 131051, "title": "...", "message": "..."}]
      }
    }]
  }]
}
"""

import hashlib
import hmac
from typing import Any

from wacloud.observability.logging import get_logger
from wacloud.observability.redaction import hash_identifier, id_prefix, safe_log_context

from .models import (
    InboundMessage,
    InteractiveReply,
    MediaInfo,
    MessageKind,
    StatusUpdate,
    WebhookBatch,
    WebhookError,
)

logger = get_logger(__name__)

WEBHOOK_OBJECT = "whatsapp_business_account"
MESSAGES_FIELD = "messages"
SIGNATURE_PREFIX = "sha256="

_MEDIA_KINDS = {
    "image": MessageKind.IMAGE,
    "audio": MessageKind.AUDIO,
    "video": MessageKind.VIDEO,
    "document": MessageKind.DOCUMENT,
    "sticker": MessageKind.STICKER,
}


def sign_payload(payload_bytes: bytes, app_secret: str) -> str:
    """Compute the X-Hub-Signature-256 header value for a body."""
    digest = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(
    payload_bytes: bytes,
    signature_header: str | None,
    app_secret: str,
) -> bool:
    """Verify Meta webhook signature (HMAC-SHA256).

    Meta signs webhooks with sha256=<hex_signature> format.

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: X-Hub-Signature-256 header value (sha256=...).
        app_secret: Meta App Secret for HMAC verification.

    Returns:
        True only if the header matches the computed signature. Never raises.
    """
    if not app_secret or not signature_header:
        return False

    try:
        received = signature_header.encode("ascii")
    except (UnicodeEncodeError, AttributeError):
        return False

    expected = sign_payload(payload_bytes, app_secret).encode("ascii")

    if len(received) != len(expected):
        return False

    return hmac.compare_digest(received, expected)


def get_phone_number_id(payload: Any) -> str | None:
    """Extract phone_number_id from the first change of a Meta payload.

    Args:
        payload: Raw webhook payload from Meta Cloud API.

    Returns:
        phone_number_id if found, None otherwise.
    """
    for entry in _dicts(_get(payload, "entry")):
        for change in _dicts(entry.get("changes")):
            metadata = _get(change.get("value"), "metadata")
            phone_number_id = _get(metadata, "phone_number_id")
            if phone_number_id:
                return str(phone_number_id)
    return None


def normalize(payload: Any) -> WebhookBatch:
    """Normalize a Meta webhook payload into canonical messages and statuses.

    Total over JSON values: malformed or partial payloads degrade to fewer
    messages or placeholder text, never to an exception.

    Args:
        payload: Parsed webhook JSON.

    Returns:
        WebhookBatch with messages and statuses in payload order, plus any
        embedded error objects (also logged here).
    """
    object_type = _get(payload, "object")
    if object_type != WEBHOOK_OBJECT:
        logger.debug(
            "non-whatsapp webhook object ignored",
            extra={"extra_fields": safe_log_context(object_type=object_type or "missing")},
        )
        return WebhookBatch()

    messages: list[InboundMessage] = []
    statuses: list[StatusUpdate] = []
    errors: list[WebhookError] = []

    for entry in _dicts(payload.get("entry")):
        for change in _dicts(entry.get("changes")):
            if change.get("field") != MESSAGES_FIELD:
                continue

            value = change.get("value")
            if not isinstance(value, dict):
                continue

            for raw_error in _dicts(value.get("errors")):
                error = _parse_error(raw_error)
                logger.error(
                    "webhook error reported by meta",
                    extra={
                        "extra_fields": safe_log_context(
                            code=error.code,
                            title=error.title,
                            error_message=error.message,
                        )
                    },
                )
                errors.append(error)

            for raw_status in _dicts(value.get("statuses")):
                status = _parse_status(raw_status)
                if status is not None:
                    statuses.append(status)

            contacts = list(_dicts(value.get("contacts")))
            for raw_message in _dicts(value.get("messages")):
                message = _parse_message(raw_message, contacts)
                if message is not None:
                    messages.append(message)

    return WebhookBatch(
        messages=tuple(messages),
        statuses=tuple(statuses),
        errors=tuple(errors),
    )


def _parse_message(raw: dict[str, Any], contacts: list[dict[str, Any]]) -> InboundMessage | None:
    sender_id = _str(raw.get("from"))
    message_id = _str(raw.get("id"))
    if not sender_id or not message_id:
        logger.debug(
            "message without sender or id skipped",
            extra={
                "extra_fields": safe_log_context(
                    has_sender=bool(sender_id),
                    has_id=bool(message_id),
                )
            },
        )
        return None

    raw_type = _str(raw.get("type")) or "unknown"
    kind, text, media, interactive_reply = _extract_content(raw_type, raw)

    context = raw.get("context")
    quoted = _str(_get(context, "id")) or None

    message = InboundMessage(
        sender_id=sender_id,
        sender_name=_resolve_sender_name(sender_id, contacts),
        text=text,
        message_id=message_id,
        timestamp=_int(raw.get("timestamp")),
        kind=kind,
        raw_type=raw_type,
        media=media,
        interactive_reply=interactive_reply,
        quoted_message_id=quoted,
    )

    logger.debug(
        "inbound message normalized",
        extra={
            "extra_fields": safe_log_context(
                from_hash=hash_identifier(sender_id),
                message_id_prefix=id_prefix(message_id),
                kind=kind.value,
                text_len=len(text),
            )
        },
    )
    return message


def _resolve_sender_name(sender_id: str, contacts: list[dict[str, Any]]) -> str:
    for contact in contacts:
        if _str(contact.get("wa_id")) == sender_id:
            name = _str(_get(contact.get("profile"), "name"))
            if name:
                return name
    return sender_id


def _extract_content(
    raw_type: str,
    raw: dict[str, Any],
) -> tuple[MessageKind, str, MediaInfo | None, InteractiveReply | None]:
    """Map one provider message to (kind, text, media, interactive_reply)."""
    if raw_type == "text":
        body = _str(_get(raw.get("text"), "body"))
        return MessageKind.TEXT, body or "[Empty message]", None, None

    if raw_type in _MEDIA_KINDS:
        return _extract_media(raw_type, raw.get(raw_type))

    if raw_type == "location":
        return MessageKind.LOCATION, _location_text(raw.get("location")), None, None

    if raw_type == "contacts":
        names = [
            _str(_get(contact.get("name"), "formatted_name"))
            for contact in _dicts(raw.get("contacts"))
        ]
        names = [name for name in names if name]
        text = f"[Contact: {', '.join(names)}]" if names else "[Contact]"
        return MessageKind.CONTACT, text, None, None

    if raw_type == "interactive":
        return _extract_interactive(raw.get("interactive"))

    if raw_type == "button":
        text = _str(_get(raw.get("button"), "text"))
        return MessageKind.BUTTON_REPLY, text or "[Button]", None, None

    return MessageKind.UNSUPPORTED, f"[{raw_type} message — not yet supported]", None, None


def _extract_media(
    raw_type: str,
    obj: Any,
) -> tuple[MessageKind, str, MediaInfo | None, None]:
    kind = _MEDIA_KINDS[raw_type]
    caption = _str(_get(obj, "caption")) or None
    filename = _str(_get(obj, "filename")) or None

    if kind == MessageKind.IMAGE:
        text = caption or "[Image]"
    elif kind == MessageKind.VIDEO:
        text = caption or "[Video]"
    elif kind == MessageKind.DOCUMENT:
        text = caption or f"[Document: {filename or 'file'}]"
    elif kind == MessageKind.AUDIO:
        text = "[Audio message]"
    else:
        text = "[Sticker]"

    media = None
    if isinstance(obj, dict):
        # Audio and stickers carry no caption; documents are the only kind with a filename
        media = MediaInfo(
            media_id=_str(obj.get("id")),
            mime_type=_str(obj.get("mime_type")) or "application/octet-stream",
            caption=caption if kind in (MessageKind.IMAGE, MessageKind.VIDEO, MessageKind.DOCUMENT) else None,
            filename=filename if kind == MessageKind.DOCUMENT else None,
        )

    return kind, text, media, None


def _extract_interactive(
    obj: Any,
) -> tuple[MessageKind, str, None, InteractiveReply | None]:
    reply_type = _str(_get(obj, "type"))

    if reply_type == "button_reply":
        kind, subkind = MessageKind.INTERACTIVE_BUTTON_REPLY, "button_reply"
    elif reply_type == "list_reply":
        kind, subkind = MessageKind.INTERACTIVE_LIST_REPLY, "list_reply"
    else:
        return MessageKind.UNSUPPORTED, "[Interactive message]", None, None

    reply = _get(obj, reply_type)
    if not isinstance(reply, dict):
        return MessageKind.UNSUPPORTED, "[Interactive message]", None, None

    title = _str(reply.get("title"))
    return (
        kind,
        title or "[Interactive message]",
        None,
        InteractiveReply(reply_id=_str(reply.get("id")), title=title, subkind=subkind),
    )


def _location_text(obj: Any) -> str:
    if not isinstance(obj, dict):
        return "[Location]"

    name = _str(obj.get("name"))
    address = _str(obj.get("address"))
    if not address:
        latitude, longitude = obj.get("latitude"), obj.get("longitude")
        if latitude is not None and longitude is not None:
            address = f"{latitude},{longitude}"

    details = " ".join(part for part in (name, address) if part)
    return f"[Location: {details}]" if details else "[Location]"


def _parse_status(raw: dict[str, Any]) -> StatusUpdate | None:
    message_id = _str(raw.get("id"))
    if not message_id:
        return None
    return StatusUpdate(
        message_id=message_id,
        status=_str(raw.get("status")) or "unknown",
        recipient_id=_str(raw.get("recipient_id")),
        timestamp=_int(raw.get("timestamp")),
        errors=tuple(_parse_error(e) for e in _dicts(raw.get("errors"))),
    )


def _parse_error(raw: dict[str, Any]) -> WebhookError:
    code = raw.get("code")
    return WebhookError(
        code=code if isinstance(code, int) and not isinstance(code, bool) else None,
        title=_str(raw.get("title")),
        message=_str(raw.get("message")),
        details=_str(_get(raw.get("error_data"), "details")) or None,
    )


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _str(value: Any) -> str:
    if value is None or isinstance(value, (dict, list, bool)):
        return ""
    return str(value)


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
