"""DM access policy for inbound WhatsApp senders."""

import re
from dataclasses import dataclass, field
from typing import Literal

_NON_DIGITS = re.compile(r"[^0-9]")


@dataclass(frozen=True)
class AccessPolicy:
    """Who may message the bot.

    "open" accepts everyone; "allowlist" accepts only senders whose
    digits-only number matches an entry of allow_from.
    """

    mode: Literal["open", "allowlist"] = "open"
    allow_from: tuple[str, ...] = field(default_factory=tuple)


def normalize_phone(value: str) -> str:
    """Reduce a phone number to its digits ("+39 349-123" -> "39349123")."""
    return _NON_DIGITS.sub("", value)


def is_allowed(sender_id: str, policy: AccessPolicy) -> bool:
    """Return True if sender_id may be processed under policy."""
    if policy.mode == "open":
        return True

    sender = normalize_phone(sender_id)
    if not sender:
        return False

    allowed = {normalize_phone(entry) for entry in policy.allow_from}
    allowed.discard("")
    return sender in allowed
