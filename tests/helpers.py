"""Shared test helper functions for wacloud tests.

Regular functions (not fixtures) for building configs, Meta webhook
payloads and mocked Graph API clients.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import replace
from typing import Any

import httpx

from wacloud.infra.settings import WhatsAppCloudConfig
from wacloud.whatsapp.meta_adapter import sign_payload
from wacloud.whatsapp.meta_sender import WhatsAppCloudClient

APP_SECRET = "test-meta-app-secret"
VERIFY_TOKEN = "test_verify_token"
PHONE_NUMBER_ID = "123456789"
SENDER = "393491234567"


def make_config(**overrides: Any) -> WhatsAppCloudConfig:
    """Config with test credentials; override any field by keyword."""
    base = WhatsAppCloudConfig(
        phone_number_id=PHONE_NUMBER_ID,
        access_token="test-access-token",
        app_secret=APP_SECRET,
        verify_token=VERIFY_TOKEN,
        api_version="v21.0",
        send_read_receipts=False,
    )
    return replace(base, **overrides)


def text_message(
    body: str = "Hello bot!",
    *,
    sender: str = SENDER,
    message_id: str = "wamid.TEXT001",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "from": sender,
        "id": message_id,
        "timestamp": "1704067200",
        "type": "text",
        "text": {"body": body},
        **extra,
    }


def meta_payload(
    messages: list[dict[str, Any]] | None = None,
    *,
    contacts: list[dict[str, Any]] | None = None,
    statuses: list[dict[str, Any]] | None = None,
    errors: list[dict[str, Any]] | None = None,
    field: str = "messages",
) -> dict[str, Any]:
    """Build a Meta webhook envelope around the given value lists."""
    value: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "metadata": {
            "display_phone_number": "15550001111",
            "phone_number_id": PHONE_NUMBER_ID,
        },
    }
    if contacts is not None:
        value["contacts"] = contacts
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    if errors is not None:
        value["errors"] = errors

    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WHATSAPP_BUSINESS_ACCOUNT_ID",
                "changes": [{"value": value, "field": field}],
            }
        ],
    }


def signed_body(payload: dict[str, Any], secret: str = APP_SECRET) -> tuple[bytes, dict[str, str]]:
    """Serialize payload and return (body, headers) with a valid signature."""
    body = json.dumps(payload).encode()
    headers = {
        "Content-Type": "application/json",
        "X-Hub-Signature-256": sign_payload(body, secret),
    }
    return body, headers


class GraphRecorder:
    """httpx.MockTransport handler that records requests and replays responses.

    responses: list of httpx.Response (or exceptions to raise), consumed in
    order; the last one repeats. Defaults to a successful send.
    """

    def __init__(self, responses: list[httpx.Response | Exception] | None = None):
        self.requests: list[httpx.Request] = []
        self._responses = responses or [sent_response("wamid.SENT001")]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self._responses) - 1)
        response = self._responses[index]
        if isinstance(response, Exception):
            raise response
        # Fresh object per call; the client binds each response to its request
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            content=response.content,
        )

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.content]


def sent_response(message_id: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "messaging_product": "whatsapp",
            "contacts": [{"input": SENDER, "wa_id": SENDER}],
            "messages": [{"id": message_id}],
        },
    )


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    config: WhatsAppCloudConfig | None = None,
) -> WhatsAppCloudClient:
    """WhatsAppCloudClient whose HTTP traffic goes to handler."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WhatsAppCloudClient(config or make_config(), http_client=http)


class LogRecorder:
    """Stand-in for a module logger; patch it in to assert on log calls."""

    LEVELS = ("debug", "info", "warning", "error", "exception")

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, level: str):
        if level not in self.LEVELS:
            raise AttributeError(level)
        return lambda *args, **kwargs: self.calls.append((level, args, kwargs))

    def levels(self) -> list[str]:
        return [level for level, _, _ in self.calls]

    def messages(self, level: str | None = None) -> list[str]:
        return [str(args[0]) for lvl, args, _ in self.calls if args and level in (None, lvl)]

    def fields(self) -> list[dict[str, Any]]:
        return [kwargs.get("extra", {}).get("extra_fields", {}) for _, _, kwargs in self.calls]

    def get_all_logged_content(self) -> str:
        """Everything passed to the logger, flattened, for PII leak checks."""
        return " ".join(f"{args} {kwargs}" for _, args, kwargs in self.calls)

    def has_extra_field(self, key: str) -> bool:
        return any(key in fields for fields in self.fields())
