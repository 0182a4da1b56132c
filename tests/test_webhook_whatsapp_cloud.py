"""Tests for the WhatsApp Cloud webhook HTTP endpoints."""

import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from wacloud.api.factory import create_app
from wacloud.observability.correlation import CORRELATION_ID_HEADER
from wacloud.whatsapp.gateway import InboundGateway
from wacloud.whatsapp.meta_adapter import sign_payload
from wacloud.whatsapp.meta_sender import WhatsAppCloudClient

from .helpers import (
    APP_SECRET,
    SENDER,
    VERIFY_TOKEN,
    make_config,
    meta_payload,
    signed_body,
    text_message,
)

WEBHOOK_PATH = "/webhook/whatsapp-cloud"


def _build(config=None, on_message=None, on_status=None):
    gateway = InboundGateway(
        config=config or make_config(),
        client=AsyncMock(spec=WhatsAppCloudClient),
        on_message=on_message or AsyncMock(),
        on_status=on_status,
    )
    return gateway, create_app(gateway)


@pytest.fixture
def on_message():
    return AsyncMock()


@pytest.fixture
def client(on_message):
    _, app = _build(on_message=on_message)
    with TestClient(app) as test_client:
        yield test_client


class TestVerification:
    def test_valid_token_returns_challenge(self, client):
        response = client.get(
            WEBHOOK_PATH,
            params={
                "hub.mode": "subscribe",
                "hub.verify_token": VERIFY_TOKEN,
                "hub.challenge": "challenge_abc",
            },
        )

        assert response.status_code == 200
        assert response.text == "challenge_abc"
        assert response.headers["content-type"].startswith("text/plain")

    def test_wrong_token_forbidden(self, client):
        response = client.get(
            WEBHOOK_PATH,
            params={
                "hub.mode": "subscribe",
                "hub.verify_token": "wrong",
                "hub.challenge": "challenge_abc",
            },
        )

        assert response.status_code == 403
        assert response.text == "Forbidden"

    def test_missing_params_forbidden(self, client):
        assert client.get(WEBHOOK_PATH).status_code == 403


class TestWebhookPost:
    def test_signed_message_dispatched(self, client, on_message):
        body, headers = signed_body(
            meta_payload(
                [text_message("Hello bot!")],
                contacts=[{"profile": {"name": "Mario"}, "wa_id": SENDER}],
            )
        )

        response = client.post(WEBHOOK_PATH, content=body, headers=headers)

        assert response.status_code == 200
        assert response.text == "OK"
        on_message.assert_awaited_once()
        message = on_message.await_args.args[0]
        assert message.sender_id == SENDER
        assert message.sender_name == "Mario"
        assert message.text == "Hello bot!"

    def test_bad_signature_still_200_but_not_dispatched(self, client, on_message):
        body, headers = signed_body(meta_payload([text_message()]), secret="not-the-secret")

        response = client.post(WEBHOOK_PATH, content=body, headers=headers)

        assert response.status_code == 200
        assert response.text == "OK"
        on_message.assert_not_called()

    def test_missing_signature_not_dispatched(self, client, on_message):
        body = json.dumps(meta_payload([text_message()])).encode()

        response = client.post(
            WEBHOOK_PATH, content=body, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        on_message.assert_not_called()

    def test_invalid_json_still_200(self, client, on_message):
        body = b"this is not json"
        response = client.post(
            WEBHOOK_PATH,
            content=body,
            headers={"X-Hub-Signature-256": sign_payload(body, APP_SECRET)},
        )

        assert response.status_code == 200
        assert response.text == "OK"
        on_message.assert_not_called()

    def test_status_only_payload(self):
        on_status = AsyncMock()
        _, app = _build(on_status=on_status)
        body, headers = signed_body(
            meta_payload(statuses=[{"id": "wamid.OUT", "status": "delivered", "recipient_id": SENDER}])
        )

        with TestClient(app) as client:
            response = client.post(WEBHOOK_PATH, content=body, headers=headers)

        assert response.status_code == 200
        on_status.assert_awaited_once()
        assert on_status.await_args.args[0].status == "delivered"

    def test_allowlist_mixed_batch(self):
        on_message = AsyncMock()
        _, app = _build(
            make_config(dm_policy="allowlist", allow_from=(SENDER,)), on_message=on_message
        )
        body, headers = signed_body(
            meta_payload(
                [
                    text_message(sender="15550009999", message_id="wamid.NO"),
                    text_message(message_id="wamid.YES"),
                ]
            )
        )

        with TestClient(app) as client:
            client.post(WEBHOOK_PATH, content=body, headers=headers)

        assert on_message.await_count == 1
        assert on_message.await_args.args[0].message_id == "wamid.YES"

    def test_read_receipt_sent(self):
        gateway, app = _build(make_config(send_read_receipts=True))
        body, headers = signed_body(meta_payload([text_message(message_id="wamid.RR")]))

        with TestClient(app) as client:
            client.post(WEBHOOK_PATH, content=body, headers=headers)

        gateway.client.mark_as_read.assert_called_once_with("wamid.RR")

    def test_unsigned_allowed_when_opted_in(self):
        on_message = AsyncMock()
        _, app = _build(
            make_config(app_secret="", allow_unsigned_webhooks=True), on_message=on_message
        )
        body = json.dumps(meta_payload([text_message()])).encode()

        with TestClient(app) as client:
            response = client.post(WEBHOOK_PATH, content=body)

        assert response.status_code == 200
        on_message.assert_awaited_once()

    def test_custom_webhook_path(self):
        on_message = AsyncMock()
        _, app = _build(make_config(webhook_path="/hooks/wa"), on_message=on_message)
        body, headers = signed_body(meta_payload([text_message()]))

        with TestClient(app) as client:
            assert client.post("/hooks/wa", content=body, headers=headers).status_code == 200
            assert client.post(WEBHOOK_PATH, content=body, headers=headers).status_code == 404

        on_message.assert_awaited_once()


class TestRouting:
    def test_unknown_path_is_404(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.text == "Not found"

    @pytest.mark.parametrize("method", ["put", "delete", "patch"])
    def test_unsupported_method_is_404(self, client, method):
        response = client.request(method.upper(), WEBHOOK_PATH)
        assert response.status_code == 404
        assert response.text == "Not found"

    def test_docs_disabled(self, client):
        assert client.get("/docs").status_code == 404
        assert client.get("/openapi.json").status_code == 404

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={CORRELATION_ID_HEADER: "corr-abc"})
        assert response.headers[CORRELATION_ID_HEADER] == "corr-abc"

    def test_correlation_id_generated(self, client):
        response = client.get("/health")
        assert response.headers[CORRELATION_ID_HEADER]
