"""Health endpoint tests."""

from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from wacloud.api.factory import create_app
from wacloud.whatsapp.gateway import InboundGateway
from wacloud.whatsapp.meta_sender import WhatsAppCloudClient

from .helpers import make_config

gateway = InboundGateway(
    config=make_config(),
    client=AsyncMock(spec=WhatsAppCloudClient),
    on_message=AsyncMock(),
)
client = TestClient(create_app(gateway))


def test_health_returns_200():
    response = client.get("/health")
    assert response.status_code == 200


def test_health_returns_ok_status():
    response = client.get("/health")
    assert response.json() == {"status": "ok", "channel": "whatsapp-cloud"}
