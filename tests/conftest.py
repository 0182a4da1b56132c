"""Shared pytest fixtures for wacloud tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from .helpers import make_config  # noqa: E402


@pytest.fixture
def config():
    """Signed-webhook config with read receipts off."""
    return make_config()


@pytest.fixture(autouse=True)
def _clean_meta_env(monkeypatch):
    """Keep developer META_* / WHATSAPP_* env vars out of config tests."""
    for name in (
        "META_PHONE_NUMBER_ID",
        "META_BUSINESS_ACCOUNT_ID",
        "META_ACCESS_TOKEN",
        "META_APP_SECRET",
        "META_VERIFY_TOKEN",
        "META_GRAPH_API_VERSION",
        "WEBHOOK_HOST",
        "WEBHOOK_PORT",
        "WEBHOOK_PATH",
        "WHATSAPP_DM_POLICY",
        "WHATSAPP_ALLOW_FROM",
        "WHATSAPP_SEND_READ_RECEIPTS",
        "WHATSAPP_ALLOW_UNSIGNED_WEBHOOKS",
        "META_HTTP_TIMEOUT",
        "DISPATCH_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
