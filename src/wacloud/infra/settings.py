"""WhatsApp Cloud channel configuration.

Configuration is read once by the caller (environment or host config
mapping) and handed to every component explicitly. Nothing in the core
reads the environment on its own.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from wacloud.whatsapp.access import AccessPolicy

DmPolicy = Literal["open", "allowlist"]

CHANNEL_ID = "whatsapp-cloud"
DEFAULT_VERIFY_TOKEN = "wacloud-verify"
DEFAULT_WEBHOOK_PORT = 3100
DEFAULT_WEBHOOK_PATH = "/webhook/whatsapp-cloud"
DEFAULT_GRAPH_API_VERSION = "v21.0"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    """Raised when a configuration value cannot be parsed."""

    pass


@dataclass(frozen=True)
class WhatsAppCloudConfig:
    """Read-only configuration for one WhatsApp Cloud API account."""

    enabled: bool = True
    phone_number_id: str = ""
    business_account_id: str = ""
    access_token: str = ""
    app_secret: str = ""
    verify_token: str = DEFAULT_VERIFY_TOKEN
    webhook_host: str = "0.0.0.0"
    webhook_port: int = DEFAULT_WEBHOOK_PORT
    webhook_path: str = DEFAULT_WEBHOOK_PATH
    api_version: str = DEFAULT_GRAPH_API_VERSION
    dm_policy: DmPolicy = "open"
    allow_from: tuple[str, ...] = field(default_factory=tuple)
    send_read_receipts: bool = True
    allow_unsigned_webhooks: bool = False
    http_timeout_seconds: float = 10.0
    dispatch_timeout_seconds: float = 120.0

    @property
    def access_policy(self) -> AccessPolicy:
        return AccessPolicy(mode=self.dm_policy, allow_from=self.allow_from)

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token.strip() and self.phone_number_id.strip())


@dataclass(frozen=True)
class ConfigValidation:
    """Outcome of validate_config()."""

    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors


def _parse_bool(name: str, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_number(name: str, raw: Any, kind: type) -> Any:
    try:
        return kind(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a {kind.__name__}, got {raw!r}") from e


def _parse_list(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        items = raw.split(",")
    else:
        items = [str(item) for item in raw]
    return tuple(item.strip() for item in items if item.strip())


def load_config_from_env(environ: Mapping[str, str] | None = None) -> WhatsAppCloudConfig:
    """Build config from environment variables.

    Env vars:
    - META_PHONE_NUMBER_ID, META_ACCESS_TOKEN: required to send
    - META_APP_SECRET: webhook HMAC secret
    - META_VERIFY_TOKEN, META_BUSINESS_ACCOUNT_ID, META_GRAPH_API_VERSION
    - WEBHOOK_HOST, WEBHOOK_PORT, WEBHOOK_PATH
    - WHATSAPP_DM_POLICY (open|allowlist), WHATSAPP_ALLOW_FROM (comma separated)
    - WHATSAPP_SEND_READ_RECEIPTS, WHATSAPP_ALLOW_UNSIGNED_WEBHOOKS
    - META_HTTP_TIMEOUT, DISPATCH_TIMEOUT (seconds)

    Raises:
        ConfigError: If a typed value cannot be parsed.
    """
    env = os.environ if environ is None else environ
    defaults = WhatsAppCloudConfig()

    return WhatsAppCloudConfig(
        phone_number_id=env.get("META_PHONE_NUMBER_ID", ""),
        business_account_id=env.get("META_BUSINESS_ACCOUNT_ID", ""),
        access_token=env.get("META_ACCESS_TOKEN", ""),
        app_secret=env.get("META_APP_SECRET", ""),
        verify_token=env.get("META_VERIFY_TOKEN", defaults.verify_token),
        webhook_host=env.get("WEBHOOK_HOST", defaults.webhook_host),
        webhook_port=_parse_number(
            "WEBHOOK_PORT", env.get("WEBHOOK_PORT", defaults.webhook_port), int
        ),
        webhook_path=env.get("WEBHOOK_PATH", defaults.webhook_path),
        api_version=env.get("META_GRAPH_API_VERSION", defaults.api_version),
        dm_policy=env.get("WHATSAPP_DM_POLICY", defaults.dm_policy),  # type: ignore[arg-type]
        allow_from=_parse_list(env.get("WHATSAPP_ALLOW_FROM")),
        send_read_receipts=_parse_bool(
            "WHATSAPP_SEND_READ_RECEIPTS",
            env.get("WHATSAPP_SEND_READ_RECEIPTS", defaults.send_read_receipts),
        ),
        allow_unsigned_webhooks=_parse_bool(
            "WHATSAPP_ALLOW_UNSIGNED_WEBHOOKS",
            env.get("WHATSAPP_ALLOW_UNSIGNED_WEBHOOKS", defaults.allow_unsigned_webhooks),
        ),
        http_timeout_seconds=_parse_number(
            "META_HTTP_TIMEOUT", env.get("META_HTTP_TIMEOUT", defaults.http_timeout_seconds), float
        ),
        dispatch_timeout_seconds=_parse_number(
            "DISPATCH_TIMEOUT",
            env.get("DISPATCH_TIMEOUT", defaults.dispatch_timeout_seconds),
            float,
        ),
    )


def config_from_mapping(raw: Mapping[str, Any] | None) -> WhatsAppCloudConfig:
    """Build config from a host configuration mapping.

    Accepts either the full host config (section under
    ``channels["whatsapp-cloud"]``) or the bare channel section. Keys are
    camelCase as written by the host.

    Raises:
        ConfigError: If a typed value cannot be parsed.
    """
    raw = raw or {}
    channels = raw.get("channels")
    section: Mapping[str, Any] = raw
    if isinstance(channels, Mapping) and isinstance(channels.get(CHANNEL_ID), Mapping):
        section = channels[CHANNEL_ID]

    defaults = WhatsAppCloudConfig()

    def pick(key: str, default: Any) -> Any:
        value = section.get(key)
        return default if value is None else value

    return WhatsAppCloudConfig(
        enabled=_parse_bool("enabled", pick("enabled", defaults.enabled)),
        phone_number_id=str(pick("phoneNumberId", "")),
        business_account_id=str(pick("businessAccountId", "")),
        access_token=str(pick("accessToken", "")),
        app_secret=str(pick("appSecret", "")),
        verify_token=str(pick("verifyToken", defaults.verify_token)),
        webhook_host=str(pick("webhookHost", defaults.webhook_host)),
        webhook_port=_parse_number("webhookPort", pick("webhookPort", defaults.webhook_port), int),
        webhook_path=str(pick("webhookPath", defaults.webhook_path)),
        api_version=str(pick("apiVersion", defaults.api_version)),
        dm_policy=pick("dmPolicy", defaults.dm_policy),
        allow_from=_parse_list(pick("allowFrom", ())),
        send_read_receipts=_parse_bool(
            "sendReadReceipts", pick("sendReadReceipts", defaults.send_read_receipts)
        ),
        allow_unsigned_webhooks=_parse_bool(
            "allowUnsignedWebhooks",
            pick("allowUnsignedWebhooks", defaults.allow_unsigned_webhooks),
        ),
        http_timeout_seconds=_parse_number(
            "httpTimeoutSeconds", pick("httpTimeoutSeconds", defaults.http_timeout_seconds), float
        ),
        dispatch_timeout_seconds=_parse_number(
            "dispatchTimeoutSeconds",
            pick("dispatchTimeoutSeconds", defaults.dispatch_timeout_seconds),
            float,
        ),
    )


def validate_config(config: WhatsAppCloudConfig) -> ConfigValidation:
    """Check a config before starting the webhook listener.

    Errors block startup; warnings are logged and startup continues.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not config.phone_number_id:
        errors.append("phone_number_id is required (Meta > WhatsApp > API Setup)")
    if not config.access_token:
        errors.append("access_token is required (System User token from Meta Business Settings)")
    if config.dm_policy not in ("open", "allowlist"):
        errors.append(f"dm_policy must be 'open' or 'allowlist', got {config.dm_policy!r}")
    if not config.webhook_path.startswith("/"):
        errors.append("webhook_path must start with '/'")

    if not config.app_secret:
        if config.allow_unsigned_webhooks:
            warnings.append(
                "app_secret is not set - webhook signature verification is DISABLED "
                "(unsafe for production)"
            )
        else:
            errors.append(
                "app_secret is required to verify webhook signatures "
                "(set allow_unsigned_webhooks for local development)"
            )

    if not config.verify_token or config.verify_token == DEFAULT_VERIFY_TOKEN:
        warnings.append("verify_token is not set - using default (change this for security)")

    if config.dm_policy == "allowlist" and not config.allow_from:
        warnings.append("dm_policy is 'allowlist' but allow_from is empty - all senders are blocked")

    return ConfigValidation(errors=tuple(errors), warnings=tuple(warnings))
