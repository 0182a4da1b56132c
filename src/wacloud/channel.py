"""Channel lifecycle - start/stop webhook listeners and bridge to the dispatcher.

The host supplies configuration and a dispatcher; this module wires one
InboundGateway, WhatsAppCloudClient and uvicorn server per account. Every
dependency is passed in explicitly; there is no process-wide runtime
handle to initialize first.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import uvicorn

from wacloud.api.factory import create_app
from wacloud.infra.settings import (
    CHANNEL_ID,
    WhatsAppCloudConfig,
    config_from_mapping,
    validate_config,
)
from wacloud.observability.logging import get_logger
from wacloud.observability.redaction import hash_identifier, id_prefix, safe_log_context
from wacloud.tasks.detached import DetachedTasks
from wacloud.whatsapp.delivery import DeliveryAdapter
from wacloud.whatsapp.gateway import InboundGateway, StatusHandler
from wacloud.whatsapp.meta_sender import WhatsAppCloudClient
from wacloud.whatsapp.models import InboundMessage, SendResult, StatusUpdate

logger = get_logger(__name__)

DEFAULT_ACCOUNT_ID = "default"

Deliver = Callable[[Mapping[str, Any]], Awaitable[list[SendResult]]]


class ReplyDispatcher(Protocol):
    """External collaborator that turns a session context into replies.

    It may call ``deliver`` zero or more times with
    ``{"text"?, "mediaUrl"?, "mediaUrls"?}``.
    """

    def __call__(self, context: dict[str, Any], deliver: Deliver) -> Awaitable[None]: ...


@dataclass(frozen=True)
class ResolvedAccount:
    account_id: str
    config: WhatsAppCloudConfig
    name: str | None = None

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def token_source(self) -> str:
        return "config" if self.config.access_token else "none"


def _channel_section(raw_cfg: Mapping[str, Any] | None) -> Mapping[str, Any]:
    channels = (raw_cfg or {}).get("channels")
    if isinstance(channels, Mapping) and isinstance(channels.get(CHANNEL_ID), Mapping):
        return channels[CHANNEL_ID]
    return {}


def list_account_ids(raw_cfg: Mapping[str, Any] | None) -> list[str]:
    """Account IDs configured for the channel (a disabled channel has none)."""
    if _channel_section(raw_cfg).get("enabled") is False:
        return []
    return [DEFAULT_ACCOUNT_ID]


def resolve_account(
    raw_cfg: Mapping[str, Any] | None,
    account_id: str | None = None,
) -> ResolvedAccount:
    """Resolve the host config mapping into a typed account."""
    section = _channel_section(raw_cfg)
    name = section.get("name")
    return ResolvedAccount(
        account_id=account_id or DEFAULT_ACCOUNT_ID,
        config=config_from_mapping(raw_cfg),
        name=str(name) if name else None,
    )


def build_session_context(message: InboundMessage, account: ResolvedAccount) -> dict[str, Any]:
    """Map a canonical inbound message to the dispatcher's session context."""
    context: dict[str, Any] = {
        "body": message.text,
        "raw_body": message.text,
        "from": message.sender_id,
        "to": account.config.phone_number_id,
        "session_key": f"{CHANNEL_ID}:{message.sender_id}",
        "account_id": account.account_id,
        "message_sid": message.message_id,
        "chat_type": "direct",
        "sender_name": message.sender_name,
        "sender_id": message.sender_id,
        "provider": CHANNEL_ID,
        "originating_channel": CHANNEL_ID,
        "originating_to": message.sender_id,
        "timestamp_ms": message.timestamp * 1000,
        "kind": message.kind.value,
    }
    if message.quoted_message_id:
        context["reply_to_id"] = message.quoted_message_id
    if message.media is not None:
        context["media"] = {
            "media_id": message.media.media_id,
            "mime_type": message.media.mime_type,
            "caption": message.media.caption,
            "filename": message.media.filename,
        }
    if message.interactive_reply is not None:
        context["interactive_reply"] = {
            "id": message.interactive_reply.reply_id,
            "title": message.interactive_reply.title,
            "subkind": message.interactive_reply.subkind,
        }
    return context


def make_message_handler(
    account: ResolvedAccount,
    client: WhatsAppCloudClient,
    dispatcher: ReplyDispatcher,
    tasks: DetachedTasks,
) -> Callable[[InboundMessage], Awaitable[None]]:
    """Build the gateway's on_message callback for one account.

    Shows a typing indicator (detached), then awaits the dispatcher with a
    DeliveryAdapter bound to the sender, bounded by dispatch_timeout_seconds.
    """

    async def on_message(message: InboundMessage) -> None:
        tasks.spawn(
            client.send_typing_indicator(message.message_id),
            name=f"typing:{id_prefix(message.message_id)}",
        )

        deliver = DeliveryAdapter(client, message.sender_id)
        context = build_session_context(message, account)

        logger.info(
            "dispatching inbound message",
            extra={
                "extra_fields": safe_log_context(
                    account_id=account.account_id,
                    from_hash=hash_identifier(message.sender_id),
                    message_id_prefix=id_prefix(message.message_id),
                )
            },
        )
        try:
            await asyncio.wait_for(
                dispatcher(context, deliver.deliver),
                timeout=account.config.dispatch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "dispatcher timed out",
                extra={
                    "extra_fields": safe_log_context(
                        message_id_prefix=id_prefix(message.message_id),
                        timeout_seconds=account.config.dispatch_timeout_seconds,
                    )
                },
            )

    return on_message


def _log_status(update: StatusUpdate) -> None:
    logger.debug(
        "message status update",
        extra={
            "extra_fields": safe_log_context(
                message_id_prefix=id_prefix(update.message_id),
                status=update.status,
                recipient_hash=hash_identifier(update.recipient_id),
            )
        },
    )


@dataclass
class _RunningAccount:
    account: ResolvedAccount
    client: WhatsAppCloudClient
    gateway: InboundGateway
    server: uvicorn.Server
    serve_task: asyncio.Task[Any]
    started_at: float
    tasks: DetachedTasks = field(default_factory=DetachedTasks)


class ChannelGateway:
    """Starts and stops one webhook listener per account.

    Args:
        dispatcher: Receives session contexts and a deliver callback.
        status_handler: Receives delivery status updates. Defaults to a
                        debug log line.
    """

    def __init__(
        self,
        dispatcher: ReplyDispatcher,
        status_handler: StatusHandler | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._status_handler = status_handler or _log_status
        self._running: dict[str, _RunningAccount] = {}
        self._last_stop_at: dict[str, float] = {}
        self._last_error: dict[str, str] = {}

    def is_running(self, account_id: str) -> bool:
        return account_id in self._running

    def build_gateway(
        self,
        account: ResolvedAccount,
        client: WhatsAppCloudClient,
        tasks: DetachedTasks,
    ) -> InboundGateway:
        """Wire the inbound pipeline for account (no server involved)."""
        return InboundGateway(
            config=account.config,
            client=client,
            on_message=make_message_handler(account, client, self._dispatcher, tasks),
            on_status=self._status_handler,
            tasks=tasks,
        )

    async def start_account(self, account: ResolvedAccount) -> bool:
        """Validate config and start the account's webhook listener.

        Returns:
            True if the listener was started, False if the account is
            disabled, misconfigured or already running.
        """
        ctx = safe_log_context(account_id=account.account_id)
        config = account.config

        if not account.enabled:
            logger.info("channel is disabled", extra={"extra_fields": ctx})
            return False

        if self.is_running(account.account_id):
            logger.warning("account already running", extra={"extra_fields": ctx})
            return False

        validation = validate_config(config)
        for error in validation.errors:
            logger.error(
                "config error",
                extra={"extra_fields": safe_log_context(**ctx, error=error)},
            )
        if not validation.valid:
            self._last_error[account.account_id] = "; ".join(validation.errors)
            return False
        for warning in validation.warnings:
            logger.warning(
                "config warning",
                extra={"extra_fields": safe_log_context(**ctx, warning=warning)},
            )

        client = WhatsAppCloudClient(config)
        tasks = DetachedTasks()
        gateway = self.build_gateway(account, client, tasks)
        server = uvicorn.Server(
            uvicorn.Config(
                create_app(gateway),
                host=config.webhook_host,
                port=config.webhook_port,
                log_config=None,
                access_log=False,
            )
        )
        serve_task = asyncio.get_running_loop().create_task(
            server.serve(), name=f"webhook-server:{account.account_id}"
        )
        self._running[account.account_id] = _RunningAccount(
            account=account,
            client=client,
            gateway=gateway,
            server=server,
            serve_task=serve_task,
            started_at=time.time(),
            tasks=tasks,
        )
        self._last_error.pop(account.account_id, None)

        logger.info(
            "channel started",
            extra={
                "extra_fields": safe_log_context(
                    **ctx,
                    port=config.webhook_port,
                    webhook_path=config.webhook_path,
                    dm_policy=config.dm_policy,
                    allow_from_count=len(config.allow_from),
                )
            },
        )
        return True

    async def stop_account(self, account_id: str, timeout: float = 10.0) -> bool:
        """Stop the account's listener and release its HTTP client."""
        running = self._running.pop(account_id, None)
        if running is None:
            return False

        running.server.should_exit = True
        try:
            await asyncio.wait_for(running.serve_task, timeout=timeout)
        except asyncio.TimeoutError:
            running.serve_task.cancel()
            logger.warning(
                "webhook server did not stop in time",
                extra={"extra_fields": safe_log_context(account_id=account_id)},
            )
        except Exception as e:
            self._last_error[account_id] = str(e)
            logger.exception(
                "webhook server stopped with error",
                extra={"extra_fields": safe_log_context(account_id=account_id)},
            )

        await running.tasks.drain(timeout=timeout)
        await running.client.aclose()
        self._last_stop_at[account_id] = time.time()
        logger.info(
            "channel stopped",
            extra={"extra_fields": safe_log_context(account_id=account_id)},
        )
        return True

    async def stop_all(self) -> None:
        for account_id in list(self._running):
            await self.stop_account(account_id)

    def describe_account(self, account: ResolvedAccount) -> dict[str, Any]:
        """Status snapshot for the host's channel status view."""
        running = self._running.get(account.account_id)
        return {
            "account_id": account.account_id,
            "name": account.name,
            "enabled": account.enabled,
            "configured": account.config.is_configured,
            "token_source": account.token_source,
            "running": running is not None,
            "last_start_at": running.started_at if running else None,
            "last_stop_at": self._last_stop_at.get(account.account_id),
            "last_error": self._last_error.get(account.account_id),
            "mode": "webhook",
        }


def collect_status_issues(accounts: Sequence[ResolvedAccount]) -> list[dict[str, str]]:
    """List configuration problems per account for the host status command."""
    issues: list[dict[str, str]] = []
    for account in accounts:
        for error in validate_config(account.config).errors:
            issues.append(
                {
                    "channel": CHANNEL_ID,
                    "account_id": account.account_id,
                    "kind": "config",
                    "message": error,
                }
            )
    return issues
