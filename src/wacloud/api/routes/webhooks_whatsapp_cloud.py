"""WhatsApp webhook routes - Meta Cloud API integration.

The webhook path is configurable per account, so the router is built
for a given path instead of being declared at import time. Handlers reach
the InboundGateway through ``request.app.state.gateway``.

IMPORTANT: POST always answers 200 "OK" before processing. Meta retries
on non-2xx, and a retry storm over a forged or malformed payload helps
nobody. Processing runs as a background task once the response is sent.
"""

from fastapi import APIRouter, BackgroundTasks, Header, Query, Request, Response
from fastapi.responses import PlainTextResponse

from wacloud.observability.correlation import current_correlation_id
from wacloud.observability.logging import get_logger
from wacloud.observability.redaction import safe_log_context
from wacloud.whatsapp.gateway import InboundGateway

logger = get_logger(__name__)


def _get_gateway(request: Request) -> InboundGateway:
    return request.app.state.gateway


def build_router(webhook_path: str) -> APIRouter:
    """Create the GET (verification) and POST (events) routes for webhook_path."""
    router = APIRouter(tags=["webhooks"])

    @router.get(webhook_path)
    async def whatsapp_webhook_verify(
        request: Request,
        hub_mode: str | None = Query(None, alias="hub.mode"),
        hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
        hub_challenge: str | None = Query(None, alias="hub.challenge"),
    ) -> Response:
        """Meta webhook verification endpoint.

        Meta sends a GET during webhook setup to verify ownership.

        Returns:
            200 text/plain with hub.challenge if valid.
            403 if invalid.
        """
        challenge = _get_gateway(request).verify_challenge(
            hub_mode, hub_verify_token, hub_challenge
        )
        if challenge is None:
            return PlainTextResponse("Forbidden", status_code=403)
        return PlainTextResponse(challenge, status_code=200)

    @router.post(webhook_path)
    async def whatsapp_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
    ) -> Response:
        """Receive Meta Cloud API webhook events.

        Returns:
            200 "OK" always (Meta requirement).
        """
        correlation_id = current_correlation_id()

        try:
            body_bytes = await request.body()
        except Exception:
            logger.warning(
                "failed to read webhook request body",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
            )
            return PlainTextResponse("OK", status_code=200)

        background_tasks.add_task(
            _get_gateway(request).handle_webhook,
            body_bytes,
            x_hub_signature_256,
            correlation_id,
        )
        return PlainTextResponse("OK", status_code=200)

    return router
