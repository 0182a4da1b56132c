"""FastAPI application factory for the WhatsApp Cloud webhook listener."""

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wacloud.observability.correlation import CORRELATION_ID_HEADER, bind_correlation_id
from wacloud.whatsapp.gateway import InboundGateway

from .routers import public
from .routes import webhooks_whatsapp_cloud


def create_app(gateway: InboundGateway) -> FastAPI:
    """Create the webhook listener app for one account.

    Args:
        gateway: Inbound pipeline for the account; its config provides the
                 webhook path.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="WhatsApp Cloud relay",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.gateway = gateway

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with bind_correlation_id(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    # Unknown paths and unsupported methods on known paths are both 404
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code in (404, 405):
            return PlainTextResponse("Not found", status_code=404)
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    app.include_router(public.router)
    app.include_router(webhooks_whatsapp_cloud.build_router(gateway.config.webhook_path))

    return app
