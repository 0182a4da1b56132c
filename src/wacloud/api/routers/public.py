"""Public routes that do not depend on the provider."""

from fastapi import APIRouter

from wacloud.infra.settings import CHANNEL_ID

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe for external monitoring."""
    return {"status": "ok", "channel": CHANNEL_ID}
