# syncbridge/routes/webhooks.py
import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import SYNCED_PLATFORMS, WebhookStatus
from syncbridge.core.exceptions import ValidationError
from syncbridge.dependencies import get_db, get_platforms, get_queue_consumer
from syncbridge.integrations.base import PlatformInterface
from syncbridge.services.signature_verifier import SignatureVerifier
from syncbridge.services.webhook_processor import WebhookProcessor, decode_body

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

WEBHOOK_SOURCES = {p.value for p in SYNCED_PLATFORMS}


async def verify_webhook_signature(
    source: str,
    request: Request,
    settings: Settings = Depends(get_settings),
) -> bytes:
    """Verify the platform signature over the raw body; returns the body."""
    if source not in WEBHOOK_SOURCES:
        raise HTTPException(status_code=404, detail=f"Unknown webhook source: {source}")

    body = await request.body()
    if not SignatureVerifier(settings).verify(source, body, request.headers):
        raise HTTPException(status_code=401, detail="Invalid signature")
    return body


@router.post("/webhooks/{source}")
async def receive_webhook(
    source: str,
    request: Request,
    body: bytes = Depends(verify_webhook_signature),
    db: AsyncSession = Depends(get_db),
    platforms: Dict[str, PlatformInterface] = Depends(get_platforms),
    queue_consumer=Depends(get_queue_consumer),
    settings: Settings = Depends(get_settings),
):
    """
    Receive a platform webhook. Always acknowledges authenticated deliveries
    with 200 so the platform does not keep redelivering; per-line results are
    in the response body and the ledger.
    """
    try:
        payload = decode_body(body)
    except ValidationError as e:
        logger.warning(f"Rejected {source} webhook: {e}")
        return {"status": WebhookStatus.REJECTED.value, "detail": str(e)}

    topic = request.headers.get("X-Shopify-Topic") or request.headers.get("X-Naver-Event-Type")
    processor = WebhookProcessor(db, platforms, settings, queue_consumer=queue_consumer)
    return await processor.process(source, topic, payload)
