# syncbridge/services/webhook_processor.py
"""
Turns authenticated webhook payloads into sync events and runs them.

Shopify topics (X-Shopify-Topic header):
    orders/create, orders/paid  -> order.create
    orders/cancelled            -> order.cancel
    products/update             -> price.update + inventory.update per variant

Naver notifications carry their type in the body:
    {"eventType": "ORDER_PAYED" | "ORDER_CANCELED" | "STOCK_CHANGED" | "PRICE_CHANGED",
     "data": {...}}

Anything else is ignored (acknowledged with 200 so the platform stops
redelivering).
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import EventStatus, Platform, WebhookStatus
from syncbridge.core.exceptions import ValidationError
from syncbridge.integrations.base import PlatformInterface
from syncbridge.integrations.events import QueueMessage, SyncEvent, parse_event
from syncbridge.models.webhook import WebhookEvent
from syncbridge.services.sync_services import SyncService

logger = logging.getLogger(__name__)

SHOPIFY_ORDER_CREATE_TOPICS = {"orders/create", "orders/paid"}
SHOPIFY_ORDER_CANCEL_TOPICS = {"orders/cancelled"}
SHOPIFY_PRODUCT_TOPICS = {"products/update"}

NAVER_ORDER_CREATE_TYPES = {"ORDER_PAYED", "ORDER_PAID"}
NAVER_ORDER_CANCEL_TYPES = {"ORDER_CANCELED", "ORDER_CANCELLED", "CLAIM_CANCEL_DONE"}


def _shopify_line_items(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    items = []
    for line in payload.get("line_items") or []:
        # Custom items and gift cards have neither a SKU nor a variant
        if not line.get("sku") and not line.get("variant_id"):
            continue
        items.append({
            "line_item_id": line.get("id"),
            "sku": line.get("sku") or None,
            "platform_product_id": line.get("variant_id"),
            "quantity": line.get("quantity"),
        })
    return items


def _parse_shopify(topic: str, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    topic = (topic or "").lower()
    if topic in SHOPIFY_ORDER_CREATE_TOPICS or topic in SHOPIFY_ORDER_CANCEL_TOPICS:
        items = _shopify_line_items(payload)
        if not items:
            return []
        kind = "order.create" if topic in SHOPIFY_ORDER_CREATE_TOPICS else "order.cancel"
        return [{
            "kind": kind,
            "source": "shopify",
            "order_id": payload.get("id"),
            "line_items": items,
            "occurred_at": payload.get("updated_at") or payload.get("created_at"),
        }]

    if topic in SHOPIFY_PRODUCT_TOPICS:
        events = []
        for variant in payload.get("variants") or []:
            ref = {
                "source": "shopify",
                "sku": variant.get("sku") or None,
                "platform_product_id": variant.get("id"),
                "occurred_at": payload.get("updated_at"),
            }
            if variant.get("price") not in (None, ""):
                events.append({**ref, "kind": "price.update", "price": variant.get("price")})
            if variant.get("inventory_quantity") is not None:
                events.append({**ref, "kind": "inventory.update", "quantity": variant.get("inventory_quantity")})
        return events

    return []


def _parse_naver(topic: str, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    event_type = (topic or payload.get("eventType") or "").upper()
    data = payload.get("data") or {}

    if event_type in NAVER_ORDER_CREATE_TYPES or event_type in NAVER_ORDER_CANCEL_TYPES:
        items = [
            {
                "line_item_id": order.get("productOrderId"),
                "sku": order.get("sellerManagementCode") or None,
                "platform_product_id": order.get("productId") or order.get("originProductNo"),
                "quantity": order.get("quantity"),
            }
            for order in data.get("productOrders") or []
        ]
        if not items:
            return []
        kind = "order.create" if event_type in NAVER_ORDER_CREATE_TYPES else "order.cancel"
        return [{
            "kind": kind,
            "source": "naver",
            "order_id": data.get("orderId"),
            "line_items": items,
            "occurred_at": payload.get("timestamp"),
        }]

    ref = {
        "source": "naver",
        "sku": data.get("sellerManagementCode") or None,
        "platform_product_id": data.get("productId") or data.get("originProductNo"),
    }
    if event_type == "STOCK_CHANGED":
        return [{**ref, "kind": "inventory.update", "quantity": data.get("stockQuantity")}]
    if event_type == "PRICE_CHANGED":
        return [{**ref, "kind": "price.update", "price": data.get("salePrice")}]
    return []


def parse_webhook(source: str, topic: Optional[str], payload: Dict[str, Any]) -> List[SyncEvent]:
    """
    Map a platform webhook onto sync events.

    Returns an empty list for topics the sync engine does not handle and
    raises ValidationError when a handled topic has a malformed payload.
    """
    if not isinstance(payload, dict):
        raise ValidationError("webhook payload must be a JSON object")

    platform = Platform(source)
    if platform == Platform.SHOPIFY:
        raw_events = _parse_shopify(topic, payload)
    elif platform == Platform.NAVER:
        raw_events = _parse_naver(topic, payload)
    else:
        raise ValidationError(f"{source} does not send webhooks")

    return [parse_event(raw) for raw in raw_events]


class WebhookProcessor:
    """Audits a webhook, parses it and runs or enqueues the resulting events."""

    def __init__(
        self,
        db: AsyncSession,
        platforms: Dict[str, PlatformInterface],
        settings: Optional[Settings] = None,
        queue_consumer=None,
    ):
        self.db = db
        self.platforms = platforms
        self.settings = settings or get_settings()
        self.queue_consumer = queue_consumer

    async def _audit(self, source: str, topic: Optional[str], payload: Any) -> int:
        event = WebhookEvent(
            source=source,
            topic=topic,
            payload=payload,
            status=WebhookStatus.RECEIVED.value,
        )
        self.db.add(event)
        await self.db.commit()
        return event.id

    async def _finish(self, audit_id: int, status: WebhookStatus, error: Optional[str] = None):
        event = await self.db.get(WebhookEvent, audit_id, populate_existing=True)
        event.status = status.value
        event.error_message = error
        event.processed_at = datetime.now(timezone.utc)
        await self.db.commit()

    async def process(self, source: str, topic: Optional[str], payload: Any) -> Dict[str, Any]:
        audit_id = await self._audit(source, topic, payload)

        try:
            events = parse_webhook(source, topic, payload)
        except ValidationError as e:
            logger.warning(f"Rejected {source} webhook ({topic}): {e}")
            await self._finish(audit_id, WebhookStatus.REJECTED, str(e))
            return {"status": WebhookStatus.REJECTED.value, "detail": str(e)}

        if not events:
            logger.info(f"Ignoring {source} webhook topic {topic}")
            await self._finish(audit_id, WebhookStatus.IGNORED)
            return {"status": WebhookStatus.IGNORED.value}

        if self.queue_consumer is not None:
            for event in events:
                await self.queue_consumer.enqueue(QueueMessage.for_event(event))
            await self._finish(audit_id, WebhookStatus.QUEUED)
            return {"status": WebhookStatus.QUEUED.value, "events": len(events)}

        sync_service = SyncService(self.db, self.platforms, self.settings)
        outcomes = []
        for event in events:
            outcomes.extend(await sync_service.handle_event(event))

        failed = [o for o in outcomes if o.status == EventStatus.FAILED]
        if failed:
            await self._finish(audit_id, WebhookStatus.FAILED, "; ".join(o.message or "" for o in failed))
        else:
            await self._finish(audit_id, WebhookStatus.PROCESSED)
        return {"status": WebhookStatus.PROCESSED.value, "outcomes": [o.to_dict() for o in outcomes]}


def decode_body(raw_body: bytes) -> Any:
    try:
        return json.loads(raw_body or b"null")
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"webhook body is not valid JSON: {e}") from e


async def cleanup_webhook_events(db: AsyncSession, days: int) -> int:
    """Delete audit rows older than the retention window."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    result = await db.execute(
        delete(WebhookEvent)
        .where(WebhookEvent.received_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0
