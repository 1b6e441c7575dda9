"""
Closed set of sync events. Webhook bodies and queue messages are validated
into one of these variants at the ingestion boundary; nothing downstream
handles raw payload dicts.

    order.create      -> sale, SUBTRACT on the counterpart
    order.cancel      -> restock, ADD on the counterpart
    inventory.update  -> absolute quantity from the source platform
    price.update      -> new sale price on the source platform
"""

import json
import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from syncbridge.core.enums import Platform, SYNCED_PLATFORMS
from syncbridge.core.exceptions import ValidationError


class _EventBase(BaseModel):
    source: Platform
    occurred_at: Optional[datetime] = None

    @field_validator("source")
    @classmethod
    def _synced_platform_only(cls, value):
        if value not in SYNCED_PLATFORMS:
            raise ValueError(f"events must originate from {', '.join(p.value for p in SYNCED_PLATFORMS)}")
        return value


class _ProductRef(BaseModel):
    """Identifies the product by SKU or by the source platform's own id."""
    sku: Optional[str] = None
    platform_product_id: Optional[str] = None

    @field_validator("sku")
    @classmethod
    def _normalize_sku(cls, value):
        if value is None:
            return None
        value = value.strip().upper()
        return value or None

    @field_validator("platform_product_id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        if value is None or value == "":
            return None
        return str(value)

    @model_validator(mode="after")
    def _require_reference(self):
        if not self.sku and not self.platform_product_id:
            raise ValueError("either sku or platform_product_id is required")
        return self


class LineItem(_ProductRef):
    line_item_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)

    @field_validator("line_item_id", mode="before")
    @classmethod
    def _stringify_line_id(cls, value):
        return str(value) if value is not None else value


class _OrderEvent(_EventBase):
    order_id: str = Field(min_length=1)
    line_items: List[LineItem] = Field(min_length=1)

    @field_validator("order_id", mode="before")
    @classmethod
    def _stringify_order_id(cls, value):
        return str(value) if value is not None else value


class OrderCreated(_OrderEvent):
    kind: Literal["order.create"] = "order.create"


class OrderCancelled(_OrderEvent):
    kind: Literal["order.cancel"] = "order.cancel"


class InventoryUpdated(_EventBase, _ProductRef):
    kind: Literal["inventory.update"] = "inventory.update"
    quantity: int = Field(ge=0)


class PriceUpdated(_EventBase, _ProductRef):
    kind: Literal["price.update"] = "price.update"
    price: float = Field(gt=0)


SyncEvent = Annotated[
    Union[OrderCreated, OrderCancelled, InventoryUpdated, PriceUpdated],
    Field(discriminator="kind"),
]

_event_adapter = TypeAdapter(SyncEvent)


def parse_event(data: Union[Dict[str, Any], str, bytes]) -> SyncEvent:
    """Validate a raw dict or JSON document into an event variant."""
    try:
        if isinstance(data, (str, bytes)):
            return _event_adapter.validate_json(data)
        return _event_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid sync event: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e


def dump_event(event: SyncEvent) -> str:
    return event.model_dump_json()


class QueueMessage(BaseModel):
    """Envelope for an event travelling through the sync queue."""
    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    body: str
    attempts: int = 0

    @classmethod
    def for_event(cls, event: SyncEvent) -> "QueueMessage":
        return cls(body=dump_event(event))

    def payload(self) -> Dict[str, Any]:
        return json.loads(self.body)
