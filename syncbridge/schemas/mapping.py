"""
Schemas for product mappings and the inventory audit trail.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from syncbridge.core.enums import ConflictPolicy, ExchangeRateMode
from syncbridge.schemas.base import BaseSchema, TimestampedSchema


def normalize_sku(value: str) -> str:
    return value.strip().upper() if isinstance(value, str) else value


class MappingData(BaseSchema):
    """Input for MappingRegistry.upsert (administrative edits)."""
    sku: str = Field(min_length=1, max_length=100)
    shopify_variant_id: Optional[str] = None
    naver_product_id: Optional[str] = None
    margin_multiplier: float = 1.15
    exchange_rate_mode: ExchangeRateMode = ExchangeRateMode.AUTO
    manual_rate: Optional[float] = None
    conflict_policy: Optional[ConflictPolicy] = None
    is_active: bool = True

    @field_validator("sku")
    @classmethod
    def _normalize_sku(cls, value):
        value = normalize_sku(value)
        if not value:
            raise ValueError("sku must not be blank")
        return value


class MappingRead(TimestampedSchema):
    sku: str
    shopify_variant_id: Optional[str] = None
    naver_product_id: Optional[str] = None
    margin_multiplier: float
    exchange_rate_mode: str
    manual_rate: Optional[float] = None
    conflict_policy: str
    is_active: bool
    sync_status: str
    last_synced_at: Optional[datetime] = None
    sync_error: Optional[str] = None


class TransactionRead(BaseSchema):
    id: int
    sku: str
    platform: str
    transaction_type: str
    quantity_delta: int
    previous_quantity: Optional[int] = None
    new_quantity: Optional[int] = None
    order_id: Optional[str] = None
    order_line_item_id: Optional[str] = None
    performed_by: Optional[str] = None
    reason: Optional[str] = None
    sync_status: str
    synced_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class LedgerResponse(BaseSchema):
    sku: str
    mapping: Optional[MappingRead] = None
    transactions: List[TransactionRead] = []
