# syncbridge/models/product_mapping.py
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from syncbridge.core.enums import ConflictPolicy, ExchangeRateMode, Platform, SyncStatus
from syncbridge.database import Base


@dataclass(frozen=True)
class PricingPolicy:
    margin_multiplier: float = 1.15
    exchange_rate_mode: ExchangeRateMode = ExchangeRateMode.AUTO
    manual_rate: Optional[float] = None


class ProductMapping(Base):
    """
    Binds one merchant SKU to its Shopify variant and Naver product, together
    with the pricing policy and the conflict policy used when the two
    platforms disagree.
    """
    __tablename__ = "product_mappings"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(100), unique=True, nullable=False, index=True)

    # --- Platform identifiers ---
    shopify_variant_id = Column(String, nullable=True, index=True)
    naver_product_id = Column(String, nullable=True, index=True)

    # --- Pricing policy ---
    margin_multiplier = Column(Float, nullable=False, default=1.15)
    exchange_rate_mode = Column(String(20), nullable=False, default=ExchangeRateMode.AUTO.value)
    manual_rate = Column(Float, nullable=True)

    conflict_policy = Column(String(30), nullable=False, default=ConflictPolicy.NAVER_PRIORITY.value)

    # --- Sync state (written by the orchestrator only) ---
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    sync_status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value, index=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    transactions = relationship("InventoryTransaction", back_populates="mapping")
    price_history = relationship("PriceHistory", back_populates="mapping")

    @property
    def pricing_policy(self) -> PricingPolicy:
        return PricingPolicy(
            margin_multiplier=self.margin_multiplier,
            exchange_rate_mode=ExchangeRateMode(self.exchange_rate_mode),
            manual_rate=self.manual_rate,
        )

    def platform_id(self, platform) -> Optional[str]:
        """External identifier of this SKU on the given platform."""
        platform = Platform(platform)
        if platform == Platform.SHOPIFY:
            return self.shopify_variant_id
        if platform == Platform.NAVER:
            return self.naver_product_id
        return None

    def __repr__(self):
        return (f"<ProductMapping(sku='{self.sku}', shopify={self.shopify_variant_id}, "
                f"naver={self.naver_product_id}, active={self.is_active}, status='{self.sync_status}')>")
