# syncbridge/models/price_history.py
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index, Text, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from syncbridge.database import Base


class PriceHistory(Base):
    """One row per accepted price change and the push it produced."""
    __tablename__ = "price_history"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(100), ForeignKey("product_mappings.sku"), nullable=False, index=True)

    source_platform = Column(String(20), nullable=False)
    target_platform = Column(String(20), nullable=False)
    source_price = Column(Float, nullable=False)
    exchange_rate = Column(Float, nullable=False)
    margin_multiplier = Column(Float, nullable=False)
    computed_price = Column(Float, nullable=False)

    sync_status = Column(String(20), nullable=False, default="pending", index=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)

    mapping = relationship("ProductMapping", back_populates="price_history")

    __table_args__ = (
        # Price changes are rate-bound: at most one push in flight per SKU
        Index(
            "uq_price_history_pending_sku",
            "sku",
            unique=True,
            postgresql_where=text("sync_status = 'pending'"),
            sqlite_where=text("sync_status = 'pending'"),
        ),
    )

    def __repr__(self):
        return (f"<PriceHistory(id={self.id}, sku='{self.sku}', {self.source_platform}->{self.target_platform}, "
                f"{self.source_price} -> {self.computed_price}, status='{self.sync_status}')>")
