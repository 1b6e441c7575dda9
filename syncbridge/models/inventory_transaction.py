# syncbridge/models/inventory_transaction.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, Text, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from syncbridge.core.enums import TransactionSyncStatus
from syncbridge.database import Base


class InventoryTransaction(Base):
    """
    Append-only record of one inventory-affecting occurrence.

    Rows derived from an order carry (order_id, order_line_item_id) and are
    unique per transaction type; manual and scheduled rows have no order id
    and are never deduplicated.
    """
    __tablename__ = "inventory_transactions"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(100), ForeignKey("product_mappings.sku"), nullable=False, index=True)

    # --- Origin ---
    platform = Column(String(20), nullable=False, index=True)  # shopify, naver, manual
    transaction_type = Column(String(20), nullable=False)  # sale, restock, adjustment, sync
    order_id = Column(String, nullable=True)
    order_line_item_id = Column(String, nullable=True)
    performed_by = Column(String, nullable=True)
    reason = Column(Text, nullable=True)

    # --- Quantities ---
    quantity_delta = Column(Integer, nullable=False, default=0)
    previous_quantity = Column(Integer, nullable=True)
    new_quantity = Column(Integer, nullable=True)

    # --- Counterpart push ---
    sync_status = Column(String(20), nullable=False, default=TransactionSyncStatus.PENDING.value, index=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    mapping = relationship("ProductMapping", back_populates="transactions")

    __table_args__ = (
        Index(
            "uq_inventory_tx_event",
            "order_id",
            "order_line_item_id",
            "transaction_type",
            unique=True,
            postgresql_where=text("order_id IS NOT NULL"),
            sqlite_where=text("order_id IS NOT NULL"),
        ),
    )

    @property
    def event_key(self):
        if self.order_id is None:
            return None
        return (self.order_id, self.order_line_item_id, self.transaction_type)

    def __repr__(self):
        return (f"<InventoryTransaction(id={self.id}, sku='{self.sku}', platform='{self.platform}', "
                f"type='{self.transaction_type}', delta={self.quantity_delta}, status='{self.sync_status}')>")
