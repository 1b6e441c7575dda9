# syncbridge/services/transaction_ledger.py
"""
Idempotent inventory transaction ledger.

Deduplication happens in the database: rows derived from an order are
covered by the partial unique index on (order_id, order_line_item_id,
transaction_type), so two deliveries of the same webhook racing each other
cannot both insert. There is deliberately no read-before-write check.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.core.enums import Platform, TransactionSyncStatus, TransactionType
from syncbridge.core.exceptions import DuplicateEventError, NotFoundError, ValidationError
from syncbridge.models.inventory_transaction import InventoryTransaction

logger = logging.getLogger(__name__)


@dataclass
class LedgerEntry:
    """An inventory event about to be recorded."""
    sku: str
    platform: Platform
    transaction_type: TransactionType
    quantity_delta: int
    order_id: Optional[str] = None
    order_line_item_id: Optional[str] = None
    previous_quantity: Optional[int] = None
    new_quantity: Optional[int] = None
    performed_by: Optional[str] = None
    reason: Optional[str] = None

    def __post_init__(self):
        if self.order_line_item_id is not None and self.order_id is None:
            raise ValidationError("order_line_item_id requires an order_id")
        if self.order_id is not None and self.order_line_item_id is None:
            # Whole-order events still need a stable key part
            self.order_line_item_id = ""


@dataclass
class RecordResult:
    created: bool
    transaction: Optional[InventoryTransaction]


@dataclass
class SyncOutcome:
    """Result of pushing a transaction to the counterpart platform."""
    success: bool
    error_message: Optional[str] = None
    previous_quantity: Optional[int] = None
    new_quantity: Optional[int] = None

    @classmethod
    def completed(cls, previous_quantity: Optional[int] = None, new_quantity: Optional[int] = None):
        return cls(True, None, previous_quantity, new_quantity)

    @classmethod
    def failed(cls, error_message: str):
        return cls(False, error_message)


class TransactionLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _insert(self, entry: LedgerEntry) -> InventoryTransaction:
        transaction = InventoryTransaction(
            sku=entry.sku,
            platform=Platform(entry.platform).value,
            transaction_type=TransactionType(entry.transaction_type).value,
            quantity_delta=entry.quantity_delta,
            previous_quantity=entry.previous_quantity,
            new_quantity=entry.new_quantity,
            order_id=entry.order_id,
            order_line_item_id=entry.order_line_item_id,
            performed_by=entry.performed_by,
            reason=entry.reason,
            sync_status=TransactionSyncStatus.PENDING.value,
        )
        self.db.add(transaction)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if entry.order_id is None:
                raise
            raise DuplicateEventError(
                entry.order_id, entry.order_line_item_id, TransactionType(entry.transaction_type).value
            ) from e
        return transaction

    async def find_by_event(self, order_id: str, order_line_item_id: str, transaction_type) -> Optional[InventoryTransaction]:
        stmt = select(InventoryTransaction).where(
            InventoryTransaction.order_id == order_id,
            InventoryTransaction.order_line_item_id == order_line_item_id,
            InventoryTransaction.transaction_type == TransactionType(transaction_type).value,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def record_if_new(self, entry: LedgerEntry) -> RecordResult:
        """
        Insert the transaction unless its event key already exists.

        Returns created=False with the existing row when a duplicate is hit.
        Entries without an order id are always inserted.
        """
        try:
            transaction = await self._insert(entry)
        except DuplicateEventError as e:
            logger.info(f"Duplicate event skipped: {e}")
            existing = await self.find_by_event(
                e.order_id, e.order_line_item_id, e.transaction_type
            )
            return RecordResult(created=False, transaction=existing)

        logger.debug(f"Recorded transaction {transaction.id} for {entry.sku}")
        return RecordResult(created=True, transaction=transaction)

    async def claim_for_retry(self, transaction_id: int) -> bool:
        """
        Move a failed transaction back to pending so exactly one caller retries it.

        The status check and the update are a single statement; concurrent
        callers for the same row get True at most once.
        """
        result = await self.db.execute(
            update(InventoryTransaction)
            .where(
                InventoryTransaction.id == transaction_id,
                InventoryTransaction.sync_status == TransactionSyncStatus.FAILED.value,
            )
            .values(sync_status=TransactionSyncStatus.PENDING.value, error_message=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        claimed = result.rowcount == 1
        if claimed:
            logger.info(f"Claimed failed transaction {transaction_id} for retry")
        return claimed

    async def mark_synced(self, transaction_id: int, outcome: SyncOutcome) -> InventoryTransaction:
        """Flip a transaction to completed or failed. Rows are never deleted here."""
        transaction = await self.db.get(InventoryTransaction, transaction_id, populate_existing=True)
        if transaction is None:
            raise NotFoundError(f"Inventory transaction {transaction_id} not found")

        transaction.synced_at = datetime.now(timezone.utc)
        if outcome.success:
            transaction.sync_status = TransactionSyncStatus.COMPLETED.value
            transaction.error_message = None
            if outcome.previous_quantity is not None:
                transaction.previous_quantity = outcome.previous_quantity
            if outcome.new_quantity is not None:
                transaction.new_quantity = outcome.new_quantity
        else:
            transaction.sync_status = TransactionSyncStatus.FAILED.value
            transaction.error_message = outcome.error_message

        await self.db.commit()
        return transaction

    async def history(self, sku: str, limit: int = 100) -> List[InventoryTransaction]:
        stmt = (
            select(InventoryTransaction)
            .where(InventoryTransaction.sku == sku.strip().upper())
            .order_by(InventoryTransaction.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def failed_since(self, since: datetime) -> List[InventoryTransaction]:
        stmt = (
            select(InventoryTransaction)
            .where(
                InventoryTransaction.sync_status == TransactionSyncStatus.FAILED.value,
                InventoryTransaction.created_at >= since,
            )
            .order_by(InventoryTransaction.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def purge_older_than(self, days: int) -> int:
        """Housekeeping: drop completed rows past the retention window."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        result = await self.db.execute(
            delete(InventoryTransaction)
            .where(
                InventoryTransaction.sync_status == TransactionSyncStatus.COMPLETED.value,
                InventoryTransaction.created_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0
