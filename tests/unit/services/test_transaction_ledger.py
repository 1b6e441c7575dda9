# tests/unit/services/test_transaction_ledger.py
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from syncbridge.core.enums import Platform, TransactionSyncStatus, TransactionType
from syncbridge.core.exceptions import NotFoundError, ValidationError
from syncbridge.models.inventory_transaction import InventoryTransaction
from syncbridge.services.transaction_ledger import LedgerEntry, SyncOutcome, TransactionLedger


async def _count(db_session):
    return (await db_session.execute(select(func.count(InventoryTransaction.id)))).scalar_one()


def _sale(order_id="5001", line="L1", qty=2):
    return LedgerEntry(
        sku="GTR-001",
        platform=Platform.SHOPIFY,
        transaction_type=TransactionType.SALE,
        quantity_delta=-qty,
        order_id=order_id,
        order_line_item_id=line,
    )


async def test_first_record_is_created(db_session, make_mapping):
    await make_mapping()
    ledger = TransactionLedger(db_session)

    result = await ledger.record_if_new(_sale())

    assert result.created is True
    assert result.transaction.id is not None
    assert result.transaction.sync_status == TransactionSyncStatus.PENDING.value
    assert await _count(db_session) == 1


async def test_same_event_twice_returns_existing_row(db_session, make_mapping):
    await make_mapping()
    ledger = TransactionLedger(db_session)

    first_id = (await ledger.record_if_new(_sale())).transaction.id
    second = await ledger.record_if_new(_sale())

    assert second.created is False
    assert second.transaction.id == first_id
    assert await _count(db_session) == 1


async def test_cancel_of_same_line_is_a_different_event(db_session, make_mapping):
    await make_mapping()
    ledger = TransactionLedger(db_session)

    await ledger.record_if_new(_sale())
    restock = LedgerEntry(
        sku="GTR-001",
        platform=Platform.SHOPIFY,
        transaction_type=TransactionType.RESTOCK,
        quantity_delta=2,
        order_id="5001",
        order_line_item_id="L1",
    )
    result = await ledger.record_if_new(restock)

    assert result.created is True
    assert await _count(db_session) == 2


async def test_manual_adjustments_are_never_deduplicated(db_session, make_mapping):
    await make_mapping()
    ledger = TransactionLedger(db_session)
    entry = dict(
        sku="GTR-001",
        platform=Platform.MANUAL,
        transaction_type=TransactionType.ADJUSTMENT,
        quantity_delta=-1,
        performed_by="admin",
        reason="damaged in storage",
    )

    first = await ledger.record_if_new(LedgerEntry(**entry))
    second = await ledger.record_if_new(LedgerEntry(**entry))

    assert first.created and second.created
    assert first.transaction.id != second.transaction.id
    assert await _count(db_session) == 2


def test_line_item_without_order_is_invalid():
    with pytest.raises(ValidationError):
        LedgerEntry(
            sku="GTR-001",
            platform=Platform.SHOPIFY,
            transaction_type=TransactionType.SALE,
            quantity_delta=-1,
            order_line_item_id="L1",
        )


async def test_mark_synced_completed_and_failed(db_session, make_mapping):
    await make_mapping()
    ledger = TransactionLedger(db_session)
    ok = (await ledger.record_if_new(_sale(order_id="1"))).transaction
    bad = (await ledger.record_if_new(_sale(order_id="2"))).transaction

    await ledger.mark_synced(ok.id, SyncOutcome.completed(previous_quantity=10, new_quantity=8))
    await ledger.mark_synced(bad.id, SyncOutcome.failed("naver API returned 503"))

    ok = await db_session.get(InventoryTransaction, ok.id, populate_existing=True)
    bad = await db_session.get(InventoryTransaction, bad.id, populate_existing=True)
    assert ok.sync_status == "completed"
    assert ok.previous_quantity == 10 and ok.new_quantity == 8
    assert ok.synced_at is not None
    assert bad.sync_status == "failed"
    assert bad.error_message == "naver API returned 503"
    assert await _count(db_session) == 2


async def test_mark_synced_unknown_transaction(db_session):
    with pytest.raises(NotFoundError):
        await TransactionLedger(db_session).mark_synced(999, SyncOutcome.completed())


async def test_history_is_newest_first(db_session, make_mapping):
    await make_mapping()
    ledger = TransactionLedger(db_session)
    for order_id in ("1", "2", "3"):
        await ledger.record_if_new(_sale(order_id=order_id))

    history = await ledger.history("gtr-001", limit=2)

    assert [tx.order_id for tx in history] == ["3", "2"]


async def test_failed_since(db_session, make_mapping):
    await make_mapping()
    ledger = TransactionLedger(db_session)
    tx = (await ledger.record_if_new(_sale())).transaction
    await ledger.mark_synced(tx.id, SyncOutcome.failed("boom"))

    failed = await ledger.failed_since(datetime.now(timezone.utc) - timedelta(days=1))

    assert [f.id for f in failed] == [tx.id]


async def test_concurrent_recording_creates_one_row(session_factory, db_session, make_mapping):
    await make_mapping()

    async def record():
        async with session_factory() as session:
            result = await TransactionLedger(session).record_if_new(_sale(order_id="7001"))
            return result.created

    results = await asyncio.gather(record(), record())

    assert sorted(results) == [False, True]
    assert await _count(db_session) == 1


async def test_claim_for_retry_only_takes_failed_rows(db_session, make_mapping):
    await make_mapping()
    ledger = TransactionLedger(db_session)
    failed = (await ledger.record_if_new(_sale(order_id="1"))).transaction
    pending = (await ledger.record_if_new(_sale(order_id="2"))).transaction
    await ledger.mark_synced(failed.id, SyncOutcome.failed("naver API returned 503"))

    assert await ledger.claim_for_retry(failed.id) is True
    assert await ledger.claim_for_retry(failed.id) is False
    assert await ledger.claim_for_retry(pending.id) is False

    claimed = await db_session.get(InventoryTransaction, failed.id, populate_existing=True)
    assert claimed.sync_status == TransactionSyncStatus.PENDING.value
    assert claimed.error_message is None


async def test_concurrent_claims_have_one_winner(session_factory, db_session, make_mapping):
    await make_mapping()
    ledger = TransactionLedger(db_session)
    tx = (await ledger.record_if_new(_sale(order_id="7002"))).transaction
    await ledger.mark_synced(tx.id, SyncOutcome.failed("boom"))

    async def claim():
        async with session_factory() as session:
            return await TransactionLedger(session).claim_for_retry(tx.id)

    results = await asyncio.gather(claim(), claim(), claim())

    assert sorted(results) == [False, False, True]
