# tests/unit/services/test_sync_service.py
import asyncio

import pytest
from sqlalchemy import func, select

from syncbridge.core.enums import ConflictPolicy, EventStatus, SyncStatus, TransactionType
from syncbridge.core.exceptions import NotFoundError, ValidationError
from syncbridge.integrations.events import parse_event
from syncbridge.models.inventory_transaction import InventoryTransaction
from syncbridge.models.price_history import PriceHistory
from syncbridge.services.mapping_registry import MappingRegistry
from syncbridge.services.sync_services import SyncService


@pytest.fixture
def service(db_session, platforms, settings, retry_policy):
    return SyncService(db_session, platforms, settings, retry_policy)


def order_event(kind="order.create", source="shopify", order_id="5001", sku="GTR-001", quantity=2, line="L1"):
    return parse_event({
        "kind": kind,
        "source": source,
        "order_id": order_id,
        "line_items": [{"line_item_id": line, "sku": sku, "quantity": quantity}],
    })


async def _transactions(db_session):
    result = await db_session.execute(select(InventoryTransaction).order_by(InventoryTransaction.id))
    return list(result.scalars().all())


"""
1. Order events
"""

async def test_shopify_sale_decrements_naver(service, db_session, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 10

    [outcome] = await service.handle_event(order_event())

    assert outcome.status == EventStatus.PROCESSED
    assert outcome.value == 8
    assert naver.stock_levels["2001"] == 8
    [tx] = await _transactions(db_session)
    assert tx.transaction_type == TransactionType.SALE.value
    assert tx.platform == "shopify"
    assert tx.quantity_delta == -2
    assert tx.sync_status == "completed"
    assert (tx.previous_quantity, tx.new_quantity) == (10, 8)


async def test_naver_cancel_restocks_shopify(service, shopify, make_mapping):
    await make_mapping()
    shopify.stock_levels["1001"] = 4

    [outcome] = await service.handle_event(order_event(kind="order.cancel", source="naver", quantity=1))

    assert outcome.status == EventStatus.PROCESSED
    assert shopify.stock_levels["1001"] == 5


async def test_duplicate_delivery_is_applied_once(service, db_session, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 10

    first = await service.handle_event(order_event())
    second = await service.handle_event(order_event())

    assert first[0].status == EventStatus.PROCESSED
    assert second[0].status == EventStatus.DUPLICATE
    assert second[0].transaction_id == first[0].transaction_id
    assert len(await _transactions(db_session)) == 1
    assert len(naver.writes()) == 1
    assert naver.stock_levels["2001"] == 8


async def test_inactive_mapping_is_not_found(service, db_session, naver, settings, make_mapping):
    await make_mapping()
    await MappingRegistry(db_session, settings).deactivate("GTR-001")

    [outcome] = await service.handle_event(order_event())

    assert outcome.status == EventStatus.NOT_FOUND
    assert await _transactions(db_session) == []
    assert naver.writes() == []


async def test_line_resolved_by_platform_id(service, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 3
    event = parse_event({
        "kind": "order.create",
        "source": "shopify",
        "order_id": 77,
        "line_items": [{"line_item_id": 1, "platform_product_id": 1001, "quantity": 1}],
    })

    [outcome] = await service.handle_event(event)

    assert outcome.status == EventStatus.PROCESSED
    assert outcome.sku == "GTR-001"
    assert naver.stock_levels["2001"] == 2


async def test_unknown_platform_id_is_not_found(service, make_mapping):
    await make_mapping()
    event = parse_event({
        "kind": "order.create",
        "source": "shopify",
        "order_id": 77,
        "line_items": [{"line_item_id": 1, "platform_product_id": 999, "quantity": 1}],
    })

    [outcome] = await service.handle_event(event)

    assert outcome.status == EventStatus.NOT_FOUND


async def test_one_bad_line_does_not_block_the_others(service, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 5
    event = parse_event({
        "kind": "order.create",
        "source": "shopify",
        "order_id": "9",
        "line_items": [
            {"line_item_id": "a", "sku": "UNKNOWN", "quantity": 1},
            {"line_item_id": "b", "sku": "GTR-001", "quantity": 1},
        ],
    })

    outcomes = await service.handle_event(event)

    assert [o.status for o in outcomes] == [EventStatus.NOT_FOUND, EventStatus.PROCESSED]
    assert naver.stock_levels["2001"] == 4


"""
2. Retries and failures
"""

async def test_transient_errors_are_retried(service, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 10
    naver.transient_failures = 2

    [outcome] = await service.handle_event(order_event())

    assert outcome.status == EventStatus.PROCESSED
    assert naver.stock_levels["2001"] == 8


async def test_exhausted_retries_mark_the_row_failed(service, db_session, settings, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 10
    naver.transient_failures = 3

    [outcome] = await service.handle_event(order_event())

    assert outcome.status == EventStatus.FAILED
    [tx] = await _transactions(db_session)
    assert tx.sync_status == "failed"
    assert "503" in tx.error_message
    assert naver.stock_levels["2001"] == 10
    mapping = await MappingRegistry(db_session, settings).find_by_sku("GTR-001")
    assert mapping.sync_status == SyncStatus.ERROR.value


async def test_redelivery_after_failure_retries_the_same_row(service, db_session, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 10
    naver.transient_failures = 3
    [failed] = await service.handle_event(order_event())

    [retried] = await service.handle_event(order_event())

    assert failed.status == EventStatus.FAILED
    assert retried.status == EventStatus.PROCESSED
    assert retried.transaction_id == failed.transaction_id
    [tx] = await _transactions(db_session)
    assert tx.sync_status == "completed"
    assert naver.stock_levels["2001"] == 8


async def test_concurrent_redeliveries_retry_a_failed_row_once(
    service, session_factory, db_session, settings, retry_policy, platforms, naver, make_mapping
):
    await make_mapping()
    naver.stock_levels["2001"] = 10
    naver.transient_failures = 3
    [failed] = await service.handle_event(order_event())
    assert failed.status == EventStatus.FAILED

    async def redeliver():
        async with session_factory() as session:
            [outcome] = await SyncService(session, platforms, settings, retry_policy).handle_event(order_event())
            return outcome.status

    statuses = await asyncio.gather(redeliver(), redeliver())

    assert sorted(s.value for s in statuses) == sorted([EventStatus.PROCESSED.value, EventStatus.DUPLICATE.value])
    assert len(naver.writes("adjust_inventory")) == 1
    assert naver.stock_levels["2001"] == 8
    db_session.expire_all()
    [tx] = await _transactions(db_session)
    assert tx.sync_status == "completed"


async def test_unexpected_client_error_marks_the_row_failed(service, db_session, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 10
    naver.write_error = ValueError("Expecting value: line 1 column 1 (char 0)")

    [outcome] = await service.handle_event(order_event())

    assert outcome.status == EventStatus.FAILED
    assert "ValueError" in outcome.message
    [tx] = await _transactions(db_session)
    assert tx.sync_status == "failed"
    assert "Expecting value" in tx.error_message

    naver.write_error = None
    [retried] = await service.handle_event(order_event())

    assert retried.status == EventStatus.PROCESSED
    assert naver.stock_levels["2001"] == 8


async def test_permanent_error_fails_without_raising(service, naver, make_mapping):
    await make_mapping()
    naver.should_fail = True

    [outcome] = await service.handle_event(order_event())

    assert outcome.status == EventStatus.FAILED
    assert "400" in outcome.message


async def test_missing_platform_client_fails(db_session, settings, retry_policy, shopify, make_mapping):
    await make_mapping()
    service = SyncService(db_session, {"shopify": shopify}, settings, retry_policy)

    [outcome] = await service.handle_event(order_event())

    assert outcome.status == EventStatus.FAILED
    assert "No naver client" in outcome.message


"""
3. Absolute inventory updates
"""

async def test_inventory_update_from_priority_platform_is_pushed(service, db_session, shopify, make_mapping):
    await make_mapping()
    shopify.stock_levels["1001"] = 3

    [outcome] = await service.handle_event(parse_event(
        {"kind": "inventory.update", "source": "naver", "sku": "GTR-001", "quantity": 7}
    ))

    assert outcome.status == EventStatus.PROCESSED
    assert shopify.stock_levels["1001"] == 7
    [tx] = await _transactions(db_session)
    assert tx.transaction_type == TransactionType.SYNC.value
    assert tx.quantity_delta == 4
    assert tx.order_id is None


async def test_inventory_update_from_other_platform_is_skipped(service, db_session, naver, make_mapping):
    await make_mapping()

    [outcome] = await service.handle_event(parse_event(
        {"kind": "inventory.update", "source": "shopify", "sku": "GTR-001", "quantity": 7}
    ))

    assert outcome.status == EventStatus.SKIPPED
    assert naver.writes() == []
    assert await _transactions(db_session) == []


async def test_shopify_priority_writes_shopify_quantity_to_naver(service, naver, make_mapping):
    await make_mapping(conflict_policy=ConflictPolicy.SHOPIFY_PRIORITY)
    naver.stock_levels["2001"] = 10

    [outcome] = await service.handle_event(parse_event(
        {"kind": "inventory.update", "source": "shopify", "sku": "GTR-001", "quantity": 6}
    ))

    assert outcome.status == EventStatus.PROCESSED
    assert naver.stock_levels["2001"] == 6


async def test_inventory_update_already_in_sync(service, db_session, shopify, make_mapping):
    await make_mapping()
    shopify.stock_levels["1001"] = 7

    [outcome] = await service.handle_event(parse_event(
        {"kind": "inventory.update", "source": "naver", "sku": "GTR-001", "quantity": 7}
    ))

    assert outcome.status == EventStatus.SKIPPED
    assert await _transactions(db_session) == []
    assert shopify.writes() == []


async def test_manual_policy_never_pushes(service, shopify, make_mapping):
    await make_mapping(conflict_policy=ConflictPolicy.MANUAL)

    [outcome] = await service.handle_event(parse_event(
        {"kind": "inventory.update", "source": "naver", "sku": "GTR-001", "quantity": 7}
    ))

    assert outcome.status == EventStatus.SKIPPED
    assert "manual" in outcome.message
    assert shopify.writes() == []


"""
4. Prices
"""

async def test_naver_price_change_updates_shopify(service, db_session, shopify, make_mapping, exchange_rate):
    await make_mapping()

    [outcome] = await service.handle_event(parse_event(
        {"kind": "price.update", "source": "naver", "sku": "GTR-001", "price": 10000}
    ))

    assert outcome.status == EventStatus.PROCESSED
    assert outcome.value == 8.63
    assert shopify.prices["1001"] == 8.63
    [history] = (await db_session.execute(select(PriceHistory))).scalars().all()
    assert history.sync_status == "completed"
    assert history.exchange_rate == 1333.33
    assert history.source_price == 10000
    assert history.computed_price == 8.63


async def test_shopify_price_change_under_shopify_priority(service, naver, make_mapping, exchange_rate):
    await make_mapping(conflict_policy=ConflictPolicy.SHOPIFY_PRIORITY)

    [outcome] = await service.handle_event(parse_event(
        {"kind": "price.update", "source": "shopify", "sku": "GTR-001", "price": 10.0}
    ))

    assert outcome.status == EventStatus.PROCESSED
    assert naver.prices["2001"] == 11594.0


async def test_price_change_without_rate_is_invalid(service, shopify, make_mapping):
    await make_mapping()

    [outcome] = await service.handle_event(parse_event(
        {"kind": "price.update", "source": "naver", "sku": "GTR-001", "price": 10000}
    ))

    assert outcome.status == EventStatus.INVALID
    assert shopify.writes() == []


async def test_failed_price_push_is_recorded(service, db_session, shopify, make_mapping, exchange_rate):
    await make_mapping()
    shopify.should_fail = True

    [outcome] = await service.handle_event(parse_event(
        {"kind": "price.update", "source": "naver", "sku": "GTR-001", "price": 10000}
    ))

    assert outcome.status == EventStatus.FAILED
    [history] = (await db_session.execute(select(PriceHistory))).scalars().all()
    assert history.sync_status == "failed"


async def test_unexpected_error_during_price_push_is_recorded(service, db_session, shopify, make_mapping, exchange_rate):
    await make_mapping()
    shopify.write_error = KeyError("inventory_item_id")

    [outcome] = await service.handle_event(parse_event(
        {"kind": "price.update", "source": "naver", "sku": "GTR-001", "price": 10000}
    ))

    assert outcome.status == EventStatus.FAILED
    [history] = (await db_session.execute(select(PriceHistory))).scalars().all()
    assert history.sync_status == "failed"
    assert "KeyError" in history.error_message


"""
5. Manual adjustments
"""

async def test_manual_adjustment_applies_to_both_platforms(service, db_session, shopify, naver, make_mapping):
    await make_mapping()
    shopify.stock_levels["1001"] = 10
    naver.stock_levels["2001"] = 10

    outcome = await service.apply_manual_adjustment("gtr-001", -1, "damaged", performed_by="ops")

    assert outcome.status == EventStatus.PROCESSED
    assert outcome.value == 9
    assert shopify.stock_levels["1001"] == 9
    assert naver.stock_levels["2001"] == 9
    [tx] = await _transactions(db_session)
    assert tx.platform == "manual"
    assert tx.transaction_type == TransactionType.ADJUSTMENT.value
    assert tx.performed_by == "ops"
    assert (tx.previous_quantity, tx.new_quantity) == (10, 9)


async def test_repeated_manual_adjustments_both_persist(service, db_session, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 10

    await service.apply_manual_adjustment("GTR-001", -1, "damaged")
    await service.apply_manual_adjustment("GTR-001", -1, "damaged")

    count = (await db_session.execute(select(func.count(InventoryTransaction.id)))).scalar_one()
    assert count == 2
    assert naver.stock_levels["2001"] == 8


async def test_half_applied_manual_adjustment_names_each_side(service, db_session, shopify, naver, make_mapping):
    await make_mapping()
    shopify.stock_levels["1001"] = 10
    naver.stock_levels["2001"] = 10
    naver.should_fail = True

    outcome = await service.apply_manual_adjustment("GTR-001", -1, "damaged")

    assert outcome.status == EventStatus.FAILED
    assert "shopify applied (9)" in outcome.message
    assert "naver failed" in outcome.message
    assert shopify.stock_levels["1001"] == 9
    assert naver.stock_levels["2001"] == 10
    [tx] = await _transactions(db_session)
    assert tx.sync_status == "failed"
    assert tx.error_message == outcome.message


async def test_manual_adjustment_validation(service, make_mapping):
    await make_mapping()

    with pytest.raises(ValidationError):
        await service.apply_manual_adjustment("GTR-001", 0, "nothing")
    with pytest.raises(NotFoundError):
        await service.apply_manual_adjustment("NOPE", 1, "found one")


"""
6. Scheduled syncs
"""

async def test_inventory_sync_pushes_priority_quantity(service, db_session, shopify, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 5
    shopify.stock_levels["1001"] = 3

    report = await service.run_inventory_sync()

    assert report.total == 1
    assert report.pushed == 1
    assert report.failed == 0
    assert shopify.stock_levels["1001"] == 5
    [tx] = await _transactions(db_session)
    assert tx.transaction_type == "sync"


async def test_inventory_sync_under_manual_policy_only_reports(service, db_session, settings, shopify, naver, make_mapping):
    await make_mapping(conflict_policy=ConflictPolicy.MANUAL)
    naver.stock_levels["2001"] = 5
    shopify.stock_levels["1001"] = 3

    report = await service.run_inventory_sync()

    assert report.reported_only == 1
    assert report.pushed == 0
    assert shopify.stock_levels["1001"] == 3
    mapping = await MappingRegistry(db_session, settings).find_by_sku("GTR-001")
    assert mapping.sync_status == SyncStatus.PENDING.value


async def test_partial_sync_reports_unknown_skus(service, shopify, naver, make_mapping):
    await make_mapping()
    naver.stock_levels["2001"] = 5
    shopify.stock_levels["1001"] = 5

    report = await service.run_inventory_sync(skus=["GTR-001", "NOPE"])

    assert report.total == 2
    assert report.in_sync == 1
    assert report.failed == 1
    assert "NOPE" in report.errors[0]


async def test_full_sync_covers_stock_and_price(service, shopify, naver, make_mapping, exchange_rate):
    await make_mapping()
    naver.stock_levels["2001"] = 5
    shopify.stock_levels["1001"] = 5
    naver.prices["2001"] = 10000
    shopify.prices["1001"] = 9.99

    report = await service.run_full_sync()

    assert report.in_sync == 1
    assert report.pushed == 1
    assert shopify.prices["1001"] == 8.63
