# tests/unit/services/test_mapping_registry.py
import pytest

from syncbridge.core.enums import ConflictPolicy, ExchangeRateMode, SyncStatus
from syncbridge.core.exceptions import MappingNotFoundError, NotFoundError, ValidationError
from syncbridge.schemas.mapping import MappingData
from syncbridge.services.mapping_registry import MappingRegistry


async def test_upsert_creates_and_normalizes_sku(db_session, settings):
    registry = MappingRegistry(db_session, settings)

    mapping = await registry.upsert(MappingData(sku="  gtr-001 ", shopify_variant_id="1001", naver_product_id="2001"))

    assert mapping.sku == "GTR-001"
    assert mapping.conflict_policy == ConflictPolicy.NAVER_PRIORITY.value
    assert mapping.sync_status == SyncStatus.PENDING.value
    assert (await registry.get_active("gtr-001")).naver_product_id == "2001"


async def test_upsert_updates_existing_mapping(db_session, settings, make_mapping):
    await make_mapping()
    registry = MappingRegistry(db_session, settings)

    await registry.upsert(MappingData(
        sku="GTR-001", shopify_variant_id="1001", naver_product_id="2999", margin_multiplier=1.3,
    ))

    mapping = await registry.find_by_sku("GTR-001")
    assert mapping.naver_product_id == "2999"
    assert mapping.margin_multiplier == 1.3


@pytest.mark.parametrize("kwargs", [
    {"margin_multiplier": 2.5},
    {"margin_multiplier": 0.5},
    {"exchange_rate_mode": ExchangeRateMode.MANUAL},
    {"naver_product_id": None},
])
async def test_upsert_rejects_invalid_mappings(db_session, settings, kwargs):
    data = dict(sku="GTR-001", shopify_variant_id="1001", naver_product_id="2001")
    data.update(kwargs)

    with pytest.raises(ValidationError):
        await MappingRegistry(db_session, settings).upsert(MappingData(**data))


async def test_inactive_mapping_may_miss_an_identifier(db_session, settings):
    mapping = await MappingRegistry(db_session, settings).upsert(
        MappingData(sku="GTR-002", shopify_variant_id="1002", is_active=False)
    )

    assert mapping.is_active is False


async def test_get_active_raises_for_missing_and_inactive(db_session, settings, make_mapping):
    registry = MappingRegistry(db_session, settings)
    await make_mapping(sku="GTR-OFF")
    await registry.deactivate("GTR-OFF")

    with pytest.raises(MappingNotFoundError, match="not found"):
        await registry.get_active("NOPE")
    with pytest.raises(MappingNotFoundError, match="inactive"):
        await registry.get_active("GTR-OFF")


async def test_deactivate_unknown_sku(db_session, settings):
    with pytest.raises(NotFoundError):
        await MappingRegistry(db_session, settings).deactivate("NOPE")


async def test_find_by_platform_id(db_session, settings, make_mapping):
    await make_mapping()
    registry = MappingRegistry(db_session, settings)

    assert (await registry.find_by_platform_id("shopify", 1001)).sku == "GTR-001"
    assert (await registry.find_by_platform_id("naver", "2001")).sku == "GTR-001"
    assert await registry.find_by_platform_id("naver", "1001") is None
    assert await registry.find_by_platform_id("manual", "1001") is None


async def test_list_active_pages_in_sku_order_and_resumes(db_session, settings, make_mapping):
    for i in range(5):
        await make_mapping(sku=f"SKU-{i}", shopify_variant_id=f"10{i}", naver_product_id=f"20{i}")
    await make_mapping(sku="SKU-9", shopify_variant_id="109", naver_product_id="209", is_active=False)
    registry = MappingRegistry(db_session, settings)

    skus = [m.sku async for m in registry.list_active(batch_size=2)]
    resumed = [m.sku async for m in registry.list_active(batch_size=2, after_sku="SKU-2")]

    assert skus == ["SKU-0", "SKU-1", "SKU-2", "SKU-3", "SKU-4"]
    assert resumed == ["SKU-3", "SKU-4"]


async def test_mark_sync_state(db_session, settings, make_mapping):
    await make_mapping()
    registry = MappingRegistry(db_session, settings)

    await registry.mark_sync_state("GTR-001", SyncStatus.ERROR, "naver API returned 503")
    mapping = await registry.find_by_sku("GTR-001")
    assert mapping.sync_status == "error"
    assert mapping.sync_error == "naver API returned 503"

    await registry.mark_sync_state("GTR-001", SyncStatus.SYNCED)
    mapping = await registry.find_by_sku("GTR-001")
    assert mapping.sync_status == "synced"
    assert mapping.sync_error is None
    assert mapping.last_synced_at is not None
