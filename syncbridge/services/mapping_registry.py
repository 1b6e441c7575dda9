# syncbridge/services/mapping_registry.py
"""
SKU <-> platform identifier <-> pricing policy store.

Every read goes to the database; nothing is cached in process, so a sync
path never acts on identifiers that an administrative edit has replaced.
"""

import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import ConflictPolicy, ExchangeRateMode, Platform, SyncStatus
from syncbridge.core.exceptions import MappingNotFoundError, NotFoundError, ValidationError
from syncbridge.models.product_mapping import ProductMapping
from syncbridge.schemas.mapping import MappingData, normalize_sku
from syncbridge.services.pricing import validate_margin

logger = logging.getLogger(__name__)


class MappingRegistry:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def find_by_sku(self, sku: str) -> Optional[ProductMapping]:
        stmt = (
            select(ProductMapping)
            .where(ProductMapping.sku == normalize_sku(sku))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active(self, sku: str) -> ProductMapping:
        """Mapping for a sync path; missing or inactive is terminal."""
        mapping = await self.find_by_sku(sku)
        if mapping is None:
            raise MappingNotFoundError(normalize_sku(sku), "not found")
        if not mapping.is_active:
            raise MappingNotFoundError(mapping.sku, "is inactive")
        return mapping

    async def find_by_platform_id(self, platform, external_id: str) -> Optional[ProductMapping]:
        platform = Platform(platform)
        if platform == Platform.SHOPIFY:
            column = ProductMapping.shopify_variant_id
        elif platform == Platform.NAVER:
            column = ProductMapping.naver_product_id
        else:
            return None

        stmt = (
            select(ProductMapping)
            .where(column == str(external_id))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_active(self, batch_size: int = 100, after_sku: Optional[str] = None) -> AsyncIterator[ProductMapping]:
        """
        Yield active mappings in SKU order, one page at a time.

        Pagination is keyset-based, so a caller can resume from the last SKU
        it handled by passing it as `after_sku`.
        """
        last_sku = normalize_sku(after_sku) if after_sku else None
        while True:
            stmt = select(ProductMapping).where(ProductMapping.is_active.is_(True))
            if last_sku is not None:
                stmt = stmt.where(ProductMapping.sku > last_sku)
            stmt = stmt.order_by(ProductMapping.sku).limit(batch_size)

            result = await self.db.execute(stmt)
            page = list(result.scalars().all())
            if not page:
                return

            last_sku = page[-1].sku
            # Yield detached snapshots: writes go through find_by_sku, and a
            # rollback in the caller must not expire the rest of the page
            for mapping in page:
                self.db.expunge(mapping)
            for mapping in page:
                yield mapping

            if len(page) < batch_size:
                return

    def _validate(self, data: MappingData) -> None:
        validate_margin(
            data.margin_multiplier,
            self.settings.MIN_MARGIN_MULTIPLIER,
            self.settings.MAX_MARGIN_MULTIPLIER,
        )
        if data.exchange_rate_mode == ExchangeRateMode.MANUAL:
            if data.manual_rate is None or data.manual_rate <= 0:
                raise ValidationError(f"SKU {data.sku}: manual rate mode requires a positive manual_rate")
        if data.is_active and not (data.shopify_variant_id and data.naver_product_id):
            raise ValidationError(
                f"SKU {data.sku}: an active mapping needs both a Shopify and a Naver identifier"
            )

    async def upsert(self, data: MappingData) -> ProductMapping:
        """Create or update a mapping from an administrative edit."""
        try:
            conflict_policy = ConflictPolicy(data.conflict_policy or self.settings.DEFAULT_CONFLICT_POLICY)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        self._validate(data)

        mapping = await self.find_by_sku(data.sku)
        created = mapping is None
        if created:
            mapping = ProductMapping(sku=data.sku, sync_status=SyncStatus.PENDING.value)
            self.db.add(mapping)

        mapping.shopify_variant_id = data.shopify_variant_id
        mapping.naver_product_id = data.naver_product_id
        mapping.margin_multiplier = data.margin_multiplier
        mapping.exchange_rate_mode = ExchangeRateMode(data.exchange_rate_mode).value
        mapping.manual_rate = data.manual_rate
        mapping.conflict_policy = conflict_policy.value
        mapping.is_active = data.is_active

        await self.db.commit()
        logger.info(f"{'Created' if created else 'Updated'} mapping {data.sku}")
        return mapping

    async def deactivate(self, sku: str) -> ProductMapping:
        """Soft-deactivate; rows referenced by the ledger are never deleted."""
        mapping = await self.find_by_sku(sku)
        if mapping is None:
            raise NotFoundError(f"Mapping for SKU {normalize_sku(sku)} not found")
        mapping.is_active = False
        await self.db.commit()
        logger.info(f"Deactivated mapping {mapping.sku}")
        return mapping

    async def mark_sync_state(self, sku: str, status: SyncStatus, error: Optional[str] = None, synced_at=None) -> None:
        """Record the outcome of a sync attempt. Called by the orchestrator."""
        mapping = await self.find_by_sku(sku)
        if mapping is None:
            return
        status = SyncStatus(status)
        mapping.sync_status = status.value
        mapping.sync_error = error
        if status == SyncStatus.SYNCED:
            mapping.last_synced_at = synced_at or datetime.now(timezone.utc)
        await self.db.commit()
