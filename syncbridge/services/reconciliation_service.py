# syncbridge/services/reconciliation_service.py
"""
Drift detection between the two storefronts.

For every active mapping the checker reads live quantity and price from both
platforms, spacing calls by a fixed delay to stay under the platforms' rate
limits. Each SKU is classified OK / MISMATCH / ERROR. Platform errors are not
retried inline; they are reported.

In non-dry-run mode mismatches are corrected through SyncService.sync_mapping,
so every correction lands in the ledger. The checker never writes inventory
itself.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import ConflictPolicy, DriftStatus, EventStatus, Platform, counterpart
from syncbridge.core.exceptions import (
    DriftCheckInProgressError,
    NotFoundError,
    PlatformServiceError,
    ValidationError,
)
from syncbridge.integrations.base import PlatformInterface
from syncbridge.models.product_mapping import ProductMapping
from syncbridge.services.exchange_rate_service import ExchangeRateService
from syncbridge.services.mapping_registry import MappingRegistry
from syncbridge.services.pricing import compute_target_price, direction_for, price_diff_percent, resolve_rate
from syncbridge.services.sync_services import SyncService

logger = logging.getLogger(__name__)

# Process-wide single flight for drift checks
_drift_lock = asyncio.Lock()

_STATUS_ORDER = {DriftStatus.MISMATCH: 0, DriftStatus.ERROR: 1, DriftStatus.OK: 2}


def classify_drift(quantity_diff: int, price_diff_percent: float, threshold: float = 10.0) -> DriftStatus:
    """OK when quantities match and the price gap is within the threshold (inclusive)."""
    if quantity_diff == 0 and price_diff_percent <= threshold:
        return DriftStatus.OK
    return DriftStatus.MISMATCH


@dataclass
class DriftDetail:
    sku: str
    status: DriftStatus
    reference_platform: Optional[str] = None
    shopify_quantity: Optional[int] = None
    naver_quantity: Optional[int] = None
    shopify_price: Optional[float] = None
    naver_price: Optional[float] = None
    expected_price: Optional[float] = None
    quantity_diff: Optional[int] = None
    price_diff_percent: Optional[float] = None
    error: Optional[str] = None
    correction: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class DriftReport:
    total_checked: int = 0
    ok_count: int = 0
    mismatch_count: int = 0
    error_count: int = 0
    details: List[DriftDetail] = field(default_factory=list)
    dry_run: bool = True
    corrections: int = 0
    cancelled: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    def add(self, detail: DriftDetail):
        self.details.append(detail)
        self.total_checked += 1
        if detail.status == DriftStatus.OK:
            self.ok_count += 1
        elif detail.status == DriftStatus.MISMATCH:
            self.mismatch_count += 1
        else:
            self.error_count += 1

    def sort_details(self):
        """Mismatches first, then errors, then OK; SKU order within each group."""
        self.details.sort(key=lambda d: (_STATUS_ORDER[d.status], d.sku))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_checked": self.total_checked,
            "ok_count": self.ok_count,
            "mismatch_count": self.mismatch_count,
            "error_count": self.error_count,
            "dry_run": self.dry_run,
            "corrections": self.corrections,
            "cancelled": self.cancelled,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 2),
            "details": [d.to_dict() for d in self.details],
        }

    def print_summary(self):
        """Prints a formatted report to the console."""
        print("\n" + "=" * 50)
        print("DRIFT CHECK REPORT")
        print("=" * 50)
        print(f"Mode         : {'Dry Run' if self.dry_run else 'Live Run'}")
        print(f"Checked      : {self.total_checked}")
        print(f"OK           : {self.ok_count}")
        print(f"Mismatch     : {self.mismatch_count}")
        print(f"Error        : {self.error_count}")
        if not self.dry_run:
            print(f"Corrections  : {self.corrections}")
        if self.cancelled:
            print("(cancelled before all mappings were checked)")

        flagged = [d for d in self.details if d.status != DriftStatus.OK]
        if flagged:
            print("\n## Flagged SKUs ##")
            for d in flagged:
                if d.status == DriftStatus.ERROR:
                    print(f"- {d.sku}: ERROR {d.error}")
                else:
                    print(
                        f"- {d.sku}: qty naver={d.naver_quantity} shopify={d.shopify_quantity} "
                        f"(diff {d.quantity_diff:+d}), price diff {d.price_diff_percent}%"
                    )
        print("=" * 50)


class DriftChecker:
    def __init__(
        self,
        db: AsyncSession,
        platforms: Dict[str, PlatformInterface],
        settings: Optional[Settings] = None,
        sync_service: Optional[SyncService] = None,
        delay_seconds: Optional[float] = None,
        lock: Optional[asyncio.Lock] = None,
    ):
        self.db = db
        self.platforms = platforms
        self.settings = settings or get_settings()
        self.sync_service = sync_service
        self.delay_seconds = self.settings.DRIFT_CHECK_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self.threshold = self.settings.DRIFT_PRICE_THRESHOLD_PERCENT
        self.registry = MappingRegistry(db, self.settings)
        self.rates = ExchangeRateService(db, self.settings)
        self._lock = lock or _drift_lock

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(
        self,
        dry_run: bool = True,
        skus: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DriftReport:
        """Check all active mappings (or `skus`). Raises if a check is already running."""
        if self._lock.locked():
            raise DriftCheckInProgressError("A drift check is already running")
        async with self._lock:
            return await self._run(dry_run, skus, cancel_event)

    async def _run(self, dry_run: bool, skus, cancel_event) -> DriftReport:
        report = DriftReport(dry_run=dry_run)
        start = time.monotonic()
        current_rate = await self.rates.current_rate_value()
        logger.info(f"=== DRIFT CHECK STARTING ({'dry run' if dry_run else 'live'}) ===")

        async for mapping in self._iter_mappings(skus, report):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Drift check cancelled between mappings")
                report.cancelled = True
                break

            detail = await self.check_mapping(mapping, current_rate)
            if detail.status == DriftStatus.MISMATCH and not dry_run:
                detail.correction = await self._correct(mapping, detail)
                if detail.correction.get("applied"):
                    report.corrections += 1
            report.add(detail)

        report.sort_details()
        report.duration_seconds = time.monotonic() - start
        logger.info(
            f"Drift check finished: {report.total_checked} checked, {report.ok_count} OK, "
            f"{report.mismatch_count} mismatched, {report.error_count} errors, "
            f"{report.corrections} corrected"
        )
        return report

    async def _iter_mappings(self, skus, report: DriftReport):
        if not skus:
            async for mapping in self.registry.list_active():
                yield mapping
            return

        for sku in skus:
            try:
                mapping = await self.registry.get_active(sku)
            except NotFoundError as e:
                report.add(DriftDetail(sku=sku.strip().upper(), status=DriftStatus.ERROR, error=str(e)))
                continue
            self.db.expunge(mapping)
            yield mapping

    async def _pause(self):
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

    async def _read(self, platform: Platform, method: str, external_id: str):
        client = self.platforms.get(platform.value)
        if client is None:
            raise PlatformServiceError(f"No {platform.value} client configured")
        try:
            return await getattr(client, method)(external_id)
        finally:
            await self._pause()

    async def check_mapping(self, mapping: ProductMapping, current_rate: Optional[float]) -> DriftDetail:
        """Compare live state of one mapping on both platforms."""
        priority = ConflictPolicy(mapping.conflict_policy).priority_platform
        reference = priority or Platform.NAVER
        other = counterpart(reference)
        detail = DriftDetail(sku=mapping.sku, status=DriftStatus.ERROR, reference_platform=reference.value)

        try:
            detail.shopify_quantity = await self._read(Platform.SHOPIFY, "get_inventory", mapping.shopify_variant_id)
            detail.naver_quantity = await self._read(Platform.NAVER, "get_inventory", mapping.naver_product_id)
            detail.shopify_price = await self._read(Platform.SHOPIFY, "get_price", mapping.shopify_variant_id)
            detail.naver_price = await self._read(Platform.NAVER, "get_price", mapping.naver_product_id)
        except (PlatformServiceError, ValidationError) as e:
            detail.error = str(e)
            logger.warning(f"Drift check {mapping.sku}: {e}")
            return detail

        prices = {Platform.SHOPIFY: detail.shopify_price, Platform.NAVER: detail.naver_price}
        policy = mapping.pricing_policy
        try:
            rate = resolve_rate(policy, current_rate)
            detail.expected_price = compute_target_price(
                prices[reference],
                policy,
                rate,
                direction_for(reference, other),
                self.settings.MIN_MARGIN_MULTIPLIER,
                self.settings.MAX_MARGIN_MULTIPLIER,
            )
        except ValidationError as e:
            detail.error = f"cannot derive expected price: {e}"
            return detail

        detail.quantity_diff = detail.naver_quantity - detail.shopify_quantity
        detail.price_diff_percent = price_diff_percent(prices[other], detail.expected_price)
        detail.status = classify_drift(detail.quantity_diff, detail.price_diff_percent, self.threshold)
        return detail

    async def _correct(self, mapping: ProductMapping, detail: DriftDetail) -> Dict[str, Any]:
        if self.sync_service is None:
            self.sync_service = SyncService(self.db, self.platforms, self.settings)

        result = await self.sync_service.sync_mapping(
            mapping,
            sync_inventory=detail.quantity_diff != 0,
            sync_prices=detail.price_diff_percent > self.threshold,
        )
        return {
            "applied": any(o.status == EventStatus.PROCESSED for o in result.outcomes),
            "outcomes": [o.to_dict() for o in result.outcomes],
        }
