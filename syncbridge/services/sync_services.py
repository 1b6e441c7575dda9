# syncbridge/services/sync_services.py
"""
Sync orchestrator.

Every inventory or price change that crosses from one platform to the other
goes through SyncService:

    event -> mapping lookup -> ledger record_if_new -> (price engine)
          -> counterpart API call (retry policy) -> ledger mark_synced

Component-local failures (unknown or inactive SKU, invalid pricing data) are
turned into an EventOutcome here. Platform failures are retried by the
RetryPolicy; once retries are exhausted the ledger row is marked failed and
the outcome says so. Nothing is raised back to the webhook transport.

Scheduled syncs (full/inventory/price) walk the active mappings and push the
priority platform's value to the other side according to each mapping's
conflict policy. Under the `manual` policy a difference is reported only.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import (
    ConflictPolicy,
    EventStatus,
    Platform,
    StockOperation,
    SyncStatus,
    TransactionSyncStatus,
    TransactionType,
    counterpart,
)
from syncbridge.core.exceptions import (
    NotFoundError,
    MappingNotFoundError,
    PlatformServiceError,
    SyncError,
    ValidationError,
)
from syncbridge.integrations.base import PlatformInterface
from syncbridge.integrations.events import (
    InventoryUpdated,
    OrderCancelled,
    OrderCreated,
    PriceUpdated,
    SyncEvent,
)
from syncbridge.integrations.retry import RetryPolicy
from syncbridge.models.price_history import PriceHistory
from syncbridge.models.product_mapping import ProductMapping
from syncbridge.services.exchange_rate_service import ExchangeRateService
from syncbridge.services.mapping_registry import MappingRegistry
from syncbridge.services.pricing import (
    compute_target_price,
    direction_for,
    price_diff_percent,
    resolve_rate,
)
from syncbridge.services.transaction_ledger import LedgerEntry, SyncOutcome, TransactionLedger

logger = logging.getLogger(__name__)


def _describe(error: Exception) -> str:
    """Error text for the ledger; unexpected exceptions keep their class name."""
    if isinstance(error, (PlatformServiceError, ValidationError)):
        return str(error)
    return f"{error.__class__.__name__}: {error}"


@dataclass
class EventOutcome:
    """What happened to one SKU-level unit of work."""
    sku: Optional[str]
    status: EventStatus
    transaction_id: Optional[int] = None
    line_item_id: Optional[str] = None
    message: Optional[str] = None
    value: Optional[float] = None  # resulting quantity or pushed price

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class MappingSyncResult:
    sku: str
    inventory: Optional[EventOutcome] = None
    price: Optional[EventOutcome] = None

    @property
    def outcomes(self) -> List[EventOutcome]:
        return [o for o in (self.inventory, self.price) if o is not None]

    @property
    def failed(self) -> bool:
        return any(o.status in (EventStatus.FAILED, EventStatus.INVALID) for o in self.outcomes)


@dataclass
class SyncReport:
    """Summary report of a scheduled sync run"""
    operation: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    processing_time_seconds: float = 0.0
    total: int = 0
    pushed: int = 0
    in_sync: int = 0
    reported_only: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def add(self, result: MappingSyncResult):
        self.total += 1
        for outcome in result.outcomes:
            if outcome.status == EventStatus.PROCESSED:
                self.pushed += 1
            elif outcome.status in (EventStatus.FAILED, EventStatus.INVALID, EventStatus.NOT_FOUND):
                self.failed += 1
                self.errors.append(f"{outcome.sku}: {outcome.message}")
            elif outcome.message and "manual review" in outcome.message:
                self.reported_only += 1
            else:
                self.in_sync += 1

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data

    def log_summary(self):
        logger.info(
            f"{self.operation} finished in {self.processing_time_seconds:.1f}s: "
            f"{self.total} mappings, {self.pushed} pushed, {self.in_sync} in sync, "
            f"{self.reported_only} awaiting manual review, {self.failed} failed"
        )
        for error in self.errors[:20]:
            logger.warning(f"  - {error}")


class SyncService:
    """Coordinates synchronization between the two storefronts."""

    def __init__(
        self,
        db: AsyncSession,
        platforms: Dict[str, PlatformInterface],
        settings: Optional[Settings] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.db = db
        self.platforms = platforms
        self.settings = settings or get_settings()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.registry = MappingRegistry(db, self.settings)
        self.ledger = TransactionLedger(db)
        self.rates = ExchangeRateService(db, self.settings)

    def _platform(self, platform) -> PlatformInterface:
        platform = Platform(platform)
        client = self.platforms.get(platform.value)
        if client is None:
            raise SyncError(f"No {platform.value} client configured")
        return client

    async def _call(self, platform, method: str, *args, sku: str = ""):
        """Call a platform client method through the retry policy."""
        client = self._platform(platform)
        func = getattr(client, method)
        return await self.retry_policy.call(
            func, *args, description=f"{Platform(platform).value}.{method} for {sku}"
        )

    async def _resolve_mapping(self, ref, source: Platform) -> ProductMapping:
        if ref.sku:
            return await self.registry.get_active(ref.sku)

        mapping = await self.registry.find_by_platform_id(source, ref.platform_product_id)
        if mapping is None:
            raise MappingNotFoundError(f"{source.value}:{ref.platform_product_id}", "not found")
        if not mapping.is_active:
            raise MappingNotFoundError(mapping.sku, "is inactive")
        return mapping

    # ------------------------------------------------------------------
    # Event handling (webhooks and queue messages)
    # ------------------------------------------------------------------

    async def handle_event(self, event: SyncEvent) -> List[EventOutcome]:
        """Process one validated event; returns one outcome per affected SKU."""
        if isinstance(event, (OrderCreated, OrderCancelled)):
            outcomes = []
            for item in event.line_items:
                outcomes.append(await self._handle_order_line(event, item))
            return outcomes
        if isinstance(event, InventoryUpdated):
            return [await self._handle_inventory_update(event)]
        if isinstance(event, PriceUpdated):
            return [await self._handle_price_update(event)]
        raise ValidationError(f"Unsupported event type {type(event).__name__}")

    async def _handle_order_line(self, event, item) -> EventOutcome:
        is_sale = isinstance(event, OrderCreated)
        transaction_type = TransactionType.SALE if is_sale else TransactionType.RESTOCK
        operation = StockOperation.SUBTRACT if is_sale else StockOperation.ADD

        try:
            mapping = await self._resolve_mapping(item, event.source)
        except NotFoundError as e:
            logger.warning(f"Order {event.order_id} line {item.line_item_id}: {e}")
            return EventOutcome(item.sku, EventStatus.NOT_FOUND, line_item_id=item.line_item_id, message=str(e))

        # Plain values only from here on; a duplicate insert rolls the session back
        sku = mapping.sku
        target = counterpart(event.source)
        target_id = mapping.platform_id(target)

        result = await self.ledger.record_if_new(
            LedgerEntry(
                sku=sku,
                platform=event.source,
                transaction_type=transaction_type,
                quantity_delta=-item.quantity if is_sale else item.quantity,
                order_id=event.order_id,
                order_line_item_id=item.line_item_id,
                performed_by=f"{event.source.value}_webhook",
            )
        )
        if not result.created:
            existing = result.transaction
            if (
                existing is not None
                and existing.sync_status == TransactionSyncStatus.FAILED.value
                and await self.ledger.claim_for_retry(existing.id)
            ):
                # Redelivery of an event whose push failed earlier: retry the push on the same row
                logger.info(f"Retrying failed transaction {existing.id} for order {event.order_id}")
                outcome = await self._push_stock(sku, existing.id, target, target_id, item.quantity, operation)
                outcome.line_item_id = item.line_item_id
                return outcome
            return EventOutcome(
                sku,
                EventStatus.DUPLICATE,
                transaction_id=result.transaction.id if result.transaction else None,
                line_item_id=item.line_item_id,
                message="event already recorded",
            )

        outcome = await self._push_stock(sku, result.transaction.id, target, target_id, item.quantity, operation)
        outcome.line_item_id = item.line_item_id
        return outcome

    async def _push_stock(
        self,
        sku: str,
        transaction_id: int,
        target: Platform,
        target_id: str,
        quantity: int,
        operation: StockOperation,
    ) -> EventOutcome:
        try:
            new_quantity = await self._call(target, "update_stock", target_id, quantity, operation, sku=sku)
        except Exception as e:
            # Rows never stay pending after a push attempt
            error = f"{target.value} {operation.value} {quantity} failed: {_describe(e)}"
            if isinstance(e, (PlatformServiceError, ValidationError)):
                logger.error(f"SKU {sku}: {error}")
            else:
                logger.exception(f"SKU {sku}: {error}")
            await self.ledger.mark_synced(transaction_id, SyncOutcome.failed(error))
            await self.registry.mark_sync_state(sku, SyncStatus.ERROR, error)
            return EventOutcome(sku, EventStatus.FAILED, transaction_id=transaction_id, message=error)

        previous_quantity = None
        if new_quantity is not None and operation != StockOperation.SET:
            signed = quantity if operation == StockOperation.ADD else -quantity
            previous_quantity = new_quantity - signed

        await self.ledger.mark_synced(transaction_id, SyncOutcome.completed(previous_quantity, new_quantity))
        await self.registry.mark_sync_state(sku, SyncStatus.SYNCED)
        logger.info(f"SKU {sku}: {target.value} stock {operation.value} {quantity} -> {new_quantity}")
        return EventOutcome(sku, EventStatus.PROCESSED, transaction_id=transaction_id, value=new_quantity)

    def _priority_check(self, mapping: ProductMapping, source: Platform) -> Optional[str]:
        """Reason to skip an absolute-value event, or None to apply it."""
        policy = ConflictPolicy(mapping.conflict_policy)
        priority = policy.priority_platform
        if priority is None:
            return f"conflict policy is manual; {source.value} change left for manual review"
        if priority != source:
            return f"{source.value} is not the priority platform under {policy.value}"
        return None

    async def _handle_inventory_update(self, event: InventoryUpdated) -> EventOutcome:
        try:
            mapping = await self._resolve_mapping(event, event.source)
        except NotFoundError as e:
            logger.warning(f"Inventory update from {event.source.value}: {e}")
            return EventOutcome(event.sku, EventStatus.NOT_FOUND, message=str(e))

        sku = mapping.sku
        skip_reason = self._priority_check(mapping, event.source)
        if skip_reason:
            logger.info(f"SKU {sku}: inventory update skipped, {skip_reason}")
            return EventOutcome(sku, EventStatus.SKIPPED, message=skip_reason)

        target = counterpart(event.source)
        return await self._apply_quantity(sku, event.source, target, mapping.platform_id(target), event.quantity,
                                          reason=f"inventory.update from {event.source.value}")

    async def _apply_quantity(
        self,
        sku: str,
        source: Platform,
        target: Platform,
        target_id: str,
        quantity: int,
        reason: str,
        target_quantity: Optional[int] = None,
    ) -> EventOutcome:
        """Ledger and push an absolute quantity from `source` to `target`."""
        if target_quantity is None:
            try:
                target_quantity = await self._call(target, "get_inventory", target_id, sku=sku)
            except (PlatformServiceError, ValidationError) as e:
                error = f"could not read {target.value} inventory: {e}"
                logger.error(f"SKU {sku}: {error}")
                await self.registry.mark_sync_state(sku, SyncStatus.ERROR, error)
                return EventOutcome(sku, EventStatus.FAILED, message=error)

        if target_quantity == quantity:
            return EventOutcome(sku, EventStatus.SKIPPED, message="quantities already in sync", value=quantity)

        result = await self.ledger.record_if_new(
            LedgerEntry(
                sku=sku,
                platform=source,
                transaction_type=TransactionType.SYNC,
                quantity_delta=quantity - target_quantity,
                previous_quantity=target_quantity,
                new_quantity=quantity,
                performed_by="sync_service",
                reason=reason,
            )
        )
        return await self._push_stock(sku, result.transaction.id, target, target_id, quantity, StockOperation.SET)

    async def _handle_price_update(self, event: PriceUpdated) -> EventOutcome:
        try:
            mapping = await self._resolve_mapping(event, event.source)
        except NotFoundError as e:
            logger.warning(f"Price update from {event.source.value}: {e}")
            return EventOutcome(event.sku, EventStatus.NOT_FOUND, message=str(e))

        sku = mapping.sku
        skip_reason = self._priority_check(mapping, event.source)
        if skip_reason:
            logger.info(f"SKU {sku}: price update skipped, {skip_reason}")
            return EventOutcome(sku, EventStatus.SKIPPED, message=skip_reason)

        target = counterpart(event.source)
        return await self._push_price(sku, event.source, target, mapping.platform_id(target),
                                      event.price, mapping.pricing_policy)

    async def _derive_price(self, source: Platform, target: Platform, source_price: float, policy) -> tuple:
        """Return (target_price, rate) for a source price under a pricing policy."""
        rate = resolve_rate(policy, await self.rates.current_rate_value())
        target_price = compute_target_price(
            source_price,
            policy,
            rate,
            direction_for(source, target),
            self.settings.MIN_MARGIN_MULTIPLIER,
            self.settings.MAX_MARGIN_MULTIPLIER,
        )
        return target_price, rate

    async def _expire_stale_price_pushes(self, sku: str) -> None:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=self.settings.PRICE_PENDING_TIMEOUT_MINUTES)
        await self.db.execute(
            update(PriceHistory)
            .where(
                PriceHistory.sku == sku,
                PriceHistory.sync_status == "pending",
                PriceHistory.created_at < cutoff,
            )
            .values(sync_status="failed", error_message="abandoned pending push")
            .execution_options(synchronize_session=False)
        )

    async def _push_price(
        self,
        sku: str,
        source: Platform,
        target: Platform,
        target_id: str,
        source_price: float,
        policy,
    ) -> EventOutcome:
        try:
            target_price, rate = await self._derive_price(source, target, source_price, policy)
        except ValidationError as e:
            logger.error(f"SKU {sku}: cannot derive {target.value} price: {e}")
            await self.registry.mark_sync_state(sku, SyncStatus.ERROR, str(e))
            return EventOutcome(sku, EventStatus.INVALID, message=str(e))

        await self._expire_stale_price_pushes(sku)
        history = PriceHistory(
            sku=sku,
            source_platform=source.value,
            target_platform=target.value,
            source_price=source_price,
            exchange_rate=rate,
            margin_multiplier=policy.margin_multiplier,
            computed_price=target_price,
            sync_status="pending",
        )
        self.db.add(history)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"SKU {sku}: price push already pending, skipping")
            return EventOutcome(sku, EventStatus.SKIPPED, message="a price push for this SKU is already pending")
        history_id = history.id

        try:
            await self._call(target, "set_price", target_id, target_price, sku=sku)
        except Exception as e:
            error = f"{target.value} price update to {target_price} failed: {_describe(e)}"
            if isinstance(e, (PlatformServiceError, ValidationError)):
                logger.error(f"SKU {sku}: {error}")
            else:
                logger.exception(f"SKU {sku}: {error}")
            await self._finish_price(history_id, "failed", error)
            await self.registry.mark_sync_state(sku, SyncStatus.ERROR, error)
            return EventOutcome(sku, EventStatus.FAILED, message=error, value=target_price)

        await self._finish_price(history_id, "completed")
        await self.registry.mark_sync_state(sku, SyncStatus.SYNCED)
        logger.info(f"SKU {sku}: {source.value} price {source_price} -> {target.value} {target_price} (rate {rate})")
        return EventOutcome(sku, EventStatus.PROCESSED, value=target_price)

    async def _finish_price(self, history_id: int, status: str, error: Optional[str] = None) -> None:
        history = await self.db.get(PriceHistory, history_id, populate_existing=True)
        history.sync_status = status
        history.error_message = error
        history.synced_at = datetime.now(timezone.utc)
        await self.db.commit()

    # ------------------------------------------------------------------
    # Manual adjustments
    # ------------------------------------------------------------------

    async def apply_manual_adjustment(self, sku: str, delta: int, reason: str, performed_by: str = "admin") -> EventOutcome:
        """
        Record an operator adjustment and apply it to both platforms.

        Manual rows carry no order id, so repeated adjustments are never
        treated as duplicates. Raises NotFoundError for unknown SKUs.
        """
        if delta == 0:
            raise ValidationError("adjustment delta must be non-zero")

        mapping = await self.registry.get_active(sku)
        sku = mapping.sku
        ids = {platform: mapping.platform_id(platform) for platform in (Platform.SHOPIFY, Platform.NAVER)}

        result = await self.ledger.record_if_new(
            LedgerEntry(
                sku=sku,
                platform=Platform.MANUAL,
                transaction_type=TransactionType.ADJUSTMENT,
                quantity_delta=delta,
                performed_by=performed_by,
                reason=reason,
            )
        )
        transaction_id = result.transaction.id

        errors = []
        resulting = {}
        for platform, external_id in ids.items():
            try:
                resulting[platform] = await self._call(platform, "adjust_inventory", external_id, delta, sku=sku)
            except Exception as e:
                if not isinstance(e, (PlatformServiceError, ValidationError)):
                    logger.exception(f"Unexpected error adjusting {platform.value} for {sku}")
                errors.append(f"{platform.value} failed: {_describe(e)}")

        if errors:
            # Record which side already moved
            applied = [
                f"{platform.value} applied ({quantity if quantity is not None else 'ok'})"
                for platform, quantity in resulting.items()
            ]
            error = "; ".join(applied + errors)
            logger.error(f"Manual adjustment {delta:+d} for {sku} failed: {error}")
            await self.ledger.mark_synced(transaction_id, SyncOutcome.failed(error))
            await self.registry.mark_sync_state(sku, SyncStatus.ERROR, error)
            return EventOutcome(sku, EventStatus.FAILED, transaction_id=transaction_id, message=error)

        new_quantity = resulting.get(Platform.NAVER)
        previous = new_quantity - delta if new_quantity is not None else None
        await self.ledger.mark_synced(transaction_id, SyncOutcome.completed(previous, new_quantity))
        await self.registry.mark_sync_state(sku, SyncStatus.SYNCED)
        logger.info(f"Manual adjustment {delta:+d} for {sku} by {performed_by}: {reason}")
        return EventOutcome(sku, EventStatus.PROCESSED, transaction_id=transaction_id, value=new_quantity)

    # ------------------------------------------------------------------
    # Scheduled syncs
    # ------------------------------------------------------------------

    async def sync_mapping(
        self,
        mapping: ProductMapping,
        sync_inventory: bool = True,
        sync_prices: bool = True,
    ) -> MappingSyncResult:
        """
        Bring one mapping in line with its priority platform.

        The mapping may be a detached snapshot; it is only read here.
        """
        sku = mapping.sku
        policy = ConflictPolicy(mapping.conflict_policy)
        priority = policy.priority_platform
        ids = {Platform.SHOPIFY: mapping.shopify_variant_id, Platform.NAVER: mapping.naver_product_id}
        pricing_policy = mapping.pricing_policy
        result = MappingSyncResult(sku=sku)

        if sync_inventory:
            result.inventory = await self._sync_inventory(sku, ids, priority)
        if sync_prices:
            result.price = await self._sync_price(sku, ids, priority, pricing_policy)
        return result

    async def _read_both(self, sku: str, ids: Dict[Platform, str], method: str):
        values = {}
        for platform, external_id in ids.items():
            values[platform] = await self._call(platform, method, external_id, sku=sku)
        return values

    async def _sync_inventory(self, sku: str, ids, priority: Optional[Platform]) -> EventOutcome:
        try:
            quantities = await self._read_both(sku, ids, "get_inventory")
        except (PlatformServiceError, ValidationError) as e:
            error = f"inventory read failed: {e}"
            await self.registry.mark_sync_state(sku, SyncStatus.ERROR, error)
            return EventOutcome(sku, EventStatus.FAILED, message=error)

        if quantities[Platform.SHOPIFY] == quantities[Platform.NAVER]:
            return EventOutcome(sku, EventStatus.SKIPPED, message="quantities already in sync",
                                value=quantities[Platform.NAVER])

        if priority is None:
            message = (f"quantity mismatch (shopify={quantities[Platform.SHOPIFY]}, "
                       f"naver={quantities[Platform.NAVER]}) left for manual review")
            logger.warning(f"SKU {sku}: {message}")
            await self.registry.mark_sync_state(sku, SyncStatus.PENDING, message)
            return EventOutcome(sku, EventStatus.SKIPPED, message=message)

        target = counterpart(priority)
        return await self._apply_quantity(
            sku, priority, target, ids[target], quantities[priority],
            reason=f"scheduled sync from {priority.value}",
            target_quantity=quantities[target],
        )

    async def _sync_price(self, sku: str, ids, priority: Optional[Platform], pricing_policy) -> EventOutcome:
        try:
            prices = await self._read_both(sku, ids, "get_price")
        except (PlatformServiceError, ValidationError) as e:
            error = f"price read failed: {e}"
            await self.registry.mark_sync_state(sku, SyncStatus.ERROR, error)
            return EventOutcome(sku, EventStatus.FAILED, message=error)

        source = priority or Platform.NAVER
        target = counterpart(source)
        try:
            expected, _ = await self._derive_price(source, target, prices[source], pricing_policy)
        except ValidationError as e:
            await self.registry.mark_sync_state(sku, SyncStatus.ERROR, str(e))
            return EventOutcome(sku, EventStatus.INVALID, message=str(e))

        if price_diff_percent(prices[target], expected) == 0:
            return EventOutcome(sku, EventStatus.SKIPPED, message="prices already in sync", value=prices[target])

        if priority is None:
            message = f"price mismatch ({target.value}={prices[target]}, expected {expected}) left for manual review"
            logger.warning(f"SKU {sku}: {message}")
            await self.registry.mark_sync_state(sku, SyncStatus.PENDING, message)
            return EventOutcome(sku, EventStatus.SKIPPED, message=message)

        return await self._push_price(sku, source, target, ids[target], prices[source], pricing_policy)

    async def _iter_mappings(self, skus: Optional[Iterable[str]], report: SyncReport) -> AsyncIterator[ProductMapping]:
        if not skus:
            async for mapping in self.registry.list_active():
                yield mapping
            return

        for sku in skus:
            try:
                mapping = await self.registry.get_active(sku)
            except NotFoundError as e:
                report.total += 1
                report.failed += 1
                report.errors.append(str(e))
                continue
            self.db.expunge(mapping)
            yield mapping

    async def _run(self, operation: str, skus, sync_inventory: bool, sync_prices: bool) -> SyncReport:
        report = SyncReport(operation=operation)
        start = time.monotonic()
        logger.info(f"=== {operation.upper()} STARTING ===")

        async for mapping in self._iter_mappings(skus, report):
            try:
                result = await self.sync_mapping(mapping, sync_inventory=sync_inventory, sync_prices=sync_prices)
            except Exception as e:
                # One bad mapping must not stop the run
                logger.exception(f"Unexpected error syncing {mapping.sku}: {e}")
                await self.db.rollback()
                result = MappingSyncResult(
                    sku=mapping.sku,
                    inventory=EventOutcome(mapping.sku, EventStatus.FAILED, message=str(e)),
                )
            report.add(result)

        report.processing_time_seconds = time.monotonic() - start
        report.log_summary()
        return report

    async def run_full_sync(self, skus: Optional[Iterable[str]] = None) -> SyncReport:
        return await self._run("full_sync", skus, sync_inventory=True, sync_prices=True)

    async def run_inventory_sync(self, skus: Optional[Iterable[str]] = None) -> SyncReport:
        return await self._run("inventory_sync", skus, sync_inventory=True, sync_prices=False)

    async def run_price_sync(self, skus: Optional[Iterable[str]] = None) -> SyncReport:
        return await self._run("price_sync", skus, sync_inventory=False, sync_prices=True)
