# syncbridge/services/stock_alerts.py
"""
Low-stock and failed-sync alerting.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import Platform
from syncbridge.core.exceptions import PlatformServiceError, ValidationError
from syncbridge.integrations.base import PlatformInterface
from syncbridge.services.mapping_registry import MappingRegistry
from syncbridge.services.notification_service import EmailNotificationService
from syncbridge.services.transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)


@dataclass
class LowStockReport:
    threshold: int
    items: List[Dict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    notified: bool = False


class StockAlertService:
    def __init__(
        self,
        db: AsyncSession,
        platforms: Dict[str, PlatformInterface],
        settings: Optional[Settings] = None,
        notifier: Optional[EmailNotificationService] = None,
    ):
        self.db = db
        self.platforms = platforms
        self.settings = settings or get_settings()
        self.notifier = notifier or EmailNotificationService(self.settings)
        self.registry = MappingRegistry(db, self.settings)
        self.ledger = TransactionLedger(db)

    async def check_low_stock(self, threshold: Optional[int] = None, notify: bool = True) -> LowStockReport:
        """List active SKUs below the threshold on either platform."""
        threshold = self.settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
        report = LowStockReport(threshold=threshold)

        async for mapping in self.registry.list_active():
            quantities = {}
            for platform in (Platform.NAVER, Platform.SHOPIFY):
                client = self.platforms.get(platform.value)
                if client is None:
                    continue
                try:
                    quantities[platform.value] = await client.get_inventory(mapping.platform_id(platform))
                except (PlatformServiceError, ValidationError) as e:
                    report.errors.append(f"{mapping.sku} ({platform.value}): {e}")

            if any(q < threshold for q in quantities.values()):
                report.items.append({
                    "sku": mapping.sku,
                    "naver_quantity": quantities.get(Platform.NAVER.value),
                    "shopify_quantity": quantities.get(Platform.SHOPIFY.value),
                })

        logger.info(f"Low stock check: {len(report.items)} SKU(s) below {threshold}, {len(report.errors)} error(s)")
        if notify and report.items:
            report.notified = await self.notifier.send_low_stock_alert(report.items, threshold)
        return report

    async def notify_failed_transactions(self, since: datetime) -> int:
        """Email failed ledger rows created since `since`; returns the count."""
        failed = await self.ledger.failed_since(since)
        if not failed:
            return 0

        await self.notifier.send_sync_failure_alert([
            {
                "id": tx.id,
                "sku": tx.sku,
                "platform": tx.platform,
                "transaction_type": tx.transaction_type,
                "error_message": tx.error_message,
            }
            for tx in failed
        ])
        logger.warning(f"{len(failed)} failed inventory transaction(s) since {since.isoformat()}")
        return len(failed)
