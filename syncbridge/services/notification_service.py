"""Email notification helpers for sync alerts."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import List, Optional, Sequence

from syncbridge.core.config import Settings

logger = logging.getLogger(__name__)


class EmailNotificationService:
    """SMTP alerts for stock levels, failed syncs and dead-lettered messages."""

    def __init__(self, settings: Settings):
        self._settings = settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def send_low_stock_alert(
        self,
        items: Sequence[dict],
        threshold: int,
        recipients: Optional[Sequence[str]] = None,
    ) -> bool:
        """Send a summary of SKUs whose stock is below the threshold.

        Args:
            items: Dicts with ``sku``, ``naver_quantity`` and ``shopify_quantity``.
            threshold: The quantity the items fell below.
            recipients: Override the default notification list.
        """
        if not items:
            return False

        lines = [f"{len(items)} SKU(s) below the low-stock threshold of {threshold}:", ""]
        for item in items:
            lines.append(
                f"- {item['sku']}: naver={item.get('naver_quantity')}, shopify={item.get('shopify_quantity')}"
            )
        return await self._send(f"Low stock: {len(items)} SKU(s) below {threshold}", lines, recipients)

    async def send_sync_failure_alert(
        self,
        failures: Sequence[dict],
        recipients: Optional[Sequence[str]] = None,
    ) -> bool:
        """Send a summary of inventory transactions that failed to sync."""
        if not failures:
            return False

        lines = [f"{len(failures)} inventory transaction(s) failed to sync:", ""]
        for failure in failures:
            lines.append(
                f"- #{failure.get('id')} {failure.get('sku')} {failure.get('transaction_type')} "
                f"({failure.get('platform')}): {failure.get('error_message')}"
            )
        return await self._send(f"Sync failures: {len(failures)} transaction(s)", lines, recipients)

    async def send_dead_letter_alert(
        self,
        message_id: str,
        error: str,
        attempts: int,
        body: Optional[str] = None,
        recipients: Optional[Sequence[str]] = None,
    ) -> bool:
        """Alert that a queue message exhausted its delivery attempts."""
        lines = [
            f"Message {message_id} moved to the dead-letter list after {attempts} attempt(s).",
            f"Last error: {error}",
        ]
        if body:
            lines.extend(["", "Body:", body[:2000]])
        return await self._send(f"Sync message dead-lettered: {message_id}", lines, recipients)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    async def _send(self, subject: str, lines: List[str], recipients: Optional[Sequence[str]]) -> bool:
        settings = self._settings
        if not (settings.SMTP_HOST and settings.SMTP_USERNAME and settings.SMTP_PASSWORD):
            logger.warning("SMTP configuration incomplete; alert skipped: %s", subject)
            return False

        to_addresses = sorted({email.strip() for email in (recipients or settings.NOTIFICATION_EMAILS) if email.strip()})
        if not to_addresses:
            logger.warning("No recipients configured for alert; skipping email")
            return False

        message = EmailMessage()
        message["Subject"] = f"[SyncBridge] {subject}"
        message["From"] = formataddr(
            (settings.SMTP_FROM_NAME or "SyncBridge Alerts", settings.SMTP_FROM_EMAIL or settings.SMTP_USERNAME)
        )
        message["To"] = ", ".join(to_addresses)
        message.set_content("\n".join(lines))

        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send alert email %r: %s", subject, exc, exc_info=True)
            return False
        logger.info("Alert email %r sent to %s", subject, message["To"])
        return True

    def _send_sync(self, message: EmailMessage) -> None:
        settings = self._settings
        port = settings.SMTP_PORT or (465 if settings.SMTP_USE_SSL else 587)
        smtp_class = smtplib.SMTP_SSL if settings.SMTP_USE_SSL else smtplib.SMTP

        with smtp_class(host=settings.SMTP_HOST, port=port, timeout=settings.SMTP_TIMEOUT) as smtp:
            if settings.SMTP_USE_TLS and not settings.SMTP_USE_SSL:
                smtp.starttls()
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(message)
