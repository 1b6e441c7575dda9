# syncbridge/services/exchange_rate_service.py
"""
Exchange rate series with explicit validity windows.

The current rate is always a query over the table ("which row covers time
T"), never process state, so every price computed can be traced back to the
row it used.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from sqlalchemy import select, update, or_, and_

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import ExchangeRateSource
from syncbridge.core.exceptions import (
    ExchangeRateNotFoundError,
    TransientPlatformError,
    ValidationError,
)
from syncbridge.models.exchange_rate import ExchangeRate

logger = logging.getLogger(__name__)


class ExchangeRateService:
    def __init__(self, db, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.base_currency = self.settings.BASE_CURRENCY
        self.quote_currency = self.settings.LOCAL_CURRENCY

    def _pair_filter(self):
        return and_(
            ExchangeRate.base_currency == self.base_currency,
            ExchangeRate.quote_currency == self.quote_currency,
        )

    async def resolve_current_rate(self, at: Optional[datetime] = None) -> ExchangeRate:
        """Return the row whose validity window contains `at` (default now)."""
        at = at or datetime.now(timezone.utc)
        stmt = (
            select(ExchangeRate)
            .where(
                self._pair_filter(),
                ExchangeRate.valid_from <= at,
                or_(ExchangeRate.valid_until.is_(None), ExchangeRate.valid_until > at),
            )
            .order_by(ExchangeRate.valid_from.desc(), ExchangeRate.id.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        rate = result.scalar_one_or_none()
        if rate is None:
            raise ExchangeRateNotFoundError(
                f"No {self.base_currency}/{self.quote_currency} rate valid at {at.isoformat()}"
            )
        return rate

    async def current_rate_value(self, at: Optional[datetime] = None) -> Optional[float]:
        """Current rate as a float, or None when the table has no valid row."""
        try:
            return (await self.resolve_current_rate(at)).rate
        except ExchangeRateNotFoundError:
            return None

    async def record_rate(
        self,
        rate: float,
        source: ExchangeRateSource = ExchangeRateSource.AUTO,
        valid_from: Optional[datetime] = None,
        valid_hours: Optional[int] = None,
    ) -> ExchangeRate:
        """
        Append a new rate and close the window of the row it supersedes.
        """
        if rate is None or rate <= 0:
            raise ValidationError(f"exchange rate must be positive, got {rate}")

        source = ExchangeRateSource(source)
        valid_from = valid_from or datetime.now(timezone.utc)
        if valid_hours is None:
            if source == ExchangeRateSource.MANUAL:
                valid_hours = self.settings.MANUAL_RATE_VALIDITY_DAYS * 24
            else:
                valid_hours = self.settings.EXCHANGE_RATE_VALIDITY_HOURS

        # Close any window still open at valid_from
        await self.db.execute(
            update(ExchangeRate)
            .where(
                self._pair_filter(),
                ExchangeRate.valid_from <= valid_from,
                or_(ExchangeRate.valid_until.is_(None), ExchangeRate.valid_until > valid_from),
            )
            .values(valid_until=valid_from)
            .execution_options(synchronize_session=False)
        )

        row = ExchangeRate(
            base_currency=self.base_currency,
            quote_currency=self.quote_currency,
            rate=rate,
            source=source.value,
            valid_from=valid_from,
            valid_until=valid_from + timedelta(hours=valid_hours),
        )
        self.db.add(row)
        await self.db.commit()

        logger.info(
            f"Recorded {source.value} rate {self.base_currency}/{self.quote_currency}={rate} "
            f"valid for {valid_hours}h"
        )
        return row

    async def refresh_from_api(self, client: Optional[httpx.AsyncClient] = None) -> ExchangeRate:
        """Fetch the latest quote from the public rate API and record it."""
        url = f"{self.settings.EXCHANGE_RATE_API_URL.rstrip('/')}/{self.base_currency}"
        owns_client = client is None
        client = client or httpx.AsyncClient(timeout=self.settings.PLATFORM_REQUEST_TIMEOUT)
        try:
            response = await client.get(url)
            if response.status_code >= 400:
                raise TransientPlatformError(
                    f"Exchange rate API returned {response.status_code}",
                    status_code=response.status_code,
                    platform="exchange_rate_api",
                )
            data = response.json()
        except httpx.RequestError as e:
            raise TransientPlatformError(f"Exchange rate API unreachable: {e}", platform="exchange_rate_api") from e
        finally:
            if owns_client:
                await client.aclose()

        quote = (data.get("rates") or {}).get(self.quote_currency)
        if not quote:
            raise ValidationError(f"Exchange rate API response has no {self.quote_currency} quote")

        logger.info(f"Fetched {self.base_currency}/{self.quote_currency} rate {quote}")
        return await self.record_rate(float(quote), ExchangeRateSource.AUTO)
