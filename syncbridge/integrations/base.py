"""
Contract every platform client implements, plus the shared HTTP error
mapping used by the concrete clients.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from syncbridge.core.enums import Platform, StockOperation, SyncStatus
from syncbridge.core.exceptions import PlatformAPIError, TransientPlatformError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class PlatformInterface(ABC):
    platform: Platform

    def __init__(self, api_credentials: Dict[str, str]):
        self.api_credentials = api_credentials
        self._last_sync: Optional[datetime] = None
        self._sync_status = SyncStatus.PENDING

    @abstractmethod
    async def get_inventory(self, product_id: str) -> int:
        """Current sellable quantity"""
        pass

    @abstractmethod
    async def set_inventory(self, product_id: str, quantity: int) -> Optional[int]:
        """Set an absolute quantity; returns the resulting quantity if reported"""
        pass

    @abstractmethod
    async def adjust_inventory(self, product_id: str, delta: int) -> Optional[int]:
        """Apply a relative change; returns the resulting quantity if reported"""
        pass

    @abstractmethod
    async def get_price(self, product_id: str) -> float:
        """Current sale price in the platform currency"""
        pass

    @abstractmethod
    async def set_price(self, product_id: str, price: float) -> bool:
        """Update the sale price"""
        pass

    async def update_stock(self, product_id: str, quantity: int, operation: StockOperation = StockOperation.SET) -> Optional[int]:
        """Dispatch a stock operation to set/adjust."""
        operation = StockOperation(operation)
        if operation == StockOperation.SET:
            return await self.set_inventory(product_id, quantity)
        if operation == StockOperation.ADD:
            return await self.adjust_inventory(product_id, abs(quantity))
        return await self.adjust_inventory(product_id, -abs(quantity))

    async def close(self) -> None:
        pass


def check_response(response: httpx.Response, platform: Platform) -> Any:
    """
    Map an HTTP response onto the error taxonomy and return its JSON body.

    429 and 5xx are transient (retried by the sync layer); any other 4xx is
    permanent.
    """
    status = response.status_code
    if status in TRANSIENT_STATUS_CODES or status >= 500:
        logger.warning(f"{platform.value} API transient error {status}: {response.text[:300]}")
        raise TransientPlatformError(
            f"{platform.value} API returned {status}", status_code=status, platform=platform.value
        )
    if status >= 400:
        logger.error(f"{platform.value} API error {status}: {response.text[:500]}")
        raise PlatformAPIError(
            f"{platform.value} API request failed ({status}): {response.text[:200]}",
            status_code=status,
            platform=platform.value,
        )
    if status == 204 or not response.content:
        return {}
    try:
        return response.json()
    except ValueError as e:
        logger.error(f"{platform.value} API returned a non-JSON body ({status}): {response.text[:300]}")
        raise PlatformAPIError(
            f"{platform.value} API returned an unreadable response ({status})",
            status_code=status,
            platform=platform.value,
        ) from e


async def send_request(client: httpx.AsyncClient, platform: Platform, method: str, url: str, **kwargs) -> Any:
    """Issue a request, turning network failures into TransientPlatformError."""
    try:
        response = await client.request(method, url, **kwargs)
    except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as e:
        raise TransientPlatformError(
            f"{platform.value} API unreachable: {e.__class__.__name__}", platform=platform.value
        ) from e
    return check_response(response, platform)
