# syncbridge/integrations/platforms/naver.py
"""
Naver Commerce API client.

Authentication uses the client-credentials token endpoint with a
`client_secret_sign`: bcrypt("{client_id}_{timestamp}", salt=client_secret),
base64 encoded. Tokens are cached until shortly before expiry. Requests are
throttled to the account's rate limit (2 req/s by default).
"""

import asyncio
import base64
import logging
import time
from typing import Any, Dict, Optional

import bcrypt
import httpx

from syncbridge.core.enums import Platform, StockOperation
from syncbridge.core.exceptions import PlatformAPIError, ValidationError
from syncbridge.integrations.base import PlatformInterface, send_request

logger = logging.getLogger(__name__)

TOKEN_PATH = "/external/v1/oauth2/token"


def client_secret_sign(client_id: str, client_secret: str, timestamp_ms: str) -> str:
    password = f"{client_id}_{timestamp_ms}"
    hashed = bcrypt.hashpw(password.encode("utf-8"), client_secret.encode("utf-8"))
    return base64.b64encode(hashed).decode("utf-8")


class RateLimiter:
    """Spaces calls at least 1/rate seconds apart."""

    def __init__(self, requests_per_second: float):
        self.interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._lock = asyncio.Lock()
        self._last_call = 0.0

    async def wait(self):
        if not self.interval:
            return
        async with self._lock:
            elapsed = time.monotonic() - self._last_call
            if elapsed < self.interval:
                await asyncio.sleep(self.interval - elapsed)
            self._last_call = time.monotonic()


class NaverPlatform(PlatformInterface):
    platform = Platform.NAVER

    def __init__(
        self,
        api_credentials: Dict[str, str],
        timeout: float = 30.0,
        requests_per_second: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_credentials)
        self.client_id = api_credentials.get("client_id") or ""
        self.client_secret = api_credentials.get("client_secret") or ""
        if not self.client_id or not self.client_secret:
            raise ValidationError("Naver client_id and client_secret are required")

        self.base_url = (api_credentials.get("base_url") or "https://api.commerce.naver.com").rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._limiter = RateLimiter(requests_per_second)
        self._access_token: Optional[str] = None
        self._expires_at = 0.0

    async def _get_access_token(self) -> str:
        if self._access_token and time.time() < self._expires_at - 60:
            return self._access_token

        timestamp = str(int(time.time() * 1000))
        payload = {
            "client_id": self.client_id,
            "timestamp": timestamp,
            "client_secret_sign": client_secret_sign(self.client_id, self.client_secret, timestamp),
            "grant_type": "client_credentials",
            "type": "SELF",
        }
        await self._limiter.wait()
        data = await send_request(self._client, self.platform, "POST", f"{self.base_url}{TOKEN_PATH}", data=payload)

        token = data.get("access_token")
        if not token:
            raise PlatformAPIError("Naver token response has no access_token", platform="naver")
        self._access_token = token
        self._expires_at = time.time() + int(data.get("expires_in", 3600))
        logger.info("Refreshed Naver Commerce access token")
        return token

    async def _make_request(self, method: str, endpoint: str, data: Optional[Dict] = None) -> Any:
        token = await self._get_access_token()
        await self._limiter.wait()
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.debug(f"Naver {method} {url}")
        return await send_request(
            self._client,
            self.platform,
            method,
            url,
            json=data,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def get_product(self, product_id: str) -> Dict[str, Any]:
        return await self._make_request("GET", f"/external/v1/products/{product_id}")

    async def get_inventory(self, product_id: str) -> int:
        product = await self.get_product(product_id)
        return int(product.get("stockQuantity") or 0)

    async def update_stock(self, product_id: str, quantity: int, operation: StockOperation = StockOperation.SET) -> Optional[int]:
        """Naver applies SET/ADD/SUBTRACT natively through operationType."""
        operation = StockOperation(operation)
        data = await self._make_request(
            "PUT",
            f"/external/v1/products/{product_id}/stock",
            data={"stockQuantity": abs(quantity), "operationType": operation.value},
        )
        logger.info(f"Naver product {product_id} stock {operation.value} {abs(quantity)}")
        result = (data or {}).get("stockQuantity")
        if result is None and operation == StockOperation.SET:
            return quantity
        return result

    async def set_inventory(self, product_id: str, quantity: int) -> Optional[int]:
        return await self.update_stock(product_id, quantity, StockOperation.SET)

    async def adjust_inventory(self, product_id: str, delta: int) -> Optional[int]:
        operation = StockOperation.ADD if delta >= 0 else StockOperation.SUBTRACT
        return await self.update_stock(product_id, abs(delta), operation)

    async def get_price(self, product_id: str) -> float:
        product = await self.get_product(product_id)
        return float(product.get("salePrice") or 0)

    async def set_price(self, product_id: str, price: float) -> bool:
        await self._make_request(
            "PUT",
            f"/external/v1/products/{product_id}/price",
            data={"salePrice": int(round(price))},
        )
        logger.info(f"Naver product {product_id} price set to {int(round(price))}")
        return True

    async def close(self) -> None:
        await self._client.aclose()
