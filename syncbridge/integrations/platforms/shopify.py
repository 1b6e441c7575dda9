# syncbridge/integrations/platforms/shopify.py
"""
Shopify Admin REST client for the calls the sync engine needs: variant
price/quantity reads, inventory level set/adjust at the configured location,
and variant price updates.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from syncbridge.core.enums import Platform
from syncbridge.core.exceptions import PlatformAPIError, ValidationError
from syncbridge.integrations.base import PlatformInterface, send_request

logger = logging.getLogger(__name__)


class ShopifyPlatform(PlatformInterface):
    platform = Platform.SHOPIFY

    def __init__(
        self,
        api_credentials: Dict[str, str],
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_credentials)
        shop_url = (api_credentials.get("shop_url") or "").strip()
        if not shop_url:
            raise ValidationError("Shopify shop_url is required")
        if not shop_url.startswith("http"):
            shop_url = f"https://{shop_url}"

        self.api_version = api_credentials.get("api_version") or "2025-04"
        self.location_id = api_credentials.get("location_id")
        self.base_url = f"{shop_url.rstrip('/')}/admin/api/{self.api_version}"
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={
                "X-Shopify-Access-Token": api_credentials.get("access_token", ""),
                "Content-Type": "application/json",
            },
        )

    async def _make_request(self, method: str, endpoint: str, data: Optional[Dict] = None, params: Optional[Dict] = None) -> Any:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.debug(f"Shopify {method} {url}")
        return await send_request(self._client, self.platform, method, url, json=data, params=params)

    async def get_variant(self, variant_id: str) -> Dict[str, Any]:
        data = await self._make_request("GET", f"variants/{variant_id}.json")
        variant = data.get("variant")
        if not variant:
            raise PlatformAPIError(f"Shopify variant {variant_id} not found", status_code=404, platform="shopify")
        return variant

    @staticmethod
    def _inventory_item_id(variant: Dict[str, Any], variant_id: str) -> int:
        item_id = variant.get("inventory_item_id")
        if not item_id:
            raise PlatformAPIError(
                f"Shopify variant {variant_id} has no inventory item", status_code=422, platform="shopify"
            )
        return item_id

    def _require_location(self) -> str:
        if not self.location_id:
            raise ValidationError("SHOPIFY_LOCATION_ID is required for inventory updates")
        return self.location_id

    async def get_inventory(self, product_id: str) -> int:
        variant = await self.get_variant(product_id)
        return int(variant.get("inventory_quantity") or 0)

    async def set_inventory(self, product_id: str, quantity: int) -> Optional[int]:
        variant = await self.get_variant(product_id)
        data = await self._make_request(
            "POST",
            "inventory_levels/set.json",
            data={
                "location_id": int(self._require_location()),
                "inventory_item_id": self._inventory_item_id(variant, product_id),
                "available": quantity,
            },
        )
        level = data.get("inventory_level") or {}
        logger.info(f"Shopify variant {product_id} inventory set to {quantity}")
        return level.get("available", quantity)

    async def adjust_inventory(self, product_id: str, delta: int) -> Optional[int]:
        variant = await self.get_variant(product_id)
        data = await self._make_request(
            "POST",
            "inventory_levels/adjust.json",
            data={
                "location_id": int(self._require_location()),
                "inventory_item_id": self._inventory_item_id(variant, product_id),
                "available_adjustment": delta,
            },
        )
        level = data.get("inventory_level") or {}
        logger.info(f"Shopify variant {product_id} inventory adjusted by {delta:+d}")
        return level.get("available")

    async def get_price(self, product_id: str) -> float:
        variant = await self.get_variant(product_id)
        return float(variant.get("price") or 0)

    async def set_price(self, product_id: str, price: float) -> bool:
        await self._make_request(
            "PUT",
            f"variants/{product_id}.json",
            data={"variant": {"id": int(product_id), "price": f"{price:.2f}"}},
        )
        logger.info(f"Shopify variant {product_id} price set to {price:.2f}")
        return True

    async def close(self) -> None:
        await self._client.aclose()
