# tests/unit/integrations/platforms/test_shopify_platform.py
import json

import httpx
import pytest

from syncbridge.core.enums import StockOperation
from syncbridge.core.exceptions import PlatformAPIError, TransientPlatformError, ValidationError
from syncbridge.integrations.platforms.shopify import ShopifyPlatform

VARIANT = {"id": 1001, "price": "129.99", "inventory_quantity": 7, "inventory_item_id": 555}


def make_platform(handler, location_id="42"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ShopifyPlatform(
        {"shop_url": "guitars.myshopify.com", "access_token": "shpat_test", "location_id": location_id},
        client=client,
    )


def variant_handler(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "GET" and request.url.path.endswith("/variants/1001.json"):
            return httpx.Response(200, json={"variant": VARIANT})
        if request.url.path.endswith("/inventory_levels/set.json"):
            body = json.loads(request.content)
            return httpx.Response(200, json={"inventory_level": {"available": body["available"]}})
        if request.url.path.endswith("/inventory_levels/adjust.json"):
            body = json.loads(request.content)
            return httpx.Response(200, json={"inventory_level": {"available": 7 + body["available_adjustment"]}})
        if request.method == "PUT":
            return httpx.Response(200, json={"variant": VARIANT})
        return httpx.Response(404, json={"errors": "Not Found"})
    return handler


def test_requires_shop_url():
    with pytest.raises(ValidationError):
        ShopifyPlatform({"access_token": "x"})


async def test_reads_quantity_and_price_from_variant():
    requests = []
    platform = make_platform(variant_handler(requests))

    assert await platform.get_inventory("1001") == 7
    assert await platform.get_price("1001") == 129.99
    assert str(requests[0].url) == "https://guitars.myshopify.com/admin/api/2025-04/variants/1001.json"


async def test_set_inventory_posts_absolute_level():
    requests = []
    platform = make_platform(variant_handler(requests))

    result = await platform.set_inventory("1001", 3)

    assert result == 3
    body = json.loads(requests[-1].content)
    assert body == {"location_id": 42, "inventory_item_id": 555, "available": 3}


async def test_update_stock_subtract_adjusts_by_negative_delta():
    requests = []
    platform = make_platform(variant_handler(requests))

    result = await platform.update_stock("1001", 2, StockOperation.SUBTRACT)

    assert result == 5
    assert json.loads(requests[-1].content)["available_adjustment"] == -2


async def test_inventory_write_without_location_is_rejected():
    platform = make_platform(variant_handler([]), location_id=None)

    with pytest.raises(ValidationError):
        await platform.adjust_inventory("1001", 1)


async def test_set_price_formats_two_decimals():
    requests = []
    platform = make_platform(variant_handler(requests))

    assert await platform.set_price("1001", 8.63) is True
    assert json.loads(requests[-1].content) == {"variant": {"id": 1001, "price": "8.63"}}


async def test_rate_limit_is_transient():
    platform = make_platform(lambda request: httpx.Response(429, text="Too Many Requests"))

    with pytest.raises(TransientPlatformError) as exc_info:
        await platform.get_inventory("1001")
    assert exc_info.value.status_code == 429


async def test_missing_variant_is_permanent():
    platform = make_platform(variant_handler([]))

    with pytest.raises(PlatformAPIError) as exc_info:
        await platform.get_price("9999")
    assert not isinstance(exc_info.value, TransientPlatformError)
    assert exc_info.value.status_code == 404


async def test_network_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    platform = make_platform(handler)

    with pytest.raises(TransientPlatformError):
        await platform.get_inventory("1001")


async def test_non_json_success_body_is_a_platform_error():
    platform = make_platform(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(PlatformAPIError) as exc_info:
        await platform.get_inventory("1001")
    assert not isinstance(exc_info.value, TransientPlatformError)
    assert exc_info.value.status_code == 200


async def test_variant_without_inventory_item_is_a_platform_error():
    requests = []
    variant = {key: value for key, value in VARIANT.items() if key != "inventory_item_id"}

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"variant": variant})

    platform = make_platform(handler)

    with pytest.raises(PlatformAPIError):
        await platform.adjust_inventory("1001", -1)
    assert [r.method for r in requests] == ["GET"]
