"""
Builds the platform clients from settings at application startup.

get_platform_credentials: loads credentials per platform from Settings and
drops platforms whose essential values are missing.
setup_platforms: instantiates the concrete clients keyed by platform slug.
"""

import logging
from typing import Dict, Optional

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import Platform
from syncbridge.integrations.base import PlatformInterface
from syncbridge.integrations.platforms.naver import NaverPlatform
from syncbridge.integrations.platforms.shopify import ShopifyPlatform

logger = logging.getLogger(__name__)


def get_platform_credentials(settings: Settings) -> Dict[str, Dict[str, str]]:
    """
    Get credentials for all platforms from environment/config
    """
    creds = {
        "shopify": {
            "shop_url": settings.SHOPIFY_SHOP_URL,
            "access_token": settings.SHOPIFY_ADMIN_API_ACCESS_TOKEN,
            "api_version": settings.SHOPIFY_API_VERSION,
            "location_id": settings.SHOPIFY_LOCATION_ID,
        },
        "naver": {
            "base_url": settings.NAVER_API_BASE_URL,
            "client_id": settings.NAVER_CLIENT_ID,
            "client_secret": settings.NAVER_CLIENT_SECRET,
        },
    }
    # Return only platforms where essential credentials are present
    return {
        p: c for p, c in creds.items()
        if p == "shopify" and c.get("shop_url") and c.get("access_token")
        or p == "naver" and c.get("client_id") and c.get("client_secret")
    }


def setup_platforms(settings: Optional[Settings] = None) -> Dict[str, PlatformInterface]:
    """
    Initialize the platform clients used by the sync engine
    """
    settings = settings or get_settings()
    credentials = get_platform_credentials(settings)
    platforms: Dict[str, PlatformInterface] = {}

    if "shopify" in credentials:
        try:
            platforms[Platform.SHOPIFY.value] = ShopifyPlatform(
                credentials["shopify"], timeout=settings.PLATFORM_REQUEST_TIMEOUT
            )
            logger.info("Registered Shopify Platform Integration")
        except Exception as e:
            logger.error(f"Failed to initialize Shopify Platform: {e}")
    else:
        logger.info("Shopify credentials not found or incomplete in config, skipping registration.")

    if "naver" in credentials:
        try:
            platforms[Platform.NAVER.value] = NaverPlatform(
                credentials["naver"],
                timeout=settings.PLATFORM_REQUEST_TIMEOUT,
                requests_per_second=settings.NAVER_REQUESTS_PER_SECOND,
            )
            logger.info("Registered Naver Commerce Platform Integration")
        except Exception as e:
            logger.error(f"Failed to initialize Naver Platform: {e}")
    else:
        logger.info("Naver credentials not found or incomplete in config, skipping registration.")

    return platforms


async def close_platforms(platforms: Dict[str, PlatformInterface]) -> None:
    for name, platform in platforms.items():
        try:
            await platform.close()
        except Exception as e:
            logger.warning(f"Error closing {name} client: {e}")
