from .shopify import ShopifyPlatform
from .naver import NaverPlatform
