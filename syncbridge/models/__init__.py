from .product_mapping import ProductMapping, PricingPolicy
from .inventory_transaction import InventoryTransaction
from .price_history import PriceHistory
from .exchange_rate import ExchangeRate
from .webhook import WebhookEvent

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'ProductMapping',
    'PricingPolicy',
    'InventoryTransaction',
    'PriceHistory',
    'ExchangeRate',
    'WebhookEvent',
]
