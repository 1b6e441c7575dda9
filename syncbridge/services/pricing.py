"""
Cross-platform price calculations.

Naver lists in KRW and Shopify in USD. A rate is the number of KRW per 1 USD.
Going local -> foreign divides by the rate and applies the margin; going
foreign -> local is the inverse (multiply by the rate, remove the margin), so
a round trip returns the original price.

All functions here are pure: the caller resolves the rate and the policy.
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from syncbridge.core.enums import ExchangeRateMode, Platform
from syncbridge.core.exceptions import ValidationError

MIN_MARGIN = 1.0
MAX_MARGIN = 2.0

# Decimal places per currency
CURRENCY_DECIMALS = {"USD": 2, "KRW": 0}


class PriceDirection(str, Enum):
    LOCAL_TO_FOREIGN = "local_to_foreign"  # Naver (KRW) -> Shopify (USD)
    FOREIGN_TO_LOCAL = "foreign_to_local"  # Shopify (USD) -> Naver (KRW)


def round_price(value: float, decimals: int) -> float:
    """Round half-up to a fixed number of decimals."""
    quantum = Decimal(1).scaleb(-decimals)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return float(rounded)


def validate_margin(margin: float, min_margin: float = MIN_MARGIN, max_margin: float = MAX_MARGIN) -> float:
    """
    Reject margins outside the allowed range (inclusive).

    1.0 means no markup, 2.0 means 100% markup. Out-of-range values are an
    error, never clamped.
    """
    if margin is None:
        raise ValidationError("margin multiplier is required")
    if not (min_margin <= margin <= max_margin):
        raise ValidationError(
            f"margin multiplier {margin} outside allowed range {min_margin}-{max_margin}"
        )
    return margin


def direction_for(source_platform, target_platform) -> PriceDirection:
    source = Platform(source_platform)
    target = Platform(target_platform)
    if source == Platform.NAVER and target == Platform.SHOPIFY:
        return PriceDirection.LOCAL_TO_FOREIGN
    if source == Platform.SHOPIFY and target == Platform.NAVER:
        return PriceDirection.FOREIGN_TO_LOCAL
    raise ValidationError(f"No price conversion from {source.value} to {target.value}")


def compute_target_price(
    source_price: float,
    policy,
    rate: float,
    direction: PriceDirection = PriceDirection.LOCAL_TO_FOREIGN,
    min_margin: float = MIN_MARGIN,
    max_margin: float = MAX_MARGIN,
) -> float:
    """
    Derive the price on the target platform.

    Args:
        source_price: Price on the source platform, in its currency
        policy: Anything with a `margin_multiplier` attribute (PricingPolicy)
        rate: KRW per 1 USD
        direction: Conversion direction

    Returns:
        Target price rounded for the target currency (USD cents, whole KRW)
    """
    margin = validate_margin(policy.margin_multiplier, min_margin, max_margin)

    if rate is None or rate <= 0:
        raise ValidationError(f"exchange rate must be positive, got {rate}")
    if source_price is None or source_price < 0:
        raise ValidationError(f"source price must be non-negative, got {source_price}")

    if direction == PriceDirection.LOCAL_TO_FOREIGN:
        return round_price((source_price / rate) * margin, CURRENCY_DECIMALS["USD"])

    return round_price(source_price * rate / margin, CURRENCY_DECIMALS["KRW"])


def resolve_rate(policy, current_rate: Optional[float]) -> float:
    """
    Pick the rate a policy prices with: its manual rate under manual mode,
    otherwise the current table rate.
    """
    if ExchangeRateMode(policy.exchange_rate_mode) == ExchangeRateMode.MANUAL:
        if not policy.manual_rate or policy.manual_rate <= 0:
            raise ValidationError("manual exchange rate mode requires a positive manual_rate")
        return policy.manual_rate

    if current_rate is None or current_rate <= 0:
        raise ValidationError("no current exchange rate available")
    return current_rate


def price_diff_percent(actual: float, expected: float) -> float:
    """Relative difference of `actual` from `expected`, in percent (2 dp)."""
    if expected == 0:
        return 0.0 if actual == 0 else 100.0
    return round(abs(actual - expected) / expected * 100, 2)
