"""Discount calculation for subscription and charge prices."""

import logging
from decimal import Decimal
from typing import Optional

from . import constants
from .errors import BillingValidationError
from .schema import Discount, FixedDiscount, PercentageDiscount, quantize

logger = logging.getLogger(__name__)


def apply_discount(price: Decimal, discount: Optional[Discount] = None) -> Decimal:
    """
    Apply a discount to a price.

    A missing discount or a non-positive value leaves the price unchanged.
    Out-of-range values are rejected, never clamped.

    Args:
        price: Price before discount
        discount: Percentage or fixed discount

    Returns:
        Discounted price, rounded to cents

    Raises:
        BillingValidationError: Percentage outside 0-100 or fixed amount above price
    """
    price = quantize(price)
    if discount is None or discount.value <= 0:
        return price

    if isinstance(discount, PercentageDiscount):
        if discount.value > constants.MAX_PERCENTAGE:
            raise BillingValidationError(
                f"percentage discount must be between 0 and 100, got {discount.value}"
            )
        discounted = price * (1 - Decimal(discount.value) / constants.HUNDRED)
    elif isinstance(discount, FixedDiscount):
        if discount.value > price:
            raise BillingValidationError(
                f"fixed discount {discount.value} exceeds price {price}"
            )
        discounted = max(constants.ZERO_AMOUNT, price - Decimal(discount.value))
    else:
        raise TypeError(f"Unknown discount: {discount!r}")

    result = quantize(discounted)
    logger.debug("Applied %s discount %s: %s -> %s", discount.type, discount.value, price, result)
    return result
