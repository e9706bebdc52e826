"""
Order-level aggregation of line items and adjustments.

Totals are computed in a fixed order with two-decimal rounding after each
step: item discounts first, then the flat global discount, then tax on the
discounted subtotal, then untaxed freight.
"""

from decimal import Decimal
from typing import Any, Iterable

from order_pricing.core.logging import get_logger
from order_pricing.schemas.orders import LineItem, OrderTotals, PaymentMethod
from order_pricing.services.pricing.money import (
    HUNDRED,
    ZERO,
    clamp,
    round2,
    to_decimal,
)

logger = get_logger(__name__)


def calculate_items_subtotal(items: Iterable[LineItem]) -> Decimal:
    """Sum of selling price times quantity over all lines, before the global discount."""
    return round2(
        sum((item.final_price * item.quantity for item in items), start=ZERO)
    )


def calculate_order_totals(
    items: Iterable[LineItem],
    global_discount: Any = ZERO,
    tax_percentage: Any = ZERO,
    freight_charges: Any = ZERO,
) -> OrderTotals:
    """
    Calculate order totals from line items and order-level adjustments.

    Args:
        items: Line items of the order
        global_discount: Flat discount applied after item discounts
        tax_percentage: Tax percentage charged on the discounted subtotal
        freight_charges: Freight added after tax

    Returns:
        OrderTotals with every step rounded to two decimals
    """
    items = list(items)
    global_discount = round2(global_discount)
    tax_percentage = to_decimal(tax_percentage)
    freight_charges = round2(freight_charges)

    original_total = round2(
        sum((item.original_price * item.quantity for item in items), start=ZERO)
    )
    items_subtotal = calculate_items_subtotal(items)
    item_discount_amount = round2(original_total - items_subtotal)
    total_discount_amount = item_discount_amount + global_discount
    subtotal = round2(items_subtotal - global_discount)
    tax_amount = round2(subtotal * tax_percentage / HUNDRED)
    grand_total = round2(subtotal + tax_amount + freight_charges)

    logger.debug(
        "Calculated order totals",
        item_count=len(items),
        items_subtotal=float(items_subtotal),
        global_discount=float(global_discount),
        tax_amount=float(tax_amount),
        grand_total=float(grand_total),
    )

    return OrderTotals(
        original_total=original_total,
        items_subtotal=items_subtotal,
        item_discount_amount=item_discount_amount,
        global_discount=global_discount,
        total_discount_amount=total_discount_amount,
        subtotal=subtotal,
        tax_percentage=tax_percentage,
        tax_amount=tax_amount,
        freight_charges=freight_charges,
        grand_total=grand_total,
    )


def global_discount_from_percentage(items_subtotal: Any, percentage: Any) -> Decimal:
    """
    Convert a percentage global discount into a flat amount.

    Args:
        items_subtotal: Subtotal after item discounts
        percentage: Discount percentage, clamped to [0, 100]

    Returns:
        Flat discount amount
    """
    percentage = clamp(to_decimal(percentage), ZERO, HUNDRED)
    return round2(to_decimal(items_subtotal) * percentage / HUNDRED)


def calculate_balance_due(
    grand_total: Any, payment_methods: Iterable[PaymentMethod]
) -> Decimal:
    """Grand total less recorded payments."""
    paid = round2(sum((p.amount for p in payment_methods), start=ZERO))
    return round2(to_decimal(grand_total) - paid)
