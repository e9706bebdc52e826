"""
Line item pricing engine.

This module implements the PricingEngine class that applies a single user
edit (quantity, selling price, rate, discount percentage, add, remove) to
a line item and keeps its derived fields consistent. Out-of-range input is
clamped rather than rejected, matching an editable-form workflow.

Editing the selling price directly and editing the discount percentage are
separate operations: a direct price edit does not back-derive the discount
fields, and a discount edit overwrites the selling price.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional

from order_pricing.core.logging import get_logger
from order_pricing.schemas.orders import CatalogProduct, CustomProduct, LineItem
from order_pricing.services.orders.enums import LineItemKind, ReturnStatus
from order_pricing.services.pricing.money import (
    HUNDRED,
    ZERO,
    clamp,
    round2,
    to_decimal,
)

logger = get_logger(__name__)


class PricingError(Exception):
    """Base exception for pricing errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class LineItemNotFoundError(PricingError):
    """Raised when an edit targets a line item that is not in the order."""

    pass


class PricingEngine:
    """
    Pricing operations on individual line items.

    Every operation returns a new LineItem; the input item is never mutated.
    Line tax is denormalized from the order tax percentage for display only.
    """

    MIN_PRICE = Decimal("0.00")
    MIN_DISCOUNT_PERCENTAGE = Decimal("0.00")
    MAX_DISCOUNT_PERCENTAGE = Decimal("100.00")

    def __init__(self, tax_percentage: Any = ZERO):
        """
        Initialize pricing engine.

        Args:
            tax_percentage: Order tax percentage used for line tax display
        """
        self.tax_percentage = to_decimal(tax_percentage)

    def _line_tax(self, total_price: Decimal) -> Decimal:
        return round2(total_price * self.tax_percentage / HUNDRED)

    def _reprice(
        self,
        item: LineItem,
        *,
        quantity: Optional[int] = None,
        original_price: Optional[Decimal] = None,
        final_price: Optional[Decimal] = None,
        discount_percentage: Optional[Decimal] = None,
        derive_discount_amount: bool = True,
    ) -> LineItem:
        """Copy item with new inputs and recompute the derived fields.

        A quantity change also caps the returned units and re-derives the
        return status.
        """
        original_price = item.original_price if original_price is None else original_price
        final_price = item.final_price if final_price is None else final_price

        update: dict[str, Any] = {
            "original_price": original_price,
            "final_price": final_price,
        }
        if quantity is None:
            quantity = item.quantity
        else:
            returned_quantity = min(item.returned_quantity, quantity)
            update["quantity"] = quantity
            update["returned_quantity"] = returned_quantity
            update["return_status"] = ReturnStatus.from_quantities(
                returned_quantity, quantity
            )
        if discount_percentage is not None:
            update["discount_percentage"] = discount_percentage
        if derive_discount_amount:
            update["discount_amount"] = round2((original_price - final_price) * quantity)

        total_price = round2(final_price * quantity)
        update["total_price"] = total_price
        update["tax"] = self._line_tax(total_price)

        return item.model_copy(update=update)

    def _discounted_price(
        self, original_price: Decimal, discount_percentage: Decimal
    ) -> Decimal:
        per_unit_discount = round2(original_price * discount_percentage / HUNDRED)
        return round2(original_price - per_unit_discount)

    def set_quantity(self, item: LineItem, quantity: int) -> Optional[LineItem]:
        """
        Set line quantity.

        Args:
            item: Line item to edit
            quantity: New quantity

        Returns:
            Updated line item, or None when the item should be removed
        """
        if quantity <= 0:
            logger.debug(
                "Quantity at or below zero, removing line item",
                item_id=item.id,
                quantity=quantity,
            )
            return None

        return self._reprice(item, quantity=quantity)

    def set_final_price(self, item: LineItem, price: Any) -> LineItem:
        """
        Set per-unit selling price directly.

        The discount percentage and discount amount are left as they are.

        Args:
            item: Line item to edit
            price: New selling price, clamped to [0, rate]

        Returns:
            Updated line item
        """
        requested = round2(price)
        final_price = clamp(requested, self.MIN_PRICE, item.original_price)
        if final_price != requested:
            logger.debug(
                "Clamped selling price",
                item_id=item.id,
                requested=float(requested),
                applied=float(final_price),
            )

        return self._reprice(
            item,
            final_price=final_price,
            derive_discount_amount=False,
        )

    def set_discount_percentage(self, item: LineItem, percentage: Any) -> LineItem:
        """
        Set per-unit discount percentage and derive the selling price.

        Args:
            item: Line item to edit
            percentage: Discount percentage, clamped to [0, 100]

        Returns:
            Updated line item
        """
        requested = to_decimal(percentage)
        discount_percentage = clamp(
            requested,
            self.MIN_DISCOUNT_PERCENTAGE,
            self.MAX_DISCOUNT_PERCENTAGE,
        )
        if discount_percentage != requested:
            logger.debug(
                "Clamped discount percentage",
                item_id=item.id,
                requested=float(requested),
                applied=float(discount_percentage),
            )

        final_price = self._discounted_price(item.original_price, discount_percentage)

        return self._reprice(
            item,
            final_price=final_price,
            discount_percentage=discount_percentage,
        )

    def set_original_price(self, item: LineItem, rate: Any) -> LineItem:
        """
        Set per-unit rate, keeping the current discount percentage.

        Args:
            item: Line item to edit
            rate: New rate, clamped to be non-negative

        Returns:
            Updated line item
        """
        original_price = clamp(round2(rate), self.MIN_PRICE)
        final_price = self._discounted_price(original_price, item.discount_percentage)

        return self._reprice(
            item,
            original_price=original_price,
            final_price=final_price,
        )

    def set_tax_percentage(self, items: list[LineItem], tax_percentage: Any) -> list[LineItem]:
        """
        Change the order tax percentage and refresh line tax.

        Args:
            items: Current line items
            tax_percentage: New tax percentage, clamped to be non-negative

        Returns:
            Line items with refreshed tax
        """
        self.tax_percentage = clamp(to_decimal(tax_percentage), ZERO)
        return [
            item.model_copy(update={"tax": self._line_tax(item.total_price)})
            for item in items
        ]

    def new_line_item(
        self,
        price: Any,
        product: Optional[CatalogProduct] = None,
        custom_product: Optional[CustomProduct] = None,
        item_id: Optional[str] = None,
    ) -> LineItem:
        """
        Create a line item with zero discount.

        Args:
            price: Rate and initial selling price
            product: Catalog product, for catalog lines
            custom_product: Custom product, for custom lines
            item_id: Optional line ID, generated when not given

        Returns:
            New line item with quantity 1
        """
        rate = clamp(round2(price), self.MIN_PRICE)
        kind = (
            LineItemKind.CUSTOM_PRODUCT
            if custom_product is not None
            else LineItemKind.CATALOG_PRODUCT
        )
        total_price = round2(rate)
        return LineItem(
            id=item_id or str(uuid.uuid4()),
            kind=kind,
            product=product,
            custom_product=custom_product,
            quantity=1,
            original_price=rate,
            final_price=rate,
            discount_percentage=ZERO,
            discount_amount=ZERO,
            total_price=total_price,
            tax=self._line_tax(total_price),
        )

    def add_item(
        self,
        items: list[LineItem],
        product: CatalogProduct,
        item_id: Optional[str] = None,
    ) -> list[LineItem]:
        """
        Add a catalog product to the order.

        A product already on the order gets its quantity incremented by one;
        otherwise a new line is appended at the master price.

        Args:
            items: Current line items
            product: Selected catalog product
            item_id: Optional ID for a new line

        Returns:
            Updated list of line items
        """
        updated = list(items)
        for index, item in enumerate(updated):
            if not item.is_custom and item.catalog_product_id == product.product_id:
                updated[index] = self._reprice(item, quantity=item.quantity + 1)
                logger.debug(
                    "Incremented existing line item",
                    item_id=item.id,
                    product_id=product.product_id,
                    quantity=item.quantity + 1,
                )
                return updated

        new_item = self.new_line_item(product.price, product=product, item_id=item_id)
        updated.append(new_item)

        logger.debug(
            "Added catalog line item",
            item_id=new_item.id,
            product_id=product.product_id,
            original_price=float(new_item.original_price),
        )
        return updated

    def add_custom_item(
        self,
        items: list[LineItem],
        custom_product: CustomProduct,
        item_id: Optional[str] = None,
    ) -> list[LineItem]:
        """
        Append a custom product line.

        Args:
            items: Current line items
            custom_product: Submitted custom product
            item_id: Optional ID for the new line

        Returns:
            Updated list of line items
        """
        new_item = self.new_line_item(
            custom_product.price,
            custom_product=custom_product,
            item_id=item_id,
        )

        logger.debug(
            "Added custom line item",
            item_id=new_item.id,
            name=custom_product.name,
            original_price=float(new_item.original_price),
        )
        return [*items, new_item]

    def remove_item(self, items: list[LineItem], item_id: str) -> list[LineItem]:
        """
        Remove a line item.

        Args:
            items: Current line items
            item_id: ID of the line to remove

        Returns:
            Updated list of line items

        Raises:
            LineItemNotFoundError: If no line has the given ID
        """
        remaining = [item for item in items if item.id != item_id]
        if len(remaining) == len(items):
            raise LineItemNotFoundError(
                "Line item not found",
                item_id=item_id,
            )
        return remaining
