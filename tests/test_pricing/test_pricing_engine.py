"""
Test suite for the line item pricing engine.

Tests cover quantity, selling price, rate and discount percentage edits,
clamping of out-of-range input, catalog and custom item creation, removal,
and the invariants that hold after every operation.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from order_pricing.services.orders.enums import LineItemKind, ReturnStatus
from order_pricing.services.pricing.money import round2
from order_pricing.services.pricing.pricing_engine import (
    LineItemNotFoundError,
    PricingEngine,
    PricingError,
)


def assert_line_invariants(item) -> None:
    """Invariants every pricing operation must preserve."""
    assert Decimal("0") <= item.final_price <= item.original_price
    assert item.total_price == round2(item.final_price * item.quantity)
    assert item.quantity >= 1


# ============================================================================
# Unit Tests - Quantity
# ============================================================================


class TestSetQuantity:
    """Test quantity edits."""

    def test_set_quantity_recomputes_totals(self, pricing_engine, make_item):
        """Test quantity change recomputes total and line tax."""
        item = make_item(original_price="1000.00", final_price="800.00")

        updated = pricing_engine.set_quantity(item, 3)

        assert updated.quantity == 3
        assert updated.total_price == Decimal("2400.00")
        assert updated.tax == Decimal("240.00")
        assert updated.discount_amount == Decimal("600.00")
        assert_line_invariants(updated)

    @pytest.mark.parametrize("quantity", [0, -1, -10])
    def test_non_positive_quantity_signals_removal(
        self, pricing_engine, make_item, quantity
    ):
        """Test quantity at or below zero returns None."""
        item = make_item()

        assert pricing_engine.set_quantity(item, quantity) is None

    def test_set_quantity_does_not_mutate_input(self, pricing_engine, make_item):
        """Test the original item is left untouched."""
        item = make_item(quantity=1)

        pricing_engine.set_quantity(item, 5)

        assert item.quantity == 1
        assert item.total_price == Decimal("1000.00")

    def test_set_quantity_caps_returned_quantity(self, pricing_engine, make_item):
        """Test returned units never exceed the new quantity."""
        item = make_item(quantity=4).model_copy(update={"returned_quantity": 3})

        updated = pricing_engine.set_quantity(item, 2)

        assert updated.returned_quantity == 2
        assert updated.return_status == ReturnStatus.FULL

    def test_raising_quantity_after_full_return_gives_partial(
        self, pricing_engine, make_item
    ):
        """Test a fully returned line becomes partial when units are added."""
        item = make_item(quantity=2).model_copy(
            update={"returned_quantity": 2, "return_status": ReturnStatus.FULL}
        )

        updated = pricing_engine.set_quantity(item, 5)

        assert updated.returned_quantity == 2
        assert updated.return_status == ReturnStatus.PARTIAL

    def test_quantity_change_without_returns_keeps_none(
        self, pricing_engine, make_item
    ):
        """Test return status stays NONE when nothing was returned."""
        updated = pricing_engine.set_quantity(make_item(quantity=2), 3)

        assert updated.returned_quantity == 0
        assert updated.return_status == ReturnStatus.NONE

    @pytest.mark.parametrize(
        "returned,quantity,expected",
        [
            (0, 3, ReturnStatus.NONE),
            (1, 3, ReturnStatus.PARTIAL),
            (3, 3, ReturnStatus.FULL),
            (4, 3, ReturnStatus.FULL),
        ],
    )
    def test_return_status_from_quantities(self, returned, quantity, expected):
        """Test return status derivation from returned and ordered units."""
        assert ReturnStatus.from_quantities(returned, quantity) == expected


# ============================================================================
# Unit Tests - Selling Price
# ============================================================================


class TestSetFinalPrice:
    """Test direct selling price edits."""

    def test_set_final_price_recomputes_totals(self, pricing_engine, make_item):
        """Test selling price change recomputes total and tax."""
        item = make_item(original_price="1000.00", quantity=2)

        updated = pricing_engine.set_final_price(item, "750")

        assert updated.final_price == Decimal("750.00")
        assert updated.total_price == Decimal("1500.00")
        assert updated.tax == Decimal("150.00")
        assert_line_invariants(updated)

    def test_set_final_price_keeps_discount_fields(self, pricing_engine, make_item):
        """Test direct price edit does not back-derive the discount."""
        item = pricing_engine.set_discount_percentage(make_item(), 10)

        updated = pricing_engine.set_final_price(item, 500)

        assert updated.discount_percentage == Decimal("10")
        assert updated.discount_amount == Decimal("100.00")
        assert updated.final_price == Decimal("500.00")

    def test_negative_price_clamped_to_zero(self, pricing_engine, make_item):
        """Test negative selling price is clamped."""
        updated = pricing_engine.set_final_price(make_item(), -50)

        assert updated.final_price == Decimal("0.00")
        assert updated.total_price == Decimal("0.00")

    def test_price_above_rate_clamped_to_rate(self, pricing_engine, make_item):
        """Test selling price never exceeds the rate."""
        with patch(
            "order_pricing.services.pricing.pricing_engine.logger"
        ) as mock_logger:
            updated = pricing_engine.set_final_price(make_item(), 1500)

            mock_logger.debug.assert_called_once()

        assert updated.final_price == Decimal("1000.00")
        assert_line_invariants(updated)

    @pytest.mark.parametrize(
        "price,applied",
        [
            (float("nan"), Decimal("0.00")),
            ("NaN", Decimal("0.00")),
            (float("inf"), Decimal("1000.00")),
            (float("-inf"), Decimal("0.00")),
        ],
    )
    def test_non_finite_price_clamped(self, pricing_engine, make_item, price, applied):
        """Test NaN and infinite selling prices clamp into [0, rate]."""
        with patch(
            "order_pricing.services.pricing.pricing_engine.logger"
        ) as mock_logger:
            updated = pricing_engine.set_final_price(make_item(quantity=2), price)

            mock_logger.debug.assert_called_once()

        assert updated.final_price == applied
        assert updated.total_price == round2(applied * 2)
        assert_line_invariants(updated)


# ============================================================================
# Unit Tests - Discount Percentage
# ============================================================================


class TestSetDiscountPercentage:
    """Test discount percentage edits."""

    def test_twenty_percent_on_three_units(self, pricing_engine, make_item):
        """Test rate 1000 at 20% for 3 units."""
        item = make_item(original_price="1000.00", quantity=3)

        updated = pricing_engine.set_discount_percentage(item, 20)

        assert updated.discount_percentage == Decimal("20")
        assert updated.final_price == Decimal("800.00")
        assert updated.total_price == Decimal("2400.00")
        assert updated.discount_amount == Decimal("600.00")
        assert_line_invariants(updated)

    def test_discount_rounds_per_unit_before_total(self, pricing_engine, make_item):
        """Test per-unit discount is rounded before the line total."""
        item = make_item(original_price="99.99", quantity=3)

        updated = pricing_engine.set_discount_percentage(item, Decimal("33.333"))

        # 99.99 * 0.33333 = 33.3297 -> 33.33 per unit
        assert updated.final_price == Decimal("66.66")
        assert updated.total_price == Decimal("199.98")
        assert updated.discount_amount == Decimal("99.99")

    @pytest.mark.parametrize(
        "requested,applied",
        [(-5, Decimal("0")), (150, Decimal("100")), (100, Decimal("100"))],
    )
    def test_discount_percentage_clamped(
        self, pricing_engine, make_item, requested, applied
    ):
        """Test discount percentage is clamped to [0, 100]."""
        updated = pricing_engine.set_discount_percentage(make_item(), requested)

        assert updated.discount_percentage == applied
        assert_line_invariants(updated)

    def test_full_discount_gives_zero_price(self, pricing_engine, make_item):
        """Test a 100% discount gives a free line."""
        updated = pricing_engine.set_discount_percentage(make_item(quantity=2), 100)

        assert updated.final_price == Decimal("0.00")
        assert updated.discount_amount == Decimal("2000.00")

    @pytest.mark.parametrize(
        "requested,applied",
        [
            (float("nan"), Decimal("0")),
            ("NaN", Decimal("0")),
            (float("inf"), Decimal("100")),
            ("-Infinity", Decimal("0")),
        ],
    )
    def test_non_finite_discount_percentage_clamped(
        self, pricing_engine, make_item, requested, applied
    ):
        """Test NaN and infinite discount percentages are clamped."""
        updated = pricing_engine.set_discount_percentage(make_item(), requested)

        assert updated.discount_percentage == applied
        assert updated.total_price.is_finite()
        assert_line_invariants(updated)


# ============================================================================
# Unit Tests - Rate
# ============================================================================


class TestSetOriginalPrice:
    """Test rate edits."""

    def test_rate_change_keeps_discount_percentage(self, pricing_engine, make_item):
        """Test selling price follows the rate at the same discount."""
        item = pricing_engine.set_discount_percentage(make_item(quantity=2), 25)

        updated = pricing_engine.set_original_price(item, 2000)

        assert updated.original_price == Decimal("2000.00")
        assert updated.final_price == Decimal("1500.00")
        assert updated.discount_amount == Decimal("1000.00")
        assert updated.total_price == Decimal("3000.00")
        assert_line_invariants(updated)

    def test_negative_rate_clamped(self, pricing_engine, make_item):
        """Test negative rate is clamped to zero."""
        updated = pricing_engine.set_original_price(make_item(), -1)

        assert updated.original_price == Decimal("0.00")
        assert updated.final_price == Decimal("0.00")

    @pytest.mark.parametrize("rate", [float("nan"), float("inf"), float("-inf"), "sNaN"])
    def test_non_finite_rate_clamped_to_zero(self, pricing_engine, make_item, rate):
        """Test an unbounded rate clamps to zero for every non-finite input."""
        updated = pricing_engine.set_original_price(make_item(quantity=2), rate)

        assert updated.original_price == Decimal("0.00")
        assert updated.final_price == Decimal("0.00")
        assert updated.total_price == Decimal("0.00")
        assert_line_invariants(updated)


# ============================================================================
# Unit Tests - Adding and Removing Items
# ============================================================================


class TestAddAndRemove:
    """Test adding and removing line items."""

    def test_add_new_catalog_product(self, pricing_engine, catalog_product):
        """Test a new product is added at its master price."""
        items = pricing_engine.add_item([], catalog_product, item_id="line-1")

        assert len(items) == 1
        item = items[0]
        assert item.id == "line-1"
        assert item.kind == LineItemKind.CATALOG_PRODUCT
        assert item.original_price == Decimal("1000.00")
        assert item.final_price == Decimal("1000.00")
        assert item.discount_percentage == Decimal("0")
        assert item.tax == Decimal("100.00")

    def test_add_existing_product_increments_quantity(
        self, pricing_engine, catalog_product
    ):
        """Test adding the same product again increments its line."""
        first = pricing_engine.add_item([], catalog_product)[0]
        discounted = pricing_engine.set_discount_percentage(first, 10)
        items = pricing_engine.add_item([discounted], catalog_product)

        assert len(items) == 1
        assert items[0].quantity == 2
        assert items[0].final_price == Decimal("900.00")
        assert items[0].total_price == Decimal("1800.00")

    def test_add_to_fully_returned_line_gives_partial(
        self, pricing_engine, catalog_product
    ):
        """Test incrementing a fully returned line re-derives its return status."""
        first = pricing_engine.add_item([], catalog_product)[0]
        returned = first.model_copy(
            update={"returned_quantity": 1, "return_status": ReturnStatus.FULL}
        )

        items = pricing_engine.add_item([returned], catalog_product)

        assert items[0].quantity == 2
        assert items[0].returned_quantity == 1
        assert items[0].return_status == ReturnStatus.PARTIAL

    def test_add_generates_unique_ids(self, pricing_engine, make_item, catalog_product):
        """Test generated line IDs are unique."""
        items = pricing_engine.add_item([make_item("other")], catalog_product)

        assert len({item.id for item in items}) == 2

    def test_add_custom_item_always_appends(self, pricing_engine, custom_product):
        """Test custom products never merge into existing lines."""
        items = pricing_engine.add_custom_item([], custom_product)
        items = pricing_engine.add_custom_item(items, custom_product)

        assert len(items) == 2
        assert all(item.is_custom for item in items)
        assert items[0].original_price == Decimal("2500.00")
        assert items[0].name == "Custom Bookshelf"

    def test_add_item_skips_custom_line_with_same_product(
        self, pricing_engine, make_item, catalog_product
    ):
        """Test a catalog add never increments a custom line."""
        custom_line = make_item(product_id=catalog_product.product_id).model_copy(
            update={"kind": LineItemKind.CUSTOM_PRODUCT}
        )

        items = pricing_engine.add_item([custom_line], catalog_product)

        assert len(items) == 2
        assert items[0].quantity == 1
        assert not items[1].is_custom

    def test_remove_item(self, pricing_engine, make_item):
        """Test removing a line by ID."""
        items = [make_item("a"), make_item("b")]

        remaining = pricing_engine.remove_item(items, "a")

        assert [item.id for item in remaining] == ["b"]

    def test_remove_unknown_item_raises(self, pricing_engine, make_item):
        """Test removing a missing line raises."""
        with pytest.raises(LineItemNotFoundError) as exc_info:
            pricing_engine.remove_item([make_item("a")], "missing")

        assert isinstance(exc_info.value, PricingError)
        assert exc_info.value.context["item_id"] == "missing"


# ============================================================================
# Unit Tests - Tax
# ============================================================================


class TestTaxPercentage:
    """Test tax percentage changes."""

    def test_set_tax_percentage_refreshes_line_tax(self, make_item):
        """Test line tax follows the order tax percentage."""
        engine = PricingEngine(tax_percentage=0)
        items = [make_item("a", quantity=2), make_item("b", original_price="333.33")]

        updated = engine.set_tax_percentage(items, 18)

        assert engine.tax_percentage == Decimal("18")
        assert updated[0].tax == Decimal("360.00")
        assert updated[1].tax == Decimal("60.00")

    def test_negative_tax_percentage_clamped(self, make_item):
        """Test negative tax percentage is clamped."""
        engine = PricingEngine(tax_percentage=10)

        engine.set_tax_percentage([make_item()], -5)

        assert engine.tax_percentage == Decimal("0")

    @pytest.mark.parametrize("tax_percentage", [float("nan"), float("inf"), "-Infinity"])
    def test_non_finite_tax_percentage_clamped(self, make_item, tax_percentage):
        """Test non-finite tax percentage falls back to zero."""
        engine = PricingEngine(tax_percentage=10)

        updated = engine.set_tax_percentage([make_item()], tax_percentage)

        assert engine.tax_percentage == Decimal("0")
        assert updated[0].tax == Decimal("0.00")
