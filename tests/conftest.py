"""
Pytest configuration and shared test fixtures.

This module provides settings, pricing engine, line item and persisted
order fixtures shared by the pricing and order edit session test suites.
"""

from decimal import Decimal
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock

import pytest

from order_pricing.core.config import Settings
from order_pricing.schemas.orders import (
    CatalogProduct,
    CustomProduct,
    LineItem,
    PersistedOrder,
    PersistedOrderItem,
    Salesperson,
)
from order_pricing.services.orders.enums import LineItemKind
from order_pricing.services.pricing.money import round2
from order_pricing.services.pricing.pricing_engine import PricingEngine


@pytest.fixture
def test_settings() -> Settings:
    """
    Provide predictable settings for tests.

    Returns:
        Settings with development environment and default heuristics
    """
    return Settings(
        environment="development",
        log_level="DEBUG",
        default_tax_percentage=Decimal("18"),
    )


@pytest.fixture
def pricing_engine() -> PricingEngine:
    """Create pricing engine with a 10% order tax."""
    return PricingEngine(tax_percentage=Decimal("10"))


@pytest.fixture
def catalog_product() -> CatalogProduct:
    """Create sample catalog product."""
    return CatalogProduct(
        product_id="prod-sofa",
        name="Three Seater Sofa",
        price=Decimal("1000.00"),
        sku="SOFA-3S",
    )


@pytest.fixture
def custom_product() -> CustomProduct:
    """Create sample custom product."""
    return CustomProduct(
        id="custom-1",
        name="Custom Bookshelf",
        description="Walnut, 6 shelves",
        price=Decimal("2500.00"),
        material="walnut",
    )


@pytest.fixture
def salesperson() -> Salesperson:
    """Create sample salesperson."""
    return Salesperson(id="emp-7", name="Asha Rao", email="asha@example.com")


@pytest.fixture
def make_item() -> Callable[..., LineItem]:
    """
    Factory for consistent line items.

    Returns:
        Callable building a catalog line item with derived fields filled in
    """

    def _make_item(
        item_id: str = "line-1",
        original_price: Any = "1000.00",
        final_price: Optional[Any] = None,
        quantity: int = 1,
        product_id: Optional[str] = None,
    ) -> LineItem:
        original = round2(original_price)
        final = round2(final_price if final_price is not None else original_price)
        return LineItem(
            id=item_id,
            kind=LineItemKind.CATALOG_PRODUCT,
            product=CatalogProduct(
                product_id=product_id or f"prod-{item_id}",
                name=f"Product {item_id}",
                price=original,
            ),
            quantity=quantity,
            original_price=original,
            final_price=final,
            discount_amount=round2((original - final) * quantity),
            total_price=round2(final * quantity),
        )

    return _make_item


@pytest.fixture
def persisted_order() -> PersistedOrder:
    """
    Create persisted order with one discounted catalog line.

    The stored discount total of 500 is 200 of line discount plus a 300
    global discount.
    """
    return PersistedOrder(
        id="SO-1001",
        items=[
            PersistedOrderItem(
                id="line-a",
                product_id="prod-table",
                name="Dining Table",
                quantity=2,
                unit_price=Decimal("1000.00"),
                final_price=Decimal("900.00"),
                product={"product_id": "prod-table", "price": Decimal("1000.00")},
            ),
        ],
        discount_amount=Decimal("500.00"),
        final_price=Decimal("5000.00"),
        tax_percentage=Decimal("18"),
        freight_charges=Decimal("0"),
        notes="Deliver after 5pm",
        salesperson={"id": "emp-7", "name": "Asha Rao"},
        expected_delivery_date="2026-11-20",
        created_at="2026-10-01T10:30:00",
    )


@pytest.fixture
def mock_order_store() -> AsyncMock:
    """Mock order store whose save succeeds."""
    store = AsyncMock()
    store.save_order = AsyncMock(return_value={"id": "SO-NEW"})
    return store
