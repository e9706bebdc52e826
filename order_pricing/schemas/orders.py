"""
Order pricing Pydantic schemas for line items, persisted records and payloads.

This module defines the line item model edited in the billing editor, the
persisted order record read when an existing order is re-opened, the
derived order totals, and the BillingData payload handed to persistence.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from order_pricing.services.orders.enums import (
    LineItemKind,
    PaymentMethodType,
    ReturnStatus,
)
from order_pricing.services.pricing.money import ZERO, to_decimal


class CatalogProduct(BaseModel):
    """Catalog product selected from the product directory."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="ignore",
    )

    product_id: str = Field(..., min_length=1, description="Catalog product ID")
    name: str = Field(default="", description="Product name")
    price: Decimal = Field(default=ZERO, description="Master price (Rate)")
    cost_price: Optional[Decimal] = Field(None, description="Cost price")
    sku: Optional[str] = None
    category: Optional[str] = None

    @field_validator("price", mode="before")
    @classmethod
    def coerce_price(cls, v: Any) -> Decimal:
        """Treat a missing master price as zero."""
        return to_decimal(v)


class CustomProduct(BaseModel):
    """Ad-hoc product created from the custom item form."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="ignore",
    )

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    price: Decimal = Field(default=ZERO, ge=0)
    cost_price: Optional[Decimal] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    material: Optional[str] = None
    lead_time_days: int = Field(default=30, ge=0)
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None


class LineItem(BaseModel):
    """
    Priced line of an order.

    ``final_price``, ``total_price``, ``discount_amount`` and ``tax`` are
    derived fields; only the pricing engine sets them. Serialized with
    camelCase keys to match the billing payload.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str = Field(..., min_length=1)
    kind: LineItemKind
    product: Optional[CatalogProduct] = None
    custom_product: Optional[CustomProduct] = None
    quantity: int = Field(default=1, ge=1)
    original_price: Decimal = Field(default=ZERO, ge=0)
    final_price: Decimal = Field(default=ZERO, ge=0)
    discount_percentage: Decimal = Field(default=ZERO, ge=0, le=100)
    discount_amount: Decimal = ZERO
    total_price: Decimal = ZERO
    tax: Decimal = ZERO
    return_status: ReturnStatus = ReturnStatus.NONE
    returned_quantity: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_kind_and_returns(self) -> "LineItem":
        """Check that the product payload matches the kind."""
        if self.kind == LineItemKind.CATALOG_PRODUCT and self.product is None:
            raise ValueError("Catalog line item requires a product")
        if self.kind == LineItemKind.CUSTOM_PRODUCT and self.custom_product is None:
            raise ValueError("Custom line item requires a custom product")
        if self.returned_quantity > self.quantity:
            raise ValueError("Returned quantity cannot exceed quantity")
        return self

    @property
    def is_custom(self) -> bool:
        return self.kind == LineItemKind.CUSTOM_PRODUCT

    @property
    def catalog_product_id(self) -> Optional[str]:
        return self.product.product_id if self.product else None

    @property
    def name(self) -> str:
        if self.product is not None:
            return self.product.name
        if self.custom_product is not None:
            return self.custom_product.name
        return ""


class PaymentMethod(BaseModel):
    """Payment recorded against an order."""

    id: str = Field(..., min_length=1)
    type: PaymentMethodType
    amount: Decimal = Field(..., ge=0)
    reference: Optional[str] = None


class Salesperson(BaseModel):
    """Salesperson credited with the order."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    name: str
    email: Optional[str] = None
    user_id: Optional[str] = None


class BillingCustomer(BaseModel):
    """Customer reference attached to an order."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="ignore",
    )

    customer_id: str = Field(..., min_length=1)
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    floor: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    gst_number: Optional[str] = None


# ============================================================================
# Persisted order record (input when re-opening an order)
# ============================================================================


class PersistedProductData(BaseModel):
    """Master data nested in a persisted line."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    product_id: Optional[str] = None
    name: Optional[str] = None
    price: Optional[Decimal] = None
    cost_price: Optional[Decimal] = None
    sku: Optional[str] = None
    category: Optional[str] = None


class PersistedOrderItem(BaseModel):
    """
    Line as stored by the order/quote service.

    Only net figures are reliable here: ``unit_price`` may hold the rate or
    the selling price, and ``final_price`` may be per unit or a line total.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    product_id: Optional[str] = None
    custom_product_id: Optional[str] = None
    name: Optional[str] = None
    quantity: int = 1
    unit_price: Optional[Decimal] = None
    final_price: Optional[Decimal] = None
    taxable_amount: Optional[Decimal] = None
    product: Optional[PersistedProductData] = None
    custom_product: Optional[PersistedProductData] = None
    return_status: ReturnStatus = ReturnStatus.NONE
    returned_quantity: int = Field(default=0, ge=0)

    @property
    def is_custom(self) -> bool:
        return self.custom_product_id is not None or (
            self.product_id is None and self.custom_product is not None
        )


class PersistedOrder(BaseModel):
    """Order or quote record loaded for editing."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    items: list[PersistedOrderItem] = Field(default_factory=list)
    discount_amount: Decimal = ZERO
    final_price: Decimal = ZERO
    tax_percentage: Optional[Decimal] = None
    freight_charges: Decimal = ZERO
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    expected_delivery_date: Optional[date] = None
    delivery_floor: Optional[str] = None
    customer: Optional[BillingCustomer] = None
    salesperson: Optional[Salesperson] = None

    @field_validator("discount_amount", "final_price", "freight_charges", mode="before")
    @classmethod
    def coerce_missing_money(cls, v: Any) -> Decimal:
        """Stored totals may be null; treat them as zero."""
        return to_decimal(v)


# ============================================================================
# Derived totals and billing payload
# ============================================================================


class OrderTotals(BaseModel):
    """Order-level figures computed by the aggregation engine."""

    model_config = ConfigDict(frozen=True)

    original_total: Decimal
    items_subtotal: Decimal
    item_discount_amount: Decimal
    global_discount: Decimal
    total_discount_amount: Decimal
    subtotal: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    freight_charges: Decimal
    grand_total: Decimal


class BillingTotals(BaseModel):
    """Totals block of the billing payload."""

    model_config = ConfigDict(populate_by_name=True)

    original_price: Decimal
    total_price: Decimal
    final_price: Decimal
    discount_amount: Decimal
    subtotal: Decimal
    tax: Decimal
    tax_percentage: Decimal
    freight_charges: Decimal
    grand_total: Decimal = Field(..., alias="grandTotal")


class BillingData(BaseModel):
    """
    Payload handed to the persistence collaborator on save or submit.

    Items are emitted in their undistributed form; the global discount is
    carried only at order level inside ``totals``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    customer: Optional[BillingCustomer] = None
    items: list[LineItem] = Field(default_factory=list)
    payment_methods: list[PaymentMethod] = Field(default_factory=list)
    final_total: Decimal
    notes: str = ""
    delivery_date: Optional[date] = None
    delivery_floor: Optional[str] = None
    is_first_floor_awareness: bool = False
    selected_salesman: Optional[Salesperson] = None
    finance_data: Optional[dict[str, Any]] = None
    totals: BillingTotals
