"""
Order edit session orchestrating pricing, aggregation and reconciliation.

This module implements the OrderEditSession class used by the billing
editor. It owns the order being edited, routes every user edit through the
pricing engine, recomputes totals and runs snapshot divergence detection
after each edit, picks stored or live totals for display, evaluates the
save-time validation gates and hands the finished BillingData to the order
store without waiting for the result.
"""

import asyncio
import functools
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol, TypeVar

from order_pricing.core.config import Settings, get_settings
from order_pricing.core.logging import get_logger, session_context
from order_pricing.schemas.orders import (
    BillingCustomer,
    BillingData,
    BillingTotals,
    CatalogProduct,
    CustomProduct,
    LineItem,
    OrderTotals,
    PaymentMethod,
    PersistedOrder,
    Salesperson,
)
from order_pricing.services.orders.enums import (
    EditSessionState,
    GlobalDiscountType,
    PaymentMethodType,
    ReturnStatus,
)
from order_pricing.services.orders.reconstruction import (
    OrderReconstructor,
    ReconstructedOrder,
)
from order_pricing.services.orders.state_machine import (
    DisplayTotals,
    EditSessionStateMachine,
    OrderSnapshot,
)
from order_pricing.services.pricing.aggregation import (
    calculate_balance_due,
    calculate_items_subtotal,
    calculate_order_totals,
    global_discount_from_percentage,
)
from order_pricing.services.pricing.money import (
    HUNDRED,
    ZERO,
    clamp,
    round2,
    to_decimal,
)
from order_pricing.services.pricing.pricing_engine import (
    LineItemNotFoundError,
    PricingEngine,
)

logger = get_logger(__name__)

MISSING_SALESPERSON_MESSAGE = "Please select a salesperson"
MISSING_DELIVERY_DATE_MESSAGE = "Please select a delivery date"
MISSING_ITEMS_MESSAGE = "Please add at least one item"

F = TypeVar("F", bound=Callable[..., Any])


class OrderEditError(Exception):
    """Base exception for order edit session errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderValidationError(OrderEditError):
    """Raised when save-time validation gates fail."""

    def __init__(self, messages: list[str], **context: Any):
        super().__init__("; ".join(messages), **context)
        self.messages = list(messages)


class OrderStore(Protocol):
    """Persistence collaborator receiving finished billing data."""

    async def save_order(self, billing_data: BillingData) -> Any:
        ...


def generate_invoice_number(prefix: str, now: Optional[datetime] = None) -> str:
    """
    Generate an invoice number of the form PREFIX-YYYYMMDD-HHMM.

    Args:
        prefix: Invoice number prefix
        now: Timestamp to use, defaults to the current local time

    Returns:
        Invoice number
    """
    now = now or datetime.now()
    return f"{prefix}-{now:%Y%m%d}-{now:%H%M}"


def default_delivery_date(invoice_date: date, days: int) -> date:
    """Delivery date a fixed number of days after the invoice date."""
    return invoice_date + timedelta(days=days)


def in_session_context(method: F) -> F:
    """Run a session method with its session and order IDs bound to log events."""

    @functools.wraps(method)
    def wrapper(self: "OrderEditSession", *args: Any, **kwargs: Any) -> Any:
        with session_context(self.session_id, self.order_id):
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


class OrderEditSession:
    """
    Editing session for one order in the billing editor.

    Holds the line items and order-level adjustments, the snapshot of a
    loaded order, and the state machine deciding whether stored or live
    totals are shown. Every edit clears the validation error list.

    Attributes:
        items: Current line items, in display order
        global_discount: Flat order-level discount from the last recomputation
        global_discount_type: Whether the discount was entered as an amount
            or a percentage
        global_discount_value: Discount as entered
        freight_charges: Untaxed freight added to the grand total
        totals: Live totals from the last recomputation
        validation_errors: Messages from the last failed validation
    """

    def __init__(
        self,
        *,
        items: Optional[list[LineItem]] = None,
        global_discount: Any = ZERO,
        global_discount_type: GlobalDiscountType = GlobalDiscountType.AMOUNT,
        tax_percentage: Any = None,
        freight_charges: Any = ZERO,
        snapshot: Optional[OrderSnapshot] = None,
        order_id: Optional[str] = None,
        customer: Optional[BillingCustomer] = None,
        selected_salesman: Optional[Salesperson] = None,
        delivery_date: Optional[date] = None,
        delivery_floor: Optional[str] = None,
        notes: str = "",
        invoice_date: Optional[date] = None,
        invoice_number: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize edit session.

        Prefer the ``new`` and ``load`` constructors.

        Args:
            items: Initial line items
            global_discount: Initial global discount, a flat amount or a
                percentage depending on global_discount_type
            global_discount_type: How the global discount was entered
            tax_percentage: Tax percentage, defaults to the configured default
            freight_charges: Freight charges
            snapshot: Snapshot of a loaded order, None for a new order
            order_id: ID of the order being edited
            customer: Customer reference
            selected_salesman: Salesperson credited with the order
            delivery_date: Expected delivery date
            delivery_floor: Delivery floor
            notes: Order notes
            invoice_date: Invoice date, defaults to today
            invoice_number: Invoice number, generated when not given
            settings: Settings instance
        """
        self.settings = settings or get_settings()
        self.order_id = order_id
        self.session_id = str(uuid.uuid4())

        if tax_percentage is None:
            tax_percentage = self.settings.default_tax_percentage

        self.pricing = PricingEngine(clamp(to_decimal(tax_percentage), ZERO))
        self.items: list[LineItem] = list(items or [])
        self.global_discount_type = global_discount_type
        self.global_discount_value: Decimal = self._clamp_global_discount_value(
            global_discount_type, global_discount
        )
        self.global_discount: Decimal = ZERO
        self.freight_charges: Decimal = clamp(round2(freight_charges), ZERO)
        self.state_machine = EditSessionStateMachine(
            snapshot,
            global_discount_tolerance=self.settings.global_discount_tolerance,
        )

        self.customer = customer
        self.selected_salesman = selected_salesman
        self.delivery_date = delivery_date
        self.delivery_floor = delivery_floor
        self.is_first_floor_awareness = False
        self.notes = notes
        self.payment_methods: list[PaymentMethod] = []
        self.finance_data: Optional[dict[str, Any]] = None
        self.invoice_date = invoice_date or date.today()
        self.invoice_number = invoice_number or generate_invoice_number(
            self.settings.invoice_number_prefix
        )

        self.validation_errors: list[str] = []
        self._pending_saves: set[asyncio.Task] = set()

        with session_context(self.session_id, self.order_id):
            self.totals: OrderTotals = self._recompute()

            logger.info(
                "Order edit session started",
                order_id=order_id,
                state=self.state.value,
                item_count=len(self.items),
            )

    @classmethod
    def new(
        cls,
        settings: Optional[Settings] = None,
        invoice_date: Optional[date] = None,
    ) -> "OrderEditSession":
        """
        Start a session for a new order.

        The delivery date defaults to the invoice date plus the configured
        number of delivery days, and the global discount starts as a zero
        percentage.
        """
        settings = settings or get_settings()
        invoice_date = invoice_date or date.today()
        return cls(
            global_discount_type=GlobalDiscountType.PERCENTAGE,
            settings=settings,
            invoice_date=invoice_date,
            delivery_date=default_delivery_date(
                invoice_date, settings.default_delivery_days
            ),
        )

    @classmethod
    def load(
        cls,
        record: PersistedOrder,
        settings: Optional[Settings] = None,
        reconstructor: Optional[OrderReconstructor] = None,
    ) -> "OrderEditSession":
        """
        Start a session for an existing order.

        Args:
            record: Persisted order or quote
            settings: Settings instance
            reconstructor: Reconstructor to use, defaults to the standard rules

        Returns:
            Session in the LOADED_UNMODIFIED state
        """
        settings = settings or get_settings()
        reconstructor = reconstructor or OrderReconstructor(settings)
        reconstructed: ReconstructedOrder = reconstructor.reconstruct(record)

        snapshot = OrderSnapshot.capture(
            reconstructed.items,
            persisted_final_total=reconstructed.persisted_final_total,
            persisted_discount_total=reconstructed.persisted_discount_total,
        )

        return cls(
            items=reconstructed.items,
            global_discount=reconstructed.global_discount,
            tax_percentage=reconstructed.tax_percentage,
            freight_charges=reconstructed.freight_charges,
            snapshot=snapshot,
            order_id=record.id,
            customer=record.customer,
            selected_salesman=record.salesperson,
            delivery_date=record.expected_delivery_date,
            delivery_floor=record.delivery_floor,
            notes=record.notes or "",
            invoice_date=record.created_at.date() if record.created_at else None,
            settings=settings,
        )

    # ------------------------------------------------------------------
    # State and display
    # ------------------------------------------------------------------

    @property
    def state(self) -> EditSessionState:
        return self.state_machine.state

    @property
    def is_loaded(self) -> bool:
        return self.state_machine.is_loaded

    @property
    def is_modified(self) -> bool:
        return self.state_machine.is_modified

    @property
    def tax_percentage(self) -> Decimal:
        return self.pricing.tax_percentage

    @property
    def display_totals(self) -> DisplayTotals:
        return self.state_machine.display_totals(self.totals)

    @property
    def display_grand_total(self) -> Decimal:
        return self.display_totals.grand_total

    @property
    def display_discount_total(self) -> Decimal:
        return self.display_totals.total_discount

    @property
    def balance_due(self) -> Decimal:
        return calculate_balance_due(self.display_grand_total, self.payment_methods)

    @staticmethod
    def _clamp_global_discount_value(
        discount_type: GlobalDiscountType, value: Any
    ) -> Decimal:
        if discount_type == GlobalDiscountType.PERCENTAGE:
            return clamp(to_decimal(value), ZERO, HUNDRED)
        return clamp(round2(value), ZERO)

    def _resolve_global_discount(self) -> Decimal:
        """Flat global discount; a percentage follows the live items subtotal."""
        if self.global_discount_type == GlobalDiscountType.PERCENTAGE:
            return global_discount_from_percentage(
                calculate_items_subtotal(self.items), self.global_discount_value
            )
        return self.global_discount_value

    def _recompute(self) -> OrderTotals:
        self.global_discount = self._resolve_global_discount()
        self.totals = calculate_order_totals(
            self.items,
            global_discount=self.global_discount,
            tax_percentage=self.pricing.tax_percentage,
            freight_charges=self.freight_charges,
        )
        self.state_machine.evaluate(self.items, self.global_discount)
        return self.totals

    def _after_edit(self, modified_reason: Optional[str] = None) -> OrderTotals:
        self.validation_errors = []
        if modified_reason is not None:
            self.state_machine.mark_modified(modified_reason)
        return self._recompute()

    def _index_of(self, item_id: str) -> int:
        for index, item in enumerate(self.items):
            if item.id == item_id:
                return index
        raise LineItemNotFoundError(
            "Line item not found",
            item_id=item_id,
            order_id=self.order_id,
        )

    # ------------------------------------------------------------------
    # Line item edits
    # ------------------------------------------------------------------

    @in_session_context
    def add_product(
        self, product: CatalogProduct, item_id: Optional[str] = None
    ) -> OrderTotals:
        """Add a catalog product, incrementing an existing line for it."""
        self.items = self.pricing.add_item(self.items, product, item_id=item_id)
        return self._after_edit()

    @in_session_context
    def add_custom_product(
        self, custom_product: CustomProduct, item_id: Optional[str] = None
    ) -> OrderTotals:
        """Append a custom product line."""
        self.items = self.pricing.add_custom_item(
            self.items, custom_product, item_id=item_id
        )
        return self._after_edit()

    @in_session_context
    def update_quantity(self, item_id: str, quantity: int) -> OrderTotals:
        """Set a line quantity; zero or less removes the line."""
        index = self._index_of(item_id)
        updated = self.pricing.set_quantity(self.items[index], quantity)
        if updated is None:
            self.items = self.pricing.remove_item(self.items, item_id)
        else:
            self.items[index] = updated
        return self._after_edit()

    @in_session_context
    def update_price(self, item_id: str, price: Any) -> OrderTotals:
        """Set a line selling price directly."""
        index = self._index_of(item_id)
        self.items[index] = self.pricing.set_final_price(self.items[index], price)
        return self._after_edit()

    @in_session_context
    def update_original_price(self, item_id: str, rate: Any) -> OrderTotals:
        """Set a line rate, keeping its discount percentage."""
        index = self._index_of(item_id)
        self.items[index] = self.pricing.set_original_price(self.items[index], rate)
        return self._after_edit()

    @in_session_context
    def update_discount_percentage(self, item_id: str, percentage: Any) -> OrderTotals:
        """Set a line discount percentage."""
        index = self._index_of(item_id)
        self.items[index] = self.pricing.set_discount_percentage(
            self.items[index], percentage
        )
        return self._after_edit()

    @in_session_context
    def remove_item(self, item_id: str) -> OrderTotals:
        """Remove a line."""
        self.items = self.pricing.remove_item(self.items, item_id)
        return self._after_edit()

    @in_session_context
    def set_return(self, item_id: str, returned_quantity: int) -> OrderTotals:
        """Record returned units on a line; status follows the quantity."""
        index = self._index_of(item_id)
        item = self.items[index]
        returned_quantity = max(0, min(returned_quantity, item.quantity))
        self.items[index] = item.model_copy(
            update={
                "returned_quantity": returned_quantity,
                "return_status": ReturnStatus.from_quantities(
                    returned_quantity, item.quantity
                ),
            }
        )
        return self._after_edit()

    # ------------------------------------------------------------------
    # Order-level edits
    # ------------------------------------------------------------------

    @in_session_context
    def set_global_discount(self, amount: Any) -> OrderTotals:
        """Set the global discount as a flat amount, clamped to be non-negative."""
        self.global_discount_type = GlobalDiscountType.AMOUNT
        self.global_discount_value = self._clamp_global_discount_value(
            GlobalDiscountType.AMOUNT, amount
        )
        return self._after_edit()

    @in_session_context
    def set_global_discount_percentage(self, percentage: Any) -> OrderTotals:
        """
        Set the global discount as a percentage of the items subtotal.

        The flat amount is re-derived from the live items subtotal on every
        recomputation, so later item edits keep the chosen percentage.
        """
        self.global_discount_type = GlobalDiscountType.PERCENTAGE
        self.global_discount_value = self._clamp_global_discount_value(
            GlobalDiscountType.PERCENTAGE, percentage
        )
        return self._after_edit()

    @in_session_context
    def set_tax_percentage(self, tax_percentage: Any) -> OrderTotals:
        """Change the order tax percentage."""
        previous = self.pricing.tax_percentage
        self.items = self.pricing.set_tax_percentage(self.items, tax_percentage)
        changed = self.pricing.tax_percentage != previous
        return self._after_edit("tax percentage changed" if changed else None)

    @in_session_context
    def set_freight_charges(self, freight_charges: Any) -> OrderTotals:
        """Change freight charges, clamped to be non-negative."""
        previous = self.freight_charges
        self.freight_charges = clamp(round2(freight_charges), ZERO)
        changed = self.freight_charges != previous
        return self._after_edit("freight charges changed" if changed else None)

    @in_session_context
    def set_customer(self, customer: Optional[BillingCustomer]) -> None:
        self.customer = customer
        self._after_edit()

    @in_session_context
    def set_salesman(self, salesman: Optional[Salesperson]) -> None:
        self.selected_salesman = salesman
        self._after_edit()

    @in_session_context
    def set_delivery_date(self, delivery_date: Optional[date]) -> None:
        self.delivery_date = delivery_date
        self._after_edit()

    @in_session_context
    def set_delivery_floor(
        self, delivery_floor: Optional[str], is_first_floor_awareness: bool = False
    ) -> None:
        self.delivery_floor = delivery_floor
        self.is_first_floor_awareness = is_first_floor_awareness
        self._after_edit()

    @in_session_context
    def set_notes(self, notes: str) -> None:
        self.notes = notes
        self._after_edit()

    @in_session_context
    def set_finance_data(self, finance_data: Optional[dict[str, Any]]) -> None:
        self.finance_data = finance_data
        self._after_edit()

    @in_session_context
    def add_payment_method(
        self,
        payment_type: PaymentMethodType,
        amount: Any,
        reference: Optional[str] = None,
    ) -> PaymentMethod:
        """Record a payment against the order."""
        payment = PaymentMethod(
            id=str(uuid.uuid4()),
            type=payment_type,
            amount=clamp(round2(amount), ZERO),
            reference=reference,
        )
        self.payment_methods.append(payment)
        self._after_edit()
        return payment

    @in_session_context
    def remove_payment_method(self, payment_id: str) -> None:
        """Remove a recorded payment."""
        self.payment_methods = [p for p in self.payment_methods if p.id != payment_id]
        self._after_edit()

    # ------------------------------------------------------------------
    # Validation and hand-off
    # ------------------------------------------------------------------

    @in_session_context
    def validate(self) -> list[str]:
        """
        Evaluate save-time validation gates.

        Returns:
            Ordered list of messages, empty when the order can be saved
        """
        messages: list[str] = []
        if self.selected_salesman is None:
            messages.append(MISSING_SALESPERSON_MESSAGE)
        if self.delivery_date is None:
            messages.append(MISSING_DELIVERY_DATE_MESSAGE)
        if not self.is_loaded and not self.items:
            messages.append(MISSING_ITEMS_MESSAGE)

        self.validation_errors = messages
        if messages:
            logger.info(
                "Order validation failed",
                order_id=self.order_id,
                messages=messages,
            )
        return messages

    @in_session_context
    def build_billing_data(self) -> BillingData:
        """
        Assemble the billing payload for persistence.

        Line items are emitted undistributed; the global discount appears
        only in the totals. Grand total and discount follow the display basis.

        For a loaded order that has not been edited, the totals block
        therefore carries the stored grand total and discount next to the
        live subtotal, tax and items total, and need not add up. The stored
        figures are what the order was saved with; they are re-sent unchanged
        until an edit makes the live figures authoritative.
        """
        display = self.display_totals
        totals = self.totals
        return BillingData(
            customer=self.customer,
            items=[item.model_copy(deep=True) for item in self.items],
            payment_methods=list(self.payment_methods),
            final_total=display.grand_total,
            notes=self.notes,
            delivery_date=self.delivery_date,
            delivery_floor=self.delivery_floor,
            is_first_floor_awareness=self.is_first_floor_awareness,
            selected_salesman=self.selected_salesman,
            finance_data=self.finance_data,
            totals=BillingTotals(
                original_price=totals.original_total,
                total_price=totals.items_subtotal,
                final_price=display.grand_total,
                discount_amount=display.total_discount,
                subtotal=totals.subtotal,
                tax=totals.tax_amount,
                tax_percentage=totals.tax_percentage,
                freight_charges=totals.freight_charges,
                grand_total=display.grand_total,
            ),
        )

    @in_session_context
    def submit(self, store: OrderStore) -> BillingData:
        """
        Validate and hand the order to the store without awaiting the save.

        Must be called from a running event loop. A failed save is logged;
        it is not retried.

        Args:
            store: Persistence collaborator

        Returns:
            BillingData handed to the store

        Raises:
            OrderValidationError: If any validation gate fails
        """
        messages = self.validate()
        if messages:
            raise OrderValidationError(messages, order_id=self.order_id)

        billing_data = self.build_billing_data()
        loop = asyncio.get_running_loop()
        task = loop.create_task(store.save_order(billing_data))
        self._pending_saves.add(task)
        task.add_done_callback(self._on_save_done)

        logger.info(
            "Order handed to store",
            order_id=self.order_id,
            final_total=float(billing_data.final_total),
            item_count=len(billing_data.items),
        )
        return billing_data

    def _on_save_done(self, task: asyncio.Task) -> None:
        self._pending_saves.discard(task)
        if task.cancelled():
            logger.warning("Order save cancelled", order_id=self.order_id)
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Order save failed",
                order_id=self.order_id,
                error=str(error),
                error_type=type(error).__name__,
            )

    async def wait_for_pending_saves(self) -> None:
        """Wait for handed-off saves, e.g. before shutting down."""
        if self._pending_saves:
            await asyncio.gather(*self._pending_saves, return_exceptions=True)
