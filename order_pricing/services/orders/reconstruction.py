"""
Reconstruction of editable line items from a persisted order record.

Stored orders keep only net figures: a unit price that may be the rate or
the selling price, a final price that may be per unit or a line total, and
an order discount total that mixes item and global discounts. This module
infers each line's rate and selling price through ordered, named rules
(first match wins) and derives the global discount from what the line
discounts do not explain.

The markup fallback and the line-total tolerance are heuristics. Lines
resolved through a fallback rule are logged as warnings.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

from order_pricing.core.config import Settings, get_settings
from order_pricing.core.logging import get_logger, log_performance
from order_pricing.schemas.orders import (
    CatalogProduct,
    CustomProduct,
    LineItem,
    PersistedOrder,
    PersistedOrderItem,
)
from order_pricing.services.orders.enums import LineItemKind
from order_pricing.services.pricing.money import (
    HUNDRED,
    ZERO,
    round2,
    round_whole,
    to_decimal,
)

logger = get_logger(__name__)

CUSTOM_ITEM_NAME = "Custom item"


class ReconstructionError(Exception):
    """Raised when a persisted record cannot be turned into line items."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.context = context


@dataclass(frozen=True)
class RuleContext:
    """Inputs available to reconstruction rules for one persisted line."""

    line: PersistedOrderItem
    markup: Decimal
    line_total_epsilon: Decimal
    rate: Optional[Decimal] = None

    @property
    def quantity(self) -> int:
        return self.line.quantity

    @property
    def unit_price(self) -> Optional[Decimal]:
        """Stored unit price, None when missing or zero."""
        value = self.line.unit_price
        if value is None or value <= 0:
            return None
        return to_decimal(value)

    @property
    def final_price(self) -> Optional[Decimal]:
        """Stored final price, None when missing."""
        value = self.line.final_price
        return None if value is None else to_decimal(value)

    @property
    def master_price(self) -> Optional[Decimal]:
        """Positive master price from nested product or custom product data."""
        for data in (self.line.product, self.line.custom_product):
            if data is None:
                continue
            for value in (data.price, data.cost_price):
                if value is not None and value > 0:
                    return to_decimal(value)
        return None


@dataclass(frozen=True)
class ReconstructionRule:
    """Named reconstruction step; returns a price or None when it does not apply."""

    name: str
    apply: Callable[[RuleContext], Optional[Decimal]]
    is_fallback: bool = False


# ============================================================================
# Rate (original price) rules
# ============================================================================


def _rate_from_master_price(ctx: RuleContext) -> Optional[Decimal]:
    return ctx.master_price


def _rate_from_differing_unit_price(ctx: RuleContext) -> Optional[Decimal]:
    final_price = ctx.final_price
    if ctx.unit_price is None or final_price is None or final_price == 0:
        return None
    if ctx.unit_price != final_price:
        return ctx.unit_price
    return None


def _rate_from_unit_price_with_zero_final(ctx: RuleContext) -> Optional[Decimal]:
    final_price = ctx.final_price or ZERO
    if ctx.unit_price is not None and final_price == 0:
        return ctx.unit_price
    return None


def _rate_from_markup(ctx: RuleContext) -> Optional[Decimal]:
    return round_whole((ctx.final_price or ZERO) * ctx.markup)


RATE_RULES: tuple[ReconstructionRule, ...] = (
    ReconstructionRule("catalog_master_price", _rate_from_master_price),
    ReconstructionRule("unit_price_differs_from_final", _rate_from_differing_unit_price),
    ReconstructionRule("unit_price_with_zero_final", _rate_from_unit_price_with_zero_final),
    ReconstructionRule("markup_fallback", _rate_from_markup, is_fallback=True),
)


# ============================================================================
# Selling price (final price per unit) rules
# ============================================================================


def _selling_price_from_taxable_amount(ctx: RuleContext) -> Optional[Decimal]:
    taxable_amount = ctx.line.taxable_amount
    if taxable_amount is None or taxable_amount <= 0:
        return None
    return round2(to_decimal(taxable_amount) / ctx.quantity)


def _selling_price_from_line_total(ctx: RuleContext) -> Optional[Decimal]:
    final_price = ctx.final_price
    if final_price is None or final_price <= 0 or ctx.unit_price is None:
        return None
    if abs(final_price - ctx.unit_price * ctx.quantity) <= ctx.line_total_epsilon:
        return round2(final_price / ctx.quantity)
    return None


def _selling_price_from_final_price(ctx: RuleContext) -> Optional[Decimal]:
    final_price = ctx.final_price
    if final_price is None or final_price <= 0:
        return None
    return round2(final_price)


def _selling_price_fallback(ctx: RuleContext) -> Optional[Decimal]:
    if ctx.unit_price is not None:
        return round2(ctx.unit_price)
    return round2(ctx.rate or ZERO)


SELLING_PRICE_RULES: tuple[ReconstructionRule, ...] = (
    ReconstructionRule("taxable_amount_per_unit", _selling_price_from_taxable_amount),
    ReconstructionRule("line_total_per_unit", _selling_price_from_line_total),
    ReconstructionRule("final_price_per_unit", _selling_price_from_final_price),
    ReconstructionRule(
        "unit_price_or_rate_fallback", _selling_price_fallback, is_fallback=True
    ),
)


def apply_rules(
    rules: tuple[ReconstructionRule, ...], ctx: RuleContext
) -> tuple[Decimal, ReconstructionRule]:
    """
    Run rules in order and return the first price produced.

    Args:
        rules: Ordered rules, the last of which must always apply
        ctx: Rule inputs

    Returns:
        Tuple of (price, matching rule)

    Raises:
        ReconstructionError: If no rule applies
    """
    for rule in rules:
        value = rule.apply(ctx)
        if value is not None:
            return round2(value), rule
    raise ReconstructionError(
        "No reconstruction rule applied",
        rules=[rule.name for rule in rules],
    )


# ============================================================================
# Order reconstruction
# ============================================================================


@dataclass(frozen=True)
class LineReconstruction:
    """Which rules produced a reconstructed line."""

    item_id: str
    rate_rule: str
    selling_price_rule: str
    used_fallback: bool
    rate_raised_to_selling_price: bool = False


@dataclass
class ReconstructedOrder:
    """Editable state inferred from a persisted order."""

    order_id: str
    items: list[LineItem]
    global_discount: Decimal
    tax_percentage: Decimal
    freight_charges: Decimal
    persisted_final_total: Decimal
    persisted_discount_total: Decimal
    lines: list[LineReconstruction] = field(default_factory=list)
    skipped_line_ids: list[str] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return any(line.used_fallback for line in self.lines)


class OrderReconstructor:
    """
    Builds line items and the global discount from a persisted order.

    Rule chains are class attributes so a subclass or caller can replace
    a heuristic without touching the pricing or aggregation code.
    """

    rate_rules: tuple[ReconstructionRule, ...] = RATE_RULES
    selling_price_rules: tuple[ReconstructionRule, ...] = SELLING_PRICE_RULES

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize reconstructor.

        Args:
            settings: Settings providing markup and tolerances
        """
        self.settings = settings or get_settings()

    def _comparison_price(self, ctx: RuleContext, rate: Decimal) -> Decimal:
        """Unit price used for discount derivation: stored unit price, else rate."""
        return ctx.unit_price if ctx.unit_price is not None else rate

    def _build_product(
        self, line: PersistedOrderItem, rate: Decimal
    ) -> tuple[LineItemKind, Optional[CatalogProduct], Optional[CustomProduct]]:
        master = line.custom_product if line.is_custom else line.product
        name = line.name or (master.name if master and master.name else None)
        product_id = line.product_id or (
            (master.product_id or master.id) if master else None
        )

        if line.is_custom or product_id is None:
            custom_product = CustomProduct(
                id=line.custom_product_id or (master.id if master else None),
                name=name or CUSTOM_ITEM_NAME,
                price=rate,
                cost_price=master.cost_price if master else None,
            )
            return LineItemKind.CUSTOM_PRODUCT, None, custom_product

        product = CatalogProduct(
            product_id=product_id,
            name=name or "",
            price=rate,
            cost_price=master.cost_price if master else None,
            sku=master.sku if master else None,
            category=master.category if master else None,
        )
        return LineItemKind.CATALOG_PRODUCT, product, None

    def reconstruct_line(
        self,
        line: PersistedOrderItem,
        tax_percentage: Decimal,
        order_id: str,
    ) -> tuple[LineItem, LineReconstruction]:
        """
        Reconstruct one persisted line.

        Args:
            line: Persisted line with quantity >= 1
            tax_percentage: Order tax percentage for line tax display
            order_id: Order ID for logging

        Returns:
            Tuple of (line item, rule report)
        """
        ctx = RuleContext(
            line=line,
            markup=self.settings.reconstruction_markup,
            line_total_epsilon=self.settings.line_total_epsilon,
        )
        rate, rate_rule = apply_rules(self.rate_rules, ctx)

        ctx = RuleContext(
            line=line,
            markup=ctx.markup,
            line_total_epsilon=ctx.line_total_epsilon,
            rate=rate,
        )
        selling_price, selling_price_rule = apply_rules(self.selling_price_rules, ctx)

        item_id = line.id or str(uuid.uuid4())
        used_fallback = rate_rule.is_fallback or selling_price_rule.is_fallback

        rate_raised = False
        if selling_price > rate:
            logger.warning(
                "Reconstructed selling price above rate, raising rate",
                order_id=order_id,
                item_id=item_id,
                rate=float(rate),
                selling_price=float(selling_price),
                rate_rule=rate_rule.name,
            )
            rate = selling_price
            rate_raised = True

        comparison_price = self._comparison_price(ctx, rate)
        quantity = line.quantity
        if comparison_price > 0 and comparison_price > selling_price:
            per_unit_discount = comparison_price - selling_price
            discount_percentage = round2(per_unit_discount / comparison_price * HUNDRED)
            discount_amount = round2(per_unit_discount * quantity)
        else:
            discount_percentage = ZERO
            discount_amount = ZERO

        if used_fallback:
            logger.warning(
                "Reconstructed line through fallback rule",
                order_id=order_id,
                item_id=item_id,
                rate_rule=rate_rule.name,
                selling_price_rule=selling_price_rule.name,
                rate=float(rate),
                selling_price=float(selling_price),
            )

        kind, product, custom_product = self._build_product(line, rate)
        total_price = round2(selling_price * quantity)
        returned_quantity = min(line.returned_quantity, quantity)

        item = LineItem(
            id=item_id,
            kind=kind,
            product=product,
            custom_product=custom_product,
            quantity=quantity,
            original_price=rate,
            final_price=selling_price,
            discount_percentage=min(discount_percentage, HUNDRED),
            discount_amount=discount_amount,
            total_price=total_price,
            tax=round2(total_price * tax_percentage / HUNDRED),
            return_status=line.return_status,
            returned_quantity=returned_quantity,
        )
        report = LineReconstruction(
            item_id=item_id,
            rate_rule=rate_rule.name,
            selling_price_rule=selling_price_rule.name,
            used_fallback=used_fallback,
            rate_raised_to_selling_price=rate_raised,
        )
        return item, report

    def reconstruct(self, record: PersistedOrder) -> ReconstructedOrder:
        """
        Reconstruct editable state from a persisted order.

        Lines with a quantity of zero or less are skipped.

        Args:
            record: Persisted order or quote

        Returns:
            ReconstructedOrder with line items and the inferred global discount
        """
        tax_percentage = (
            to_decimal(record.tax_percentage)
            if record.tax_percentage is not None
            else self.settings.default_tax_percentage
        )

        with log_performance(
            logger, "reconstruct_order", order_id=record.id, line_count=len(record.items)
        ):
            items: list[LineItem] = []
            reports: list[LineReconstruction] = []
            skipped: list[str] = []

            for index, line in enumerate(record.items):
                if line.quantity <= 0:
                    line_id = line.id or f"#{index}"
                    logger.warning(
                        "Skipping persisted line with non-positive quantity",
                        order_id=record.id,
                        item_id=line_id,
                        quantity=line.quantity,
                    )
                    skipped.append(line_id)
                    continue

                item, report = self.reconstruct_line(line, tax_percentage, record.id)
                items.append(item)
                reports.append(report)

            line_discounts = round2(
                sum((item.discount_amount for item in items), start=ZERO)
            )
            global_discount = max(
                ZERO, round2(record.discount_amount - line_discounts)
            )

        result = ReconstructedOrder(
            order_id=record.id,
            items=items,
            global_discount=global_discount,
            tax_percentage=tax_percentage,
            freight_charges=round2(record.freight_charges),
            persisted_final_total=round2(record.final_price),
            persisted_discount_total=round2(record.discount_amount),
            lines=reports,
            skipped_line_ids=skipped,
        )

        logger.info(
            "Reconstructed order",
            order_id=record.id,
            item_count=len(items),
            global_discount=float(global_discount),
            used_fallback=result.used_fallback,
        )
        return result


def reconstruct_order(
    record: PersistedOrder, settings: Optional[Settings] = None
) -> ReconstructedOrder:
    """Reconstruct an order with the default rule chains."""
    return OrderReconstructor(settings).reconstruct(record)
