"""Edit session state machine with snapshot divergence detection.

This module implements the snapshot taken when an existing order is opened
for editing, a pure divergence check between that snapshot and the current
order, and the EditSessionStateMachine that moves a loaded order from
LOADED_UNMODIFIED to MODIFIED exactly once. The state decides whether the
stored totals or the live totals are displayed.
"""

from decimal import Decimal
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from order_pricing.core.logging import get_logger
from order_pricing.schemas.orders import LineItem, OrderTotals
from order_pricing.services.orders.enums import (
    EditSessionState,
    get_allowed_edit_session_transitions,
    validate_edit_session_transition,
)
from order_pricing.services.pricing.money import ZERO, round2, to_decimal

logger = get_logger(__name__)

DEFAULT_GLOBAL_DISCOUNT_TOLERANCE = Decimal("0.01")

# Line fields compared against the snapshot, in comparison order
COMPARED_LINE_FIELDS = (
    "id",
    "quantity",
    "final_price",
    "original_price",
    "discount_amount",
)


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: EditSessionState,
        target_state: EditSessionState,
        **context: Any
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


class OrderSnapshot(BaseModel):
    """Line items and stored totals captured when an order is opened."""

    model_config = ConfigDict(frozen=True)

    original_items: tuple[LineItem, ...] = Field(default_factory=tuple)
    persisted_final_total: Decimal = ZERO
    persisted_discount_total: Decimal = ZERO
    is_loaded: bool = True

    @classmethod
    def capture(
        cls,
        items: Iterable[LineItem],
        persisted_final_total: Any,
        persisted_discount_total: Any,
    ) -> "OrderSnapshot":
        """Deep-copy the given items into a new snapshot."""
        return cls(
            original_items=tuple(item.model_copy(deep=True) for item in items),
            persisted_final_total=round2(persisted_final_total),
            persisted_discount_total=round2(persisted_discount_total),
        )

    @property
    def line_discount_total(self) -> Decimal:
        return round2(
            sum((item.discount_amount for item in self.original_items), start=ZERO)
        )

    @property
    def inferred_original_global_discount(self) -> Decimal:
        """Stored discount total not explained by line discounts, never negative."""
        return max(ZERO, round2(self.persisted_discount_total - self.line_discount_total))


class DisplayTotals(BaseModel):
    """Totals the presentation layer shows for the current state."""

    model_config = ConfigDict(frozen=True)

    grand_total: Decimal
    total_discount: Decimal
    from_persisted: bool


def find_divergence(
    snapshot: OrderSnapshot,
    items: list[LineItem],
    global_discount: Any,
    tolerance: Any = DEFAULT_GLOBAL_DISCOUNT_TOLERANCE,
) -> Optional[str]:
    """Compare the current order against the snapshot.

    Args:
        snapshot: Snapshot taken at load time
        items: Current line items
        global_discount: Current flat global discount
        tolerance: Allowed drift of the global discount

    Returns:
        Description of the first difference found, or None when the order
        still matches the snapshot
    """
    original_items = snapshot.original_items

    if len(items) != len(original_items):
        return f"item count changed from {len(original_items)} to {len(items)}"

    for index, (current, original) in enumerate(zip(items, original_items)):
        for field_name in COMPARED_LINE_FIELDS:
            if getattr(current, field_name) != getattr(original, field_name):
                return f"item {index} {field_name} changed"

    drift = abs(to_decimal(global_discount) - snapshot.inferred_original_global_discount)
    if drift > to_decimal(tolerance):
        return "global discount changed"

    return None


class EditSessionStateMachine:
    """State machine for the loaded-versus-modified display basis.

    A new order stays in NEW and always shows live totals. A loaded order
    starts in LOADED_UNMODIFIED, showing stored totals, and moves to MODIFIED
    the first time the order diverges from its snapshot. MODIFIED is final
    for the session.
    """

    def __init__(
        self,
        snapshot: Optional[OrderSnapshot] = None,
        global_discount_tolerance: Any = DEFAULT_GLOBAL_DISCOUNT_TOLERANCE,
    ):
        """Initialize state machine.

        Args:
            snapshot: Snapshot of a loaded order, None for a new order
            global_discount_tolerance: Allowed global discount drift
        """
        self.snapshot = snapshot
        self.global_discount_tolerance = to_decimal(global_discount_tolerance)
        self.state = (
            EditSessionState.LOADED_UNMODIFIED
            if snapshot is not None and snapshot.is_loaded
            else EditSessionState.NEW
        )

        logger.debug(
            "EditSessionStateMachine initialized",
            state=self.state.value,
            snapshot_items=len(snapshot.original_items) if snapshot else 0,
        )

    @property
    def is_loaded(self) -> bool:
        return self.state != EditSessionState.NEW

    @property
    def is_modified(self) -> bool:
        return self.state == EditSessionState.MODIFIED

    def validate_transition(self, target_state: EditSessionState) -> bool:
        """Validate if transition to target state is allowed.

        Args:
            target_state: Desired target state

        Returns:
            True if transition is valid

        Raises:
            StateTransitionError: If transition is invalid
        """
        if not validate_edit_session_transition(self.state, target_state):
            allowed = get_allowed_edit_session_transitions(self.state)
            raise StateTransitionError(
                f"Invalid transition from {self.state.value} to "
                f"{target_state.value}",
                current_state=self.state,
                target_state=target_state,
                allowed_transitions=[s.value for s in allowed],
            )
        return True

    def apply_transition(
        self, target_state: EditSessionState, reason: Optional[str] = None
    ) -> None:
        """Apply state transition.

        Args:
            target_state: Target state
            reason: Why the transition happened

        Raises:
            StateTransitionError: If transition is invalid
        """
        self.validate_transition(target_state)
        old_state = self.state
        self.state = target_state

        logger.info(
            "Edit session state changed",
            transition=f"{old_state.value}->{target_state.value}",
            reason=reason,
        )

    def evaluate(
        self, items: list[LineItem], global_discount: Any
    ) -> EditSessionState:
        """Run divergence detection after a recomputation pass.

        Args:
            items: Current line items
            global_discount: Current flat global discount

        Returns:
            State after evaluation
        """
        if self.state != EditSessionState.LOADED_UNMODIFIED or self.snapshot is None:
            return self.state

        reason = find_divergence(
            self.snapshot,
            items,
            global_discount,
            self.global_discount_tolerance,
        )
        if reason is not None:
            self.apply_transition(EditSessionState.MODIFIED, reason=reason)

        return self.state

    def mark_modified(self, reason: str) -> None:
        """Force the MODIFIED state for edits the snapshot does not cover."""
        if self.state == EditSessionState.LOADED_UNMODIFIED:
            self.apply_transition(EditSessionState.MODIFIED, reason=reason)

    def display_totals(self, live: OrderTotals) -> DisplayTotals:
        """Select stored or live totals for display.

        Args:
            live: Totals from the aggregation engine

        Returns:
            DisplayTotals for the current state
        """
        if self.state.shows_persisted_totals() and self.snapshot is not None:
            return DisplayTotals(
                grand_total=self.snapshot.persisted_final_total,
                total_discount=self.snapshot.persisted_discount_total,
                from_persisted=True,
            )

        return DisplayTotals(
            grand_total=live.grand_total,
            total_discount=live.total_discount_amount,
            from_persisted=False,
        )
