"""Edit session, line item and payment enums for the billing editor.

This module defines the enums shared by the pricing engine, reconstruction
and edit session, including the edit session state machine and its
transition validation rules.
"""

from enum import Enum
from typing import Dict, Set


class EditSessionState(str, Enum):
    """Edit session state with state machine transitions.

    Valid transitions:
    - NEW -> (terminal for the session, live totals only)
    - LOADED_UNMODIFIED -> MODIFIED
    - MODIFIED -> (terminal for the session)
    """

    NEW = "new"
    LOADED_UNMODIFIED = "loaded_unmodified"
    MODIFIED = "modified"

    @classmethod
    def from_string(cls, value: str) -> "EditSessionState":
        """Convert string to EditSessionState enum.

        Args:
            value: String representation of state

        Returns:
            EditSessionState enum value

        Raises:
            ValueError: If value is not a valid state
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid edit session state: {value}. "
                f"Valid values are: {valid_values}"
            )

    def shows_persisted_totals(self) -> bool:
        """Check if the stored totals are displayed instead of live ones.

        Returns:
            True only for a loaded order that has not been edited
        """
        return self == EditSessionState.LOADED_UNMODIFIED

    def is_terminal(self) -> bool:
        """Check if no further transition is possible.

        Returns:
            True for NEW and MODIFIED
        """
        return self in {EditSessionState.NEW, EditSessionState.MODIFIED}


class LineItemKind(str, Enum):
    """Source of a line item."""

    CATALOG_PRODUCT = "catalog_product"
    CUSTOM_PRODUCT = "custom_product"


class ReturnStatus(str, Enum):
    """Return state of a line item."""

    NONE = "none"
    PARTIAL = "partial"
    FULL = "full"

    @classmethod
    def from_quantities(cls, returned_quantity: int, quantity: int) -> "ReturnStatus":
        """Derive return status from returned and ordered units.

        Args:
            returned_quantity: Units returned, already capped at quantity
            quantity: Units on the line

        Returns:
            NONE when nothing is returned, FULL when every unit is returned,
            PARTIAL otherwise
        """
        if returned_quantity <= 0:
            return cls.NONE
        if returned_quantity >= quantity:
            return cls.FULL
        return cls.PARTIAL


class PaymentMethodType(str, Enum):
    """Payment method recorded against an order."""

    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    EMI = "emi"


class GlobalDiscountType(str, Enum):
    """How the order-level discount was entered."""

    PERCENTAGE = "percentage"
    AMOUNT = "amount"


# State machine transition rules
EDIT_SESSION_TRANSITIONS: Dict[EditSessionState, Set[EditSessionState]] = {
    EditSessionState.NEW: set(),  # Terminal
    EditSessionState.LOADED_UNMODIFIED: {
        EditSessionState.MODIFIED
    },
    EditSessionState.MODIFIED: set(),  # Terminal
}


def validate_edit_session_transition(
    current: EditSessionState,
    new: EditSessionState
) -> bool:
    """Validate if edit session state transition is allowed.

    Args:
        current: Current edit session state
        new: Desired new state

    Returns:
        True if transition is valid
    """
    return new in EDIT_SESSION_TRANSITIONS.get(current, set())


def get_allowed_edit_session_transitions(
    current: EditSessionState
) -> Set[EditSessionState]:
    """Get all allowed transitions from current edit session state.

    Args:
        current: Current edit session state

    Returns:
        Set of allowed next states
    """
    return EDIT_SESSION_TRANSITIONS.get(current, set()).copy()
