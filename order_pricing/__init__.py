"""
Order pricing and reconciliation engine for the billing editor.

Derives line and order totals from editable line items, keeps item-level
and order-level discounts apart, and reconciles live totals against the
totals stored with an order that is re-opened for editing.
"""

__version__ = "1.0.0"
