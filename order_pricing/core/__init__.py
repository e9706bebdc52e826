"""
Core package for shared utilities.

Holds configuration and structured logging used across the pricing,
reconstruction and edit-session modules.
"""
