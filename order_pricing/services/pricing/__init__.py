"""
Pricing package: money helpers, line item pricing and order aggregation.
"""
