"""
Pydantic schemas for line items, persisted order records and billing payloads.
"""
