"""
Services package for pricing and order edit-session logic.
"""
