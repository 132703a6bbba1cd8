"""
Bookstore Analytics
===================

Inventory analytics for the tech bookstore: ABC/XYZ classification, demand
forecasting, reorder policies and stock alerts.

Usage:
    from bookstore_analytics.inventory_analytics import run_analytics

    snapshot = run_analytics(as_of, transactions=..., current_stock=..., book_metadata=...)
"""
