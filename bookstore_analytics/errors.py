"""
Bookstore Analytics - Error Taxonomy
====================================

ConfigurationError    -> invalid engine configuration (raised at construction)
InputValidationError  -> malformed per-SKU input (SKU excluded, run continues)
ComputationError      -> numeric failure for one SKU (SKU excluded, run continues)
RunCancelledError     -> cooperative cancellation of a whole run

Sparse history is not an error: such SKUs get a degenerate forecast and an
INSUFFICIENT_HISTORY diagnostic with severity "warning".
"""

from __future__ import annotations

from typing import Optional


class AnalyticsError(Exception):
    """Base class for analytics engine errors."""


class ConfigurationError(AnalyticsError):
    """Invalid configuration detected before any run starts."""


class InputValidationError(AnalyticsError):
    """Malformed input for a single SKU."""

    def __init__(self, message: str, sku_id: Optional[str] = None):
        super().__init__(message)
        self.sku_id = sku_id


class ComputationError(AnalyticsError):
    """Numeric failure while computing results for a single SKU."""

    def __init__(self, message: str, sku_id: Optional[str] = None):
        super().__init__(message)
        self.sku_id = sku_id


class RunCancelledError(AnalyticsError):
    """Run was cancelled through its cancellation token."""