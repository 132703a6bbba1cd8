"""
═══════════════════════════════════════════════════════════════════════════════
                    BOOKSTORE ANALYTICS - INVENTORY ANALYTICS ENGINE
═══════════════════════════════════════════════════════════════════════════════

Turns transaction history, current stock and catalogue data into one
analytics snapshot per run:

    ┌─────────────────────────────────────────────────────────────────┐
    │  Transaction Aggregator    raw transactions -> usage series     │
    ├─────────────────────────────────────────────────────────────────┤
    │  Demand Forecaster         Holt / simple smoothing + band       │
    │  ABC/XYZ Classifier        revenue share × demand variability   │
    ├─────────────────────────────────────────────────────────────────┤
    │  Reorder Policy Calculator safety stock, ROP, order quantity    │
    ├─────────────────────────────────────────────────────────────────┤
    │  Alert Generator           LOW_STOCK, OVERSTOCK, SLOW_MOVING,   │
    │                            STALE                                │
    └─────────────────────────────────────────────────────────────────┘

Mathematical Foundations:
───────────────────────
    SS  = z · σ_d · sqrt(L)
    ROP = μ_d · L + SS
    CV  = σ / μ

Dependencies:
    - numpy / pandas: series aggregation and statistics
    - scipy: normal quantiles for confidence and service levels
    - pydantic: snapshot serialisation models
"""

from bookstore_analytics.inventory_analytics.models import (
    ABCClass,
    Alert,
    AlertKind,
    AlertSeverity,
    AnalyticsSnapshot,
    BookMetadata,
    Classification,
    DemandForecast,
    Diagnostic,
    DiagnosticCode,
    ForecastModelType,
    InventoryTransaction,
    ModelConfidence,
    PeriodGranularity,
    ReorderPolicy,
    TransactionKind,
    UsageRecord,
    UsageSeries,
    XYZClass,
)
from bookstore_analytics.inventory_analytics.config import AnalyticsConfig
from bookstore_analytics.inventory_analytics.aggregation import (
    aggregate,
    last_movement_dates,
    last_sale_dates,
    partition_transactions,
)
from bookstore_analytics.inventory_analytics.forecasting import (
    DemandForecaster,
    SmoothingModel,
    forecast,
)
from bookstore_analytics.inventory_analytics.classification import (
    abc_xyz_matrix,
    classify,
)
from bookstore_analytics.inventory_analytics.reorder_policy import (
    ReorderPolicyCalculator,
    compute_policy,
)
from bookstore_analytics.inventory_analytics.alerts import (
    AlertGenerator,
    generate_alerts,
)
from bookstore_analytics.inventory_analytics.forecast_accuracy import (
    evaluate_forecasts,
    summarize_accuracy,
)
from bookstore_analytics.inventory_analytics.sources import (
    BookMetadataReader,
    CurrentStockReader,
    InMemoryInventorySource,
    TransactionHistoryReader,
)
from bookstore_analytics.inventory_analytics.pipeline import (
    AnalyticsEngine,
    CancellationToken,
    run_analytics,
)

__all__ = [
    # Models
    "ABCClass",
    "Alert",
    "AlertKind",
    "AlertSeverity",
    "AnalyticsSnapshot",
    "BookMetadata",
    "Classification",
    "DemandForecast",
    "Diagnostic",
    "DiagnosticCode",
    "ForecastModelType",
    "InventoryTransaction",
    "ModelConfidence",
    "PeriodGranularity",
    "ReorderPolicy",
    "TransactionKind",
    "UsageRecord",
    "UsageSeries",
    "XYZClass",
    # Config
    "AnalyticsConfig",
    # Aggregation
    "aggregate",
    "last_movement_dates",
    "last_sale_dates",
    "partition_transactions",
    # Forecasting
    "DemandForecaster",
    "SmoothingModel",
    "forecast",
    # Classification
    "abc_xyz_matrix",
    "classify",
    # Reorder
    "ReorderPolicyCalculator",
    "compute_policy",
    # Alerts
    "AlertGenerator",
    "generate_alerts",
    # Accuracy
    "evaluate_forecasts",
    "summarize_accuracy",
    # Sources
    "BookMetadataReader",
    "CurrentStockReader",
    "InMemoryInventorySource",
    "TransactionHistoryReader",
    # Pipeline
    "AnalyticsEngine",
    "CancellationToken",
    "run_analytics",
]

__version__ = "1.0.0"
