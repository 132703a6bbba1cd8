"""
═══════════════════════════════════════════════════════════════════════════════
                    INVENTORY ANALYTICS - DATA MODEL
═══════════════════════════════════════════════════════════════════════════════

Run-scoped entities of the analytics engine. Everything here is created at
the start of a run and handed back to the caller as an immutable snapshot;
nothing is cached between runs.

    InventoryTransaction ─┐
    BookMetadata ─────────┴─> UsageRecord / UsageSeries
                                  ├─> DemandForecast
                                  └─> Classification
                                          └─> ReorderPolicy ─> Alert
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class PeriodGranularity(str, Enum):
    """Bucket size for usage series."""
    WEEK = "week"
    MONTH = "month"

    @property
    def freq(self) -> str:
        """pandas period frequency (weeks run Monday..Sunday)."""
        return "W-SUN" if self is PeriodGranularity.WEEK else "M"

    @property
    def period_days(self) -> float:
        return 7.0 if self is PeriodGranularity.WEEK else 365.25 / 12.0


class TransactionKind(str, Enum):
    RECEIPT = "RECEIPT"
    SALE = "SALE"
    ADJUSTMENT = "ADJUSTMENT"


class ForecastModelType(str, Enum):
    """Closed set of smoothing variants."""
    HOLT = "holt"       # Double exponential smoothing (level + trend)
    SIMPLE = "simple"   # Simple exponential smoothing (level only)
    MEAN = "mean"       # Degenerate: historical mean (sparse history)


class ModelConfidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ABCClass(str, Enum):
    """ABC classification (by revenue contribution)."""
    A = "A"  # First 80% of cumulative revenue
    B = "B"  # Next 15%
    C = "C"  # Remaining 5%


class XYZClass(str, Enum):
    """XYZ classification (by demand variability)."""
    X = "X"  # CV <= 0.5
    Y = "Y"  # 0.5 < CV <= 1.0
    Z = "Z"  # CV > 1.0, or zero mean demand


class AlertKind(str, Enum):
    LOW_STOCK = "LOW_STOCK"
    OVERSTOCK = "OVERSTOCK"
    SLOW_MOVING = "SLOW_MOVING"
    STALE = "STALE"


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return {"critical": 0, "warning": 1, "info": 2}[self.value]


class DiagnosticCode(str, Enum):
    INSUFFICIENT_HISTORY = "INSUFFICIENT_HISTORY"
    INPUT_VALIDATION = "INPUT_VALIDATION"
    COMPUTATION = "COMPUTATION"
    MISSING_METADATA = "MISSING_METADATA"
    MISSING_STOCK = "MISSING_STOCK"


# ═══════════════════════════════════════════════════════════════════════════════
# INPUTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class InventoryTransaction:
    """
    Raw inventory movement as returned by the transaction-history reader.

    Attributes:
        sku_id: Stock keeping unit
        timestamp: When the movement happened
        kind: RECEIPT, SALE or ADJUSTMENT
        quantity: Units moved (receipts and sales are non-negative,
            adjustments are signed)
        unit_price: Sale price per unit, if it differs from the catalogue
    """
    sku_id: str
    timestamp: datetime
    kind: TransactionKind
    quantity: int
    unit_price: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> InventoryTransaction:
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        unit_price = data.get("unit_price")
        return cls(
            sku_id=str(data["sku_id"]),
            timestamp=timestamp,
            kind=TransactionKind(str(data["kind"]).upper()),
            quantity=int(data["quantity"]),
            unit_price=float(unit_price) if unit_price is not None else None,
        )


@dataclass(frozen=True)
class BookMetadata:
    """Catalogue data for one SKU."""
    sku_id: str
    title: str = ""
    unit_price: float = 0.0
    pack_size: Optional[int] = None
    category: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# USAGE SERIES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class UsageRecord:
    """Usage of one SKU during one period."""
    sku_id: str
    period_start: datetime
    period_end: datetime
    quantity_sold: int = 0
    quantity_received: int = 0
    quantity_adjusted: int = 0
    unit_revenue: float = 0.0

    @property
    def revenue(self) -> float:
        return self.quantity_sold * self.unit_revenue

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku_id": self.sku_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "quantity_sold": self.quantity_sold,
            "quantity_received": self.quantity_received,
            "quantity_adjusted": self.quantity_adjusted,
            "unit_revenue": self.unit_revenue,
        }


@dataclass(frozen=True)
class UsageSeries:
    """
    Chronological, gap-free usage records of one SKU.

    Every series produced by one aggregation has the same length and the
    same period boundaries.
    """
    sku_id: str
    granularity: PeriodGranularity
    records: Tuple[UsageRecord, ...]
    insufficient_history: bool = False

    def __len__(self) -> int:
        return len(self.records)

    def sold(self) -> np.ndarray:
        """Quantities sold per period as float array."""
        return np.array([r.quantity_sold for r in self.records], dtype=float)

    @property
    def nonzero_periods(self) -> int:
        return sum(1 for r in self.records if r.quantity_sold > 0)

    @property
    def total_sold(self) -> int:
        return sum(r.quantity_sold for r in self.records)

    @property
    def total_received(self) -> int:
        return sum(r.quantity_received for r in self.records)

    @property
    def total_adjusted(self) -> int:
        return sum(r.quantity_adjusted for r in self.records)

    @property
    def total_revenue(self) -> float:
        return float(sum(r.revenue for r in self.records))

    @property
    def period_days(self) -> float:
        return self.granularity.period_days

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([r.to_dict() for r in self.records])


# ═══════════════════════════════════════════════════════════════════════════════
# RESULTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DemandForecast:
    """
    Demand forecast for one SKU.

    Attributes:
        sku_id: SKU forecast
        forecast_period: Start of the period being forecast
        horizon_periods: Periods ahead of the last observed period
        point_estimate: Expected demand in that period (>= 0)
        lower_bound: Lower band limit (>= 0)
        upper_bound: Upper band limit
        model_confidence: low / medium / high
        std_dev: Per-period std of one-step-ahead errors
        period_days: Length of one period in days
        model: Smoothing variant used
        alpha: Level smoothing constant (None for the mean model)
        beta: Trend smoothing constant (None unless Holt)
        mae: In-sample one-step mean absolute error
    """
    sku_id: str
    forecast_period: Optional[datetime]
    horizon_periods: int
    point_estimate: float
    lower_bound: float
    upper_bound: float
    model_confidence: ModelConfidence
    std_dev: float
    period_days: float
    model: ForecastModelType
    alpha: Optional[float] = None
    beta: Optional[float] = None
    mae: Optional[float] = None

    @property
    def daily_demand(self) -> float:
        return self.point_estimate / self.period_days

    @property
    def daily_std_dev(self) -> float:
        # Variance is additive across days within a period
        return self.std_dev / math.sqrt(self.period_days)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku_id": self.sku_id,
            "forecast_period": self.forecast_period.isoformat() if self.forecast_period else None,
            "horizon_periods": self.horizon_periods,
            "point_estimate": round(self.point_estimate, 3),
            "lower_bound": round(self.lower_bound, 3),
            "upper_bound": round(self.upper_bound, 3),
            "model_confidence": self.model_confidence.value,
            "std_dev": round(self.std_dev, 3),
            "model": self.model.value,
            "alpha": self.alpha,
            "beta": self.beta,
            "mae": round(self.mae, 3) if self.mae is not None else None,
        }


@dataclass(frozen=True)
class Classification:
    """ABC/XYZ class of one SKU within one run's population."""
    sku_id: str
    abc_class: ABCClass
    xyz_class: XYZClass
    revenue_share: float
    coefficient_of_variation: float
    total_revenue: float = 0.0

    @property
    def combined_class(self) -> str:
        return f"{self.abc_class.value}{self.xyz_class.value}"

    def to_dict(self) -> Dict[str, Any]:
        cv = self.coefficient_of_variation
        return {
            "sku_id": self.sku_id,
            "abc_class": self.abc_class.value,
            "xyz_class": self.xyz_class.value,
            "combined_class": self.combined_class,
            "revenue_share": round(self.revenue_share, 6),
            "coefficient_of_variation": round(cv, 4) if math.isfinite(cv) else None,
            "total_revenue": round(self.total_revenue, 2),
        }


@dataclass(frozen=True)
class ReorderPolicy:
    """Replenishment parameters of one SKU (reorder_point >= safety_stock >= 0)."""
    sku_id: str
    reorder_point: float
    safety_stock: float
    suggested_order_qty: int
    lead_time_days: int
    service_level_z: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku_id": self.sku_id,
            "reorder_point": round(self.reorder_point, 2),
            "safety_stock": round(self.safety_stock, 2),
            "suggested_order_qty": self.suggested_order_qty,
            "lead_time_days": self.lead_time_days,
            "service_level_z": round(self.service_level_z, 3),
        }


@dataclass(frozen=True)
class Alert:
    """Actionable stock alert raised by one run."""
    sku_id: str
    kind: AlertKind
    severity: AlertSeverity
    current_stock: float
    threshold: float
    raised_at: datetime
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku_id": self.sku_id,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "current_stock": self.current_stock,
            "threshold": round(self.threshold, 2),
            "raised_at": self.raised_at.isoformat(),
            "message": self.message,
        }


@dataclass(frozen=True)
class Diagnostic:
    """Why a SKU was excluded or degraded in a run."""
    code: DiagnosticCode
    message: str
    sku_id: Optional[str] = None
    severity: str = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "sku_id": self.sku_id,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class ForecastAccuracy:
    """Comparison of an earlier forecast with the demand that materialised."""
    sku_id: str
    forecast_period: datetime
    point_estimate: float
    actual: float
    absolute_error: float
    percentage_error: Optional[float]
    within_band: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku_id": self.sku_id,
            "forecast_period": self.forecast_period.isoformat(),
            "point_estimate": round(self.point_estimate, 3),
            "actual": self.actual,
            "absolute_error": round(self.absolute_error, 3),
            "percentage_error": (
                round(self.percentage_error, 2) if self.percentage_error is not None else None
            ),
            "within_band": self.within_band,
        }


@dataclass
class AnalyticsSnapshot:
    """
    Complete output of one analytics run.

    `diagnostics` lists every SKU that was excluded or degraded, so callers
    can tell "no alert" apart from "could not compute".
    """
    run_id: str
    as_of: datetime
    forecasts: Dict[str, DemandForecast] = field(default_factory=dict)
    classifications: Dict[str, Classification] = field(default_factory=dict)
    policies: Dict[str, ReorderPolicy] = field(default_factory=dict)
    alerts: List[Alert] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    accuracy: Dict[str, ForecastAccuracy] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def excluded_skus(self) -> List[str]:
        """SKUs dropped from the run by an error diagnostic."""
        return sorted({
            d.sku_id for d in self.diagnostics
            if d.sku_id is not None and d.severity == "error"
        })

    def diagnostics_for(self, sku_id: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.sku_id == sku_id]

    def alerts_for(self, sku_id: str) -> List[Alert]:
        return [a for a in self.alerts if a.sku_id == sku_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "as_of": self.as_of.isoformat(),
            "forecasts": {k: v.to_dict() for k, v in self.forecasts.items()},
            "classifications": {k: v.to_dict() for k, v in self.classifications.items()},
            "policies": {k: v.to_dict() for k, v in self.policies.items()},
            "alerts": [a.to_dict() for a in self.alerts],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "accuracy": {k: v.to_dict() for k, v in self.accuracy.items()},
            "summary": self.summary,
        }
