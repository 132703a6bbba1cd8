"""
Reporting-layer models for AnalyticsSnapshot.

The surrounding API layer decides the wire format; these pydantic models give
it a validated, JSON-ready shape:

    AnalyticsSnapshotModel.from_snapshot(snapshot).model_dump(mode="json")
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from bookstore_analytics.inventory_analytics.models import AnalyticsSnapshot


class DemandForecastModel(BaseModel):
    """Forecast of one SKU."""
    sku_id: str
    forecast_period: Optional[datetime] = None
    horizon_periods: int
    point_estimate: float = Field(ge=0)
    lower_bound: float = Field(ge=0)
    upper_bound: float = Field(ge=0)
    model_confidence: str
    model: str
    std_dev: float = Field(ge=0)
    mae: Optional[float] = None
    alpha: Optional[float] = None
    beta: Optional[float] = None


class ClassificationModel(BaseModel):
    """ABC/XYZ class of one SKU."""
    sku_id: str
    abc_class: str
    xyz_class: str
    combined_class: str
    revenue_share: float = Field(ge=0, le=1)
    coefficient_of_variation: Optional[float] = Field(
        default=None, description="None when mean demand is zero"
    )


class ReorderPolicyModel(BaseModel):
    """Reorder parameters of one SKU."""
    sku_id: str
    reorder_point: float = Field(ge=0)
    safety_stock: float = Field(ge=0)
    suggested_order_qty: int = Field(ge=0)
    lead_time_days: int = Field(gt=0)


class ForecastAccuracyModel(BaseModel):
    """Earlier forecast scored against realised demand."""
    sku_id: str
    forecast_period: datetime
    point_estimate: float
    actual: float
    absolute_error: float = Field(ge=0)
    percentage_error: Optional[float] = Field(
        default=None, description="None when actual demand is zero"
    )
    within_band: bool


class AlertModel(BaseModel):
    sku_id: str
    kind: str
    severity: str
    current_stock: float
    threshold: float
    raised_at: datetime
    message: str = ""


class DiagnosticModel(BaseModel):
    code: str
    severity: str
    message: str
    sku_id: Optional[str] = None


class AnalyticsSnapshotModel(BaseModel):
    """Complete run output for the reporting layer."""
    run_id: str
    as_of: datetime
    forecasts: List[DemandForecastModel]
    classifications: List[ClassificationModel]
    policies: List[ReorderPolicyModel]
    alerts: List[AlertModel]
    diagnostics: List[DiagnosticModel]
    accuracy: List[ForecastAccuracyModel] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, snapshot: AnalyticsSnapshot) -> AnalyticsSnapshotModel:
        return cls(
            run_id=snapshot.run_id,
            as_of=snapshot.as_of,
            forecasts=[
                DemandForecastModel(
                    sku_id=f.sku_id,
                    forecast_period=f.forecast_period,
                    horizon_periods=f.horizon_periods,
                    point_estimate=f.point_estimate,
                    lower_bound=f.lower_bound,
                    upper_bound=f.upper_bound,
                    model_confidence=f.model_confidence.value,
                    model=f.model.value,
                    std_dev=f.std_dev,
                    mae=f.mae,
                    alpha=f.alpha,
                    beta=f.beta,
                )
                for f in sorted(snapshot.forecasts.values(), key=lambda f: f.sku_id)
            ],
            classifications=[
                ClassificationModel(
                    sku_id=c.sku_id,
                    abc_class=c.abc_class.value,
                    xyz_class=c.xyz_class.value,
                    combined_class=c.combined_class,
                    revenue_share=c.revenue_share,
                    coefficient_of_variation=(
                        c.coefficient_of_variation
                        if math.isfinite(c.coefficient_of_variation) else None
                    ),
                )
                for c in sorted(snapshot.classifications.values(), key=lambda c: c.sku_id)
            ],
            policies=[
                ReorderPolicyModel(
                    sku_id=p.sku_id,
                    reorder_point=p.reorder_point,
                    safety_stock=p.safety_stock,
                    suggested_order_qty=p.suggested_order_qty,
                    lead_time_days=p.lead_time_days,
                )
                for p in sorted(snapshot.policies.values(), key=lambda p: p.sku_id)
            ],
            alerts=[
                AlertModel(
                    sku_id=a.sku_id,
                    kind=a.kind.value,
                    severity=a.severity.value,
                    current_stock=a.current_stock,
                    threshold=a.threshold,
                    raised_at=a.raised_at,
                    message=a.message,
                )
                for a in snapshot.alerts
            ],
            diagnostics=[
                DiagnosticModel(
                    code=d.code.value,
                    severity=d.severity,
                    message=d.message,
                    sku_id=d.sku_id,
                )
                for d in snapshot.diagnostics
            ],
            accuracy=[
                ForecastAccuracyModel(
                    sku_id=a.sku_id,
                    forecast_period=a.forecast_period,
                    point_estimate=a.point_estimate,
                    actual=a.actual,
                    absolute_error=a.absolute_error,
                    percentage_error=a.percentage_error,
                    within_band=a.within_band,
                )
                for a in sorted(snapshot.accuracy.values(), key=lambda a: a.sku_id)
            ],
            summary=snapshot.summary,
        )
