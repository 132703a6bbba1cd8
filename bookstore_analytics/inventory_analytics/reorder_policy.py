"""
═══════════════════════════════════════════════════════════════════════════════
                    REORDER POLICY CALCULATOR
═══════════════════════════════════════════════════════════════════════════════

Mathematical Formulation:
─────────────────────────
    μ_d = point_estimate / period_days          forecast demand per day
    σ_d = σ_period / sqrt(period_days)          forecast std per day
          (σ_period = half band width / z, stored on the forecast)

    Safety Stock:
        SS  = z_s · σ_d · sqrt(L)

    Reorder Point:
        ROP = μ_d · L + SS

    Suggested order quantity (review-period cover):
        Q   = ceil(μ_d · R)  rounded up to a multiple of the pack size

    where:
        L   = lead time (days)
        R   = review period (days, default 30)
        z_s = service level quantile for the SKU's ABC class
              (A 95% → 1.645, B 90% → 1.28, C 80% → 0.84) unless overridden

Invariant: ROP ≥ SS ≥ 0. Inputs that would break it (non-positive lead time,
negative demand) are rejected before computing anything.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from bookstore_analytics.errors import ComputationError, InputValidationError
from bookstore_analytics.inventory_analytics.config import AnalyticsConfig
from bookstore_analytics.inventory_analytics.models import (
    Classification,
    DemandForecast,
    ReorderPolicy,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

def validate_lead_time(lead_time_days, sku_id: Optional[str] = None) -> int:
    """Lead time must be a positive whole number of days."""
    if isinstance(lead_time_days, bool) or not isinstance(lead_time_days, (int, float)):
        raise InputValidationError(f"Lead time must be a number of days, got {lead_time_days!r}", sku_id)
    if not math.isfinite(lead_time_days) or lead_time_days <= 0:
        raise InputValidationError(f"Lead time must be positive, got {lead_time_days}", sku_id)
    if lead_time_days != int(lead_time_days):
        raise InputValidationError(f"Lead time must be whole days, got {lead_time_days}", sku_id)
    return int(lead_time_days)


def _validate_forecast(forecast: DemandForecast) -> None:
    for name in ("point_estimate", "std_dev", "period_days"):
        value = getattr(forecast, name)
        if not math.isfinite(value):
            raise InputValidationError(f"Forecast {name} is not finite", forecast.sku_id)
    if forecast.point_estimate < 0:
        raise InputValidationError(f"Negative forecast demand {forecast.point_estimate}", forecast.sku_id)
    if forecast.std_dev < 0:
        raise InputValidationError(f"Negative forecast deviation {forecast.std_dev}", forecast.sku_id)
    if forecast.period_days <= 0:
        raise InputValidationError(f"Invalid period length {forecast.period_days}", forecast.sku_id)


# ═══════════════════════════════════════════════════════════════════════════════
# ORDER QUANTITY
# ═══════════════════════════════════════════════════════════════════════════════

def round_order_quantity(quantity: float, pack_size: Optional[int] = None) -> int:
    """Round up to the next whole unit, or the next full pack if given."""
    if quantity <= 0:
        return 0
    units = math.ceil(round(quantity, 9))
    if pack_size and pack_size > 1:
        return int(math.ceil(units / pack_size) * pack_size)
    return int(units)


# ═══════════════════════════════════════════════════════════════════════════════
# POLICY
# ═══════════════════════════════════════════════════════════════════════════════

class ReorderPolicyCalculator:
    """Derives reorder parameters from forecast + classification + lead time."""

    def __init__(self, config: Optional[AnalyticsConfig] = None):
        self.config = config or AnalyticsConfig()

    def compute_policy(
        self,
        forecast: DemandForecast,
        classification: Classification,
        lead_time_days: int,
        service_level_z: Optional[float] = None,
        pack_size: Optional[int] = None,
    ) -> ReorderPolicy:
        """
        Compute reorder point, safety stock and suggested order quantity.

        Args:
            forecast: Demand forecast of the SKU
            classification: ABC/XYZ class of the SKU
            lead_time_days: Replenishment lead time (> 0)
            service_level_z: Explicit z; defaults to the ABC class level
            pack_size: Case/pack size for rounding the order quantity

        Raises:
            InputValidationError: invalid lead time, demand, z or pack size
            ComputationError: non-finite result
        """
        sku_id = forecast.sku_id
        if classification.sku_id != sku_id:
            raise InputValidationError(
                f"Classification for {classification.sku_id} passed with forecast for {sku_id}",
                sku_id,
            )
        lead_time = validate_lead_time(lead_time_days, sku_id)
        _validate_forecast(forecast)

        if service_level_z is None:
            service_level_z = self.config.service_level_z(classification.abc_class)
        elif not math.isfinite(service_level_z) or service_level_z < 0:
            raise InputValidationError(f"Service level z must be >= 0, got {service_level_z}", sku_id)

        if pack_size is not None and (isinstance(pack_size, bool) or pack_size <= 0):
            raise InputValidationError(f"Pack size must be positive, got {pack_size}", sku_id)

        daily_demand = forecast.daily_demand
        safety_stock = service_level_z * forecast.daily_std_dev * math.sqrt(lead_time)
        reorder_point = daily_demand * lead_time + safety_stock
        order_qty = round_order_quantity(daily_demand * self.config.review_period_days, pack_size)

        if not (math.isfinite(safety_stock) and math.isfinite(reorder_point)):
            raise ComputationError("Non-finite reorder parameters", sku_id)
        if not (reorder_point >= safety_stock >= 0):
            raise ComputationError(
                f"Reorder invariant broken: rop={reorder_point} ss={safety_stock}", sku_id
            )

        return ReorderPolicy(
            sku_id=sku_id,
            reorder_point=reorder_point,
            safety_stock=safety_stock,
            suggested_order_qty=order_qty,
            lead_time_days=lead_time,
            service_level_z=service_level_z,
        )


def compute_policy(
    forecast: DemandForecast,
    classification: Classification,
    lead_time_days: int,
    service_level_z: Optional[float] = None,
    config: Optional[AnalyticsConfig] = None,
    pack_size: Optional[int] = None,
) -> ReorderPolicy:
    """Module-level shortcut for ReorderPolicyCalculator.compute_policy."""
    return ReorderPolicyCalculator(config).compute_policy(
        forecast, classification, lead_time_days, service_level_z, pack_size
    )


def days_of_supply(current_stock: float, forecast: DemandForecast) -> float:
    """Days the current stock lasts at forecast demand (inf when no demand)."""
    daily = forecast.daily_demand
    return current_stock / daily if daily > 0 else math.inf
