"""
Forecast accuracy tracking.

Earlier runs' forecasts are compared with the demand that actually
materialised in the current run's usage series. Metrics follow the usual
definitions:

    MAE   = mean |actual - forecast|
    RMSE  = sqrt(mean (actual - forecast)²)
    MAPE  = mean |actual - forecast| / actual · 100   (periods with actual > 0)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Union

import numpy as np

from bookstore_analytics.inventory_analytics.aggregation import to_naive_utc
from bookstore_analytics.inventory_analytics.models import (
    DemandForecast,
    ForecastAccuracy,
    UsageSeries,
)

logger = logging.getLogger(__name__)


def evaluate_forecasts(
    previous_forecasts: Union[Mapping[str, DemandForecast], Iterable[DemandForecast]],
    all_series: Mapping[str, UsageSeries],
) -> Dict[str, ForecastAccuracy]:
    """
    Score earlier forecasts whose target period is covered by the series.

    Forecasts for unknown SKUs or for periods outside the window are skipped.
    """
    if isinstance(previous_forecasts, Mapping):
        previous_forecasts = previous_forecasts.values()

    result: Dict[str, ForecastAccuracy] = {}
    for fc in previous_forecasts:
        series = all_series.get(fc.sku_id)
        if series is None or fc.forecast_period is None:
            continue
        target = to_naive_utc(fc.forecast_period)
        record = next((r for r in series.records if to_naive_utc(r.period_start) == target), None)
        if record is None:
            continue

        actual = float(record.quantity_sold)
        error = abs(actual - fc.point_estimate)
        result[fc.sku_id] = ForecastAccuracy(
            sku_id=fc.sku_id,
            forecast_period=fc.forecast_period,
            point_estimate=fc.point_estimate,
            actual=actual,
            absolute_error=error,
            percentage_error=error / actual * 100 if actual > 0 else None,
            within_band=fc.lower_bound <= actual <= fc.upper_bound,
        )

    logger.debug(f"Evaluated {len(result)} earlier forecast(s)")
    return result


def summarize_accuracy(accuracy: Mapping[str, ForecastAccuracy]) -> Dict[str, Any]:
    """Aggregate MAE, RMSE, MAPE and band hit-rate over evaluated forecasts."""
    if not accuracy:
        return {"evaluated": 0, "mae": None, "rmse": None, "mape": None, "band_hit_rate": None}

    errors = np.array([a.absolute_error for a in accuracy.values()])
    pct = [a.percentage_error for a in accuracy.values() if a.percentage_error is not None]
    hits = sum(1 for a in accuracy.values() if a.within_band)

    return {
        "evaluated": len(accuracy),
        "mae": float(np.mean(errors)),
        "rmse": float(np.sqrt(np.mean(errors ** 2))),
        "mape": float(np.mean(pct)) if pct else None,
        "band_hit_rate": hits / len(accuracy),
    }
