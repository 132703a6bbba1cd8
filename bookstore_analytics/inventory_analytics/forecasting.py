"""
═══════════════════════════════════════════════════════════════════════════════
                    DEMAND FORECASTER
═══════════════════════════════════════════════════════════════════════════════

Exponential smoothing forecaster for per-SKU usage series.

Mathematical Formulation:
─────────────────────────
    Holt's linear method (double exponential smoothing):
        ŷ(t)     = ℓ(t-1) + b(t-1)                       one-step-ahead forecast
        ℓ(t)     = α·y(t) + (1-α)·ŷ(t)                   level
        b(t)     = β·(ℓ(t) - ℓ(t-1)) + (1-β)·b(t-1)      trend
        ŷ(n+h)   = ℓ(n) + h·b(n)                         h-step forecast

    Initialisation:
        ℓ(0) = y(0)
        b(0) = (y(m) - y(0)) / m,  m = min(n-1, 4)

    Band:
        ŷ(n+h) ± z·σ_e,  σ_e = std of one-step-ahead errors e(t) = y(t) - ŷ(t)

    α, β ∈ (0, 1) are fixed by configuration or chosen from
    {0.1, 0.3, 0.5, 0.7, 0.9}² by minimising in-sample MAE.

The SIMPLE variant is the same recursion with b ≡ 0. Series with too little
history get a degenerate forecast: the historical mean with a band of
z·max(σ, μ) and low confidence.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from bookstore_analytics.errors import ComputationError, ConfigurationError
from bookstore_analytics.inventory_analytics.config import AUTO, AnalyticsConfig
from bookstore_analytics.inventory_analytics.models import (
    DemandForecast,
    ForecastModelType,
    ModelConfidence,
    UsageSeries,
)

logger = logging.getLogger(__name__)

SMOOTHING_GRID: Tuple[float, ...] = (0.1, 0.3, 0.5, 0.7, 0.9)

# Residual std relative to mean demand
HIGH_CONFIDENCE_RATIO = 0.25
MEDIUM_CONFIDENCE_RATIO = 0.6

_TREND_INIT_PERIODS = 4


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL VARIANTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SmoothingModel:
    """
    Smoothing variant plus its parameters.

    A None alpha/beta means "tune by grid search". beta is ignored by the
    SIMPLE variant.
    """
    kind: ForecastModelType = ForecastModelType.HOLT
    alpha: Optional[float] = None
    beta: Optional[float] = None

    def __post_init__(self):
        if self.kind not in (ForecastModelType.HOLT, ForecastModelType.SIMPLE):
            raise ConfigurationError(f"Unsupported smoothing model: {self.kind!r}")
        for name in ("alpha", "beta"):
            value = getattr(self, name)
            if value is not None and not (0.0 < value < 1.0):
                raise ConfigurationError(f"{name} must be in (0, 1), got {value}")

    @property
    def has_trend(self) -> bool:
        return self.kind == ForecastModelType.HOLT

    @classmethod
    def from_config(cls, config: AnalyticsConfig) -> SmoothingModel:
        return cls(
            kind=config.forecast_model,
            alpha=None if config.alpha == AUTO else float(config.alpha),
            beta=None if config.beta == AUTO else float(config.beta),
        )


@dataclass(frozen=True)
class SmoothingFit:
    """Final state of one smoothing pass over a series."""
    alpha: float
    beta: Optional[float]
    level: float
    trend: float
    errors: np.ndarray
    mae: float

    def predict(self, horizon: int) -> float:
        return self.level + horizon * self.trend


# ═══════════════════════════════════════════════════════════════════════════════
# SMOOTHING
# ═══════════════════════════════════════════════════════════════════════════════

def exponential_smoothing(
    y: np.ndarray,
    alpha: float,
    beta: Optional[float] = None,
) -> SmoothingFit:
    """
    Run one smoothing pass.

    Args:
        y: Observations (at least 2)
        alpha: Level smoothing constant
        beta: Trend smoothing constant, None for simple smoothing

    Returns:
        SmoothingFit with final level/trend and one-step-ahead errors
    """
    n = len(y)
    level = float(y[0])
    if beta is not None and n > 1:
        m = min(n - 1, _TREND_INIT_PERIODS)
        trend = float(y[m] - y[0]) / m
    else:
        trend = 0.0

    errors = np.empty(max(n - 1, 0), dtype=float)
    for t in range(1, n):
        fitted = level + trend
        errors[t - 1] = y[t] - fitted
        previous_level = level
        level = alpha * y[t] + (1.0 - alpha) * fitted
        if beta is not None:
            trend = beta * (level - previous_level) + (1.0 - beta) * trend

    mae = float(np.mean(np.abs(errors))) if len(errors) else 0.0
    return SmoothingFit(alpha=alpha, beta=beta, level=level, trend=trend, errors=errors, mae=mae)


def fit_smoothing(y: np.ndarray, model: SmoothingModel) -> SmoothingFit:
    """
    Fit the model, grid-searching any parameter left as None.

    Ties on MAE keep the first grid point, so the choice is deterministic.
    """
    alphas = (model.alpha,) if model.alpha is not None else SMOOTHING_GRID
    if model.has_trend:
        betas = (model.beta,) if model.beta is not None else SMOOTHING_GRID
    else:
        betas = (None,)

    best: Optional[SmoothingFit] = None
    for alpha in alphas:
        for beta in betas:
            fit = exponential_smoothing(y, alpha, beta)
            if best is None or fit.mae < best.mae:
                best = fit
    return best


# ═══════════════════════════════════════════════════════════════════════════════
# FORECASTER
# ═══════════════════════════════════════════════════════════════════════════════

class DemandForecaster:
    """
    Produces one DemandForecast per usage series.

    Stateless between calls: identical series and configuration always give
    identical forecasts.
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        model: Optional[SmoothingModel] = None,
    ):
        self.config = config or AnalyticsConfig()
        self.model = model or SmoothingModel.from_config(self.config)
        self.z = self.config.confidence_z

    def forecast(self, series: UsageSeries, horizon_periods: Optional[int] = None) -> DemandForecast:
        """
        Forecast demand `horizon_periods` periods after the end of the series.

        Raises:
            ConfigurationError: horizon_periods below 1
            ComputationError: numeric overflow or non-finite result
        """
        horizon = self.config.forecast_horizon_periods if horizon_periods is None else horizon_periods
        if isinstance(horizon, bool) or not isinstance(horizon, (int, np.integer)) or horizon < 1:
            raise ConfigurationError(f"horizon_periods must be a positive integer, got {horizon!r}")
        y = series.sold()

        if series.insufficient_history or len(y) < 3 or np.count_nonzero(y) < 2:
            return self.degenerate_forecast(series, horizon)

        try:
            with np.errstate(over="raise", invalid="raise"):
                fit = fit_smoothing(y, self.model)
                raw_point = fit.predict(horizon)
                std_dev = float(np.std(fit.errors, ddof=1)) if len(fit.errors) > 1 else 0.0
                history_std = float(np.std(y))
                mean_demand = float(np.mean(y))
        except FloatingPointError as e:
            logger.error(f"Smoothing overflow for SKU {series.sku_id}: {e}")
            raise ComputationError(f"Numeric failure while smoothing: {e}", series.sku_id) from e

        if not all(math.isfinite(v) for v in (raw_point, std_dev, fit.mae)):
            logger.error(f"Non-finite forecast for SKU {series.sku_id}")
            raise ComputationError("Forecast produced a non-finite value", series.sku_id)

        point = max(0.0, raw_point)
        half_width = self.z * std_dev

        if history_std == 0.0:
            confidence = ModelConfidence.HIGH
        else:
            confidence = _confidence_from_ratio(std_dev / mean_demand)

        logger.debug(
            f"SKU {series.sku_id}: {self.model.kind.value} alpha={fit.alpha} beta={fit.beta} "
            f"mae={fit.mae:.3f} point={point:.3f} std={std_dev:.3f}"
        )

        return DemandForecast(
            sku_id=series.sku_id,
            forecast_period=_target_period_start(series, horizon),
            horizon_periods=horizon,
            point_estimate=point,
            lower_bound=max(0.0, point - half_width),
            upper_bound=point + half_width,
            model_confidence=confidence,
            std_dev=std_dev,
            period_days=series.period_days,
            model=self.model.kind,
            alpha=fit.alpha,
            beta=fit.beta,
            mae=fit.mae,
        )

    def degenerate_forecast(self, series: UsageSeries, horizon: int) -> DemandForecast:
        """Historical mean with a wide band (z·max(σ, μ)) and low confidence."""
        y = series.sold()
        mean = float(np.mean(y)) if len(y) else 0.0
        spread = max(float(np.std(y)) if len(y) else 0.0, mean)
        half_width = self.z * spread

        return DemandForecast(
            sku_id=series.sku_id,
            forecast_period=_target_period_start(series, horizon),
            horizon_periods=horizon,
            point_estimate=mean,
            lower_bound=max(0.0, mean - half_width),
            upper_bound=mean + half_width,
            model_confidence=ModelConfidence.LOW,
            std_dev=spread,
            period_days=series.period_days,
            model=ForecastModelType.MEAN,
        )


def _confidence_from_ratio(ratio: float) -> ModelConfidence:
    if ratio <= HIGH_CONFIDENCE_RATIO:
        return ModelConfidence.HIGH
    if ratio <= MEDIUM_CONFIDENCE_RATIO:
        return ModelConfidence.MEDIUM
    return ModelConfidence.LOW


def _target_period_start(series: UsageSeries, horizon: int) -> Optional[datetime]:
    if not series.records:
        return None
    freq = series.granularity.freq
    last = pd.Timestamp(series.records[-1].period_start).to_period(freq)
    return (last + horizon).start_time.to_pydatetime()


# ═══════════════════════════════════════════════════════════════════════════════
# CONVENIENCE FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def forecast(
    series: UsageSeries,
    horizon_periods: int = 1,
    config: Optional[AnalyticsConfig] = None,
) -> DemandForecast:
    """Forecast one series with the given (or default) configuration."""
    return DemandForecaster(config).forecast(series, horizon_periods)
