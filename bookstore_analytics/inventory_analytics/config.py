"""
Bookstore Analytics - Engine Configuration
==========================================

Single configuration object for an analytics run. Validated once, at engine
construction, so that a bad option never surfaces halfway through a batch.

Environment overrides (all optional):
    BOOKSTORE_ANALYTICS_WINDOW_PERIODS=52
    BOOKSTORE_ANALYTICS_PERIOD_GRANULARITY=week|month
    BOOKSTORE_ANALYTICS_ALPHA=auto|0.3
    BOOKSTORE_ANALYTICS_BETA=auto|0.1
    BOOKSTORE_ANALYTICS_FORECAST_MODEL=holt|simple
    BOOKSTORE_ANALYTICS_CONFIDENCE_LEVEL=0.90
    BOOKSTORE_ANALYTICS_OVERSTOCK_MULTIPLIER=3.0
    ...
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional, Union

from scipy import stats

from bookstore_analytics.errors import ConfigurationError
from bookstore_analytics.inventory_analytics.models import (
    ABCClass,
    ForecastModelType,
    PeriodGranularity,
)

logger = logging.getLogger(__name__)

AUTO = "auto"

ENV_PREFIX = "BOOKSTORE_ANALYTICS_"


@dataclass(frozen=True)
class AnalyticsConfig:
    """
    Configuration for one analytics engine.

    Attributes:
        window_periods: Trailing periods covered by every usage series
        period_granularity: Bucket size (week or month)
        alpha: Level smoothing constant in (0, 1), or "auto" for grid search
        beta: Trend smoothing constant in (0, 1), or "auto" for grid search
        forecast_model: Smoothing variant (holt or simple)
        forecast_horizon_periods: Periods ahead of as_of to forecast
        confidence_level: Two-sided coverage of the forecast band
        abc_a_threshold: Cumulative revenue share closing class A
        abc_b_threshold: Cumulative revenue share closing class B
        xyz_x_threshold: Highest CV still considered stable (X)
        xyz_y_threshold: Highest CV still considered variable (Y)
        overstock_multiplier: Stock above suggested qty times this is overstock
        slow_moving_periods: Periods without sales before a Z item is slow
        stale_days: Days without any movement before an item is stale
        min_history_periods: Non-zero periods needed for the smoothing model
        review_period_days: Days of demand covered by a suggested order
        default_lead_time_days: Lead time for SKUs with no explicit value
        service_level_a/b/c: Target service level per ABC class
        max_workers: Worker pool bound (None = CPU count)
    """
    window_periods: int = 52
    period_granularity: PeriodGranularity = PeriodGranularity.WEEK

    alpha: Union[float, str] = AUTO
    beta: Union[float, str] = AUTO
    forecast_model: ForecastModelType = ForecastModelType.HOLT
    forecast_horizon_periods: int = 1
    confidence_level: float = 0.90

    abc_a_threshold: float = 0.80
    abc_b_threshold: float = 0.95
    xyz_x_threshold: float = 0.5
    xyz_y_threshold: float = 1.0

    overstock_multiplier: float = 3.0
    slow_moving_periods: int = 3
    stale_days: int = 180

    min_history_periods: int = 3
    review_period_days: int = 30
    default_lead_time_days: int = 7

    service_level_a: float = 0.95
    service_level_b: float = 0.90
    service_level_c: float = 0.80

    max_workers: Optional[int] = None

    def __post_init__(self):
        # Accept plain strings ("week", "holt") for enum options
        for name, enum_class in _ENUM_FIELDS.items():
            value = getattr(self, name)
            if isinstance(value, str) and not isinstance(value, enum_class):
                try:
                    object.__setattr__(self, name, enum_class(value.lower()))
                except ValueError as e:
                    raise ConfigurationError(f"Invalid {name}: {value!r}") from e
        self._validate()

    # ═══════════════════════════════════════════════════════════════════════
    # VALIDATION
    # ═══════════════════════════════════════════════════════════════════════

    def _validate(self) -> None:
        if not isinstance(self.period_granularity, PeriodGranularity):
            raise ConfigurationError(f"Unknown period granularity: {self.period_granularity!r}")
        if self.forecast_model not in (ForecastModelType.HOLT, ForecastModelType.SIMPLE):
            raise ConfigurationError(f"Unsupported forecast model: {self.forecast_model!r}")

        if self.window_periods <= 0:
            raise ConfigurationError(f"window_periods must be positive, got {self.window_periods}")
        if self.forecast_horizon_periods <= 0:
            raise ConfigurationError(
                f"forecast_horizon_periods must be positive, got {self.forecast_horizon_periods}"
            )

        for name in ("alpha", "beta"):
            value = getattr(self, name)
            if value == AUTO:
                continue
            if isinstance(value, str) or not _in_open_unit_interval(value):
                raise ConfigurationError(f"{name} must be in (0, 1) or '{AUTO}', got {value!r}")

        for name in (
            "confidence_level",
            "abc_a_threshold",
            "abc_b_threshold",
            "service_level_a",
            "service_level_b",
            "service_level_c",
        ):
            value = getattr(self, name)
            if not _in_open_unit_interval(value):
                raise ConfigurationError(f"{name} must be in (0, 1), got {value!r}")

        if self.abc_a_threshold >= self.abc_b_threshold:
            raise ConfigurationError(
                f"abc_a_threshold ({self.abc_a_threshold}) must be below "
                f"abc_b_threshold ({self.abc_b_threshold})"
            )

        if not (0 < self.xyz_x_threshold < self.xyz_y_threshold):
            raise ConfigurationError(
                f"XYZ thresholds must satisfy 0 < x < y, got "
                f"{self.xyz_x_threshold}/{self.xyz_y_threshold}"
            )

        if not self.overstock_multiplier > 0:
            raise ConfigurationError(
                f"overstock_multiplier must be positive, got {self.overstock_multiplier}"
            )

        for name in ("slow_moving_periods", "stale_days", "min_history_periods"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {getattr(self, name)}")

        for name in ("review_period_days", "default_lead_time_days"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")

        if self.max_workers is not None and self.max_workers <= 0:
            raise ConfigurationError(f"max_workers must be positive, got {self.max_workers}")

    # ═══════════════════════════════════════════════════════════════════════
    # DERIVED VALUES
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def confidence_z(self) -> float:
        """z multiplier of the two-sided forecast band (0.90 -> 1.645)."""
        return float(stats.norm.ppf(0.5 + self.confidence_level / 2.0))

    def service_level_for(self, abc_class: ABCClass) -> float:
        return {
            ABCClass.A: self.service_level_a,
            ABCClass.B: self.service_level_b,
            ABCClass.C: self.service_level_c,
        }[abc_class]

    def service_level_z(self, abc_class: ABCClass) -> float:
        """One-sided z for the class service level (0.95 -> 1.645, 0.80 -> 0.84)."""
        return float(stats.norm.ppf(self.service_level_for(abc_class)))

    @property
    def resolved_workers(self) -> int:
        return self.max_workers or os.cpu_count() or 1

    # ═══════════════════════════════════════════════════════════════════════
    # LOADING
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> AnalyticsConfig:
        """
        Build a configuration from BOOKSTORE_ANALYTICS_* variables.

        Explicit keyword overrides win over the environment. Unparseable
        values raise ConfigurationError.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                values[f.name] = _parse_env_value(f.name, raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}"
                ) from e
            logger.info(f"Config {f.name} = {raw} (from environment)")

        values.update(overrides)
        return cls(**values)


_INT_FIELDS = {
    "window_periods",
    "forecast_horizon_periods",
    "slow_moving_periods",
    "stale_days",
    "min_history_periods",
    "review_period_days",
    "default_lead_time_days",
    "max_workers",
}

_ENUM_FIELDS = {
    "period_granularity": PeriodGranularity,
    "forecast_model": ForecastModelType,
}


def _parse_env_value(name: str, raw: str) -> Any:
    raw = raw.strip()
    if name in _ENUM_FIELDS:
        return _ENUM_FIELDS[name](raw.lower())
    if name in _INT_FIELDS:
        return int(raw)
    if name in ("alpha", "beta") and raw.lower() == AUTO:
        return AUTO
    return float(raw)


def _in_open_unit_interval(value: Any) -> bool:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and 0.0 < value < 1.0
