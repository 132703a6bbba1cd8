"""
═══════════════════════════════════════════════════════════════════════════════
                    ABC/XYZ CLASSIFIER
═══════════════════════════════════════════════════════════════════════════════

Population-wide classification of SKUs by value and variability.

ABC (revenue contribution over the window):
    revenue(sku) = Σ quantity_sold · unit_revenue
    Sort by revenue descending, sku_id ascending (stable, reproducible).
    A SKU belongs to the class whose band contains the cumulative share
    reached *before* it, so the SKU that crosses a threshold stays in the
    higher class:
        prior share <  0.80  → A
        prior share <  0.95  → B
        otherwise            → C

XYZ (coefficient of variation of quantity sold per period):
    CV = σ / μ  (population std)
        CV ≤ 0.5       → X (stable)
        0.5 < CV ≤ 1.0 → Y (variable)
        CV > 1.0       → Z (erratic)
    μ = 0 → Z, CV reported as +inf

Invariant: revenue shares of one run sum to 1.0 (±1e-6). A population
without revenue is split evenly and classified C.

Classification is all-or-nothing: it needs every per-SKU total before any
class can be assigned.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from bookstore_analytics.errors import ComputationError
from bookstore_analytics.inventory_analytics.config import AnalyticsConfig
from bookstore_analytics.inventory_analytics.models import (
    ABCClass,
    Classification,
    UsageSeries,
    XYZClass,
)

logger = logging.getLogger(__name__)

SHARE_EPSILON = 1e-6


# ═══════════════════════════════════════════════════════════════════════════════
# PER-SKU STATISTICS
# ═══════════════════════════════════════════════════════════════════════════════

def demand_statistics(series: UsageSeries) -> Tuple[float, float, float]:
    """
    Revenue, mean demand and CV of one series.

    Raises:
        ComputationError: overflow or non-finite statistics
    """
    y = series.sold()
    try:
        with np.errstate(over="raise", invalid="raise"):
            revenue = series.total_revenue
            mean = float(np.mean(y)) if len(y) else 0.0
            std = float(np.std(y)) if len(y) else 0.0
    except FloatingPointError as e:
        logger.error(f"Variance overflow for SKU {series.sku_id}: {e}")
        raise ComputationError(f"Numeric failure in demand statistics: {e}", series.sku_id) from e

    if not (math.isfinite(revenue) and math.isfinite(mean) and math.isfinite(std)):
        raise ComputationError("Non-finite demand statistics", series.sku_id)
    if revenue < 0:
        raise ComputationError(f"Negative revenue {revenue}", series.sku_id)

    cv = std / mean if mean > 0 else math.inf
    return revenue, mean, cv


def assign_xyz(cv: float, mean: float, config: AnalyticsConfig) -> XYZClass:
    if mean <= 0 or not math.isfinite(cv):
        return XYZClass.Z
    if cv <= config.xyz_x_threshold:
        return XYZClass.X
    if cv <= config.xyz_y_threshold:
        return XYZClass.Y
    return XYZClass.Z


def assign_abc(prior_revenue: float, total_revenue: float, config: AnalyticsConfig) -> ABCClass:
    """Class from the revenue ranked before a SKU (compared in revenue units)."""
    if prior_revenue < config.abc_a_threshold * total_revenue:
        return ABCClass.A
    if prior_revenue < config.abc_b_threshold * total_revenue:
        return ABCClass.B
    return ABCClass.C


# ═══════════════════════════════════════════════════════════════════════════════
# CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

def classification_frame(
    statistics: Mapping[str, Tuple[float, float, float]],
    config: Optional[AnalyticsConfig] = None,
) -> pd.DataFrame:
    """
    Rank a population from precomputed (revenue, mean, cv) per SKU.

    Returns:
        DataFrame indexed by rank with sku_id, revenue, revenue_share,
        prior_share, cumulative_share, cv, abc_class, xyz_class
    """
    config = config or AnalyticsConfig()
    columns = ["sku_id", "revenue", "mean_demand", "cv"]
    df = pd.DataFrame(
        [(sku, rev, mean, cv) for sku, (rev, mean, cv) in statistics.items()],
        columns=columns,
    )
    if df.empty:
        return df.assign(revenue_share=[], prior_share=[], cumulative_share=[], abc_class=[], xyz_class=[])

    df = df.sort_values("sku_id", kind="mergesort")
    df = df.sort_values("revenue", ascending=False, kind="mergesort").reset_index(drop=True)

    total = math.fsum(df["revenue"])
    if total > 0:
        # Classes come from revenue ranked before each SKU, not from summed shares
        prior_revenue = df["revenue"].cumsum().shift(fill_value=0.0)
        df["revenue_share"] = df["revenue"] / total
        df["prior_share"] = prior_revenue / total
        df["cumulative_share"] = (prior_revenue + df["revenue"]) / total
        df["abc_class"] = prior_revenue.apply(lambda prior: assign_abc(prior, total, config))
    else:
        logger.warning(f"No revenue across {len(df)} SKU(s); splitting shares evenly, all class C")
        df["revenue_share"] = 1.0 / len(df)
        df["cumulative_share"] = df["revenue_share"].cumsum()
        df["prior_share"] = df["cumulative_share"] - df["revenue_share"]
        df["abc_class"] = ABCClass.C

    df["xyz_class"] = df.apply(lambda row: assign_xyz(row["cv"], row["mean_demand"], config), axis=1)
    return df


def classify(
    all_series: Mapping[str, UsageSeries],
    config: Optional[AnalyticsConfig] = None,
) -> Dict[str, Classification]:
    """
    Classify the full SKU population.

    Raises:
        ComputationError: if any SKU's statistics cannot be computed; the
            pipeline computes statistics per SKU first so it can exclude
            such SKUs before calling classify_statistics.
    """
    statistics = {sku: demand_statistics(series) for sku, series in all_series.items()}
    return classify_statistics(statistics, config)


def classify_statistics(
    statistics: Mapping[str, Tuple[float, float, float]],
    config: Optional[AnalyticsConfig] = None,
) -> Dict[str, Classification]:
    """Classify from precomputed (revenue, mean, cv) per SKU."""
    df = classification_frame(statistics, config)

    result: Dict[str, Classification] = {}
    for row in df.itertuples(index=False):
        result[row.sku_id] = Classification(
            sku_id=row.sku_id,
            abc_class=ABCClass(row.abc_class),
            xyz_class=XYZClass(row.xyz_class),
            revenue_share=float(row.revenue_share),
            coefficient_of_variation=float(row.cv),
            total_revenue=float(row.revenue),
        )

    if result:
        share_sum = math.fsum(c.revenue_share for c in result.values())
        if abs(share_sum - 1.0) > SHARE_EPSILON:
            raise ComputationError(f"Revenue shares sum to {share_sum}, expected 1.0")

    logger.debug(f"Classified {len(result)} SKU(s): {abc_xyz_matrix(result)}")
    return result


def abc_xyz_matrix(classifications: Mapping[str, Classification]) -> Dict[str, int]:
    """
    Counts per combined class.

    Returns dict with keys AX, AY, AZ, BX, BY, BZ, CX, CY, CZ
    """
    matrix = {f"{abc.value}{xyz.value}": 0 for abc in ABCClass for xyz in XYZClass}
    for c in classifications.values():
        matrix[c.combined_class] += 1
    return matrix
