"""
═══════════════════════════════════════════════════════════════════════════════
                    TRANSACTION AGGREGATOR
═══════════════════════════════════════════════════════════════════════════════

Rolls raw inventory transactions into per-SKU, per-period usage series.

    transactions ──sort by (sku, timestamp)──> bucket by period
                 ──sum sold / received / adjusted / revenue──> gap-fill
                 ──> {sku_id: UsageSeries}

Every returned series covers the same trailing window of `window_periods`
periods ending with the period that contains `as_of`. Periods without
transactions become zero-quantity records so that downstream models always
see fixed-length, gap-free input.

Pure functions only: no I/O, no shared state.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from bookstore_analytics.errors import InputValidationError
from bookstore_analytics.inventory_analytics.models import (
    InventoryTransaction,
    PeriodGranularity,
    TransactionKind,
    UsageRecord,
    UsageSeries,
)

logger = logging.getLogger(__name__)

_COLUMNS = ["sku_id", "timestamp", "kind", "quantity", "unit_price"]

# Quantities are summed as int64 per SKU and period
MAX_QUANTITY = int(np.iinfo(np.int64).max)


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

def validate_transaction(tx: InventoryTransaction) -> None:
    """Raise InputValidationError if a transaction cannot be aggregated."""
    if not tx.sku_id:
        raise InputValidationError("Transaction without sku_id")
    if not isinstance(tx.kind, TransactionKind):
        raise InputValidationError(f"Unknown transaction kind {tx.kind!r}", tx.sku_id)
    if isinstance(tx.quantity, bool) or not isinstance(tx.quantity, (int, np.integer)):
        raise InputValidationError(f"Quantity must be a whole number, got {tx.quantity!r}", tx.sku_id)
    if abs(int(tx.quantity)) > MAX_QUANTITY:
        raise InputValidationError(f"Quantity {tx.quantity} out of range at {tx.timestamp}", tx.sku_id)
    if tx.kind in (TransactionKind.SALE, TransactionKind.RECEIPT) and tx.quantity < 0:
        raise InputValidationError(
            f"Negative {tx.kind.value.lower()} quantity {tx.quantity} at {tx.timestamp}",
            tx.sku_id,
        )
    if tx.unit_price is not None and not (math.isfinite(tx.unit_price) and tx.unit_price >= 0):
        raise InputValidationError(f"Invalid unit price {tx.unit_price}", tx.sku_id)


def partition_transactions(
    transactions: Iterable[InventoryTransaction],
) -> Tuple[List[InventoryTransaction], Dict[str, InputValidationError]]:
    """
    Split transactions into aggregatable ones and per-SKU rejections.

    A SKU with at least one invalid transaction is rejected as a whole; its
    other transactions are dropped too, so a partially valid history never
    produces a misleading series.

    Returns:
        (valid transactions, {sku_id: first validation error})
    """
    transactions = list(transactions)
    rejected: Dict[str, InputValidationError] = {}
    volume: Dict[str, int] = {}

    for tx in transactions:
        if tx.sku_id in rejected:
            continue
        try:
            validate_transaction(tx)
            volume[tx.sku_id] = volume.get(tx.sku_id, 0) + abs(int(tx.quantity))
            if volume[tx.sku_id] > MAX_QUANTITY:
                raise InputValidationError("Total quantity moved exceeds the supported range", tx.sku_id)
        except InputValidationError as e:
            if e.sku_id is None:
                logger.warning(f"Dropping transaction without SKU: {e}")
                continue
            rejected[e.sku_id] = e

    valid = [tx for tx in transactions if tx.sku_id and tx.sku_id not in rejected]
    if rejected:
        logger.warning(f"Rejected transactions of {len(rejected)} SKU(s): {sorted(rejected)}")
    return valid, rejected


# ═══════════════════════════════════════════════════════════════════════════════
# PERIODS
# ═══════════════════════════════════════════════════════════════════════════════

def to_naive_utc(value) -> pd.Timestamp:
    """Normalise datetimes to naive UTC timestamps."""
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def window_index(
    as_of: datetime,
    granularity: PeriodGranularity,
    window_periods: int,
) -> pd.PeriodIndex:
    """The `window_periods` periods ending with the one containing as_of."""
    end = to_naive_utc(as_of).to_period(granularity.freq)
    return pd.period_range(end=end, periods=window_periods, freq=granularity.freq)


def _transactions_frame(transactions: Sequence[InventoryTransaction]) -> pd.DataFrame:
    if not transactions:
        return pd.DataFrame(columns=_COLUMNS)
    df = pd.DataFrame(
        [
            (tx.sku_id, to_naive_utc(tx.timestamp), tx.kind.value, tx.quantity, tx.unit_price)
            for tx in transactions
        ],
        columns=_COLUMNS,
    )
    # Unordered input: stable sort keeps arrival order for equal timestamps
    return df.sort_values(["sku_id", "timestamp"], kind="mergesort").reset_index(drop=True)


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════════

def aggregate(
    transactions: Iterable[InventoryTransaction],
    period_granularity: PeriodGranularity,
    as_of: datetime,
    window_periods: int = 52,
    min_history_periods: int = 3,
    unit_prices: Optional[Mapping[str, float]] = None,
    sku_ids: Optional[Iterable[str]] = None,
) -> Dict[str, UsageSeries]:
    """
    Aggregate transactions into per-SKU usage series.

    Args:
        transactions: Raw transactions, in any order
        period_granularity: week or month buckets
        as_of: End of the analysis window (later transactions are ignored)
        window_periods: Number of trailing periods in every series
        min_history_periods: Non-zero sale periods needed to leave the
            insufficient-history state
        unit_prices: Catalogue price per SKU, used for sales without an
            explicit price and for periods without sales
        sku_ids: SKUs that must appear even without transactions

    Returns:
        {sku_id: UsageSeries}, all series of identical length

    Raises:
        InputValidationError: if any transaction is invalid (use
            partition_transactions first for per-SKU exclusion)
    """
    transactions = list(transactions)
    for tx in transactions:
        validate_transaction(tx)

    unit_prices = dict(unit_prices or {})
    periods = window_index(as_of, period_granularity, window_periods)
    as_of_ts = to_naive_utc(as_of)

    df = _transactions_frame(transactions)
    all_skus = set(df["sku_id"]) | set(sku_ids or ())

    if not df.empty:
        df = df[df["timestamp"] <= as_of_ts].copy()
        df["period"] = df["timestamp"].dt.to_period(period_granularity.freq)
        df = df[(df["period"] >= periods[0]) & (df["period"] <= periods[-1])]

    if df.empty:
        grouped = pd.DataFrame(columns=["sold", "received", "adjusted", "revenue"])
    else:
        catalogue = df["sku_id"].map(unit_prices).astype(float).fillna(0.0)
        price = df["unit_price"].astype(float).fillna(catalogue)
        quantity = df["quantity"].astype("int64")

        df["sold"] = quantity.where(df["kind"] == TransactionKind.SALE.value, 0)
        df["received"] = quantity.where(df["kind"] == TransactionKind.RECEIPT.value, 0)
        df["adjusted"] = quantity.where(df["kind"] == TransactionKind.ADJUSTMENT.value, 0)
        df["revenue"] = df["sold"] * price

        grouped = df.groupby(["sku_id", "period"])[["sold", "received", "adjusted", "revenue"]].sum()

    result: Dict[str, UsageSeries] = {}
    for sku_id in sorted(all_skus):
        if sku_id in grouped.index.get_level_values(0):
            sku_usage = grouped.xs(sku_id, level=0).reindex(periods, fill_value=0)
        else:
            sku_usage = pd.DataFrame(0, index=periods, columns=["sold", "received", "adjusted", "revenue"])
        result[sku_id] = _build_series(
            sku_id,
            sku_usage,
            period_granularity,
            float(unit_prices.get(sku_id, 0.0)),
            min_history_periods,
        )

    flagged = sum(1 for s in result.values() if s.insufficient_history)
    logger.debug(
        f"Aggregated {len(transactions)} transactions into {len(result)} series "
        f"of {window_periods} {period_granularity.value}s ({flagged} with insufficient history)"
    )
    return result


def _build_series(
    sku_id: str,
    usage: pd.DataFrame,
    granularity: PeriodGranularity,
    catalogue_price: float,
    min_history_periods: int,
) -> UsageSeries:
    records = []
    for period, row in usage.iterrows():
        sold = int(row["sold"])
        revenue = float(row["revenue"])
        records.append(UsageRecord(
            sku_id=sku_id,
            period_start=period.start_time.to_pydatetime(),
            period_end=(period + 1).start_time.to_pydatetime(),
            quantity_sold=sold,
            quantity_received=int(row["received"]),
            quantity_adjusted=int(row["adjusted"]),
            unit_revenue=revenue / sold if sold > 0 else catalogue_price,
        ))

    nonzero = sum(1 for r in records if r.quantity_sold > 0)
    return UsageSeries(
        sku_id=sku_id,
        granularity=granularity,
        records=tuple(records),
        insufficient_history=nonzero < min_history_periods,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# MOVEMENT DATES (alert inputs)
# ═══════════════════════════════════════════════════════════════════════════════

def last_movement_dates(
    transactions: Iterable[InventoryTransaction],
    as_of: Optional[datetime] = None,
) -> Dict[str, datetime]:
    """Latest transaction of any kind per SKU (on or before as_of)."""
    return _latest_by_sku(transactions, as_of, lambda tx: tx.quantity != 0)


def last_sale_dates(
    transactions: Iterable[InventoryTransaction],
    as_of: Optional[datetime] = None,
) -> Dict[str, datetime]:
    """Latest sale per SKU (on or before as_of)."""
    return _latest_by_sku(
        transactions,
        as_of,
        lambda tx: tx.kind == TransactionKind.SALE and tx.quantity > 0,
    )


def _latest_by_sku(transactions, as_of, predicate) -> Dict[str, datetime]:
    limit = to_naive_utc(as_of) if as_of is not None else None
    latest: Dict[str, pd.Timestamp] = {}
    for tx in transactions:
        if not predicate(tx):
            continue
        ts = to_naive_utc(tx.timestamp)
        if limit is not None and ts > limit:
            continue
        if tx.sku_id not in latest or ts > latest[tx.sku_id]:
            latest[tx.sku_id] = ts
    return {sku: ts.to_pydatetime() for sku, ts in latest.items()}
