"""
Shared fixtures for the inventory analytics tests.
"""
from datetime import datetime, timedelta

import pytest

from bookstore_analytics.inventory_analytics.models import (
    BookMetadata,
    InventoryTransaction,
    PeriodGranularity,
    TransactionKind,
    UsageRecord,
    UsageSeries,
)

# Sunday: the week containing it runs Mon 2024-06-24 .. Sun 2024-06-30
AS_OF = datetime(2024, 6, 30, 18, 0)
LAST_WEEK_START = datetime(2024, 6, 24)

SCENARIO_A_SALES = [10, 12, 9, 11, 10, 13, 8, 10, 12, 11]
SCENARIO_B_SALES = [0, 0, 0, 5, 0, 0, 0, 0, 0, 40]


@pytest.fixture
def as_of():
    """Analysis time used by every scenario."""
    return AS_OF


@pytest.fixture
def build_series():
    """Factory: weekly UsageSeries from a list of quantities sold."""
    def _build(sku_id, quantities, unit_revenue=20.0, insufficient_history=None):
        n = len(quantities)
        records = tuple(
            UsageRecord(
                sku_id=sku_id,
                period_start=LAST_WEEK_START - timedelta(weeks=n - 1 - i),
                period_end=LAST_WEEK_START - timedelta(weeks=n - 2 - i),
                quantity_sold=q,
                unit_revenue=unit_revenue,
            )
            for i, q in enumerate(quantities)
        )
        if insufficient_history is None:
            insufficient_history = sum(1 for q in quantities if q > 0) < 3
        return UsageSeries(
            sku_id=sku_id,
            granularity=PeriodGranularity.WEEK,
            records=records,
            insufficient_history=insufficient_history,
        )
    return _build


@pytest.fixture
def weekly_sales():
    """Factory: one SALE per week (Wednesday) for the weeks ending at AS_OF."""
    def _sales(sku_id, quantities, unit_price=None):
        n = len(quantities)
        return [
            InventoryTransaction(
                sku_id=sku_id,
                timestamp=LAST_WEEK_START - timedelta(weeks=n - 1 - i) + timedelta(days=2, hours=10),
                kind=TransactionKind.SALE,
                quantity=q,
                unit_price=unit_price,
            )
            for i, q in enumerate(quantities)
            if q != 0
        ]
    return _sales


@pytest.fixture
def catalogue():
    """Book metadata for the scenario SKUs."""
    return {
        "S1": BookMetadata(sku_id="S1", title="Clean Architecture", unit_price=20.0),
        "S2": BookMetadata(sku_id="S2", title="Rust in Action", unit_price=20.0),
        "S3": BookMetadata(sku_id="S3", title="Effective Python", unit_price=35.0, pack_size=10),
    }
