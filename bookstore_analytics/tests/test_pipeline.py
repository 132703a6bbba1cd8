"""
End-to-end tests for the analytics pipeline.
"""
import math
from datetime import datetime, timedelta

import pytest

from bookstore_analytics.errors import ConfigurationError, RunCancelledError
from bookstore_analytics.inventory_analytics import pipeline
from bookstore_analytics.inventory_analytics.classification import demand_statistics
from bookstore_analytics.inventory_analytics.config import AnalyticsConfig
from bookstore_analytics.inventory_analytics.models import (
    ABCClass,
    AlertKind,
    AlertSeverity,
    BookMetadata,
    DemandForecast,
    DiagnosticCode,
    ForecastModelType,
    InventoryTransaction,
    ModelConfidence,
    TransactionKind,
    XYZClass,
)
from bookstore_analytics.inventory_analytics.pipeline import (
    AnalyticsEngine,
    CancellationToken,
    run_analytics,
)
from bookstore_analytics.inventory_analytics.schemas import AnalyticsSnapshotModel
from bookstore_analytics.inventory_analytics.sources import (
    BookMetadataReader,
    CurrentStockReader,
    InMemoryInventorySource,
    TransactionHistoryReader,
)


AS_OF = datetime(2024, 6, 30, 18, 0)
LAST_WEEK_START = datetime(2024, 6, 24)

SCENARIO_A_SALES = [10, 12, 9, 11, 10, 13, 8, 10, 12, 11]
SCENARIO_B_SALES = [0, 0, 0, 5, 0, 0, 0, 0, 0, 40]


@pytest.fixture
def scenario_transactions(weekly_sales):
    """Steady S1, sparse S2 and a small S3, ten weeks each."""
    return (
        weekly_sales("S1", SCENARIO_A_SALES)
        + weekly_sales("S2", SCENARIO_B_SALES)
        + weekly_sales("S3", [1, 0, 2, 1, 0, 1, 1, 0, 2, 1])
    )


@pytest.fixture
def stock():
    return {"S1": 30, "S2": 2, "S3": 8}


def run(transactions, stock, catalogue, **kwargs):
    kwargs.setdefault("window_periods", 10)
    return run_analytics(
        AS_OF,
        transactions=transactions,
        current_stock=stock,
        book_metadata=catalogue,
        **kwargs,
    )


class TestSparseSku:
    """Sparse history: mean forecast, low confidence, critical alert."""

    def test_scenario_b(self, weekly_sales, catalogue):
        snapshot = run(
            weekly_sales("S2", SCENARIO_B_SALES),
            {"S2": 2},
            {"S2": catalogue["S2"]},
            lead_time_days_by_sku={"S2": 7},
        )

        forecast = snapshot.forecasts["S2"]
        assert forecast.model == ForecastModelType.MEAN
        assert forecast.model_confidence == ModelConfidence.LOW
        assert forecast.point_estimate == pytest.approx(4.5)

        classification = snapshot.classifications["S2"]
        assert classification.abc_class == ABCClass.A
        assert classification.xyz_class == XYZClass.Z

        policy = snapshot.policies["S2"]
        assert policy.safety_stock == pytest.approx(1.645 * 11.927, rel=1e-3)
        assert policy.reorder_point == pytest.approx(4.5 + policy.safety_stock)

        assert [(a.kind, a.severity) for a in snapshot.alerts] == [
            (AlertKind.LOW_STOCK, AlertSeverity.CRITICAL),
        ]
        codes = [d.code for d in snapshot.diagnostics_for("S2")]
        assert codes == [DiagnosticCode.INSUFFICIENT_HISTORY]
        assert snapshot.excluded_skus == []
        assert snapshot.summary["insufficient_history_skus"] == 1
        assert snapshot.summary["skus_to_reorder"] == ["S2"]


class TestExclusion:
    """Per-SKU failures exclude the SKU without aborting the run."""

    def test_zero_lead_time_excluded(self, scenario_transactions, stock, catalogue):
        snapshot = run(
            scenario_transactions, stock, catalogue,
            lead_time_days_by_sku={"S1": 0, "S2": 7, "S3": 14},
        )

        assert snapshot.excluded_skus == ["S1"]
        assert [d.code for d in snapshot.diagnostics_for("S1")] == [DiagnosticCode.INPUT_VALIDATION]
        assert "S1" not in snapshot.forecasts
        assert "S1" not in snapshot.classifications
        assert "S1" not in snapshot.policies
        assert snapshot.alerts_for("S1") == []

        assert set(snapshot.classifications) == {"S2", "S3"}
        assert sum(c.revenue_share for c in snapshot.classifications.values()) == pytest.approx(1.0)
        assert snapshot.policies["S3"].lead_time_days == 14

    def test_negative_sale_excludes_sku(self, scenario_transactions, stock, catalogue):
        bad = InventoryTransaction(
            sku_id="S3",
            timestamp=LAST_WEEK_START + timedelta(days=1),
            kind=TransactionKind.SALE,
            quantity=-4,
        )
        snapshot = run(scenario_transactions + [bad], stock, catalogue)

        assert snapshot.excluded_skus == ["S3"]
        assert snapshot.diagnostics_for("S3")[0].code == DiagnosticCode.INPUT_VALIDATION
        assert set(snapshot.classifications) == {"S1", "S2"}

    def test_negative_stock_excludes_sku(self, scenario_transactions, stock, catalogue):
        snapshot = run(scenario_transactions, dict(stock, S1=-1), catalogue)
        assert snapshot.excluded_skus == ["S1"]

    def test_invalid_pack_size_excludes_sku(self, scenario_transactions, stock, catalogue):
        catalogue = dict(catalogue, S3=BookMetadata(sku_id="S3", unit_price=35.0, pack_size=0))
        snapshot = run(scenario_transactions, stock, catalogue)
        assert snapshot.excluded_skus == ["S3"]

    def test_adjustments_accepted(self, scenario_transactions, stock, catalogue):
        shrinkage = InventoryTransaction(
            sku_id="S1",
            timestamp=LAST_WEEK_START + timedelta(days=3),
            kind=TransactionKind.ADJUSTMENT,
            quantity=-2,
        )
        snapshot = run(scenario_transactions + [shrinkage], stock, catalogue)
        assert snapshot.excluded_skus == []

    def test_out_of_range_quantity_excludes_sku(self, scenario_transactions, stock, catalogue):
        catalogue = dict(catalogue, BIG=BookMetadata(sku_id="BIG", unit_price=5.0))
        huge = InventoryTransaction(
            sku_id="BIG",
            timestamp=LAST_WEEK_START + timedelta(days=1),
            kind=TransactionKind.SALE,
            quantity=10**20,
        )
        snapshot = run(scenario_transactions + [huge], dict(stock, BIG=1), catalogue)

        assert snapshot.excluded_skus == ["BIG"]
        assert [d.code for d in snapshot.diagnostics_for("BIG")] == [DiagnosticCode.INPUT_VALIDATION]
        assert set(snapshot.classifications) == {"S1", "S2", "S3"}

    def test_numeric_failure_excludes_sku(self, scenario_transactions, stock, catalogue):
        # A finite price whose revenue overflows to inf
        overpriced = InventoryTransaction(
            sku_id="S3",
            timestamp=LAST_WEEK_START + timedelta(days=1),
            kind=TransactionKind.SALE,
            quantity=2,
            unit_price=1e308,
        )
        snapshot = run(scenario_transactions + [overpriced], stock, catalogue)

        assert snapshot.excluded_skus == ["S3"]
        diagnostic = snapshot.diagnostics_for("S3")[0]
        assert diagnostic.code == DiagnosticCode.COMPUTATION
        assert diagnostic.severity == "error"
        assert "S3" not in snapshot.forecasts
        assert set(snapshot.classifications) == {"S1", "S2"}
        assert sum(c.revenue_share for c in snapshot.classifications.values()) == pytest.approx(1.0)
        assert set(snapshot.policies) == {"S1", "S2"}


class TestDiagnostics:

    def test_missing_stock(self, scenario_transactions, stock, catalogue):
        del stock["S3"]
        snapshot = run(scenario_transactions, stock, catalogue)

        assert "S3" in snapshot.policies
        assert snapshot.alerts_for("S3") == []
        diagnostic = snapshot.diagnostics_for("S3")[0]
        assert diagnostic.code == DiagnosticCode.MISSING_STOCK
        assert diagnostic.severity == "warning"
        assert "S3" not in snapshot.excluded_skus

    def test_stock_for_unknown_sku(self, scenario_transactions, stock, catalogue):

        class LooseStock(CurrentStockReader):
            def read_stock(self, sku_ids):
                return dict(stock, X9=5)

        source = InMemoryInventorySource(scenario_transactions, stock, catalogue.values())
        engine = AnalyticsEngine(
            AnalyticsConfig(window_periods=10), source, LooseStock(), source,
        )
        snapshot = engine.run(AS_OF)

        assert [d.code for d in snapshot.diagnostics_for("X9")] == [DiagnosticCode.MISSING_METADATA]
        assert "X9" not in snapshot.classifications

    def test_transactions_for_unknown_sku(self, scenario_transactions, stock, catalogue, weekly_sales):
        history = scenario_transactions + weekly_sales("X7", [3, 4, 5])

        class LooseHistory(TransactionHistoryReader):
            def read_transactions(self, sku_ids, start, end):
                return history

        source = InMemoryInventorySource(scenario_transactions, stock, catalogue.values())
        engine = AnalyticsEngine(
            AnalyticsConfig(window_periods=10), LooseHistory(), source, source,
        )
        snapshot = engine.run(AS_OF)

        diagnostics = snapshot.diagnostics_for("X7")
        assert [d.code for d in diagnostics] == [DiagnosticCode.MISSING_METADATA]
        assert diagnostics[0].message.startswith("Transactions")
        assert "X7" not in snapshot.classifications
        assert "X7" not in snapshot.forecasts
        assert set(snapshot.classifications) == {"S1", "S2", "S3"}

    def test_stocked_sku_without_movement_is_stale(self, scenario_transactions, stock, catalogue):
        catalogue = dict(catalogue, DUSTY=BookMetadata(sku_id="DUSTY", unit_price=15.0))
        snapshot = run(scenario_transactions, dict(stock, DUSTY=50), catalogue)

        kinds = {alert.kind: alert for alert in snapshot.alerts_for("DUSTY")}
        assert AlertKind.STALE in kinds
        assert kinds[AlertKind.STALE].severity == AlertSeverity.INFO
        assert snapshot.classifications["DUSTY"].abc_class == ABCClass.C
        assert all(a.kind != AlertKind.STALE for a in snapshot.alerts_for("S1"))


class TestCancellation:

    def test_cancelled_before_start(self, scenario_transactions, stock, catalogue):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(RunCancelledError):
            run(scenario_transactions, stock, catalogue, cancel_token=token)

    def test_cancelled_by_reader(self, scenario_transactions, stock, catalogue):
        token = CancellationToken()

        class CancellingStock(CurrentStockReader):
            def read_stock(self, sku_ids):
                token.cancel()
                return dict(stock)

        source = InMemoryInventorySource(scenario_transactions, stock, catalogue.values())
        engine = AnalyticsEngine(AnalyticsConfig(window_periods=10), source, CancellingStock(), source)
        with pytest.raises(RunCancelledError):
            engine.run(AS_OF, cancel_token=token)

    def test_cancelled_during_sku_analysis(self, scenario_transactions, stock, catalogue, monkeypatch):
        token = CancellationToken()
        analysed = []

        def cancelling_statistics(series):
            analysed.append(series.sku_id)
            token.cancel()
            return demand_statistics(series)

        monkeypatch.setattr(pipeline, "demand_statistics", cancelling_statistics)
        with pytest.raises(RunCancelledError):
            run(
                scenario_transactions, stock, catalogue,
                config=AnalyticsConfig(max_workers=1), cancel_token=token,
            )
        assert analysed
        assert len(analysed) < 3

    def test_token_untouched_completes(self, scenario_transactions, stock, catalogue):
        token = CancellationToken()
        snapshot = run(scenario_transactions, stock, catalogue, cancel_token=token)
        assert not token.cancelled
        assert len(snapshot.classifications) == 3


class TestConfiguration:

    @pytest.mark.parametrize("window", [0, -4])
    def test_invalid_window(self, scenario_transactions, stock, catalogue, window):
        with pytest.raises(ConfigurationError):
            run(scenario_transactions, stock, catalogue, window_periods=window)

    def test_window_override(self, scenario_transactions, stock, catalogue):
        snapshot = run(scenario_transactions, stock, catalogue, window_periods=4)
        # Last four weeks of S1: 8, 10, 12, 11
        assert snapshot.forecasts["S1"].forecast_period == LAST_WEEK_START + timedelta(weeks=1)
        assert snapshot.classifications["S1"].total_revenue == pytest.approx(41 * 20.0)

    def test_same_result_any_worker_count(self, scenario_transactions, stock, catalogue):
        one = run(scenario_transactions, stock, catalogue, config=AnalyticsConfig(max_workers=1))
        four = run(scenario_transactions, stock, catalogue, config=AnalyticsConfig(max_workers=4))
        assert one.forecasts == four.forecasts
        assert one.classifications == four.classifications
        assert one.policies == four.policies
        assert one.alerts == four.alerts


class TestSnapshot:

    def test_deterministic(self, scenario_transactions, stock, catalogue):
        first = run(scenario_transactions, stock, catalogue)
        second = run(scenario_transactions, stock, catalogue)
        assert first.run_id != second.run_id
        a, b = first.to_dict(), second.to_dict()
        a.pop("run_id")
        b.pop("run_id")
        assert a == b

    def test_invariants(self, scenario_transactions, stock, catalogue):
        snapshot = run(scenario_transactions, stock, catalogue)
        for forecast in snapshot.forecasts.values():
            assert 0 <= forecast.lower_bound <= forecast.point_estimate <= forecast.upper_bound
        for policy in snapshot.policies.values():
            assert policy.reorder_point >= policy.safety_stock >= 0
        assert sum(c.revenue_share for c in snapshot.classifications.values()) == pytest.approx(1.0)
        assert set(snapshot.forecasts) == set(snapshot.classifications) == set(snapshot.policies)

    def test_summary(self, scenario_transactions, stock, catalogue):
        summary = run(scenario_transactions, stock, catalogue).summary
        assert summary["catalogue_skus"] == 3
        assert summary["analysed_skus"] == 3
        assert summary["excluded_skus"] == 0
        assert sum(summary["abc_xyz_matrix"].values()) == 3
        assert summary["forecast_accuracy"]["evaluated"] == 0

    def test_schema_dump(self, scenario_transactions, stock, catalogue):
        snapshot = run(scenario_transactions, stock, catalogue)
        payload = AnalyticsSnapshotModel.from_snapshot(snapshot).model_dump(mode="json")

        assert payload["run_id"] == snapshot.run_id
        assert [f["sku_id"] for f in payload["forecasts"]] == ["S1", "S2", "S3"]
        assert payload["as_of"].startswith("2024-06-30")
        assert all(isinstance(c["revenue_share"], float) for c in payload["classifications"])

    def test_empty_catalogue(self):
        snapshot = run_analytics(AS_OF)
        assert snapshot.forecasts == {}
        assert snapshot.alerts == []
        assert snapshot.summary["analysed_skus"] == 0


class TestForecastAccuracy:

    def test_previous_forecast_scored(self, scenario_transactions, stock, catalogue):
        earlier = DemandForecast(
            sku_id="S1",
            forecast_period=LAST_WEEK_START,
            horizon_periods=1,
            point_estimate=10.0,
            lower_bound=6.0,
            upper_bound=14.0,
            model_confidence=ModelConfidence.HIGH,
            std_dev=2.4,
            period_days=7.0,
            model=ForecastModelType.HOLT,
        )
        snapshot = run(scenario_transactions, stock, catalogue, previous_forecasts=[earlier])

        accuracy = snapshot.accuracy["S1"]
        assert accuracy.actual == SCENARIO_A_SALES[-1]
        assert accuracy.absolute_error == pytest.approx(1.0)
        assert accuracy.within_band
        assert snapshot.summary["forecast_accuracy"]["evaluated"] == 1
        assert snapshot.summary["forecast_accuracy"]["band_hit_rate"] == 1.0

        exported = snapshot.to_dict()["accuracy"]["S1"]
        assert exported["actual"] == SCENARIO_A_SALES[-1]
        assert exported["forecast_period"] == LAST_WEEK_START.isoformat()
        assert exported["within_band"] is True

        payload = AnalyticsSnapshotModel.from_snapshot(snapshot).model_dump(mode="json")
        assert [a["sku_id"] for a in payload["accuracy"]] == ["S1"]
        assert payload["accuracy"][0]["absolute_error"] == pytest.approx(1.0)
        forecast = next(f for f in payload["forecasts"] if f["sku_id"] == "S1")
        assert forecast["std_dev"] == pytest.approx(snapshot.forecasts["S1"].std_dev)
        assert "mae" in forecast


class TestCustomReaders:
    """The engine works against any reader implementation."""

    def test_separate_readers(self, weekly_sales):
        transactions = weekly_sales("S1", SCENARIO_A_SALES, unit_price=12.5)
        calls = {}

        class History(TransactionHistoryReader):
            def read_transactions(self, sku_ids, start, end):
                calls["range"] = (start, end)
                return transactions

        class Stock(CurrentStockReader):
            def read_stock(self, sku_ids):
                return {"S1": 100}

        class Catalogue(BookMetadataReader):
            def read_metadata(self):
                return {"S1": BookMetadata(sku_id="S1", title="Refactoring", unit_price=12.5)}

        engine = AnalyticsEngine(AnalyticsConfig(window_periods=10), History(), Stock(), Catalogue())
        snapshot = engine.run(AS_OF)

        start, end = calls["range"]
        assert end == AS_OF
        assert start <= LAST_WEEK_START - timedelta(weeks=9)
        assert snapshot.classifications["S1"].total_revenue == pytest.approx(sum(SCENARIO_A_SALES) * 12.5)
        assert not math.isnan(snapshot.forecasts["S1"].point_estimate)
