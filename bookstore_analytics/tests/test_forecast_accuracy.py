"""
Tests for forecast accuracy tracking.
"""
from datetime import datetime

import pytest

from bookstore_analytics.inventory_analytics.forecast_accuracy import (
    evaluate_forecasts,
    summarize_accuracy,
)
from bookstore_analytics.inventory_analytics.models import (
    DemandForecast,
    ForecastModelType,
    ModelConfidence,
)


def earlier_forecast(sku_id, period, point, lower, upper):
    return DemandForecast(
        sku_id=sku_id,
        forecast_period=period,
        horizon_periods=1,
        point_estimate=point,
        lower_bound=lower,
        upper_bound=upper,
        model_confidence=ModelConfidence.MEDIUM,
        std_dev=1.0,
        period_days=7.0,
        model=ForecastModelType.HOLT,
    )


class TestEvaluate:
    """Earlier forecasts are matched to the period they targeted."""

    def test_matches_target_period(self, build_series):
        series = build_series("S1", [10, 12, 9, 11])
        # build_series ends with the week of 2024-06-24
        fc = earlier_forecast("S1", datetime(2024, 6, 17), 8.0, 6.0, 10.0)

        result = evaluate_forecasts([fc], {"S1": series})

        accuracy = result["S1"]
        assert accuracy.actual == 9.0
        assert accuracy.absolute_error == pytest.approx(1.0)
        assert accuracy.percentage_error == pytest.approx(100 / 9)
        assert accuracy.within_band

    def test_zero_actual_has_no_percentage(self, build_series):
        series = build_series("S1", [3, 0])
        fc = earlier_forecast("S1", datetime(2024, 6, 24), 2.0, 0.5, 3.5)

        accuracy = evaluate_forecasts({"S1": fc}, {"S1": series})["S1"]
        assert accuracy.percentage_error is None
        assert not accuracy.within_band

    def test_skips_unknown_sku_and_period(self, build_series):
        series = build_series("S1", [1, 2, 3])
        outside = earlier_forecast("S1", datetime(2023, 1, 2), 2.0, 1.0, 3.0)
        unknown = earlier_forecast("S9", datetime(2024, 6, 24), 2.0, 1.0, 3.0)
        assert evaluate_forecasts([outside, unknown], {"S1": series}) == {}


class TestSummary:

    def test_empty(self):
        summary = summarize_accuracy({})
        assert summary["evaluated"] == 0
        assert summary["mae"] is None

    def test_metrics(self, build_series):
        all_series = {
            "S1": build_series("S1", [10, 4]),
            "S2": build_series("S2", [5, 0]),
        }
        forecasts = [
            earlier_forecast("S1", datetime(2024, 6, 24), 6.0, 3.0, 9.0),
            earlier_forecast("S2", datetime(2024, 6, 24), 3.0, 1.0, 5.0),
        ]
        summary = summarize_accuracy(evaluate_forecasts(forecasts, all_series))

        assert summary["evaluated"] == 2
        assert summary["mae"] == pytest.approx(2.5)
        assert summary["rmse"] == pytest.approx(((4 + 9) / 2) ** 0.5)
        assert summary["mape"] == pytest.approx(50.0)
        assert summary["band_hit_rate"] == pytest.approx(0.5)
