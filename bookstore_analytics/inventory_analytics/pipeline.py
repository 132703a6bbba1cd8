"""
═══════════════════════════════════════════════════════════════════════════════
                    ANALYTICS PIPELINE
═══════════════════════════════════════════════════════════════════════════════

Single entry point of the engine: one call, one immutable snapshot.

    read inputs ─> partition + aggregate
                        │
            ┌───────────┼───────────┐      per-SKU fan-out
            ▼           ▼           ▼      (validation, statistics, forecast)
          SKU 1       SKU 2  ...  SKU n    bounded worker pool
            └───────────┼───────────┘
                        ▼                  barrier
               ABC/XYZ classification      (needs the whole population)
                        ▼
                 reorder policies
                        ▼
                      alerts ─> summary ─> AnalyticsSnapshot

Failure semantics:
    - invalid input for one SKU      -> SKU excluded, INPUT_VALIDATION diagnostic
    - numeric failure for one SKU    -> SKU excluded, COMPUTATION diagnostic
    - sparse history                 -> degenerate forecast, warning diagnostic
    - cancellation                   -> RunCancelledError, no partial snapshot

No state survives between runs; every stage gets its inputs explicitly.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from bookstore_analytics.errors import (
    AnalyticsError,
    ComputationError,
    ConfigurationError,
    InputValidationError,
    RunCancelledError,
)
from bookstore_analytics.inventory_analytics.aggregation import (
    aggregate,
    last_movement_dates,
    last_sale_dates,
    partition_transactions,
    to_naive_utc,
    window_index,
)
from bookstore_analytics.inventory_analytics.alerts import AlertGenerator
from bookstore_analytics.inventory_analytics.classification import (
    abc_xyz_matrix,
    classify_statistics,
    demand_statistics,
)
from bookstore_analytics.inventory_analytics.config import AnalyticsConfig
from bookstore_analytics.inventory_analytics.forecast_accuracy import (
    evaluate_forecasts,
    summarize_accuracy,
)
from bookstore_analytics.inventory_analytics.forecasting import DemandForecaster
from bookstore_analytics.inventory_analytics.models import (
    AlertKind,
    AnalyticsSnapshot,
    BookMetadata,
    Classification,
    DemandForecast,
    Diagnostic,
    DiagnosticCode,
    InventoryTransaction,
    ReorderPolicy,
    UsageSeries,
)
from bookstore_analytics.inventory_analytics.reorder_policy import (
    ReorderPolicyCalculator,
    days_of_supply,
    validate_lead_time,
)
from bookstore_analytics.inventory_analytics.sources import (
    BookMetadataReader,
    CurrentStockReader,
    InMemoryInventorySource,
    TransactionHistoryReader,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# CANCELLATION
# ═══════════════════════════════════════════════════════════════════════════════

class CancellationToken:
    """Run-level cancellation flag, checked between SKUs and between stages."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError("Analytics run cancelled")


# ═══════════════════════════════════════════════════════════════════════════════
# PER-SKU STAGE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SkuAnalysis:
    """Output of the per-SKU stage; `excluded` SKUs never reach the barrier."""
    sku_id: str
    statistics: Optional[Tuple[float, float, float]] = None
    forecast: Optional[DemandForecast] = None
    lead_time_days: Optional[int] = None
    pack_size: Optional[int] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def excluded(self) -> bool:
        return any(d.severity == "error" for d in self.diagnostics)


def _error_diagnostic(error: AnalyticsError, sku_id: str) -> Diagnostic:
    code = (
        DiagnosticCode.INPUT_VALIDATION
        if isinstance(error, InputValidationError)
        else DiagnosticCode.COMPUTATION
    )
    return Diagnostic(code=code, message=str(error), sku_id=sku_id, severity="error")


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

class AnalyticsEngine:
    """
    Batch analytics over externally supplied readers.

    The configuration is validated here, so a bad option fails before any
    run. The engine itself holds no run data; `run` can be called
    repeatedly (and concurrently) with different inputs.
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        transaction_reader: Optional[TransactionHistoryReader] = None,
        stock_reader: Optional[CurrentStockReader] = None,
        metadata_reader: Optional[BookMetadataReader] = None,
    ):
        if config is not None and not isinstance(config, AnalyticsConfig):
            raise ConfigurationError(f"Expected AnalyticsConfig, got {type(config).__name__}")
        self.config = config or AnalyticsConfig()

        empty = InMemoryInventorySource()
        self.transaction_reader = transaction_reader or empty
        self.stock_reader = stock_reader or empty
        self.metadata_reader = metadata_reader or empty

    # ═══════════════════════════════════════════════════════════════════════
    # RUN
    # ═══════════════════════════════════════════════════════════════════════

    def run(
        self,
        as_of: datetime,
        window_periods: Optional[int] = None,
        lead_time_days_by_sku: Optional[Mapping[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
        previous_forecasts: Optional[Union[Mapping[str, DemandForecast], Iterable[DemandForecast]]] = None,
    ) -> AnalyticsSnapshot:
        """
        Run the full pipeline for one point in time.

        Args:
            as_of: End of the analysis window and alert timestamp
            window_periods: Overrides the configured window length
            lead_time_days_by_sku: Lead time per SKU (default from config)
            cancel_token: Cooperative cancellation
            previous_forecasts: Earlier forecasts to score against actuals

        Returns:
            AnalyticsSnapshot with forecasts, classifications, policies,
            alerts and per-SKU diagnostics

        Raises:
            ConfigurationError: invalid window_periods
            RunCancelledError: token cancelled before the run completed
        """
        config = self.config
        if window_periods is not None and window_periods != config.window_periods:
            config = dataclasses.replace(config, window_periods=window_periods)
        cancel_token = cancel_token or CancellationToken()
        lead_times = dict(lead_time_days_by_sku or {})
        run_id = uuid.uuid4().hex[:12]

        logger.info(
            f"Analytics run {run_id} as of {as_of.isoformat()} "
            f"({config.window_periods} {config.period_granularity.value}s)"
        )

        # ── Inputs ───────────────────────────────────────────────────────────
        metadata = self.metadata_reader.read_metadata()
        sku_ids = sorted(metadata)
        window_start = window_index(as_of, config.period_granularity, config.window_periods)[0].start_time
        read_start = min(window_start, to_naive_utc(as_of) - timedelta(days=config.stale_days + 1))
        transactions = self.transaction_reader.read_transactions(sku_ids, read_start.to_pydatetime(), as_of)
        stock = self.stock_reader.read_stock(sku_ids)
        cancel_token.raise_if_cancelled()

        diagnostics: List[Diagnostic] = []
        orphan_stock = set(stock) - set(metadata)
        orphan_history = {tx.sku_id for tx in transactions if tx.sku_id and tx.sku_id not in metadata}
        for sku_id in sorted(orphan_stock | orphan_history):
            found = " and ".join(
                name for name, orphans in (("stock", orphan_stock), ("transactions", orphan_history))
                if sku_id in orphans
            )
            diagnostics.append(Diagnostic(
                code=DiagnosticCode.MISSING_METADATA,
                message=f"{found.capitalize()} reported for a SKU missing from the catalogue",
                sku_id=sku_id,
            ))
        if orphan_history:
            logger.warning(f"Ignoring transactions of {len(orphan_history)} SKU(s) outside the catalogue")
            transactions = [tx for tx in transactions if tx.sku_id in metadata]

        # ── Aggregation ──────────────────────────────────────────────────────
        valid, rejected = partition_transactions(transactions)
        for sku_id, error in sorted(rejected.items()):
            diagnostics.append(_error_diagnostic(error, sku_id))

        candidates = [sku for sku in sku_ids if sku not in rejected]
        all_series = aggregate(
            valid,
            config.period_granularity,
            as_of,
            window_periods=config.window_periods,
            min_history_periods=config.min_history_periods,
            unit_prices={sku: m.unit_price for sku, m in metadata.items()},
            sku_ids=candidates,
        )
        cancel_token.raise_if_cancelled()

        # ── Per-SKU fan-out ──────────────────────────────────────────────────
        forecaster = DemandForecaster(config)
        analyses = self._fan_out(
            [
                (all_series[sku], lead_times.get(sku, config.default_lead_time_days),
                 metadata[sku], stock.get(sku))
                for sku in candidates
            ],
            forecaster,
            cancel_token,
        )

        survivors: Dict[str, SkuAnalysis] = {}
        for sku_id in candidates:
            analysis = analyses[sku_id]
            diagnostics.extend(analysis.diagnostics)
            if analysis.excluded:
                logger.warning(f"SKU {sku_id} excluded from run {run_id}")
            else:
                survivors[sku_id] = analysis

        # ── Barrier: classification + policies ───────────────────────────────
        cancel_token.raise_if_cancelled()
        classifications, policies = self._classify_and_plan(config, survivors, diagnostics)
        cancel_token.raise_if_cancelled()

        forecasts = {sku: survivors[sku].forecast for sku in classifications}

        # ── Alerts ───────────────────────────────────────────────────────────
        for sku_id in classifications:
            if sku_id not in stock:
                diagnostics.append(Diagnostic(
                    code=DiagnosticCode.MISSING_STOCK,
                    message="No current stock level; stock alerts not evaluated",
                    sku_id=sku_id,
                    severity="warning",
                ))

        stocked = {sku: float(stock[sku]) for sku in classifications if sku in stock}
        alerts = AlertGenerator(config).generate_alerts(
            stocked,
            policies,
            classifications,
            last_movement_dates(valid, as_of),
            as_of,
            last_sale_date=last_sale_dates(valid, as_of),
            history_start=read_start.to_pydatetime(),
        )

        # ── Accuracy + summary ───────────────────────────────────────────────
        accuracy = evaluate_forecasts(previous_forecasts, all_series) if previous_forecasts else {}

        snapshot = AnalyticsSnapshot(
            run_id=run_id,
            as_of=as_of,
            forecasts=forecasts,
            classifications=classifications,
            policies=policies,
            alerts=alerts,
            diagnostics=diagnostics,
            accuracy=accuracy,
        )
        snapshot.summary = self._summarize(snapshot, all_series, stocked, len(sku_ids))

        logger.info(
            f"Analytics run {run_id} done: {len(classifications)} SKU(s) analysed, "
            f"{len(snapshot.excluded_skus)} excluded, {len(alerts)} alert(s)"
        )
        return snapshot

    # ═══════════════════════════════════════════════════════════════════════
    # STAGES
    # ═══════════════════════════════════════════════════════════════════════

    def _fan_out(
        self,
        work: List[Tuple[UsageSeries, Any, BookMetadata, Optional[float]]],
        forecaster: DemandForecaster,
        cancel_token: CancellationToken,
    ) -> Dict[str, SkuAnalysis]:
        """Per-SKU stage on a worker pool with a bounded number of queued tasks."""
        workers = self.config.resolved_workers
        max_in_flight = workers * 2
        results: Dict[str, SkuAnalysis] = {}
        submitted: Dict[Future, str] = {}

        def collect(done: Set[Future]) -> None:
            for future in done:
                sku_id = submitted.pop(future)
                try:
                    results[sku_id] = future.result()
                except RunCancelledError:
                    raise
                except Exception as e:
                    logger.exception(f"Unexpected failure analysing SKU {sku_id}")
                    results[sku_id] = SkuAnalysis(sku_id=sku_id, diagnostics=[Diagnostic(
                        code=DiagnosticCode.COMPUTATION,
                        message=f"Unexpected error: {e}",
                        sku_id=sku_id,
                    )])

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="analytics") as executor:
            for series, lead_time, metadata, stock in work:
                cancel_token.raise_if_cancelled()
                if len(submitted) >= max_in_flight:
                    done, _ = wait(list(submitted), return_when=FIRST_COMPLETED)
                    collect(done)
                future = executor.submit(
                    analyze_sku, series, lead_time, metadata, stock, forecaster, cancel_token
                )
                submitted[future] = series.sku_id
            done, _ = wait(list(submitted))
            collect(done)

        return results

    def _classify_and_plan(
        self,
        config: AnalyticsConfig,
        survivors: Dict[str, SkuAnalysis],
        diagnostics: List[Diagnostic],
    ) -> Tuple[Dict[str, Classification], Dict[str, ReorderPolicy]]:
        """
        Classify the surviving population and derive policies.

        A SKU whose policy fails is removed and the population reclassified,
        so revenue shares always cover exactly the SKUs in the output.
        """
        calculator = ReorderPolicyCalculator(config)
        population = dict(survivors)

        while True:
            classifications = classify_statistics(
                {sku: a.statistics for sku, a in population.items()}, config
            )
            policies: Dict[str, ReorderPolicy] = {}
            failed: List[str] = []
            for sku_id, analysis in population.items():
                try:
                    policies[sku_id] = calculator.compute_policy(
                        analysis.forecast,
                        classifications[sku_id],
                        analysis.lead_time_days,
                        pack_size=analysis.pack_size,
                    )
                except (InputValidationError, ComputationError) as e:
                    logger.warning(f"Reorder policy failed for SKU {sku_id}: {e}")
                    diagnostics.append(_error_diagnostic(e, sku_id))
                    failed.append(sku_id)

            if not failed:
                return classifications, policies
            for sku_id in failed:
                population.pop(sku_id)

    def _summarize(
        self,
        snapshot: AnalyticsSnapshot,
        all_series: Mapping[str, UsageSeries],
        stocked: Mapping[str, float],
        catalogue_size: int,
    ) -> Dict[str, Any]:
        alerts_by_kind = {kind.value: 0 for kind in AlertKind}
        alerts_by_severity: Dict[str, int] = {}
        for alert in snapshot.alerts:
            alerts_by_kind[alert.kind.value] += 1
            alerts_by_severity[alert.severity.value] = alerts_by_severity.get(alert.severity.value, 0) + 1

        supply = [
            days_of_supply(qty, snapshot.forecasts[sku])
            for sku, qty in stocked.items()
            if sku in snapshot.forecasts
        ]
        finite_supply = [d for d in supply if math.isfinite(d)]

        return {
            "catalogue_skus": catalogue_size,
            "analysed_skus": len(snapshot.classifications),
            "excluded_skus": len(snapshot.excluded_skus),
            "insufficient_history_skus": sum(
                1 for sku in snapshot.classifications if all_series[sku].insufficient_history
            ),
            "abc_xyz_matrix": abc_xyz_matrix(snapshot.classifications),
            "alerts_by_kind": alerts_by_kind,
            "alerts_by_severity": alerts_by_severity,
            "skus_to_reorder": sorted(
                a.sku_id for a in snapshot.alerts if a.kind == AlertKind.LOW_STOCK
            ),
            "avg_days_of_supply": (
                sum(finite_supply) / len(finite_supply) if finite_supply else None
            ),
            "forecast_accuracy": summarize_accuracy(snapshot.accuracy),
        }


def analyze_sku(
    series: UsageSeries,
    lead_time_days: Any,
    metadata: BookMetadata,
    current_stock: Optional[float],
    forecaster: DemandForecaster,
    cancel_token: Optional[CancellationToken] = None,
) -> SkuAnalysis:
    """
    Per-SKU stage: validation, demand statistics and forecast.

    Input and numeric errors are turned into diagnostics; only cancellation
    propagates.
    """
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    sku_id = series.sku_id
    analysis = SkuAnalysis(sku_id=sku_id, pack_size=metadata.pack_size)
    try:
        analysis.lead_time_days = validate_lead_time(lead_time_days, sku_id)
        if metadata.pack_size is not None and metadata.pack_size <= 0:
            raise InputValidationError(f"Pack size must be positive, got {metadata.pack_size}", sku_id)
        if metadata.unit_price < 0:
            raise InputValidationError(f"Negative catalogue price {metadata.unit_price}", sku_id)
        if current_stock is not None and current_stock < 0:
            raise InputValidationError(f"Negative on-hand stock {current_stock}", sku_id)

        analysis.statistics = demand_statistics(series)
        analysis.forecast = forecaster.forecast(series)
    except InputValidationError as e:
        logger.warning(f"SKU {sku_id}: {e}")
        analysis.diagnostics.append(_error_diagnostic(e, sku_id))
        return analysis
    except ComputationError as e:
        logger.error(f"SKU {sku_id}: {e}")
        analysis.diagnostics.append(_error_diagnostic(e, sku_id))
        return analysis

    if series.insufficient_history:
        analysis.diagnostics.append(Diagnostic(
            code=DiagnosticCode.INSUFFICIENT_HISTORY,
            message=(
                f"{series.nonzero_periods} period(s) with sales; "
                f"using historical mean forecast"
            ),
            sku_id=sku_id,
            severity="warning",
        ))
    return analysis


# ═══════════════════════════════════════════════════════════════════════════════
# CONVENIENCE FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def run_analytics(
    as_of: datetime,
    window_periods: Optional[int] = None,
    lead_time_days_by_sku: Optional[Mapping[str, Any]] = None,
    config: Optional[AnalyticsConfig] = None,
    *,
    transactions: Iterable[InventoryTransaction] = (),
    current_stock: Optional[Mapping[str, float]] = None,
    book_metadata: Optional[Union[Mapping[str, BookMetadata], Iterable[BookMetadata]]] = None,
    cancel_token: Optional[CancellationToken] = None,
    previous_forecasts: Optional[Union[Mapping[str, DemandForecast], Iterable[DemandForecast]]] = None,
) -> AnalyticsSnapshot:
    """Run the pipeline over in-memory inputs."""
    if isinstance(book_metadata, Mapping):
        book_metadata = list(book_metadata.values())
    source = InMemoryInventorySource(transactions, current_stock, book_metadata)
    engine = AnalyticsEngine(config, source, source, source)
    return engine.run(
        as_of,
        window_periods=window_periods,
        lead_time_days_by_sku=lead_time_days_by_sku,
        cancel_token=cancel_token,
        previous_forecasts=previous_forecasts,
    )
