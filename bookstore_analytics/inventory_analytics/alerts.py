"""
═══════════════════════════════════════════════════════════════════════════════
                    ALERT GENERATOR
═══════════════════════════════════════════════════════════════════════════════

Evaluates current stock against reorder policies and rotation rules.

    LOW_STOCK    stock < ROP            critical if stock < SS, else warning
    OVERSTOCK    stock > Q · multiplier informational
    SLOW_MOVING  class Z and no sale in the last N periods   warning
    STALE        no movement for `stale_days`                 informational

Alerts are a snapshot of one run. No deduplication against earlier runs is
attempted; the reporting layer diffs successive snapshots if it needs to.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Mapping, Optional

from bookstore_analytics.inventory_analytics.aggregation import to_naive_utc
from bookstore_analytics.inventory_analytics.config import AnalyticsConfig
from bookstore_analytics.inventory_analytics.models import (
    Alert,
    AlertKind,
    AlertSeverity,
    Classification,
    ReorderPolicy,
    XYZClass,
)

logger = logging.getLogger(__name__)


class AlertGenerator:
    """Stateless rule evaluation over one run's stock and policies."""

    def __init__(self, config: Optional[AnalyticsConfig] = None):
        self.config = config or AnalyticsConfig()

    @property
    def slow_moving_days(self) -> float:
        return self.config.slow_moving_periods * self.config.period_granularity.period_days

    def generate_alerts(
        self,
        current_stock: Mapping[str, float],
        policies: Mapping[str, ReorderPolicy],
        classifications: Mapping[str, Classification],
        last_movement_date: Mapping[str, datetime],
        as_of: datetime,
        last_sale_date: Optional[Mapping[str, datetime]] = None,
        history_start: Optional[datetime] = None,
    ) -> List[Alert]:
        """
        Evaluate every SKU with a known stock level.

        Args:
            current_stock: On-hand quantity per SKU
            policies: Reorder policy per SKU (LOW_STOCK / OVERSTOCK)
            classifications: ABC/XYZ class per SKU (SLOW_MOVING)
            last_movement_date: Latest stock movement of any kind (STALE)
            as_of: Evaluation time, also stamped on every alert
            last_sale_date: Latest sale per SKU; falls back to
                last_movement_date when not given
            history_start: Start of the transaction history the dates were
                taken from. A SKU without a movement date has been idle at
                least since then; without it such SKUs are never stale.

        Returns:
            Alerts ordered by severity, then SKU, then kind
        """
        if last_sale_date is None:
            last_sale_date = last_movement_date
        as_of_ts = to_naive_utc(as_of)

        alerts: List[Alert] = []
        for sku_id in sorted(current_stock):
            stock = float(current_stock[sku_id])
            policy = policies.get(sku_id)
            classification = classifications.get(sku_id)

            if policy is not None:
                alerts.extend(self._stock_level_alerts(sku_id, stock, policy, as_of))

            if classification is not None and classification.xyz_class == XYZClass.Z:
                alert = self._slow_moving_alert(
                    sku_id, stock, last_sale_date.get(sku_id), as_of, as_of_ts
                )
                if alert is not None:
                    alerts.append(alert)

            alert = self._stale_alert(
                sku_id, stock, last_movement_date.get(sku_id), as_of, as_of_ts, history_start
            )
            if alert is not None:
                alerts.append(alert)

        alerts.sort(key=lambda a: (a.severity.rank, a.sku_id, a.kind.value))
        logger.debug(f"Generated {len(alerts)} alert(s) for {len(current_stock)} SKU(s)")
        return alerts

    # ═══════════════════════════════════════════════════════════════════════
    # RULES
    # ═══════════════════════════════════════════════════════════════════════

    def _stock_level_alerts(
        self, sku_id: str, stock: float, policy: ReorderPolicy, as_of: datetime
    ) -> List[Alert]:
        alerts = []
        if stock < policy.reorder_point:
            critical = stock < policy.safety_stock
            alerts.append(Alert(
                sku_id=sku_id,
                kind=AlertKind.LOW_STOCK,
                severity=AlertSeverity.CRITICAL if critical else AlertSeverity.WARNING,
                current_stock=stock,
                threshold=policy.reorder_point,
                raised_at=as_of,
                message=(
                    f"Stock {stock:g} below reorder point {policy.reorder_point:.1f}"
                    + (f" and safety stock {policy.safety_stock:.1f}" if critical else "")
                    + f"; suggest ordering {policy.suggested_order_qty}"
                ),
            ))

        overstock_threshold = policy.suggested_order_qty * self.config.overstock_multiplier
        if stock > overstock_threshold:
            alerts.append(Alert(
                sku_id=sku_id,
                kind=AlertKind.OVERSTOCK,
                severity=AlertSeverity.INFO,
                current_stock=stock,
                threshold=overstock_threshold,
                raised_at=as_of,
                message=(
                    f"Stock {stock:g} exceeds {self.config.overstock_multiplier:g}x "
                    f"suggested order quantity {policy.suggested_order_qty}"
                ),
            ))
        return alerts

    def _slow_moving_alert(
        self, sku_id: str, stock: float, last_sale: Optional[datetime], as_of: datetime, as_of_ts
    ) -> Optional[Alert]:
        if stock <= 0:
            return None
        window = timedelta(days=self.slow_moving_days)
        if last_sale is not None and as_of_ts - to_naive_utc(last_sale) < window:
            return None
        return Alert(
            sku_id=sku_id,
            kind=AlertKind.SLOW_MOVING,
            severity=AlertSeverity.WARNING,
            current_stock=stock,
            threshold=self.slow_moving_days,
            raised_at=as_of,
            message=(
                f"Erratic demand and no sale in the last {self.config.slow_moving_periods} "
                f"{self.config.period_granularity.value}(s)"
            ),
        )

    def _stale_alert(
        self,
        sku_id: str,
        stock: float,
        last_movement: Optional[datetime],
        as_of: datetime,
        as_of_ts,
        history_start: Optional[datetime] = None,
    ) -> Optional[Alert]:
        if last_movement is not None:
            idle = as_of_ts - to_naive_utc(last_movement)
            message = f"No stock movement for {idle.days} days"
        elif history_start is not None:
            idle = as_of_ts - to_naive_utc(history_start)
            message = f"No stock movement recorded since {to_naive_utc(history_start).date()}"
        else:
            return None
        if idle < timedelta(days=self.config.stale_days):
            return None
        return Alert(
            sku_id=sku_id,
            kind=AlertKind.STALE,
            severity=AlertSeverity.INFO,
            current_stock=stock,
            threshold=float(self.config.stale_days),
            raised_at=as_of,
            message=message,
        )


def generate_alerts(
    current_stock: Mapping[str, float],
    policies: Mapping[str, ReorderPolicy],
    classifications: Mapping[str, Classification],
    last_movement_date: Mapping[str, datetime],
    as_of: datetime,
    config: Optional[AnalyticsConfig] = None,
    last_sale_date: Optional[Mapping[str, datetime]] = None,
    history_start: Optional[datetime] = None,
) -> List[Alert]:
    """Module-level shortcut for AlertGenerator.generate_alerts."""
    return AlertGenerator(config).generate_alerts(
        current_stock, policies, classifications, last_movement_date, as_of, last_sale_date,
        history_start,
    )
