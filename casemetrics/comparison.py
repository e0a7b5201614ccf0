"""
Period Comparator v1.0
周期对比 — 百分比变化 + 趋势方向 + 预设周期对 + 周/月对比表

Features:
- percentage_change: 0 → x reported as a flat +100%, never infinite
- ComparisonResult: totals + derived metrics of both periods with per-metric deltas
- Trend helpers: numeric direction and a deadband indicator for display
- Weekly (Monday start) and monthly breakdown tables with row-over-row changes
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from casemetrics.aggregator import Aggregator, PeriodTotals
from casemetrics.metrics import METRIC_NAMES, DerivedMetrics, MetricsCalculator
from casemetrics.periods import Period, month_period, preset_pair, week_period
from casemetrics.records import StatRecord

logger = logging.getLogger(__name__)

TOTAL_NAMES = ("ad_spend", "leads", "cases", "revenue")

# 成本类指标: 下降才是改善
LOWER_IS_BETTER = frozenset({"ad_spend", "cost_per_lead", "cost_per_acquisition"})

DISPLAY_DEADBAND = 5.0


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


def percentage_change(current: float, previous: float) -> float:
    """百分比变化; 前值为0时: 0→0, 其他→100"""
    if not (math.isfinite(current) and math.isfinite(previous)):
        return 0.0
    if previous == 0:
        return 0.0 if current == 0 else 100.0
    return (current - previous) / previous * 100


def trend_direction(change: float) -> TrendDirection:
    if change > 0:
        return TrendDirection.UP
    elif change < 0:
        return TrendDirection.DOWN
    return TrendDirection.NEUTRAL


def trend_indicator(change: float, deadband: float = DISPLAY_DEADBAND) -> str:
    """展示用趋势 (带死区)"""
    if change > deadband:
        return "up"
    elif change < -deadband:
        return "down"
    return "flat"


def is_improvement(metric: str, change: float) -> bool:
    if metric in LOWER_IS_BETTER:
        return change < 0
    return change > 0


def _metric_values(totals: PeriodTotals, metrics: DerivedMetrics) -> Dict[str, float]:
    values = {name: getattr(totals, name) for name in TOTAL_NAMES}
    values.update({name: getattr(metrics, name) for name in METRIC_NAMES})
    return values


def compute_changes(current_totals: PeriodTotals, current_metrics: DerivedMetrics,
                    previous_totals: PeriodTotals,
                    previous_metrics: DerivedMetrics) -> Dict[str, float]:
    current = _metric_values(current_totals, current_metrics)
    previous = _metric_values(previous_totals, previous_metrics)
    return {name: percentage_change(current[name], previous[name]) for name in current}


@dataclass
class ComparisonResult:
    """两个周期的对比结果"""
    base_period: Period
    compare_period: Period
    base_totals: PeriodTotals
    compare_totals: PeriodTotals
    base_metrics: DerivedMetrics
    compare_metrics: DerivedMetrics
    percentage_changes: Dict[str, float] = field(default_factory=dict)

    @property
    def trends(self) -> Dict[str, TrendDirection]:
        return {name: trend_direction(c) for name, c in self.percentage_changes.items()}

    @property
    def improvements(self) -> List[str]:
        return [name for name, c in self.percentage_changes.items() if is_improvement(name, c)]

    @property
    def regressions(self) -> List[str]:
        return [
            name for name, c in self.percentage_changes.items()
            if c != 0 and not is_improvement(name, c)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_period": self.base_period.to_dict(),
            "compare_period": self.compare_period.to_dict(),
            "base_totals": self.base_totals.to_dict(),
            "compare_totals": self.compare_totals.to_dict(),
            "base_metrics": self.base_metrics.to_dict(),
            "compare_metrics": self.compare_metrics.to_dict(),
            "percentage_changes": {k: round(v, 2) for k, v in self.percentage_changes.items()},
            "trends": {k: v.value for k, v in self.trends.items()},
        }


@dataclass
class PeriodReport:
    """对比表中的一行"""
    period: Period
    totals: PeriodTotals
    metrics: DerivedMetrics
    changes: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period.to_dict(),
            "totals": self.totals.to_dict(),
            "metrics": self.metrics.to_dict(),
            "changes": {k: round(v, 2) for k, v in self.changes.items()},
        }


class PeriodComparator:
    """周期对比器"""

    def __init__(self, aggregator: Optional[Aggregator] = None,
                 calculator: Optional[MetricsCalculator] = None):
        self.aggregator = aggregator or Aggregator()
        self.calculator = calculator or MetricsCalculator()

    def compare(self, records: Iterable[StatRecord], base_period: Period,
                compare_period: Period) -> ComparisonResult:
        """基准周期(当前) vs 对比周期(之前)"""
        records = list(records)
        base_totals = self.aggregator.aggregate(records, base_period)
        compare_totals = self.aggregator.aggregate(records, compare_period)
        base_metrics = self.calculator.derive(base_totals)
        compare_metrics = self.calculator.derive(compare_totals)

        return ComparisonResult(
            base_period=base_period,
            compare_period=compare_period,
            base_totals=base_totals,
            compare_totals=compare_totals,
            base_metrics=base_metrics,
            compare_metrics=compare_metrics,
            percentage_changes=compute_changes(
                base_totals, base_metrics, compare_totals, compare_metrics
            ),
        )

    def compare_presets(self, records: Iterable[StatRecord], pair_name: str,
                        today: Optional[date] = None) -> ComparisonResult:
        base, compare = preset_pair(pair_name, today)
        return self.compare(records, base, compare)

    def weekly_breakdown(self, records: Iterable[StatRecord], weeks: int = 4,
                         today: Optional[date] = None) -> List[PeriodReport]:
        """最近N周 (周一开始), 最新在前"""
        periods = [week_period(i, today) for i in range(weeks)]
        return self._breakdown(list(records), periods)

    def monthly_breakdown(self, records: Iterable[StatRecord], months: int = 3,
                          today: Optional[date] = None) -> List[PeriodReport]:
        periods = [month_period(i, today) for i in range(months)]
        return self._breakdown(list(records), periods)

    def _breakdown(self, records: List[StatRecord],
                   periods: List[Period]) -> List[PeriodReport]:
        rows = []
        for period in periods:
            totals = self.aggregator.aggregate(records, period)
            rows.append(PeriodReport(period=period, totals=totals,
                                     metrics=self.calculator.derive(totals)))

        # 每行与下一行(更早的周期)对比, 最早一行无对比
        for current, previous in zip(rows, rows[1:]):
            current.changes = compute_changes(
                current.totals, current.metrics, previous.totals, previous.metrics
            )
        return rows
