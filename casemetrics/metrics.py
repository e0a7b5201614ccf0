"""
Metrics Calculator v1.0
衍生指标计算 — Profit/ROI/ROAS/CPL/CPA/EPL/转化率 + 表现分级 + 指标缓存

Features:
- DerivedMetrics: ratio / financial metrics from period totals
- Zero-division policy: every degenerate ratio resolves to 0, never NaN/inf
- PerformanceTier: excellent (> 300% ROI) / good (> 200%) / needs attention
- MetricsCache: explicit (campaign, range) memo with per-campaign invalidation
- MetricsService: aggregate + derive + memoize, reacts to stat record changes
"""

import logging
import math
import threading
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from casemetrics.aggregator import AggregationMode, Aggregator, PeriodTotals
from casemetrics.periods import Period
from casemetrics.records import Campaign

logger = logging.getLogger(__name__)

METRIC_NAMES = (
    "cost_per_lead", "cost_per_acquisition", "profit", "roi", "roas",
    "earnings_per_lead", "revenue_per_case", "conversion_rate",
)

EXCELLENT_ROI = 300
GOOD_ROI = 200


class PerformanceTier(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    NEEDS_ATTENTION = "needs_attention"


@dataclass(frozen=True)
class DerivedMetrics:
    """衍生指标"""
    cost_per_lead: float = 0.0
    cost_per_acquisition: float = 0.0
    profit: float = 0.0
    roi: float = 0.0
    roas: float = 0.0
    earnings_per_lead: float = 0.0
    revenue_per_case: float = 0.0
    conversion_rate: float = 0.0

    @property
    def tier(self) -> PerformanceTier:
        return MetricsCalculator.classify(self.roi)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for key in METRIC_NAMES:
            d[key] = round(d[key], 4)
        d["tier"] = self.tier.value
        return d


def safe_div(numerator: float, denominator: float) -> float:
    """分母非正或结果非有限时返回0"""
    if denominator <= 0:
        return 0.0
    value = numerator / denominator
    return value if math.isfinite(value) else 0.0


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


class MetricsCalculator:
    """衍生指标计算器"""

    def derive(self, totals: PeriodTotals) -> DerivedMetrics:
        ad_spend = _finite(totals.ad_spend)
        revenue = _finite(totals.revenue)
        leads = _finite(totals.leads)
        cases = _finite(totals.cases)

        profit = revenue - ad_spend
        roi = safe_div(revenue * 100, ad_spend)

        return DerivedMetrics(
            cost_per_lead=safe_div(ad_spend, leads),
            cost_per_acquisition=safe_div(ad_spend, cases),
            profit=profit,
            roi=roi,
            # ROAS shares the ROI scale; "∞" on zero spend is a display concern
            roas=roi,
            earnings_per_lead=safe_div(profit, leads),
            revenue_per_case=safe_div(revenue, cases),
            conversion_rate=safe_div(cases * 100, leads),
        )

    @staticmethod
    def classify(roi: float) -> PerformanceTier:
        if roi > EXCELLENT_ROI:
            return PerformanceTier.EXCELLENT
        elif roi > GOOD_ROI:
            return PerformanceTier.GOOD
        return PerformanceTier.NEEDS_ATTENTION


CacheKey = Tuple[str, Optional[str], Optional[str]]


class MetricsCache:
    """指标缓存 (campaign_id, start, end) → DerivedMetrics, 无TTL, 显式失效"""

    def __init__(self):
        self._entries: Dict[CacheKey, DerivedMetrics] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(campaign_id: str, period: Optional[Period] = None) -> CacheKey:
        if period is None:
            return (campaign_id, None, None)
        return (campaign_id, period.start_date.isoformat(), period.end_date.isoformat())

    def get(self, key: CacheKey) -> Optional[DerivedMetrics]:
        with self._lock:
            metrics = self._entries.get(key)
            if metrics is None:
                self.misses += 1
            else:
                self.hits += 1
            return metrics

    def put(self, key: CacheKey, metrics: DerivedMetrics):
        with self._lock:
            self._entries[key] = metrics

    def invalidate(self, campaign_id: str) -> int:
        """清除某活动的全部缓存范围"""
        with self._lock:
            stale = [k for k in self._entries if k[0] == campaign_id]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached metric ranges for campaign {campaign_id}")
        return len(stale)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "size": len(self)}


class MetricsService:
    """汇总 + 指标计算 + 缓存"""

    def __init__(self, cache: Optional[MetricsCache] = None,
                 aggregator: Optional[Aggregator] = None,
                 calculator: Optional[MetricsCalculator] = None):
        self.cache = cache
        self.aggregator = aggregator or Aggregator()
        self.calculator = calculator or MetricsCalculator()

    def metrics_for(self, campaign: Campaign, mode: AggregationMode,
                    period: Optional[Period] = None) -> DerivedMetrics:
        mode = AggregationMode(mode)
        key = MetricsCache.key(campaign.id, period if mode == AggregationMode.HISTORY else None)

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        totals = self.aggregator.aggregate_campaign(campaign, mode, period)
        metrics = self.calculator.derive(totals)

        if self.cache is not None:
            self.cache.put(key, metrics)
        return metrics

    def handle_change(self, change) -> int:
        """存储层增删改回调"""
        if self.cache is None:
            return 0
        return self.cache.invalidate(change.campaign_id)
