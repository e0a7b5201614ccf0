"""
Portfolio Analyzer v1.0
多活动汇总 — 总体指标 + 表现分级分布 + 活动排行榜
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from casemetrics.aggregator import AggregationMode, Aggregator, PeriodTotals
from casemetrics.metrics import DerivedMetrics, MetricsCalculator, PerformanceTier
from casemetrics.periods import Period
from casemetrics.records import Campaign

logger = logging.getLogger(__name__)

# 指标 → 是否降序
LEADERBOARD_METRICS = {
    "profit": True,
    "roi": True,
    "earnings_per_lead": True,
    "cost_per_lead": False,
}


@dataclass
class PortfolioSummary:
    """全部活动汇总"""
    campaign_count: int
    totals: PeriodTotals
    metrics: DerivedMetrics
    tier_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_count": self.campaign_count,
            "totals": self.totals.to_dict(),
            "metrics": self.metrics.to_dict(),
            "tier_counts": dict(self.tier_counts),
        }


@dataclass
class LeaderboardEntry:
    rank: int
    campaign_id: str
    campaign_name: str
    metric: str
    value: float
    tier: PerformanceTier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "campaign_id": self.campaign_id,
            "campaign_name": self.campaign_name,
            "metric": self.metric,
            "value": round(self.value, 4),
            "tier": self.tier.value,
        }


class PortfolioAnalyzer:
    """活动组合分析"""

    def __init__(self, aggregator: Optional[Aggregator] = None,
                 calculator: Optional[MetricsCalculator] = None):
        self.aggregator = aggregator or Aggregator()
        self.calculator = calculator or MetricsCalculator()

    def _totals(self, campaign: Campaign, period: Optional[Period]) -> PeriodTotals:
        if period is None:
            return self.aggregator.aggregate_campaign(campaign, AggregationMode.SNAPSHOT)
        return self.aggregator.aggregate_campaign(campaign, AggregationMode.HISTORY, period)

    def summarize(self, campaigns: Iterable[Campaign],
                  period: Optional[Period] = None) -> PortfolioSummary:
        """有周期时按历史汇总, 否则用快照"""
        campaigns = list(campaigns)
        combined = PeriodTotals()
        tier_counts = {tier.value: 0 for tier in PerformanceTier}

        for campaign in campaigns:
            totals = self._totals(campaign, period)
            combined = combined + totals
            tier_counts[self.calculator.derive(totals).tier.value] += 1

        return PortfolioSummary(
            campaign_count=len(campaigns),
            totals=combined,
            metrics=self.calculator.derive(combined),
            tier_counts=tier_counts,
        )

    def leaderboard(self, campaigns: Iterable[Campaign], metric: str,
                    period: Optional[Period] = None,
                    top_n: int = 5) -> List[LeaderboardEntry]:
        """排行榜; cost_per_lead 升序且跳过无线索活动"""
        if metric not in LEADERBOARD_METRICS:
            raise ValueError(
                f"Unknown leaderboard metric: {metric} "
                f"(expected one of {', '.join(LEADERBOARD_METRICS)})"
            )
        descending = LEADERBOARD_METRICS[metric]

        scored = []
        for campaign in campaigns:
            totals = self._totals(campaign, period)
            if metric == "cost_per_lead" and totals.leads <= 0:
                continue
            metrics = self.calculator.derive(totals)
            scored.append((campaign, getattr(metrics, metric), metrics.tier))

        scored.sort(key=lambda item: item[1], reverse=descending)
        logger.debug(f"Leaderboard {metric}: {len(scored)} campaigns ranked")

        return [
            LeaderboardEntry(
                rank=i + 1,
                campaign_id=campaign.id,
                campaign_name=campaign.name,
                metric=metric,
                value=value,
                tier=tier,
            )
            for i, (campaign, value, tier) in enumerate(scored[:top_n])
        ]
