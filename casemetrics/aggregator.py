"""
Aggregator v1.0
周期汇总引擎 — 历史记录按日期范围求和 + 旧快照回退 + 渠道拆分 + 日均值

Features:
- AggregationMode: HISTORY (stats history over a period) | SNAPSHOT (legacy fields)
- Malformed records excluded and reported, never zero-filled silently
- Invalid or empty periods degrade to all-zero totals
- Channel totals and daily averages for dashboard cards
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from casemetrics.periods import Period
from casemetrics.records import (
    Campaign, ChannelStats, RecordIssue, StatRecord,
    coerce_amount, is_malformed, parse_stat_date, validate_record,
)

if TYPE_CHECKING:
    from casemetrics.metrics import DerivedMetrics

logger = logging.getLogger(__name__)


class AggregationMode(str, Enum):
    HISTORY = "history"
    SNAPSHOT = "snapshot"


@dataclass(frozen=True)
class PeriodTotals:
    """周期汇总"""
    ad_spend: float = 0.0
    leads: int = 0
    cases: int = 0
    revenue: float = 0.0

    def __add__(self, other: "PeriodTotals") -> "PeriodTotals":
        return PeriodTotals(
            ad_spend=self.ad_spend + other.ad_spend,
            leads=self.leads + other.leads,
            cases=self.cases + other.cases,
            revenue=self.revenue + other.revenue,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.ad_spend or self.leads or self.cases or self.revenue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ad_spend": round(self.ad_spend, 2),
            "leads": self.leads,
            "cases": self.cases,
            "revenue": round(self.revenue, 2),
        }


@dataclass
class AggregationResult:
    """汇总结果 + 被排除的异常记录"""
    totals: PeriodTotals
    included: List[str] = field(default_factory=list)
    issues: List[RecordIssue] = field(default_factory=list)

    @property
    def excluded(self) -> List[str]:
        ids = []
        for issue in self.issues:
            if issue.field != "channels" and issue.record_id not in ids:
                ids.append(issue.record_id)
        return ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totals": self.totals.to_dict(),
            "included": list(self.included),
            "excluded": self.excluded,
            "issues": [i.to_dict() for i in self.issues],
        }


@dataclass
class DailyAverages:
    """周期日均值"""
    totals: PeriodTotals
    metrics: "DerivedMetrics"
    days: int
    today_excluded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totals": self.totals.to_dict(),
            "metrics": self.metrics.to_dict(),
            "days": self.days,
            "today_excluded": self.today_excluded,
        }


class Aggregator:
    """周期汇总器 (纯函数, 无内部状态)"""

    def aggregate(self, records: Iterable[StatRecord], period: Period) -> PeriodTotals:
        return self.aggregate_with_report(records, period).totals

    def aggregate_with_report(self, records: Iterable[StatRecord],
                              period: Period) -> AggregationResult:
        if not period.is_valid:
            logger.debug(f"Invalid period {period.to_dict()}, returning empty totals")
            return AggregationResult(totals=PeriodTotals())

        ad_spend = revenue = 0.0
        leads = cases = 0
        included: List[str] = []
        issues: List[RecordIssue] = []

        for record in records:
            day = parse_stat_date(record.date)
            if day is not None and not period.contains(day):
                continue

            record_issues = validate_record(record)
            issues.extend(record_issues)
            if is_malformed(record_issues):
                logger.warning(
                    f"Excluding malformed stat record {record.id}: "
                    + "; ".join(f"{i.field}={i.value!r} ({i.reason})" for i in record_issues)
                )
                continue

            ad_spend += coerce_amount(record.ad_spend)
            revenue += coerce_amount(record.revenue)
            leads += int(coerce_amount(record.leads))
            cases += int(coerce_amount(record.cases))
            included.append(record.id)

        return AggregationResult(
            totals=PeriodTotals(ad_spend=ad_spend, leads=leads, cases=cases, revenue=revenue),
            included=included,
            issues=issues,
        )

    def aggregate_campaign(self, campaign: Campaign, mode: AggregationMode,
                           period: Optional[Period] = None) -> PeriodTotals:
        """按模式汇总: 历史记录或旧快照"""
        mode = AggregationMode(mode)
        if mode == AggregationMode.SNAPSHOT:
            manual = campaign.manual_stats
            return PeriodTotals(
                ad_spend=coerce_amount(campaign.ad_spend) or 0.0,
                leads=int(coerce_amount(manual.leads) or 0),
                cases=int(coerce_amount(manual.cases) or 0),
                revenue=coerce_amount(manual.revenue) or 0.0,
            )
        if period is None:
            raise ValueError("History aggregation requires a period")
        return self.aggregate(campaign.stats_history, period)

    def channel_totals(self, records: Iterable[StatRecord],
                       period: Period) -> Dict[str, ChannelStats]:
        """渠道拆分汇总"""
        if not period.is_valid:
            return {}
        spend: Dict[str, float] = {}
        leads: Dict[str, int] = {}
        for record in records:
            if is_malformed(validate_record(record)):
                continue
            if not period.contains(parse_stat_date(record.date)):
                continue
            for name, channel in record.channels.items():
                spend[name] = spend.get(name, 0.0) + (coerce_amount(channel.ad_spend) or 0.0)
                leads[name] = leads.get(name, 0) + int(coerce_amount(channel.leads) or 0)
        return {name: ChannelStats(ad_spend=spend[name], leads=leads[name]) for name in spend}

    def daily_averages(self, records: Iterable[StatRecord], period: Period,
                       today: Optional[date] = None,
                       exclude_today: bool = True) -> DailyAverages:
        """日均值: 按有数据的天数平均, 无数据时按周期天数"""
        from casemetrics.metrics import MetricsCalculator

        today = today or date.today()
        records = list(records)
        if exclude_today:
            records = [r for r in records if parse_stat_date(r.date) != today]

        result = self.aggregate_with_report(records, period)
        included = set(result.included)
        days_with_entries = {parse_stat_date(r.date) for r in records if r.id in included}

        today_excluded = exclude_today and period.end_date == today
        effective_end = today - timedelta(days=1) if today_excluded else period.end_date
        days_in_range = max((effective_end - period.start_date).days + 1, 1)
        days = len(days_with_entries) if days_with_entries else days_in_range

        totals = result.totals
        per_day = PeriodTotals(
            ad_spend=totals.ad_spend / days,
            leads=totals.leads / days,
            cases=totals.cases / days,
            revenue=totals.revenue / days,
        )
        return DailyAverages(
            totals=per_day,
            metrics=MetricsCalculator().derive(per_day),
            days=days,
            today_excluded=today_excluded,
        )
