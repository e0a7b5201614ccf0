"""
Stat Records v1.0
活动每日数据记录 — StatRecord + 渠道拆分 + 快照统计 + 记录校验

Features:
- StatRecord: one dated observation (leads / cases / revenue / ad spend)
- ChannelStats: optional YouTube / Meta / NewsBreak breakdown
- ManualStats + Campaign: legacy single-snapshot view + stats history
- Calendar-date parsing without timezone shifting
- Record validation producing reportable RecordIssue entries
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

KNOWN_CHANNELS = ("youtube", "meta", "newsbreak")
NUMERIC_FIELDS = ("leads", "cases", "revenue", "ad_spend")
COUNT_FIELDS = ("leads", "cases")

# 渠道拆分与汇总字段的允许误差 (货币精度)
CHANNEL_TOLERANCE = 0.01


@dataclass(frozen=True)
class ChannelStats:
    """单渠道数据"""
    ad_spend: float = 0.0
    leads: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"ad_spend": self.ad_spend, "leads": self.leads}


@dataclass(frozen=True)
class StatRecord:
    """活动单日数据记录"""
    id: str
    campaign_id: str
    date: Any
    leads: Any = 0
    cases: Any = 0
    revenue: Any = 0.0
    ad_spend: Any = 0.0
    channels: Dict[str, ChannelStats] = field(default_factory=dict)

    @property
    def day(self) -> Optional[date]:
        return parse_stat_date(self.date)

    def to_dict(self) -> Dict[str, Any]:
        day = self.day
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "date": day.isoformat() if day else self.date,
            "leads": self.leads,
            "cases": self.cases,
            "revenue": self.revenue,
            "ad_spend": self.ad_spend,
            "channels": {name: c.to_dict() for name, c in self.channels.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatRecord":
        """字典转StatRecord (兼容camelCase与扁平渠道列)"""
        channels: Dict[str, ChannelStats] = {}
        raw_channels = data.get("channels") or {}
        for name, values in raw_channels.items():
            if isinstance(values, ChannelStats):
                channels[name] = values
            else:
                channels[name] = ChannelStats(
                    ad_spend=values.get("ad_spend", values.get("adSpend", 0.0)) or 0.0,
                    leads=values.get("leads", 0) or 0,
                )

        for name in KNOWN_CHANNELS:
            spend = data.get(f"{name}_spend")
            leads = data.get(f"{name}_leads")
            if spend is None and leads is None:
                continue
            channels[name] = ChannelStats(ad_spend=spend or 0.0, leads=leads or 0)

        return cls(
            id=str(data.get("id", "")),
            campaign_id=str(data.get("campaign_id", data.get("campaignId", ""))),
            date=data.get("date"),
            leads=data.get("leads", 0),
            cases=data.get("cases", 0),
            revenue=data.get("revenue", 0.0),
            ad_spend=data.get("ad_spend", data.get("adSpend", 0.0)),
            channels=channels,
        )


@dataclass
class ManualStats:
    """旧版单快照统计"""
    leads: int = 0
    cases: int = 0
    revenue: float = 0.0
    retainers: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leads": self.leads,
            "cases": self.cases,
            "revenue": self.revenue,
            "retainers": self.retainers,
        }


@dataclass
class Campaign:
    """推广活动 (历史记录 + 旧快照)"""
    id: str
    name: str = ""
    stats_history: List[StatRecord] = field(default_factory=list)
    manual_stats: ManualStats = field(default_factory=ManualStats)
    ad_spend: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "stats_history": [r.to_dict() for r in self.stats_history],
            "manual_stats": self.manual_stats.to_dict(),
            "ad_spend": self.ad_spend,
        }


@dataclass(frozen=True)
class RecordIssue:
    """记录异常 (可上报)"""
    record_id: str
    field: str
    reason: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "field": self.field,
            "reason": self.reason,
            "value": self.value,
        }


def parse_stat_date(value: Any) -> Optional[date]:
    """按日历分量解析日期, 不做时区换算"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if "T" in text:
        text = text.split("T", 1)[0]
    parts = text.split("-")
    if len(parts) != 3 or len(parts[0]) != 4:
        return None
    try:
        year, month, day = (int(p) for p in parts)
        return date(year, month, day)
    except ValueError:
        return None


def coerce_amount(value: Any) -> Optional[float]:
    """数值字段转float; None视为0, 非法返回None"""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def validate_record(record: StatRecord) -> List[RecordIssue]:
    """校验记录, 返回全部异常"""
    issues: List[RecordIssue] = []

    if parse_stat_date(record.date) is None:
        issues.append(RecordIssue(record.id, "date", "unparseable date", record.date))

    for name in NUMERIC_FIELDS:
        value = getattr(record, name)
        if coerce_amount(value) is None:
            reason = "negative value" if _is_negative(value) else "non-numeric value"
            issues.append(RecordIssue(record.id, name, reason, value))
        elif name in COUNT_FIELDS and not coerce_amount(value).is_integer():
            issues.append(RecordIssue(record.id, name, "non-integer count", value))

    if record.channels and not issues:
        spend = sum(coerce_amount(c.ad_spend) or 0.0 for c in record.channels.values())
        leads = sum(coerce_amount(c.leads) or 0.0 for c in record.channels.values())
        if (abs(spend - coerce_amount(record.ad_spend)) > CHANNEL_TOLERANCE
                or abs(leads - coerce_amount(record.leads)) > CHANNEL_TOLERANCE):
            issues.append(RecordIssue(
                record.id, "channels",
                "channel breakdown does not sum to aggregate fields",
                {"ad_spend": round(spend, 2), "leads": leads},
            ))

    return issues


def is_malformed(issues: Iterable[RecordIssue]) -> bool:
    """渠道不一致不算格式错误, 汇总字段为准"""
    return any(issue.field != "channels" for issue in issues)


def filter_by_campaign(records: Iterable[StatRecord], campaign_id: str) -> List[StatRecord]:
    return [r for r in records if r.campaign_id == campaign_id]


def _is_negative(value: Any) -> bool:
    try:
        return float(value) < 0
    except (TypeError, ValueError):
        return False
