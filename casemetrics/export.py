"""
Export Engine - 报告导出引擎 v1.0
指标格式化 + CSV/JSON/Markdown对比报告导出

Features:
- MetricsFormatter: currency / compact currency / percent / K-M numbers
- ROAS display keeps "∞" and "N/A" out of the numeric metric
- Comparison and breakdown tables as CSV, JSON and Markdown
"""

import csv
import io
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from casemetrics.aggregator import PeriodTotals
from casemetrics.comparison import (
    TOTAL_NAMES, ComparisonResult, PeriodReport, trend_indicator,
)
from casemetrics.metrics import METRIC_NAMES, DerivedMetrics, MetricsCalculator, PerformanceTier
from casemetrics.records import StatRecord

logger = logging.getLogger(__name__)

TIER_LABELS = {
    PerformanceTier.EXCELLENT: "🟢 Excellent",
    PerformanceTier.GOOD: "🟡 Good",
    PerformanceTier.NEEDS_ATTENTION: "🔴 Needs Attention",
}

TREND_ARROWS = {"up": "↑", "down": "↓", "flat": "→"}

MONEY_FIELDS = frozenset({
    "ad_spend", "revenue", "profit", "cost_per_lead",
    "cost_per_acquisition", "earnings_per_lead", "revenue_per_case",
})
PERCENT_FIELDS = frozenset({"roi", "roas", "conversion_rate"})

FIELD_LABELS = {
    "ad_spend": "Ad Spend",
    "leads": "Leads",
    "cases": "Cases",
    "revenue": "Revenue",
    "cost_per_lead": "Cost / Lead",
    "cost_per_acquisition": "Cost / Case",
    "profit": "Profit",
    "roi": "ROI",
    "roas": "ROAS",
    "earnings_per_lead": "Earnings / Lead",
    "revenue_per_case": "Revenue / Case",
    "conversion_rate": "Conversion Rate",
}


class MetricsFormatter:
    """指标展示格式"""

    @staticmethod
    def currency(value: float) -> str:
        sign = "-" if value < 0 else ""
        return f"{sign}${abs(value):,.2f}"

    @staticmethod
    def currency_compact(value: float) -> str:
        sign = "-" if value < 0 else ""
        value = abs(value)
        if value >= 1_000_000:
            return f"{sign}${value / 1_000_000:.1f}M"
        if value >= 1_000:
            return f"{sign}${value / 1_000:.1f}K"
        return f"{sign}${value:,.0f}"

    @staticmethod
    def percent(value: float, signed: bool = False) -> str:
        return f"{value:+.1f}%" if signed else f"{value:.1f}%"

    @staticmethod
    def number(value: float) -> str:
        if abs(value) >= 1_000_000:
            return f"{value / 1_000_000:.1f}M"
        if abs(value) >= 1_000:
            return f"{value / 1_000:.1f}K"
        if float(value).is_integer():
            return str(int(value))
        return f"{value:.2f}"

    @staticmethod
    def roas_display(totals: PeriodTotals) -> str:
        """零花费有收入 → ∞, 都为零 → N/A"""
        if totals.ad_spend == 0:
            return "∞" if totals.revenue > 0 else "N/A"
        return f"{MetricsCalculator().derive(totals).roas:.1f}%"

    @staticmethod
    def tier_label(tier: PerformanceTier) -> str:
        return TIER_LABELS[PerformanceTier(tier)]

    @classmethod
    def value(cls, name: str, value: float) -> str:
        if name in MONEY_FIELDS:
            return cls.currency(value)
        if name in PERCENT_FIELDS:
            return cls.percent(value)
        return cls.number(value)


def _values(totals: PeriodTotals, metrics: DerivedMetrics) -> Dict[str, float]:
    values = {name: getattr(totals, name) for name in TOTAL_NAMES}
    values.update({name: getattr(metrics, name) for name in METRIC_NAMES})
    return values


class ExportEngine:
    """多格式报告导出引擎"""

    def __init__(self, formatter: MetricsFormatter = None):
        self.formatter = formatter or MetricsFormatter()

    # ── JSON导出 ──

    def metrics_to_json(self, totals: PeriodTotals, metrics: DerivedMetrics,
                        label: str = "") -> str:
        return json.dumps({
            "label": label,
            "totals": totals.to_dict(),
            "metrics": metrics.to_dict(),
            "roas_display": self.formatter.roas_display(totals),
            "exported_at": self._now(),
        }, indent=2, ensure_ascii=False)

    def comparison_to_json(self, comparison: ComparisonResult) -> str:
        report = comparison.to_dict()
        report["exported_at"] = self._now()
        return json.dumps(report, indent=2, ensure_ascii=False)

    def breakdown_to_json(self, rows: List[PeriodReport]) -> str:
        return json.dumps({"periods": [r.to_dict() for r in rows], "count": len(rows),
                           "exported_at": self._now()}, indent=2, ensure_ascii=False)

    # ── CSV导出 ──

    def comparison_to_csv(self, comparison: ComparisonResult) -> str:
        """每个指标一行: 当前 / 之前 / 变化%"""
        current = _values(comparison.base_totals, comparison.base_metrics)
        previous = _values(comparison.compare_totals, comparison.compare_metrics)
        rows = []
        for name in current:
            change = comparison.percentage_changes.get(name, 0.0)
            rows.append({
                "metric": name,
                "current": round(current[name], 4),
                "previous": round(previous[name], 4),
                "change_pct": round(change, 2),
                "trend": trend_indicator(change),
            })
        return self._dicts_to_csv(rows, ["metric", "current", "previous", "change_pct", "trend"])

    def breakdown_to_csv(self, rows: List[PeriodReport]) -> str:
        """周/月对比表"""
        columns = ["label", "start_date", "end_date", *TOTAL_NAMES, *METRIC_NAMES]
        columns += [f"{name}_change_pct" for name in ("ad_spend", "leads", "revenue", "roi")]
        data = []
        for report in rows:
            row: Dict[str, Any] = {
                "label": report.period.label,
                "start_date": report.period.start_date.isoformat(),
                "end_date": report.period.end_date.isoformat(),
            }
            row.update({k: round(v, 4) for k, v in _values(report.totals, report.metrics).items()})
            for name in ("ad_spend", "leads", "revenue", "roi"):
                change = report.changes.get(name)
                row[f"{name}_change_pct"] = "" if change is None else round(change, 2)
            data.append(row)
        return self._dicts_to_csv(data, columns)

    def history_to_csv(self, records: Iterable[StatRecord]) -> str:
        """每日记录导出 (可重新导入)"""
        columns = ["id", "date", "leads", "cases", "revenue", "ad_spend"]
        data = []
        for record in records:
            row = record.to_dict()
            for name, channel in record.channels.items():
                row[f"{name}_spend"] = channel.ad_spend
                row[f"{name}_leads"] = channel.leads
                for col in (f"{name}_spend", f"{name}_leads"):
                    if col not in columns:
                        columns.append(col)
            data.append(row)
        return self._dicts_to_csv(data, columns)

    def _dicts_to_csv(self, data: List[Dict], columns: List[str]) -> str:
        """字典列表转CSV字符串"""
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=columns, extrasaction='ignore')
        writer.writeheader()
        for row in data:
            writer.writerow(row)
        return output.getvalue()

    # ── Markdown导出 ──

    def comparison_to_markdown(self, comparison: ComparisonResult, title: str = "") -> str:
        """对比报告Markdown"""
        base, prev = comparison.base_period, comparison.compare_period
        current = _values(comparison.base_totals, comparison.base_metrics)
        previous = _values(comparison.compare_totals, comparison.compare_metrics)
        lines = [
            f"# {title or 'Period Comparison'}",
            f"Generated: {self._now()}",
            f"{base.label} ({base.start_date} → {base.end_date}) vs "
            f"{prev.label} ({prev.start_date} → {prev.end_date})\n",
            f"Performance: {self.formatter.tier_label(comparison.base_metrics.tier)}\n",
            "| Metric | Current | Previous | Change |",
            "|--------|---------|----------|--------|",
        ]
        for name in current:
            change = comparison.percentage_changes.get(name, 0.0)
            lines.append(
                f"| {FIELD_LABELS[name]} | {self.formatter.value(name, current[name])} | "
                f"{self.formatter.value(name, previous[name])} | "
                f"{TREND_ARROWS[trend_indicator(change)]} {self.formatter.percent(change, signed=True)} |"
            )
        lines.append(
            f"\nROAS: {self.formatter.roas_display(comparison.base_totals)} "
            f"(previous {self.formatter.roas_display(comparison.compare_totals)})"
        )
        return "\n".join(lines)

    def breakdown_to_markdown(self, rows: List[PeriodReport], title: str = "") -> str:
        lines = [
            f"# {title or 'Period Breakdown'}",
            f"Generated: {self._now()}\n",
            "| Period | Spend | Leads | Cases | Revenue | ROI | Δ Leads |",
            "|--------|-------|-------|-------|---------|-----|---------|",
        ]
        f = self.formatter
        for report in rows:
            change = report.changes.get("leads")
            delta = "—" if change is None else f.percent(change, signed=True)
            lines.append(
                f"| {report.period.label} | {f.currency_compact(report.totals.ad_spend)} | "
                f"{f.number(report.totals.leads)} | {f.number(report.totals.cases)} | "
                f"{f.currency_compact(report.totals.revenue)} | {f.percent(report.metrics.roi)} | "
                f"{delta} |"
            )
        return "\n".join(lines)

    # ── 文件导出 ──

    def export_to_file(self, content: str, filepath: str) -> bool:
        """写入文件"""
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(content)
            logger.info(f"Exported to {filepath}")
            return True
        except OSError as e:
            logger.error(f"Export failed: {e}")
            return False

    def _now(self) -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
