"""
test_export.py - 报告导出测试
"""

import csv
import io
import json
from datetime import date

import pytest

from casemetrics.aggregator import PeriodTotals
from casemetrics.comparison import PeriodComparator
from casemetrics.export import ExportEngine, MetricsFormatter
from casemetrics.metrics import MetricsCalculator, PerformanceTier
from casemetrics.periods import Period


@pytest.fixture
def engine():
    return ExportEngine()


@pytest.fixture
def comparison(sample_records):
    return PeriodComparator().compare(
        sample_records,
        Period("February", date(2024, 2, 1), date(2024, 2, 29)),
        Period("January", date(2024, 1, 1), date(2024, 1, 31)),
    )


class TestMetricsFormatter:
    def test_currency(self):
        assert MetricsFormatter.currency(1234.5) == "$1,234.50"
        assert MetricsFormatter.currency(-20) == "-$20.00"

    def test_currency_compact(self):
        assert MetricsFormatter.currency_compact(2_500_000) == "$2.5M"
        assert MetricsFormatter.currency_compact(1500) == "$1.5K"
        assert MetricsFormatter.currency_compact(950) == "$950"

    def test_percent(self):
        assert MetricsFormatter.percent(12.345) == "12.3%"
        assert MetricsFormatter.percent(5, signed=True) == "+5.0%"
        assert MetricsFormatter.percent(-5, signed=True) == "-5.0%"

    def test_number(self):
        assert MetricsFormatter.number(1200) == "1.2K"
        assert MetricsFormatter.number(3_400_000) == "3.4M"
        assert MetricsFormatter.number(42) == "42"
        assert MetricsFormatter.number(7.5) == "7.50"

    def test_roas_display(self):
        assert MetricsFormatter.roas_display(PeriodTotals(revenue=1000)) == "∞"
        assert MetricsFormatter.roas_display(PeriodTotals()) == "N/A"
        assert MetricsFormatter.roas_display(PeriodTotals(ad_spend=500, revenue=2000)) == "400.0%"

    def test_roas_display_does_not_change_metric(self):
        totals = PeriodTotals(ad_spend=0, revenue=1000, leads=5)
        assert MetricsFormatter.roas_display(totals) == "∞"
        assert MetricsCalculator().derive(totals).roas == 0

    def test_tier_label(self):
        assert "Excellent" in MetricsFormatter.tier_label(PerformanceTier.EXCELLENT)
        assert "Needs Attention" in MetricsFormatter.tier_label("needs_attention")


class TestJsonExport:
    def test_metrics_to_json(self, engine):
        totals = PeriodTotals(ad_spend=500, leads=10, cases=2, revenue=2000)
        data = json.loads(engine.metrics_to_json(totals, MetricsCalculator().derive(totals), "June"))
        assert data["label"] == "June"
        assert data["metrics"]["roi"] == 400
        assert data["roas_display"] == "400.0%"
        assert "exported_at" in data

    def test_comparison_to_json(self, engine, comparison):
        data = json.loads(engine.comparison_to_json(comparison))
        assert data["base_totals"]["leads"] == 8
        assert data["compare_totals"]["leads"] == 15
        assert data["trends"]["leads"] == "down"


class TestCsvExport:
    def test_comparison_to_csv(self, engine, comparison):
        rows = list(csv.DictReader(io.StringIO(engine.comparison_to_csv(comparison))))
        by_metric = {r["metric"]: r for r in rows}
        assert float(by_metric["leads"]["current"]) == 8
        assert float(by_metric["leads"]["previous"]) == 15
        assert by_metric["leads"]["trend"] == "down"
        assert "roi" in by_metric

    def test_breakdown_to_csv(self, engine, sample_records):
        report = PeriodComparator().monthly_breakdown(sample_records, today=date(2024, 2, 15))
        rows = list(csv.DictReader(io.StringIO(engine.breakdown_to_csv(report))))
        assert [r["label"] for r in rows] == ["This Month", "Last Month", "2 Months Ago"]
        assert rows[-1]["leads_change_pct"] == ""
        assert float(rows[1]["leads_change_pct"]) == 100

    def test_history_to_csv(self, engine, channel_record):
        rows = list(csv.DictReader(io.StringIO(engine.history_to_csv([channel_record]))))
        assert rows[0]["date"] == "2024-01-10"
        assert rows[0]["youtube_spend"] == "700"
        assert rows[0]["meta_leads"] == "5"


class TestMarkdownExport:
    def test_comparison_to_markdown(self, engine, comparison):
        md = engine.comparison_to_markdown(comparison, title="Truck Accidents")
        assert md.startswith("# Truck Accidents")
        assert "| Leads | 8 | 15 |" in md
        assert "ROAS:" in md

    def test_breakdown_to_markdown(self, engine, sample_records):
        report = PeriodComparator().weekly_breakdown(sample_records, today=date(2024, 1, 10))
        md = engine.breakdown_to_markdown(report)
        assert "This Week" in md
        assert "—" in md


class TestExportToFile:
    def test_write(self, engine, tmp_path):
        path = tmp_path / "out.csv"
        assert engine.export_to_file("a,b\n", str(path)) is True
        assert path.read_text(encoding="utf-8") == "a,b\n"

    def test_unwritable_path(self, engine, tmp_path):
        assert engine.export_to_file("x", str(tmp_path / "missing" / "out.csv")) is False
