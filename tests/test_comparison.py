"""Tests for comparison.py — 周期对比"""
from datetime import date

import pytest

from casemetrics.aggregator import Aggregator, PeriodTotals
from casemetrics.comparison import (
    PeriodComparator, TrendDirection, is_improvement, percentage_change,
    trend_direction, trend_indicator,
)
from casemetrics.metrics import DerivedMetrics, MetricsCalculator
from casemetrics.periods import Period
from conftest import make_record

TODAY = date(2024, 3, 13)


def day_period(day):
    d = date.fromisoformat(day)
    return Period(day, d, d)


@pytest.fixture
def comparator():
    return PeriodComparator()


class TestPercentageChange:
    @pytest.mark.parametrize("current,previous,expected", [
        (0, 0, 0),
        (5, 0, 100),
        (0, 5, -100),
        (150, 100, 50),
        (50, 100, -50),
    ])
    def test_boundaries(self, current, previous, expected):
        assert percentage_change(current, previous) == expected

    def test_non_finite(self):
        assert percentage_change(float("inf"), 10) == 0
        assert percentage_change(10, float("nan")) == 0


class TestTrends:
    def test_direction(self):
        assert trend_direction(3) == TrendDirection.UP
        assert trend_direction(-0.1) == TrendDirection.DOWN
        assert trend_direction(0) == TrendDirection.NEUTRAL

    def test_indicator_deadband(self):
        assert trend_indicator(4.9) == "flat"
        assert trend_indicator(5.1) == "up"
        assert trend_indicator(-6) == "down"
        assert trend_indicator(2, deadband=1) == "up"

    def test_cost_metrics_improve_downwards(self):
        assert is_improvement("cost_per_lead", -10)
        assert not is_improvement("cost_per_lead", 10)
        assert is_improvement("revenue", 10)


class TestScenarios:
    def test_single_day_metrics(self):
        records = [make_record("a", "2024-06-01", leads=10, cases=2, revenue=2000, ad_spend=500)]
        totals = Aggregator().aggregate(records, day_period("2024-06-01"))
        assert totals == PeriodTotals(ad_spend=500, leads=10, cases=2, revenue=2000)
        m = MetricsCalculator().derive(totals)
        assert m.roi == 400
        assert m.cost_per_lead == 50
        assert m.cost_per_acquisition == 250
        assert m.conversion_rate == 20
        assert m.profit == 1500
        assert m.earnings_per_lead == 150

    def test_no_overlap_is_all_zero(self):
        records = [make_record("a", "2024-06-01", leads=10, cases=2, revenue=2000, ad_spend=500)]
        totals = Aggregator().aggregate(records, day_period("2024-06-02"))
        assert totals.is_empty
        assert MetricsCalculator().derive(totals) == DerivedMetrics()

    def test_spend_change_across_days(self, comparator):
        records = [make_record("a", "2024-06-01", ad_spend=300),
                   make_record("b", "2024-06-02", ad_spend=200)]
        result = comparator.compare(records, day_period("2024-06-01"), day_period("2024-06-02"))
        assert result.percentage_changes["ad_spend"] == 50

    def test_zero_spend_roi_is_zero(self):
        records = [make_record("a", "2024-06-01", leads=5, revenue=1000, ad_spend=0)]
        totals = Aggregator().aggregate(records, day_period("2024-06-01"))
        assert MetricsCalculator().derive(totals).roi == 0


class TestCompare:
    def test_changes_cover_totals_and_metrics(self, comparator, sample_records):
        result = comparator.compare(
            sample_records,
            Period("Feb", date(2024, 2, 1), date(2024, 2, 29)),
            Period("Jan", date(2024, 1, 1), date(2024, 1, 31)),
        )
        assert result.base_totals.leads == 8
        assert result.compare_totals.leads == 15
        assert result.percentage_changes["leads"] == pytest.approx((8 - 15) / 15 * 100)
        assert "roi" in result.percentage_changes
        assert "leads" in result.regressions

    def test_empty_previous_period(self, comparator, sample_records):
        result = comparator.compare(
            sample_records,
            Period("Jan", date(2024, 1, 1), date(2024, 1, 31)),
            Period("Dec", date(2023, 12, 1), date(2023, 12, 31)),
        )
        assert result.percentage_changes["revenue"] == 100
        assert "revenue" in result.improvements
        assert "ad_spend" in result.regressions

    def test_to_dict(self, comparator, sample_records, january):
        d = comparator.compare(sample_records, january, january).to_dict()
        assert d["percentage_changes"]["leads"] == 0
        assert d["trends"]["leads"] == "neutral"
        assert d["base_period"]["start_date"] == "2024-01-01"

    def test_compare_presets(self, comparator):
        records = [make_record("a", "2024-03-12", leads=6),
                   make_record("b", "2024-03-05", leads=3)]
        result = comparator.compare_presets(records, "week_over_week", today=TODAY)
        assert result.base_totals.leads == 6
        assert result.compare_totals.leads == 3
        assert result.percentage_changes["leads"] == 100

    def test_unknown_preset_pair(self, comparator):
        with pytest.raises(ValueError):
            comparator.compare_presets([], "decade_over_decade", today=TODAY)


class TestBreakdowns:
    def test_weekly(self, comparator):
        records = [
            make_record("w0", "2024-03-11", leads=4, ad_spend=100),
            make_record("w1", "2024-03-06", leads=2, ad_spend=100),
            make_record("w3", "2024-02-20", leads=1, ad_spend=50),
        ]
        rows = comparator.weekly_breakdown(records, today=TODAY)
        assert [r.period.label for r in rows] == ["This Week", "Last Week", "2 Weeks Ago", "3 Weeks Ago"]
        assert [r.totals.leads for r in rows] == [4, 2, 0, 1]
        assert rows[0].changes["leads"] == 100
        assert rows[2].changes["leads"] == -100
        assert rows[-1].changes == {}

    def test_monthly(self, comparator, sample_records):
        rows = comparator.monthly_breakdown(sample_records, today=date(2024, 3, 5))
        assert [r.period.label for r in rows] == ["This Month", "Last Month", "2 Months Ago"]
        assert rows[1].totals.leads == 8
        assert rows[2].totals.leads == 15
        assert rows[0].changes["leads"] == -100
        assert rows[2].changes == {}

    def test_report_to_dict(self, comparator, sample_records):
        rows = comparator.monthly_breakdown(sample_records, months=2, today=date(2024, 2, 10))
        d = rows[0].to_dict()
        assert d["period"]["label"] == "This Month"
        assert d["totals"]["leads"] == 8
