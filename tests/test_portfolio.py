"""Tests for portfolio.py — 多活动汇总与排行"""
import pytest

from casemetrics.portfolio import PortfolioAnalyzer
from casemetrics.records import Campaign, ManualStats
from conftest import make_record


@pytest.fixture
def campaigns():
    return [
        Campaign(id="a", name="Alpha",
                 stats_history=[make_record("a1", "2024-01-03", leads=10, cases=2,
                                            revenue=8000, ad_spend=1000, campaign_id="a")],
                 manual_stats=ManualStats(leads=10, cases=1, revenue=1000), ad_spend=1000),
        Campaign(id="b", name="Bravo",
                 stats_history=[make_record("b1", "2024-01-04", leads=20, cases=3,
                                            revenue=5000, ad_spend=2000, campaign_id="b")],
                 manual_stats=ManualStats(leads=5, cases=1, revenue=9000), ad_spend=2000),
        Campaign(id="c", name="Charlie",
                 stats_history=[make_record("c1", "2024-01-05", revenue=500,
                                            ad_spend=300, campaign_id="c")]),
    ]


@pytest.fixture
def analyzer():
    return PortfolioAnalyzer()


class TestSummarize:
    def test_history_mode(self, analyzer, campaigns, january):
        summary = analyzer.summarize(campaigns, january)
        assert summary.campaign_count == 3
        assert summary.totals.ad_spend == 3300
        assert summary.totals.leads == 30
        assert summary.metrics.profit == 13500 - 3300
        assert summary.tier_counts == {"excellent": 1, "good": 1, "needs_attention": 1}

    def test_snapshot_mode(self, analyzer, campaigns):
        summary = analyzer.summarize(campaigns)
        assert summary.totals.revenue == 10000
        assert summary.totals.leads == 15

    def test_empty(self, analyzer, january):
        summary = analyzer.summarize([], january)
        assert summary.campaign_count == 0
        assert summary.totals.is_empty
        assert summary.to_dict()["tier_counts"]["excellent"] == 0


class TestLeaderboard:
    def test_profit_descending(self, analyzer, campaigns, january):
        board = analyzer.leaderboard(campaigns, "profit", january)
        assert [e.campaign_id for e in board] == ["a", "b", "c"]
        assert board[0].rank == 1
        assert board[0].value == 7000

    def test_cost_per_lead_ascending_skips_no_leads(self, analyzer, campaigns, january):
        board = analyzer.leaderboard(campaigns, "cost_per_lead", january)
        assert [e.campaign_id for e in board] == ["a", "b"]
        assert board[0].value == 100

    def test_top_n(self, analyzer, campaigns, january):
        assert len(analyzer.leaderboard(campaigns, "roi", january, top_n=1)) == 1

    def test_unknown_metric(self, analyzer, campaigns):
        with pytest.raises(ValueError):
            analyzer.leaderboard(campaigns, "vibes")

    def test_entry_to_dict(self, analyzer, campaigns, january):
        d = analyzer.leaderboard(campaigns, "roi", january)[0].to_dict()
        assert d["campaign_name"] == "Alpha"
        assert d["tier"] == "excellent"
