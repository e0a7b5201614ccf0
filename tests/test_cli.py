"""
Tests for CLI
"""

import json
from unittest.mock import patch

import pytest

from casemetrics.cli import build_parser, main
from casemetrics.store import StatsStore


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "cli.db")
    store = StatsStore(path)
    store.create_campaign("Truck Accidents", campaign_id="c1", ad_spend=1000)
    store.add_stat("c1", "2024-01-05", leads=10, cases=2, revenue=5000, ad_spend=1000)
    store.add_stat("c1", "2024-01-20", leads=5, cases=1, revenue=2000, ad_spend=500)
    store.close()
    return path


def run(db_path, *argv):
    main(["--db", db_path, *argv])


class TestParser:
    def test_campaign_add(self):
        args = build_parser().parse_args(["campaign", "add", "--name", "Dog Bites"])
        assert args.command == "campaign"
        assert args.action == "add"
        assert args.name == "Dog Bites"

    def test_add_stat_channels(self):
        args = build_parser().parse_args([
            "add-stat", "c1", "--date", "2024-01-01", "--spend", "100",
            "--channel", "meta:60:2", "--channel", "youtube:40:1",
        ])
        assert args.spend == 100.0
        assert args.channel == ["meta:60:2", "youtube:40:1"]

    def test_compare_defaults(self):
        args = build_parser().parse_args(["compare", "c1"])
        assert args.preset == "week_over_week"
        assert args.format == "markdown"

    def test_compare_explicit_ranges(self):
        args = build_parser().parse_args([
            "compare", "c1", "--base", "2024-02-01", "2024-02-29",
            "--against", "2024-01-01", "2024-01-31",
        ])
        assert args.base == ["2024-02-01", "2024-02-29"]

    def test_invalid_preset(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["metrics", "c1", "--preset", "forever"])

    def test_leaderboard_metric_choices(self):
        args = build_parser().parse_args(["leaderboard", "--metric", "cost_per_lead"])
        assert args.metric == "cost_per_lead"

    def test_verbose_and_db(self):
        args = build_parser().parse_args(["--db", "x.db", "-v", "campaign", "list"])
        assert args.db == "x.db"
        assert args.verbose is True


class TestCommands:
    def test_campaign_add_and_list(self, tmp_path, capsys):
        path = str(tmp_path / "new.db")
        run(path, "campaign", "add", "--name", "Dog Bites", "--id", "d1")
        run(path, "campaign", "list")
        out = capsys.readouterr().out
        assert "Campaign created: Dog Bites (d1)" in out
        assert "Dog Bites" in out.splitlines()[-1]

    def test_add_stat(self, db_path, capsys):
        run(db_path, "add-stat", "c1", "--date", "2024-01-25", "--leads", "3",
            "--spend", "90", "--channel", "meta:90:3")
        assert "Stat recorded: 2024-01-25" in capsys.readouterr().out
        history = StatsStore(db_path).get_history("c1")
        assert len(history) == 3

    def test_add_stat_bad_channel(self, db_path, capsys):
        run(db_path, "add-stat", "c1", "--date", "2024-01-25", "--channel", "tiktok:1:1")
        assert "Invalid channel" in capsys.readouterr().out

    def test_add_stat_unknown_campaign(self, db_path, capsys):
        run(db_path, "add-stat", "ghost", "--date", "2024-01-25")
        assert "Campaign not found" in capsys.readouterr().out

    def test_import(self, db_path, tmp_path, capsys):
        csv_path = tmp_path / "stats.csv"
        csv_path.write_text(
            "date,leads,cases,revenue,ad_spend\n"
            "2024-01-26,4,1,1500,200\n"
            "2024-01-27,2,0,0,100\n",
            encoding="utf-8",
        )
        run(db_path, "import", "c1", str(csv_path))
        assert "Imported 2 rows" in capsys.readouterr().out

    def test_metrics_range(self, db_path, capsys):
        run(db_path, "metrics", "c1", "--start", "2024-01-01", "--end", "2024-01-31")
        out = capsys.readouterr().out
        assert "$1,500.00" in out
        assert "466.7%" in out

    def test_metrics_json(self, db_path, capsys):
        run(db_path, "metrics", "c1", "--start", "2024-01-01", "--end", "2024-01-31", "--json")
        data = json.loads(capsys.readouterr().out)
        assert data["totals"]["leads"] == 15

    def test_metrics_snapshot(self, db_path, capsys):
        run(db_path, "metrics", "c1", "--snapshot")
        out = capsys.readouterr().out
        assert "snapshot" in out
        assert "N/A" not in out

    def test_metrics_bad_date(self, db_path, capsys):
        run(db_path, "metrics", "c1", "--start", "2024-01-01", "--end", "later")
        assert "Invalid date range" in capsys.readouterr().out

    def test_metrics_start_without_end(self, db_path, capsys):
        run(db_path, "metrics", "c1", "--start", "2024-01-01")
        out = capsys.readouterr().out
        assert "--start and --end must be given together" in out
        assert "📊" not in out

    def test_metrics_reports_excluded_records(self, db_path, capsys):
        store = StatsStore(db_path)
        store.add_stat("c1", "2024-01-22", leads=2.5, ad_spend=10, record_id="frac")
        store.close()
        run(db_path, "metrics", "c1", "--start", "2024-01-01", "--end", "2024-01-31")
        out = capsys.readouterr().out
        assert "$1,500.00" in out
        assert "Excluded 1 malformed records: frac" in out

    def test_compare_json(self, db_path, capsys):
        run(db_path, "compare", "c1", "--base", "2024-01-16", "2024-01-31",
            "--against", "2024-01-01", "2024-01-15", "--format", "json")
        data = json.loads(capsys.readouterr().out)
        assert data["percentage_changes"]["ad_spend"] == -50

    def test_weekly(self, db_path, capsys):
        run(db_path, "weekly", "c1", "--weeks", "2")
        out = capsys.readouterr().out
        assert "This Week" in out
        assert "Last Week" in out

    def test_averages(self, db_path, capsys):
        run(db_path, "averages", "c1", "--start", "2024-01-01", "--end", "2024-01-31")
        out = capsys.readouterr().out
        assert "over 2 days" in out
        assert "$750.00" in out

    def test_advise(self, db_path, capsys):
        run(db_path, "advise", "c1", "--start", "2024-01-01", "--end", "2024-01-31", "--json")
        data = json.loads(capsys.readouterr().out)
        assert data["recommendation"] == "increase"
        assert data["optimal_spend"] == 1125

    def test_advise_no_data(self, db_path, capsys):
        run(db_path, "advise", "c1", "--start", "2023-01-01", "--end", "2023-01-31")
        assert "No spend data" in capsys.readouterr().out

    def test_leaderboard(self, db_path, capsys):
        run(db_path, "leaderboard", "--metric", "roi", "--start", "2024-01-01", "--end", "2024-01-31")
        out = capsys.readouterr().out
        assert "#1 Truck Accidents" in out

    def test_export_history_to_file(self, db_path, tmp_path, capsys):
        out_path = tmp_path / "history.csv"
        run(db_path, "export", "c1", "--what", "history", "-o", str(out_path))
        assert "Exported to" in capsys.readouterr().out
        assert "2024-01-05" in out_path.read_text(encoding="utf-8")

    def test_alert_requires_token(self, db_path, capsys, monkeypatch):
        monkeypatch.delenv("BOT_TOKEN", raising=False)
        run(db_path, "alert", "c1")
        assert "BOT_TOKEN is not set" in capsys.readouterr().out

    @patch("casemetrics.webhook.TelegramWebhook.send_message", return_value={"ok": True})
    def test_alert_sends(self, mock_send, db_path, capsys, monkeypatch):
        monkeypatch.setenv("BOT_TOKEN", "fake")
        monkeypatch.setenv("TG_CHAT_ID", "123")
        run(db_path, "alert", "c1")
        assert "Alert sent" in capsys.readouterr().out
        assert mock_send.call_count == 2

    def test_no_command_prints_help(self, capsys):
        main([])
        assert "usage" in capsys.readouterr().out.lower()
