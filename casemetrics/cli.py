"""
Case Metrics CLI v1.0
命令行工具 - 活动数据录入/导入/指标/周期对比/预算建议/排行/导出/推送
"""

import argparse
import csv
import json
import logging
import os
from typing import List, Optional

from casemetrics.aggregator import AggregationMode, Aggregator
from casemetrics.comparison import PeriodComparator, trend_indicator
from casemetrics.export import TREND_ARROWS, ExportEngine, MetricsFormatter
from casemetrics.metrics import MetricsCalculator
from casemetrics.periods import PRESET_PAIRS, Period, PeriodPreset, preset_period
from casemetrics.portfolio import LEADERBOARD_METRICS, PortfolioAnalyzer
from casemetrics.records import Campaign, ChannelStats, KNOWN_CHANNELS, ManualStats
from casemetrics.spend_advisor import (
    DiminishingReturnsStrategy, HistoryRegressionStrategy, SpendAdvisor,
)
from casemetrics.store import StatsStore
from casemetrics.webhook import TelegramWebhook

logger = logging.getLogger(__name__)

fmt = MetricsFormatter()


def get_store(path: str = None) -> StatsStore:
    return StatsStore(path or os.environ.get("DB_PATH", "casemetrics.db"))


def _load_campaign(store: StatsStore, campaign_id: str) -> Optional[Campaign]:
    campaign = store.get_campaign(campaign_id)
    if campaign is None:
        print(f"❌ Campaign not found: {campaign_id}")
    return campaign


def _resolve_period(args, default: Optional[str] = None) -> Optional[Period]:
    """--start/--end 优先, 其次 --preset"""
    start, end = getattr(args, "start", None), getattr(args, "end", None)
    if start and end:
        return Period.from_strings(start, end)
    if start or end:
        raise ValueError("--start and --end must be given together")
    preset = getattr(args, "preset", None) or default
    if preset:
        return preset_period(preset)
    return None


def _print_metrics(totals, metrics):
    print(f"  Spend:        {fmt.currency(totals.ad_spend)}")
    print(f"  Leads:        {fmt.number(totals.leads)}")
    print(f"  Cases:        {fmt.number(totals.cases)}")
    print(f"  Revenue:      {fmt.currency(totals.revenue)}")
    print(f"  Profit:       {fmt.currency(metrics.profit)}")
    print(f"  ROI:          {fmt.percent(metrics.roi)}")
    print(f"  ROAS:         {fmt.roas_display(totals)}")
    print(f"  Cost / Lead:  {fmt.currency(metrics.cost_per_lead)}")
    print(f"  Cost / Case:  {fmt.currency(metrics.cost_per_acquisition)}")
    print(f"  EPL:          {fmt.currency(metrics.earnings_per_lead)}")
    print(f"  Conversion:   {fmt.percent(metrics.conversion_rate)}")
    print(f"  Performance:  {fmt.tier_label(metrics.tier)}")


# ── 子命令 ──

def cmd_campaign(args):
    """活动管理"""
    store = get_store(args.db)
    if args.action == "add":
        if not args.name:
            print("❌ --name is required")
            return
        manual = ManualStats(leads=args.leads, cases=args.cases, revenue=args.revenue)
        campaign_id = store.create_campaign(args.name, campaign_id=args.id,
                                            ad_spend=args.ad_spend, manual_stats=manual)
        print(f"✅ Campaign created: {args.name} ({campaign_id})")

    elif args.action == "list":
        campaigns = store.list_campaigns()
        if not campaigns:
            print("No campaigns yet.")
            return
        print(f"\n📋 Campaigns ({len(campaigns)}):")
        for c in campaigns:
            print(f"  {c.id:10s} {c.name:30s} {len(c.stats_history)} records")


def _parse_channels(values: Optional[List[str]]):
    """name:spend:leads"""
    channels = {}
    for value in values or []:
        parts = value.split(":")
        if len(parts) != 3 or parts[0] not in KNOWN_CHANNELS:
            raise ValueError(f"Invalid channel '{value}' (expected name:spend:leads, "
                             f"name in {', '.join(KNOWN_CHANNELS)})")
        channels[parts[0]] = ChannelStats(ad_spend=float(parts[1]), leads=int(parts[2]))
    return channels


def cmd_add_stat(args):
    """录入每日数据"""
    store = get_store(args.db)
    try:
        channels = _parse_channels(args.channel)
    except ValueError as e:
        print(f"❌ {e}")
        return
    record = store.add_stat(args.campaign, date=args.date, leads=args.leads,
                            cases=args.cases, revenue=args.revenue,
                            ad_spend=args.spend, channels=channels)
    if record is None:
        print(f"❌ Campaign not found: {args.campaign}")
        return
    print(f"✅ Stat recorded: {record.date} ({record.id})")


def cmd_import(args):
    """CSV导入"""
    store = get_store(args.db)
    if store.get_campaign(args.campaign) is None:
        print(f"❌ Campaign not found: {args.campaign}")
        return
    with open(args.file, "r", encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    try:
        count = store.import_rows(args.campaign, rows)
    except ValueError as e:
        print(f"❌ Import failed: {e}")
        return
    print(f"✅ Imported {count} rows into {args.campaign}")


def cmd_metrics(args):
    """活动指标"""
    store = get_store(args.db)
    campaign = _load_campaign(store, args.campaign)
    if campaign is None:
        return

    aggregator = Aggregator()
    excluded = []
    if args.snapshot:
        totals = aggregator.aggregate_campaign(campaign, AggregationMode.SNAPSHOT)
        label = "snapshot"
    else:
        period = _resolve_period(args, default="last_30_days")
        result = aggregator.aggregate_with_report(campaign.stats_history, period)
        totals, excluded = result.totals, result.excluded
        label = f"{period.label} ({period.start_date} → {period.end_date})"

    metrics = MetricsCalculator().derive(totals)

    if args.json:
        print(ExportEngine().metrics_to_json(totals, metrics, label=label))
        return

    print(f"\n📊 {campaign.name}: {label}")
    _print_metrics(totals, metrics)

    if excluded:
        print(f"\n⚠️ Excluded {len(excluded)} malformed records: {', '.join(excluded)}")


def cmd_compare(args):
    """周期对比"""
    store = get_store(args.db)
    campaign = _load_campaign(store, args.campaign)
    if campaign is None:
        return

    comparator = PeriodComparator()
    if args.base and args.against:
        result = comparator.compare(
            campaign.stats_history,
            Period.from_strings(*args.base, label="Base"),
            Period.from_strings(*args.against, label="Compare"),
        )
    else:
        result = comparator.compare_presets(campaign.stats_history, args.preset)

    engine = ExportEngine()
    if args.format == "json":
        print(engine.comparison_to_json(result))
    elif args.format == "csv":
        print(engine.comparison_to_csv(result), end="")
    else:
        print(engine.comparison_to_markdown(result, title=campaign.name))


def _print_breakdown(campaign: Campaign, rows, title: str):
    print(f"\n📅 {campaign.name}: {title}")
    for report in rows:
        change = report.changes.get("leads")
        delta = ""
        if change is not None:
            delta = f"  {TREND_ARROWS[trend_indicator(change)]} {fmt.percent(change, signed=True)}"
        print(f"  {report.period.label:14s} {fmt.currency_compact(report.totals.ad_spend):>9s} "
              f"{report.totals.leads:>6} leads {report.totals.cases:>4} cases "
              f"ROI {fmt.percent(report.metrics.roi):>8s}{delta}")


def cmd_weekly(args):
    """周对比表"""
    store = get_store(args.db)
    campaign = _load_campaign(store, args.campaign)
    if campaign is None:
        return
    rows = PeriodComparator().weekly_breakdown(campaign.stats_history, weeks=args.weeks)
    _print_breakdown(campaign, rows, "weekly breakdown")


def cmd_monthly(args):
    """月对比表"""
    store = get_store(args.db)
    campaign = _load_campaign(store, args.campaign)
    if campaign is None:
        return
    rows = PeriodComparator().monthly_breakdown(campaign.stats_history, months=args.months)
    _print_breakdown(campaign, rows, "monthly breakdown")


def cmd_averages(args):
    """日均值"""
    store = get_store(args.db)
    campaign = _load_campaign(store, args.campaign)
    if campaign is None:
        return
    period = _resolve_period(args, default="last_30_days")
    averages = Aggregator().daily_averages(campaign.stats_history, period,
                                           exclude_today=not args.include_today)
    suffix = " (today excluded)" if averages.today_excluded else ""
    print(f"\n📈 {campaign.name}: daily averages over {averages.days} days{suffix}")
    _print_metrics(averages.totals, averages.metrics)


def cmd_advise(args):
    """预算建议"""
    store = get_store(args.db)
    campaign = _load_campaign(store, args.campaign)
    if campaign is None:
        return

    strategies = [DiminishingReturnsStrategy(alpha=args.alpha)]
    if args.regression:
        strategies.insert(0, HistoryRegressionStrategy())
    advisor = SpendAdvisor(strategies=strategies)

    period = _resolve_period(args, default="last_30_days")
    recommendation = advisor.recommend_for(campaign.stats_history, period)
    if recommendation is None:
        print(f"No spend data for {campaign.name} in {period.label}.")
        return

    if args.json:
        print(json.dumps(recommendation.to_dict(), indent=2, ensure_ascii=False))
        return

    print(f"\n💰 {campaign.name}: budget recommendation ({recommendation.analysis_type})")
    print(f"  {recommendation.message}")
    print(f"  Optimal spend:   {fmt.currency(recommendation.optimal_spend)}/day")
    print(f"  Projected leads: {recommendation.projected_lead_increase:+.1f}/day")
    print(f"  Confidence:      {recommendation.confidence:.0f}%")
    print(f"  Urgency:         {recommendation.urgency.value}")


def cmd_leaderboard(args):
    """活动排行"""
    store = get_store(args.db)
    campaigns = store.list_campaigns()
    period = _resolve_period(args)
    analyzer = PortfolioAnalyzer()

    summary = analyzer.summarize(campaigns, period)
    print(f"\n🏆 {args.metric} leaderboard ({summary.campaign_count} campaigns, "
          f"total profit {fmt.currency(summary.metrics.profit)})")
    for entry in analyzer.leaderboard(campaigns, args.metric, period, top_n=args.limit):
        value = fmt.value(entry.metric, entry.value)
        print(f"  #{entry.rank} {entry.campaign_name:30s} {value:>12s}  {fmt.tier_label(entry.tier)}")


def cmd_export(args):
    """导出报告"""
    store = get_store(args.db)
    campaign = _load_campaign(store, args.campaign)
    if campaign is None:
        return

    engine = ExportEngine()
    comparator = PeriodComparator()
    history = campaign.stats_history

    if args.what == "history":
        content = engine.history_to_csv(history)
    elif args.what == "comparison":
        result = comparator.compare_presets(history, args.preset)
        if args.format == "json":
            content = engine.comparison_to_json(result)
        elif args.format == "markdown":
            content = engine.comparison_to_markdown(result, title=campaign.name)
        else:
            content = engine.comparison_to_csv(result)
    else:
        if args.what == "weekly":
            rows = comparator.weekly_breakdown(history)
        else:
            rows = comparator.monthly_breakdown(history)
        if args.format == "json":
            content = engine.breakdown_to_json(rows)
        elif args.format == "markdown":
            content = engine.breakdown_to_markdown(rows, title=campaign.name)
        else:
            content = engine.breakdown_to_csv(rows)

    if args.output:
        if engine.export_to_file(content, args.output):
            print(f"✅ Exported to {args.output}")
        else:
            print(f"❌ Export failed: {args.output}")
    else:
        print(content)


def cmd_alert(args):
    """推送活动表现到Telegram"""
    store = get_store(args.db)
    campaign = _load_campaign(store, args.campaign)
    if campaign is None:
        return

    webhook = TelegramWebhook()
    if not webhook.is_configured:
        print("❌ BOT_TOKEN is not set.")
        return

    comparison = PeriodComparator().compare_presets(campaign.stats_history, args.preset)
    sent = webhook.notify_performance(campaign.name, comparison.base_metrics)
    sent = webhook.notify_comparison(campaign.name, comparison) and sent
    print("✅ Alert sent." if sent else "❌ Alert failed.")


# ── 主入口 ──

def _add_period_args(parser: argparse.ArgumentParser):
    parser.add_argument("--start", help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="End date (YYYY-MM-DD)")
    parser.add_argument("--preset", choices=[p.value for p in PeriodPreset],
                        help="Preset period")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="casemetrics",
        description="Case Metrics CLI - campaign performance analytics"
    )
    parser.add_argument("--db", default=None, help="Database path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # campaign
    p_camp = sub.add_parser("campaign", help="Manage campaigns")
    p_camp.add_argument("action", choices=["add", "list"])
    p_camp.add_argument("--name", help="Campaign name")
    p_camp.add_argument("--id", help="Campaign ID")
    p_camp.add_argument("--ad-spend", type=float, default=0.0, help="Snapshot ad spend")
    p_camp.add_argument("--leads", type=int, default=0, help="Snapshot leads")
    p_camp.add_argument("--cases", type=int, default=0, help="Snapshot cases")
    p_camp.add_argument("--revenue", type=float, default=0.0, help="Snapshot revenue")

    # add-stat
    p_stat = sub.add_parser("add-stat", help="Record daily stats")
    p_stat.add_argument("campaign", help="Campaign ID")
    p_stat.add_argument("--date", required=True, help="Date (YYYY-MM-DD)")
    p_stat.add_argument("--leads", type=int, default=0)
    p_stat.add_argument("--cases", type=int, default=0)
    p_stat.add_argument("--revenue", type=float, default=0.0)
    p_stat.add_argument("--spend", type=float, default=0.0)
    p_stat.add_argument("--channel", action="append", help="Channel split: name:spend:leads")

    # import
    p_import = sub.add_parser("import", help="Import daily stats from CSV")
    p_import.add_argument("campaign", help="Campaign ID")
    p_import.add_argument("file", help="CSV file")

    # metrics
    p_metrics = sub.add_parser("metrics", help="Campaign metrics")
    p_metrics.add_argument("campaign", help="Campaign ID")
    _add_period_args(p_metrics)
    p_metrics.add_argument("--snapshot", action="store_true", help="Use legacy snapshot stats")
    p_metrics.add_argument("--json", action="store_true")

    # compare
    p_compare = sub.add_parser("compare", help="Compare two periods")
    p_compare.add_argument("campaign", help="Campaign ID")
    p_compare.add_argument("--preset", choices=list(PRESET_PAIRS), default="week_over_week")
    p_compare.add_argument("--base", nargs=2, metavar=("START", "END"))
    p_compare.add_argument("--against", nargs=2, metavar=("START", "END"))
    p_compare.add_argument("--format", choices=["markdown", "json", "csv"], default="markdown")

    # weekly / monthly
    p_weekly = sub.add_parser("weekly", help="Weekly breakdown")
    p_weekly.add_argument("campaign", help="Campaign ID")
    p_weekly.add_argument("--weeks", type=int, default=4)

    p_monthly = sub.add_parser("monthly", help="Monthly breakdown")
    p_monthly.add_argument("campaign", help="Campaign ID")
    p_monthly.add_argument("--months", type=int, default=3)

    # averages
    p_avg = sub.add_parser("averages", help="Daily averages")
    p_avg.add_argument("campaign", help="Campaign ID")
    _add_period_args(p_avg)
    p_avg.add_argument("--include-today", action="store_true")

    # advise
    p_advise = sub.add_parser("advise", help="Spend recommendation")
    p_advise.add_argument("campaign", help="Campaign ID")
    _add_period_args(p_advise)
    p_advise.add_argument("--alpha", type=float, default=0.8, help="Diminishing returns exponent")
    p_advise.add_argument("--regression", action="store_true", help="Try history regression first")
    p_advise.add_argument("--json", action="store_true")

    # leaderboard
    p_board = sub.add_parser("leaderboard", help="Rank campaigns")
    p_board.add_argument("--metric", choices=list(LEADERBOARD_METRICS), default="profit")
    _add_period_args(p_board)
    p_board.add_argument("-n", "--limit", type=int, default=5)

    # export
    p_export = sub.add_parser("export", help="Export reports")
    p_export.add_argument("campaign", help="Campaign ID")
    p_export.add_argument("--what", choices=["history", "comparison", "weekly", "monthly"],
                          default="comparison")
    p_export.add_argument("--format", choices=["csv", "json", "markdown"], default="csv")
    p_export.add_argument("--preset", choices=list(PRESET_PAIRS), default="week_over_week")
    p_export.add_argument("-o", "--output", help="Output file")

    # alert
    p_alert = sub.add_parser("alert", help="Push performance to Telegram")
    p_alert.add_argument("campaign", help="Campaign ID")
    p_alert.add_argument("--preset", choices=list(PRESET_PAIRS), default="week_over_week")

    return parser


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    commands = {
        "campaign": cmd_campaign,
        "add-stat": cmd_add_stat,
        "import": cmd_import,
        "metrics": cmd_metrics,
        "compare": cmd_compare,
        "weekly": cmd_weekly,
        "monthly": cmd_monthly,
        "averages": cmd_averages,
        "advise": cmd_advise,
        "leaderboard": cmd_leaderboard,
        "export": cmd_export,
        "alert": cmd_alert,
    }

    func = commands.get(args.command)
    if func:
        try:
            func(args)
        except ValueError as e:
            print(f"❌ {e}")
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
