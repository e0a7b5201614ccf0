"""
Webhook模块 - 活动表现推送到Telegram
"""

import os
import logging
from typing import Optional, Dict

import requests

from casemetrics.comparison import ComparisonResult, trend_indicator
from casemetrics.export import TREND_ARROWS, MetricsFormatter
from casemetrics.metrics import DerivedMetrics, PerformanceTier
from casemetrics.spend_advisor import SpendRecommendation, Urgency

logger = logging.getLogger(__name__)

TIER_EMOJIS = {
    PerformanceTier.EXCELLENT: "🟢",
    PerformanceTier.GOOD: "🟡",
    PerformanceTier.NEEDS_ATTENTION: "🔴",
}

URGENCY_EMOJIS = {Urgency.HIGH: "🚨", Urgency.MEDIUM: "⚠️", Urgency.LOW: "✅"}


class TelegramWebhook:
    """Telegram Bot API 通知推送"""

    def __init__(self, bot_token: str = None, default_chat_id: str = None):
        self.bot_token = bot_token or os.environ.get("BOT_TOKEN", "")
        self.default_chat_id = default_chat_id or os.environ.get("TG_CHAT_ID", "")
        self.api_url = f"https://api.telegram.org/bot{self.bot_token}"
        self._session = requests.Session()
        self.formatter = MetricsFormatter()

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token)

    def _call(self, method: str, params: Dict = None) -> Optional[Dict]:
        try:
            resp = self._session.post(f"{self.api_url}/{method}", json=params, timeout=30)
            data = resp.json()
            if not data.get("ok"):
                logger.warning(f"TG API {method} failed: {data}")
            return data
        except (requests.RequestException, ValueError) as e:
            logger.error(f"TG API error: {e}")
            return None

    def send_message(self, chat_id: str, text: str,
                     parse_mode: str = "Markdown") -> Optional[Dict]:
        params = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            params["parse_mode"] = parse_mode

        result = self._call("sendMessage", params=params)

        # Markdown解析失败时退回纯文本
        if result is not None and not result.get("ok") and parse_mode:
            params.pop("parse_mode", None)
            result = self._call("sendMessage", params=params)

        return result

    # ── 通知推送 ──

    def notify(self, text: str, chat_id: str = None) -> bool:
        target = chat_id or self.default_chat_id
        if not target:
            logger.warning("No chat_id for notification")
            return False
        result = self.send_message(target, text)
        return bool(result and result.get("ok"))

    def notify_alert(self, title: str, message: str,
                     level: str = "info", chat_id: str = None) -> bool:
        emojis = {"info": "ℹ️", "warning": "⚠️", "error": "🚨", "success": "✅"}
        emoji = emojis.get(level, "ℹ️")
        text = f"{emoji} *{title}*\n{message}"
        return self.notify(text, chat_id)

    def notify_performance(self, campaign_name: str, metrics: DerivedMetrics,
                           chat_id: str = None) -> bool:
        f = self.formatter
        tier = metrics.tier
        text = (
            f"{TIER_EMOJIS[tier]} *{campaign_name}* — {f.tier_label(tier)}\n\n"
            f"ROI: {f.percent(metrics.roi)}\n"
            f"Profit: {f.currency(metrics.profit)}\n"
            f"Cost / Lead: {f.currency(metrics.cost_per_lead)}\n"
            f"Cost / Case: {f.currency(metrics.cost_per_acquisition)}\n"
            f"Conversion: {f.percent(metrics.conversion_rate)}"
        )
        return self.notify(text, chat_id)

    def notify_comparison(self, campaign_name: str, comparison: ComparisonResult,
                          chat_id: str = None) -> bool:
        f = self.formatter
        base, prev = comparison.base_period, comparison.compare_period
        lines = [f"📊 *{campaign_name}*: {base.label} vs {prev.label}\n"]
        for name in ("ad_spend", "leads", "cases", "revenue", "roi", "cost_per_lead"):
            change = comparison.percentage_changes.get(name, 0.0)
            arrow = TREND_ARROWS[trend_indicator(change)]
            lines.append(f"{arrow} {name}: {f.percent(change, signed=True)}")
        return self.notify("\n".join(lines), chat_id)

    def notify_spend_recommendation(self, campaign_name: str,
                                    recommendation: SpendRecommendation,
                                    chat_id: str = None) -> bool:
        emoji = URGENCY_EMOJIS[recommendation.urgency]
        text = (
            f"{emoji} *Budget*: {campaign_name}\n"
            f"{recommendation.message}\n"
            f"Optimal: {self.formatter.currency(recommendation.optimal_spend)}/day "
            f"(confidence {recommendation.confidence:.0f}%)"
        )
        return self.notify(text, chat_id)
