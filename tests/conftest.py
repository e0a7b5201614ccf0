"""
conftest.py - 测试公共fixture
"""

import os
import sys
from datetime import date

import pytest

# 确保项目根目录在path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from casemetrics.periods import Period
from casemetrics.records import Campaign, ChannelStats, ManualStats, StatRecord
from casemetrics.store import StatsStore
from casemetrics.webhook import TelegramWebhook


def make_record(record_id, day, leads=0, cases=0, revenue=0.0, ad_spend=0.0,
                campaign_id="c1", channels=None):
    return StatRecord(id=record_id, campaign_id=campaign_id, date=day, leads=leads,
                      cases=cases, revenue=revenue, ad_spend=ad_spend,
                      channels=channels or {})


@pytest.fixture
def tmp_store(tmp_path):
    """临时数据库"""
    store = StatsStore(str(tmp_path / "test.db"))
    yield store
    store.close()


@pytest.fixture
def webhook():
    return TelegramWebhook(bot_token="fake_bot_token", default_chat_id="123456")


@pytest.fixture
def january():
    return Period(label="January", start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))


@pytest.fixture
def sample_records():
    """2024年1-2月的记录"""
    return [
        make_record("r1", "2024-01-05", leads=10, cases=2, revenue=5000, ad_spend=1000),
        make_record("r2", "2024-01-20", leads=5, cases=1, revenue=2000, ad_spend=500),
        make_record("r3", "2024-02-02", leads=8, cases=1, revenue=3000, ad_spend=800),
    ]


@pytest.fixture
def channel_record():
    return make_record(
        "ch1", "2024-01-10", leads=12, cases=1, revenue=4000, ad_spend=1200,
        channels={
            "youtube": ChannelStats(ad_spend=700, leads=7),
            "meta": ChannelStats(ad_spend=500, leads=5),
        },
    )


@pytest.fixture
def sample_campaign(sample_records):
    return Campaign(
        id="c1",
        name="Truck Accidents",
        stats_history=sample_records,
        manual_stats=ManualStats(leads=40, cases=4, revenue=20000, retainers=3),
        ad_spend=4000,
    )
