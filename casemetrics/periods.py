"""
Periods v1.0
统计周期 — 闭区间日期范围 + 预设周期 (周/月/最近N天) + 对比周期对
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple

from casemetrics.records import parse_stat_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Period:
    """统计周期 [start_date, end_date], 两端包含"""
    label: str
    start_date: date
    end_date: date

    @classmethod
    def from_strings(cls, start: str, end: str, label: str = "") -> "Period":
        start_day = parse_stat_date(start)
        end_day = parse_stat_date(end)
        if start_day is None or end_day is None:
            raise ValueError(f"Invalid date range: {start!r} → {end!r}")
        return cls(label=label or f"{start_day} → {end_day}",
                   start_date=start_day, end_date=end_day)

    @property
    def is_valid(self) -> bool:
        return self.start_date <= self.end_date

    @property
    def days(self) -> int:
        if not self.is_valid:
            return 0
        return (self.end_date - self.start_date).days + 1

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def to_dict(self) -> Dict[str, str]:
        return {
            "label": self.label,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }


class PeriodPreset(str, Enum):
    THIS_WEEK = "this_week"
    LAST_WEEK = "last_week"
    TWO_WEEKS_AGO = "two_weeks_ago"
    THREE_WEEKS_AGO = "three_weeks_ago"
    THIS_MONTH = "this_month"
    LAST_MONTH = "last_month"
    TWO_MONTHS_AGO = "two_months_ago"
    LAST_7_DAYS = "last_7_days"
    LAST_30_DAYS = "last_30_days"


WEEK_LABELS = ["This Week", "Last Week", "2 Weeks Ago", "3 Weeks Ago"]
MONTH_LABELS = ["This Month", "Last Month", "2 Months Ago"]

# 名称 → (基准周期, 对比周期)
PRESET_PAIRS: Dict[str, Tuple[PeriodPreset, Optional[PeriodPreset]]] = {
    "week_over_week": (PeriodPreset.THIS_WEEK, PeriodPreset.LAST_WEEK),
    "month_over_month": (PeriodPreset.THIS_MONTH, PeriodPreset.LAST_MONTH),
    "last_7_vs_previous": (PeriodPreset.LAST_7_DAYS, None),
    "last_30_vs_previous": (PeriodPreset.LAST_30_DAYS, None),
}


def week_period(weeks_ago: int, today: Optional[date] = None) -> Period:
    """周一开始的自然周"""
    today = today or date.today()
    anchor = today - timedelta(weeks=weeks_ago)
    start = anchor - timedelta(days=anchor.weekday())
    label = WEEK_LABELS[weeks_ago] if weeks_ago < len(WEEK_LABELS) else f"{weeks_ago} Weeks Ago"
    return Period(label=label, start_date=start, end_date=start + timedelta(days=6))


def month_period(months_ago: int, today: Optional[date] = None) -> Period:
    """自然月"""
    today = today or date.today()
    year, month = today.year, today.month - months_ago
    while month < 1:
        month += 12
        year -= 1
    start = date(year, month, 1)
    next_month = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    label = MONTH_LABELS[months_ago] if months_ago < len(MONTH_LABELS) else f"{months_ago} Months Ago"
    return Period(label=label, start_date=start, end_date=next_month - timedelta(days=1))


def last_n_days(days: int, today: Optional[date] = None) -> Period:
    today = today or date.today()
    return Period(label=f"Last {days} Days",
                  start_date=today - timedelta(days=days - 1), end_date=today)


def preset_period(preset, today: Optional[date] = None) -> Period:
    """按调用时的日期计算预设周期"""
    preset = PeriodPreset(preset)
    today = today or date.today()

    if preset == PeriodPreset.THIS_WEEK:
        return week_period(0, today)
    elif preset == PeriodPreset.LAST_WEEK:
        return week_period(1, today)
    elif preset == PeriodPreset.TWO_WEEKS_AGO:
        return week_period(2, today)
    elif preset == PeriodPreset.THREE_WEEKS_AGO:
        return week_period(3, today)
    elif preset == PeriodPreset.THIS_MONTH:
        return month_period(0, today)
    elif preset == PeriodPreset.LAST_MONTH:
        return month_period(1, today)
    elif preset == PeriodPreset.TWO_MONTHS_AGO:
        return month_period(2, today)
    elif preset == PeriodPreset.LAST_7_DAYS:
        return last_n_days(7, today)
    return last_n_days(30, today)


def previous_period(period: Period, label: str = "") -> Period:
    """紧邻的前一个等长周期"""
    length = max(period.days, 1)
    end = period.start_date - timedelta(days=1)
    return Period(label=label or f"Previous {length} Days",
                  start_date=end - timedelta(days=length - 1), end_date=end)


def preset_pair(name: str, today: Optional[date] = None) -> Tuple[Period, Period]:
    """返回 (基准周期, 对比周期)"""
    if name not in PRESET_PAIRS:
        raise ValueError(f"Unknown preset pair: {name} (expected one of {', '.join(PRESET_PAIRS)})")
    base_preset, compare_preset = PRESET_PAIRS[name]
    base = preset_period(base_preset, today)
    if compare_preset is None:
        compare = previous_period(base)
    else:
        compare = preset_period(compare_preset, today)
    logger.debug(f"Preset pair {name}: {base.to_dict()} vs {compare.to_dict()}")
    return base, compare
