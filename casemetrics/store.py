"""
SQLite持久化层
活动 + 每日数据历史 + 旧快照统计 + 变更通知
"""

import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from casemetrics.periods import Period
from casemetrics.records import (
    Campaign, ChannelStats, ManualStats, StatRecord, parse_stat_date,
)

logger = logging.getLogger(__name__)

STAT_FIELDS = ("date", "leads", "cases", "revenue", "ad_spend")


@dataclass(frozen=True)
class StatChange:
    """数据记录变更事件"""
    kind: str  # insert / update / delete
    campaign_id: str
    record_id: str  # 活动级变更为空串


class StatsStore:
    """线程安全的SQLite存储"""

    def __init__(self, db_path: str = "casemetrics.db"):
        self.db_path = db_path
        self._local = threading.local()
        self._listeners: List[Callable[[StatChange], Any]] = []
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self.db_path)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA foreign_keys=ON")
        return self._local.conn

    def _init_db(self):
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS campaigns (
                campaign_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                ad_spend REAL DEFAULT 0,
                manual_leads INTEGER DEFAULT 0,
                manual_cases INTEGER DEFAULT 0,
                manual_revenue REAL DEFAULT 0,
                manual_retainers INTEGER DEFAULT 0,
                created_at TEXT DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS stat_history (
                record_id TEXT PRIMARY KEY,
                campaign_id TEXT NOT NULL,
                date TEXT,
                leads INTEGER DEFAULT 0,
                cases INTEGER DEFAULT 0,
                revenue REAL DEFAULT 0,
                ad_spend REAL DEFAULT 0,
                channels TEXT DEFAULT '{}',
                created_at TEXT DEFAULT (datetime('now')),
                FOREIGN KEY (campaign_id) REFERENCES campaigns(campaign_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_history_campaign
                ON stat_history(campaign_id, date);
        """)
        conn.commit()

    # ── Listeners ──

    def subscribe(self, listener: Callable[[StatChange], Any]):
        """注册变更监听 (如 MetricsService.handle_change)"""
        self._listeners.append(listener)

    def _emit(self, change: StatChange):
        logger.debug(f"Stat {change.kind}: {change.record_id} (campaign {change.campaign_id})")
        for listener in self._listeners:
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Stat change listener failed: {e}")

    # ── Campaigns ──

    def create_campaign(self, name: str, campaign_id: Optional[str] = None,
                        ad_spend: float = 0.0,
                        manual_stats: Optional[ManualStats] = None) -> str:
        campaign_id = campaign_id or str(uuid.uuid4())[:8]
        manual = manual_stats or ManualStats()
        conn = self._get_conn()
        conn.execute("""
            INSERT OR REPLACE INTO campaigns
            (campaign_id, name, ad_spend, manual_leads, manual_cases,
             manual_revenue, manual_retainers)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (campaign_id, name, ad_spend, manual.leads, manual.cases,
              manual.revenue, manual.retainers))
        conn.commit()
        logger.info(f"Campaign created: {name} ({campaign_id})")
        return campaign_id

    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """返回带完整历史的Campaign"""
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM campaigns WHERE campaign_id = ?", (campaign_id,)
        ).fetchone()
        if not row:
            return None
        return self._row_to_campaign(row, self.get_history(campaign_id))

    def list_campaigns(self) -> List[Campaign]:
        conn = self._get_conn()
        rows = conn.execute("SELECT * FROM campaigns ORDER BY created_at, name").fetchall()
        return [self._row_to_campaign(r, self.get_history(r["campaign_id"])) for r in rows]

    def update_manual_stats(self, campaign_id: str, manual_stats: ManualStats,
                            ad_spend: Optional[float] = None) -> bool:
        conn = self._get_conn()
        if ad_spend is None:
            cursor = conn.execute("""
                UPDATE campaigns SET manual_leads = ?, manual_cases = ?,
                manual_revenue = ?, manual_retainers = ? WHERE campaign_id = ?
            """, (manual_stats.leads, manual_stats.cases, manual_stats.revenue,
                  manual_stats.retainers, campaign_id))
        else:
            cursor = conn.execute("""
                UPDATE campaigns SET manual_leads = ?, manual_cases = ?,
                manual_revenue = ?, manual_retainers = ?, ad_spend = ? WHERE campaign_id = ?
            """, (manual_stats.leads, manual_stats.cases, manual_stats.revenue,
                  manual_stats.retainers, ad_spend, campaign_id))
        conn.commit()
        if cursor.rowcount == 0:
            return False
        self._emit(StatChange("update", campaign_id, ""))
        return True

    def delete_campaign(self, campaign_id: str) -> bool:
        conn = self._get_conn()
        record_ids = [r["record_id"] for r in conn.execute(
            "SELECT record_id FROM stat_history WHERE campaign_id = ?", (campaign_id,)
        ).fetchall()]
        cursor = conn.execute("DELETE FROM campaigns WHERE campaign_id = ?", (campaign_id,))
        conn.commit()
        if cursor.rowcount == 0:
            return False
        for record_id in record_ids or [""]:
            self._emit(StatChange("delete", campaign_id, record_id))
        return True

    def _campaign_exists(self, campaign_id: str) -> bool:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT 1 FROM campaigns WHERE campaign_id = ?", (campaign_id,)
        ).fetchone()
        return row is not None

    # ── Stat History ──

    def add_stat(self, campaign_id: str, date: Any, leads: Any = 0, cases: Any = 0,
                 revenue: Any = 0.0, ad_spend: Any = 0.0,
                 channels: Optional[Dict[str, ChannelStats]] = None,
                 record_id: Optional[str] = None) -> Optional[StatRecord]:
        """新增每日记录; 活动不存在返回None"""
        if not self._campaign_exists(campaign_id):
            logger.warning(f"Cannot add stat: unknown campaign {campaign_id}")
            return None

        record = StatRecord(
            id=record_id or str(uuid.uuid4())[:12],
            campaign_id=campaign_id,
            date=_date_text(date),
            leads=leads,
            cases=cases,
            revenue=revenue,
            ad_spend=ad_spend,
            channels=dict(channels or {}),
        )
        conn = self._get_conn()
        conn.execute("""
            INSERT OR REPLACE INTO stat_history
            (record_id, campaign_id, date, leads, cases, revenue, ad_spend, channels)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (record.id, campaign_id, record.date, leads, cases, revenue, ad_spend,
              _channels_json(record.channels)))
        conn.commit()
        self._emit(StatChange("insert", campaign_id, record.id))
        return record

    def get_stat(self, record_id: str) -> Optional[StatRecord]:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM stat_history WHERE record_id = ?", (record_id,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def update_stat(self, record_id: str, **fields) -> bool:
        """更新记录字段 (date/leads/cases/revenue/ad_spend/channels)"""
        existing = self.get_stat(record_id)
        if existing is None:
            return False

        updates: Dict[str, Any] = {}
        for name, value in fields.items():
            if name == "channels":
                updates["channels"] = _channels_json(value or {})
            elif name == "date":
                updates["date"] = _date_text(value)
            elif name in STAT_FIELDS:
                updates[name] = value
            else:
                raise ValueError(f"Unknown stat field: {name}")
        if not updates:
            return False

        assignments = ", ".join(f"{name} = ?" for name in updates)
        conn = self._get_conn()
        conn.execute(
            f"UPDATE stat_history SET {assignments} WHERE record_id = ?",
            (*updates.values(), record_id),
        )
        conn.commit()
        self._emit(StatChange("update", existing.campaign_id, record_id))
        return True

    def delete_stat(self, record_id: str) -> bool:
        existing = self.get_stat(record_id)
        if existing is None:
            return False
        conn = self._get_conn()
        conn.execute("DELETE FROM stat_history WHERE record_id = ?", (record_id,))
        conn.commit()
        self._emit(StatChange("delete", existing.campaign_id, record_id))
        return True

    def get_history(self, campaign_id: str,
                    period: Optional[Period] = None) -> List[StatRecord]:
        """按日期排序的历史记录; 给定周期时只取周期内"""
        conn = self._get_conn()
        if period is None:
            rows = conn.execute("""
                SELECT * FROM stat_history WHERE campaign_id = ?
                ORDER BY date, created_at
            """, (campaign_id,)).fetchall()
        else:
            rows = conn.execute("""
                SELECT * FROM stat_history
                WHERE campaign_id = ? AND date >= ? AND date <= ?
                ORDER BY date, created_at
            """, (campaign_id, period.start_date.isoformat(),
                  period.end_date.isoformat())).fetchall()
        return [self._row_to_record(r) for r in rows]

    def import_rows(self, campaign_id: str, rows: Iterable[Dict[str, Any]]) -> int:
        """批量导入 (CSV行); 缺少date列时抛ValueError"""
        imported = 0
        for row in rows:
            if not row.get("date"):
                raise ValueError(f"Import row {imported + 1} is missing a date")
            cleaned = {k: (0 if v == "" else v) for k, v in row.items() if k}
            parsed = StatRecord.from_dict(cleaned)
            record = self.add_stat(
                campaign_id,
                date=row["date"],
                leads=parsed.leads,
                cases=parsed.cases,
                revenue=parsed.revenue,
                ad_spend=parsed.ad_spend,
                channels=parsed.channels,
                record_id=row.get("id") or None,
            )
            if record is not None:
                imported += 1
        logger.info(f"Imported {imported} stat rows into campaign {campaign_id}")
        return imported

    # ── Helpers ──

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> StatRecord:
        channels = {}
        for name, values in json.loads(row["channels"] or "{}").items():
            channels[name] = ChannelStats(
                ad_spend=values.get("ad_spend", 0.0), leads=values.get("leads", 0)
            )
        return StatRecord(
            id=row["record_id"],
            campaign_id=row["campaign_id"],
            date=row["date"],
            leads=row["leads"],
            cases=row["cases"],
            revenue=row["revenue"],
            ad_spend=row["ad_spend"],
            channels=channels,
        )

    @staticmethod
    def _row_to_campaign(row: sqlite3.Row, history: List[StatRecord]) -> Campaign:
        return Campaign(
            id=row["campaign_id"],
            name=row["name"],
            stats_history=history,
            manual_stats=ManualStats(
                leads=row["manual_leads"],
                cases=row["manual_cases"],
                revenue=row["manual_revenue"],
                retainers=row["manual_retainers"],
            ),
            ad_spend=row["ad_spend"],
        )

    def close(self):
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None


def _date_text(value: Any) -> Any:
    day = parse_stat_date(value)
    return day.isoformat() if day else value


def _channels_json(channels: Dict[str, Any]) -> str:
    data = {}
    for name, stats in channels.items():
        if isinstance(stats, ChannelStats):
            data[name] = stats.to_dict()
        else:
            data[name] = {"ad_spend": stats.get("ad_spend", 0.0), "leads": stats.get("leads", 0)}
    return json.dumps(data)
