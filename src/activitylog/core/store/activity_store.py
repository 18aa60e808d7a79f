"""ActivityStore SQLite 实现

记录创建后仅投递字段可变；本子系统不删除记录。
注意：所有写方法不自动提交事务，需由调用方管理事务。
"""

import json
from datetime import UTC, datetime

import aiosqlite

from ..models.activity import ActivityLog, EntityRef


class SqliteActivityStore:
    """ActivityStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create(self, record: ActivityLog) -> str:
        """插入记录，返回 activity_id"""
        if record.activity_id is None:
            raise ValueError("activity_id 必须在插入前分配")
        await self._conn.execute(
            """
            INSERT INTO activity_logs (activity_id, event_type, description,
                                       subject_type, subject_id, causer_type, causer_id,
                                       properties, webhook_sent, webhook_sent_at,
                                       created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.activity_id,
                record.event_type,
                record.description,
                record.subject.type_name if record.subject else None,
                record.subject.id if record.subject else None,
                record.causer.type_name if record.causer else None,
                record.causer.id if record.causer else None,
                json.dumps(record.properties, ensure_ascii=False, default=str),
                int(record.webhook_sent),
                record.webhook_sent_at.isoformat() if record.webhook_sent_at else None,
                record.created_at.isoformat(),
                record.updated_at.isoformat(),
            ),
        )
        return record.activity_id

    async def get(self, activity_id: str) -> ActivityLog | None:
        cursor = await self._conn.execute(
            "SELECT * FROM activity_logs WHERE activity_id = ?",
            (activity_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_activity(row)

    async def list_activities(
        self,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[ActivityLog]:
        """按 created_at 倒序查询，支持按事件类型筛选"""
        if event_type:
            cursor = await self._conn.execute(
                "SELECT * FROM activity_logs WHERE event_type = ? "
                "ORDER BY created_at DESC LIMIT ?",
                (event_type, limit),
            )
        else:
            cursor = await self._conn.execute(
                "SELECT * FROM activity_logs ORDER BY created_at DESC LIMIT ?",
                (limit,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_activity(row) for row in rows]

    async def mark_sent(self, activity_id: str, sent_at: datetime) -> None:
        """标记已投递（重复调用无害，last-write-wins）"""
        await self._conn.execute(
            """
            UPDATE activity_logs
            SET webhook_sent = 1, webhook_sent_at = ?, updated_at = ?
            WHERE activity_id = ?
            """,
            (sent_at.isoformat(), sent_at.isoformat(), activity_id),
        )

    async def mark_unsent(self, activity_id: str) -> None:
        """重置投递字段（重试耗尽）"""
        await self._conn.execute(
            """
            UPDATE activity_logs
            SET webhook_sent = 0, webhook_sent_at = NULL, updated_at = ?
            WHERE activity_id = ?
            """,
            (datetime.now(UTC).isoformat(), activity_id),
        )

    @staticmethod
    def _row_to_activity(row: aiosqlite.Row) -> ActivityLog:
        """将数据库行转换为 ActivityLog 模型"""
        subject = EntityRef(type_name=row[3], id=row[4]) if row[3] else None
        causer = EntityRef(type_name=row[5], id=row[6]) if row[5] else None
        return ActivityLog(
            activity_id=row[0],
            event_type=row[1],
            description=row[2],
            subject=subject,
            causer=causer,
            properties=json.loads(row[7]) if row[7] else {},
            webhook_sent=bool(row[8]),
            webhook_sent_at=datetime.fromisoformat(row[9]) if row[9] else None,
            created_at=datetime.fromisoformat(row[10]),
            updated_at=datetime.fromisoformat(row[11]),
        )
