"""DeliveryQueue SQLite 实现 -- 持久化投递队列

at-least-once 语义：worker 以租约方式领取任务，进程崩溃后租约到期的任务会被重新领取。
同一任务同一时刻最多只有一个租约，因此同一任务的重试严格串行。
注意：写方法不自动提交事务，需由调用方管理事务。
"""

from datetime import UTC, datetime, timedelta

import aiosqlite

from ..models.enums import TERMINAL_TASK_STATES, TaskStatus
from ..models.task import DeliveryTask


class SqliteDeliveryQueue:
    """DeliveryQueue 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def enqueue(self, task: DeliveryTask, delay_s: float = 0.0) -> None:
        """入队，delay_s 秒后可被领取"""
        available_at = task.created_at + timedelta(seconds=delay_s)
        await self._conn.execute(
            """
            INSERT INTO delivery_tasks (task_id, activity_id, connection, queue_name,
                                        status, attempts, created_at, available_at,
                                        claimed_until, last_error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.activity_id,
                task.connection,
                task.queue_name,
                TaskStatus.QUEUED.value,
                task.attempts,
                task.created_at.isoformat(),
                available_at.isoformat(),
                None,
                task.last_error,
            ),
        )

    async def claim_next(
        self,
        connection: str,
        queue_name: str,
        lease_s: float,
        now: datetime | None = None,
    ) -> DeliveryTask | None:
        """领取一个到期任务并递增 attempts

        可领取：到期的 QUEUED 任务，或租约已过期的 RUNNING 任务（worker 崩溃）。
        单条 UPDATE ... RETURNING 语句保证原子性。
        """
        now = now or datetime.now(UTC)
        claimed_until = now + timedelta(seconds=lease_s)
        # execute_fetchall 在同一次调用内执行并取尽结果，共享连接上不会留下未完成的语句
        rows = await self._conn.execute_fetchall(
            """
            UPDATE delivery_tasks
            SET status = ?, attempts = attempts + 1, claimed_until = ?
            WHERE task_id = (
                SELECT task_id FROM delivery_tasks
                WHERE connection = ? AND queue_name = ?
                  AND ((status = ? AND available_at <= ?)
                       OR (status = ? AND claimed_until < ?))
                ORDER BY available_at ASC
                LIMIT 1
            )
            RETURNING *
            """,
            (
                TaskStatus.RUNNING.value,
                claimed_until.isoformat(),
                connection,
                queue_name,
                TaskStatus.QUEUED.value,
                now.isoformat(),
                TaskStatus.RUNNING.value,
                now.isoformat(),
            ),
        )
        rows = list(rows)
        if not rows:
            return None
        return self._row_to_task(rows[0])

    async def reschedule(
        self,
        task_id: str,
        delay_s: float,
        error: str = "",
        now: datetime | None = None,
    ) -> None:
        """释放租约并在 delay_s 秒后重新可领取"""
        now = now or datetime.now(UTC)
        await self._conn.execute(
            """
            UPDATE delivery_tasks
            SET status = ?, available_at = ?, claimed_until = NULL, last_error = ?
            WHERE task_id = ?
            """,
            (
                TaskStatus.QUEUED.value,
                (now + timedelta(seconds=delay_s)).isoformat(),
                error,
                task_id,
            ),
        )

    async def finish(self, task_id: str, status: TaskStatus, error: str = "") -> None:
        """任务进入终态

        Raises:
            ValueError: status 不是终态
        """
        if status not in TERMINAL_TASK_STATES:
            raise ValueError(f"非终态不能结束任务: {status}")
        await self._conn.execute(
            """
            UPDATE delivery_tasks
            SET status = ?, claimed_until = NULL, last_error = ?
            WHERE task_id = ?
            """,
            (status.value, error, task_id),
        )

    async def get_task(self, task_id: str) -> DeliveryTask | None:
        cursor = await self._conn.execute(
            "SELECT * FROM delivery_tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_for_activity(self, activity_id: str) -> list[DeliveryTask]:
        cursor = await self._conn.execute(
            "SELECT * FROM delivery_tasks WHERE activity_id = ? ORDER BY created_at ASC",
            (activity_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        """各状态任务数量（用于 readiness 检查）"""
        cursor = await self._conn.execute(
            "SELECT status, COUNT(*) FROM delivery_tasks GROUP BY status"
        )
        rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> DeliveryTask:
        """将数据库行转换为 DeliveryTask 模型"""
        return DeliveryTask(
            task_id=row[0],
            activity_id=row[1],
            connection=row[2],
            queue_name=row[3],
            status=TaskStatus(row[4]),
            attempts=row[5],
            created_at=datetime.fromisoformat(row[6]),
            available_at=datetime.fromisoformat(row[7]),
            claimed_until=datetime.fromisoformat(row[8]) if row[8] else None,
            last_error=row[9] or "",
        )
