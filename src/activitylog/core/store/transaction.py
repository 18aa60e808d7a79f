"""记录+队列原子事务封装

在同一 SQLite 事务内原子提交 ActivityLog 与 DeliveryTask 的变更，
失败时回滚并向上抛出。

所有 Store 共享同一连接：写事务必须经 write_transaction 串行化，
否则一个协程的 rollback 会丢弃另一个协程尚未提交的半个事务。
"""

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

import aiosqlite

from ..models.activity import ActivityLog
from ..models.enums import TaskStatus
from ..models.task import DeliveryTask
from .protocols import ActivityStore, DeliveryQueue

_write_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


def write_lock(conn: aiosqlite.Connection) -> asyncio.Lock:
    """返回连接对应的写锁（每个连接一把）"""
    lock = _write_locks.get(conn)
    if lock is None:
        lock = asyncio.Lock()
        _write_locks[conn] = lock
    return lock


@asynccontextmanager
async def write_transaction(conn: aiosqlite.Connection) -> AsyncIterator[None]:
    """持有写锁执行一个事务：正常退出提交，异常回滚并重新抛出"""
    async with write_lock(conn):
        try:
            yield
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise


async def create_activity(
    conn: aiosqlite.Connection,
    activity_store: ActivityStore,
    record: ActivityLog,
) -> None:
    """写入 ActivityLog 并提交"""
    async with write_transaction(conn):
        await activity_store.create(record)


async def enqueue_task(
    conn: aiosqlite.Connection,
    queue: DeliveryQueue,
    task: DeliveryTask,
    delay_s: float = 0.0,
) -> None:
    """投递任务入队并提交"""
    async with write_transaction(conn):
        await queue.enqueue(task, delay_s)


async def complete_delivery(
    conn: aiosqlite.Connection,
    activity_store: ActivityStore,
    queue: DeliveryQueue | None,
    activity_id: str,
    task_id: str | None,
    sent_at: datetime,
) -> None:
    """投递成功：记录标记 sent + 任务 DELIVERED，同一事务提交

    task_id 为 None 时（同步直发路径）仅更新记录。
    """
    async with write_transaction(conn):
        await activity_store.mark_sent(activity_id, sent_at)
        if queue is not None and task_id is not None:
            await queue.finish(task_id, TaskStatus.DELIVERED)


async def abandon_delivery(
    conn: aiosqlite.Connection,
    activity_store: ActivityStore,
    queue: DeliveryQueue | None,
    activity_id: str,
    task_id: str | None,
    error: str,
    reset_record: bool,
) -> None:
    """投递放弃：任务 ABANDONED，可选地显式重置记录投递字段"""
    async with write_transaction(conn):
        if reset_record:
            await activity_store.mark_unsent(activity_id)
        if queue is not None and task_id is not None:
            await queue.finish(task_id, TaskStatus.ABANDONED, error)


async def finish_task(
    conn: aiosqlite.Connection,
    queue: DeliveryQueue,
    task_id: str,
    status: TaskStatus,
    error: str = "",
) -> None:
    async with write_transaction(conn):
        await queue.finish(task_id, status, error)


async def reschedule_task(
    conn: aiosqlite.Connection,
    queue: DeliveryQueue,
    task_id: str,
    delay_s: float,
    error: str,
) -> None:
    async with write_transaction(conn):
        await queue.reschedule(task_id, delay_s, error)
