"""Activity Log Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

from pathlib import Path

import aiosqlite

from .activity_store import SqliteActivityStore
from .delivery_queue import SqliteDeliveryQueue
from .sqlite_init import init_db
from .transaction import (
    abandon_delivery,
    complete_delivery,
    create_activity,
    enqueue_task,
    finish_task,
    reschedule_task,
    write_transaction,
)


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.activity_store = SqliteActivityStore(conn)
        self.delivery_queue = SqliteDeliveryQueue(conn)


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteActivityStore",
    "SqliteDeliveryQueue",
    "init_db",
    "create_activity",
    "enqueue_task",
    "complete_delivery",
    "abandon_delivery",
    "finish_task",
    "reschedule_task",
    "write_transaction",
]
