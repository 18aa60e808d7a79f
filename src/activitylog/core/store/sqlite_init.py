"""SQLite 数据库初始化

PRAGMA 配置 + activity_logs / delivery_tasks 两张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# activity_logs 表 DDL
_ACTIVITY_LOGS_DDL = """
CREATE TABLE IF NOT EXISTS activity_logs (
    activity_id      TEXT PRIMARY KEY,
    event_type       TEXT NOT NULL,
    description      TEXT NOT NULL DEFAULT '',
    subject_type     TEXT,
    subject_id       TEXT,
    causer_type      TEXT,
    causer_id        TEXT,
    properties       TEXT NOT NULL DEFAULT '{}',
    webhook_sent     INTEGER NOT NULL DEFAULT 0,
    webhook_sent_at  TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
"""

_ACTIVITY_LOGS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_activity_event_created ON activity_logs(event_type, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_activity_subject ON activity_logs(subject_type, subject_id);",
    "CREATE INDEX IF NOT EXISTS idx_activity_causer ON activity_logs(causer_type, causer_id);",
    "CREATE INDEX IF NOT EXISTS idx_activity_webhook_sent ON activity_logs(webhook_sent);",
]

# delivery_tasks 表 DDL（持久化投递队列）
_DELIVERY_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS delivery_tasks (
    task_id        TEXT PRIMARY KEY,
    activity_id    TEXT NOT NULL,
    connection     TEXT NOT NULL DEFAULT 'default',
    queue_name     TEXT NOT NULL,
    status         TEXT NOT NULL DEFAULT 'QUEUED',
    attempts       INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL,
    available_at   TEXT NOT NULL,
    claimed_until  TEXT,
    last_error     TEXT NOT NULL DEFAULT ''
);
"""

_DELIVERY_TASKS_INDEXES = [
    # worker 拉取：按队列 + 状态 + 可用时间
    (
        "CREATE INDEX IF NOT EXISTS idx_tasks_claim "
        "ON delivery_tasks(connection, queue_name, status, available_at);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_tasks_activity ON delivery_tasks(activity_id);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_ACTIVITY_LOGS_DDL)
    await conn.execute(_DELIVERY_TASKS_DDL)

    for idx_sql in _ACTIVITY_LOGS_INDEXES + _DELIVERY_TASKS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效"""
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
