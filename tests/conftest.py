"""全局 pytest 配置 -- 临时 SQLite 数据库 + webhook MockTransport fixture"""

import json
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import aiosqlite
import httpx
import pytest
import pytest_asyncio
from activitylog.core.config import ActivityLogConfig, WebhookSettings
from activitylog.core.store import StoreGroup, create_store_group
from pydantic import SecretStr

WEBHOOK_URL = "https://discord.com/api/webhooks/123456789012/sEcReT-ToKeN_value"


class WebhookRecorder:
    """记录请求并按顺序回放预设响应的 webhook 桩

    预设响应耗尽后默认返回 204。预设项为异常实例时直接抛出（模拟网络错误）。
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._responses: list[httpx.Response | Exception] = []

    def queue(self, *responses: httpx.Response | Exception) -> None:
        self._responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._responses:
            response = self._responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return httpx.Response(204)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def posts(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.posts]


@pytest.fixture
def webhook_recorder() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def make_config() -> Callable[..., ActivityLogConfig]:
    """构造测试配置，默认配置 webhook URL"""

    def _make(**overrides) -> ActivityLogConfig:
        overrides.setdefault("webhook", WebhookSettings(url=SecretStr(WEBHOOK_URL)))
        return ActivityLogConfig(**overrides)

    return _make


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from activitylog.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_path / "conn.db"))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供共享连接的 StoreGroup"""
    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.conn.close()
