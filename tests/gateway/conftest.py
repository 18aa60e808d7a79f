"""gateway 测试配置 -- Dispatcher / Logger Service 组装 fixture"""

from collections.abc import Callable
from datetime import UTC, datetime

import pytest
from activitylog.core.formatting import EmbedBuilder
from activitylog.core.models import ActivityLog, DeliveryTask, EntityRef
from activitylog.core.policy import NotificationPolicy
from activitylog.core.store import create_activity, enqueue_task
from activitylog.gateway.services.activity_logger import ActivityLoggerService
from activitylog.gateway.services.dispatcher import NotificationDispatcher
from activitylog.webhook import DiscordWebhookClient
from ulid import ULID


class User:
    """测试用实体"""

    def __init__(self, id: int, name: str = "", email: str = "", password: str = "") -> None:
        self.id = id
        self.name = name
        self.email = email
        self.password = password


@pytest.fixture
def make_dispatcher(store_group, webhook_recorder, make_config) -> Callable:
    def _make(config=None, resolver=None, clock=None, builder=None) -> NotificationDispatcher:
        config = config or make_config()
        return NotificationDispatcher(
            store_group,
            DiscordWebhookClient(config.webhook, transport=webhook_recorder.transport),
            NotificationPolicy(config),
            builder or EmbedBuilder(config),
            config,
            resolver=resolver,
            clock=clock,
        )

    return _make


@pytest.fixture
def make_logger(store_group, webhook_recorder, make_config, make_dispatcher) -> Callable:
    def _make(config=None, causer_provider=None) -> ActivityLoggerService:
        config = config or make_config()
        return ActivityLoggerService(
            store_group,
            NotificationPolicy(config),
            make_dispatcher(config=config),
            config,
            client=DiscordWebhookClient(config.webhook, transport=webhook_recorder.transport),
            causer_provider=causer_provider,
        )

    return _make


@pytest.fixture
def seed_activity(store_group) -> Callable:
    """写入一条记录并入队一个任务"""

    async def _seed(
        event_type: str = "user.login",
        webhook_sent: bool = False,
        task_created_at: datetime | None = None,
        **kwargs,
    ) -> tuple[ActivityLog, DeliveryTask]:
        now = datetime.now(UTC)
        record = ActivityLog(
            activity_id=str(ULID()),
            event_type=event_type,
            description=kwargs.pop("description", "Alice logged in"),
            causer=kwargs.pop("causer", EntityRef(type_name="User", id="1")),
            webhook_sent=webhook_sent,
            webhook_sent_at=now if webhook_sent else None,
            **kwargs,
        )
        await create_activity(store_group.conn, store_group.activity_store, record)
        task = DeliveryTask(
            task_id=str(ULID()),
            activity_id=record.activity_id,
            created_at=task_created_at or now,
        )
        await enqueue_task(store_group.conn, store_group.delivery_queue, task)
        return record, task

    return _seed


@pytest.fixture
def alice() -> User:
    return User(1, name="Alice", email="alice@example.com", password="hunter2")
