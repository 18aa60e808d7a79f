"""ActivityLoggerService 单元测试

测试内容：
1. 登录场景（同步直发）：一条记录 + 一次 webhook 调用
2. 队列模式入队、禁用时跳过
3. 持久化失败返回临时记录；推送阶段失败不外抛
4. 便捷封装：描述文本、属性脱敏、空 changes 不记录
5. 诊断：test_webhook / test_connectivity
"""

from dataclasses import dataclass
from unittest.mock import AsyncMock

from activitylog.core.models import EntityRef
from activitylog.gateway.services.activity_logger import (
    format_bytes,
    model_display_name,
    user_display_name,
)


@dataclass
class Post:
    id: int
    title: str
    api_key: str = "sk-live-000"


class Thing:
    def __init__(self, id: int) -> None:
        self.id = id


class TestRecordEvent:
    async def test_login_scenario_inline(
        self, store_group, make_logger, make_config, alice, webhook_recorder
    ):
        logger = make_logger(config=make_config(queue_notifications=False))

        record = await logger.record_event(
            "user.login",
            "Alice logged in",
            subject=alice,
            causer=alice,
            properties={"ip": "10.0.0.1"},
        )

        stored = await store_group.activity_store.list_activities()
        assert [r.event_type for r in stored] == ["user.login"]
        assert stored[0].activity_id == record.activity_id
        assert len(webhook_recorder.posts) == 1
        embed = webhook_recorder.payloads()[0]["embeds"][0]
        assert embed["title"].startswith("🔐")
        fields = {f["name"]: f["value"] for f in embed["fields"]}
        assert fields["Performed by"] == "Alice"
        assert (await store_group.activity_store.get(record.activity_id)).webhook_sent is True

    async def test_queued_mode_enqueues(self, store_group, make_logger, webhook_recorder):
        record = await make_logger().record_event("custom", "something happened")

        tasks = await store_group.delivery_queue.list_for_activity(record.activity_id)
        assert len(tasks) == 1
        assert tasks[0].queue_name == "discord-notifications"
        assert webhook_recorder.requests == []

    async def test_disabled_records_without_dispatch(
        self, store_group, make_logger, make_config, webhook_recorder
    ):
        logger = make_logger(config=make_config(enabled=False))
        record = await logger.record_event("custom", "quiet")

        assert record.is_persisted
        assert await store_group.delivery_queue.list_for_activity(record.activity_id) == []
        assert webhook_recorder.requests == []

    async def test_entity_refs_accepted(self, store_group, make_logger):
        ref = EntityRef(type_name="Order", id="o-1")
        record = await make_logger().record_event("order.paid", "paid", subject=ref)
        stored = await store_group.activity_store.get(record.activity_id)
        assert stored.subject == ref

    async def test_persist_failure_returns_transient(self, store_group, make_logger, monkeypatch):
        monkeypatch.setattr(
            store_group.activity_store, "create", AsyncMock(side_effect=RuntimeError("locked"))
        )
        record = await make_logger().record_event("user.login", "Alice logged in")

        assert record.activity_id is None
        assert record.is_persisted is False
        assert record.event_type == "user.login"
        assert record.description == "Alice logged in"
        assert await store_group.delivery_queue.count_by_status() == {}

    async def test_entity_without_identity_degrades(self, make_logger):
        record = await make_logger().record_event("custom", "x", subject=object())
        assert record.activity_id is None

    async def test_notify_failure_swallowed(self, store_group, make_logger, monkeypatch):
        monkeypatch.setattr(
            store_group.delivery_queue, "enqueue", AsyncMock(side_effect=RuntimeError("full"))
        )
        record = await make_logger().record_event("custom", "x")

        assert record.is_persisted
        assert await store_group.activity_store.get(record.activity_id) is not None


class TestWrappers:
    async def test_login_properties(self, make_logger, alice):
        record = await make_logger().log_user_login(alice, ip="10.0.0.1", user_agent="curl/8")
        assert record.description == "Alice logged in"
        assert record.properties["ip"] == "10.0.0.1"
        assert record.properties["user_agent"] == "curl/8"
        assert "timestamp" in record.properties
        assert record.subject == record.causer == EntityRef(type_name="User", id="1")

    async def test_logout_defaults(self, make_logger, alice):
        record = await make_logger().log_user_logout(alice)
        assert record.description == "Alice logged out"
        assert record.properties["ip"] == "unknown"

    async def test_model_created_sanitizes(self, make_logger, alice):
        logger = make_logger(causer_provider=lambda: alice)
        record = await logger.log_model_created(Post(id=3, title="Hello", api_key="sk-live-123"))

        assert record.description == "Post 'Hello' was created"
        assert record.properties["attributes"] == {
            "id": 3,
            "title": "Hello",
            "api_key": "[HIDDEN]",
        }
        assert record.causer == EntityRef(type_name="User", id="1")

    async def test_model_updated(self, make_logger, alice):
        record = await make_logger().log_model_updated(
            Post(id=3, title="Hello"),
            {"title": "Hello", "password": "new-secret"},
            causer=alice,
        )
        assert record.event_type == "model.updated"
        assert record.properties["changes"] == {"title": "Hello", "password": "[HIDDEN]"}
        assert record.properties["changed_fields"] == ["title", "password"]

    async def test_model_updated_empty_changes(self, store_group, make_logger, webhook_recorder):
        result = await make_logger().log_model_updated(Post(id=3, title="Hello"), {})
        assert result is None
        assert await store_group.activity_store.list_activities() == []
        assert webhook_recorder.requests == []

    async def test_model_deleted_and_restored(self, make_logger):
        logger = make_logger()
        deleted = await logger.log_model_deleted(Post(id=3, title="Hello"))
        assert deleted.description == "Post 'Hello' was deleted"
        assert deleted.properties["deleted_attributes"]["api_key"] == "[HIDDEN]"

        restored = await logger.log_model_restored(Thing(8))
        assert restored.event_type == "model.restored"
        assert restored.description == "Thing '#8' was restored"

    async def test_causer_provider_failure_ignored(self, make_logger):
        def broken():
            raise RuntimeError("no request context")

        record = await make_logger(causer_provider=broken).log_model_created(Thing(1))
        assert record.is_persisted
        assert record.causer is None

    async def test_bootup(self, make_logger, make_config):
        record = await make_logger(config=make_config(environment="staging")).log_bootup()
        assert record.event_type == "system.bootup"
        assert record.properties["environment"] == "staging"
        assert set(record.properties) == {
            "environment",
            "python_version",
            "server_time",
            "memory_usage",
            "hostname",
        }


class TestDiagnostics:
    async def test_test_webhook_records_event(self, store_group, make_logger):
        assert await make_logger().test_webhook() is True
        stored = await store_group.activity_store.list_activities(event_type="system.test")
        assert len(stored) == 1

    async def test_test_webhook_persist_failure(self, store_group, make_logger, monkeypatch):
        monkeypatch.setattr(
            store_group.activity_store, "create", AsyncMock(side_effect=RuntimeError("locked"))
        )
        assert await make_logger().test_webhook() is False

    async def test_connectivity_disabled(self, make_logger, make_config, webhook_recorder):
        report = await make_logger(config=make_config(enabled=False)).test_connectivity()
        assert report.success is False
        assert webhook_recorder.requests == []

    async def test_connectivity_probe(self, make_logger, make_config, webhook_recorder):
        report = await make_logger().test_connectivity()
        assert report.success is True
        assert str(webhook_recorder.posts[0].url) == (
            make_config().webhook.url.get_secret_value()
        )


def test_format_bytes():
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * 1024 * 1024) == "5 MB"


def test_display_names(alice):
    assert user_display_name(alice) == "Alice"
    assert user_display_name(Thing(4)) == "User #4"
    assert model_display_name(Post(id=1, title="T")) == "T"
    assert model_display_name(Thing(2)) == "#2"
