"""NotificationDispatcher 单元测试

测试内容：
1. 前置检查：已发送 / 记录缺失 / 禁用 / 未配置 -> SKIPPED，零网络调用
2. 成功：记录标记 sent + 任务 DELIVERED
3. 可重试失败：按退避重排，之后成功只标记一次；耗尽后重置记录
4. 永久失败：不重试，记录保持未发送
5. 同步直发：单次尝试
6. 已接受的重复窗口：发送成功但状态更新失败 -> 重新投递时再次 POST
7. 共享连接：并发写入失败回滚不会拆开投递完成事务
"""

import asyncio
import sqlite3
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from activitylog.core.config import ActivityLogConfig, EventTypeConfig, WebhookSettings
from activitylog.core.entities import EntityRegistry
from activitylog.core.formatting import EmbedBuilder
from activitylog.core.models import (
    ActivityLog,
    DeliveryTask,
    DispatchStatus,
    EntityRef,
    TaskStatus,
)


class User:
    def __init__(self, id: int, name: str) -> None:
        self.id = id
        self.name = name


async def claim(store_group, now: datetime | None = None) -> DeliveryTask | None:
    task = await store_group.delivery_queue.claim_next(
        "default", "discord-notifications", 120, now=now
    )
    await store_group.conn.commit()
    return task


class TestPreconditions:
    async def test_already_sent_skipped_without_network(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        await seed_activity(webhook_sent=True)
        task = await claim(store_group)

        status = await make_dispatcher().process(task)

        assert status == DispatchStatus.SKIPPED
        assert webhook_recorder.requests == []
        stored = await store_group.delivery_queue.get_task(task.task_id)
        assert stored.status == TaskStatus.SKIPPED
        assert stored.last_error == "already_sent"

    async def test_missing_record_skipped(self, store_group, make_dispatcher, webhook_recorder):
        task = DeliveryTask(task_id="01JTASK0000000000000000001", activity_id="missing")
        await store_group.delivery_queue.enqueue(task)
        claimed = await claim(store_group)

        assert await make_dispatcher().process(claimed) == DispatchStatus.SKIPPED
        assert webhook_recorder.requests == []

    async def test_disabled_event_type_skipped(
        self, store_group, make_dispatcher, make_config, seed_activity, webhook_recorder
    ):
        events = dict(ActivityLogConfig().events)
        events["user.login"] = EventTypeConfig(enabled=False)
        await seed_activity()
        task = await claim(store_group)

        status = await make_dispatcher(config=make_config(events=events)).process(task)
        assert status == DispatchStatus.SKIPPED
        assert webhook_recorder.requests == []

    async def test_webhook_not_configured_skipped(
        self, store_group, make_dispatcher, make_config, seed_activity, webhook_recorder
    ):
        await seed_activity()
        task = await claim(store_group)

        config = make_config(webhook=WebhookSettings())
        assert await make_dispatcher(config=config).process(task) == DispatchStatus.SKIPPED
        assert webhook_recorder.requests == []


class TestDelivery:
    async def test_success_marks_record_and_task(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        record, _ = await seed_activity()
        task = await claim(store_group)

        status = await make_dispatcher().process(task)

        assert status == DispatchStatus.DELIVERED
        assert len(webhook_recorder.posts) == 1
        stored = await store_group.activity_store.get(record.activity_id)
        assert stored.webhook_sent is True
        assert stored.webhook_sent_at >= stored.created_at
        assert (await store_group.delivery_queue.get_task(task.task_id)).status == (
            TaskStatus.DELIVERED
        )

    async def test_retry_then_success(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        webhook_recorder.queue(httpx.Response(503))
        record, _ = await seed_activity()
        dispatcher = make_dispatcher()

        first = await claim(store_group)
        assert await dispatcher.process(first) == DispatchStatus.RETRY_SCHEDULED
        stored = await store_group.activity_store.get(record.activity_id)
        assert stored.webhook_sent is False

        # 退避期内不可领取
        assert await claim(store_group) is None

        second = await claim(store_group, now=datetime.now(UTC) + timedelta(seconds=11))
        assert second.attempts == 2
        assert await dispatcher.process(second) == DispatchStatus.DELIVERED

        assert len(webhook_recorder.posts) == second.attempts
        stored = await store_group.activity_store.get(record.activity_id)
        assert stored.webhook_sent is True

    async def test_exhaustion_resets_record(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        webhook_recorder.queue(httpx.Response(500), httpx.Response(502), httpx.Response(503))
        record, _ = await seed_activity()
        dispatcher = make_dispatcher()
        start = datetime.now(UTC)

        statuses = []
        for offset in (0, 100, 200):
            task = await claim(store_group, now=start + timedelta(seconds=offset))
            statuses.append(await dispatcher.process(task))

        assert statuses == [
            DispatchStatus.RETRY_SCHEDULED,
            DispatchStatus.RETRY_SCHEDULED,
            DispatchStatus.ABANDONED,
        ]
        assert len(webhook_recorder.posts) == 3
        stored = await store_group.activity_store.get(record.activity_id)
        assert stored.webhook_sent is False
        assert stored.webhook_sent_at is None
        final = await store_group.delivery_queue.get_task(task.task_id)
        assert final.status == TaskStatus.ABANDONED
        assert "Discord server error" in final.last_error

    async def test_retry_window_exceeded(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        webhook_recorder.queue(httpx.ConnectError("refused"))
        await seed_activity(task_created_at=datetime.now(UTC) - timedelta(seconds=601))
        task = await claim(store_group)

        assert task.attempts == 1
        assert await make_dispatcher().process(task) == DispatchStatus.ABANDONED

    async def test_retry_after_extends_backoff(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        webhook_recorder.queue(httpx.Response(429, json={"retry_after": 120}))
        await seed_activity()
        task = await claim(store_group)

        assert await make_dispatcher().process(task) == DispatchStatus.RETRY_SCHEDULED
        stored = await store_group.delivery_queue.get_task(task.task_id)
        assert stored.available_at - datetime.now(UTC) > timedelta(seconds=100)

    async def test_permanent_failure_not_retried(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        webhook_recorder.queue(httpx.Response(404))
        record, _ = await seed_activity()
        task = await claim(store_group)

        assert await make_dispatcher().process(task) == DispatchStatus.ABANDONED
        assert len(webhook_recorder.posts) == 1

        far_future = datetime.now(UTC) + timedelta(hours=1)
        assert await claim(store_group, now=far_future) is None
        assert (await store_group.activity_store.get(record.activity_id)).webhook_sent is False
        stored = await store_group.delivery_queue.get_task(task.task_id)
        assert stored.status == TaskStatus.ABANDONED
        assert stored.last_error.startswith("Not Found")

    async def test_render_error_counts_as_retryable(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        builder = MagicMock(spec=EmbedBuilder)
        builder.build.side_effect = RuntimeError("render failed")
        await seed_activity()
        task = await claim(store_group)

        status = await make_dispatcher(builder=builder).process(task)
        assert status == DispatchStatus.RETRY_SCHEDULED
        assert webhook_recorder.requests == []

    async def test_entities_resolved_through_registry(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        registry = EntityRegistry()
        registry.register("User", lambda entity_id: User(int(entity_id), name="Alice"))
        await seed_activity(subject=EntityRef(type_name="Post", id="9"))
        task = await claim(store_group)

        await make_dispatcher(resolver=registry).process(task)

        embed = webhook_recorder.payloads()[0]["embeds"][0]
        fields = {f["name"]: f["value"] for f in embed["fields"]}
        assert fields["Performed by"] == "Alice"
        assert fields["Subject"] == "Unknown Subject"

    async def test_without_resolver_uses_reference(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder
    ):
        await seed_activity()
        task = await claim(store_group)
        await make_dispatcher().process(task)

        embed = webhook_recorder.payloads()[0]["embeds"][0]
        assert embed["fields"][0] == {"name": "Performed by", "value": "User #1", "inline": True}

    async def test_store_failure_propagates(
        self, store_group, make_dispatcher, seed_activity, monkeypatch
    ):
        await seed_activity()
        task = await claim(store_group)
        monkeypatch.setattr(
            store_group.activity_store, "get", AsyncMock(side_effect=RuntimeError("db down"))
        )
        with pytest.raises(RuntimeError):
            await make_dispatcher().process(task)


class TestDuplicateWindow:
    async def test_status_update_failure_causes_second_post(
        self, store_group, make_dispatcher, seed_activity, webhook_recorder, monkeypatch
    ):
        """发送成功但状态更新失败：租约到期后重新投递，会再次 POST（at-least-once）"""
        record, _ = await seed_activity()
        dispatcher = make_dispatcher()
        first = await claim(store_group)

        original_mark_sent = store_group.activity_store.mark_sent
        monkeypatch.setattr(
            store_group.activity_store,
            "mark_sent",
            AsyncMock(side_effect=RuntimeError("disk full")),
        )
        with pytest.raises(RuntimeError):
            await dispatcher.process(first)
        assert len(webhook_recorder.posts) == 1
        assert (await store_group.activity_store.get(record.activity_id)).webhook_sent is False

        monkeypatch.setattr(store_group.activity_store, "mark_sent", original_mark_sent)
        redelivered = await claim(store_group, now=first.claimed_until + timedelta(seconds=1))
        assert redelivered.task_id == first.task_id
        assert await dispatcher.process(redelivered) == DispatchStatus.DELIVERED
        assert len(webhook_recorder.posts) == 2

        # 状态已提交后，再次投递被 sent 标记抑制
        late = DeliveryTask(task_id="01JTASKLATE00000000000001", activity_id=record.activity_id)
        await store_group.delivery_queue.enqueue(late)
        assert await dispatcher.process(await claim(store_group)) == DispatchStatus.SKIPPED
        assert len(webhook_recorder.posts) == 2


class TestSharedConnection:
    async def test_concurrent_persist_failure_does_not_split_completion(
        self, store_group, make_dispatcher, make_logger, seed_activity, monkeypatch
    ):
        """投递完成事务进行中，另一协程写入失败回滚，不得丢弃 mark_sent 而单独提交 DELIVERED"""
        record, _ = await seed_activity()
        task = await claim(store_group)
        store = store_group.activity_store
        queue = store_group.delivery_queue
        marked = asyncio.Event()
        original_mark_sent = store.mark_sent
        original_finish = queue.finish

        async def mark_sent(*args, **kwargs):
            await original_mark_sent(*args, **kwargs)
            marked.set()

        async def slow_finish(*args, **kwargs):
            for _ in range(5):
                await asyncio.sleep(0)
            await original_finish(*args, **kwargs)

        monkeypatch.setattr(store, "mark_sent", mark_sent)
        monkeypatch.setattr(queue, "finish", slow_finish)
        monkeypatch.setattr(
            store, "create", AsyncMock(side_effect=sqlite3.OperationalError("disk I/O error"))
        )
        logger = make_logger()

        async def record_during_completion():
            await marked.wait()
            return await logger.record_event("custom", "x")

        status, transient = await asyncio.gather(
            make_dispatcher().process(task), record_during_completion()
        )

        assert status == DispatchStatus.DELIVERED
        assert transient.is_persisted is False
        assert (await queue.get_task(task.task_id)).status == TaskStatus.DELIVERED
        assert (await store.get(record.activity_id)).webhook_sent is True


class TestDispatchInline:
    async def test_delivered_with_known_entities(
        self, store_group, make_dispatcher, webhook_recorder, alice
    ):
        ref = EntityRef.from_entity(alice)
        record = ActivityLog(
            activity_id="01JACTINLINE0000000000001",
            event_type="user.login",
            description="Alice logged in",
            causer=ref,
            subject=ref,
        )
        await store_group.activity_store.create(record)
        await store_group.conn.commit()

        status = await make_dispatcher().dispatch_inline(record, {ref: alice})

        assert status == DispatchStatus.DELIVERED
        embed = webhook_recorder.payloads()[0]["embeds"][0]
        assert embed["fields"][0]["value"] == "Alice"
        assert (await store_group.activity_store.get(record.activity_id)).webhook_sent is True

    async def test_retryable_is_terminal(self, store_group, make_dispatcher, webhook_recorder):
        webhook_recorder.queue(httpx.Response(503))
        record = ActivityLog(
            activity_id="01JACTINLINE0000000000002", event_type="custom", description="d"
        )
        await store_group.activity_store.create(record)
        await store_group.conn.commit()

        status = await make_dispatcher().dispatch_inline(record)

        assert status == DispatchStatus.ABANDONED
        assert len(webhook_recorder.posts) == 1
        stored = await store_group.activity_store.get(record.activity_id)
        assert stored.webhook_sent is False
        assert stored.webhook_sent_at is None

    async def test_transient_record_skipped(self, make_dispatcher, webhook_recorder):
        record = ActivityLog(event_type="custom", description="d")
        assert await make_dispatcher().dispatch_inline(record) == DispatchStatus.SKIPPED
        assert webhook_recorder.requests == []
