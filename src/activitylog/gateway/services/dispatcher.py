"""NotificationDispatcher -- 单条记录的投递状态机

队列任务: 前置检查 -> 解析实体 -> 渲染 -> 发送 -> 记录结果（成功 / 重新排队 / 放弃）。
投递问题以 DispatchStatus 返回，不抛出；存储异常向上传播给 worker，
任务保持租约状态，租约到期后重新投递。
"""

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog
from activitylog.core.config import ActivityLogConfig
from activitylog.core.entities import EntityResolver, resolve_entity
from activitylog.core.formatting import EmbedBuilder
from activitylog.core.models import ActivityLog, DeliveryTask, DispatchStatus, EntityRef, TaskStatus
from activitylog.core.policy import NotificationPolicy
from activitylog.core.store import (
    StoreGroup,
    abandon_delivery,
    complete_delivery,
    finish_task,
    reschedule_task,
)
from activitylog.webhook import DeliveryOutcome, DiscordWebhookClient, OutcomeKind

log = structlog.get_logger()


class NotificationDispatcher:
    """投递调度器"""

    def __init__(
        self,
        stores: StoreGroup,
        client: DiscordWebhookClient,
        policy: NotificationPolicy,
        builder: EmbedBuilder,
        config: ActivityLogConfig,
        resolver: EntityResolver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._stores = stores
        self._client = client
        self._policy = policy
        self._builder = builder
        self._config = config
        self._resolver = resolver
        self._clock = clock or (lambda: datetime.now(UTC))

    def _skip_reason(self, record: ActivityLog | None) -> str | None:
        if record is None:
            return "activity_not_found"
        if record.webhook_sent:
            return "already_sent"
        if not self._policy.should_dispatch(record.event_type):
            return "notifications_disabled"
        if not self._policy.webhook_configured:
            return "webhook_not_configured"
        return None

    async def _entity_for(
        self,
        ref: EntityRef | None,
        entities: Mapping[EntityRef, Any] | None,
    ) -> Any:
        if ref is not None and entities and ref in entities:
            return entities[ref]
        return await resolve_entity(self._resolver, ref)

    async def _attempt(
        self,
        record: ActivityLog,
        entities: Mapping[EntityRef, Any] | None = None,
    ) -> DeliveryOutcome:
        """渲染并发送一次；渲染或发送中的任何异常视为可重试的传输失败"""
        try:
            causer = await self._entity_for(record.causer, entities)
            subject = await self._entity_for(record.subject, entities)
            embed = self._builder.build(
                record,
                now=self._clock(),
                causer_entity=causer,
                subject_entity=subject,
            )
            return await self._client.send(embed)
        except Exception as e:
            log.warning(
                "delivery_attempt_error",
                activity_id=record.activity_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return DeliveryOutcome(
                kind=OutcomeKind.RETRYABLE,
                reason=f"{type(e).__name__}: {e}",
            )

    async def process(self, task: DeliveryTask) -> DispatchStatus:
        """处理一次已领取的队列任务

        Args:
            task: 已领取的任务（attempts 已包含本次）

        Returns:
            DispatchStatus
        """
        conn = self._stores.conn
        queue = self._stores.delivery_queue
        store = self._stores.activity_store

        record = await store.get(task.activity_id)
        skip_reason = self._skip_reason(record)
        if skip_reason is not None:
            await finish_task(conn, queue, task.task_id, TaskStatus.SKIPPED, skip_reason)
            log.info(
                "delivery_skipped",
                activity_id=task.activity_id,
                task_id=task.task_id,
                reason=skip_reason,
            )
            return DispatchStatus.SKIPPED

        outcome = await self._attempt(record)
        now = self._clock()

        if outcome.kind == OutcomeKind.DELIVERED:
            await complete_delivery(conn, store, queue, record.activity_id, task.task_id, now)
            log.info(
                "delivery_succeeded",
                activity_id=record.activity_id,
                event_type=record.event_type,
                attempts=task.attempts,
            )
            return DispatchStatus.DELIVERED

        if outcome.kind == OutcomeKind.RETRYABLE:
            retry = self._config.retry
            elapsed_s = (now - task.created_at).total_seconds()
            if task.attempts < retry.max_attempts and elapsed_s < retry.retry_window_s:
                delay_s = retry.delay_for(task.attempts)
                if outcome.retry_after_s is not None and outcome.retry_after_s > delay_s:
                    delay_s = outcome.retry_after_s
                await reschedule_task(conn, queue, task.task_id, delay_s, outcome.reason)
                log.warning(
                    "delivery_retry_scheduled",
                    activity_id=record.activity_id,
                    attempts=task.attempts,
                    delay_s=delay_s,
                    reason=outcome.reason,
                )
                return DispatchStatus.RETRY_SCHEDULED

            await abandon_delivery(
                conn,
                store,
                queue,
                record.activity_id,
                task.task_id,
                outcome.reason,
                reset_record=True,
            )
            log.error(
                "delivery_retries_exhausted",
                activity_id=record.activity_id,
                attempts=task.attempts,
                elapsed_s=round(elapsed_s, 1),
                reason=outcome.reason,
            )
            return DispatchStatus.ABANDONED

        await abandon_delivery(
            conn,
            store,
            queue,
            record.activity_id,
            task.task_id,
            outcome.reason,
            reset_record=False,
        )
        log.error(
            "delivery_failed_permanently",
            activity_id=record.activity_id,
            kind=outcome.kind.value,
            status_code=outcome.status_code,
            reason=outcome.reason,
        )
        return DispatchStatus.ABANDONED

    async def dispatch_inline(
        self,
        record: ActivityLog,
        entities: Mapping[EntityRef, Any] | None = None,
    ) -> DispatchStatus:
        """同步直发（未启用队列时）

        只尝试一次；没有队列可重排，可重试失败也直接放弃并重置记录。

        Args:
            record: 已持久化的记录
            entities: 调用方已持有的实体对象，命中时跳过解析
        """
        if not record.is_persisted:
            log.warning("delivery_skipped", reason="activity_not_persisted")
            return DispatchStatus.SKIPPED

        skip_reason = self._skip_reason(record)
        if skip_reason is not None:
            log.info(
                "delivery_skipped",
                activity_id=record.activity_id,
                reason=skip_reason,
            )
            return DispatchStatus.SKIPPED

        conn = self._stores.conn
        store = self._stores.activity_store
        outcome = await self._attempt(record, entities)

        if outcome.delivered:
            await complete_delivery(conn, store, None, record.activity_id, None, self._clock())
            log.info(
                "delivery_succeeded",
                activity_id=record.activity_id,
                event_type=record.event_type,
                attempts=1,
            )
            return DispatchStatus.DELIVERED

        await abandon_delivery(
            conn,
            store,
            None,
            record.activity_id,
            None,
            outcome.reason,
            reset_record=outcome.retryable,
        )
        log.error(
            "delivery_failed_inline",
            activity_id=record.activity_id,
            kind=outcome.kind.value,
            status_code=outcome.status_code,
            reason=outcome.reason,
        )
        return DispatchStatus.ABANDONED
