"""ActivityLoggerService -- 事件捕获入口

先持久化，再按策略决定推送方式（跳过 / 入队 / 同步直发）。
record_event 是唯一的降级边界：下层任何失败都不会抛给调用方。
"""

import platform
import resource
import socket
import sys
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog
from activitylog.core.config import ActivityLogConfig
from activitylog.core.entities import entity_attributes
from activitylog.core.formatting import sanitize_attributes
from activitylog.core.models import (
    ActivityLog,
    DeliveryMode,
    DeliveryTask,
    EntityRef,
)
from activitylog.core.policy import NotificationPolicy
from activitylog.core.store import StoreGroup, create_activity, enqueue_task
from activitylog.webhook import ConnectivityReport, DiscordWebhookClient
from ulid import ULID

from .dispatcher import NotificationDispatcher

log = structlog.get_logger()

MODEL_DISPLAY_ATTRIBUTES: tuple[str, ...] = ("title", "name", "label", "display_name")

TEST_EVENT_DESCRIPTION = (
    "Discord webhook test message - if you see this, your integration is working correctly!"
)


def format_bytes(num_bytes: float, precision: int = 2) -> str:
    """1536 -> "1.5 KB" """
    units = ["B", "KB", "MB", "GB", "TB"]
    index = 0
    while num_bytes > 1024 and index < len(units) - 1:
        num_bytes /= 1024
        index += 1
    return f"{round(num_bytes, precision):g} {units[index]}"


def _memory_usage_bytes() -> int:
    # ru_maxrss: Linux 为 KB，macOS 为字节
    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    return max_rss if sys.platform == "darwin" else max_rss * 1024


def _server_time() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


def _ref_of(entity: Any) -> EntityRef | None:
    if entity is None:
        return None
    return EntityRef.from_entity(entity)


def user_display_name(user: Any) -> str:
    """get_display_name() -> name -> email -> "User #{id}" """
    get_display_name = getattr(user, "get_display_name", None)
    if callable(get_display_name):
        return str(get_display_name())
    for attr in ("name", "email"):
        value = getattr(user, attr, None)
        if value:
            return str(value)
    return f"User #{EntityRef.from_entity(user).id}"


def model_display_name(model: Any) -> str:
    """get_display_name() -> 约定属性 -> "#{id}" """
    get_display_name = getattr(model, "get_display_name", None)
    if callable(get_display_name):
        return str(get_display_name())
    for attr in MODEL_DISPLAY_ATTRIBUTES:
        value = getattr(model, attr, None)
        if value:
            return str(value)
    return f"#{EntityRef.from_entity(model).id}"


class ActivityLoggerService:
    """事件记录服务"""

    def __init__(
        self,
        stores: StoreGroup,
        policy: NotificationPolicy,
        dispatcher: NotificationDispatcher,
        config: ActivityLogConfig,
        client: DiscordWebhookClient | None = None,
        causer_provider: Callable[[], Any] | None = None,
    ) -> None:
        """初始化服务

        Args:
            stores: Store 实例组
            policy: 通知策略
            dispatcher: 同步直发时使用
            config: 全局配置
            client: 连通性诊断使用的 webhook 客户端
            causer_provider: 返回当前操作者的回调，作为模型事件的默认 causer
        """
        self._stores = stores
        self._policy = policy
        self._dispatcher = dispatcher
        self._config = config
        self._client = client
        self._causer_provider = causer_provider

    def _sanitize(self, attributes: Mapping[str, Any]) -> dict[str, Any]:
        return sanitize_attributes(
            attributes,
            self._config.sensitive_fields,
            self._config.mask_token,
            self._config.limits.attribute_value_max,
        )

    def _current_causer(self) -> Any:
        if self._causer_provider is None:
            return None
        try:
            return self._causer_provider()
        except Exception as e:
            log.warning("causer_provider_failed", error_type=type(e).__name__)
            return None

    async def record_event(
        self,
        event_type: str,
        description: str,
        subject: Any = None,
        causer: Any = None,
        properties: Mapping[str, Any] | None = None,
    ) -> ActivityLog:
        """记录事件并触发推送

        subject / causer 可为实体对象或 EntityRef。

        Returns:
            已持久化的 ActivityLog；持久化失败时返回 activity_id=None 的临时记录
        """
        props = dict(properties or {})
        try:
            subject_ref = _ref_of(subject)
            causer_ref = _ref_of(causer)
            record = ActivityLog(
                activity_id=str(ULID()),
                event_type=event_type,
                description=description,
                subject=subject_ref,
                causer=causer_ref,
                properties=props,
            )
            await create_activity(self._stores.conn, self._stores.activity_store, record)
        except Exception as e:
            log.error(
                "activity_persist_failed",
                event_type=event_type,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ActivityLog(event_type=event_type, description=description)

        entities: dict[EntityRef, Any] = {}
        for ref, entity in ((subject_ref, subject), (causer_ref, causer)):
            if ref is not None and not isinstance(entity, EntityRef):
                entities[ref] = entity

        await self._notify(record, entities)
        return record

    async def _notify(self, record: ActivityLog, entities: dict[EntityRef, Any]) -> None:
        try:
            if not self._policy.should_dispatch(record.event_type):
                log.info(
                    "activity_notification_skipped",
                    activity_id=record.activity_id,
                    event_type=record.event_type,
                    reason="disabled",
                )
                return

            route = self._policy.delivery_mode()
            if route.mode == DeliveryMode.QUEUED:
                task = DeliveryTask(
                    task_id=str(ULID()),
                    activity_id=record.activity_id,
                    connection=route.connection,
                    queue_name=route.queue_name,
                )
                await enqueue_task(self._stores.conn, self._stores.delivery_queue, task)
                log.debug(
                    "activity_notification_queued",
                    activity_id=record.activity_id,
                    task_id=task.task_id,
                    queue_name=route.queue_name,
                )
            else:
                await self._dispatcher.dispatch_inline(record, entities)
        except Exception as e:
            log.error(
                "activity_notify_failed",
                activity_id=record.activity_id,
                event_type=record.event_type,
                error_type=type(e).__name__,
                error=str(e),
            )

    # ============================================================
    # 便捷封装
    # ============================================================

    async def log_user_login(
        self,
        user: Any,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> ActivityLog:
        return await self.record_event(
            "user.login",
            f"{user_display_name(user)} logged in",
            subject=user,
            causer=user,
            properties={
                "ip": ip or "unknown",
                "user_agent": user_agent or "unknown",
                "timestamp": _server_time(),
            },
        )

    async def log_user_logout(self, user: Any, ip: str | None = None) -> ActivityLog:
        return await self.record_event(
            "user.logout",
            f"{user_display_name(user)} logged out",
            subject=user,
            causer=user,
            properties={
                "ip": ip or "unknown",
                "timestamp": _server_time(),
            },
        )

    async def log_model_created(self, model: Any, causer: Any = None) -> ActivityLog:
        return await self.record_event(
            "model.created",
            f"{type(model).__name__} '{model_display_name(model)}' was created",
            subject=model,
            causer=causer if causer is not None else self._current_causer(),
            properties={"attributes": self._sanitize(entity_attributes(model))},
        )

    async def log_model_updated(
        self,
        model: Any,
        changes: Mapping[str, Any],
        causer: Any = None,
    ) -> ActivityLog | None:
        """记录模型更新；changes 为空时不记录并返回 None"""
        if not changes:
            return None
        return await self.record_event(
            "model.updated",
            f"{type(model).__name__} '{model_display_name(model)}' was updated",
            subject=model,
            causer=causer if causer is not None else self._current_causer(),
            properties={
                "changes": self._sanitize(changes),
                "changed_fields": list(changes.keys()),
            },
        )

    async def log_model_deleted(self, model: Any, causer: Any = None) -> ActivityLog:
        return await self.record_event(
            "model.deleted",
            f"{type(model).__name__} '{model_display_name(model)}' was deleted",
            subject=model,
            causer=causer if causer is not None else self._current_causer(),
            properties={"deleted_attributes": self._sanitize(entity_attributes(model))},
        )

    async def log_model_restored(self, model: Any, causer: Any = None) -> ActivityLog:
        return await self.record_event(
            "model.restored",
            f"{type(model).__name__} '{model_display_name(model)}' was restored",
            subject=model,
            causer=causer if causer is not None else self._current_causer(),
        )

    async def log_bootup(self) -> ActivityLog:
        """记录应用启动事件（system.bootup）"""
        return await self.record_event(
            "system.bootup",
            "Web application started successfully",
            properties={
                "environment": self._config.environment,
                "python_version": platform.python_version(),
                "server_time": _server_time(),
                "memory_usage": format_bytes(_memory_usage_bytes()),
                "hostname": socket.gethostname(),
            },
        )

    async def test_webhook(self) -> bool:
        """经完整链路记录一条 system.test 事件

        Returns:
            记录是否成功持久化（推送结果见日志）
        """
        record = await self.record_event(
            "system.test",
            TEST_EVENT_DESCRIPTION,
            properties={
                "test_timestamp": _server_time(),
                "app_name": self._config.app_name,
                "environment": self._config.environment,
            },
        )
        if not record.is_persisted:
            log.error("webhook_test_failed", reason="activity_not_persisted")
            return False
        return True

    async def test_connectivity(self) -> ConnectivityReport:
        """全局开关检查后委托 webhook 客户端发送测试 embed"""
        if not self._config.enabled:
            return ConnectivityReport(
                success=False,
                message="Discord notifications are disabled",
                details="Set ACTIVITY_LOG_DISCORD_ENABLED=true to enable delivery",
            )
        if self._client is None:
            return ConnectivityReport(
                success=False,
                message="Discord webhook client not available",
            )
        return await self._client.test_connectivity(
            self._config.app_name,
            self._config.environment,
        )
