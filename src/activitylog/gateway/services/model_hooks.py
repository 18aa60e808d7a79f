"""ModelActivityHooks -- 实体生命周期事件的显式挂钩

任何实体类型都可以接入：声明 log_activity（生命周期名集合）即开启，
可选实现 should_log_activity(event) 做自定义否决。
钩子不向业务代码抛出异常。
"""

from collections.abc import Mapping
from typing import Any

import structlog
from activitylog.core.models import ActivityLog
from activitylog.core.policy import NotificationPolicy

from .activity_logger import ActivityLoggerService

log = structlog.get_logger()


class ModelActivityHooks:
    """生命周期钩子"""

    def __init__(self, activity_logger: ActivityLoggerService, policy: NotificationPolicy) -> None:
        self._logger = activity_logger
        self._policy = policy

    def should_log(self, model: Any, event: str) -> bool:
        """判定某实体的某生命周期事件是否记录

        顺序：实体声明 -> 全局/事件类型开关 -> 实体自定义否决。
        """
        declared = getattr(model, "log_activity", None)
        if not declared or isinstance(declared, str) or event not in declared:
            return False
        if not self._policy.should_dispatch(f"model.{event}"):
            return False
        veto = getattr(model, "should_log_activity", None)
        if callable(veto):
            return bool(veto(event))
        return True

    async def _handle(
        self,
        model: Any,
        event: str,
        changes: Mapping[str, Any] | None = None,
        causer: Any = None,
    ) -> ActivityLog | None:
        try:
            if not self.should_log(model, event):
                return None
            if event == "created":
                return await self._logger.log_model_created(model, causer)
            if event == "updated":
                if not changes:
                    return None
                return await self._logger.log_model_updated(model, changes, causer)
            if event == "deleted":
                return await self._logger.log_model_deleted(model, causer)
            if event == "restored":
                return await self._logger.log_model_restored(model, causer)
            raise ValueError(f"未知生命周期事件: {event}")
        except Exception as e:
            model_id = getattr(model, "id", None)
            log.error(
                "model_activity_hook_failed",
                model=type(model).__name__,
                model_id=str(model_id) if model_id is not None else None,
                lifecycle_event=event,
                error=str(e),
            )
            return None

    async def on_created(self, model: Any, causer: Any = None) -> ActivityLog | None:
        return await self._handle(model, "created", causer=causer)

    async def on_updated(
        self,
        model: Any,
        changes: Mapping[str, Any],
        causer: Any = None,
    ) -> ActivityLog | None:
        return await self._handle(model, "updated", changes=changes, causer=causer)

    async def on_deleted(self, model: Any, causer: Any = None) -> ActivityLog | None:
        return await self._handle(model, "deleted", causer=causer)

    async def on_restored(self, model: Any, causer: Any = None) -> ActivityLog | None:
        return await self._handle(model, "restored", causer=causer)
