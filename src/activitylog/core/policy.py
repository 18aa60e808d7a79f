"""NotificationPolicy -- 是否推送、如何推送的纯配置判定

无副作用：仅对 ActivityLogConfig 做查表。
"""

from dataclasses import dataclass

from .config import ActivityLogConfig
from .models.enums import DeliveryMode


@dataclass(frozen=True)
class DeliveryRoute:
    """投递路由：同步直发或进入指定队列"""

    mode: DeliveryMode
    connection: str
    queue_name: str


class NotificationPolicy:
    """通知策略"""

    def __init__(self, config: ActivityLogConfig) -> None:
        self._config = config

    @property
    def webhook_configured(self) -> bool:
        """是否配置了 webhook URL（未配置视为跳过，不是失败）"""
        return self._config.webhook.configured

    def should_dispatch(self, event_type: str) -> bool:
        """全局开关与事件类型开关同时为真才推送

        未知事件类型回退到 custom 条目，默认启用。
        """
        if not self._config.enabled:
            return False
        return self._config.event_config(event_type).enabled

    def delivery_mode(self) -> DeliveryRoute:
        mode = (
            DeliveryMode.QUEUED
            if self._config.queue_notifications
            else DeliveryMode.SYNCHRONOUS
        )
        return DeliveryRoute(
            mode=mode,
            connection=self._config.queue_connection,
            queue_name=self._config.queue_name,
        )
