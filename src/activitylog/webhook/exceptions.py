"""Webhook 异常体系

投递失败本身以 DeliveryOutcome 值返回，异常仅用于调用契约被违反的情况。
"""


class WebhookError(Exception):
    """Webhook 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class WebhookNotConfiguredError(WebhookError):
    """未配置 webhook URL 时调用 send()

    调用方应先通过 NotificationPolicy.webhook_configured 判断。
    """

    def __init__(self) -> None:
        super().__init__("Discord webhook URL 未配置", recoverable=False)
