"""Activity Log Webhook -- Discord webhook 投递层

packages webhook 的公开接口导出。
"""

from .client import DiscordWebhookClient, classify_response, mask_webhook_url
from .exceptions import WebhookError, WebhookNotConfiguredError
from .models import ConnectivityReport, DeliveryOutcome, OutcomeKind

__all__ = [
    "DiscordWebhookClient",
    "classify_response",
    "mask_webhook_url",
    "DeliveryOutcome",
    "OutcomeKind",
    "ConnectivityReport",
    "WebhookError",
    "WebhookNotConfiguredError",
]
