"""DiscordWebhookClient -- Discord webhook 调用封装

每次调用创建独立的 httpx.AsyncClient，只做一次 POST 并对结果分类。
重试逻辑不在此处（由 Dispatcher 负责）。
日志中的 webhook URL 一律经过 mask_webhook_url，仅暴露 webhook ID。
"""

import asyncio
import re
import time
from datetime import UTC, datetime

import httpx
import structlog

from activitylog.core.config import WebhookSettings
from activitylog.core.formatting import humanize_key
from activitylog.core.models.embed import Embed, EmbedField, EmbedFooter

from .exceptions import WebhookNotConfiguredError
from .models import ConnectivityReport, DeliveryOutcome, OutcomeKind

log = structlog.get_logger()

# Discord 成功响应：204 No Content
SUCCESS_STATUS = 204

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

_WEBHOOK_ID_PATTERN = re.compile(r"webhooks/(\d+)/")

# 永久失败：不重试
_PERMANENT_REASONS: dict[int, str] = {
    400: "Bad Request - Invalid webhook data format",
    401: "Unauthorized - Invalid webhook URL or token",
    404: "Not Found - Webhook URL does not exist or has been deleted",
}

RATE_LIMITED_REASON = "Rate Limited - Too many requests, please try again later"
SERVER_ERROR_REASON = "Discord server error - Please try again later"
CONNECTION_ERROR_REASON = "No response from Discord (connection error)"


def mask_webhook_url(url: str | None) -> str:
    """屏蔽 webhook token，仅保留可用于关联的 webhook ID"""
    if not url:
        return "null"
    match = _WEBHOOK_ID_PATTERN.search(url)
    if match:
        return f"Discord webhook ID: {match.group(1)}"
    return "Discord webhook URL (masked)"


def _parse_retry_after(response: httpx.Response) -> float | None:
    """从 429 响应中解析建议等待时间（秒）"""
    header = response.headers.get("Retry-After")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        value = body.get("retry_after")
        if isinstance(value, int | float) and not isinstance(value, bool):
            return float(value)
    return None


def classify_response(response: httpx.Response, duration_ms: int = 0) -> DeliveryOutcome:
    """按状态码分类响应"""
    status = response.status_code
    if status == SUCCESS_STATUS:
        return DeliveryOutcome(
            kind=OutcomeKind.DELIVERED,
            status_code=status,
            duration_ms=duration_ms,
        )
    if status == 429:
        return DeliveryOutcome(
            kind=OutcomeKind.RETRYABLE,
            status_code=status,
            reason=RATE_LIMITED_REASON,
            retry_after_s=_parse_retry_after(response),
            duration_ms=duration_ms,
        )
    if status >= 500:
        return DeliveryOutcome(
            kind=OutcomeKind.RETRYABLE,
            status_code=status,
            reason=f"{SERVER_ERROR_REASON} (HTTP {status})",
            duration_ms=duration_ms,
        )
    if status in _PERMANENT_REASONS:
        return DeliveryOutcome(
            kind=OutcomeKind.PERMANENT,
            status_code=status,
            reason=_PERMANENT_REASONS[status],
            duration_ms=duration_ms,
        )
    return DeliveryOutcome(
        kind=OutcomeKind.UNEXPECTED,
        status_code=status,
        reason=f"HTTP {status} - Unexpected response from Discord",
        duration_ms=duration_ms,
    )


class DiscordWebhookClient:
    """Discord webhook 客户端

    send() 与 test_connectivity() 均只发起一次请求。
    """

    def __init__(
        self,
        settings: WebhookSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """初始化客户端

        Args:
            settings: webhook 静态配置（URL、显示名、头像、超时）
            transport: 可选的 httpx transport（测试注入 MockTransport）
        """
        self._settings = settings
        self._transport = transport

    @property
    def masked_url(self) -> str:
        url = self._settings.url.get_secret_value() if self._settings.url else None
        return mask_webhook_url(url)

    def _http_client(self, timeout: httpx.Timeout | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout
            or httpx.Timeout(
                self._settings.timeout_s,
                connect=self._settings.connect_timeout_s,
            ),
            transport=self._transport,
        )

    def build_body(self, embed: Embed) -> dict:
        """构建请求体 {username, avatar_url, embeds: [embed]}"""
        return {
            "username": self._settings.username,
            "avatar_url": self._settings.avatar_url,
            "embeds": [embed.model_dump(exclude_none=True)],
        }

    async def _post(self, embed: Embed) -> DeliveryOutcome:
        if not self._settings.configured:
            raise WebhookNotConfiguredError()

        url = self._settings.url.get_secret_value()
        start_time = time.monotonic()
        try:
            # httpx 的超时按阶段计算，整体上限另由 asyncio.timeout 保证
            async with asyncio.timeout(self._settings.timeout_s):
                async with self._http_client() as http_client:
                    response = await http_client.post(url, json=self.build_body(embed))
        except httpx.InvalidURL as e:
            return DeliveryOutcome(
                kind=OutcomeKind.PERMANENT,
                reason=f"Invalid webhook URL: {e}",
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
        except httpx.TransportError as e:
            # 连接失败、超时、DNS 解析失败等均视为可重试
            return DeliveryOutcome(
                kind=OutcomeKind.RETRYABLE,
                reason=f"{CONNECTION_ERROR_REASON}: {type(e).__name__} {e}".rstrip(),
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
        except TimeoutError:
            return DeliveryOutcome(
                kind=OutcomeKind.RETRYABLE,
                reason=(
                    f"{CONNECTION_ERROR_REASON}: no complete response within "
                    f"{self._settings.timeout_s:g}s"
                ),
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )

        return classify_response(
            response,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )

    async def send(self, embed: Embed) -> DeliveryOutcome:
        """POST 单条 embed 并分类结果

        Returns:
            DeliveryOutcome

        Raises:
            WebhookNotConfiguredError: 未配置 URL
        """
        outcome = await self._post(embed)

        if outcome.kind == OutcomeKind.DELIVERED:
            log.debug(
                "webhook_delivered",
                webhook=self.masked_url,
                duration_ms=outcome.duration_ms,
            )
        elif outcome.kind == OutcomeKind.RETRYABLE:
            log.warning(
                "webhook_retryable_failure",
                webhook=self.masked_url,
                status_code=outcome.status_code,
                reason=outcome.reason,
                retry_after_s=outcome.retry_after_s,
            )
        else:
            log.error(
                "webhook_failed",
                webhook=self.masked_url,
                kind=outcome.kind.value,
                status_code=outcome.status_code,
                reason=outcome.reason,
            )
        return outcome

    def build_test_embed(self, app_name: str, environment: str, now: datetime) -> Embed:
        return Embed(
            title="🧪 Webhook Test",
            description=(
                "This is a test message to verify your Discord webhook "
                "integration is working correctly."
            ),
            color=0x00FF00,
            timestamp=now.isoformat(),
            fields=[
                EmbedField(name="Application", value=app_name, inline=True),
                EmbedField(name=humanize_key("environment"), value=environment, inline=True),
                EmbedField(
                    name="Test Time",
                    value=now.strftime("%Y-%m-%d %H:%M:%S %Z"),
                    inline=False,
                ),
            ],
            footer=EmbedFooter(text="Activity Log Relay"),
        )

    async def test_connectivity(
        self,
        app_name: str = "Activity Log",
        environment: str = "production",
    ) -> ConnectivityReport:
        """发送测试 embed 验证集成

        注意: 此方法不抛出异常，所有结果以 ConnectivityReport 返回。
        """
        if not self._settings.configured:
            return ConnectivityReport(
                success=False,
                message="Discord webhook URL not configured",
                details="Please set DISCORD_WEBHOOK_URL in your environment",
            )

        embed = self.build_test_embed(app_name, environment, datetime.now(UTC))
        try:
            outcome = await self._post(embed)
        except Exception as e:
            log.error(
                "webhook_test_unexpected_error",
                webhook=self.masked_url,
                error_type=type(e).__name__,
            )
            return ConnectivityReport(
                success=False,
                message="Unexpected error occurred",
                details=str(e),
            )

        if outcome.delivered:
            return ConnectivityReport(
                success=True,
                message="Test webhook sent successfully!",
                details="Check your Discord channel for the test message.",
            )

        log.error(
            "webhook_test_failed",
            webhook=self.masked_url,
            status_code=outcome.status_code,
            reason=outcome.reason,
        )
        if outcome.kind == OutcomeKind.UNEXPECTED:
            return ConnectivityReport(
                success=False,
                message="Unexpected response from Discord",
                details=f"HTTP Status: {outcome.status_code}",
            )
        return ConnectivityReport(
            success=False,
            message="Failed to send test webhook",
            details=outcome.reason,
        )

    async def health_check(self) -> bool:
        """GET webhook URL 检查可达性（Discord 返回 webhook 元信息 200）

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        if not self._settings.configured:
            return False
        url = self._settings.url.get_secret_value()
        try:
            async with self._http_client(httpx.Timeout(HEALTH_CHECK_TIMEOUT_S)) as http_client:
                resp = await http_client.get(url)
                return resp.status_code == 200
        except Exception as e:
            log.debug("webhook_health_check_failed", webhook=self.masked_url, error=str(e))
            return False
