"""配置模块 -- 进程启动时一次性组装的不可变配置

所有组件通过构造器显式接收 ActivityLogConfig，格式化/分发逻辑内部不读取全局状态。
配置值可通过环境变量覆盖，非法数值仅记录 warning 并回退默认值（不阻塞启动）。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr

log = structlog.get_logger()

# 未知事件类型统一回退到该条目
CUSTOM_EVENT_TYPE = "custom"

# 默认敏感字段（大小写敏感，精确匹配）
DEFAULT_SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "password_confirmation",
        "token",
        "secret",
        "api_key",
        "private_key",
        "access_token",
        "refresh_token",
        "remember_token",
        "two_factor_secret",
        "two_factor_recovery_codes",
    }
)


def _get_base_dir() -> Path:
    """获取 data 基础目录"""
    return Path(os.environ.get("ACTIVITY_LOG_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "ACTIVITY_LOG_DB_PATH",
        str(_get_base_dir() / "sqlite" / "activitylog.db"),
    )


class EventTypeConfig(BaseModel):
    """单个事件类型的通知配置"""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="是否推送该类型事件")
    color: int = Field(default=0x9900FF, ge=0, le=0xFFFFFF, description="Embed 颜色（RGB）")
    icon: str = Field(default="📝", description="标题前缀图标")


DEFAULT_EVENT_TYPES: dict[str, EventTypeConfig] = {
    "user.login": EventTypeConfig(color=0x00FF00, icon="🔐"),
    "user.logout": EventTypeConfig(color=0xFF9900, icon="🚪"),
    "user.register": EventTypeConfig(color=0x0099FF, icon="👋"),
    "model.created": EventTypeConfig(color=0x00FF00, icon="➕"),
    "model.updated": EventTypeConfig(color=0xFFFF00, icon="✏️"),
    "model.deleted": EventTypeConfig(color=0xFF0000, icon="🗑️"),
    CUSTOM_EVENT_TYPE: EventTypeConfig(color=0x9900FF, icon="📝"),
}


class WebhookSettings(BaseModel):
    """Webhook 客户端静态配置"""

    model_config = ConfigDict(frozen=True)

    url: SecretStr | None = Field(default=None, description="Webhook URL（含 token，视为密钥）")
    username: str = Field(default="Activity Logger", description="发送者显示名")
    avatar_url: str | None = Field(default=None, description="发送者头像 URL")
    timeout_s: float = Field(default=30.0, gt=0, description="请求总超时（秒）")
    connect_timeout_s: float = Field(default=10.0, gt=0, description="连接超时（秒）")

    @property
    def configured(self) -> bool:
        return self.url is not None and bool(self.url.get_secret_value())


class FormatLimits(BaseModel):
    """渲染尺寸上限 -- 对齐接收端的 embed 限制"""

    model_config = ConfigDict(frozen=True)

    title_max: int = Field(default=256, ge=4)
    description_max: int = Field(default=2048, ge=4)
    field_max: int = Field(default=1024, ge=4)
    property_count_max: int = Field(default=10, ge=1)
    property_value_max: int = Field(default=100, ge=4)
    attribute_value_max: int = Field(default=500, ge=4, description="捕获阶段字符串属性上限")


class RetryPolicy(BaseModel):
    """投递重试策略"""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    backoff_s: tuple[float, ...] = Field(default=(10.0, 30.0, 60.0), min_length=1)
    retry_window_s: float = Field(default=600.0, gt=0)

    def delay_for(self, attempts: int) -> float:
        """第 attempts 次失败后的退避时间，超出列表时重复最后一个值"""
        index = min(max(attempts, 1), len(self.backoff_s)) - 1
        return self.backoff_s[index]


class ActivityLogConfig(BaseModel):
    """全局不可变配置"""

    model_config = ConfigDict(frozen=True)

    app_name: str = Field(default="Activity Log")
    environment: str = Field(default="production")
    enabled: bool = Field(default=True, description="全局推送开关")
    queue_notifications: bool = Field(default=True, description="是否走队列异步投递")
    queue_connection: str = Field(default="default")
    queue_name: str = Field(default="discord-notifications")
    send_bootup_message: bool = Field(default=False)
    events: dict[str, EventTypeConfig] = Field(
        default_factory=lambda: dict(DEFAULT_EVENT_TYPES)
    )
    sensitive_fields: frozenset[str] = Field(default=DEFAULT_SENSITIVE_FIELDS)
    mask_token: str = Field(default="[HIDDEN]")
    limits: FormatLimits = Field(default_factory=FormatLimits)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    worker_concurrency: int = Field(default=2, ge=1)
    worker_poll_interval_s: float = Field(default=1.0, gt=0)
    worker_lease_s: float = Field(default=120.0, gt=0, description="任务租约，需大于请求超时")

    def event_config(self, event_type: str) -> EventTypeConfig:
        """查询事件类型配置，未知类型回退到 custom 条目"""
        config = self.events.get(event_type)
        if config is None:
            config = self.events.get(CUSTOM_EVENT_TYPE, EventTypeConfig())
        return config


def _env_bool(name: str, default: bool) -> bool:
    val = os.environ.get(name)
    if val is None or val == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: float, cast=float):
    """读取正数配置；无法解析或不大于 0 时记录 warning 并回退默认值"""
    val = os.environ.get(name)
    if not val:
        return default
    try:
        number = cast(val)
    except ValueError:
        number = None
    if number is None or not number > 0:
        log.warning(
            "invalid_numeric_config",
            env_var=name,
            value=val,
            fallback=default,
        )
        return default
    return number


def load_config() -> ActivityLogConfig:
    """从环境变量组装 ActivityLogConfig

    环境变量:
        DISCORD_WEBHOOK_URL / DISCORD_BOT_NAME / DISCORD_AVATAR_URL: webhook 设置
        ACTIVITY_LOG_DISCORD_ENABLED: 全局开关（默认 true）
        ACTIVITY_LOG_QUEUE: 是否走队列（默认 true）
        ACTIVITY_LOG_QUEUE_CONNECTION / ACTIVITY_LOG_QUEUE_NAME: 队列定位
        ACTIVITY_LOG_DISABLED_EVENTS: 逗号分隔的禁用事件类型
        ACTIVITY_LOG_APP_NAME / ACTIVITY_LOG_ENV: footer 与诊断信息
        ACTIVITY_LOG_SEND_BOOTUP_MESSAGE: 启动时是否记录 system.bootup
        ACTIVITY_LOG_WORKERS: worker 并发数

    Returns:
        ActivityLogConfig 实例
    """
    webhook_kwargs: dict = {}
    if val := os.environ.get("DISCORD_WEBHOOK_URL"):
        webhook_kwargs["url"] = SecretStr(val)
    if val := os.environ.get("DISCORD_BOT_NAME"):
        webhook_kwargs["username"] = val
    if val := os.environ.get("DISCORD_AVATAR_URL"):
        webhook_kwargs["avatar_url"] = val
    webhook_kwargs["timeout_s"] = _env_number("ACTIVITY_LOG_WEBHOOK_TIMEOUT_S", 30.0)
    webhook_kwargs["connect_timeout_s"] = _env_number(
        "ACTIVITY_LOG_WEBHOOK_CONNECT_TIMEOUT_S", 10.0
    )

    events = dict(DEFAULT_EVENT_TYPES)
    disabled = os.environ.get("ACTIVITY_LOG_DISABLED_EVENTS", "")
    for event_type in filter(None, (part.strip() for part in disabled.split(","))):
        base = events.get(event_type, events[CUSTOM_EVENT_TYPE])
        events[event_type] = base.model_copy(update={"enabled": False})

    kwargs: dict = {
        "enabled": _env_bool("ACTIVITY_LOG_DISCORD_ENABLED", True),
        "queue_notifications": _env_bool("ACTIVITY_LOG_QUEUE", True),
        "send_bootup_message": _env_bool("ACTIVITY_LOG_SEND_BOOTUP_MESSAGE", False),
        "worker_concurrency": _env_number("ACTIVITY_LOG_WORKERS", 2, int),
        "events": events,
        "webhook": WebhookSettings(**webhook_kwargs),
    }
    if val := os.environ.get("ACTIVITY_LOG_QUEUE_CONNECTION"):
        kwargs["queue_connection"] = val
    if val := os.environ.get("ACTIVITY_LOG_QUEUE_NAME"):
        kwargs["queue_name"] = val
    if val := os.environ.get("ACTIVITY_LOG_APP_NAME"):
        kwargs["app_name"] = val
    if val := os.environ.get("ACTIVITY_LOG_ENV"):
        kwargs["environment"] = val

    return ActivityLogConfig(**kwargs)
