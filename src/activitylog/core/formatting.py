"""格式化/脱敏 -- 将 ActivityLog 渲染为有界、无密钥的 Embed

纯函数，无状态、无 I/O。时间由调用方传入（now），不读取全局配置。
脱敏先于任何截断执行。
"""

import json
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from .config import ActivityLogConfig
from .entities import UNRESOLVED
from .models.activity import ActivityLog, EntityRef
from .models.embed import Embed, EmbedField, EmbedFooter

ELLIPSIS = "..."

# 约定的显示名属性，按顺序尝试
DISPLAY_NAME_ATTRIBUTES: tuple[str, ...] = ("name", "email", "title", "label", "display_name")

CAUSER_FIELD_NAME = "Performed by"
SUBJECT_FIELD_NAME = "Subject"
DETAILS_FIELD_NAME = "Details"

UNKNOWN_CAUSER = "Unknown User"
UNKNOWN_SUBJECT = "Unknown Subject"


def truncate_text(text: str, max_length: int) -> str:
    """超长时截断并追加省略号，结果长度不超过 max_length

    未超长的输入原样返回（对已截断文本幂等）。
    """
    if len(text) <= max_length:
        return text
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS


def _capitalize_words(text: str) -> str:
    # 仅大写每个词首字母，其余字符保持原样
    return " ".join(word[:1].upper() + word[1:] for word in text.split(" "))


def humanize_event_type(event_type: str) -> str:
    """user.login -> User Login"""
    return _capitalize_words(event_type.replace(".", " ").replace("_", " "))


def humanize_key(key: str) -> str:
    """user_agent -> User Agent"""
    return _capitalize_words(str(key).replace("_", " ").replace("-", " "))


def redact_properties(
    properties: Mapping[str, Any],
    sensitive_fields: Iterable[str],
    mask: str,
) -> dict[str, Any]:
    """将敏感键的值替换为掩码

    键名大小写敏感精确匹配；嵌套 mapping/list 同样递归处理。
    返回新字典，不修改入参。
    """
    sensitive = frozenset(sensitive_fields)

    def _redact(value: Any) -> Any:
        if isinstance(value, Mapping):
            return {
                k: (mask if k in sensitive else _redact(v)) for k, v in value.items()
            }
        if isinstance(value, list | tuple):
            return [_redact(item) for item in value]
        return value

    return {
        key: (mask if key in sensitive else _redact(value))
        for key, value in properties.items()
    }


def sanitize_attributes(
    attributes: Mapping[str, Any],
    sensitive_fields: Iterable[str],
    mask: str,
    max_length: int = 500,
) -> dict[str, Any]:
    """捕获阶段的属性清洗：脱敏 + 长字符串截断"""
    sanitized = redact_properties(attributes, sensitive_fields, mask)
    for key, value in sanitized.items():
        if isinstance(value, str):
            sanitized[key] = truncate_text(value, max_length)
    return sanitized


def format_property_value(value: Any, max_length: int = 100) -> str:
    """单个属性值的文本形式"""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if value is None:
        return "null"
    if isinstance(value, Mapping | list | tuple | set):
        if isinstance(value, set):
            value = sorted(value, key=str)
        text = json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    else:
        text = str(value)
    return truncate_text(text, max_length)


def format_properties(
    properties: Mapping[str, Any],
    max_count: int = 10,
    value_max_length: int = 100,
) -> str:
    """渲染为 "**Key Name**: value" 行，超过 max_count 时追加汇总行"""
    lines: list[str] = []
    for index, (key, value) in enumerate(properties.items()):
        if index >= max_count:
            lines.append(f"... and {len(properties) - max_count} more properties")
            break
        lines.append(f"**{humanize_key(key)}**: {format_property_value(value, value_max_length)}")
    return "\n".join(lines)


def describe_entity(ref: EntityRef | None, entity: Any, fallback: str) -> str:
    """实体显示名

    顺序：get_display_name() -> 约定属性 -> "{type_name} #{id}"。
    UNRESOLVED 或任何异常降级为 fallback，不向外抛出。
    """
    if entity is UNRESOLVED:
        return fallback
    try:
        if entity is not None:
            get_display_name = getattr(entity, "get_display_name", None)
            if callable(get_display_name):
                name = get_display_name()
                if name:
                    return str(name)
            for attr in DISPLAY_NAME_ATTRIBUTES:
                value = getattr(entity, attr, None)
                if value:
                    return str(value)
            if ref is None:
                ref = EntityRef.from_entity(entity)
        if ref is None:
            return fallback
        return f"{ref.type_name} #{ref.id}"
    except Exception:
        return fallback


def format_footer_date(now: datetime) -> str:
    """Oct 19, 2026"""
    return f"{now:%b} {now.day}, {now.year}"


class EmbedBuilder:
    """ActivityLog -> Embed"""

    def __init__(self, config: ActivityLogConfig) -> None:
        self._config = config
        self._limits = config.limits

    def format_title(self, event_type: str) -> str:
        icon = self._config.event_config(event_type).icon
        return truncate_text(f"{icon} {humanize_event_type(event_type)}", self._limits.title_max)

    def format_details(self, properties: Mapping[str, Any]) -> str:
        redacted = redact_properties(
            properties, self._config.sensitive_fields, self._config.mask_token
        )
        text = format_properties(
            redacted,
            max_count=self._limits.property_count_max,
            value_max_length=self._limits.property_value_max,
        )
        return truncate_text(text, self._limits.field_max)

    def build(
        self,
        record: ActivityLog,
        now: datetime,
        causer_entity: Any = None,
        subject_entity: Any = None,
    ) -> Embed:
        """构建 Embed

        Args:
            record: 事件记录
            now: 当前时间（footer 日期）
            causer_entity: 已解析的 causer 实体、None 或 UNRESOLVED
            subject_entity: 已解析的 subject 实体、None 或 UNRESOLVED
        """
        fields: list[EmbedField] = []

        if record.causer is not None:
            fields.append(
                EmbedField(
                    name=CAUSER_FIELD_NAME,
                    value=truncate_text(
                        describe_entity(record.causer, causer_entity, UNKNOWN_CAUSER),
                        self._limits.field_max,
                    ),
                    inline=True,
                )
            )

        if record.subject is not None:
            fields.append(
                EmbedField(
                    name=SUBJECT_FIELD_NAME,
                    value=truncate_text(
                        describe_entity(record.subject, subject_entity, UNKNOWN_SUBJECT),
                        self._limits.field_max,
                    ),
                    inline=True,
                )
            )

        if record.properties:
            details = self.format_details(record.properties)
            if details:
                fields.append(EmbedField(name=DETAILS_FIELD_NAME, value=details, inline=False))

        return Embed(
            title=self.format_title(record.event_type),
            description=truncate_text(record.description, self._limits.description_max),
            color=self._config.event_config(record.event_type).color,
            timestamp=record.created_at.isoformat(),
            fields=fields,
            footer=EmbedFooter(
                text=f"{self._config.app_name} • {format_footer_date(now)}",
            ),
        )
