"""ActivityLog Domain Model -- 事件记录

记录创建一次后仅允许 Dispatcher 修改投递字段（webhook_sent / webhook_sent_at）。
activity_id 使用 ULID 格式；为 None 表示持久化失败时返回的临时记录。
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import DeliveryState


class EntityRef(BaseModel):
    """多态实体引用 (type_name, id)"""

    model_config = ConfigDict(frozen=True)

    type_name: str = Field(description="实体类型名")
    id: str = Field(description="实体标识")

    @classmethod
    def from_entity(cls, entity: Any) -> "EntityRef":
        """从实体对象构造引用

        支持：EntityRef 本身、暴露 entity_ref() 的对象、带 id 属性的任意对象。

        Raises:
            ValueError: 对象无法提供标识
        """
        if isinstance(entity, EntityRef):
            return entity
        entity_ref = getattr(entity, "entity_ref", None)
        if callable(entity_ref):
            return entity_ref()
        entity_id = getattr(entity, "id", None)
        if entity_id is None:
            raise ValueError(f"{type(entity).__name__} 没有可用的 id")
        return cls(type_name=type(entity).__name__, id=str(entity_id))

    def __str__(self) -> str:
        return f"{self.type_name} #{self.id}"


class ActivityLog(BaseModel):
    """ActivityLog 数据模型

    webhook_sent=True 时 webhook_sent_at 必须非空且不早于 created_at。
    """

    activity_id: str | None = Field(default=None, description="ULID；None 表示未持久化")
    event_type: str = Field(description="事件类型，如 user.login")
    description: str = Field(default="", description="可读描述，渲染时截断")
    subject: EntityRef | None = Field(default=None, description="事件主体")
    causer: EntityRef | None = Field(default=None, description="事件发起者")
    properties: dict[str, Any] = Field(default_factory=dict, description="结构化元数据")
    webhook_sent: bool = Field(default=False)
    webhook_sent_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_persisted(self) -> bool:
        return self.activity_id is not None

    @property
    def delivery_state(self) -> DeliveryState:
        return DeliveryState.SENT if self.webhook_sent else DeliveryState.PENDING
