"""Activity Log Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .activity import ActivityLog, EntityRef
from .embed import Embed, EmbedField, EmbedFooter
from .enums import (
    TERMINAL_TASK_STATES,
    DeliveryMode,
    DeliveryState,
    DispatchStatus,
    TaskStatus,
)
from .task import DeliveryTask

__all__ = [
    # 枚举
    "DeliveryState",
    "DeliveryMode",
    "DispatchStatus",
    "TaskStatus",
    "TERMINAL_TASK_STATES",
    # ActivityLog
    "ActivityLog",
    "EntityRef",
    # DeliveryTask
    "DeliveryTask",
    # Embed
    "Embed",
    "EmbedField",
    "EmbedFooter",
]
