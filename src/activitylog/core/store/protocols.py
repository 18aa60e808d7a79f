"""Store Protocol 接口定义

定义 ActivityStore、DeliveryQueue 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from datetime import datetime
from typing import Protocol

from ..models.activity import ActivityLog
from ..models.enums import TaskStatus
from ..models.task import DeliveryTask


class ActivityStore(Protocol):
    """ActivityLog 存储接口"""

    async def create(self, record: ActivityLog) -> str:
        """插入记录，返回 activity_id"""
        ...

    async def get(self, activity_id: str) -> ActivityLog | None:
        """根据 activity_id 查询记录"""
        ...

    async def mark_sent(self, activity_id: str, sent_at: datetime) -> None:
        """标记已投递"""
        ...

    async def mark_unsent(self, activity_id: str) -> None:
        """重置投递字段"""
        ...


class DeliveryQueue(Protocol):
    """投递队列接口 -- at-least-once，带可见的尝试计数"""

    async def enqueue(self, task: DeliveryTask, delay_s: float = 0.0) -> None:
        """入队"""
        ...

    async def claim_next(
        self,
        connection: str,
        queue_name: str,
        lease_s: float,
    ) -> DeliveryTask | None:
        """领取到期任务（attempts + 1）"""
        ...

    async def reschedule(self, task_id: str, delay_s: float, error: str = "") -> None:
        """延迟重试"""
        ...

    async def finish(self, task_id: str, status: TaskStatus, error: str = "") -> None:
        """进入终态"""
        ...
