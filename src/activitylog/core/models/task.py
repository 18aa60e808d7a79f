"""DeliveryTask Domain Model -- 队列承载的投递任务

每条需要推送的 ActivityLog 产生一个任务；attempts 在每次被 worker 领取时递增。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from .enums import TaskStatus


class DeliveryTask(BaseModel):
    """DeliveryTask 数据模型"""

    task_id: str = Field(description="ULID")
    activity_id: str = Field(description="关联的 ActivityLog ID")
    connection: str = Field(default="default", description="队列连接名")
    queue_name: str = Field(default="discord-notifications", description="队列名")
    status: TaskStatus = Field(default=TaskStatus.QUEUED)
    attempts: int = Field(default=0, ge=0, description="已领取（尝试）次数")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    available_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    claimed_until: datetime | None = Field(default=None, description="租约到期时间")
    last_error: str = Field(default="")
