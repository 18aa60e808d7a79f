"""枚举定义 -- 投递状态、队列任务状态、分发结果

TaskStatus 为队列任务状态机，TERMINAL_TASK_STATES 为终态集合。
"""

from enum import StrEnum


class DeliveryState(StrEnum):
    """ActivityLog 的投递状态（由 webhook_sent 派生）

    FAILED 与 PENDING 在记录上无法区分（webhook_sent=False），
    仅能通过日志中的尝试记录辨别。
    """

    PENDING = "pending"
    SENT = "sent"


class TaskStatus(StrEnum):
    """DeliveryTask 状态机"""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"

    # 终态
    DELIVERED = "DELIVERED"
    SKIPPED = "SKIPPED"
    ABANDONED = "ABANDONED"


TERMINAL_TASK_STATES: set[TaskStatus] = {
    TaskStatus.DELIVERED,
    TaskStatus.SKIPPED,
    TaskStatus.ABANDONED,
}


class DispatchStatus(StrEnum):
    """Dispatcher 处理一次任务的结果"""

    DELIVERED = "delivered"
    SKIPPED = "skipped"
    RETRY_SCHEDULED = "retry_scheduled"
    ABANDONED = "abandoned"


class DeliveryMode(StrEnum):
    """投递方式"""

    SYNCHRONOUS = "synchronous"
    QUEUED = "queued"
