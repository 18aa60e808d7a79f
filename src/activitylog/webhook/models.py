"""数据模型 -- DeliveryOutcome + ConnectivityReport

Webhook 客户端只做一次尝试，并以值的形式报告结果。
"""

from enum import StrEnum

from pydantic import BaseModel, Field


class OutcomeKind(StrEnum):
    """单次投递结果分类"""

    DELIVERED = "delivered"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"
    UNEXPECTED = "unexpected"


class DeliveryOutcome(BaseModel):
    """单次 POST 的分类结果"""

    kind: OutcomeKind
    status_code: int | None = Field(default=None, description="HTTP 状态码，网络错误时为 None")
    reason: str = Field(default="", description="可读原因")
    retry_after_s: float | None = Field(default=None, description="429 时接收端建议的等待秒数")
    duration_ms: int = Field(default=0, ge=0)

    @property
    def delivered(self) -> bool:
        return self.kind == OutcomeKind.DELIVERED

    @property
    def retryable(self) -> bool:
        return self.kind == OutcomeKind.RETRYABLE


class ConnectivityReport(BaseModel):
    """连通性诊断结果 (success, message, details)"""

    success: bool
    message: str
    details: str = ""
