"""Webhook 诊断路由

POST /api/webhook/test: 直接发送测试 embed，成功后再经完整链路记录 system.test 事件。
"""

from activitylog.webhook import ConnectivityReport
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.responses import JSONResponse

from ..deps import get_activity_logger

router = APIRouter()


class WebhookTestResponse(BaseModel):
    connectivity: ConnectivityReport
    activity_logged: bool


@router.post("/api/webhook/test", response_model=WebhookTestResponse)
async def test_webhook(activity_logger=Depends(get_activity_logger)):
    """连通性测试

    - 两步均成功返回 200
    - 任一步失败返回 502，响应体包含失败原因
    """
    report = await activity_logger.test_connectivity()
    activity_logged = False
    if report.success:
        activity_logged = await activity_logger.test_webhook()

    body = WebhookTestResponse(connectivity=report, activity_logged=activity_logged)
    status_code = 200 if report.success and activity_logged else 502
    return JSONResponse(status_code=status_code, content=body.model_dump())
