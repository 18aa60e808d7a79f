"""事件记录路由

POST /api/activity: 记录事件并按策略推送。
GET /api/activity: 按时间倒序列出事件。
GET /api/activity/{activity_id}: 查询单条事件及其投递任务。
"""

from typing import Any

from activitylog.core.models import ActivityLog, DeliveryTask, EntityRef
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import get_activity_logger, get_store_group

router = APIRouter()


class ActivityRequest(BaseModel):
    """事件记录请求体"""

    event_type: str = Field(min_length=1, description="事件类型，如 user.login")
    description: str = Field(description="可读描述")
    subject: EntityRef | None = Field(default=None, description="事件主体引用")
    causer: EntityRef | None = Field(default=None, description="事件发起者引用")
    properties: dict[str, Any] = Field(default_factory=dict)


class ActivityDetail(BaseModel):
    """事件详情响应"""

    activity: ActivityLog
    deliveries: list[DeliveryTask]


@router.post("/api/activity", status_code=201, response_model=ActivityLog)
async def record_activity(
    body: ActivityRequest,
    activity_logger=Depends(get_activity_logger),
):
    """记录事件

    - 持久化成功返回 201
    - 持久化失败返回 503（记录未保存）
    """
    record = await activity_logger.record_event(
        body.event_type,
        body.description,
        subject=body.subject,
        causer=body.causer,
        properties=body.properties,
    )
    if not record.is_persisted:
        return JSONResponse(
            status_code=503,
            content={"detail": "activity_persist_failed"},
        )
    return record


@router.get("/api/activity", response_model=list[ActivityLog])
async def list_activities(
    event_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    store_group=Depends(get_store_group),
):
    return await store_group.activity_store.list_activities(event_type, limit)


@router.get("/api/activity/{activity_id}", response_model=ActivityDetail)
async def get_activity(
    activity_id: str,
    store_group=Depends(get_store_group),
):
    record = await store_group.activity_store.get(activity_id)
    if record is None:
        raise HTTPException(status_code=404, detail="activity not found")
    deliveries = await store_group.delivery_queue.list_for_activity(activity_id)
    return ActivityDetail(activity=record, deliveries=deliveries)
