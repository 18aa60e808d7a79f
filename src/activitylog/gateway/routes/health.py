"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、webhook 配置、队列积压。
         profile=webhook 时额外探测 webhook 可达性。
"""

import structlog
from activitylog.core.models import TaskStatus
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="检查配置文件：core（默认）仅本地检查；webhook 额外探测 webhook 可达性",
    ),
):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. webhook_configured: 是否配置 webhook URL（未配置不影响就绪，推送会被跳过）
    3. queue_depth: 待投递任务数（QUEUED + RUNNING）
    4. webhook: 根据 profile 决定是否探测
    """
    effective_profile = profile or "core"

    checks = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. webhook 配置
    config = request.app.state.config
    checks["webhook_configured"] = config.webhook.configured

    # 3. 队列积压
    try:
        counts = await request.app.state.store_group.delivery_queue.count_by_status()
        checks["queue_depth"] = counts.get(TaskStatus.QUEUED, 0) + counts.get(
            TaskStatus.RUNNING, 0
        )
    except Exception as e:
        checks["queue_depth"] = f"error: {str(e)}"
        all_ok = False

    # 4. webhook 探测
    if effective_profile == "webhook":
        client = getattr(request.app.state, "webhook_client", None)
        if client is not None and config.webhook.configured:
            if await client.health_check():
                checks["webhook"] = "ok"
            else:
                log.warning("webhook_unreachable", webhook=client.masked_url)
                checks["webhook"] = "unreachable"
                all_ok = False
        else:
            checks["webhook"] = "not_configured"
            all_ok = False
    else:
        checks["webhook"] = "skipped"

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "profile": effective_profile,
            "checks": checks,
        },
    )
