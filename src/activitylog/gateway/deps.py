"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from activitylog.core.store import StoreGroup
from fastapi import Request

from .services.activity_logger import ActivityLoggerService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_activity_logger(request: Request) -> ActivityLoggerService:
    """从 app.state 获取 ActivityLoggerService 实例"""
    return request.app.state.activity_logger
