"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 投递组件初始化 + worker 池启停 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import structlog
from activitylog.core.config import ActivityLogConfig, get_db_path, load_config
from activitylog.core.entities import EntityResolver
from activitylog.core.formatting import EmbedBuilder
from activitylog.core.policy import NotificationPolicy
from activitylog.core.store import StoreGroup, create_store_group
from activitylog.webhook import DiscordWebhookClient, mask_webhook_url
from fastapi import FastAPI

from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import activity, health, webhook
from .services.activity_logger import ActivityLoggerService
from .services.dispatcher import NotificationDispatcher
from .services.worker import DeliveryWorkerPool

log = structlog.get_logger()


@dataclass
class Services:
    """一组共享同一 StoreGroup 的服务实例"""

    policy: NotificationPolicy
    webhook_client: DiscordWebhookClient
    dispatcher: NotificationDispatcher
    activity_logger: ActivityLoggerService
    worker_pool: DeliveryWorkerPool


def build_services(
    config: ActivityLogConfig,
    store_group: StoreGroup,
    transport: httpx.AsyncBaseTransport | None = None,
    resolver: EntityResolver | None = None,
) -> Services:
    """按配置组装投递组件

    Args:
        config: 全局配置
        store_group: Store 实例组
        transport: 可选的 httpx transport（测试注入）
        resolver: 可选的实体解析器
    """
    policy = NotificationPolicy(config)
    webhook_client = DiscordWebhookClient(config.webhook, transport=transport)
    dispatcher = NotificationDispatcher(
        store_group,
        webhook_client,
        policy,
        EmbedBuilder(config),
        config,
        resolver=resolver,
    )
    activity_logger = ActivityLoggerService(
        store_group,
        policy,
        dispatcher,
        config,
        client=webhook_client,
    )
    worker_pool = DeliveryWorkerPool(
        store_group.delivery_queue,
        dispatcher,
        store_group.conn,
        config,
    )
    return Services(
        policy=policy,
        webhook_client=webhook_client,
        dispatcher=dispatcher,
        activity_logger=activity_logger,
        worker_pool=worker_pool,
    )


def attach_services(
    app: FastAPI,
    config: ActivityLogConfig,
    store_group: StoreGroup,
    services: Services,
) -> None:
    app.state.config = config
    app.state.store_group = store_group
    app.state.policy = services.policy
    app.state.webhook_client = services.webhook_client
    app.state.dispatcher = services.dispatcher
    app.state.activity_logger = services.activity_logger
    app.state.worker_pool = services.worker_pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 和投递组件，关闭时停止 worker 并清理连接"""
    config = load_config()
    store_group = await create_store_group(get_db_path())
    services = build_services(
        config,
        store_group,
        transport=getattr(app.state, "webhook_transport", None),
        resolver=getattr(app.state, "entity_resolver", None),
    )
    attach_services(app, config, store_group, services)

    log.info(
        "activity_log_initialized",
        app_name=config.app_name,
        environment=config.environment,
        enabled=config.enabled,
        queue_notifications=config.queue_notifications,
        webhook=mask_webhook_url(
            config.webhook.url.get_secret_value() if config.webhook.url else None
        ),
    )

    if config.queue_notifications:
        await services.worker_pool.start()

    if config.send_bootup_message:
        await services.activity_logger.log_bootup()

    yield

    await services.worker_pool.stop()
    await store_group.conn.close()


def create_app(
    resolver: EntityResolver | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """创建 FastAPI 应用实例

    Args:
        resolver: 宿主应用的实体解析器，供队列投递时还原 subject / causer
        transport: 可选的 httpx transport（测试注入）
    """
    app = FastAPI(
        title="Activity Log Relay",
        version="0.1.0",
        description="事件记录与 Discord webhook 推送",
        lifespan=lifespan,
    )
    app.state.entity_resolver = resolver
    app.state.webhook_transport = transport

    app.add_middleware(LoggingMiddleware)

    setup_logging()

    app.include_router(activity.router, tags=["activity"])
    app.include_router(webhook.router, tags=["webhook"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
